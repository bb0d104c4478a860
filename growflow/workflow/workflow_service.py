"""
════════════════════════════════════════════════════════════════════════════════════════════════════
WORKFLOW SERVICE - Pipeline Orchestration & Plan Registry
════════════════════════════════════════════════════════════════════════════════════════════════════

    request → TaskGenerator → ScheduleBuilder → ConflictAuditor
                                   ↓
                            PlanAssembler → PolicyAuditor → ApprovalManager.submit

All components share one ID generator, clock and log sink. Plans, their
latest conflict check and audit are kept in a process-local registry; the
registry is not durable.

Lifecycle commands look plans up by ID. Registry mutations are serialized
with a lock so the REST layer can call in from worker threads.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .approval_manager import ApprovalManager
from .conflict_auditor import ConflictAuditor
from .identifiers import Clock, IdGenerator, UuidIdGenerator, utc_now
from .plan_assembler import Grouping, PlanAssembler
from .policy_auditor import ACCEPTED_STATUSES, PolicyAuditor
from .schedule_builder import ScheduleBuilder
from .task_generator import TaskGenerator
from .workflow_config import WorkflowConfig, WorkflowThresholds
from .workflow_log import (
    LogContext,
    LogEmitter,
    LogStatus,
    TransitionPayload,
    WorkflowLog,
    WorkflowLogCategory,
    WorkflowLogSink,
)
from .workflow_types import (
    ConflictCheckResult,
    PlanStatus,
    ResourceContext,
    ScheduleProposal,
    StructuralError,
    StructuralErrorCode,
    TransitionResult,
    WorkflowApproval,
    WorkflowAuditResult,
    WorkflowPlan,
    WorkflowRequest,
    WorkflowTask,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkflowState:
    """Aggregate output of one pipeline run."""
    state_id: str
    created_at: datetime
    request: WorkflowRequest
    generated_tasks: Tuple[WorkflowTask, ...]
    task_issues: Tuple[str, ...] = ()
    schedule_proposal: Optional[ScheduleProposal] = None
    conflict_check_result: Optional[ConflictCheckResult] = None
    workflow_plan: Optional[WorkflowPlan] = None
    audit_result: Optional[WorkflowAuditResult] = None
    submission: Optional[TransitionResult] = None
    error: Optional[StructuralError] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state_id": self.state_id,
            "created_at": self.created_at.isoformat(),
            "request_id": self.request.request_id,
            "generated_tasks": [t.to_dict() for t in self.generated_tasks],
            "task_issues": list(self.task_issues),
            "conflict_check_result": self.conflict_check_result.to_dict() if self.conflict_check_result else None,
            "workflow_plan": self.workflow_plan.to_dict() if self.workflow_plan else None,
            "audit_result": self.audit_result.to_dict() if self.audit_result else None,
            "submitted": bool(self.submission and self.submission.success),
            "submission_message": self.submission.message if self.submission else None,
            "error": self.error.to_dict() if self.error else None,
        }


@dataclass
class PlanRecord:
    plan: WorkflowPlan
    conflict_result: Optional[ConflictCheckResult] = None
    audit_result: Optional[WorkflowAuditResult] = None
    approvals: List[WorkflowApproval] = field(default_factory=list)


class WorkflowService:
    """
    Orchestrates the engines and keeps the plan registry.

    Uso:
        service = get_workflow_service()
        state = service.run_pipeline(request)
        service.approve(state.workflow_plan.plan_id, "reviewer-1", "ok")
    """

    def __init__(
        self,
        thresholds: Optional[WorkflowThresholds] = None,
        id_generator: Optional[IdGenerator] = None,
        clock: Optional[Clock] = None,
        log: Optional[WorkflowLogSink] = None,
    ):
        self.thresholds = thresholds or WorkflowConfig.get_thresholds()
        self.id_generator = id_generator or UuidIdGenerator()
        self.clock = clock or utc_now
        self.log = log if log is not None else WorkflowLog()

        shared = dict(id_generator=self.id_generator, clock=self.clock, log_sink=self.log)
        self.task_generator = TaskGenerator(thresholds=self.thresholds, **shared)
        self.schedule_builder = ScheduleBuilder(thresholds=self.thresholds, **shared)
        self.conflict_auditor = ConflictAuditor(thresholds=self.thresholds, **shared)
        self.plan_assembler = PlanAssembler(thresholds=self.thresholds, **shared)
        self.policy_auditor = PolicyAuditor(thresholds=self.thresholds, **shared)
        self.approval_manager = ApprovalManager(**shared)
        self._emitter = LogEmitter(self.log, self.id_generator, self.clock, source="workflow-service")

        self._records: Dict[str, PlanRecord] = {}
        self._lock = threading.RLock()
        self.stats = {"pipelines_run": 0, "plans_submitted": 0, "plans_blocked": 0}

    # ═══════════════════════════════════════════════════════════════════════
    # PIPELINE
    # ═══════════════════════════════════════════════════════════════════════

    def run_pipeline(
        self,
        request: WorkflowRequest,
        context: Optional[ResourceContext] = None,
        grouping: Grouping = None,
        auto_submit: bool = True,
    ) -> WorkflowState:
        state_id = self.id_generator.next_id("state")
        self.stats["pipelines_run"] += 1

        tasks = self.task_generator.generate(request)
        if not tasks:
            return WorkflowState(
                state_id=state_id,
                created_at=self.clock(),
                request=request,
                generated_tasks=(),
                error=StructuralError(StructuralErrorCode.INVALID_REQUEST, "Request produced no tasks"),
            )
        issues = self.task_generator.validate_tasks(tasks, request)

        proposal = self.schedule_builder.build(tasks, request, context)
        conflicts = self.conflict_auditor.check_conflicts(
            proposal.scheduled_tasks, tasks, request, proposal_id=proposal.proposal_id
        )
        plan = self.plan_assembler.assemble(proposal, conflicts, tasks, request, grouping)
        audit = self.policy_auditor.run_audit(plan, prior_plan=self.latest_accepted_plan(request.request_id))

        submission = None
        if auto_submit:
            submission = self.approval_manager.submit(plan, conflicts)
            if submission.success:
                plan = submission.plan
                self.stats["plans_submitted"] += 1
            else:
                self.stats["plans_blocked"] += 1

        with self._lock:
            self._records[plan.plan_id] = PlanRecord(plan=plan, conflict_result=conflicts, audit_result=audit)

        logger.info(
            f"Pipeline {state_id}: plan {plan.plan_id} status={plan.status.value} "
            f"conflicts={conflicts.decision.value} audit={audit.decision.value}"
        )
        return WorkflowState(
            state_id=state_id,
            created_at=self.clock(),
            request=request,
            generated_tasks=tuple(tasks),
            task_issues=tuple(issues),
            schedule_proposal=proposal,
            conflict_check_result=conflicts,
            workflow_plan=plan,
            audit_result=audit,
            submission=submission,
            error=proposal.structural_errors[0] if proposal.structural_errors else None,
        )

    # ═══════════════════════════════════════════════════════════════════════
    # LIFECYCLE COMMANDS
    # ═══════════════════════════════════════════════════════════════════════

    def submit(self, plan_id: str, user_id: Optional[str] = None) -> TransitionResult:
        with self._lock:
            record = self._lookup(plan_id, "submit", WorkflowLogCategory.APPROVAL, user_id)
            if isinstance(record, TransitionResult):
                return record
            result = self.approval_manager.submit(record.plan, record.conflict_result)
            return self._store(record, result)

    def approve(
        self,
        plan_id: str,
        reviewer_id: str,
        comments: str = "",
        conditions: Sequence[str] = (),
    ) -> TransitionResult:
        with self._lock:
            record = self._lookup(plan_id, "approve", WorkflowLogCategory.APPROVAL, reviewer_id)
            if isinstance(record, TransitionResult):
                return record
            result = self.approval_manager.approve(
                record.plan, reviewer_id, comments, record.audit_result, conditions
            )
            return self._store(record, result)

    def reject(self, plan_id: str, reviewer_id: str, reason: str) -> TransitionResult:
        with self._lock:
            record = self._lookup(plan_id, "reject", WorkflowLogCategory.REJECTION, reviewer_id)
            if isinstance(record, TransitionResult):
                return record
            result = self.approval_manager.reject(record.plan, reviewer_id, reason)
            return self._store(record, result)

    def activate(self, plan_id: str, user_id: Optional[str] = None) -> TransitionResult:
        with self._lock:
            record = self._lookup(plan_id, "activate", WorkflowLogCategory.EXECUTION, user_id)
            if isinstance(record, TransitionResult):
                return record
            result = self.approval_manager.activate(record.plan, record.audit_result, actor=user_id)
            return self._store(record, result)

    def complete(self, plan_id: str, user_id: Optional[str] = None) -> TransitionResult:
        with self._lock:
            record = self._lookup(plan_id, "complete", WorkflowLogCategory.EXECUTION, user_id)
            if isinstance(record, TransitionResult):
                return record
            result = self.approval_manager.complete(record.plan, record.audit_result, actor=user_id)
            return self._store(record, result)

    def rollback(self, plan_id: str, reason: str, user_id: Optional[str] = None) -> TransitionResult:
        """
        Rolls the plan back through the ApprovalManager (one rollback entry).

        When the plan reverts to a draft revision, that revision is audited
        again by the PolicyAuditor, a separate operation with its own audit
        entry. A successful revert therefore logs rollback then audit.
        """
        with self._lock:
            record = self._lookup(plan_id, "rollback", WorkflowLogCategory.ROLLBACK, user_id)
            if isinstance(record, TransitionResult):
                return record
            previous = self._previous_approved(record.plan)
            result = self.approval_manager.rollback(record.plan, reason, user_id, previous_approved=previous)
            self._store(record, result)
            restored = result.restored_plan
            if result.success and restored is not None and restored.plan_id == record.plan.plan_id:
                # Draft revision replaces the rolled-back version under the same plan_id.
                audit = self.policy_auditor.run_audit(restored, self.latest_accepted_plan(restored.request_id))
                self._records[restored.plan_id] = PlanRecord(
                    plan=restored,
                    conflict_result=record.conflict_result,
                    audit_result=audit,
                    approvals=record.approvals,
                )
            return result

    # ═══════════════════════════════════════════════════════════════════════
    # QUERIES (no log entries)
    # ═══════════════════════════════════════════════════════════════════════

    def get_plan(self, plan_id: str) -> Optional[WorkflowPlan]:
        record = self.get_record(plan_id)
        return record.plan if record else None

    def get_record(self, plan_id: str) -> Optional[PlanRecord]:
        with self._lock:
            return self._records.get(plan_id)

    def list_plans(self, status: Optional[PlanStatus] = None) -> List[WorkflowPlan]:
        with self._lock:
            plans = [r.plan for r in self._records.values()]
        return [p for p in plans if status is None or p.status == status]

    def latest_accepted_plan(self, request_id: str) -> Optional[WorkflowPlan]:
        with self._lock:
            accepted = [
                r.plan for r in self._records.values()
                if r.plan.request_id == request_id and r.plan.status in ACCEPTED_STATUSES
            ]
        return max(accepted, key=lambda p: p.approved_at or p.created_at, default=None)

    def get_status(self) -> Dict[str, Any]:
        by_status: Dict[str, int] = {}
        for plan in self.list_plans():
            by_status[plan.status.value] = by_status.get(plan.status.value, 0) + 1
        return {
            "plans": sum(by_status.values()),
            "plans_by_status": by_status,
            "log_entries": len(self.log) if hasattr(self.log, "__len__") else None,
            "stats": dict(self.stats),
            "thresholds": self.thresholds.to_dict(),
        }

    # ───────────────────────────────────────────────────────────────────────

    def _previous_approved(self, plan: WorkflowPlan) -> Optional[WorkflowPlan]:
        candidates = [
            r.plan for r in self._records.values()
            if r.plan.request_id == plan.request_id
            and r.plan.plan_id != plan.plan_id
            and r.plan.status == PlanStatus.APPROVED
        ]
        return max(candidates, key=lambda p: p.approved_at or p.created_at, default=None)

    def _lookup(
        self,
        plan_id: str,
        action: str,
        category: WorkflowLogCategory,
        user_id: Optional[str],
    ):
        record = self._records.get(plan_id)
        if record is not None:
            return record
        error = StructuralError(StructuralErrorCode.UNKNOWN_PLAN, f"Unknown plan {plan_id}", {"plan_id": plan_id})
        self._emitter.emit(
            category,
            TransitionPayload(
                plan_id=plan_id,
                action=action,
                from_status=None,
                to_status=None,
                actor=user_id,
                error_code=error.code.value,
            ),
            LogStatus.FAILURE,
            error.message,
            LogContext(plan_id=plan_id, user_id=user_id),
        )
        return TransitionResult(success=False, plan=None, message=error.message, error=error)

    @staticmethod
    def _store(record: PlanRecord, result: TransitionResult) -> TransitionResult:
        if result.success and result.plan is not None:
            record.plan = result.plan
        if result.approval is not None:
            record.approvals.append(result.approval)
        return result


# ═══════════════════════════════════════════════════════════════════════════════
# SINGLETON
# ═══════════════════════════════════════════════════════════════════════════════

_service_instance: Optional[WorkflowService] = None


def get_workflow_service() -> WorkflowService:
    """Get singleton service."""
    global _service_instance
    if _service_instance is None:
        _service_instance = WorkflowService()
    return _service_instance


def reset_workflow_service() -> None:
    """Reset singleton."""
    global _service_instance
    _service_instance = None
