"""
════════════════════════════════════════════════════════════════════════════════════════════════════
APPROVAL MANAGER - Plan Lifecycle State Machine
════════════════════════════════════════════════════════════════════════════════════════════════════

    draft ──submit──▶ pending-approval ──approve──▶ approved ──activate──▶ active ──complete──▶ completed
                              │
                              └──reject──▶ rejected

    rollback: any state except completed (and rolled-back itself) ──▶ rolled-back

Transitions are total functions: they take the current plan and return a
TransitionResult carrying a new plan value. Failed transitions leave the
plan untouched and carry a StructuralError. Every call emits exactly one
log entry.

Transitions on the same plan are not synchronized here; callers serialize
them (e.g. a lock keyed by plan_id).
"""

from __future__ import annotations

import logging
from typing import Dict, Optional, Sequence, Set

from .identifiers import Clock, IdGenerator, UuidIdGenerator, utc_now
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
    ApprovalDecision,
    ConflictCheckResult,
    Decision,
    PlanStatus,
    StructuralError,
    StructuralErrorCode,
    TransitionResult,
    WorkflowApproval,
    WorkflowAuditResult,
    WorkflowPlan,
)

logger = logging.getLogger(__name__)


VALID_TRANSITIONS: Dict[PlanStatus, Set[PlanStatus]] = {
    PlanStatus.DRAFT: {PlanStatus.PENDING_APPROVAL, PlanStatus.ROLLED_BACK},
    PlanStatus.PENDING_APPROVAL: {PlanStatus.APPROVED, PlanStatus.REJECTED, PlanStatus.ROLLED_BACK},
    PlanStatus.APPROVED: {PlanStatus.ACTIVE, PlanStatus.ROLLED_BACK},
    PlanStatus.ACTIVE: {PlanStatus.COMPLETED, PlanStatus.ROLLED_BACK},
    PlanStatus.REJECTED: {PlanStatus.ROLLED_BACK},
    PlanStatus.COMPLETED: set(),
    PlanStatus.ROLLED_BACK: set(),
}


def can_transition(current: PlanStatus, target: PlanStatus) -> bool:
    return target in VALID_TRANSITIONS.get(current, set())


class ApprovalManager:
    """Drives WorkflowPlans through their lifecycle."""

    def __init__(
        self,
        id_generator: Optional[IdGenerator] = None,
        clock: Optional[Clock] = None,
        log_sink: Optional[WorkflowLogSink] = None,
    ):
        self.id_generator = id_generator or UuidIdGenerator()
        self.clock = clock or utc_now
        self._log = LogEmitter(
            log_sink if log_sink is not None else WorkflowLog(),
            self.id_generator,
            self.clock,
            source="approval-manager",
        )

    # ═══════════════════════════════════════════════════════════════════════
    # TRANSITIONS
    # ═══════════════════════════════════════════════════════════════════════

    def submit(self, plan: WorkflowPlan, conflict_result: Optional[ConflictCheckResult]) -> TransitionResult:
        """draft → pending-approval, unless the latest conflict check blocks."""
        category = WorkflowLogCategory.APPROVAL
        target = PlanStatus.PENDING_APPROVAL

        error = self._check_transition(plan, target)
        if error is None and conflict_result is None:
            error = StructuralError(StructuralErrorCode.BLOCKED_BY_CONFLICTS, "No conflict check for this plan")
        if error is None and conflict_result.result_id != plan.conflict_result_id:
            error = StructuralError(
                StructuralErrorCode.STALE_RESULT,
                f"Conflict result {conflict_result.result_id} does not belong to plan {plan.plan_id}",
            )
        if error is None and conflict_result.decision == Decision.BLOCK:
            error = StructuralError(
                StructuralErrorCode.BLOCKED_BY_CONFLICTS,
                f"Conflict check blocks submission: {conflict_result.rationale}",
            )
        if error is not None:
            return self._fail(plan, "submit", category, target, error, actor=None)

        updated = plan.with_changes(status=target, updated_at=self.clock())
        return self._succeed(plan, updated, "submit", category, f"Plan {plan.plan_id} submitted for approval")

    def approve(
        self,
        plan: WorkflowPlan,
        reviewer_id: str,
        comments: str,
        audit_result: Optional[WorkflowAuditResult],
        conditions: Sequence[str] = (),
    ) -> TransitionResult:
        """pending-approval → approved. Requires a reviewer and a non-blocking audit."""
        category = WorkflowLogCategory.APPROVAL
        target = PlanStatus.APPROVED

        error = self._check_transition(plan, target)
        if error is None and not (reviewer_id or "").strip():
            error = StructuralError(StructuralErrorCode.MISSING_REVIEWER, "Approval requires a reviewer identity")
        if error is None:
            error = self._check_audit(plan, audit_result, required=True)
        if error is not None:
            return self._fail(plan, "approve", category, target, error, actor=reviewer_id)

        now = self.clock()
        caveats = list(conditions)
        if audit_result.decision == Decision.WARN:
            caveats.append(f"Audit warnings acknowledged: {audit_result.rationale}")
        approval = WorkflowApproval(
            approval_id=self.id_generator.next_id("approval"),
            plan_id=plan.plan_id,
            reviewed_at=now,
            reviewed_by=reviewer_id,
            decision=ApprovalDecision.APPROVED,
            comments=comments,
            approval_rationale=audit_result.rationale,
            conditional_approvals=tuple(caveats),
        )
        updated = plan.with_changes(status=target, approval_by=reviewer_id, approved_at=now, updated_at=now)
        return self._succeed(
            plan, updated, "approve", category,
            f"Plan {plan.plan_id} approved by {reviewer_id}"
            + (" with caveats" if audit_result.decision == Decision.WARN else ""),
            actor=reviewer_id, approval=approval,
        )

    def reject(self, plan: WorkflowPlan, reviewer_id: str, reason: str) -> TransitionResult:
        """pending-approval → rejected. Requires a non-empty reason."""
        category = WorkflowLogCategory.REJECTION
        target = PlanStatus.REJECTED

        error = self._check_transition(plan, target)
        if error is None and not (reviewer_id or "").strip():
            error = StructuralError(StructuralErrorCode.MISSING_REVIEWER, "Rejection requires a reviewer identity")
        if error is None and not (reason or "").strip():
            error = StructuralError(StructuralErrorCode.MISSING_REASON, "Rejection requires a reason")
        if error is not None:
            return self._fail(plan, "reject", category, target, error, actor=reviewer_id, reason=reason)

        now = self.clock()
        approval = WorkflowApproval(
            approval_id=self.id_generator.next_id("approval"),
            plan_id=plan.plan_id,
            reviewed_at=now,
            reviewed_by=reviewer_id,
            decision=ApprovalDecision.REJECTED,
            comments=reason,
            approval_rationale=reason,
        )
        updated = plan.with_changes(status=target, rejection_reason=reason, updated_at=now)
        return self._succeed(
            plan, updated, "reject", category, f"Plan {plan.plan_id} rejected by {reviewer_id}: {reason}",
            actor=reviewer_id, approval=approval, reason=reason,
        )

    def activate(
        self,
        plan: WorkflowPlan,
        audit_result: Optional[WorkflowAuditResult] = None,
        actor: Optional[str] = None,
    ) -> TransitionResult:
        """approved → active (execution started by an external collaborator)."""
        return self._execution_step(plan, PlanStatus.ACTIVE, "activate", audit_result, actor)

    def complete(
        self,
        plan: WorkflowPlan,
        audit_result: Optional[WorkflowAuditResult] = None,
        actor: Optional[str] = None,
    ) -> TransitionResult:
        """active → completed."""
        return self._execution_step(plan, PlanStatus.COMPLETED, "complete", audit_result, actor)

    def rollback(
        self,
        plan: WorkflowPlan,
        reason: str,
        user_id: Optional[str] = None,
        previous_approved: Optional[WorkflowPlan] = None,
    ) -> TransitionResult:
        """
        Any non-terminal state → rolled-back.

        ``restored_plan`` is the previously approved plan of the same request
        when one is given, otherwise a new draft version of this plan.
        """
        category = WorkflowLogCategory.ROLLBACK
        target = PlanStatus.ROLLED_BACK

        error = self._check_transition(plan, target)
        if error is None and not (reason or "").strip():
            error = StructuralError(StructuralErrorCode.MISSING_REASON, "Rollback requires a reason")
        if error is not None:
            return self._fail(plan, "rollback", category, target, error, actor=user_id, reason=reason)

        now = self.clock()
        rolled_back = plan.with_changes(status=target, updated_at=now)
        if (
            previous_approved is not None
            and previous_approved.plan_id != plan.plan_id
            and previous_approved.request_id == plan.request_id
            and previous_approved.status == PlanStatus.APPROVED
        ):
            restored = previous_approved
            message = f"Plan {plan.plan_id} rolled back; restored approved plan {restored.plan_id}"
        else:
            restored = plan.with_changes(
                status=PlanStatus.DRAFT,
                version=plan.version + 1,
                approval_by=None,
                approved_at=None,
                rejection_reason=None,
                updated_at=now,
            )
            message = f"Plan {plan.plan_id} rolled back; reverted to draft v{restored.version}"

        return self._succeed(
            plan, rolled_back, "rollback", category, message,
            actor=user_id, reason=reason, restored_plan=restored,
        )

    # ───────────────────────────────────────────────────────────────────────

    def _execution_step(
        self,
        plan: WorkflowPlan,
        target: PlanStatus,
        action: str,
        audit_result: Optional[WorkflowAuditResult],
        actor: Optional[str],
    ) -> TransitionResult:
        category = WorkflowLogCategory.EXECUTION
        error = self._check_transition(plan, target)
        if error is None:
            error = self._check_audit(plan, audit_result, required=False)
        if error is not None:
            return self._fail(plan, action, category, target, error, actor=actor)

        updated = plan.with_changes(status=target, updated_at=self.clock())
        return self._succeed(plan, updated, action, category, f"Plan {plan.plan_id} {target.value}", actor=actor)

    @staticmethod
    def _check_transition(plan: WorkflowPlan, target: PlanStatus) -> Optional[StructuralError]:
        if can_transition(plan.status, target):
            return None
        return StructuralError(
            StructuralErrorCode.INVALID_TRANSITION,
            f"Cannot move plan {plan.plan_id} from {plan.status.value} to {target.value}",
            {"from": plan.status.value, "to": target.value},
        )

    @staticmethod
    def _check_audit(
        plan: WorkflowPlan,
        audit_result: Optional[WorkflowAuditResult],
        required: bool,
    ) -> Optional[StructuralError]:
        if audit_result is None:
            if required:
                return StructuralError(StructuralErrorCode.MISSING_AUDIT, f"Plan {plan.plan_id} has not been audited")
            return None
        if audit_result.plan_id != plan.plan_id or audit_result.plan_version != plan.version:
            return StructuralError(
                StructuralErrorCode.STALE_RESULT,
                f"Audit {audit_result.audit_id} does not belong to plan {plan.plan_id} v{plan.version}",
            )
        if audit_result.decision == Decision.BLOCK:
            return StructuralError(
                StructuralErrorCode.BLOCKED_BY_AUDIT,
                f"Latest audit blocks this plan: {audit_result.rationale}",
            )
        return None

    def _succeed(
        self,
        before: WorkflowPlan,
        after: WorkflowPlan,
        action: str,
        category: WorkflowLogCategory,
        message: str,
        actor: Optional[str] = None,
        approval: Optional[WorkflowApproval] = None,
        reason: Optional[str] = None,
        restored_plan: Optional[WorkflowPlan] = None,
    ) -> TransitionResult:
        self._log.emit(
            category,
            TransitionPayload(
                plan_id=before.plan_id,
                action=action,
                from_status=before.status.value,
                to_status=after.status.value,
                actor=actor,
                reason=reason,
            ),
            LogStatus.SUCCESS,
            message,
            LogContext(plan_id=before.plan_id, proposal_id=before.schedule_proposal.proposal_id,
                       user_id=actor, request_id=before.request_id),
        )
        logger.info(message)
        return TransitionResult(
            success=True, plan=after, message=message, approval=approval, restored_plan=restored_plan
        )

    def _fail(
        self,
        plan: WorkflowPlan,
        action: str,
        category: WorkflowLogCategory,
        target: PlanStatus,
        error: StructuralError,
        actor: Optional[str],
        reason: Optional[str] = None,
    ) -> TransitionResult:
        self._log.emit(
            category,
            TransitionPayload(
                plan_id=plan.plan_id,
                action=action,
                from_status=plan.status.value,
                to_status=target.value,
                actor=actor,
                reason=reason,
                error_code=error.code.value,
            ),
            LogStatus.FAILURE,
            error.message,
            LogContext(plan_id=plan.plan_id, proposal_id=plan.schedule_proposal.proposal_id,
                       user_id=actor, request_id=plan.request_id),
        )
        return TransitionResult(success=False, plan=plan, message=error.message, error=error)
