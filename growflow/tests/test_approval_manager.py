"""
Testes para ApprovalManager - máquina de estados do ciclo de vida do plano
"""
from dataclasses import replace

import pytest

from growflow.workflow.approval_manager import VALID_TRANSITIONS, can_transition
from growflow.workflow.workflow_log import LogStatus, WorkflowLogCategory
from growflow.workflow.workflow_types import (
    ApprovalDecision,
    Decision,
    PlanStatus,
    StructuralErrorCode,
)

from growflow.tests.builders import NOW, make_request


@pytest.fixture
def manager(components):
    return components["approvals"]


@pytest.fixture
def drafted(pipeline, request_oyster):
    _, _, conflicts, plan, audit = pipeline(request_oyster)
    return plan, conflicts, audit


@pytest.fixture
def pending(manager, drafted):
    plan, conflicts, audit = drafted
    return manager.submit(plan, conflicts).plan, audit


@pytest.fixture
def approved(manager, pending):
    plan, audit = pending
    return manager.approve(plan, "reviewer-1", "ok", audit).plan, audit


class TestTransitionTable:
    def test_terminal_states(self):
        assert VALID_TRANSITIONS[PlanStatus.COMPLETED] == set()
        assert VALID_TRANSITIONS[PlanStatus.ROLLED_BACK] == set()

    def test_every_status_listed(self):
        assert set(VALID_TRANSITIONS) == set(PlanStatus)

    def test_can_transition(self):
        assert can_transition(PlanStatus.DRAFT, PlanStatus.PENDING_APPROVAL)
        assert not can_transition(PlanStatus.DRAFT, PlanStatus.APPROVED)
        assert can_transition(PlanStatus.REJECTED, PlanStatus.ROLLED_BACK)
        assert not can_transition(PlanStatus.COMPLETED, PlanStatus.ROLLED_BACK)


class TestSubmit:
    """draft → pending-approval."""

    def test_success(self, manager, drafted, log):
        plan, conflicts, _ = drafted
        before = len(log)
        result = manager.submit(plan, conflicts)

        assert result.success
        assert result.plan.status == PlanStatus.PENDING_APPROVAL
        assert result.plan.updated_at == NOW
        assert plan.status == PlanStatus.DRAFT
        assert len(log) == before + 1
        assert log.last().category == WorkflowLogCategory.APPROVAL
        assert log.last().payload.to_status == "pending-approval"

    def test_blocked_by_conflicts(self, manager, drafted):
        plan, conflicts, _ = drafted
        blocked = replace(conflicts, decision=Decision.BLOCK)
        result = manager.submit(plan, blocked)

        assert not result.success
        assert result.error.code == StructuralErrorCode.BLOCKED_BY_CONFLICTS
        assert result.plan is plan

    def test_missing_conflict_check(self, manager, drafted):
        plan, _, _ = drafted
        result = manager.submit(plan, None)
        assert result.error.code == StructuralErrorCode.BLOCKED_BY_CONFLICTS

    def test_stale_conflict_check(self, manager, drafted):
        plan, conflicts, _ = drafted
        result = manager.submit(plan, replace(conflicts, result_id="conflict-check-other"))
        assert result.error.code == StructuralErrorCode.STALE_RESULT

    def test_only_from_draft(self, manager, pending, drafted):
        plan, _ = pending
        _, conflicts, _ = drafted
        result = manager.submit(plan, conflicts)
        assert result.error.code == StructuralErrorCode.INVALID_TRANSITION

    def test_blocked_pipeline_stays_draft(self, manager, pipeline):
        _, _, conflicts, plan, _ = pipeline(make_request(labor=1))
        result = manager.submit(plan, conflicts)

        assert conflicts.decision == Decision.BLOCK
        assert not result.success
        assert result.plan.status == PlanStatus.DRAFT


class TestApprove:
    """pending-approval → approved."""

    def test_success(self, manager, pending):
        plan, audit = pending
        result = manager.approve(plan, "reviewer-1", "looks good", audit)

        assert result.success
        assert result.plan.status == PlanStatus.APPROVED
        assert result.plan.approval_by == "reviewer-1"
        assert result.plan.approved_at == NOW
        assert result.approval.decision == ApprovalDecision.APPROVED
        assert result.approval.reviewed_by == "reviewer-1"
        assert result.approval.comments == "looks good"
        assert result.approval.conditional_approvals == ()

    def test_conditions_kept(self, manager, pending):
        plan, audit = pending
        result = manager.approve(plan, "reviewer-1", "", audit, conditions=["Monitor humidity daily"])
        assert result.approval.conditional_approvals == ("Monitor humidity daily",)

    def test_warn_audit_adds_caveat(self, manager, pipeline):
        _, _, conflicts, plan, audit = pipeline(make_request(labor=8))
        plan = manager.submit(plan, conflicts).plan
        result = manager.approve(plan, "reviewer-1", "", audit)

        assert audit.decision == Decision.WARN
        assert result.success
        assert result.approval.conditional_approvals[-1].startswith("Audit warnings acknowledged:")
        assert result.message.endswith("with caveats")

    def test_blocking_audit_refused(self, manager, pipeline, log):
        """Cenário 6: auditoria com block impede aprovação e regista falha."""
        _, _, conflicts, plan, audit = pipeline(make_request(substrate_limit=10))
        plan = manager.submit(plan, conflicts).plan
        before = len(log)

        result = manager.approve(plan, "reviewer-1", "", audit)

        assert audit.decision == Decision.BLOCK
        assert not result.success
        assert result.error.code == StructuralErrorCode.BLOCKED_BY_AUDIT
        assert result.plan.status == PlanStatus.PENDING_APPROVAL
        assert result.plan.approval_by is None
        assert len(log) == before + 1
        assert log.last().status == LogStatus.FAILURE
        assert log.last().payload.error_code == "blocked-by-audit"

    @pytest.mark.parametrize("reviewer", ["", "   "])
    def test_missing_reviewer(self, manager, pending, reviewer):
        plan, audit = pending
        result = manager.approve(plan, reviewer, "", audit)
        assert result.error.code == StructuralErrorCode.MISSING_REVIEWER

    def test_missing_audit(self, manager, pending):
        plan, _ = pending
        result = manager.approve(plan, "reviewer-1", "", None)
        assert result.error.code == StructuralErrorCode.MISSING_AUDIT

    def test_audit_of_other_plan(self, manager, pending):
        plan, audit = pending
        result = manager.approve(plan, "reviewer-1", "", replace(audit, plan_id="plan-other"))
        assert result.error.code == StructuralErrorCode.STALE_RESULT

    def test_audit_of_previous_version(self, manager, components, drafted):
        """Auditoria da v1 não serve para aprovar a revisão v2."""
        plan, conflicts, audit_v1 = drafted
        revision = manager.rollback(plan, "Adjust labor", user_id="manager-1").restored_plan
        pending_v2 = manager.submit(revision, conflicts).plan

        result = manager.approve(pending_v2, "reviewer-1", "ok", audit_v1)

        assert pending_v2.version == 2
        assert result.error.code == StructuralErrorCode.STALE_RESULT
        assert result.plan.status == PlanStatus.PENDING_APPROVAL

        audit_v2 = components["policy"].run_audit(pending_v2)
        assert manager.approve(pending_v2, "reviewer-1", "ok", audit_v2).success

    def test_draft_cannot_be_approved(self, manager, drafted):
        plan, _, audit = drafted
        result = manager.approve(plan, "reviewer-1", "", audit)
        assert result.error.code == StructuralErrorCode.INVALID_TRANSITION


class TestReject:
    def test_success(self, manager, pending, log):
        plan, _ = pending
        result = manager.reject(plan, "reviewer-2", "Labor too tight")

        assert result.plan.status == PlanStatus.REJECTED
        assert result.plan.rejection_reason == "Labor too tight"
        assert result.approval.decision == ApprovalDecision.REJECTED
        assert log.last().category == WorkflowLogCategory.REJECTION

    def test_reason_required(self, manager, pending):
        plan, _ = pending
        result = manager.reject(plan, "reviewer-2", " ")

        assert result.error.code == StructuralErrorCode.MISSING_REASON
        assert result.plan.status == PlanStatus.PENDING_APPROVAL

    def test_reviewer_required(self, manager, pending):
        plan, _ = pending
        assert manager.reject(plan, "", "reason").error.code == StructuralErrorCode.MISSING_REVIEWER


class TestExecution:
    """approved → active → completed."""

    def test_activate_and_complete(self, manager, approved, log):
        plan, audit = approved
        active = manager.activate(plan, audit, actor="operator").plan
        completed = manager.complete(active, audit, actor="operator").plan

        assert active.status == PlanStatus.ACTIVE
        assert completed.status == PlanStatus.COMPLETED
        assert log.last().category == WorkflowLogCategory.EXECUTION

    def test_complete_requires_active(self, manager, approved):
        plan, _ = approved
        assert manager.complete(plan).error.code == StructuralErrorCode.INVALID_TRANSITION

    def test_activate_requires_approval(self, manager, pending):
        plan, _ = pending
        assert manager.activate(plan).error.code == StructuralErrorCode.INVALID_TRANSITION


class TestRollback:
    def test_reverts_to_new_draft(self, manager, approved, log):
        plan, _ = approved
        result = manager.rollback(plan, "Contamination found", user_id="manager-1")

        assert result.success
        assert result.plan.status == PlanStatus.ROLLED_BACK
        restored = result.restored_plan
        assert restored.plan_id == plan.plan_id
        assert restored.status == PlanStatus.DRAFT
        assert restored.version == 2
        assert restored.approval_by is None and restored.approved_at is None
        assert log.last().category == WorkflowLogCategory.ROLLBACK
        assert log.last().payload.reason == "Contamination found"

    def test_restores_previous_approved(self, manager, approved):
        plan, _ = approved
        previous = plan.with_changes(plan_id="plan-previous")
        active = manager.activate(plan).plan

        result = manager.rollback(active, "Yield dropped", previous_approved=previous)
        assert result.restored_plan is previous

    def test_previous_of_other_request_ignored(self, manager, approved, request_oyster):
        plan, _ = approved
        previous = plan.with_changes(
            plan_id="plan-previous",
            request=request_oyster.model_copy(update={"request_id": "req-other"}),
        )
        result = manager.rollback(plan, "reason", previous_approved=previous)
        assert result.restored_plan.status == PlanStatus.DRAFT

    def test_reason_required(self, manager, approved):
        plan, _ = approved
        assert manager.rollback(plan, "").error.code == StructuralErrorCode.MISSING_REASON

    def test_from_rejected(self, manager, pending):
        plan, _ = pending
        rejected = manager.reject(plan, "reviewer-2", "no").plan
        assert manager.rollback(rejected, "retry").success

    def test_terminal_states(self, manager, approved):
        plan, _ = approved
        completed = manager.complete(manager.activate(plan).plan).plan
        rolled_back = manager.rollback(plan, "reason").plan

        assert manager.rollback(completed, "reason").error.code == StructuralErrorCode.INVALID_TRANSITION
        assert manager.rollback(rolled_back, "reason").error.code == StructuralErrorCode.INVALID_TRANSITION


class TestOneEntryPerCall:
    """Cada chamada, com sucesso ou falha, emite exatamente uma entrada."""

    @pytest.mark.parametrize("call", [
        lambda m, p, a: m.approve(p, "reviewer-1", "", a),
        lambda m, p, a: m.approve(p, "", "", a),
        lambda m, p, a: m.reject(p, "reviewer-1", "reason"),
        lambda m, p, a: m.reject(p, "reviewer-1", ""),
        lambda m, p, a: m.activate(p),
        lambda m, p, a: m.complete(p),
        lambda m, p, a: m.rollback(p, "reason"),
        lambda m, p, a: m.rollback(p, ""),
    ])
    def test_single_entry(self, manager, pending, log, call):
        plan, audit = pending
        before = len(log)
        call(manager, plan, audit)
        assert len(log) == before + 1
