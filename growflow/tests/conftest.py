"""
Fixtures comuns para os testes do motor de workflow.
"""
import pytest
from fastapi.testclient import TestClient

from growflow.workflow.approval_manager import ApprovalManager
from growflow.workflow.conflict_auditor import ConflictAuditor
from growflow.workflow.identifiers import FixedClock, SequentialIdGenerator
from growflow.workflow.plan_assembler import PlanAssembler
from growflow.workflow.policy_auditor import PolicyAuditor
from growflow.workflow.schedule_builder import ScheduleBuilder
from growflow.workflow.task_generator import TaskGenerator
from growflow.workflow.workflow_config import WorkflowConfig, WorkflowThresholds
from growflow.workflow.workflow_log import WorkflowLog
from growflow.workflow.workflow_service import WorkflowService, reset_workflow_service

from growflow.tests.builders import NOW, make_request


@pytest.fixture
def ids():
    return SequentialIdGenerator()


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def log():
    return WorkflowLog()


@pytest.fixture
def thresholds():
    return WorkflowThresholds()


@pytest.fixture
def components(ids, clock, log, thresholds):
    shared = dict(id_generator=ids, clock=clock, log_sink=log)
    return {
        "generator": TaskGenerator(thresholds=thresholds, **shared),
        "builder": ScheduleBuilder(thresholds=thresholds, **shared),
        "auditor": ConflictAuditor(thresholds=thresholds, **shared),
        "assembler": PlanAssembler(thresholds=thresholds, **shared),
        "policy": PolicyAuditor(thresholds=thresholds, **shared),
        "approvals": ApprovalManager(**shared),
    }


@pytest.fixture
def request_oyster():
    """Oyster, 100kg, one facility, 24h labor/day."""
    return make_request()


@pytest.fixture
def pipeline(components):
    """Runs generate → build → check → assemble → audit for a request."""

    def run(request, prior_plan=None):
        tasks = components["generator"].generate(request)
        proposal = components["builder"].build(tasks, request)
        conflicts = components["auditor"].check_conflicts(
            proposal.scheduled_tasks, tasks, request, proposal_id=proposal.proposal_id
        )
        plan = components["assembler"].assemble(proposal, conflicts, tasks, request)
        audit = components["policy"].run_audit(plan, prior_plan=prior_plan)
        return tasks, proposal, conflicts, plan, audit

    return run


@pytest.fixture
def service(ids, clock, log, thresholds):
    return WorkflowService(thresholds=thresholds, id_generator=ids, clock=clock, log=log)


@pytest.fixture
def test_client():
    """Cliente de teste FastAPI com serviço limpo."""
    from growflow.api import app

    reset_workflow_service()
    WorkflowConfig.reset()
    yield TestClient(app)
    reset_workflow_service()
