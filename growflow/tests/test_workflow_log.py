"""
Testes para WorkflowLog - entradas tipadas, filtros e exportação
"""
import json
import logging

import pytest

from growflow.workflow.identifiers import FixedClock, SequentialIdGenerator
from growflow.workflow.workflow_log import (
    AuditPayload,
    GenerationPayload,
    LogContext,
    LogEmitter,
    LogStatus,
    TransitionPayload,
    WorkflowLog,
    WorkflowLogCategory,
    WorkflowLogEntry,
)

from growflow.tests.builders import NOW


def entry(category, payload, status=LogStatus.SUCCESS, plan_id=None, entry_id="log-1"):
    return WorkflowLogEntry(
        entry_id=entry_id,
        timestamp=NOW,
        category=category,
        source="test",
        payload=payload,
        status=status,
        message="msg",
        context=LogContext(plan_id=plan_id),
    )


def transition(plan_id="plan-1", action="approve"):
    return TransitionPayload(plan_id=plan_id, action=action, from_status="pending-approval", to_status="approved")


class TestEntryPayloads:
    """Cada payload só é válido para as suas categorias."""

    def test_matching_category(self):
        e = entry(WorkflowLogCategory.WORKFLOW_GENERATION, GenerationPayload("req-1", 3))
        assert e.to_dict()["payload"]["task_count"] == 3

    @pytest.mark.parametrize("category", [
        WorkflowLogCategory.APPROVAL,
        WorkflowLogCategory.REJECTION,
        WorkflowLogCategory.EXECUTION,
        WorkflowLogCategory.ROLLBACK,
    ])
    def test_transition_categories(self, category):
        assert entry(category, transition()).category == category

    def test_mismatched_category_rejected(self):
        with pytest.raises(ValueError):
            entry(WorkflowLogCategory.AUDIT, GenerationPayload("req-1", 3))

    def test_to_dict(self):
        data = entry(WorkflowLogCategory.AUDIT, AuditPayload("audit-1", "plan-1", "allow"), plan_id="plan-1").to_dict()

        assert data["category"] == "audit"
        assert data["status"] == "success"
        assert data["context"]["plan_id"] == "plan-1"
        assert data["timestamp"] == NOW.isoformat()


class TestWorkflowLog:
    @pytest.fixture
    def filled(self):
        log = WorkflowLog()
        log.record(entry(WorkflowLogCategory.APPROVAL, transition("plan-1"), plan_id="plan-1", entry_id="log-1"))
        log.record(entry(WorkflowLogCategory.APPROVAL, transition("plan-2"), LogStatus.FAILURE, "plan-2", "log-2"))
        log.record(entry(WorkflowLogCategory.ROLLBACK, transition("plan-1", "rollback"), plan_id="plan-1",
                         entry_id="log-3"))
        return log

    def test_filters(self, filled):
        assert [e.entry_id for e in filled.entries(category=WorkflowLogCategory.APPROVAL)] == ["log-1", "log-2"]
        assert [e.entry_id for e in filled.entries(status=LogStatus.FAILURE)] == ["log-2"]
        assert [e.entry_id for e in filled.entries(plan_id="plan-1")] == ["log-1", "log-3"]
        assert [e.entry_id for e in filled.entries(limit=1)] == ["log-3"]

    def test_bounded(self):
        log = WorkflowLog(max_entries=2)
        for i in range(3):
            log.record(entry(WorkflowLogCategory.APPROVAL, transition(), entry_id=f"log-{i}"))

        assert len(log) == 2
        assert [e.entry_id for e in log.entries()] == ["log-1", "log-2"]

    def test_last_and_clear(self, filled):
        assert filled.last().entry_id == "log-3"
        filled.clear()
        assert len(filled) == 0
        assert filled.last() is None

    def test_exports(self, filled):
        df = filled.to_dataframe()
        assert len(df) == 3
        assert list(df["status"]) == ["success", "failure", "success"]

        exported = json.loads(filled.export_json())
        assert [e["entry_id"] for e in exported] == ["log-1", "log-2", "log-3"]


class TestLogEmitter:
    def test_emit_records_entry(self):
        log = WorkflowLog()
        emitter = LogEmitter(log, SequentialIdGenerator(), FixedClock(NOW), source="unit")

        emitted = emitter.emit(WorkflowLogCategory.APPROVAL, transition(), LogStatus.SUCCESS, "done")

        assert log.last() is emitted
        assert emitted.entry_id == "log-000001"
        assert emitted.source == "unit"
        assert emitted.context == LogContext()

    def test_failure_logged_as_warning(self, caplog):
        emitter = LogEmitter(WorkflowLog(), SequentialIdGenerator(), FixedClock(NOW), source="unit")

        with caplog.at_level(logging.WARNING, logger="growflow.workflow.workflow_log"):
            emitter.emit(WorkflowLogCategory.APPROVAL, transition(), LogStatus.FAILURE, "boom")

        assert "boom" in caplog.text
