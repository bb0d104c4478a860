"""
Testes para ScheduleBuilder - ordenação, alocação de recursos e métricas
"""
from datetime import date, datetime, timedelta, timezone

import pytest

from growflow.workflow.schedule_builder import distribute_across_rooms, structural_errors
from growflow.workflow.schedule_frame import SCHEDULE_COLUMNS
from growflow.workflow.workflow_log import LogStatus, WorkflowLogCategory
from growflow.workflow.workflow_types import (
    EquipmentWindow,
    LaborWindow,
    ResourceContext,
    SpeciesName,
    StructuralErrorCode,
    TaskPriority,
    WorkflowTaskType as T,
)

from growflow.tests.builders import ORIGIN, make_request, make_task


@pytest.fixture
def base_schedule(components, request_oyster):
    tasks = components["generator"].generate(request_oyster)
    return tasks, components["builder"].build(tasks, request_oyster)


def starts_by_type(proposal):
    return {t.task_type: t for t in proposal.scheduled_tasks}


class TestBaseSchedule:
    """Ciclo de oyster de 100kg numa facility."""

    def test_sequence(self, base_schedule):
        _, proposal = base_schedule

        assert [t.task_type for t in proposal.scheduled_tasks] == [
            T.SUBSTRATE_PREP,
            T.INOCULATION,
            T.INCUBATION_TRANSITION,
            T.FRUITING_TRANSITION,
            T.EQUIPMENT_MAINTENANCE,
            T.MISTING,
            T.HARVEST,
            T.CLEANING,
        ]
        assert [t.sequence_order for t in proposal.scheduled_tasks] == list(range(1, 9))

    def test_placement(self, base_schedule):
        """Deve respeitar lags biológicos e ocupação de equipamento."""
        _, proposal = base_schedule
        tasks = starts_by_type(proposal)

        assert tasks[T.SUBSTRATE_PREP].scheduled_start == ORIGIN
        assert tasks[T.SUBSTRATE_PREP].scheduled_end == datetime(2026, 3, 3, 2, 0)
        assert tasks[T.INOCULATION].scheduled_start == datetime(2026, 3, 3, 7, 30)
        assert tasks[T.INCUBATION_TRANSITION].scheduled_start == datetime(2026, 3, 17, 9, 30)
        assert tasks[T.FRUITING_TRANSITION].scheduled_start == datetime(2026, 3, 24, 10, 30)
        assert tasks[T.MISTING].scheduled_start == datetime(2026, 3, 24, 12, 30)
        assert tasks[T.HARVEST].scheduled_start == datetime(2026, 4, 3, 12, 30)
        assert tasks[T.CLEANING].scheduled_end == datetime(2026, 4, 4, 9, 30)
        # autoclave ocupado pelo prep até 02:00
        assert tasks[T.EQUIPMENT_MAINTENANCE].scheduled_start == datetime(2026, 3, 3, 2, 0)

    def test_dependencies_respected(self, base_schedule):
        tasks, proposal = base_schedule
        lags = {t.task_id: t.lag_hours for t in tasks}

        for scheduled in proposal.scheduled_tasks:
            for dep in scheduled.depends_on:
                parent = proposal.task(dep)
                assert scheduled.scheduled_start >= parent.scheduled_end + timedelta(hours=lags[scheduled.task_id])

    def test_metrics(self, base_schedule):
        _, proposal = base_schedule

        assert proposal.total_days == 34
        assert proposal.total_labor_hours == pytest.approx(34.5)
        assert proposal.estimated_yield_kg == 100.0
        assert proposal.equipment_utilization == {"autoclave-1": 3.0, "mister-1": 0.6}
        assert proposal.risk_factors == ()
        assert proposal.confidence == pytest.approx(84.5)
        assert proposal.structural_errors == ()
        assert "1 task(s) delayed" in proposal.rationale

    def test_inputs_not_mutated(self, components, request_oyster):
        tasks = components["generator"].generate(request_oyster)
        snapshot = list(tasks)

        components["builder"].build(tasks, request_oyster)
        assert tasks == snapshot

    def test_dataframe_export(self, base_schedule):
        _, proposal = base_schedule
        df = proposal.to_dataframe()

        assert list(df.columns) == SCHEDULE_COLUMNS
        assert len(df) == 8
        assert df["start"].is_monotonic_increasing

    def test_log_entry(self, components, log, request_oyster):
        tasks = components["generator"].generate(request_oyster)
        before = len(log)
        proposal = components["builder"].build(tasks, request_oyster)

        assert len(log) == before + 1
        entry = log.last()
        assert entry.category == WorkflowLogCategory.SCHEDULE_PROPOSAL
        assert entry.status == LogStatus.SUCCESS
        assert entry.payload.proposal_id == proposal.proposal_id


class TestStructuralErrors:
    """Ciclos e dependências desconhecidas resultam em proposta vazia."""

    def test_cycle(self, components, log, request_oyster):
        tasks = [
            make_task("a", depends_on=("b",)),
            make_task("b", depends_on=("a",)),
        ]
        proposal = components["builder"].build(tasks, request_oyster)

        assert proposal.is_empty
        assert proposal.total_days == 0
        assert proposal.confidence == 0
        assert [e.code for e in proposal.structural_errors] == [StructuralErrorCode.DEPENDENCY_CYCLE]
        assert proposal.structural_errors[0].message == "Dependency cycle: a -> b -> a"
        assert log.last().status == LogStatus.FAILURE

    def test_self_dependency(self):
        errors = structural_errors([make_task("a", depends_on=("a",))])
        assert [e.code for e in errors] == [StructuralErrorCode.DEPENDENCY_CYCLE]

    def test_unknown_dependency(self, components, request_oyster):
        tasks = [make_task("a", depends_on=("ghost",))]
        proposal = components["builder"].build(tasks, request_oyster)

        assert proposal.is_empty
        error = proposal.structural_errors[0]
        assert error.code == StructuralErrorCode.UNKNOWN_DEPENDENCY
        assert error.details == {"task_id": "a", "dependency": "ghost"}

    def test_no_tasks(self, components, log, request_oyster):
        proposal = components["builder"].build([], request_oyster)

        assert proposal.is_empty
        assert proposal.structural_errors == ()
        assert log.last().status == LogStatus.WARNING


class TestResourceAllocation:
    """Prioridade, mão de obra, equipamento e espaçamento de prep."""

    def test_priority_breaks_ties(self, components, request_oyster):
        tasks = [
            make_task("low", priority=TaskPriority.LOW),
            make_task("crit", priority=TaskPriority.CRITICAL),
        ]
        proposal = components["builder"].build(tasks, request_oyster)

        assert [t.task_id for t in proposal.scheduled_tasks] == ["crit", "low"]

    def test_labor_deferral(self, components):
        """Tarefa que excede a capacidade diária passa para o turno seguinte."""
        request = make_request(labor=4)
        tasks = [make_task("a", labor=3), make_task("b", labor=3)]
        proposal = components["builder"].build(tasks, request)

        assert proposal.task("a").scheduled_start == ORIGIN
        assert proposal.task("b").scheduled_start == datetime(2026, 3, 3, 6, 0)

    def test_labor_window_overrides_default(self, components, request_oyster):
        context = ResourceContext(labor_windows=(LaborWindow(date(2026, 3, 2), 2.0),))
        tasks = [make_task("a", labor=2), make_task("b", labor=2)]
        proposal = components["builder"].build(tasks, request_oyster, context)

        assert proposal.task("b").day == date(2026, 3, 3)

    def test_equipment_serialized(self, components, request_oyster):
        tasks = [
            make_task("a", duration=2, equipment=("autoclave-1",)),
            make_task("b", duration=2, equipment=("autoclave-1",)),
        ]
        proposal = components["builder"].build(tasks, request_oyster)

        assert proposal.task("b").scheduled_start == proposal.task("a").scheduled_end

    def test_equipment_window(self, components, request_oyster):
        opens = ORIGIN + timedelta(hours=10)
        context = ResourceContext(equipment_windows=(
            EquipmentWindow("autoclave-1", opens, opens + timedelta(hours=40)),
        ))
        tasks = [make_task("a", duration=4, equipment=("autoclave-1",))]
        proposal = components["builder"].build(tasks, request_oyster, context)

        assert proposal.task("a").scheduled_start == opens
        assert proposal.equipment_utilization["autoclave-1"] == 10.0

    def test_aware_equipment_window(self, components, request_oyster):
        """Janela com offset é comparada em UTC com a origem do schedule."""
        opens = datetime(2026, 3, 2, 12, 0, tzinfo=timezone(timedelta(hours=2)))
        window = EquipmentWindow("autoclave-1", opens, opens + timedelta(hours=40))
        tasks = [make_task("a", duration=4, equipment=("autoclave-1",))]
        proposal = components["builder"].build(tasks, request_oyster, ResourceContext(equipment_windows=(window,)))

        assert window.available_from == datetime(2026, 3, 2, 10, 0)
        assert window.hours == 40.0
        assert proposal.task("a").scheduled_start == datetime(2026, 3, 2, 10, 0)

    def test_prep_spacing(self, components, request_oyster):
        tasks = [
            make_task("p1", T.SUBSTRATE_PREP, duration=2),
            make_task("p2", T.SUBSTRATE_PREP, duration=2),
        ]
        proposal = components["builder"].build(tasks, request_oyster)

        gap = proposal.task("p2").scheduled_start - proposal.task("p1").scheduled_start
        assert gap >= timedelta(days=1)


class TestRiskFactors:
    def test_window_overrun(self, components, log):
        request = make_request(window=10)
        tasks = components["generator"].generate(request)
        proposal = components["builder"].build(tasks, request)

        assert any(r.startswith("Schedule runs 24 day(s) past the 10-day window") for r in proposal.risk_factors)
        assert log.last().status == LogStatus.WARNING

    def test_species_clustering(self, components, request_oyster):
        species = [SpeciesName.OYSTER, SpeciesName.SHIITAKE, SpeciesName.ENOKI, SpeciesName.REISHI]
        tasks = [make_task(f"t{i}", species=s) for i, s in enumerate(species)]
        proposal = components["builder"].build(tasks, request_oyster)

        assert any(r.startswith("Species clustering on 2026-03-02") for r in proposal.risk_factors)


class TestDistributeAcrossRooms:
    def test_species_keep_one_room(self):
        tasks = [
            make_task("a", species=SpeciesName.OYSTER),
            make_task("b", species=SpeciesName.SHIITAKE),
            make_task("c", species=SpeciesName.OYSTER),
            make_task("d"),
            make_task("e", room="custom"),
        ]
        rooms = {t.task_id: t.room for t in distribute_across_rooms(tasks, 2)}

        assert rooms == {"a": "room-1", "b": "room-2", "c": "room-1", "d": "room-1", "e": "custom"}
