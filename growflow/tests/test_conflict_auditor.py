"""
Testes para ConflictAuditor - detetores, escalonamento e determinismo
"""
import random

import pytest

from growflow.workflow.conflict_auditor import (
    NO_CONFLICTS_RATIONALE,
    RECOMMENDATIONS,
    ConflictAuditor,
    escalate,
)
from growflow.workflow.workflow_log import LogStatus, WorkflowLogCategory
from growflow.workflow.workflow_types import (
    ConflictSeverity,
    ConflictType,
    Decision,
    SpeciesName,
    WorkflowTaskType as T,
)

from growflow.tests.builders import at, make_request, make_task, scheduled


@pytest.fixture
def auditor(components):
    return components["auditor"]


@pytest.fixture
def cleaning():
    """Cleaning fora de tudo, para não disparar no-cleaning."""
    return scheduled("clean", T.CLEANING, at(20), room="room-9")


def check(auditor, tasks, request=None, workflow_tasks=()):
    return auditor.check_conflicts(tasks, list(workflow_tasks), request or make_request())


class TestNoConflicts:
    """Cenário 1: schedule viável."""

    def test_base_pipeline_allows(self, components, request_oyster):
        tasks = components["generator"].generate(request_oyster)
        proposal = components["builder"].build(tasks, request_oyster)
        result = components["auditor"].check_conflicts(
            proposal.scheduled_tasks, tasks, request_oyster, proposal_id=proposal.proposal_id
        )

        assert result.conflicts == ()
        assert result.decision == Decision.ALLOW
        assert result.rationale == NO_CONFLICTS_RATIONALE
        assert result.recommendations == ()
        assert result.checked_tasks == 8
        assert result.proposal_id == proposal.proposal_id

    def test_empty_schedule(self, auditor):
        result = check(auditor, [])

        assert result.decision == Decision.ALLOW
        assert result.checked_tasks == 0


class TestOverlappingTasks:
    """Cenário 2: sobreposição na mesma sala."""

    def test_prep_overlap_is_critical(self, auditor, cleaning):
        tasks = [
            scheduled("prep", T.SUBSTRATE_PREP, at(0, 8), hours=4),
            scheduled("inoc", T.INOCULATION, at(0, 10), hours=1),
            cleaning,
        ]
        result = check(auditor, tasks)

        overlaps = result.conflicts_of(ConflictType.OVERLAPPING_TASKS)
        assert len(overlaps) == 1
        assert overlaps[0].conflict_id == "overlap-prep-inoc"
        assert overlaps[0].severity == ConflictSeverity.CRITICAL
        assert set(overlaps[0].affected_task_ids) == {"prep", "inoc"}
        assert result.decision == Decision.BLOCK

    def test_other_overlap_is_warning(self, auditor, cleaning):
        tasks = [
            scheduled("m1", T.MONITORING, at(1, 8), hours=2),
            scheduled("m2", T.MISTING, at(1, 9), hours=2),
            cleaning,
        ]
        result = check(auditor, tasks)

        assert [c.severity for c in result.conflicts] == [ConflictSeverity.WARNING]
        assert result.decision == Decision.WARN

    def test_touching_intervals_do_not_overlap(self, auditor, cleaning):
        tasks = [
            scheduled("m1", T.MONITORING, at(1, 8), hours=2),
            scheduled("m2", T.MISTING, at(1, 10), hours=2),
            cleaning,
        ]
        assert check(auditor, tasks).decision == Decision.ALLOW

    def test_different_rooms_do_not_overlap(self, auditor, cleaning):
        tasks = [
            scheduled("m1", T.MONITORING, at(1, 8), hours=2, room="room-1"),
            scheduled("m2", T.MISTING, at(1, 9), hours=2, room="room-2"),
            cleaning,
        ]
        assert check(auditor, tasks).conflicts == ()


class TestSpeciesIncompatibility:
    """Cenário 3: transições de espécies incompatíveis no mesmo dia."""

    def test_incompatible_transitions_same_day(self, auditor, cleaning):
        tasks = [
            scheduled("r", T.INCUBATION_TRANSITION, at(3, 8), room="room-1", species=SpeciesName.REISHI),
            scheduled("o", T.FRUITING_TRANSITION, at(3, 14), room="room-2", species=SpeciesName.OYSTER),
            cleaning,
        ]
        result = check(auditor, tasks)

        conflicts = result.conflicts_of(ConflictType.SPECIES_INCOMPATIBILITY)
        assert len(conflicts) == 1
        assert conflicts[0].conflict_id == "incompat-r-o"
        assert conflicts[0].severity == ConflictSeverity.WARNING
        assert result.decision == Decision.WARN

    def test_different_days(self, auditor, cleaning):
        tasks = [
            scheduled("r", T.INCUBATION_TRANSITION, at(3), room="room-1", species=SpeciesName.REISHI),
            scheduled("o", T.FRUITING_TRANSITION, at(4), room="room-2", species=SpeciesName.OYSTER),
            cleaning,
        ]
        assert check(auditor, tasks).conflicts_of(ConflictType.SPECIES_INCOMPATIBILITY) == []

    def test_compatible_species(self, auditor, cleaning):
        tasks = [
            scheduled("s", T.INCUBATION_TRANSITION, at(3, 8), room="room-1", species=SpeciesName.SHIITAKE),
            scheduled("o", T.FRUITING_TRANSITION, at(3, 14), room="room-2", species=SpeciesName.OYSTER),
            cleaning,
        ]
        assert check(auditor, tasks).conflicts == ()


class TestLaborOverload:
    """Cenário 4: carga diária acima do teto."""

    @pytest.mark.parametrize("labor, severity", [
        (10.0, None),
        (11.0, ConflictSeverity.WARNING),
        (12.0, ConflictSeverity.WARNING),
        (13.0, ConflictSeverity.CRITICAL),
    ])
    def test_thresholds(self, auditor, cleaning, labor, severity):
        request = make_request(labor=8)
        tasks = [
            scheduled("a", T.MONITORING, at(2, 6), room="room-1", labor=labor / 2),
            scheduled("b", T.MONITORING, at(2, 12), room="room-2", labor=labor / 2),
            cleaning,
        ]
        conflicts = check(auditor, tasks, request).conflicts_of(ConflictType.LABOR_OVERLOAD)

        if severity is None:
            assert conflicts == []
        else:
            assert [c.severity for c in conflicts] == [severity]
            assert conflicts[0].conflict_id == f"labor-{at(2).date().isoformat()}"
            assert conflicts[0].affected_task_ids == ("a", "b")


class TestHarvestClustering:
    """Cenário 5: colheitas concentradas no mesmo dia."""

    def test_clustered_harvests(self, auditor, cleaning):
        tasks = [
            scheduled("h1", T.HARVEST, at(5, 6), room="room-1", labor=9),
            scheduled("h2", T.HARVEST, at(5, 12), room="room-2", labor=9),
            cleaning,
        ]
        result = check(auditor, tasks)

        clusters = result.conflicts_of(ConflictType.HARVEST_CLUSTERING)
        assert len(clusters) == 1
        assert clusters[0].affected_task_ids == ("h1", "h2")
        assert clusters[0].severity == ConflictSeverity.WARNING

    def test_single_harvest_never_clusters(self, auditor, cleaning):
        tasks = [scheduled("h1", T.HARVEST, at(5, 6), labor=20), cleaning]
        assert check(auditor, tasks).conflicts_of(ConflictType.HARVEST_CLUSTERING) == []


class TestResourceDetectors:
    def test_equipment_over_allocation(self, auditor, cleaning):
        request = make_request(equipment=("autoclave-1",))
        tasks = [
            scheduled("a", T.SUBSTRATE_PREP, at(1, 6), hours=4, room="room-1", equipment=("autoclave-1",)),
            scheduled("b", T.EQUIPMENT_MAINTENANCE, at(1, 8), hours=4, room=None, equipment=("autoclave-1",)),
            cleaning,
        ]
        conflicts = check(auditor, tasks, request).conflicts_of(ConflictType.EQUIPMENT_OVER_ALLOCATION)

        assert len(conflicts) == 1
        assert conflicts[0].conflict_id == "equipment-autoclave-1-a-b"
        assert conflicts[0].severity == ConflictSeverity.CRITICAL

    def test_substrate_bottleneck(self, auditor, cleaning):
        tasks = [
            scheduled("p1", T.SUBSTRATE_PREP, at(1, 6), hours=2, room="room-1"),
            scheduled("p2", T.SUBSTRATE_PREP, at(1, 12), hours=2, room="room-2"),
            cleaning,
        ]
        conflicts = check(auditor, tasks).conflicts_of(ConflictType.SUBSTRATE_BOTTLENECK)

        assert [c.conflict_id for c in conflicts] == ["substrate-p1-p2"]


class TestContaminationRisk:
    def test_no_cleaning_is_critical(self, auditor):
        tasks = [
            scheduled("b", T.MONITORING, at(1)),
            scheduled("a", T.HARVEST, at(2)),
        ]
        result = check(auditor, tasks)

        conflict = result.conflicts_of(ConflictType.CONTAMINATION_RISK)[0]
        assert conflict.conflict_id == "no-cleaning"
        assert conflict.severity == ConflictSeverity.CRITICAL
        assert conflict.affected_task_ids == ("a", "b")
        assert result.decision == Decision.BLOCK

    def test_cleaning_gap(self, auditor):
        tasks = [
            scheduled("c1", T.CLEANING, at(1), room="room-1"),
            scheduled("c2", T.CLEANING, at(16), room="room-1"),
        ]
        conflicts = check(auditor, tasks).conflicts_of(ConflictType.CONTAMINATION_RISK)

        assert [c.conflict_id for c in conflicts] == ["cleaning-gap-c1-c2"]
        assert conflicts[0].severity == ConflictSeverity.WARNING


class TestDependencyViolations:
    def test_cycle_in_workflow_tasks(self, auditor, log, cleaning):
        workflow_tasks = [make_task("x", depends_on=("y",)), make_task("y", depends_on=("x",))]
        result = check(auditor, [cleaning], workflow_tasks=workflow_tasks)

        conflicts = result.conflicts_of(ConflictType.DEPENDENCY_VIOLATION)
        assert [c.conflict_id for c in conflicts] == ["dependency-cycle-x-y"]
        assert result.decision == Decision.BLOCK
        assert log.last().status == LogStatus.FAILURE

    def test_unknown_dependency(self, auditor, cleaning):
        result = check(auditor, [cleaning], workflow_tasks=[make_task("x", depends_on=("ghost",))])
        assert result.conflicts[0].conflict_id == "dependency-unknown-x-ghost"

    def test_starts_before_dependency_ends(self, auditor, cleaning):
        tasks = [
            scheduled("parent", T.SUBSTRATE_PREP, at(1, 6), hours=10, room="room-1"),
            scheduled("child", T.INOCULATION, at(1, 12), room="room-2", depends_on=("parent",)),
            cleaning,
        ]
        conflicts = check(auditor, tasks).conflicts_of(ConflictType.DEPENDENCY_VIOLATION)

        assert [c.conflict_id for c in conflicts] == ["dependency-order-child-parent"]
        assert conflicts[0].affected_task_ids == ("parent", "child")


class TestDecisionAndDeterminism:
    """Escalonamento, recomendações e resultados independentes da ordem."""

    def test_lattice(self):
        assert Decision.from_severities([]) == Decision.ALLOW
        assert Decision.from_severities([ConflictSeverity.INFO]) == Decision.ALLOW
        assert Decision.from_severities([ConflictSeverity.WARNING, ConflictSeverity.INFO]) == Decision.WARN
        assert Decision.from_severities([ConflictSeverity.WARNING, ConflictSeverity.CRITICAL]) == Decision.BLOCK
        assert Decision.highest([Decision.WARN, Decision.ALLOW]) == Decision.WARN
        assert escalate([]) == Decision.ALLOW

    def _messy_schedule(self):
        return [
            scheduled("prep", T.SUBSTRATE_PREP, at(0, 8), hours=4, labor=10),
            scheduled("inoc", T.INOCULATION, at(0, 10), labor=6),
            scheduled("m1", T.MONITORING, at(0, 9), room="room-2", labor=6),
            scheduled("h1", T.HARVEST, at(5, 6), room="room-1", labor=9),
            scheduled("h2", T.HARVEST, at(5, 7), room="room-2", labor=9),
        ]

    def test_recommendations_one_per_type(self, auditor):
        result = check(auditor, self._messy_schedule(), make_request(labor=8))

        types = list(dict.fromkeys(c.conflict_type for c in result.conflicts))
        assert result.recommendations == tuple(RECOMMENDATIONS[t] for t in types)
        assert len(set(result.recommendations)) == len(result.recommendations)
        assert result.rationale.startswith(f"{len(result.conflicts)} conflict(s) detected")

    def test_order_independent(self, auditor):
        tasks = self._messy_schedule()
        request = make_request(labor=8)
        expected = check(auditor, tasks, request).to_dict(include_identity=False)

        shuffled = list(tasks)
        random.Random(7).shuffle(shuffled)
        assert check(auditor, shuffled, request).to_dict(include_identity=False) == expected
        assert check(auditor, list(reversed(tasks)), request).to_dict(include_identity=False) == expected

    def test_idempotent(self, auditor):
        tasks = self._messy_schedule()
        first = check(auditor, tasks)
        second = check(auditor, tasks)

        assert first.result_id != second.result_id
        assert first.to_dict(include_identity=False) == second.to_dict(include_identity=False)

    def test_conflict_ids_unique(self, auditor):
        result = check(auditor, self._messy_schedule(), make_request(labor=8))
        ids = [c.conflict_id for c in result.conflicts]
        assert len(ids) == len(set(ids))

    def test_one_log_entry_per_call(self, auditor, log):
        check(auditor, self._messy_schedule())
        check(auditor, [])

        entries = log.entries(category=WorkflowLogCategory.CONFLICT_DETECTION)
        assert len(entries) == 2
        assert entries[0].status == LogStatus.WARNING
        assert entries[1].status == LogStatus.SUCCESS
