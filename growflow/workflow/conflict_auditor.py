"""
════════════════════════════════════════════════════════════════════════════════════════════════════
CONFLICT AUDITOR - Resource & Safety Checks over a Schedule
════════════════════════════════════════════════════════════════════════════════════════════════════

Independent detectors, concatenated (none suppresses another):

    overlapping-tasks          same room, intervals intersect         critical if substrate-prep else warning
    species-incompatibility    transitions on the same day            warning
    substrate-bottleneck       consecutive preps < spacing apart      warning
    harvest-clustering         daily harvest labor > cap              warning
    labor-overload             daily labor > 1.25x / 1.5x ceiling     warning / critical
    equipment-over-allocation  shared equipment, intervals intersect  critical
    contamination-risk         no cleaning / cleaning gap > 14 days   critical / warning
    dependency-violation       cycles, unknown or unmet dependencies  critical

Decision: any critical → block, else any warning → warn, else allow.

Pairs are enumerated over tasks sorted by (start, task_id) and conflict IDs
are derived from task IDs, so the result content depends only on the set of
tasks given, not on their order or the time of the call.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .identifiers import Clock, IdGenerator, UuidIdGenerator, utc_now
from .schedule_frame import daily_labor, daily_task_ids
from .task_graph import find_cycles, find_unknown_dependencies
from .workflow_config import WorkflowConfig, WorkflowThresholds
from .workflow_log import (
    ConflictPayload,
    LogContext,
    LogEmitter,
    LogStatus,
    WorkflowLog,
    WorkflowLogCategory,
    WorkflowLogSink,
)
from .workflow_types import (
    ConflictCheckResult,
    ConflictSeverity,
    ConflictType,
    Decision,
    ScheduledTask,
    WorkflowConflict,
    WorkflowRequest,
    WorkflowTask,
    WorkflowTaskType,
)

logger = logging.getLogger(__name__)

NO_CONFLICTS_RATIONALE = "No conflicts detected; schedule is feasible"

RECOMMENDATIONS: Dict[ConflictType, str] = {
    ConflictType.OVERLAPPING_TASKS: "Reschedule overlapping tasks to different time slots",
    ConflictType.SPECIES_INCOMPATIBILITY: "Isolate incompatible species in separate growing environments",
    ConflictType.SUBSTRATE_BOTTLENECK: "Increase sterilization capacity or spread prep work",
    ConflictType.HARVEST_CLUSTERING: "Distribute harvests across multiple days",
    ConflictType.LABOR_OVERLOAD: "Hire temporary labor or extend timeline",
    ConflictType.EQUIPMENT_OVER_ALLOCATION: "Procure additional equipment or reschedule tasks",
    ConflictType.CONTAMINATION_RISK: "Increase cleaning/maintenance frequency",
    ConflictType.DEPENDENCY_VIOLATION: "Review task dependencies and correct sequencing",
}

TRANSITION_TYPES = {WorkflowTaskType.INCUBATION_TRANSITION, WorkflowTaskType.FRUITING_TRANSITION}

Detector = Callable[
    [Sequence[ScheduledTask], Sequence[WorkflowTask], WorkflowRequest, WorkflowThresholds],
    List[WorkflowConflict],
]


def _chronological(tasks: Iterable[ScheduledTask]) -> List[ScheduledTask]:
    return sorted(tasks, key=lambda t: (t.scheduled_start, t.task_id))


def _fmt(moment) -> str:
    return moment.strftime("%Y-%m-%d %H:%M")


# ═══════════════════════════════════════════════════════════════════════════════
# DETECTORS
# ═══════════════════════════════════════════════════════════════════════════════

def detect_overlapping_tasks(scheduled, workflow_tasks, request, thresholds) -> List[WorkflowConflict]:
    by_room: Dict[str, List[ScheduledTask]] = {}
    for task in scheduled:
        if task.room is not None:
            by_room.setdefault(task.room, []).append(task)

    conflicts = []
    for room in sorted(by_room):
        tasks = _chronological(by_room[room])
        for i, first in enumerate(tasks):
            for second in tasks[i + 1:]:
                if second.scheduled_start >= first.scheduled_end:
                    break
                if not first.overlaps(second):
                    continue
                involves_prep = WorkflowTaskType.SUBSTRATE_PREP in (first.task_type, second.task_type)
                conflicts.append(WorkflowConflict(
                    conflict_id=f"overlap-{first.task_id}-{second.task_id}",
                    conflict_type=ConflictType.OVERLAPPING_TASKS,
                    severity=ConflictSeverity.CRITICAL if involves_prep else ConflictSeverity.WARNING,
                    affected_task_ids=(first.task_id, second.task_id),
                    description=(
                        f"Tasks {first.task_id} ({first.task_type.value}) and {second.task_id} "
                        f"({second.task_type.value}) overlap in {room}"
                    ),
                    recommended_action=(
                        f"Reschedule one task to avoid overlap (e.g., move {second.task_type.value} later)"
                    ),
                ))
    return conflicts


def detect_species_incompatibility(scheduled, workflow_tasks, request, thresholds) -> List[WorkflowConflict]:
    by_day: Dict = {}
    for task in _chronological(t for t in scheduled if t.task_type in TRANSITION_TYPES and t.species):
        by_day.setdefault(task.day, []).append(task)

    conflicts = []
    for day in sorted(by_day):
        tasks = by_day[day]
        for i, first in enumerate(tasks):
            for second in tasks[i + 1:]:
                if first.species == second.species:
                    continue
                if not thresholds.is_incompatible(first.species, second.species):
                    continue
                conflicts.append(WorkflowConflict(
                    conflict_id=f"incompat-{first.task_id}-{second.task_id}",
                    conflict_type=ConflictType.SPECIES_INCOMPATIBILITY,
                    severity=ConflictSeverity.WARNING,
                    affected_task_ids=(first.task_id, second.task_id),
                    description=(
                        f"{first.species.value} and {second.species.value} transitions on "
                        f"{day.isoformat()} risk cross-contamination"
                    ),
                    recommended_action="Isolate in separate rooms or stagger by 5+ days",
                ))
    return conflicts


def detect_substrate_bottleneck(scheduled, workflow_tasks, request, thresholds) -> List[WorkflowConflict]:
    preps = _chronological(t for t in scheduled if t.task_type == WorkflowTaskType.SUBSTRATE_PREP)
    spacing = timedelta(days=thresholds.substrate_prep_spacing_days)

    conflicts = []
    for first, second in zip(preps, preps[1:]):
        gap = second.scheduled_start - first.scheduled_start
        if gap < spacing:
            conflicts.append(WorkflowConflict(
                conflict_id=f"substrate-{first.task_id}-{second.task_id}",
                conflict_type=ConflictType.SUBSTRATE_BOTTLENECK,
                severity=ConflictSeverity.WARNING,
                affected_task_ids=(first.task_id, second.task_id),
                description=(
                    f"Substrate prep tasks start {gap.total_seconds() / 3600:.1f}h apart "
                    f"({_fmt(first.scheduled_start)} and {_fmt(second.scheduled_start)})"
                ),
                recommended_action=(
                    f"Space substrate prep tasks at least {thresholds.substrate_prep_spacing_days:g} day apart"
                ),
            ))
    return conflicts


def detect_harvest_clustering(scheduled, workflow_tasks, request, thresholds) -> List[WorkflowConflict]:
    harvest_types = {WorkflowTaskType.HARVEST}
    if sum(1 for t in scheduled if t.task_type == WorkflowTaskType.HARVEST) <= 1:
        return []

    ids_by_day = daily_task_ids(scheduled, harvest_types)
    conflicts = []
    for day, labor in daily_labor(scheduled, harvest_types).items():
        if labor > thresholds.harvest_daily_labor_cap:
            conflicts.append(WorkflowConflict(
                conflict_id=f"harvest-cluster-{day.isoformat()}",
                conflict_type=ConflictType.HARVEST_CLUSTERING,
                severity=ConflictSeverity.WARNING,
                affected_task_ids=tuple(ids_by_day[day]),
                description=(
                    f"{len(ids_by_day[day])} harvests on {day.isoformat()} need {labor:.1f} labor hours "
                    f"(cap {thresholds.harvest_daily_labor_cap:g}h)"
                ),
                recommended_action="Spread harvests across multiple days",
            ))
    return conflicts


def detect_labor_overload(scheduled, workflow_tasks, request, thresholds) -> List[WorkflowConflict]:
    ceiling = request.constraint_set.labor_hours_available
    ids_by_day = daily_task_ids(scheduled)

    conflicts = []
    for day, labor in daily_labor(scheduled).items():
        if labor <= ceiling * thresholds.labor_warning_multiplier:
            continue
        critical = labor > ceiling * thresholds.labor_critical_multiplier
        conflicts.append(WorkflowConflict(
            conflict_id=f"labor-{day.isoformat()}",
            conflict_type=ConflictType.LABOR_OVERLOAD,
            severity=ConflictSeverity.CRITICAL if critical else ConflictSeverity.WARNING,
            affected_task_ids=tuple(ids_by_day[day]),
            description=(
                f"Labor on {day.isoformat()} is {labor:.1f}h against a daily ceiling of {ceiling:g}h"
            ),
            recommended_action="Redistribute tasks to adjacent days or increase labor availability",
        ))
    return conflicts


def detect_equipment_over_allocation(scheduled, workflow_tasks, request, thresholds) -> List[WorkflowConflict]:
    conflicts = []
    for equipment_id in sorted(set(request.constraint_set.equipment_available)):
        users = _chronological(t for t in scheduled if equipment_id in t.assigned_equipment)
        for i, first in enumerate(users):
            for second in users[i + 1:]:
                if second.scheduled_start >= first.scheduled_end:
                    break
                if not first.overlaps(second):
                    continue
                conflicts.append(WorkflowConflict(
                    conflict_id=f"equipment-{equipment_id}-{first.task_id}-{second.task_id}",
                    conflict_type=ConflictType.EQUIPMENT_OVER_ALLOCATION,
                    severity=ConflictSeverity.CRITICAL,
                    affected_task_ids=(first.task_id, second.task_id),
                    description=(
                        f"Equipment {equipment_id} booked by {first.task_id} and {second.task_id} at the same time"
                    ),
                    recommended_action="Reschedule one task or add another instance of the equipment",
                ))
    return conflicts


def detect_contamination_risk(scheduled, workflow_tasks, request, thresholds) -> List[WorkflowConflict]:
    cleanings = _chronological(t for t in scheduled if t.task_type == WorkflowTaskType.CLEANING)
    others = sorted(t.task_id for t in scheduled if t.task_type != WorkflowTaskType.CLEANING)

    if not cleanings:
        if not others:
            return []
        return [WorkflowConflict(
            conflict_id="no-cleaning",
            conflict_type=ConflictType.CONTAMINATION_RISK,
            severity=ConflictSeverity.CRITICAL,
            affected_task_ids=tuple(others),
            description="No cleaning tasks scheduled; high contamination risk",
            recommended_action="Add cleaning and sanitization tasks after each harvest or every 7 days",
        )]

    max_gap = timedelta(days=thresholds.cleaning_max_gap_days)
    conflicts = []
    for first, second in zip(cleanings, cleanings[1:]):
        gap = second.scheduled_start - first.scheduled_start
        if gap > max_gap:
            conflicts.append(WorkflowConflict(
                conflict_id=f"cleaning-gap-{first.task_id}-{second.task_id}",
                conflict_type=ConflictType.CONTAMINATION_RISK,
                severity=ConflictSeverity.WARNING,
                affected_task_ids=(first.task_id, second.task_id),
                description=(
                    f"Cleaning tasks are {gap.total_seconds() / 86400:.1f} days apart "
                    f"(limit {thresholds.cleaning_max_gap_days:g})"
                ),
                recommended_action="Schedule cleaning more frequently (every 7-10 days)",
            ))
    return conflicts


def detect_dependency_violations(scheduled, workflow_tasks, request, thresholds) -> List[WorkflowConflict]:
    conflicts = []
    for cycle in find_cycles(workflow_tasks):
        conflicts.append(WorkflowConflict(
            conflict_id=f"dependency-cycle-{'-'.join(sorted(cycle))}",
            conflict_type=ConflictType.DEPENDENCY_VIOLATION,
            severity=ConflictSeverity.CRITICAL,
            affected_task_ids=tuple(sorted(cycle)),
            description=f"Dependency cycle: {' -> '.join(cycle + (cycle[0],))}",
            recommended_action="Break the cycle by removing one of the dependencies",
        ))

    for task_id, dep in find_unknown_dependencies(workflow_tasks):
        conflicts.append(WorkflowConflict(
            conflict_id=f"dependency-unknown-{task_id}-{dep}",
            conflict_type=ConflictType.DEPENDENCY_VIOLATION,
            severity=ConflictSeverity.CRITICAL,
            affected_task_ids=(task_id,),
            description=f"Task {task_id} depends on unknown task {dep}",
            recommended_action="Regenerate tasks or remove the dangling dependency",
        ))

    declared = {t.task_id: t.depends_on for t in workflow_tasks}
    by_id = {t.task_id: t for t in scheduled}
    for task in sorted(scheduled, key=lambda t: t.task_id):
        for dep in sorted(task.depends_on or declared.get(task.task_id, ())):
            parent = by_id.get(dep)
            if parent is not None and task.scheduled_start < parent.scheduled_end:
                conflicts.append(WorkflowConflict(
                    conflict_id=f"dependency-order-{task.task_id}-{dep}",
                    conflict_type=ConflictType.DEPENDENCY_VIOLATION,
                    severity=ConflictSeverity.CRITICAL,
                    affected_task_ids=(dep, task.task_id),
                    description=(
                        f"Task {task.task_id} starts {_fmt(task.scheduled_start)} before dependency "
                        f"{dep} ends {_fmt(parent.scheduled_end)}"
                    ),
                    recommended_action=f"Move {task.task_type.value} after {parent.task_type.value} completes",
                ))
    return conflicts


DETECTORS: Tuple[Detector, ...] = (
    detect_overlapping_tasks,
    detect_species_incompatibility,
    detect_substrate_bottleneck,
    detect_harvest_clustering,
    detect_labor_overload,
    detect_equipment_over_allocation,
    detect_contamination_risk,
    detect_dependency_violations,
)


# ═══════════════════════════════════════════════════════════════════════════════
# AGGREGATION
# ═══════════════════════════════════════════════════════════════════════════════

def escalate(conflicts: Iterable[WorkflowConflict]) -> Decision:
    return Decision.from_severities(c.severity for c in conflicts)


def recommendations_for(conflicts: Iterable[WorkflowConflict]) -> Tuple[str, ...]:
    """One canned recommendation per distinct conflict type, first-seen order."""
    seen: List[ConflictType] = []
    for conflict in conflicts:
        if conflict.conflict_type not in seen:
            seen.append(conflict.conflict_type)
    return tuple(RECOMMENDATIONS[t] for t in seen)


def summarize(conflicts: Sequence[WorkflowConflict]) -> str:
    if not conflicts:
        return NO_CONFLICTS_RATIONALE
    types = list(dict.fromkeys(c.conflict_type.value for c in conflicts))
    return f"{len(conflicts)} conflict(s) detected: {', '.join(types)}"


class ConflictAuditor:
    """Classifies a schedule; never mutates its inputs."""

    def __init__(
        self,
        id_generator: Optional[IdGenerator] = None,
        clock: Optional[Clock] = None,
        log_sink: Optional[WorkflowLogSink] = None,
        thresholds: Optional[WorkflowThresholds] = None,
        detectors: Tuple[Detector, ...] = DETECTORS,
    ):
        self.id_generator = id_generator or UuidIdGenerator()
        self.clock = clock or utc_now
        self.thresholds = thresholds or WorkflowConfig.get_thresholds()
        self.detectors = detectors
        self._log = LogEmitter(
            log_sink if log_sink is not None else WorkflowLog(),
            self.id_generator,
            self.clock,
            source="conflict-auditor",
        )

    def check_conflicts(
        self,
        scheduled_tasks: Sequence[ScheduledTask],
        workflow_tasks: Sequence[WorkflowTask],
        request: WorkflowRequest,
        proposal_id: Optional[str] = None,
    ) -> ConflictCheckResult:
        conflicts: List[WorkflowConflict] = []
        for detector in self.detectors:
            conflicts.extend(detector(scheduled_tasks, workflow_tasks, request, self.thresholds))

        decision = escalate(conflicts)
        result = ConflictCheckResult(
            result_id=self.id_generator.next_id("conflict-check"),
            timestamp=self.clock(),
            proposal_id=proposal_id,
            checked_tasks=len(scheduled_tasks),
            conflicts=tuple(conflicts),
            decision=decision,
            rationale=summarize(conflicts),
            recommendations=recommendations_for(conflicts),
        )

        structural = any(c.conflict_type == ConflictType.DEPENDENCY_VIOLATION for c in conflicts)
        if structural:
            status = LogStatus.FAILURE
        elif decision == Decision.ALLOW:
            status = LogStatus.SUCCESS
        else:
            status = LogStatus.WARNING
        self._log.emit(
            WorkflowLogCategory.CONFLICT_DETECTION,
            ConflictPayload(
                result_id=result.result_id,
                proposal_id=proposal_id,
                decision=decision.value,
                conflict_count=len(conflicts),
                conflict_types=tuple(dict.fromkeys(c.conflict_type.value for c in conflicts)),
            ),
            status,
            f"Decision {decision.value}: {result.rationale}",
            LogContext(proposal_id=proposal_id, request_id=request.request_id),
        )
        logger.info(f"Conflict check {result.result_id}: {decision.value} ({len(conflicts)} conflicts)")
        return result
