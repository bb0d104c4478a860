"""
════════════════════════════════════════════════════════════════════════════════════════════════════
SCHEDULE BUILDER - WorkflowTasks → ScheduleProposal
════════════════════════════════════════════════════════════════════════════════════════════════════

List scheduling over the dependency DAG.

Ordering (Kahn): among ready tasks pick the smallest
    (priority rank, earliest dependency-feasible start, generation index)

Placement: start = max(
    schedule origin,
    end of every dependency + lag_hours,
    room free time, equipment free time / window start,
    last substrate-prep start + prep spacing   (substrate-prep only)
)
If the start day's booked labor would exceed that day's capacity, the task
is deferred to the next shift start (bounded by max_deferral_days).

Dependency cycles and unknown dependency IDs produce an empty proposal with
structural errors; nothing is raised.
"""

from __future__ import annotations

import heapq
import logging
import math
from collections import defaultdict
from dataclasses import replace
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np

from .identifiers import Clock, IdGenerator, UuidIdGenerator, utc_now
from .schedule_frame import daily_labor, species_per_day
from .task_graph import dependency_depth, find_cycles, find_unknown_dependencies
from .workflow_config import WorkflowConfig, WorkflowThresholds
from .workflow_log import (
    LogContext,
    LogEmitter,
    LogStatus,
    SchedulePayload,
    WorkflowLog,
    WorkflowLogCategory,
    WorkflowLogSink,
)
from .workflow_types import (
    ResourceContext,
    ScheduledTask,
    ScheduleProposal,
    StructuralError,
    StructuralErrorCode,
    WorkflowRequest,
    WorkflowTask,
    WorkflowTaskType,
    hours,
)

logger = logging.getLogger(__name__)

MAX_SPECIES_PER_DAY = 3
HIGH_LABOR_RATIO = 1.2


# ═══════════════════════════════════════════════════════════════════════════════
# STRUCTURAL CHECKS
# ═══════════════════════════════════════════════════════════════════════════════

def structural_errors(tasks: Sequence[WorkflowTask]) -> List[StructuralError]:
    """Unknown dependency IDs and dependency cycles."""
    errors = [
        StructuralError(
            StructuralErrorCode.UNKNOWN_DEPENDENCY,
            f"Task {task_id} depends on unknown task {dep}",
            {"task_id": task_id, "dependency": dep},
        )
        for task_id, dep in find_unknown_dependencies(tasks)
    ]
    for cycle in find_cycles(tasks):
        errors.append(StructuralError(
            StructuralErrorCode.DEPENDENCY_CYCLE,
            f"Dependency cycle: {' -> '.join(cycle + (cycle[0],))}",
            {"task_ids": list(cycle)},
        ))
    return errors


def distribute_across_rooms(tasks: Sequence[WorkflowTask], room_count: int) -> List[WorkflowTask]:
    """
    Assign rooms to tasks that have none.

    Each species keeps one room (round-robin in order of first appearance);
    tasks without species share ``room-1``.
    """
    room_count = max(1, room_count)
    species_rooms: Dict[str, str] = {}
    result = []
    for task in tasks:
        if task.room is not None:
            result.append(task)
            continue
        if task.species is None:
            room = "room-1"
        else:
            key = task.species.value
            if key not in species_rooms:
                species_rooms[key] = f"room-{len(species_rooms) % room_count + 1}"
            room = species_rooms[key]
        result.append(replace(task, room=room))
    return result


# ═══════════════════════════════════════════════════════════════════════════════
# BUILDER
# ═══════════════════════════════════════════════════════════════════════════════

class ScheduleBuilder:
    """Assigns time windows, rooms, equipment and labor to WorkflowTasks."""

    def __init__(
        self,
        id_generator: Optional[IdGenerator] = None,
        clock: Optional[Clock] = None,
        log_sink: Optional[WorkflowLogSink] = None,
        thresholds: Optional[WorkflowThresholds] = None,
    ):
        self.id_generator = id_generator or UuidIdGenerator()
        self.clock = clock or utc_now
        self.thresholds = thresholds or WorkflowConfig.get_thresholds()
        self._log = LogEmitter(
            log_sink if log_sink is not None else WorkflowLog(),
            self.id_generator,
            self.clock,
            source="schedule-builder",
        )

    def origin(self, request: WorkflowRequest) -> datetime:
        day = request.start_date or self.clock().date()
        return datetime.combine(day, time(hour=self.thresholds.shift_start_hour))

    def build(
        self,
        tasks: Sequence[WorkflowTask],
        request: WorkflowRequest,
        context: Optional[ResourceContext] = None,
    ) -> ScheduleProposal:
        context = context or ResourceContext()
        origin = self.origin(request)
        proposal_id = self.id_generator.next_id("proposal")
        log_context = LogContext(proposal_id=proposal_id, request_id=request.request_id)

        errors = structural_errors(tasks)
        if errors or not tasks:
            reason = "; ".join(e.message for e in errors) if errors else "no tasks to schedule"
            proposal = self._empty_proposal(proposal_id, request, origin, tuple(errors), reason)
            self._log.emit(
                WorkflowLogCategory.SCHEDULE_PROPOSAL,
                SchedulePayload(
                    proposal_id=proposal_id,
                    task_count=0,
                    total_days=0,
                    confidence=0.0,
                    structural_errors=tuple(e.code.value for e in errors),
                ),
                LogStatus.FAILURE if errors else LogStatus.WARNING,
                f"Schedule not built: {reason}",
                log_context,
            )
            return proposal

        scheduled, delayed = self._place(tasks, request, context, origin)

        start_date = min(t.scheduled_start for t in scheduled)
        end_date = max(t.scheduled_end for t in scheduled)
        total_days = max(1, math.ceil((end_date - origin).total_seconds() / 86400))
        total_labor = float(sum(t.assigned_labor for t in scheduled))
        utilization = self._equipment_utilization(scheduled, request, context, start_date, end_date)
        risks = self._risk_factors(scheduled, request, context, origin, end_date, utilization)
        confidence = self._confidence(tasks, delayed, risks, total_labor, request)

        proposal = ScheduleProposal(
            proposal_id=proposal_id,
            request_id=request.request_id,
            created_at=self.clock(),
            scheduled_tasks=tuple(scheduled),
            start_date=start_date,
            end_date=end_date,
            total_days=total_days,
            estimated_yield_kg=float(sum(t.target_yield_kg for t in request.harvest_targets)),
            total_labor_hours=total_labor,
            equipment_utilization=utilization,
            rationale=(
                f"Scheduled {len(scheduled)} tasks across {total_days} days using "
                f"{total_labor:.1f} labor hours; {delayed} task(s) delayed by resource contention"
            ),
            confidence=confidence,
            risk_factors=tuple(risks),
        )

        self._log.emit(
            WorkflowLogCategory.SCHEDULE_PROPOSAL,
            SchedulePayload(
                proposal_id=proposal_id,
                task_count=len(scheduled),
                total_days=total_days,
                confidence=confidence,
                risk_factors=tuple(risks),
            ),
            LogStatus.WARNING if risks else LogStatus.SUCCESS,
            proposal.rationale,
            log_context,
        )
        logger.info(f"Proposal {proposal_id}: {len(scheduled)} tasks, {total_days} days, confidence {confidence}")
        return proposal

    # ───────────────────────────────────────────────────────────────────────
    # Placement
    # ───────────────────────────────────────────────────────────────────────

    def _place(
        self,
        tasks: Sequence[WorkflowTask],
        request: WorkflowRequest,
        context: ResourceContext,
        origin: datetime,
    ) -> Tuple[List[ScheduledTask], int]:
        by_id = {t.task_id: t for t in tasks}
        index = {t.task_id: i for i, t in enumerate(tasks)}
        pending = {t.task_id: set(t.depends_on) for t in tasks}
        dependents: Dict[str, List[str]] = defaultdict(list)
        for t in tasks:
            for dep in t.depends_on:
                dependents[dep].append(t.task_id)

        end_times: Dict[str, datetime] = {}
        room_free: Dict[str, datetime] = {}
        equipment_free: Dict[str, datetime] = {}
        booked: Dict[date, float] = defaultdict(float)
        last_prep_start: Optional[datetime] = None
        spacing = timedelta(days=self.thresholds.substrate_prep_spacing_days)

        def ready_key(task_id: str) -> Tuple[int, datetime, int, str]:
            task = by_id[task_id]
            earliest = max(
                [origin] + [end_times[d] + hours(task.lag_hours) for d in task.depends_on]
            )
            return (task.priority.rank, earliest, index[task_id], task_id)

        heap = [ready_key(t.task_id) for t in tasks if not t.depends_on]
        heapq.heapify(heap)

        scheduled: List[ScheduledTask] = []
        delayed = 0

        while heap:
            _, earliest, _, task_id = heapq.heappop(heap)
            task = by_id[task_id]

            start = earliest
            if task.room is not None:
                start = max(start, room_free.get(task.room, origin))
            for equipment_id in task.equipment:
                start = max(start, equipment_free.get(equipment_id, origin))
                window = context.equipment_window(equipment_id)
                if window is not None:
                    start = max(start, window.available_from)
            if task.task_type == WorkflowTaskType.SUBSTRATE_PREP and last_prep_start is not None:
                start = max(start, last_prep_start + spacing)

            start = self._fit_labor(start, task.labor_hours, booked, request, context)
            if start > earliest:
                delayed += 1

            end = start + hours(task.duration_hours)
            end_times[task_id] = end
            if task.room is not None:
                room_free[task.room] = end
            for equipment_id in task.equipment:
                equipment_free[equipment_id] = end
            if task.task_type == WorkflowTaskType.SUBSTRATE_PREP:
                last_prep_start = start
            booked[start.date()] += task.labor_hours

            scheduled.append(ScheduledTask(
                task_id=task.task_id,
                task_type=task.task_type,
                scheduled_start=start,
                scheduled_end=end,
                assigned_labor=task.labor_hours,
                sequence_order=len(scheduled) + 1,
                species=task.species,
                room=task.room,
                facility=task.facility,
                stage=task.stage,
                substrate_type=task.substrate_type,
                assigned_equipment=task.equipment,
                depends_on=task.depends_on,
            ))

            for child in dependents[task_id]:
                pending[child].discard(task_id)
                if not pending[child]:
                    heapq.heappush(heap, ready_key(child))

        return scheduled, delayed

    def _fit_labor(
        self,
        start: datetime,
        labor: float,
        booked: Dict[date, float],
        request: WorkflowRequest,
        context: ResourceContext,
    ) -> datetime:
        """Earliest start at or after ``start`` whose day still has labor capacity."""
        default = request.constraint_set.labor_hours_available
        candidate = start
        for _ in range(self.thresholds.max_deferral_days + 1):
            day = candidate.date()
            capacity = context.labor_capacity(day, default)
            if booked[day] == 0 or booked[day] + labor <= capacity:
                return candidate
            candidate = datetime.combine(day + timedelta(days=1), time(hour=self.thresholds.shift_start_hour))
            if start.tzinfo is not None:
                candidate = candidate.replace(tzinfo=start.tzinfo)
        logger.debug(f"No labor capacity within {self.thresholds.max_deferral_days} days of {start}")
        return start

    # ───────────────────────────────────────────────────────────────────────
    # Metrics
    # ───────────────────────────────────────────────────────────────────────

    def _equipment_utilization(
        self,
        scheduled: List[ScheduledTask],
        request: WorkflowRequest,
        context: ResourceContext,
        start_date: datetime,
        end_date: datetime,
    ) -> Dict[str, float]:
        span_hours = max(1.0, (end_date - start_date).total_seconds() / 3600)
        assigned: Dict[str, float] = {e: 0.0 for e in request.constraint_set.equipment_available}
        for task in scheduled:
            for equipment_id in task.assigned_equipment:
                assigned[equipment_id] = assigned.get(equipment_id, 0.0) + task.duration_hours

        utilization = {}
        for equipment_id in sorted(assigned):
            window = context.equipment_window(equipment_id)
            available = window.hours if window is not None and window.hours > 0 else span_hours
            utilization[equipment_id] = round(assigned[equipment_id] / available * 100, 1)
        return utilization

    def _risk_factors(
        self,
        scheduled: List[ScheduledTask],
        request: WorkflowRequest,
        context: ResourceContext,
        origin: datetime,
        end_date: datetime,
        utilization: Dict[str, float],
    ) -> List[str]:
        risks: List[str] = []
        default = request.constraint_set.labor_hours_available
        multiplier = self.thresholds.labor_critical_multiplier

        for day, labor in daily_labor(scheduled).items():
            capacity = context.labor_capacity(day, default)
            if labor > capacity * multiplier:
                risks.append(f"Labor on {day.isoformat()} ({labor:.1f}h) exceeds {multiplier:g}x daily capacity")

        for day, species in sorted(species_per_day(scheduled).items()):
            if len(species) > MAX_SPECIES_PER_DAY:
                risks.append(f"Species clustering on {day.isoformat()}: {len(species)} species active")

        window_end = origin + timedelta(days=request.time_window_days)
        if end_date > window_end:
            overrun = math.ceil((end_date - window_end).total_seconds() / 86400)
            risks.append(f"Schedule runs {overrun} day(s) past the {request.time_window_days}-day window")

        for equipment_id, value in utilization.items():
            if value > 100:
                risks.append(f"Equipment {equipment_id} over-allocated ({value:.0f}% utilization)")

        return risks

    def _confidence(
        self,
        tasks: Sequence[WorkflowTask],
        delayed: int,
        risks: List[str],
        total_labor: float,
        request: WorkflowRequest,
    ) -> float:
        """100 minus capped penalties for depth, contention, risks and labor pressure."""
        depth = max(dependency_depth(tasks).values(), default=0)
        contention = delayed / max(1, len(tasks))
        penalty = (
            min(15.0, 1.5 * depth)
            + min(20.0, 40.0 * contention)
            + min(25.0, 5.0 * len(risks))
        )
        budget = request.labor_budget_hours
        if budget <= 0 or total_labor / budget > HIGH_LABOR_RATIO:
            penalty += 15.0
        return round(float(np.clip(100.0 - penalty, 0.0, 100.0)), 1)

    def _empty_proposal(
        self,
        proposal_id: str,
        request: WorkflowRequest,
        origin: datetime,
        errors: Tuple[StructuralError, ...],
        reason: str,
    ) -> ScheduleProposal:
        return ScheduleProposal(
            proposal_id=proposal_id,
            request_id=request.request_id,
            created_at=self.clock(),
            scheduled_tasks=(),
            start_date=origin,
            end_date=origin,
            total_days=0,
            estimated_yield_kg=0.0,
            total_labor_hours=0.0,
            equipment_utilization={},
            rationale=f"Schedule not built: {reason}",
            confidence=0.0,
            structural_errors=errors,
        )
