"""
════════════════════════════════════════════════════════════════════════════════════════════════════
TASK GENERATOR - WorkflowRequest → atomic WorkflowTasks
════════════════════════════════════════════════════════════════════════════════════════════════════

Per harvest target a cultivation chain is generated:

    substrate-prep → inoculation → incubation-transition → fruiting-transition
                   → misting → harvest → cleaning

Stage durations become ``lag_hours`` on the dependent task, so the
ScheduleBuilder places each transition after the biological wait it needs:

    inoculation            lag = sterilization + cooling of the substrate
    incubation-transition  lag = colonization days
    fruiting-transition    lag = pinning / fruiting-prep days (3-stage species)
    harvest                lag = rest of the fruiting stage

Rooms are assigned round-robin over facilities x rooms_per_facility; a reused
room gets a species-reset task chained after the previous cycle's cleaning.
"""

from __future__ import annotations

import logging
import math
from typing import Dict, List, Optional, Tuple

from .identifiers import Clock, IdGenerator, UuidIdGenerator, utc_now
from .species_catalog import (
    equipment_for,
    get_timeline,
    substrate_for,
    substrate_required_kg,
)
from .workflow_config import WorkflowConfig, WorkflowThresholds
from .workflow_log import (
    GenerationPayload,
    LogContext,
    LogEmitter,
    LogStatus,
    WorkflowLog,
    WorkflowLogCategory,
    WorkflowLogSink,
)
from .workflow_types import (
    HarvestTarget,
    SpeciesName,
    TaskPriority,
    WorkflowRequest,
    WorkflowTask,
    WorkflowTaskType,
)

logger = logging.getLogger(__name__)

MISTING_DURATION_HOURS = 1.0


class TaskGenerator:
    """Turns a WorkflowRequest into a flat list of WorkflowTasks."""

    def __init__(
        self,
        id_generator: Optional[IdGenerator] = None,
        clock: Optional[Clock] = None,
        log_sink: Optional[WorkflowLogSink] = None,
        thresholds: Optional[WorkflowThresholds] = None,
    ):
        self.id_generator = id_generator or UuidIdGenerator()
        self.thresholds = thresholds or WorkflowConfig.get_thresholds()
        self._log = LogEmitter(
            log_sink if log_sink is not None else WorkflowLog(),
            self.id_generator,
            clock or utc_now,
            source="task-generator",
        )

    def generate(self, request: WorkflowRequest) -> List[WorkflowTask]:
        context = LogContext(request_id=request.request_id, facility_id=",".join(request.facility_ids))

        if not request.harvest_targets:
            self._log.emit(
                WorkflowLogCategory.WORKFLOW_GENERATION,
                GenerationPayload(request_id=request.request_id, task_count=0),
                LogStatus.FAILURE,
                "Request has no harvest targets; no tasks generated",
                context,
            )
            return []

        slots = self._room_slots(request.facility_ids)
        last_cleaning: Dict[str, Tuple[str, SpeciesName]] = {}
        tasks: List[WorkflowTask] = []

        for index, target in enumerate(request.harvest_targets):
            facility, room = slots[index % len(slots)]
            previous = last_cleaning.get(room)
            chain = self._cultivation_chain(target, request, facility, room, previous)
            tasks.extend(chain)
            cleaning = chain[-1]
            last_cleaning[room] = (cleaning.task_id, target.species)

        equipment = tuple(request.constraint_set.equipment_available)
        if equipment:
            tasks.append(WorkflowTask(
                task_id=self._next_id(),
                task_type=WorkflowTaskType.EQUIPMENT_MAINTENANCE,
                duration_hours=4,
                labor_hours=2,
                priority=TaskPriority.NORMAL,
                rationale=f"Scheduled maintenance for {len(equipment)} equipment items",
                equipment=equipment,
            ))

        species = tuple(dict.fromkeys(t.species.value for t in request.harvest_targets))
        self._log.emit(
            WorkflowLogCategory.WORKFLOW_GENERATION,
            GenerationPayload(request_id=request.request_id, task_count=len(tasks), species=species),
            LogStatus.SUCCESS,
            f"Generated {len(tasks)} tasks for {len(request.harvest_targets)} harvest targets",
            context,
        )
        logger.info(f"Request {request.request_id}: generated {len(tasks)} tasks")
        return tasks

    def validate_tasks(self, tasks: List[WorkflowTask], request: WorkflowRequest) -> List[str]:
        """Feasibility issues of a task list against the request's constraint set."""
        issues: List[str] = []

        total_labor = sum(t.labor_hours for t in tasks)
        budget = request.labor_budget_hours
        if total_labor > budget:
            issues.append(
                f"Total labor hours required ({total_labor:.1f}) exceeds available "
                f"({budget:.0f} over {request.time_window_days} days)"
            )

        available = set(request.constraint_set.equipment_available)
        required = sorted({e for t in tasks for e in t.equipment})
        for equipment_id in required:
            if equipment_id not in available:
                issues.append(f'Required equipment "{equipment_id}" not available in constraint set')

        return issues

    # ───────────────────────────────────────────────────────────────────────

    def _next_id(self) -> str:
        return self.id_generator.next_id("task")

    def _room_slots(self, facility_ids: Tuple[str, ...]) -> List[Tuple[str, str]]:
        """Rooms interleaved across facilities: f1/room-1, f2/room-1, f1/room-2..."""
        per_facility = max(1, self.thresholds.rooms_per_facility)
        return [
            (facility, f"{facility}/room-{number}")
            for number in range(1, per_facility + 1)
            for facility in facility_ids
        ]

    def _cultivation_chain(
        self,
        target: HarvestTarget,
        request: WorkflowRequest,
        facility: str,
        room: str,
        previous: Optional[Tuple[str, SpeciesName]],
    ) -> List[WorkflowTask]:
        species = target.species
        timeline = get_timeline(species)
        substrate = substrate_for(species, target.substrate_type)
        substrate_kg = substrate_required_kg(target.target_yield_kg)
        equipment = tuple(request.constraint_set.equipment_available)
        mitigation = request.prioritize_contamination_mitigation

        def task(task_type, duration, labor, priority, rationale, depends_on=(), lag=0.0, stage=None, gear=()):
            return WorkflowTask(
                task_id=self._next_id(),
                task_type=task_type,
                duration_hours=duration,
                labor_hours=labor,
                priority=priority,
                rationale=rationale,
                species=species,
                room=room,
                facility=facility,
                stage=stage,
                substrate_type=substrate.name,
                equipment=gear,
                depends_on=tuple(depends_on),
                lag_hours=lag,
            )

        chain: List[WorkflowTask] = []
        head_deps: Tuple[str, ...] = ()

        if previous is not None:
            cleaning_id, previous_species = previous
            reset = task(
                WorkflowTaskType.SPECIES_RESET, 4, 2, TaskPriority.HIGH,
                f"Reset {room} from {previous_species.value} to {species.value}: "
                f"sanitize and restore baseline conditions",
                depends_on=(cleaning_id,), stage="reset",
            )
            chain.append(reset)
            head_deps = (reset.task_id,)

        prep = task(
            WorkflowTaskType.SUBSTRATE_PREP,
            max(1, math.ceil(substrate_kg * 4 / 10)),
            max(1, math.ceil(substrate_kg * 2 / 10)),
            TaskPriority.CRITICAL,
            f"Prepare {substrate_kg}kg {substrate.name} for {species.value} "
            f"to achieve {target.target_yield_kg:g}kg yield",
            depends_on=head_deps, stage="substrate",
            gear=equipment_for(WorkflowTaskType.SUBSTRATE_PREP, equipment),
        )
        inoculation = task(
            WorkflowTaskType.INOCULATION, 2, 2, TaskPriority.CRITICAL,
            f"Inoculate {species.value} substrate after {substrate.sterilization_hours:g}h sterilization "
            f"and {substrate.cooling_hours:g}h cooling",
            depends_on=(prep.task_id,), lag=substrate.ready_after_hours,
            stage=timeline.colonization.name,
            gear=equipment_for(WorkflowTaskType.INOCULATION, equipment),
        )
        chain += [prep, inoculation]

        colonization_hours = timeline.colonization.duration_days * 24
        if mitigation:
            chain.append(task(
                WorkflowTaskType.MONITORING, 1, 0.5, TaskPriority.HIGH,
                f"Mid-colonization contamination inspection for {species.value}",
                depends_on=(inoculation.task_id,), lag=colonization_hours / 2,
                stage=timeline.colonization.name,
            ))

        entering = timeline.stages[1]
        incubation = task(
            WorkflowTaskType.INCUBATION_TRANSITION, 1, 0.5, TaskPriority.HIGH,
            f"Transition {species.value} to {entering.name} conditions after "
            f"{timeline.colonization.duration_days} days colonization",
            depends_on=(inoculation.task_id,), lag=colonization_hours, stage=entering.name,
        )
        intermediate = timeline.intermediate
        fruiting = task(
            WorkflowTaskType.FRUITING_TRANSITION, 2, 1, TaskPriority.HIGH,
            f"Initiate fruiting conditions for {species.value}",
            depends_on=(incubation.task_id,),
            lag=intermediate.duration_days * 24 if intermediate else 0.0,
            stage=timeline.fruiting.name,
        )
        chain += [incubation, fruiting]

        if mitigation:
            chain.append(task(
                WorkflowTaskType.CO2_ADJUSTMENT, 1, 0.5, TaskPriority.NORMAL,
                f"Set CO2 to {timeline.fruiting.co2_min:g}-{timeline.fruiting.co2_max:g}ppm for fruiting",
                depends_on=(fruiting.task_id,), stage=timeline.fruiting.name,
                gear=equipment_for(WorkflowTaskType.CO2_ADJUSTMENT, equipment),
            ))

        fruiting_days = timeline.fruiting.duration_days
        misting = task(
            WorkflowTaskType.MISTING, MISTING_DURATION_HOURS, 1,
            TaskPriority.LOW if request.prioritize_labor else TaskPriority.NORMAL,
            f"Configure daily misting for the {fruiting_days}-day fruiting phase "
            f"({timeline.fruiting.humidity_min:g}-{timeline.fruiting.humidity_max:g}% RH)",
            depends_on=(fruiting.task_id,), stage=timeline.fruiting.name,
            gear=equipment_for(WorkflowTaskType.MISTING, equipment),
        )
        harvest = task(
            WorkflowTaskType.HARVEST,
            max(1, math.ceil(target.target_yield_kg / 20)),
            max(1, math.ceil(target.target_yield_kg / 10)),
            TaskPriority.CRITICAL if request.prioritize_yield else TaskPriority.HIGH,
            f"Harvest {target.target_yield_kg:g}kg of {species.value}",
            depends_on=(misting.task_id,), lag=fruiting_days * 24 - MISTING_DURATION_HOURS,
            stage="harvest",
        )
        cleaning = task(
            WorkflowTaskType.CLEANING,
            timeline.cleanup_days * 8,
            timeline.cleanup_days * 4,
            TaskPriority.CRITICAL if mitigation else TaskPriority.HIGH,
            f"Clean and sanitize {room} after harvest",
            depends_on=(harvest.task_id,), stage="cleanup",
        )
        chain += [misting, harvest, cleaning]
        return chain
