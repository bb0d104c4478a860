"""
════════════════════════════════════════════════════════════════════════════════════════════════════
POLICY AUDITOR - Structural Domain Validation of a WorkflowPlan
════════════════════════════════════════════════════════════════════════════════════════════════════

Four independent validations, each with its own issue list:

1. Timeline   - stage ordering and minimum stage durations per cultivation
                cycle; total cycle within ±timeline_variance of the species
2. Substrate  - sterilization + cooling before inoculation, inoculation
                window, prep duration range, substrate limit
3. Facility   - equipment utilization, stage temperatures vs room bounds,
                room count, one cultivation cycle per room at a time
4. Labor      - daily ceiling (warning) / 1.5x ceiling (critical), total
                labor vs ceiling x time window

Regression detection compares against a prior accepted plan for the same
request. Decision: critical issue → block; warning or regression → warn.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from .identifiers import Clock, IdGenerator, UuidIdGenerator, utc_now
from .schedule_frame import daily_labor
from .species_catalog import (
    STAGE_SEQUENCE,
    get_timeline,
    substrate_for,
    substrate_required_kg,
)
from .workflow_config import WorkflowConfig, WorkflowThresholds
from .workflow_log import (
    AuditPayload,
    LogContext,
    LogEmitter,
    LogStatus,
    WorkflowLog,
    WorkflowLogCategory,
    WorkflowLogSink,
)
from .workflow_types import (
    AuditIssue,
    ConflictSeverity,
    Decision,
    PlanStatus,
    RegressionDetection,
    ScheduledTask,
    SpeciesName,
    ValidationOutcome,
    WorkflowAuditResult,
    WorkflowPlan,
    WorkflowTaskType,
)

logger = logging.getLogger(__name__)

CRITICAL = ConflictSeverity.CRITICAL
WARNING = ConflictSeverity.WARNING

ACCEPTED_STATUSES = {PlanStatus.APPROVED, PlanStatus.ACTIVE, PlanStatus.COMPLETED}

VALIDATION_LABELS = {
    "timeline": "timeline validation",
    "substrate": "substrate cycle validation",
    "facility_constraints": "facility constraints validation",
    "labor": "labor constraints validation",
}

VALIDATION_RECOMMENDATIONS = {
    "timeline": "Review species timelines and adjust schedule for accurate growth staging",
    "substrate": "Ensure substrate prep is completed 24-48 hours before inoculation",
    "facility_constraints": "Verify facility capacity (rooms, equipment) matches requirements",
    "labor": "Increase labor availability or extend timeline to distribute workload",
}

ROLLBACK_PROCEDURE: Tuple[str, ...] = (
    "1. Halt all active cultivation tasks immediately",
    "2. Document current state of all substrates and cultures",
    "3. Decontaminate affected growing spaces",
    "4. Quarantine any potentially contaminated biomass",
    "5. Perform full facility sanitization (bleach/IPA treatment)",
    "6. Verify environmental parameters reset to baseline",
    "7. Backup all workflow logs and sensor data",
    "8. Review failure root cause before scheduling new workflows",
    "9. Request approval from facility manager before resuming",
    "10. Execute post-rollback audit before next cultivation cycle",
)


@dataclass
class CultivationCycle:
    """Tasks of one species cycle in one room, first task of each type."""
    species: SpeciesName
    room: Optional[str]
    tasks: Dict[WorkflowTaskType, ScheduledTask] = field(default_factory=dict)

    def get(self, task_type: WorkflowTaskType) -> Optional[ScheduledTask]:
        return self.tasks.get(task_type)

    @property
    def span(self) -> Tuple:
        starts = [t.scheduled_start for t in self.tasks.values()]
        ends = [t.scheduled_end for t in self.tasks.values()]
        return min(starts), max(ends)


def cultivation_cycles(tasks: Sequence[ScheduledTask]) -> List[CultivationCycle]:
    """
    Split tasks into cycles per (species, room), in start order.

    A substrate-prep or a second inoculation opens a new cycle.
    """
    groups: Dict[Tuple, List[ScheduledTask]] = {}
    for task in tasks:
        if task.species is not None:
            groups.setdefault((task.species.value, task.room or ""), []).append(task)

    cycles: List[CultivationCycle] = []
    for key in sorted(groups):
        current: Optional[CultivationCycle] = None
        for task in sorted(groups[key], key=lambda t: (t.scheduled_start, t.task_id)):
            opens = task.task_type == WorkflowTaskType.SUBSTRATE_PREP or (
                task.task_type == WorkflowTaskType.INOCULATION
                and current is not None
                and WorkflowTaskType.INOCULATION in current.tasks
            )
            if current is None or (opens and _has_progress(current)):
                current = CultivationCycle(species=task.species, room=task.room)
                cycles.append(current)
            current.tasks.setdefault(task.task_type, task)
    return cycles


def _has_progress(cycle: CultivationCycle) -> bool:
    return any(t != WorkflowTaskType.SPECIES_RESET for t in cycle.tasks)


def _days(delta: timedelta) -> float:
    return delta.total_seconds() / 86400


class PolicyAuditor:
    """Audits plans; never mutates them."""

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
            source="policy-auditor",
        )

    def run_audit(self, plan: WorkflowPlan, prior_plan: Optional[WorkflowPlan] = None) -> WorkflowAuditResult:
        tasks = plan.schedule_proposal.scheduled_tasks
        cycles = cultivation_cycles(tasks)

        validations = {
            "timeline": self.validate_timeline(cycles),
            "substrate": self.validate_substrate(cycles, plan),
            "facility_constraints": self.validate_facility_constraints(cycles, plan),
            "labor": self.validate_labor(plan),
        }
        regression = self.detect_regression(plan, prior_plan)

        severities = [s for v in validations.values() for s in v.severities]
        decision = Decision.from_severities(severities)
        if regression.detected:
            decision = Decision.highest([decision, Decision.WARN])

        result = WorkflowAuditResult(
            audit_id=self.id_generator.next_id("audit"),
            timestamp=self.clock(),
            plan_id=plan.plan_id,
            plan_version=plan.version,
            decision=decision,
            timeline_validation=validations["timeline"],
            substrate_validation=validations["substrate"],
            facility_constraints_validation=validations["facility_constraints"],
            labor_validation=validations["labor"],
            regression_detection=regression,
            rationale=self._rationale(decision, validations, regression),
            recommendations=self._recommendations(validations, regression),
            rollback_steps=None if decision == Decision.BLOCK else ROLLBACK_PROCEDURE,
        )

        failed = tuple(name for name, v in validations.items() if not v.is_valid)
        self._log.emit(
            WorkflowLogCategory.AUDIT,
            AuditPayload(
                audit_id=result.audit_id,
                plan_id=plan.plan_id,
                decision=decision.value,
                failed_validations=failed,
                regression_detected=regression.detected,
            ),
            LogStatus.SUCCESS if decision == Decision.ALLOW else LogStatus.WARNING,
            result.rationale,
            LogContext(plan_id=plan.plan_id, proposal_id=plan.schedule_proposal.proposal_id,
                       request_id=plan.request_id),
        )
        logger.info(f"Audit {result.audit_id} of plan {plan.plan_id}: {decision.value}")
        return result

    # ═══════════════════════════════════════════════════════════════════════
    # VALIDATIONS
    # ═══════════════════════════════════════════════════════════════════════

    def validate_timeline(self, cycles: List[CultivationCycle]) -> ValidationOutcome:
        issues: List[AuditIssue] = []
        for cycle in cycles:
            name = cycle.species.value
            timeline = get_timeline(cycle.species)

            present = [(t, cycle.get(t)) for t in STAGE_SEQUENCE if cycle.get(t) is not None]
            for (earlier_type, earlier), (later_type, later) in zip(present, present[1:]):
                if later.scheduled_start < earlier.scheduled_end:
                    issues.append(AuditIssue(
                        CRITICAL,
                        f"{name}: {later_type.value} ({later.task_id}) starts before "
                        f"{earlier_type.value} ({earlier.task_id}) completes",
                    ))

            missing = [t.value for t in STAGE_SEQUENCE if cycle.get(t) is None]
            if missing:
                issues.append(AuditIssue(WARNING, f"{name} cycle in {cycle.room} has no {', '.join(missing)} task"))

            minimums = [
                (WorkflowTaskType.INOCULATION, WorkflowTaskType.INCUBATION_TRANSITION, timeline.colonization),
                (WorkflowTaskType.INCUBATION_TRANSITION, WorkflowTaskType.FRUITING_TRANSITION, timeline.intermediate),
                (WorkflowTaskType.FRUITING_TRANSITION, WorkflowTaskType.HARVEST, timeline.fruiting),
            ]
            for before_type, after_type, stage in minimums:
                before, after = cycle.get(before_type), cycle.get(after_type)
                if stage is None or before is None or after is None:
                    continue
                actual = after.scheduled_start - before.scheduled_end
                if actual < timedelta(days=stage.duration_days):
                    issues.append(AuditIssue(
                        CRITICAL,
                        f"{name}: {stage.name} stage lasts {_days(actual):.1f} days, "
                        f"minimum {stage.duration_days}",
                    ))

            inoculation = cycle.get(WorkflowTaskType.INOCULATION)
            harvest = cycle.get(WorkflowTaskType.HARVEST)
            if inoculation is not None and harvest is not None:
                actual_days = _days(harvest.scheduled_end - inoculation.scheduled_start)
                expected = timeline.total_cycle_days
                if abs(actual_days - expected) / expected > self.thresholds.timeline_variance:
                    issues.append(AuditIssue(
                        WARNING,
                        f"{name}: cycle takes {actual_days:.1f} days, expected {expected} "
                        f"(±{self.thresholds.timeline_variance:.0%})",
                    ))
        return ValidationOutcome(tuple(issues))

    def validate_substrate(self, cycles: List[CultivationCycle], plan: WorkflowPlan) -> ValidationOutcome:
        issues: List[AuditIssue] = []
        window = timedelta(hours=self.thresholds.inoculation_window_hours)

        for cycle in cycles:
            prep = cycle.get(WorkflowTaskType.SUBSTRATE_PREP)
            if prep is None:
                continue
            name = cycle.species.value
            profile = substrate_for(cycle.species, prep.substrate_type)

            duration = prep.duration_hours
            if not self.thresholds.prep_min_hours <= duration <= self.thresholds.prep_max_hours:
                issues.append(AuditIssue(
                    WARNING,
                    f"Substrate prep duration {duration:.1f}h is outside typical "
                    f"{self.thresholds.prep_min_hours:g}-{self.thresholds.prep_max_hours:g}h range ({name})",
                ))

            inoculation = cycle.get(WorkflowTaskType.INOCULATION)
            if inoculation is None:
                continue
            ready = prep.scheduled_end + timedelta(hours=profile.ready_after_hours)
            if inoculation.scheduled_start < ready:
                issues.append(AuditIssue(
                    CRITICAL,
                    f"{name}: inoculation {inoculation.task_id} starts before {profile.name} finishes "
                    f"{profile.sterilization_hours:g}h sterilization and {profile.cooling_hours:g}h cooling",
                ))
            elif inoculation.scheduled_start > ready + window:
                waited = (inoculation.scheduled_start - ready).total_seconds() / 3600
                issues.append(AuditIssue(
                    WARNING,
                    f"{name}: inoculation {waited:.0f}h after substrate is ready "
                    f"(window {self.thresholds.inoculation_window_hours:g}h)",
                ))

        required = sum(substrate_required_kg(t.target_yield_kg) for t in plan.request.harvest_targets)
        limit = plan.request.constraint_set.substrate_limit_kg
        if required > limit:
            issues.append(AuditIssue(
                CRITICAL,
                f"Substrate requirement ({required}kg) exceeds limit ({limit:g}kg)",
            ))
        return ValidationOutcome(tuple(issues))

    def validate_facility_constraints(self, cycles: List[CultivationCycle], plan: WorkflowPlan) -> ValidationOutcome:
        issues: List[AuditIssue] = []
        request = plan.request
        constraints = request.constraint_set

        for equipment_id, utilization in sorted(plan.schedule_proposal.equipment_utilization.items()):
            if utilization > 100:
                issues.append(AuditIssue(
                    CRITICAL, f'Equipment "{equipment_id}" over-allocated ({utilization:.0f}% utilization)'
                ))

        for species in sorted({c.species for c in cycles}, key=lambda s: s.value):
            for stage in get_timeline(species).stages:
                if stage.temp_max < constraints.min_room_temperature or stage.temp_min > constraints.max_room_temperature:
                    issues.append(AuditIssue(
                        CRITICAL,
                        f"{species.value} {stage.name} needs {stage.temp_min:g}-{stage.temp_max:g}°C; rooms "
                        f"hold {constraints.min_room_temperature:g}-{constraints.max_room_temperature:g}°C",
                    ))

        rooms = {t.room for t in plan.schedule_proposal.scheduled_tasks if t.room}
        capacity = len(request.facility_ids) * self.thresholds.rooms_per_facility
        if len(rooms) > capacity:
            issues.append(AuditIssue(
                WARNING, f"Room requirement ({len(rooms)} rooms) may exceed facility capacity ({capacity})"
            ))

        by_room: Dict[str, List[CultivationCycle]] = {}
        for cycle in cycles:
            if cycle.room:
                by_room.setdefault(cycle.room, []).append(cycle)
        for room in sorted(by_room):
            ordered = sorted(by_room[room], key=lambda c: c.span[0])
            for first, second in zip(ordered, ordered[1:]):
                if second.span[0] < first.span[1]:
                    issues.append(AuditIssue(
                        CRITICAL,
                        f"{room} hosts {first.species.value} and {second.species.value} cycles at the same time",
                    ))
        return ValidationOutcome(tuple(issues))

    def validate_labor(self, plan: WorkflowPlan) -> ValidationOutcome:
        issues: List[AuditIssue] = []
        request = plan.request
        ceiling = request.constraint_set.labor_hours_available
        critical_limit = ceiling * self.thresholds.labor_critical_multiplier

        for day, labor in daily_labor(plan.schedule_proposal.scheduled_tasks).items():
            if labor > critical_limit:
                issues.append(AuditIssue(
                    CRITICAL,
                    f"Labor on {day.isoformat()} ({labor:.1f}h) exceeds "
                    f"{self.thresholds.labor_critical_multiplier:g}x the daily ceiling ({ceiling:g}h)",
                ))
            elif labor > ceiling:
                issues.append(AuditIssue(
                    WARNING, f"Labor on {day.isoformat()} ({labor:.1f}h) exceeds the daily ceiling ({ceiling:g}h)"
                ))

        total = plan.schedule_proposal.total_labor_hours
        budget = request.labor_budget_hours
        if total > budget:
            issues.append(AuditIssue(
                CRITICAL,
                f"Total labor ({total:.1f}h) exceeds available {budget:g}h over {request.time_window_days} days",
            ))
        return ValidationOutcome(tuple(issues))

    def detect_regression(self, plan: WorkflowPlan, prior_plan: Optional[WorkflowPlan]) -> RegressionDetection:
        if (
            prior_plan is None
            or prior_plan.plan_id == plan.plan_id
            or prior_plan.request_id != plan.request_id
            or prior_plan.status not in ACCEPTED_STATUSES
        ):
            return RegressionDetection()

        tolerance = self.thresholds.regression_tolerance
        current, previous = plan.schedule_proposal, prior_plan.schedule_proposal
        metrics: List[str] = []
        details: List[str] = []

        if current.total_days > previous.total_days * (1 + tolerance):
            metrics.append("total_days")
            details.append(f"Schedule duration {current.total_days}d vs {previous.total_days}d previously")
        if current.total_labor_hours > previous.total_labor_hours * (1 + tolerance):
            metrics.append("total_labor_hours")
            details.append(
                f"Labor {current.total_labor_hours:.1f}h vs {previous.total_labor_hours:.1f}h previously"
            )
        if plan.overall_confidence < prior_plan.overall_confidence * (1 - tolerance):
            metrics.append("overall_confidence")
            details.append(
                f"Confidence {plan.overall_confidence:g} vs {prior_plan.overall_confidence:g} previously"
            )

        return RegressionDetection(detected=bool(metrics), affected_metrics=tuple(metrics), details=tuple(details))

    # ───────────────────────────────────────────────────────────────────────

    @staticmethod
    def _rationale(
        decision: Decision,
        validations: Dict[str, ValidationOutcome],
        regression: RegressionDetection,
    ) -> str:
        if decision == Decision.BLOCK:
            failed = [
                VALIDATION_LABELS[name] for name, v in validations.items()
                if CRITICAL in v.severities
            ]
            return f"Plan cannot be approved: failed {', '.join(failed)}"
        if decision == Decision.WARN:
            parts = []
            warned = [VALIDATION_LABELS[name] for name, v in validations.items() if not v.is_valid]
            if warned:
                parts.append(f"warnings in {', '.join(warned)}")
            if regression.detected:
                parts.append(f"regressions detected in {', '.join(regression.affected_metrics)}")
            return f"Plan approvable with caveats: {'; '.join(parts)}"
        return "Plan passed all audit validations and is ready for approval"

    @staticmethod
    def _recommendations(
        validations: Dict[str, ValidationOutcome],
        regression: RegressionDetection,
    ) -> Tuple[str, ...]:
        recommendations = [
            VALIDATION_RECOMMENDATIONS[name] for name, v in validations.items() if not v.is_valid
        ]
        if regression.detected:
            recommendations.append("Compare against the previously approved plan before approving")
        return tuple(recommendations)
