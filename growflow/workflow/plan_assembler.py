"""
════════════════════════════════════════════════════════════════════════════════════════════════════
PLAN ASSEMBLER - ScheduleProposal + ConflictCheckResult → draft WorkflowPlan
════════════════════════════════════════════════════════════════════════════════════════════════════

Groups scheduled tasks into named sub-workflows (per species, per facility or
a caller mapping), estimates per-group yield and labor cost, fills tradeoff
templates and scores the plan:

    confidence = 100
               - 50 (block) / 20 (warn)
               - min(15, 3 x risk factors)
               - 0.5 x (100 - schedule confidence)
               - min(20, 40 x conflict density)
    floored at min_plan_confidence
"""

from __future__ import annotations

import logging
from typing import Dict, List, Mapping, Optional, Sequence, Union

import numpy as np

from .identifiers import Clock, IdGenerator, UuidIdGenerator, utc_now
from .workflow_config import WorkflowConfig, WorkflowThresholds
from .workflow_log import (
    LogContext,
    LogEmitter,
    LogStatus,
    PlanPayload,
    WorkflowLog,
    WorkflowLogCategory,
    WorkflowLogSink,
)
from .workflow_types import (
    ConflictCheckResult,
    Decision,
    GroupingMode,
    PlanStatus,
    PlanTradeoffs,
    ScheduledTask,
    ScheduleProposal,
    TaskPriority,
    WorkflowGroup,
    WorkflowPlan,
    WorkflowRequest,
    WorkflowTask,
    WorkflowTaskType,
)

logger = logging.getLogger(__name__)

MAINTENANCE_GROUP = "Equipment & Facility Maintenance"

DECISION_PENALTY = {Decision.ALLOW: 0.0, Decision.WARN: 20.0, Decision.BLOCK: 50.0}

Grouping = Union[GroupingMode, Mapping[str, str], None]


class PlanAssembler:
    """Builds draft WorkflowPlans."""

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
            source="plan-assembler",
        )

    def assemble(
        self,
        proposal: ScheduleProposal,
        conflict_result: ConflictCheckResult,
        workflow_tasks: Sequence[WorkflowTask],
        request: WorkflowRequest,
        grouping: Grouping = None,
    ) -> WorkflowPlan:
        groups = self.group_tasks(proposal.scheduled_tasks, request, grouping)
        priorities = {t.task_id: t.priority for t in workflow_tasks}
        priority_levels = {
            t.task_id: priorities.get(t.task_id, TaskPriority.NORMAL).rank
            for t in proposal.scheduled_tasks
        }
        confidence = self.overall_confidence(proposal, conflict_result)
        total_yield = sum(g.estimated_yield_kg for g in groups)
        total_cost = sum(g.labor_cost for g in groups)

        plan = WorkflowPlan(
            plan_id=self.id_generator.next_id("plan"),
            created_at=self.clock(),
            request=request,
            schedule_proposal=proposal,
            grouped_workflows=tuple(groups),
            priority_levels=priority_levels,
            tradeoffs=self.tradeoffs(proposal, request),
            overall_confidence=confidence,
            estimated_benefit=(
                f"{total_yield:.1f}kg projected across {len(groups)} workflow(s) "
                f"for ${total_cost:,.0f} labor"
            ),
            conflict_result_id=conflict_result.result_id,
            conflict_decision=conflict_result.decision,
            status=PlanStatus.DRAFT,
        )

        self._log.emit(
            WorkflowLogCategory.WORKFLOW_PLAN,
            PlanPayload(
                plan_id=plan.plan_id,
                proposal_id=proposal.proposal_id,
                status=plan.status.value,
                overall_confidence=confidence,
                group_count=len(groups),
            ),
            LogStatus.WARNING if conflict_result.decision == Decision.BLOCK else LogStatus.SUCCESS,
            f"Draft plan with {len(groups)} workflow(s), confidence {confidence}",
            LogContext(plan_id=plan.plan_id, proposal_id=proposal.proposal_id, request_id=request.request_id),
        )
        logger.info(f"Plan {plan.plan_id} assembled (confidence {confidence})")
        return plan

    # ───────────────────────────────────────────────────────────────────────

    def group_tasks(
        self,
        tasks: Sequence[ScheduledTask],
        request: WorkflowRequest,
        grouping: Grouping = None,
    ) -> List[WorkflowGroup]:
        mode = grouping if grouping is not None else GroupingMode.SPECIES
        buckets: Dict[str, List[ScheduledTask]] = {}
        for task in tasks:
            buckets.setdefault(self._group_key(task, mode), []).append(task)

        yield_per_harvest = self._yield_per_harvest(tasks, request)
        groups = []
        for key, members in buckets.items():
            start = min(t.scheduled_start for t in members)
            end = max(t.scheduled_end for t in members)
            if isinstance(mode, GroupingMode) and key != MAINTENANCE_GROUP:
                label = "cultivation cycle" if mode == GroupingMode.SPECIES else "operations"
                name = f"{key} {label} ({start:%Y-%m-%d} → {end:%Y-%m-%d})"
            else:
                name = key
            harvest_yield = sum(
                yield_per_harvest.get(t.species, 0.0)
                for t in members if t.task_type == WorkflowTaskType.HARVEST
            )
            groups.append(WorkflowGroup(
                workflow_name=name,
                task_ids=tuple(t.task_id for t in members),
                start_date=start,
                end_date=end,
                estimated_yield_kg=round(harvest_yield, 2),
                labor_cost=sum(t.assigned_labor for t in members) * self.thresholds.labor_rate_per_hour,
            ))
        return groups

    def _group_key(self, task: ScheduledTask, mode: Grouping) -> str:
        if isinstance(mode, GroupingMode):
            if mode == GroupingMode.FACILITY:
                return task.facility or MAINTENANCE_GROUP
            return task.species.value if task.species else MAINTENANCE_GROUP
        return mode.get(task.task_id, MAINTENANCE_GROUP)

    @staticmethod
    def _yield_per_harvest(tasks: Sequence[ScheduledTask], request: WorkflowRequest) -> Dict:
        """Target yield of each species split evenly over its harvest tasks."""
        counts: Dict = {}
        for task in tasks:
            if task.task_type == WorkflowTaskType.HARVEST and task.species is not None:
                counts[task.species] = counts.get(task.species, 0) + 1
        targets = request.target_yield_by_species()
        return {species: targets.get(species, 0.0) / n for species, n in counts.items()}

    def tradeoffs(self, proposal: ScheduleProposal, request: WorkflowRequest) -> PlanTradeoffs:
        budget = request.labor_budget_hours
        utilization = proposal.total_labor_hours / budget * 100 if budget > 0 else 100.0
        if utilization > 90:
            labor = f"High labor utilization ({utilization:.0f}%); yield prioritized over rest periods"
        elif utilization > 70:
            labor = f"Balanced labor use ({utilization:.0f}%); efficient workflow"
        else:
            labor = f"Low labor utilization ({utilization:.0f}%); conservative schedule allows buffer"

        risks = proposal.risk_factors
        if any("clustering" in r for r in risks):
            contamination = "Moderate risk from task clustering; recommend increased cleaning frequency"
        elif risks:
            contamination = f"{len(risks)} risk factors identified; review mitigation strategies"
        else:
            contamination = "Low contamination risk with good task distribution"

        values = list(proposal.equipment_utilization.values())
        mean_utilization = float(np.mean(values)) if values else 0.0
        if mean_utilization > 70:
            equipment = "High equipment utilization; minimal idle time"
        else:
            equipment = "Moderate equipment utilization; cost-effective schedule"

        return PlanTradeoffs(labor_vs_yield=labor, contamination_risk=contamination, equipment_utilization=equipment)

    def overall_confidence(self, proposal: ScheduleProposal, conflict_result: ConflictCheckResult) -> float:
        score = (
            100.0
            - DECISION_PENALTY[conflict_result.decision]
            - min(15.0, 3.0 * len(proposal.risk_factors))
            - 0.5 * (100.0 - proposal.confidence)
            - min(20.0, 40.0 * conflict_result.conflict_density)
        )
        return round(max(self.thresholds.min_plan_confidence, score), 1)
