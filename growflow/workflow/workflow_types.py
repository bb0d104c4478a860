"""
════════════════════════════════════════════════════════════════════════════════════════════════════
WORKFLOW TYPES - Data Model for the Scheduling & Conflict-Audit Engine
════════════════════════════════════════════════════════════════════════════════════════════════════

Inbound contracts (WorkflowRequest, ConstraintSet, HarvestTarget) are pydantic
models; everything the engine produces is a frozen dataclass with tuple
collections. Lifecycle changes produce new WorkflowPlan values through
``dataclasses.replace``.

Flow:
    WorkflowRequest → [WorkflowTask] → ScheduleProposal → ConflictCheckResult
                                                 ↓
                         WorkflowPlan → WorkflowAuditResult → WorkflowApproval
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .identifiers import as_naive_utc


# ═══════════════════════════════════════════════════════════════════════════════
# ENUMS
# ═══════════════════════════════════════════════════════════════════════════════

class SpeciesName(str, Enum):
    """Cultivated species."""
    OYSTER = "oyster"
    SHIITAKE = "shiitake"
    LIONS_MANE = "lions-mane"
    KING_OYSTER = "king-oyster"
    ENOKI = "enoki"
    PIOPPINO = "pioppino"
    REISHI = "reishi"
    CORDYCEPS = "cordyceps"
    TURKEY_TAIL = "turkey-tail"
    CHESTNUT = "chestnut"
    MAITAKE = "maitake"
    CHAGA = "chaga"


class WorkflowTaskType(str, Enum):
    """Atomic work item kinds."""
    SUBSTRATE_PREP = "substrate-prep"
    INOCULATION = "inoculation"
    INCUBATION_TRANSITION = "incubation-transition"
    FRUITING_TRANSITION = "fruiting-transition"
    MISTING = "misting"
    CO2_ADJUSTMENT = "co2-adjustment"
    HARVEST = "harvest"
    CLEANING = "cleaning"
    EQUIPMENT_MAINTENANCE = "equipment-maintenance"
    MONITORING = "monitoring"
    SPECIES_RESET = "species-reset"


class TaskPriority(str, Enum):
    """Priority tier of a task."""
    CRITICAL = "critical"
    HIGH = "high"
    NORMAL = "normal"
    LOW = "low"

    @property
    def rank(self) -> int:
        return _PRIORITY_RANK[self]


_PRIORITY_RANK = {
    TaskPriority.CRITICAL: 1,
    TaskPriority.HIGH: 2,
    TaskPriority.NORMAL: 3,
    TaskPriority.LOW: 4,
}


class ConflictType(str, Enum):
    """Kind of scheduling violation."""
    OVERLAPPING_TASKS = "overlapping-tasks"
    SPECIES_INCOMPATIBILITY = "species-incompatibility"
    SUBSTRATE_BOTTLENECK = "substrate-bottleneck"
    HARVEST_CLUSTERING = "harvest-clustering"
    LABOR_OVERLOAD = "labor-overload"
    EQUIPMENT_OVER_ALLOCATION = "equipment-over-allocation"
    CONTAMINATION_RISK = "contamination-risk"
    DEPENDENCY_VIOLATION = "dependency-violation"


class ConflictSeverity(str, Enum):
    """Severity of a conflict or audit issue."""
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


class Decision(str, Enum):
    """
    Escalated decision. Strict lattice: block > warn > allow.
    """
    ALLOW = "allow"
    WARN = "warn"
    BLOCK = "block"

    @property
    def rank(self) -> int:
        return _DECISION_RANK[self]

    @classmethod
    def from_severities(cls, severities: Iterable[ConflictSeverity]) -> "Decision":
        decision = cls.ALLOW
        for severity in severities:
            if severity == ConflictSeverity.CRITICAL:
                return cls.BLOCK
            if severity == ConflictSeverity.WARNING:
                decision = cls.WARN
        return decision

    @classmethod
    def highest(cls, decisions: Iterable["Decision"]) -> "Decision":
        return max(decisions, key=lambda d: d.rank, default=cls.ALLOW)


_DECISION_RANK = {Decision.ALLOW: 0, Decision.WARN: 1, Decision.BLOCK: 2}


class PlanStatus(str, Enum):
    """Lifecycle status of a WorkflowPlan."""
    DRAFT = "draft"
    PENDING_APPROVAL = "pending-approval"
    APPROVED = "approved"
    REJECTED = "rejected"
    ACTIVE = "active"
    COMPLETED = "completed"
    ROLLED_BACK = "rolled-back"


class ApprovalDecision(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"
    PENDING_REVISION = "pending-revision"


class StructuralErrorCode(str, Enum):
    """Typed failures reported instead of raised."""
    DEPENDENCY_CYCLE = "dependency-cycle"
    UNKNOWN_DEPENDENCY = "unknown-dependency"
    UNKNOWN_PLAN = "unknown-plan"
    INVALID_TRANSITION = "invalid-transition"
    MISSING_REVIEWER = "missing-reviewer"
    MISSING_REASON = "missing-reason"
    BLOCKED_BY_CONFLICTS = "blocked-by-conflicts"
    BLOCKED_BY_AUDIT = "blocked-by-audit"
    MISSING_AUDIT = "missing-audit"
    STALE_RESULT = "stale-result"
    INVALID_REQUEST = "invalid-request"


class GroupingMode(str, Enum):
    SPECIES = "species"
    FACILITY = "facility"


# ═══════════════════════════════════════════════════════════════════════════════
# INBOUND CONTRACT (pydantic)
# ═══════════════════════════════════════════════════════════════════════════════

class HarvestTarget(BaseModel):
    """Yield target for one species."""
    model_config = ConfigDict(frozen=True)

    species: SpeciesName
    target_yield_kg: float = Field(..., gt=0)
    substrate_type: Optional[str] = None

    @field_validator("substrate_type")
    @classmethod
    def _known_substrate(cls, value: Optional[str]) -> Optional[str]:
        from .species_catalog import SUBSTRATE_PROFILES

        if value is not None and value not in SUBSTRATE_PROFILES:
            raise ValueError(f"Unknown substrate type: {value}")
        return value


class ConstraintSet(BaseModel):
    """Resource ceilings of the facilities taking part in a request."""
    model_config = ConfigDict(frozen=True)

    labor_hours_available: float = Field(..., ge=0, description="Labor ceiling per day")
    equipment_available: Tuple[str, ...] = ()
    substrate_limit_kg: float = Field(..., ge=0)
    max_room_temperature: float = 30.0
    min_room_temperature: float = 10.0


class WorkflowRequest(BaseModel):
    """Sole entry contract of the engine."""
    model_config = ConfigDict(frozen=True)

    request_id: str
    source: str = "user-submitted"
    strategy_plan_id: Optional[str] = None
    facility_ids: Tuple[str, ...] = Field(..., min_length=1)
    species_selection: Tuple[SpeciesName, ...] = ()
    harvest_targets: Tuple[HarvestTarget, ...] = ()
    constraint_set: ConstraintSet
    time_window_days: int = Field(..., gt=0)
    start_date: Optional[date] = None
    prioritize_yield: bool = False
    prioritize_contamination_mitigation: bool = False
    prioritize_labor: bool = False

    def target_yield_by_species(self) -> Dict[SpeciesName, float]:
        totals: Dict[SpeciesName, float] = {}
        for target in self.harvest_targets:
            totals[target.species] = totals.get(target.species, 0.0) + target.target_yield_kg
        return totals

    @property
    def labor_budget_hours(self) -> float:
        """Labor ceiling over the whole time window."""
        return self.constraint_set.labor_hours_available * self.time_window_days


# ═══════════════════════════════════════════════════════════════════════════════
# RESOURCE CONTEXT
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class LaborWindow:
    """Labor hours available on one calendar day."""
    day: date
    hours_available: float


@dataclass(frozen=True)
class EquipmentWindow:
    """Period during which a piece of equipment may be booked."""
    equipment_id: str
    available_from: datetime
    available_until: datetime

    def __post_init__(self):
        object.__setattr__(self, "available_from", as_naive_utc(self.available_from))
        object.__setattr__(self, "available_until", as_naive_utc(self.available_until))

    @property
    def hours(self) -> float:
        return max(0.0, (self.available_until - self.available_from).total_seconds() / 3600)


@dataclass(frozen=True)
class ResourceContext:
    """Resource availability handed to the ScheduleBuilder."""
    labor_windows: Tuple[LaborWindow, ...] = ()
    equipment_windows: Tuple[EquipmentWindow, ...] = ()

    def labor_capacity(self, day: date, default: float) -> float:
        for window in self.labor_windows:
            if window.day == day:
                return window.hours_available
        return default

    def equipment_window(self, equipment_id: str) -> Optional[EquipmentWindow]:
        for window in self.equipment_windows:
            if window.equipment_id == equipment_id:
                return window
        return None


# ═══════════════════════════════════════════════════════════════════════════════
# DATA STRUCTURES
# ═══════════════════════════════════════════════════════════════════════════════

def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _value(item: Any) -> Any:
    return item.value if isinstance(item, Enum) else item


@dataclass(frozen=True)
class StructuralError:
    """Fatal-to-the-call failure, reported as data."""
    code: StructuralErrorCode
    message: str
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code.value, "message": self.message, "details": dict(self.details)}


@dataclass(frozen=True)
class WorkflowTask:
    """Atomic unit of work produced by the TaskGenerator."""
    task_id: str
    task_type: WorkflowTaskType
    duration_hours: float
    labor_hours: float
    priority: TaskPriority
    rationale: str
    species: Optional[SpeciesName] = None
    room: Optional[str] = None
    facility: Optional[str] = None
    stage: Optional[str] = None
    substrate_type: Optional[str] = None
    equipment: Tuple[str, ...] = ()
    depends_on: Tuple[str, ...] = ()
    lag_hours: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "type": self.task_type.value,
            "species": _value(self.species),
            "room": self.room,
            "facility": self.facility,
            "stage": self.stage,
            "substrate_type": self.substrate_type,
            "duration_hours": self.duration_hours,
            "labor_hours": self.labor_hours,
            "equipment": list(self.equipment),
            "depends_on": list(self.depends_on),
            "lag_hours": self.lag_hours,
            "priority": self.priority.value,
            "rationale": self.rationale,
        }


@dataclass(frozen=True)
class ScheduledTask:
    """A WorkflowTask with a concrete time window and resources."""
    task_id: str
    task_type: WorkflowTaskType
    scheduled_start: datetime
    scheduled_end: datetime
    assigned_labor: float
    sequence_order: int
    species: Optional[SpeciesName] = None
    room: Optional[str] = None
    facility: Optional[str] = None
    stage: Optional[str] = None
    substrate_type: Optional[str] = None
    assigned_equipment: Tuple[str, ...] = ()
    depends_on: Tuple[str, ...] = ()

    @property
    def day(self) -> date:
        return self.scheduled_start.date()

    @property
    def duration_hours(self) -> float:
        return (self.scheduled_end - self.scheduled_start).total_seconds() / 3600

    def overlaps(self, other: "ScheduledTask") -> bool:
        return self.scheduled_start < other.scheduled_end and other.scheduled_start < self.scheduled_end

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "type": self.task_type.value,
            "scheduled_start": _iso(self.scheduled_start),
            "scheduled_end": _iso(self.scheduled_end),
            "room": self.room,
            "facility": self.facility,
            "species": _value(self.species),
            "stage": self.stage,
            "substrate_type": self.substrate_type,
            "assigned_labor": self.assigned_labor,
            "assigned_equipment": list(self.assigned_equipment),
            "depends_on": list(self.depends_on),
            "sequence_order": self.sequence_order,
        }


@dataclass(frozen=True)
class ScheduleProposal:
    """Immutable snapshot of one scheduling attempt."""
    proposal_id: str
    request_id: str
    created_at: datetime
    scheduled_tasks: Tuple[ScheduledTask, ...]
    start_date: datetime
    end_date: datetime
    total_days: int
    estimated_yield_kg: float
    total_labor_hours: float
    equipment_utilization: Dict[str, float]
    rationale: str
    confidence: float
    risk_factors: Tuple[str, ...] = ()
    structural_errors: Tuple[StructuralError, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.scheduled_tasks

    def task(self, task_id: str) -> Optional[ScheduledTask]:
        for scheduled in self.scheduled_tasks:
            if scheduled.task_id == task_id:
                return scheduled
        return None

    def to_dataframe(self):
        from .schedule_frame import schedule_to_dataframe

        return schedule_to_dataframe(self.scheduled_tasks)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "proposal_id": self.proposal_id,
            "request_id": self.request_id,
            "created_at": _iso(self.created_at),
            "scheduled_tasks": [t.to_dict() for t in self.scheduled_tasks],
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "total_days": self.total_days,
            "estimated_yield_kg": self.estimated_yield_kg,
            "total_labor_hours": round(self.total_labor_hours, 2),
            "equipment_utilization": dict(self.equipment_utilization),
            "rationale": self.rationale,
            "confidence": self.confidence,
            "risk_factors": list(self.risk_factors),
            "structural_errors": [e.to_dict() for e in self.structural_errors],
        }


@dataclass(frozen=True)
class WorkflowConflict:
    """A single detected violation."""
    conflict_id: str
    conflict_type: ConflictType
    severity: ConflictSeverity
    affected_task_ids: Tuple[str, ...]
    description: str
    recommended_action: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "conflict_id": self.conflict_id,
            "type": self.conflict_type.value,
            "severity": self.severity.value,
            "affected_task_ids": list(self.affected_task_ids),
            "description": self.description,
            "recommended_action": self.recommended_action,
        }


@dataclass(frozen=True)
class ConflictCheckResult:
    """All conflicts found for one ScheduleProposal, with the escalated decision."""
    result_id: str
    timestamp: datetime
    proposal_id: Optional[str]
    checked_tasks: int
    conflicts: Tuple[WorkflowConflict, ...]
    decision: Decision
    rationale: str
    recommendations: Tuple[str, ...]

    def conflicts_of(self, conflict_type: ConflictType) -> List[WorkflowConflict]:
        return [c for c in self.conflicts if c.conflict_type == conflict_type]

    @property
    def conflict_density(self) -> float:
        return len(self.conflicts) / max(1, self.checked_tasks)

    def to_dict(self, include_identity: bool = True) -> Dict[str, Any]:
        """
        Serialize. ``include_identity=False`` drops result_id and timestamp,
        leaving only the content that must be identical across repeated checks.
        """
        data: Dict[str, Any] = {
            "proposal_id": self.proposal_id,
            "checked_tasks": self.checked_tasks,
            "conflicts": [c.to_dict() for c in self.conflicts],
            "decision": self.decision.value,
            "rationale": self.rationale,
            "recommendations": list(self.recommendations),
        }
        if include_identity:
            data = {"result_id": self.result_id, "timestamp": _iso(self.timestamp), **data}
        return data


@dataclass(frozen=True)
class WorkflowGroup:
    """Named sub-workflow of a plan."""
    workflow_name: str
    task_ids: Tuple[str, ...]
    start_date: datetime
    end_date: datetime
    estimated_yield_kg: float
    labor_cost: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "workflow_name": self.workflow_name,
            "task_ids": list(self.task_ids),
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "estimated_yield_kg": self.estimated_yield_kg,
            "labor_cost": round(self.labor_cost, 2),
        }


@dataclass(frozen=True)
class PlanTradeoffs:
    labor_vs_yield: str
    contamination_risk: str
    equipment_utilization: str

    def to_dict(self) -> Dict[str, str]:
        return dataclasses.asdict(self)


@dataclass(frozen=True)
class WorkflowPlan:
    """
    The approvable unit.

    Never mutated in place: ApprovalManager transitions return a new value.
    ``rejection_reason``, ``approval_by`` and ``approved_at`` are only set by
    the matching transition.
    """
    plan_id: str
    created_at: datetime
    request: WorkflowRequest
    schedule_proposal: ScheduleProposal
    grouped_workflows: Tuple[WorkflowGroup, ...]
    priority_levels: Dict[str, int]
    tradeoffs: PlanTradeoffs
    overall_confidence: float
    estimated_benefit: str
    conflict_result_id: str
    conflict_decision: Decision
    status: PlanStatus = PlanStatus.DRAFT
    version: int = 1
    rejection_reason: Optional[str] = None
    approval_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def request_id(self) -> str:
        return self.request.request_id

    def with_changes(self, **changes: Any) -> "WorkflowPlan":
        return dataclasses.replace(self, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "plan_id": self.plan_id,
            "request_id": self.request_id,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
            "version": self.version,
            "status": self.status.value,
            "schedule_proposal": self.schedule_proposal.to_dict(),
            "grouped_workflows": [g.to_dict() for g in self.grouped_workflows],
            "priority_levels": dict(self.priority_levels),
            "tradeoffs": self.tradeoffs.to_dict(),
            "overall_confidence": self.overall_confidence,
            "estimated_benefit": self.estimated_benefit,
            "conflict_result_id": self.conflict_result_id,
            "conflict_decision": self.conflict_decision.value,
            "rejection_reason": self.rejection_reason,
            "approval_by": self.approval_by,
            "approved_at": _iso(self.approved_at),
        }


@dataclass(frozen=True)
class AuditIssue:
    severity: ConflictSeverity
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"severity": self.severity.value, "message": self.message}


@dataclass(frozen=True)
class ValidationOutcome:
    """Result of one structural validation."""
    issues: Tuple[AuditIssue, ...] = ()

    @property
    def is_valid(self) -> bool:
        return not self.issues

    @property
    def severities(self) -> List[ConflictSeverity]:
        return [issue.severity for issue in self.issues]

    def to_dict(self) -> Dict[str, Any]:
        return {"is_valid": self.is_valid, "issues": [i.to_dict() for i in self.issues]}


@dataclass(frozen=True)
class RegressionDetection:
    detected: bool = False
    affected_metrics: Tuple[str, ...] = ()
    details: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "detected": self.detected,
            "affected_metrics": list(self.affected_metrics),
            "details": list(self.details),
        }


@dataclass(frozen=True)
class WorkflowAuditResult:
    """Policy audit of one plan version."""
    audit_id: str
    timestamp: datetime
    plan_id: str
    plan_version: int
    decision: Decision
    timeline_validation: ValidationOutcome
    substrate_validation: ValidationOutcome
    facility_constraints_validation: ValidationOutcome
    labor_validation: ValidationOutcome
    regression_detection: RegressionDetection
    rationale: str
    recommendations: Tuple[str, ...]
    rollback_steps: Optional[Tuple[str, ...]] = None

    def validations(self) -> Dict[str, ValidationOutcome]:
        return {
            "timeline": self.timeline_validation,
            "substrate": self.substrate_validation,
            "facility_constraints": self.facility_constraints_validation,
            "labor": self.labor_validation,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "audit_id": self.audit_id,
            "timestamp": _iso(self.timestamp),
            "plan_id": self.plan_id,
            "plan_version": self.plan_version,
            "decision": self.decision.value,
            "validations": {name: v.to_dict() for name, v in self.validations().items()},
            "regression_detection": self.regression_detection.to_dict(),
            "rationale": self.rationale,
            "recommendations": list(self.recommendations),
            "rollback_steps": list(self.rollback_steps) if self.rollback_steps is not None else None,
        }


@dataclass(frozen=True)
class WorkflowApproval:
    """Record of one human decision on a plan."""
    approval_id: str
    plan_id: str
    reviewed_at: datetime
    reviewed_by: str
    decision: ApprovalDecision
    comments: str
    approval_rationale: str
    conditional_approvals: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "approval_id": self.approval_id,
            "plan_id": self.plan_id,
            "reviewed_at": _iso(self.reviewed_at),
            "reviewed_by": self.reviewed_by,
            "decision": self.decision.value,
            "comments": self.comments,
            "approval_rationale": self.approval_rationale,
            "conditional_approvals": list(self.conditional_approvals),
        }


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of an ApprovalManager transition."""
    success: bool
    plan: Optional[WorkflowPlan]
    message: str
    approval: Optional[WorkflowApproval] = None
    error: Optional[StructuralError] = None
    restored_plan: Optional[WorkflowPlan] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "message": self.message,
            "plan": self.plan.to_dict() if self.plan else None,
            "approval": self.approval.to_dict() if self.approval else None,
            "error": self.error.to_dict() if self.error else None,
            "restored_plan": self.restored_plan.to_dict() if self.restored_plan else None,
        }


def hours(value: float) -> timedelta:
    return timedelta(hours=value)
