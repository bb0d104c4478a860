"""
GrowFlow - Workflow Module
==========================

Scheduling & conflict-audit engine for cultivation facilities:
- TaskGenerator: WorkflowRequest → WorkflowTasks
- ScheduleBuilder: WorkflowTasks → ScheduleProposal
- ConflictAuditor: ScheduleProposal → ConflictCheckResult (allow / warn / block)
- PlanAssembler: → draft WorkflowPlan
- PolicyAuditor: WorkflowPlan → WorkflowAuditResult
- ApprovalManager: plan lifecycle (submit, approve, reject, activate, complete, rollback)
- WorkflowLog: audit trail, one entry per state change

WorkflowService wires them together for the REST layer.
"""

# Types
from growflow.workflow.workflow_types import (
    ApprovalDecision,
    AuditIssue,
    ConflictCheckResult,
    ConflictSeverity,
    ConflictType,
    ConstraintSet,
    Decision,
    EquipmentWindow,
    GroupingMode,
    HarvestTarget,
    LaborWindow,
    PlanStatus,
    PlanTradeoffs,
    RegressionDetection,
    ResourceContext,
    ScheduledTask,
    ScheduleProposal,
    SpeciesName,
    StructuralError,
    StructuralErrorCode,
    TaskPriority,
    TransitionResult,
    ValidationOutcome,
    WorkflowApproval,
    WorkflowAuditResult,
    WorkflowConflict,
    WorkflowGroup,
    WorkflowPlan,
    WorkflowRequest,
    WorkflowTask,
    WorkflowTaskType,
)

# IDs & config
from growflow.workflow.identifiers import (
    FixedClock,
    IdGenerator,
    SequentialIdGenerator,
    UuidIdGenerator,
)
from growflow.workflow.workflow_config import WorkflowConfig, WorkflowThresholds

# Engines
from growflow.workflow.task_generator import TaskGenerator
from growflow.workflow.schedule_builder import ScheduleBuilder, distribute_across_rooms
from growflow.workflow.conflict_auditor import ConflictAuditor, NO_CONFLICTS_RATIONALE
from growflow.workflow.plan_assembler import PlanAssembler
from growflow.workflow.policy_auditor import PolicyAuditor
from growflow.workflow.approval_manager import ApprovalManager, VALID_TRANSITIONS

# Log
from growflow.workflow.workflow_log import (
    LogStatus,
    WorkflowLog,
    WorkflowLogCategory,
    WorkflowLogEntry,
    WorkflowLogSink,
)

# Service
from growflow.workflow.workflow_service import (
    WorkflowService,
    WorkflowState,
    get_workflow_service,
    reset_workflow_service,
)

__all__ = [
    # Types
    "ApprovalDecision",
    "AuditIssue",
    "ConflictCheckResult",
    "ConflictSeverity",
    "ConflictType",
    "ConstraintSet",
    "Decision",
    "EquipmentWindow",
    "GroupingMode",
    "HarvestTarget",
    "LaborWindow",
    "PlanStatus",
    "PlanTradeoffs",
    "RegressionDetection",
    "ResourceContext",
    "ScheduledTask",
    "ScheduleProposal",
    "SpeciesName",
    "StructuralError",
    "StructuralErrorCode",
    "TaskPriority",
    "TransitionResult",
    "ValidationOutcome",
    "WorkflowApproval",
    "WorkflowAuditResult",
    "WorkflowConflict",
    "WorkflowGroup",
    "WorkflowPlan",
    "WorkflowRequest",
    "WorkflowTask",
    "WorkflowTaskType",
    # IDs & config
    "FixedClock",
    "IdGenerator",
    "SequentialIdGenerator",
    "UuidIdGenerator",
    "WorkflowConfig",
    "WorkflowThresholds",
    # Engines
    "TaskGenerator",
    "ScheduleBuilder",
    "distribute_across_rooms",
    "ConflictAuditor",
    "NO_CONFLICTS_RATIONALE",
    "PlanAssembler",
    "PolicyAuditor",
    "ApprovalManager",
    "VALID_TRANSITIONS",
    # Log
    "LogStatus",
    "WorkflowLog",
    "WorkflowLogCategory",
    "WorkflowLogEntry",
    "WorkflowLogSink",
    # Service
    "WorkflowService",
    "WorkflowState",
    "get_workflow_service",
    "reset_workflow_service",
]
