"""
════════════════════════════════════════════════════════════════════════════════════════════════════
WORKFLOW LOG - Audit Trail of Engine State Changes
════════════════════════════════════════════════════════════════════════════════════════════════════

Every state-changing engine call emits exactly one WorkflowLogEntry to a
WorkflowLogSink. Read-only queries emit nothing.

Payloads are a closed set of frozen dataclasses; each payload kind is valid
for a fixed set of categories (see PAYLOAD_CATEGORIES).

The in-memory WorkflowLog is bounded and process-local; durable storage is a
collaborator that implements the same sink protocol.
"""

from __future__ import annotations

import json
import logging
import threading
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Deque, Dict, List, Optional, Protocol, Tuple, Union

import pandas as pd

from .identifiers import Clock, IdGenerator

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════════
# ENUMS
# ═══════════════════════════════════════════════════════════════════════════════

class WorkflowLogCategory(str, Enum):
    WORKFLOW_GENERATION = "workflow-generation"
    SCHEDULE_PROPOSAL = "schedule-proposal"
    CONFLICT_DETECTION = "conflict-detection"
    WORKFLOW_PLAN = "workflow-plan"
    AUDIT = "audit"
    APPROVAL = "approval"
    REJECTION = "rejection"
    EXECUTION = "execution"
    ROLLBACK = "rollback"


class LogStatus(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    WARNING = "warning"


# ═══════════════════════════════════════════════════════════════════════════════
# PAYLOADS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class GenerationPayload:
    request_id: str
    task_count: int
    species: Tuple[str, ...] = ()
    kind: str = "generation"


@dataclass(frozen=True)
class SchedulePayload:
    proposal_id: str
    task_count: int
    total_days: int
    confidence: float
    risk_factors: Tuple[str, ...] = ()
    structural_errors: Tuple[str, ...] = ()
    kind: str = "schedule"


@dataclass(frozen=True)
class ConflictPayload:
    result_id: str
    proposal_id: Optional[str]
    decision: str
    conflict_count: int
    conflict_types: Tuple[str, ...] = ()
    kind: str = "conflict"


@dataclass(frozen=True)
class PlanPayload:
    plan_id: str
    proposal_id: str
    status: str
    overall_confidence: float
    group_count: int
    kind: str = "plan"


@dataclass(frozen=True)
class AuditPayload:
    audit_id: str
    plan_id: str
    decision: str
    failed_validations: Tuple[str, ...] = ()
    regression_detected: bool = False
    kind: str = "audit"


@dataclass(frozen=True)
class TransitionPayload:
    plan_id: str
    action: str
    from_status: Optional[str]
    to_status: Optional[str]
    actor: Optional[str] = None
    reason: Optional[str] = None
    error_code: Optional[str] = None
    kind: str = "transition"


LogPayload = Union[
    GenerationPayload,
    SchedulePayload,
    ConflictPayload,
    PlanPayload,
    AuditPayload,
    TransitionPayload,
]

PAYLOAD_CATEGORIES: Dict[type, Tuple[WorkflowLogCategory, ...]] = {
    GenerationPayload: (WorkflowLogCategory.WORKFLOW_GENERATION,),
    SchedulePayload: (WorkflowLogCategory.SCHEDULE_PROPOSAL,),
    ConflictPayload: (WorkflowLogCategory.CONFLICT_DETECTION,),
    PlanPayload: (WorkflowLogCategory.WORKFLOW_PLAN,),
    AuditPayload: (WorkflowLogCategory.AUDIT,),
    TransitionPayload: (
        WorkflowLogCategory.APPROVAL,
        WorkflowLogCategory.REJECTION,
        WorkflowLogCategory.EXECUTION,
        WorkflowLogCategory.ROLLBACK,
    ),
}


# ═══════════════════════════════════════════════════════════════════════════════
# ENTRY
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class LogContext:
    plan_id: Optional[str] = None
    proposal_id: Optional[str] = None
    user_id: Optional[str] = None
    facility_id: Optional[str] = None
    request_id: Optional[str] = None


@dataclass(frozen=True)
class WorkflowLogEntry:
    entry_id: str
    timestamp: datetime
    category: WorkflowLogCategory
    source: str
    payload: LogPayload
    status: LogStatus
    message: str
    context: LogContext = field(default_factory=LogContext)

    def __post_init__(self):
        allowed = PAYLOAD_CATEGORIES.get(type(self.payload), ())
        if self.category not in allowed:
            raise ValueError(
                f"Payload {type(self.payload).__name__} not valid for category {self.category.value}"
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "entry_id": self.entry_id,
            "timestamp": self.timestamp.isoformat(),
            "category": self.category.value,
            "source": self.source,
            "payload": asdict(self.payload),
            "context": asdict(self.context),
            "status": self.status.value,
            "message": self.message,
        }


class WorkflowLogSink(Protocol):
    def record(self, entry: WorkflowLogEntry) -> None:
        ...


# ═══════════════════════════════════════════════════════════════════════════════
# IN-MEMORY LOG
# ═══════════════════════════════════════════════════════════════════════════════

class WorkflowLog:
    """
    Bounded in-memory sink.

    Oldest entries are dropped once ``max_entries`` is reached.
    """

    def __init__(self, max_entries: int = 10000):
        self._entries: Deque[WorkflowLogEntry] = deque(maxlen=max_entries)
        self._lock = threading.Lock()

    def record(self, entry: WorkflowLogEntry) -> None:
        with self._lock:
            self._entries.append(entry)

    def __len__(self) -> int:
        return len(self._entries)

    def entries(
        self,
        category: Optional[WorkflowLogCategory] = None,
        status: Optional[LogStatus] = None,
        plan_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[WorkflowLogEntry]:
        with self._lock:
            snapshot = list(self._entries)
        result = [
            e for e in snapshot
            if (category is None or e.category == category)
            and (status is None or e.status == status)
            and (plan_id is None or e.context.plan_id == plan_id)
        ]
        if limit is not None:
            result = result[-limit:]
        return result

    def last(self) -> Optional[WorkflowLogEntry]:
        with self._lock:
            return self._entries[-1] if self._entries else None

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def to_dataframe(self) -> pd.DataFrame:
        rows = [
            {
                "entry_id": e.entry_id,
                "timestamp": e.timestamp,
                "category": e.category.value,
                "source": e.source,
                "status": e.status.value,
                "plan_id": e.context.plan_id,
                "proposal_id": e.context.proposal_id,
                "user_id": e.context.user_id,
                "message": e.message,
            }
            for e in self.entries()
        ]
        return pd.DataFrame(rows)

    def export_json(self) -> str:
        return json.dumps([e.to_dict() for e in self.entries()], indent=2)


# ═══════════════════════════════════════════════════════════════════════════════
# EMITTER
# ═══════════════════════════════════════════════════════════════════════════════

class LogEmitter:
    """Builds entries for one engine component and hands them to the sink."""

    def __init__(self, sink: WorkflowLogSink, id_generator: IdGenerator, clock: Clock, source: str):
        self.sink = sink
        self.id_generator = id_generator
        self.clock = clock
        self.source = source

    def emit(
        self,
        category: WorkflowLogCategory,
        payload: LogPayload,
        status: LogStatus,
        message: str,
        context: Optional[LogContext] = None,
    ) -> WorkflowLogEntry:
        entry = WorkflowLogEntry(
            entry_id=self.id_generator.next_id("log"),
            timestamp=self.clock(),
            category=category,
            source=self.source,
            payload=payload,
            status=status,
            message=message,
            context=context or LogContext(),
        )
        self.sink.record(entry)
        if status == LogStatus.FAILURE:
            logger.warning(f"[{self.source}] {category.value}: {message}")
        else:
            logger.debug(f"[{self.source}] {category.value}: {message}")
        return entry
