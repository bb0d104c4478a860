"""
Tabular views over scheduled tasks (pandas).

Daily aggregation used by the conflict and policy audits, and the Gantt
export of a ScheduleProposal.
"""

from __future__ import annotations

from datetime import date
from typing import Dict, Iterable, Optional, Sequence, Set

import pandas as pd

from .workflow_types import ScheduledTask, WorkflowTaskType

SCHEDULE_COLUMNS = [
    "task_id", "type", "species", "room", "facility", "stage",
    "start", "end", "day", "duration_hours", "assigned_labor",
    "assigned_equipment", "sequence_order",
]


def schedule_to_dataframe(tasks: Iterable[ScheduledTask]) -> pd.DataFrame:
    rows = [
        {
            "task_id": t.task_id,
            "type": t.task_type.value,
            "species": t.species.value if t.species else None,
            "room": t.room,
            "facility": t.facility,
            "stage": t.stage,
            "start": t.scheduled_start,
            "end": t.scheduled_end,
            "day": t.day,
            "duration_hours": t.duration_hours,
            "assigned_labor": t.assigned_labor,
            "assigned_equipment": ",".join(t.assigned_equipment),
            "sequence_order": t.sequence_order,
        }
        for t in tasks
    ]
    df = pd.DataFrame(rows, columns=SCHEDULE_COLUMNS)
    return df.sort_values(["start", "task_id"]).reset_index(drop=True) if not df.empty else df


def daily_labor(
    tasks: Sequence[ScheduledTask],
    task_types: Optional[Set[WorkflowTaskType]] = None,
) -> Dict[date, float]:
    """Assigned labor summed per start day, in day order."""
    selected = [t for t in tasks if task_types is None or t.task_type in task_types]
    if not selected:
        return {}
    df = pd.DataFrame(
        {"day": [t.day for t in selected], "labor": [t.assigned_labor for t in selected]}
    )
    totals = df.groupby("day", sort=True)["labor"].sum()
    return {day: float(value) for day, value in totals.items()}


def daily_task_ids(
    tasks: Sequence[ScheduledTask],
    task_types: Optional[Set[WorkflowTaskType]] = None,
) -> Dict[date, list]:
    """Task IDs per start day, each list sorted."""
    grouped: Dict[date, list] = {}
    for t in tasks:
        if task_types is None or t.task_type in task_types:
            grouped.setdefault(t.day, []).append(t.task_id)
    return {day: sorted(ids) for day, ids in sorted(grouped.items())}


def species_per_day(tasks: Sequence[ScheduledTask]) -> Dict[date, Set[str]]:
    result: Dict[date, Set[str]] = {}
    for t in tasks:
        if t.species is not None:
            result.setdefault(t.day, set()).add(t.species.value)
    return result
