"""
════════════════════════════════════════════════════════════════════════════════════════════════════
WORKFLOW API - REST Endpoints for Planning & Approval
════════════════════════════════════════════════════════════════════════════════════════════════════

Endpoints:
- GET  /workflow/status                 - Registry and threshold summary
- POST /workflow/plans                  - Run the pipeline for a WorkflowRequest
- GET  /workflow/plans                  - List plans (optional status filter)
- GET  /workflow/plans/{plan_id}        - Plan with its conflict check, audit and approvals
- POST /workflow/plans/{plan_id}/submit | approve | reject | activate | complete | rollback
- GET  /workflow/history                - Audit trail

Structural errors map to 404 (unknown plan) or 409 (gated / invalid transition).
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from .plan_assembler import Grouping
from .workflow_log import LogStatus, WorkflowLogCategory
from .workflow_service import get_workflow_service
from .workflow_types import (
    EquipmentWindow,
    GroupingMode,
    LaborWindow,
    PlanStatus,
    ResourceContext,
    StructuralErrorCode,
    TransitionResult,
    WorkflowRequest,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/workflow", tags=["Workflow Planning"])


# ═══════════════════════════════════════════════════════════════════════════════
# REQUEST MODELS
# ═══════════════════════════════════════════════════════════════════════════════

class LaborWindowInput(BaseModel):
    day: date
    hours_available: float = Field(..., ge=0)


class EquipmentWindowInput(BaseModel):
    equipment_id: str
    available_from: datetime
    available_until: datetime


class PipelineInput(BaseModel):
    """Pipeline run input."""
    request: WorkflowRequest
    labor_windows: List[LaborWindowInput] = []
    equipment_windows: List[EquipmentWindowInput] = []
    grouping: Optional[GroupingMode] = None
    task_groups: Optional[Dict[str, str]] = Field(None, description="task_id → workflow name")
    auto_submit: bool = True


class ApproveInput(BaseModel):
    reviewer_id: str
    comments: str = ""
    conditions: List[str] = []


class RejectInput(BaseModel):
    reviewer_id: str
    reason: str


class ExecutionInput(BaseModel):
    user_id: Optional[str] = None


class RollbackInput(BaseModel):
    reason: str
    user_id: Optional[str] = None


# ═══════════════════════════════════════════════════════════════════════════════
# HELPERS
# ═══════════════════════════════════════════════════════════════════════════════

def _transition_response(result: TransitionResult) -> Dict[str, Any]:
    if not result.success:
        status_code = 404 if result.error and result.error.code == StructuralErrorCode.UNKNOWN_PLAN else 409
        raise HTTPException(status_code=status_code, detail=result.error.to_dict() if result.error else result.message)
    return result.to_dict()


# ═══════════════════════════════════════════════════════════════════════════════
# ENDPOINTS
# ═══════════════════════════════════════════════════════════════════════════════

@router.get("/status")
async def get_status():
    return get_workflow_service().get_status()


@router.post("/plans")
async def create_plan(data: PipelineInput):
    context = ResourceContext(
        labor_windows=tuple(LaborWindow(w.day, w.hours_available) for w in data.labor_windows),
        equipment_windows=tuple(
            EquipmentWindow(w.equipment_id, w.available_from, w.available_until) for w in data.equipment_windows
        ),
    )
    grouping: Grouping = data.task_groups if data.task_groups else data.grouping
    state = get_workflow_service().run_pipeline(
        data.request, context=context, grouping=grouping, auto_submit=data.auto_submit
    )
    if state.workflow_plan is None:
        raise HTTPException(status_code=400, detail=state.error.to_dict() if state.error else "No plan produced")
    return state.to_dict()


@router.get("/plans")
async def list_plans(status: Optional[PlanStatus] = Query(None)):
    plans = get_workflow_service().list_plans(status)
    return {"count": len(plans), "plans": [p.to_dict() for p in plans]}


@router.get("/plans/{plan_id}")
async def get_plan(plan_id: str):
    record = get_workflow_service().get_record(plan_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Unknown plan {plan_id}")
    return {
        "plan": record.plan.to_dict(),
        "conflict_check_result": record.conflict_result.to_dict() if record.conflict_result else None,
        "audit_result": record.audit_result.to_dict() if record.audit_result else None,
        "approvals": [a.to_dict() for a in record.approvals],
    }


@router.post("/plans/{plan_id}/submit")
async def submit_plan(plan_id: str, data: ExecutionInput = ExecutionInput()):
    return _transition_response(get_workflow_service().submit(plan_id, data.user_id))


@router.post("/plans/{plan_id}/approve")
async def approve_plan(plan_id: str, data: ApproveInput):
    result = get_workflow_service().approve(plan_id, data.reviewer_id, data.comments, data.conditions)
    return _transition_response(result)


@router.post("/plans/{plan_id}/reject")
async def reject_plan(plan_id: str, data: RejectInput):
    return _transition_response(get_workflow_service().reject(plan_id, data.reviewer_id, data.reason))


@router.post("/plans/{plan_id}/activate")
async def activate_plan(plan_id: str, data: ExecutionInput = ExecutionInput()):
    return _transition_response(get_workflow_service().activate(plan_id, data.user_id))


@router.post("/plans/{plan_id}/complete")
async def complete_plan(plan_id: str, data: ExecutionInput = ExecutionInput()):
    return _transition_response(get_workflow_service().complete(plan_id, data.user_id))


@router.post("/plans/{plan_id}/rollback")
async def rollback_plan(plan_id: str, data: RollbackInput):
    return _transition_response(get_workflow_service().rollback(plan_id, data.reason, data.user_id))


@router.get("/history")
async def get_history(
    category: Optional[WorkflowLogCategory] = Query(None),
    status: Optional[LogStatus] = Query(None),
    plan_id: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=10000),
):
    entries = get_workflow_service().log.entries(category=category, status=status, plan_id=plan_id, limit=limit)
    return {"count": len(entries), "entries": [e.to_dict() for e in entries]}
