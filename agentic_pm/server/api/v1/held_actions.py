"""
Held Actions API Endpoints.

This module provides endpoints for reviewing the hold queue: listing pending
actions and approving or cancelling them before their hold expires.
"""

from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query

from agentic_pm.core.logging_config import get_logger
from agentic_pm.governance.hold_queue import time_remaining
from agentic_pm.governance.schemas.domain import HeldAction
from agentic_pm.server.schemas import HeldActionApprove, HeldActionCancel, HeldActionView
from agentic_pm.server.services.deps import ExecutorDep, GovernanceDep

logger = get_logger(__name__)

router = APIRouter()

NOT_PENDING_DETAIL = "Held action is no longer pending"


@router.get(
    "",
    response_model=List[HeldActionView],
    summary="List Pending Held Actions",
    description="Retrieve pending held actions, soonest release first, optionally for a single project.",
)
async def list_held_actions(
    governance: GovernanceDep,
    project_id: Optional[str] = Query(default=None, description="Only return actions of this project."),
):
    actions = await governance.hold_queue.list_pending(project_id)
    return [HeldActionView(action=a, hold_remaining=time_remaining(a.held_until)) for a in actions]


@router.post(
    "/{action_id}/approve",
    response_model=HeldAction,
    summary="Approve Held Action",
    description="Approve a pending held action ahead of its hold expiry.",
    responses={
        404: {"description": "Held action not found"},
        409: {"description": "Held action already approved, cancelled or executed"},
        502: {"description": "Approved, but the side effect failed"},
    },
)
async def approve_held_action(
    action_id: str,
    governance: GovernanceDep,
    executor: ExecutorDep,
    body: Optional[HeldActionApprove] = None,
):
    """
    Approve a held action.

    The approval counts toward the project's graduation. When the server has an
    action executor registered, the side effect runs immediately.
    """
    decided_by = body.decided_by if body is not None else None
    action = await governance.hold_queue.approve(action_id, decided_by, executor=executor)
    if action is None:
        raise HTTPException(status_code=409, detail=NOT_PENDING_DETAIL)
    logger.info(f"Held action {action_id} approved by {decided_by or 'unknown'}")
    return action


@router.post(
    "/{action_id}/cancel",
    response_model=HeldAction,
    summary="Cancel Held Action",
    description="Cancel a pending held action so it is never executed.",
    responses={
        404: {"description": "Held action not found"},
        409: {"description": "Held action already approved, cancelled or executed"},
    },
)
async def cancel_held_action(action_id: str, governance: GovernanceDep, body: Optional[HeldActionCancel] = None):
    """
    Cancel a held action.

    Cancelling resets the project's consecutive-approval counter for this action type.
    """
    reason = body.reason if body is not None else None
    decided_by = body.decided_by if body is not None else None
    action = await governance.hold_queue.cancel(action_id, reason, decided_by)
    if action is None:
        raise HTTPException(status_code=409, detail=NOT_PENDING_DETAIL)
    logger.info(f"Held action {action_id} cancelled by {decided_by or 'unknown'}")
    return action
