"""
Graduation API Endpoints.

This module exposes a project's graduation state per action type together
with the hold time each state currently yields.
"""

from typing import List

from fastapi import APIRouter

from agentic_pm.governance.hold_queue import format_hold_time
from agentic_pm.governance.schemas.domain import HeldActionType
from agentic_pm.server.schemas import GraduationStateView
from agentic_pm.server.services.deps import GovernanceDep

router = APIRouter()


@router.get(
    "/{project_id}",
    response_model=List[GraduationStateView],
    summary="Get Graduation State",
    description="Retrieve graduation state for every action type of a project. Types without history report tier 0.",
)
async def get_graduation(project_id: str, governance: GovernanceDep):
    views = []
    for action_type in HeldActionType:
        state = await governance.graduation.get_state(project_id, action_type)
        minutes = await governance.graduation.get_hold_time(project_id, action_type)
        views.append(GraduationStateView(state=state, hold_minutes=minutes, hold_label=format_hold_time(minutes)))
    return views
