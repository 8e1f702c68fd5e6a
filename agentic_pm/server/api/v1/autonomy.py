"""
Autonomy API Endpoints.

This module describes what the agent may do at each autonomy mode, for the
autonomy settings screen.
"""

from fastapi import APIRouter

from agentic_pm.governance.policy.evaluator import describe_capabilities
from agentic_pm.governance.schemas.domain import AutonomyMode, CapabilitySummary

router = APIRouter()


@router.get(
    "/{mode}/capabilities",
    response_model=CapabilitySummary,
    summary="Describe Autonomy Mode",
    description="List what the agent can do, must hold for review, and cannot do at an autonomy mode.",
)
async def get_capabilities(mode: AutonomyMode):
    return describe_capabilities(mode)
