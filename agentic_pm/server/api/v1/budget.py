"""
Budget API Endpoints.

This module reports LLM spend against the daily and monthly ceilings and the
degradation tier the agent is running at.
"""

from fastapi import APIRouter

from agentic_pm.governance.budget import DEGRADATION_CONFIGS, format_budget_status
from agentic_pm.server.schemas import BudgetOverview
from agentic_pm.server.services.deps import GovernanceDep

router = APIRouter()


@router.get(
    "",
    response_model=BudgetOverview,
    summary="Get Budget Status",
    description="Retrieve today's and this month's spend, the degradation tier and whether LLM calls are allowed.",
)
async def get_budget(governance: GovernanceDep):
    check = await governance.budget.can_make_call()
    return BudgetOverview(
        status=check.budget,
        degradation=DEGRADATION_CONFIGS[check.budget.degradation_tier],
        can_make_call=check.allowed,
        reason=check.reason,
        summary=format_budget_status(check.budget),
    )
