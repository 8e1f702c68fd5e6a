"""
API Schemas.

This module contains Pydantic models used for API request bodies and response validation.
These schemas define the interface contract between the dashboard and the server.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from agentic_pm.governance.schemas.domain import (
    BudgetStatus,
    DegradationConfig,
    GraduationState,
    HeldAction,
    TimeRemaining,
)


class HeldActionApprove(BaseModel):
    """
    Schema for approving a held action before its hold expires.
    """

    decided_by: Optional[str] = Field(
        default=None,
        description="Identifier of the person approving the action.",
        examples=["pm@example.com"],
    )

    model_config = ConfigDict(extra="forbid")


class HeldActionCancel(BaseModel):
    """
    Schema for cancelling a held action.

    Cancelling resets the project's consecutive-approval counter for the action type.
    """

    reason: Optional[str] = Field(
        default=None,
        description="Why the action should not be taken.",
        examples=["Stakeholder already informed in the weekly sync"],
    )
    decided_by: Optional[str] = Field(
        default=None,
        description="Identifier of the person cancelling the action.",
        examples=["pm@example.com"],
    )

    model_config = ConfigDict(
        extra="forbid",
        json_schema_extra={"example": {"reason": "Wrong recipient", "decided_by": "pm@example.com"}},
    )


class HeldActionView(BaseModel):
    """
    A pending held action together with its review countdown.
    """

    action: HeldAction
    hold_remaining: TimeRemaining = Field(..., description="Time left before the action is released.")


class GraduationStateView(BaseModel):
    """
    Graduation state of one action type and the hold time it currently yields.
    """

    state: GraduationState
    hold_minutes: int = Field(..., description="Hold duration applied to the next action of this type.")
    hold_label: str = Field(..., description="Human-readable hold duration.", examples=["15 minutes"])


class BudgetOverview(BaseModel):
    """
    Current budget status, the active degradation settings and whether LLM calls are allowed.
    """

    status: BudgetStatus
    degradation: DegradationConfig
    can_make_call: bool
    reason: Optional[str] = Field(default=None, description="Why LLM calls are blocked, if they are.")
    summary: str = Field(..., description="One-line budget summary.")
