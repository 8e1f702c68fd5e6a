from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import Field

from .base import BaseSchema


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class AutonomyMode(str, Enum):
    observe = "observe"
    maintain = "maintain"
    act = "act"


class PolicyLevel(str, Enum):
    always_allowed = "always_allowed"
    auto_execute = "auto_execute"
    hold_queue = "hold_queue"
    requires_approval = "requires_approval"
    never = "never"


class ToolCategory(str, Enum):
    jira = "jira"
    outlook = "outlook"
    artefact = "artefact"
    notification = "notification"
    analysis = "analysis"
    project = "project"


class PolicyAction(str, Enum):
    execute = "execute"
    hold = "hold"
    escalate = "escalate"
    deny = "deny"


class HeldActionStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    cancelled = "cancelled"
    executed = "executed"


class HeldActionType(str, Enum):
    email_stakeholder = "email_stakeholder"
    jira_status_change = "jira_status_change"


class GovernanceEventType(str, Enum):
    action_held = "action_held"
    action_taken = "action_taken"
    action_approved = "action_approved"
    action_rejected = "action_rejected"
    action_escalated = "action_escalated"
    action_denied = "action_denied"
    autonomy_increased = "autonomy_increased"
    error = "error"


class EventSeverity(str, Enum):
    info = "info"
    warning = "warning"
    error = "error"


class ToolPolicy(BaseSchema):
    """
    Catalogue entry describing how a tool is governed.

    Only ``policy_level`` and ``hold_minutes`` influence evaluation; the rest is
    carried through for auditing.
    """

    name: str = Field(min_length=1)
    category: ToolCategory
    policy_level: PolicyLevel
    hold_minutes: Optional[int] = Field(default=None, ge=0)
    description: str = ""
    readonly: bool = False


class ExecutionContext(BaseSchema):
    """Per-invocation flags consulted by the policy evaluator. Never persisted."""

    is_background: bool = False
    user_approved: bool = False
    hold_queue_approved: bool = False
    project_id: Optional[str] = None


class EmailStakeholderPayload(BaseSchema):
    to: List[str] = Field(min_length=1)
    subject: str
    body_text: str
    body_html: Optional[str] = None
    context: Optional[str] = None


class JiraStatusChangePayload(BaseSchema):
    issue_key: str
    transition_id: str
    transition_name: str
    from_status: str
    to_status: str
    reason: Optional[str] = None


class EmailReceipt(BaseSchema):
    message_id: str


PAYLOAD_MODELS: Dict[HeldActionType, type[BaseSchema]] = {
    HeldActionType.email_stakeholder: EmailStakeholderPayload,
    HeldActionType.jira_status_change: JiraStatusChangePayload,
}


class HeldAction(BaseSchema):
    id: str = Field(default_factory=lambda: str(uuid4()))
    project_id: str
    action_type: HeldActionType
    payload: Dict[str, Any] = Field(default_factory=dict)

    held_until: datetime
    status: HeldActionStatus = HeldActionStatus.pending
    created_at: datetime = Field(default_factory=_utc_now)

    approved_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    executed_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    decided_by: Optional[str] = None


class GraduationState(BaseSchema):
    project_id: str
    action_type: HeldActionType
    consecutive_approvals: int = Field(default=0, ge=0)
    tier: int = Field(default=0, ge=0, le=3)
    last_approval_at: Optional[datetime] = None
    last_cancellation_at: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=_utc_now)


class BudgetStatus(BaseSchema):
    daily_spend_usd: float
    daily_limit_usd: float
    daily_hard_ceiling_usd: float
    monthly_spend_usd: float
    monthly_limit_usd: float
    degradation_tier: int = Field(ge=0, le=3)
    period_date: date
    period_month: str


class BudgetCheck(BaseSchema):
    allowed: bool
    reason: Optional[str] = None
    budget: BudgetStatus


class DegradationConfig(BaseSchema):
    tier: int
    name: str
    description: str
    haiku_percent: int
    sonnet_percent: int
    polling_interval_minutes: int
    allow_llm_calls: bool
    skip_low_priority: bool
    batch_signals: bool


class GovernanceEvent(BaseSchema):
    id: str = Field(default_factory=lambda: str(uuid4()))
    project_id: Optional[str] = None
    event_type: GovernanceEventType
    severity: EventSeverity = EventSeverity.info
    summary: str
    detail: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utc_now)


class ToolCallRecord(BaseSchema):
    tool_name: str
    category: ToolCategory
    params: Dict[str, Any] = Field(default_factory=dict)
    result: Optional[Any] = None
    error: Optional[str] = None
    policy_level: PolicyLevel
    executed_at: datetime = Field(default_factory=_utc_now)
    duration_ms: int = Field(default=0, ge=0)
    policy_permitted: bool
    policy_denial_reason: Optional[str] = None


class CapabilitySummary(BaseSchema):
    mode: AutonomyMode
    can_do: List[str] = Field(default_factory=list)
    cannot_do: List[str] = Field(default_factory=list)
    hold_queue: List[str] = Field(default_factory=list)


class ReleaseError(BaseSchema):
    action_id: str
    error: str


class ReleaseResult(BaseSchema):
    processed: int = 0
    executed: int = 0
    cancelled: int = 0
    errors: List[ReleaseError] = Field(default_factory=list)


class QueuedAction(BaseSchema):
    action: HeldAction
    hold_minutes: int
    graduation_tier: int


class TimeRemaining(BaseSchema):
    minutes: int
    seconds: int
    expired: bool
