from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

from pydantic import Field

from ..schemas.base import BaseSchema
from ..schemas.domain import AutonomyMode, PolicyAction, PolicyLevel

DEFAULT_BACKGROUND_DENY_TOOLS = frozenset({"outlook_send_email", "jira_create_issue", "artefact_revert"})


class PolicyConfig(BaseSchema):
    """
    Configuration for the policy evaluator.

    Attributes:
        hard_deny_tools: Tool names that are always denied. Empty by default;
            used as an emergency kill switch for a single tool.
        background_deny_tools: Tool names denied when the agent runs a
            background cycle, whatever the autonomy mode or pre-approval.
        default_hold_minutes: Hold duration used when a ``hold_queue`` tool
            declares none.
    """

    hard_deny_tools: frozenset[str] = Field(default_factory=frozenset)
    background_deny_tools: frozenset[str] = Field(default=DEFAULT_BACKGROUND_DENY_TOOLS)
    default_hold_minutes: int = Field(default=30, ge=0)


@dataclass(frozen=True)
class PolicyDecision:
    """
    Result of evaluating one proposed tool call.

    Attributes:
        permitted: True when the call may proceed now or after a hold.
        action: What the caller must do next.
        reason: Human-readable explanation, shown in audit records.
        hold_minutes: Hold duration, only set when ``action`` is ``hold``.
    """

    permitted: bool
    action: PolicyAction
    reason: str
    hold_minutes: Optional[int] = None

    def __post_init__(self) -> None:
        if self.permitted != (self.action in (PolicyAction.execute, PolicyAction.hold)):
            raise ValueError(f"Inconsistent policy decision: permitted={self.permitted} action={self.action.value}")


AUTONOMY_RULES: Dict[AutonomyMode, Dict[PolicyLevel, PolicyAction]] = {
    AutonomyMode.observe: {
        PolicyLevel.always_allowed: PolicyAction.execute,
        PolicyLevel.auto_execute: PolicyAction.deny,
        PolicyLevel.hold_queue: PolicyAction.deny,
        PolicyLevel.requires_approval: PolicyAction.deny,
        PolicyLevel.never: PolicyAction.deny,
    },
    AutonomyMode.maintain: {
        PolicyLevel.always_allowed: PolicyAction.execute,
        PolicyLevel.auto_execute: PolicyAction.execute,
        PolicyLevel.hold_queue: PolicyAction.escalate,
        PolicyLevel.requires_approval: PolicyAction.escalate,
        PolicyLevel.never: PolicyAction.deny,
    },
    AutonomyMode.act: {
        PolicyLevel.always_allowed: PolicyAction.execute,
        PolicyLevel.auto_execute: PolicyAction.execute,
        PolicyLevel.hold_queue: PolicyAction.hold,
        PolicyLevel.requires_approval: PolicyAction.escalate,
        PolicyLevel.never: PolicyAction.deny,
    },
}

POLICY_LEVEL_DESCRIPTIONS: Dict[PolicyLevel, str] = {
    PolicyLevel.always_allowed: "Read project data, search tickets, read emails",
    PolicyLevel.auto_execute: "Update artefacts, log events, send user notifications, add Jira comments",
    PolicyLevel.hold_queue: "Send stakeholder emails (with review), change Jira status (with review)",
    PolicyLevel.requires_approval: "Create Jira tickets, revert artefacts, send external emails",
    PolicyLevel.never: "Delete data, share confidential information, modify own autonomy",
}


def _validate_rules() -> None:
    """Fail at import time if any (mode, level) pair lacks a rule."""
    for mode in AutonomyMode:
        row = AUTONOMY_RULES.get(mode)
        if row is None:
            raise RuntimeError(f"AUTONOMY_RULES has no row for mode '{mode.value}'")
        missing = [level.value for level in PolicyLevel if level not in row]
        if missing:
            raise RuntimeError(f"AUTONOMY_RULES['{mode.value}'] is missing levels: {missing}")
    undescribed = [level.value for level in PolicyLevel if level not in POLICY_LEVEL_DESCRIPTIONS]
    if undescribed:
        raise RuntimeError(f"POLICY_LEVEL_DESCRIPTIONS is missing levels: {undescribed}")


_validate_rules()
