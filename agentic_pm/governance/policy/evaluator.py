from __future__ import annotations

"""Policy decisions for proposed tool calls.

``PolicyEvaluator`` is the runtime authority consulted before the agent runs a
side-effecting tool. It is pure: no I/O, no clock, and the same inputs always
produce the same ``PolicyDecision``.

Evaluation order
----------------

1. Hard-deny tool names are denied.
2. Background-deny tool names are denied during background cycles. This check
   runs before pre-approval, so a user approval cannot unlock them there.
3. A user or hold-queue pre-approval executes anything except ``never`` tools.
4. Otherwise the ``AUTONOMY_RULES`` table decides.
"""

import time
from typing import Any, Dict, Optional

from agentic_pm.core.logging_config import get_logger

from ..schemas.domain import (
    AutonomyMode,
    CapabilitySummary,
    ExecutionContext,
    PolicyAction,
    PolicyLevel,
    ToolCallRecord,
    ToolPolicy,
)
from .models import AUTONOMY_RULES, POLICY_LEVEL_DESCRIPTIONS, PolicyConfig, PolicyDecision

logger = get_logger(__name__)


class PolicyEvaluator:
    """Evaluate tool calls against autonomy mode and execution context."""

    def __init__(self, config: Optional[PolicyConfig] = None) -> None:
        self._cfg = config or PolicyConfig()

    @property
    def config(self) -> PolicyConfig:
        """Return the underlying configuration object."""
        return self._cfg

    def evaluate(self, tool: ToolPolicy, mode: AutonomyMode, ctx: ExecutionContext) -> PolicyDecision:
        """
        Decide what to do with a proposed tool call.

        Args:
            tool: Catalogue entry of the tool being called.
            mode: Current autonomy mode of the agent.
            ctx: Flags describing this invocation.

        Returns:
            The ``PolicyDecision``. ``hold_minutes`` is set only for ``hold``.
        """
        decision = self._decide(tool, mode, ctx)
        logger.debug(
            f"Policy decision for tool={tool.name} mode={mode.value} level={tool.policy_level.value}: "
            f"{decision.action.value} ({decision.reason})"
        )
        return decision

    def _decide(self, tool: ToolPolicy, mode: AutonomyMode, ctx: ExecutionContext) -> PolicyDecision:
        if tool.name in self._cfg.hard_deny_tools:
            return PolicyDecision(
                permitted=False,
                action=PolicyAction.deny,
                reason=f"Tool {tool.name} is on the hard deny list",
            )

        if ctx.is_background and tool.name in self._cfg.background_deny_tools:
            return PolicyDecision(
                permitted=False,
                action=PolicyAction.deny,
                reason=f"Tool {tool.name} is not permitted during background cycles",
            )

        if (ctx.user_approved or ctx.hold_queue_approved) and tool.policy_level != PolicyLevel.never:
            return PolicyDecision(permitted=True, action=PolicyAction.execute, reason="User pre-approved this action")

        action = AUTONOMY_RULES[mode][tool.policy_level]
        level = tool.policy_level.value

        if action == PolicyAction.execute:
            return PolicyDecision(
                permitted=True,
                action=action,
                reason=f"Autonomy level '{mode.value}' permits '{level}' tools",
            )
        if action == PolicyAction.hold:
            minutes = tool.hold_minutes if tool.hold_minutes is not None else self._cfg.default_hold_minutes
            return PolicyDecision(
                permitted=True,
                action=action,
                reason=f"Tool '{tool.name}' requires hold queue review ({minutes} min)",
                hold_minutes=minutes,
            )
        if action == PolicyAction.escalate:
            return PolicyDecision(
                permitted=False,
                action=action,
                reason=f"Autonomy level '{mode.value}' requires approval for '{level}' tools",
            )
        return PolicyDecision(
            permitted=False,
            action=PolicyAction.deny,
            reason=f"Autonomy level '{mode.value}' does not permit '{level}' tools",
        )


def describe_capabilities(mode: AutonomyMode) -> CapabilitySummary:
    """
    Summarise what the agent may do at an autonomy mode, for settings screens.

    Each policy level's description lands in exactly one bucket: ``execute``
    goes to ``can_do``, ``hold`` to ``hold_queue`` and ``escalate``/``deny`` to
    ``cannot_do``.
    """
    summary = CapabilitySummary(mode=mode)
    for level, description in POLICY_LEVEL_DESCRIPTIONS.items():
        action = AUTONOMY_RULES[mode][level]
        if action == PolicyAction.execute:
            summary.can_do.append(description)
        elif action == PolicyAction.hold:
            summary.hold_queue.append(description)
        else:
            summary.cannot_do.append(description)
    return summary


def create_tool_call_record(
    tool: ToolPolicy,
    params: Dict[str, Any],
    decision: PolicyDecision,
    *,
    result: Any = None,
    error: Optional[str] = None,
    duration_ms: int = 0,
) -> ToolCallRecord:
    """Build an audit record for a tool call, permitted or not."""
    return ToolCallRecord(
        tool_name=tool.name,
        category=tool.category,
        params=params,
        result=result,
        error=error,
        policy_level=tool.policy_level,
        duration_ms=duration_ms,
        policy_permitted=decision.permitted,
        policy_denial_reason=None if decision.permitted else decision.reason,
    )


def elapsed_ms(started: float) -> int:
    """Milliseconds since ``started`` (a ``time.monotonic()`` reading)."""
    return max(0, int((time.monotonic() - started) * 1000))
