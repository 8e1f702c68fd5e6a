from __future__ import annotations

"""High-level governance service.

``GovernanceService`` wires the policy evaluator and the hold queue into the
single call the agent makes before any side-effecting tool: ``propose``.

Workflow
--------

1. Evaluate the tool under the autonomy mode and execution context.
2. Depending on the decision:

   - ``execute``: run the side effect now,
   - ``hold``: park it in the hold queue with a graduation-aware duration
     (the tool's declared hold is the upper bound),
   - ``escalate`` / ``deny``: record an event and do nothing else.

3. Return the decision, the held action (if any), whether the side effect ran,
   and an audit record of the tool call.

``GovernanceService`` is intentionally thin: it delegates semantics to the
evaluator and the hold queue and contains no policy logic itself.
"""

import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel

from agentic_pm.core.logging_config import get_logger

from .errors import ExecutionError
from .hold_queue import ActionExecutor, HoldQueue, parse_action_type, run_side_effect, validate_payload
from .policy.evaluator import PolicyEvaluator, create_tool_call_record, elapsed_ms
from .policy.models import PolicyDecision
from .repos.interfaces import EventRepository
from .schemas.domain import (
    AutonomyMode,
    EventSeverity,
    ExecutionContext,
    GovernanceEvent,
    GovernanceEventType,
    HeldAction,
    HeldActionType,
    PolicyAction,
    ToolCallRecord,
    ToolPolicy,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class ProposalOutcome:
    """
    What happened to a proposed action.

    Attributes:
        decision: The policy decision.
        held_action: The parked action when the decision was ``hold``.
        executed: True when the side effect ran during ``propose``.
        record: Audit record of the tool call.
    """

    decision: PolicyDecision
    held_action: Optional[HeldAction]
    executed: bool
    record: ToolCallRecord


class GovernanceService:
    """Route proposed actions to execution, the hold queue, escalation or denial."""

    def __init__(self, *, evaluator: PolicyEvaluator, hold_queue: HoldQueue, events: EventRepository) -> None:
        self._evaluator = evaluator
        self._queue = hold_queue
        self._events = events

    async def propose(
        self,
        *,
        tool: ToolPolicy,
        mode: AutonomyMode,
        ctx: ExecutionContext,
        project_id: str,
        action_type: Union[HeldActionType, str],
        payload: Union[Dict[str, Any], BaseModel],
        executor: ActionExecutor,
    ) -> ProposalOutcome:
        """
        Evaluate and act on a proposed action.

        Raises:
            GovernanceValidationError: The payload does not match ``action_type``.
            ExecutionError: The decision was ``execute`` and the side effect failed.
        """
        decision = self._evaluator.evaluate(tool, mode, ctx)
        kind = parse_action_type(action_type)
        params = validate_payload(kind, payload)

        if decision.action == PolicyAction.execute:
            return await self._execute_now(tool, decision, project_id, kind, params, executor)

        if decision.action == PolicyAction.hold:
            queued = await self._queue.queue_action(
                project_id, kind, params, max_hold_minutes=decision.hold_minutes
            )
            return ProposalOutcome(
                decision=decision,
                held_action=queued.action,
                executed=False,
                record=create_tool_call_record(tool, params, decision, result={"held_action_id": queued.action.id}),
            )

        if decision.action == PolicyAction.escalate:
            event_type, severity = GovernanceEventType.action_escalated, EventSeverity.warning
        else:
            event_type, severity = GovernanceEventType.action_denied, EventSeverity.info
        logger.info(f"Tool {tool.name} not executed for project={project_id}: {decision.reason}")
        await self._events.append(
            GovernanceEvent(
                project_id=project_id,
                event_type=event_type,
                severity=severity,
                summary=decision.reason,
                detail={"tool": tool.name, "mode": mode.value, "policy_level": tool.policy_level.value},
            )
        )
        return ProposalOutcome(
            decision=decision,
            held_action=None,
            executed=False,
            record=create_tool_call_record(tool, params, decision),
        )

    async def _execute_now(
        self,
        tool: ToolPolicy,
        decision: PolicyDecision,
        project_id: str,
        action_type: HeldActionType,
        params: Dict[str, Any],
        executor: ActionExecutor,
    ) -> ProposalOutcome:
        started = time.monotonic()
        try:
            receipt = await run_side_effect(action_type, params, executor, label=f"tool {tool.name}")
        except Exception as exc:
            await self._events.append(
                GovernanceEvent(
                    project_id=project_id,
                    event_type=GovernanceEventType.error,
                    severity=EventSeverity.error,
                    summary=f"Failed to execute tool {tool.name}",
                    detail={"tool": tool.name, "error": str(exc)},
                )
            )
            raise ExecutionError(tool.name, str(exc)) from exc

        await self._events.append(
            GovernanceEvent(
                project_id=project_id,
                event_type=GovernanceEventType.action_taken,
                summary=f'Executed "{action_type.value}" via {tool.name}',
                detail={"tool": tool.name, "reason": decision.reason},
            )
        )
        return ProposalOutcome(
            decision=decision,
            held_action=None,
            executed=True,
            record=create_tool_call_record(
                tool,
                params,
                decision,
                result=receipt.model_dump() if receipt is not None else None,
                duration_ms=elapsed_ms(started),
            ),
        )
