"""
Hold queue.

Side-effecting actions the agent may take on its own (stakeholder emails, Jira
status changes) are first parked here for a review window. During the window a
human can approve the action early or cancel it; once the window ends, the
release sweep executes it.

State machine
-------------

``pending -> approved | cancelled | executed``. A held action leaves
``pending`` exactly once. Every transition is a single conditional write
guarded by ``status = 'pending'``, so of two concurrent decisions exactly one
wins and the loser gets ``None``.

Graduation
----------

Approvals and cancellations are reported to the ``GraduationTracker``.
Actions executed because their hold expired are not counted: only an explicit
human approval builds trust. A decision that has been applied stands even when
the graduation update fails; the failure is logged as an ``error`` event.

Usage
-----

- ``queue_action`` creates a held action with a graduation-aware hold time.
- ``approve`` / ``cancel`` record a human decision.
- ``release_due`` (driven by ``ReleaseScheduler``) executes expired holds.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Protocol, Union

from pydantic import BaseModel, ValidationError

from agentic_pm.core.logging_config import get_logger

from .errors import ExecutionError, GovernanceValidationError, UnknownEntityError
from .graduation import GraduationTracker
from .repos.interfaces import Conflict, EventRepository, HeldActionRepository
from .schemas.domain import (
    PAYLOAD_MODELS,
    EmailReceipt,
    EmailStakeholderPayload,
    EventSeverity,
    GovernanceEvent,
    GovernanceEventType,
    HeldAction,
    HeldActionStatus,
    HeldActionType,
    JiraStatusChangePayload,
    QueuedAction,
    ReleaseError,
    ReleaseResult,
    TimeRemaining,
)

logger = get_logger(__name__)

DEFAULT_BATCH_SIZE = 50


class ActionExecutor(Protocol):
    """Performs the side effect of a held action."""

    async def execute_email(self, payload: EmailStakeholderPayload) -> EmailReceipt:
        """Send a stakeholder email and return the provider's receipt."""
        ...

    async def execute_jira_status_change(self, payload: JiraStatusChangePayload) -> None:
        """Apply a Jira workflow transition."""
        ...


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_hold_time(minutes: int) -> str:
    """Render a hold duration for people, e.g. ``"5 minutes"`` or ``"1h 30m"``."""
    if minutes == 0:
        return "Immediate"
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes != 1 else ''}"
    hours, remaining = divmod(minutes, 60)
    if remaining == 0:
        return f"{hours} hour{'s' if hours != 1 else ''}"
    return f"{hours}h {remaining}m"


def parse_action_type(action_type: Union[HeldActionType, str]) -> HeldActionType:
    try:
        return HeldActionType(action_type)
    except ValueError as exc:
        raise GovernanceValidationError(f"Unknown action type: {action_type!r}", field="action_type") from exc


def validate_payload(kind: HeldActionType, payload: Union[Dict[str, Any], BaseModel]) -> Dict[str, Any]:
    """Validate ``payload`` against the model for ``kind`` and return its JSON form."""
    model = PAYLOAD_MODELS[kind]
    raw = payload.model_dump() if isinstance(payload, BaseModel) else payload
    try:
        return model.model_validate(raw).model_dump(mode="json", exclude_none=True)
    except ValidationError as exc:
        raise GovernanceValidationError(
            f"Invalid payload for {kind.value}: {exc.errors()[0]['msg']}", field="payload"
        ) from exc


async def run_side_effect(
    action_type: HeldActionType,
    payload: Dict[str, Any],
    executor: ActionExecutor,
    *,
    label: str,
) -> Optional[EmailReceipt]:
    """Dispatch ``payload`` to the executor method for ``action_type``."""
    typed = PAYLOAD_MODELS[action_type].model_validate(payload)
    if isinstance(typed, EmailStakeholderPayload):
        receipt = await executor.execute_email(typed)
        logger.info(f"Sent email for {label} (message_id={receipt.message_id})")
        return receipt
    if isinstance(typed, JiraStatusChangePayload):
        await executor.execute_jira_status_change(typed)
        logger.info(f"Transitioned {typed.issue_key} {typed.from_status} -> {typed.to_status} for {label}")
        return None
    raise ValueError(f"No executor for action type {action_type.value}")


def time_remaining(held_until: datetime, now: Optional[datetime] = None) -> TimeRemaining:
    """Whole minutes and seconds left until ``held_until``."""
    diff = held_until - (now or _utc_now())
    if diff <= timedelta(0):
        return TimeRemaining(minutes=0, seconds=0, expired=True)
    total_seconds = int(diff.total_seconds())
    return TimeRemaining(minutes=total_seconds // 60, seconds=total_seconds % 60, expired=False)


class HoldQueue:
    """Create, decide and release held actions."""

    def __init__(
        self,
        held_actions: HeldActionRepository,
        graduation: GraduationTracker,
        events: EventRepository,
        *,
        batch_size: int = DEFAULT_BATCH_SIZE,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._repo = held_actions
        self._graduation = graduation
        self._events = events
        self._batch_size = batch_size
        self._clock = clock or _utc_now

    async def create(
        self,
        project_id: str,
        action_type: Union[HeldActionType, str],
        payload: Union[Dict[str, Any], BaseModel],
        hold_minutes: int,
    ) -> HeldAction:
        """
        Park an action for ``hold_minutes``.

        Args:
            project_id: Project the action belongs to.
            action_type: ``email_stakeholder`` or ``jira_status_change``.
            payload: Action payload, validated against the action type.
            hold_minutes: Review window length. Zero makes the action due now.

        Raises:
            GovernanceValidationError: Bad action type, payload or duration.
        """
        if isinstance(hold_minutes, bool) or not isinstance(hold_minutes, int) or hold_minutes < 0:
            raise GovernanceValidationError(
                f"hold_minutes must be a non-negative integer, got {hold_minutes!r}", field="hold_minutes"
            )
        if not project_id:
            raise GovernanceValidationError("project_id must not be empty", field="project_id")
        kind = parse_action_type(action_type)
        body = validate_payload(kind, payload)

        now = self._clock()
        action = HeldAction(
            project_id=project_id,
            action_type=kind,
            payload=body,
            held_until=now + timedelta(minutes=hold_minutes),
            created_at=now,
        )
        await self._repo.create(action)
        logger.info(
            f"Held action {action.id} ({kind.value}) for project={project_id} until {action.held_until.isoformat()}"
        )
        return action

    async def queue_action(
        self,
        project_id: str,
        action_type: Union[HeldActionType, str],
        payload: Union[Dict[str, Any], BaseModel],
        *,
        max_hold_minutes: Optional[int] = None,
    ) -> QueuedAction:
        """
        Park an action using the project's graduation-aware hold time.

        Args:
            max_hold_minutes: Optional upper bound, e.g. the tool's declared hold.
        """
        kind = parse_action_type(action_type)
        hold_minutes = await self._graduation.get_hold_time(project_id, kind)
        if max_hold_minutes is not None:
            hold_minutes = min(hold_minutes, max_hold_minutes)
        state = await self._graduation.get_state(project_id, kind)

        action = await self.create(project_id, kind, payload, hold_minutes)
        await self._record(
            GovernanceEventType.action_held,
            project_id,
            f'Action "{kind.value}" queued with {format_hold_time(hold_minutes)} hold',
            {
                "action_id": action.id,
                "action_type": kind.value,
                "hold_minutes": hold_minutes,
                "graduation_tier": state.tier,
                "held_until": action.held_until.isoformat(),
            },
        )
        if hold_minutes == 0:
            await self._record(
                GovernanceEventType.autonomy_increased,
                project_id,
                f'Action "{kind.value}" released without hold at graduation tier {state.tier}',
                {"action_id": action.id, "action_type": kind.value, "graduation_tier": state.tier},
            )
        return QueuedAction(action=action, hold_minutes=hold_minutes, graduation_tier=state.tier)

    async def get(self, action_id: str) -> Optional[HeldAction]:
        return await self._repo.get(action_id)

    async def list_pending(self, project_id: Optional[str] = None) -> list[HeldAction]:
        return await self._repo.list_pending(project_id)

    async def approve(
        self,
        action_id: str,
        decided_by: Optional[str] = None,
        *,
        executor: Optional[ActionExecutor] = None,
    ) -> Optional[HeldAction]:
        """
        Approve a pending action ahead of its hold expiry.

        Args:
            action_id: The held action to approve.
            decided_by: Who approved it.
            executor: When given, the side effect runs right after approval.
                The status stays ``approved`` either way.

        Returns:
            The approved action, or None when it was no longer pending.

        Raises:
            UnknownEntityError: No held action has this id.
            ExecutionError: The executor failed. The approval stands.

        A failing graduation update is logged and recorded as an ``error``
        event; the approval is still returned.
        """
        if await self._repo.get(action_id) is None:
            raise UnknownEntityError("Held action", action_id)

        result = await self._repo.transition(
            action_id, to_status=HeldActionStatus.approved, at=self._clock(), decided_by=decided_by
        )
        if isinstance(result, Conflict):
            logger.info(f"Approve of held action {action_id} lost: {result.reason}")
            return None
        action = result.value

        await self._report_graduation(action, approved=True)
        await self._record(
            GovernanceEventType.action_approved,
            action.project_id,
            f'Approved held action "{action.action_type.value}"',
            {"action_id": action.id, "action_type": action.action_type.value, "decided_by": decided_by},
        )

        if executor is not None:
            try:
                await self._execute(action, executor)
            except Exception as exc:
                await self._record(
                    GovernanceEventType.error,
                    action.project_id,
                    f'Failed to execute approved action "{action.action_type.value}"',
                    {"action_id": action.id, "action_type": action.action_type.value, "error": str(exc)},
                    severity=EventSeverity.error,
                )
                raise ExecutionError(action.id, str(exc)) from exc
        return action

    async def cancel(
        self,
        action_id: str,
        reason: Optional[str] = None,
        decided_by: Optional[str] = None,
    ) -> Optional[HeldAction]:
        """
        Cancel a pending action.

        Returns:
            The cancelled action, or None when it was no longer pending.

        Raises:
            UnknownEntityError: No held action has this id.
        """
        if await self._repo.get(action_id) is None:
            raise UnknownEntityError("Held action", action_id)

        result = await self._repo.transition(
            action_id,
            to_status=HeldActionStatus.cancelled,
            at=self._clock(),
            decided_by=decided_by,
            cancel_reason=reason,
        )
        if isinstance(result, Conflict):
            logger.info(f"Cancel of held action {action_id} lost: {result.reason}")
            return None
        action = result.value

        await self._report_graduation(action, approved=False)
        await self._record(
            GovernanceEventType.action_rejected,
            action.project_id,
            f'Cancelled held action "{action.action_type.value}"',
            {
                "action_id": action.id,
                "action_type": action.action_type.value,
                "reason": reason,
                "decided_by": decided_by,
            },
        )
        return action

    async def release_due(self, executor: ActionExecutor, now: Optional[datetime] = None) -> ReleaseResult:
        """
        Execute pending actions whose hold has expired.

        Due actions are handled oldest ``held_until`` first, at most
        ``batch_size`` per call. A failing side effect leaves its action
        pending for the next sweep and is reported in ``errors``. Audit
        writes in the sweep never abort it.
        """
        cutoff = now or self._clock()
        result = ReleaseResult()
        due = await self._repo.list_due(cutoff, limit=self._batch_size)

        for action in due:
            result.processed += 1
            try:
                await self._execute(action, executor)
            except Exception as exc:
                logger.warning(f"Held action {action.id} ({action.action_type.value}) failed to execute: {exc}")
                result.errors.append(ReleaseError(action_id=action.id, error=str(exc)))
                await self._record_safely(
                    GovernanceEventType.error,
                    action.project_id,
                    f'Failed to execute held action "{action.action_type.value}"',
                    {"action_id": action.id, "action_type": action.action_type.value, "error": str(exc)},
                    severity=EventSeverity.error,
                )
                continue

            marked = await self._repo.transition(action.id, to_status=HeldActionStatus.executed, at=self._clock())
            if isinstance(marked, Conflict):
                logger.warning(f"Held action {action.id} executed but was decided concurrently: {marked.reason}")
                continue

            result.executed += 1
            await self._record_safely(
                GovernanceEventType.action_taken,
                action.project_id,
                f'Executed held action "{action.action_type.value}"',
                {"action_id": action.id, "action_type": action.action_type.value, "executed_after_hold": True},
            )

        if result.processed:
            logger.info(
                f"Hold queue sweep: processed={result.processed} executed={result.executed} errors={len(result.errors)}"
            )
        return result

    async def _report_graduation(self, action: HeldAction, *, approved: bool) -> None:
        """Feed a decision to graduation. The decision stands even if this fails."""
        try:
            if approved:
                await self._graduation.record_approval(action.project_id, action.action_type)
            else:
                await self._graduation.record_cancellation(action.project_id, action.action_type)
        except Exception as exc:
            decision = "approval" if approved else "cancellation"
            logger.error(f"Could not record {decision} of held action {action.id} for graduation: {exc}")
            await self._record_safely(
                GovernanceEventType.error,
                action.project_id,
                f'Failed to record {decision} of "{action.action_type.value}" for graduation',
                {"action_id": action.id, "action_type": action.action_type.value, "error": str(exc)},
                severity=EventSeverity.error,
            )

    async def _execute(self, action: HeldAction, executor: ActionExecutor) -> None:
        await run_side_effect(action.action_type, action.payload, executor, label=f"held action {action.id}")

    async def _record(
        self,
        event_type: GovernanceEventType,
        project_id: Optional[str],
        summary: str,
        detail: Dict[str, Any],
        *,
        severity: EventSeverity = EventSeverity.info,
    ) -> None:
        await self._events.append(
            GovernanceEvent(
                project_id=project_id,
                event_type=event_type,
                severity=severity,
                summary=summary,
                detail=detail,
                created_at=self._clock(),
            )
        )

    async def _record_safely(
        self,
        event_type: GovernanceEventType,
        project_id: Optional[str],
        summary: str,
        detail: Dict[str, Any],
        *,
        severity: EventSeverity = EventSeverity.info,
    ) -> None:
        try:
            await self._record(event_type, project_id, summary, detail, severity=severity)
        except Exception as exc:
            logger.error(f"Could not append {event_type.value} event for project={project_id}: {exc}")
