"""
Graduation tracking.

Trust is earned per ``(project, action type)``: every approved held action
increments a consecutive-approval counter and a cancellation resets it. Once
the counter reaches a threshold, the project's tier for that action type
rises, and the hold queue waits less before releasing that kind of action.

Tiers never go down. A cancellation only resets the counter, so the project
has to earn the next tier from zero.

Design notes
------------

- State is created lazily: until the first approval or cancellation is
  recorded, ``get_state`` reports tier 0 and the base hold time applies.
- Writes are version-checked conditional writes retried through
  ``ConflictRetry``, the same scheme the budget ledger uses. Losing to another
  approval is not counted against the retry budget.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from agentic_pm.core.logging_config import get_logger

from .errors import ConcurrentUpdateError
from .repos.interfaces import Applied, GraduationRepository
from .retry import ConflictRetry
from .schemas.domain import GraduationState, HeldActionType

logger = get_logger(__name__)

TIER_HOLD_MINUTES: Dict[int, int] = {0: 30, 1: 15, 2: 5, 3: 0}

# Consecutive approvals needed to reach each tier.
TIER_THRESHOLDS: Dict[int, int] = {1: 5, 2: 10, 3: 20}

DEFAULT_HOLD_MINUTES: Dict[HeldActionType, int] = {
    HeldActionType.email_stakeholder: 30,
    HeldActionType.jira_status_change: 5,
}

MAX_TIER = 3


def tier_for_approvals(consecutive_approvals: int) -> int:
    """Highest tier whose threshold ``consecutive_approvals`` reaches."""
    tier = 0
    for candidate, threshold in sorted(TIER_THRESHOLDS.items()):
        if consecutive_approvals >= threshold:
            tier = candidate
    return tier


def hold_minutes_for(action_type: HeldActionType, tier: int) -> int:
    """
    Hold duration for an action type at a tier.

    Graduation can only shorten the base hold, so an action type whose base
    hold is already at or below a tier's hold time is unaffected until tier 3.
    """
    return min(DEFAULT_HOLD_MINUTES[action_type], TIER_HOLD_MINUTES[tier])


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class GraduationTracker:
    """Record approval/cancellation outcomes and derive hold durations."""

    def __init__(
        self,
        repo: GraduationRepository,
        *,
        max_attempts: int = 5,
        retry_backoff_seconds: float = 0.005,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._repo = repo
        self._max_attempts = max_attempts
        self._backoff = retry_backoff_seconds
        self._clock = clock or _utc_now

    async def get_state(self, project_id: str, action_type: HeldActionType) -> GraduationState:
        """Current state, or an unsaved tier 0 state when none exists yet."""
        stored = await self._repo.get(project_id, action_type)
        if stored is None:
            return GraduationState(project_id=project_id, action_type=action_type, updated_at=self._clock())
        return stored.value

    async def list_for_project(self, project_id: str) -> list[GraduationState]:
        return await self._repo.list_for_project(project_id)

    async def get_hold_time(self, project_id: str, action_type: HeldActionType) -> int:
        """
        Hold duration in minutes for the next action of this type.

        Args:
            project_id: The project the action belongs to.
            action_type: The kind of held action.

        Returns:
            Minutes to hold. Without recorded state this is the base hold.
        """
        stored = await self._repo.get(project_id, action_type)
        if stored is None:
            return DEFAULT_HOLD_MINUTES[action_type]
        return hold_minutes_for(action_type, stored.value.tier)

    async def record_approval(self, project_id: str, action_type: HeldActionType) -> GraduationState:
        """Increment the approval counter and raise the tier if a threshold was reached."""

        def approve(state: GraduationState, now: datetime) -> GraduationState:
            count = state.consecutive_approvals + 1
            return state.model_copy(
                update={
                    "consecutive_approvals": count,
                    "tier": max(state.tier, tier_for_approvals(count)),
                    "last_approval_at": now,
                    "updated_at": now,
                }
            )

        before, after = await self._update(project_id, action_type, approve)
        if after.tier > before.tier:
            logger.info(
                f"Graduation tier raised for project={project_id} action_type={action_type.value}: "
                f"{before.tier} -> {after.tier} after {after.consecutive_approvals} consecutive approvals"
            )
        return after

    async def record_cancellation(self, project_id: str, action_type: HeldActionType) -> GraduationState:
        """Reset the approval counter. The tier is kept."""

        def cancel(state: GraduationState, now: datetime) -> GraduationState:
            return state.model_copy(
                update={"consecutive_approvals": 0, "last_cancellation_at": now, "updated_at": now}
            )

        before, after = await self._update(project_id, action_type, cancel)
        if before.consecutive_approvals:
            logger.info(
                f"Graduation progress reset for project={project_id} action_type={action_type.value} "
                f"(was {before.consecutive_approvals} consecutive approvals, tier stays {after.tier})"
            )
        return after

    async def _update(
        self,
        project_id: str,
        action_type: HeldActionType,
        mutate: Callable[[GraduationState, datetime], GraduationState],
    ) -> tuple[GraduationState, GraduationState]:
        retry = ConflictRetry(self._max_attempts, self._backoff)
        while True:
            stored = await self._repo.get(project_id, action_type)
            now = self._clock()
            if stored is None:
                before = GraduationState(project_id=project_id, action_type=action_type, updated_at=now)
                expected_version = None
            else:
                before = stored.value
                expected_version = stored.version

            version = expected_version or 0
            if not retry.before_write(version):
                raise ConcurrentUpdateError("Graduation state", retry.writes)

            result = await self._repo.save(mutate(before, now), expected_version=expected_version)
            if isinstance(result, Applied):
                return before, result.value.value

            logger.debug(
                f"Graduation write conflict for project={project_id} action_type={action_type.value} "
                f"at version {version} (write {retry.writes}): {result.reason}"
            )
            await retry.after_conflict(version)
