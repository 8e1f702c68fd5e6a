from __future__ import annotations

"""Repository interface contracts.

Governance components depend on these Protocols instead of concrete
persistence implementations.

Contract guidelines
-------------------

- All methods are async.
- Implementations must not leak sessions or transactions to callers.
- Every state change is a single conditional write. The store reports the
  outcome as a typed ``Applied`` or ``Conflict`` result; callers never inspect
  error text to find out whether they lost a race.
- Held actions transition out of ``pending`` with a write guarded by
  ``status = 'pending'``.
- Graduation states and the budget ledger carry a ``version`` that every
  write must match and bump (optimistic concurrency).
- The event repository is append-only. Held actions are never deleted.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Generic, Optional, Protocol, TypeVar, Union

from ..schemas.domain import (
    GovernanceEvent,
    GraduationState,
    HeldAction,
    HeldActionStatus,
    HeldActionType,
)

T = TypeVar("T")


@dataclass(frozen=True)
class Applied(Generic[T]):
    """A conditional write that took effect; ``value`` is the stored result."""

    value: T


@dataclass(frozen=True)
class Conflict:
    """A conditional write whose guard no longer held; nothing was written."""

    reason: str


WriteResult = Union[Applied[T], Conflict]


@dataclass(frozen=True)
class Versioned(Generic[T]):
    """A stored value together with the version a write must match."""

    value: T
    version: int


@dataclass(frozen=True)
class LedgerState:
    """Persisted budget counters. ``period_month`` is ``YYYY-MM``."""

    daily_spend_usd: float
    period_date: date
    monthly_spend_usd: float
    period_month: str
    degradation_tier: int
    updated_at: Optional[datetime] = None


class HeldActionRepository(Protocol):
    """Persist held actions and apply their one-way status transitions."""

    async def create(self, action: HeldAction) -> None:
        """
        Insert a new held action.

        Args:
            action: The pending action to persist.
        """
        ...

    async def get(self, action_id: str) -> Optional[HeldAction]:
        """
        Retrieve a held action by id.

        Returns:
            The HeldAction if found, else None.
        """
        ...

    async def transition(
        self,
        action_id: str,
        *,
        to_status: HeldActionStatus,
        at: datetime,
        decided_by: Optional[str] = None,
        cancel_reason: Optional[str] = None,
    ) -> WriteResult[HeldAction]:
        """
        Move a pending action to a terminal status.

        The write is guarded by ``status = 'pending'``. ``at`` is stored in the
        timestamp column matching ``to_status``.

        Returns:
            ``Applied`` with the updated action, or ``Conflict`` when the
            action is missing or no longer pending.
        """
        ...

    async def list_due(self, now: datetime, *, limit: int) -> list[HeldAction]:
        """
        List pending actions whose hold has expired.

        Args:
            now: Actions with ``held_until <= now`` are due.
            limit: Maximum number of actions returned.

        Returns:
            Due actions ordered by ``held_until`` ascending.
        """
        ...

    async def list_pending(self, project_id: Optional[str] = None) -> list[HeldAction]:
        """
        List pending actions, optionally for one project.

        Returns:
            Pending actions ordered by ``held_until`` ascending.
        """
        ...


class GraduationRepository(Protocol):
    """Persist per-(project, action type) graduation state."""

    async def get(self, project_id: str, action_type: HeldActionType) -> Optional[Versioned[GraduationState]]:
        """
        Retrieve graduation state and its version.

        Returns:
            The versioned state, or None when no state exists yet.
        """
        ...

    async def save(
        self, state: GraduationState, *, expected_version: Optional[int]
    ) -> WriteResult[Versioned[GraduationState]]:
        """
        Conditionally write graduation state.

        Args:
            state: The new state.
            expected_version: Version read before computing ``state``; None
                means the state must not exist yet (insert).

        Returns:
            ``Applied`` with the stored state and new version, or ``Conflict``.
        """
        ...

    async def list_for_project(self, project_id: str) -> list[GraduationState]:
        """List graduation states of a project ordered by action type."""
        ...


class BudgetLedgerRepository(Protocol):
    """Persist the singleton budget ledger."""

    async def read(self) -> Optional[Versioned[LedgerState]]:
        """
        Read the ledger counters.

        Returns:
            The versioned counters, or None before the first write.
        """
        ...

    async def write(self, state: LedgerState, *, expected_version: Optional[int]) -> WriteResult[Versioned[LedgerState]]:
        """
        Conditionally replace the ledger counters.

        Args:
            state: Counters to store.
            expected_version: Version read before computing ``state``; None
                means no ledger row may exist yet.

        Returns:
            ``Applied`` with the stored counters and new version, or ``Conflict``.
        """
        ...


class EventRepository(Protocol):
    """Append-only governance audit log."""

    async def append(self, event: GovernanceEvent) -> None:
        """
        Append an event.

        Args:
            event: The event to persist.
        """
        ...

    async def list(self, project_id: Optional[str] = None, limit: int = 100) -> list[GovernanceEvent]:
        """
        List events, newest first.

        Args:
            project_id: Optional project to filter by.
            limit: Max number of events to return.
        """
        ...
