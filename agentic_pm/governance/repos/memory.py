from __future__ import annotations

"""In-process repository implementations.

These satisfy the same contracts as the SQL repositories and are used by unit
tests and single-process deployments. State lives in dictionaries guarded by
one ``asyncio.Lock`` per repository, so every conditional write is atomic with
respect to other coroutines on the same event loop.

Each call yields to the event loop once before touching state, as a call to a
real store would. Concurrent callers therefore interleave between their read
and their conditional write, which is what optimistic concurrency has to cope
with.
"""

import asyncio
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Dict, Optional, Tuple

from ..schemas.domain import (
    GovernanceEvent,
    GraduationState,
    HeldAction,
    HeldActionStatus,
    HeldActionType,
)
from .interfaces import (
    Applied,
    BudgetLedgerRepository,
    Conflict,
    EventRepository,
    GraduationRepository,
    HeldActionRepository,
    LedgerState,
    Versioned,
    WriteResult,
)


async def _round_trip() -> None:
    await asyncio.sleep(0)


class InMemoryHeldActionRepository(HeldActionRepository):
    """Dictionary-backed ``HeldActionRepository``."""

    def __init__(self) -> None:
        self._rows: Dict[str, HeldAction] = {}
        self._lock = asyncio.Lock()

    async def create(self, action: HeldAction) -> None:
        await _round_trip()
        async with self._lock:
            if action.id in self._rows:
                raise ValueError(f"Held action {action.id} already exists")
            self._rows[action.id] = action.model_copy(deep=True)

    async def get(self, action_id: str) -> Optional[HeldAction]:
        await _round_trip()
        async with self._lock:
            row = self._rows.get(action_id)
            return row.model_copy(deep=True) if row is not None else None

    async def transition(
        self,
        action_id: str,
        *,
        to_status: HeldActionStatus,
        at: datetime,
        decided_by: Optional[str] = None,
        cancel_reason: Optional[str] = None,
    ) -> WriteResult[HeldAction]:
        if to_status == HeldActionStatus.pending:
            raise ValueError("Cannot transition a held action back to pending")
        await _round_trip()
        async with self._lock:
            row = self._rows.get(action_id)
            if row is None or row.status != HeldActionStatus.pending:
                return Conflict(reason=f"held action {action_id} is not pending")
            changes: dict = {"status": to_status, f"{to_status.value}_at": at}
            if decided_by is not None:
                changes["decided_by"] = decided_by
            if cancel_reason is not None:
                changes["cancel_reason"] = cancel_reason
            updated = row.model_copy(update=changes)
            self._rows[action_id] = updated
            return Applied(updated.model_copy(deep=True))

    async def list_due(self, now: datetime, *, limit: int) -> list[HeldAction]:
        await _round_trip()
        async with self._lock:
            due = [
                a for a in self._rows.values() if a.status == HeldActionStatus.pending and a.held_until <= now
            ]
            due.sort(key=lambda a: a.held_until)
            return [a.model_copy(deep=True) for a in due[:limit]]

    async def list_pending(self, project_id: Optional[str] = None) -> list[HeldAction]:
        await _round_trip()
        async with self._lock:
            pending = [
                a
                for a in self._rows.values()
                if a.status == HeldActionStatus.pending and (project_id is None or a.project_id == project_id)
            ]
            pending.sort(key=lambda a: a.held_until)
            return [a.model_copy(deep=True) for a in pending]


class InMemoryGraduationRepository(GraduationRepository):
    """Dictionary-backed ``GraduationRepository``."""

    def __init__(self) -> None:
        self._rows: Dict[Tuple[str, HeldActionType], Versioned[GraduationState]] = {}
        self._lock = asyncio.Lock()

    async def get(self, project_id: str, action_type: HeldActionType) -> Optional[Versioned[GraduationState]]:
        await _round_trip()
        async with self._lock:
            return self._rows.get((project_id, action_type))

    async def save(
        self, state: GraduationState, *, expected_version: Optional[int]
    ) -> WriteResult[Versioned[GraduationState]]:
        await _round_trip()
        key = (state.project_id, state.action_type)
        async with self._lock:
            current = self._rows.get(key)
            current_version = current.version if current is not None else None
            if current_version != expected_version:
                return Conflict(reason=f"graduation state version {expected_version} is stale")
            stored = Versioned(value=state.model_copy(deep=True), version=(expected_version or 0) + 1)
            self._rows[key] = stored
            return Applied(stored)

    async def list_for_project(self, project_id: str) -> list[GraduationState]:
        await _round_trip()
        async with self._lock:
            states = [v.value for (pid, _), v in self._rows.items() if pid == project_id]
            states.sort(key=lambda s: s.action_type.value)
            return states


class InMemoryBudgetLedgerRepository(BudgetLedgerRepository):
    """Single-slot ``BudgetLedgerRepository``."""

    def __init__(self) -> None:
        self._row: Optional[Versioned[LedgerState]] = None
        self._lock = asyncio.Lock()

    async def read(self) -> Optional[Versioned[LedgerState]]:
        await _round_trip()
        async with self._lock:
            return self._row

    async def write(self, state: LedgerState, *, expected_version: Optional[int]) -> WriteResult[Versioned[LedgerState]]:
        await _round_trip()
        async with self._lock:
            current_version = self._row.version if self._row is not None else None
            if current_version != expected_version:
                return Conflict(reason=f"budget ledger version {expected_version} is stale")
            self._row = Versioned(value=replace(state), version=(expected_version or 0) + 1)
            return Applied(self._row)


class InMemoryEventRepository(EventRepository):
    """List-backed append-only ``EventRepository``."""

    def __init__(self) -> None:
        self._events: list[GovernanceEvent] = []
        self._lock = asyncio.Lock()

    async def append(self, event: GovernanceEvent) -> None:
        async with self._lock:
            self._events.append(event.model_copy(deep=True))

    async def list(self, project_id: Optional[str] = None, limit: int = 100) -> list[GovernanceEvent]:
        async with self._lock:
            matching = [e for e in self._events if project_id is None or e.project_id == project_id]
            return list(reversed(matching))[:limit]


@dataclass(frozen=True)
class InMemoryRepoBundle:
    """Bundle of in-memory repositories mirroring ``SqlRepoBundle``."""

    held_actions: InMemoryHeldActionRepository = field(default_factory=InMemoryHeldActionRepository)
    graduation: InMemoryGraduationRepository = field(default_factory=InMemoryGraduationRepository)
    budget: InMemoryBudgetLedgerRepository = field(default_factory=InMemoryBudgetLedgerRepository)
    events: InMemoryEventRepository = field(default_factory=InMemoryEventRepository)


def build_memory_repos() -> InMemoryRepoBundle:
    """Build a fresh ``InMemoryRepoBundle``."""
    return InMemoryRepoBundle()
