from __future__ import annotations

"""SQLAlchemy async repository implementations.

This module provides a Postgres-backed persistence implementation for the
repository interfaces defined in ``agentic_pm.governance.repos.interfaces``.
SQLite (``sqlite+aiosqlite://``) works too and is what the tests use.

Usage
-----

Typical wiring (tests or application setup):

- Create an async engine with ``create_engine``.
- Create tables with ``create_all`` (for tests/dev).
- Create a session factory with ``create_sessionmaker``.
- Build repository instances with ``build_sql_repos``.

Transaction model
-----------------

Each repository method opens an ``AsyncSession``, performs its operation, and
commits. Conditional writes are single ``UPDATE ... WHERE`` statements whose
row count decides between ``Applied`` and ``Conflict``; first-time inserts of
versioned rows turn a primary key collision into ``Conflict``.
"""

import json
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ..schemas.domain import (
    EventSeverity,
    GovernanceEvent,
    GovernanceEventType,
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
from .models import (
    LEDGER_ROW_ID,
    Base,
    BudgetLedgerRow,
    GovernanceEventRow,
    GraduationStateRow,
    HeldActionRow,
)


def create_engine(db_url: str) -> AsyncEngine:
    """Create an async SQLAlchemy engine.

    The helper normalizes Postgres URLs to ensure the async driver is used.
    For example, it rewrites ``postgresql://`` and other variants to
    ``postgresql+asyncpg://``.
    """
    url = re.sub(r"^postgres(?:ql)?(?:\+[a-z0-9_]+)?://", "postgresql+asyncpg://", db_url, count=1)
    if url.startswith("sqlite"):
        return create_async_engine(url)
    return create_async_engine(url, pool_pre_ping=True)


def create_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create an ``async_sessionmaker`` with safe defaults for this project."""
    return async_sessionmaker(engine, expire_on_commit=False)


async def create_all(engine: AsyncEngine) -> None:
    """Create all tables for the current ORM metadata.

    This is mainly intended for tests and local development.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _to_utc(value: datetime) -> datetime:
    # Naive datetimes are taken to be UTC already.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes; everything is stored as UTC.
    if value is None:
        return None
    return _to_utc(value)


def _held_action_from_row(row: HeldActionRow) -> HeldAction:
    return HeldAction(
        id=row.id,
        project_id=row.project_id,
        action_type=HeldActionType(row.action_type),
        payload=json.loads(row.payload) if row.payload else {},
        held_until=_to_utc(row.held_until),
        status=HeldActionStatus(row.status),
        created_at=_to_utc(row.created_at),
        approved_at=_as_utc(row.approved_at),
        cancelled_at=_as_utc(row.cancelled_at),
        executed_at=_as_utc(row.executed_at),
        cancel_reason=row.cancel_reason,
        decided_by=row.decided_by,
    )


def _graduation_from_row(row: GraduationStateRow) -> Versioned[GraduationState]:
    return Versioned(
        value=GraduationState(
            project_id=row.project_id,
            action_type=HeldActionType(row.action_type),
            consecutive_approvals=row.consecutive_approvals,
            tier=row.tier,
            last_approval_at=_as_utc(row.last_approval_at),
            last_cancellation_at=_as_utc(row.last_cancellation_at),
            updated_at=_to_utc(row.updated_at),
        ),
        version=row.version,
    )


def _ledger_from_row(row: BudgetLedgerRow) -> Versioned[LedgerState]:
    return Versioned(
        value=LedgerState(
            daily_spend_usd=row.daily_spend_usd,
            period_date=row.period_date,
            monthly_spend_usd=row.monthly_spend_usd,
            period_month=row.period_month,
            degradation_tier=row.degradation_tier,
            updated_at=_as_utc(row.updated_at),
        ),
        version=row.version,
    )


_TIMESTAMP_COLUMN = {
    HeldActionStatus.approved: "approved_at",
    HeldActionStatus.cancelled: "cancelled_at",
    HeldActionStatus.executed: "executed_at",
}


@dataclass(frozen=True)
class SqlHeldActionRepository(HeldActionRepository):
    """SQL implementation of ``HeldActionRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def create(self, action: HeldAction) -> None:
        """
        Persist a new held action.

        Args:
            action: The held action domain object to insert.
        """
        async with self.session_factory() as s:
            s.add(
                HeldActionRow(
                    id=action.id,
                    project_id=action.project_id,
                    action_type=action.action_type.value,
                    payload=json.dumps(action.payload),
                    held_until=_to_utc(action.held_until),
                    status=action.status.value,
                    created_at=_to_utc(action.created_at),
                    approved_at=action.approved_at,
                    cancelled_at=action.cancelled_at,
                    executed_at=action.executed_at,
                    cancel_reason=action.cancel_reason,
                    decided_by=action.decided_by,
                )
            )
            await s.commit()

    async def get(self, action_id: str) -> Optional[HeldAction]:
        async with self.session_factory() as s:
            row = await s.get(HeldActionRow, action_id)
            if row is None:
                return None
            return _held_action_from_row(row)

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
        Conditionally move a pending action to ``to_status``.

        Issues a single ``UPDATE ... WHERE id = :id AND status = 'pending'``.
        A row count of zero means another writer got there first (or the id
        is unknown) and yields ``Conflict``.
        """
        if to_status == HeldActionStatus.pending:
            raise ValueError("Cannot transition a held action back to pending")

        values: Dict[str, Any] = {"status": to_status.value, _TIMESTAMP_COLUMN[to_status]: _to_utc(at)}
        if decided_by is not None:
            values["decided_by"] = decided_by
        if cancel_reason is not None:
            values["cancel_reason"] = cancel_reason

        async with self.session_factory() as s:
            stmt = (
                update(HeldActionRow)
                .where(HeldActionRow.id == action_id)
                .where(HeldActionRow.status == HeldActionStatus.pending.value)
                .values(**values)
            )
            result = await s.execute(stmt)
            if result.rowcount != 1:
                await s.rollback()
                return Conflict(reason=f"held action {action_id} is not pending")
            row = (await s.execute(select(HeldActionRow).where(HeldActionRow.id == action_id))).scalar_one()
            action = _held_action_from_row(row)
            await s.commit()
            return Applied(action)

    async def list_due(self, now: datetime, *, limit: int) -> list[HeldAction]:
        async with self.session_factory() as s:
            stmt = (
                select(HeldActionRow)
                .where(HeldActionRow.status == HeldActionStatus.pending.value)
                .where(HeldActionRow.held_until <= _to_utc(now))
                .order_by(HeldActionRow.held_until.asc())
                .limit(limit)
            )
            rows = (await s.execute(stmt)).scalars().all()
            return [_held_action_from_row(r) for r in rows]

    async def list_pending(self, project_id: Optional[str] = None) -> list[HeldAction]:
        async with self.session_factory() as s:
            stmt = select(HeldActionRow).where(HeldActionRow.status == HeldActionStatus.pending.value)
            if project_id is not None:
                stmt = stmt.where(HeldActionRow.project_id == project_id)
            stmt = stmt.order_by(HeldActionRow.held_until.asc())
            rows = (await s.execute(stmt)).scalars().all()
            return [_held_action_from_row(r) for r in rows]


@dataclass(frozen=True)
class SqlGraduationRepository(GraduationRepository):
    """SQL implementation of ``GraduationRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def get(self, project_id: str, action_type: HeldActionType) -> Optional[Versioned[GraduationState]]:
        async with self.session_factory() as s:
            row = await s.get(GraduationStateRow, (project_id, action_type.value))
            if row is None:
                return None
            return _graduation_from_row(row)

    async def save(
        self, state: GraduationState, *, expected_version: Optional[int]
    ) -> WriteResult[Versioned[GraduationState]]:
        """
        Insert (``expected_version is None``) or version-checked update.

        Args:
            state: The new graduation state.
            expected_version: Version the stored row must still have.
        """
        async with self.session_factory() as s:
            if expected_version is None:
                s.add(
                    GraduationStateRow(
                        project_id=state.project_id,
                        action_type=state.action_type.value,
                        consecutive_approvals=state.consecutive_approvals,
                        tier=state.tier,
                        last_approval_at=state.last_approval_at,
                        last_cancellation_at=state.last_cancellation_at,
                        updated_at=_to_utc(state.updated_at),
                        version=1,
                    )
                )
                try:
                    await s.commit()
                except IntegrityError:
                    await s.rollback()
                    return Conflict(reason="graduation state already exists")
                return Applied(Versioned(value=state, version=1))

            stmt = (
                update(GraduationStateRow)
                .where(GraduationStateRow.project_id == state.project_id)
                .where(GraduationStateRow.action_type == state.action_type.value)
                .where(GraduationStateRow.version == expected_version)
                .values(
                    consecutive_approvals=state.consecutive_approvals,
                    tier=state.tier,
                    last_approval_at=state.last_approval_at,
                    last_cancellation_at=state.last_cancellation_at,
                    updated_at=_to_utc(state.updated_at),
                    version=expected_version + 1,
                )
            )
            result = await s.execute(stmt)
            if result.rowcount != 1:
                await s.rollback()
                return Conflict(reason=f"graduation state version {expected_version} is stale")
            await s.commit()
            return Applied(Versioned(value=state, version=expected_version + 1))

    async def list_for_project(self, project_id: str) -> list[GraduationState]:
        async with self.session_factory() as s:
            stmt = (
                select(GraduationStateRow)
                .where(GraduationStateRow.project_id == project_id)
                .order_by(GraduationStateRow.action_type.asc())
            )
            rows = (await s.execute(stmt)).scalars().all()
            return [_graduation_from_row(r).value for r in rows]


@dataclass(frozen=True)
class SqlBudgetLedgerRepository(BudgetLedgerRepository):
    """SQL implementation of ``BudgetLedgerRepository`` (single ``global`` row)."""

    session_factory: async_sessionmaker[AsyncSession]

    async def read(self) -> Optional[Versioned[LedgerState]]:
        async with self.session_factory() as s:
            row = await s.get(BudgetLedgerRow, LEDGER_ROW_ID)
            if row is None:
                return None
            return _ledger_from_row(row)

    async def write(self, state: LedgerState, *, expected_version: Optional[int]) -> WriteResult[Versioned[LedgerState]]:
        updated_at = _to_utc(state.updated_at or _utc_now())
        async with self.session_factory() as s:
            if expected_version is None:
                s.add(
                    BudgetLedgerRow(
                        id=LEDGER_ROW_ID,
                        daily_spend_usd=state.daily_spend_usd,
                        period_date=state.period_date,
                        monthly_spend_usd=state.monthly_spend_usd,
                        period_month=state.period_month,
                        degradation_tier=state.degradation_tier,
                        updated_at=updated_at,
                        version=1,
                    )
                )
                try:
                    await s.commit()
                except IntegrityError:
                    await s.rollback()
                    return Conflict(reason="budget ledger already exists")
                return Applied(Versioned(value=state, version=1))

            stmt = (
                update(BudgetLedgerRow)
                .where(BudgetLedgerRow.id == LEDGER_ROW_ID)
                .where(BudgetLedgerRow.version == expected_version)
                .values(
                    daily_spend_usd=state.daily_spend_usd,
                    period_date=state.period_date,
                    monthly_spend_usd=state.monthly_spend_usd,
                    period_month=state.period_month,
                    degradation_tier=state.degradation_tier,
                    updated_at=updated_at,
                    version=expected_version + 1,
                )
            )
            result = await s.execute(stmt)
            if result.rowcount != 1:
                await s.rollback()
                return Conflict(reason=f"budget ledger version {expected_version} is stale")
            await s.commit()
            return Applied(Versioned(value=state, version=expected_version + 1))


@dataclass(frozen=True)
class SqlEventRepository(EventRepository):
    """SQL implementation of ``EventRepository``."""

    session_factory: async_sessionmaker[AsyncSession]

    async def append(self, event: GovernanceEvent) -> None:
        async with self.session_factory() as s:
            s.add(
                GovernanceEventRow(
                    id=event.id,
                    project_id=event.project_id,
                    event_type=event.event_type.value,
                    severity=event.severity.value,
                    summary=event.summary,
                    detail=json.dumps(event.detail, default=str),
                    created_at=_to_utc(event.created_at),
                )
            )
            await s.commit()

    async def list(self, project_id: Optional[str] = None, limit: int = 100) -> list[GovernanceEvent]:
        async with self.session_factory() as s:
            stmt = select(GovernanceEventRow)
            if project_id is not None:
                stmt = stmt.where(GovernanceEventRow.project_id == project_id)
            stmt = stmt.order_by(GovernanceEventRow.created_at.desc()).limit(limit)
            rows = (await s.execute(stmt)).scalars().all()
            return [
                GovernanceEvent(
                    id=r.id,
                    project_id=r.project_id,
                    event_type=GovernanceEventType(r.event_type),
                    severity=EventSeverity(r.severity),
                    summary=r.summary,
                    detail=json.loads(r.detail) if r.detail else {},
                    created_at=_to_utc(r.created_at),
                )
                for r in rows
            ]


@dataclass(frozen=True)
class SqlRepoBundle:
    """Convenience bundle of all SQL repositories for dependency injection."""

    held_actions: SqlHeldActionRepository
    graduation: SqlGraduationRepository
    budget: SqlBudgetLedgerRepository
    events: SqlEventRepository


def build_sql_repos(*, session_factory: async_sessionmaker[AsyncSession]) -> SqlRepoBundle:
    """Build a ``SqlRepoBundle`` from a session factory."""
    return SqlRepoBundle(
        held_actions=SqlHeldActionRepository(session_factory=session_factory),
        graduation=SqlGraduationRepository(session_factory=session_factory),
        budget=SqlBudgetLedgerRepository(session_factory=session_factory),
        events=SqlEventRepository(session_factory=session_factory),
    )
