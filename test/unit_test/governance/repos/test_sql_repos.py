from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio

from agentic_pm.governance.budget import BudgetLedger
from agentic_pm.governance.graduation import GraduationTracker
from agentic_pm.governance.hold_queue import HoldQueue
from agentic_pm.governance.repos.interfaces import Applied, Conflict, LedgerState
from agentic_pm.governance.repos.sql import SqlRepoBundle, build_sql_repos, create_all, create_engine, create_sessionmaker
from agentic_pm.governance.schemas.domain import (
    GovernanceEvent,
    GovernanceEventType,
    GraduationState,
    HeldAction,
    HeldActionStatus,
    HeldActionType,
)

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def sql_repos(tmp_path) -> AsyncGenerator[SqlRepoBundle, None]:
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'governance.db'}")
    await create_all(engine)
    try:
        yield build_sql_repos(session_factory=create_sessionmaker(engine))
    finally:
        await engine.dispose()


def _held(project_id: str = "proj-1", minutes: int = 30, **kwargs) -> HeldAction:
    return HeldAction(
        project_id=project_id,
        action_type=HeldActionType.jira_status_change,
        payload={"issue_key": "PAY-231", "to_status": "Done"},
        held_until=NOW + timedelta(minutes=minutes),
        created_at=NOW,
        **kwargs,
    )


def test_create_engine_normalizes_postgres_urls() -> None:
    engine = create_engine("postgres://pm:secret@db:5432/agentic_pm")
    assert engine.url.drivername == "postgresql+asyncpg"


async def test_held_action_round_trip_keeps_utc(sql_repos: SqlRepoBundle) -> None:
    action = _held()
    await sql_repos.held_actions.create(action)

    loaded = await sql_repos.held_actions.get(action.id)

    assert loaded == action
    assert loaded.held_until.tzinfo is not None
    assert await sql_repos.held_actions.get("missing") is None


async def test_transition_is_one_way(sql_repos: SqlRepoBundle) -> None:
    action = _held()
    await sql_repos.held_actions.create(action)
    at = NOW + timedelta(minutes=1)

    first = await sql_repos.held_actions.transition(
        action.id, to_status=HeldActionStatus.cancelled, at=at, decided_by="pm", cancel_reason="duplicate"
    )
    second = await sql_repos.held_actions.transition(action.id, to_status=HeldActionStatus.approved, at=at)

    assert isinstance(first, Applied)
    assert first.value.status == HeldActionStatus.cancelled
    assert first.value.cancelled_at == at
    assert first.value.cancel_reason == "duplicate"
    assert isinstance(second, Conflict)
    assert (await sql_repos.held_actions.get(action.id)).approved_at is None


async def test_transition_of_unknown_action_conflicts(sql_repos: SqlRepoBundle) -> None:
    result = await sql_repos.held_actions.transition("missing", to_status=HeldActionStatus.executed, at=NOW)
    assert isinstance(result, Conflict)


async def test_transition_back_to_pending_is_refused(sql_repos: SqlRepoBundle) -> None:
    with pytest.raises(ValueError):
        await sql_repos.held_actions.transition("any", to_status=HeldActionStatus.pending, at=NOW)


async def test_list_due_orders_and_limits(sql_repos: SqlRepoBundle) -> None:
    late = _held(minutes=10)
    early = _held(minutes=2)
    future = _held(minutes=90)
    decided = _held(minutes=1)
    for action in (late, early, future, decided):
        await sql_repos.held_actions.create(action)
    await sql_repos.held_actions.transition(decided.id, to_status=HeldActionStatus.approved, at=NOW)

    due = await sql_repos.held_actions.list_due(NOW + timedelta(minutes=10), limit=10)
    limited = await sql_repos.held_actions.list_due(NOW + timedelta(minutes=10), limit=1)

    assert [a.id for a in due] == [early.id, late.id]
    assert [a.id for a in limited] == [early.id]


async def test_list_pending_by_project(sql_repos: SqlRepoBundle) -> None:
    mine = _held("proj-1")
    theirs = _held("proj-2")
    await sql_repos.held_actions.create(mine)
    await sql_repos.held_actions.create(theirs)

    assert [a.id for a in await sql_repos.held_actions.list_pending("proj-1")] == [mine.id]
    assert len(await sql_repos.held_actions.list_pending()) == 2


async def test_graduation_save_is_version_checked(sql_repos: SqlRepoBundle) -> None:
    repo = sql_repos.graduation
    state = GraduationState(
        project_id="proj-1", action_type=HeldActionType.email_stakeholder, consecutive_approvals=1, updated_at=NOW
    )

    inserted = await repo.save(state, expected_version=None)
    duplicate = await repo.save(state, expected_version=None)
    bumped = await repo.save(state.model_copy(update={"consecutive_approvals": 2}), expected_version=1)
    stale = await repo.save(state.model_copy(update={"consecutive_approvals": 9}), expected_version=1)

    assert isinstance(inserted, Applied) and inserted.value.version == 1
    assert isinstance(duplicate, Conflict)
    assert isinstance(bumped, Applied) and bumped.value.version == 2
    assert isinstance(stale, Conflict)
    stored = await repo.get("proj-1", HeldActionType.email_stakeholder)
    assert stored.version == 2
    assert stored.value.consecutive_approvals == 2
    assert [s.action_type for s in await repo.list_for_project("proj-1")] == [HeldActionType.email_stakeholder]


async def test_budget_ledger_write_is_version_checked(sql_repos: SqlRepoBundle) -> None:
    repo = sql_repos.budget
    state = LedgerState(
        daily_spend_usd=0.1,
        period_date=date(2026, 3, 2),
        monthly_spend_usd=0.1,
        period_month="2026-03",
        degradation_tier=0,
        updated_at=NOW,
    )

    assert await repo.read() is None
    assert isinstance(await repo.write(state, expected_version=None), Applied)
    assert isinstance(await repo.write(state, expected_version=None), Conflict)
    assert isinstance(await repo.write(state, expected_version=1), Applied)
    assert isinstance(await repo.write(state, expected_version=1), Conflict)

    stored = await repo.read()
    assert stored.version == 2
    assert stored.value.period_date == date(2026, 3, 2)
    assert stored.value.daily_spend_usd == pytest.approx(0.1)


async def test_events_are_listed_newest_first(sql_repos: SqlRepoBundle) -> None:
    for minute, project_id in enumerate(["proj-1", "proj-2", "proj-1"]):
        await sql_repos.events.append(
            GovernanceEvent(
                project_id=project_id,
                event_type=GovernanceEventType.action_held,
                summary=f"event {minute}",
                detail={"minute": minute},
                created_at=NOW + timedelta(minutes=minute),
            )
        )

    events = await sql_repos.events.list("proj-1")

    assert [e.summary for e in events] == ["event 2", "event 0"]
    assert events[0].detail == {"minute": 2}
    assert len(await sql_repos.events.list(limit=2)) == 2


async def test_components_over_sql_repositories(sql_repos: SqlRepoBundle, jira_payload, executor) -> None:
    clock = lambda: NOW  # noqa: E731
    graduation = GraduationTracker(sql_repos.graduation, retry_backoff_seconds=0, clock=clock)
    queue = HoldQueue(sql_repos.held_actions, graduation, sql_repos.events, clock=clock)
    ledger = BudgetLedger(sql_repos.budget, retry_backoff_seconds=0, clock=clock)

    approved = await queue.create("proj-1", HeldActionType.jira_status_change, jira_payload, 5)
    released = await queue.create("proj-1", HeldActionType.jira_status_change, jira_payload, 0)
    assert (await queue.approve(approved.id, "pm@example.com")).status == HeldActionStatus.approved
    assert await queue.cancel(approved.id) is None
    result = await queue.release_due(executor)
    await ledger.record_spend(0.05)
    await ledger.record_spend(0.20)

    assert result.executed == 1
    assert (await queue.get(released.id)).status == HeldActionStatus.executed
    assert (await graduation.get_state("proj-1", HeldActionType.jira_status_change)).consecutive_approvals == 1
    status = await ledger.get_budget_status()
    assert status.daily_spend_usd == pytest.approx(0.25)
    assert status.degradation_tier == 1
