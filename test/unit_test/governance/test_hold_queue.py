from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from agentic_pm.governance.errors import (
    ConcurrentUpdateError,
    ExecutionError,
    GovernanceValidationError,
    UnknownEntityError,
)
from agentic_pm.governance.graduation import GraduationTracker
from agentic_pm.governance.hold_queue import HoldQueue, format_hold_time, time_remaining
from agentic_pm.governance.schemas.domain import (
    EmailReceipt,
    EmailStakeholderPayload,
    GovernanceEventType,
    HeldActionStatus,
    HeldActionType,
)

EMAIL = HeldActionType.email_stakeholder
JIRA = HeldActionType.jira_status_change


async def test_create_parks_pending_action(hold_queue: HoldQueue, email_payload, clock) -> None:
    action = await hold_queue.create("proj-1", "email_stakeholder", email_payload, 30)

    assert action.status == HeldActionStatus.pending
    assert action.action_type == EMAIL
    assert action.held_until == clock.now + timedelta(minutes=30)
    assert action.payload == email_payload
    assert await hold_queue.get(action.id) == action


async def test_create_accepts_payload_model(hold_queue: HoldQueue, email_payload) -> None:
    action = await hold_queue.create("proj-1", EMAIL, EmailStakeholderPayload(**email_payload), 5)
    assert action.payload["subject"] == email_payload["subject"]
    assert "body_html" not in action.payload


@pytest.mark.parametrize("minutes", [-1, 1.5, True, None])
async def test_create_rejects_bad_hold_minutes(hold_queue: HoldQueue, email_payload, minutes) -> None:
    with pytest.raises(GovernanceValidationError) as exc_info:
        await hold_queue.create("proj-1", EMAIL, email_payload, minutes)
    assert exc_info.value.field == "hold_minutes"
    assert await hold_queue.list_pending() == []


async def test_create_rejects_payload_of_wrong_shape(hold_queue: HoldQueue, jira_payload) -> None:
    with pytest.raises(GovernanceValidationError) as exc_info:
        await hold_queue.create("proj-1", EMAIL, jira_payload, 30)
    assert exc_info.value.field == "payload"


async def test_create_rejects_email_without_recipients(hold_queue: HoldQueue, email_payload) -> None:
    with pytest.raises(GovernanceValidationError):
        await hold_queue.create("proj-1", EMAIL, {**email_payload, "to": []}, 30)


async def test_create_rejects_unknown_action_type(hold_queue: HoldQueue, email_payload) -> None:
    with pytest.raises(GovernanceValidationError) as exc_info:
        await hold_queue.create("proj-1", "slack_message", email_payload, 30)
    assert exc_info.value.field == "action_type"


async def test_create_rejects_empty_project(hold_queue: HoldQueue, email_payload) -> None:
    with pytest.raises(GovernanceValidationError):
        await hold_queue.create("", EMAIL, email_payload, 30)


async def test_zero_hold_is_due_immediately(hold_queue: HoldQueue, jira_payload, executor) -> None:
    await hold_queue.create("proj-1", JIRA, jira_payload, 0)

    result = await hold_queue.release_due(executor)

    assert result.executed == 1
    executor.execute_jira_status_change.assert_awaited_once()


async def test_approve_records_decision_and_graduation(
    hold_queue: HoldQueue, graduation: GraduationTracker, repos, email_payload, clock
) -> None:
    action = await hold_queue.create("proj-1", EMAIL, email_payload, 30)
    clock.advance(minutes=2)

    approved = await hold_queue.approve(action.id, "pm@example.com")

    assert approved is not None
    assert approved.status == HeldActionStatus.approved
    assert approved.approved_at == clock.now
    assert approved.decided_by == "pm@example.com"
    assert (await graduation.get_state("proj-1", EMAIL)).consecutive_approvals == 1
    events = await repos.events.list("proj-1")
    assert events[0].event_type == GovernanceEventType.action_approved


async def test_cancel_records_reason_and_resets_counter(
    hold_queue: HoldQueue, graduation: GraduationTracker, repos, email_payload
) -> None:
    for _ in range(3):
        await graduation.record_approval("proj-1", EMAIL)
    action = await hold_queue.create("proj-1", EMAIL, email_payload, 30)

    cancelled = await hold_queue.cancel(action.id, "Wrong recipient", "pm@example.com")

    assert cancelled.status == HeldActionStatus.cancelled
    assert cancelled.cancel_reason == "Wrong recipient"
    assert cancelled.cancelled_at is not None
    assert (await graduation.get_state("proj-1", EMAIL)).consecutive_approvals == 0
    assert (await repos.events.list("proj-1"))[0].event_type == GovernanceEventType.action_rejected


async def test_second_decision_loses(hold_queue: HoldQueue, email_payload) -> None:
    action = await hold_queue.create("proj-1", EMAIL, email_payload, 30)

    assert await hold_queue.approve(action.id) is not None
    assert await hold_queue.approve(action.id) is None
    assert await hold_queue.cancel(action.id) is None
    assert (await hold_queue.get(action.id)).status == HeldActionStatus.approved


async def test_racing_approve_and_cancel_has_one_winner(
    hold_queue: HoldQueue, graduation: GraduationTracker, email_payload
) -> None:
    action = await hold_queue.create("proj-1", EMAIL, email_payload, 30)

    approved, cancelled = await asyncio.gather(hold_queue.approve(action.id), hold_queue.cancel(action.id))

    assert (approved is None) != (cancelled is None)
    final = await hold_queue.get(action.id)
    winner = approved or cancelled
    assert final.status == winner.status
    state = await graduation.get_state("proj-1", EMAIL)
    assert state.consecutive_approvals == (1 if approved is not None else 0)


async def test_many_concurrent_approvals_all_graduate(
    hold_queue: HoldQueue, graduation: GraduationTracker, repos, jira_payload
) -> None:
    actions = [await hold_queue.create("proj-1", JIRA, jira_payload, 5) for _ in range(10)]

    approved = await asyncio.gather(*(hold_queue.approve(a.id) for a in actions))

    assert all(a is not None and a.status == HeldActionStatus.approved for a in approved)
    state = await graduation.get_state("proj-1", JIRA)
    assert state.consecutive_approvals == 10
    assert state.tier == 2
    events = await repos.events.list("proj-1")
    assert sum(e.event_type == GovernanceEventType.action_approved for e in events) == 10


@pytest.mark.parametrize("decide", ["approve", "cancel"])
async def test_decision_stands_when_graduation_update_fails(
    repos, email_payload, clock, decide: str
) -> None:
    failing = MagicMock(spec=GraduationTracker)
    failing.record_approval = AsyncMock(side_effect=ConcurrentUpdateError("Graduation state", 5))
    failing.record_cancellation = AsyncMock(side_effect=ConcurrentUpdateError("Graduation state", 5))
    queue = HoldQueue(repos.held_actions, failing, repos.events, clock=clock)
    action = await queue.create("proj-1", EMAIL, email_payload, 30)

    decided = await getattr(queue, decide)(action.id)

    expected = HeldActionStatus.approved if decide == "approve" else HeldActionStatus.cancelled
    assert decided.status == expected
    assert (await queue.get(action.id)).status == expected
    types = [e.event_type for e in await repos.events.list("proj-1")]
    assert GovernanceEventType.error in types
    assert (GovernanceEventType.action_approved if decide == "approve" else GovernanceEventType.action_rejected) in types


@pytest.mark.parametrize("decide", ["approve", "cancel"])
async def test_decision_on_unknown_id_raises(hold_queue: HoldQueue, decide: str) -> None:
    with pytest.raises(UnknownEntityError) as exc_info:
        await getattr(hold_queue, decide)("does-not-exist")
    assert exc_info.value.entity_id == "does-not-exist"


async def test_approve_with_executor_runs_side_effect(hold_queue: HoldQueue, email_payload, executor) -> None:
    action = await hold_queue.create("proj-1", EMAIL, email_payload, 30)

    approved = await hold_queue.approve(action.id, executor=executor)

    assert approved.status == HeldActionStatus.approved
    sent = executor.execute_email.await_args.args[0]
    assert isinstance(sent, EmailStakeholderPayload)
    assert sent.to == ["sponsor@example.com"]


async def test_approve_executor_failure_keeps_approval(
    hold_queue: HoldQueue, repos, jira_payload, executor
) -> None:
    executor.execute_jira_status_change.side_effect = RuntimeError("Jira returned 503")
    action = await hold_queue.create("proj-1", JIRA, jira_payload, 5)

    with pytest.raises(ExecutionError) as exc_info:
        await hold_queue.approve(action.id, executor=executor)

    assert exc_info.value.action_id == action.id
    assert exc_info.value.detail == "Jira returned 503"
    assert (await hold_queue.get(action.id)).status == HeldActionStatus.approved
    assert (await repos.events.list("proj-1"))[0].event_type == GovernanceEventType.error


async def test_release_due_executes_only_expired_actions_in_order(
    hold_queue: HoldQueue, email_payload, jira_payload, executor, clock
) -> None:
    later = await hold_queue.create("proj-1", EMAIL, email_payload, 20)
    sooner = await hold_queue.create("proj-1", JIRA, jira_payload, 5)
    not_due = await hold_queue.create("proj-2", EMAIL, email_payload, 60)
    clock.advance(minutes=30)

    result = await hold_queue.release_due(executor)

    assert result.processed == 2
    assert result.executed == 2
    assert result.errors == []
    assert (await hold_queue.get(sooner.id)).status == HeldActionStatus.executed
    assert (await hold_queue.get(later.id)).executed_at == clock.now
    assert (await hold_queue.get(not_due.id)).status == HeldActionStatus.pending
    executor.execute_jira_status_change.assert_awaited_once()
    executor.execute_email.assert_awaited_once()

    again = await hold_queue.release_due(executor)
    assert again.processed == 0


async def test_release_due_respects_explicit_now(hold_queue: HoldQueue, email_payload, executor, clock) -> None:
    await hold_queue.create("proj-1", EMAIL, email_payload, 30)

    assert (await hold_queue.release_due(executor, now=clock.now + timedelta(minutes=29))).processed == 0
    assert (await hold_queue.release_due(executor, now=clock.now + timedelta(minutes=30))).executed == 1


async def test_release_due_honours_batch_size(repos, graduation, jira_payload, executor, clock) -> None:
    queue = HoldQueue(repos.held_actions, graduation, repos.events, batch_size=2, clock=clock)
    for _ in range(3):
        await queue.create("proj-1", JIRA, jira_payload, 0)

    assert (await queue.release_due(executor)).executed == 2
    assert (await queue.release_due(executor)).executed == 1


async def test_failed_release_stays_pending(
    hold_queue: HoldQueue, repos, email_payload, jira_payload, executor, clock
) -> None:
    executor.execute_email.side_effect = RuntimeError("SMTP relay unavailable")
    email = await hold_queue.create("proj-1", EMAIL, email_payload, 0)
    jira = await hold_queue.create("proj-1", JIRA, jira_payload, 0)
    clock.advance(seconds=1)

    result = await hold_queue.release_due(executor)

    assert result.processed == 2
    assert result.executed == 1
    assert [(e.action_id, e.error) for e in result.errors] == [(email.id, "SMTP relay unavailable")]
    assert (await hold_queue.get(email.id)).status == HeldActionStatus.pending
    assert (await hold_queue.get(jira.id)).status == HeldActionStatus.executed
    error_events = [e for e in await repos.events.list("proj-1") if e.event_type == GovernanceEventType.error]
    assert len(error_events) == 1


@pytest.mark.parametrize("decide", ["approve", "cancel"])
async def test_sweep_racing_a_decision_has_one_terminal_transition(
    hold_queue: HoldQueue, repos, email_payload, executor, decide: str
) -> None:
    action = await hold_queue.create("proj-1", EMAIL, email_payload, 0)

    result, decided = await asyncio.gather(hold_queue.release_due(executor), getattr(hold_queue, decide)(action.id))

    final = await hold_queue.get(action.id)
    assert result.processed == 1
    assert result.errors == []
    if decided is None:
        assert final.status == HeldActionStatus.executed
        assert result.executed == 1
    else:
        assert final.status == decided.status
        assert result.executed == 0
    taken = [e for e in await repos.events.list("proj-1") if e.event_type == GovernanceEventType.action_taken]
    assert len(taken) == result.executed


async def test_executed_mark_lost_to_approval_is_not_counted(
    hold_queue: HoldQueue, repos, email_payload, executor
) -> None:
    action = await hold_queue.create("proj-1", EMAIL, email_payload, 0)
    outcome = {}

    async def approve_while_sending(payload):
        outcome["approved"] = await hold_queue.approve(action.id, "pm@example.com")
        return EmailReceipt(message_id="msg-002")

    executor.execute_email.side_effect = approve_while_sending

    result = await hold_queue.release_due(executor)

    assert outcome["approved"].status == HeldActionStatus.approved
    assert result.processed == 1
    assert result.executed == 0
    assert (await hold_queue.get(action.id)).status == HeldActionStatus.approved
    types = [e.event_type for e in await repos.events.list("proj-1")]
    assert GovernanceEventType.action_taken not in types


async def test_sweep_continues_when_event_store_fails(
    repos, graduation: GraduationTracker, email_payload, jira_payload, executor, clock
) -> None:
    events = MagicMock()
    events.append = AsyncMock(side_effect=OSError("event store unavailable"))
    queue = HoldQueue(repos.held_actions, graduation, events, clock=clock)
    executor.execute_email.side_effect = RuntimeError("SMTP relay unavailable")
    email = await queue.create("proj-1", EMAIL, email_payload, 0)
    jira = await queue.create("proj-1", JIRA, jira_payload, 0)
    clock.advance(seconds=1)

    result = await queue.release_due(executor)

    assert result.processed == 2
    assert result.executed == 1
    assert [e.action_id for e in result.errors] == [email.id]
    assert (await queue.get(jira.id)).status == HeldActionStatus.executed
    assert events.append.await_count == 2


async def test_release_after_hold_does_not_graduate(
    hold_queue: HoldQueue, graduation: GraduationTracker, email_payload, executor
) -> None:
    await hold_queue.create("proj-1", EMAIL, email_payload, 0)

    await hold_queue.release_due(executor)

    assert await graduation.list_for_project("proj-1") == []


async def test_decided_actions_are_never_released(hold_queue: HoldQueue, email_payload, executor, clock) -> None:
    approved = await hold_queue.create("proj-1", EMAIL, email_payload, 5)
    cancelled = await hold_queue.create("proj-1", EMAIL, email_payload, 5)
    await hold_queue.approve(approved.id)
    await hold_queue.cancel(cancelled.id)
    clock.advance(minutes=10)

    result = await hold_queue.release_due(executor)

    assert result.processed == 0
    executor.execute_email.assert_not_awaited()


async def test_queue_action_uses_graduation_hold(
    hold_queue: HoldQueue, graduation: GraduationTracker, repos, email_payload
) -> None:
    for _ in range(5):
        await graduation.record_approval("proj-1", EMAIL)

    queued = await hold_queue.queue_action("proj-1", EMAIL, email_payload)

    assert queued.hold_minutes == 15
    assert queued.graduation_tier == 1
    event = (await repos.events.list("proj-1"))[0]
    assert event.event_type == GovernanceEventType.action_held
    assert event.detail["hold_minutes"] == 15
    assert event.summary == 'Action "email_stakeholder" queued with 15 minutes hold'


async def test_queue_action_caps_hold_with_max(hold_queue: HoldQueue, email_payload) -> None:
    queued = await hold_queue.queue_action("proj-1", EMAIL, email_payload, max_hold_minutes=10)
    assert queued.hold_minutes == 10
    assert queued.graduation_tier == 0


async def test_queue_action_without_hold_logs_autonomy_increase(
    hold_queue: HoldQueue, graduation: GraduationTracker, repos, jira_payload
) -> None:
    for _ in range(20):
        await graduation.record_approval("proj-1", JIRA)

    queued = await hold_queue.queue_action("proj-1", JIRA, jira_payload)

    assert queued.hold_minutes == 0
    types = [e.event_type for e in await repos.events.list("proj-1")]
    assert types[:2] == [GovernanceEventType.autonomy_increased, GovernanceEventType.action_held]


async def test_list_pending_filters_by_project(hold_queue: HoldQueue, email_payload) -> None:
    a = await hold_queue.create("proj-1", EMAIL, email_payload, 30)
    b = await hold_queue.create("proj-1", EMAIL, email_payload, 10)
    await hold_queue.create("proj-2", EMAIL, email_payload, 10)

    pending = await hold_queue.list_pending("proj-1")

    assert [p.id for p in pending] == [b.id, a.id]
    assert len(await hold_queue.list_pending()) == 3


@pytest.mark.parametrize(
    ("minutes", "label"),
    [(0, "Immediate"), (1, "1 minute"), (5, "5 minutes"), (60, "1 hour"), (120, "2 hours"), (90, "1h 30m")],
)
def test_format_hold_time(minutes: int, label: str) -> None:
    assert format_hold_time(minutes) == label


def test_time_remaining() -> None:
    now = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    assert time_remaining(now + timedelta(minutes=4, seconds=30), now).model_dump() == {
        "minutes": 4,
        "seconds": 30,
        "expired": False,
    }
    assert time_remaining(now, now).expired is True
    assert time_remaining(now - timedelta(seconds=5), now).minutes == 0
