from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

# Point the server at SQLite before anything imports agentic_pm.core.config
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from agentic_pm.governance.budget import BudgetLedger
from agentic_pm.governance.graduation import GraduationTracker
from agentic_pm.governance.hold_queue import HoldQueue
from agentic_pm.governance.repos.memory import InMemoryRepoBundle, build_memory_repos
from agentic_pm.governance.schemas.domain import EmailReceipt

START = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock passed to governance components as ``clock=``."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(autouse=True)
def _global_offline_http_guard(monkeypatch: pytest.MonkeyPatch):
    allowed_prefixes: Iterable[str] = (
        "http://localhost",
        "http://127.0.0.1",
        "/",  # Allow relative paths (used by ASGI transport)
    )

    orig_sync = httpx._client.Client.request
    orig_async = httpx._client.AsyncClient.request

    def _is_allowed(url_str: str) -> bool:
        return any(url_str.startswith(p) for p in allowed_prefixes)

    def offline_sync(self, method, url, *args, **kwargs):
        url_str = str(url)
        if _is_allowed(url_str):
            return orig_sync(self, method, url, *args, **kwargs)
        raise RuntimeError(f"External HTTP blocked by global offline guard: {url_str}")

    async def offline_async(self, method, url, *args, **kwargs):
        url_str = str(url)
        if _is_allowed(url_str):
            return await orig_async(self, method, url, *args, **kwargs)
        raise RuntimeError(f"External HTTP blocked by global offline guard (async): {url_str}")

    monkeypatch.setattr(httpx._client.Client, "request", offline_sync, raising=True)
    monkeypatch.setattr(httpx._client.AsyncClient, "request", offline_async, raising=True)
    yield


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def repos() -> InMemoryRepoBundle:
    return build_memory_repos()


@pytest.fixture
def graduation(repos: InMemoryRepoBundle, clock: FakeClock) -> GraduationTracker:
    return GraduationTracker(repos.graduation, retry_backoff_seconds=0, clock=clock)


@pytest.fixture
def hold_queue(repos: InMemoryRepoBundle, graduation: GraduationTracker, clock: FakeClock) -> HoldQueue:
    return HoldQueue(repos.held_actions, graduation, repos.events, clock=clock)


@pytest.fixture
def ledger(repos: InMemoryRepoBundle, clock: FakeClock) -> BudgetLedger:
    return BudgetLedger(repos.budget, retry_backoff_seconds=0, clock=clock)


@pytest.fixture
def executor() -> MagicMock:
    """Action executor whose side effects always succeed."""
    mock = MagicMock()
    mock.execute_email = AsyncMock(return_value=EmailReceipt(message_id="msg-001"))
    mock.execute_jira_status_change = AsyncMock(return_value=None)
    return mock


@pytest.fixture
def email_payload() -> Dict[str, Any]:
    return {
        "to": ["sponsor@example.com"],
        "subject": "Sprint 14 delivery slipped by two days",
        "body_text": "The payments integration is blocked on vendor sandbox access.",
    }


@pytest.fixture
def jira_payload() -> Dict[str, Any]:
    return {
        "issue_key": "PAY-231",
        "transition_id": "31",
        "transition_name": "Start Progress",
        "from_status": "To Do",
        "to_status": "In Progress",
    }
