from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from agentic_pm.governance.factory import Governance, build_governance
from agentic_pm.governance.repos.memory import build_memory_repos


@pytest.fixture
def governance() -> Governance:
    """Governance components over fresh in-memory repositories."""
    return build_governance(build_memory_repos())


@pytest_asyncio.fixture(name="client")
async def client_fixture(governance: Governance, executor) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client with the governance and executor dependencies overridden."""
    from agentic_pm.server.main import app
    from agentic_pm.server.services.executor import get_action_executor
    from agentic_pm.server.services.governance import get_governance

    app.dependency_overrides[get_governance] = lambda: governance
    app.dependency_overrides[get_action_executor] = lambda: executor

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://localhost") as client:
        yield client

    app.dependency_overrides.clear()
