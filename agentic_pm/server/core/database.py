"""
Database Connection and Session Management.

This module sets up the asynchronous SQLAlchemy engine and session factory
used by the governance repositories.
"""

from agentic_pm.core.config import settings
from agentic_pm.governance.repos.sql import create_all, create_engine, create_sessionmaker

"""
engine:
    The global SQLAlchemy AsyncEngine instance.
    Configured with the connection URL from settings; Postgres URLs are
    normalized to the asyncpg driver.
"""
engine = create_engine(settings.database_url)

"""
async_session_maker:
    A global factory for creating new AsyncSession instances.
    Bound to the `engine` and configured to NOT expire on commit (typical for async).
"""
async_session_maker = create_sessionmaker(engine)


async def init_db() -> None:
    """
    Initialize the database.

    Creates all governance tables that do not exist yet.
    """
    await create_all(engine)
