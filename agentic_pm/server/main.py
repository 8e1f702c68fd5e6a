"""
Main Application Entry Point.

This module initializes the FastAPI application, configures middleware (CORS),
registers exception handlers and includes all API routers. When an action
executor has been registered, the lifespan also runs the hold queue release
scheduler in the background.
"""

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from agentic_pm.core.logging_config import get_logger, setup_logging
from agentic_pm.governance.factory import build_release_scheduler

from .api.v1 import autonomy, budget, graduation, health, held_actions
from .core import constant
from .core.database import init_db
from .exception_handlers import setup_exception_handlers
from .services.executor import get_action_executor
from .services.governance import get_governance

# Initialize logging
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifespan events.

    Creates missing tables on startup and, if an action executor is registered,
    runs the release scheduler until shutdown.
    """
    logger.info("Starting up agentic_pm governance server...")
    await init_db()
    logger.info("Database initialized successfully")

    stop = asyncio.Event()
    sweeper = None
    executor = get_action_executor()
    if executor is not None:
        scheduler = build_release_scheduler(get_governance().hold_queue, executor)
        sweeper = asyncio.create_task(scheduler.run_forever(stop))
    else:
        logger.warning("No action executor registered; held actions will not be released automatically")

    yield

    logger.info("Shutting down agentic_pm governance server...")
    stop.set()
    if sweeper is not None:
        await sweeper


app = FastAPI(
    title=constant.PROJECT_NAME,
    description="""
    agentic_pm Governance API

    Review the hold queue, approve or cancel held actions, and inspect graduation
    state, budget status and autonomy capabilities of the project-management agent.
    """,
    version="0.1.0",
    openapi_url=f"{constant.API_V1_STR}/openapi.json",
    docs_url=f"{constant.API_V1_STR}/docs",
    redoc_url=f"{constant.API_V1_STR}/redoc",
    lifespan=lifespan,
)

# Set all CORS enabled origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

setup_exception_handlers(app)

app.include_router(health.router, tags=["health"])
app.include_router(held_actions.router, prefix=f"{constant.API_V1_STR}/held-actions", tags=["held-actions"])
app.include_router(graduation.router, prefix=f"{constant.API_V1_STR}/graduation", tags=["graduation"])
app.include_router(budget.router, prefix=f"{constant.API_V1_STR}/budget", tags=["budget"])
app.include_router(autonomy.router, prefix=f"{constant.API_V1_STR}/autonomy", tags=["autonomy"])
