"""
Release scheduler.

Periodically drives ``HoldQueue.release_due`` so held actions execute once
their review window ends. The scheduler is the only place where a failure of
a whole sweep is turned into a result entry instead of an exception; per-action
failures are already reported by the hold queue itself.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Optional

from agentic_pm.core.logging_config import get_logger

from .hold_queue import ActionExecutor, HoldQueue
from .schemas.domain import ReleaseError, ReleaseResult

logger = get_logger(__name__)

SWEEP_ERROR_ACTION_ID = "queue-processing"


class ReleaseScheduler:
    """Run hold queue sweeps on a fixed interval."""

    def __init__(self, hold_queue: HoldQueue, executor: ActionExecutor, *, interval_seconds: float = 60.0) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._queue = hold_queue
        self._executor = executor
        self._interval = interval_seconds

    async def run_once(self, now: Optional[datetime] = None) -> ReleaseResult:
        """
        Run a single sweep.

        Returns:
            The sweep result. If the sweep itself fails, a result with a single
            error entry for ``"queue-processing"`` is returned.
        """
        try:
            result = await self._queue.release_due(self._executor, now=now)
        except Exception as exc:
            logger.exception(f"Hold queue sweep failed: {exc}")
            return ReleaseResult(errors=[ReleaseError(action_id=SWEEP_ERROR_ACTION_ID, error=str(exc))])

        for err in result.errors:
            logger.error(f"Held action {err.action_id} failed: {err.error}")
        logger.info(
            f"Hold queue processed: processed={result.processed} executed={result.executed} "
            f"cancelled={result.cancelled} errors={len(result.errors)}"
        )
        return result

    async def run_forever(self, stop: asyncio.Event) -> None:
        """Sweep every ``interval_seconds`` until ``stop`` is set."""
        logger.info(f"Release scheduler started (interval={self._interval}s)")
        while not stop.is_set():
            await self.run_once()
            try:
                await asyncio.wait_for(stop.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                continue
        logger.info("Release scheduler stopped")
