"""
Retry budget for version-checked writes.

A writer reads a record and its version, then writes conditionally on that
version. When the write conflicts, the writer re-reads and tries again.

A conflict only counts against ``max_attempts`` when the record did not
move between the two reads. If the version advanced, another writer made
progress and the caller is simply behind; that retry is free, up to
``safety_cap`` writes in total. Backoff uses full jitter so losers of the
same round do not wake up together.
"""

from __future__ import annotations

import asyncio
import random
from typing import Optional

DEFAULT_SAFETY_CAP = 1000


class ConflictRetry:
    """Tracks conflicts for one optimistic write loop."""

    def __init__(
        self,
        max_attempts: int,
        backoff_seconds: float,
        *,
        safety_cap: int = DEFAULT_SAFETY_CAP,
    ) -> None:
        self._max_attempts = max_attempts
        self._backoff = backoff_seconds
        self._safety_cap = max(safety_cap, max_attempts)
        self.writes = 0
        self.stalled = 0
        self._conflicted_at: Optional[int] = None

    def before_write(self, version: int) -> bool:
        """
        Account for the write about to be made at ``version``.

        Returns:
            False when the budget is spent and the caller should give up.
        """
        if self._conflicted_at is not None:
            if version == self._conflicted_at:
                self.stalled += 1
            self._conflicted_at = None
            if self.stalled >= self._max_attempts or self.writes >= self._safety_cap:
                return False
        self.writes += 1
        return True

    async def after_conflict(self, version: int) -> None:
        """Remember the version that lost and back off."""
        self._conflicted_at = version
        if self._backoff:
            ceiling = self._backoff * min(self.stalled + 1, self._max_attempts)
            await asyncio.sleep(random.uniform(0, ceiling))
