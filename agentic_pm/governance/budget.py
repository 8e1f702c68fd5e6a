"""
Budget ledger.

Tracks LLM spend against a daily budget, a daily hard ceiling and a monthly
limit, and derives the degradation tier the agent should run at.

Degradation ladder
------------------

The tier is recomputed from the expected daily spend on every debit:

- Tier 0 ("Normal"): below the daily budget ($0.23 by default).
- Tier 1 ("Budget Pressure"): at or above the daily budget.
- Tier 2 ("High Pressure"): at or above $0.27.
- Tier 3 ("Monitoring Only"): at or above $0.30.

The daily hard ceiling ($0.40) and the monthly limit ($8.00) are never
exceeded: a debit that would cross either raises ``BudgetExceededError`` and
writes nothing.

Concurrency
-----------

``record_spend`` reads the ledger and its version, applies any daily/monthly
rollover, checks the ceilings and then writes conditionally on the version it
read. A conflicting writer forces a re-read, so concurrent debits can never
jointly pass the ceiling. A conflict caused by another debit landing is not
counted against the retry budget, so every debit that fits under the ceiling
eventually lands. Amounts are compared at micro-dollar precision.
"""

from __future__ import annotations

import dataclasses
import math
from datetime import date, datetime, timezone
from typing import Callable, Dict, Optional

from agentic_pm.core.logging_config import get_logger

from .errors import BudgetConflictError, BudgetExceededError, GovernanceValidationError
from .repos.interfaces import Applied, BudgetLedgerRepository, LedgerState
from .retry import ConflictRetry
from .schemas.domain import BudgetCheck, BudgetStatus, DegradationConfig

logger = get_logger(__name__)

DAILY_LIMIT_USD = 0.23
DAILY_HARD_CEILING_USD = 0.40
MONTHLY_LIMIT_USD = 8.0

TIER_2_DAILY_USD = 0.27
TIER_3_DAILY_USD = 0.30

_PRECISION = 6

DEGRADATION_CONFIGS: Dict[int, DegradationConfig] = {
    0: DegradationConfig(
        tier=0,
        name="Normal",
        description="Normal operation with full LLM capabilities",
        haiku_percent=70,
        sonnet_percent=30,
        polling_interval_minutes=15,
        allow_llm_calls=True,
        skip_low_priority=False,
        batch_signals=False,
    ),
    1: DegradationConfig(
        tier=1,
        name="Budget Pressure",
        description="Skip low-priority signals to conserve budget",
        haiku_percent=85,
        sonnet_percent=15,
        polling_interval_minutes=15,
        allow_llm_calls=True,
        skip_low_priority=True,
        batch_signals=False,
    ),
    2: DegradationConfig(
        tier=2,
        name="High Pressure",
        description="Batch signals, Haiku only mode",
        haiku_percent=100,
        sonnet_percent=0,
        polling_interval_minutes=30,
        allow_llm_calls=True,
        skip_low_priority=True,
        batch_signals=True,
    ),
    3: DegradationConfig(
        tier=3,
        name="Monitoring Only",
        description="No LLM calls, monitoring and logging only",
        haiku_percent=0,
        sonnet_percent=0,
        polling_interval_minutes=60,
        allow_llm_calls=False,
        skip_low_priority=True,
        batch_signals=True,
    ),
}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _usd(value: float) -> float:
    return round(value, _PRECISION)


def _month_of(day: date) -> str:
    return day.strftime("%Y-%m")


def format_budget_status(status: BudgetStatus) -> str:
    """One-line summary of a ``BudgetStatus`` for logs and notifications."""
    daily_percent = status.daily_spend_usd / status.daily_limit_usd * 100
    monthly_percent = status.monthly_spend_usd / status.monthly_limit_usd * 100
    tier_name = DEGRADATION_CONFIGS[status.degradation_tier].name
    return " | ".join(
        [
            f"Budget Status: Tier {status.degradation_tier} ({tier_name})",
            f"Daily: ${status.daily_spend_usd:.4f} / ${status.daily_limit_usd:.2f} ({daily_percent:.1f}%)",
            f"Monthly: ${status.monthly_spend_usd:.4f} / ${status.monthly_limit_usd:.2f} ({monthly_percent:.1f}%)",
        ]
    )


class BudgetLedger:
    """Atomic spend counter with rollover, ceilings and degradation tiers."""

    def __init__(
        self,
        repo: BudgetLedgerRepository,
        *,
        daily_limit_usd: float = DAILY_LIMIT_USD,
        daily_hard_ceiling_usd: float = DAILY_HARD_CEILING_USD,
        monthly_limit_usd: float = MONTHLY_LIMIT_USD,
        max_attempts: int = 5,
        retry_backoff_seconds: float = 0.005,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._repo = repo
        self._daily_limit = daily_limit_usd
        self._daily_ceiling = daily_hard_ceiling_usd
        self._monthly_limit = monthly_limit_usd
        self._max_attempts = max_attempts
        self._backoff = retry_backoff_seconds
        self._clock = clock or _utc_now

    def degradation_tier_for(self, daily_spend_usd: float) -> int:
        """Tier implied by a daily spend figure."""
        spend = _usd(daily_spend_usd)
        if spend >= _usd(TIER_3_DAILY_USD):
            return 3
        if spend >= _usd(TIER_2_DAILY_USD):
            return 2
        if spend >= _usd(self._daily_limit):
            return 1
        return 0

    async def get_budget_status(self) -> BudgetStatus:
        """
        Current spend as of now.

        When the stored period has elapsed, the rollover is persisted with one
        conditional write. Losing that write is fine: the concurrent writer
        rolled the period over already.
        """
        stored = await self._repo.read()
        now = self._clock().astimezone(timezone.utc)
        current = self._rolled_over(stored.value if stored else None, now.date())

        if stored is not None and (
            current.period_date != stored.value.period_date or current.period_month != stored.value.period_month
        ):
            rolled = dataclasses.replace(current, updated_at=now)
            result = await self._repo.write(rolled, expected_version=stored.version)
            if isinstance(result, Applied):
                logger.info(f"Budget period rolled over to {rolled.period_date.isoformat()} ({rolled.period_month})")
                current = rolled
            else:
                logger.debug(f"Budget rollover already persisted by a concurrent writer: {result.reason}")
        return self._to_status(current)

    async def record_spend(self, amount_usd: float) -> BudgetStatus:
        """
        Debit ``amount_usd`` from today's and this month's budget.

        Args:
            amount_usd: Cost of the LLM call in USD. Must be finite and >= 0.

        Returns:
            The ``BudgetStatus`` after the debit.

        Raises:
            GovernanceValidationError: ``amount_usd`` is negative or not finite.
            BudgetExceededError: The debit would cross the monthly limit or the
                daily hard ceiling. Nothing is written.
            BudgetConflictError: ``max_attempts`` writes conflicted without the
                ledger moving in between.
        """
        if not isinstance(amount_usd, (int, float)) or isinstance(amount_usd, bool) or not math.isfinite(amount_usd):
            raise GovernanceValidationError(f"Spend amount must be a finite number, got {amount_usd!r}", field="amount_usd")
        if amount_usd < 0:
            raise GovernanceValidationError(f"Spend amount must not be negative, got {amount_usd}", field="amount_usd")

        retry = ConflictRetry(self._max_attempts, self._backoff)
        while True:
            stored = await self._repo.read()
            version = stored.version if stored else 0
            now = self._clock().astimezone(timezone.utc)
            current = self._rolled_over(stored.value if stored else None, now.date())

            daily = _usd(current.daily_spend_usd + amount_usd)
            monthly = _usd(current.monthly_spend_usd + amount_usd)
            if monthly > _usd(self._monthly_limit):
                raise BudgetExceededError("monthly", monthly, self._monthly_limit)
            if daily > _usd(self._daily_ceiling):
                raise BudgetExceededError("daily", daily, self._daily_ceiling)

            if not retry.before_write(version):
                logger.error(f"Giving up recording spend ${amount_usd:.6f} after {retry.writes} conflicting attempts")
                raise BudgetConflictError(retry.writes)

            candidate = LedgerState(
                daily_spend_usd=daily,
                period_date=current.period_date,
                monthly_spend_usd=monthly,
                period_month=current.period_month,
                degradation_tier=self.degradation_tier_for(daily),
                updated_at=now,
            )
            result = await self._repo.write(candidate, expected_version=stored.version if stored else None)
            if isinstance(result, Applied):
                if candidate.degradation_tier != current.degradation_tier:
                    config = DEGRADATION_CONFIGS[candidate.degradation_tier]
                    logger.warning(
                        f"Degradation tier changed {current.degradation_tier} -> {candidate.degradation_tier} "
                        f"({config.name}) at daily spend ${daily:.4f}"
                    )
                status = self._to_status(candidate)
                logger.debug(f"Recorded spend ${amount_usd:.6f}: {format_budget_status(status)}")
                return status

            logger.debug(f"Budget write conflict at version {version} (write {retry.writes}): {result.reason}")
            await retry.after_conflict(version)

    async def can_make_call(self) -> BudgetCheck:
        """Whether another LLM call is allowed (spend is below both ceilings)."""
        budget = await self.get_budget_status()
        if _usd(budget.monthly_spend_usd) >= _usd(budget.monthly_limit_usd):
            return BudgetCheck(
                allowed=False,
                reason=(
                    f"Monthly budget exceeded (${budget.monthly_spend_usd:.2f}/${budget.monthly_limit_usd:.2f})"
                ),
                budget=budget,
            )
        if _usd(budget.daily_spend_usd) >= _usd(budget.daily_hard_ceiling_usd):
            return BudgetCheck(
                allowed=False,
                reason=(
                    f"Daily hard ceiling reached (${budget.daily_spend_usd:.2f}/${budget.daily_hard_ceiling_usd:.2f})"
                ),
                budget=budget,
            )
        return BudgetCheck(allowed=True, budget=budget)

    async def get_degradation_config(self) -> DegradationConfig:
        """Degradation settings for the current tier."""
        status = await self.get_budget_status()
        return DEGRADATION_CONFIGS[status.degradation_tier]

    def _rolled_over(self, state: Optional[LedgerState], today: date) -> LedgerState:
        month = _month_of(today)
        if state is None:
            return LedgerState(
                daily_spend_usd=0.0,
                period_date=today,
                monthly_spend_usd=0.0,
                period_month=month,
                degradation_tier=0,
            )
        if state.period_date < today:
            state = LedgerState(
                daily_spend_usd=0.0,
                period_date=today,
                monthly_spend_usd=state.monthly_spend_usd,
                period_month=state.period_month,
                degradation_tier=0,
                updated_at=state.updated_at,
            )
        if state.period_month < month:
            state = LedgerState(
                daily_spend_usd=state.daily_spend_usd,
                period_date=state.period_date,
                monthly_spend_usd=0.0,
                period_month=month,
                degradation_tier=state.degradation_tier,
                updated_at=state.updated_at,
            )
        return state

    def _to_status(self, state: LedgerState) -> BudgetStatus:
        return BudgetStatus(
            daily_spend_usd=state.daily_spend_usd,
            daily_limit_usd=self._daily_limit,
            daily_hard_ceiling_usd=self._daily_ceiling,
            monthly_spend_usd=state.monthly_spend_usd,
            monthly_limit_usd=self._monthly_limit,
            degradation_tier=state.degradation_tier,
            period_date=state.period_date,
            period_month=state.period_month,
        )
