from __future__ import annotations

"""Convenience factories for wiring the governance components.

Governance classes take plain constructor arguments. This module is the one
place that turns ``Settings`` into those arguments, so application wiring and
tests stay concise while advanced deployments can still build components by
hand.
"""

from dataclasses import dataclass
from typing import Optional, Protocol

from agentic_pm.core.config import Settings, settings as default_settings

from .budget import BudgetLedger
from .graduation import GraduationTracker
from .hold_queue import ActionExecutor, HoldQueue
from .policy.evaluator import PolicyEvaluator
from .policy.models import PolicyConfig
from .repos.interfaces import (
    BudgetLedgerRepository,
    EventRepository,
    GraduationRepository,
    HeldActionRepository,
)
from .scheduler import ReleaseScheduler
from .service import GovernanceService


class RepoBundle(Protocol):
    """Shape shared by ``SqlRepoBundle`` and ``InMemoryRepoBundle``."""

    @property
    def held_actions(self) -> HeldActionRepository: ...

    @property
    def graduation(self) -> GraduationRepository: ...

    @property
    def budget(self) -> BudgetLedgerRepository: ...

    @property
    def events(self) -> EventRepository: ...


@dataclass(frozen=True)
class Governance:
    """All governance components built over one repository bundle."""

    evaluator: PolicyEvaluator
    graduation: GraduationTracker
    budget: BudgetLedger
    hold_queue: HoldQueue
    service: GovernanceService


def build_policy_config(cfg: Optional[Settings] = None) -> PolicyConfig:
    """Build a ``PolicyConfig`` from settings."""
    governance = (cfg or default_settings).governance
    return PolicyConfig(
        hard_deny_tools=frozenset(governance.hard_deny_tools),
        background_deny_tools=frozenset(governance.background_deny_tools),
        default_hold_minutes=governance.default_hold_minutes,
    )


def build_governance(repos: RepoBundle, *, cfg: Optional[Settings] = None) -> Governance:
    """Build every governance component over ``repos``."""
    cfg = cfg or default_settings
    budget_cfg = cfg.budget

    evaluator = PolicyEvaluator(build_policy_config(cfg))
    graduation = GraduationTracker(repos.graduation, max_attempts=budget_cfg.max_write_attempts)
    ledger = BudgetLedger(
        repos.budget,
        daily_limit_usd=budget_cfg.daily_limit_usd,
        daily_hard_ceiling_usd=budget_cfg.daily_hard_ceiling_usd,
        monthly_limit_usd=budget_cfg.monthly_limit_usd,
        max_attempts=budget_cfg.max_write_attempts,
    )
    hold_queue = HoldQueue(
        repos.held_actions,
        graduation,
        repos.events,
        batch_size=cfg.scheduler.batch_size,
    )
    service = GovernanceService(evaluator=evaluator, hold_queue=hold_queue, events=repos.events)
    return Governance(
        evaluator=evaluator,
        graduation=graduation,
        budget=ledger,
        hold_queue=hold_queue,
        service=service,
    )


def build_release_scheduler(
    hold_queue: HoldQueue, executor: ActionExecutor, *, cfg: Optional[Settings] = None
) -> ReleaseScheduler:
    """Build a ``ReleaseScheduler`` using the configured sweep interval."""
    return ReleaseScheduler(hold_queue, executor, interval_seconds=(cfg or default_settings).scheduler.interval_seconds)
