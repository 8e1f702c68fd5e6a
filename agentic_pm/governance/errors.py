"""Error types for the governance package.

Purpose:
- Provide a small hierarchy of exceptions raised by the policy evaluator, hold
  queue, graduation tracker and budget ledger.
- Carry structured context (amounts, ids, attempts) so callers and the HTTP
  layer can report failures without parsing messages.

Usage:
- Catch ``GovernanceError`` for any governance failure.
- Lost races on held actions are *not* errors: ``approve``/``cancel`` return
  ``None`` instead.
"""

from __future__ import annotations

from typing import Optional


class GovernanceError(Exception):
    """Base error for all governance exceptions."""


class GovernanceValidationError(GovernanceError):
    """Raised for malformed input before any state is read or written."""

    def __init__(self, message: str, *, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


class BudgetExceededError(GovernanceError):
    """Raised when a debit would push spend past a hard ceiling.

    Args:
        period: ``"daily"`` or ``"monthly"``.
        attempted_usd: Spend the debit would have produced.
        ceiling_usd: The ceiling that would have been crossed.
    """

    def __init__(self, period: str, attempted_usd: float, ceiling_usd: float) -> None:
        if period == "daily":
            label = "daily hard ceiling"
        else:
            label = "monthly limit"
        super().__init__(
            f"Cannot record spend: would exceed {label} (${attempted_usd:.2f} > ${ceiling_usd:.2f})"
        )
        self.period = period
        self.attempted_usd = attempted_usd
        self.ceiling_usd = ceiling_usd


class ConcurrentUpdateError(GovernanceError):
    """Raised when optimistic writes keep losing to concurrent writers."""

    def __init__(self, what: str, attempts: int) -> None:
        super().__init__(f"{what} update conflicted {attempts} times; giving up")
        self.attempts = attempts


class BudgetConflictError(ConcurrentUpdateError):
    """Raised when optimistic budget writes keep losing to concurrent writers."""

    def __init__(self, attempts: int) -> None:
        super().__init__("Budget", attempts)


class ExecutionError(GovernanceError):
    """Raised when an action's side effect fails.

    Args:
        action_id: The held action (or tool call) whose side effect failed.
        message: Description of the underlying failure.
    """

    def __init__(self, action_id: str, message: str) -> None:
        super().__init__(f"Execution failed for action '{action_id}': {message}")
        self.action_id = action_id
        self.detail = message


class UnknownEntityError(GovernanceError):
    """Raised when a referenced held action does not exist."""

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} not found: '{entity_id}'")
        self.entity = entity
        self.entity_id = entity_id
