from __future__ import annotations

"""SQLModel entities for governance persistence.

These entities define the SQL schema used by the SQL repository
implementation in ``agentic_pm.governance.repos.sql``.

Design
------

- Held actions are never deleted; status only moves out of ``pending`` once.
  The ``(status, held_until)`` index serves the release sweep.
- Graduation states and the budget ledger carry a ``version`` column used by
  optimistic conditional writes.
- The budget ledger is a single row keyed ``"global"``.
- Governance events form an append-only audit log.

Structured payloads are stored as JSON text, encoded and decoded by the
repository layer.

Table names are prefixed with ``gm_`` to avoid collisions in shared databases.
"""

from datetime import date, datetime
from typing import Optional

from pydantic import ConfigDict
from sqlalchemy import DateTime, Index
from sqlmodel import Field, SQLModel, Text

LEDGER_ROW_ID = "global"


class Base(SQLModel):
    """Base class for all governance entities."""

    model_config = ConfigDict(arbitrary_types_allowed=True)


class HeldActionRow(Base, table=True):
    """Entity for ``gm_held_actions``.

    Key fields:

    - ``status``: pending/approved/cancelled/executed.
    - ``held_until``: when the release sweep may execute a pending action.
    - ``payload``: JSON text matching ``action_type``.
    """

    __tablename__ = "gm_held_actions"
    __table_args__ = (Index("ix_gm_held_actions_status_held_until", "status", "held_until"),)

    id: str = Field(primary_key=True, max_length=64)
    project_id: str = Field(max_length=128, index=True)
    action_type: str = Field(max_length=64)
    payload: str = Field(default="{}", sa_type=Text)

    held_until: datetime = Field(sa_type=DateTime(timezone=True))
    status: str = Field(max_length=16)
    created_at: datetime = Field(sa_type=DateTime(timezone=True))

    approved_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    cancelled_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    executed_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    cancel_reason: Optional[str] = Field(default=None, sa_type=Text)
    decided_by: Optional[str] = Field(default=None, max_length=128)

    def __repr__(self) -> str:
        return f"HeldActionRow(id={self.id}, action_type={self.action_type}, status={self.status})"


class GraduationStateRow(Base, table=True):
    """Entity for ``gm_graduation_states``, keyed by ``(project_id, action_type)``."""

    __tablename__ = "gm_graduation_states"

    project_id: str = Field(primary_key=True, max_length=128)
    action_type: str = Field(primary_key=True, max_length=64)

    consecutive_approvals: int = Field(default=0)
    tier: int = Field(default=0)
    last_approval_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    last_cancellation_at: Optional[datetime] = Field(default=None, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(sa_type=DateTime(timezone=True))

    version: int = Field(default=1)


class BudgetLedgerRow(Base, table=True):
    """Entity for ``gm_budget_ledger``. Holds exactly one row (``id = 'global'``)."""

    __tablename__ = "gm_budget_ledger"

    id: str = Field(default=LEDGER_ROW_ID, primary_key=True, max_length=16)

    daily_spend_usd: float = Field(default=0.0)
    period_date: date = Field()
    monthly_spend_usd: float = Field(default=0.0)
    period_month: str = Field(max_length=7)
    degradation_tier: int = Field(default=0)
    updated_at: datetime = Field(sa_type=DateTime(timezone=True))

    version: int = Field(default=1)


class GovernanceEventRow(Base, table=True):
    """Entity for ``gm_governance_events``. Append-only."""

    __tablename__ = "gm_governance_events"

    id: str = Field(primary_key=True, max_length=64)
    project_id: Optional[str] = Field(default=None, max_length=128, index=True)
    event_type: str = Field(max_length=32, index=True)
    severity: str = Field(max_length=16)
    summary: str = Field(sa_type=Text)
    detail: str = Field(default="{}", sa_type=Text)
    created_at: datetime = Field(sa_type=DateTime(timezone=True), index=True)
