"""Repository interfaces and implementations for governance state.

Responsibilities
----------------

- Provide async repository interfaces (Protocols) the governance components
  depend on.
- Persist durable governance state:

  - held actions and their one-way status transitions,
  - graduation state per (project, action type),
  - the singleton budget ledger,
  - the append-only governance event log.

Design notes
------------

Every state change is a single conditional write reported as ``Applied`` or
``Conflict``. Two implementations are provided:

- async SQLAlchemy/SQLModel in ``repos.sql``,
- in-process dictionaries in ``repos.memory`` for tests and single-process use.
"""

from .interfaces import (
    Applied,
    BudgetLedgerRepository,
    Conflict,
    EventRepository,
    GraduationRepository,
    HeldActionRepository,
    LedgerState,
    Versioned,
    WriteResult,
)

__all__ = [
    "Applied",
    "Conflict",
    "WriteResult",
    "Versioned",
    "LedgerState",
    "HeldActionRepository",
    "GraduationRepository",
    "BudgetLedgerRepository",
    "EventRepository",
]
