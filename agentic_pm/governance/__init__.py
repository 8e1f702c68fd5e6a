"""Action governance for the project-management agent.

Components
----------

- ``PolicyEvaluator``: decides execute / hold / escalate / deny for a proposed
  tool call.
- ``HoldQueue``: parks side-effecting actions for a review window and applies
  race-safe approve/cancel/release transitions.
- ``GraduationTracker``: turns consecutive approvals into shorter hold times.
- ``BudgetLedger``: enforces the daily hard ceiling and monthly limit on LLM
  spend and derives the degradation tier.
- ``ReleaseScheduler``: periodically executes expired holds.
- ``GovernanceService``: the single ``propose`` entry point the agent calls.
"""

from .budget import BudgetLedger
from .graduation import GraduationTracker
from .hold_queue import ActionExecutor, HoldQueue
from .policy import PolicyEvaluator
from .scheduler import ReleaseScheduler
from .service import GovernanceService

__all__ = [
    "ActionExecutor",
    "BudgetLedger",
    "GovernanceService",
    "GraduationTracker",
    "HoldQueue",
    "PolicyEvaluator",
    "ReleaseScheduler",
]
