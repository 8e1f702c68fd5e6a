"""
Action Executor Registration.

The server does not ship integrations with email or Jira. A deployment
registers its ``ActionExecutor`` at startup with ``set_action_executor``;
until one is registered, approvals are recorded without running the side
effect and no release scheduler is started.
"""

from typing import Optional

from agentic_pm.core.logging_config import get_logger
from agentic_pm.governance.hold_queue import ActionExecutor

logger = get_logger(__name__)

_executor: Optional[ActionExecutor] = None


def set_action_executor(executor: Optional[ActionExecutor]) -> None:
    """Register (or with ``None``, clear) the process-wide action executor."""
    global _executor
    _executor = executor
    logger.info(f"Action executor {'registered' if executor is not None else 'cleared'}")


def get_action_executor() -> Optional[ActionExecutor]:
    return _executor
