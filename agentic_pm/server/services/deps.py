"""
API Dependencies.

Annotated dependency aliases for the governance singleton and the optional
action executor.
"""

from typing import Annotated, Optional

from fastapi import Depends

from agentic_pm.governance.factory import Governance
from agentic_pm.governance.hold_queue import ActionExecutor
from agentic_pm.server.services.executor import get_action_executor
from agentic_pm.server.services.governance import get_governance

GovernanceDep = Annotated[Governance, Depends(get_governance)]
ExecutorDep = Annotated[Optional[ActionExecutor], Depends(get_action_executor)]
