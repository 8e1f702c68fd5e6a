"""
Governance Service Dependency.

Builds the governance components once per process over the SQL repositories
bound to the global session factory.
"""

from typing import Optional

from agentic_pm.governance.factory import Governance, build_governance
from agentic_pm.governance.repos.sql import build_sql_repos
from agentic_pm.server.core.database import async_session_maker

# Global singleton
_governance: Optional[Governance] = None


def get_governance() -> Governance:
    global _governance
    if _governance is None:
        _governance = build_governance(build_sql_repos(session_factory=async_session_maker))
    return _governance
