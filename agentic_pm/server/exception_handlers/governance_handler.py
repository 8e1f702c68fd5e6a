"""
Governance Exception Handlers.

Maps governance errors raised by the service layer to HTTP responses so
routers can call the hold queue and ledger without translating errors
themselves.
"""

from fastapi import Request
from fastapi.responses import JSONResponse

from agentic_pm.core.logging_config import get_logger
from agentic_pm.governance.errors import (
    BudgetExceededError,
    ConcurrentUpdateError,
    ExecutionError,
    GovernanceValidationError,
    UnknownEntityError,
)

logger = get_logger(__name__)


def _status_for(exc: Exception) -> int:
    if isinstance(exc, UnknownEntityError):
        return 404
    if isinstance(exc, GovernanceValidationError):
        return 422
    if isinstance(exc, (ConcurrentUpdateError, BudgetExceededError)):
        return 409
    if isinstance(exc, ExecutionError):
        return 502
    return 400


async def governance_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Translate a ``GovernanceError`` into a JSON error response.

    Args:
        request: The HTTP request that caused the exception
        exc: The governance error that was raised

    Returns:
        JSONResponse with ``detail`` and ``error_type``
    """
    status_code = _status_for(exc)
    logger.warning(f"{type(exc).__name__} in {request.method} {request.url.path} -> {status_code}: {exc}")
    return JSONResponse(
        status_code=status_code,
        content={"detail": str(exc), "error_type": type(exc).__name__},
    )
