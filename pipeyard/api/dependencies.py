"""Shared FastAPI dependencies and error mapping for the API routers."""

from typing import Annotated

from fastapi import Header, HTTPException

from pipeyard.services.authorization import OperatorAuthorizer, settings_authorizer
from pipeyard.services.errors import (
    CapacityExceeded,
    EngineError,
    InsufficientCapacity,
    InvalidTransition,
    LedgerUnderflow,
    NotAuthorized,
    NotFound,
    SequentialGateClosed,
    TransactionConflict,
)

ERROR_STATUS_CODES: list[tuple[type[EngineError], int]] = [
    (NotFound, 404),
    (NotAuthorized, 403),
    (InvalidTransition, 409),
    (SequentialGateClosed, 409),
    (InsufficientCapacity, 409),
    (CapacityExceeded, 409),
    (LedgerUnderflow, 409),
    (TransactionConflict, 409),
]


def status_code_for(error: EngineError) -> int:
    """HTTP status for an engine error (400 unless listed above)."""
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(error, error_type):
            return status_code
    return 400


def get_operator_id(
    x_operator_id: Annotated[str | None, Header(alias="X-Operator-Id")] = None,
) -> str:
    """Caller identity from the X-Operator-Id header."""
    if not x_operator_id or not x_operator_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-Operator-Id header")
    return x_operator_id.strip()


def get_authorizer() -> OperatorAuthorizer:
    """Operator authorization predicate (overridable in tests)."""
    return settings_authorizer
