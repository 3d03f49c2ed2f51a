"""Error taxonomy for the workflow engine.

Every error is raised before its operation commits. The transaction boundary
rolls back whatever the operation had already written, so callers always see
the unmodified prior state and can retry or correct their input.
"""

from typing import Any


class EngineError(Exception):
    """Base class for all engine errors.

    Attributes:
        code: Stable machine-readable error code
        details: Structured context for the caller
    """

    code = "engine_error"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class InsufficientCapacity(EngineError):
    """Aggregate available capacity is below the quantity being approved."""

    code = "insufficient_capacity"


class CapacityExceeded(EngineError):
    """A single rack would go over capacity."""

    code = "capacity_exceeded"


class InvalidTransition(EngineError):
    """The requested state change is not allowed from the current state."""

    code = "invalid_transition"


class NotAuthorized(EngineError):
    """The caller is not an authorized operator."""

    code = "not_authorized"


class QuantityMismatch(EngineError):
    """Declared quantity does not match the selected inventory or manifest."""

    code = "quantity_mismatch"


class ValidationFailed(EngineError):
    """Operation input is malformed (empty rack list, blank reason, ...)."""

    code = "validation_failed"


class SequentialGateClosed(EngineError):
    """An earlier load for the same request and direction is still open."""

    code = "sequential_gate_closed"


class LedgerUnderflow(EngineError):
    """A release would drive rack occupancy below zero."""

    code = "ledger_underflow"


class TransactionConflict(EngineError):
    """The database could not commit the transaction; retry the whole operation."""

    code = "transaction_conflict"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(f"Transaction could not be committed: {message}", **details)


class NotFound(EngineError):
    """Base class for missing records."""

    code = "not_found"


class RequestNotFound(NotFound):
    code = "request_not_found"


class LoadNotFound(NotFound):
    code = "load_not_found"


class LocationNotFound(NotFound):
    code = "location_not_found"


class InventoryNotFound(NotFound):
    code = "inventory_not_found"
