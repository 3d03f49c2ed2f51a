"""Workflow engine services for the pipe storage yard."""

from pipeyard.services.errors import (
    CapacityExceeded,
    EngineError,
    InsufficientCapacity,
    InvalidTransition,
    InventoryNotFound,
    LedgerUnderflow,
    LoadNotFound,
    LocationNotFound,
    NotAuthorized,
    NotFound,
    QuantityMismatch,
    RequestNotFound,
    SequentialGateClosed,
    TransactionConflict,
    ValidationFailed,
)
from pipeyard.services.load_lifecycle import (
    LOAD_TRANSITIONS,
    approve_load,
    mark_in_transit,
    reject_load,
    request_correction,
    transition,
)
from pipeyard.services.materializer import (
    CompletionResult,
    ManifestLineItem,
    complete_inbound_load,
    complete_outbound_load,
)
from pipeyard.services.request_approval import (
    ApprovalResult,
    approve_request,
    complete_request,
    create_request,
    reject_request,
    submit_request,
)
from pipeyard.services.sequential_gate import can_create_load, create_load

__all__ = [
    "LOAD_TRANSITIONS",
    "ApprovalResult",
    "CapacityExceeded",
    "CompletionResult",
    "EngineError",
    "InsufficientCapacity",
    "InvalidTransition",
    "InventoryNotFound",
    "LedgerUnderflow",
    "LoadNotFound",
    "LocationNotFound",
    "ManifestLineItem",
    "NotAuthorized",
    "NotFound",
    "QuantityMismatch",
    "RequestNotFound",
    "SequentialGateClosed",
    "TransactionConflict",
    "ValidationFailed",
    "approve_load",
    "approve_request",
    "can_create_load",
    "complete_inbound_load",
    "complete_outbound_load",
    "complete_request",
    "create_load",
    "create_request",
    "mark_in_transit",
    "reject_load",
    "reject_request",
    "request_correction",
    "submit_request",
    "transition",
]
