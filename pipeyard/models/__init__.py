"""SQLAlchemy models for the pipe yard workflow engine."""

from pipeyard.models.audit_entry import AuditEntry
from pipeyard.models.capacity_reservation import CapacityReservation, ReservationStatus
from pipeyard.models.inventory_unit import InventoryStatus, InventoryUnit
from pipeyard.models.load import Load, LoadDirection, LoadStatus
from pipeyard.models.notification_intent import NotificationIntent
from pipeyard.models.storage_location import AllocationMode, StorageLocation
from pipeyard.models.storage_request import RequestStatus, StorageRequest

__all__ = [
    "AllocationMode",
    "AuditEntry",
    "CapacityReservation",
    "InventoryStatus",
    "InventoryUnit",
    "Load",
    "LoadDirection",
    "LoadStatus",
    "NotificationIntent",
    "RequestStatus",
    "ReservationStatus",
    "StorageLocation",
    "StorageRequest",
]
