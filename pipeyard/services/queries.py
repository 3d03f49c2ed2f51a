"""Read-side queries for dashboards and wizards.

Nothing here writes. Results are plain ORM rows or small dataclasses.
"""

import uuid
from collections import defaultdict
from dataclasses import dataclass

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pipeyard.models.capacity_reservation import CapacityReservation, ReservationStatus
from pipeyard.models.inventory_unit import InventoryStatus, InventoryUnit
from pipeyard.models.load import Load, LoadDirection
from pipeyard.models.storage_location import StorageLocation
from pipeyard.models.storage_request import StorageRequest
from pipeyard.services.capacity_ledger import LocationCapacity, to_location_capacity
from pipeyard.services.errors import InventoryNotFound, LocationNotFound
from pipeyard.services.load_lifecycle import get_load
from pipeyard.services.request_approval import get_request
from pipeyard.services.sequential_gate import can_create_load

__all__ = [
    "AreaCapacity",
    "LocationReconciliation",
    "can_create_load",
    "capacity_by_area",
    "capacity_by_location",
    "get_inventory_unit",
    "get_load",
    "get_location",
    "get_request",
    "list_inventory",
    "list_loads",
    "list_requests",
    "reconciliation_report",
]


@dataclass(frozen=True)
class AreaCapacity:
    """Capacity totals for one yard area."""

    area: str
    location_count: int
    capacity: int
    occupied_count: int
    available_count: int
    capacity_linear: float
    occupied_linear: float
    available_linear: float


@dataclass(frozen=True)
class LocationReconciliation:
    """Ledger occupancy against stored inventory for one rack.

    Attributes:
        location_id: Rack id
        occupied_count: Ledger occupancy
        in_storage_quantity: Joints of in-storage inventory on the rack
        held_quantity: Joints still held by active approval reservations
        discrepancy: occupied_count - (in_storage_quantity + held_quantity)
    """

    location_id: str
    occupied_count: int
    in_storage_quantity: int
    held_quantity: int

    @property
    def discrepancy(self) -> int:
        return self.occupied_count - (self.in_storage_quantity + self.held_quantity)

    @property
    def is_consistent(self) -> bool:
        return self.discrepancy == 0


async def get_location(session: AsyncSession, location_id: str) -> StorageLocation:
    location = await session.get(StorageLocation, location_id)
    if location is None:
        raise LocationNotFound(f"Rack not found: {location_id}", location_ids=[location_id])
    return location


async def get_inventory_unit(session: AsyncSession, unit_id: uuid.UUID) -> InventoryUnit:
    unit = await session.get(InventoryUnit, unit_id)
    if unit is None:
        raise InventoryNotFound(f"Inventory not found: {unit_id}", inventory_ids=[str(unit_id)])
    return unit


async def list_requests(
    session: AsyncSession,
    company_id: uuid.UUID | None = None,
    status: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[StorageRequest]:
    """Storage requests, newest first, optionally filtered by company and status."""
    query = select(StorageRequest)
    if company_id:
        query = query.where(StorageRequest.company_id == company_id)
    if status:
        query = query.where(StorageRequest.status == status)
    query = query.order_by(StorageRequest.created_at.desc()).offset(offset).limit(limit)
    result = await session.execute(query)
    return list(result.scalars().all())


async def list_loads(
    session: AsyncSession,
    request_id: uuid.UUID | None = None,
    company_id: uuid.UUID | None = None,
    direction: LoadDirection | None = None,
    status: str | None = None,
) -> list[Load]:
    """Loads ordered by request, direction and sequence number."""
    query = select(Load)
    if company_id:
        query = query.join(StorageRequest, StorageRequest.id == Load.request_id).where(
            StorageRequest.company_id == company_id
        )
    if request_id:
        query = query.where(Load.request_id == request_id)
    if direction:
        query = query.where(Load.direction == LoadDirection(direction).value)
    if status:
        query = query.where(Load.status == status)
    query = query.order_by(Load.request_id, Load.direction, Load.sequence_number)
    result = await session.execute(query)
    return list(result.scalars().all())


async def list_inventory(
    session: AsyncSession,
    company_id: uuid.UUID | None = None,
    location_id: str | None = None,
    status: str | None = InventoryStatus.IN_STORAGE.value,
) -> list[InventoryUnit]:
    """Inventory units, by default only those currently in storage."""
    query = select(InventoryUnit)
    if company_id:
        query = query.where(InventoryUnit.company_id == company_id)
    if location_id:
        query = query.where(InventoryUnit.location_id == location_id)
    if status:
        query = query.where(InventoryUnit.status == status)
    query = query.order_by(InventoryUnit.location_id, InventoryUnit.created_at)
    result = await session.execute(query)
    return list(result.scalars().all())


async def capacity_by_location(
    session: AsyncSession,
    area: str | None = None,
) -> list[LocationCapacity]:
    """Remaining capacity for every rack, optionally within one area."""
    query = select(StorageLocation).order_by(StorageLocation.id)
    if area:
        query = query.where(StorageLocation.area == area)
    result = await session.execute(query)
    return [to_location_capacity(location) for location in result.scalars().all()]


async def capacity_by_area(session: AsyncSession) -> list[AreaCapacity]:
    """Remaining capacity summed per yard area."""
    grouped: dict[str, list[LocationCapacity]] = defaultdict(list)
    for location in await capacity_by_location(session):
        grouped[location.area].append(location)

    return [
        AreaCapacity(
            area=area,
            location_count=len(locations),
            capacity=sum(lc.capacity for lc in locations),
            occupied_count=sum(lc.occupied_count for lc in locations),
            available_count=sum(lc.available_count for lc in locations),
            capacity_linear=round(sum(lc.capacity_linear for lc in locations), 2),
            occupied_linear=round(sum(lc.occupied_linear for lc in locations), 2),
            available_linear=round(sum(lc.available_linear for lc in locations), 2),
        )
        for area, locations in sorted(grouped.items())
    ]


async def reconciliation_report(
    session: AsyncSession,
    location_ids: list[str] | None = None,
) -> list[LocationReconciliation]:
    """Compare every rack's ledger occupancy with what is physically there.

    A rack reconciles when its occupancy equals its in-storage inventory
    plus whatever approval holds are still outstanding on it.
    """
    locations_query = select(StorageLocation.id, StorageLocation.occupied_count).order_by(
        StorageLocation.id
    )
    if location_ids:
        locations_query = locations_query.where(StorageLocation.id.in_(location_ids))
    locations = (await session.execute(locations_query)).all()

    stored = dict(
        (
            await session.execute(
                select(InventoryUnit.location_id, func.sum(InventoryUnit.quantity))
                .where(InventoryUnit.status == InventoryStatus.IN_STORAGE.value)
                .group_by(InventoryUnit.location_id)
            )
        ).all()
    )
    held = dict(
        (
            await session.execute(
                select(
                    CapacityReservation.location_id,
                    func.sum(CapacityReservation.reserved_count - CapacityReservation.consumed_count),
                )
                .where(CapacityReservation.status == ReservationStatus.ACTIVE.value)
                .group_by(CapacityReservation.location_id)
            )
        ).all()
    )

    return [
        LocationReconciliation(
            location_id=location_id,
            occupied_count=occupied_count,
            in_storage_quantity=int(stored.get(location_id) or 0),
            held_quantity=int(held.get(location_id) or 0),
        )
        for location_id, occupied_count in locations
    ]
