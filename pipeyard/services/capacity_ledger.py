"""Capacity ledger for rack occupancy.

This module owns the rack records and is the only code allowed to change
``racks.occupied_count`` and ``racks.occupied_linear``. It provides:
- A single-snapshot read of available capacity across racks
- ``reserve``: check-and-increment per rack as one conditional UPDATE
- ``release``: the symmetric conditional decrement
- ``adjust_occupancy``: an audited operator correction, applied through
  ``release`` and ``reserve``

Neither ``reserve`` nor ``release`` commits. Callers run them inside
``pipeyard.database.transaction`` so that a failure on any rack rolls back
the racks already updated in the same call, and everything else the
operation wrote.
"""

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime

from sqlalchemy import case, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from pipeyard.database import transaction
from pipeyard.models.storage_location import AllocationMode, StorageLocation
from pipeyard.services.audit_logging import record_audit_entry
from pipeyard.services.authorization import OperatorAuthorizer, require_operator
from pipeyard.services.errors import (
    CapacityExceeded,
    LedgerUnderflow,
    LocationNotFound,
    ValidationFailed,
)

logger = logging.getLogger(__name__)

# Linear measure is tracked to the centimetre
LINEAR_EPSILON = 0.01

MIN_ADJUSTMENT_REASON_LENGTH = 10
ENTITY_TYPE = "rack"


@dataclass(frozen=True)
class Allocation:
    """Quantity to book against (or remove from) one rack.

    Attributes:
        count: Number of joints
        linear: Linear measure in metres
    """

    count: int
    linear: float = 0.0


@dataclass(frozen=True)
class LocationCapacity:
    """Capacity figures for one rack at snapshot time."""

    location_id: str
    area: str
    allocation_mode: str
    capacity: int
    occupied_count: int
    available_count: int
    capacity_linear: float
    occupied_linear: float
    available_linear: float


@dataclass(frozen=True)
class CapacitySnapshot:
    """Aggregate availability across a set of racks.

    Attributes:
        available_count: Sum of free joints across the racks
        available_linear: Sum of free metres across the racks
        locations: Per-rack figures keyed by rack id
    """

    available_count: int
    available_linear: float
    locations: dict[str, LocationCapacity] = field(default_factory=dict)


def to_location_capacity(location: StorageLocation) -> LocationCapacity:
    return LocationCapacity(
        location_id=location.id,
        area=location.area,
        allocation_mode=location.allocation_mode,
        capacity=location.capacity,
        occupied_count=location.occupied_count,
        available_count=location.available_count,
        capacity_linear=location.capacity_linear,
        occupied_linear=location.occupied_linear,
        available_linear=location.available_linear,
    )


async def load_locations(
    session: AsyncSession,
    location_ids: Iterable[str],
    for_update: bool = False,
) -> dict[str, StorageLocation]:
    """Fetch racks by id in one statement, ordered by id.

    Args:
        session: Database session
        location_ids: Rack ids to fetch
        for_update: Take row locks (SELECT ... FOR UPDATE) for the transaction

    Returns:
        Racks keyed by id

    Raises:
        LocationNotFound: If any id does not exist
    """
    wanted = sorted(set(location_ids))
    if not wanted:
        return {}

    query = (
        select(StorageLocation)
        .where(StorageLocation.id.in_(wanted))
        .order_by(StorageLocation.id)
        .execution_options(populate_existing=True)
    )
    if for_update:
        query = query.with_for_update()

    result = await session.execute(query)
    locations = {location.id: location for location in result.scalars().all()}

    missing = [location_id for location_id in wanted if location_id not in locations]
    if missing:
        raise LocationNotFound(
            f"Rack(s) not found: {', '.join(missing)}",
            location_ids=missing,
        )
    return locations


async def available_capacity(
    session: AsyncSession,
    location_ids: Iterable[str],
    for_update: bool = False,
) -> CapacitySnapshot:
    """Sum free capacity across racks from a single consistent read.

    All racks are read by one SELECT, so the figures come from one snapshot
    even while other transactions are writing. Occupied slot-mode racks
    contribute nothing.

    Args:
        session: Database session
        location_ids: Rack ids to include
        for_update: Lock the rows for the rest of the transaction

    Returns:
        CapacitySnapshot with totals and per-rack figures

    Raises:
        LocationNotFound: If any id does not exist
    """
    locations = await load_locations(session, location_ids, for_update=for_update)
    per_location = {
        location_id: to_location_capacity(location)
        for location_id, location in locations.items()
    }
    return CapacitySnapshot(
        available_count=sum(lc.available_count for lc in per_location.values()),
        available_linear=round(sum(lc.available_linear for lc in per_location.values()), 2),
        locations=per_location,
    )


def _validate_allocations(allocations: Mapping[str, Allocation]) -> None:
    if not allocations:
        raise ValidationFailed("At least one rack allocation is required")
    for location_id, allocation in allocations.items():
        if allocation.count < 0 or allocation.linear < 0:
            raise ValidationFailed(
                f"Allocation for rack {location_id} must not be negative",
                location_id=location_id,
                count=allocation.count,
                linear=allocation.linear,
            )


async def reserve(
    session: AsyncSession,
    allocations: Mapping[str, Allocation],
) -> None:
    """Book capacity on one or more racks, all or nothing.

    Each rack is updated with a single conditional UPDATE whose WHERE clause
    re-checks capacity against the row's current values, so a concurrent
    writer can never slip in between the check and the increment. Racks are
    visited in id order so concurrent multi-rack reservations lock rows in
    the same order.

    Args:
        session: Database session (inside an open transaction)
        allocations: Quantities to book, keyed by rack id

    Raises:
        CapacityExceeded: If any rack lacks room; nothing from this call may
            be committed once raised
        LocationNotFound: If a rack id does not exist
        ValidationFailed: On empty or negative allocations
    """
    _validate_allocations(allocations)
    now = datetime.now(UTC)

    for location_id in sorted(allocations):
        allocation = allocations[location_id]
        if allocation.count == 0 and allocation.linear == 0:
            continue

        linear = round(allocation.linear, 2)
        new_linear = StorageLocation.occupied_linear + linear
        conditions = [
            StorageLocation.id == location_id,
            StorageLocation.occupied_count + allocation.count <= StorageLocation.capacity,
            new_linear <= StorageLocation.capacity_linear + LINEAR_EPSILON,
        ]
        if allocation.count > 0:
            # Slot racks take a new occupant only while empty
            conditions.append(
                or_(
                    StorageLocation.allocation_mode != AllocationMode.SLOT.value,
                    StorageLocation.occupied_count == 0,
                )
            )
        stmt = (
            update(StorageLocation)
            .where(*conditions)
            .values(
                occupied_count=StorageLocation.occupied_count + allocation.count,
                occupied_linear=case(
                    (new_linear > StorageLocation.capacity_linear, StorageLocation.capacity_linear),
                    else_=new_linear,
                ),
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)

        if result.rowcount != 1:
            location = await session.get(StorageLocation, location_id, populate_existing=True)
            if location is None:
                raise LocationNotFound(f"Rack {location_id} not found", location_ids=[location_id])
            logger.warning(
                "Reservation refused on rack %s: requested %d joints / %.2f m, "
                "available %d joints / %.2f m",
                location_id,
                allocation.count,
                linear,
                location.available_count,
                location.available_linear,
            )
            raise CapacityExceeded(
                f"Rack {location_id} capacity exceeded: {allocation.count} joints requested "
                f"but only {location.available_count} available "
                f"(capacity: {location.capacity}, occupied: {location.occupied_count})",
                location_id=location_id,
                requested=allocation.count,
                requested_linear=linear,
                available=location.available_count,
                available_linear=location.available_linear,
            )

    logger.debug("Reserved capacity on racks %s", sorted(allocations))


async def release(
    session: AsyncSession,
    allocations: Mapping[str, Allocation],
) -> None:
    """Return capacity to one or more racks, all or nothing.

    Args:
        session: Database session (inside an open transaction)
        allocations: Quantities to remove, keyed by rack id

    Raises:
        LedgerUnderflow: If any rack would go below zero occupancy
        LocationNotFound: If a rack id does not exist
        ValidationFailed: On empty or negative allocations
    """
    _validate_allocations(allocations)
    now = datetime.now(UTC)

    for location_id in sorted(allocations):
        allocation = allocations[location_id]
        if allocation.count == 0 and allocation.linear == 0:
            continue

        linear = round(allocation.linear, 2)
        new_linear = StorageLocation.occupied_linear - linear
        stmt = (
            update(StorageLocation)
            .where(
                StorageLocation.id == location_id,
                StorageLocation.occupied_count >= allocation.count,
                StorageLocation.occupied_linear >= linear - LINEAR_EPSILON,
            )
            .values(
                occupied_count=StorageLocation.occupied_count - allocation.count,
                occupied_linear=case((new_linear < 0, 0.0), else_=new_linear),
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)

        if result.rowcount != 1:
            location = await session.get(StorageLocation, location_id, populate_existing=True)
            if location is None:
                raise LocationNotFound(f"Rack {location_id} not found", location_ids=[location_id])
            logger.error(
                "Release would underflow rack %s: removing %d joints / %.2f m from %d / %.2f m",
                location_id,
                allocation.count,
                linear,
                location.occupied_count,
                location.occupied_linear,
            )
            raise LedgerUnderflow(
                f"Rack {location_id} has insufficient occupancy: {location.occupied_count} "
                f"joints occupied, but trying to remove {allocation.count}",
                location_id=location_id,
                requested=allocation.count,
                occupied=location.occupied_count,
            )

    logger.debug("Released capacity on racks %s", sorted(allocations))


async def register_location(
    session: AsyncSession,
    location_id: str,
    area: str,
    capacity: int,
    capacity_linear: float,
    name: str | None = None,
    allocation_mode: AllocationMode = AllocationMode.LINEAR_CAPACITY,
) -> StorageLocation:
    """Add an empty rack to the yard.

    Raises:
        ValidationFailed: On a duplicate id or non-positive capacity
    """
    if capacity <= 0 or capacity_linear <= 0:
        raise ValidationFailed(
            f"Rack {location_id} needs positive capacity",
            capacity=capacity,
            capacity_linear=capacity_linear,
        )
    if await session.get(StorageLocation, location_id) is not None:
        raise ValidationFailed(f"Rack {location_id} already exists", location_id=location_id)

    location = StorageLocation(
        id=location_id,
        area=area,
        name=name or location_id,
        capacity=capacity,
        occupied_count=0,
        capacity_linear=capacity_linear,
        occupied_linear=0.0,
        allocation_mode=AllocationMode(allocation_mode).value,
    )
    session.add(location)
    await session.flush()
    logger.info("Registered rack %s in area %s (%d joints)", location_id, area, capacity)
    return location


async def adjust_occupancy(
    session: AsyncSession,
    location_id: str,
    new_count: int,
    new_linear: float,
    reason: str,
    operator_id: str,
    authorizer: OperatorAuthorizer | None = None,
) -> StorageLocation:
    """Set a rack's occupancy by hand, e.g. after pipe was moved in the yard.

    The difference from the current figures is released and/or reserved, so
    the conditional UPDATEs above stay the only writers of occupancy. The old
    and new values go to the audit trail.

    Args:
        session: Database session
        location_id: Rack to correct
        new_count: Joints the rack actually holds
        new_linear: Metres the rack actually holds
        reason: Why the correction is needed (at least 10 characters)
        operator_id: Acting operator
        authorizer: Operator authorization predicate

    Returns:
        The rack after the adjustment

    Raises:
        NotAuthorized: If the caller is not an operator
        ValidationFailed: On negative values or a missing reason
        LocationNotFound: If the rack does not exist
        CapacityExceeded: If the new values are above the rack's capacity
    """
    require_operator(operator_id, authorizer)
    reason = (reason or "").strip()
    if len(reason) < MIN_ADJUSTMENT_REASON_LENGTH:
        raise ValidationFailed(
            f"A reason of at least {MIN_ADJUSTMENT_REASON_LENGTH} characters is required "
            "for manual adjustments"
        )
    if new_count < 0 or new_linear < 0:
        raise ValidationFailed(
            "Occupancy values cannot be negative",
            new_count=new_count,
            new_linear=new_linear,
        )
    new_linear = round(new_linear, 2)

    async with transaction(session):
        locations = await load_locations(session, [location_id], for_update=True)
        location = locations[location_id]
        if new_count > location.capacity or new_linear > location.capacity_linear + LINEAR_EPSILON:
            raise CapacityExceeded(
                f"Rack {location_id} holds at most {location.capacity} joints / "
                f"{location.capacity_linear:.2f} m, got {new_count} joints / {new_linear:.2f} m",
                location_id=location_id,
                capacity=location.capacity,
                capacity_linear=location.capacity_linear,
                requested=new_count,
                requested_linear=new_linear,
            )

        old_count = location.occupied_count
        old_linear = location.occupied_linear
        delta_count = new_count - old_count
        delta_linear = round(new_linear - old_linear, 2)

        decrease = Allocation(count=max(-delta_count, 0), linear=max(-delta_linear, 0.0))
        increase = Allocation(count=max(delta_count, 0), linear=max(delta_linear, 0.0))
        if decrease.count or decrease.linear:
            await release(session, {location_id: decrease})
        if increase.count or increase.linear:
            await reserve(session, {location_id: increase})

        await record_audit_entry(
            session,
            actor=operator_id,
            action="ADJUST_RACK_OCCUPANCY",
            entity_type=ENTITY_TYPE,
            entity_id=location_id,
            details={
                "reason": reason,
                "oldCount": old_count,
                "newCount": new_count,
                "oldLinear": old_linear,
                "newLinear": new_linear,
            },
        )
        location = await session.get(StorageLocation, location_id, populate_existing=True)

    logger.info(
        "Rack %s adjusted by %s: %d -> %d joints, %.2f -> %.2f m",
        location_id,
        operator_id,
        old_count,
        new_count,
        old_linear,
        new_linear,
    )
    return location
