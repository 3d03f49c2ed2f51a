"""Completion and inventory materialization for arriving loads.

Completing a load is never a bare status flip. An inbound completion turns
the manifest into stored InventoryUnits and books them on a rack; an
outbound completion picks existing units up and frees their rack space.
Each runs as a single transaction: the load is never COMPLETED without
matching inventory, and inventory never exists without a ledger booking.
"""

import logging
import uuid
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pipeyard.database import transaction
from pipeyard.models.capacity_reservation import ReservationStatus
from pipeyard.models.inventory_unit import InventoryStatus, InventoryUnit
from pipeyard.models.load import Load, LoadDirection, LoadStatus
from pipeyard.models.storage_request import StorageRequest
from pipeyard.services import capacity_ledger
from pipeyard.services.audit_logging import record_audit_entry
from pipeyard.services.authorization import OperatorAuthorizer, require_operator
from pipeyard.services.capacity_ledger import Allocation
from pipeyard.services.errors import (
    CapacityExceeded,
    InvalidTransition,
    InventoryNotFound,
    LoadNotFound,
    QuantityMismatch,
    ValidationFailed,
)
from pipeyard.services.notifications import NotificationType, enqueue_notification
from pipeyard.services.request_approval import (
    find_active_reservation,
    get_request,
    joint_length_for,
)

logger = logging.getLogger(__name__)

FEET_TO_METRES = 0.3048
ENTITY_TYPE = "load"


@dataclass(frozen=True)
class ManifestLineItem:
    """One line of a validated delivery manifest.

    Attributes:
        quantity: Joints on the line
        length_ft: Average joint length in feet (None when not tallied)
        reference: Serial or heat number
        grade: Pipe grade
    """

    quantity: int
    length_ft: float | None = None
    reference: str | None = None
    grade: str | None = None

    @property
    def length_m(self) -> float | None:
        if self.length_ft is None:
            return None
        return round(self.length_ft * FEET_TO_METRES, 3)


@dataclass(frozen=True)
class CompletionResult:
    """Outcome of a load completion.

    Attributes:
        load_id: Completed load
        status: Load status after completion
        completed_quantity: Joints received or picked up
        inventory_ids: Units created (inbound) or picked up (outbound)
        location_ids: Racks whose occupancy changed
        delivered_quantity: Request's delivered total after this completion
    """

    load_id: uuid.UUID
    status: str
    completed_quantity: int
    inventory_ids: list[uuid.UUID] = field(default_factory=list)
    location_ids: list[str] = field(default_factory=list)
    delivered_quantity: int = 0


async def _lock_load(session: AsyncSession, load_id: uuid.UUID) -> Load:
    result = await session.execute(
        select(Load)
        .where(Load.id == load_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    load = result.scalar_one_or_none()
    if load is None:
        raise LoadNotFound(f"Load not found: {load_id}", load_id=str(load_id))
    return load


def _require_in_transit(load: Load, direction: LoadDirection) -> None:
    if load.direction != direction.value:
        raise InvalidTransition(
            f"Load {load.id} is {load.direction}, not {direction.value}",
            load_id=str(load.id),
            direction=load.direction,
        )
    if load.status != LoadStatus.IN_TRANSIT.value:
        raise InvalidTransition(
            f"Load {load.id} cannot complete from status {load.status}",
            load_id=str(load.id),
            current_status=load.status,
            target_status=LoadStatus.COMPLETED.value,
        )


async def recompute_delivered_quantity(session: AsyncSession, request: StorageRequest) -> int:
    """Recount the request's delivered joints from its completed inbound loads."""
    await session.flush()
    result = await session.execute(
        select(func.coalesce(func.sum(Load.completed_quantity), 0)).where(
            Load.request_id == request.id,
            Load.direction == LoadDirection.INBOUND.value,
            Load.status == LoadStatus.COMPLETED.value,
        )
    )
    request.delivered_quantity = int(result.scalar() or 0)
    return request.delivered_quantity


async def complete_inbound_load(
    session: AsyncSession,
    load_id: uuid.UUID,
    location_id: str,
    actual_quantity: int,
    line_items: Sequence[ManifestLineItem] | None,
    operator_id: str,
    notes: str | None = None,
    authorizer: OperatorAuthorizer | None = None,
) -> CompletionResult:
    """Receive an inbound load onto a rack.

    If the parent request holds an approval reservation on the rack, the
    arriving joints draw that hold down first; only joints beyond the hold
    are newly booked through the ledger.

    Args:
        session: Database session
        load_id: Inbound load in transit
        location_id: Rack receiving the pipe
        actual_quantity: Joints physically received
        line_items: Manifest lines; must total ``actual_quantity``. When empty,
            one unit carrying the whole quantity is created.
        operator_id: Receiving operator
        notes: Optional completion notes
        authorizer: Operator authorization predicate

    Returns:
        CompletionResult for the load

    Raises:
        NotAuthorized: If the caller is not an operator
        LoadNotFound: If the load does not exist
        InvalidTransition: If the load is not an inbound load in transit
        QuantityMismatch: If the manifest does not total ``actual_quantity``
        CapacityExceeded: If the rack cannot take the joints
    """
    require_operator(operator_id, authorizer)
    if actual_quantity <= 0:
        raise ValidationFailed("Actual quantity must be positive", actual_quantity=actual_quantity)

    items = list(line_items or [])
    if any(item.quantity <= 0 for item in items):
        raise ValidationFailed("Manifest line quantities must be positive")
    if items:
        manifest_total = sum(item.quantity for item in items)
        if manifest_total != actual_quantity:
            raise QuantityMismatch(
                f"Quantity mismatch: manifest totals {manifest_total} joints "
                f"but {actual_quantity} were received",
                manifest_total=manifest_total,
                actual_quantity=actual_quantity,
            )

    async with transaction(session):
        load = await _lock_load(session, load_id)
        _require_in_transit(load, LoadDirection.INBOUND)
        request = await get_request(session, load.request_id, for_update=True)
        location = (await capacity_ledger.load_locations(session, [location_id], for_update=True))[
            location_id
        ]

        default_length = joint_length_for(request)
        if not items:
            items = [ManifestLineItem(quantity=actual_quantity)]
        unit_specs = [(item, item.length_m or default_length) for item in items]
        total_linear = round(sum(item.quantity * length for item, length in unit_specs), 2)

        hold = await find_active_reservation(session, request.id, location_id)
        hold_count = min(actual_quantity, hold.remaining_count) if hold else 0
        hold_linear = min(total_linear, hold.remaining_linear) if hold else 0.0
        excess_count = actual_quantity - hold_count
        excess_linear = round(max(total_linear - hold_linear, 0.0), 2)

        free_linear = round(location.capacity_linear - location.occupied_linear, 2)
        if (excess_count > 0 and excess_count > location.available_count) or (
            excess_linear > free_linear + capacity_ledger.LINEAR_EPSILON
        ):
            raise CapacityExceeded(
                f"Rack {location_id} capacity exceeded: {actual_quantity} joints received, "
                f"{hold_count} covered by the approval hold, "
                f"but only {location.available_count} more available",
                location_id=location_id,
                requested=actual_quantity,
                held=hold_count,
                available=location.available_count,
                available_linear=free_linear,
            )

        now = datetime.now(UTC)
        units = [
            InventoryUnit(
                company_id=request.company_id,
                request_id=request.id,
                location_id=location_id,
                origin_load_id=load.id,
                quantity=item.quantity,
                length_m=length,
                reference=item.reference,
                grade=item.grade,
                status=InventoryStatus.IN_STORAGE.value,
                stored_at=now,
            )
            for item, length in unit_specs
        ]
        session.add_all(units)

        if hold is not None:
            hold.consumed_count += hold_count
            hold.consumed_linear = round(hold.consumed_linear + hold_linear, 2)
            if hold.remaining_count == 0:
                leftover_linear = hold.remaining_linear
                hold.status = ReservationStatus.CONSUMED.value
                if leftover_linear > 0:
                    # Joints all arrived shorter than planned
                    await capacity_ledger.release(
                        session, {location_id: Allocation(count=0, linear=leftover_linear)}
                    )
        if excess_count > 0 or excess_linear > 0:
            await capacity_ledger.reserve(
                session, {location_id: Allocation(count=excess_count, linear=excess_linear)}
            )

        previous_status = load.status
        load.status = LoadStatus.COMPLETED.value
        load.completed_quantity = actual_quantity
        load.completed_at = now
        load.notes = notes

        delivered = await recompute_delivered_quantity(session, request)

        await record_audit_entry(
            session,
            actor=operator_id,
            action="COMPLETE_INBOUND_LOAD",
            entity_type=ENTITY_TYPE,
            entity_id=load.id,
            details={
                "requestId": str(request.id),
                "sequenceNumber": load.sequence_number,
                "fromStatus": previous_status,
                "toStatus": load.status,
                "locationId": location_id,
                "plannedQuantity": load.planned_quantity,
                "actualQuantity": actual_quantity,
                "heldQuantity": hold_count,
                "inventoryUnits": len(units),
                "notes": notes,
            },
            timestamp=now,
        )
        await enqueue_notification(
            session,
            NotificationType.LOAD_COMPLETED,
            {
                "loadId": str(load.id),
                "requestId": str(request.id),
                "referenceId": request.reference_id,
                "companyId": str(request.company_id),
                "direction": load.direction,
                "sequenceNumber": load.sequence_number,
                "fromStatus": previous_status,
                "toStatus": load.status,
                "plannedQuantity": load.planned_quantity,
                "completedQuantity": actual_quantity,
                "deliveredQuantity": delivered,
                "locationId": location_id,
            },
        )

    logger.info(
        "Completed inbound load %s: %d joints stored on rack %s (%d from approval hold)",
        load.id,
        actual_quantity,
        location_id,
        hold_count,
    )
    return CompletionResult(
        load_id=load.id,
        status=load.status,
        completed_quantity=actual_quantity,
        inventory_ids=[unit.id for unit in units],
        location_ids=[location_id],
        delivered_quantity=delivered,
    )


async def complete_outbound_load(
    session: AsyncSession,
    load_id: uuid.UUID,
    inventory_ids: Sequence[uuid.UUID],
    actual_quantity: int,
    operator_id: str,
    notes: str | None = None,
    authorizer: OperatorAuthorizer | None = None,
) -> CompletionResult:
    """Pick stored inventory up with an outbound load and free its racks.

    Raises:
        NotAuthorized: If the caller is not an operator
        LoadNotFound: If the load does not exist
        InvalidTransition: If the load is not an outbound load in transit
        InventoryNotFound: If a selected unit does not exist
        ValidationFailed: If a unit belongs to another company or is not in storage
        QuantityMismatch: If the selected units do not total ``actual_quantity``
    """
    require_operator(operator_id, authorizer)
    wanted = list(dict.fromkeys(inventory_ids))
    if not wanted:
        raise ValidationFailed("At least one inventory unit must be selected")

    async with transaction(session):
        load = await _lock_load(session, load_id)
        _require_in_transit(load, LoadDirection.OUTBOUND)
        request = await get_request(session, load.request_id, for_update=True)

        result = await session.execute(
            select(InventoryUnit)
            .where(InventoryUnit.id.in_(wanted))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        units = {unit.id: unit for unit in result.scalars().all()}
        missing = [str(unit_id) for unit_id in wanted if unit_id not in units]
        if missing:
            raise InventoryNotFound(
                f"Inventory not found: {', '.join(missing)}",
                inventory_ids=missing,
            )

        foreign = [str(u.id) for u in units.values() if u.company_id != request.company_id]
        if foreign:
            raise ValidationFailed(
                "Inventory does not belong to the requesting company",
                inventory_ids=foreign,
            )
        not_stored = [
            str(u.id) for u in units.values() if u.status != InventoryStatus.IN_STORAGE.value
        ]
        if not_stored:
            raise ValidationFailed(
                "Inventory is not in storage",
                inventory_ids=not_stored,
            )

        selected_total = sum(unit.quantity for unit in units.values())
        if selected_total != actual_quantity:
            raise QuantityMismatch(
                f"Quantity mismatch: selected inventory totals {selected_total} joints "
                f"but {actual_quantity} were picked up",
                selected_total=selected_total,
                actual_quantity=actual_quantity,
            )

        by_location: dict[str, list[InventoryUnit]] = defaultdict(list)
        for unit in units.values():
            by_location[unit.location_id].append(unit)
        releases = {
            location_id: Allocation(
                count=sum(u.quantity for u in location_units),
                linear=round(sum(u.linear_m for u in location_units), 2),
            )
            for location_id, location_units in by_location.items()
        }
        await capacity_ledger.release(session, releases)

        now = datetime.now(UTC)
        for unit in units.values():
            unit.status = InventoryStatus.PICKED_UP.value
            unit.disposal_load_id = load.id
            unit.picked_up_at = now

        previous_status = load.status
        load.status = LoadStatus.COMPLETED.value
        load.completed_quantity = actual_quantity
        load.completed_at = now
        load.notes = notes

        await record_audit_entry(
            session,
            actor=operator_id,
            action="COMPLETE_OUTBOUND_LOAD",
            entity_type=ENTITY_TYPE,
            entity_id=load.id,
            details={
                "requestId": str(request.id),
                "sequenceNumber": load.sequence_number,
                "fromStatus": previous_status,
                "toStatus": load.status,
                "plannedQuantity": load.planned_quantity,
                "actualQuantity": actual_quantity,
                "releasedByRack": {k: v.count for k, v in releases.items()},
                "notes": notes,
            },
            timestamp=now,
        )
        await enqueue_notification(
            session,
            NotificationType.LOAD_COMPLETED,
            {
                "loadId": str(load.id),
                "requestId": str(request.id),
                "referenceId": request.reference_id,
                "companyId": str(request.company_id),
                "direction": load.direction,
                "sequenceNumber": load.sequence_number,
                "fromStatus": previous_status,
                "toStatus": load.status,
                "plannedQuantity": load.planned_quantity,
                "completedQuantity": actual_quantity,
                "locationIds": sorted(releases),
            },
        )

    logger.info(
        "Completed outbound load %s: %d joints picked up from racks %s",
        load.id,
        actual_quantity,
        ", ".join(sorted(releases)),
    )
    return CompletionResult(
        load_id=load.id,
        status=load.status,
        completed_quantity=actual_quantity,
        inventory_ids=list(units),
        location_ids=sorted(releases),
        delivered_quantity=request.delivered_quantity,
    )
