"""Storage request approval transaction.

This module owns every status change of a storage request:
- submit (draft -> pending), a customer action
- approve (pending -> approved), reserving rack capacity through the ledger
- reject (pending -> rejected)
- complete (approved -> completed), releasing unused approval holds

Approval is the central atomic operation of the yard: the capacity check,
the ledger reservation, the status change, the audit entry and the customer
notification either all commit or none do.
"""

import logging
import math
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pipeyard.config import settings
from pipeyard.database import transaction
from pipeyard.models.capacity_reservation import CapacityReservation, ReservationStatus
from pipeyard.models.load import OPEN_LOAD_STATUSES, Load
from pipeyard.models.storage_request import RequestStatus, StorageRequest
from pipeyard.services import capacity_ledger
from pipeyard.services.audit_logging import record_audit_entry
from pipeyard.services.authorization import OperatorAuthorizer, require_operator
from pipeyard.services.capacity_ledger import Allocation, CapacitySnapshot, LocationCapacity
from pipeyard.services.errors import (
    InsufficientCapacity,
    InvalidTransition,
    RequestNotFound,
    ValidationFailed,
)
from pipeyard.services.notifications import NotificationType, enqueue_notification

logger = logging.getLogger(__name__)

ENTITY_TYPE = "storage_request"


@dataclass(frozen=True)
class ApprovalResult:
    """Outcome of an approval call.

    Attributes:
        request_id: Approved request
        reference_id: Customer-facing reference
        status: Request status after the call
        assigned_location_ids: Racks holding capacity for the request
        distribution: Joints held per rack
        approved_quantity: Total joints held
        already_approved: True when the call was an idempotent replay
    """

    request_id: uuid.UUID
    reference_id: str
    status: str
    assigned_location_ids: list[str]
    distribution: dict[str, int] = field(default_factory=dict)
    approved_quantity: int = 0
    already_approved: bool = False


async def get_request(
    session: AsyncSession,
    request_id: uuid.UUID,
    for_update: bool = False,
) -> StorageRequest:
    """Fetch a storage request, optionally locking its row.

    Raises:
        RequestNotFound: If the request does not exist
    """
    query = (
        select(StorageRequest)
        .where(StorageRequest.id == request_id)
        .execution_options(populate_existing=True)
    )
    if for_update:
        query = query.with_for_update()
    result = await session.execute(query)
    request = result.scalar_one_or_none()
    if request is None:
        raise RequestNotFound(f"Storage request not found: {request_id}", request_id=str(request_id))
    return request


async def get_reservations(
    session: AsyncSession,
    request_id: uuid.UUID,
    for_update: bool = False,
) -> list[CapacityReservation]:
    """All approval holds written for a request, ordered by rack id."""
    query = (
        select(CapacityReservation)
        .where(CapacityReservation.request_id == request_id)
        .order_by(CapacityReservation.location_id)
        .execution_options(populate_existing=True)
    )
    if for_update:
        query = query.with_for_update()
    result = await session.execute(query)
    return list(result.scalars().all())


async def find_active_reservation(
    session: AsyncSession,
    request_id: uuid.UUID,
    location_id: str,
) -> CapacityReservation | None:
    """The request's active hold on one rack, locked for update, if any."""
    result = await session.execute(
        select(CapacityReservation)
        .where(
            CapacityReservation.request_id == request_id,
            CapacityReservation.location_id == location_id,
            CapacityReservation.status == ReservationStatus.ACTIVE.value,
        )
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


def joint_length_for(request: StorageRequest) -> float:
    """Average joint length used for the request's linear accounting."""
    return request.avg_joint_length_m or settings.default_joint_length_m


def placeable_joints(location: LocationCapacity, joint_length: float) -> int:
    """Joints a rack can take, limited by both free slots and free metres."""
    by_linear = math.floor((location.available_linear + capacity_ledger.LINEAR_EPSILON) / joint_length)
    return max(0, min(location.available_count, by_linear))


def distribute_quantity(
    required_quantity: int,
    snapshot: CapacitySnapshot,
    location_order: Sequence[str],
    joint_length: float | None = None,
) -> dict[str, int]:
    """Split a quantity across racks in proportion to their free space.

    Each rack first gets ``floor(required * available / total_available)``.
    The joints left over go one each to the racks with the largest
    fractional remainders; ties go to the rack listed first by the caller.
    When ``required <= total_available`` no rack is ever given more than it
    has free.

    Args:
        required_quantity: Joints to place
        snapshot: Capacity snapshot covering every rack in ``location_order``
        location_order: Racks in caller order
        joint_length: When given, a rack's free space is also capped by
            how many joints of this length fit in its free metres

    Returns:
        Joints per rack (racks receiving nothing are included with 0)
    """
    available_by_rack = {
        location_id: (
            placeable_joints(snapshot.locations[location_id], joint_length)
            if joint_length
            else snapshot.locations[location_id].available_count
        )
        for location_id in location_order
    }
    total_available = sum(available_by_rack.values())
    if total_available <= 0:
        return {location_id: 0 for location_id in location_order}

    shares: dict[str, int] = {}
    remainders: list[tuple[int, int, str]] = []
    for position, location_id in enumerate(location_order):
        available = available_by_rack[location_id]
        numerator = required_quantity * available
        share = numerator // total_available
        shares[location_id] = share
        # Sort key: larger remainder first, then caller order
        remainders.append((-(numerator % total_available), position, location_id))

    leftover = required_quantity - sum(shares.values())
    for _, _, location_id in sorted(remainders)[:leftover]:
        shares[location_id] += 1
    return shares


def _validate_split(
    split: Mapping[str, int],
    location_ids: Sequence[str],
    required_quantity: int,
) -> dict[str, int]:
    if set(split) != set(location_ids):
        raise ValidationFailed(
            "Split must name exactly the chosen racks",
            split_racks=sorted(split),
            chosen_racks=list(location_ids),
        )
    if any(quantity < 0 for quantity in split.values()):
        raise ValidationFailed("Split quantities must not be negative")
    if sum(split.values()) != required_quantity:
        raise ValidationFailed(
            f"Split totals {sum(split.values())} joints but {required_quantity} are required",
            split_total=sum(split.values()),
            required_quantity=required_quantity,
        )
    return {location_id: split[location_id] for location_id in location_ids}


def _dedupe(location_ids: Sequence[str]) -> list[str]:
    seen: set[str] = set()
    ordered = []
    for location_id in location_ids:
        if location_id not in seen:
            seen.add(location_id)
            ordered.append(location_id)
    return ordered


async def _existing_approval(
    session: AsyncSession,
    request: StorageRequest,
) -> ApprovalResult:
    reservations = await get_reservations(session, request.id)
    distribution = {r.location_id: r.reserved_count for r in reservations}
    return ApprovalResult(
        request_id=request.id,
        reference_id=request.reference_id,
        status=request.status,
        assigned_location_ids=list(request.assigned_location_ids),
        distribution=distribution,
        approved_quantity=sum(distribution.values()),
        already_approved=True,
    )


async def create_request(
    session: AsyncSession,
    company_id: uuid.UUID,
    reference_id: str,
    required_quantity: int,
    created_by: str,
    avg_joint_length_m: float | None = None,
) -> StorageRequest:
    """Create a draft storage request for a customer company."""
    if not reference_id or not reference_id.strip():
        raise ValidationFailed("A reference id is required")
    if required_quantity <= 0:
        raise ValidationFailed("Required quantity must be positive", required_quantity=required_quantity)
    if avg_joint_length_m is not None and avg_joint_length_m <= 0:
        raise ValidationFailed("Average joint length must be positive")

    async with transaction(session):
        request = StorageRequest(
            company_id=company_id,
            reference_id=reference_id.strip(),
            status=RequestStatus.DRAFT.value,
            required_quantity=required_quantity,
            avg_joint_length_m=avg_joint_length_m,
            assigned_location_ids=[],
        )
        session.add(request)
        await session.flush()
        await record_audit_entry(
            session,
            actor=created_by,
            action="CREATE_REQUEST",
            entity_type=ENTITY_TYPE,
            entity_id=request.id,
            details={"referenceId": request.reference_id, "requiredQuantity": required_quantity},
        )
    return request


async def submit_request(
    session: AsyncSession,
    request_id: uuid.UUID,
    submitted_by: str,
) -> StorageRequest:
    """Move a draft request into the operator approval queue.

    Raises:
        InvalidTransition: If the request is not a draft
    """
    async with transaction(session):
        request = await get_request(session, request_id, for_update=True)
        if request.status != RequestStatus.DRAFT.value:
            raise InvalidTransition(
                f"Request {request.reference_id} is not a draft (current status: {request.status})",
                current_status=request.status,
                target_status=RequestStatus.PENDING.value,
            )
        if request.required_quantity <= 0:
            raise ValidationFailed("Required quantity must be positive")

        request.status = RequestStatus.PENDING.value
        request.submitted_at = datetime.now(UTC)

        await record_audit_entry(
            session,
            actor=submitted_by,
            action="SUBMIT_REQUEST",
            entity_type=ENTITY_TYPE,
            entity_id=request.id,
            details={
                "referenceId": request.reference_id,
                "requiredQuantity": request.required_quantity,
            },
        )
        await enqueue_notification(
            session,
            NotificationType.REQUEST_SUBMITTED,
            {
                "requestId": str(request.id),
                "referenceId": request.reference_id,
                "companyId": str(request.company_id),
                "requiredQuantity": request.required_quantity,
            },
        )
    return request


async def approve_request(
    session: AsyncSession,
    request_id: uuid.UUID,
    location_ids: Sequence[str],
    required_quantity: int,
    operator_id: str,
    notes: str | None = None,
    split: Mapping[str, int] | None = None,
    authorizer: OperatorAuthorizer | None = None,
) -> ApprovalResult:
    """Approve a pending storage request and reserve rack capacity.

    Re-approving an already approved request returns the existing
    assignment without touching the ledger, so a retry after an ambiguous
    network failure is safe.

    Args:
        session: Database session (no transaction open, or one to nest in)
        request_id: Request to approve
        location_ids: Racks chosen by the operator, in preference order
        required_quantity: Joints to reserve
        operator_id: Approving operator
        notes: Optional operator notes
        split: Optional explicit joints per rack; must cover every chosen
            rack and sum to ``required_quantity``
        authorizer: Operator authorization predicate

    Returns:
        ApprovalResult describing the assignment

    Raises:
        NotAuthorized: If the caller is not an operator
        RequestNotFound: If the request does not exist
        InvalidTransition: If the request is neither pending nor approved
        InsufficientCapacity: If the racks lack aggregate room
        CapacityExceeded: If a caller split overfills a rack
        LocationNotFound: If a rack id is unknown
        ValidationFailed: On empty rack lists, bad splits or quantities
    """
    require_operator(operator_id, authorizer)
    chosen = _dedupe(location_ids)
    if not chosen:
        raise ValidationFailed("At least one rack must be assigned")
    if required_quantity <= 0:
        raise ValidationFailed("Required quantity must be positive", required_quantity=required_quantity)

    async with transaction(session):
        request = await get_request(session, request_id, for_update=True)

        if request.status == RequestStatus.APPROVED.value:
            if set(chosen) != set(request.assigned_location_ids):
                logger.warning(
                    "Request %s already approved on %s; ignoring re-approval on %s",
                    request.reference_id,
                    request.assigned_location_ids,
                    chosen,
                )
            return await _existing_approval(session, request)

        if request.status != RequestStatus.PENDING.value:
            raise InvalidTransition(
                f"Request {request.reference_id} is not pending (current status: {request.status})",
                current_status=request.status,
                target_status=RequestStatus.APPROVED.value,
            )

        snapshot = await capacity_ledger.available_capacity(session, chosen, for_update=True)
        joint_length = joint_length_for(request)

        if snapshot.available_count < required_quantity:
            raise InsufficientCapacity(
                f"Insufficient capacity: {required_quantity} joints required but only "
                f"{snapshot.available_count} available across {', '.join(chosen)}",
                required=required_quantity,
                available=snapshot.available_count,
                location_ids=chosen,
            )
        required_linear = round(required_quantity * joint_length, 2)
        if snapshot.available_linear + capacity_ledger.LINEAR_EPSILON < required_linear:
            raise InsufficientCapacity(
                f"Insufficient linear capacity: {required_linear:.2f} m required but only "
                f"{snapshot.available_linear:.2f} m available",
                required_linear=required_linear,
                available_linear=snapshot.available_linear,
                location_ids=chosen,
            )

        placeable = {
            location_id: placeable_joints(snapshot.locations[location_id], joint_length)
            for location_id in chosen
        }
        if split is not None:
            distribution = _validate_split(split, chosen, required_quantity)
            short = {
                location_id: placeable[location_id]
                for location_id, count in distribution.items()
                if count > placeable[location_id]
            }
            if short:
                raise InsufficientCapacity(
                    f"Split does not fit: {', '.join(f'{k} holds {v}' for k, v in short.items())} "
                    f"more joints of {joint_length:.2f} m",
                    required=required_quantity,
                    available=sum(placeable.values()),
                    placeable=placeable,
                    location_ids=chosen,
                )
        else:
            if sum(placeable.values()) < required_quantity:
                raise InsufficientCapacity(
                    f"Insufficient capacity: {required_quantity} joints of {joint_length:.2f} m "
                    f"required but the chosen racks fit only {sum(placeable.values())}",
                    required=required_quantity,
                    available=sum(placeable.values()),
                    placeable=placeable,
                    location_ids=chosen,
                )
            distribution = distribute_quantity(required_quantity, snapshot, chosen, joint_length)

        allocations = {
            location_id: Allocation(count=count, linear=round(count * joint_length, 2))
            for location_id, count in distribution.items()
            if count > 0
        }
        await capacity_ledger.reserve(session, allocations)

        for location_id, allocation in allocations.items():
            session.add(
                CapacityReservation(
                    request_id=request.id,
                    location_id=location_id,
                    reserved_count=allocation.count,
                    reserved_linear=allocation.linear,
                )
            )

        now = datetime.now(UTC)
        request.status = RequestStatus.APPROVED.value
        request.assigned_location_ids = list(allocations)
        request.approved_at = now
        request.approved_by = operator_id
        request.operator_notes = notes

        await record_audit_entry(
            session,
            actor=operator_id,
            action="APPROVE_REQUEST",
            entity_type=ENTITY_TYPE,
            entity_id=request.id,
            details={
                "referenceId": request.reference_id,
                "assignedRacks": list(allocations),
                "distribution": {k: v.count for k, v in allocations.items()},
                "requiredQuantity": required_quantity,
                "notes": notes,
            },
            timestamp=now,
        )
        await enqueue_notification(
            session,
            NotificationType.REQUEST_APPROVED,
            {
                "requestId": str(request.id),
                "referenceId": request.reference_id,
                "companyId": str(request.company_id),
                "subject": f"Storage Request Approved - {request.reference_id}",
                "assignedRacks": list(allocations),
                "requiredQuantity": required_quantity,
                "notes": notes,
            },
        )

    logger.info(
        "Approved request %s for %d joints on racks %s",
        request.reference_id,
        required_quantity,
        ", ".join(allocations),
    )
    return ApprovalResult(
        request_id=request.id,
        reference_id=request.reference_id,
        status=request.status,
        assigned_location_ids=list(allocations),
        distribution={k: v.count for k, v in allocations.items()},
        approved_quantity=required_quantity,
    )


async def reject_request(
    session: AsyncSession,
    request_id: uuid.UUID,
    reason: str,
    operator_id: str,
    authorizer: OperatorAuthorizer | None = None,
) -> StorageRequest:
    """Reject a pending storage request.

    No capacity was ever reserved for a pending request, so the ledger is
    not touched.

    Raises:
        NotAuthorized: If the caller is not an operator
        ValidationFailed: If the reason is blank
        InvalidTransition: If the request is not pending
    """
    require_operator(operator_id, authorizer)
    if not reason or not reason.strip():
        raise ValidationFailed("A rejection reason is required")

    async with transaction(session):
        request = await get_request(session, request_id, for_update=True)
        if request.status != RequestStatus.PENDING.value:
            raise InvalidTransition(
                f"Request {request.reference_id} is not pending (current status: {request.status})",
                current_status=request.status,
                target_status=RequestStatus.REJECTED.value,
            )

        now = datetime.now(UTC)
        request.status = RequestStatus.REJECTED.value
        request.rejection_reason = reason.strip()
        request.rejected_at = now

        await record_audit_entry(
            session,
            actor=operator_id,
            action="REJECT_REQUEST",
            entity_type=ENTITY_TYPE,
            entity_id=request.id,
            details={"referenceId": request.reference_id, "reason": request.rejection_reason},
            timestamp=now,
        )
        await enqueue_notification(
            session,
            NotificationType.REQUEST_REJECTED,
            {
                "requestId": str(request.id),
                "referenceId": request.reference_id,
                "companyId": str(request.company_id),
                "subject": f"Storage Request Rejected - {request.reference_id}",
                "reason": request.rejection_reason,
            },
        )

    logger.info("Rejected request %s", request.reference_id)
    return request


async def complete_request(
    session: AsyncSession,
    request_id: uuid.UUID,
    operator_id: str,
    authorizer: OperatorAuthorizer | None = None,
) -> StorageRequest:
    """Close out an approved request and free its unused approval holds.

    Raises:
        NotAuthorized: If the caller is not an operator
        InvalidTransition: If the request is not approved or still has open loads
    """
    require_operator(operator_id, authorizer)

    async with transaction(session):
        request = await get_request(session, request_id, for_update=True)
        if request.status != RequestStatus.APPROVED.value:
            raise InvalidTransition(
                f"Request {request.reference_id} is not approved (current status: {request.status})",
                current_status=request.status,
                target_status=RequestStatus.COMPLETED.value,
            )

        open_loads = await session.execute(
            select(Load.id).where(
                Load.request_id == request.id,
                Load.status.in_([s.value for s in OPEN_LOAD_STATUSES]),
            )
        )
        open_load_ids = [str(row[0]) for row in open_loads]
        if open_load_ids:
            raise InvalidTransition(
                f"Request {request.reference_id} still has {len(open_load_ids)} open load(s)",
                open_load_ids=open_load_ids,
            )

        released: dict[str, Allocation] = {}
        for reservation in await get_reservations(session, request.id, for_update=True):
            if reservation.status != ReservationStatus.ACTIVE.value:
                continue
            if reservation.remaining_count > 0 or reservation.remaining_linear > 0:
                released[reservation.location_id] = Allocation(
                    count=reservation.remaining_count,
                    linear=max(reservation.remaining_linear, 0.0),
                )
                reservation.status = ReservationStatus.RELEASED.value
            else:
                reservation.status = ReservationStatus.CONSUMED.value
        if released:
            await capacity_ledger.release(session, released)

        now = datetime.now(UTC)
        request.status = RequestStatus.COMPLETED.value
        request.completed_at = now

        await record_audit_entry(
            session,
            actor=operator_id,
            action="COMPLETE_REQUEST",
            entity_type=ENTITY_TYPE,
            entity_id=request.id,
            details={
                "referenceId": request.reference_id,
                "deliveredQuantity": request.delivered_quantity,
                "releasedHolds": {k: v.count for k, v in released.items()},
            },
            timestamp=now,
        )
        await enqueue_notification(
            session,
            NotificationType.REQUEST_COMPLETED,
            {
                "requestId": str(request.id),
                "referenceId": request.reference_id,
                "companyId": str(request.company_id),
                "deliveredQuantity": request.delivered_quantity,
            },
        )

    logger.info("Completed request %s", request.reference_id)
    return request
