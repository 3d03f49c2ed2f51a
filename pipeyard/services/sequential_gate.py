"""Sequential gate for load creation.

A request gets one open load per direction at a time: a new inbound (or
outbound) load can be created only once every earlier load in that
direction has been completed or rejected.
"""

import logging
import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pipeyard.database import transaction
from pipeyard.models.load import OPEN_LOAD_STATUSES, Load, LoadDirection
from pipeyard.models.storage_request import RequestStatus
from pipeyard.services.audit_logging import record_audit_entry
from pipeyard.services.errors import InvalidTransition, SequentialGateClosed, ValidationFailed
from pipeyard.services.notifications import NotificationType, enqueue_notification
from pipeyard.services.request_approval import get_request

logger = logging.getLogger(__name__)


async def open_loads(
    session: AsyncSession,
    request_id: uuid.UUID,
    direction: LoadDirection,
) -> list[Load]:
    """Loads for the request and direction that have not reached a sink."""
    result = await session.execute(
        select(Load)
        .where(
            Load.request_id == request_id,
            Load.direction == LoadDirection(direction).value,
            Load.status.in_([s.value for s in OPEN_LOAD_STATUSES]),
        )
        .order_by(Load.sequence_number)
    )
    return list(result.scalars().all())


async def can_create_load(
    session: AsyncSession,
    request_id: uuid.UUID,
    direction: LoadDirection,
) -> bool:
    """Whether a new load may be created for the request in this direction."""
    return not await open_loads(session, request_id, direction)


async def create_load(
    session: AsyncSession,
    request_id: uuid.UUID,
    direction: LoadDirection,
    planned_quantity: int,
    created_by: str,
) -> Load:
    """Create the next load for a request, if the gate is open.

    Args:
        session: Database session
        request_id: Approved storage request
        direction: Inbound or outbound
        planned_quantity: Joints the customer plans to move
        created_by: Customer or operator creating the load

    Returns:
        The new load in status NEW

    Raises:
        RequestNotFound: If the request does not exist
        InvalidTransition: If the request is not approved (or, for
            outbound loads, completed)
        SequentialGateClosed: If an earlier load in the same direction is open
        ValidationFailed: If the planned quantity is not positive
    """
    direction = LoadDirection(direction)
    if planned_quantity <= 0:
        raise ValidationFailed("Planned quantity must be positive", planned_quantity=planned_quantity)

    async with transaction(session):
        # Locking the parent request serializes concurrent creations
        request = await get_request(session, request_id, for_update=True)
        allowed = {RequestStatus.APPROVED.value}
        if direction == LoadDirection.OUTBOUND:
            # Stored pipe can still be picked up after the request is closed
            allowed.add(RequestStatus.COMPLETED.value)
        if request.status not in allowed:
            raise InvalidTransition(
                f"Cannot create a {direction.value} load for request "
                f"{request.reference_id} in status {request.status}",
                current_status=request.status,
            )

        blocking = await open_loads(session, request.id, direction)
        if blocking:
            first = blocking[0]
            raise SequentialGateClosed(
                f"Load #{first.sequence_number} ({direction.value}) for request "
                f"{request.reference_id} is still {first.status}",
                blocking_load_id=str(first.id),
                blocking_sequence_number=first.sequence_number,
                blocking_status=first.status,
            )

        result = await session.execute(
            select(func.coalesce(func.max(Load.sequence_number), 0)).where(
                Load.request_id == request.id,
                Load.direction == direction.value,
            )
        )
        sequence_number = int(result.scalar() or 0) + 1

        load = Load(
            request_id=request.id,
            direction=direction.value,
            sequence_number=sequence_number,
            planned_quantity=planned_quantity,
        )
        session.add(load)
        await session.flush()

        await record_audit_entry(
            session,
            actor=created_by,
            action="CREATE_LOAD",
            entity_type="load",
            entity_id=load.id,
            details={
                "requestId": str(request.id),
                "direction": direction.value,
                "sequenceNumber": sequence_number,
                "plannedQuantity": planned_quantity,
            },
        )
        await enqueue_notification(
            session,
            NotificationType.LOAD_CREATED,
            {
                "loadId": str(load.id),
                "requestId": str(request.id),
                "referenceId": request.reference_id,
                "companyId": str(request.company_id),
                "direction": direction.value,
                "sequenceNumber": sequence_number,
                "plannedQuantity": planned_quantity,
            },
        )

    logger.info(
        "Created %s load #%d for request %s",
        direction.value,
        sequence_number,
        request.reference_id,
    )
    return load
