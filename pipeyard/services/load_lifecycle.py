"""Load lifecycle state machine.

Transitions are fixed:

    NEW --approve--> APPROVED --depart--> IN_TRANSIT --arrive--> COMPLETED
    NEW --reject(reason)--> REJECTED
    NEW --request_correction(issues)--> NEW

COMPLETED and REJECTED are sinks. The arrive transition is handed to the
materializer so the status flip and the inventory it creates happen in one
transaction.
"""

import logging
import uuid
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pipeyard.database import transaction
from pipeyard.models.load import TERMINAL_LOAD_STATUSES, Load, LoadStatus
from pipeyard.services import materializer
from pipeyard.services.audit_logging import record_audit_entry
from pipeyard.services.authorization import OperatorAuthorizer, require_operator
from pipeyard.services.errors import InvalidTransition, LoadNotFound, ValidationFailed
from pipeyard.services.materializer import CompletionResult, ManifestLineItem
from pipeyard.services.notifications import NotificationType, enqueue_notification
from pipeyard.services.request_approval import get_request

logger = logging.getLogger(__name__)

LOAD_TRANSITIONS: dict[LoadStatus, frozenset[LoadStatus]] = {
    LoadStatus.NEW: frozenset({LoadStatus.APPROVED, LoadStatus.REJECTED, LoadStatus.NEW}),
    LoadStatus.APPROVED: frozenset({LoadStatus.IN_TRANSIT}),
    LoadStatus.IN_TRANSIT: frozenset({LoadStatus.COMPLETED}),
    LoadStatus.COMPLETED: frozenset(),
    LoadStatus.REJECTED: frozenset(),
}

_TRANSITION_ACTIONS = {
    (LoadStatus.NEW, LoadStatus.APPROVED): ("APPROVE_LOAD", NotificationType.LOAD_APPROVED),
    (LoadStatus.NEW, LoadStatus.REJECTED): ("REJECT_LOAD", NotificationType.LOAD_REJECTED),
    (LoadStatus.NEW, LoadStatus.NEW): (
        "REQUEST_LOAD_CORRECTION",
        NotificationType.LOAD_CORRECTION_REQUESTED,
    ),
    (LoadStatus.APPROVED, LoadStatus.IN_TRANSIT): (
        "MARK_LOAD_IN_TRANSIT",
        NotificationType.LOAD_IN_TRANSIT,
    ),
}


def is_valid_transition(current: LoadStatus, target: LoadStatus) -> bool:
    """Check a (current, target) pair against the transition table."""
    return target in LOAD_TRANSITIONS.get(current, frozenset())


async def get_load(
    session: AsyncSession,
    load_id: uuid.UUID,
    for_update: bool = False,
) -> Load:
    """Fetch a load by id.

    Raises:
        LoadNotFound: If the load does not exist
    """
    query = select(Load).where(Load.id == load_id).execution_options(populate_existing=True)
    if for_update:
        query = query.with_for_update()
    result = await session.execute(query)
    load = result.scalar_one_or_none()
    if load is None:
        raise LoadNotFound(f"Load not found: {load_id}", load_id=str(load_id))
    return load


def _check_transition(load: Load, target: LoadStatus) -> LoadStatus:
    current = LoadStatus(load.status)
    if current in TERMINAL_LOAD_STATUSES:
        raise InvalidTransition(
            f"Load {load.id} is {current.value} and can no longer change",
            load_id=str(load.id),
            current_status=current.value,
            target_status=target.value,
        )
    if not is_valid_transition(current, target):
        raise InvalidTransition(
            f"Cannot move load {load.id} from {current.value} to {target.value}",
            load_id=str(load.id),
            current_status=current.value,
            target_status=target.value,
        )
    return current


def _line_item(item: Any) -> ManifestLineItem:
    if isinstance(item, ManifestLineItem):
        return item
    try:
        return ManifestLineItem(**item)
    except TypeError as e:
        raise ValidationFailed(f"Invalid manifest line item: {item!r}", line_item=repr(item)) from e


async def _complete(
    session: AsyncSession,
    load_id: uuid.UUID,
    operator_id: str,
    payload: dict[str, Any],
    authorizer: OperatorAuthorizer | None,
) -> CompletionResult:
    async with transaction(session):
        _check_transition(await get_load(session, load_id), LoadStatus.COMPLETED)

    # The materializer re-checks status and direction under its row lock
    if "actual_quantity" not in payload:
        raise ValidationFailed("Completion needs actual_quantity")

    if "inventory_ids" not in payload:
        if "location_id" not in payload:
            raise ValidationFailed("Inbound completion needs location_id")
        line_items = [_line_item(item) for item in payload.get("line_items") or []]
        return await materializer.complete_inbound_load(
            session,
            load_id,
            location_id=payload["location_id"],
            actual_quantity=payload["actual_quantity"],
            line_items=line_items,
            operator_id=operator_id,
            notes=payload.get("notes"),
            authorizer=authorizer,
        )

    return await materializer.complete_outbound_load(
        session,
        load_id,
        inventory_ids=payload["inventory_ids"],
        actual_quantity=payload["actual_quantity"],
        operator_id=operator_id,
        notes=payload.get("notes"),
        authorizer=authorizer,
    )


async def transition(
    session: AsyncSession,
    load_id: uuid.UUID,
    target: LoadStatus,
    operator_id: str,
    payload: dict[str, Any] | None = None,
    authorizer: OperatorAuthorizer | None = None,
) -> Load:
    """Move a load to ``target`` if the transition table allows it.

    Payload keys by target:
        REJECTED: ``reason`` (required)
        NEW: ``issues`` (non-empty list of correction issues)
        COMPLETED (inbound): ``location_id``, ``actual_quantity``,
            ``line_items``, ``notes``
        COMPLETED (outbound): ``inventory_ids``, ``actual_quantity``, ``notes``

    Args:
        session: Database session
        load_id: Load to move
        target: Desired status
        operator_id: Acting operator
        payload: Transition-specific input
        authorizer: Operator authorization predicate

    Returns:
        The load after the transition

    Raises:
        NotAuthorized: If the caller is not an operator
        LoadNotFound: If the load does not exist
        InvalidTransition: If the pair is not in the transition table
        ValidationFailed: If the payload is missing a required value
    """
    require_operator(operator_id, authorizer)
    target = LoadStatus(target)
    payload = payload or {}

    if target == LoadStatus.COMPLETED:
        result = await _complete(session, load_id, operator_id, payload, authorizer)
        async with transaction(session):
            return await get_load(session, result.load_id)

    reason = None
    issues: list[str] = []
    if target == LoadStatus.REJECTED:
        reason = (payload.get("reason") or "").strip()
        if not reason:
            raise ValidationFailed("A rejection reason is required")
    elif target == LoadStatus.NEW:
        issues = [str(issue).strip() for issue in payload.get("issues") or [] if str(issue).strip()]
        if not issues:
            raise ValidationFailed("A correction request needs at least one issue")

    async with transaction(session):
        load = await get_load(session, load_id, for_update=True)
        current = _check_transition(load, target)
        request = await get_request(session, load.request_id)

        now = datetime.now(UTC)
        load.status = target.value
        if target == LoadStatus.APPROVED:
            load.approved_at = now
        elif target == LoadStatus.IN_TRANSIT:
            load.departed_at = now
        elif target == LoadStatus.REJECTED:
            load.rejection_reason = reason
            load.rejected_at = now
        elif target == LoadStatus.NEW:
            load.correction_issues = issues

        action, notification_type = _TRANSITION_ACTIONS[(current, target)]
        details: dict[str, Any] = {
            "requestId": str(request.id),
            "direction": load.direction,
            "sequenceNumber": load.sequence_number,
            "fromStatus": current.value,
            "toStatus": target.value,
            "plannedQuantity": load.planned_quantity,
        }
        if reason:
            details["reason"] = reason
        if issues:
            details["issues"] = issues

        await record_audit_entry(
            session,
            actor=operator_id,
            action=action,
            entity_type=materializer.ENTITY_TYPE,
            entity_id=load.id,
            details=details,
            timestamp=now,
        )
        await enqueue_notification(
            session,
            notification_type,
            {
                **details,
                "loadId": str(load.id),
                "referenceId": request.reference_id,
                "companyId": str(request.company_id),
            },
        )

    logger.info("Load %s moved %s -> %s", load.id, current.value, target.value)
    return load


async def approve_load(
    session: AsyncSession,
    load_id: uuid.UUID,
    operator_id: str,
    authorizer: OperatorAuthorizer | None = None,
) -> Load:
    return await transition(session, load_id, LoadStatus.APPROVED, operator_id, authorizer=authorizer)


async def reject_load(
    session: AsyncSession,
    load_id: uuid.UUID,
    reason: str,
    operator_id: str,
    authorizer: OperatorAuthorizer | None = None,
) -> Load:
    return await transition(
        session,
        load_id,
        LoadStatus.REJECTED,
        operator_id,
        payload={"reason": reason},
        authorizer=authorizer,
    )


async def request_correction(
    session: AsyncSession,
    load_id: uuid.UUID,
    issues: Sequence[str],
    operator_id: str,
    authorizer: OperatorAuthorizer | None = None,
) -> Load:
    """Send a NEW load back to the customer with a list of issues to fix."""
    return await transition(
        session,
        load_id,
        LoadStatus.NEW,
        operator_id,
        payload={"issues": list(issues)},
        authorizer=authorizer,
    )


async def mark_in_transit(
    session: AsyncSession,
    load_id: uuid.UUID,
    operator_id: str,
    authorizer: OperatorAuthorizer | None = None,
) -> Load:
    return await transition(session, load_id, LoadStatus.IN_TRANSIT, operator_id, authorizer=authorizer)
