"""Notification intent queue.

The engine appends intents in the same transaction as the change they
describe and never reads them back. The remaining functions are the contract
for the external delivery worker: poll undelivered intents, then report each
attempt.
"""

import logging
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from pipeyard.models.notification_intent import NotificationIntent

logger = logging.getLogger(__name__)


class NotificationType(str, Enum):
    """Notification types emitted by the engine."""

    REQUEST_SUBMITTED = "storage_request_submitted"
    REQUEST_APPROVED = "storage_request_approved"
    REQUEST_REJECTED = "storage_request_rejected"
    REQUEST_COMPLETED = "storage_request_completed"
    LOAD_CREATED = "load_created"
    LOAD_APPROVED = "load_approved"
    LOAD_REJECTED = "load_rejected"
    LOAD_CORRECTION_REQUESTED = "load_correction_requested"
    LOAD_IN_TRANSIT = "load_in_transit"
    LOAD_COMPLETED = "load_completed"


async def enqueue_notification(
    session: AsyncSession,
    notification_type: NotificationType,
    payload: dict[str, Any],
) -> NotificationIntent:
    """Append a notification intent inside the caller's transaction.

    Args:
        session: Database session
        notification_type: What happened
        payload: JSON-serializable context for the delivery worker

    Returns:
        The created NotificationIntent
    """
    intent = NotificationIntent(type=notification_type.value, payload=payload)
    session.add(intent)
    await session.flush()
    logger.debug("Enqueued %s notification", notification_type.value)
    return intent


async def fetch_pending_notifications(
    session: AsyncSession,
    limit: int = 50,
    max_attempts: int = 5,
) -> list[NotificationIntent]:
    """Oldest undelivered intents that still have attempts left."""
    result = await session.execute(
        select(NotificationIntent)
        .where(
            NotificationIntent.delivered.is_(False),
            NotificationIntent.delivery_attempts < max_attempts,
        )
        .order_by(NotificationIntent.created_at)
        .limit(limit)
    )
    return list(result.scalars().all())


async def record_delivery_attempt(
    session: AsyncSession,
    intent_id: str,
    delivered: bool,
    error: str | None = None,
) -> None:
    """Record the outcome of one delivery attempt.

    Args:
        session: Database session
        intent_id: Intent that was attempted
        delivered: Whether delivery succeeded
        error: Failure message when delivery failed
    """
    values: dict[str, Any] = {
        "delivery_attempts": NotificationIntent.delivery_attempts + 1,
        "last_error": error,
    }
    if delivered:
        values["delivered"] = True
        values["delivered_at"] = datetime.now(UTC)

    await session.execute(
        update(NotificationIntent)
        .where(NotificationIntent.id == intent_id)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if not delivered:
        logger.warning("Delivery failed for notification %s: %s", intent_id, error)
