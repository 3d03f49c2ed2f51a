"""Tests for the notification intent queue."""

import pytest
from sqlalchemy import select

from pipeyard.models import NotificationIntent
from pipeyard.services.notifications import (
    NotificationType,
    enqueue_notification,
    fetch_pending_notifications,
    record_delivery_attempt,
)


class TestEnqueueNotification:
    """Tests for enqueue_notification."""

    @pytest.mark.asyncio
    async def test_enqueued_with_caller_transaction(
        self, session_factory, scalars
    ) -> None:
        """Test that an intent commits with the surrounding transaction."""
        async with session_factory() as session:
            async with session.begin():
                intent = await enqueue_notification(
                    session,
                    NotificationType.REQUEST_APPROVED,
                    {"requestId": "r-1", "assignedRacks": ["A-A1-1"]},
                )
                assert intent.id

        [stored] = await scalars(select(NotificationIntent))
        assert stored.type == "storage_request_approved"
        assert stored.payload == {"requestId": "r-1", "assignedRacks": ["A-A1-1"]}
        assert stored.delivered is False
        assert stored.delivery_attempts == 0

    @pytest.mark.asyncio
    async def test_discarded_on_rollback(self, session_factory, scalars) -> None:
        """Test that no intent survives when its transaction fails."""
        with pytest.raises(RuntimeError):
            async with session_factory() as session:
                async with session.begin():
                    await enqueue_notification(
                        session, NotificationType.LOAD_COMPLETED, {"loadId": "l-1"}
                    )
                    raise RuntimeError("operation failed")

        assert await scalars(select(NotificationIntent)) == []


class TestDeliveryWorkerContract:
    """Tests for the polling and bookkeeping used by the delivery worker."""

    @pytest.mark.asyncio
    async def test_pending_then_delivered(self, session_factory) -> None:
        async with session_factory() as session:
            async with session.begin():
                first = await enqueue_notification(
                    session, NotificationType.LOAD_CREATED, {"loadId": "l-1"}
                )
                await enqueue_notification(session, NotificationType.LOAD_APPROVED, {"loadId": "l-1"})

        async with session_factory() as session:
            async with session.begin():
                pending = await fetch_pending_notifications(session)
                assert len(pending) == 2
                await record_delivery_attempt(session, first.id, delivered=True)

        async with session_factory() as session:
            pending = await fetch_pending_notifications(session)
            assert [intent.type for intent in pending] == ["load_approved"]
            delivered = await session.get(NotificationIntent, first.id)
            assert delivered.delivered is True
            assert delivered.delivery_attempts == 1
            assert delivered.delivered_at is not None

    @pytest.mark.asyncio
    async def test_failed_attempts_stop_at_limit(self, session_factory) -> None:
        async with session_factory() as session:
            async with session.begin():
                intent = await enqueue_notification(
                    session, NotificationType.REQUEST_REJECTED, {"requestId": "r-1"}
                )

        for _ in range(2):
            async with session_factory() as session:
                async with session.begin():
                    await record_delivery_attempt(session, intent.id, delivered=False, error="SMTP 451")

        async with session_factory() as session:
            assert await fetch_pending_notifications(session, max_attempts=2) == []
            [retry] = await fetch_pending_notifications(session, max_attempts=3)
            assert retry.last_error == "SMTP 451"


def test_types_cover_request_and_load_events() -> None:
    values = {member.value for member in NotificationType}

    assert "storage_request_approved" in values
    assert "load_completed" in values
