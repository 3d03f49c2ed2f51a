"""Tests for the sequential load gate."""

import uuid

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pipeyard.models import AuditEntry, Load, LoadDirection, NotificationIntent
from pipeyard.services.errors import (
    InvalidTransition,
    RequestNotFound,
    SequentialGateClosed,
    ValidationFailed,
)
from pipeyard.services.load_lifecycle import approve_load, reject_load
from pipeyard.services.notifications import NotificationType
from pipeyard.services.sequential_gate import can_create_load, create_load
from tests.conftest import OPERATOR, allow_operator


class TestCreateLoad:
    """Tests for create_load."""

    @pytest.mark.asyncio
    async def test_first_load_gets_sequence_one(
        self, session: AsyncSession, add_request, scalars
    ) -> None:
        request = await add_request(status="approved", assigned_location_ids=["A-1"])

        load = await create_load(session, request.id, LoadDirection.INBOUND, 50, "customer-1")

        assert load.sequence_number == 1
        assert load.status == "new"
        assert load.direction == "inbound"

        entries = await scalars(select(AuditEntry))
        assert [entry.action for entry in entries] == ["CREATE_LOAD"]
        intents = await scalars(select(NotificationIntent))
        assert [intent.type for intent in intents] == [NotificationType.LOAD_CREATED.value]

    @pytest.mark.asyncio
    async def test_approved_earlier_load_blocks(
        self, session: AsyncSession, add_request, read, scalars
    ) -> None:
        """Test that load #2 cannot be created while load #1 is approved."""
        request = await add_request(status="approved", assigned_location_ids=["A-1"])
        first = await create_load(session, request.id, LoadDirection.INBOUND, 50, "customer-1")
        await approve_load(session, first.id, OPERATOR, authorizer=allow_operator)

        with pytest.raises(SequentialGateClosed) as exc_info:
            await create_load(session, request.id, LoadDirection.INBOUND, 50, "customer-1")

        assert exc_info.value.details["blocking_load_id"] == str(first.id)
        assert exc_info.value.details["blocking_sequence_number"] == 1
        assert exc_info.value.details["blocking_status"] == "approved"
        assert await read(can_create_load, request.id, LoadDirection.INBOUND) is False
        assert len(await scalars(select(Load))) == 1

    @pytest.mark.asyncio
    async def test_rejection_reopens_gate(self, session: AsyncSession, add_request, read) -> None:
        request = await add_request(status="approved", assigned_location_ids=["A-1"])
        first = await create_load(session, request.id, LoadDirection.INBOUND, 50, "customer-1")
        await reject_load(session, first.id, "Wrong carrier", OPERATOR, authorizer=allow_operator)

        assert await read(can_create_load, request.id, LoadDirection.INBOUND) is True
        second = await create_load(session, request.id, LoadDirection.INBOUND, 50, "customer-1")

        assert second.sequence_number == 2

    @pytest.mark.asyncio
    async def test_completed_load_reopens_gate(
        self, session: AsyncSession, add_request, add_load
    ) -> None:
        request = await add_request(status="approved", assigned_location_ids=["A-1"])
        await add_load(request.id, status="completed", sequence_number=1)
        await add_load(request.id, status="completed", sequence_number=2)

        load = await create_load(session, request.id, LoadDirection.INBOUND, 20, "customer-1")

        assert load.sequence_number == 3

    @pytest.mark.asyncio
    async def test_directions_are_gated_separately(
        self, session: AsyncSession, add_request, add_load
    ) -> None:
        """Test that an open inbound load does not block an outbound one."""
        request = await add_request(status="approved", assigned_location_ids=["A-1"])
        await add_load(request.id, status="in_transit", direction="inbound")

        outbound = await create_load(session, request.id, LoadDirection.OUTBOUND, 10, "customer-1")

        assert outbound.sequence_number == 1
        assert outbound.direction == "outbound"

    @pytest.mark.asyncio
    async def test_pending_request_refused(self, session: AsyncSession, add_request) -> None:
        request = await add_request(status="pending")

        with pytest.raises(InvalidTransition):
            await create_load(session, request.id, LoadDirection.INBOUND, 10, "customer-1")

    @pytest.mark.asyncio
    async def test_completed_request_allows_outbound_only(
        self, session: AsyncSession, add_request
    ) -> None:
        request = await add_request(status="completed", assigned_location_ids=["A-1"])

        with pytest.raises(InvalidTransition):
            await create_load(session, request.id, LoadDirection.INBOUND, 10, "customer-1")
        load = await create_load(session, request.id, LoadDirection.OUTBOUND, 10, "customer-1")

        assert load.direction == "outbound"

    @pytest.mark.asyncio
    async def test_planned_quantity_must_be_positive(
        self, session: AsyncSession, add_request
    ) -> None:
        request = await add_request(status="approved", assigned_location_ids=["A-1"])

        with pytest.raises(ValidationFailed):
            await create_load(session, request.id, LoadDirection.INBOUND, 0, "customer-1")

    @pytest.mark.asyncio
    async def test_unknown_request(self, session: AsyncSession) -> None:
        with pytest.raises(RequestNotFound):
            await create_load(session, uuid.uuid4(), LoadDirection.INBOUND, 10, "customer-1")
