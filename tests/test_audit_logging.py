"""Tests for operator audit logging.

This module tests:
- AuditEntry model
- Audit logging service functions
- Audit API routes and schemas
"""

from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from pipeyard.models.audit_entry import AuditEntry
from pipeyard.services.audit_logging import (
    AuditFilters,
    count_audit_entries,
    get_action_counts,
    get_audit_entries,
    get_entity_audit_trail,
    record_audit_entry,
)

BASE_TIME = datetime(2026, 10, 1, 12, 0, tzinfo=UTC)


# ============================================================================
# AuditEntry Model Tests
# ============================================================================


class TestAuditEntryModel:
    """Tests for the AuditEntry SQLAlchemy model."""

    def test_model_has_required_columns(self) -> None:
        """Test that model has all required columns."""
        columns = {c.name for c in AuditEntry.__table__.columns}
        assert {"id", "actor", "action", "entity_type", "entity_id", "timestamp", "details"} <= columns

    def test_tablename(self) -> None:
        assert AuditEntry.__tablename__ == "audit_entries"

    def test_repr(self) -> None:
        entry = AuditEntry(
            actor="op-1", action="APPROVE_REQUEST", entity_type="storage_request", entity_id="42"
        )

        assert repr(entry) == (
            "<AuditEntry(actor=op-1, action=APPROVE_REQUEST, entity=storage_request:42)>"
        )


class TestAuditFilters:
    """Tests for AuditFilters dataclass."""

    def test_default_values(self) -> None:
        filters = AuditFilters()

        assert filters.actor is None
        assert filters.action is None
        assert filters.entity_type is None
        assert filters.entity_id is None
        assert filters.start_time is None
        assert filters.end_time is None

    def test_frozen_dataclass(self) -> None:
        """Test that filters are immutable."""
        filters = AuditFilters(actor="op-1")

        with pytest.raises(AttributeError):
            filters.actor = "op-2"  # type: ignore[misc]


# ============================================================================
# Audit Logging Service Tests
# ============================================================================


class TestRecordAuditEntry:
    """Tests for record_audit_entry function."""

    @pytest.mark.asyncio
    async def test_creates_entry_without_committing(self) -> None:
        """Test that the entry is added and flushed, never committed."""
        mock_session = AsyncMock()
        mock_session.add = lambda entry: None

        entity_id = uuid4()
        entry = await record_audit_entry(
            session=mock_session,
            actor="op-1",
            action="APPROVE_REQUEST",
            entity_type="storage_request",
            entity_id=entity_id,
            details={"assignedRacks": ["A-A1-1"]},
        )

        assert entry.actor == "op-1"
        assert entry.entity_id == str(entity_id)
        assert entry.details == {"assignedRacks": ["A-A1-1"]}
        assert entry.timestamp is not None
        mock_session.flush.assert_awaited_once()
        mock_session.commit.assert_not_called()

    @pytest.mark.asyncio
    async def test_uses_given_timestamp(self) -> None:
        mock_session = AsyncMock()
        mock_session.add = lambda entry: None

        entry = await record_audit_entry(
            session=mock_session,
            actor="op-1",
            action="REJECT_LOAD",
            entity_type="load",
            entity_id="load-1",
            timestamp=BASE_TIME,
        )

        assert entry.timestamp == BASE_TIME


class TestAuditQueries:
    """Tests for audit queries against a real database."""

    @pytest.fixture
    def seed(self, session_factory):
        async def _seed() -> None:
            async with session_factory() as session:
                async with session.begin():
                    rows = [
                        ("op-1", "APPROVE_REQUEST", "storage_request", "r-1", 0),
                        ("op-1", "CREATE_LOAD", "load", "l-1", 1),
                        ("op-2", "APPROVE_LOAD", "load", "l-1", 2),
                        ("op-2", "MARK_LOAD_IN_TRANSIT", "load", "l-1", 3),
                        ("op-1", "APPROVE_REQUEST", "storage_request", "r-2", 4),
                    ]
                    for actor, action, entity_type, entity_id, minutes in rows:
                        await record_audit_entry(
                            session,
                            actor=actor,
                            action=action,
                            entity_type=entity_type,
                            entity_id=entity_id,
                            timestamp=BASE_TIME + timedelta(minutes=minutes),
                        )

        return _seed

    @pytest.mark.asyncio
    async def test_most_recent_first(self, session: AsyncSession, seed) -> None:
        await seed()

        entries = await get_audit_entries(session)

        assert [entry.entity_id for entry in entries] == ["r-2", "l-1", "l-1", "l-1", "r-1"]

    @pytest.mark.asyncio
    async def test_filters_and_pagination(self, session: AsyncSession, seed) -> None:
        await seed()

        by_actor = await get_audit_entries(session, AuditFilters(actor="op-2"))
        page = await get_audit_entries(session, AuditFilters(actor="op-1"), limit=1, offset=1)

        assert {entry.action for entry in by_actor} == {"APPROVE_LOAD", "MARK_LOAD_IN_TRANSIT"}
        assert [entry.action for entry in page] == ["CREATE_LOAD"]

    @pytest.mark.asyncio
    async def test_entity_trail_is_chronological(self, session: AsyncSession, seed) -> None:
        await seed()

        trail = await get_entity_audit_trail(session, "load", "l-1")

        assert [entry.action for entry in trail] == [
            "CREATE_LOAD",
            "APPROVE_LOAD",
            "MARK_LOAD_IN_TRANSIT",
        ]

    @pytest.mark.asyncio
    async def test_counts(self, session: AsyncSession, seed) -> None:
        await seed()

        assert await count_audit_entries(session) == 5
        assert await count_audit_entries(session, AuditFilters(entity_type="load")) == 3
        assert await get_action_counts(session) == {
            "APPROVE_REQUEST": 2,
            "CREATE_LOAD": 1,
            "APPROVE_LOAD": 1,
            "MARK_LOAD_IN_TRANSIT": 1,
        }


# ============================================================================
# Audit API Route Tests
# ============================================================================


class TestAuditAPIRoutes:
    """Tests for audit API routes."""

    def test_routes_exist(self) -> None:
        from pipeyard.api.audit import router

        paths = {route.path for route in router.routes}
        assert {"/audit/entries", "/audit/entities/{entity_type}/{entity_id}", "/audit/actions"} <= paths

    def test_entry_response_schema(self) -> None:
        from pipeyard.api.audit import AuditEntryResponse

        response = AuditEntryResponse(
            id=str(uuid4()),
            actor="op-1",
            action="APPROVE_REQUEST",
            entity_type="storage_request",
            entity_id="r-1",
            timestamp=BASE_TIME,
            details=None,
        )

        assert response.action == "APPROVE_REQUEST"
