"""Tests for SQLAlchemy models."""

import uuid

from pipeyard.models import (
    AllocationMode,
    CapacityReservation,
    InventoryUnit,
    Load,
    ReservationStatus,
    StorageLocation,
    StorageRequest,
)


def _rack(**overrides) -> StorageLocation:
    values = {
        "id": "A-A1-1",
        "area": "A-A1",
        "name": "A-A1-1",
        "capacity": 100,
        "occupied_count": 75,
        "capacity_linear": 1200.0,
        "occupied_linear": 900.0,
        "allocation_mode": AllocationMode.LINEAR_CAPACITY.value,
    }
    values.update(overrides)
    return StorageLocation(**values)


class TestStorageLocationModel:
    """Tests for the StorageLocation (rack) model."""

    def test_tablename(self) -> None:
        assert StorageLocation.__tablename__ == "racks"

    def test_available_capacity(self) -> None:
        rack = _rack()

        assert rack.available_count == 25
        assert rack.available_linear == 300.0

    def test_empty_slot_is_fully_available(self) -> None:
        rack = _rack(allocation_mode="slot", occupied_count=0, occupied_linear=0.0)

        assert rack.available_count == 100

    def test_occupied_slot_has_no_room(self) -> None:
        rack = _rack(allocation_mode="slot", occupied_count=1, occupied_linear=12.0)

        assert rack.available_count == 0
        assert rack.available_linear == 0.0

    def test_has_occupancy_check_constraints(self) -> None:
        names = {c.name for c in StorageLocation.__table__.constraints}

        assert "ck_racks_occupied_count_within_capacity" in names
        assert "ck_racks_occupied_linear_within_capacity" in names

    def test_repr(self) -> None:
        assert repr(_rack()) == "<StorageLocation(id='A-A1-1', occupied=75/100)>"


class TestCapacityReservationModel:
    """Tests for the CapacityReservation model."""

    def test_remaining_while_active(self) -> None:
        hold = CapacityReservation(
            reserved_count=30,
            reserved_linear=360.0,
            consumed_count=20,
            consumed_linear=240.0,
            status=ReservationStatus.ACTIVE.value,
        )

        assert hold.remaining_count == 10
        assert hold.remaining_linear == 120.0

    def test_nothing_remains_once_closed(self) -> None:
        hold = CapacityReservation(
            reserved_count=30,
            reserved_linear=360.0,
            consumed_count=0,
            consumed_linear=0.0,
            status=ReservationStatus.RELEASED.value,
        )

        assert hold.remaining_count == 0
        assert hold.remaining_linear == 0.0

    def test_one_hold_per_request_and_rack(self) -> None:
        names = {c.name for c in CapacityReservation.__table__.constraints}

        assert "uq_capacity_reservations_request_location" in names


class TestInventoryUnitModel:
    """Tests for the InventoryUnit model."""

    def test_linear_metres(self) -> None:
        unit = InventoryUnit(quantity=10, length_m=12.192)

        assert unit.linear_m == 121.92

    def test_lineage_foreign_keys(self) -> None:
        fks = {fk.parent.name: fk.column.table.name for fk in InventoryUnit.__table__.foreign_keys}

        assert fks["origin_load_id"] == "trucking_loads"
        assert fks["disposal_load_id"] == "trucking_loads"
        assert fks["location_id"] == "racks"


class TestLoadModel:
    """Tests for the Load model."""

    def test_tablename(self) -> None:
        assert Load.__tablename__ == "trucking_loads"

    def test_sequence_is_unique_per_request_and_direction(self) -> None:
        names = {c.name for c in Load.__table__.constraints}

        assert "uq_trucking_loads_request_direction_sequence" in names


class TestStorageRequestModel:
    """Tests for the StorageRequest model."""

    def test_attributes(self) -> None:
        company_id = uuid.uuid4()
        request = StorageRequest(
            company_id=company_id,
            reference_id="REF-1001",
            required_quantity=40,
            assigned_location_ids=[],
        )

        assert request.company_id == company_id
        assert request.reference_id == "REF-1001"
        assert request.assigned_location_ids == []

    def test_company_status_index(self) -> None:
        names = {index.name for index in StorageRequest.__table__.indexes}

        assert "ix_storage_requests_company_status" in names
