"""StorageLocation model for rack capacity tracking."""

from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import CheckConstraint, DateTime, Float, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from pipeyard.database import Base


class AllocationMode(str, Enum):
    """How a rack hands out its capacity."""

    LINEAR_CAPACITY = "linear_capacity"
    SLOT = "slot"


class StorageLocation(Base):
    """A physical rack (or open-yard slot) that stores pipe joints.

    Occupancy columns are owned by the capacity ledger; nothing else writes
    them. The CHECK constraints mirror the ledger's own guards so a stray
    UPDATE can never commit an overbooked rack.

    Attributes:
        id: Rack code (e.g., 'A-A1-5')
        area: Yard area the rack belongs to (e.g., 'A-A1')
        name: Human-readable rack name
        capacity: Maximum number of joints
        occupied_count: Joints currently committed to the rack
        capacity_linear: Maximum linear measure in metres
        occupied_linear: Metres currently committed to the rack
        allocation_mode: 'linear_capacity' or single-occupant 'slot'
        created_at: Timestamp when the record was created
        updated_at: Timestamp of the last occupancy change
    """

    __tablename__ = "racks"
    __table_args__ = (
        CheckConstraint(
            "occupied_count >= 0 AND occupied_count <= capacity",
            name="ck_racks_occupied_count_within_capacity",
        ),
        CheckConstraint(
            "occupied_linear >= 0 AND occupied_linear <= capacity_linear",
            name="ck_racks_occupied_linear_within_capacity",
        ),
    )

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    area: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    occupied_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    capacity_linear: Mapped[float] = mapped_column(Float, nullable=False)
    occupied_linear: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    allocation_mode: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=AllocationMode.LINEAR_CAPACITY.value,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    @property
    def available_count(self) -> int:
        if self.allocation_mode == AllocationMode.SLOT.value and self.occupied_count > 0:
            return 0
        return self.capacity - self.occupied_count

    @property
    def available_linear(self) -> float:
        if self.allocation_mode == AllocationMode.SLOT.value and self.occupied_count > 0:
            return 0.0
        return round(self.capacity_linear - self.occupied_linear, 2)

    def __repr__(self) -> str:
        return (
            f"<StorageLocation(id={self.id!r}, "
            f"occupied={self.occupied_count}/{self.capacity})>"
        )
