"""CapacityReservation model for per-rack approval holds."""

import uuid
from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from pipeyard.database import Base


class ReservationStatus(str, Enum):
    """Status of an approval hold on a rack."""

    ACTIVE = "active"
    CONSUMED = "consumed"
    RELEASED = "released"


class CapacityReservation(Base):
    """Capacity held on one rack for one approved storage request.

    Written once per rack when a request is approved. Inbound completions at
    the same rack draw the hold down (``consumed_*``) instead of booking the
    same joints a second time.

    Attributes:
        id: Unique identifier (UUID)
        request_id: Approved storage request holding the capacity
        location_id: Rack the capacity is held on
        reserved_count: Joints held at approval
        reserved_linear: Metres held at approval
        consumed_count: Joints already converted into stored inventory
        consumed_linear: Metres already converted into stored inventory
        status: 'active', 'consumed' or 'released'
    """

    __tablename__ = "capacity_reservations"
    __table_args__ = (
        UniqueConstraint("request_id", "location_id", name="uq_capacity_reservations_request_location"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("storage_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    location_id: Mapped[str] = mapped_column(
        String(50),
        ForeignKey("racks.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    reserved_count: Mapped[int] = mapped_column(Integer, nullable=False)
    reserved_linear: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    consumed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    consumed_linear: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ReservationStatus.ACTIVE.value,
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
    def remaining_count(self) -> int:
        if self.status != ReservationStatus.ACTIVE.value:
            return 0
        return self.reserved_count - self.consumed_count

    @property
    def remaining_linear(self) -> float:
        if self.status != ReservationStatus.ACTIVE.value:
            return 0.0
        return round(self.reserved_linear - self.consumed_linear, 2)

    def __repr__(self) -> str:
        return (
            f"<CapacityReservation(location_id={self.location_id!r}, "
            f"reserved={self.reserved_count}, consumed={self.consumed_count})>"
        )
