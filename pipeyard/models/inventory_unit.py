"""InventoryUnit model for materialized pipe in storage."""

import uuid
from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from pipeyard.database import Base


class InventoryStatus(str, Enum):
    """Where a unit of inventory is in its life."""

    PENDING = "pending"
    IN_STORAGE = "in_storage"
    PICKED_UP = "picked_up"


class InventoryUnit(Base):
    """One stored batch of joints created by an inbound load completion.

    Attributes:
        id: Unique identifier (UUID)
        company_id: Owning customer company
        request_id: Storage request the pipe belongs to
        location_id: Rack the pipe sits on
        origin_load_id: Inbound load that delivered it
        disposal_load_id: Outbound load that removed it (if picked up)
        quantity: Number of joints in the batch
        length_m: Average joint length in metres
        reference: Serial or heat number from the manifest
        grade: Pipe grade from the manifest
        status: 'pending', 'in_storage' or 'picked_up'
    """

    __tablename__ = "inventory_units"
    __table_args__ = (
        Index("ix_inventory_units_location_status", "location_id", "status"),
        Index("ix_inventory_units_company_status", "company_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    company_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False)
    request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("storage_requests.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    location_id: Mapped[str] = mapped_column(
        String(50),
        ForeignKey("racks.id", ondelete="RESTRICT"),
        nullable=False,
    )
    origin_load_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("trucking_loads.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    disposal_load_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("trucking_loads.id", ondelete="SET NULL"),
        nullable=True,
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    length_m: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    grade: Mapped[str | None] = mapped_column(String(20), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=InventoryStatus.IN_STORAGE.value,
    )
    stored_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    picked_up_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )

    @property
    def linear_m(self) -> float:
        return round(self.quantity * self.length_m, 2)

    def __repr__(self) -> str:
        return (
            f"<InventoryUnit(location_id={self.location_id!r}, "
            f"quantity={self.quantity!r}, status={self.status!r})>"
        )
