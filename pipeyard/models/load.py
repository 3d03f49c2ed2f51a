"""Load model for trucking movements against a storage request."""

import uuid
from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from pipeyard.database import Base


class LoadStatus(str, Enum):
    """Lifecycle status of a trucking load."""

    NEW = "new"
    APPROVED = "approved"
    IN_TRANSIT = "in_transit"
    COMPLETED = "completed"
    REJECTED = "rejected"


class LoadDirection(str, Enum):
    """Whether a load delivers pipe to the yard or picks it up."""

    INBOUND = "inbound"
    OUTBOUND = "outbound"


TERMINAL_LOAD_STATUSES = frozenset({LoadStatus.COMPLETED, LoadStatus.REJECTED})
OPEN_LOAD_STATUSES = frozenset({LoadStatus.NEW, LoadStatus.APPROVED, LoadStatus.IN_TRANSIT})


class Load(Base):
    """One truck movement, inbound or outbound, for a storage request.

    Attributes:
        id: Unique identifier (UUID)
        request_id: Parent storage request
        direction: 'inbound' or 'outbound'
        sequence_number: 1-based position among the request's loads in this direction
        status: Current lifecycle status
        planned_quantity: Joints the customer declared for the load
        completed_quantity: Joints actually received or picked up (set at completion)
        rejection_reason: Operator reason, set only on rejection
        correction_issues: Issues listed by the latest correction request
        notes: Completion notes
    """

    __tablename__ = "trucking_loads"
    __table_args__ = (
        UniqueConstraint(
            "request_id",
            "direction",
            "sequence_number",
            name="uq_trucking_loads_request_direction_sequence",
        ),
        Index("ix_trucking_loads_request_direction_status", "request_id", "direction", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    request_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("storage_requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    direction: Mapped[str] = mapped_column(String(10), nullable=False)
    sequence_number: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=LoadStatus.NEW.value,
        index=True,
    )
    planned_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    completed_quantity: Mapped[int | None] = mapped_column(Integer, nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    correction_issues: Mapped[list | None] = mapped_column(JSON, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    departed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

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

    def __repr__(self) -> str:
        return (
            f"<Load(direction={self.direction!r}, "
            f"sequence_number={self.sequence_number!r}, status={self.status!r})>"
        )
