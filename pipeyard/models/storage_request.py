"""StorageRequest model for customer storage asks."""

import uuid
from datetime import UTC, datetime
from enum import Enum

from sqlalchemy import JSON, DateTime, Float, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from pipeyard.database import Base


class RequestStatus(str, Enum):
    """Lifecycle status of a storage request."""

    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    COMPLETED = "completed"


TERMINAL_REQUEST_STATUSES = frozenset({RequestStatus.REJECTED, RequestStatus.COMPLETED})


class StorageRequest(Base):
    """A customer's request to store a quantity of pipe joints.

    Only the request approval service mutates these rows. The assigned
    location list is populated on approval and kept through completion; it is
    empty in every other status.

    Attributes:
        id: Unique identifier (UUID)
        company_id: Owning customer company
        reference_id: Customer-facing project reference
        status: Current request status
        required_quantity: Joints the customer asked to store
        avg_joint_length_m: Average joint length used for linear accounting
        assigned_location_ids: Rack ids reserved on approval
        rejection_reason: Operator reason, set only on rejection
        operator_notes: Free-form notes recorded at approval
        delivered_quantity: Joints delivered by completed inbound loads
        approved_by: Operator who approved the request
    """

    __tablename__ = "storage_requests"
    __table_args__ = (
        Index("ix_storage_requests_company_status", "company_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    company_id: Mapped[uuid.UUID] = mapped_column(Uuid, nullable=False, index=True)
    reference_id: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=RequestStatus.DRAFT.value,
        index=True,
    )
    required_quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    avg_joint_length_m: Mapped[float | None] = mapped_column(Float, nullable=True)
    assigned_location_ids: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    operator_notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    delivered_quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    approved_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Per-transition timestamps
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

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
            f"<StorageRequest(reference_id={self.reference_id!r}, "
            f"status={self.status!r})>"
        )
