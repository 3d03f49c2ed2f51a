"""NotificationIntent model for the outbound notification queue."""

from datetime import UTC, datetime
from uuid import uuid4

from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from pipeyard.database import Base


class NotificationIntent(Base):
    """A notification the engine wants delivered.

    The engine only ever inserts rows. Delivery fields are written by the
    external delivery worker.

    Attributes:
        id: Unique intent UUID
        type: Notification type (e.g., "storage_request_approved")
        payload: JSON payload for the delivery worker to render
        created_at: When the intent was enqueued
        delivery_attempts: Number of delivery attempts so far
        delivered: Whether delivery succeeded
        delivered_at: When delivery succeeded
        last_error: Error from the most recent failed attempt
    """

    __tablename__ = "notification_intents"
    __table_args__ = (
        Index("ix_notification_intents_pending", "delivered", "created_at"),
    )

    id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
    )
    delivery_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    delivered: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<NotificationIntent(type={self.type!r}, delivered={self.delivered!r})>"
