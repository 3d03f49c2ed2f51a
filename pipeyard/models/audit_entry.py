"""SQLAlchemy model for the operator audit trail.

Every state-changing engine operation appends one row here inside the same
transaction as the change it describes.
"""

from datetime import UTC, datetime
from uuid import uuid4

from sqlalchemy import JSON, DateTime, Index, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from pipeyard.database import Base


class AuditEntry(Base):
    """Immutable record of an operator action.

    Attributes:
        id: Unique audit entry UUID
        actor: Operator id that performed the action
        action: Action name (e.g., "APPROVE_REQUEST")
        entity_type: Kind of record affected ("storage_request", "load", ...)
        entity_id: Id of the affected record
        timestamp: When the action was taken
        details: JSON blob with structured context (quantities, racks, states)
    """

    __tablename__ = "audit_entries"

    id: Mapped[str] = mapped_column(
        Uuid(as_uuid=False),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    actor: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(100), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        index=True,
    )
    details: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    __table_args__ = (
        # Per-entity trail queries
        Index("ix_audit_entries_entity", "entity_type", "entity_id", "timestamp"),
    )

    def __repr__(self) -> str:
        """Return string representation."""
        return (
            f"<AuditEntry(actor={self.actor}, action={self.action}, "
            f"entity={self.entity_type}:{self.entity_id})>"
        )
