"""Create workflow engine tables.

Revision ID: 7c1e4a9b2d30
Revises:
Create Date: 2026-10-19

"""
from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "7c1e4a9b2d30"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create racks, requests, reservations, loads, inventory, audit and notification tables."""
    op.create_table(
        "racks",
        sa.Column("id", sa.String(50), primary_key=True),
        sa.Column("area", sa.String(50), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        # Joint capacity
        sa.Column("capacity", sa.Integer, nullable=False),
        sa.Column("occupied_count", sa.Integer, nullable=False, server_default="0"),
        # Linear capacity in metres
        sa.Column("capacity_linear", sa.Float, nullable=False),
        sa.Column("occupied_linear", sa.Float, nullable=False, server_default="0"),
        sa.Column(
            "allocation_mode",
            sa.String(20),
            nullable=False,
            server_default="linear_capacity",
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(
            "occupied_count >= 0 AND occupied_count <= capacity",
            name="ck_racks_occupied_count_within_capacity",
        ),
        sa.CheckConstraint(
            "occupied_linear >= 0 AND occupied_linear <= capacity_linear",
            name="ck_racks_occupied_linear_within_capacity",
        ),
    )
    op.create_index("ix_racks_area", "racks", ["area"])

    op.create_table(
        "storage_requests",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("company_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("reference_id", sa.String(100), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="draft"),
        sa.Column("required_quantity", sa.Integer, nullable=False),
        sa.Column("avg_joint_length_m", sa.Float, nullable=True),
        sa.Column("assigned_location_ids", postgresql.JSON, nullable=False),
        sa.Column("rejection_reason", sa.Text, nullable=True),
        sa.Column("operator_notes", sa.Text, nullable=True),
        sa.Column("delivered_quantity", sa.Integer, nullable=False, server_default="0"),
        sa.Column("approved_by", sa.String(255), nullable=True),
        # Per-transition timestamps
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_storage_requests_company_id", "storage_requests", ["company_id"])
    op.create_index("ix_storage_requests_status", "storage_requests", ["status"])
    op.create_index(
        "ix_storage_requests_company_status",
        "storage_requests",
        ["company_id", "status"],
    )

    op.create_table(
        "capacity_reservations",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "request_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("storage_requests.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "location_id",
            sa.String(50),
            sa.ForeignKey("racks.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("reserved_count", sa.Integer, nullable=False),
        sa.Column("reserved_linear", sa.Float, nullable=False, server_default="0"),
        sa.Column("consumed_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("consumed_linear", sa.Float, nullable=False, server_default="0"),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint(
            "request_id",
            "location_id",
            name="uq_capacity_reservations_request_location",
        ),
    )
    op.create_index(
        "ix_capacity_reservations_request_id",
        "capacity_reservations",
        ["request_id"],
    )
    op.create_index(
        "ix_capacity_reservations_location_id",
        "capacity_reservations",
        ["location_id"],
    )

    op.create_table(
        "trucking_loads",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "request_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("storage_requests.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("direction", sa.String(10), nullable=False),
        sa.Column("sequence_number", sa.Integer, nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="new"),
        sa.Column("planned_quantity", sa.Integer, nullable=False),
        sa.Column("completed_quantity", sa.Integer, nullable=True),
        sa.Column("rejection_reason", sa.Text, nullable=True),
        sa.Column("correction_issues", postgresql.JSON, nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("departed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint(
            "request_id",
            "direction",
            "sequence_number",
            name="uq_trucking_loads_request_direction_sequence",
        ),
    )
    op.create_index("ix_trucking_loads_status", "trucking_loads", ["status"])
    op.create_index(
        "ix_trucking_loads_request_direction_status",
        "trucking_loads",
        ["request_id", "direction", "status"],
    )

    op.create_table(
        "inventory_units",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("company_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column(
            "request_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("storage_requests.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "location_id",
            sa.String(50),
            sa.ForeignKey("racks.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "origin_load_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("trucking_loads.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "disposal_load_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("trucking_loads.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("quantity", sa.Integer, nullable=False),
        sa.Column("length_m", sa.Float, nullable=False, server_default="0"),
        # Manifest identity
        sa.Column("reference", sa.String(100), nullable=True),
        sa.Column("grade", sa.String(20), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="in_storage"),
        sa.Column("stored_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("picked_up_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_inventory_units_request_id", "inventory_units", ["request_id"])
    op.create_index("ix_inventory_units_origin_load_id", "inventory_units", ["origin_load_id"])
    op.create_index(
        "ix_inventory_units_location_status",
        "inventory_units",
        ["location_id", "status"],
    )
    op.create_index(
        "ix_inventory_units_company_status",
        "inventory_units",
        ["company_id", "status"],
    )

    op.create_table(
        "audit_entries",
        sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True),
        sa.Column("actor", sa.String(255), nullable=False),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("entity_type", sa.String(50), nullable=False),
        sa.Column("entity_id", sa.String(100), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("details", postgresql.JSON, nullable=True),
    )
    op.create_index("ix_audit_entries_actor", "audit_entries", ["actor"])
    op.create_index("ix_audit_entries_action", "audit_entries", ["action"])
    op.create_index("ix_audit_entries_timestamp", "audit_entries", ["timestamp"])
    op.create_index(
        "ix_audit_entries_entity",
        "audit_entries",
        ["entity_type", "entity_id", "timestamp"],
    )

    op.create_table(
        "notification_intents",
        sa.Column("id", postgresql.UUID(as_uuid=False), primary_key=True),
        sa.Column("type", sa.String(100), nullable=False),
        sa.Column("payload", postgresql.JSON, nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        # Delivery bookkeeping (written by the delivery worker)
        sa.Column("delivery_attempts", sa.Integer, nullable=False, server_default="0"),
        sa.Column("delivered", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_error", sa.Text, nullable=True),
    )
    op.create_index("ix_notification_intents_type", "notification_intents", ["type"])
    op.create_index(
        "ix_notification_intents_pending",
        "notification_intents",
        ["delivered", "created_at"],
    )


def downgrade() -> None:
    """Drop workflow engine tables."""
    op.drop_table("notification_intents")
    op.drop_table("audit_entries")
    op.drop_table("inventory_units")
    op.drop_table("trucking_loads")
    op.drop_table("capacity_reservations")
    op.drop_table("storage_requests")
    op.drop_table("racks")
