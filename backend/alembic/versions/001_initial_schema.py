"""Initial schema: equipment, bookings, group bookings and participants.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""
from typing import Sequence, Union
from alembic import op
import sqlalchemy as sa

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    ]


def upgrade() -> None:
    # Equipment table
    op.create_table(
        "equipment",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("price_per_day", sa.BigInteger(), nullable=False),
        sa.Column("is_available", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        # Calendar version: bumped by every write that makes a reservation hold the calendar
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        *_timestamps(),
        sa.CheckConstraint("price_per_day >= 0", name="check_equipment_price_non_negative"),
    )
    op.create_index("ix_equipment_id", "equipment", ["id"])
    op.create_index("ix_equipment_owner_id", "equipment", ["owner_id"])

    # Bookings table
    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("equipment_id", sa.Integer(), sa.ForeignKey("equipment.id"), nullable=False),
        sa.Column("farmer_id", sa.Integer(), nullable=False),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("total_days", sa.Integer(), nullable=False),
        sa.Column("price_per_day", sa.BigInteger(), nullable=False),
        sa.Column("total_price", sa.BigInteger(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column("payment_status", sa.String(20), nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column("payment_reference", sa.String(100), nullable=True),
        sa.Column("amount_paid", sa.BigInteger(), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("payment_reference", name="uq_bookings_payment_reference"),
        sa.CheckConstraint("end_date > start_date", name="check_booking_interval"),
        sa.CheckConstraint("total_price >= 0", name="check_booking_total_non_negative"),
        sa.CheckConstraint(
            "status IN ('PENDING', 'CONFIRMED', 'ACTIVE', 'COMPLETED', 'CANCELLED')",
            name="check_booking_status",
        ),
        sa.CheckConstraint(
            "payment_status IN ('PENDING', 'PAID', 'REFUNDED')",
            name="check_booking_payment_status",
        ),
    )
    op.create_index("ix_bookings_id", "bookings", ["id"])
    op.create_index("ix_bookings_equipment_id", "bookings", ["equipment_id"])
    op.create_index("ix_bookings_farmer_id", "bookings", ["farmer_id"])
    # Conflict checks filter by equipment and then by the date window
    op.create_index("ix_bookings_equipment_window", "bookings", ["equipment_id", "start_date", "end_date"])

    # Group bookings table
    op.create_table(
        "group_bookings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("equipment_id", sa.Integer(), sa.ForeignKey("equipment.id"), nullable=False),
        sa.Column("initiator_id", sa.Integer(), nullable=False),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=False),
        sa.Column("total_days", sa.Integer(), nullable=False),
        sa.Column("price_per_day", sa.BigInteger(), nullable=False),
        sa.Column("total_price", sa.BigInteger(), nullable=False),
        sa.Column("min_participants", sa.Integer(), nullable=False),
        sa.Column("max_participants", sa.Integer(), nullable=False),
        sa.Column("participant_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_public", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default=sa.text("'OPEN'")),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("end_date > start_date", name="check_group_interval"),
        sa.CheckConstraint("min_participants >= 2", name="check_group_min_participants"),
        sa.CheckConstraint("max_participants >= min_participants", name="check_group_max_gte_min"),
        # Last line of defence against over-filling under concurrent joins
        sa.CheckConstraint(
            "participant_count >= 0 AND participant_count <= max_participants",
            name="check_group_participant_count",
        ),
        sa.CheckConstraint(
            "status IN ('OPEN', 'FILLED', 'CONFIRMED', 'ACTIVE', 'COMPLETED', 'CANCELLED')",
            name="check_group_status",
        ),
    )
    op.create_index("ix_group_bookings_id", "group_bookings", ["id"])
    op.create_index("ix_group_bookings_equipment_id", "group_bookings", ["equipment_id"])
    op.create_index("ix_group_bookings_initiator_id", "group_bookings", ["initiator_id"])
    op.create_index(
        "ix_group_bookings_equipment_window", "group_bookings", ["equipment_id", "start_date", "end_date"]
    )

    # Group participants table
    op.create_table(
        "group_participants",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "group_booking_id",
            sa.Integer(),
            sa.ForeignKey("group_bookings.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("farmer_id", sa.Integer(), nullable=False),
        sa.Column("share_amount", sa.BigInteger(), nullable=False, server_default=sa.text("0")),
        sa.Column("payment_status", sa.String(20), nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column("payment_reference", sa.String(100), nullable=True),
        sa.Column("amount_paid", sa.BigInteger(), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("joined_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        *_timestamps(),
        sa.UniqueConstraint("group_booking_id", "farmer_id", name="uq_group_participant"),
        sa.UniqueConstraint("payment_reference", name="uq_group_participants_payment_reference"),
        sa.CheckConstraint("share_amount >= 0", name="check_share_non_negative"),
        sa.CheckConstraint(
            "payment_status IN ('PENDING', 'PAID', 'REFUNDED')",
            name="check_participant_payment_status",
        ),
    )
    op.create_index("ix_group_participants_id", "group_participants", ["id"])
    op.create_index("ix_group_participants_group_booking_id", "group_participants", ["group_booking_id"])
    op.create_index("ix_group_participants_farmer_id", "group_participants", ["farmer_id"])


def downgrade() -> None:
    op.drop_table("group_participants")
    op.drop_table("group_bookings")
    op.drop_table("bookings")
    op.drop_table("equipment")
