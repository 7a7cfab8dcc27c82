"""Initial schema: offerings, tables, schedule definitions, slots, bookings, holds, audit, waitlist, notification log."""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "offerings",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("host_id", sa.String(64), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("slug", sa.String(255), nullable=False),
        sa.Column("base_price_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(8), nullable=False, server_default="usd"),
        sa.Column("capacity_mode", sa.String(16), nullable=False, server_default="simple"),
        sa.Column("min_party_size", sa.Integer(), nullable=True),
        sa.Column("max_party_size", sa.Integer(), nullable=True),
        sa.Column("cancellation_policy", sa.String(16), nullable=False, server_default="FLEXIBLE"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("slug"),
    )
    op.create_index("ix_offerings_host_id", "offerings", ["host_id"])

    op.create_table(
        "dining_tables",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("offering_id", sa.Integer(), sa.ForeignKey("offerings.id"), nullable=False),
        sa.Column("table_number", sa.String(32), nullable=False),
        sa.Column("capacity", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_dining_tables_offering_id", "dining_tables", ["offering_id"])

    op.create_table(
        "schedule_definitions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("offering_id", sa.Integer(), sa.ForeignKey("offerings.id"), nullable=False),
        sa.Column("name", sa.String(128), nullable=True),
        sa.Column("kind", sa.String(16), nullable=False, server_default="service_period"),
        sa.Column("max_per_slot", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_generated", sa.DateTime(), nullable=True),
        sa.Column("days_of_week", sa.JSON(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=True),
        sa.Column("end_time", sa.Time(), nullable=True),
        sa.Column("last_seating", sa.Time(), nullable=True),
        sa.Column("interval_minutes", sa.Integer(), nullable=False, server_default="30"),
        sa.Column("frequency", sa.String(8), nullable=True),
        sa.Column("recurrence_interval", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("dtstart", sa.DateTime(), nullable=True),
        sa.Column("count", sa.Integer(), nullable=True),
        sa.Column("until", sa.DateTime(), nullable=True),
        sa.Column("by_weekday", sa.JSON(), nullable=False),
        sa.Column("by_month_day", sa.JSON(), nullable=False),
        sa.Column("by_month", sa.JSON(), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False, server_default="120"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_schedule_definitions_offering_id", "schedule_definitions", ["offering_id"])

    op.create_table(
        "slot_instances",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("offering_id", sa.Integer(), sa.ForeignKey("offerings.id"), nullable=False),
        sa.Column("schedule_definition_id", sa.Integer(), sa.ForeignKey("schedule_definitions.id"), nullable=True),
        sa.Column("slot_date", sa.Date(), nullable=False),
        sa.Column("start_at", sa.DateTime(), nullable=False),
        sa.Column("end_at", sa.DateTime(), nullable=False),
        sa.Column("total_capacity", sa.Integer(), nullable=False),
        sa.Column("remaining_capacity", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="AVAILABLE"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("offering_id", "start_at", name="uq_slot_instances_offering_start"),
        sa.CheckConstraint(
            "remaining_capacity >= 0 AND remaining_capacity <= total_capacity",
            name="ck_slot_instances_remaining_bounds",
        ),
    )
    op.create_index("ix_slot_instances_offering_id", "slot_instances", ["offering_id"])
    op.create_index("ix_slot_instances_slot_date", "slot_instances", ["slot_date"])

    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("booking_number", sa.String(16), nullable=False),
        sa.Column("slot_id", sa.Integer(), sa.ForeignKey("slot_instances.id"), nullable=False),
        sa.Column("offering_id", sa.Integer(), sa.ForeignKey("offerings.id"), nullable=False),
        sa.Column("guest_name", sa.String(255), nullable=False),
        sa.Column("guest_email", sa.String(255), nullable=False),
        sa.Column("guest_phone", sa.String(64), nullable=True),
        sa.Column("party_size", sa.Integer(), nullable=False),
        sa.Column("special_requests", sa.Text(), nullable=True),
        sa.Column("total_amount_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("refunded_amount_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("payment_method", sa.String(128), nullable=True),
        sa.Column("payment_intent_id", sa.String(128), nullable=True),
        sa.Column("payment_status", sa.String(16), nullable=False, server_default="PENDING"),
        sa.Column("status", sa.String(16), nullable=False, server_default="PENDING"),
        sa.Column("is_walk_in", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("confirmation_sent", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("reminder_sent", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("checked_in_at", sa.DateTime(), nullable=True),
        sa.Column("checked_out_at", sa.DateTime(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("booking_number"),
    )
    op.create_index("ix_bookings_slot_id", "bookings", ["slot_id"])
    op.create_index("ix_bookings_offering_id", "bookings", ["offering_id"])
    op.create_index("ix_bookings_guest_email", "bookings", ["guest_email"])
    op.create_index("ix_bookings_payment_intent_id", "bookings", ["payment_intent_id"])
    op.create_index("ix_bookings_created_at", "bookings", ["created_at"])

    op.create_table(
        "booking_holds",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("slot_id", sa.Integer(), sa.ForeignKey("slot_instances.id"), nullable=False),
        sa.Column("session_id", sa.String(128), nullable=False),
        sa.Column("party_size", sa.Integer(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_booking_holds_slot_id", "booking_holds", ["slot_id"])
    op.create_index("ix_booking_holds_session_id", "booking_holds", ["session_id"])
    op.create_index("ix_booking_holds_expires_at", "booking_holds", ["expires_at"])

    op.create_table(
        "booking_modifications",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("modification_type", sa.String(32), nullable=False),
        sa.Column("old_value", sa.JSON(), nullable=True),
        sa.Column("new_value", sa.JSON(), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("modified_by", sa.String(64), nullable=True),
        sa.Column("refund_amount_cents", sa.Integer(), nullable=True),
        sa.Column("refund_status", sa.String(16), nullable=True),
        sa.Column("refunded_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_booking_modifications_booking_id", "booking_modifications", ["booking_id"])

    op.create_table(
        "waitlist_entries",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("offering_id", sa.Integer(), sa.ForeignKey("offerings.id"), nullable=False),
        sa.Column("slot_id", sa.Integer(), sa.ForeignKey("slot_instances.id"), nullable=False),
        sa.Column("guest_name", sa.String(255), nullable=False),
        sa.Column("guest_email", sa.String(255), nullable=False),
        sa.Column("guest_phone", sa.String(64), nullable=True),
        sa.Column("party_size", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="ACTIVE"),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("notified_at", sa.DateTime(), nullable=True),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.Column("converted_booking_id", sa.Integer(), sa.ForeignKey("bookings.id"), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    # At most one ACTIVE entry per guest per slot.
    op.create_index(
        "uq_waitlist_entries_active_guest_slot",
        "waitlist_entries",
        ["slot_id", "guest_email"],
        unique=True,
        postgresql_where=sa.text("status = 'ACTIVE'"),
        sqlite_where=sa.text("status = 'ACTIVE'"),
    )
    op.create_index("ix_waitlist_entries_slot_status", "waitlist_entries", ["slot_id", "status"])

    op.create_table(
        "notification_log",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("to", sa.String(255), nullable=False),
        sa.Column("subject", sa.String(255), nullable=False),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("booking_id", sa.Integer(), nullable=True),
        sa.Column("waitlist_entry_id", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_notification_log_type", "notification_log", ["type"])
    op.create_index("ix_notification_log_booking_id", "notification_log", ["booking_id"])


def downgrade() -> None:
    op.drop_table("notification_log")
    op.drop_index("ix_waitlist_entries_slot_status", table_name="waitlist_entries")
    op.drop_index("uq_waitlist_entries_active_guest_slot", table_name="waitlist_entries")
    op.drop_table("waitlist_entries")
    op.drop_table("booking_modifications")
    op.drop_table("booking_holds")
    op.drop_table("bookings")
    op.drop_table("slot_instances")
    op.drop_table("schedule_definitions")
    op.drop_table("dining_tables")
    op.drop_table("offerings")
