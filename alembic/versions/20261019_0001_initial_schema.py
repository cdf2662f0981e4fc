"""Initial schema

Revision ID: 20261019_0001
Revises:
Create Date: 2026-10-19 09:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "20261019_0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


role_enum = sa.Enum("learner", "mentor", "admin", name="role_enum", native_enum=False)
booking_status_enum = sa.Enum(
    "pending",
    "confirmed",
    "completed",
    "cancelled",
    "expired",
    name="booking_status_enum",
    native_enum=False,
)
payment_status_enum = sa.Enum(
    "unpaid",
    "pending",
    "paid",
    "failed",
    "refunded",
    name="payment_status_enum",
    native_enum=False,
)
payment_event_type_enum = sa.Enum(
    "succeeded",
    "failed",
    "refunded",
    name="payment_event_type_enum",
    native_enum=False,
)
payment_event_outcome_enum = sa.Enum(
    "confirmed",
    "reconfirmed",
    "failed",
    "refunded",
    "noop",
    "ignored",
    "flagged",
    "unmatched",
    name="payment_event_outcome_enum",
    native_enum=False,
)
outbox_status_enum = sa.Enum("pending", "processed", "failed", name="outbox_status_enum", native_enum=False)


def _id_col() -> sa.Column:
    return sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False)


def _created_col() -> sa.Column:
    return sa.Column("created_at", sa.DateTime(timezone=True), nullable=False)


def _updated_col() -> sa.Column:
    return sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False)


def upgrade() -> None:
    op.create_table(
        "mentor_slots",
        _id_col(),
        _created_col(),
        _updated_col(),
        sa.Column("mentor_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("slot_date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("is_booked", sa.Boolean(), nullable=False),
        sa.CheckConstraint("end_time > start_time", name="ck_mentor_slots_end_after_start"),
    )
    op.create_index("ix_mentor_slots_mentor_id", "mentor_slots", ["mentor_id"], unique=False)
    op.create_index("ix_mentor_slots_slot_date", "mentor_slots", ["slot_date"], unique=False)
    op.create_index("ix_mentor_slots_mentor_date", "mentor_slots", ["mentor_id", "slot_date"], unique=False)

    op.create_table(
        "bookings",
        _id_col(),
        _created_col(),
        _updated_col(),
        sa.Column("slot_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("mentor_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("status", booking_status_enum, nullable=False),
        sa.Column("payment_status", payment_status_enum, nullable=False),
        sa.Column("correlation_key", sa.String(length=64), nullable=False),
        sa.Column("payment_expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ends_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("meeting_room", sa.String(length=128), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("mentor_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("learner_completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.String(length=512), nullable=True),
        sa.Column("cancelled_by", role_enum, nullable=True),
        sa.Column("refund_requested_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("needs_reconciliation", sa.Boolean(), nullable=False),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["slot_id"], ["mentor_slots.id"], name="fk_bookings_slot_id_mentor_slots", ondelete="RESTRICT"),
        sa.UniqueConstraint("correlation_key", name="uq_bookings_correlation_key"),
    )
    op.create_index("ix_bookings_slot_id", "bookings", ["slot_id"], unique=False)
    op.create_index("ix_bookings_mentor_id", "bookings", ["mentor_id"], unique=False)
    op.create_index("ix_bookings_user_id", "bookings", ["user_id"], unique=False)
    op.create_index("ix_bookings_status", "bookings", ["status"], unique=False)
    op.create_index(
        "ix_bookings_status_payment_expires_at",
        "bookings",
        ["status", "payment_expires_at"],
        unique=False,
    )
    op.create_index(
        "uq_bookings_live_slot",
        "bookings",
        ["slot_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('pending', 'confirmed')"),
    )

    op.create_table(
        "payment_events",
        _id_col(),
        _created_col(),
        _updated_col(),
        sa.Column("event_id", sa.String(length=128), nullable=False),
        sa.Column("correlation_key", sa.String(length=64), nullable=False),
        sa.Column("event_type", payment_event_type_enum, nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("currency", sa.String(length=3), nullable=True),
        sa.Column("provider_timestamp", sa.DateTime(timezone=True), nullable=True),
        sa.Column("booking_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("outcome", payment_event_outcome_enum, nullable=False),
        sa.Column("detail", sa.Text(), nullable=True),
        sa.Column("payload", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["booking_id"], ["bookings.id"], name="fk_payment_events_booking_id_bookings", ondelete="SET NULL"),
        sa.UniqueConstraint("event_id", name="uq_payment_events_event_id"),
    )
    op.create_index("ix_payment_events_correlation_key", "payment_events", ["correlation_key"], unique=False)
    op.create_index("ix_payment_events_booking_id", "payment_events", ["booking_id"], unique=False)
    op.create_index("ix_payment_events_outcome", "payment_events", ["outcome"], unique=False)

    op.create_table(
        "audit_logs",
        _id_col(),
        _created_col(),
        _updated_col(),
        sa.Column("actor_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("action", sa.String(length=128), nullable=False),
        sa.Column("entity_type", sa.String(length=128), nullable=False),
        sa.Column("entity_id", sa.String(length=128), nullable=True),
        sa.Column("payload", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
    )
    op.create_index("ix_audit_logs_actor_id", "audit_logs", ["actor_id"], unique=False)
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"], unique=False)

    op.create_table(
        "outbox_events",
        _id_col(),
        _created_col(),
        _updated_col(),
        sa.Column("aggregate_type", sa.String(length=128), nullable=False),
        sa.Column("aggregate_id", sa.String(length=128), nullable=False),
        sa.Column("event_type", sa.String(length=128), nullable=False),
        sa.Column("payload", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("status", outbox_status_enum, nullable=False),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("retries", sa.Integer(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=True),
    )
    op.create_index("ix_outbox_events_aggregate_type", "outbox_events", ["aggregate_type"], unique=False)
    op.create_index("ix_outbox_events_aggregate_id", "outbox_events", ["aggregate_id"], unique=False)
    op.create_index("ix_outbox_events_event_type", "outbox_events", ["event_type"], unique=False)
    op.create_index("ix_outbox_events_status", "outbox_events", ["status"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_outbox_events_status", table_name="outbox_events")
    op.drop_index("ix_outbox_events_event_type", table_name="outbox_events")
    op.drop_index("ix_outbox_events_aggregate_id", table_name="outbox_events")
    op.drop_index("ix_outbox_events_aggregate_type", table_name="outbox_events")
    op.drop_table("outbox_events")

    op.drop_index("ix_audit_logs_action", table_name="audit_logs")
    op.drop_index("ix_audit_logs_actor_id", table_name="audit_logs")
    op.drop_table("audit_logs")

    op.drop_index("ix_payment_events_outcome", table_name="payment_events")
    op.drop_index("ix_payment_events_booking_id", table_name="payment_events")
    op.drop_index("ix_payment_events_correlation_key", table_name="payment_events")
    op.drop_table("payment_events")

    op.drop_index("uq_bookings_live_slot", table_name="bookings")
    op.drop_index("ix_bookings_status_payment_expires_at", table_name="bookings")
    op.drop_index("ix_bookings_status", table_name="bookings")
    op.drop_index("ix_bookings_user_id", table_name="bookings")
    op.drop_index("ix_bookings_mentor_id", table_name="bookings")
    op.drop_index("ix_bookings_slot_id", table_name="bookings")
    op.drop_table("bookings")

    op.drop_index("ix_mentor_slots_mentor_date", table_name="mentor_slots")
    op.drop_index("ix_mentor_slots_slot_date", table_name="mentor_slots")
    op.drop_index("ix_mentor_slots_mentor_id", table_name="mentor_slots")
    op.drop_table("mentor_slots")
