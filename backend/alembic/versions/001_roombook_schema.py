# backend/alembic/versions/001_roombook_schema.py
"""Rooms, bookings, credits, credit purchases, coupons, payments, webhooks, settings, audit

Revision ID: 001_roombook_schema
Revises:
Create Date: 2025-01-06 00:00:00.000000

Money columns are integer cents. On PostgreSQL the ``bookings_no_overlap``
exclusion constraint rejects two active bookings whose intervals overlap
on the same room, and a partial unique index allows one active payment per
booking.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_roombook_schema"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ACTIVE_PAYMENT_PREDICATE = "status IN ('PENDING', 'APPROVED', 'IN_PROCESS')"


def _json() -> sa.types.TypeEngine:
    return postgresql.JSONB(astext_type=sa.Text()).with_variant(sa.JSON(), "sqlite")


def _timestamps() -> list:
    return [
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade() -> None:
    is_postgres = op.get_bind().dialect.name == "postgresql"

    op.create_table(
        "rooms",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("slug", sa.String(80), nullable=False, unique=True),
        sa.Column("tier", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("hourly_rate_cents", sa.Integer(), nullable=False),
        sa.Column("saturday_hourly_rate_cents", sa.Integer(), nullable=True),
        sa.Column("shift_rate_cents", sa.Integer(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
        sa.CheckConstraint("hourly_rate_cents > 0", name="ck_rooms_hourly_rate_positive"),
        sa.CheckConstraint("tier >= 1", name="ck_rooms_tier_positive"),
    )

    op.create_table(
        "bookings",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("room_id", sa.String(26), sa.ForeignKey("rooms.id"), nullable=False),
        sa.Column("user_id", sa.String(26), nullable=False),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column(
            "financial_status", sa.String(20), nullable=False, server_default="PENDING_PAYMENT"
        ),
        sa.Column("gross_amount", sa.Integer(), nullable=False),
        sa.Column("discount_amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("net_amount", sa.Integer(), nullable=False),
        sa.Column("credits_used", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("amount_to_pay", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("amount_paid", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("refunded_amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("payment_method", sa.String(10), nullable=True),
        sa.Column("credit_ids", _json(), nullable=True),
        sa.Column("credit_allocations", _json(), nullable=True),
        sa.Column("coupon_code", sa.String(50), nullable=True),
        sa.Column("coupon_snapshot", _json(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancel_reason", sa.String(50), nullable=True),
        sa.Column("cancel_source", sa.String(20), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("end_time > start_time", name="ck_bookings_interval"),
        sa.CheckConstraint(
            "net_amount = gross_amount - discount_amount", name="ck_bookings_net_amount"
        ),
        sa.CheckConstraint(
            "gross_amount >= 0 AND discount_amount >= 0 AND credits_used >= 0 "
            "AND amount_to_pay >= 0 AND amount_paid >= 0",
            name="ck_bookings_amounts_non_negative",
        ),
    )
    op.create_index("ix_bookings_user_id", "bookings", ["user_id"])
    op.create_index("ix_bookings_status", "bookings", ["status"])
    op.create_index("ix_bookings_room_start", "bookings", ["room_id", "start_time"])
    op.create_index("ix_bookings_status_expires", "bookings", ["status", "expires_at"])
    if is_postgres:
        op.execute("CREATE EXTENSION IF NOT EXISTS btree_gist")
        op.execute(
            "ALTER TABLE bookings ADD CONSTRAINT bookings_no_overlap "
            "EXCLUDE USING gist (room_id WITH =, tstzrange(start_time, end_time, '[)') WITH &&) "
            "WHERE (status IN ('PENDING', 'CONFIRMED'))"
        )

    op.create_table(
        "credits",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("user_id", sa.String(26), nullable=False),
        sa.Column("room_id", sa.String(26), sa.ForeignKey("rooms.id"), nullable=True),
        sa.Column("tier", sa.Integer(), nullable=True),
        sa.Column("usage_type", sa.String(20), nullable=True),
        sa.Column("type", sa.String(20), nullable=False, server_default="MANUAL"),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("remaining_amount", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="CONFIRMED"),
        sa.Column("source", sa.String(30), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("used_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint(
            "remaining_amount >= 0 AND remaining_amount <= amount",
            name="ck_credits_remaining_bounds",
        ),
        sa.CheckConstraint("amount > 0", name="ck_credits_amount_positive"),
    )
    op.create_index("ix_credits_user_id", "credits", ["user_id"])
    op.create_index(
        "ix_credits_user_status_expires", "credits", ["user_id", "status", "expires_at"]
    )

    op.create_table(
        "credit_purchases",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("user_id", sa.String(26), nullable=False),
        sa.Column("room_id", sa.String(26), sa.ForeignKey("rooms.id"), nullable=False),
        sa.Column("usage_type", sa.String(20), nullable=False),
        sa.Column("quantity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("credit_amount", sa.Integer(), nullable=False),
        sa.Column("gross_amount", sa.Integer(), nullable=False),
        sa.Column("discount_amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("net_amount", sa.Integer(), nullable=False),
        sa.Column("refunded_amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("payment_method", sa.String(10), nullable=False),
        sa.Column("coupon_code", sa.String(50), nullable=True),
        sa.Column("coupon_snapshot", _json(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("validity_days", sa.Integer(), nullable=False, server_default="365"),
        sa.Column("credit_id", sa.String(26), sa.ForeignKey("credits.id"), nullable=True),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.CheckConstraint("credit_amount > 0", name="ck_credit_purchases_credit_positive"),
        sa.CheckConstraint("net_amount >= 0", name="ck_credit_purchases_net_non_negative"),
    )
    op.create_index("ix_credit_purchases_id", "credit_purchases", ["id"])
    op.create_index("ix_credit_purchases_user_id", "credit_purchases", ["user_id"])
    op.create_index("ix_credit_purchases_status", "credit_purchases", ["status"])

    op.create_table(
        "coupons",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("code", sa.String(50), nullable=False, unique=True),
        sa.Column("discount_type", sa.String(20), nullable=False),
        sa.Column("value", sa.Integer(), nullable=False),
        sa.Column("description", sa.String(255), nullable=False, server_default=""),
        sa.Column("single_use_per_user", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_dev_coupon", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("valid_from", sa.DateTime(timezone=True), nullable=True),
        sa.Column("valid_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("min_amount_cents", sa.Integer(), nullable=True),
        sa.Column("max_uses", sa.Integer(), nullable=True),
        sa.Column("current_uses", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
    )

    op.create_table(
        "coupon_usages",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("user_id", sa.String(26), nullable=False),
        sa.Column("coupon_code", sa.String(50), nullable=False),
        sa.Column(
            "coupon_id",
            sa.String(26),
            sa.ForeignKey("coupons.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("context", sa.String(20), nullable=False),
        sa.Column("booking_id", sa.String(26), nullable=True),
        sa.Column("purchase_id", sa.String(26), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="USED"),
        sa.Column("restored_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.UniqueConstraint(
            "user_id", "coupon_code", "context", name="uq_coupon_usages_user_code_context"
        ),
    )
    op.create_index("ix_coupon_usages_code", "coupon_usages", ["coupon_code"])
    op.create_index("ix_coupon_usages_booking_id", "coupon_usages", ["booking_id"])
    op.create_index("ix_coupon_usages_purchase_id", "coupon_usages", ["purchase_id"])

    op.create_table(
        "payments",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("booking_id", sa.String(26), nullable=True),
        sa.Column("purchase_id", sa.String(26), nullable=True),
        sa.Column("user_id", sa.String(26), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("method", sa.String(10), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="PENDING"),
        sa.Column("idempotency_key", sa.String(120), nullable=False),
        sa.Column("external_id", sa.String(100), nullable=True),
        sa.Column("external_url", sa.Text(), nullable=True),
        sa.Column("pix_payload", sa.Text(), nullable=True),
        sa.Column("refunded_amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("paid_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("idempotency_key", name="uq_payments_idempotency_key"),
    )
    op.create_index("ix_payments_booking_id", "payments", ["booking_id"])
    op.create_index("ix_payments_purchase_id", "payments", ["purchase_id"])
    op.create_index("ix_payments_user_id", "payments", ["user_id"])
    op.create_index("ix_payments_external_id", "payments", ["external_id"])
    op.create_index(
        "uq_payments_active_booking",
        "payments",
        ["booking_id"],
        unique=True,
        postgresql_where=sa.text(ACTIVE_PAYMENT_PREDICATE),
        sqlite_where=sa.text(ACTIVE_PAYMENT_PREDICATE),
    )

    op.create_table(
        "webhook_events",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("source", sa.String(50), nullable=False),
        sa.Column("event_type", sa.String(100), nullable=False),
        sa.Column("event_id", sa.String(255), nullable=False),
        sa.Column("payload", _json(), nullable=False),
        sa.Column("status", sa.String(30), nullable=False, server_default="RECEIVED"),
        sa.Column("processing_error", sa.Text(), nullable=True),
        sa.Column("processing_duration_ms", sa.Integer(), nullable=True),
        sa.Column("related_entity_type", sa.String(50), nullable=True),
        sa.Column("related_entity_id", sa.String(26), nullable=True),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "received_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("source", "event_id", name="uq_webhook_events_source_event_id"),
    )
    op.create_index("ix_webhook_events_status", "webhook_events", ["status"])
    op.create_index("ix_webhook_events_received_at", "webhook_events", ["received_at"])
    op.create_index(
        "ix_webhook_events_related_entity",
        "webhook_events",
        ["related_entity_type", "related_entity_id"],
    )

    op.create_table(
        "settings",
        sa.Column("key", sa.String(80), primary_key=True),
        sa.Column("value", sa.Text(), nullable=False),
        sa.Column("updated_by", sa.String(26), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    )

    op.create_table(
        "audit_events",
        sa.Column("id", sa.String(26), primary_key=True),
        sa.Column("action", sa.String(50), nullable=False),
        sa.Column("actor_id", sa.String(64), nullable=True),
        sa.Column("target_type", sa.String(30), nullable=False, server_default="booking"),
        sa.Column("target_id", sa.String(64), nullable=True),
        sa.Column("request_id", sa.String(64), nullable=True),
        sa.Column("metadata", _json(), nullable=True),
        sa.Column(
            "occurred_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
    )
    op.create_index("ix_audit_events_target", "audit_events", ["target_type", "target_id"])
    op.create_index("ix_audit_events_action", "audit_events", ["action"])


def downgrade() -> None:
    for table in (
        "audit_events",
        "settings",
        "webhook_events",
        "payments",
        "coupon_usages",
        "credit_purchases",
        "coupons",
        "credits",
        "bookings",
        "rooms",
    ):
        op.drop_table(table)
