"""initial seat inventory, holds, bookings and payment attempts

Revision ID: 0001_initial_schema
Revises:
Create Date: 2026-10-16 09:00:00

"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "screening_seats",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("screening_id", sa.String(64), nullable=False),
        sa.Column("seat_id", sa.String(16), nullable=False),
        sa.Column("row_label", sa.String(8), nullable=False),
        sa.Column("seat_number", sa.Integer(), nullable=False),
        sa.Column("category", sa.String(20), nullable=False),
        sa.Column("unit_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("hold_id", sa.String(36), nullable=True),
        sa.Column("holder_token", sa.String(128), nullable=True),
        sa.Column("expires_at", sa.DateTime(), nullable=True),
        sa.Column("booking_id", sa.String(36), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
        sa.UniqueConstraint("screening_id", "seat_id", name="uq_screening_seat"),
    )
    op.create_index("ix_screening_seats_id", "screening_seats", ["id"])
    op.create_index("ix_screening_seats_screening_id", "screening_seats", ["screening_id"])
    op.create_index("ix_screening_seats_hold_id", "screening_seats", ["hold_id"])
    op.create_index("ix_screening_seats_booking_id", "screening_seats", ["booking_id"])
    op.create_index("ix_screening_seats_status", "screening_seats", ["screening_id", "status"])

    op.create_table(
        "seat_holds",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("screening_id", sa.String(64), nullable=False),
        sa.Column("seat_id", sa.String(16), nullable=False),
        sa.Column("holder_token", sa.String(128), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("closed_at", sa.DateTime(), nullable=True),
        sa.Column("booking_id", sa.String(36), nullable=True),
    )
    op.create_index("ix_seat_holds_status_expiry", "seat_holds", ["status", "expires_at"])
    op.create_index("ix_seat_holds_holder", "seat_holds", ["screening_id", "holder_token", "status"])

    op.create_table(
        "bookings",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("user_id", sa.String(64), nullable=False),
        sa.Column("screening_id", sa.String(64), nullable=False),
        sa.Column("holder_token", sa.String(128), nullable=False),
        sa.Column("total_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(10), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("payment_reference", sa.String(100), nullable=True),
        sa.Column("draft_expires_at", sa.DateTime(), nullable=False),
        sa.Column("payment_started_at", sa.DateTime(), nullable=True),
        sa.Column("finalized_at", sa.DateTime(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_bookings_user_id", "bookings", ["user_id"])
    op.create_index("ix_bookings_screening_id", "bookings", ["screening_id"])
    op.create_index("ix_bookings_payment_reference", "bookings", ["payment_reference"])
    op.create_index("ix_bookings_status_started", "bookings", ["status", "payment_started_at"])
    op.create_index("ix_bookings_status_draft_expiry", "bookings", ["status", "draft_expires_at"])

    op.create_table(
        "booking_seats",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("booking_id", sa.String(36), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("screening_id", sa.String(64), nullable=False),
        sa.Column("seat_id", sa.String(16), nullable=False),
        sa.Column("row_label", sa.String(8), nullable=False),
        sa.Column("seat_number", sa.Integer(), nullable=False),
        sa.Column("category", sa.String(20), nullable=False),
        sa.Column("unit_price", sa.Numeric(10, 2), nullable=False),
    )
    op.create_index("ix_booking_seats_id", "booking_seats", ["id"])
    op.create_index("ix_booking_seats_booking_id", "booking_seats", ["booking_id"])

    op.create_table(
        "payment_attempts",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("booking_id", sa.String(36), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("gateway", sa.String(20), nullable=False),
        sa.Column("gateway_reference", sa.String(100), nullable=False),
        sa.Column("gateway_payment_id", sa.String(100), nullable=True),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(10), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("client_payload", sa.JSON(), nullable=True),
        sa.Column("meta", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_payment_attempts_booking_id", "payment_attempts", ["booking_id"])
    op.create_index("ix_payment_attempts_gateway_reference", "payment_attempts", ["gateway_reference"], unique=True)
    op.create_index("ix_payment_attempts_gateway_payment_id", "payment_attempts", ["gateway_payment_id"])


def downgrade():
    op.drop_table("payment_attempts")
    op.drop_table("booking_seats")
    op.drop_table("bookings")
    op.drop_table("seat_holds")
    op.drop_table("screening_seats")
