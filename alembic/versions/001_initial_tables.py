"""Initial hostel ledger tables

Revision ID: 001_initial
Revises:
Create Date: 2026-10-01

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

MONEY = sa.Numeric(12, 2)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    # Hostels
    op.create_table(
        "hostels",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("address", sa.String(500), nullable=True),
        sa.Column("booking_fee", MONEY, nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )

    # Staff users (accounts are issued elsewhere)
    op.create_table(
        "users",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("full_name", sa.String(200), nullable=False),
        sa.Column("role", sa.String(50), nullable=False),
        sa.Column("hostel_id", sa.BigInteger(), sa.ForeignKey("hostels.id"), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)
    op.create_index("ix_users_role", "users", ["role"], unique=False)
    op.create_index("ix_users_hostel_id", "users", ["hostel_id"], unique=False)

    # Rooms
    op.create_table(
        "rooms",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("hostel_id", sa.BigInteger(), sa.ForeignKey("hostels.id"), nullable=False),
        sa.Column("room_number", sa.String(50), nullable=False),
        sa.Column("capacity", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("price_per_semester", MONEY, nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="available"),
        sa.Column("current_occupants", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("hostel_id", "room_number", name="uq_room_hostel_number"),
    )
    op.create_index("ix_rooms_hostel_id", "rooms", ["hostel_id"], unique=False)

    # Semesters
    op.create_table(
        "semesters",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("hostel_id", sa.BigInteger(), sa.ForeignKey("hostels.id"), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("academic_year", sa.String(20), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("is_current", sa.Boolean(), nullable=False, server_default="false"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_semesters_hostel_id", "semesters", ["hostel_id"], unique=False)

    # Residents
    op.create_table(
        "residents",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("hostel_id", sa.BigInteger(), sa.ForeignKey("hostels.id"), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(50), nullable=True),
        sa.Column("registration_number", sa.String(100), nullable=True),
        sa.Column("course", sa.String(200), nullable=True),
        sa.Column("gender", sa.String(20), nullable=True),
        sa.Column("emergency_contact", sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_residents_hostel_id", "residents", ["hostel_id"], unique=False)
    op.create_index("ix_residents_email", "residents", ["email"], unique=True)

    # Bookings
    op.create_table(
        "bookings",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("booking_number", sa.String(50), nullable=False),
        sa.Column("hostel_id", sa.BigInteger(), sa.ForeignKey("hostels.id"), nullable=False),
        sa.Column("semester_id", sa.BigInteger(), sa.ForeignKey("semesters.id"), nullable=True),
        sa.Column("room_id", sa.BigInteger(), sa.ForeignKey("rooms.id"), nullable=True),
        sa.Column("source", sa.String(20), nullable=False, server_default="on_site"),
        sa.Column("student_name", sa.String(200), nullable=False),
        sa.Column("student_email", sa.String(255), nullable=True),
        sa.Column("student_phone", sa.String(50), nullable=False),
        sa.Column("whatsapp", sa.String(50), nullable=True),
        sa.Column("gender", sa.String(20), nullable=True),
        sa.Column("date_of_birth", sa.Date(), nullable=True),
        sa.Column("registration_number", sa.String(100), nullable=True),
        sa.Column("course", sa.String(200), nullable=True),
        sa.Column("emergency_contact", sa.Text(), nullable=True),
        sa.Column("preferred_check_in", sa.Date(), nullable=True),
        sa.Column("stay_duration", sa.Integer(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("currency", sa.String(10), nullable=False),
        sa.Column("amount_due", MONEY, nullable=False),
        sa.Column("amount_paid", MONEY, nullable=False, server_default="0"),
        sa.Column("payment_status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("payment_phone", sa.String(50), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("verification_code", sa.String(20), nullable=True),
        sa.Column("verification_issued_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resident_id", sa.BigInteger(), sa.ForeignKey("residents.id"), nullable=True),
        sa.Column("checked_in_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("created_by_id", sa.BigInteger(), sa.ForeignKey("users.id"), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("verification_code", name="uq_bookings_verification_code"),
        sa.CheckConstraint("amount_paid >= 0", name="ck_bookings_amount_paid_non_negative"),
        sa.CheckConstraint("amount_paid <= amount_due", name="ck_bookings_amount_paid_within_due"),
    )
    op.create_index("ix_bookings_booking_number", "bookings", ["booking_number"], unique=True)
    op.create_index("ix_bookings_hostel_id", "bookings", ["hostel_id"], unique=False)
    op.create_index("ix_bookings_semester_id", "bookings", ["semester_id"], unique=False)
    op.create_index("ix_bookings_room_id", "bookings", ["room_id"], unique=False)
    op.create_index("ix_bookings_student_email", "bookings", ["student_email"], unique=False)
    op.create_index("ix_bookings_status", "bookings", ["status"], unique=False)
    op.create_index("ix_bookings_resident_id", "bookings", ["resident_id"], unique=False)

    # Booking payments (append-only)
    op.create_table(
        "booking_payments",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("receipt_number", sa.String(50), nullable=False),
        sa.Column("booking_id", sa.BigInteger(), sa.ForeignKey("bookings.id"), nullable=False),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("method", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("reference", sa.String(200), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column(
            "supersedes_payment_id",
            sa.BigInteger(),
            sa.ForeignKey("booking_payments.id"),
            nullable=True,
        ),
        sa.Column("recorded_by_id", sa.BigInteger(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column(
            "recorded_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("supersedes_payment_id", name="uq_booking_payments_supersedes"),
        sa.CheckConstraint("amount > 0", name="ck_booking_payments_amount_positive"),
    )
    op.create_index(
        "ix_booking_payments_receipt_number", "booking_payments", ["receipt_number"], unique=True
    )
    op.create_index("ix_booking_payments_booking_id", "booking_payments", ["booking_id"], unique=False)
    op.create_index("ix_booking_payments_status", "booking_payments", ["status"], unique=False)

    # Resident ledger
    op.create_table(
        "payments",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("student_id", sa.BigInteger(), sa.ForeignKey("residents.id"), nullable=False),
        sa.Column("hostel_id", sa.BigInteger(), sa.ForeignKey("hostels.id"), nullable=True),
        sa.Column("semester_id", sa.BigInteger(), sa.ForeignKey("semesters.id"), nullable=True),
        sa.Column("amount", MONEY, nullable=False),
        sa.Column("payment_method", sa.String(50), nullable=True),
        sa.Column("currency", sa.String(10), nullable=True),
        sa.Column("purpose", sa.String(255), nullable=True),
        sa.Column("source_booking_id", sa.BigInteger(), sa.ForeignKey("bookings.id"), nullable=True),
        sa.Column("recorded_by", sa.BigInteger(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_payments_student_id", "payments", ["student_id"], unique=False)
    op.create_index("ix_payments_hostel_id", "payments", ["hostel_id"], unique=False)
    op.create_index("ix_payments_semester_id", "payments", ["semester_id"], unique=False)
    op.create_index("ix_payments_source_booking_id", "payments", ["source_booking_id"], unique=False)

    # Semester enrollments
    op.create_table(
        "semester_enrollments",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("student_id", sa.BigInteger(), sa.ForeignKey("residents.id"), nullable=False),
        sa.Column("semester_id", sa.BigInteger(), sa.ForeignKey("semesters.id"), nullable=False),
        sa.Column("room_id", sa.BigInteger(), sa.ForeignKey("rooms.id"), nullable=True),
        sa.Column("total_amount", MONEY, nullable=False, server_default="0"),
        sa.Column("amount_paid", MONEY, nullable=False, server_default="0"),
        sa.Column("balance", MONEY, nullable=False, server_default="0"),
        sa.Column("enrollment_status", sa.String(20), nullable=False, server_default="active"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("student_id", "semester_id", name="uq_enrollment_student_semester"),
    )
    op.create_index(
        "ix_semester_enrollments_student_id", "semester_enrollments", ["student_id"], unique=False
    )
    op.create_index(
        "ix_semester_enrollments_semester_id", "semester_enrollments", ["semester_id"], unique=False
    )

    # Room assignments
    op.create_table(
        "resident_assignments",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("student_id", sa.BigInteger(), sa.ForeignKey("residents.id"), nullable=False),
        sa.Column("room_id", sa.BigInteger(), sa.ForeignKey("rooms.id"), nullable=False),
        sa.Column("semester_id", sa.BigInteger(), sa.ForeignKey("semesters.id"), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("assigned_by", sa.BigInteger(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column(
            "assignment_date",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_resident_assignments_student_id", "resident_assignments", ["student_id"], unique=False
    )
    op.create_index("ix_resident_assignments_room_id", "resident_assignments", ["room_id"], unique=False)
    op.create_index(
        "ix_resident_assignments_semester_id", "resident_assignments", ["semester_id"], unique=False
    )

    # Booking and receipt number counters
    op.create_table(
        "number_sequences",
        sa.Column("prefix", sa.String(10), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("last_value", sa.Integer(), nullable=False),
        sa.PrimaryKeyConstraint("prefix", "year"),
        sa.CheckConstraint("last_value > 0", name="ck_number_sequences_positive"),
    )

    # Audit logs
    op.create_table(
        "audit_logs",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.BigInteger(), nullable=True),
        sa.Column("hostel_id", sa.BigInteger(), nullable=True),
        sa.Column("action", sa.String(100), nullable=False),
        sa.Column("entity_type", sa.String(100), nullable=False),
        sa.Column("entity_id", sa.BigInteger(), nullable=False),
        sa.Column("reference", sa.String(200), nullable=True),
        sa.Column("old_values", postgresql.JSONB(), nullable=True),
        sa.Column("new_values", postgresql.JSONB(), nullable=True),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_audit_logs_hostel_id", "audit_logs", ["hostel_id"], unique=False)
    op.create_index("ix_audit_logs_action", "audit_logs", ["action"], unique=False)
    op.create_index("ix_audit_logs_entity_type", "audit_logs", ["entity_type"], unique=False)
    op.create_index("ix_audit_logs_created_at", "audit_logs", ["created_at"], unique=False)


def downgrade() -> None:
    op.drop_table("audit_logs")
    op.drop_table("number_sequences")
    op.drop_table("resident_assignments")
    op.drop_table("semester_enrollments")
    op.drop_table("payments")
    op.drop_table("booking_payments")
    op.drop_table("bookings")
    op.drop_table("residents")
    op.drop_table("semesters")
    op.drop_table("rooms")
    op.drop_table("users")
    op.drop_table("hostels")
