"""Initial scheduling schema.

Revision ID: 001
Revises:
Create Date: 2026-01-01 00:00:00.000000

Adds:
- Doctor profiles with booking controls
- Weekly schedule days/windows and special date overrides
- Materialized slots
- Appointments, status history and per doctor-day ledgers
"""

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _window_columns() -> list[sa.Column]:
    return [
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        # 'online', 'in_clinic' or 'both'
        sa.Column(
            "consultation_type",
            sa.String(20),
            nullable=False,
            server_default="'both'",
        ),
        sa.Column("max_concurrent", sa.Integer(), nullable=False, server_default="1"),
    ]


def upgrade() -> None:
    """Create scheduling tables."""

    # ========================================================================
    # DOCTOR PROFILES
    # ========================================================================

    op.create_table(
        "doctor_profiles",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("name", sa.String(150), nullable=False),
        sa.Column("consultation_duration", sa.Integer(), nullable=True),
        sa.Column("online_consultation_duration", sa.Integer(), nullable=True),
        sa.Column("online_fee", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("clinic_fee", sa.Numeric(10, 2), nullable=False, server_default="0"),
        # Booking controls
        sa.Column(
            "online_booking_paused",
            sa.Boolean(),
            nullable=False,
            server_default="false",
        ),
        sa.Column(
            "clinic_booking_paused",
            sa.Boolean(),
            nullable=False,
            server_default="false",
        ),
        sa.Column("pause_reason", sa.Text(), nullable=True),
        sa.Column("paused_until", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_doctor_profiles"),
    )

    # ========================================================================
    # WEEKLY TEMPLATE
    # ========================================================================

    op.create_table(
        "weekly_schedule_days",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("doctor_id", postgresql.UUID(as_uuid=False), nullable=False),
        # 0=Monday ... 6=Sunday
        sa.Column("day_of_week", sa.Integer(), nullable=False),
        sa.Column("is_available", sa.Boolean(), nullable=False, server_default="true"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_weekly_schedule_days"),
        sa.ForeignKeyConstraint(
            ["doctor_id"],
            ["doctor_profiles.id"],
            name="fk_weekly_schedule_days_doctor_id_doctor_profiles",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint(
            "doctor_id", "day_of_week", name="uq_weekly_schedule_days_doctor_day"
        ),
    )
    op.create_index(
        "ix_weekly_schedule_days_doctor_id",
        "weekly_schedule_days",
        ["doctor_id"],
    )

    op.create_table(
        "schedule_windows",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("schedule_day_id", postgresql.UUID(as_uuid=False), nullable=False),
        *_window_columns(),
        sa.PrimaryKeyConstraint("id", name="pk_schedule_windows"),
        sa.ForeignKeyConstraint(
            ["schedule_day_id"],
            ["weekly_schedule_days.id"],
            name="fk_schedule_windows_schedule_day_id_weekly_schedule_days",
            ondelete="CASCADE",
        ),
    )
    op.create_index(
        "ix_schedule_windows_schedule_day_id",
        "schedule_windows",
        ["schedule_day_id"],
    )

    # ========================================================================
    # SPECIAL DATES
    # ========================================================================

    op.create_table(
        "special_dates",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("doctor_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("special_date", sa.Date(), nullable=False),
        sa.Column("is_available", sa.Boolean(), nullable=False, server_default="false"),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_special_dates"),
        sa.ForeignKeyConstraint(
            ["doctor_id"],
            ["doctor_profiles.id"],
            name="fk_special_dates_doctor_id_doctor_profiles",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint(
            "doctor_id", "special_date", name="uq_special_dates_doctor_date"
        ),
    )
    op.create_index("ix_special_dates_doctor_id", "special_dates", ["doctor_id"])

    op.create_table(
        "special_date_windows",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("special_date_id", postgresql.UUID(as_uuid=False), nullable=False),
        *_window_columns(),
        sa.PrimaryKeyConstraint("id", name="pk_special_date_windows"),
        sa.ForeignKeyConstraint(
            ["special_date_id"],
            ["special_dates.id"],
            name="fk_special_date_windows_special_date_id_special_dates",
            ondelete="CASCADE",
        ),
    )
    op.create_index(
        "ix_special_date_windows_special_date_id",
        "special_date_windows",
        ["special_date_id"],
    )

    # ========================================================================
    # SLOTS
    # ========================================================================

    op.create_table(
        "slots",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("doctor_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("slot_date", sa.Date(), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        # 'online' or 'in_clinic'
        sa.Column("consultation_type", sa.String(20), nullable=False),
        sa.Column("duration", sa.Integer(), nullable=False),
        sa.Column("seat", sa.Integer(), nullable=False, server_default="0"),
        # 'open', 'held', 'booked' or 'blocked' ('expired' is derived)
        sa.Column("status", sa.String(20), nullable=False, server_default="'open'"),
        sa.Column("appointment_id", postgresql.UUID(as_uuid=False), nullable=True),
        sa.Column("held_by", sa.String(64), nullable=True),
        sa.Column("hold_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("blocked_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_slots"),
        sa.ForeignKeyConstraint(
            ["doctor_id"],
            ["doctor_profiles.id"],
            name="fk_slots_doctor_id_doctor_profiles",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint(
            "doctor_id",
            "slot_date",
            "start_time",
            "consultation_type",
            "seat",
            name="uq_slots_doctor_date_start_type_seat",
        ),
    )
    op.create_index("ix_slots_doctor_id", "slots", ["doctor_id"])
    op.create_index("ix_slots_slot_date", "slots", ["slot_date"])
    op.create_index("ix_slots_status", "slots", ["status"])

    # ========================================================================
    # APPOINTMENTS
    # ========================================================================

    op.create_table(
        "appointments",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("doctor_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("patient_id", sa.String(64), nullable=True),
        # Walk-in patient snapshot
        sa.Column("walk_in_name", sa.String(150), nullable=True),
        sa.Column("walk_in_phone", sa.String(30), nullable=True),
        sa.Column("walk_in_age", sa.Integer(), nullable=True),
        sa.Column("slot_id", postgresql.UUID(as_uuid=False), nullable=True),
        sa.Column("appointment_date", sa.Date(), nullable=False),
        sa.Column("appointment_time", sa.Time(), nullable=False),
        sa.Column("duration_minutes", sa.Integer(), nullable=False),
        sa.Column("consultation_type", sa.String(20), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="'pending'"),
        sa.Column("token_number", sa.Integer(), nullable=True),
        sa.Column(
            "booking_source",
            sa.String(20),
            nullable=False,
            server_default="'online'",
        ),
        # Payment
        sa.Column(
            "payment_status",
            sa.String(20),
            nullable=False,
            server_default="'pending'",
        ),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("payment_reference", sa.String(100), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("patient_notes", sa.Text(), nullable=True),
        # Queue
        sa.Column("skip_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("consultation_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("consultation_ended_at", sa.DateTime(timezone=True), nullable=True),
        # Cancellation
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_by", sa.String(20), nullable=True),
        sa.Column("cancelled_by_id", sa.String(64), nullable=True),
        sa.Column("cancellation_reason", sa.Text(), nullable=True),
        sa.Column("is_no_show", sa.Boolean(), nullable=False, server_default="false"),
        # Refund audit trail
        sa.Column("refund_policy_applied", sa.String(30), nullable=True),
        sa.Column("refund_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("wallet_credit", sa.Numeric(10, 2), nullable=True),
        sa.Column("refund_snapshot", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_appointments"),
        sa.ForeignKeyConstraint(
            ["doctor_id"],
            ["doctor_profiles.id"],
            name="fk_appointments_doctor_id_doctor_profiles",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["slot_id"],
            ["slots.id"],
            name="fk_appointments_slot_id_slots",
            ondelete="SET NULL",
        ),
        sa.UniqueConstraint(
            "doctor_id",
            "appointment_date",
            "token_number",
            name="uq_appointments_doctor_date_token",
        ),
    )
    op.create_index("ix_appointments_doctor_id", "appointments", ["doctor_id"])
    op.create_index("ix_appointments_patient_id", "appointments", ["patient_id"])
    op.create_index("ix_appointments_slot_id", "appointments", ["slot_id"])
    op.create_index("ix_appointments_appointment_date", "appointments", ["appointment_date"])
    op.create_index("ix_appointments_status", "appointments", ["status"])

    op.create_table(
        "appointment_status_history",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("appointment_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("from_status", sa.String(20), nullable=True),
        sa.Column("to_status", sa.String(20), nullable=False),
        sa.Column("actor_type", sa.String(20), nullable=False),
        sa.Column("actor_id", sa.String(64), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("changed_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_appointment_status_history"),
        sa.ForeignKeyConstraint(
            ["appointment_id"],
            ["appointments.id"],
            name="fk_appointment_status_history_appointment_id_appointments",
            ondelete="CASCADE",
        ),
    )
    op.create_index(
        "ix_appointment_status_history_appointment_id",
        "appointment_status_history",
        ["appointment_id"],
    )

    # ========================================================================
    # DOCTOR DAY LEDGERS (token counter, current patient pointer)
    # ========================================================================

    op.create_table(
        "doctor_day_ledgers",
        sa.Column("id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("doctor_id", postgresql.UUID(as_uuid=False), nullable=False),
        sa.Column("ledger_date", sa.Date(), nullable=False),
        sa.Column("last_token", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("current_appointment_id", postgresql.UUID(as_uuid=False), nullable=True),
        sa.PrimaryKeyConstraint("id", name="pk_doctor_day_ledgers"),
        sa.ForeignKeyConstraint(
            ["doctor_id"],
            ["doctor_profiles.id"],
            name="fk_doctor_day_ledgers_doctor_id_doctor_profiles",
            ondelete="CASCADE",
        ),
        sa.UniqueConstraint(
            "doctor_id", "ledger_date", name="uq_doctor_day_ledgers_doctor_date"
        ),
    )


def downgrade() -> None:
    """Drop scheduling tables."""
    op.drop_table("doctor_day_ledgers")
    op.drop_table("appointment_status_history")
    op.drop_table("appointments")
    op.drop_table("slots")
    op.drop_table("special_date_windows")
    op.drop_table("special_dates")
    op.drop_table("schedule_windows")
    op.drop_table("weekly_schedule_days")
    op.drop_table("doctor_profiles")
