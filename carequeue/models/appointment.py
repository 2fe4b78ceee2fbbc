"""Appointment models: bookings, their status history and per-day ledgers."""

from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    Time,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from carequeue.db.base import Base, TimestampMixin, utc_now
from carequeue.utils.time import combine_local


class AppointmentStatus(str, Enum):
    """Appointment lifecycle status.

    A no-show is CANCELLED with is_no_show set, not a separate status.
    """

    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ActorType(str, Enum):
    """Party performing an action (also the cancelling party)."""

    PATIENT = "patient"
    DOCTOR = "doctor"
    CLINIC = "clinic"
    ADMIN = "admin"
    SYSTEM = "system"


class BookingSource(str, Enum):
    """Channel an appointment was created through."""

    ONLINE = "online"
    WALK_IN = "walk_in"
    PHONE = "phone"
    RECEPTIONIST = "receptionist"


class PaymentStatus(str, Enum):
    """Payment state of an appointment."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUND_PENDING = "refund_pending"
    REFUNDED = "refunded"


class Appointment(Base, TimestampMixin):
    """A patient's booking with a doctor.

    Created by the BookingCoordinator, mutated only by the
    AppointmentStateMachine and QueueManager, never deleted.
    """

    __tablename__ = "appointments"
    __table_args__ = (
        UniqueConstraint(
            "doctor_id",
            "appointment_date",
            "token_number",
            name="uq_appointments_doctor_date_token",
        ),
    )

    doctor_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("doctor_profiles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    # External patient reference; null for walk-ins without an account
    patient_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        index=True,
    )
    # Walk-in patient snapshot
    walk_in_name: Mapped[str | None] = mapped_column(
        String(150),
        nullable=True,
    )
    walk_in_phone: Mapped[str | None] = mapped_column(
        String(30),
        nullable=True,
    )
    walk_in_age: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )
    slot_id: Mapped[str | None] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("slots.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    # Clinic-local wall-clock date and time
    appointment_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        index=True,
    )
    appointment_time: Mapped[time] = mapped_column(
        Time,
        nullable=False,
    )
    duration_minutes: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )
    consultation_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
    )

    status: Mapped[str] = mapped_column(
        String(20),
        default=AppointmentStatus.PENDING.value,
        nullable=False,
        index=True,
    )
    token_number: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )
    booking_source: Mapped[str] = mapped_column(
        String(20),
        default=BookingSource.ONLINE.value,
        nullable=False,
    )

    # Payment
    payment_status: Mapped[str] = mapped_column(
        String(20),
        default=PaymentStatus.PENDING.value,
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        default=Decimal("0"),
        nullable=False,
    )
    payment_reference: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
    )

    reason: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    patient_notes: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    # Queue
    skip_count: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )
    consultation_started_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    consultation_ended_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Cancellation
    cancelled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    cancelled_by: Mapped[str | None] = mapped_column(
        String(20),
        nullable=True,
    )
    cancelled_by_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )
    cancellation_reason: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    is_no_show: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )

    # Refund audit trail
    refund_policy_applied: Mapped[str | None] = mapped_column(
        String(30),
        nullable=True,
    )
    refund_amount: Mapped[Decimal | None] = mapped_column(
        Numeric(10, 2),
        nullable=True,
    )
    wallet_credit: Mapped[Decimal | None] = mapped_column(
        Numeric(10, 2),
        nullable=True,
    )
    refund_snapshot: Mapped[dict | None] = mapped_column(
        JSON,
        nullable=True,
    )

    @property
    def scheduled_start(self) -> datetime:
        """Aware datetime of the appointment start in the clinic timezone."""
        return combine_local(self.appointment_date, self.appointment_time)

    @property
    def is_walk_in(self) -> bool:
        return self.booking_source == BookingSource.WALK_IN.value

    @property
    def is_terminal(self) -> bool:
        return self.status in (
            AppointmentStatus.COMPLETED.value,
            AppointmentStatus.CANCELLED.value,
        )

    def __repr__(self) -> str:
        return f"<Appointment {self.id} {self.appointment_date} {self.appointment_time} status={self.status}>"


class AppointmentStatusHistory(Base):
    """Append-only record of appointment status changes."""

    __tablename__ = "appointment_status_history"

    appointment_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("appointments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    from_status: Mapped[str | None] = mapped_column(
        String(20),
        nullable=True,
    )
    to_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
    )
    actor_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
    )
    actor_id: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )
    reason: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    changed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
    )


class DoctorDayLedger(Base):
    """Per doctor+date counters used as atomic primitives.

    last_token is incremented in place to hand out token numbers and
    current_appointment_id is only ever changed by compare-and-set, which
    serializes "start consultation" for a doctor's day.
    """

    __tablename__ = "doctor_day_ledgers"
    __table_args__ = (
        UniqueConstraint("doctor_id", "ledger_date", name="uq_doctor_day_ledgers_doctor_date"),
    )

    doctor_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("doctor_profiles.id", ondelete="CASCADE"),
        nullable=False,
    )
    ledger_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )
    last_token: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )
    current_appointment_id: Mapped[str | None] = mapped_column(
        UUID(as_uuid=False),
        nullable=True,
    )
