"""Doctor availability models and materialized slots.

The weekly template and date overrides are pure data read through the
AvailabilityStore; Slot rows are materialized from them on demand.
"""

from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum

from sqlalchemy import (
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
from sqlalchemy.orm import Mapped, mapped_column, relationship

from carequeue.db.base import Base, TimestampMixin


class ConsultationType(str, Enum):
    """Capacity pool of a slot or appointment."""

    ONLINE = "online"
    IN_CLINIC = "in_clinic"


class WindowConsultationType(str, Enum):
    """Consultation types a schedule window serves."""

    ONLINE = "online"
    IN_CLINIC = "in_clinic"
    BOTH = "both"


class SlotStatus(str, Enum):
    """Status of a slot.

    EXPIRED is never stored; it is derived when a slot's start has passed.
    """

    OPEN = "open"
    HELD = "held"
    BOOKED = "booked"
    EXPIRED = "expired"
    BLOCKED = "blocked"


class DayOfWeek(int, Enum):
    """Day of week for recurring availability (matches date.weekday())."""

    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6


class DoctorProfile(Base, TimestampMixin):
    """Scheduling-relevant settings for a doctor.

    Identity, credentials and clinic membership live in the external
    directory; this row only carries what slot allocation, booking and
    refunds need.
    """

    __tablename__ = "doctor_profiles"

    name: Mapped[str] = mapped_column(
        String(150),
        nullable=False,
    )
    # Minutes per consultation; falls back to the configured default
    consultation_duration: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )
    # Optional shorter/longer duration for video consultations
    online_consultation_duration: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )
    online_fee: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        default=Decimal("0"),
        nullable=False,
    )
    clinic_fee: Mapped[Decimal] = mapped_column(
        Numeric(10, 2),
        default=Decimal("0"),
        nullable=False,
    )
    # Booking controls (pause a capacity pool without touching the schedule)
    online_booking_paused: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )
    clinic_booking_paused: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )
    pause_reason: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )
    paused_until: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<DoctorProfile {self.name}>"


class TimeWindowMixin:
    """Columns shared by weekly and date-specific availability windows."""

    # Windows are evaluated in this order; the first match wins on overlap
    position: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )
    start_time: Mapped[time] = mapped_column(
        Time,
        nullable=False,
    )
    end_time: Mapped[time] = mapped_column(
        Time,
        nullable=False,
    )
    consultation_type: Mapped[str] = mapped_column(
        String(20),
        default=WindowConsultationType.BOTH.value,
        nullable=False,
    )
    max_concurrent: Mapped[int] = mapped_column(
        Integer,
        default=1,
        nullable=False,
    )


class WeeklyScheduleDay(Base, TimestampMixin):
    """One of the seven recurring days of a doctor's weekly template."""

    __tablename__ = "weekly_schedule_days"
    __table_args__ = (
        UniqueConstraint("doctor_id", "day_of_week", name="uq_weekly_schedule_days_doctor_day"),
    )

    doctor_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("doctor_profiles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    day_of_week: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )
    is_available: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    windows: Mapped[list["ScheduleWindow"]] = relationship(
        "ScheduleWindow",
        cascade="all, delete-orphan",
        order_by="ScheduleWindow.position",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<WeeklyScheduleDay {self.day_of_week} available={self.is_available}>"


class ScheduleWindow(Base, TimeWindowMixin):
    """Time window within a weekly schedule day."""

    __tablename__ = "schedule_windows"

    schedule_day_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("weekly_schedule_days.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<ScheduleWindow {self.start_time}-{self.end_time} {self.consultation_type}>"


class SpecialDate(Base, TimestampMixin):
    """Override of the weekly template for one calendar date.

    Either marks the date unavailable (leave, holiday) or replaces the
    template with its own windows.
    """

    __tablename__ = "special_dates"
    __table_args__ = (
        UniqueConstraint("doctor_id", "special_date", name="uq_special_dates_doctor_date"),
    )

    doctor_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("doctor_profiles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    special_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
    )
    is_available: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )
    reason: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    windows: Mapped[list["SpecialDateWindow"]] = relationship(
        "SpecialDateWindow",
        cascade="all, delete-orphan",
        order_by="SpecialDateWindow.position",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<SpecialDate {self.special_date} available={self.is_available}>"


class SpecialDateWindow(Base, TimeWindowMixin):
    """Custom time window for an available special date."""

    __tablename__ = "special_date_windows"

    special_date_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("special_dates.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )


class Slot(Base, TimestampMixin):
    """Concrete bookable unit materialized from a doctor's schedule.

    Slot ids are deterministic (see booking.slots.slot_id_for) so that
    concurrent materialization of the same day converges on one row.
    Only the booking coordinator changes status/appointment_id.
    """

    __tablename__ = "slots"
    __table_args__ = (
        UniqueConstraint(
            "doctor_id",
            "slot_date",
            "start_time",
            "consultation_type",
            "seat",
            name="uq_slots_doctor_date_start_type_seat",
        ),
    )

    doctor_id: Mapped[str] = mapped_column(
        UUID(as_uuid=False),
        ForeignKey("doctor_profiles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    slot_date: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        index=True,
    )
    start_time: Mapped[time] = mapped_column(
        Time,
        nullable=False,
    )
    end_time: Mapped[time] = mapped_column(
        Time,
        nullable=False,
    )
    consultation_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
    )
    duration: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )
    # Parallel seat index when a window allows more than one patient
    seat: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )
    status: Mapped[str] = mapped_column(
        String(20),
        default=SlotStatus.OPEN.value,
        nullable=False,
        index=True,
    )
    appointment_id: Mapped[str | None] = mapped_column(
        UUID(as_uuid=False),
        nullable=True,
    )
    # Two-phase booking hold
    held_by: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
    )
    hold_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    blocked_reason: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Slot {self.slot_date} {self.start_time} {self.consultation_type} status={self.status}>"
