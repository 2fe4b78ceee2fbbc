"""SQLAlchemy models."""

from carequeue.models.appointment import (
    ActorType,
    Appointment,
    AppointmentStatus,
    AppointmentStatusHistory,
    BookingSource,
    DoctorDayLedger,
    PaymentStatus,
)
from carequeue.models.scheduling import (
    ConsultationType,
    DayOfWeek,
    DoctorProfile,
    ScheduleWindow,
    Slot,
    SlotStatus,
    SpecialDate,
    SpecialDateWindow,
    WeeklyScheduleDay,
    WindowConsultationType,
)

__all__ = [
    "ActorType",
    "Appointment",
    "AppointmentStatus",
    "AppointmentStatusHistory",
    "BookingSource",
    "ConsultationType",
    "DayOfWeek",
    "DoctorDayLedger",
    "DoctorProfile",
    "PaymentStatus",
    "ScheduleWindow",
    "Slot",
    "SlotStatus",
    "SpecialDate",
    "SpecialDateWindow",
    "WeeklyScheduleDay",
    "WindowConsultationType",
]
