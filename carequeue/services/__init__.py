"""Scheduling services."""

from carequeue.services.appointments import AppointmentStateMachine
from carequeue.services.availability import AvailabilityStore, DayTemplate, EffectiveSchedule
from carequeue.services.booking import AppointmentDraft, BookingCoordinator, WalkInPatient
from carequeue.services.errors import (
    DoctorUnavailableError,
    InvalidTransitionError,
    NotFoundError,
    SchedulingError,
    SlotTypeMismatchError,
    SlotUnavailableError,
)
from carequeue.services.queue import QueueManager, QueueSnapshot
from carequeue.services.slots import SlotAllocator, SlotView

__all__ = [
    "AppointmentDraft",
    "AppointmentStateMachine",
    "AvailabilityStore",
    "BookingCoordinator",
    "DayTemplate",
    "DoctorUnavailableError",
    "EffectiveSchedule",
    "InvalidTransitionError",
    "NotFoundError",
    "QueueManager",
    "QueueSnapshot",
    "SchedulingError",
    "SlotAllocator",
    "SlotTypeMismatchError",
    "SlotUnavailableError",
    "SlotView",
    "WalkInPatient",
]
