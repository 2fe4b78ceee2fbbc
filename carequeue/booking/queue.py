"""Queue ordering and wait estimates."""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Sequence

from carequeue.booking.lifecycle import WAITING_STATUSES
from carequeue.models.appointment import Appointment, AppointmentStatus
from carequeue.utils.time import ensure_aware


@dataclass
class QueueEntry:
    """Waiting appointment with its position in the line."""

    appointment: Appointment
    position: int
    estimated_wait_minutes: int


def queue_sort_key(appointment: Appointment) -> tuple:
    """Sort key for a waiting appointment.

    Fewer skips first; then tokened entries by token number, then entries
    without a token by scheduled time. Equal tokens fall back to time.
    """
    return (
        appointment.skip_count,
        appointment.token_number is None,
        appointment.token_number or 0,
        appointment.appointment_time,
    )


def pick_current(appointments: Sequence[Appointment]) -> Appointment | None:
    """The most recently started in-progress appointment, if any."""
    in_progress = [
        a for a in appointments if a.status == AppointmentStatus.IN_PROGRESS.value
    ]
    if not in_progress:
        return None

    def started(a: Appointment) -> datetime:
        if a.consultation_started_at is None:
            return datetime.min.replace(tzinfo=timezone.utc)
        return ensure_aware(a.consultation_started_at)

    return max(in_progress, key=started)


def order_waiting(
    appointments: Sequence[Appointment],
    consultation_duration: int,
) -> list[QueueEntry]:
    """Sort waiting appointments and attach 1-based positions and wait estimates.

    The estimated wait is the number of people ahead multiplied by the
    doctor's consultation duration.
    """
    waiting = [a for a in appointments if a.status in {s.value for s in WAITING_STATUSES}]
    ordered = sorted(waiting, key=queue_sort_key)
    return [
        QueueEntry(
            appointment=appointment,
            position=index + 1,
            estimated_wait_minutes=index * consultation_duration,
        )
        for index, appointment in enumerate(ordered)
    ]
