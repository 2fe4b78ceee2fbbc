"""Appointment lifecycle transition rules."""

from carequeue.models.appointment import AppointmentStatus

# Legal status edges. COMPLETED and CANCELLED are terminal.
ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.PENDING: frozenset(
        {
            AppointmentStatus.CONFIRMED,
            AppointmentStatus.IN_PROGRESS,
            AppointmentStatus.CANCELLED,
        }
    ),
    AppointmentStatus.CONFIRMED: frozenset(
        {
            AppointmentStatus.IN_PROGRESS,
            AppointmentStatus.CANCELLED,
        }
    ),
    AppointmentStatus.IN_PROGRESS: frozenset(
        {
            AppointmentStatus.COMPLETED,
            AppointmentStatus.CANCELLED,
        }
    ),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
}

# Statuses a no-show may be recorded from
NO_SHOW_SOURCES = frozenset({AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED})

# Statuses that appear in a day's queue
QUEUE_STATUSES = frozenset(
    {
        AppointmentStatus.PENDING,
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.IN_PROGRESS,
    }
)

WAITING_STATUSES = frozenset({AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED})


def can_transition(from_status: str, to_status: str) -> bool:
    """Check whether an appointment may move from one status to another."""
    try:
        source = AppointmentStatus(from_status)
        target = AppointmentStatus(to_status)
    except ValueError:
        return False
    return target in ALLOWED_TRANSITIONS[source]


def allowed_targets(from_status: str) -> list[str]:
    """Statuses reachable from the given status, sorted for display."""
    return sorted(s.value for s in ALLOWED_TRANSITIONS[AppointmentStatus(from_status)])


def is_terminal(status: str) -> bool:
    return not ALLOWED_TRANSITIONS[AppointmentStatus(status)]
