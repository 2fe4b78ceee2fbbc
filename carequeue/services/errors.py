"""Scheduling error taxonomy.

Each error carries a machine-readable code so callers can tell a lost
booking race (pick another slot) from an illegal transition (refresh the
appointment).
"""


class SchedulingError(Exception):
    """Base exception for scheduling operations."""

    code = "scheduling_error"
    status_code = 400
    default_message = "Scheduling request failed"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class SlotUnavailableError(SchedulingError):
    """Slot was claimed by someone else, is held, blocked or already past."""

    code = "slot_unavailable"
    status_code = 409
    default_message = "This slot is no longer available, please choose another"


class SlotTypeMismatchError(SchedulingError):
    """Requested slot type does not match the slot's consultation type."""

    code = "slot_type_mismatch"
    status_code = 422
    default_message = "Requested slot type does not match this slot"


class InvalidTransitionError(SchedulingError):
    """Illegal appointment state change."""

    code = "invalid_transition"
    status_code = 409
    default_message = "Appointment cannot move to the requested status"


class DoctorUnavailableError(SchedulingError):
    """Doctor is on leave or has paused bookings for the pool."""

    code = "doctor_unavailable"
    status_code = 409
    default_message = "Doctor is not available on this date"


class NotFoundError(SchedulingError):
    """Unknown doctor, slot or appointment."""

    code = "not_found"
    status_code = 404
    default_message = "Not found"


class PaymentFailedError(SchedulingError):
    """Payment gateway declined or failed to capture a payment."""

    code = "payment_failed"
    status_code = 402
    default_message = "Payment could not be captured"
