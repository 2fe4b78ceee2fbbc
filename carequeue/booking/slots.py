"""Slot partitioning.

Turns a day's availability windows into candidate slots. Pure functions;
the SlotAllocator persists the result.
"""

from dataclasses import dataclass
from datetime import date, datetime, time
from uuid import NAMESPACE_URL, UUID, uuid5

from carequeue.models.scheduling import ConsultationType, SlotStatus, WindowConsultationType

# Namespace for deterministic slot ids
SLOT_NAMESPACE = uuid5(NAMESPACE_URL, "carequeue:slot")


@dataclass(frozen=True)
class TimeWindow:
    """Availability window within one day."""

    start_time: time
    end_time: time
    consultation_type: str = WindowConsultationType.BOTH.value
    max_concurrent: int = 1


@dataclass(frozen=True)
class CandidateSlot:
    """Sub-interval of a window that becomes one Slot row."""

    start_time: time
    end_time: time
    consultation_type: str
    duration: int
    seat: int = 0


def to_minutes(value: time) -> int:
    return value.hour * 60 + value.minute


def from_minutes(minutes: int) -> time:
    return time(minutes // 60, minutes % 60)


def window_serves(window_type: str, consultation_type: str) -> bool:
    """Whether a window of the given type offers the consultation type."""
    return window_type in (consultation_type, WindowConsultationType.BOTH.value)


def partition_windows(
    windows: list[TimeWindow],
    consultation_type: str,
    duration: int,
) -> list[CandidateSlot]:
    """Split windows into fixed-length candidate slots.

    Windows are taken in order; a sub-interval overlapping one already
    produced by an earlier window is dropped, so overlapping windows never
    yield duplicate or interleaved slots. A window shorter than one
    duration yields nothing.

    Args:
        windows: Effective windows for the day, in priority order
        consultation_type: "online" or "in_clinic"
        duration: Consultation length in minutes

    Returns:
        Candidate slots sorted by start time and seat
    """
    if duration <= 0:
        raise ValueError("Consultation duration must be positive")

    taken: list[tuple[int, int]] = []
    candidates: list[CandidateSlot] = []

    for window in windows:
        if not window_serves(window.consultation_type, consultation_type):
            continue

        start = to_minutes(window.start_time)
        end = to_minutes(window.end_time)
        seats = max(1, window.max_concurrent)

        cursor = start
        while cursor + duration <= end:
            interval = (cursor, cursor + duration)
            if not any(interval[0] < b and a < interval[1] for a, b in taken):
                taken.append(interval)
                for seat in range(seats):
                    candidates.append(
                        CandidateSlot(
                            start_time=from_minutes(interval[0]),
                            end_time=from_minutes(interval[1]),
                            consultation_type=consultation_type,
                            duration=duration,
                            seat=seat,
                        )
                    )
            cursor += duration

    candidates.sort(key=lambda c: (c.start_time, c.seat))
    return candidates


def slot_id_for(
    doctor_id: str,
    slot_date: date,
    start_time: time,
    consultation_type: str,
    seat: int = 0,
) -> str:
    """Deterministic slot id, identical for every caller materializing the same slot."""
    key = f"{doctor_id}:{slot_date.isoformat()}:{start_time.strftime('%H:%M')}:{consultation_type}:{seat}"
    return str(uuid5(SLOT_NAMESPACE, key))


def normalize_slot_type(slot_type: str) -> str:
    """Map a requested slot type ("online"/"clinic") to a consultation type.

    Raises:
        ValueError: For unknown slot types
    """
    value = slot_type.strip().lower()
    if value == "clinic":
        return ConsultationType.IN_CLINIC.value
    return ConsultationType(value).value


def derive_slot_status(
    stored_status: str,
    slot_start: datetime,
    now: datetime,
    hold_expires_at: datetime | None = None,
) -> str:
    """Status of a slot as seen at `now`.

    Booked and blocked slots keep their status. Anything else whose start
    has passed is expired, and a hold past its expiry reads as open.
    """
    if stored_status in (SlotStatus.BOOKED.value, SlotStatus.BLOCKED.value):
        return stored_status
    if slot_start <= now:
        return SlotStatus.EXPIRED.value
    if stored_status == SlotStatus.HELD.value:
        if hold_expires_at is not None and hold_expires_at > now:
            return SlotStatus.HELD.value
        return SlotStatus.OPEN.value
    return stored_status
