"""Slot allocator.

Derives a doctor's bookable slots for a date from the availability store
and materializes them as Slot rows so bookings have something to claim.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time

from sqlalchemy import and_, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from carequeue.booking.slots import derive_slot_status, partition_windows, slot_id_for
from carequeue.db.upsert import insert_ignore
from carequeue.models.scheduling import ConsultationType, Slot, SlotStatus
from carequeue.services.availability import AvailabilityStore
from carequeue.services.errors import InvalidTransitionError, NotFoundError
from carequeue.utils.time import combine_local, ensure_aware, utc_now

logger = logging.getLogger(__name__)


@dataclass
class SlotView:
    """Slot as seen at a point in time (status includes derived expiry)."""

    id: str
    doctor_id: str
    slot_date: date
    start_time: time
    end_time: time
    consultation_type: str
    duration: int
    seat: int
    status: str
    appointment_id: str | None = None
    held_by: str | None = None
    hold_expires_at: datetime | None = None


def slot_start(slot: Slot) -> datetime:
    return combine_local(slot.slot_date, slot.start_time)


def view_of(slot: Slot, now: datetime) -> SlotView:
    hold_expires_at = ensure_aware(slot.hold_expires_at) if slot.hold_expires_at else None
    status = derive_slot_status(slot.status, slot_start(slot), now, hold_expires_at)
    return SlotView(
        id=slot.id,
        doctor_id=slot.doctor_id,
        slot_date=slot.slot_date,
        start_time=slot.start_time,
        end_time=slot.end_time,
        consultation_type=slot.consultation_type,
        duration=slot.duration,
        seat=slot.seat,
        status=status,
        appointment_id=slot.appointment_id,
        held_by=slot.held_by if status == SlotStatus.HELD.value else None,
        hold_expires_at=hold_expires_at if status == SlotStatus.HELD.value else None,
    )


class SlotAllocator:
    """Generates and administers slots."""

    def __init__(
        self,
        session: AsyncSession,
        availability: AvailabilityStore | None = None,
    ):
        self.session = session
        self.availability = availability or AvailabilityStore(session)

    async def get_slot(self, slot_id: str) -> Slot:
        """Get a slot by id.

        Raises:
            NotFoundError: If the slot does not exist
        """
        slot = await self.session.get(Slot, slot_id, populate_existing=True)
        if not slot:
            raise NotFoundError(f"Slot {slot_id} not found")
        return slot

    async def generate_slots(
        self,
        doctor_id: str,
        slot_date: date,
        consultation_type: str,
        available_only: bool = False,
        now: datetime | None = None,
    ) -> list[SlotView]:
        """Slots for a doctor, date and consultation type.

        Candidate slots are partitioned from the effective windows and
        inserted if missing. The returned statuses reflect `now`: booked and
        blocked slots keep their status, past slots read as expired and
        lapsed holds read as open.

        Args:
            doctor_id: Doctor profile id
            slot_date: Clinic-local date
            consultation_type: "online" or "in_clinic"
            available_only: Return only open slots (patient view); also
                hides everything while the pool is paused
            now: Reference time, defaults to the current time

        Returns:
            Slots ordered by start time and seat

        Raises:
            NotFoundError: If the doctor does not exist
        """
        now = now or utc_now()
        consultation_type = ConsultationType(consultation_type).value

        doctor = await self.availability.get_doctor(doctor_id)
        schedule = await self.availability.effective_schedule(doctor_id, slot_date)
        if not schedule.is_available:
            return []

        duration = self.availability.consultation_duration(doctor, consultation_type)
        candidates = partition_windows(schedule.windows, consultation_type, duration)
        if not candidates:
            return []

        ids = [
            slot_id_for(doctor_id, slot_date, c.start_time, c.consultation_type, c.seat)
            for c in candidates
        ]
        await insert_ignore(
            self.session,
            Slot,
            [
                {
                    "id": slot_id,
                    "doctor_id": doctor_id,
                    "slot_date": slot_date,
                    "start_time": c.start_time,
                    "end_time": c.end_time,
                    "consultation_type": c.consultation_type,
                    "duration": c.duration,
                    "seat": c.seat,
                    "status": SlotStatus.OPEN.value,
                    "created_at": now,
                }
                for slot_id, c in zip(ids, candidates)
            ],
        )
        await self.session.commit()

        result = await self.session.execute(
            select(Slot)
            .where(Slot.id.in_(ids))
            .order_by(Slot.start_time, Slot.seat)
            .execution_options(populate_existing=True)
        )
        views = [view_of(slot, now) for slot in result.scalars().all()]

        if available_only:
            if self.availability.is_pool_paused(doctor, consultation_type, now):
                return []
            views = [v for v in views if v.status == SlotStatus.OPEN.value]

        return views

    async def set_slot_blocked(
        self,
        slot_id: str,
        blocked: bool,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> Slot:
        """Block an open slot or unblock a blocked one.

        Raises:
            NotFoundError: If the slot does not exist
            InvalidTransitionError: If the slot is booked, actively held or
                not in the expected state
        """
        now = now or utc_now()
        await self.get_slot(slot_id)

        if blocked:
            stmt = (
                update(Slot)
                .where(
                    Slot.id == slot_id,
                    or_(
                        Slot.status == SlotStatus.OPEN.value,
                        and_(
                            Slot.status == SlotStatus.HELD.value,
                            Slot.hold_expires_at < now,
                        ),
                    ),
                )
                .values(
                    status=SlotStatus.BLOCKED.value,
                    blocked_reason=reason,
                    held_by=None,
                    hold_expires_at=None,
                )
            )
        else:
            stmt = (
                update(Slot)
                .where(Slot.id == slot_id, Slot.status == SlotStatus.BLOCKED.value)
                .values(status=SlotStatus.OPEN.value, blocked_reason=None)
            )

        result = await self.session.execute(
            stmt.execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.session.rollback()
            action = "blocked" if blocked else "unblocked"
            raise InvalidTransitionError(f"Slot {slot_id} cannot be {action} in its current state")

        await self.session.commit()
        logger.info(f"Slot {slot_id} {'blocked' if blocked else 'unblocked'}")
        return await self.get_slot(slot_id)

    async def release_expired_holds(self, now: datetime | None = None) -> int:
        """Return lapsed holds to open.

        Returns:
            Number of slots released
        """
        now = now or utc_now()
        result = await self.session.execute(
            update(Slot)
            .where(
                Slot.status == SlotStatus.HELD.value,
                Slot.hold_expires_at < now,
            )
            .values(
                status=SlotStatus.OPEN.value,
                held_by=None,
                hold_expires_at=None,
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        return result.rowcount
