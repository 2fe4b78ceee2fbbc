"""Booking coordinator.

Claims slots for patients and creates appointments. The slot claim is one
conditional UPDATE; whoever's UPDATE matches the row wins and every other
caller gets SlotUnavailableError. Token numbers come from the per-day
ledger counter.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from uuid import uuid4

from sqlalchemy import and_, or_, update
from sqlalchemy.ext.asyncio import AsyncSession

from carequeue.booking.slots import normalize_slot_type
from carequeue.core.config import settings
from carequeue.core.logging import audit_logger
from carequeue.models.appointment import (
    ActorType,
    Appointment,
    AppointmentStatus,
    AppointmentStatusHistory,
    BookingSource,
    PaymentStatus,
)
from carequeue.models.scheduling import ConsultationType, Slot, SlotStatus
from carequeue.services.availability import AvailabilityStore
from carequeue.services.errors import (
    DoctorUnavailableError,
    NotFoundError,
    SlotTypeMismatchError,
    SlotUnavailableError,
)
from carequeue.services.ledger import DayLedger
from carequeue.services.notifications import (
    NotificationDispatcher,
    NotificationEvent,
    dispatch_safely,
)
from carequeue.services.slots import slot_start
from carequeue.utils.time import clinic_tz, utc_now

logger = logging.getLogger(__name__)


@dataclass
class AppointmentDraft:
    """Caller-supplied details for a new appointment.

    amount defaults to the doctor's fee for the slot's pool.
    """

    reason: str | None = None
    patient_notes: str | None = None
    amount: Decimal | None = None
    payment_status: str = PaymentStatus.PENDING.value
    payment_reference: str | None = None
    booking_source: str = BookingSource.ONLINE.value


@dataclass
class WalkInPatient:
    """Snapshot of a walk-in patient without an account."""

    name: str
    phone: str | None = None
    age: int | None = None
    patient_id: str | None = None


def claimable(patient_id: str, now: datetime):
    """Condition under which a patient may take a slot."""
    return or_(
        Slot.status == SlotStatus.OPEN.value,
        and_(
            Slot.status == SlotStatus.HELD.value,
            or_(Slot.hold_expires_at < now, Slot.held_by == patient_id),
        ),
    )


class BookingCoordinator:
    """Atomically claims slots and creates appointments."""

    def __init__(
        self,
        session: AsyncSession,
        notifier: NotificationDispatcher | None = None,
        availability: AvailabilityStore | None = None,
    ):
        self.session = session
        self.notifier = notifier
        self.availability = availability or AvailabilityStore(session)

    async def _load_slot(self, slot_id: str) -> Slot:
        slot = await self.session.get(Slot, slot_id, populate_existing=True)
        if not slot:
            raise NotFoundError(f"Slot {slot_id} not found")
        return slot

    async def _check_bookable(
        self,
        slot: Slot,
        slot_type: str,
        now: datetime,
    ):
        """Validate pool, doctor availability and timing before claiming."""
        try:
            requested = normalize_slot_type(slot_type)
        except ValueError:
            raise SlotTypeMismatchError(f"Unknown slot type '{slot_type}'") from None

        if requested != slot.consultation_type:
            raise SlotTypeMismatchError(
                f"Slot is {slot.consultation_type}, cannot book it as {requested}"
            )

        doctor = await self.availability.get_doctor(slot.doctor_id)
        if self.availability.is_pool_paused(doctor, slot.consultation_type, now):
            raise DoctorUnavailableError(
                doctor.pause_reason or f"{slot.consultation_type} booking is paused for this doctor"
            )

        schedule = await self.availability.effective_schedule(slot.doctor_id, slot.slot_date)
        if not schedule.is_available:
            raise DoctorUnavailableError(
                schedule.reason or f"Doctor is not available on {slot.slot_date}"
            )

        if slot_start(slot) <= now:
            raise SlotUnavailableError("This slot has already started, please choose another")

        return doctor

    async def hold_slot(
        self,
        slot_id: str,
        slot_type: str,
        patient_id: str,
        now: datetime | None = None,
    ) -> Slot:
        """Reserve a slot for a patient while they complete checkout.

        The hold lapses after slot_hold_ttl_seconds; the same patient may
        renew it or convert it with book_slot.

        Raises:
            NotFoundError, SlotTypeMismatchError, DoctorUnavailableError,
            SlotUnavailableError
        """
        now = now or utc_now()
        slot = await self._load_slot(slot_id)
        await self._check_bookable(slot, slot_type, now)

        expires_at = now + timedelta(seconds=settings.slot_hold_ttl_seconds)
        result = await self.session.execute(
            update(Slot)
            .where(Slot.id == slot_id, claimable(patient_id, now))
            .values(
                status=SlotStatus.HELD.value,
                held_by=patient_id,
                hold_expires_at=expires_at,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.session.rollback()
            raise SlotUnavailableError()

        await self.session.commit()
        logger.info(f"Slot {slot_id} held by {patient_id} until {expires_at.isoformat()}")
        return await self._load_slot(slot_id)

    async def book_slot(
        self,
        slot_id: str,
        slot_type: str,
        patient_id: str,
        draft: AppointmentDraft | None = None,
        actor_type: str = ActorType.PATIENT.value,
        actor_id: str | None = None,
        now: datetime | None = None,
    ) -> Appointment:
        """Claim a slot and create the appointment.

        Args:
            slot_id: Slot to claim
            slot_type: "online" or "clinic"; must match the slot's pool
            patient_id: External patient reference
            draft: Appointment details
            actor_type: Who is booking (patient or front desk)
            actor_id: Id of the booking actor
            now: Reference time

        Returns:
            The new appointment

        Raises:
            NotFoundError: Unknown slot or doctor
            SlotTypeMismatchError: Online/clinic pool mismatch
            DoctorUnavailableError: Doctor on leave or pool paused
            SlotUnavailableError: Slot taken, held by someone else, blocked or past
        """
        now = now or utc_now()
        draft = draft or AppointmentDraft()
        slot = await self._load_slot(slot_id)
        doctor = await self._check_bookable(slot, slot_type, now)

        appointment_id = str(uuid4())
        result = await self.session.execute(
            update(Slot)
            .where(Slot.id == slot_id, claimable(patient_id, now))
            .values(
                status=SlotStatus.BOOKED.value,
                appointment_id=appointment_id,
                held_by=None,
                hold_expires_at=None,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.session.rollback()
            logger.info(f"Lost booking race for slot {slot_id} (patient {patient_id})")
            raise SlotUnavailableError()

        token = await DayLedger(self.session, slot.doctor_id, slot.slot_date).next_token()

        amount = draft.amount
        if amount is None:
            amount = self.availability.consultation_fee(doctor, slot.consultation_type)

        appointment = Appointment(
            id=appointment_id,
            doctor_id=slot.doctor_id,
            patient_id=patient_id,
            slot_id=slot.id,
            appointment_date=slot.slot_date,
            appointment_time=slot.start_time,
            duration_minutes=slot.duration,
            consultation_type=slot.consultation_type,
            status=settings.booking_initial_status,
            token_number=token,
            booking_source=draft.booking_source,
            payment_status=draft.payment_status,
            amount=amount,
            payment_reference=draft.payment_reference,
            reason=draft.reason,
            patient_notes=draft.patient_notes,
        )
        self.session.add(appointment)
        self.session.add(
            AppointmentStatusHistory(
                id=str(uuid4()),
                appointment_id=appointment_id,
                from_status=None,
                to_status=appointment.status,
                actor_type=actor_type,
                actor_id=actor_id or patient_id,
                reason="booked",
                changed_at=now,
            )
        )
        await self.session.commit()
        await self.session.refresh(appointment)

        audit_logger.log(
            action="appointment_booked",
            actor_type=actor_type,
            actor_id=actor_id or patient_id,
            entity_type="appointment",
            entity_id=appointment.id,
            metadata={"slot_id": slot_id, "token_number": token},
        )

        await dispatch_safely(
            self.notifier,
            NotificationEvent.BOOKING_CONFIRMED,
            {
                "appointment_id": appointment.id,
                "patient_id": patient_id,
                "doctor_id": appointment.doctor_id,
                "date": appointment.appointment_date.isoformat(),
                "time": appointment.appointment_time.strftime("%H:%M"),
                "consultation_type": appointment.consultation_type,
                "token_number": token,
            },
        )

        return appointment

    async def add_walk_in(
        self,
        doctor_id: str,
        appointment_date: date,
        patient: WalkInPatient,
        consultation_type: str = ConsultationType.IN_CLINIC.value,
        appointment_time: time | None = None,
        amount: Decimal | None = None,
        payment_status: str = PaymentStatus.PENDING.value,
        actor_type: str = ActorType.CLINIC.value,
        actor_id: str | None = None,
        now: datetime | None = None,
    ) -> Appointment:
        """Add a walk-in patient to a doctor's day without claiming a slot.

        The appointment is confirmed immediately and gets the next token, so
        it queues behind patients who booked earlier.

        Raises:
            NotFoundError: Unknown doctor
            DoctorUnavailableError: Doctor on leave or pool paused
        """
        now = now or utc_now()
        consultation_type = ConsultationType(consultation_type).value
        doctor = await self.availability.get_doctor(doctor_id)

        if self.availability.is_pool_paused(doctor, consultation_type, now):
            raise DoctorUnavailableError(
                doctor.pause_reason or f"{consultation_type} booking is paused for this doctor"
            )
        schedule = await self.availability.effective_schedule(doctor_id, appointment_date)
        if not schedule.is_available:
            raise DoctorUnavailableError(
                schedule.reason or f"Doctor is not available on {appointment_date}"
            )

        if appointment_time is None:
            appointment_time = now.astimezone(clinic_tz()).time().replace(second=0, microsecond=0)
        if amount is None:
            amount = self.availability.consultation_fee(doctor, consultation_type)

        token = await DayLedger(self.session, doctor_id, appointment_date).next_token()

        appointment = Appointment(
            id=str(uuid4()),
            doctor_id=doctor_id,
            patient_id=patient.patient_id,
            walk_in_name=patient.name,
            walk_in_phone=patient.phone,
            walk_in_age=patient.age,
            appointment_date=appointment_date,
            appointment_time=appointment_time,
            duration_minutes=self.availability.consultation_duration(doctor, consultation_type),
            consultation_type=consultation_type,
            status=AppointmentStatus.CONFIRMED.value,
            token_number=token,
            booking_source=BookingSource.WALK_IN.value,
            payment_status=payment_status,
            amount=amount,
        )
        self.session.add(appointment)
        self.session.add(
            AppointmentStatusHistory(
                id=str(uuid4()),
                appointment_id=appointment.id,
                from_status=None,
                to_status=appointment.status,
                actor_type=actor_type,
                actor_id=actor_id,
                reason="walk_in",
                changed_at=now,
            )
        )
        await self.session.commit()
        await self.session.refresh(appointment)

        audit_logger.log(
            action="walk_in_added",
            actor_type=actor_type,
            actor_id=actor_id,
            entity_type="appointment",
            entity_id=appointment.id,
            metadata={"doctor_id": doctor_id, "token_number": token},
        )
        return appointment

    async def release_slot(self, slot_id: str, appointment_id: str) -> bool:
        """Return a booked slot to open if it is still held by the appointment.

        Does not commit; the caller's transaction owns the release.
        """
        result = await self.session.execute(
            update(Slot)
            .where(
                Slot.id == slot_id,
                Slot.status == SlotStatus.BOOKED.value,
                Slot.appointment_id == appointment_id,
            )
            .values(status=SlotStatus.OPEN.value, appointment_id=None)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
