"""Queue manager: the live waiting line for a doctor's day.

The queue is never stored. It is rebuilt from appointment rows on every
read; "call next" goes through the state machine and "skip" only bumps the
entry's skip counter.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from carequeue.booking.lifecycle import QUEUE_STATUSES, WAITING_STATUSES
from carequeue.booking.queue import QueueEntry, order_waiting, pick_current
from carequeue.core.config import settings
from carequeue.core.logging import audit_logger
from carequeue.models.appointment import Appointment
from carequeue.models.scheduling import ConsultationType
from carequeue.services.appointments import AppointmentStateMachine
from carequeue.services.availability import AvailabilityStore
from carequeue.services.errors import InvalidTransitionError, NotFoundError
from carequeue.services.notifications import (
    NotificationDispatcher,
    NotificationEvent,
    dispatch_safely,
)
from carequeue.utils.time import utc_now

logger = logging.getLogger(__name__)


@dataclass
class QueueSnapshot:
    """A doctor's queue for one date at the time it was built."""

    doctor_id: str
    date: date
    consultation_duration: int
    current: Appointment | None = None
    waiting: list[QueueEntry] = field(default_factory=list)


class QueueManager:
    """Builds and manipulates a doctor's daily queue."""

    def __init__(
        self,
        session: AsyncSession,
        notifier: NotificationDispatcher | None = None,
        state_machine: AppointmentStateMachine | None = None,
    ):
        self.session = session
        self.notifier = notifier
        self.state_machine = state_machine or AppointmentStateMachine(session, notifier)
        self.availability = AvailabilityStore(session)

    async def build_queue(self, doctor_id: str, queue_date: date) -> QueueSnapshot:
        """Current patient and ordered waiting list for a doctor's day.

        Raises:
            NotFoundError: Unknown doctor
        """
        doctor = await self.availability.get_doctor(doctor_id)
        duration = self.availability.consultation_duration(
            doctor, ConsultationType.IN_CLINIC.value
        )

        result = await self.session.execute(
            select(Appointment)
            .where(
                Appointment.doctor_id == doctor_id,
                Appointment.appointment_date == queue_date,
                Appointment.status.in_([s.value for s in QUEUE_STATUSES]),
            )
            .execution_options(populate_existing=True)
        )
        appointments = result.scalars().all()

        return QueueSnapshot(
            doctor_id=doctor_id,
            date=queue_date,
            consultation_duration=duration,
            current=pick_current(appointments),
            waiting=order_waiting(appointments, duration),
        )

    async def call_next(
        self,
        doctor_id: str,
        queue_date: date,
        actor_type: str,
        actor_id: str | None = None,
        now: datetime | None = None,
    ) -> tuple[Appointment, QueueSnapshot]:
        """Start the consultation for the head of the waiting list.

        Any consultation still in progress is handled by the state machine's
        conflict policy. Remaining patients are told their new positions.

        Returns:
            (started appointment, queue after the call)

        Raises:
            NotFoundError: Unknown doctor or nobody waiting
            InvalidTransitionError: Conflict rejected or lost a concurrent call
        """
        now = now or utc_now()
        snapshot = await self.build_queue(doctor_id, queue_date)
        if not snapshot.waiting:
            raise NotFoundError("No patients waiting in the queue")

        head = snapshot.waiting[0].appointment
        started = await self.state_machine.start(head.id, actor_type, actor_id, now)

        snapshot = await self.build_queue(doctor_id, queue_date)
        for entry in snapshot.waiting:
            if entry.appointment.patient_id is None:
                continue
            await dispatch_safely(
                self.notifier,
                NotificationEvent.QUEUE_POSITION_UPDATE,
                {
                    "appointment_id": entry.appointment.id,
                    "patient_id": entry.appointment.patient_id,
                    "doctor_id": doctor_id,
                    "position": entry.position,
                    "estimated_wait_minutes": entry.estimated_wait_minutes,
                },
            )

        return started, snapshot

    async def skip(
        self,
        appointment_id: str,
        actor_type: str,
        actor_id: str | None = None,
    ) -> Appointment:
        """Move a waiting patient behind everyone who has not been skipped.

        Does not change the appointment status.

        Raises:
            NotFoundError: Unknown appointment
            InvalidTransitionError: Not waiting, skip limit reached or
                changed concurrently
        """
        appointment = await self.state_machine.get(appointment_id)
        waiting = {s.value for s in WAITING_STATUSES}

        if appointment.status not in waiting:
            raise InvalidTransitionError(
                f"Only waiting appointments can be skipped, this one is {appointment.status}"
            )
        if appointment.skip_count >= settings.max_queue_skips:
            raise InvalidTransitionError(
                f"Appointment has already been skipped {appointment.skip_count} times"
            )

        result = await self.session.execute(
            update(Appointment)
            .where(
                Appointment.id == appointment_id,
                Appointment.skip_count == appointment.skip_count,
                Appointment.status.in_(waiting),
            )
            .values(skip_count=Appointment.skip_count + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.session.rollback()
            raise InvalidTransitionError(
                f"Appointment {appointment_id} was changed concurrently, reload and retry"
            )

        await self.session.commit()
        await self.session.refresh(appointment)

        audit_logger.log(
            action="queue_skip",
            actor_type=actor_type,
            actor_id=actor_id,
            entity_type="appointment",
            entity_id=appointment_id,
            metadata={"skip_count": appointment.skip_count},
        )
        return appointment
