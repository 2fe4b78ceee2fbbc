"""Live queue endpoints."""

from datetime import date

from fastapi import APIRouter
from pydantic import BaseModel

from carequeue.api.deps import DbSession, Notifier, StaffActor
from carequeue.schemas.scheduling import AppointmentResponse
from carequeue.services.queue import QueueManager, QueueSnapshot

router = APIRouter()


class QueueEntryResponse(BaseModel):
    """Waiting patient with position and estimated wait."""

    position: int
    estimated_wait_minutes: int
    appointment: AppointmentResponse


class QueueResponse(BaseModel):
    """A doctor's queue for a date."""

    doctor_id: str
    date: date
    consultation_duration: int
    current_patient: AppointmentResponse | None
    waiting: list[QueueEntryResponse]
    total_waiting: int

    @classmethod
    def from_snapshot(cls, snapshot: QueueSnapshot) -> "QueueResponse":
        return cls(
            doctor_id=snapshot.doctor_id,
            date=snapshot.date,
            consultation_duration=snapshot.consultation_duration,
            current_patient=(
                AppointmentResponse.model_validate(snapshot.current)
                if snapshot.current
                else None
            ),
            waiting=[
                QueueEntryResponse(
                    position=e.position,
                    estimated_wait_minutes=e.estimated_wait_minutes,
                    appointment=AppointmentResponse.model_validate(e.appointment),
                )
                for e in snapshot.waiting
            ],
            total_waiting=len(snapshot.waiting),
        )


class CallNextResponse(BaseModel):
    """Patient called in and the queue after the call."""

    started: AppointmentResponse
    queue: QueueResponse


@router.get(
    "/{doctor_id}/{queue_date}",
    response_model=QueueResponse,
)
async def get_queue(
    doctor_id: str,
    queue_date: date,
    actor: StaffActor,
    session: DbSession,
) -> QueueResponse:
    """Current patient and waiting line for a doctor's day."""
    snapshot = await QueueManager(session).build_queue(doctor_id, queue_date)
    return QueueResponse.from_snapshot(snapshot)


@router.post(
    "/{doctor_id}/{queue_date}/call-next",
    response_model=CallNextResponse,
)
async def call_next(
    doctor_id: str,
    queue_date: date,
    actor: StaffActor,
    session: DbSession,
    notifier: Notifier,
) -> CallNextResponse:
    """Start the consultation for the next patient in line."""
    started, snapshot = await QueueManager(session, notifier).call_next(
        doctor_id,
        queue_date,
        actor.actor_type.value,
        actor.actor_id,
    )
    return CallNextResponse(
        started=AppointmentResponse.model_validate(started),
        queue=QueueResponse.from_snapshot(snapshot),
    )


@router.post(
    "/appointments/{appointment_id}/skip",
    response_model=AppointmentResponse,
)
async def skip_patient(
    appointment_id: str,
    actor: StaffActor,
    session: DbSession,
) -> AppointmentResponse:
    """Move a waiting patient to the back of the line."""
    appointment = await QueueManager(session).skip(
        appointment_id,
        actor.actor_type.value,
        actor.actor_id,
    )
    return AppointmentResponse.model_validate(appointment)
