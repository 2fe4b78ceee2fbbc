"""Appointment booking, lifecycle and cancellation endpoints."""

from datetime import date, time
from typing import Literal

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, Field

from carequeue.api.deps import Actor, CurrentActor, DbSession, Gateway, Notifier, StaffActor
from carequeue.models.appointment import ActorType, Appointment, BookingSource
from carequeue.models.scheduling import ConsultationType
from carequeue.schemas.scheduling import AppointmentResponse, RefundDecisionResponse
from carequeue.services.appointments import NO_SHOW, AppointmentStateMachine
from carequeue.services.booking import AppointmentDraft, BookingCoordinator, WalkInPatient

router = APIRouter()


# ============================================================================
# Request/Response Schemas
# ============================================================================


class BookSlotRequest(BaseModel):
    """Request to book a slot."""

    slot_id: str
    slot_type: Literal["online", "clinic", "in_clinic"]
    patient_id: str | None = Field(None, description="Required when staff book for a patient")
    reason: str | None = Field(None, max_length=1000)
    patient_notes: str | None = Field(None, max_length=2000)


class WalkInRequest(BaseModel):
    """Add a walk-in patient to a doctor's day."""

    doctor_id: str
    date: date
    name: str = Field(..., min_length=1, max_length=150)
    phone: str | None = Field(None, max_length=30)
    age: int | None = Field(None, ge=0, le=150)
    patient_id: str | None = None
    consultation_type: ConsultationType = ConsultationType.IN_CLINIC
    appointment_time: time | None = None
    payment_status: Literal["pending", "completed"] = Field(
        "pending", description="completed when the fee was taken at the desk"
    )


class TransitionRequest(BaseModel):
    """Request to change an appointment's status."""

    target_status: Literal["confirmed", "in_progress", "completed", "cancelled", "no_show"]
    reason: str | None = Field(None, max_length=1000)


class CancelRequest(BaseModel):
    """Request to cancel an appointment."""

    cancelled_by: ActorType | None = Field(
        None, description="Defaults to the caller's actor type"
    )
    reason: str | None = Field(None, max_length=1000)
    notify_other: bool = True


class PaymentRequest(BaseModel):
    """Capture the consultation fee for an appointment."""

    payment_reference: str = Field(..., min_length=1, max_length=100)


class CancelResponse(BaseModel):
    """Cancelled appointment with its refund decision."""

    appointment: AppointmentResponse
    refund: RefundDecisionResponse


class StatusHistoryResponse(BaseModel):
    """One status change."""

    from_status: str | None
    to_status: str
    actor_type: str
    actor_id: str | None
    reason: str | None
    changed_at: str

    @classmethod
    def from_row(cls, row) -> "StatusHistoryResponse":
        return cls(
            from_status=row.from_status,
            to_status=row.to_status,
            actor_type=row.actor_type,
            actor_id=row.actor_id,
            reason=row.reason,
            changed_at=row.changed_at.isoformat(),
        )


def _check_patient_access(actor: Actor, appointment: Appointment) -> None:
    """Patients may only act on their own appointments."""
    if actor.is_patient and appointment.patient_id != actor.actor_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not your appointment",
        )


# ============================================================================
# Endpoints
# ============================================================================


@router.post(
    "/book",
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def book_slot(
    actor: CurrentActor,
    session: DbSession,
    notifier: Notifier,
    request: BookSlotRequest,
) -> AppointmentResponse:
    """Book a slot.

    A lost race returns 409 slot_unavailable; the caller should refetch
    availability and pick another slot.
    """
    if actor.is_patient:
        patient_id = actor.actor_id
        source = BookingSource.ONLINE.value
    elif actor.actor_type in (ActorType.DOCTOR, ActorType.CLINIC, ActorType.ADMIN):
        patient_id = request.patient_id
        source = BookingSource.RECEPTIONIST.value
    else:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Insufficient permissions",
        )

    if not patient_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="patient_id is required",
        )

    appointment = await BookingCoordinator(session, notifier).book_slot(
        request.slot_id,
        request.slot_type,
        patient_id,
        AppointmentDraft(
            reason=request.reason,
            patient_notes=request.patient_notes,
            booking_source=source,
        ),
        actor_type=actor.actor_type.value,
        actor_id=actor.actor_id,
    )
    return AppointmentResponse.model_validate(appointment)


@router.post(
    "/walk-in",
    response_model=AppointmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_walk_in(
    actor: StaffActor,
    session: DbSession,
    request: WalkInRequest,
) -> AppointmentResponse:
    """Add a walk-in patient to today's queue."""
    appointment = await BookingCoordinator(session).add_walk_in(
        request.doctor_id,
        request.date,
        WalkInPatient(
            name=request.name,
            phone=request.phone,
            age=request.age,
            patient_id=request.patient_id,
        ),
        consultation_type=request.consultation_type.value,
        appointment_time=request.appointment_time,
        payment_status=request.payment_status,
        actor_type=actor.actor_type.value,
        actor_id=actor.actor_id,
    )
    return AppointmentResponse.model_validate(appointment)


@router.get(
    "/{appointment_id}",
    response_model=AppointmentResponse,
)
async def get_appointment(
    appointment_id: str,
    actor: CurrentActor,
    session: DbSession,
) -> AppointmentResponse:
    """Get an appointment."""
    appointment = await AppointmentStateMachine(session).get(appointment_id)
    _check_patient_access(actor, appointment)
    return AppointmentResponse.model_validate(appointment)


@router.get(
    "/{appointment_id}/history",
    response_model=list[StatusHistoryResponse],
)
async def get_appointment_history(
    appointment_id: str,
    actor: CurrentActor,
    session: DbSession,
) -> list[StatusHistoryResponse]:
    """Get an appointment's status history."""
    machine = AppointmentStateMachine(session)
    _check_patient_access(actor, await machine.get(appointment_id))
    history = await machine.history(appointment_id)
    return [StatusHistoryResponse.from_row(h) for h in history]


@router.post(
    "/{appointment_id}/transition",
    response_model=AppointmentResponse,
)
async def transition_appointment(
    appointment_id: str,
    actor: StaffActor,
    session: DbSession,
    notifier: Notifier,
    gateway: Gateway,
    request: TransitionRequest,
) -> AppointmentResponse:
    """Move an appointment through its lifecycle.

    Illegal or concurrent transitions return 409 invalid_transition.
    """
    machine = AppointmentStateMachine(session, notifier, gateway)
    appointment = await machine.transition(
        appointment_id,
        request.target_status,
        actor.actor_type.value,
        actor.actor_id,
        request.reason,
    )
    return AppointmentResponse.model_validate(appointment)


@router.post(
    "/{appointment_id}/payment",
    response_model=AppointmentResponse,
)
async def capture_payment(
    appointment_id: str,
    actor: CurrentActor,
    session: DbSession,
    gateway: Gateway,
    request: PaymentRequest,
) -> AppointmentResponse:
    """Capture the consultation fee through the payment gateway.

    The appointment is marked paid only when the gateway confirms the
    capture; a declined capture returns 402 payment_failed.
    """
    machine = AppointmentStateMachine(session, payment_gateway=gateway)
    _check_patient_access(actor, await machine.get(appointment_id))

    appointment = await machine.capture_payment(
        appointment_id,
        request.payment_reference,
        actor.actor_type.value,
        actor.actor_id,
    )
    return AppointmentResponse.model_validate(appointment)


@router.get(
    "/{appointment_id}/refund-preview",
    response_model=RefundDecisionResponse,
)
async def preview_refund(
    appointment_id: str,
    actor: CurrentActor,
    session: DbSession,
    cancelled_by: ActorType | None = Query(None),
) -> RefundDecisionResponse:
    """Show what cancelling now would refund, without cancelling."""
    machine = AppointmentStateMachine(session)
    appointment = await machine.get(appointment_id)
    _check_patient_access(actor, appointment)

    if actor.is_patient:
        cancelled_by = ActorType.PATIENT

    decision = await machine.preview_refund(
        appointment_id, (cancelled_by or actor.actor_type).value
    )
    return RefundDecisionResponse.from_decision(decision)


@router.post(
    "/{appointment_id}/cancel",
    response_model=CancelResponse,
)
async def cancel_appointment(
    appointment_id: str,
    actor: CurrentActor,
    session: DbSession,
    notifier: Notifier,
    gateway: Gateway,
    request: CancelRequest | None = None,
) -> CancelResponse:
    """Cancel an appointment and apply the refund policy.

    A zero refund is still a successful cancellation.
    """
    request = request or CancelRequest()
    machine = AppointmentStateMachine(session, notifier, gateway)
    appointment = await machine.get(appointment_id)
    _check_patient_access(actor, appointment)

    if actor.is_patient and request.reason == NO_SHOW:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only clinic staff can record a no-show",
        )

    cancelled_by = ActorType.PATIENT if actor.is_patient else request.cancelled_by or actor.actor_type

    appointment, decision = await machine.cancel(
        appointment_id,
        cancelled_by.value,
        actor.actor_id,
        request.reason,
        notify_other=request.notify_other,
    )
    return CancelResponse(
        appointment=AppointmentResponse.model_validate(appointment),
        refund=RefundDecisionResponse.from_decision(decision),
    )
