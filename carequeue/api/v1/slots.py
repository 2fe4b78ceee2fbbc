"""Slot availability, hold and block endpoints."""

from datetime import date
from typing import Literal

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, Field

from carequeue.api.deps import CurrentActor, DbSession, StaffActor
from carequeue.models.scheduling import ConsultationType
from carequeue.schemas.scheduling import SlotResponse
from carequeue.services.booking import BookingCoordinator
from carequeue.services.slots import SlotAllocator, view_of
from carequeue.utils.time import utc_now

router = APIRouter()


class SlotHoldRequest(BaseModel):
    """Reserve a slot during checkout."""

    slot_type: Literal["online", "clinic", "in_clinic"]
    patient_id: str | None = Field(None, description="Required when staff hold for a patient")


class SlotBlockRequest(BaseModel):
    """Block or unblock a slot."""

    blocked: bool
    reason: str | None = Field(None, max_length=500)


@router.get(
    "/{doctor_id}/{slot_date}",
    response_model=list[SlotResponse],
)
async def get_slots(
    doctor_id: str,
    slot_date: date,
    session: DbSession,
    consultation_type: ConsultationType = Query(ConsultationType.IN_CLINIC),
    available_only: bool = True,
) -> list[SlotResponse]:
    """List a doctor's slots for a date.

    With available_only (the default, used by patient booking screens) only
    open slots are returned. Admin and doctor views pass false to see every
    status.
    """
    slots = await SlotAllocator(session).generate_slots(
        doctor_id,
        slot_date,
        consultation_type.value,
        available_only=available_only,
    )
    return [SlotResponse.model_validate(s) for s in slots]


@router.post(
    "/{slot_id}/hold",
    response_model=SlotResponse,
)
async def hold_slot(
    slot_id: str,
    actor: CurrentActor,
    session: DbSession,
    request: SlotHoldRequest,
) -> SlotResponse:
    """Hold a slot for a patient for a few minutes."""
    patient_id = actor.actor_id if actor.is_patient else request.patient_id
    if not patient_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="patient_id is required",
        )

    slot = await BookingCoordinator(session).hold_slot(slot_id, request.slot_type, patient_id)
    return SlotResponse.model_validate(view_of(slot, utc_now()))


@router.put(
    "/{slot_id}/block",
    response_model=SlotResponse,
)
async def block_slot(
    slot_id: str,
    actor: StaffActor,
    session: DbSession,
    request: SlotBlockRequest,
) -> SlotResponse:
    """Block an open slot or unblock a blocked one."""
    slot = await SlotAllocator(session).set_slot_blocked(
        slot_id,
        blocked=request.blocked,
        reason=request.reason,
    )
    return SlotResponse.model_validate(view_of(slot, utc_now()))
