"""Doctor profile, booking control and schedule management endpoints."""

from datetime import date, datetime
from decimal import Decimal

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel, Field

from carequeue.api.deps import DbSession, Gateway, Notifier, StaffActor
from carequeue.schemas.scheduling import (
    DoctorResponse,
    RefundDecisionResponse,
    SpecialDateResponse,
    TimeWindowSchema,
    WeeklyScheduleDayResponse,
)
from carequeue.services.appointments import AppointmentStateMachine
from carequeue.services.availability import AvailabilityStore, DayTemplate

router = APIRouter()


# ============================================================================
# Request/Response Schemas
# ============================================================================


class DoctorCreateRequest(BaseModel):
    """Request to create a doctor scheduling profile."""

    name: str = Field(..., min_length=1, max_length=150)
    consultation_duration: int | None = Field(None, ge=5, le=240)
    online_consultation_duration: int | None = Field(None, ge=5, le=240)
    online_fee: Decimal = Field(Decimal("0"), ge=0)
    clinic_fee: Decimal = Field(Decimal("0"), ge=0)


class BookingControlsRequest(BaseModel):
    """Pause or resume a doctor's booking pools."""

    online_booking_paused: bool | None = None
    clinic_booking_paused: bool | None = None
    pause_reason: str | None = Field(None, max_length=500)
    paused_until: datetime | None = None


class DayScheduleRequest(BaseModel):
    """One weekday of the weekly template."""

    day_of_week: int = Field(..., ge=0, le=6, description="0=Monday ... 6=Sunday")
    is_available: bool = True
    windows: list[TimeWindowSchema] = []


class WeeklyScheduleRequest(BaseModel):
    """Weekdays to replace in the weekly template."""

    days: list[DayScheduleRequest]


class SpecialDateRequest(BaseModel):
    """Override for a single date."""

    date: date
    is_available: bool = False
    windows: list[TimeWindowSchema] = []
    reason: str | None = Field(None, max_length=500)


class ScheduleResponse(BaseModel):
    """Weekly template plus upcoming overrides."""

    doctor_id: str
    weekly: list[WeeklyScheduleDayResponse]
    special_dates: list[SpecialDateResponse]


class EffectiveScheduleResponse(BaseModel):
    """Windows that apply on a date."""

    doctor_id: str
    date: date
    is_available: bool
    source: str
    windows: list[TimeWindowSchema]
    reason: str | None


class BlockDayRequest(BaseModel):
    """Emergency leave for a date."""

    date: date
    reason: str | None = Field(None, max_length=500)
    cancel_appointments: bool = True


class CancelledAppointmentSummary(BaseModel):
    """Appointment cancelled by a day block."""

    appointment_id: str
    patient_id: str | None
    refund: RefundDecisionResponse


class BlockDayResponse(BaseModel):
    """Result of blocking a day."""

    special_date: SpecialDateResponse
    cancelled: list[CancelledAppointmentSummary]


# ============================================================================
# Endpoints
# ============================================================================


@router.post(
    "",
    response_model=DoctorResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_doctor(
    actor: StaffActor,
    session: DbSession,
    request: DoctorCreateRequest,
) -> DoctorResponse:
    """Create a doctor scheduling profile."""
    store = AvailabilityStore(session)
    doctor = await store.create_doctor(
        name=request.name,
        consultation_duration=request.consultation_duration,
        online_consultation_duration=request.online_consultation_duration,
        online_fee=request.online_fee,
        clinic_fee=request.clinic_fee,
    )
    return DoctorResponse.model_validate(doctor)


@router.get(
    "/{doctor_id}",
    response_model=DoctorResponse,
)
async def get_doctor(
    doctor_id: str,
    session: DbSession,
) -> DoctorResponse:
    """Get a doctor's scheduling profile."""
    doctor = await AvailabilityStore(session).get_doctor(doctor_id)
    return DoctorResponse.model_validate(doctor)


@router.put(
    "/{doctor_id}/booking-controls",
    response_model=DoctorResponse,
)
async def update_booking_controls(
    doctor_id: str,
    actor: StaffActor,
    session: DbSession,
    request: BookingControlsRequest,
) -> DoctorResponse:
    """Pause or resume online/in-clinic booking."""
    doctor = await AvailabilityStore(session).update_booking_controls(
        doctor_id,
        online_booking_paused=request.online_booking_paused,
        clinic_booking_paused=request.clinic_booking_paused,
        pause_reason=request.pause_reason,
        paused_until=request.paused_until,
    )
    return DoctorResponse.model_validate(doctor)


@router.put(
    "/{doctor_id}/schedule",
    response_model=list[WeeklyScheduleDayResponse],
)
async def set_weekly_schedule(
    doctor_id: str,
    actor: StaffActor,
    session: DbSession,
    request: WeeklyScheduleRequest,
) -> list[WeeklyScheduleDayResponse]:
    """Replace days of the weekly template."""
    days = [
        DayTemplate(
            day_of_week=d.day_of_week,
            is_available=d.is_available,
            windows=[w.to_window() for w in d.windows],
        )
        for d in request.days
    ]
    try:
        schedule = await AvailabilityStore(session).set_weekly_schedule(doctor_id, days)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return [WeeklyScheduleDayResponse.model_validate(d) for d in schedule]


@router.get(
    "/{doctor_id}/schedule",
    response_model=ScheduleResponse,
)
async def get_schedule(
    doctor_id: str,
    session: DbSession,
    from_date: date | None = None,
) -> ScheduleResponse:
    """Get the weekly template and special dates."""
    store = AvailabilityStore(session)
    weekly = await store.get_weekly_schedule(doctor_id)
    special_dates = await store.list_special_dates(doctor_id, from_date)

    return ScheduleResponse(
        doctor_id=doctor_id,
        weekly=[WeeklyScheduleDayResponse.model_validate(d) for d in weekly],
        special_dates=[SpecialDateResponse.model_validate(s) for s in special_dates],
    )


@router.get(
    "/{doctor_id}/schedule/{schedule_date}",
    response_model=EffectiveScheduleResponse,
)
async def get_effective_schedule(
    doctor_id: str,
    schedule_date: date,
    session: DbSession,
) -> EffectiveScheduleResponse:
    """Get the windows that apply on a date after overrides."""
    store = AvailabilityStore(session)
    await store.get_doctor(doctor_id)
    schedule = await store.effective_schedule(doctor_id, schedule_date)

    return EffectiveScheduleResponse(
        doctor_id=doctor_id,
        date=schedule.date,
        is_available=schedule.is_available,
        source=schedule.source,
        windows=[TimeWindowSchema.model_validate(w) for w in schedule.windows],
        reason=schedule.reason,
    )


@router.post(
    "/{doctor_id}/special-dates",
    response_model=SpecialDateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def set_special_date(
    doctor_id: str,
    actor: StaffActor,
    session: DbSession,
    request: SpecialDateRequest,
) -> SpecialDateResponse:
    """Add or replace a date override (leave, holiday or special hours)."""
    try:
        special = await AvailabilityStore(session).set_special_date(
            doctor_id,
            request.date,
            is_available=request.is_available,
            windows=[w.to_window() for w in request.windows],
            reason=request.reason,
        )
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return SpecialDateResponse.model_validate(special)


@router.delete(
    "/{doctor_id}/special-dates/{special_date}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def remove_special_date(
    doctor_id: str,
    special_date: date,
    actor: StaffActor,
    session: DbSession,
) -> None:
    """Remove a date override."""
    await AvailabilityStore(session).remove_special_date(doctor_id, special_date)


@router.post(
    "/{doctor_id}/block-day",
    response_model=BlockDayResponse,
)
async def block_day(
    doctor_id: str,
    actor: StaffActor,
    session: DbSession,
    notifier: Notifier,
    gateway: Gateway,
    request: BlockDayRequest,
) -> BlockDayResponse:
    """Emergency leave: block a date and cancel its appointments."""
    machine = AppointmentStateMachine(session, notifier, gateway)
    special, cancelled = await machine.block_day(
        doctor_id,
        request.date,
        reason=request.reason,
        cancel_appointments=request.cancel_appointments,
        actor_id=actor.actor_id,
    )

    return BlockDayResponse(
        special_date=SpecialDateResponse.model_validate(special),
        cancelled=[
            CancelledAppointmentSummary(
                appointment_id=appointment.id,
                patient_id=appointment.patient_id,
                refund=RefundDecisionResponse.from_decision(decision),
            )
            for appointment, decision in cancelled
        ],
    )
