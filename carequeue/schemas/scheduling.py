"""Schemas shared by the scheduling endpoints."""

from datetime import date, datetime, time

from pydantic import BaseModel, Field

from carequeue.booking.policy import RefundDecision
from carequeue.booking.slots import TimeWindow
from carequeue.models.scheduling import WindowConsultationType


class TimeWindowSchema(BaseModel):
    """Availability window within a day."""

    start_time: time
    end_time: time
    consultation_type: WindowConsultationType = WindowConsultationType.BOTH
    max_concurrent: int = Field(1, ge=1, le=50)

    model_config = {"from_attributes": True}

    def to_window(self) -> TimeWindow:
        return TimeWindow(
            start_time=self.start_time,
            end_time=self.end_time,
            consultation_type=self.consultation_type.value,
            max_concurrent=self.max_concurrent,
        )


class DoctorResponse(BaseModel):
    """Doctor scheduling profile."""

    id: str
    name: str
    consultation_duration: int | None
    online_consultation_duration: int | None
    online_fee: float
    clinic_fee: float
    online_booking_paused: bool
    clinic_booking_paused: bool
    pause_reason: str | None
    paused_until: datetime | None
    is_active: bool

    model_config = {"from_attributes": True}


class WeeklyScheduleDayResponse(BaseModel):
    """One weekday of a weekly template."""

    id: str
    day_of_week: int
    is_available: bool
    windows: list[TimeWindowSchema]

    model_config = {"from_attributes": True}


class SpecialDateResponse(BaseModel):
    """Date-specific override."""

    id: str
    doctor_id: str
    special_date: date
    is_available: bool
    reason: str | None
    windows: list[TimeWindowSchema]

    model_config = {"from_attributes": True}


class SlotResponse(BaseModel):
    """Slot with its status at request time."""

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

    model_config = {"from_attributes": True}


class AppointmentResponse(BaseModel):
    """Appointment response."""

    id: str
    doctor_id: str
    patient_id: str | None
    walk_in_name: str | None
    walk_in_phone: str | None
    slot_id: str | None
    appointment_date: date
    appointment_time: time
    duration_minutes: int
    consultation_type: str
    status: str
    token_number: int | None
    booking_source: str
    payment_status: str
    amount: float
    payment_reference: str | None
    reason: str | None
    skip_count: int
    is_no_show: bool
    consultation_started_at: datetime | None
    consultation_ended_at: datetime | None
    cancelled_at: datetime | None
    cancelled_by: str | None
    cancellation_reason: str | None
    refund_policy_applied: str | None
    refund_amount: float | None
    wallet_credit: float | None
    created_at: datetime

    model_config = {"from_attributes": True}


class RefundDecisionResponse(BaseModel):
    """Refund breakdown."""

    refund_percentage: int
    refund_amount: float
    gateway_fee_deducted: float
    platform_retained: float
    wallet_credit: float
    policy_applied: str
    hours_until_appointment: float
    original_amount: float
    eligible: bool
    reason: str

    @classmethod
    def from_decision(cls, decision: RefundDecision) -> "RefundDecisionResponse":
        return cls(**decision.to_dict())
