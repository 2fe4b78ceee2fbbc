"""Cancellation refund policy.

compute_refund() is a pure function of the appointment, the cancelling
party and the current time. The refund preview and the actual
cancellation both call it so the two can never disagree.
"""

from dataclasses import asdict, dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Optional

from carequeue.models.appointment import ActorType, AppointmentStatus, PaymentStatus

WHOLE = Decimal("1")
CENTS = Decimal("0.01")
HUNDRED = Decimal("100")

# Cancellations by anyone other than the patient are the clinic breaking
# its commitment and are always refunded in full
CLINIC_SIDE_CANCELLERS = frozenset(
    {ActorType.DOCTOR, ActorType.CLINIC, ActorType.ADMIN, ActorType.SYSTEM}
)


class RefundPolicyApplied(str, Enum):
    """Which refund rule produced a decision."""

    NOT_APPLICABLE = "not_applicable"
    COMPLETED = "completed"
    NO_SHOW = "no_show"
    DOCTOR_CANCELLED = "doctor_cancelled"
    FULL_REFUND = "full_refund"
    PARTIAL_REFUND = "partial_refund"


@dataclass(frozen=True)
class RefundPolicy:
    """Configurable refund rules."""

    full_refund_window_hours: Decimal = Decimal("6")
    partial_refund_percentage: int = 50
    gateway_fee_percentage: Decimal = Decimal("2.5")
    doctor_cancel_compensation: Decimal = Decimal("50")
    minimum_refund_amount: Decimal = Decimal("1")


@dataclass(frozen=True)
class RefundDecision:
    """Refund breakdown for a cancellation.

    Attributes:
        refund_percentage: Share of the original amount refunded
        refund_amount: Amount returned to the patient after fees
        gateway_fee_deducted: Payment gateway fee withheld from the refund
        platform_retained: Amount the platform keeps
        wallet_credit: Compensation credited on clinic-side cancellation
        policy_applied: Rule that produced this decision
        hours_until_appointment: Lead time at cancellation (negative if late)
        original_amount: Amount originally paid
        eligible: Whether the refund is large enough to be processed
        reason: Human-readable explanation
    """

    refund_percentage: int
    refund_amount: Decimal
    gateway_fee_deducted: Decimal
    platform_retained: Decimal
    wallet_credit: Decimal
    policy_applied: RefundPolicyApplied
    hours_until_appointment: float
    original_amount: Decimal
    eligible: bool
    reason: str

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe representation, stored as the cancellation audit trail."""
        data = asdict(self)
        for key, value in data.items():
            if isinstance(value, Decimal):
                data[key] = float(value)
        data["policy_applied"] = self.policy_applied.value
        return data


def policy_from_settings(settings: Optional[Any] = None) -> RefundPolicy:
    """Build a RefundPolicy from application settings."""
    if settings is None:
        from carequeue.core.config import settings

    return RefundPolicy(
        full_refund_window_hours=Decimal(str(settings.full_refund_window_hours)),
        partial_refund_percentage=settings.partial_refund_percentage,
        gateway_fee_percentage=Decimal(str(settings.gateway_fee_percentage)),
        doctor_cancel_compensation=Decimal(str(settings.doctor_cancel_compensation)),
        minimum_refund_amount=Decimal(str(settings.minimum_refund_amount)),
    )


def hours_until(appointment, now: datetime) -> float:
    """Hours from now until the appointment start (negative once started)."""
    delta = appointment.scheduled_start - now
    return delta.total_seconds() / 3600


def _percentage_of(amount: Decimal, percentage) -> Decimal:
    """Percentage of an amount rounded half-up to a whole currency unit."""
    return (amount * Decimal(percentage) / HUNDRED).quantize(WHOLE, rounding=ROUND_HALF_UP)


def compute_refund(
    appointment,
    cancelled_by: ActorType | str,
    now: datetime,
    no_show: bool = False,
    policy: Optional[RefundPolicy] = None,
) -> RefundDecision:
    """Compute the refund for cancelling an appointment.

    Rules, first match wins:
        1. Nothing was paid -> not_applicable
        2. Appointment already completed -> completed (no refund)
        3. No-show -> no_show (no refund)
        4. Doctor/clinic side cancels -> doctor_cancelled (100% plus credit)
        5. Patient cancels after the start -> no_show (no refund)
        6. Patient cancels at least full_refund_window_hours ahead ->
           full_refund (100% minus gateway fee)
        7. Otherwise -> partial_refund

    Args:
        appointment: Object exposing amount, status, payment_status and
            scheduled_start (an Appointment row in practice)
        cancelled_by: Party cancelling
        now: Current time (timezone-aware)
        no_show: Whether the cancellation records a no-show
        policy: Rules to apply; defaults to the configured policy

    Returns:
        RefundDecision; never raises for a well-formed appointment
    """
    policy = policy or policy_from_settings()
    cancelled_by = ActorType(cancelled_by)
    original = Decimal(str(appointment.amount or 0)).quantize(CENTS)
    lead_time = hours_until(appointment, now)
    hours = round(lead_time, 2)

    def decide(
        policy_applied: RefundPolicyApplied,
        percentage: int,
        reason: str,
        fee: Decimal = Decimal("0"),
        wallet_credit: Decimal = Decimal("0"),
        retained: Optional[Decimal] = None,
    ) -> RefundDecision:
        gross = _percentage_of(original, percentage)
        refund = max(Decimal("0"), gross - fee).quantize(CENTS)
        if retained is None:
            retained = max(Decimal("0"), original - refund - fee)
        return RefundDecision(
            refund_percentage=percentage,
            refund_amount=refund,
            gateway_fee_deducted=fee.quantize(CENTS),
            platform_retained=retained.quantize(CENTS),
            wallet_credit=wallet_credit.quantize(CENTS),
            policy_applied=policy_applied,
            hours_until_appointment=hours,
            original_amount=original,
            eligible=refund > 0 and refund >= policy.minimum_refund_amount,
            reason=reason,
        )

    if appointment.payment_status != PaymentStatus.COMPLETED.value:
        return decide(
            RefundPolicyApplied.NOT_APPLICABLE,
            0,
            "No payment was made for this appointment",
            retained=Decimal("0"),
        )

    if appointment.status == AppointmentStatus.COMPLETED.value:
        return decide(
            RefundPolicyApplied.COMPLETED,
            0,
            "Consultation already completed",
        )

    if no_show:
        return decide(
            RefundPolicyApplied.NO_SHOW,
            0,
            "No refund for missed appointments",
        )

    if cancelled_by in CLINIC_SIDE_CANCELLERS:
        return decide(
            RefundPolicyApplied.DOCTOR_CANCELLED,
            100,
            "Full refund plus compensation credit, cancelled by the clinic",
            wallet_credit=policy.doctor_cancel_compensation,
        )

    if lead_time < 0:
        return decide(
            RefundPolicyApplied.NO_SHOW,
            0,
            "Cancelled after the appointment start, treated as a no-show",
        )

    if Decimal(str(lead_time)) >= policy.full_refund_window_hours:
        fee = (original * policy.gateway_fee_percentage / HUNDRED).quantize(
            CENTS, rounding=ROUND_HALF_UP
        )
        return decide(
            RefundPolicyApplied.FULL_REFUND,
            100,
            f"Cancelled more than {policy.full_refund_window_hours} hours before "
            f"the appointment, full refund minus gateway fee",
            fee=fee,
        )

    return decide(
        RefundPolicyApplied.PARTIAL_REFUND,
        policy.partial_refund_percentage,
        f"Cancelled within {policy.full_refund_window_hours} hours of the "
        f"appointment, {policy.partial_refund_percentage}% refund",
    )


def get_refund_policy_details(policy: Optional[RefundPolicy] = None) -> dict[str, Any]:
    """Describe the configured refund rules for display to patients."""
    policy = policy or policy_from_settings()
    window = float(policy.full_refund_window_hours)
    return {
        "full_refund_window_hours": window,
        "partial_refund_percentage": policy.partial_refund_percentage,
        "gateway_fee_percentage": float(policy.gateway_fee_percentage),
        "doctor_cancel_compensation": float(policy.doctor_cancel_compensation),
        "minimum_refund_amount": float(policy.minimum_refund_amount),
        "rules": [
            {
                "policy": RefundPolicyApplied.FULL_REFUND.value,
                "condition": f"Patient cancels {window:g} or more hours before the appointment",
                "refund": f"100% minus {float(policy.gateway_fee_percentage):g}% gateway fee",
            },
            {
                "policy": RefundPolicyApplied.PARTIAL_REFUND.value,
                "condition": f"Patient cancels less than {window:g} hours before the appointment",
                "refund": f"{policy.partial_refund_percentage}%",
            },
            {
                "policy": RefundPolicyApplied.DOCTOR_CANCELLED.value,
                "condition": "Doctor or clinic cancels",
                "refund": f"100% plus {float(policy.doctor_cancel_compensation):g} wallet credit",
            },
            {
                "policy": RefundPolicyApplied.NO_SHOW.value,
                "condition": "Patient misses the appointment or cancels after it starts",
                "refund": "0%",
            },
        ],
    }
