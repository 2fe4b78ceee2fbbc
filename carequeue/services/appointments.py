"""Appointment state machine.

All status changes go through AppointmentStateMachine. Each change is a
conditional UPDATE keyed on the status the caller observed, so two
concurrent changes to the same appointment cannot both apply. Starting a
consultation additionally swaps the doctor's day ledger pointer, which
keeps at most one appointment in progress per doctor and day.
"""

import logging
from datetime import date, datetime
from typing import Any, Sequence
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from carequeue.booking.lifecycle import NO_SHOW_SOURCES, can_transition
from carequeue.booking.policy import (
    RefundDecision,
    RefundPolicy,
    compute_refund,
    policy_from_settings,
)
from carequeue.core.config import settings
from carequeue.core.logging import audit_logger
from carequeue.models.appointment import (
    ActorType,
    Appointment,
    AppointmentStatus,
    AppointmentStatusHistory,
    PaymentStatus,
)
from carequeue.models.scheduling import SpecialDate
from carequeue.services.availability import AvailabilityStore
from carequeue.services.booking import BookingCoordinator
from carequeue.services.errors import (
    InvalidTransitionError,
    NotFoundError,
    PaymentFailedError,
)
from carequeue.services.ledger import DayLedger
from carequeue.services.notifications import (
    NotificationDispatcher,
    NotificationEvent,
    dispatch_safely,
)
from carequeue.services.payments import PaymentGateway, PaymentGatewayError
from carequeue.utils.time import utc_now

logger = logging.getLogger(__name__)

# Cancellation reason (and transition() target) that records a no-show
NO_SHOW = "no_show"


class AppointmentStateMachine:
    """Governs appointment status transitions."""

    def __init__(
        self,
        session: AsyncSession,
        notifier: NotificationDispatcher | None = None,
        payment_gateway: PaymentGateway | None = None,
        refund_policy: RefundPolicy | None = None,
    ):
        self.session = session
        self.notifier = notifier
        self.payment_gateway = payment_gateway
        self.refund_policy = refund_policy or policy_from_settings()

    async def get(self, appointment_id: str) -> Appointment:
        """Get an appointment with fresh column values.

        Raises:
            NotFoundError: If the appointment does not exist
        """
        appointment = await self.session.get(
            Appointment, appointment_id, populate_existing=True
        )
        if not appointment:
            raise NotFoundError(f"Appointment {appointment_id} not found")
        return appointment

    async def history(self, appointment_id: str) -> Sequence[AppointmentStatusHistory]:
        """Status changes of an appointment, oldest first."""
        await self.get(appointment_id)
        result = await self.session.execute(
            select(AppointmentStatusHistory)
            .where(AppointmentStatusHistory.appointment_id == appointment_id)
            .order_by(AppointmentStatusHistory.changed_at)
        )
        return result.scalars().all()

    async def _apply(
        self,
        appointment: Appointment,
        to_status: AppointmentStatus,
        actor_type: str,
        actor_id: str | None,
        reason: str | None,
        now: datetime,
        values: dict[str, Any] | None = None,
    ) -> None:
        """Move an appointment to a new status within the current transaction.

        Raises:
            InvalidTransitionError: If the edge is illegal or the status
                changed since it was read
        """
        from_status = appointment.status
        if not can_transition(from_status, to_status.value):
            raise InvalidTransitionError(
                f"Cannot move appointment from {from_status} to {to_status.value}"
            )

        result = await self.session.execute(
            update(Appointment)
            .where(Appointment.id == appointment.id, Appointment.status == from_status)
            .values(status=to_status.value, updated_at=now, **(values or {}))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidTransitionError(
                f"Appointment {appointment.id} was changed concurrently, reload and retry"
            )

        self.session.add(
            AppointmentStatusHistory(
                id=str(uuid4()),
                appointment_id=appointment.id,
                from_status=from_status,
                to_status=to_status.value,
                actor_type=actor_type,
                actor_id=actor_id,
                reason=reason,
                changed_at=now,
            )
        )
        audit_logger.log(
            action=f"appointment_{to_status.value}",
            actor_type=actor_type,
            actor_id=actor_id,
            entity_type="appointment",
            entity_id=appointment.id,
            metadata={"from": from_status, "reason": reason},
        )

    async def _commit_and_reload(self, appointment: Appointment) -> Appointment:
        await self.session.commit()
        await self.session.refresh(appointment)
        return appointment

    async def transition(
        self,
        appointment_id: str,
        target: str,
        actor_type: str,
        actor_id: str | None = None,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> Appointment:
        """Apply a transition by target status.

        target is one of confirmed, in_progress, completed, cancelled or
        no_show. Cancellation through this entry point uses the actor as
        the cancelling party; cancelled with reason no_show records a
        no-show.
        """
        if target == NO_SHOW:
            return await self.mark_no_show(appointment_id, actor_type, actor_id, reason, now)

        try:
            status = AppointmentStatus(target)
        except ValueError:
            raise InvalidTransitionError(f"Unknown target status '{target}'") from None

        if status == AppointmentStatus.CONFIRMED:
            return await self.confirm(appointment_id, actor_type, actor_id, reason, now)
        if status == AppointmentStatus.IN_PROGRESS:
            return await self.start(appointment_id, actor_type, actor_id, now)
        if status == AppointmentStatus.COMPLETED:
            return await self.complete(appointment_id, actor_type, actor_id, now)
        if status == AppointmentStatus.CANCELLED:
            appointment, _ = await self.cancel(
                appointment_id, actor_type, actor_id, reason, now=now
            )
            return appointment

        raise InvalidTransitionError(f"Appointments cannot be moved back to {target}")

    async def confirm(
        self,
        appointment_id: str,
        actor_type: str,
        actor_id: str | None = None,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> Appointment:
        """Confirm a pending appointment."""
        now = now or utc_now()
        appointment = await self.get(appointment_id)
        await self._apply(
            appointment, AppointmentStatus.CONFIRMED, actor_type, actor_id, reason, now
        )
        return await self._commit_and_reload(appointment)

    async def start(
        self,
        appointment_id: str,
        actor_type: str,
        actor_id: str | None = None,
        now: datetime | None = None,
    ) -> Appointment:
        """Start the consultation for an appointment.

        If another appointment of the same doctor and day is in progress it
        is completed first (auto_complete policy) or the start is rejected
        (reject policy).

        Raises:
            InvalidTransitionError: Illegal edge, rejected conflict or lost race
        """
        now = now or utc_now()
        appointment = await self.get(appointment_id)
        if not can_transition(appointment.status, AppointmentStatus.IN_PROGRESS.value):
            raise InvalidTransitionError(
                f"Cannot start an appointment that is {appointment.status}"
            )

        ledger = DayLedger(self.session, appointment.doctor_id, appointment.appointment_date)
        try:
            await ledger.ensure()
            current_id = await ledger.current_appointment_id()

            if current_id is not None and current_id != appointment.id:
                current = await self.session.get(
                    Appointment, current_id, populate_existing=True
                )
                if current is not None and current.status == AppointmentStatus.IN_PROGRESS.value:
                    if settings.in_progress_conflict_policy == "reject":
                        raise InvalidTransitionError(
                            "Another consultation is already in progress for this doctor"
                        )
                    await self._apply(
                        current,
                        AppointmentStatus.COMPLETED,
                        ActorType.SYSTEM.value,
                        None,
                        "auto-completed when the next consultation started",
                        now,
                        {"consultation_ended_at": now},
                    )

            if not await ledger.compare_and_set_current(current_id, appointment.id):
                raise InvalidTransitionError(
                    "Another consultation was started concurrently, reload the queue"
                )

            await self._apply(
                appointment,
                AppointmentStatus.IN_PROGRESS,
                actor_type,
                actor_id,
                None,
                now,
                {"consultation_started_at": now},
            )
        except Exception:
            await self.session.rollback()
            raise

        return await self._commit_and_reload(appointment)

    async def complete(
        self,
        appointment_id: str,
        actor_type: str,
        actor_id: str | None = None,
        now: datetime | None = None,
    ) -> Appointment:
        """Finish an in-progress consultation and free the current-patient pointer."""
        now = now or utc_now()
        appointment = await self.get(appointment_id)
        try:
            await self._apply(
                appointment,
                AppointmentStatus.COMPLETED,
                actor_type,
                actor_id,
                None,
                now,
                {"consultation_ended_at": now},
            )
            ledger = DayLedger(self.session, appointment.doctor_id, appointment.appointment_date)
            await ledger.compare_and_set_current(appointment.id, None)
        except Exception:
            await self.session.rollback()
            raise

        return await self._commit_and_reload(appointment)

    def preview_refund_for(
        self,
        appointment: Appointment,
        cancelled_by: str,
        now: datetime,
    ) -> RefundDecision:
        return compute_refund(appointment, cancelled_by, now, policy=self.refund_policy)

    async def preview_refund(
        self,
        appointment_id: str,
        cancelled_by: str,
        now: datetime | None = None,
    ) -> RefundDecision:
        """Refund a cancellation would produce right now, without cancelling."""
        now = now or utc_now()
        appointment = await self.get(appointment_id)
        return self.preview_refund_for(appointment, cancelled_by, now)

    @staticmethod
    def _refund_values(decision: RefundDecision) -> dict[str, Any]:
        values: dict[str, Any] = {
            "refund_policy_applied": decision.policy_applied.value,
            "refund_amount": decision.refund_amount,
            "wallet_credit": decision.wallet_credit,
            "refund_snapshot": decision.to_dict(),
        }
        if decision.eligible:
            values["payment_status"] = PaymentStatus.REFUND_PENDING.value
        return values

    async def cancel(
        self,
        appointment_id: str,
        cancelled_by: str,
        actor_id: str | None = None,
        reason: str | None = None,
        notify_other: bool = True,
        now: datetime | None = None,
    ) -> tuple[Appointment, RefundDecision]:
        """Cancel an appointment and price the refund.

        The slot goes back to open when the cancellation happens before the
        slot starts. The refund decision is stored on the appointment; the
        payment gateway is asked to refund after commit, best-effort. A
        reason of no_show records a no-show instead.

        Returns:
            (appointment, refund decision)

        Raises:
            NotFoundError: Unknown appointment
            InvalidTransitionError: Appointment already completed or cancelled
        """
        now = now or utc_now()
        cancelled_by = ActorType(cancelled_by).value
        if reason == NO_SHOW:
            return await self._record_no_show(appointment_id, cancelled_by, actor_id, None, now)

        appointment = await self.get(appointment_id)
        was_in_progress = appointment.status == AppointmentStatus.IN_PROGRESS.value

        decision = self.preview_refund_for(appointment, cancelled_by, now)
        values = {
            "cancelled_at": now,
            "cancelled_by": cancelled_by,
            "cancelled_by_id": actor_id,
            "cancellation_reason": reason,
            **self._refund_values(decision),
        }

        try:
            await self._apply(
                appointment,
                AppointmentStatus.CANCELLED,
                cancelled_by,
                actor_id,
                reason,
                now,
                values,
            )
            if appointment.slot_id and now < appointment.scheduled_start:
                await BookingCoordinator(self.session).release_slot(
                    appointment.slot_id, appointment.id
                )
            if was_in_progress:
                ledger = DayLedger(
                    self.session, appointment.doctor_id, appointment.appointment_date
                )
                await ledger.compare_and_set_current(appointment.id, None)
        except Exception:
            await self.session.rollback()
            raise

        appointment = await self._commit_and_reload(appointment)
        logger.info(
            f"Cancelled appointment {appointment.id} by {cancelled_by}: "
            f"{decision.policy_applied.value} refund={decision.refund_amount}"
        )

        if decision.eligible:
            await self._request_refund(appointment, decision)

        if notify_other:
            await dispatch_safely(
                self.notifier,
                NotificationEvent.APPOINTMENT_CANCELLED,
                {
                    "appointment_id": appointment.id,
                    "patient_id": appointment.patient_id,
                    "doctor_id": appointment.doctor_id,
                    "cancelled_by": cancelled_by,
                    "reason": reason,
                    "refund": decision.to_dict(),
                },
            )

        return appointment, decision

    async def _request_refund(self, appointment: Appointment, decision: RefundDecision) -> None:
        """Ask the payment gateway to move the money; failures only log."""
        if self.payment_gateway is None:
            return
        try:
            await self.payment_gateway.refund(
                appointment.payment_reference or appointment.id,
                decision.refund_amount,
                decision.policy_applied.value,
            )
        except Exception:
            logger.exception(
                f"Refund request for appointment {appointment.id} failed, left as refund_pending"
            )

    async def capture_payment(
        self,
        appointment_id: str,
        reference: str,
        actor_type: str,
        actor_id: str | None = None,
        now: datetime | None = None,
    ) -> Appointment:
        """Capture the consultation fee through the payment gateway.

        payment_status moves from pending to completed only once the
        gateway confirms the capture; the gateway transaction id replaces
        the checkout reference.

        Raises:
            NotFoundError: Unknown appointment
            InvalidTransitionError: Appointment closed or payment not pending
            PaymentFailedError: No gateway configured or the capture failed
        """
        now = now or utc_now()
        appointment = await self.get(appointment_id)
        if appointment.status in (
            AppointmentStatus.COMPLETED.value,
            AppointmentStatus.CANCELLED.value,
        ):
            raise InvalidTransitionError(
                f"Cannot take payment for an appointment that is {appointment.status}"
            )
        if appointment.payment_status != PaymentStatus.PENDING.value:
            raise InvalidTransitionError(
                f"Payment for appointment {appointment.id} is already {appointment.payment_status}"
            )
        if self.payment_gateway is None:
            raise PaymentFailedError("No payment gateway configured")

        try:
            transaction_id = await self.payment_gateway.capture(reference, appointment.amount)
        except PaymentGatewayError as e:
            logger.warning(f"Capture for appointment {appointment.id} failed: {e}")
            raise PaymentFailedError(str(e) or None) from e

        result = await self.session.execute(
            update(Appointment)
            .where(
                Appointment.id == appointment.id,
                Appointment.payment_status == PaymentStatus.PENDING.value,
            )
            .values(
                payment_status=PaymentStatus.COMPLETED.value,
                payment_reference=transaction_id,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.session.rollback()
            logger.error(
                f"Captured {transaction_id} for appointment {appointment.id} "
                f"but its payment changed concurrently"
            )
            raise InvalidTransitionError(
                f"Payment for appointment {appointment.id} was recorded concurrently"
            )

        audit_logger.log(
            action="payment_captured",
            actor_type=actor_type,
            actor_id=actor_id,
            entity_type="appointment",
            entity_id=appointment.id,
            metadata={"amount": str(appointment.amount), "transaction_id": transaction_id},
        )
        return await self._commit_and_reload(appointment)

    async def mark_no_show(
        self,
        appointment_id: str,
        actor_type: str,
        actor_id: str | None = None,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> Appointment:
        """Record that the patient did not attend.

        Allowed only from pending/confirmed and only once the appointment
        time has passed. Stored as cancelled with is_no_show set and a zero
        refund.
        """
        appointment, _ = await self._record_no_show(
            appointment_id, actor_type, actor_id, reason, now or utc_now()
        )
        return appointment

    async def _record_no_show(
        self,
        appointment_id: str,
        actor_type: str,
        actor_id: str | None,
        reason: str | None,
        now: datetime,
    ) -> tuple[Appointment, RefundDecision]:
        appointment = await self.get(appointment_id)

        if appointment.status not in {s.value for s in NO_SHOW_SOURCES}:
            raise InvalidTransitionError(
                f"Cannot mark an appointment that is {appointment.status} as no-show"
            )
        if now < appointment.scheduled_start:
            raise InvalidTransitionError(
                "Cannot mark a no-show before the appointment time"
            )

        decision = compute_refund(
            appointment, actor_type, now, no_show=True, policy=self.refund_policy
        )
        values = {
            "cancelled_at": now,
            "cancelled_by": actor_type,
            "cancelled_by_id": actor_id,
            "cancellation_reason": reason or NO_SHOW,
            "is_no_show": True,
            **self._refund_values(decision),
        }
        try:
            await self._apply(
                appointment,
                AppointmentStatus.CANCELLED,
                actor_type,
                actor_id,
                reason or NO_SHOW,
                now,
                values,
            )
        except Exception:
            await self.session.rollback()
            raise

        appointment = await self._commit_and_reload(appointment)
        return appointment, decision

    async def block_day(
        self,
        doctor_id: str,
        day: date,
        reason: str | None = None,
        cancel_appointments: bool = True,
        actor_id: str | None = None,
        now: datetime | None = None,
    ) -> tuple[SpecialDate, list[tuple[Appointment, RefundDecision]]]:
        """Emergency leave: mark a date unavailable and cancel its appointments.

        Appointments are cancelled as doctor-side cancellations, so patients
        are refunded in full and compensated. An appointment that changes
        state while the day is being cleared is skipped and logged.
        """
        now = now or utc_now()
        special = await AvailabilityStore(self.session).set_special_date(
            doctor_id, day, is_available=False, reason=reason or "Doctor unavailable"
        )

        cancelled: list[tuple[Appointment, RefundDecision]] = []
        if not cancel_appointments:
            return special, cancelled

        result = await self.session.execute(
            select(Appointment.id).where(
                Appointment.doctor_id == doctor_id,
                Appointment.appointment_date == day,
                Appointment.status.in_(
                    [
                        AppointmentStatus.PENDING.value,
                        AppointmentStatus.CONFIRMED.value,
                        AppointmentStatus.IN_PROGRESS.value,
                    ]
                ),
            )
        )
        for appointment_id in result.scalars().all():
            try:
                cancelled.append(
                    await self.cancel(
                        appointment_id,
                        ActorType.DOCTOR.value,
                        actor_id,
                        reason or "Doctor unavailable",
                        now=now,
                    )
                )
            except InvalidTransitionError as e:
                logger.warning(f"Skipped appointment {appointment_id} while blocking {day}: {e}")

        logger.info(f"Blocked {day} for {doctor_id}, cancelled {len(cancelled)} appointments")
        return special, cancelled
