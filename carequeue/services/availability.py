"""Availability store: doctor profiles, weekly templates and date overrides.

Every consumer that needs to know when a doctor works (slot allocation,
walk-ins, schedule screens) reads through AvailabilityStore instead of
re-deriving the weekly/override rules itself.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import Sequence
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from carequeue.booking.slots import TimeWindow
from carequeue.core.config import settings
from carequeue.models.scheduling import (
    ConsultationType,
    DoctorProfile,
    ScheduleWindow,
    SpecialDate,
    SpecialDateWindow,
    WeeklyScheduleDay,
)
from carequeue.services.errors import NotFoundError
from carequeue.utils.time import ensure_aware, utc_now

logger = logging.getLogger(__name__)


@dataclass
class DayTemplate:
    """Desired state of one weekday in a weekly template."""

    day_of_week: int
    is_available: bool = True
    windows: list[TimeWindow] = field(default_factory=list)


@dataclass
class EffectiveSchedule:
    """Windows that apply to one calendar date after overrides."""

    doctor_id: str
    date: date
    is_available: bool
    source: str  # "special_date", "weekly" or "none"
    windows: list[TimeWindow] = field(default_factory=list)
    reason: str | None = None


def _validate_windows(windows: Sequence[TimeWindow]) -> None:
    for window in windows:
        if window.end_time <= window.start_time:
            raise ValueError(
                f"Window {window.start_time}-{window.end_time} must end after it starts"
            )
        if window.max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")


def _as_time_windows(rows) -> list[TimeWindow]:
    return [
        TimeWindow(
            start_time=row.start_time,
            end_time=row.end_time,
            consultation_type=row.consultation_type,
            max_concurrent=row.max_concurrent,
        )
        for row in sorted(rows, key=lambda r: (r.position, r.start_time))
    ]


class AvailabilityStore:
    """Reads and maintains doctors' availability."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # Doctor profiles

    async def create_doctor(
        self,
        name: str,
        consultation_duration: int | None = None,
        online_consultation_duration: int | None = None,
        online_fee: Decimal = Decimal("0"),
        clinic_fee: Decimal = Decimal("0"),
    ) -> DoctorProfile:
        """Create a doctor profile."""
        doctor = DoctorProfile(
            id=str(uuid4()),
            name=name,
            consultation_duration=consultation_duration,
            online_consultation_duration=online_consultation_duration,
            online_fee=online_fee,
            clinic_fee=clinic_fee,
        )
        self.session.add(doctor)
        await self.session.commit()
        await self.session.refresh(doctor)

        logger.info(f"Created doctor profile {doctor.id}")
        return doctor

    async def get_doctor(self, doctor_id: str) -> DoctorProfile:
        """Get an active doctor profile.

        Raises:
            NotFoundError: If the doctor does not exist or is inactive
        """
        result = await self.session.execute(
            select(DoctorProfile).where(
                DoctorProfile.id == doctor_id,
                DoctorProfile.is_active == True,
            )
        )
        doctor = result.scalar_one_or_none()
        if not doctor:
            raise NotFoundError(f"Doctor {doctor_id} not found")
        return doctor

    async def update_booking_controls(
        self,
        doctor_id: str,
        online_booking_paused: bool | None = None,
        clinic_booking_paused: bool | None = None,
        pause_reason: str | None = None,
        paused_until: datetime | None = None,
    ) -> DoctorProfile:
        """Pause or resume booking for a doctor's online/in-clinic pools."""
        doctor = await self.get_doctor(doctor_id)

        if online_booking_paused is not None:
            doctor.online_booking_paused = online_booking_paused
        if clinic_booking_paused is not None:
            doctor.clinic_booking_paused = clinic_booking_paused
        doctor.pause_reason = pause_reason
        doctor.paused_until = paused_until

        await self.session.commit()
        await self.session.refresh(doctor)

        logger.info(
            f"Booking controls for {doctor_id}: online_paused={doctor.online_booking_paused} "
            f"clinic_paused={doctor.clinic_booking_paused}"
        )
        return doctor

    @staticmethod
    def consultation_duration(doctor: DoctorProfile, consultation_type: str) -> int:
        """Slot length in minutes for a doctor and pool."""
        if (
            consultation_type == ConsultationType.ONLINE.value
            and doctor.online_consultation_duration
        ):
            return doctor.online_consultation_duration
        return doctor.consultation_duration or settings.default_consultation_duration

    @staticmethod
    def consultation_fee(doctor: DoctorProfile, consultation_type: str) -> Decimal:
        if consultation_type == ConsultationType.ONLINE.value:
            return doctor.online_fee
        return doctor.clinic_fee

    @staticmethod
    def is_pool_paused(
        doctor: DoctorProfile,
        consultation_type: str,
        now: datetime | None = None,
    ) -> bool:
        """Whether booking into a pool is currently paused.

        A pause with paused_until in the past has lapsed.
        """
        if consultation_type == ConsultationType.ONLINE.value:
            paused = doctor.online_booking_paused
        else:
            paused = doctor.clinic_booking_paused
        if not paused:
            return False
        if doctor.paused_until is None:
            return True
        return ensure_aware(doctor.paused_until) > (now or utc_now())

    # Weekly template

    async def get_weekly_schedule(self, doctor_id: str) -> Sequence[WeeklyScheduleDay]:
        """Get the configured weekdays for a doctor, Monday first."""
        await self.get_doctor(doctor_id)
        result = await self.session.execute(
            select(WeeklyScheduleDay)
            .where(WeeklyScheduleDay.doctor_id == doctor_id)
            .order_by(WeeklyScheduleDay.day_of_week)
        )
        return result.scalars().all()

    async def set_weekly_schedule(
        self,
        doctor_id: str,
        days: Sequence[DayTemplate],
    ) -> Sequence[WeeklyScheduleDay]:
        """Replace the given weekdays of a doctor's weekly template.

        Days not listed are left unchanged.

        Raises:
            NotFoundError: If the doctor does not exist
            ValueError: If a window is malformed or a weekday repeats
        """
        await self.get_doctor(doctor_id)

        seen = set()
        for day in days:
            if not 0 <= day.day_of_week <= 6:
                raise ValueError(f"Invalid day_of_week {day.day_of_week}")
            if day.day_of_week in seen:
                raise ValueError(f"Day {day.day_of_week} listed more than once")
            seen.add(day.day_of_week)
            _validate_windows(day.windows)

        for day in days:
            result = await self.session.execute(
                select(WeeklyScheduleDay).where(
                    WeeklyScheduleDay.doctor_id == doctor_id,
                    WeeklyScheduleDay.day_of_week == day.day_of_week,
                )
            )
            row = result.scalar_one_or_none()
            windows = [
                ScheduleWindow(
                    id=str(uuid4()),
                    position=position,
                    start_time=w.start_time,
                    end_time=w.end_time,
                    consultation_type=w.consultation_type,
                    max_concurrent=w.max_concurrent,
                )
                for position, w in enumerate(day.windows)
            ]
            if row is None:
                row = WeeklyScheduleDay(
                    id=str(uuid4()),
                    doctor_id=doctor_id,
                    day_of_week=day.day_of_week,
                    is_available=day.is_available,
                    windows=windows,
                )
                self.session.add(row)
            else:
                row.is_available = day.is_available
                row.windows = windows

        await self.session.commit()
        logger.info(f"Updated weekly schedule for {doctor_id}: days={sorted(seen)}")

        return await self.get_weekly_schedule(doctor_id)

    # Date overrides

    async def get_special_date(self, doctor_id: str, day: date) -> SpecialDate | None:
        result = await self.session.execute(
            select(SpecialDate).where(
                SpecialDate.doctor_id == doctor_id,
                SpecialDate.special_date == day,
            )
        )
        return result.scalar_one_or_none()

    async def list_special_dates(
        self,
        doctor_id: str,
        from_date: date | None = None,
    ) -> Sequence[SpecialDate]:
        """List a doctor's overrides, optionally from a date onwards."""
        query = select(SpecialDate).where(SpecialDate.doctor_id == doctor_id)
        if from_date is not None:
            query = query.where(SpecialDate.special_date >= from_date)
        result = await self.session.execute(query.order_by(SpecialDate.special_date))
        return result.scalars().all()

    async def set_special_date(
        self,
        doctor_id: str,
        day: date,
        is_available: bool,
        windows: Sequence[TimeWindow] = (),
        reason: str | None = None,
    ) -> SpecialDate:
        """Create or replace the override for a date.

        An available override with no windows means the doctor works but
        offers no bookable time that day.
        """
        await self.get_doctor(doctor_id)
        _validate_windows(windows)

        rows = [
            SpecialDateWindow(
                id=str(uuid4()),
                position=position,
                start_time=w.start_time,
                end_time=w.end_time,
                consultation_type=w.consultation_type,
                max_concurrent=w.max_concurrent,
            )
            for position, w in enumerate(windows if is_available else ())
        ]

        special = await self.get_special_date(doctor_id, day)
        if special is None:
            special = SpecialDate(
                id=str(uuid4()),
                doctor_id=doctor_id,
                special_date=day,
                is_available=is_available,
                reason=reason,
                windows=rows,
            )
            self.session.add(special)
        else:
            special.is_available = is_available
            special.reason = reason
            special.windows = rows

        await self.session.commit()
        await self.session.refresh(special)

        logger.info(
            f"Special date {day} for {doctor_id}: available={is_available} windows={len(rows)}"
        )
        return special

    async def remove_special_date(self, doctor_id: str, day: date) -> None:
        """Remove the override for a date, reverting to the weekly template.

        Raises:
            NotFoundError: If no override exists
        """
        special = await self.get_special_date(doctor_id, day)
        if special is None:
            raise NotFoundError(f"No special date {day} for doctor {doctor_id}")

        await self.session.delete(special)
        await self.session.commit()
        logger.info(f"Removed special date {day} for {doctor_id}")

    # Effective view

    async def effective_schedule(self, doctor_id: str, day: date) -> EffectiveSchedule:
        """Resolve the windows that apply on a date.

        A special date takes precedence over the weekly template. A weekday
        with no template entry is unavailable.
        """
        special = await self.get_special_date(doctor_id, day)
        if special is not None:
            return EffectiveSchedule(
                doctor_id=doctor_id,
                date=day,
                is_available=special.is_available,
                source="special_date",
                windows=_as_time_windows(special.windows) if special.is_available else [],
                reason=special.reason,
            )

        result = await self.session.execute(
            select(WeeklyScheduleDay).where(
                WeeklyScheduleDay.doctor_id == doctor_id,
                WeeklyScheduleDay.day_of_week == day.weekday(),
            )
        )
        weekly = result.scalar_one_or_none()
        if weekly is None:
            return EffectiveSchedule(
                doctor_id=doctor_id,
                date=day,
                is_available=False,
                source="none",
            )

        return EffectiveSchedule(
            doctor_id=doctor_id,
            date=day,
            is_available=weekly.is_available,
            source="weekly",
            windows=_as_time_windows(weekly.windows) if weekly.is_available else [],
        )
