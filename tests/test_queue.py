"""Tests for the queue manager."""

import asyncio
from datetime import time
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from carequeue.booking.queue import order_waiting
from carequeue.booking.slots import TimeWindow
from carequeue.core.config import settings
from carequeue.db.base import Base
from carequeue.models.appointment import Appointment
from carequeue.models.scheduling import DoctorProfile
from carequeue.services.appointments import AppointmentStateMachine
from carequeue.services.availability import AvailabilityStore, DayTemplate
from carequeue.services.booking import BookingCoordinator, WalkInPatient
from carequeue.services.errors import InvalidTransitionError, NotFoundError
from carequeue.services.notifications import NotificationEvent
from carequeue.services.queue import QueueManager
from carequeue.services.slots import SlotAllocator
from tests.conftest import MIDNIGHT, MONDAY, at


def waiting(token: int | None, hour: int, minute: int = 0, skips: int = 0) -> Appointment:
    return Appointment(
        id=f"appt-{token}-{hour}{minute:02d}",
        status="confirmed",
        token_number=token,
        appointment_time=time(hour, minute),
        skip_count=skips,
    )


class TestQueueOrdering:
    """Pure ordering of waiting entries."""

    def test_mixed_tokens_sort_consistently(self) -> None:
        entries = [
            waiting(None, 9),
            waiting(3, 9, 30),
            waiting(1, 10),
            waiting(None, 8, 30),
            waiting(2, 11),
        ]

        expected = [
            (1, time(10)),
            (2, time(11)),
            (3, time(9, 30)),
            (None, time(8, 30)),
            (None, time(9)),
        ]
        for ordering in (entries, list(reversed(entries)), entries[2:] + entries[:2]):
            ordered = order_waiting(ordering, 15)
            assert [
                (e.appointment.token_number, e.appointment.appointment_time) for e in ordered
            ] == expected

    def test_skipped_entries_go_last(self) -> None:
        ordered = order_waiting([waiting(1, 9, skips=1), waiting(2, 9, 30), waiting(3, 10)], 20)

        assert [e.appointment.token_number for e in ordered] == [2, 3, 1]
        assert [e.estimated_wait_minutes for e in ordered] == [0, 20, 40]


@pytest.fixture
async def booked(async_session: AsyncSession, doctor: DoctorProfile, clinic_slots):
    """Three bookings made out of time order: 09:00, 10:00, 09:30."""
    coordinator = BookingCoordinator(async_session)
    return [
        await coordinator.book_slot(clinic_slots[0].id, "clinic", "patient-1", now=MIDNIGHT),
        await coordinator.book_slot(clinic_slots[2].id, "clinic", "patient-2", now=MIDNIGHT),
        await coordinator.book_slot(clinic_slots[1].id, "clinic", "patient-3", now=MIDNIGHT),
    ]


class TestBuildQueue:
    """Queue ordering and wait estimates."""

    async def test_orders_by_token(
        self, async_session: AsyncSession, doctor: DoctorProfile, booked
    ) -> None:
        snapshot = await QueueManager(async_session).build_queue(doctor.id, MONDAY)

        assert snapshot.current is None
        assert [e.appointment.patient_id for e in snapshot.waiting] == [
            "patient-1",
            "patient-2",
            "patient-3",
        ]
        assert [e.position for e in snapshot.waiting] == [1, 2, 3]
        assert [e.estimated_wait_minutes for e in snapshot.waiting] == [0, 30, 60]

    async def test_cancelled_appointments_leave_queue(
        self, async_session: AsyncSession, doctor: DoctorProfile, booked
    ) -> None:
        await AppointmentStateMachine(async_session).cancel(
            booked[1].id, "patient", "patient-2", now=at(1)
        )

        snapshot = await QueueManager(async_session).build_queue(doctor.id, MONDAY)

        assert [e.appointment.patient_id for e in snapshot.waiting] == ["patient-1", "patient-3"]
        assert snapshot.waiting[1].estimated_wait_minutes == 30

    async def test_walk_in_queues_behind_bookings(
        self, async_session: AsyncSession, doctor: DoctorProfile, booked
    ) -> None:
        await BookingCoordinator(async_session).add_walk_in(
            doctor.id, MONDAY, WalkInPatient(name="Walk In"), now=at(8, 30)
        )

        snapshot = await QueueManager(async_session).build_queue(doctor.id, MONDAY)

        assert snapshot.waiting[-1].appointment.walk_in_name == "Walk In"
        assert snapshot.waiting[-1].position == 4

    async def test_empty_day(self, async_session: AsyncSession, doctor: DoctorProfile) -> None:
        snapshot = await QueueManager(async_session).build_queue(doctor.id, MONDAY)

        assert snapshot.current is None
        assert snapshot.waiting == []
        assert snapshot.consultation_duration == 30


class TestCallNext:
    """Calling the next patient in."""

    async def test_call_next_starts_head(
        self, async_session: AsyncSession, doctor: DoctorProfile, booked
    ) -> None:
        notifier = AsyncMock()
        manager = QueueManager(async_session, notifier=notifier)

        started, snapshot = await manager.call_next(
            doctor.id, MONDAY, "doctor", "doctor-1", now=at(9)
        )

        assert started.id == booked[0].id
        assert started.status == "in_progress"
        assert snapshot.current.id == booked[0].id
        assert [e.position for e in snapshot.waiting] == [1, 2]

        assert notifier.notify.await_count == 2
        events = [call.args[0] for call in notifier.notify.await_args_list]
        assert events == [NotificationEvent.QUEUE_POSITION_UPDATE] * 2
        first_payload = notifier.notify.await_args_list[0].args[1]
        assert first_payload["patient_id"] == "patient-2"
        assert first_payload["position"] == 1
        assert first_payload["estimated_wait_minutes"] == 0

    async def test_call_next_completes_previous(
        self, async_session: AsyncSession, doctor: DoctorProfile, booked
    ) -> None:
        manager = QueueManager(async_session)
        await manager.call_next(doctor.id, MONDAY, "doctor", now=at(9))

        started, snapshot = await manager.call_next(doctor.id, MONDAY, "doctor", now=at(9, 30))

        assert started.id == booked[1].id
        assert snapshot.current.id == booked[1].id
        previous = await AppointmentStateMachine(async_session).get(booked[0].id)
        assert previous.status == "completed"

    async def test_call_next_on_empty_queue(
        self, async_session: AsyncSession, doctor: DoctorProfile
    ) -> None:
        with pytest.raises(NotFoundError):
            await QueueManager(async_session).call_next(doctor.id, MONDAY, "doctor", now=at(9))

    async def test_unknown_doctor(self, async_session: AsyncSession) -> None:
        with pytest.raises(NotFoundError):
            await QueueManager(async_session).build_queue("missing", MONDAY)


class TestSkip:
    """Moving a waiting patient to the back."""

    async def test_skip_moves_behind_unskipped(
        self, async_session: AsyncSession, doctor: DoctorProfile, booked
    ) -> None:
        manager = QueueManager(async_session)

        skipped = await manager.skip(booked[0].id, "clinic", "reception-1")

        assert skipped.skip_count == 1
        assert skipped.status == "pending"
        snapshot = await manager.build_queue(doctor.id, MONDAY)
        assert [e.appointment.patient_id for e in snapshot.waiting] == [
            "patient-2",
            "patient-3",
            "patient-1",
        ]

    async def test_skip_limit(
        self, async_session: AsyncSession, doctor: DoctorProfile, booked
    ) -> None:
        manager = QueueManager(async_session)
        for _ in range(settings.max_queue_skips):
            await manager.skip(booked[0].id, "clinic")

        with pytest.raises(InvalidTransitionError):
            await manager.skip(booked[0].id, "clinic")

    async def test_cannot_skip_in_progress(
        self, async_session: AsyncSession, doctor: DoctorProfile, booked
    ) -> None:
        manager = QueueManager(async_session)
        await manager.call_next(doctor.id, MONDAY, "doctor", now=at(9))

        with pytest.raises(InvalidTransitionError):
            await manager.skip(booked[0].id, "clinic")


class TestConcurrentCallNext:
    """Two screens calling the next patient at the same moment."""

    async def test_only_one_consultation_starts(self, tmp_path) -> None:
        engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'queue.db'}")
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        try:
            async with maker() as setup:
                store = AvailabilityStore(setup)
                profile = await store.create_doctor(
                    name="Dr. Queue", consultation_duration=30, clinic_fee=Decimal("500")
                )
                await store.set_weekly_schedule(
                    profile.id,
                    [DayTemplate(MONDAY.weekday(), True, [TimeWindow(time(9), time(10))])],
                )
                slots = await SlotAllocator(setup).generate_slots(
                    profile.id, MONDAY, "in_clinic", now=MIDNIGHT
                )
                coordinator = BookingCoordinator(setup)
                for slot, patient_id in zip(slots, ["patient-a", "patient-b"]):
                    await coordinator.book_slot(slot.id, "clinic", patient_id, now=MIDNIGHT)

            async def call(doctor_screen: str):
                async with maker() as session:
                    try:
                        started, _ = await QueueManager(session).call_next(
                            profile.id, MONDAY, "doctor", doctor_screen, now=at(9)
                        )
                        return started
                    except InvalidTransitionError as e:
                        return e

            results = await asyncio.gather(call("screen-1"), call("screen-2"))

            started = [r for r in results if isinstance(r, Appointment)]
            rejected = [r for r in results if isinstance(r, InvalidTransitionError)]
            assert len(started) == 1
            assert len(rejected) == 1

            async with maker() as check:
                result = await check.execute(
                    select(Appointment).where(Appointment.status == "in_progress")
                )
                in_progress = result.scalars().all()
                assert [a.id for a in in_progress] == [started[0].id]
        finally:
            await engine.dispose()
