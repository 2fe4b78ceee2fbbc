"""Pytest configuration and fixtures."""

import os

os.environ.setdefault("ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("CLINIC_TIMEZONE", "UTC")

from collections.abc import AsyncGenerator
from datetime import date, datetime, time, timezone
from decimal import Decimal

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import StaticPool
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from carequeue.booking.slots import TimeWindow
from carequeue.core.security import create_access_token
from carequeue.db.base import Base
from carequeue.db.session import get_db
from carequeue.main import app
from carequeue.models.scheduling import DoctorProfile
from carequeue.services.availability import AvailabilityStore, DayTemplate
from carequeue.services.slots import SlotAllocator, SlotView

# Use SQLite for testing (simpler than spinning up postgres)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# 2030-01-07 is a Monday
MONDAY = date(2030, 1, 7)
TUESDAY = date(2030, 1, 8)
MIDNIGHT = datetime(2030, 1, 7, 0, 0, tzinfo=timezone.utc)


def at(hour: int, minute: int = 0, day: date = MONDAY) -> datetime:
    """UTC datetime on a test day."""
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=timezone.utc)


def auth_headers(actor_type: str, actor_id: str) -> dict[str, str]:
    """Bearer headers for an actor token."""
    token = create_access_token(subject=actor_id, actor_type=actor_type)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def async_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests."""
    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with async_session_maker() as session:
        yield session


@pytest.fixture(scope="function")
async def client(async_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client with overridden dependencies."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield async_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
async def doctor(async_session: AsyncSession) -> DoctorProfile:
    """Doctor working Mondays 09:00-12:00 for both pools, 30 minute slots."""
    store = AvailabilityStore(async_session)
    profile = await store.create_doctor(
        name="Dr. Asha Rao",
        consultation_duration=30,
        online_fee=Decimal("400"),
        clinic_fee=Decimal("500"),
    )
    await store.set_weekly_schedule(
        profile.id,
        [
            DayTemplate(
                day_of_week=MONDAY.weekday(),
                is_available=True,
                windows=[TimeWindow(time(9, 0), time(12, 0), "both")],
            )
        ],
    )
    return profile


@pytest.fixture
async def clinic_slots(async_session: AsyncSession, doctor: DoctorProfile) -> list[SlotView]:
    """Materialized in-clinic slots for the doctor's Monday."""
    return await SlotAllocator(async_session).generate_slots(
        doctor.id, MONDAY, "in_clinic", now=MIDNIGHT
    )


@pytest.fixture
def staff_headers() -> dict[str, str]:
    return auth_headers("clinic", "reception-1")


@pytest.fixture
def doctor_headers() -> dict[str, str]:
    return auth_headers("doctor", "doctor-1")


@pytest.fixture
def patient_headers() -> dict[str, str]:
    return auth_headers("patient", "patient-1")
