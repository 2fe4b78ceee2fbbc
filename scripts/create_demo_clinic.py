"""Create a demo doctor with a weekly schedule and print tokens for trying the API."""

import asyncio
from datetime import datetime, time, timedelta, timezone
from decimal import Decimal

from sqlalchemy import select

from carequeue.booking.slots import TimeWindow
from carequeue.core.security import create_access_token
from carequeue.db.session import AsyncSessionLocal
from carequeue.models.scheduling import DoctorProfile
from carequeue.services.availability import AvailabilityStore, DayTemplate
from carequeue.services.slots import SlotAllocator


async def create_demo_clinic():
    """Create a doctor working weekday mornings and afternoons."""
    async with AsyncSessionLocal() as session:
        store = AvailabilityStore(session)

        result = await session.execute(
            select(DoctorProfile).where(DoctorProfile.name == "Dr. Demo").limit(1)
        )
        doctor = result.scalar_one_or_none()

        if doctor:
            print(f"Demo doctor already exists: {doctor.id}")
        else:
            doctor = await store.create_doctor(
                name="Dr. Demo",
                consultation_duration=15,
                online_consultation_duration=10,
                online_fee=Decimal("400"),
                clinic_fee=Decimal("500"),
            )
            print(f"Created demo doctor: {doctor.id}")

            # Weekdays: clinic in the morning, online in the afternoon
            days = [
                DayTemplate(
                    day_of_week=weekday,
                    is_available=True,
                    windows=[
                        TimeWindow(time(9, 0), time(13, 0), "in_clinic", max_concurrent=2),
                        TimeWindow(time(14, 0), time(17, 0), "online"),
                    ],
                )
                for weekday in range(5)
            ]
            await store.set_weekly_schedule(doctor.id, days)
            print("Created weekly schedule for Monday-Friday")

        tomorrow = datetime.now(timezone.utc).date() + timedelta(days=1)
        allocator = SlotAllocator(session)
        clinic = await allocator.generate_slots(doctor.id, tomorrow, "in_clinic")
        online = await allocator.generate_slots(doctor.id, tomorrow, "online")
        print(f"Slots for {tomorrow}: {len(clinic)} in-clinic, {len(online)} online")

        print("\n=== Summary ===")
        print(f"Doctor ID: {doctor.id}")
        print(f"Staff token:   {create_access_token(subject='reception-1', actor_type='clinic')}")
        print(f"Patient token: {create_access_token(subject='patient-1', actor_type='patient')}")
        print("Demo clinic setup complete!")


if __name__ == "__main__":
    asyncio.run(create_demo_clinic())
