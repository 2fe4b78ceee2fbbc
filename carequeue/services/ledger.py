"""Per doctor+day counters backed by doctor_day_ledgers.

Both operations are single conditional statements, so concurrent
requests for the same doctor's day serialize on the ledger row.
"""

from datetime import date
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from carequeue.db.upsert import insert_ignore
from carequeue.models.appointment import DoctorDayLedger


class DayLedger:
    """Token counter and current-patient pointer for one doctor's day."""

    def __init__(self, session: AsyncSession, doctor_id: str, ledger_date: date):
        self.session = session
        self.doctor_id = doctor_id
        self.ledger_date = ledger_date

    def _matches(self):
        return (
            DoctorDayLedger.doctor_id == self.doctor_id,
            DoctorDayLedger.ledger_date == self.ledger_date,
        )

    async def ensure(self) -> None:
        """Create the ledger row if it does not exist yet."""
        await insert_ignore(
            self.session,
            DoctorDayLedger,
            [
                {
                    "id": str(uuid4()),
                    "doctor_id": self.doctor_id,
                    "ledger_date": self.ledger_date,
                    "last_token": 0,
                    "current_appointment_id": None,
                }
            ],
        )

    async def next_token(self) -> int:
        """Atomically increment and return the day's token counter."""
        await self.ensure()
        await self.session.execute(
            update(DoctorDayLedger)
            .where(*self._matches())
            .values(last_token=DoctorDayLedger.last_token + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(
            select(DoctorDayLedger.last_token).where(*self._matches())
        )
        return result.scalar_one()

    async def current_appointment_id(self) -> str | None:
        """Appointment currently marked in progress for the day."""
        result = await self.session.execute(
            select(DoctorDayLedger.current_appointment_id).where(*self._matches())
        )
        return result.scalar_one_or_none()

    async def compare_and_set_current(
        self,
        expected: str | None,
        new: str | None,
    ) -> bool:
        """Replace the current appointment pointer only if it still equals `expected`.

        Returns:
            True if this caller won the swap
        """
        if expected is None:
            guard = DoctorDayLedger.current_appointment_id.is_(None)
        else:
            guard = DoctorDayLedger.current_appointment_id == expected

        result = await self.session.execute(
            update(DoctorDayLedger)
            .where(*self._matches(), guard)
            .values(current_appointment_id=new)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
