"""Usage ledger persistence service."""
from datetime import date, datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from companion.db.models import UsageLedger


class UsagePersistenceService:
    """Service for persisting per-day usage counters."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_ledger(self, user_id: int, day: date) -> Optional[UsageLedger]:
        """Get the ledger row for a user and day."""
        result = await self.db.execute(
            select(UsageLedger).where(
                UsageLedger.user_id == user_id, UsageLedger.date == day
            )
        )
        return result.scalar_one_or_none()

    async def get_or_create_ledger(self, user_id: int, day: date) -> UsageLedger:
        """Get the ledger row for a user and day or create an empty one."""
        existing = await self.get_ledger(user_id, day)
        if existing:
            return existing

        ledger = UsageLedger(user_id=user_id, date=day, total_seconds=0, call_count=0)
        self.db.add(ledger)
        try:
            await self.db.commit()
        except IntegrityError:
            # A concurrent request created today's row first
            await self.db.rollback()
            existing = await self.get_ledger(user_id, day)
            if existing is None:
                raise
            return existing
        await self.db.refresh(ledger)
        return ledger

    async def add_seconds(self, user_id: int, day: date, seconds: int) -> UsageLedger:
        """Add call seconds to the day's total and count the call."""
        ledger = await self.get_or_create_ledger(user_id, day)
        now = datetime.utcnow()
        ledger.total_seconds = (ledger.total_seconds or 0) + seconds
        ledger.call_count = (ledger.call_count or 0) + 1
        ledger.last_call_at = now
        ledger.updated_at = now
        await self.db.commit()
        await self.db.refresh(ledger)
        return ledger
