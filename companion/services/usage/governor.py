"""Per-user daily voice budget enforcement."""
import logging
import math
from datetime import date, datetime, time, timedelta
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from companion.services.persistence.usage import UsagePersistenceService
from companion.services.usage.models import (
    UNLIMITED_DAILY_SECONDS,
    AuthenticatedUser,
    UsageCheck,
    UsageRecord,
)

logger = logging.getLogger(__name__)


def normalize_duration(duration_seconds: Optional[float], max_seconds: int) -> int:
    """Floor a client-reported duration and clamp it to ``[0, max_seconds]``."""
    if duration_seconds is None:
        return 0
    if isinstance(duration_seconds, float) and not math.isfinite(duration_seconds):
        return 0
    return min(max_seconds, max(0, math.floor(duration_seconds)))


def seconds_until_next_day(now: datetime) -> int:
    """Seconds from ``now`` until the daily budget resets at local midnight."""
    midnight = datetime.combine(now.date() + timedelta(days=1), time.min, tzinfo=now.tzinfo)
    return max(1, math.ceil((midnight - now).total_seconds()))


class UsageGovernor:
    """Enforces the free tier's daily seconds budget.

    Usage accrues per server-local calendar day. Concurrent turns for the
    same user race on read-then-write of the day's counter; with a single
    active call per user that is acceptable.
    """

    def __init__(
        self,
        db: AsyncSession,
        daily_limit_seconds: int,
        max_call_duration_seconds: int,
        today: Callable[[], date] = date.today,
    ):
        self.ledger = UsagePersistenceService(db)
        self.daily_limit_seconds = daily_limit_seconds
        self.max_call_duration_seconds = max_call_duration_seconds
        self._today = today

    def _daily_limit(self, is_premium: bool) -> int:
        return UNLIMITED_DAILY_SECONDS if is_premium else self.daily_limit_seconds

    async def check_and_reserve(self, user: AuthenticatedUser) -> UsageCheck:
        """Check whether the user may start or continue a turn today."""
        ledger = await self.ledger.get_or_create_ledger(user.user_id, self._today())
        used = ledger.total_seconds or 0

        if user.is_premium:
            return UsageCheck(
                allowed=True,
                remaining_seconds=UNLIMITED_DAILY_SECONDS,
                total_seconds=used,
                is_premium=True,
            )

        remaining = max(0, self.daily_limit_seconds - used)
        allowed = remaining > 0
        if not allowed:
            logger.info(f"[USAGE] Daily limit reached - User: {user.user_id}, Used: {used}s")
        return UsageCheck(
            allowed=allowed,
            remaining_seconds=remaining,
            total_seconds=used,
            is_premium=False,
        )

    async def record_usage(
        self, user: AuthenticatedUser, duration_seconds: Optional[float]
    ) -> UsageRecord:
        """Add a finished call's duration to today's ledger."""
        seconds = normalize_duration(duration_seconds, self.max_call_duration_seconds)
        day = self._today()
        limit = self._daily_limit(user.is_premium)

        if seconds == 0:
            ledger = await self.ledger.get_or_create_ledger(user.user_id, day)
        else:
            ledger = await self.ledger.add_seconds(user.user_id, day, seconds)

        total = ledger.total_seconds or 0
        remaining = max(0, limit - total)
        logger.info(
            f"[USAGE] Recorded {seconds}s - User: {user.user_id}, "
            f"Total: {total}s, Remaining: {remaining}s, Premium: {user.is_premium}"
        )
        return UsageRecord(
            total_seconds=total,
            remaining_seconds=remaining,
            limit_reached=total >= limit,
            is_premium=user.is_premium,
            recorded_seconds=seconds,
        )

    async def current_usage(self, user: AuthenticatedUser) -> UsageRecord:
        """Today's totals without recording anything."""
        ledger = await self.ledger.get_ledger(user.user_id, self._today())
        total = ledger.total_seconds if ledger else 0
        limit = self._daily_limit(user.is_premium)
        return UsageRecord(
            total_seconds=total,
            remaining_seconds=max(0, limit - total),
            limit_reached=total >= limit,
            is_premium=user.is_premium,
        )
