"""Premium subscription status lookup."""
import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from companion.db.models import Subscription, User
from companion.services.persistence.users import UserPersistenceService

logger = logging.getLogger(__name__)


def is_subscription_valid(
    subscription: Optional[Subscription], now: datetime, grace_days: int
) -> bool:
    """Check an active subscription against its period end plus grace period.

    The grace period absorbs payment webhooks that land after the nominal
    period end.
    """
    if subscription is None or subscription.status != "active":
        return False
    return now <= subscription.current_period_end + timedelta(days=grace_days)


class SubscriptionService:
    """Resolves whether a user is on the unlimited tier."""

    def __init__(self, db: AsyncSession, grace_days: int):
        self.users = UserPersistenceService(db)
        self.grace_days = grace_days

    async def is_premium(self, user: User, now: Optional[datetime] = None) -> bool:
        """Premium if the user flag is set or a subscription is still valid."""
        if user.is_premium:
            return True
        now = now or datetime.utcnow()
        subscription = await self.users.get_latest_subscription(user.id)
        valid = is_subscription_valid(subscription, now, self.grace_days)
        if subscription is not None and not valid:
            logger.info(
                f"[SUBSCRIPTION] Subscription lapsed - User: {user.id}, "
                f"Status: {subscription.status}, Period end: {subscription.current_period_end}"
            )
        return valid
