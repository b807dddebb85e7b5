"""User and subscription persistence service."""
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from companion.db.models import Subscription, User


class UserPersistenceService:
    """Service for looking up users and their subscriptions."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user_by_external_id(self, external_id: str) -> Optional[User]:
        """Get user by identity provider subject."""
        result = await self.db.execute(
            select(User).where(User.external_id == external_id)
        )
        return result.scalar_one_or_none()

    async def create_user(self, external_id: str, is_premium: bool = False) -> User:
        """Create a user record or return the existing one."""
        existing = await self.get_user_by_external_id(external_id)
        if existing:
            return existing

        user = User(external_id=external_id, is_premium=is_premium)
        self.db.add(user)
        await self.db.commit()
        await self.db.refresh(user)
        return user

    async def get_latest_subscription(self, user_id: int) -> Optional[Subscription]:
        """Get the subscription with the latest period end."""
        result = await self.db.execute(
            select(Subscription)
            .where(Subscription.user_id == user_id)
            .order_by(Subscription.current_period_end.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def add_subscription(
        self, user_id: int, current_period_end: datetime, status: str = "active"
    ) -> Subscription:
        """Record a subscription period."""
        subscription = Subscription(
            user_id=user_id, status=status, current_period_end=current_period_end
        )
        self.db.add(subscription)
        await self.db.commit()
        await self.db.refresh(subscription)
        return subscription
