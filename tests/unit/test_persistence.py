"""Unit tests for persistence services (users and usage ledger)."""
import pytest
from datetime import date, datetime

from companion.services.persistence.usage import UsagePersistenceService
from companion.services.persistence.users import UserPersistenceService


class TestUserPersistence:
    """Test user persistence service."""

    @pytest.mark.asyncio
    async def test_create_user(self, test_db):
        """Test creating a new user record."""
        service = UserPersistenceService(test_db)

        user = await service.create_user("auth0|abc")

        assert user.id is not None
        assert user.external_id == "auth0|abc"
        assert user.is_premium is False
        assert user.created_at is not None

    @pytest.mark.asyncio
    async def test_create_user_idempotent(self, test_db):
        """Test that creating same user twice returns existing user."""
        service = UserPersistenceService(test_db)

        user1 = await service.create_user("auth0|dup")
        user2 = await service.create_user("auth0|dup")

        assert user1.id == user2.id

    @pytest.mark.asyncio
    async def test_get_unknown_user(self, test_db):
        service = UserPersistenceService(test_db)
        assert await service.get_user_by_external_id("nobody") is None

    @pytest.mark.asyncio
    async def test_latest_subscription(self, test_db, free_user):
        """Test that the subscription with the latest period end wins."""
        service = UserPersistenceService(test_db)
        await service.add_subscription(free_user.id, datetime(2026, 1, 1))
        await service.add_subscription(free_user.id, datetime(2026, 4, 1))
        await service.add_subscription(free_user.id, datetime(2026, 2, 1), status="expired")

        latest = await service.get_latest_subscription(free_user.id)

        assert latest.current_period_end == datetime(2026, 4, 1)
        assert latest.status == "active"


class TestUsagePersistence:
    """Test usage ledger persistence service."""

    @pytest.mark.asyncio
    async def test_get_or_create_ledger(self, test_db, free_user, today):
        service = UsagePersistenceService(test_db)

        ledger = await service.get_or_create_ledger(free_user.id, today)
        again = await service.get_or_create_ledger(free_user.id, today)

        assert ledger.id == again.id
        assert ledger.total_seconds == 0
        assert ledger.call_count == 0

    @pytest.mark.asyncio
    async def test_add_seconds(self, test_db, free_user, today):
        service = UsagePersistenceService(test_db)

        await service.add_seconds(free_user.id, today, 30)
        ledger = await service.add_seconds(free_user.id, today, 45)

        assert ledger.total_seconds == 75
        assert ledger.call_count == 2
        assert ledger.last_call_at is not None

    @pytest.mark.asyncio
    async def test_ledger_per_day(self, test_db, free_user):
        service = UsagePersistenceService(test_db)

        await service.add_seconds(free_user.id, date(2026, 3, 14), 100)
        other = await service.get_ledger(free_user.id, date(2026, 3, 15))

        assert other is None
