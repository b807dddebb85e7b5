"""Unit tests for the daily usage governor."""
from datetime import datetime, timedelta

import pytest

from companion.services.persistence.users import UserPersistenceService
from companion.services.usage.governor import UsageGovernor, normalize_duration, seconds_until_next_day
from companion.services.usage.models import UNLIMITED_DAILY_SECONDS, AuthenticatedUser
from companion.services.usage.subscriptions import SubscriptionService, is_subscription_valid


@pytest.fixture
def governor(test_db, today):
    return UsageGovernor(
        test_db,
        daily_limit_seconds=1800,
        max_call_duration_seconds=7200,
        today=lambda: today,
    )


@pytest.fixture
def free(free_user):
    return AuthenticatedUser(user_id=free_user.id, external_id=free_user.external_id)


@pytest.fixture
def premium(premium_user):
    return AuthenticatedUser(
        user_id=premium_user.id, external_id=premium_user.external_id, is_premium=True
    )


class TestNormalizeDuration:
    """Test client-reported duration sanitizing."""

    @pytest.mark.parametrize(
        "reported,expected",
        [
            (30, 30),
            (30.9, 30),
            (-5, 0),
            (None, 0),
            (float("nan"), 0),
            (float("inf"), 0),
            (10_000, 7200),
        ],
    )
    def test_normalize(self, reported, expected):
        assert normalize_duration(reported, 7200) == expected


class TestDailyReset:
    """Test the retry hint for an exhausted daily budget."""

    @pytest.mark.parametrize(
        "now,expected",
        [
            (datetime(2026, 3, 14, 23, 0, 0), 3600),
            (datetime(2026, 3, 14, 0, 0, 0), 86400),
            (datetime(2026, 3, 14, 23, 59, 59, 500000), 1),
        ],
    )
    def test_seconds_until_next_day(self, now, expected):
        assert seconds_until_next_day(now) == expected


class TestUsageGovernor:
    """Test budget checks and recording."""

    @pytest.mark.asyncio
    async def test_fresh_user_has_full_budget(self, governor, free):
        check = await governor.check_and_reserve(free)

        assert check.allowed is True
        assert check.remaining_seconds == 1800
        assert check.total_seconds == 0

    @pytest.mark.asyncio
    async def test_usage_accumulates(self, governor, free):
        await governor.record_usage(free, 30)
        record = await governor.record_usage(free, 45)

        assert record.total_seconds == 75
        assert record.remaining_seconds == 1725
        assert record.limit_reached is False
        assert record.recorded_seconds == 45

    @pytest.mark.asyncio
    async def test_exhausted_budget_denied(self, governor, free):
        record = await governor.record_usage(free, 1800)
        check = await governor.check_and_reserve(free)

        assert record.limit_reached is True
        assert record.remaining_seconds == 0
        assert check.allowed is False
        assert check.remaining_seconds == 0

    @pytest.mark.asyncio
    async def test_recording_past_limit_never_negative(self, governor, free):
        await governor.record_usage(free, 1700)
        record = await governor.record_usage(free, 300)

        assert record.total_seconds == 2000
        assert record.remaining_seconds == 0

    @pytest.mark.asyncio
    async def test_duration_clamped_to_max_call(self, governor, free):
        record = await governor.record_usage(free, 99999)
        assert record.total_seconds == 7200

    @pytest.mark.asyncio
    async def test_zero_duration_leaves_total(self, governor, free):
        await governor.record_usage(free, 10)
        record = await governor.record_usage(free, -3)

        assert record.total_seconds == 10
        assert record.recorded_seconds == 0

    @pytest.mark.asyncio
    async def test_premium_is_unlimited(self, governor, premium):
        await governor.record_usage(premium, 5000)
        check = await governor.check_and_reserve(premium)
        usage = await governor.current_usage(premium)

        assert check.allowed is True
        assert check.is_premium is True
        assert check.remaining_seconds == UNLIMITED_DAILY_SECONDS
        assert usage.limit_reached is False

    @pytest.mark.asyncio
    async def test_current_usage_without_ledger(self, governor, free):
        usage = await governor.current_usage(free)

        assert usage.total_seconds == 0
        assert usage.remaining_seconds == 1800
        assert usage.limit_reached is False

    @pytest.mark.asyncio
    async def test_new_day_resets_budget(self, test_db, free, today):
        day = {"value": today}
        governor = UsageGovernor(test_db, 1800, 7200, today=lambda: day["value"])
        await governor.record_usage(free, 1800)

        day["value"] = today + timedelta(days=1)
        check = await governor.check_and_reserve(free)

        assert check.allowed is True
        assert check.remaining_seconds == 1800


class TestSubscriptions:
    """Test premium resolution from subscriptions."""

    def test_no_subscription(self):
        assert is_subscription_valid(None, datetime(2026, 3, 14), 3) is False

    @pytest.mark.asyncio
    async def test_grace_period(self, test_db, free_user):
        users = UserPersistenceService(test_db)
        period_end = datetime(2026, 3, 10, 12, 0)
        subscription = await users.add_subscription(free_user.id, period_end)

        assert is_subscription_valid(subscription, period_end + timedelta(days=2), 3) is True
        assert is_subscription_valid(subscription, period_end + timedelta(days=3, seconds=1), 3) is False

    @pytest.mark.asyncio
    async def test_cancelled_subscription_not_premium(self, test_db, free_user):
        users = UserPersistenceService(test_db)
        await users.add_subscription(free_user.id, datetime(2099, 1, 1), status="cancelled")

        service = SubscriptionService(test_db, grace_days=3)

        assert await service.is_premium(free_user, now=datetime(2026, 3, 14)) is False

    @pytest.mark.asyncio
    async def test_active_subscription_is_premium(self, test_db, free_user):
        users = UserPersistenceService(test_db)
        await users.add_subscription(free_user.id, datetime(2026, 4, 1))

        service = SubscriptionService(test_db, grace_days=3)

        assert await service.is_premium(free_user, now=datetime(2026, 3, 14)) is True

    @pytest.mark.asyncio
    async def test_premium_flag(self, test_db, premium_user):
        service = SubscriptionService(test_db, grace_days=3)
        assert await service.is_premium(premium_user) is True
