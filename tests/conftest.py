"""Shared test fixtures and configuration."""
import base64
import hashlib
import hmac
import json
import os
import time
from datetime import date
from unittest.mock import AsyncMock, Mock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing app
os.environ.setdefault("OPENAI_API_KEY", "test-key")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("AUTH_JWT_SECRET", "test-jwt-secret")
os.environ.setdefault("ELEVENLABS_API_KEY", "test-elevenlabs")
os.environ.setdefault("SARVAM_API_KEY", "test-sarvam")

from companion.main import app
from companion.db.database import Base, get_db
from companion.core.dependencies import (
    get_orchestrator,
    get_rate_limiter,
    get_realtime_sessions,
)
from companion.services.persistence.users import UserPersistenceService
from companion.services.realtime.sessions import RealtimeSession
from companion.services.turn.models import LatencyBreakdown, TurnResult
from companion.services.usage.rate_limit import SlidingWindowRateLimiter


# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
TEST_JWT_SECRET = "test-jwt-secret"


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


def encode_token(claims: dict, secret: str = TEST_JWT_SECRET, alg: str = "HS256") -> str:
    """Build an HS256 JWT the way the identity provider would."""
    header = _b64url(json.dumps({"alg": alg, "typ": "JWT"}).encode())
    payload = _b64url(json.dumps(claims).encode())
    signature = hmac.new(secret.encode(), f"{header}.{payload}".encode(), hashlib.sha256).digest()
    return f"{header}.{payload}.{_b64url(signature)}"


def bearer(sub: str, expires_in: int = 3600) -> dict:
    token = encode_token({"sub": sub, "exp": int(time.time()) + expires_in})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def test_db_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
async def test_db(test_db_engine):
    """Create test database session."""
    async_session = async_sessionmaker(
        test_db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:
        yield session


@pytest.fixture
async def free_user(test_db):
    """A user without a subscription."""
    return await UserPersistenceService(test_db).create_user("user_free")


@pytest.fixture
async def premium_user(test_db):
    """A user with the premium flag set."""
    return await UserPersistenceService(test_db).create_user("user_premium", is_premium=True)


@pytest.fixture
def today():
    return date(2026, 3, 14)


@pytest.fixture
def turn_result():
    """A successful two-sentence turn."""
    return TurnResult(
        transcript="How was your day?",
        reply_text="It was lovely. I missed you though!",
        reply_audio=b"ID3-audio",
        audio_format="mp3",
        latency=LatencyBreakdown(stt=120, llm=300, tts=250, total=700),
    )


@pytest.fixture
def mock_orchestrator(turn_result):
    """Mock turn orchestrator."""
    orchestrator = Mock()
    orchestrator.process_turn = AsyncMock(return_value=turn_result)
    orchestrator.synthesize_opener = AsyncMock(
        return_value=TurnResult(
            reply_text="Hiii! How's your day going?",
            reply_audio=b"ID3-opener",
            audio_format="mp3",
            latency=LatencyBreakdown(tts=200, total=200),
        )
    )
    return orchestrator


@pytest.fixture
def mock_realtime_sessions():
    sessions = Mock()
    sessions.create_session = AsyncMock(
        return_value=RealtimeSession(token="ek_test", expires_at=1900000000)
    )
    return sessions


@pytest.fixture
def rate_limiter():
    """Fresh rate limiter per test."""
    return SlidingWindowRateLimiter()


@pytest.fixture
def override_get_db(test_db):
    """Override get_db dependency with test database."""
    async def _override_get_db():
        yield test_db
    return _override_get_db


@pytest.fixture
def test_client(override_get_db, mock_orchestrator, mock_realtime_sessions, rate_limiter):
    """Create FastAPI test client with overrides."""
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_orchestrator] = lambda: mock_orchestrator
    app.dependency_overrides[get_realtime_sessions] = lambda: mock_realtime_sessions
    app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter

    client = TestClient(app)

    yield client

    app.dependency_overrides.clear()


@pytest.fixture
def make_token():
    """Factory for signed bearer tokens."""
    return encode_token


@pytest.fixture
def auth_headers(free_user):
    return bearer(free_user.external_id)


@pytest.fixture
def premium_headers(premium_user):
    return bearer(premium_user.external_id)


@pytest.fixture
def headers_for():
    """Factory for Authorization headers of a given subject."""
    return bearer
