"""Pytest configuration and fixtures."""

import os
from datetime import datetime, timedelta, timezone

# Set test environment variables BEFORE importing vetconnect modules
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-testing-only-at-least-32-bytes")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.pop("REDIS_URL", None)

# Disable slowapi throttling for tests by monkey-patching BEFORE imports
from slowapi import Limiter
from slowapi.util import get_remote_address

_disabled_limiter = Limiter(key_func=get_remote_address, enabled=False)

import vetconnect.core.rate_limit as rate_limit_module
rate_limit_module.limiter = _disabled_limiter

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from vetconnect.api.deps import get_db, get_token_codec
from vetconnect.core.config import settings
from vetconnect.core.database import Base
from vetconnect.core.rate_limit import InMemoryCounterStore, RateLimiter
from vetconnect.core.security import TokenCodec, get_password_hash
from vetconnect.core.session import SessionValidator
from vetconnect.core.token_blacklist import InMemoryRevocationStore
from vetconnect.models import ROLE_ADMIN, ROLE_USER, User
from vetconnect.services.token_version import TokenVersionStore
from vetconnect.services.user_service import UserService
from main import app

# Create in-memory SQLite database for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

TEST_PASSWORD = "Testpassword123"


class FakeClock:
    """Controllable time source shared by the codec and the in-memory stores."""

    def __init__(self, start: datetime | None = None):
        self._now = start or datetime.now(timezone.utc).replace(microsecond=0)

    def now(self) -> datetime:
        return self._now

    def time(self) -> float:
        return self._now.timestamp()

    def advance(self, seconds: float = 0, **kwargs) -> None:
        self._now += timedelta(seconds=seconds, **kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def codec(clock):
    """Token codec configured like the app, on the fake clock."""
    return TokenCodec(
        secret=settings.SECRET_KEY,
        algorithm=settings.ALGORITHM,
        access_ttl=timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES),
        refresh_ttl=timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS),
        password_reset_ttl=timedelta(minutes=settings.PASSWORD_RESET_TOKEN_EXPIRE_MINUTES),
        clock=clock.now,
    )


@pytest.fixture
def revocation_store(clock):
    return InMemoryRevocationStore(clock=clock.time)


@pytest.fixture
def rate_limiter(clock):
    return RateLimiter.from_settings(settings, InMemoryCounterStore(clock=clock.time))


@pytest.fixture(scope="function")
def db_session():
    """Create a fresh database session for each test."""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def validator(db_session, codec, revocation_store):
    return SessionValidator(
        codec=codec,
        revocations=revocation_store,
        load_account=lambda subject: UserService.get_user_by_subject(db_session, subject),
        versions=TokenVersionStore(db_session),
    )


@pytest.fixture(scope="function")
def client(db_session, codec, revocation_store, rate_limiter):
    """Create a test client with database, codec and token-state overrides."""
    app.dependency_overrides[get_db] = lambda: db_session
    app.dependency_overrides[get_token_codec] = lambda: codec

    original_store = app.state.revocation_store
    original_limiter = app.state.rate_limiter
    app.state.revocation_store = revocation_store
    app.state.rate_limiter = rate_limiter

    with TestClient(app) as test_client:
        yield test_client

    app.state.revocation_store = original_store
    app.state.rate_limiter = original_limiter
    app.dependency_overrides.clear()


@pytest.fixture
def create_user(db_session):
    """Factory inserting accounts directly, bypassing registration rate limits."""

    def _create_user(
        email: str = "veteran@test.com",
        password: str = TEST_PASSWORD,
        role: str = ROLE_USER,
        **fields,
    ) -> User:
        user = User(
            email=email.lower(),
            password_hash=get_password_hash(password),
            first_name=fields.pop("first_name", "Test"),
            last_name=fields.pop("last_name", "Veteran"),
            role=role,
            **fields,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _create_user


@pytest.fixture
def test_user(create_user):
    return create_user()


@pytest.fixture
def admin_user(create_user):
    return create_user(email="admin@test.com", role=ROLE_ADMIN, first_name="Site", last_name="Admin")


@pytest.fixture
def test_registration_data():
    """Sample registration payload."""
    return {
        "email": "new.veteran@test.com",
        "password": TEST_PASSWORD,
        "first_name": "Jordan",
        "last_name": "Rivera",
    }


@pytest.fixture
def login_as(client):
    """Sign in through the API and return the token response body."""

    def _login(email: str, password: str = TEST_PASSWORD) -> dict:
        response = client.post("/api/auth/login", json={"email": email, "password": password})
        assert response.status_code == 200, response.text
        return response.json()

    return _login
