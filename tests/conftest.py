"""
Test configuration and fixtures for the deeplink resolver.
This centralizes all test setup, making individual tests clean.
"""

import os

# Must be set before the app modules read settings
os.environ["DATABASE_URL"] = "sqlite:///./test.db"
os.environ["SWEEPER_ENABLED"] = "false"
os.environ["CACHE_BACKEND"] = "null"

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from main import app
from deeplink_app.config import settings
from deeplink_app.database.connection import Base, get_db
from deeplink_app.models import App, Route
from deeplink_app.services.link_store import LinkStore
from deeplink_app.services.referral_service import ReferralService

# Test database configuration
SQLALCHEMY_DATABASE_URL = "sqlite:///./test.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class FakeClock:
    """Controllable clock returning naive UTC datetimes"""

    def __init__(self, start: datetime = datetime(2026, 1, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture(scope="function")
def db_session():
    """
    Create a fresh database session for each test.
    This ensures tests are isolated and don't affect each other.
    """
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()

    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db_session):
    """
    Create a test client with database dependency overridden.
    TestClient talks to host "testserver", which the default app owns.
    """
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def mobile_app(db_session):
    """App served on the TestClient host with a "m" route and referrals on"""
    mobile_app = App(
        name="Test App",
        slug="test-app",
        domains="testserver, links.test-app.com",
        android_play_store_url="https://play.google.com/store/apps/details?id=com.test.app",
        ios_app_store_url="https://apps.apple.com/app/id123456",
        web_fallback_url="https://test-app.com/m/{token}",
        referral_enabled=True,
    )
    mobile_app.routes.append(Route(prefix="m", name="Merchant"))
    db_session.add(mobile_app)
    db_session.commit()
    db_session.refresh(mobile_app)
    return mobile_app


@pytest.fixture
def other_app(db_session):
    other = App(name="Other App", slug="other-app", domains="other.example.com")
    db_session.add(other)
    db_session.commit()
    db_session.refresh(other)
    return other


@pytest.fixture
def store(db_session, clock):
    return LinkStore(db_session, clock=clock)


@pytest.fixture
def referrals(db_session, clock):
    return ReferralService(db_session, clock=clock)


@pytest.fixture
def api_key(monkeypatch):
    """Enable API key auth for the duration of a test"""
    monkeypatch.setattr(settings, "api_key", "test-api-key")
    return "test-api-key"


@pytest.fixture
def cleanup_key(monkeypatch):
    monkeypatch.setattr(settings, "cleanup_key", "test-cleanup-key")
    return "test-cleanup-key"


@pytest.fixture
def session_factory(db_session):
    """Session factory for code that opens its own sessions (sweeper)"""
    return TestingSessionLocal
