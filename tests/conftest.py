"""
Test configuration and fixtures.

Provides:
- In-memory SQLite database with a fresh schema per test
- HTTPX AsyncClient bound to the app with get_db overridden
- Account / subscription factories and a fake FIC API client
"""
import json
import os
from datetime import timedelta
from typing import AsyncGenerator, Generator

from cryptography.fernet import Fernet

# Settings are read at import time; configure before importing the app
os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["DATA_ENCRYPTION_KEY"] = Fernet.generate_key().decode()
os.environ["REDIS_URL"] = ""
os.environ["INTERNAL_SECRET"] = "internal-secret"
os.environ["FIC_WEBHOOK_VERIFY_HMAC"] = "false"
os.environ["FIC_WEBHOOK_VERIFY_JWT"] = "false"
os.environ["APP_URL"] = "https://sync.example.com"

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ficsync.core import websocket
from ficsync.core.deps import get_db
from ficsync.core.exceptions import FicApiError
from ficsync.core.rate_limit import limiter
from ficsync.db.base import Base
from ficsync.db.enums import ResourceType
from ficsync.db.models import Account, Subscription
from ficsync.main import app
from ficsync.utils.datetime_parsing import now_utc


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def engine():
    """One in-memory database per test, shared by every session (StaticPool)."""
    test_engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    @event.listens_for(test_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, _record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    Base.metadata.create_all(test_engine)
    yield test_engine
    Base.metadata.drop_all(test_engine)
    test_engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(autouse=True)
def reset_rate_limits():
    """Rate limit counters are per process; start every test with a clean window."""
    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture(autouse=True)
def published(monkeypatch) -> list[tuple[str, str, dict]]:
    """Capture broadcasts instead of sending them."""
    messages: list[tuple[str, str, dict]] = []

    async def fake_publish(channel, event_name, payload):
        messages.append((channel, event_name, payload))

    monkeypatch.setattr(websocket, "publish", fake_publish)
    return messages


# =============================================================================
# Domain Fixtures
# =============================================================================

@pytest.fixture
def make_account(db: Session):
    def _make(company_id: int = 1550348, tenant_id: str | None = "team-1", **kwargs) -> Account:
        account = Account(
            company_id=company_id,
            company_name=kwargs.pop("company_name", "Acme S.r.l."),
            tenant_id=tenant_id,
            access_token=kwargs.pop("access_token", "access-token"),
            refresh_token=kwargs.pop("refresh_token", "refresh-token"),
            token_expires_at=kwargs.pop("token_expires_at", now_utc() + timedelta(hours=1)),
            **kwargs,
        )
        db.add(account)
        db.commit()
        db.refresh(account)
        return account

    return _make


@pytest.fixture
def account(make_account) -> Account:
    return make_account()


@pytest.fixture
def make_subscription(db: Session):
    def _make(account: Account, event_group: str = "entity", **kwargs) -> Subscription:
        subscription = Subscription(
            account_id=account.id,
            fic_subscription_id=kwargs.pop("fic_subscription_id", f"SUB-{account.id}-{event_group}"),
            event_group=event_group,
            webhook_secret=kwargs.pop("webhook_secret", "whsec-test"),
            expires_at=kwargs.pop("expires_at", now_utc() + timedelta(days=20)),
            **kwargs,
        )
        db.add(subscription)
        db.commit()
        db.refresh(subscription)
        return subscription

    return _make


@pytest.fixture
def subscription(account, make_subscription) -> Subscription:
    return make_subscription(account)


class FakeFicClient:
    """Stands in for FicApiClient: serves canned resources and records calls."""

    def __init__(self, resources: dict | None = None, failures: dict | None = None):
        self.resources = resources or {}
        self.failures = failures or {}
        self.fetched: list[tuple[ResourceType, int]] = []

    async def fetch_resource(self, resource_type, fic_id):
        self.fetched.append((ResourceType(resource_type), fic_id))
        failure = self.failures.get(fic_id)
        if isinstance(failure, Exception):
            raise failure
        if failure:
            raise FicApiError(failure, http_status=500)
        data = self.resources.get(fic_id) or {"name": f"Client {fic_id}"}
        return {**data, "raw": json.loads(json.dumps({"id": fic_id, **data}, default=str))}


@pytest.fixture
def fake_fic():
    return FakeFicClient()


# =============================================================================
# HTTP Client
# =============================================================================

@pytest.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client with get_db bound to the test database."""

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c
    app.dependency_overrides.clear()
