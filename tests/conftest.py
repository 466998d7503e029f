"""
Subscription Reconciler - Test Configuration

Pytest fixtures and configuration. Each test gets its own SQLite database file
so ledger and account state never leak between tests.
"""

import hashlib
import hmac
import json
import os
import time
from typing import Any, AsyncGenerator, Dict, Optional
from uuid import uuid4

# Settings are read at import time; point them at a throwaway database first
os.environ["DATABASE_URL_ASYNC"] = "sqlite+aiosqlite:///./.pytest_reconciler.db"
os.environ["APP_ENV"] = "test"

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event, select
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

from reconciler.config import settings
from reconciler.database import Base, get_async_session
from reconciler.models import (
    BillingAccount,
    BillingProvider,
    SubscriptionStatus,
    SubscriptionTier,
    WebhookEventRecord,
)
from main import app


STRIPE_TEST_SECRET = "whsec_test_secret_12345"
LEMONSQUEEZY_TEST_SECRET = "ls_test_secret_12345"


# ===========================================
# DATABASE FIXTURES
# ===========================================

@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """Engine bound to a fresh SQLite file with all tables created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'reconciler.db'}", echo=False)

    # Take the write lock when a transaction starts so concurrent sessions queue
    # on the busy timeout instead of failing on lock upgrade
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """A session on the per-test database."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Test client whose requests each get their own session, like production."""

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_async_session] = override_get_session

    transport = ASGITransport(app=app)
    try:
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()


# ===========================================
# SECRETS
# ===========================================

@pytest.fixture
def stripe_secret(monkeypatch) -> str:
    monkeypatch.setattr(settings, "stripe_webhook_secret", STRIPE_TEST_SECRET)
    return STRIPE_TEST_SECRET


@pytest.fixture
def lemonsqueezy_secret(monkeypatch) -> str:
    monkeypatch.setattr(settings, "lemonsqueezy_webhook_secret", LEMONSQUEEZY_TEST_SECRET)
    return LEMONSQUEEZY_TEST_SECRET


@pytest.fixture
def sign_stripe_payload(stripe_secret):
    """Build a Stripe-Signature header (t=...,v1=HMAC-SHA256 of 't.body')."""
    def _sign(payload_bytes: bytes, timestamp: Optional[int] = None, secret: Optional[str] = None) -> str:
        ts = timestamp if timestamp is not None else int(time.time())
        signed = f"{ts}.".encode("utf-8") + payload_bytes
        signature = hmac.new(
            (secret or stripe_secret).encode("utf-8"),
            signed,
            hashlib.sha256,
        ).hexdigest()
        return f"t={ts},v1={signature}"
    return _sign


@pytest.fixture
def sign_lemonsqueezy_payload(lemonsqueezy_secret):
    """Build an X-Signature header (hex HMAC-SHA256 of the body)."""
    def _sign(payload_bytes: bytes, secret: Optional[str] = None) -> str:
        return hmac.new(
            (secret or lemonsqueezy_secret).encode("utf-8"),
            payload_bytes,
            hashlib.sha256,
        ).hexdigest()
    return _sign


# ===========================================
# PAYLOAD BUILDERS
# ===========================================

@pytest.fixture
def stripe_event():
    """Build a Stripe event envelope around a data object."""
    def _build(event_type: str, obj: Dict[str, Any], event_id: Optional[str] = None) -> Dict[str, Any]:
        return {
            "id": event_id or f"evt_{uuid4().hex[:24]}",
            "object": "event",
            "type": event_type,
            "livemode": False,
            "created": int(time.time()),
            "data": {"object": obj},
        }
    return _build


@pytest.fixture
def lemonsqueezy_event():
    """Build a Lemon Squeezy JSON:API webhook document."""
    def _build(
        event_name: str,
        resource_type: str,
        resource_id: str,
        attributes: Dict[str, Any],
        custom_data: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        meta: Dict[str, Any] = {"event_name": event_name, "test_mode": True}
        if custom_data is not None:
            meta["custom_data"] = custom_data
        return {
            "meta": meta,
            "data": {
                "type": resource_type,
                "id": resource_id,
                "attributes": attributes,
            },
        }
    return _build


@pytest.fixture
def post_stripe(client, sign_stripe_payload):
    """Sign and POST a Stripe event; returns the response."""
    async def _post(payload: Dict[str, Any], signature: Optional[str] = None):
        body = json.dumps(payload).encode("utf-8")
        return await client.post(
            "/api/stripe/webhook",
            content=body,
            headers={
                "Content-Type": "application/json",
                "Stripe-Signature": signature or sign_stripe_payload(body),
            },
        )
    return _post


@pytest.fixture
def post_lemonsqueezy(client, sign_lemonsqueezy_payload):
    """Sign and POST a Lemon Squeezy event; returns the response."""
    async def _post(payload: Dict[str, Any], signature: Optional[str] = None):
        body = json.dumps(payload).encode("utf-8")
        return await client.post(
            "/api/lemonsqueezy/webhook",
            content=body,
            headers={
                "Content-Type": "application/json",
                "X-Signature": signature or sign_lemonsqueezy_payload(body),
            },
        )
    return _post


# ===========================================
# DATA FIXTURES
# ===========================================

@pytest.fixture
def create_account(session_factory):
    """Insert a BillingAccount. Defaults to a free account with no provider."""
    async def _create(user_id: str = "user_123", **fields) -> BillingAccount:
        values = {
            "tier": SubscriptionTier.FREE,
            "status": SubscriptionStatus.ACTIVE,
            "provider": BillingProvider.NONE,
        }
        values.update(fields)
        async with session_factory() as session:
            account = BillingAccount(user_id=user_id, **values)
            session.add(account)
            await session.commit()
            await session.refresh(account)
            return account
    return _create


@pytest.fixture
def get_account(session_factory):
    """Read an account back through a fresh session."""
    async def _get(user_id: str) -> Optional[BillingAccount]:
        async with session_factory() as session:
            result = await session.execute(
                select(BillingAccount).where(BillingAccount.user_id == user_id)
            )
            return result.scalar_one_or_none()
    return _get


@pytest.fixture
def get_ledger(session_factory):
    """All ledger rows, optionally filtered by provider."""
    async def _get(provider: Optional[BillingProvider] = None):
        async with session_factory() as session:
            query = select(WebhookEventRecord)
            if provider is not None:
                query = query.where(WebhookEventRecord.provider == provider)
            result = await session.execute(query)
            return list(result.scalars().all())
    return _get
