"""Shared test fixtures for all test groups.

Uses in-memory SQLite (aiosqlite) so the suite runs without Postgres.
"""

import json
import os

# Debug mode skips the startup secret check and switches logs to the console
# renderer; must be set before creem_sync reads settings.
os.environ.setdefault("DEBUG", "true")

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from creem_sync.db.base import Base
from creem_sync.services.webhook_service import WebhookService
from creem_sync.webhooks.signature import sign_payload

TEST_WEBHOOK_SECRET = "whsec_test_secret_for_creem_sync"


# ---------------------------------------------------------------------------
# Payload builders
# ---------------------------------------------------------------------------


def build_customer(customer_id: str = "cust_001", **overrides) -> dict:
    customer = {
        "id": customer_id,
        "object": "customer",
        "email": "founder@example.com",
        "name": "Ada Founder",
        "country": "US",
    }
    customer.update(overrides)
    return customer


def build_subscription(
    subscription_id: str = "sub_001",
    status: str = "active",
    user_id: str | None = "user_001",
    customer: dict | str | None = None,
    product: dict | str | None = "prod_monthly",
    **overrides,
) -> dict:
    subscription = {
        "id": subscription_id,
        "object": "subscription",
        "status": status,
        "customer": customer if customer is not None else build_customer(),
        "product": product,
        "current_period_start_date": "2026-10-01T00:00:00.000Z",
        "current_period_end_date": "2026-11-01T00:00:00.000Z",
        "canceled_at": None,
        "metadata": {"user_id": user_id} if user_id else {},
    }
    subscription.update(overrides)
    return subscription


def build_checkout(
    checkout_id: str = "ch_001",
    order_user_id: str | None = "user_001",
    checkout_user_id: str | None = None,
    order_id: str = "ord_001",
    metadata: dict | None = None,
    subscription: dict | str | None = None,
    customer: dict | None = None,
    order_metadata: dict | None = None,
) -> dict:
    checkout_metadata = dict(metadata or {})
    if checkout_user_id:
        checkout_metadata["user_id"] = checkout_user_id
    order_meta = dict(order_metadata or {})
    if order_user_id:
        order_meta["user_id"] = order_user_id
    checkout = {
        "id": checkout_id,
        "object": "checkout",
        "status": "completed",
        "customer": customer or build_customer(),
        "order": {
            "id": order_id,
            "object": "order",
            "metadata": order_meta,
        },
        "metadata": checkout_metadata,
    }
    if subscription is not None:
        checkout["subscription"] = subscription
    return checkout


def build_event(event_id: str, event_type: str, obj: dict) -> dict:
    return {
        "id": event_id,
        "eventType": event_type,
        "created_at": 1760659200,
        "object": obj,
    }


def encode(event: dict) -> bytes:
    return json.dumps(event).encode("utf-8")


def signed_headers(body: bytes, secret: str = TEST_WEBHOOK_SECRET) -> dict[str, str]:
    return {"creem-signature": sign_payload(body, secret), "Content-Type": "application/json"}


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
async def engine():
    """In-memory SQLite engine with all tables created.

    StaticPool keeps a single connection so every session sees the same
    in-memory database.
    """
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)

    import creem_sync.db.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def webhook_service(session_factory) -> WebhookService:
    return WebhookService(session_factory, TEST_WEBHOOK_SECRET)
