"""Shared test fixtures: in-memory database, fake Redis, seeded catalog, API client."""

import os

# Settings are cached on first use; set test env before any saaskit import.
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_dummy")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_dummy")
os.environ.setdefault("CLERK_PUBLISHABLE_KEY", "pk_test_c3VwZXJiLXRpY2stNDUuY2xlcmsuYWNjb3VudHMuZGV2JA")
os.environ.setdefault("SITE_URL", "http://localhost:5173")
os.environ.setdefault("AVATARS_BUCKET", "")

import fakeredis.aioredis
import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from saaskit.core.auth import ClerkUser, require_auth
from saaskit.db import close_db, close_redis, get_session_factory, init_db, init_redis
from saaskit.db.models.plan import Plan
from saaskit.db.models.subscription import Subscription
from saaskit.db.models.user import User

_TEST_DB_URL = "sqlite+aiosqlite://"

FREE_PRICES = {
    "month": {"usd": {"stripe_id": "price_free_month_usd", "amount": 0}},
    "year": {
        "usd": {"stripe_id": "price_free_year_usd", "amount": 0},
        "eur": {"stripe_id": "price_free_year_eur", "amount": 0},
    },
}
PRO_PRICES = {
    "month": {
        "usd": {"stripe_id": "price_pro_month_usd", "amount": 900},
        "eur": {"stripe_id": "price_pro_month_eur", "amount": 800},
        "vnd": {"stripe_id": "price_pro_month_vnd", "amount": 220000},
    },
    "year": {"usd": {"stripe_id": "price_pro_year_usd", "amount": 9000}},
}
BUSINESS_PRICES = {
    "month": {"usd": {"stripe_id": "price_biz_month_usd", "amount": 4900}},
    "year": {},
}


def override_auth(user: ClerkUser):
    """Dependency override factory for require_auth."""

    async def _override():
        return user

    return _override


def make_stripe_subscription(
    sub_id: str,
    customer: str,
    product: str,
    price_id: str,
    interval: str = "year",
    currency: str = "usd",
    status: str = "active",
    cancel_at_period_end: bool = False,
) -> dict:
    """Build a minimal Stripe-style subscription payload."""
    return {
        "id": sub_id,
        "object": "subscription",
        "customer": customer,
        "status": status,
        "cancel_at_period_end": cancel_at_period_end,
        "current_period_start": 1_700_000_000,
        "current_period_end": 1_731_536_000,
        "items": {
            "data": [
                {
                    "price": {
                        "id": price_id,
                        "product": product,
                        "currency": currency,
                        "recurring": {"interval": interval},
                    }
                }
            ]
        },
    }


@pytest.fixture
async def engine() -> AsyncEngine:
    """In-memory SQLite engine shared by services and the global session factory."""
    engine = await init_db(_TEST_DB_URL)
    yield engine
    await close_db()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return get_session_factory()


@pytest.fixture
async def fake_redis():
    """In-memory fakeredis client installed as the shared client."""
    client = await init_redis(client=fakeredis.aioredis.FakeRedis(decode_responses=True))
    yield client
    await client.flushall()
    await close_redis()


@pytest.fixture
async def plans(session_factory) -> dict[str, Plan]:
    """Seed free, pro and business plans."""
    rows = {
        "free": Plan(key="free", stripe_id="prod_free", name="Free", description="Starter", prices=FREE_PRICES),
        "pro": Plan(key="pro", stripe_id="prod_pro", name="Pro", description="For teams", prices=PRO_PRICES),
        "business": Plan(
            key="business", stripe_id="prod_business", name="Business", description="", prices=BUSINESS_PRICES
        ),
    }
    async with session_factory() as session:
        session.add_all(rows.values())
        await session.commit()
        for plan in rows.values():
            await session.refresh(plan)
    return rows


@pytest.fixture
async def user(session_factory) -> User:
    """A provisioned user that has not finished onboarding."""
    async with session_factory() as session:
        row = User(clerk_user_id="user_test_001", email="ada@example.com", name="Ada Lovelace")
        session.add(row)
        await session.commit()
        await session.refresh(row)
    return row


@pytest.fixture
async def free_customer(session_factory, plans) -> User:
    """An onboarded user with a Stripe customer and a free subscription."""
    async with session_factory() as session:
        row = User(
            clerk_user_id="user_test_002",
            email="grace@example.com",
            name="Grace Hopper",
            username="grace",
            customer_id="cus_free_001",
        )
        session.add(row)
        await session.flush()
        session.add(
            Subscription(
                user_id=row.id,
                plan_id=plans["free"].id,
                price_stripe_id="price_free_year_usd",
                stripe_id="sub_free_001",
                currency="usd",
                interval="year",
                status="active",
                current_period_start=1_700_000_000,
                current_period_end=1_731_536_000,
                cancel_at_period_end=False,
            )
        )
        await session.commit()
        await session.refresh(row)
    return row


@pytest.fixture
def fastapi_app(engine, fake_redis):
    from saaskit.main import app

    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def login(fastapi_app):
    """Authenticate every request as the given user."""

    def _login(db_user: User, admin: bool = False) -> None:
        claims = {"sub": db_user.clerk_user_id}
        if admin:
            claims["public_metadata"] = {"admin": True}
        fastapi_app.dependency_overrides[require_auth] = override_auth(
            ClerkUser(user_id=db_user.clerk_user_id, claims=claims)
        )

    return _login


@pytest.fixture
def stripe_subscription():
    """Factory for Stripe-style subscription payloads."""
    return make_stripe_subscription


@pytest.fixture
async def client(fastapi_app) -> AsyncClient:
    """In-process client sharing the test event loop (lifespan is not run)."""
    async with AsyncClient(transport=ASGITransport(app=fastapi_app), base_url="http://test") as ac:
        yield ac
