"""
Test configuration and fixtures for Podcast Billing.

Provides an in-memory SQLite ledger, a fake payment gateway served through
httpx.MockTransport, a controllable clock and seeded catalog rows.
"""

import json
import os
import time
from datetime import datetime, timedelta
from types import SimpleNamespace
from typing import AsyncGenerator, Optional

# Secrets must be in the environment before app.config.settings is imported.
os.environ.setdefault("AUTH_JWT_SECRET", "test-auth-secret-that-is-long-enough-for-hs256")
os.environ.setdefault("GATEWAY_KEY_ID", "rzp_test_key")
os.environ.setdefault("GATEWAY_KEY_SECRET", "test_gateway_key_secret")
os.environ.setdefault("GATEWAY_WEBHOOK_SECRET", "test_gateway_webhook_secret")

import httpx
import jwt
import pytest
from decimal import Decimal
from httpx import ASGITransport, AsyncClient
from sqlmodel import select

from app.config.settings import get_settings
from app.domain.billing import SubscriptionStatus, UserRole
from app.domain.proration import advance_period, utcnow
from app.infrastructure.db.database import DatabaseManager
from app.infrastructure.db.ledger import LedgerStore
from app.infrastructure.db.models import (
    MerchItemModel,
    PlaylistModel,
    PodcastModel,
    PricingPlanModel,
    SubscriptionModel,
    UserModel,
)
from app.infrastructure.payments.gateway_client import GatewayClient, compute_signature


# =============================================================================
# Fakes
# =============================================================================

class FrozenClock:
    """Clock handed to services; tests move it forward explicitly."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeGatewayAPI:
    """
    In-process stand-in for the gateway REST API.

    Set ``failure`` to an HTTP status code or to "timeout" to make the next
    calls fail.
    """

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.failure = None
        self._sequence = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.failure == "timeout":
            raise httpx.ConnectTimeout("gateway timed out", request=request)
        if self.failure:
            return httpx.Response(
                self.failure,
                json={"error": {"code": "SERVER_ERROR", "description": "Gateway is down"}},
            )

        body = json.loads(request.content or b"{}")
        self._sequence += 1
        path = request.url.path
        if path.endswith("/orders"):
            return httpx.Response(200, json={
                "id": f"order_test{self._sequence}",
                "entity": "order",
                "amount": body["amount"],
                "currency": body["currency"],
                "receipt": body["receipt"],
                "status": "created",
            })
        if path.endswith("/refund"):
            return httpx.Response(200, json={
                "id": f"rfnd_test{self._sequence}",
                "entity": "refund",
                "payment_id": path.split("/")[-2],
                "amount": body["amount"],
                "status": "processed",
            })
        return httpx.Response(404, json={"error": {"description": "Unknown endpoint"}})

    def bodies(self, suffix: str) -> list[dict]:
        """JSON bodies of the requests whose path ends with ``suffix``."""
        return [
            json.loads(request.content)
            for request in self.requests
            if request.url.path.endswith(suffix)
        ]


# =============================================================================
# Infrastructure Fixtures
# =============================================================================

@pytest.fixture
def settings():
    """Application settings as loaded for the test run."""
    return get_settings()


@pytest.fixture
async def db_manager() -> AsyncGenerator[DatabaseManager, None]:
    """Fresh in-memory SQLite database with all tables."""
    manager = DatabaseManager("sqlite+aiosqlite:///:memory:")
    await manager.create_tables()
    yield manager
    await manager.close()


@pytest.fixture
def store(db_manager) -> LedgerStore:
    return LedgerStore(db_manager.session_factory)


@pytest.fixture
def gateway_api() -> FakeGatewayAPI:
    return FakeGatewayAPI()


@pytest.fixture
async def gateway(settings, gateway_api) -> AsyncGenerator[GatewayClient, None]:
    """Gateway client wired to the fake gateway."""
    client = GatewayClient.from_settings(
        settings,
        transport=httpx.MockTransport(gateway_api.handler),
    )
    yield client
    await client.close()


@pytest.fixture
def clock() -> FrozenClock:
    # Starts at the real time so rows stamped by the database layer line up.
    return FrozenClock(utcnow().replace(microsecond=0))


# =============================================================================
# Ledger Helpers
# =============================================================================

async def add_rows(store: LedgerStore, *rows):
    """Insert rows in one transaction and return them."""
    async with store.transaction() as ledger:
        for row in rows:
            ledger.session.add(row)
    return rows[0] if len(rows) == 1 else rows


async def fetch_all(store: LedgerStore, model, **filters) -> list:
    """Select rows of ``model`` matching equality filters."""
    async with store.transaction() as ledger:
        result = await ledger.session.execute(select(model).filter_by(**filters))
        return list(result.scalars().all())


async def fetch_one(store: LedgerStore, model, **filters):
    rows = await fetch_all(store, model, **filters)
    assert len(rows) == 1, f"expected one {model.__name__}, found {len(rows)}"
    return rows[0]


async def add_subscription(
    store: LedgerStore,
    user_id: str,
    plan: PricingPlanModel,
    start: datetime,
    end: Optional[datetime] = None,
    status: SubscriptionStatus = SubscriptionStatus.ACTIVE,
    **fields,
) -> SubscriptionModel:
    """Insert a subscription directly, bypassing checkout."""
    return await add_rows(
        store,
        SubscriptionModel(
            user_id=user_id,
            plan_id=plan.id,
            status=status.value,
            amount=plan.price,
            currency=plan.currency,
            current_period_start=start,
            current_period_end=end or advance_period(start, plan.interval),
            **fields,
        ),
    )


@pytest.fixture
async def catalog(store) -> SimpleNamespace:
    """Users, plans, podcasts, a playlist and merch items."""
    users = [
        UserModel(id="user-1", email="listener@example.com", name="Listener"),
        UserModel(id="user-2", email="other@example.com", name="Other"),
        UserModel(id="admin-1", email="admin@example.com", name="Admin", role=UserRole.ADMIN.value),
    ]
    free_plan = PricingPlanModel(name="Free", slug="free", price=Decimal("0.00"))
    basic = PricingPlanModel(name="Basic", slug="basic", price=Decimal("299.00"))
    premium = PricingPlanModel(name="Premium", slug="premium", price=Decimal("999.00"))
    yearly = PricingPlanModel(name="Premium Yearly", slug="premium-yearly", price=Decimal("9999.00"), interval="year")
    retired = PricingPlanModel(name="Legacy", slug="legacy", price=Decimal("199.00"), is_active=False)
    podcast = PodcastModel(title="Deep Dive #42", price=Decimal("49.00"))
    free_podcast = PodcastModel(title="Trailer", is_free=True, price=Decimal("0.00"))
    playlist = PlaylistModel(title="Best of 2026", price=Decimal("199.00"))
    tee = MerchItemModel(name="Logo Tee", price=Decimal("499.00"), stock_quantity=10)
    mug = MerchItemModel(name="Mug", price=Decimal("299.00"), stock_quantity=1)

    await add_rows(
        store,
        *users, free_plan, basic, premium, yearly, retired,
        podcast, free_podcast, playlist, tee, mug,
    )
    return SimpleNamespace(
        free_plan=free_plan,
        basic=basic,
        premium=premium,
        yearly=yearly,
        retired=retired,
        podcast=podcast,
        free_podcast=free_podcast,
        playlist=playlist,
        tee=tee,
        mug=mug,
    )


# =============================================================================
# Signing Helpers
# =============================================================================

@pytest.fixture
def sign_payment(settings):
    """Checkout signature as the gateway would produce it."""
    def _sign(order_id: str, payment_id: str) -> str:
        return compute_signature(settings.gateway_key_secret, f"{order_id}|{payment_id}")
    return _sign


@pytest.fixture
def webhook_body():
    """Build a signed-ready webhook body in the gateway's envelope format."""
    def _build(event: str, **entities) -> bytes:
        return json.dumps({
            "entity": "event",
            "event": event,
            "created_at": int(time.time()),
            "payload": {name: {"entity": entity} for name, entity in entities.items()},
        }).encode()
    return _build


@pytest.fixture
def sign_webhook(settings):
    def _sign(body: bytes) -> str:
        return compute_signature(settings.gateway_webhook_secret, body)
    return _sign


@pytest.fixture
def auth_headers(settings):
    """Bearer header for a user id, signed like the identity provider does."""
    def _headers(user_id: str = "user-1") -> dict:
        token = jwt.encode(
            {
                "sub": user_id,
                "aud": settings.auth_jwt_audience,
                "exp": int(time.time()) + 3600,
            },
            settings.auth_jwt_secret,
            algorithm=settings.auth_jwt_algorithm,
        )
        return {"Authorization": f"Bearer {token}"}
    return _headers


# =============================================================================
# App Fixtures
# =============================================================================

@pytest.fixture
def app(store, gateway, clock):
    """The FastAPI application wired to the test ledger, gateway and clock."""
    from app.main import app as fastapi_app

    fastapi_app.state.ledger_store = store
    fastapi_app.state.gateway = gateway
    fastapi_app.state.clock = clock
    yield fastapi_app
    for name in ("ledger_store", "gateway", "clock"):
        if hasattr(fastapi_app.state, name):
            delattr(fastapi_app.state, name)


@pytest.fixture
async def async_client(app) -> AsyncGenerator[AsyncClient, None]:
    """Get async test client."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
