"""Shared test fixtures."""

import hashlib
import hmac
import json
import time
from typing import Any, Optional

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from payment_hub.config import (
    MercadoPagoCredentials,
    PayPalCredentials,
    ProvidersConfig,
    StripeCredentials,
)
from payment_hub.models.ledger import Base

STRIPE_WEBHOOK_SECRET = "whsec_test_secret"


class FakeProviderAPI:
    """
    Stand-in for a provider's REST API behind httpx.MockTransport.

    Serves canned JSON per (method, path) and records every request so tests
    can assert exactly which calls were (or were not) made.
    """

    def __init__(self):
        self.routes: dict[tuple[str, str], tuple[int, Any]] = {}
        self.requests: list[httpx.Request] = []
        self.client = httpx.AsyncClient(transport=httpx.MockTransport(self._handle))

    def add(self, method: str, path: str, body: Any = None, status_code: int = 200) -> None:
        self.routes[(method.upper(), path)] = (status_code, body)

    def calls(self, method: Optional[str] = None, path: Optional[str] = None) -> list[httpx.Request]:
        return [
            r for r in self.requests
            if (method is None or r.method == method.upper())
            and (path is None or r.url.path == path)
        ]

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        status_code, body = self.routes.get(
            (request.method, request.url.path), (404, {"message": "not found"})
        )
        return httpx.Response(status_code, json=body)


@pytest_asyncio.fixture
async def fake_api():
    api = FakeProviderAPI()
    yield api
    await api.client.aclose()


@pytest_asyncio.fixture
async def db_session():
    """Create a fresh in-memory database for each test."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session

    await engine.dispose()


@pytest.fixture
def providers_config():
    """Configuration with all three providers enabled."""
    return ProvidersConfig(
        stripe=StripeCredentials(secret_key="sk_test_123", webhook_secret=STRIPE_WEBHOOK_SECRET),
        paypal=PayPalCredentials(client_id="pp_client", client_secret="pp_secret", mode="sandbox"),
        mercadopago=MercadoPagoCredentials(access_token="TEST-mp-token", sandbox=True),
        frontend_url="https://app.example.com",
        backend_url="https://api.example.com",
    )


@pytest.fixture
def sign_stripe_payload():
    """Build a Stripe-Signature header for a payload, exactly as Stripe does."""

    def _sign(payload: bytes, secret: str = STRIPE_WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
        timestamp = timestamp or int(time.time())
        signed = f"{timestamp}.".encode() + payload
        signature = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
        return f"t={timestamp},v1={signature}"

    return _sign


@pytest.fixture
def stripe_event_payload():
    """Serialized Stripe event for a PaymentIntent."""

    def _payload(
        event_type: str = "payment_intent.succeeded",
        intent_id: str = "pi_3Nabc",
        status: str = "succeeded",
        amount: int = 10000,
        created: int = 1_700_000_000,
    ) -> bytes:
        event = {
            "id": "evt_1Nxyz",
            "object": "event",
            "type": event_type,
            "created": created,
            "data": {
                "object": {
                    "id": intent_id,
                    "object": "payment_intent",
                    "amount": amount,
                    "currency": "usd",
                    "status": status,
                    "metadata": {"propertyId": "5", "userId": "9"},
                },
            },
        }
        return json.dumps(event).encode()

    return _payload
