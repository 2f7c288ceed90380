"""
Payment Hub: multi-provider payment orchestration API.

Unifies Stripe (card intents), PayPal (redirect approval) and MercadoPago
(checkout preferences) behind one lifecycle: create, confirm, webhook,
status. Providers are enabled purely through configuration.

Start the server:
    uvicorn payment_hub.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from payment_hub.api.health import router as health_router
from payment_hub.api.payments import router as payments_router
from payment_hub.config import settings
from payment_hub.database import dispose_db, init_db
from payment_hub.engine.service import build_payment_service

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize the database and build the payment service once per process."""
    await init_db()
    service = build_payment_service(settings.providers_config())
    app.state.payment_service = service
    yield
    await service.aclose()
    await dispose_db()


app = FastAPI(
    title="Payment Hub",
    description=(
        "Provider-agnostic payment orchestration: one lifecycle API over Stripe, "
        "PayPal and MercadoPago with normalized statuses, verified webhooks and "
        "an order-aware payment ledger."
    ),
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(health_router)
app.include_router(payments_router, prefix="/api")
