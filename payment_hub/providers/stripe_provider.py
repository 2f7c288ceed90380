"""
Stripe card-intent strategy.

Payments are PaymentIntents confirmed client-side with the returned
client_secret. Webhooks are authenticated with Stripe's HMAC signature over
the raw request body before any field of the event is looked at.

The stripe SDK is blocking, so calls run in a worker thread. The API key is
passed per request; the module-global ``stripe.api_key`` is never set.

Timestamps are only ever Stripe's own: the intent's ``created`` on create and
the event's ``created`` on webhooks. PaymentIntents have no updated-at field,
so retrieved intents carry no timestamp.
"""

import asyncio
import logging
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Callable, Mapping, Optional, Union

import stripe

from payment_hub.config import StripeCredentials
from payment_hub.engine.errors import (
    ConfigurationError,
    ProviderAPIError,
    WebhookVerificationError,
)
from payment_hub.models.enums import NormalizedStatus, Provider
from payment_hub.models.payment import (
    ConfirmationResult,
    PaymentMetadata,
    PaymentRequest,
    PaymentResult,
    RawWebhookRequest,
    WebhookAck,
    WebhookEvent,
)
from payment_hub.providers.base import PaymentStrategy

logger = logging.getLogger("payment_hub.providers.stripe")

DEFAULT_DESCRIPTION = "Payment Hub payment"
SIGNATURE_HEADER = "Stripe-Signature"

# Currencies Stripe expects in whole units rather than cents
ZERO_DECIMAL_CURRENCIES = frozenset({
    "bif", "clp", "djf", "gnf", "jpy", "kmf", "krw", "mga",
    "pyg", "rwf", "ugx", "vnd", "vuv", "xaf", "xof", "xpf",
})

_STATUS_MAP = {
    "requires_payment_method": NormalizedStatus.PENDING,
    "requires_confirmation": NormalizedStatus.PENDING,
    "requires_action": NormalizedStatus.PENDING,
    "requires_capture": NormalizedStatus.PENDING,
    "processing": NormalizedStatus.PENDING,
    "succeeded": NormalizedStatus.COMPLETED,
    "canceled": NormalizedStatus.CANCELLED,
}

_EVENT_STATUS = {
    "payment_intent.succeeded": NormalizedStatus.COMPLETED,
    "payment_intent.payment_failed": NormalizedStatus.FAILED,
    "payment_intent.canceled": NormalizedStatus.CANCELLED,
    "payment_intent.processing": NormalizedStatus.PENDING,
    "payment_intent.requires_action": NormalizedStatus.PENDING,
}


def to_minor_units(amount: Decimal, currency: str) -> int:
    """Convert a major-unit amount to the integer Stripe expects."""
    if currency.lower() in ZERO_DECIMAL_CURRENCIES:
        return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount: Optional[int], currency: Optional[str]) -> Optional[Decimal]:
    if amount is None:
        return None
    if (currency or "").lower() in ZERO_DECIMAL_CURRENCIES:
        return Decimal(amount)
    return (Decimal(amount) / 100).quantize(Decimal("0.01"))


def _from_epoch(value: Any) -> Optional[datetime]:
    return datetime.fromtimestamp(value, tz=timezone.utc) if value else None


def _stringify(metadata: Optional[PaymentMetadata]) -> dict[str, str]:
    # Stripe metadata values must be strings
    return {str(k): str(v) for k, v in (metadata or {}).items() if v is not None}


class StripeStrategy(PaymentStrategy):
    """PaymentIntent-based strategy."""

    STATUS_MAP = _STATUS_MAP

    def __init__(self, credentials: StripeCredentials):
        if not credentials.secret_key:
            raise ConfigurationError(Provider.STRIPE.value, "secret key is required")
        self._api_key = credentials.secret_key
        self._webhook_secret = credentials.webhook_secret
        if not self._webhook_secret:
            logger.warning("Stripe registered without a webhook secret; webhooks will be rejected")

    @property
    def name(self) -> str:
        return Provider.STRIPE.value

    async def _call(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        try:
            return await asyncio.to_thread(func, *args, api_key=self._api_key, **kwargs)
        except stripe.StripeError as e:
            logger.error("Stripe API call failed: %s", e)
            raise ProviderAPIError(
                self.name,
                e.user_message or str(e),
                status_code=e.http_status,
                cause=e,
            ) from e

    def _to_result(self, intent: Mapping[str, Any]) -> PaymentResult:
        raw_status = intent.get("status")
        currency = intent.get("currency")
        return PaymentResult(
            external_id=intent["id"],
            status=self.normalize_status(raw_status),
            provider=self.name,
            amount=from_minor_units(intent.get("amount"), currency),
            currency=currency,
            requires_action=raw_status == "requires_action",
            additional_data={
                "raw_status": raw_status,
                "requires_confirmation": raw_status == "requires_confirmation",
                "metadata": dict(intent.get("metadata") or {}),
            },
        )

    async def create_payment(
        self, request: PaymentRequest, metadata: Optional[PaymentMetadata] = None
    ) -> PaymentResult:
        currency = request.currency.lower()
        intent = await self._call(
            stripe.PaymentIntent.create,
            amount=to_minor_units(request.amount, currency),
            currency=currency,
            description=request.description or DEFAULT_DESCRIPTION,
            metadata={**_stringify(metadata), "integration": "payment_hub"},
        )
        logger.info("Created PaymentIntent %s (%s)", intent["id"], intent.get("status"))

        result = self._to_result(intent)
        # Echo what the caller asked for, in major units
        result.amount = request.amount
        result.currency = currency
        result.provider_updated_at = _from_epoch(intent.get("created"))
        result.additional_data.update({
            "client_secret": intent.get("client_secret"),
            "payment_intent_id": intent["id"],
        })
        return result

    async def confirm_payment(
        self, external_id: str, additional_data: Optional[Mapping[str, Any]] = None
    ) -> ConfirmationResult:
        # Confirmation happens client-side; here we only check the outcome
        intent = await self._call(stripe.PaymentIntent.retrieve, external_id)
        result = self._to_result(intent)

        succeeded = intent.get("status") == "succeeded"
        return ConfirmationResult(
            success=succeeded,
            status=result.status,
            external_id=result.external_id,
            provider=self.name,
            amount=result.amount,
            currency=result.currency,
            error=None if succeeded else f"Payment not completed. Status: {intent.get('status')}",
            provider_updated_at=result.provider_updated_at,
            additional_data=result.additional_data,
        )

    async def handle_webhook(self, request: RawWebhookRequest) -> Union[WebhookEvent, WebhookAck]:
        if not self._webhook_secret:
            raise WebhookVerificationError(self.name, "webhook secret is not configured")

        signature = request.header(SIGNATURE_HEADER)
        if not signature:
            raise WebhookVerificationError(self.name, f"missing {SIGNATURE_HEADER} header")

        try:
            event = stripe.Webhook.construct_event(request.body, signature, self._webhook_secret)
        except stripe.SignatureVerificationError as e:
            logger.warning("Stripe webhook signature verification failed: %s", e)
            raise WebhookVerificationError(self.name, "invalid signature") from e
        except ValueError as e:
            logger.warning("Stripe webhook payload could not be parsed: %s", e)
            raise WebhookVerificationError(self.name, "invalid payload") from e

        event_type = event["type"]
        status = _EVENT_STATUS.get(event_type)
        if status is None:
            logger.info("Ignoring Stripe event %s (%s)", event.get("id"), event_type)
            return WebhookAck(provider=self.name, message=f"Event type {event_type} ignored")

        intent = event["data"]["object"]
        currency = intent.get("currency")
        return WebhookEvent(
            provider=self.name,
            verified=True,
            external_id=intent["id"],
            status=status,
            amount=from_minor_units(intent.get("amount"), currency),
            currency=currency,
            event_type=event_type,
            metadata=dict(intent.get("metadata") or {}),
            provider_updated_at=_from_epoch(event.get("created")),
        )

    async def get_payment_status(self, external_id: str) -> PaymentResult:
        intent = await self._call(stripe.PaymentIntent.retrieve, external_id)
        return self._to_result(intent)
