"""
Provider-agnostic payment service.

Holds one strategy per registered provider and dispatches every lifecycle
call to it. The registry is built once at the composition root and is
read-only afterwards.

Nothing here retries, caches or persists. Provider failures surface as
ProviderAPIError and the caller decides what to do with them.
"""

import logging
from types import MappingProxyType
from typing import Any, Mapping, Optional, Union

import httpx

from payment_hub.config import ProvidersConfig
from payment_hub.engine.errors import (
    ConfigurationError,
    UnsupportedProviderError,
    ValidationError,
    WebhookVerificationError,
)
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
from payment_hub.providers.mercadopago_provider import MercadoPagoStrategy
from payment_hub.providers.paypal_provider import PayPalStrategy
from payment_hub.providers.stripe_provider import StripeStrategy

logger = logging.getLogger("payment_hub.service")


class PaymentService:
    """Dispatches payment operations to the strategy registered for a provider."""

    def __init__(self, strategies: Mapping[str, PaymentStrategy]):
        self._strategies: Mapping[str, PaymentStrategy] = MappingProxyType(dict(strategies))

    def get_available_providers(self) -> list[str]:
        return list(self._strategies)

    def get_strategy(self, provider: str) -> PaymentStrategy:
        strategy = self._strategies.get(provider)
        if strategy is None:
            raise UnsupportedProviderError(provider)
        return strategy

    async def create_payment(
        self,
        provider: str,
        request: PaymentRequest,
        metadata: Optional[PaymentMetadata] = None,
    ) -> PaymentResult:
        strategy = self.get_strategy(provider)
        _validate_request(request)

        result = await strategy.create_payment(request, metadata or {})
        logger.info(
            "Created %s payment %s: %s %s (%s)",
            provider, result.external_id, result.amount, result.currency, result.status.value,
        )
        return result

    async def confirm_payment(
        self,
        provider: str,
        external_id: str,
        additional_data: Optional[Mapping[str, Any]] = None,
    ) -> ConfirmationResult:
        strategy = self.get_strategy(provider)
        if not external_id:
            raise ValidationError("external_id is required", field="external_id")

        result = await strategy.confirm_payment(external_id, additional_data or {})
        logger.info(
            "Confirmed %s payment %s: success=%s status=%s",
            provider, result.external_id, result.success, result.status.value,
        )
        return result

    async def handle_webhook(
        self, provider: str, request: RawWebhookRequest
    ) -> Union[WebhookEvent, WebhookAck]:
        """
        Authenticate and interpret a provider notification.

        The request must carry the body exactly as received; Stripe's
        signature is computed over those bytes.

        Raises:
            UnsupportedProviderError: Provider not registered.
            WebhookVerificationError: The notification could not be authenticated.
        """
        strategy = self.get_strategy(provider)
        outcome = await strategy.handle_webhook(request)

        if isinstance(outcome, WebhookEvent):
            if not outcome.verified:
                raise WebhookVerificationError(provider, "strategy returned an unverified event")
            logger.info(
                "Verified %s webhook %s for %s: %s",
                provider, outcome.event_type, outcome.external_id, outcome.status.value,
            )
        return outcome

    async def get_payment_status(self, provider: str, external_id: str) -> PaymentResult:
        strategy = self.get_strategy(provider)
        if not external_id:
            raise ValidationError("external_id is required", field="external_id")
        return await strategy.get_payment_status(external_id)

    async def aclose(self) -> None:
        for strategy in self._strategies.values():
            await strategy.aclose()


def _validate_request(request: PaymentRequest) -> None:
    if request.amount is None or request.amount <= 0:
        raise ValidationError(f"Amount must be positive: {request.amount}", field="amount")
    if not request.currency or not request.currency.strip():
        raise ValidationError("Currency is required", field="currency")


def build_payment_service(
    config: ProvidersConfig,
    client: Optional[httpx.AsyncClient] = None,
) -> PaymentService:
    """
    Build the service from explicit provider configuration.

    Only providers with a credentials entry are registered. A provider whose
    credentials turn out to be incomplete is logged and left out; startup
    continues with the rest.

    Args:
        config: Per-provider credentials (None entries are skipped).
        client: Optional shared httpx client for the REST providers (tests
            pass one backed by httpx.MockTransport).
    """
    factories = {
        "stripe": lambda creds: StripeStrategy(creds),
        "paypal": lambda creds: PayPalStrategy(
            creds, config.frontend_url, config.timeout_seconds, client
        ),
        "mercadopago": lambda creds: MercadoPagoStrategy(
            creds, config.frontend_url, config.backend_url, config.timeout_seconds, client
        ),
    }

    strategies: dict[str, PaymentStrategy] = {}
    for name, factory in factories.items():
        credentials = getattr(config, name)
        if credentials is None:
            continue
        try:
            strategies[name] = factory(credentials)
        except ConfigurationError as e:
            logger.warning("Payment provider %s not registered: %s", name, e)

    logger.info("Payment providers available: %s", ", ".join(strategies) or "none")
    return PaymentService(strategies)
