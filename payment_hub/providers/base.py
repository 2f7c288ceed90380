"""
Abstract payment strategy interface.

Every gateway adapter (Stripe, PayPal, MercadoPago) implements this contract.
A subclass that leaves any operation unimplemented cannot be instantiated:
ABCMeta raises TypeError at construction time.
"""

from abc import ABC, abstractmethod
from typing import Any, Mapping, Optional, Union

from payment_hub.engine.normalization import normalize
from payment_hub.models.enums import NormalizedStatus
from payment_hub.models.payment import (
    ConfirmationResult,
    PaymentMetadata,
    PaymentRequest,
    PaymentResult,
    RawWebhookRequest,
    WebhookAck,
    WebhookEvent,
)


class PaymentStrategy(ABC):
    """Abstract base class for payment provider strategies."""

    STATUS_MAP: Mapping[str, NormalizedStatus] = {}

    @property
    @abstractmethod
    def name(self) -> str:
        """Registry key (e.g. 'stripe')."""
        ...

    @abstractmethod
    async def create_payment(
        self, request: PaymentRequest, metadata: Optional[PaymentMetadata] = None
    ) -> PaymentResult:
        """
        Create the provider-native payment, intent or preference.

        The result echoes every identifier needed for confirmation and, where
        the provider has one, the url the payer must be redirected to.

        Raises:
            ProviderAPIError: The provider call failed.
        """
        ...

    @abstractmethod
    async def confirm_payment(
        self, external_id: str, additional_data: Optional[Mapping[str, Any]] = None
    ) -> ConfirmationResult:
        """
        Run the second lifecycle step for a payment.

        Raises:
            ValidationError: Provider-required data is missing (checked before any call).
            ProviderAPIError: The provider call failed.
        """
        ...

    @abstractmethod
    async def handle_webhook(self, request: RawWebhookRequest) -> Union[WebhookEvent, WebhookAck]:
        """
        Authenticate and interpret an inbound notification.

        Raises:
            WebhookVerificationError: Authenticity could not be established.
        """
        ...

    @abstractmethod
    async def get_payment_status(self, external_id: str) -> PaymentResult:
        """Re-query the provider, which is the source of truth."""
        ...

    def normalize_status(self, raw: Any) -> NormalizedStatus:
        return normalize(self.STATUS_MAP, raw)

    async def aclose(self) -> None:
        """Release network resources. No-op unless the adapter owns a client."""
        return None
