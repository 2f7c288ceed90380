"""
MercadoPago preference-based strategy (Checkout Pro).

create_payment returns a *preference*; the payer completes checkout on
MercadoPago, which then creates a *payment* (numeric id) and notifies us.

Webhook bodies are never trusted: only the event type and the payment id are
read from them, and the status comes from re-fetching the payment through
the Payments API.
"""

import json
import logging
import uuid
from typing import Any, Mapping, Optional, Union

import httpx

from payment_hub.config import MercadoPagoCredentials
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
from payment_hub.providers.rest import RestStrategy, parse_timestamp, to_decimal

logger = logging.getLogger("payment_hub.providers.mercadopago")

API_URL = "https://api.mercadopago.com"
DEFAULT_DESCRIPTION = "Payment Hub payment"
DEFAULT_CURRENCY = "ARS"
PAYMENT_NOTIFICATION_TYPE = "payment"

_STATUS_MAP = {
    "pending": NormalizedStatus.PENDING,
    "authorized": NormalizedStatus.PENDING,
    "in_process": NormalizedStatus.PENDING,
    "in_mediation": NormalizedStatus.PENDING,
    "approved": NormalizedStatus.COMPLETED,
    "rejected": NormalizedStatus.FAILED,
    "cancelled": NormalizedStatus.CANCELLED,
    "refunded": NormalizedStatus.REFUNDED,
    "charged_back": NormalizedStatus.REFUNDED,
}


def _is_payment_id(external_id: str) -> bool:
    # Payment ids are numeric; preference ids look like "<collector>-<uuid>"
    return str(external_id).isdigit()


class MercadoPagoStrategy(RestStrategy):
    """Preference → hosted checkout → payment, reconciled by re-fetch."""

    STATUS_MAP = _STATUS_MAP

    def __init__(
        self,
        credentials: MercadoPagoCredentials,
        frontend_url: str,
        backend_url: str,
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not credentials.access_token:
            raise ConfigurationError(Provider.MERCADOPAGO.value, "access token is required")

        super().__init__(API_URL, timeout, client)
        self._headers = {"Authorization": f"Bearer {credentials.access_token}"}
        self._sandbox = credentials.sandbox
        self._frontend_url = frontend_url
        self._backend_url = backend_url

    @property
    def name(self) -> str:
        return Provider.MERCADOPAGO.value

    def _to_result(self, payment: Mapping[str, Any]) -> PaymentResult:
        raw_status = payment.get("status")
        status = self.normalize_status(raw_status)
        return PaymentResult(
            external_id=str(payment["id"]),
            status=status,
            provider=self.name,
            amount=to_decimal(payment.get("transaction_amount")),
            currency=payment.get("currency_id"),
            requires_approval=status == NormalizedStatus.PENDING,
            reference=payment.get("external_reference"),
            provider_updated_at=parse_timestamp(
                payment.get("date_last_updated") or payment.get("date_created")
            ),
            additional_data={
                "status_detail": payment.get("status_detail"),
                "payment_type": payment.get("payment_type_id"),
                "installments": payment.get("installments"),
                "external_reference": payment.get("external_reference"),
                "date_created": payment.get("date_created"),
                "date_last_updated": payment.get("date_last_updated"),
            },
        )

    async def _fetch_payment(self, payment_id: str) -> dict[str, Any]:
        return await self._json("GET", f"/v1/payments/{payment_id}", headers=self._headers)

    async def _resolve(self, external_id: str) -> PaymentResult:
        """Look up a payment id directly, or a preference through its newest payment."""
        if _is_payment_id(external_id):
            return self._to_result(await self._fetch_payment(external_id))

        preference = await self._json(
            "GET", f"/checkout/preferences/{external_id}", headers=self._headers
        )
        reference = preference.get("external_reference")
        if reference:
            found = await self._json(
                "GET",
                "/v1/payments/search",
                params={"external_reference": reference, "sort": "date_created", "criteria": "desc"},
                headers=self._headers,
            )
            payments = found.get("results") or []
            if payments:
                result = self._to_result(payments[0])
                result.additional_data["preference_id"] = external_id
                return result

        # Checkout not completed yet
        item = (preference.get("items") or [{}])[0]
        return PaymentResult(
            external_id=external_id,
            status=NormalizedStatus.PENDING,
            provider=self.name,
            amount=to_decimal(item.get("unit_price")),
            currency=item.get("currency_id"),
            requires_approval=True,
            redirect_url=self._init_point(preference),
            reference=reference,
            provider_updated_at=parse_timestamp(preference.get("date_created")),
            additional_data={"preference_id": external_id, "external_reference": reference},
        )

    def _init_point(self, preference: Mapping[str, Any]) -> Optional[str]:
        if self._sandbox and preference.get("sandbox_init_point"):
            return preference["sandbox_init_point"]
        return preference.get("init_point")

    async def create_payment(
        self, request: PaymentRequest, metadata: Optional[PaymentMetadata] = None
    ) -> PaymentResult:
        metadata = metadata or {}
        reference = uuid.uuid4().hex
        currency = (request.currency or DEFAULT_CURRENCY).upper()

        body = {
            "items": [{
                "title": request.description or DEFAULT_DESCRIPTION,
                "unit_price": float(request.amount),
                "quantity": 1,
                "currency_id": currency,
            }],
            "back_urls": {
                "success": request.return_url or f"{self._frontend_url}/payment/success",
                "failure": request.cancel_url or f"{self._frontend_url}/payment/failure",
                "pending": f"{self._frontend_url}/payment/pending",
            },
            "auto_return": "approved",
            "notification_url": f"{self._backend_url}/api/payments/mercadopago/webhook",
            "external_reference": reference,
            "metadata": {**metadata, "integration": "payment_hub"},
        }
        preference = await self._json(
            "POST", "/checkout/preferences", json=body, headers=self._headers
        )
        logger.info("Created MercadoPago preference %s (reference %s)", preference["id"], reference)

        return PaymentResult(
            external_id=preference["id"],
            status=NormalizedStatus.PENDING,
            provider=self.name,
            amount=request.amount,
            currency=currency,
            requires_approval=True,
            redirect_url=self._init_point(preference),
            reference=preference.get("external_reference") or reference,
            provider_updated_at=parse_timestamp(preference.get("date_created")),
            additional_data={
                "preference_id": preference["id"],
                "external_reference": preference.get("external_reference") or reference,
                "init_point": preference.get("init_point"),
                "sandbox_init_point": preference.get("sandbox_init_point"),
            },
        )

    async def confirm_payment(
        self, external_id: str, additional_data: Optional[Mapping[str, Any]] = None
    ) -> ConfirmationResult:
        additional_data = additional_data or {}
        payment_id = additional_data.get("payment_id") or additional_data.get("paymentId")
        result = await self._resolve(str(payment_id) if payment_id else external_id)

        success = result.status == NormalizedStatus.COMPLETED
        return ConfirmationResult(
            success=success,
            status=result.status,
            external_id=result.external_id,
            provider=self.name,
            amount=result.amount,
            currency=result.currency,
            error=None if success else f"Payment not completed. Status: {result.status.value}",
            reference=result.reference,
            provider_updated_at=result.provider_updated_at,
            additional_data=result.additional_data,
        )

    async def handle_webhook(self, request: RawWebhookRequest) -> Union[WebhookEvent, WebhookAck]:
        try:
            body = json.loads(request.body or b"{}")
        except ValueError as e:
            raise WebhookVerificationError(self.name, "unparseable notification body") from e
        if not isinstance(body, dict):
            raise WebhookVerificationError(self.name, "unexpected notification body")

        notification_type = body.get("type") or body.get("topic")
        if notification_type != PAYMENT_NOTIFICATION_TYPE:
            logger.info("Ignoring MercadoPago notification of type %r", notification_type)
            return WebhookAck(provider=self.name, message=f"Notification type {notification_type} ignored")

        data = body.get("data")
        payment_id = data.get("id") if isinstance(data, dict) else None
        if not payment_id or isinstance(payment_id, (dict, list)):
            raise WebhookVerificationError(self.name, "notification carries no payment id")

        try:
            payment = await self._fetch_payment(str(payment_id))
        except ProviderAPIError as e:
            if e.status_code == 404:
                raise WebhookVerificationError(self.name, f"payment {payment_id} does not exist") from e
            raise

        # Everything below comes from the re-fetched object, not the notification
        result = self._to_result(payment)
        return WebhookEvent(
            provider=self.name,
            verified=True,
            external_id=result.external_id,
            status=result.status,
            amount=result.amount,
            currency=result.currency,
            event_type=notification_type,
            metadata={
                **(payment.get("metadata") or {}),
                "status_detail": payment.get("status_detail"),
                "payment_type": payment.get("payment_type_id"),
                "installments": payment.get("installments"),
            },
            reference=result.reference,
            provider_updated_at=result.provider_updated_at,
        )

    async def get_payment_status(self, external_id: str) -> PaymentResult:
        return await self._resolve(external_id)
