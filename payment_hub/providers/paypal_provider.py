"""
PayPal redirect-approval strategy (classic v1 Payments REST API).

Lifecycle:
  1. create_payment  → payment in state "created" plus an approval_url
  2. the payer approves in the browser and PayPal redirects to return_url
     with ?paymentId=...&PayerID=...
  3. confirm_payment → executes the payment with that payer id

Webhooks are not used for this provider: the lifecycle is driven by the
browser redirect and the explicit confirm. Inbound notifications are
acknowledged without processing.
"""

import logging
from typing import Any, Mapping, Optional, Union

import httpx

from payment_hub.config import PayPalCredentials
from payment_hub.engine.errors import ConfigurationError, ValidationError
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

logger = logging.getLogger("payment_hub.providers.paypal")

SANDBOX_URL = "https://api-m.sandbox.paypal.com"
LIVE_URL = "https://api-m.paypal.com"
DEFAULT_DESCRIPTION = "Payment Hub payment"
CUSTOM_FIELD_LIMIT = 127

_STATUS_MAP = {
    "created": NormalizedStatus.PENDING,
    "in_progress": NormalizedStatus.PENDING,
    "pending": NormalizedStatus.PENDING,
    "approved": NormalizedStatus.COMPLETED,
    "completed": NormalizedStatus.COMPLETED,
    "partially_refunded": NormalizedStatus.REFUNDED,
    "refunded": NormalizedStatus.REFUNDED,
    "voided": NormalizedStatus.CANCELLED,
    "expired": NormalizedStatus.EXPIRED,
    "failed": NormalizedStatus.FAILED,
}


class PayPalStrategy(RestStrategy):
    """Create → browser approval → execute."""

    STATUS_MAP = _STATUS_MAP

    def __init__(
        self,
        credentials: PayPalCredentials,
        frontend_url: str,
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not credentials.client_id or not credentials.client_secret:
            raise ConfigurationError(Provider.PAYPAL.value, "client id and client secret are both required")
        if credentials.mode not in ("sandbox", "live"):
            raise ConfigurationError(Provider.PAYPAL.value, f"unknown mode {credentials.mode!r}")

        super().__init__(LIVE_URL if credentials.mode == "live" else SANDBOX_URL, timeout, client)
        self._credentials = credentials
        self._frontend_url = frontend_url

    @property
    def name(self) -> str:
        return Provider.PAYPAL.value

    async def _auth_headers(self) -> dict[str, str]:
        """Fetch a client-credentials access token for a single operation."""
        token = await self._json(
            "POST",
            "/v1/oauth2/token",
            auth=(self._credentials.client_id, self._credentials.client_secret),
            data={"grant_type": "client_credentials"},
            headers={"Accept": "application/json"},
        )
        return {"Authorization": f"Bearer {token['access_token']}"}

    def _to_result(self, payment: Mapping[str, Any]) -> PaymentResult:
        state = payment.get("state")
        status = self.normalize_status(state)
        amount = (payment.get("transactions") or [{}])[0].get("amount") or {}
        approval_url = next(
            (link.get("href") for link in payment.get("links", []) if link.get("rel") == "approval_url"),
            None,
        )
        return PaymentResult(
            external_id=payment["id"],
            status=status,
            provider=self.name,
            amount=to_decimal(amount.get("total")),
            currency=amount.get("currency"),
            requires_approval=status == NormalizedStatus.PENDING,
            redirect_url=approval_url,
            provider_updated_at=parse_timestamp(payment.get("update_time") or payment.get("create_time")),
            additional_data={
                "state": state,
                "create_time": payment.get("create_time"),
                "update_time": payment.get("update_time") or payment.get("create_time"),
            },
        )

    async def create_payment(
        self, request: PaymentRequest, metadata: Optional[PaymentMetadata] = None
    ) -> PaymentResult:
        metadata = metadata or {}
        total = f"{request.amount:.2f}"
        currency = request.currency.upper()
        description = request.description or DEFAULT_DESCRIPTION

        body = {
            "intent": "sale",
            "payer": {"payment_method": "paypal"},
            "redirect_urls": {
                "return_url": request.return_url or f"{self._frontend_url}/payment/success",
                "cancel_url": request.cancel_url or f"{self._frontend_url}/payment/cancel",
            },
            "transactions": [{
                "item_list": {
                    "items": [{
                        "name": description,
                        "sku": str(metadata.get("propertyId") or "item"),
                        "price": total,
                        "currency": currency,
                        "quantity": 1,
                    }],
                },
                "amount": {"currency": currency, "total": total},
                "description": description,
            }],
        }
        if metadata:
            custom = ",".join(f"{k}={v}" for k, v in metadata.items())
            if len(custom) > CUSTOM_FIELD_LIMIT:
                logger.warning(
                    "PayPal custom field truncated from %d to %d characters; dropped: %r",
                    len(custom), CUSTOM_FIELD_LIMIT, custom[CUSTOM_FIELD_LIMIT:],
                )
            body["transactions"][0]["custom"] = custom[:CUSTOM_FIELD_LIMIT]

        payment = await self._json(
            "POST", "/v1/payments/payment", json=body, headers=await self._auth_headers()
        )
        result = self._to_result(payment)
        if not result.redirect_url:
            logger.warning("PayPal payment %s returned no approval_url", result.external_id)
        result.requires_approval = True
        result.additional_data["payment_id"] = result.external_id

        logger.info("Created PayPal payment %s (%s)", result.external_id, payment.get("state"))
        return result

    async def confirm_payment(
        self, external_id: str, additional_data: Optional[Mapping[str, Any]] = None
    ) -> ConfirmationResult:
        additional_data = additional_data or {}
        payer_id = additional_data.get("payer_id") or additional_data.get("payerId")
        if not payer_id:
            raise ValidationError("payer_id is required to execute a PayPal payment", field="payer_id")

        payment = await self._json(
            "POST",
            f"/v1/payments/payment/{external_id}/execute",
            json={"payer_id": payer_id},
            headers=await self._auth_headers(),
        )
        result = self._to_result(payment)
        success = result.status == NormalizedStatus.COMPLETED
        payer_info = (payment.get("payer") or {}).get("payer_info") or {}

        logger.info("Executed PayPal payment %s (%s)", result.external_id, payment.get("state"))
        return ConfirmationResult(
            success=success,
            status=result.status,
            external_id=result.external_id,
            provider=self.name,
            amount=result.amount,
            currency=result.currency,
            error=None if success else f"Payment not approved. State: {payment.get('state')}",
            provider_updated_at=result.provider_updated_at,
            additional_data={
                "payer_id": payer_info.get("payer_id", payer_id),
                "payment_method": (payment.get("payer") or {}).get("payment_method"),
            },
        )

    async def handle_webhook(self, request: RawWebhookRequest) -> Union[WebhookEvent, WebhookAck]:
        logger.info("PayPal notification acknowledged without processing")
        return WebhookAck(provider=self.name, message="PayPal notifications require no action")

    async def get_payment_status(self, external_id: str) -> PaymentResult:
        payment = await self._json(
            "GET", f"/v1/payments/payment/{external_id}", headers=await self._auth_headers()
        )
        return self._to_result(payment)
