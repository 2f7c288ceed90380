"""Provider-agnostic value objects exchanged between the facade and its strategies."""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping, Optional

from payment_hub.models.enums import NormalizedStatus

PaymentMetadata = dict[str, Any]


@dataclass
class PaymentRequest:
    """What the caller wants to charge. Amount is always in major units (dollars, not cents)."""

    amount: Decimal
    currency: str
    description: str = ""
    return_url: Optional[str] = None
    cancel_url: Optional[str] = None


@dataclass
class PaymentResult:
    """Normalized view of a provider payment, intent or preference."""

    external_id: str  # The provider's own id
    status: NormalizedStatus
    provider: str
    amount: Optional[Decimal]
    currency: Optional[str]
    requires_approval: bool = False
    requires_action: bool = False
    redirect_url: Optional[str] = None  # Approval url / init point the UI sends the payer to
    reference: Optional[str] = None  # Merchant reference echoed back by the provider
    provider_updated_at: Optional[datetime] = None
    additional_data: dict[str, Any] = field(default_factory=dict)


@dataclass
class ConfirmationResult:
    """Outcome of the second lifecycle step (execute / retrieve-and-check)."""

    success: bool
    status: NormalizedStatus
    external_id: str
    provider: str
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    error: Optional[str] = None
    reference: Optional[str] = None
    provider_updated_at: Optional[datetime] = None
    additional_data: dict[str, Any] = field(default_factory=dict)


@dataclass
class WebhookEvent:
    """
    A provider notification that passed authenticity checks.

    Strategies only build these from verified data; the facade refuses to
    hand out an event whose ``verified`` flag is False.
    """

    provider: str
    verified: bool
    external_id: str
    status: NormalizedStatus
    amount: Optional[Decimal]
    currency: Optional[str]
    event_type: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    reference: Optional[str] = None
    provider_updated_at: Optional[datetime] = None


@dataclass
class WebhookAck:
    """Acknowledgment for a notification that carries nothing to act on."""

    provider: str
    received: bool = True
    message: str = ""


@dataclass
class RawWebhookRequest:
    """Inbound webhook exactly as delivered: headers plus the unparsed body bytes."""

    headers: Mapping[str, str]
    body: bytes

    def header(self, name: str) -> Optional[str]:
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return None
