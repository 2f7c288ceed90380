"""Enumerations for the payment hub domain model."""

from enum import Enum


class NormalizedStatus(str, Enum):
    """Provider-agnostic payment status shared by every strategy."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    EXPIRED = "expired"
    UNKNOWN = "unknown"


class Provider(str, Enum):
    """Supported payment providers (registry keys)."""

    STRIPE = "stripe"
    PAYPAL = "paypal"
    MERCADOPAGO = "mercadopago"


class LedgerOutcome(str, Enum):
    """What a ledger write did with an incoming status."""

    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    STALE = "stale"
