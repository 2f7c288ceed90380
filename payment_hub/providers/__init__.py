from typing import Any

from payment_hub.engine.errors import UnsupportedProviderError
from payment_hub.engine.normalization import normalize as _normalize
from payment_hub.models.enums import NormalizedStatus
from payment_hub.providers.base import PaymentStrategy
from payment_hub.providers.mercadopago_provider import MercadoPagoStrategy
from payment_hub.providers.paypal_provider import PayPalStrategy
from payment_hub.providers.stripe_provider import StripeStrategy

STRATEGY_CLASSES: dict[str, type[PaymentStrategy]] = {
    "stripe": StripeStrategy,
    "paypal": PayPalStrategy,
    "mercadopago": MercadoPagoStrategy,
}


def normalize(provider: str, raw: Any) -> NormalizedStatus:
    """Normalize a native status without needing a configured strategy instance."""
    strategy_cls = STRATEGY_CLASSES.get(provider)
    if strategy_cls is None:
        raise UnsupportedProviderError(provider)
    return _normalize(strategy_cls.STATUS_MAP, raw)


__all__ = [
    "PaymentStrategy",
    "StripeStrategy",
    "PayPalStrategy",
    "MercadoPagoStrategy",
    "STRATEGY_CLASSES",
    "normalize",
]
