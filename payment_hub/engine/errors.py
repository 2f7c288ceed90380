"""
Error taxonomy for the payment hub.

All of these propagate unchanged through the facade to the caller. The API
layer is the only place they are translated into HTTP responses.
"""

from typing import Optional


class PaymentError(Exception):
    """Base exception for payment orchestration errors."""


class ConfigurationError(PaymentError):
    """Provider credentials are missing or incomplete at registration time."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class UnsupportedProviderError(PaymentError):
    """The requested provider is not registered."""

    def __init__(self, provider: str):
        super().__init__(f"Unsupported payment provider: {provider}")
        self.provider = provider


class ValidationError(PaymentError):
    """Required input is missing or invalid. Raised before any network call."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class ProviderAPIError(PaymentError):
    """A call to the provider's SDK or API failed."""

    def __init__(
        self,
        provider: str,
        message: str,
        status_code: Optional[int] = None,
        cause: Optional[BaseException] = None,
    ):
        super().__init__(f"{provider} API error: {message}")
        self.provider = provider
        self.status_code = status_code
        self.cause = cause


class WebhookVerificationError(PaymentError):
    """The webhook could not be authenticated. Nothing in it may be trusted."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider} webhook rejected: {message}")
        self.provider = provider
