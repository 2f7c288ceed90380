"""Application configuration via environment variables."""

from dataclasses import dataclass
from typing import Optional

from pydantic_settings import BaseSettings


@dataclass(frozen=True)
class StripeCredentials:
    secret_key: str
    webhook_secret: Optional[str] = None


@dataclass(frozen=True)
class PayPalCredentials:
    client_id: str
    client_secret: str
    mode: str = "sandbox"  # "sandbox" or "live"


@dataclass(frozen=True)
class MercadoPagoCredentials:
    access_token: str
    sandbox: bool = True


@dataclass(frozen=True)
class ProvidersConfig:
    """
    Which providers are active, and with what credentials.

    A provider whose entry is None is simply not registered.
    """

    stripe: Optional[StripeCredentials] = None
    paypal: Optional[PayPalCredentials] = None
    mercadopago: Optional[MercadoPagoCredentials] = None
    frontend_url: str = "http://localhost:5173"
    backend_url: str = "http://localhost:8000"
    timeout_seconds: float = 5.0


class Settings(BaseSettings):
    database_url: str = "sqlite+aiosqlite:///./payment_hub.db"
    log_level: str = "INFO"
    frontend_url: str = "http://localhost:5173"
    backend_url: str = "http://localhost:8000"
    provider_timeout_seconds: float = 5.0

    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None

    paypal_client_id: Optional[str] = None
    paypal_client_secret: Optional[str] = None
    paypal_mode: str = "sandbox"

    mercadopago_access_token: Optional[str] = None
    mercadopago_sandbox: bool = True

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    def providers_config(self) -> ProvidersConfig:
        """Collapse the flat env settings into per-provider credential entries."""
        stripe = None
        if self.stripe_secret_key:
            stripe = StripeCredentials(
                secret_key=self.stripe_secret_key,
                webhook_secret=self.stripe_webhook_secret or None,
            )

        # Half-configured PayPal is passed through; registration logs it and skips it
        paypal = None
        if self.paypal_client_id or self.paypal_client_secret:
            paypal = PayPalCredentials(
                client_id=self.paypal_client_id or "",
                client_secret=self.paypal_client_secret or "",
                mode=self.paypal_mode,
            )

        mercadopago = None
        if self.mercadopago_access_token:
            mercadopago = MercadoPagoCredentials(
                access_token=self.mercadopago_access_token,
                sandbox=self.mercadopago_sandbox,
            )

        return ProvidersConfig(
            stripe=stripe,
            paypal=paypal,
            mercadopago=mercadopago,
            frontend_url=self.frontend_url.rstrip("/"),
            backend_url=self.backend_url.rstrip("/"),
            timeout_seconds=self.provider_timeout_seconds,
        )


settings = Settings()
