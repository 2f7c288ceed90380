"""
Shared plumbing for strategies that talk to a provider's REST API over httpx.

The httpx.AsyncClient is created once per strategy and is safe for concurrent
use; no other state is kept between calls.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

import httpx

from payment_hub.engine.errors import ProviderAPIError
from payment_hub.providers.base import PaymentStrategy

logger = logging.getLogger("payment_hub.providers")


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO 8601 provider timestamp into an aware UTC datetime."""
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Unparseable provider timestamp %r", value)
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def to_decimal(value: Any) -> Optional[Decimal]:
    """Convert a provider amount (string or float) without float artifacts."""
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


class RestStrategy(PaymentStrategy):
    """Base for REST adapters: owns the HTTP client and wraps transport errors."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """
        Perform one HTTP call to the provider.

        Raises:
            ProviderAPIError: On transport failure or a non-2xx response.
        """
        try:
            response = await self._client.request(method, f"{self._base_url}{url}", **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                "%s %s %s failed with HTTP %d",
                self.name, method, url, e.response.status_code,
            )
            raise ProviderAPIError(
                self.name,
                f"{method} {url} returned HTTP {e.response.status_code}",
                status_code=e.response.status_code,
                cause=e,
            ) from e
        except httpx.HTTPError as e:
            logger.error("%s %s %s failed: %s", self.name, method, url, e)
            raise ProviderAPIError(self.name, str(e) or type(e).__name__, cause=e) from e
        return response

    async def _json(self, method: str, url: str, **kwargs: Any) -> dict[str, Any]:
        response = await self._request(method, url, **kwargs)
        try:
            return response.json()
        except ValueError as e:
            raise ProviderAPIError(self.name, f"{method} {url} returned invalid JSON", cause=e) from e

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
