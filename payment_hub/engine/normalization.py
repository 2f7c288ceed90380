"""
Status normalization shared by every provider adapter.

Lookups never raise: a miss, None or a non-string maps to UNKNOWN.
"""

import logging
from typing import Any, Mapping

from payment_hub.models.enums import NormalizedStatus

logger = logging.getLogger("payment_hub.normalization")


def normalize(table: Mapping[str, NormalizedStatus], raw: Any) -> NormalizedStatus:
    """
    Map a provider-native status onto NormalizedStatus.

    Args:
        table: The adapter's lookup table, keyed by lower-case native status.
        raw: Native status as received (may be None or a non-string).

    Returns:
        The mapped status, or NormalizedStatus.UNKNOWN on any miss.
    """
    if not isinstance(raw, str):
        return NormalizedStatus.UNKNOWN

    status = table.get(raw.strip().lower())
    if status is None:
        logger.warning("Unmapped provider status %r, treating as unknown", raw)
        return NormalizedStatus.UNKNOWN
    return status
