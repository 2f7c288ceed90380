"""
Immutable audit trail for ledger writes.

Every status observation applied to (or rejected by) the ledger gets an
append-only entry with:
  - Payment ID (the ledger record it relates to)
  - Provider
  - Action (what happened)
  - Details (source, statuses, provider timestamps)
  - Timestamp (UTC)
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from payment_hub.models.ledger import AuditLog

logger = logging.getLogger("payment_hub.audit")


async def log_event(
    session: AsyncSession,
    action: str,
    payment_id: Optional[str] = None,
    provider: Optional[str] = None,
    details: Optional[dict[str, Any]] = None,
) -> AuditLog:
    """
    Create an immutable audit log entry.

    Args:
        session: Database session.
        action: What happened (e.g. "payment_recorded", "status_updated", "status_stale").
        payment_id: Ledger record this event relates to.
        provider: Provider name.
        details: Arbitrary context (serialized to JSON).

    Returns:
        The created AuditLog record.
    """
    entry = AuditLog(
        payment_id=payment_id,
        provider=provider,
        action=action,
        details=json.dumps(details, default=str) if details else None,
        timestamp=datetime.now(timezone.utc),
    )
    session.add(entry)
    logger.info(
        "AUDIT | provider=%s payment=%s action=%s | %s",
        provider or "-",
        payment_id or "-",
        action,
        json.dumps(details, default=str)[:200] if details else "",
    )
    return entry
