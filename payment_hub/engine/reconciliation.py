"""
Payment ledger reconciliation.

Applies provider observations (create results, confirmations, status
re-queries and verified webhook events) to the `payments` table, keyed by
the provider's external id.

Ordering policy (see decide_transition):
  - Every write *sets* the status; nothing is accumulated, so replaying an
    observation converges to the same row.
  - Provider timestamps are compared at whole-second resolution. Stripe
    event times are whole seconds while other sources carry fractions.
  - An observation older than the stored one is stale and dropped. This is
    what resolves a late webhook racing an explicit confirm.
  - When the order cannot be told apart (same second, or the observation
    carries no timestamp), only progress is accepted: a pending status may
    be replaced by a settled one, never the other way round.
  - When neither side has a timestamp, the last write wins.

Callers own the transaction: these functions flush but never commit.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional, Union

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from payment_hub.audit.logger import log_event
from payment_hub.engine.errors import WebhookVerificationError
from payment_hub.models.enums import LedgerOutcome, NormalizedStatus
from payment_hub.models.ledger import PaymentRecord
from payment_hub.models.payment import (
    ConfirmationResult,
    PaymentMetadata,
    PaymentResult,
    WebhookEvent,
)

logger = logging.getLogger("payment_hub.reconciliation")

Observation = Union[PaymentResult, ConfirmationResult, WebhookEvent]


# Statuses a later observation may still settle
_UNSETTLED = frozenset({NormalizedStatus.PENDING.value, NormalizedStatus.UNKNOWN.value})


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands timestamps back naive
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _to_second(value: Optional[datetime]) -> Optional[datetime]:
    value = _as_utc(value)
    return value.replace(microsecond=0) if value is not None else None


def _jsonable(metadata: Optional[PaymentMetadata]) -> Optional[dict[str, Any]]:
    if not metadata:
        return None
    return json.loads(json.dumps(metadata, default=str))


def _user_id(metadata: Optional[PaymentMetadata]) -> Optional[str]:
    metadata = metadata or {}
    value = metadata.get("userId", metadata.get("user_id"))
    return str(value) if value is not None else None


def decide_transition(
    stored_status: str,
    stored_at: Optional[datetime],
    incoming_status: str,
    incoming_at: Optional[datetime],
) -> LedgerOutcome:
    """
    Decide whether an incoming status observation replaces the stored one.

    Returns:
        LedgerOutcome.STALE, UNCHANGED or UPDATED.
    """
    stored_at = _to_second(stored_at)
    incoming_at = _to_second(incoming_at)

    if stored_at is None:
        if incoming_at is None and incoming_status == stored_status:
            return LedgerOutcome.UNCHANGED
        return LedgerOutcome.UPDATED

    if incoming_at is not None:
        if incoming_at > stored_at:
            return LedgerOutcome.UPDATED
        if incoming_at < stored_at:
            return LedgerOutcome.STALE

    # Same second, or an untimestamped observation: order is unknown
    if incoming_status == stored_status:
        return LedgerOutcome.UNCHANGED
    if stored_status in _UNSETTLED and incoming_status not in _UNSETTLED:
        return LedgerOutcome.UPDATED
    return LedgerOutcome.STALE


async def find_record(
    session: AsyncSession,
    provider: str,
    external_id: str,
    reference: Optional[str] = None,
) -> Optional[PaymentRecord]:
    """Locate a ledger record by external id, settled payment id or merchant reference."""
    conditions = [
        PaymentRecord.external_id == external_id,
        PaymentRecord.payment_id == external_id,
    ]
    if reference:
        conditions.append(PaymentRecord.reference == reference)

    result = await session.execute(
        select(PaymentRecord)
        .where(PaymentRecord.provider == provider, or_(*conditions))
        .order_by(PaymentRecord.created_at.asc())
        .limit(1)
    )
    return result.scalars().first()


async def record_payment(
    session: AsyncSession,
    result: PaymentResult,
    metadata: Optional[PaymentMetadata] = None,
) -> PaymentRecord:
    """
    Insert the ledger row for a freshly created payment.

    Idempotent: recording the same external id twice returns the existing row.
    """
    existing = await find_record(session, result.provider, result.external_id)
    if existing is not None:
        return existing

    record = PaymentRecord(
        provider=result.provider,
        external_id=result.external_id,
        reference=result.reference,
        amount=result.amount,
        currency=result.currency,
        status=result.status.value,
        status_updated_at=result.provider_updated_at,
        payment_metadata=_jsonable(metadata),
        user_id=_user_id(metadata),
    )
    session.add(record)
    await session.flush()

    await log_event(session, "payment_recorded", payment_id=record.id, provider=record.provider, details={
        "external_id": record.external_id,
        "status": record.status,
        "amount": result.amount,
        "currency": result.currency,
    })
    return record


async def reconcile(
    session: AsyncSession,
    observation: Observation,
) -> tuple[PaymentRecord, LedgerOutcome]:
    """
    Apply one provider observation to the ledger.

    Args:
        session: Database session.
        observation: A PaymentResult, ConfirmationResult or verified WebhookEvent.

    Returns:
        The ledger record and what happened to it.

    Raises:
        WebhookVerificationError: The observation is an unverified webhook event.
    """
    if isinstance(observation, WebhookEvent) and not observation.verified:
        raise WebhookVerificationError(observation.provider, "refusing to apply an unverified event")

    source = type(observation).__name__
    status: NormalizedStatus = observation.status
    incoming_at = _as_utc(observation.provider_updated_at)

    record = await find_record(
        session, observation.provider, observation.external_id, observation.reference
    )

    if record is None:
        record = PaymentRecord(
            provider=observation.provider,
            external_id=observation.external_id,
            reference=observation.reference,
            amount=observation.amount,
            currency=observation.currency,
            status=status.value,
            status_updated_at=incoming_at,
        )
        session.add(record)
        await session.flush()
        await log_event(session, "status_recorded", payment_id=record.id, provider=record.provider, details={
            "source": source,
            "external_id": observation.external_id,
            "status": status.value,
            "provider_updated_at": incoming_at,
        })
        return record, LedgerOutcome.CREATED

    # A MercadoPago payment reconciles onto the preference row it settles
    if observation.external_id != record.external_id and not record.payment_id:
        record.payment_id = observation.external_id
    if record.amount is None and observation.amount is not None:
        record.amount = observation.amount
        record.currency = observation.currency

    outcome = decide_transition(record.status, record.status_updated_at, status.value, incoming_at)
    details = {
        "source": source,
        "external_id": observation.external_id,
        "stored_status": record.status,
        "incoming_status": status.value,
        "stored_at": _as_utc(record.status_updated_at),
        "provider_updated_at": incoming_at,
    }

    if outcome == LedgerOutcome.UPDATED:
        record.status = status.value
        stored_at = _as_utc(record.status_updated_at)
        if incoming_at is not None and (stored_at is None or incoming_at > stored_at):
            record.status_updated_at = incoming_at
        await log_event(session, "status_updated", payment_id=record.id, provider=record.provider, details=details)
    elif outcome == LedgerOutcome.STALE:
        logger.info(
            "Dropping stale %s status %s for %s (stored %s)",
            record.provider, status.value, observation.external_id, record.status,
        )
        await log_event(session, "status_stale", payment_id=record.id, provider=record.provider, details=details)

    await session.flush()
    return record, outcome
