"""Tests for the payment ledger and its ordering policy."""

import json
import time
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
import stripe
from sqlalchemy import func, select

from payment_hub.engine.errors import WebhookVerificationError
from payment_hub.engine.reconciliation import (
    decide_transition,
    find_record,
    reconcile,
    record_payment,
)
from payment_hub.models.enums import LedgerOutcome, NormalizedStatus
from payment_hub.models.ledger import AuditLog, PaymentRecord
from payment_hub.models.payment import (
    ConfirmationResult,
    PaymentRequest,
    PaymentResult,
    RawWebhookRequest,
    WebhookEvent,
)
from payment_hub.providers.stripe_provider import StripeStrategy

T0 = datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc)


def _created(provider="stripe", external_id="pi_3Nabc", at=T0, reference=None):
    return PaymentResult(
        external_id=external_id,
        status=NormalizedStatus.PENDING,
        provider=provider,
        amount=Decimal("100.00"),
        currency="usd",
        reference=reference,
        provider_updated_at=at,
    )


def _event(status, at, provider="stripe", external_id="pi_3Nabc", verified=True, reference=None):
    return WebhookEvent(
        provider=provider,
        verified=verified,
        external_id=external_id,
        status=status,
        amount=Decimal("100.00"),
        currency="usd",
        event_type="payment_intent.succeeded",
        reference=reference,
        provider_updated_at=at,
    )


async def _audit_actions(session, record):
    result = await session.execute(
        select(AuditLog.action).where(AuditLog.payment_id == record.id).order_by(AuditLog.id)
    )
    return list(result.scalars().all())


class TestDecideTransition:
    def test_newer_status_is_applied(self):
        assert decide_transition("pending", T0, "completed", T0 + timedelta(seconds=5)) == LedgerOutcome.UPDATED

    def test_older_observation_is_stale(self):
        assert decide_transition("completed", T0, "pending", T0 - timedelta(seconds=5)) == LedgerOutcome.STALE

    def test_exact_redelivery_is_unchanged(self):
        assert decide_transition("completed", T0, "completed", T0) == LedgerOutcome.UNCHANGED

    def test_untimestamped_cannot_override_timestamped(self):
        assert decide_transition("completed", T0, "pending", None) == LedgerOutcome.STALE
        assert decide_transition("completed", T0, "completed", None) == LedgerOutcome.UNCHANGED

    def test_last_write_wins_without_timestamps(self):
        assert decide_transition("pending", None, "failed", None) == LedgerOutcome.UPDATED
        assert decide_transition("failed", None, "failed", None) == LedgerOutcome.UNCHANGED

    def test_naive_stored_time_is_treated_as_utc(self):
        naive = T0.replace(tzinfo=None)
        assert decide_transition("completed", naive, "completed", T0) == LedgerOutcome.UNCHANGED

    def test_same_second_settles_pending(self):
        stored_at = T0 + timedelta(microseconds=400_000)
        assert decide_transition("pending", stored_at, "completed", T0) == LedgerOutcome.UPDATED
        assert decide_transition("pending", stored_at, "failed", T0) == LedgerOutcome.UPDATED

    def test_same_second_never_reopens_settled(self):
        assert decide_transition("completed", T0, "pending", T0 + timedelta(microseconds=1)) == LedgerOutcome.STALE

    def test_untimestamped_observation_may_settle_pending(self):
        assert decide_transition("pending", T0, "completed", None) == LedgerOutcome.UPDATED
        assert decide_transition("unknown", T0, "cancelled", None) == LedgerOutcome.UPDATED


class TestRecordPayment:
    @pytest.mark.asyncio
    async def test_record_is_created_once(self, db_session):
        first = await record_payment(db_session, _created(), {"propertyId": 5, "userId": 9})
        second = await record_payment(db_session, _created())

        assert first.id == second.id
        assert first.status == "pending"
        assert first.payment_metadata == {"propertyId": 5, "userId": 9}

        count = await db_session.execute(select(func.count()).select_from(PaymentRecord))
        assert count.scalar() == 1
        assert await _audit_actions(db_session, first) == ["payment_recorded"]


class TestReconcile:
    @pytest.mark.asyncio
    async def test_unknown_payment_is_created(self, db_session):
        record, outcome = await reconcile(db_session, _event(NormalizedStatus.COMPLETED, T0))

        assert outcome == LedgerOutcome.CREATED
        assert record.status == "completed"
        assert await _audit_actions(db_session, record) == ["status_recorded"]

    @pytest.mark.asyncio
    async def test_same_webhook_twice_is_idempotent(self, db_session):
        await record_payment(db_session, _created())
        event = _event(NormalizedStatus.COMPLETED, T0 + timedelta(minutes=1))

        record, first = await reconcile(db_session, event)
        _, second = await reconcile(db_session, event)

        assert first == LedgerOutcome.UPDATED
        assert second == LedgerOutcome.UNCHANGED
        assert record.status == "completed"
        assert await _audit_actions(db_session, record) == ["payment_recorded", "status_updated"]

    @pytest.mark.asyncio
    async def test_late_webhook_does_not_undo_confirmation(self, db_session):
        await record_payment(db_session, _created())
        confirmation = ConfirmationResult(
            success=True,
            status=NormalizedStatus.COMPLETED,
            external_id="pi_3Nabc",
            provider="stripe",
            provider_updated_at=T0 + timedelta(minutes=2),
        )
        late = _event(NormalizedStatus.PENDING, T0 + timedelta(minutes=1))

        record, confirmed = await reconcile(db_session, confirmation)
        _, dropped = await reconcile(db_session, late)

        assert confirmed == LedgerOutcome.UPDATED
        assert dropped == LedgerOutcome.STALE
        assert record.status == "completed"
        assert await _audit_actions(db_session, record) == [
            "payment_recorded", "status_updated", "status_stale",
        ]

    @pytest.mark.asyncio
    async def test_status_is_set_not_accumulated(self, db_session):
        await record_payment(db_session, _created())
        await reconcile(db_session, _event(NormalizedStatus.COMPLETED, T0 + timedelta(minutes=1)))
        record, outcome = await reconcile(db_session, _event(NormalizedStatus.REFUNDED, T0 + timedelta(days=3)))

        assert outcome == LedgerOutcome.UPDATED
        assert record.status == "refunded"
        assert record.amount == Decimal("100.00")

    @pytest.mark.asyncio
    async def test_payment_settles_preference_row_by_reference(self, db_session):
        preference = await record_payment(
            db_session, _created("mercadopago", "123-pref", reference="ref-abc")
        )
        event = _event(
            NormalizedStatus.COMPLETED, T0 + timedelta(minutes=3),
            provider="mercadopago", external_id="1319012345", reference="ref-abc",
        )

        record, outcome = await reconcile(db_session, event)

        assert outcome == LedgerOutcome.UPDATED
        assert record.id == preference.id
        assert record.external_id == "123-pref"
        assert record.payment_id == "1319012345"
        assert (await find_record(db_session, "mercadopago", "1319012345")).id == preference.id

    @pytest.mark.asyncio
    async def test_same_external_id_on_another_provider_is_separate(self, db_session):
        stripe_record = await record_payment(db_session, _created())
        other, outcome = await reconcile(
            db_session, _event(NormalizedStatus.FAILED, T0, provider="paypal")
        )
        assert outcome == LedgerOutcome.CREATED
        assert other.id != stripe_record.id

    @pytest.mark.asyncio
    async def test_unverified_event_is_rejected(self, db_session):
        with pytest.raises(WebhookVerificationError):
            await reconcile(db_session, _event(NormalizedStatus.COMPLETED, T0, verified=False))

        count = await db_session.execute(select(func.count()).select_from(PaymentRecord))
        assert count.scalar() == 0

    @pytest.mark.asyncio
    async def test_audit_details_capture_transition(self, db_session):
        await record_payment(db_session, _created())
        record, _ = await reconcile(db_session, _event(NormalizedStatus.COMPLETED, T0 + timedelta(minutes=1)))

        result = await db_session.execute(
            select(AuditLog).where(AuditLog.action == "status_updated")
        )
        details = json.loads(result.scalars().one().details)
        assert details["source"] == "WebhookEvent"
        assert details["stored_status"] == "pending"
        assert details["incoming_status"] == "completed"


class TestStripeOrdering:
    """Real Stripe adapter output run through the ledger."""

    @pytest.fixture
    def stripe_strategy(self, providers_config, monkeypatch):
        now = int(time.time())
        intent = {
            "id": "pi_3Nabc",
            "object": "payment_intent",
            "amount": 10000,
            "currency": "usd",
            "status": "requires_payment_method",
            "created": now,
            "metadata": {},
        }
        monkeypatch.setattr(stripe.PaymentIntent, "create", MagicMock(return_value=intent))
        monkeypatch.setattr(
            stripe.PaymentIntent, "retrieve", MagicMock(return_value={**intent, "status": "processing"})
        )
        return StripeStrategy(providers_config.stripe), now

    async def _deliver(self, strategy, sign_stripe_payload, body):
        return await strategy.handle_webhook(
            RawWebhookRequest(headers={"Stripe-Signature": sign_stripe_payload(body)}, body=body)
        )

    @pytest.mark.asyncio
    async def test_poll_then_same_second_webhook(
        self, db_session, stripe_strategy, sign_stripe_payload, stripe_event_payload
    ):
        strategy, now = stripe_strategy
        await record_payment(
            db_session, await strategy.create_payment(PaymentRequest(amount=Decimal("100"), currency="usd"))
        )
        _, polled = await reconcile(db_session, await strategy.get_payment_status("pi_3Nabc"))

        body = stripe_event_payload(created=now)
        record, settled = await reconcile(db_session, await self._deliver(strategy, sign_stripe_payload, body))
        _, redelivered = await reconcile(db_session, await self._deliver(strategy, sign_stripe_payload, body))

        assert polled == LedgerOutcome.UNCHANGED
        assert settled == LedgerOutcome.UPDATED
        assert redelivered == LedgerOutcome.UNCHANGED
        assert record.status == "completed"

    @pytest.mark.asyncio
    async def test_failed_event_in_creation_second(
        self, db_session, stripe_strategy, sign_stripe_payload, stripe_event_payload
    ):
        strategy, now = stripe_strategy
        await record_payment(
            db_session, await strategy.create_payment(PaymentRequest(amount=Decimal("100"), currency="usd"))
        )
        body = stripe_event_payload(
            "payment_intent.payment_failed", status="requires_payment_method", created=now
        )

        record, outcome = await reconcile(db_session, await self._deliver(strategy, sign_stripe_payload, body))

        assert outcome == LedgerOutcome.UPDATED
        assert record.status == "failed"

    @pytest.mark.asyncio
    async def test_poll_does_not_reopen_settled_payment(
        self, db_session, stripe_strategy, sign_stripe_payload, stripe_event_payload
    ):
        strategy, now = stripe_strategy
        body = stripe_event_payload(created=now)
        await reconcile(db_session, await self._deliver(strategy, sign_stripe_payload, body))

        record, outcome = await reconcile(db_session, await strategy.get_payment_status("pi_3Nabc"))

        assert outcome == LedgerOutcome.STALE
        assert record.status == "completed"
