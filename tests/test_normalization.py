"""Tests for provider status normalization."""

import pytest

from payment_hub.engine.errors import UnsupportedProviderError
from payment_hub.models.enums import NormalizedStatus
from payment_hub.providers import STRATEGY_CLASSES, normalize


class TestTables:
    @pytest.mark.parametrize("provider", sorted(STRATEGY_CLASSES))
    def test_every_native_status_maps_into_the_enum(self, provider):
        table = STRATEGY_CLASSES[provider].STATUS_MAP
        assert table
        for native in table:
            assert isinstance(normalize(provider, native), NormalizedStatus)

    @pytest.mark.parametrize("provider", sorted(STRATEGY_CLASSES))
    def test_unmapped_status_is_unknown(self, provider):
        assert normalize(provider, "some_brand_new_status") == NormalizedStatus.UNKNOWN

    @pytest.mark.parametrize("provider", sorted(STRATEGY_CLASSES))
    @pytest.mark.parametrize("raw", [None, "", 42, {"status": "approved"}])
    def test_garbage_input_never_raises(self, provider, raw):
        assert normalize(provider, raw) == NormalizedStatus.UNKNOWN


class TestStripe:
    def test_intent_lifecycle(self):
        assert normalize("stripe", "requires_payment_method") == NormalizedStatus.PENDING
        assert normalize("stripe", "requires_action") == NormalizedStatus.PENDING
        assert normalize("stripe", "processing") == NormalizedStatus.PENDING
        assert normalize("stripe", "succeeded") == NormalizedStatus.COMPLETED
        assert normalize("stripe", "canceled") == NormalizedStatus.CANCELLED


class TestPayPal:
    def test_states(self):
        assert normalize("paypal", "created") == NormalizedStatus.PENDING
        assert normalize("paypal", "approved") == NormalizedStatus.COMPLETED
        assert normalize("paypal", "partially_refunded") == NormalizedStatus.REFUNDED
        assert normalize("paypal", "voided") == NormalizedStatus.CANCELLED
        assert normalize("paypal", "expired") == NormalizedStatus.EXPIRED
        assert normalize("paypal", "failed") == NormalizedStatus.FAILED

    def test_case_insensitive(self):
        """PayPal has returned upper-case states in some responses."""
        assert normalize("paypal", "APPROVED") == NormalizedStatus.COMPLETED
        assert normalize("paypal", " Created ") == NormalizedStatus.PENDING


class TestMercadoPago:
    def test_statuses(self):
        assert normalize("mercadopago", "in_process") == NormalizedStatus.PENDING
        assert normalize("mercadopago", "authorized") == NormalizedStatus.PENDING
        assert normalize("mercadopago", "approved") == NormalizedStatus.COMPLETED
        assert normalize("mercadopago", "rejected") == NormalizedStatus.FAILED
        assert normalize("mercadopago", "charged_back") == NormalizedStatus.REFUNDED


def test_unknown_provider():
    with pytest.raises(UnsupportedProviderError):
        normalize("bitcoin", "approved")
