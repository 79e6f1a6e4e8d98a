"""Tests for the Stripe provider wrapper."""

import time
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
import stripe

from errors import ProviderNotConfiguredError, WebhookVerificationError
from payments.provider import StripeProvider

from conftest import TEST_SECRET_KEY, TEST_WEBHOOK_SECRET, encode_event, make_event, sign_payload


class TestCreateCheckoutSession:

    async def test_passes_key_per_request(self, provider):
        with patch.object(stripe.checkout.Session, "create_async",
                          new=AsyncMock(return_value=SimpleNamespace(id="cs_1"))) as create:
            session = await provider.create_checkout_session({"mode": "payment"})

        assert session.id == "cs_1"
        create.assert_awaited_once_with(api_key=TEST_SECRET_KEY, mode="payment")

    async def test_global_api_key_untouched(self, provider):
        before = stripe.api_key
        with patch.object(stripe.checkout.Session, "create_async",
                          new=AsyncMock(return_value=SimpleNamespace(id="cs_1"))):
            await provider.create_checkout_session({"mode": "payment"})

        assert stripe.api_key == before

    async def test_requires_secret_key(self):
        provider = StripeProvider(secret_key=None, webhook_secret=TEST_WEBHOOK_SECRET)

        with pytest.raises(ProviderNotConfiguredError):
            await provider.create_checkout_session({})


class TestVerifySignature:

    def test_valid_signature(self, provider):
        payload = encode_event(make_event())
        provider.verify_signature(payload, sign_payload(payload))

    def test_missing_header(self, provider):
        with pytest.raises(WebhookVerificationError, match="Missing"):
            provider.verify_signature(b"{}", None)

    def test_wrong_secret(self, provider):
        payload = encode_event(make_event())
        with pytest.raises(WebhookVerificationError):
            provider.verify_signature(payload, sign_payload(payload, secret="whsec_other"))

    def test_tampered_body(self, provider):
        payload = encode_event(make_event(user_id="u1"))
        header = sign_payload(payload)
        tampered = encode_event(make_event(user_id="attacker"))

        with pytest.raises(WebhookVerificationError):
            provider.verify_signature(tampered, header)

    def test_stale_timestamp(self, provider):
        payload = encode_event(make_event())
        header = sign_payload(payload, timestamp=int(time.time()) - 3600)

        with pytest.raises(WebhookVerificationError):
            provider.verify_signature(payload, header)

    def test_garbage_header(self, provider):
        with pytest.raises(WebhookVerificationError):
            provider.verify_signature(b"{}", "not-a-signature")

    def test_requires_webhook_secret(self):
        provider = StripeProvider(secret_key=TEST_SECRET_KEY, webhook_secret=None)

        with pytest.raises(ProviderNotConfiguredError):
            provider.verify_signature(b"{}", "t=1,v1=abc")


class TestConnectivity:

    async def test_not_configured(self):
        status = await StripeProvider(None, None).check_connectivity()
        assert status == {"connected": False, "reason": "not_configured"}

    async def test_connected(self, provider):
        with patch.object(stripe.Balance, "retrieve_async",
                          new=AsyncMock(return_value={"livemode": False})):
            status = await provider.check_connectivity()

        assert status == {"connected": True, "livemode": False}

    async def test_auth_failure(self, provider):
        with patch.object(stripe.Balance, "retrieve_async",
                          new=AsyncMock(side_effect=stripe.AuthenticationError("Invalid API Key"))):
            status = await provider.check_connectivity()

        assert status["connected"] is False
        assert status["reason"] == "AuthenticationError"
