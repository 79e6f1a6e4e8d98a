"""Tests for the webhook confirmation handler."""

import pytest

from errors import EntitlementStoreError, WebhookVerificationError
from payments.confirmation_handler import ConfirmationHandler, WebhookOutcome
from settings import StoreFailurePolicy
from storage.entitlement_store import InMemoryEntitlementStore

from conftest import FailingStore, encode_event, make_event, sign_payload


@pytest.fixture
async def registered_store() -> InMemoryEntitlementStore:
    store = InMemoryEntitlementStore()
    await store.register("u1", "alice")
    return store


@pytest.fixture
def handler(provider, registered_store, dead_letters) -> ConfirmationHandler:
    return ConfirmationHandler(provider, registered_store, dead_letters=dead_letters)


def signed(event: dict):
    payload = encode_event(event)
    return payload, sign_payload(payload)


class TestVerification:

    async def test_bad_signature_never_mutates(self, handler, registered_store):
        payload = encode_event(make_event(user_id="u1"))

        with pytest.raises(WebhookVerificationError):
            await handler.handle(payload, sign_payload(payload, secret="whsec_wrong"))

        assert (await registered_store.get("u1")).premium is False

    async def test_missing_signature_never_mutates(self, handler, registered_store):
        with pytest.raises(WebhookVerificationError):
            await handler.handle(encode_event(make_event(user_id="u1")), None)

        assert (await registered_store.get("u1")).premium is False

    async def test_signed_but_malformed_body(self, handler):
        payload = b"{not json"

        with pytest.raises(WebhookVerificationError, match="Malformed"):
            await handler.handle(payload, sign_payload(payload))

    async def test_signed_but_wrong_shape(self, handler):
        event = make_event()
        event["data"] = {"object": {"metadata": {"user_id": "u1"}}}  # no session id

        with pytest.raises(WebhookVerificationError):
            await handler.handle(*signed(event))


class TestCompletedEvent:

    async def test_grants_premium(self, handler, registered_store):
        result = await handler.handle(*signed(make_event(user_id="u1")))

        assert result.outcome == WebhookOutcome.MUTATION_APPLIED
        assert result.user_id == "u1"
        assert result.acknowledged is True
        assert (await registered_store.get("u1")).premium is True

    async def test_replay_is_idempotent(self, handler, registered_store):
        payload, header = signed(make_event(user_id="u1"))

        first = await handler.handle(payload, header)
        after_first = await registered_store.get("u1")
        second = await handler.handle(payload, header)
        after_second = await registered_store.get("u1")

        assert first.outcome == second.outcome == WebhookOutcome.MUTATION_APPLIED
        assert after_first.premium is after_second.premium is True
        assert len(registered_store) == 1

    @pytest.mark.parametrize("user_id", ["guest", None, "", "  "])
    async def test_sentinel_identity_skipped(self, handler, registered_store, user_id):
        result = await handler.handle(*signed(make_event(user_id=user_id, username="anonymous")))

        assert result.outcome == WebhookOutcome.IDENTITY_SENTINEL
        assert result.acknowledged is True
        assert await registered_store.get("guest") is None
        assert (await registered_store.get("u1")).premium is False
        assert len(registered_store) == 1


class TestOtherEvents:

    @pytest.mark.parametrize("event_type", [
        "checkout.session.expired",
        "payment_intent.succeeded",
        "customer.created",
    ])
    async def test_acknowledged_without_mutation(self, handler, registered_store, event_type):
        result = await handler.handle(*signed(make_event(event_type=event_type, user_id="u1")))

        assert result.outcome == WebhookOutcome.IGNORED
        assert result.acknowledged is True
        assert (await registered_store.get("u1")).premium is False


class TestStoreFailure:

    async def test_unregistered_user_dead_lettered(self, provider, dead_letters):
        handler = ConfirmationHandler(provider, InMemoryEntitlementStore(), dead_letters=dead_letters)

        result = await handler.handle(*signed(make_event(user_id="ghost")))

        assert result.outcome == WebhookOutcome.STORE_FAILED
        assert result.acknowledged is True
        stats = await dead_letters.get_stats()
        assert stats["pending"] == 1

    async def test_acknowledge_policy(self, provider, dead_letters):
        store = FailingStore(EntitlementStoreError("connection refused"))
        handler = ConfirmationHandler(
            provider, store, dead_letters=dead_letters,
            failure_policy=StoreFailurePolicy.ACKNOWLEDGE,
        )

        result = await handler.handle(*signed(make_event(user_id="u1")))

        assert result.acknowledged is True
        assert "connection refused" in result.error
        pending = await dead_letters.get_pending()
        assert [g.user_id for g in pending] == ["u1"]
        assert pending[0].event_id == "evt_test_1"

    async def test_redeliver_policy(self, provider, dead_letters):
        store = FailingStore(EntitlementStoreError("connection refused"))
        handler = ConfirmationHandler(
            provider, store, dead_letters=dead_letters,
            failure_policy=StoreFailurePolicy.REDELIVER,
        )

        result = await handler.handle(*signed(make_event(user_id="u1")))

        assert result.outcome == WebhookOutcome.STORE_FAILED
        assert result.acknowledged is False
        assert (await dead_letters.get_stats())["total"] == 0

    async def test_repeated_failures_fold_into_one_entry(self, provider, dead_letters):
        store = FailingStore(EntitlementStoreError("down"))
        handler = ConfirmationHandler(provider, store, dead_letters=dead_letters)

        await handler.handle(*signed(make_event(user_id="u1", event_id="evt_a")))
        await handler.handle(*signed(make_event(user_id="u1", event_id="evt_b")))

        assert store.attempts == ["u1", "u1"]
        assert (await dead_letters.get_stats())["pending"] == 1
