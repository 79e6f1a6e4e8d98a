"""
Shared fixtures for the checkout backend tests.

Webhook payloads are signed exactly the way Stripe signs them
(t=<ts>,v1=HMAC-SHA256(secret, "<ts>.<body>")) so the real
stripe.WebhookSignature verification runs in every test.
"""

import hashlib
import hmac
import json
import time
from typing import Any, Dict, List, Optional

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from api.server import create_app
from payments.provider import StripeProvider
from settings import Settings, StoreFailurePolicy
from storage.dead_letters import DeadLetterQueue
from storage.entitlement_store import InMemoryEntitlementStore


TEST_SECRET_KEY = "sk_test_checkout_backend"
TEST_WEBHOOK_SECRET = "whsec_test_checkout_backend"


def sign_payload(payload: bytes, secret: str = TEST_WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    """Build a Stripe-Signature header for the given raw body."""
    timestamp = timestamp if timestamp is not None else int(time.time())
    signed = f"{timestamp}.{payload.decode('utf-8')}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def make_event(
    event_type: str = "checkout.session.completed",
    user_id: Optional[str] = "u1",
    username: Optional[str] = "alice",
    event_id: str = "evt_test_1",
    session_id: str = "cs_test_1",
) -> Dict[str, Any]:
    metadata = {}
    if user_id is not None:
        metadata["user_id"] = user_id
    if username is not None:
        metadata["username"] = username
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "livemode": False,
        "data": {
            "object": {
                "id": session_id,
                "object": "checkout.session",
                "payment_status": "paid",
                "amount_total": 499,
                "currency": "usd",
                "metadata": metadata,
            },
        },
    }


def encode_event(event: Dict[str, Any]) -> bytes:
    return json.dumps(event).encode("utf-8")


class FailingStore(InMemoryEntitlementStore):
    """Store whose writes always fail, for store-failure paths"""

    name = "failing"

    def __init__(self, error: Exception):
        super().__init__()
        self.error = error
        self.attempts: List[str] = []

    async def grant_premium(self, user_id: str):
        self.attempts.append(user_id)
        raise self.error


@pytest.fixture
def settings() -> Settings:
    return Settings(
        env="test",
        stripe_secret_key=TEST_SECRET_KEY,
        stripe_webhook_secret=TEST_WEBHOOK_SECRET,
        public_base_url="https://poleguessr.example",
        reconcile_enabled=False,
        log_format="json",
        log_level="WARNING",
    )


@pytest.fixture
def provider() -> StripeProvider:
    return StripeProvider(secret_key=TEST_SECRET_KEY, webhook_secret=TEST_WEBHOOK_SECRET)


@pytest.fixture
def store() -> InMemoryEntitlementStore:
    return InMemoryEntitlementStore()


@pytest.fixture
def dead_letters() -> DeadLetterQueue:
    return DeadLetterQueue(max_attempts=3, retry_delay_seconds=0)


@pytest.fixture
def app(settings, provider, store, dead_letters) -> FastAPI:
    return create_app(settings=settings, provider=provider, store=store, dead_letters=dead_letters)


@pytest.fixture
def client(app: FastAPI):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def redeliver_settings(settings: Settings) -> Settings:
    return settings.model_copy(update={"store_failure_policy": StoreFailurePolicy.REDELIVER})
