"""
Confirmation Handler
====================
Processes Stripe webhook deliveries for the Premium Pass:

    received -> signature-rejected                      (400, no mutation)
             -> signature-verified -> ignored           (ack)
                                   -> identity-sentinel (ack, no mutation)
                                   -> mutation-applied  (ack)
                                   -> store-failed      (ack + DLQ, or 500)

The grant is `premium = True` on an existing record and nothing else, so a
replayed or duplicated delivery leaves the record exactly as one delivery
would. No dedup state is kept.
"""

import json
from enum import Enum
from typing import Optional

import structlog
from pydantic import BaseModel, ValidationError

from errors import EntitlementStoreError, WebhookVerificationError
from payments.provider import StripeProvider
from schemas.payment_models import is_sentinel_identity
from schemas.stripe_events import (
    CheckoutSessionCompleted,
    UnhandledEvent,
    WebhookEvent,
    parse_event,
)
from settings import StoreFailurePolicy
from storage.dead_letters import DeadLetterQueue
from storage.entitlement_store import EntitlementStore


class WebhookOutcome(str, Enum):
    IGNORED = "ignored"
    IDENTITY_SENTINEL = "identity_sentinel"
    MUTATION_APPLIED = "mutation_applied"
    STORE_FAILED = "store_failed"


class WebhookResult(BaseModel):
    outcome: WebhookOutcome
    event_id: str
    event_type: str
    user_id: Optional[str] = None
    error: Optional[str] = None
    acknowledged: bool = True


class ConfirmationHandler:
    """Verifies Stripe events and applies the premium entitlement"""

    def __init__(
        self,
        provider: StripeProvider,
        store: EntitlementStore,
        dead_letters: Optional[DeadLetterQueue] = None,
        failure_policy: StoreFailurePolicy = StoreFailurePolicy.ACKNOWLEDGE,
    ):
        self.provider = provider
        self.store = store
        self.dead_letters = dead_letters
        self.failure_policy = failure_policy
        self._logger = structlog.get_logger().bind(component="confirmation_handler")

    def verify(self, payload: bytes, signature: Optional[str]) -> WebhookEvent:
        """Verify the signature, then (and only then) parse the body."""
        try:
            self.provider.verify_signature(payload, signature)
        except WebhookVerificationError as e:
            self._logger.warning("webhook_signature_invalid", error=str(e))
            raise

        try:
            raw = json.loads(payload)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            self._logger.warning("webhook_body_malformed", error=str(e))
            raise WebhookVerificationError(f"Malformed webhook body: {e}") from e

        try:
            return parse_event(raw)
        except ValidationError as e:
            self._logger.warning("webhook_event_invalid", error=str(e))
            raise WebhookVerificationError(
                f"Unexpected event shape: {e.error_count()} validation error(s)"
            ) from e

    async def handle(self, payload: bytes, signature: Optional[str]) -> WebhookResult:
        """
        Full webhook pipeline. Raises WebhookVerificationError for anything
        that must be answered with a 400.
        """
        event = self.verify(payload, signature)
        log = self._logger.bind(event_id=event.id, event_type=event.type)
        log.info("webhook_received")

        if isinstance(event, CheckoutSessionCompleted):
            result = await self._on_checkout_completed(event, log)
        elif isinstance(event, UnhandledEvent):
            log.info("webhook_ignored")
            result = WebhookResult(
                outcome=WebhookOutcome.IGNORED,
                event_id=event.id,
                event_type=event.type,
            )
        else:
            raise TypeError(f"Unhandled webhook variant: {type(event).__name__}")

        log.info("webhook_processed", outcome=result.outcome.value,
                 acknowledged=result.acknowledged)
        return result

    async def _on_checkout_completed(self, event: CheckoutSessionCompleted, log) -> WebhookResult:
        session = event.session
        user_id = session.metadata.user_id

        if is_sentinel_identity(user_id):
            log.info("premium_skipped_guest",
                     stripe_session_id=session.id,
                     username=session.metadata.username)
            return WebhookResult(
                outcome=WebhookOutcome.IDENTITY_SENTINEL,
                event_id=event.id,
                event_type=event.type,
                user_id=user_id,
            )

        user_id = user_id.strip()
        try:
            await self.store.grant_premium(user_id)
        except EntitlementStoreError as e:
            return await self._on_store_failure(event, user_id, e, log)

        log.info("premium_granted",
                 user_id=user_id,
                 stripe_session_id=session.id,
                 amount_total=session.amount_total)
        return WebhookResult(
            outcome=WebhookOutcome.MUTATION_APPLIED,
            event_id=event.id,
            event_type=event.type,
            user_id=user_id,
        )

    async def _on_store_failure(
        self,
        event: CheckoutSessionCompleted,
        user_id: str,
        error: EntitlementStoreError,
        log,
    ) -> WebhookResult:
        log.error("premium_grant_failed",
                  user_id=user_id,
                  error=str(error),
                  error_type=type(error).__name__,
                  policy=self.failure_policy.value)

        acknowledged = self.failure_policy == StoreFailurePolicy.ACKNOWLEDGE
        if acknowledged and self.dead_letters is not None:
            grant = await self.dead_letters.enqueue(event.id, user_id, str(error))
            log.warning("premium_grant_dead_lettered", grant_id=grant.grant_id)

        return WebhookResult(
            outcome=WebhookOutcome.STORE_FAILED,
            event_id=event.id,
            event_type=event.type,
            user_id=user_id,
            error=str(error),
            acknowledged=acknowledged,
        )
