"""
Session Initiator
=================
Turns a purchase request into a Stripe-hosted checkout session for the
Premium Pass and returns the session id to the caller.

Identity defaults are applied here, before anything is sent to Stripe, so
neither the provider nor the webhook handler ever sees an empty user id.
"""

import uuid
from typing import Any, Dict, Optional

import stripe
import structlog

from errors import CheckoutSessionError
from payments.provider import StripeProvider
from schemas.payment_models import CheckoutMetadata, CheckoutSessionResponse, PurchaseRequest
from settings import Settings


# Substituted by Stripe when it redirects, never by this service
SESSION_ID_PLACEHOLDER = "{CHECKOUT_SESSION_ID}"


class SessionInitiator:
    """Builds checkout sessions for the single fixed-price product"""

    def __init__(self, provider: StripeProvider, settings: Settings):
        self.provider = provider
        self.settings = settings
        self._base_logger = structlog.get_logger()

    def _get_logger(self, correlation_id: str = None):
        return self._base_logger.bind(
            component="session_initiator",
            correlation_id=correlation_id or str(uuid.uuid4()),
        )

    def build_redirect_urls(self, origin: Optional[str] = None) -> Dict[str, str]:
        base = self.settings.resolve_base_url(origin)
        return {
            "success_url": f"{base}{self.settings.success_path}?session_id={SESSION_ID_PLACEHOLDER}",
            "cancel_url": f"{base}{self.settings.cancel_path}",
        }

    def build_session_params(
        self,
        metadata: CheckoutMetadata,
        origin: Optional[str] = None,
    ) -> Dict[str, Any]:
        product = self.settings.product
        return {
            "payment_method_types": ["card"],
            "line_items": [
                {
                    "price_data": {
                        "currency": product.currency,
                        "product_data": {
                            "name": product.name,
                            "description": product.description,
                        },
                        "unit_amount": product.unit_amount,
                    },
                    "quantity": 1,
                },
            ],
            "mode": "payment",
            **self.build_redirect_urls(origin),
            "metadata": metadata.model_dump(),
        }

    async def create_checkout_session(
        self,
        request: PurchaseRequest,
        origin: Optional[str] = None,
    ) -> CheckoutSessionResponse:
        """
        Create the session and return `{sessionId}`.

        Raises ProviderNotConfiguredError without a secret key and
        CheckoutSessionError for anything Stripe rejects.
        """
        correlation_id = str(uuid.uuid4())
        log = self._get_logger(correlation_id)

        metadata = CheckoutMetadata.from_request(request)
        params = self.build_session_params(metadata, origin)

        log.info("checkout_initiated",
                 user_id=metadata.user_id,
                 username=metadata.username,
                 amount=self.settings.product.unit_amount,
                 currency=self.settings.product.currency)

        try:
            session = await self.provider.create_checkout_session(params)
        except stripe.StripeError as e:
            message = getattr(e, "user_message", None) or str(e)
            log.error("checkout_failed", error=message, error_type=type(e).__name__)
            raise CheckoutSessionError(type(e).__name__, message) from e

        if not getattr(session, "id", None):
            log.error("checkout_failed", error="session returned without id")
            raise CheckoutSessionError("InvalidResponse", "Stripe returned a session without an id")

        log.info("checkout_created", stripe_session_id=session.id)
        return CheckoutSessionResponse(session_id=session.id)
