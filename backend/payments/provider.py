"""
Stripe Provider
===============
Thin wrapper around the `stripe` SDK holding its own credentials.

Nothing here touches `stripe.api_key`; every request passes the key
explicitly so several providers (or tests) can coexist in one process.

pip install stripe structlog
"""

from typing import Any, Dict, Optional

import stripe
import structlog

from errors import ProviderNotConfiguredError, WebhookVerificationError


class StripeProvider:
    """
    Owns the Stripe secret key and webhook signing secret.

    Example:
        provider = StripeProvider(secret_key="sk_test_...", webhook_secret="whsec_...")
        session = await provider.create_checkout_session(params)
        provider.verify_signature(payload, signature_header)
    """

    def __init__(
        self,
        secret_key: Optional[str],
        webhook_secret: Optional[str],
        tolerance_seconds: int = stripe.Webhook.DEFAULT_TOLERANCE,
    ):
        self._secret_key = secret_key
        self._webhook_secret = webhook_secret
        self.tolerance_seconds = tolerance_seconds
        self._logger = structlog.get_logger().bind(component="stripe_provider")

    @property
    def configured(self) -> bool:
        return bool(self._secret_key)

    @property
    def webhook_configured(self) -> bool:
        return bool(self._webhook_secret)

    def _require_key(self) -> str:
        if not self._secret_key:
            raise ProviderNotConfiguredError("Stripe secret key is not configured")
        return self._secret_key

    # =========================================================================
    # CHECKOUT
    # =========================================================================

    async def create_checkout_session(self, params: Dict[str, Any]) -> stripe.checkout.Session:
        """Create a hosted checkout session. Raises stripe.StripeError on failure."""
        api_key = self._require_key()
        return await stripe.checkout.Session.create_async(api_key=api_key, **params)

    # =========================================================================
    # WEBHOOKS
    # =========================================================================

    def verify_signature(self, payload: bytes, signature: Optional[str]) -> None:
        """
        Check the Stripe-Signature header against the raw body.
        Must run before anything in the body is trusted.
        """
        if not self._webhook_secret:
            raise ProviderNotConfiguredError("Stripe webhook secret is not configured")
        if not signature:
            raise WebhookVerificationError("Missing Stripe-Signature header")

        try:
            body = payload.decode("utf-8") if isinstance(payload, bytes) else payload
        except UnicodeDecodeError as e:
            raise WebhookVerificationError("Webhook body is not valid UTF-8") from e

        try:
            stripe.WebhookSignature.verify_header(
                body, signature, self._webhook_secret, self.tolerance_seconds
            )
        except stripe.SignatureVerificationError as e:
            raise WebhookVerificationError(str(e)) from e

    # =========================================================================
    # DIAGNOSTICS
    # =========================================================================

    async def check_connectivity(self) -> Dict[str, Any]:
        """Round-trip to Stripe with the configured key."""
        if not self.configured:
            return {"connected": False, "reason": "not_configured"}

        try:
            balance = await stripe.Balance.retrieve_async(api_key=self._secret_key)
        except stripe.StripeError as e:
            self._logger.warning("stripe_connectivity_failed",
                                 error=str(e), error_type=type(e).__name__)
            return {"connected": False, "reason": type(e).__name__, "message": str(e)}

        return {"connected": True, "livemode": bool(balance.get("livemode", False))}
