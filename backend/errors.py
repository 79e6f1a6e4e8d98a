"""
Error taxonomy for the checkout and confirmation workflow.

Errors are raised where they happen and translated to HTTP responses only
at the FastAPI boundary (api/server.py).
"""

from typing import Optional


class PaymentError(Exception):
    """Base class for every error raised by this service."""


class ConfigurationError(PaymentError):
    """Required configuration is missing or invalid."""


class ProviderNotConfiguredError(ConfigurationError):
    """A Stripe call was attempted without a secret key."""

    def __init__(self, message: str = "Stripe is not configured"):
        super().__init__(message)


class CheckoutSessionError(PaymentError):
    """Stripe rejected (or never answered) a session creation request."""

    def __init__(self, kind: str, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message

    def __str__(self) -> str:
        return f"{self.kind}: {self.message}"


class WebhookVerificationError(PaymentError):
    """Signature check failed or the signed body could not be parsed."""


class EntitlementStoreError(PaymentError):
    """The entitlement store could not complete a read or write."""

    def __init__(self, message: str, user_id: Optional[str] = None):
        super().__init__(message)
        self.user_id = user_id


class EntitlementNotFoundError(EntitlementStoreError):
    """No registered user document exists for the given identity."""

    def __init__(self, user_id: str):
        super().__init__(f"No entitlement record for user: {user_id}", user_id=user_id)
