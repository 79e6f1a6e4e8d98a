# Payments - Premium Pass checkout workflow
# ==========================================
# Session creation, webhook confirmation, and the Stripe client they share

from payments.provider import StripeProvider
from payments.session_initiator import SessionInitiator, SESSION_ID_PLACEHOLDER
from payments.confirmation_handler import (
    ConfirmationHandler,
    WebhookOutcome,
    WebhookResult,
)

__all__ = [
    "StripeProvider",
    "SessionInitiator",
    "SESSION_ID_PLACEHOLDER",
    "ConfirmationHandler",
    "WebhookOutcome",
    "WebhookResult",
]
