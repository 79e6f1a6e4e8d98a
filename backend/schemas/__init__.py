# schemas/__init__.py
from schemas.payment_models import (
    GUEST_USER_ID,
    ANONYMOUS_USERNAME,
    is_sentinel_identity,
    PurchaseRequest,
    CheckoutMetadata,
    CheckoutSessionResponse,
    ErrorResponse,
    WebhookAck,
    EntitlementRecord,
)

from schemas.stripe_events import (
    CHECKOUT_SESSION_COMPLETED,
    CheckoutSessionCompleted,
    CheckoutSessionObject,
    SessionMetadata,
    UnhandledEvent,
    WebhookEvent,
    parse_event,
)

__all__ = [
    # Payment models
    "GUEST_USER_ID",
    "ANONYMOUS_USERNAME",
    "is_sentinel_identity",
    "PurchaseRequest",
    "CheckoutMetadata",
    "CheckoutSessionResponse",
    "ErrorResponse",
    "WebhookAck",
    "EntitlementRecord",
    # Stripe events
    "CHECKOUT_SESSION_COMPLETED",
    "CheckoutSessionCompleted",
    "CheckoutSessionObject",
    "SessionMetadata",
    "UnhandledEvent",
    "WebhookEvent",
    "parse_event",
]
