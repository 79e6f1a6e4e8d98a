# schemas/stripe_events.py
# ============================================================================
# POLEGUESSR PREMIUM PASS: STRIPE EVENT VARIANTS
# ============================================================================
# Verified webhook bodies are parsed into a closed set of event models.
# Event kinds the service does not act on land in UnhandledEvent, so every
# dispatch site has an explicit "ignored" arm instead of a silent fallthrough.
# ============================================================================

from typing import Any, Dict, Literal, Optional, Type, Union

from pydantic import BaseModel, ConfigDict, Field


CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"


class SessionMetadata(BaseModel):
    model_config = ConfigDict(extra="allow")

    user_id: Optional[str] = None
    username: Optional[str] = None


class CheckoutSessionObject(BaseModel):
    """The session snapshot carried in data.object."""
    model_config = ConfigDict(extra="allow")

    id: str
    metadata: SessionMetadata = Field(default_factory=SessionMetadata)
    payment_status: Optional[str] = None
    amount_total: Optional[int] = None
    currency: Optional[str] = None


class CheckoutSessionCompletedData(BaseModel):
    model_config = ConfigDict(extra="allow")

    object: CheckoutSessionObject


class CheckoutSessionCompleted(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: str
    type: Literal["checkout.session.completed"]
    livemode: bool = False
    data: CheckoutSessionCompletedData

    @property
    def session(self) -> CheckoutSessionObject:
        return self.data.object


class UnhandledEvent(BaseModel):
    """Any verified event kind without a registered model."""
    model_config = ConfigDict(extra="allow")

    id: str = "unknown"
    type: str
    data: Dict[str, Any] = Field(default_factory=dict)


WebhookEvent = Union[CheckoutSessionCompleted, UnhandledEvent]

EVENT_MODELS: Dict[str, Type[BaseModel]] = {
    CHECKOUT_SESSION_COMPLETED: CheckoutSessionCompleted,
}


def parse_event(raw: Dict[str, Any]) -> WebhookEvent:
    """Pick the model for raw['type']; unknown kinds become UnhandledEvent.

    Raises pydantic.ValidationError if the body does not fit the model.
    """
    event_type = raw.get("type") if isinstance(raw, dict) else None
    model = EVENT_MODELS.get(event_type, UnhandledEvent)
    return model.model_validate(raw)
