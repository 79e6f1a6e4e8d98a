# schemas/payment_models.py
# ============================================================================
# POLEGUESSR PREMIUM PASS: REQUEST / RESPONSE / RECORD SCHEMAS
# ============================================================================
# Wire shapes for the checkout API and the persisted entitlement record.
# Field aliases keep the camelCase names the frontend already sends.
# ============================================================================

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


GUEST_USER_ID = "guest"
ANONYMOUS_USERNAME = "anonymous"


def is_sentinel_identity(user_id: Optional[str]) -> bool:
    """True when there is no real user to grant an entitlement to."""
    return user_id is None or not user_id.strip() or user_id.strip() == GUEST_USER_ID


# ============================================================================
# SECTION 1: CHECKOUT
# ============================================================================

class PurchaseRequest(BaseModel):
    """Body of POST /create-checkout-session. Both fields may be omitted."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    user_id: Optional[str] = Field(default=None, alias="userId")
    username: Optional[str] = None

    @field_validator("user_id", "username", mode="before")
    @classmethod
    def _blank_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class CheckoutMetadata(BaseModel):
    """Metadata embedded in the session and echoed back in the webhook."""
    user_id: str = Field(min_length=1)
    username: str = Field(min_length=1)

    @classmethod
    def from_request(cls, request: PurchaseRequest) -> "CheckoutMetadata":
        return cls(
            user_id=request.user_id or GUEST_USER_ID,
            username=request.username or ANONYMOUS_USERNAME,
        )


class CheckoutSessionResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId")


class ErrorResponse(BaseModel):
    error: str
    details: Optional[str] = None


# ============================================================================
# SECTION 2: WEBHOOK
# ============================================================================

class WebhookAck(BaseModel):
    received: Literal[True] = True


# ============================================================================
# SECTION 3: ENTITLEMENTS
# ============================================================================

class EntitlementRecord(BaseModel):
    """One user's purchased access level."""
    user_id: str
    username: Optional[str] = None
    premium: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
