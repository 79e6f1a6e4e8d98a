"""
Settings - Explicit Startup Configuration
==========================================
All configuration is read once at process start into a validated
`Settings` model. Required secrets are checked by
`validate_for_startup()` so a misconfigured deployment fails before it
accepts traffic instead of on the first checkout or webhook.

pip install pydantic python-dotenv
"""

import os
from enum import Enum
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from errors import ConfigurationError


DEFAULT_BASE_URL = "http://localhost:3000"


class EntitlementBackend(str, Enum):
    MEMORY = "memory"
    MONGO = "mongo"
    POSTGRES = "postgres"


class StoreFailurePolicy(str, Enum):
    """What the webhook endpoint answers when the entitlement write fails."""
    ACKNOWLEDGE = "acknowledge"  # 200 + dead-letter for reconciliation
    REDELIVER = "redeliver"      # 500 so the provider retries delivery


class ProductSettings(BaseModel):
    """The single fixed-price line item sold by the checkout."""
    name: str = "PoleGuessr Premium Pass"
    description: str = "Unlock exclusive backgrounds, profile backgrounds, and premium tags"
    currency: str = "usd"
    unit_amount: int = Field(default=499, gt=0)  # cents

    @field_validator("currency")
    @classmethod
    def _lower_currency(cls, v: str) -> str:
        return v.strip().lower()


class Settings(BaseModel):
    # Server
    host: str = "0.0.0.0"
    port: int = 3000
    env: str = "development"
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])
    log_level: str = "INFO"
    log_format: str = "console"

    # Stripe
    stripe_secret_key: Optional[str] = None
    stripe_webhook_secret: Optional[str] = None
    webhook_tolerance_seconds: int = 300
    public_base_url: Optional[str] = None
    success_path: str = "/success.html"
    cancel_path: str = "/polepass.html"
    product: ProductSettings = Field(default_factory=ProductSettings)

    # Entitlement store
    entitlement_backend: EntitlementBackend = EntitlementBackend.MEMORY
    mongo_url: Optional[str] = None
    mongo_database: str = "poleguessr"
    mongo_collection: str = "users"
    database_url: Optional[str] = None
    db_min_pool_size: int = 1
    db_max_pool_size: int = 10

    # Webhook failure handling
    store_failure_policy: StoreFailurePolicy = StoreFailurePolicy.ACKNOWLEDGE
    reconcile_enabled: bool = True
    reconcile_interval_seconds: int = Field(default=300, ge=1)
    reconcile_max_attempts: int = Field(default=5, ge=1)

    allow_missing_secrets: bool = False

    @field_validator("stripe_secret_key", "stripe_webhook_secret", "public_base_url",
                     "mongo_url", "database_url")
    @classmethod
    def _blank_to_none(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return v.strip()

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, v: str) -> str:
        return v.upper()

    @property
    def debug(self) -> bool:
        return self.env == "development"

    @property
    def stripe_configured(self) -> bool:
        return self.stripe_secret_key is not None

    @classmethod
    def from_env(cls, load_dotenv_file: bool = True) -> "Settings":
        """Build settings from the process environment (and `.env` if present)."""
        if load_dotenv_file:
            load_dotenv()

        env = os.environ
        values = {
            "host": env.get("HOST", "0.0.0.0"),
            "port": env.get("PORT", "3000"),
            "env": env.get("ENV", "development"),
            "cors_origins": [o.strip() for o in env.get("CORS_ORIGINS", "*").split(",") if o.strip()],
            "log_level": env.get("LOG_LEVEL", "INFO"),
            "log_format": env.get("LOG_FORMAT", "console" if env.get("ENV", "development") == "development" else "json"),
            "stripe_secret_key": env.get("STRIPE_SECRET_KEY"),
            "stripe_webhook_secret": env.get("STRIPE_WEBHOOK_SECRET"),
            "webhook_tolerance_seconds": env.get("WEBHOOK_TOLERANCE_SECONDS", "300"),
            "public_base_url": env.get("PUBLIC_BASE_URL"),
            "entitlement_backend": env.get("ENTITLEMENT_BACKEND", "memory").lower(),
            "mongo_url": env.get("MONGO_URL"),
            "mongo_database": env.get("MONGO_DATABASE", "poleguessr"),
            "mongo_collection": env.get("MONGO_COLLECTION", "users"),
            "database_url": env.get("DATABASE_URL"),
            "db_min_pool_size": env.get("DB_MIN_POOL_SIZE", "1"),
            "db_max_pool_size": env.get("DB_MAX_POOL_SIZE", "10"),
            "store_failure_policy": env.get("STORE_FAILURE_POLICY", "acknowledge").lower(),
            "reconcile_enabled": env.get("RECONCILE_ENABLED", "true").lower() == "true",
            "reconcile_interval_seconds": env.get("RECONCILE_INTERVAL_SECONDS", "300"),
            "reconcile_max_attempts": env.get("RECONCILE_MAX_ATTEMPTS", "5"),
            "allow_missing_secrets": env.get("ALLOW_MISSING_SECRETS", "false").lower() == "true",
        }

        product = {}
        for key, var in (("name", "PRODUCT_NAME"), ("description", "PRODUCT_DESCRIPTION"),
                         ("currency", "PRODUCT_CURRENCY"), ("unit_amount", "PRODUCT_UNIT_AMOUNT")):
            if env.get(var):
                product[key] = env[var]
        values["product"] = product

        try:
            return cls.model_validate(values)
        except ValueError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

    def validate_for_startup(self) -> "Settings":
        """Fail fast if anything the workflow needs is absent."""
        missing = []
        if not self.stripe_secret_key:
            missing.append("STRIPE_SECRET_KEY")
        if not self.stripe_webhook_secret:
            missing.append("STRIPE_WEBHOOK_SECRET")
        if self.entitlement_backend == EntitlementBackend.MONGO and not self.mongo_url:
            missing.append("MONGO_URL")
        if self.entitlement_backend == EntitlementBackend.POSTGRES and not self.database_url:
            missing.append("DATABASE_URL")

        if not missing:
            return self

        secrets_only = all(m.startswith("STRIPE_") for m in missing)
        if secrets_only and self.debug and self.allow_missing_secrets:
            return self
        raise ConfigurationError(f"Missing required configuration: {', '.join(missing)}")

    def resolve_base_url(self, origin: Optional[str] = None) -> str:
        """Origin header first, then PUBLIC_BASE_URL, then the localhost default."""
        for candidate in (origin, self.public_base_url, DEFAULT_BASE_URL):
            if candidate and candidate.strip() and candidate.strip().lower() != "null":
                return candidate.strip().rstrip("/")
        return DEFAULT_BASE_URL
