# storage/__init__.py
# ============================================================================
# POLEGUESSR PREMIUM PASS: STORAGE MODULE
# ============================================================================
# Entitlement persistence backends and the failed-grant dead letter queue
# ============================================================================

from storage.entitlement_store import (
    EntitlementStore,
    InMemoryEntitlementStore,
    MongoEntitlementStore,
    PostgresEntitlementStore,
    create_entitlement_store,
)

from storage.dead_letters import (
    DeadLetterQueue,
    FailedGrant,
    GrantStatus,
)

__all__ = [
    # Entitlements
    "EntitlementStore",
    "InMemoryEntitlementStore",
    "MongoEntitlementStore",
    "PostgresEntitlementStore",
    "create_entitlement_store",
    # Dead letters
    "DeadLetterQueue",
    "FailedGrant",
    "GrantStatus",
]
