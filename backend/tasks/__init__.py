# tasks/__init__.py
from tasks.reconciliation import (
    ReconciliationLoop,
    reconcile_failed_grants,
)

__all__ = [
    "ReconciliationLoop",
    "reconcile_failed_grants",
]
