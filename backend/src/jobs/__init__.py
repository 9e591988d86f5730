"""
Background jobs module.
"""

from src.jobs.reconcile_addon_expiry import (
    AddonExpiryReconciliationJob,
    ReconciliationStats,
    plan_transition,
)

__all__ = [
    "AddonExpiryReconciliationJob",
    "ReconciliationStats",
    "plan_transition",
]
