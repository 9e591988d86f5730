"""
Add-on entitlement engine.

This package provides:
- EntitlementResolver: stored add-on record + now -> EntitlementVerdict
- DependencyChecker: OR-satisfied prerequisites across country variants
- AccessGate: allow / allow_read_only / deny per request method
- HRAccessService / EmployeeQuotaEnforcer: HR composite access and employee ceiling
- require_addon and friends: FastAPI route dependencies (see middleware)

Only the value types and errors are re-exported here so that config and
platform modules can import them without pulling in the whole engine.
"""

from src.entitlements.models import (
    AccessDecision,
    AccessOutcome,
    AddonKey,
    DependencyCheckResult,
    EntitlementState,
    EntitlementVerdict,
    ReasonCode,
)
from src.entitlements.errors import (
    AddonAccessDeniedError,
    EmployeeLimitExceededError,
    EntitlementConfigError,
    EntitlementError,
    EntitlementLookupError,
    TenantContextMissingError,
)

__all__ = [
    "AccessDecision",
    "AccessOutcome",
    "AddonKey",
    "DependencyCheckResult",
    "EntitlementState",
    "EntitlementVerdict",
    "ReasonCode",
    "AddonAccessDeniedError",
    "EmployeeLimitExceededError",
    "EntitlementConfigError",
    "EntitlementError",
    "EntitlementLookupError",
    "TenantContextMissingError",
]
