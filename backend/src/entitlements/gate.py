"""
Request-time access gate for add-ons.

Combines the tenant's verdict, the add-on's prerequisites and the HTTP
method into allow, allow_read_only or deny. The order is fixed:

  1. resolve the verdict
  2. prerequisites (a dependency failure is never softened by the
     add-on's own grace or read-only leniency)
  3. grace with reads-only policy: reads allowed, writes denied
  4. grace otherwise: allowed
  5. read-only fallback for lapsed add-ons with existing data
  6. entitled: allowed
  7. denied with a reason taken from the verdict
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Tuple

from src.entitlements.dependencies import DependencyChecker
from src.entitlements.models import (
    AccessDecision,
    AccessOutcome,
    EntitlementState,
    EntitlementVerdict,
    ReasonCode,
    is_read_method,
)
from src.entitlements.resolver import EntitlementResolver, utcnow

logger = logging.getLogger(__name__)

# (tenant_id, verdict) -> read-only reason, or None when the fallback does not apply
ReadOnlyFallback = Callable[[str, EntitlementVerdict], Optional[str]]

_PASSTHROUGH_DENY_CODES = {
    ReasonCode.ADDON_NOT_INSTALLED,
    ReasonCode.ADDON_TRIAL_EXPIRED,
    ReasonCode.ADDON_CANCELLED,
}


@dataclass(frozen=True)
class GatePolicy:
    """
    Per-route gate settings.

    allow_grace_for_reads limits a grace-period add-on to GET/HEAD.
    read_only_fallback lets a lapsed add-on keep serving reads of existing
    data; it is only consulted when the tenant is not entitled.
    """

    allow_grace_for_reads: bool = False
    dependencies: Tuple[str, ...] = ()
    enforce_dependencies: bool = True
    read_only_fallback: Optional[ReadOnlyFallback] = None


def grace_write_message(addon_code: str) -> str:
    return (
        f"Add-on '{addon_code}' is in its grace period. Read-only access allowed. "
        "Please renew to make changes."
    )


def dependency_message(addon_code: str, dependency: str, expired: bool) -> str:
    if expired:
        return (
            f"Required add-on '{dependency}' has expired. "
            f"Please renew it to continue using {addon_code}."
        )
    return f"This feature requires '{dependency}' add-on to be installed first."


class AccessGate:
    """Evaluates add-on access for one request."""

    def __init__(self, resolver: EntitlementResolver, dependency_checker: Optional[DependencyChecker] = None):
        self.resolver = resolver
        self.dependency_checker = dependency_checker or DependencyChecker(resolver)

    def evaluate(
        self,
        tenant_id: str,
        addon_code: str,
        method: str,
        policy: Optional[GatePolicy] = None,
        now: Optional[datetime] = None,
    ) -> AccessDecision:
        policy = policy or GatePolicy()
        now = now or utcnow()

        verdict = self.resolver.resolve(tenant_id, addon_code, now)

        if policy.enforce_dependencies:
            dep_check = self.dependency_checker.check_dependencies(
                tenant_id, addon_code, policy.dependencies, now
            )
            if not dep_check.satisfied:
                expired = dep_check.dependency_state not in (None, EntitlementState.NOT_INSTALLED)
                code = (
                    ReasonCode.ADDON_DEPENDENCY_EXPIRED
                    if expired
                    else ReasonCode.ADDON_DEPENDENCY_MISSING
                )
                logger.info(
                    "Add-on dependency not satisfied",
                    extra={
                        "tenant_id": tenant_id,
                        "addon_code": addon_code,
                        "dependency": dep_check.missing_dependency,
                        "dependency_state": dep_check.dependency_state.value if dep_check.dependency_state else None,
                    },
                )
                return AccessDecision(
                    outcome=AccessOutcome.DENY,
                    addon_code=addon_code,
                    verdict=verdict,
                    code=code,
                    dependency=dep_check.missing_dependency,
                    message=dependency_message(addon_code, dep_check.missing_dependency, expired),
                )

        return self.evaluate_verdict(tenant_id, addon_code, verdict, method, policy)

    def evaluate_verdict(
        self,
        tenant_id: str,
        addon_code: str,
        verdict: EntitlementVerdict,
        method: str,
        policy: Optional[GatePolicy] = None,
    ) -> AccessDecision:
        """Apply the method-sensitive part of the gate to an already resolved verdict."""
        policy = policy or GatePolicy()
        read = is_read_method(method)

        if verdict.state == EntitlementState.GRACE:
            if policy.allow_grace_for_reads and not read:
                return AccessDecision(
                    outcome=AccessOutcome.DENY,
                    addon_code=addon_code,
                    verdict=verdict,
                    code=ReasonCode.ADDON_EXPIRED,
                    message=grace_write_message(addon_code),
                )
            return AccessDecision(outcome=AccessOutcome.ALLOW, addon_code=addon_code, verdict=verdict)

        if not verdict.entitled and policy.read_only_fallback is not None:
            reason = policy.read_only_fallback(tenant_id, verdict)
            if reason:
                if read:
                    return AccessDecision(
                        outcome=AccessOutcome.ALLOW_READ_ONLY,
                        addon_code=addon_code,
                        verdict=verdict,
                        read_only_reason=reason,
                    )
                return AccessDecision(
                    outcome=AccessOutcome.DENY,
                    addon_code=addon_code,
                    verdict=verdict,
                    code=ReasonCode.ADDON_EXPIRED,
                    message=reason,
                    read_only_reason=reason,
                )

        if verdict.entitled:
            return AccessDecision(outcome=AccessOutcome.ALLOW, addon_code=addon_code, verdict=verdict)

        code = (
            verdict.reason_code
            if verdict.reason_code in _PASSTHROUGH_DENY_CODES
            else ReasonCode.ADDON_EXPIRED
        )
        return AccessDecision(
            outcome=AccessOutcome.DENY,
            addon_code=addon_code,
            verdict=verdict,
            code=code,
            message=verdict.message or "Add-on access denied",
        )
