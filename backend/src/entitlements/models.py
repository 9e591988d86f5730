"""
Value types for add-on entitlement decisions.

Nothing here is persisted. Verdicts and decisions are rebuilt on every call
from the stored TenantAddon row and the current time.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence


class EntitlementState(str, Enum):
    """Derived access state for one add-on."""
    ACTIVE = "active"
    TRIAL = "trial"
    GRACE = "grace"
    EXPIRED = "expired"
    NOT_INSTALLED = "not_installed"
    CANCELLED = "cancelled"


class ReasonCode(str, Enum):
    """Machine-readable reason attached to verdicts and denials."""
    ADDON_ACTIVE = "ADDON_ACTIVE"
    ADDON_TRIAL_ACTIVE = "ADDON_TRIAL_ACTIVE"
    ADDON_GRACE_PERIOD = "ADDON_GRACE_PERIOD"
    ADDON_EXPIRED = "ADDON_EXPIRED"
    ADDON_TRIAL_EXPIRED = "ADDON_TRIAL_EXPIRED"
    ADDON_NOT_INSTALLED = "ADDON_NOT_INSTALLED"
    ADDON_CANCELLED = "ADDON_CANCELLED"
    ADDON_DEPENDENCY_MISSING = "ADDON_DEPENDENCY_MISSING"
    ADDON_DEPENDENCY_EXPIRED = "ADDON_DEPENDENCY_EXPIRED"


class AccessOutcome(str, Enum):
    ALLOW = "allow"
    ALLOW_READ_ONLY = "allow_read_only"
    DENY = "deny"


READ_METHODS = frozenset({"GET", "HEAD"})

# Fail-closed message when the entitlement store cannot be read
LOOKUP_FAILED_MESSAGE = "Unable to verify add-on access"

_MS_PER_DAY = 86_400_000


def is_read_method(method: str) -> bool:
    return (method or "").upper() in READ_METHODS


def days_until(end: Optional[datetime], now: datetime) -> int:
    """Whole days left until ``end``, rounded up, never negative."""
    if end is None:
        return 0
    diff_ms = (end - now).total_seconds() * 1000
    return max(0, math.ceil(diff_ms / _MS_PER_DAY))


@dataclass(frozen=True)
class AddonKey:
    """
    Composite add-on key: family plus optional country variant.

    "payroll-india" parses to AddonKey("payroll", "india") only when
    "india" is a configured variant; unknown suffixes stay part of the base
    code, so "hr-foundation" is AddonKey("hr-foundation", None).
    """

    base_code: str
    variant: Optional[str] = None

    @classmethod
    def parse(cls, addon_code: str, variants: Iterable[str]) -> "AddonKey":
        code = (addon_code or "").strip().lower()
        base, sep, suffix = code.rpartition("-")
        if sep and base and suffix in set(variants):
            return cls(base_code=base, variant=suffix)
        return cls(base_code=code, variant=None)

    @property
    def code(self) -> str:
        if self.variant:
            return f"{self.base_code}-{self.variant}"
        return self.base_code

    @property
    def is_variant(self) -> bool:
        return self.variant is not None

    def generic(self) -> "AddonKey":
        return AddonKey(base_code=self.base_code, variant=None)

    def family(self, variants: Sequence[str]) -> List["AddonKey"]:
        """This key first, then the generic module, then every other variant."""
        keys = [self]
        for candidate in [self.generic()] + [AddonKey(self.base_code, v) for v in variants]:
            if candidate not in keys:
                keys.append(candidate)
        return keys

    def __str__(self) -> str:
        return self.code


@dataclass(frozen=True)
class EntitlementVerdict:
    """
    Result of resolving one add-on for one tenant at one instant.

    entitled implies valid_until is None (no expiry) or in the future.
    """

    addon_code: str
    entitled: bool
    state: EntitlementState
    reason_code: ReasonCode
    valid_until: Optional[datetime] = None
    days_remaining: int = 0
    message: str = ""

    @property
    def is_grace(self) -> bool:
        return self.state == EntitlementState.GRACE

    @property
    def is_trial(self) -> bool:
        return self.state == EntitlementState.TRIAL

    def to_dict(self) -> Dict[str, Any]:
        return {
            "addon": self.addon_code,
            "entitled": self.entitled,
            "state": self.state.value,
            "validUntil": self.valid_until.isoformat() if self.valid_until else None,
            "reasonCode": self.reason_code.value,
            "daysRemaining": self.days_remaining,
            "message": self.message,
        }

    @classmethod
    def not_installed(cls, addon_code: str, message: str = "Add-on is not installed") -> "EntitlementVerdict":
        return cls(
            addon_code=addon_code,
            entitled=False,
            state=EntitlementState.NOT_INSTALLED,
            reason_code=ReasonCode.ADDON_NOT_INSTALLED,
            message=message,
        )


@dataclass(frozen=True)
class DependencyCheckResult:
    satisfied: bool
    missing_dependency: Optional[str] = None
    dependency_state: Optional[EntitlementState] = None
    satisfied_by: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "satisfied": self.satisfied,
            "missingDependency": self.missing_dependency,
            "dependencyState": self.dependency_state.value if self.dependency_state else None,
            "satisfiedBy": self.satisfied_by,
        }


@dataclass
class AccessDecision:
    """
    Request-time gate result.

    allow_read_only is not an error: the caller serves the read and may
    surface read_only_reason in the UI.
    """

    outcome: AccessOutcome
    addon_code: str
    verdict: Optional[EntitlementVerdict] = None
    code: Optional[ReasonCode] = None
    message: Optional[str] = None
    dependency: Optional[str] = None
    read_only_reason: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def lookup_failed(cls, addon_code: str) -> "AccessDecision":
        """Not-installed denial for when the entitlement store cannot be read."""
        verdict = EntitlementVerdict.not_installed(addon_code, message=LOOKUP_FAILED_MESSAGE)
        return cls(
            outcome=AccessOutcome.DENY,
            addon_code=addon_code,
            verdict=verdict,
            code=ReasonCode.ADDON_NOT_INSTALLED,
            message=LOOKUP_FAILED_MESSAGE,
        )

    @property
    def allowed(self) -> bool:
        return self.outcome != AccessOutcome.DENY

    @property
    def read_only(self) -> bool:
        return self.outcome == AccessOutcome.ALLOW_READ_ONLY

    def to_error_response(self, upgrade_url: str) -> Dict[str, Any]:
        """Stable 403 body for denied requests."""
        payload: Dict[str, Any] = {
            "error": "ADDON_ACCESS_DENIED",
            "code": self.code.value if self.code else ReasonCode.ADDON_EXPIRED.value,
            "addon": self.addon_code,
        }
        if self.dependency:
            payload["dependency"] = self.dependency
        if self.verdict is not None and self.verdict.valid_until is not None and not self.dependency:
            payload["validUntil"] = self.verdict.valid_until.isoformat()
        payload["message"] = self.message or "Add-on access denied"
        payload["upgradeUrl"] = upgrade_url
        return payload
