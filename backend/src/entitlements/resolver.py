"""
Entitlement resolver: stored add-on record + current time -> verdict.

Resolution is a pure function of the record and ``now``. Nothing is cached
between calls, so a lagging expiry sweep can make listings stale but can
never make a live access decision wrong.

Lookup order for a requested code:
  1. exact (base_code, variant)
  2. a variant request falls back to the generic record
  3. a generic request falls back to the first variant record, in
     configured variant order

Decision order (first match wins):
  1. no record                       -> not_installed
  2. trialing with a trial end       -> trial, or expired (trial ended)
  3. install status not active/trial -> cancelled
  4. billing active                  -> active while paid_until has not passed
  5. inside the grace window         -> grace
  6. cancelled / expired / halted    -> expired
  7. anything else                   -> expired
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.config import addon_catalog, addon_settings
from src.entitlements.errors import EntitlementLookupError
from src.entitlements.models import (
    AddonKey,
    EntitlementState,
    EntitlementVerdict,
    LOOKUP_FAILED_MESSAGE,
    ReasonCode,
    days_until,
)
from src.models.tenant_addon import INSTALLED_STATUSES, TenantAddon, InstallStatus, BillingStatus
from src.repositories.tenant_addon_repository import TenantAddonRepository

logger = logging.getLogger(__name__)

_TERMINAL_BILLING = (BillingStatus.CANCELLED, BillingStatus.EXPIRED, BillingStatus.HALTED)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def effective_grace_end(
    grace_until: Optional[datetime],
    paid_until: Optional[datetime],
    grace_period_days: int,
) -> Optional[datetime]:
    """Stored grace end, clamped to paid_until + the configured grace length."""
    if grace_until is None:
        return None
    if paid_until is None:
        return grace_until
    return min(grace_until, paid_until + timedelta(days=grace_period_days))


def evaluate_record(
    record: Optional[TenantAddon],
    addon_code: str,
    now: datetime,
    grace_period_days: int = addon_settings.ADDON_GRACE_PERIOD_DAYS,
) -> EntitlementVerdict:
    """Derive the verdict for ``record`` at ``now``. Performs no I/O."""
    now = as_utc(now)

    if record is None:
        return EntitlementVerdict.not_installed(addon_code)

    trial_end = as_utc(record.trial_ends_at)
    paid_until = as_utc(record.paid_until)
    billing = BillingStatus(record.billing_status)

    # Runs before the install check: a trialing record reads as a trial even
    # when its install status says otherwise.
    if billing == BillingStatus.TRIALING and trial_end is not None:
        if now < trial_end:
            days = days_until(trial_end, now)
            return EntitlementVerdict(
                addon_code=addon_code,
                entitled=True,
                state=EntitlementState.TRIAL,
                reason_code=ReasonCode.ADDON_TRIAL_ACTIVE,
                valid_until=trial_end,
                days_remaining=days,
                message=f"Trial active, {days} days remaining",
            )
        return EntitlementVerdict(
            addon_code=addon_code,
            entitled=False,
            state=EntitlementState.EXPIRED,
            reason_code=ReasonCode.ADDON_TRIAL_EXPIRED,
            valid_until=trial_end,
            message=f"Your trial ended on {trial_end:%Y-%m-%d}. Renew to continue.",
        )

    if InstallStatus(record.install_status) not in INSTALLED_STATUSES:
        return EntitlementVerdict(
            addon_code=addon_code,
            entitled=False,
            state=EntitlementState.CANCELLED,
            reason_code=ReasonCode.ADDON_CANCELLED,
            message="Add-on has been cancelled or disabled",
        )

    if billing == BillingStatus.ACTIVE:
        if paid_until is None:
            return EntitlementVerdict(
                addon_code=addon_code,
                entitled=True,
                state=EntitlementState.ACTIVE,
                reason_code=ReasonCode.ADDON_ACTIVE,
                message="Subscription active",
            )
        if now <= paid_until:
            return EntitlementVerdict(
                addon_code=addon_code,
                entitled=True,
                state=EntitlementState.ACTIVE,
                reason_code=ReasonCode.ADDON_ACTIVE,
                valid_until=paid_until,
                days_remaining=days_until(paid_until, now),
                message="Subscription active",
            )

    grace_end = effective_grace_end(as_utc(record.grace_until), paid_until, grace_period_days)
    if grace_end is not None and now <= grace_end:
        return EntitlementVerdict(
            addon_code=addon_code,
            entitled=True,
            state=EntitlementState.GRACE,
            reason_code=ReasonCode.ADDON_GRACE_PERIOD,
            valid_until=grace_end,
            days_remaining=days_until(grace_end, now),
            message=f"You're in grace period until {grace_end:%Y-%m-%d}.",
        )

    if billing in _TERMINAL_BILLING:
        return EntitlementVerdict(
            addon_code=addon_code,
            entitled=False,
            state=EntitlementState.EXPIRED,
            reason_code=ReasonCode.ADDON_EXPIRED,
            valid_until=paid_until,
            message="Subscription has expired. Renew to continue.",
        )

    return EntitlementVerdict(
        addon_code=addon_code,
        entitled=False,
        state=EntitlementState.EXPIRED,
        reason_code=ReasonCode.ADDON_EXPIRED,
        message="Add-on subscription has expired",
    )


def _rank(verdict: EntitlementVerdict) -> Tuple[int, int, float]:
    """Sort key for picking the best verdict within one add-on family."""
    if verdict.valid_until is None:
        horizon = float("inf") if verdict.entitled else float("-inf")
    else:
        horizon = verdict.valid_until.timestamp()
    installed = 0 if verdict.state == EntitlementState.NOT_INSTALLED else 1
    return (1 if verdict.entitled else 0, installed, horizon)


def best_verdict(verdicts: Sequence[EntitlementVerdict]) -> Optional[EntitlementVerdict]:
    """Most permissive verdict; earlier entries win ties."""
    best: Optional[EntitlementVerdict] = None
    for verdict in verdicts:
        if best is None or _rank(verdict) > _rank(best):
            best = verdict
    return best


class EntitlementResolver:
    """
    Resolves add-on verdicts for a tenant.

    ``resolve`` fails closed: a lookup failure is logged and reported as a
    not_installed verdict. ``resolve_strict`` raises EntitlementLookupError
    instead, for billing pages that must not mask an outage.
    """

    def __init__(
        self,
        db_session: Session,
        variants: Optional[Sequence[str]] = None,
        grace_period_days: Optional[int] = None,
    ):
        self.db = db_session
        self.repository = TenantAddonRepository(db_session)
        if variants is None:
            variants = addon_catalog.get_addon_catalog_loader().variants
        self.variants: List[str] = list(variants)
        self.grace_period_days = (
            grace_period_days
            if grace_period_days is not None
            else addon_settings.ADDON_GRACE_PERIOD_DAYS
        )

    def parse_key(self, addon_code: str) -> AddonKey:
        return AddonKey.parse(addon_code, self.variants)

    def resolve(self, tenant_id: str, addon_code: str, now: Optional[datetime] = None) -> EntitlementVerdict:
        try:
            return self.resolve_strict(tenant_id, addon_code, now)
        except EntitlementLookupError as e:
            logger.error(
                "Add-on lookup failed, denying access",
                extra={
                    "tenant_id": tenant_id,
                    "addon_code": addon_code,
                    "error": str(e.cause) if e.cause else str(e),
                },
            )
            return EntitlementVerdict.not_installed(addon_code, message=LOOKUP_FAILED_MESSAGE)

    def resolve_strict(
        self, tenant_id: str, addon_code: str, now: Optional[datetime] = None
    ) -> EntitlementVerdict:
        key = self.parse_key(addon_code)
        records = self._load_family(tenant_id, key)
        record = self._select_record(records, key)
        return evaluate_record(record, key.code, now or utcnow(), self.grace_period_days)

    def resolve_family(
        self, tenant_id: str, addon_code: str, now: Optional[datetime] = None
    ) -> List[Tuple[AddonKey, EntitlementVerdict]]:
        """
        Verdicts for ``addon_code`` and every country variant of its family.

        The requested code comes first. Uses one query for the whole family
        and raises EntitlementLookupError on failure.
        """
        now = now or utcnow()
        key = self.parse_key(addon_code)
        records = self._load_family(tenant_id, key)
        return [
            (
                candidate,
                evaluate_record(
                    self._select_record(records, candidate),
                    candidate.code,
                    now,
                    self.grace_period_days,
                ),
            )
            for candidate in key.family(self.variants)
        ]

    def get_all_entitlements(
        self, tenant_id: str, now: Optional[datetime] = None
    ) -> Dict[str, EntitlementVerdict]:
        """
        Every add-on the tenant has a record for, keyed by family.

        Country variants fold into the base code; when a tenant holds several
        variants of one family the most permissive verdict is reported.
        """
        now = now or utcnow()
        try:
            records = self.repository.list_for_tenant(tenant_id)
        except SQLAlchemyError as e:
            raise EntitlementLookupError(tenant_id, "*", e) from e

        entitlements: Dict[str, EntitlementVerdict] = {}
        for record in records:
            verdict = evaluate_record(record, record.addon_code, now, self.grace_period_days)
            current = entitlements.get(record.base_code)
            if current is None or _rank(verdict) > _rank(current):
                entitlements[record.base_code] = verdict
        return entitlements

    def _load_family(self, tenant_id: str, key: AddonKey) -> List[TenantAddon]:
        try:
            return self.repository.get_family(tenant_id, key.base_code)
        except SQLAlchemyError as e:
            raise EntitlementLookupError(tenant_id, key.code, e) from e

    def _select_record(self, records: List[TenantAddon], key: AddonKey) -> Optional[TenantAddon]:
        by_variant = {record.variant: record for record in records}
        if key.variant in by_variant:
            return by_variant[key.variant]
        if key.is_variant:
            return by_variant.get(None)
        for variant in self.variants:
            if variant in by_variant:
                return by_variant[variant]
        leftovers = sorted(v for v in by_variant if v is not None)
        return by_variant[leftovers[0]] if leftovers else None
