"""
Employee quota enforcement for the payroll tiers.

Going over the ceiling never hides or deletes employees. The first time a
tenant is found over its ceiling a grace window is opened (once, never
extended). During the window only writes that would add employees are
blocked; once it lapses every employee write is blocked until the tenant
upgrades its tier.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.config import addon_settings
from src.entitlements.hr_access import HRAccessResult, HRAccessService, UNLIMITED
from src.entitlements.resolver import as_utc, utcnow
from src.models.payroll_tier import TenantPayrollAddon

logger = logging.getLogger(__name__)


@dataclass
class QuotaDecision:
    """Outcome of an employee write check."""

    allowed: bool
    current_count: int
    limit: int
    is_trialing: bool = False
    exceeds: bool = False
    in_grace: bool = False
    blocked: bool = False
    grace_until: Optional[datetime] = None
    message: Optional[str] = None

    @property
    def requires_upgrade(self) -> bool:
        return self.exceeds

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "currentCount": self.current_count,
            "limit": self.limit,
            "isTrialing": self.is_trialing,
            "exceeds": self.exceeds,
            "requiresUpgrade": self.requires_upgrade,
            "inGracePeriod": self.in_grace,
            "blocked": self.blocked,
            "graceUntil": self.grace_until.isoformat() if self.grace_until else None,
            "message": self.message,
        }


class EmployeeQuotaEnforcer:
    """Applies the employee ceiling from HRAccessResult to write requests."""

    def __init__(
        self,
        db_session: Session,
        hr_access_service: Optional[HRAccessService] = None,
        grace_days: Optional[int] = None,
    ):
        self.db = db_session
        self.hr_access = hr_access_service or HRAccessService(db_session)
        self.grace_days = grace_days if grace_days is not None else addon_settings.EMPLOYEE_QUOTA_GRACE_DAYS

    def check(
        self,
        tenant_id: str,
        now: Optional[datetime] = None,
        increases_count: bool = True,
        access: Optional[HRAccessResult] = None,
    ) -> QuotaDecision:
        now = now or utcnow()
        access = access or self.hr_access.check_hr_access(tenant_id, now)
        count = self.hr_access.count_employees(tenant_id)
        limit = access.quota_limit

        if not access.has_foundation_access:
            return QuotaDecision(
                allowed=False,
                current_count=count,
                limit=0,
                message="Payroll or HRMS add-on required to manage employees.",
            )

        if limit == UNLIMITED:
            return QuotaDecision(allowed=True, current_count=count, limit=UNLIMITED, is_trialing=access.is_trialing)

        if count > limit:
            return self._over_quota(tenant_id, count, limit, access, now, increases_count)

        if increases_count and count >= limit:
            if access.is_trialing:
                message = (
                    f"Trial limited to {limit} employees. "
                    "Subscribe to Payroll to add more employees."
                )
            else:
                message = (
                    f"Employee limit reached ({count}/{limit}). "
                    "Upgrade your Payroll plan for more employees."
                )
            return QuotaDecision(
                allowed=False,
                current_count=count,
                limit=limit,
                is_trialing=access.is_trialing,
                message=message,
            )

        return QuotaDecision(allowed=True, current_count=count, limit=limit, is_trialing=access.is_trialing)

    def _over_quota(
        self,
        tenant_id: str,
        count: int,
        limit: int,
        access: HRAccessResult,
        now: datetime,
        increases_count: bool,
    ) -> QuotaDecision:
        grace_until = self._open_grace_window(tenant_id, count, now)

        if now < grace_until:
            return QuotaDecision(
                allowed=not increases_count,
                current_count=count,
                limit=limit,
                is_trialing=access.is_trialing,
                exceeds=True,
                in_grace=True,
                grace_until=grace_until,
                message=(
                    f"Employee count ({count}) exceeds your plan limit ({limit}). "
                    f"Upgrade before {grace_until:%Y-%m-%d} to keep editing employees."
                ),
            )

        return QuotaDecision(
            allowed=False,
            current_count=count,
            limit=limit,
            is_trialing=access.is_trialing,
            exceeds=True,
            blocked=True,
            grace_until=grace_until,
            message=(
                f"Employee count ({count}) exceeds your plan limit ({limit}). "
                "Upgrade your Payroll plan to make changes."
            ),
        )

    def _quota_row(self, tenant_id: str) -> Optional[TenantPayrollAddon]:
        # Enabled or not: the grace bookkeeping lives on the tenant's single row
        return self.db.query(TenantPayrollAddon).filter(
            TenantPayrollAddon.tenant_id == tenant_id,
        ).first()

    def _open_grace_window(self, tenant_id: str, count: int, now: datetime) -> datetime:
        """
        Record the over-quota grace window if none exists yet.

        Returns the window end in force. Trial tenants have no purchased
        tier, so their window is kept on a tier-less row that stays disabled
        and therefore never counts as a purchase.
        """
        row = self._quota_row(tenant_id)
        if row is not None and row.grace_until is not None:
            return as_utc(row.grace_until)

        grace_until = now + timedelta(days=self.grace_days)
        if row is None:
            opened = self._insert_grace_row(tenant_id, count, grace_until)
        else:
            opened = self.db.query(TenantPayrollAddon).filter(
                TenantPayrollAddon.id == row.id,
                TenantPayrollAddon.grace_until.is_(None),
            ).update(
                {
                    TenantPayrollAddon.grace_until: grace_until,
                    TenantPayrollAddon.grace_employee_count: count,
                },
                synchronize_session=False,
            ) == 1
            self.db.commit()

        if opened:
            logger.info(
                "Opened employee quota grace window",
                extra={
                    "tenant_id": tenant_id,
                    "employee_count": count,
                    "grace_until": grace_until.isoformat(),
                },
            )
            return grace_until

        # Another request opened it first; the commit or rollback expired the session
        return as_utc(self._quota_row(tenant_id).grace_until)

    def _insert_grace_row(self, tenant_id: str, count: int, grace_until: datetime) -> bool:
        self.db.add(TenantPayrollAddon(
            tenant_id=tenant_id,
            tier_id=None,
            enabled=False,
            grace_until=grace_until,
            grace_employee_count=count,
        ))
        try:
            self.db.commit()
        except IntegrityError:
            # Unique per tenant: a concurrent request inserted the row first
            self.db.rollback()
            return False
        return True
