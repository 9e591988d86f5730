"""
HR add-on gating: composite access for the employee directory, the HRMS
suite and payroll.

Capabilities:
- HR foundation (employee directory): any payroll OR any HRMS variant
- HRMS suite (attendance, leave, timesheets): any HRMS variant
- Payroll suite: any payroll variant, with payroll's prerequisites checked

Employee ceiling (-1 = unlimited):
- payroll in trial: PAYROLL_TRIAL_EMPLOYEE_LIMIT
- payroll paid: the purchased tier's max_employees (no tier or NULL cap = unlimited)
- HRMS only: unlimited
- nothing entitled: 0

A tenant whose payroll lapsed, with no HRMS and existing employees, keeps
read-only access to the directory so data is never hidden.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from src.config import addon_settings
from src.entitlements.gate import AccessGate, GatePolicy, ReadOnlyFallback
from src.entitlements.models import AccessDecision, EntitlementState, EntitlementVerdict, ReasonCode
from src.entitlements.resolver import EntitlementResolver, best_verdict, utcnow
from src.models.hr_employee import HREmployee, EmployeeStatus
from src.models.payroll_tier import TenantPayrollAddon

logger = logging.getLogger(__name__)

UNLIMITED = -1

READ_ONLY_REASON = "Re-enable Payroll or add HRMS to create or edit employees."
EMPLOYEE_ACCESS_REQUIRED_MESSAGE = "Employee directory requires Payroll or HRMS add-on"

_LAPSED_STATES = (EntitlementState.EXPIRED, EntitlementState.CANCELLED)


@dataclass
class HRAccessResult:
    """Composite HR access for one tenant at one instant."""

    has_foundation_access: bool
    has_suite_access: bool
    has_paid_module_access: bool
    quota_limit: int
    is_trialing: bool
    payroll_in_grace: bool
    hrms_in_grace: bool
    read_only: bool
    read_only_reason: Optional[str]
    payroll: EntitlementVerdict
    hrms: EntitlementVerdict
    payroll_tier_name: Optional[str] = None

    @property
    def foundation_verdict(self) -> EntitlementVerdict:
        """The verdict that grants (or would grant) the employee directory."""
        return best_verdict([self.payroll, self.hrms])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hasFoundationAccess": self.has_foundation_access,
            "hasSuiteAccess": self.has_suite_access,
            "hasPaidModuleAccess": self.has_paid_module_access,
            "quotaLimit": self.quota_limit,
            "isTrialing": self.is_trialing,
            "payrollInGrace": self.payroll_in_grace,
            "hrmsInGrace": self.hrms_in_grace,
            "readOnly": self.read_only,
            "readOnlyReason": self.read_only_reason,
            "payrollTierName": self.payroll_tier_name,
            "payroll": self.payroll.to_dict(),
            "hrms": self.hrms.to_dict(),
        }


class HRAccessService:
    """Builds HRAccessResult and the HR route decisions on top of the gate."""

    def __init__(
        self,
        db_session: Session,
        resolver: Optional[EntitlementResolver] = None,
        gate: Optional[AccessGate] = None,
    ):
        self.db = db_session
        self.resolver = resolver or EntitlementResolver(db_session)
        self.gate = gate or AccessGate(self.resolver)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def family_verdicts(self, tenant_id: str, base_code: str, now: datetime) -> List[EntitlementVerdict]:
        return [verdict for _, verdict in self.resolver.resolve_family(tenant_id, base_code, now)]

    def count_employees(self, tenant_id: str, active_only: bool = True) -> int:
        query = self.db.query(func.count(HREmployee.id)).filter(HREmployee.tenant_id == tenant_id)
        if active_only:
            query = query.filter(HREmployee.status == EmployeeStatus.ACTIVE)
        return query.scalar() or 0

    def get_payroll_addon(self, tenant_id: str) -> Optional[TenantPayrollAddon]:
        return self.db.query(TenantPayrollAddon).filter(
            TenantPayrollAddon.tenant_id == tenant_id,
            TenantPayrollAddon.enabled.is_(True),
        ).first()

    # ------------------------------------------------------------------
    # Composite access
    # ------------------------------------------------------------------

    def check_hr_access(self, tenant_id: str, now: Optional[datetime] = None) -> HRAccessResult:
        now = now or utcnow()

        payroll_verdicts = self.family_verdicts(tenant_id, addon_settings.PAYROLL_BASE_CODE, now)
        hrms_verdicts = self.family_verdicts(tenant_id, addon_settings.HRMS_BASE_CODE, now)
        payroll = best_verdict(payroll_verdicts)
        hrms = best_verdict(hrms_verdicts)

        has_payroll = payroll.entitled
        has_hrms = hrms.entitled
        is_trialing = has_payroll and payroll.state == EntitlementState.TRIAL

        quota_limit = 0
        tier_name = None
        if has_payroll:
            if is_trialing:
                quota_limit = addon_settings.PAYROLL_TRIAL_EMPLOYEE_LIMIT
            else:
                quota_limit, tier_name = self._tier_limit(tenant_id)
        elif has_hrms:
            quota_limit = UNLIMITED

        read_only = False
        read_only_reason = None
        had_payroll = any(v.state in _LAPSED_STATES for v in payroll_verdicts)
        if had_payroll and not has_payroll and not has_hrms:
            if self.count_employees(tenant_id, active_only=False) > 0:
                read_only = True
                read_only_reason = READ_ONLY_REASON

        return HRAccessResult(
            has_foundation_access=has_payroll or has_hrms,
            has_suite_access=has_hrms,
            has_paid_module_access=has_payroll,
            quota_limit=quota_limit,
            is_trialing=is_trialing,
            payroll_in_grace=has_payroll and payroll.state == EntitlementState.GRACE,
            hrms_in_grace=has_hrms and hrms.state == EntitlementState.GRACE,
            read_only=read_only,
            read_only_reason=read_only_reason,
            payroll=payroll,
            hrms=hrms,
            payroll_tier_name=tier_name,
        )

    def _tier_limit(self, tenant_id: str):
        addon = self.get_payroll_addon(tenant_id)
        if addon is None or addon.tier is None:
            logger.warning(
                "No payroll tier configured for entitled tenant, employee limit not enforced",
                extra={"tenant_id": tenant_id},
            )
            return UNLIMITED, None
        limit = addon.tier.max_employees
        return (UNLIMITED if limit is None else limit), addon.tier.tier_name

    def read_only_fallback(self, access: HRAccessResult) -> ReadOnlyFallback:
        """Gate hook that serves the employee directory read-only after payroll lapses."""
        def fallback(tenant_id: str, verdict: EntitlementVerdict) -> Optional[str]:
            return access.read_only_reason if access.read_only else None
        return fallback

    # ------------------------------------------------------------------
    # Route decisions
    # ------------------------------------------------------------------

    def decide_employee_access(
        self, tenant_id: str, method: str, now: Optional[datetime] = None
    ) -> AccessDecision:
        access = self.check_hr_access(tenant_id, now)
        verdict = access.foundation_verdict
        decision = self.gate.evaluate_verdict(
            tenant_id,
            verdict.addon_code,
            verdict,
            method,
            GatePolicy(
                allow_grace_for_reads=True,
                read_only_fallback=self.read_only_fallback(access),
            ),
        )
        if not decision.allowed and decision.code == ReasonCode.ADDON_NOT_INSTALLED:
            decision.message = EMPLOYEE_ACCESS_REQUIRED_MESSAGE
        decision.metadata["hr_access"] = access
        return decision

    def decide_hrms_suite_access(
        self, tenant_id: str, method: str, now: Optional[datetime] = None
    ) -> AccessDecision:
        now = now or utcnow()
        verdict = best_verdict(self.family_verdicts(tenant_id, addon_settings.HRMS_BASE_CODE, now))
        return self.gate.evaluate_verdict(
            tenant_id, verdict.addon_code, verdict, method,
            GatePolicy(allow_grace_for_reads=True),
        )

    def decide_payroll_access(
        self, tenant_id: str, method: str, now: Optional[datetime] = None
    ) -> AccessDecision:
        now = now or utcnow()
        verdict = best_verdict(self.family_verdicts(tenant_id, addon_settings.PAYROLL_BASE_CODE, now))
        return self.gate.evaluate(
            tenant_id, verdict.addon_code, method,
            GatePolicy(allow_grace_for_reads=True),
            now,
        )
