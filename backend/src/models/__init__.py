"""
Database models for add-on subscriptions, payroll tiers and HR headcount.

Tenant-scoped models inherit from TenantScopedMixin.
"""

from src.models.base import TimestampMixin, TenantScopedMixin
from src.models.tenant_addon import TenantAddon, InstallStatus, BillingStatus
from src.models.payroll_tier import PayrollAddonTier, TenantPayrollAddon
from src.models.hr_employee import HREmployee, EmployeeStatus

__all__ = [
    "TimestampMixin",
    "TenantScopedMixin",
    "TenantAddon",
    "InstallStatus",
    "BillingStatus",
    "PayrollAddonTier",
    "TenantPayrollAddon",
    "HREmployee",
    "EmployeeStatus",
]
