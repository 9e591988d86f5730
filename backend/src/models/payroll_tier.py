"""
Payroll add-on pricing tiers and per-tenant tier assignment.

PayrollAddonTier is global (not tenant-scoped): it only carries the employee
ceiling the enforcer needs. Prices live with the billing collaborator.
TenantPayrollAddon links a tenant to its purchased tier and holds the
over-quota grace window opened by the employee quota enforcer.
"""

from sqlalchemy import Column, String, Integer, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship

from src.models.base import Base, TimestampMixin, TenantScopedMixin, generate_uuid


class PayrollAddonTier(Base, TimestampMixin):
    """Employee ceiling for a purchasable payroll tier."""

    __tablename__ = "payroll_addon_tiers"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid
    )
    tier_name = Column(
        String(100),
        nullable=False,
        unique=True,
        comment="Display name, e.g. Starter (1-25)"
    )
    min_employees = Column(
        Integer,
        nullable=False,
        default=0,
        comment="Lower bound of the band"
    )
    max_employees = Column(
        Integer,
        nullable=True,
        comment="Employee ceiling; NULL means unlimited"
    )

    def __repr__(self) -> str:
        return f"<PayrollAddonTier(tier_name={self.tier_name}, max_employees={self.max_employees})>"


class TenantPayrollAddon(Base, TimestampMixin, TenantScopedMixin):
    """
    The tier a tenant bought for payroll, plus quota grace bookkeeping.

    grace_until / grace_employee_count are written once when the tenant first
    goes over its ceiling and cleared by the billing side on tier upgrade.
    """

    __tablename__ = "tenant_payroll_addons"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid
    )
    tier_id = Column(
        String(36),
        ForeignKey("payroll_addon_tiers.id", ondelete="SET NULL"),
        nullable=True,
        comment="Purchased tier"
    )
    enabled = Column(
        Boolean,
        nullable=False,
        default=True,
        comment="Payroll enabled for the tenant"
    )
    grace_until = Column(
        DateTime(timezone=True),
        nullable=True,
        comment="End of the over-quota grace window"
    )
    grace_employee_count = Column(
        Integer,
        nullable=True,
        comment="Employee count when the over-quota grace window opened"
    )

    tier = relationship("PayrollAddonTier", lazy="joined")

    __table_args__ = (
        Index("ix_tenant_payroll_addons_tenant", "tenant_id", unique=True),
    )
