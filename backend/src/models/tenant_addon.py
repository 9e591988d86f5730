"""
TenantAddon model: the persisted subscription record for one add-on.

Rows are written by the billing webhook handlers (outside this service) and
by the add-on expiry sweep, which only ever touches billing_status and
grace_until. Rows are never deleted; disabling an add-on is a status change
so the data stays available for audit and read-only access.
"""

from enum import Enum as PyEnum

from sqlalchemy import Column, String, DateTime, Enum, Index, UniqueConstraint

from src.models.base import Base, TimestampMixin, TenantScopedMixin, generate_uuid


class InstallStatus(str, PyEnum):
    """Whether the add-on was provisioned for the tenant."""
    ACTIVE = "active"
    TRIAL = "trial"
    DISABLED = "disabled"


# Install states that count as provisioned for resolution and the expiry sweep
INSTALLED_STATUSES = (InstallStatus.ACTIVE, InstallStatus.TRIAL)


class BillingStatus(str, PyEnum):
    """Billing lifecycle as last reported by the payment provider or the sweep."""
    TRIALING = "trialing"
    ACTIVE = "active"
    GRACE_PERIOD = "grace_period"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    HALTED = "halted"


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class TenantAddon(Base, TimestampMixin, TenantScopedMixin):
    """
    One row per (tenant, add-on family, country variant).

    The add-on is keyed by base_code plus an optional variant, so
    "payroll-india" is stored as ("payroll", "india") and the generic
    "payroll" module as ("payroll", NULL).
    """

    __tablename__ = "tenant_addons"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid
    )

    base_code = Column(
        String(64),
        nullable=False,
        comment="Add-on family, e.g. payroll or hrms"
    )
    variant = Column(
        String(32),
        nullable=True,
        comment="Country/region variant; NULL for the generic module"
    )

    install_status = Column(
        Enum(
            InstallStatus,
            name="addon_install_status",
            values_callable=_enum_values,
        ),
        nullable=False,
        default=InstallStatus.ACTIVE,
        comment="Provisioning state"
    )
    billing_status = Column(
        Enum(
            BillingStatus,
            name="addon_billing_status",
            values_callable=_enum_values,
        ),
        nullable=False,
        default=BillingStatus.TRIALING,
        index=True,
        comment="Billing lifecycle state"
    )

    trial_ends_at = Column(
        DateTime(timezone=True),
        nullable=True,
        comment="End of the free trial"
    )
    paid_until = Column(
        DateTime(timezone=True),
        nullable=True,
        comment="End of the current paid period; NULL means no expiry"
    )
    grace_until = Column(
        DateTime(timezone=True),
        nullable=True,
        comment="End of the post-lapse grace window, set once per lapse"
    )

    __table_args__ = (
        UniqueConstraint("tenant_id", "base_code", "variant", name="uq_tenant_addon_key"),
        Index("ix_tenant_addons_tenant_base", "tenant_id", "base_code"),
        Index("ix_tenant_addons_install_billing", "install_status", "billing_status"),
    )

    @property
    def addon_code(self) -> str:
        """Wire-format code, e.g. payroll-india."""
        if self.variant:
            return f"{self.base_code}-{self.variant}"
        return self.base_code

    def __repr__(self) -> str:
        return (
            f"<TenantAddon(tenant_id={self.tenant_id}, addon={self.addon_code}, "
            f"install={self.install_status}, billing={self.billing_status})>"
        )
