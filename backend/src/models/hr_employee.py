"""
Minimal HR employee row used for the live employee count.

Employee CRUD is owned by the HR module; the entitlement engine only needs
to count active rows per tenant.
"""

from enum import Enum as PyEnum

from sqlalchemy import Column, String, Enum, Index

from src.models.base import Base, TimestampMixin, TenantScopedMixin, generate_uuid


class EmployeeStatus(str, PyEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    TERMINATED = "terminated"


class HREmployee(Base, TimestampMixin, TenantScopedMixin):
    __tablename__ = "hr_employees"

    id = Column(
        String(36),
        primary_key=True,
        default=generate_uuid
    )
    full_name = Column(
        String(255),
        nullable=False,
        default="",
    )
    status = Column(
        Enum(
            EmployeeStatus,
            name="hr_employee_status",
            values_callable=lambda enum_cls: [m.value for m in enum_cls],
        ),
        nullable=False,
        default=EmployeeStatus.ACTIVE,
    )

    __table_args__ = (
        Index("ix_hr_employees_tenant_status", "tenant_id", "status"),
    )
