"""
Shared column mixins for the entitlement models.

- TimestampMixin: created_at / updated_at maintained by the database
- TenantScopedMixin: indexed tenant_id for tenant isolation
- generate_uuid: string primary key default
"""

import uuid

from sqlalchemy import Column, String, DateTime, func
from sqlalchemy.orm import declared_attr

from src.db_base import Base  # noqa: F401 - re-exported for model modules


def generate_uuid() -> str:
    """Generate a UUID4 string for use as a primary key default."""
    return str(uuid.uuid4())


class TimestampMixin:
    """Adds created_at and updated_at columns."""

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        comment="Row creation time"
    )

    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
        comment="Last write time (billing webhook or expiry sweep)"
    )


class TenantScopedMixin:
    """
    Adds the tenant_id column.

    tenant_id always comes from the resolved tenant context, never from
    request bodies or query strings.
    """

    @declared_attr
    def tenant_id(cls):
        return Column(
            String(255),
            nullable=False,
            index=True,
            comment="Owning tenant"
        )
