"""
Root test configuration and fixtures.

Provides database fixtures and record factories used by all tests.

The expiry sweep and the quota enforcer commit, so every test gets its own
in-memory database instead of a rolled-back transaction.
"""

import os
import uuid
from datetime import datetime, timezone
from typing import Generator, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

# Set test environment
os.environ.setdefault("ENV", "test")

from src.db_base import Base  # noqa: E402
from src.config.addon_catalog import reset_addon_catalog_loader  # noqa: E402
from src.entitlements.audit import reset_audit_logger  # noqa: E402
from src.models.tenant_addon import TenantAddon, InstallStatus, BillingStatus  # noqa: E402
from src.models.payroll_tier import PayrollAddonTier, TenantPayrollAddon  # noqa: E402
from src.models.hr_employee import HREmployee, EmployeeStatus  # noqa: E402

NOW = datetime(2026, 3, 10, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _reset_singletons():
    """Drop the catalog and audit singletons around every test."""
    reset_addon_catalog_loader()
    reset_audit_logger()
    yield
    reset_addon_catalog_loader()
    reset_audit_logger()


@pytest.fixture
def db_engine():
    """SQLite in-memory engine with all entitlement tables created."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    import src.models  # noqa: F401 - registers all tables on Base

    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(db_engine) -> Generator[Session, None, None]:
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def tenant_id() -> str:
    return f"tenant-{uuid.uuid4().hex[:8]}"


# =============================================================================
# Record factories
# =============================================================================


@pytest.fixture
def make_addon(db_session):
    """
    Factory that persists a TenantAddon.

    Usage:
        make_addon("tenant-1", "payroll", variant="india",
                   billing_status=BillingStatus.ACTIVE, paid_until=NOW + timedelta(days=5))
    """
    def _make(
        tenant_id: str,
        base_code: str,
        variant: Optional[str] = None,
        install_status: InstallStatus = InstallStatus.ACTIVE,
        billing_status: BillingStatus = BillingStatus.ACTIVE,
        trial_ends_at: Optional[datetime] = None,
        paid_until: Optional[datetime] = None,
        grace_until: Optional[datetime] = None,
    ) -> TenantAddon:
        record = TenantAddon(
            tenant_id=tenant_id,
            base_code=base_code,
            variant=variant,
            install_status=install_status,
            billing_status=billing_status,
            trial_ends_at=trial_ends_at,
            paid_until=paid_until,
            grace_until=grace_until,
        )
        db_session.add(record)
        db_session.commit()
        return record
    return _make


@pytest.fixture
def make_employees(db_session):
    """Factory that persists ``count`` employees for a tenant."""
    def _make(tenant_id: str, count: int, status: EmployeeStatus = EmployeeStatus.ACTIVE):
        for i in range(count):
            db_session.add(HREmployee(
                tenant_id=tenant_id,
                full_name=f"Employee {i}",
                status=status,
            ))
        db_session.commit()
    return _make


@pytest.fixture
def make_payroll_tier(db_session):
    """Factory that persists a payroll tier and assigns it to a tenant."""
    def _make(
        tenant_id: str,
        max_employees: Optional[int],
        tier_name: Optional[str] = None,
        grace_until: Optional[datetime] = None,
    ) -> TenantPayrollAddon:
        tier = PayrollAddonTier(
            tier_name=tier_name or f"Tier up to {max_employees} ({uuid.uuid4().hex[:6]})",
            min_employees=0,
            max_employees=max_employees,
        )
        db_session.add(tier)
        db_session.flush()
        assignment = TenantPayrollAddon(
            tenant_id=tenant_id,
            tier_id=tier.id,
            enabled=True,
            grace_until=grace_until,
        )
        db_session.add(assignment)
        db_session.commit()
        return assignment
    return _make


# =============================================================================
# Markers
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "slow: mark test as slow-running")
