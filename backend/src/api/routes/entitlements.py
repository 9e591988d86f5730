"""
Add-on entitlement API routes.

Read-only views used by the billing pages, dashboards and the marketplace.
Unlike the access gate, these endpoints do not fail closed: if the
entitlement store cannot be read they return 500 rather than reporting the
add-on as not installed.

All routes require tenant context.
"""

import logging
from typing import Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.database.session import get_db_session
from src.entitlements.dependencies import DependencyChecker
from src.entitlements.errors import EntitlementLookupError
from src.entitlements.hr_access import HRAccessService
from src.entitlements.quota import EmployeeQuotaEnforcer
from src.entitlements.resolver import EntitlementResolver, utcnow
from src.platform.tenant_context import TenantContext, get_tenant_context

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/entitlements", tags=["entitlements"])


class EntitlementResponse(BaseModel):
    """One add-on verdict."""
    model_config = ConfigDict(populate_by_name=True)

    addon: str
    entitled: bool
    state: str
    valid_until: Optional[str] = Field(None, alias="validUntil")
    reason_code: str = Field(..., alias="reasonCode")
    days_remaining: int = Field(0, alias="daysRemaining")
    message: str = ""


class TenantEntitlementsResponse(BaseModel):
    """All add-ons for the tenant, one row per family."""
    model_config = ConfigDict(populate_by_name=True)

    tenant_id: str = Field(..., alias="tenantId")
    entitlements: Dict[str, EntitlementResponse]


class DependencyStatusResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    satisfied: bool
    missing_dependency: Optional[str] = Field(None, alias="missingDependency")
    dependency_state: Optional[str] = Field(None, alias="dependencyState")
    satisfied_by: Optional[str] = Field(None, alias="satisfiedBy")


class AddonEntitlementResponse(BaseModel):
    addon: str
    entitlement: EntitlementResponse
    dependencies: DependencyStatusResponse


class EmployeeLimitResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    allowed: bool
    current_count: int = Field(..., alias="currentCount")
    limit: int
    is_trialing: bool = Field(False, alias="isTrialing")
    exceeds: bool = False
    requires_upgrade: bool = Field(False, alias="requiresUpgrade")
    in_grace_period: bool = Field(False, alias="inGracePeriod")
    blocked: bool = False
    grace_until: Optional[str] = Field(None, alias="graceUntil")
    message: Optional[str] = None


def _lookup_failed(tenant_id: str, addon_code: str, error: Exception) -> EntitlementLookupError:
    logger.error(
        "Entitlement lookup failed",
        extra={"tenant_id": tenant_id, "addon_code": addon_code, "error": str(error)},
    )
    if isinstance(error, EntitlementLookupError):
        return error
    return EntitlementLookupError(tenant_id, addon_code, error)


@router.get("", response_model=TenantEntitlementsResponse, response_model_by_alias=True)
async def list_entitlements(
    tenant: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db_session),
):
    """All of the tenant's add-ons, country variants folded into their family."""
    try:
        verdicts = EntitlementResolver(db).get_all_entitlements(tenant.tenant_id)
    except (SQLAlchemyError, EntitlementLookupError) as e:
        raise _lookup_failed(tenant.tenant_id, "*", e) from e

    return TenantEntitlementsResponse(
        tenantId=tenant.tenant_id,
        entitlements={
            code: EntitlementResponse(**verdict.to_dict())
            for code, verdict in verdicts.items()
        },
    )


@router.get("/hr-access")
async def get_hr_access(
    tenant: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db_session),
):
    """Composite HR access: capability flags, employee limit, grace and read-only state."""
    try:
        access = HRAccessService(db).check_hr_access(tenant.tenant_id)
    except (SQLAlchemyError, EntitlementLookupError) as e:
        raise _lookup_failed(tenant.tenant_id, "hr", e) from e
    return access.to_dict()


@router.get(
    "/hr-access/employee-limit",
    response_model=EmployeeLimitResponse,
    response_model_by_alias=True,
)
async def get_employee_limit(
    tenant: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db_session),
):
    """Whether the tenant can add another employee under its current tier."""
    try:
        decision = EmployeeQuotaEnforcer(db).check(tenant.tenant_id, increases_count=True)
    except (SQLAlchemyError, EntitlementLookupError) as e:
        raise _lookup_failed(tenant.tenant_id, "employee-quota", e) from e
    return EmployeeLimitResponse(**decision.to_dict())


@router.get(
    "/{addon_code}",
    response_model=AddonEntitlementResponse,
    response_model_by_alias=True,
)
async def get_addon_entitlement(
    addon_code: str,
    tenant: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db_session),
):
    """Verdict for one add-on plus the status of its prerequisites."""
    now = utcnow()
    resolver = EntitlementResolver(db)
    try:
        verdict = resolver.resolve_strict(tenant.tenant_id, addon_code, now)
        dep_check = DependencyChecker(resolver).check_dependencies(
            tenant.tenant_id, addon_code, now=now, strict=True
        )
    except (SQLAlchemyError, EntitlementLookupError) as e:
        raise _lookup_failed(tenant.tenant_id, addon_code, e) from e

    return AddonEntitlementResponse(
        addon=verdict.addon_code,
        entitlement=EntitlementResponse(**verdict.to_dict()),
        dependencies=DependencyStatusResponse(**dep_check.to_dict()),
    )
