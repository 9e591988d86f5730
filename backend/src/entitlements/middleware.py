"""
FastAPI enforcement for add-on access.

Provides route dependencies:
- require_addon: generic add-on gate
- require_employee_access / require_hrms_suite_access / require_payroll_access:
  HR composite gates
- require_employee_quota: employee ceiling for employee writes

and register_entitlement_exception_handlers, which renders the denials with
their stable JSON bodies instead of FastAPI's {"detail": ...} wrapper.

Status codes:
- 401: no tenant context on the request
- 403: every entitlement, dependency and quota denial
Route gates fail closed: when the entitlement store cannot be read the
request is denied as not installed. Only the /api/entitlements billing
routes turn lookup failures into a 500.

Usage:
    @router.post(
        "/payroll/runs",
        dependencies=[Depends(require_addon("payroll", allow_grace_for_reads=True))],
    )
    async def create_payroll_run(...):
        ...
"""

import logging
from typing import Callable, Iterable, NoReturn, Optional

from fastapi import Depends, FastAPI, Request, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.config import addon_catalog, addon_settings
from src.database.session import get_db_session
from src.entitlements.audit import AddonAccessDenialEvent, get_audit_logger
from src.entitlements.errors import (
    AddonAccessDeniedError,
    EmployeeLimitExceededError,
    EntitlementLookupError,
    TenantContextMissingError,
)
from src.entitlements.gate import AccessGate, GatePolicy, ReadOnlyFallback
from src.entitlements.hr_access import HRAccessService
from src.entitlements.models import AccessDecision
from src.entitlements.quota import EmployeeQuotaEnforcer, QuotaDecision
from src.entitlements.resolver import EntitlementResolver
from src.platform.tenant_context import TenantContext, get_tenant_context

logger = logging.getLogger(__name__)

READ_ONLY_HEADER = "X-Addon-Read-Only"


def _deny(decision: AccessDecision, request: Request, tenant: TenantContext) -> NoReturn:
    """Audit the denial and raise the 403."""
    payload = decision.to_error_response(addon_catalog.get_addon_catalog_loader().upgrade_url)
    get_audit_logger().log_denial(AddonAccessDenialEvent(
        tenant_id=tenant.tenant_id,
        user_id=tenant.user_id,
        addon_code=decision.addon_code,
        reason_code=payload["code"],
        dependency=decision.dependency,
        endpoint=request.url.path,
        method=request.method,
        message=payload["message"],
    ))
    raise AddonAccessDeniedError(payload)


def _enforce(
    decision: AccessDecision,
    request: Request,
    response: Response,
    tenant: TenantContext,
) -> AccessDecision:
    """Raise for denials; record allowed decisions on the request."""
    if not decision.allowed:
        _deny(decision, request, tenant)

    request.state.addon_access = decision
    request.state.addon_entitlement = decision.verdict
    request.state.addon_read_only = decision.read_only
    if decision.read_only:
        response.headers[READ_ONLY_HEADER] = "true"
    return decision


def _fail_closed(tenant: TenantContext, addon_code: str, error: Exception) -> AccessDecision:
    logger.error(
        "Add-on lookup failed, denying access",
        extra={"tenant_id": tenant.tenant_id, "addon_code": addon_code, "error": str(error)},
        exc_info=True,
    )
    return AccessDecision.lookup_failed(addon_code)


def require_addon(
    addon_code: str,
    *,
    allow_grace_for_reads: bool = False,
    dependencies: Iterable[str] = (),
    enforce_dependencies: bool = True,
    read_only_fallback: Optional[ReadOnlyFallback] = None,
) -> Callable[..., AccessDecision]:
    """
    Build a dependency that gates a route on ``addon_code``.

    Args:
        addon_code: Add-on (optionally with country variant) the route needs
        allow_grace_for_reads: During grace, allow GET/HEAD and deny writes
        dependencies: Prerequisites on top of the catalog's list
        enforce_dependencies: Check prerequisites at all
        read_only_fallback: Hook that serves reads after the add-on lapsed
    """
    policy = GatePolicy(
        allow_grace_for_reads=allow_grace_for_reads,
        dependencies=tuple(dependencies),
        enforce_dependencies=enforce_dependencies,
        read_only_fallback=read_only_fallback,
    )

    def dependency(
        request: Request,
        response: Response,
        tenant: TenantContext = Depends(get_tenant_context),
        db: Session = Depends(get_db_session),
    ) -> AccessDecision:
        try:
            gate = AccessGate(EntitlementResolver(db))
            decision = gate.evaluate(tenant.tenant_id, addon_code, request.method, policy)
        except (SQLAlchemyError, EntitlementLookupError) as e:
            decision = _fail_closed(tenant, addon_code, e)
        return _enforce(decision, request, response, tenant)

    return dependency


def _hr_dependency(decide: str, addon_code: str) -> Callable[..., AccessDecision]:
    def dependency(
        request: Request,
        response: Response,
        tenant: TenantContext = Depends(get_tenant_context),
        db: Session = Depends(get_db_session),
    ) -> AccessDecision:
        try:
            service = HRAccessService(db)
            decision = getattr(service, decide)(tenant.tenant_id, request.method)
        except (SQLAlchemyError, EntitlementLookupError) as e:
            decision = _fail_closed(tenant, addon_code, e)
        return _enforce(decision, request, response, tenant)

    return dependency


def require_employee_access() -> Callable[..., AccessDecision]:
    """Employee directory: payroll or HRMS, read-only after payroll lapses."""
    return _hr_dependency("decide_employee_access", addon_settings.PAYROLL_BASE_CODE)


def require_hrms_suite_access() -> Callable[..., AccessDecision]:
    """Attendance, leave and timesheets: any HRMS variant."""
    return _hr_dependency("decide_hrms_suite_access", addon_settings.HRMS_BASE_CODE)


def require_payroll_access() -> Callable[..., AccessDecision]:
    """Payroll processing: any payroll variant plus its prerequisites."""
    return _hr_dependency("decide_payroll_access", addon_settings.PAYROLL_BASE_CODE)


def require_employee_quota(increases_count: bool = True) -> Callable[..., QuotaDecision]:
    """
    Block employee writes that break the tenant's ceiling.

    Pass increases_count=False for edits that do not add employees; those
    stay allowed during the over-quota grace window.
    """

    def dependency(
        request: Request,
        tenant: TenantContext = Depends(get_tenant_context),
        db: Session = Depends(get_db_session),
    ) -> QuotaDecision:
        try:
            decision = EmployeeQuotaEnforcer(db).check(tenant.tenant_id, increases_count=increases_count)
        except (SQLAlchemyError, EntitlementLookupError) as e:
            _deny(_fail_closed(tenant, addon_settings.PAYROLL_BASE_CODE, e), request, tenant)

        if not decision.allowed:
            logger.info(
                "Employee quota denied write",
                extra={
                    "tenant_id": tenant.tenant_id,
                    "current_count": decision.current_count,
                    "limit": decision.limit,
                    "in_grace": decision.in_grace,
                },
            )
            raise EmployeeLimitExceededError({
                "error": "EMPLOYEE_LIMIT_EXCEEDED",
                **decision.to_dict(),
                "upgradeUrl": addon_catalog.get_addon_catalog_loader().upgrade_url,
            })
        return decision

    return dependency


def register_entitlement_exception_handlers(app: FastAPI) -> None:
    """Render entitlement errors with their own JSON bodies."""

    @app.exception_handler(AddonAccessDeniedError)
    async def _addon_denied(request: Request, exc: AddonAccessDeniedError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(EmployeeLimitExceededError)
    async def _employee_limit(request: Request, exc: EmployeeLimitExceededError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(TenantContextMissingError)
    async def _tenant_missing(request: Request, exc: TenantContextMissingError):
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(EntitlementLookupError)
    async def _lookup_error(request: Request, exc: EntitlementLookupError):
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "INTERNAL_ERROR", "message": "Failed to verify add-on access"},
        )
