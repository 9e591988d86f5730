"""
Tenant context seam.

Tenant resolution and isolation happen upstream (auth gateway or the
platform's tenant middleware), which attaches a TenantContext to
``request.state.tenant_context``. This module only defines that contract
and the accessors the entitlement dependencies use.
"""

import logging
from typing import Optional

from fastapi import Request

from src.entitlements.errors import TenantContextMissingError

logger = logging.getLogger(__name__)


class TenantContext:
    """
    Immutable tenant identity for one request.

    tenant_id is authoritative; it never comes from request bodies or query
    strings.
    """

    def __init__(
        self,
        tenant_id: str,
        user_id: Optional[str] = None,
        roles: Optional[list[str]] = None,
    ):
        if not tenant_id:
            raise ValueError("tenant_id cannot be empty")
        self.tenant_id = tenant_id
        self.user_id = user_id
        self.roles = roles or []

    def __repr__(self) -> str:
        return f"TenantContext(tenant_id={self.tenant_id}, user_id={self.user_id})"


def get_optional_tenant_context(request: Request) -> Optional[TenantContext]:
    """Return the request's TenantContext, or None when upstream did not attach one."""
    context = getattr(request.state, "tenant_context", None)
    if context is None or not getattr(context, "tenant_id", None):
        return None
    return context


def get_tenant_context(request: Request) -> TenantContext:
    """
    FastAPI dependency returning the request's TenantContext.

    Raises 401 when no tenant identity is attached.
    """
    context = get_optional_tenant_context(request)
    if context is None:
        logger.warning("Request without tenant context", extra={"path": request.url.path})
        raise TenantContextMissingError("Tenant context not found")
    return context
