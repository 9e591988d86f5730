"""
Structured error classes for add-on entitlement enforcement.

Not being entitled is a normal verdict, not an exception. These classes
cover the cases that must leave the normal flow: infrastructure failures,
broken configuration, and the HTTP denials raised by route dependencies.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status


class EntitlementError(Exception):
    """Base exception for entitlement errors."""

    error_code = "ENTITLEMENT_ERROR"

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.error_code, "message": str(self)}


class EntitlementLookupError(EntitlementError):
    """
    The subscription record store could not be read.

    The live access gate fails closed on this; billing pages surface it as
    a 500 so an outage is not reported as "not installed".
    """

    error_code = "INTERNAL_ERROR"

    def __init__(self, tenant_id: str, addon_code: str, cause: Optional[BaseException] = None):
        self.tenant_id = tenant_id
        self.addon_code = addon_code
        self.cause = cause
        detail = f": {cause}" if cause else ""
        super().__init__(
            f"Failed to load add-on record '{addon_code}' for tenant {tenant_id}{detail}"
        )


class EntitlementConfigError(EntitlementError):
    """The add-on catalog configuration is malformed."""

    error_code = "ENTITLEMENT_CONFIG_ERROR"


class AddonAccessDeniedError(HTTPException):
    """
    403 raised by add-on route dependencies.

    ``payload`` is the stable deny body:
    {error, code, addon, dependency?, validUntil?, message, upgradeUrl}
    """

    def __init__(self, payload: Dict[str, Any]):
        self.payload = payload
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=payload)

    @property
    def code(self) -> str:
        return self.payload.get("code", "")

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.payload)


class EmployeeLimitExceededError(HTTPException):
    """403 raised when a write would break the tenant's employee ceiling."""

    def __init__(self, payload: Dict[str, Any]):
        self.payload = payload
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=payload)

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.payload)


class TenantContextMissingError(HTTPException):
    """401 raised when no tenant identity is attached to the request."""

    def __init__(self, message: str = "Tenant context required"):
        self.payload = {"error": "UNAUTHORIZED", "message": message}
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, detail=self.payload)

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.payload)
