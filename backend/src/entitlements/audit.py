"""
Audit logging for add-on access denials.

Every 403 produced by the add-on gate is written to the dedicated
``entitlements.audit`` logger with tenant, add-on, reason code and the
request endpoint. Repeated denials for the same tenant/add-on/code are
collapsed inside a short window so a polling client cannot flood the log.
"""

import logging
import uuid
from dataclasses import dataclass, asdict, field
from datetime import datetime, timezone
from threading import Lock
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

audit_logger = logging.getLogger("entitlements.audit")


@dataclass
class AddonAccessDenialEvent:
    """One denied add-on request."""

    tenant_id: str
    addon_code: str
    reason_code: str
    user_id: Optional[str] = None
    dependency: Optional[str] = None
    endpoint: Optional[str] = None
    method: Optional[str] = None
    message: Optional[str] = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class AddonAuditLogger:
    """
    Writes denial events to the audit logger.

    Usage:
        get_audit_logger().log_denial(AddonAccessDenialEvent(
            tenant_id="tenant_123",
            addon_code="payroll",
            reason_code="ADDON_DEPENDENCY_MISSING",
            dependency="hrms",
        ))
    """

    def __init__(self, aggregation_window_seconds: int = 60):
        self._aggregation_window_seconds = aggregation_window_seconds
        self._recent: Dict[str, float] = {}
        self._lock = Lock()

    def log_denial(self, event: AddonAccessDenialEvent) -> bool:
        """Log ``event``; returns False when it was collapsed into a recent one."""
        key = f"{event.tenant_id}:{event.addon_code}:{event.reason_code}"
        if not self._should_log(key):
            return False

        audit_logger.warning(
            "addon_access_denied",
            extra={
                "event_type": "addon_access_denied",
                "audit_data": event.to_dict(),
            },
        )
        logger.info(
            f"Add-on access denied: {event.addon_code} for tenant {event.tenant_id}",
            extra={
                "tenant_id": event.tenant_id,
                "addon_code": event.addon_code,
                "reason_code": event.reason_code,
                "dependency": event.dependency,
            },
        )
        return True

    def _should_log(self, key: str) -> bool:
        now = datetime.now(timezone.utc).timestamp()
        with self._lock:
            cutoff = now - self._aggregation_window_seconds
            self._recent = {k: ts for k, ts in self._recent.items() if ts > cutoff}
            if key in self._recent:
                return False
            self._recent[key] = now
            return True


_audit_logger_instance: Optional[AddonAuditLogger] = None
_audit_logger_lock = Lock()


def get_audit_logger() -> AddonAuditLogger:
    """Return the process-wide audit logger."""
    global _audit_logger_instance
    if _audit_logger_instance is None:
        with _audit_logger_lock:
            if _audit_logger_instance is None:
                _audit_logger_instance = AddonAuditLogger()
    return _audit_logger_instance


def reset_audit_logger() -> None:
    """Drop the singleton (for tests only)."""
    global _audit_logger_instance
    _audit_logger_instance = None
