"""
Environment-driven settings for add-on entitlement enforcement.

Every value has a production default; override per deployment through the
environment. Durations are whole days unless the name says otherwise.
"""

import os


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# Post-lapse grace window after paid_until (upper bound, set once per lapse)
ADDON_GRACE_PERIOD_DAYS = int(os.getenv("ADDON_GRACE_PERIOD_DAYS", "3"))

# Payroll trial ceiling (trial length is set by billing through trial_ends_at)
PAYROLL_TRIAL_EMPLOYEE_LIMIT = int(os.getenv("PAYROLL_TRIAL_EMPLOYEE_LIMIT", "5"))

# Over-quota grace window for the employee ceiling
EMPLOYEE_QUOTA_GRACE_DAYS = int(os.getenv("EMPLOYEE_QUOTA_GRACE_DAYS", "7"))

# Add-on families used by the HR composite checks
PAYROLL_BASE_CODE = os.getenv("PAYROLL_BASE_CODE", "payroll")
HRMS_BASE_CODE = os.getenv("HRMS_BASE_CODE", "hrms")

# Expiry sweep scheduling
ADDON_EXPIRY_SYNC_ENABLED = _env_bool("ADDON_EXPIRY_SYNC_ENABLED", "true")
ADDON_EXPIRY_SYNC_INTERVAL_SECONDS = int(os.getenv("ADDON_EXPIRY_SYNC_INTERVAL_SECONDS", "3600"))
ADDON_EXPIRY_SYNC_INITIAL_DELAY_SECONDS = int(os.getenv("ADDON_EXPIRY_SYNC_INITIAL_DELAY_SECONDS", "10"))
ADDON_EXPIRY_BATCH_SIZE = int(os.getenv("ADDON_EXPIRY_BATCH_SIZE", "500"))

# Leader lease so only one replica runs the sweep; empty REDIS_URL disables it.
# The leader renews the lease each cycle, so the TTL must exceed the interval.
REDIS_URL = os.getenv("REDIS_URL", "")
ADDON_EXPIRY_LOCK_KEY = os.getenv("ADDON_EXPIRY_LOCK_KEY", "addons:expiry-sync:leader")
ADDON_EXPIRY_LOCK_RENEW_SLACK_SECONDS = int(os.getenv("ADDON_EXPIRY_LOCK_RENEW_SLACK_SECONDS", "300"))
ADDON_EXPIRY_LOCK_TTL_SECONDS = int(os.getenv(
    "ADDON_EXPIRY_LOCK_TTL_SECONDS",
    str(ADDON_EXPIRY_SYNC_INTERVAL_SECONDS + ADDON_EXPIRY_LOCK_RENEW_SLACK_SECONDS),
))

# Overrides the catalog's upgrade_url when set
ADDON_UPGRADE_URL = os.getenv("ADDON_UPGRADE_URL", "")
