"""
Add-on expiry reconciliation job.

Advances persisted billing_status for installed add-ons once their trial,
paid period or grace window has passed, so listings, invoicing and other
readers that do not recompute verdicts eventually see the right state.
Live access decisions never depend on this job; they recompute from the
timestamps on every request.

Transitions (installed records, install_status active or trial):
- trialing      -> expired        once past trial_ends_at
- active        -> grace_period   once past paid_until (grace window opened
                                  at paid_until + ADDON_GRACE_PERIOD_DAYS)
- active        -> expired        when already past that grace window
- grace_period  -> expired        once past grace_until
- grace_period  -> grace_period   grace_until clamped to paid_until +
                                  ADDON_GRACE_PERIOD_DAYS when stored later

Every write is a compare-and-set on (billing_status, grace_until), so
re-running the job, or running it on several replicas at once, is safe.

Usage:
    python -m src.workers.addon_expiry_worker
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Tuple, Union

from sqlalchemy.orm import Session

from src.config import addon_settings
from src.entitlements.resolver import as_utc, effective_grace_end, utcnow
from src.models.tenant_addon import TenantAddon, BillingStatus
from src.repositories.tenant_addon_repository import TenantAddonRepository

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationStats:
    """Track reconciliation run statistics."""

    processed: int = 0
    updated: int = 0
    trials_expired: int = 0
    grace_started: int = 0
    grace_expired: int = 0
    grace_clamped: int = 0
    skipped: int = 0
    errors: int = 0
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        duration = (datetime.now(timezone.utc) - self.start_time).total_seconds()
        return {
            "processed": self.processed,
            "updated": self.updated,
            "trials_expired": self.trials_expired,
            "grace_started": self.grace_started,
            "grace_expired": self.grace_expired,
            "grace_clamped": self.grace_clamped,
            "skipped": self.skipped,
            "errors": self.errors,
            "duration_seconds": round(duration, 2),
        }


@dataclass(frozen=True)
class RecordSnapshot:
    """The TenantAddon columns the sweep reads, captured before any write."""

    id: str
    tenant_id: str
    addon_code: str
    billing_status: BillingStatus
    trial_ends_at: Optional[datetime]
    paid_until: Optional[datetime]
    grace_until: Optional[datetime]

    @classmethod
    def from_record(cls, record: TenantAddon) -> "RecordSnapshot":
        return cls(
            id=record.id,
            tenant_id=record.tenant_id,
            addon_code=record.addon_code,
            billing_status=BillingStatus(record.billing_status),
            trial_ends_at=record.trial_ends_at,
            paid_until=record.paid_until,
            grace_until=record.grace_until,
        )


# (new_status, new_grace_until, stats counter to bump)
Transition = Tuple[BillingStatus, Optional[datetime], str]


def plan_transition(
    record: Union[TenantAddon, RecordSnapshot],
    now: datetime,
    grace_period_days: int = addon_settings.ADDON_GRACE_PERIOD_DAYS,
) -> Optional[Transition]:
    """
    Decide the status change ``record`` needs at ``now``, if any.

    Pure: returns None for records that are already correct. A stored grace
    end beyond paid_until + grace_period_days is clamped the same way the
    resolver clamps it, and the clamped value is what gets written.
    """
    billing = BillingStatus(record.billing_status)
    trial_end = as_utc(record.trial_ends_at)
    paid_until = as_utc(record.paid_until)
    stored_grace = as_utc(record.grace_until)
    grace_until = effective_grace_end(stored_grace, paid_until, grace_period_days)

    if billing == BillingStatus.TRIALING:
        if trial_end is not None and now >= trial_end:
            return BillingStatus.EXPIRED, stored_grace, "trials_expired"
        return None

    if billing == BillingStatus.ACTIVE:
        if paid_until is None or now <= paid_until:
            return None
        # A grace end from an earlier lapse (before this paid_until) does not count
        if grace_until is None or grace_until < paid_until:
            grace_until = paid_until + timedelta(days=grace_period_days)
        if now <= grace_until:
            return BillingStatus.GRACE_PERIOD, grace_until, "grace_started"
        return BillingStatus.EXPIRED, grace_until, "grace_expired"

    if billing == BillingStatus.GRACE_PERIOD:
        if grace_until is None:
            if paid_until is None:
                return None
            grace_until = paid_until + timedelta(days=grace_period_days)
            if now <= grace_until:
                return BillingStatus.GRACE_PERIOD, grace_until, "grace_started"
        if now > grace_until:
            return BillingStatus.EXPIRED, grace_until, "grace_expired"
        if stored_grace is not None and grace_until < stored_grace:
            return BillingStatus.GRACE_PERIOD, grace_until, "grace_clamped"
        return None

    return None


class AddonExpiryReconciliationJob:
    """
    One sweep over all installed add-ons.

    Per-record failures are rolled back, counted and logged; the sweep
    always runs to the end.
    """

    def __init__(
        self,
        db_session: Session,
        clock: Callable[[], datetime] = utcnow,
        batch_size: int = addon_settings.ADDON_EXPIRY_BATCH_SIZE,
        grace_period_days: int = addon_settings.ADDON_GRACE_PERIOD_DAYS,
    ):
        self.db = db_session
        self.clock = clock
        self.batch_size = batch_size
        self.grace_period_days = grace_period_days
        self.repository = TenantAddonRepository(db_session)

    def run(self) -> ReconciliationStats:
        stats = ReconciliationStats()
        now = as_utc(self.clock())

        logger.info("Starting add-on expiry reconciliation", extra={"now": now.isoformat()})

        for batch in self.repository.iter_installed(self.batch_size):
            # Each per-record commit expires the session, so read the batch first
            for snapshot in [RecordSnapshot.from_record(record) for record in batch]:
                stats.processed += 1
                self._reconcile_record(snapshot, now, stats)

        result = stats.to_dict()
        if stats.errors:
            logger.warning("Add-on expiry reconciliation finished with errors", extra=result)
        else:
            logger.info("Add-on expiry reconciliation complete", extra=result)
        return stats

    def _reconcile_record(self, record: RecordSnapshot, now: datetime, stats: ReconciliationStats) -> None:
        try:
            transition = plan_transition(record, now, self.grace_period_days)
            if transition is None:
                return

            new_status, new_grace_until, counter = transition
            old_status = BillingStatus(record.billing_status)

            applied = self.repository.compare_and_set_billing(
                record_id=record.id,
                expected_status=old_status,
                expected_grace_until=record.grace_until,
                new_status=new_status,
                new_grace_until=new_grace_until,
            )
            self.db.commit()

            if not applied:
                stats.skipped += 1
                logger.info(
                    "Add-on record changed concurrently, skipping",
                    extra={"record_id": record.id, "tenant_id": record.tenant_id, "addon_code": record.addon_code},
                )
                return

            stats.updated += 1
            setattr(stats, counter, getattr(stats, counter) + 1)
            logger.info(
                "Advanced add-on billing status",
                extra={
                    "record_id": record.id,
                    "tenant_id": record.tenant_id,
                    "addon_code": record.addon_code,
                    "from_status": old_status.value,
                    "to_status": new_status.value,
                    "grace_until": new_grace_until.isoformat() if new_grace_until else None,
                },
            )

        except Exception as e:
            self.db.rollback()
            stats.errors += 1
            logger.error(
                "Failed to reconcile add-on record",
                extra={
                    "record_id": record.id,
                    "tenant_id": record.tenant_id,
                    "addon_code": record.addon_code,
                    "error": str(e),
                },
                exc_info=True,
            )
