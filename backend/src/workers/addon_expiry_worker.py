"""
Add-on Expiry Worker.

Standalone process that runs the add-on expiry reconciliation on a fixed
interval, with a short initial delay after start-up. Use it when the API
processes run with ADDON_EXPIRY_SYNC_ENABLED=false.

Run as: python -m src.workers.addon_expiry_worker

Configuration:
- ADDON_EXPIRY_SYNC_INTERVAL_SECONDS: Seconds between cycles (default: 3600)
- ADDON_EXPIRY_SYNC_INITIAL_DELAY_SECONDS: Delay before the first cycle (default: 10)
- ADDON_EXPIRY_BATCH_SIZE: Records per query batch (default: 500)
- REDIS_URL: Enables leader election across replicas
"""

import logging
import signal
import threading

from src.config import addon_settings
from src.database.session import get_db_session_sync
from src.jobs.reconcile_addon_expiry import AddonExpiryReconciliationJob, ReconciliationStats
from src.services.addon_sync_scheduler import AddonSyncScheduler, build_leader_lock

logger = logging.getLogger(__name__)


def run_cycle() -> ReconciliationStats:
    """Run one reconciliation cycle with a fresh session."""
    db_gen = get_db_session_sync()
    db = next(db_gen)
    try:
        job = AddonExpiryReconciliationJob(db, batch_size=addon_settings.ADDON_EXPIRY_BATCH_SIZE)
        return job.run()
    finally:
        db.close()


def build_scheduler() -> AddonSyncScheduler:
    return AddonSyncScheduler(
        job=run_cycle,
        interval_seconds=addon_settings.ADDON_EXPIRY_SYNC_INTERVAL_SECONDS,
        initial_delay_seconds=addon_settings.ADDON_EXPIRY_SYNC_INITIAL_DELAY_SECONDS,
        lock=build_leader_lock(),
    )


def main():
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    shutdown = threading.Event()

    def _handle_signal(signum, frame):
        logger.info("Shutdown signal received", extra={"signal": signum})
        shutdown.set()

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)

    scheduler = build_scheduler()
    logger.info(
        "Add-on expiry worker started",
        extra={
            "interval_seconds": addon_settings.ADDON_EXPIRY_SYNC_INTERVAL_SECONDS,
            "batch_size": addon_settings.ADDON_EXPIRY_BATCH_SIZE,
        },
    )
    scheduler.start()
    while not shutdown.wait(1.0):
        pass
    scheduler.stop()
    logger.info("Add-on expiry worker stopped")


if __name__ == "__main__":
    main()
