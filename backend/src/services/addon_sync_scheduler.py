"""
Scheduler for the add-on expiry reconciliation job.

An explicit service object: nothing runs at import time. The owner (the
API lifespan or the standalone worker) calls start() and stop(). The clock
is injected so tests can drive the schedule with virtual time through
run_pending().

With several replicas, pass a RedisLeaderLock. The first replica to take
the lease becomes the leader and renews it on every cycle; the others skip
their cycles until the lease lapses (leader crashed) or is released (leader
stopped). The lease TTL must outlive one interval. Job writes are
compare-and-set, so a missing or unavailable lock costs duplicate work,
never wrong data.
"""

import logging
import threading
import uuid
from datetime import datetime, timedelta
from typing import Callable, Optional

import redis

from src.config import addon_settings
from src.entitlements.resolver import utcnow

logger = logging.getLogger(__name__)

# Compare-and-delete so a replica never releases a lock it no longer owns
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""

# Compare-and-expire: only the current holder extends the lease
_RENEW_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("expire", KEYS[1], ARGV[2])
end
return 0
"""


class NullLeaderLock:
    """Single-process deployments: always the leader."""

    def acquire(self) -> bool:
        return True

    def release(self) -> None:
        return None


class RedisLeaderLock:
    """
    Redis SET NX lease that elects one active scheduler across replicas.

    acquire() takes a free lease or renews the one this instance already
    holds. The TTL bounds how long a crashed leader blocks the others.
    """

    def __init__(self, client: "redis.Redis", key: str, ttl_seconds: int):
        self._client = client
        self._key = key
        self._ttl_seconds = ttl_seconds
        self._token = str(uuid.uuid4())

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    @classmethod
    def from_url(
        cls,
        redis_url: str,
        key: str = addon_settings.ADDON_EXPIRY_LOCK_KEY,
        ttl_seconds: int = addon_settings.ADDON_EXPIRY_LOCK_TTL_SECONDS,
    ) -> "RedisLeaderLock":
        client = redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
        )
        return cls(client, key, ttl_seconds)

    def acquire(self) -> bool:
        try:
            if self._client.set(self._key, self._token, nx=True, ex=self._ttl_seconds):
                logger.info("Acquired add-on expiry leader lease", extra={"lock_key": self._key})
                return True
            renewed = self._client.eval(
                _RENEW_SCRIPT, 1, self._key, self._token, self._ttl_seconds
            )
            return renewed == 1
        except redis.RedisError as e:
            # CAS writes keep concurrent sweeps correct, so run rather than stall
            logger.warning(
                "Leader lock unavailable, running sweep without it",
                extra={"lock_key": self._key, "error": str(e)},
            )
            return True

    def release(self) -> None:
        try:
            self._client.eval(_RELEASE_SCRIPT, 1, self._key, self._token)
        except redis.RedisError as e:
            logger.warning(
                "Failed to release leader lock, it will expire on its own",
                extra={"lock_key": self._key, "error": str(e)},
            )


def build_leader_lock(
    redis_url: str = addon_settings.REDIS_URL,
    interval_seconds: int = addon_settings.ADDON_EXPIRY_SYNC_INTERVAL_SECONDS,
    ttl_seconds: int = addon_settings.ADDON_EXPIRY_LOCK_TTL_SECONDS,
):
    """RedisLeaderLock when REDIS_URL is configured, else NullLeaderLock."""
    if not redis_url:
        logger.info("REDIS_URL not configured - add-on expiry sweep runs without leader election")
        return NullLeaderLock()
    if ttl_seconds <= interval_seconds:
        # A lease shorter than the interval lapses between the leader's cycles
        logger.warning(
            "Leader lease TTL does not outlive the sync interval, extending it",
            extra={"ttl_seconds": ttl_seconds, "interval_seconds": interval_seconds},
        )
        ttl_seconds = interval_seconds + addon_settings.ADDON_EXPIRY_LOCK_RENEW_SLACK_SECONDS
    return RedisLeaderLock.from_url(redis_url, ttl_seconds=ttl_seconds)


class AddonSyncScheduler:
    """
    Runs ``job`` after an initial delay and then on a fixed interval.

    ``job`` is any zero-argument callable; its failures are logged and the
    schedule continues.
    """

    def __init__(
        self,
        job: Callable[[], object],
        clock: Callable[[], datetime] = utcnow,
        interval_seconds: int = addon_settings.ADDON_EXPIRY_SYNC_INTERVAL_SECONDS,
        initial_delay_seconds: int = addon_settings.ADDON_EXPIRY_SYNC_INITIAL_DELAY_SECONDS,
        lock=None,
        poll_seconds: float = 1.0,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._job = job
        self._clock = clock
        self._interval = timedelta(seconds=interval_seconds)
        self._initial_delay = timedelta(seconds=max(0, initial_delay_seconds))
        self._lock = lock or NullLeaderLock()
        self._poll_seconds = poll_seconds

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._state_lock = threading.Lock()
        self._next_run_at: Optional[datetime] = None
        self.runs = 0

    @property
    def next_run_at(self) -> Optional[datetime]:
        return self._next_run_at

    @property
    def is_running(self) -> bool:
        return self._next_run_at is not None

    def start(self, background: bool = True) -> None:
        """
        Arm the schedule; with ``background`` also start the polling thread.

        Calling start() on a running scheduler is a no-op.
        """
        with self._state_lock:
            if self._next_run_at is not None:
                return
            self._next_run_at = self._clock() + self._initial_delay
            self._stop_event.clear()
            if background:
                self._thread = threading.Thread(
                    target=self._loop,
                    name="addon-expiry-scheduler",
                    daemon=True,
                )
                self._thread.start()

        logger.info(
            "Add-on expiry scheduler started",
            extra={
                "interval_seconds": int(self._interval.total_seconds()),
                "first_run_at": self._next_run_at.isoformat(),
            },
        )

    def stop(self, timeout: float = 5.0) -> None:
        with self._state_lock:
            self._stop_event.set()
            thread = self._thread
            self._thread = None
            self._next_run_at = None
        if thread is not None:
            thread.join(timeout=timeout)
        # Hand leadership to another replica without waiting for the TTL
        self._lock.release()
        logger.info("Add-on expiry scheduler stopped")

    def run_pending(self) -> bool:
        """Run the job if it is due; returns True when a cycle ran."""
        with self._state_lock:
            if self._next_run_at is None:
                return False
            now = self._clock()
            if now < self._next_run_at:
                return False
            self._next_run_at = now + self._interval

        return self.run_once()

    def run_once(self) -> bool:
        """
        Run one cycle now, if this instance holds (or can take) the lease.

        The lease is kept after the cycle; stop() releases it.
        """
        if not self._lock.acquire():
            logger.info("Another instance holds the add-on expiry lock, skipping cycle")
            return False
        try:
            self._job()
            self.runs += 1
            return True
        except Exception:
            logger.error("Add-on expiry cycle failed", exc_info=True)
            return False

    def _loop(self) -> None:
        while not self._stop_event.wait(self._poll_seconds):
            self.run_pending()
