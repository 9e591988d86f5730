"""
Tests for the add-on expiry scheduler and its leader lock.

The scheduler is driven with a fake clock through run_pending(); only one
test starts the real background thread.
"""

import threading
from datetime import timedelta
from unittest.mock import Mock

import pytest
import redis

from src.services.addon_sync_scheduler import (
    AddonSyncScheduler,
    NullLeaderLock,
    RedisLeaderLock,
    build_leader_lock,
)


class FakeClock:
    def __init__(self, start):
        self.current = start

    def __call__(self):
        return self.current

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)


@pytest.fixture
def clock(now):
    return FakeClock(now)


@pytest.fixture
def job():
    return Mock(return_value=None)


def _scheduler(job, clock, **kwargs):
    options = {"interval_seconds": 3600, "initial_delay_seconds": 10}
    options.update(kwargs)
    return AddonSyncScheduler(job=job, clock=clock, **options)


class TestSchedule:

    def test_nothing_runs_before_start(self, job, clock):
        scheduler = _scheduler(job, clock)

        assert scheduler.is_running is False
        assert scheduler.run_pending() is False
        job.assert_not_called()

    def test_initial_delay(self, job, clock, now):
        scheduler = _scheduler(job, clock)
        scheduler.start(background=False)

        assert scheduler.next_run_at == now + timedelta(seconds=10)
        clock.advance(seconds=9)
        assert scheduler.run_pending() is False

        clock.advance(seconds=1)
        assert scheduler.run_pending() is True
        job.assert_called_once()

    def test_fixed_interval(self, job, clock):
        scheduler = _scheduler(job, clock, initial_delay_seconds=0)
        scheduler.start(background=False)

        assert scheduler.run_pending() is True
        clock.advance(minutes=30)
        assert scheduler.run_pending() is False
        clock.advance(minutes=30)
        assert scheduler.run_pending() is True

        assert job.call_count == 2
        assert scheduler.runs == 2

    def test_job_failure_keeps_schedule(self, clock):
        failing = Mock(side_effect=RuntimeError("database unavailable"))
        scheduler = _scheduler(failing, clock, initial_delay_seconds=0)
        scheduler.start(background=False)

        assert scheduler.run_pending() is False
        assert scheduler.runs == 0
        assert scheduler.is_running is True

        clock.advance(hours=1)
        scheduler.run_pending()
        assert failing.call_count == 2

    def test_start_twice_is_noop(self, job, clock, now):
        scheduler = _scheduler(job, clock)
        scheduler.start(background=False)
        clock.advance(seconds=5)
        scheduler.start(background=False)

        assert scheduler.next_run_at == now + timedelta(seconds=10)

    def test_stop_disarms(self, job, clock):
        scheduler = _scheduler(job, clock, initial_delay_seconds=0)
        scheduler.start(background=False)
        scheduler.stop()

        assert scheduler.is_running is False
        assert scheduler.run_pending() is False
        job.assert_not_called()

    def test_invalid_interval(self, job, clock):
        with pytest.raises(ValueError):
            _scheduler(job, clock, interval_seconds=0)

    def test_background_thread_runs_job(self):
        ran = threading.Event()
        scheduler = AddonSyncScheduler(
            job=ran.set,
            interval_seconds=3600,
            initial_delay_seconds=0,
            poll_seconds=0.01,
        )

        scheduler.start()
        try:
            assert ran.wait(timeout=2.0)
        finally:
            scheduler.stop()


class FakeRedis:
    """SET NX / GET / EXPIRE / DEL over a dict, with expiry on the fake clock."""

    def __init__(self, clock):
        self._clock = clock
        self._values = {}

    def _live(self, key):
        entry = self._values.get(key)
        if entry is None or entry[1] <= self._clock():
            self._values.pop(key, None)
            return None
        return entry[0]

    def set(self, key, value, nx=False, ex=None):
        if nx and self._live(key) is not None:
            return None
        self._values[key] = (value, self._clock() + timedelta(seconds=ex))
        return True

    def eval(self, script, numkeys, key, token, *args):
        if self._live(key) != token:
            return 0
        if "expire" in script:
            self._values[key] = (token, self._clock() + timedelta(seconds=int(args[0])))
        else:
            del self._values[key]
        return 1


class TestLeaderLock:

    def test_lock_held_elsewhere_skips_cycle(self, job, clock):
        lock = Mock()
        lock.acquire.return_value = False
        scheduler = _scheduler(job, clock, initial_delay_seconds=0, lock=lock)
        scheduler.start(background=False)

        assert scheduler.run_pending() is False
        job.assert_not_called()
        lock.release.assert_not_called()

    def test_lease_kept_after_cycle_and_released_on_stop(self, job, clock):
        lock = Mock()
        lock.acquire.return_value = True
        scheduler = _scheduler(job, clock, lock=lock)

        assert scheduler.run_once() is True
        lock.release.assert_not_called()

        scheduler.stop()
        lock.release.assert_called_once()

    def test_one_replica_runs_per_interval(self, clock):
        client = FakeRedis(clock)
        runs = []

        def _replica(name, delay):
            lock = RedisLeaderLock(client, "addons:expiry-sync:leader", 3600 + 300)
            return _scheduler(
                lambda: runs.append(name), clock,
                initial_delay_seconds=delay, lock=lock,
            )

        first = _replica("a", 0)
        second = _replica("b", 1800)
        first.start(background=False)
        second.start(background=False)

        for _ in range(3 * 60):
            first.run_pending()
            second.run_pending()
            clock.advance(minutes=1)

        assert runs == ["a", "a", "a"]

        first.stop()
        for _ in range(60):
            first.run_pending()
            second.run_pending()
            clock.advance(minutes=1)

        assert runs == ["a", "a", "a", "b"]

    def test_crashed_leader_lease_lapses(self, clock):
        client = FakeRedis(clock)
        leader = RedisLeaderLock(client, "key", 600)
        follower = RedisLeaderLock(client, "key", 600)

        assert leader.acquire() is True
        assert follower.acquire() is False

        clock.advance(seconds=601)
        assert follower.acquire() is True
        assert leader.acquire() is False

    def test_leader_renews_its_own_lease(self, clock):
        client = FakeRedis(clock)
        leader = RedisLeaderLock(client, "key", 600)
        follower = RedisLeaderLock(client, "key", 600)

        assert leader.acquire() is True
        clock.advance(seconds=500)
        assert leader.acquire() is True
        clock.advance(seconds=500)

        assert follower.acquire() is False

    def test_redis_lock_uses_set_nx(self):
        client = Mock()
        client.set.return_value = True
        lock = RedisLeaderLock(client, "addons:expiry-sync:leader", 300)

        assert lock.acquire() is True
        args, kwargs = client.set.call_args
        assert args[0] == "addons:expiry-sync:leader"
        assert kwargs == {"nx": True, "ex": 300}
        client.eval.assert_not_called()

    def test_redis_lock_not_acquired(self):
        client = Mock()
        client.set.return_value = None
        client.eval.return_value = 0

        assert RedisLeaderLock(client, "key", 300).acquire() is False

    def test_redis_unavailable_runs_anyway(self):
        client = Mock()
        client.set.side_effect = redis.ConnectionError("connection refused")

        assert RedisLeaderLock(client, "key", 300).acquire() is True

    def test_release_only_own_token(self):
        client = Mock()
        lock = RedisLeaderLock(client, "key", 300)

        lock.release()

        args, _ = client.eval.call_args
        assert args[1:] == (1, "key", lock._token)

    def test_release_tolerates_redis_errors(self):
        client = Mock()
        client.eval.side_effect = redis.TimeoutError("timeout")

        RedisLeaderLock(client, "key", 300).release()

    def test_build_without_redis_url(self):
        assert isinstance(build_leader_lock(""), NullLeaderLock)

    def test_build_extends_short_ttl(self):
        lock = build_leader_lock("redis://localhost:6379/0", interval_seconds=3600, ttl_seconds=300)

        assert isinstance(lock, RedisLeaderLock)
        assert lock.ttl_seconds > 3600
