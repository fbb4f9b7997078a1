"""
Tests for the distributed refresh lock.
"""
from datetime import timedelta

import pytest

from app.cache.lock import DistributedLock, LockToken
from app.cache.store import InMemoryStore, StoreUnavailable


class FloatClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class BrokenStore(InMemoryStore):
    """Store whose conditional commands fail like an unreachable Redis."""

    def set_if_absent(self, key, value, ttl_seconds):
        raise StoreUnavailable("connection refused")

    def delete_if_equals(self, key, expected):
        raise StoreUnavailable("connection refused")


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def lock(store, clock):
    return DistributedLock(store, clock=clock)


def test_acquire_returns_token(lock, store, clock, t0):
    token = lock.acquire("competition:1:lock", 60)
    assert isinstance(token, LockToken)
    assert token.lock_key == "competition:1:lock"
    assert token.expires_at == t0 + timedelta(seconds=60)
    assert store.get("competition:1:lock") == token.owner.encode("utf-8")


def test_acquire_does_not_wait_when_held(lock):
    first = lock.acquire("competition:1:lock", 60)
    assert first is not None
    assert lock.acquire("competition:1:lock", 60) is None


def test_locks_are_independent_per_key(lock):
    assert lock.acquire("competition:1:lock", 60) is not None
    assert lock.acquire("competition:2:lock", 60) is not None


def test_release_makes_lock_acquirable(lock):
    token = lock.acquire("competition:1:lock", 60)
    lock.release(token)
    assert lock.acquire("competition:1:lock", 60) is not None


def test_release_twice_is_harmless(lock):
    token = lock.acquire("competition:1:lock", 60)
    lock.release(token)
    lock.release(token)
    lock.release(None)


def test_release_after_expiry_is_harmless():
    ttl_clock = FloatClock()
    store = InMemoryStore(clock=ttl_clock)
    lock = DistributedLock(store)
    token = lock.acquire("competition:1:lock", 60)
    ttl_clock.now += 61
    lock.release(token)
    assert store.get("competition:1:lock") is None


def test_release_does_not_steal_reacquired_lock():
    ttl_clock = FloatClock()
    store = InMemoryStore(clock=ttl_clock)
    lock = DistributedLock(store)
    stale_token = lock.acquire("competition:1:lock", 60)
    ttl_clock.now += 61
    fresh_token = lock.acquire("competition:1:lock", 60)
    assert fresh_token is not None

    lock.release(stale_token)
    assert store.get("competition:1:lock") == fresh_token.owner.encode("utf-8")


def test_expired_lock_can_be_acquired_again():
    ttl_clock = FloatClock()
    lock = DistributedLock(InMemoryStore(clock=ttl_clock))
    assert lock.acquire("competition:1:lock", 60) is not None
    ttl_clock.now += 60
    assert lock.acquire("competition:1:lock", 60) is not None


def test_store_error_on_acquire_is_lock_unavailable():
    lock = DistributedLock(BrokenStore())
    assert lock.acquire("competition:1:lock", 60) is None


def test_store_error_on_release_is_swallowed(store):
    token = DistributedLock(store).acquire("competition:1:lock", 60)
    DistributedLock(BrokenStore()).release(token)

