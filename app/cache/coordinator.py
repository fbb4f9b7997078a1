"""
Stale-while-revalidate coordination across processes.

The shared store holds the value, its timestamp and a refresh lock for every
key. Whichever process wins the lock runs the producer on a background
thread; everybody else keeps serving the cached value. Only a cold miss
ever waits on the producer.
"""
import json
import threading
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from .core import (
    CacheEntry,
    CacheKey,
    CacheSource,
    FetchResult,
    RefreshOutcome,
    StalenessPolicy,
    format_timestamp,
    parse_timestamp,
    utc_now,
)
from .lock import DistributedLock, LockToken
from .store import KeyValueStore

logger = logging.getLogger("cache.coordinator")

# Marker for a stored value the deserializer rejects
_UNDECODABLE = object()


def _json_dumps(value: Any) -> bytes:
    return json.dumps(value, default=str).encode("utf-8")


def _json_loads(raw: bytes) -> Any:
    return json.loads(raw.decode("utf-8"))


class RefreshCoordinator:
    """
    Cache-aside coordinator with:
    - Staleness decided from a timestamp stored beside each value
    - Distributed, non-blocking lock so one producer run per key at a time
    - Background refresh on a thread pool; stale readers never wait
    - Guaranteed lock release whatever the producer does
    """

    def __init__(
        self,
        store: KeyValueStore,
        lock: DistributedLock,
        policy: Optional[StalenessPolicy] = None,
        lock_ttl: float = 60,
        max_refresh_workers: int = 4,
        clock: Callable[[], datetime] = utc_now,
        serializer: Callable[[Any], bytes] = _json_dumps,
        deserializer: Callable[[bytes], Any] = _json_loads,
    ):
        """
        Initialize the coordinator.

        Args:
            store: Shared key-value store holding values and timestamps
            lock: Distributed lock over the same store
            policy: Staleness window (defaults to 60 seconds)
            lock_ttl: Seconds before an unreleased refresh lock expires
            max_refresh_workers: Thread pool size for background refreshes
            clock: Source of "now" (timezone-aware)
            serializer: Payload -> bytes written to the store
            deserializer: Stored bytes -> payload returned to callers
        """
        self._store = store
        self._lock = lock
        self._policy = policy or StalenessPolicy()
        self._lock_ttl = lock_ttl
        self._clock = clock
        self._serialize = serializer
        self._deserialize = deserializer

        self._refresh_pool = ThreadPoolExecutor(
            max_workers=max_refresh_workers,
            thread_name_prefix="cache-refresh",
        )

        self._stats_lock = threading.Lock()
        self._stats = {
            "hits_fresh": 0,
            "hits_stale": 0,
            "misses": 0,
            "pending": 0,
            "lock_contention": 0,
            "refreshes_started": 0,
            "refreshes_succeeded": 0,
            "refreshes_failed": 0,
        }

    @property
    def policy(self) -> StalenessPolicy:
        return self._policy

    def fetch(self, key: CacheKey, producer: Callable[[], Any]) -> FetchResult:
        """
        Get the value for ``key``, refreshing it through ``producer`` if stale.

        Args:
            key: Cache key of the resource
            producer: Zero-argument callable returning a serialisable payload

        Returns:
            FetchResult carrying the value (or a refresh error) and its timestamp

        Raises:
            StoreUnavailable: If the shared store cannot be read
        """
        entry = self.read_entry(key)
        value = None
        if entry is not None:
            value = self._decode(key, entry)
            if value is _UNDECODABLE:
                entry = None

        now = self._clock()
        stale = self._policy.is_stale(entry, now)

        pending: Optional[Future] = None
        if stale:
            token = self._lock.acquire(key.lock_key, self._lock_ttl)
            if token is not None:
                pending = self.schedule_refresh(key, producer, token)
            else:
                logger.debug(f"Refresh of {key} already running elsewhere")
                self._bump("lock_contention")

        if entry is not None:
            if stale:
                logger.info(f"CACHE HIT (stale, refreshing={pending is not None}): {key}")
                self._bump("hits_stale")
                source = CacheSource.STALE
            else:
                logger.debug(f"CACHE HIT (fresh): {key} [age={entry.age_seconds(now):.1f}s]")
                self._bump("hits_fresh")
                source = CacheSource.FRESH
            return FetchResult(source=source, value=value, timestamp=entry.stored_at)

        if pending is None:
            logger.info(f"CACHE MISS (refresh running elsewhere): {key}")
            self._bump("pending")
            return FetchResult(source=CacheSource.PENDING)

        logger.info(f"CACHE MISS (waiting for refresh): {key}")
        self._bump("misses")
        outcome: RefreshOutcome = pending.result()
        return FetchResult(
            source=CacheSource.UPSTREAM,
            value=outcome.value,
            timestamp=outcome.completed_at,
            error=outcome.error,
        )

    def read_entry(self, key: CacheKey) -> Optional[CacheEntry]:
        """
        Read value and timestamp. A missing value is a miss; a missing or
        unreadable timestamp yields an entry that is always stale.
        """
        value = self._store.get(key.value_key)
        if value is None:
            return None
        stored_at = parse_timestamp(self._store.get(key.timestamp_key))
        return CacheEntry(value=value, stored_at=stored_at)

    def schedule_refresh(
        self,
        key: CacheKey,
        producer: Callable[[], Any],
        token: LockToken,
    ) -> "Optional[Future[RefreshOutcome]]":
        """
        Run the producer in the background while holding ``token``.

        The returned future always resolves to a RefreshOutcome; it never
        raises. Callers that do not need the result simply drop it.
        Returns None, with the lock released, if the pool is shut down.
        """
        try:
            future = self._refresh_pool.submit(self._refresh, key, producer, token)
        except RuntimeError as e:
            logger.warning(f"Refresh of {key} not scheduled: {e}")
            self._lock.release(token)
            return None
        self._bump("refreshes_started")
        return future

    def _refresh(
        self,
        key: CacheKey,
        producer: Callable[[], Any],
        token: LockToken,
    ) -> RefreshOutcome:
        try:
            logger.debug(f"Refresh started: {key}")
            try:
                value = producer()
            except Exception as e:
                logger.warning(f"Refresh failed for {key}: {e}")
                self._bump("refreshes_failed")
                return RefreshOutcome.failure("producer", str(e) or type(e).__name__, self._clock())

            try:
                payload = self._serialize(value)
                # Hand back what later cache hits will decode, not the raw object
                value = self._deserialize(payload)
            except Exception as e:
                logger.warning(f"Refresh of {key} returned an unserialisable payload: {e}")
                self._bump("refreshes_failed")
                return RefreshOutcome.failure("producer", str(e) or type(e).__name__, self._clock())

            try:
                stored_at = self._clock()
                self._store.set(key.value_key, payload)
                self._store.set(key.timestamp_key, format_timestamp(stored_at).encode("utf-8"))
            except Exception as e:
                logger.warning(f"Refresh of {key} could not be stored: {e}")
                self._bump("refreshes_failed")
                return RefreshOutcome.failure("store", str(e) or type(e).__name__, self._clock())

            logger.info(f"Refresh complete: {key} [stored_at={format_timestamp(stored_at)}]")
            self._bump("refreshes_succeeded")
            return RefreshOutcome.success(value, stored_at)
        finally:
            self._lock.release(token)

    def _decode(self, key: CacheKey, entry: CacheEntry) -> Any:
        try:
            return self._deserialize(entry.value)
        except (TypeError, ValueError) as e:
            logger.warning(f"Cached value for {key} is unreadable, treating as miss: {e}")
            return _UNDECODABLE

    def _bump(self, counter: str) -> None:
        with self._stats_lock:
            self._stats[counter] += 1

    def get_stats(self) -> Dict[str, Any]:
        """Get coordinator statistics."""
        with self._stats_lock:
            stats = dict(self._stats)
        hits = stats["hits_fresh"] + stats["hits_stale"]
        total = hits + stats["misses"] + stats["pending"]
        stats["hit_rate_percent"] = round(hits / total * 100, 1) if total else 0
        stats["staleness_window_seconds"] = self._policy.max_age_seconds
        stats["lock_ttl_seconds"] = self._lock_ttl
        return stats

    def close(self, wait: bool = True) -> None:
        """Stop accepting refreshes; optionally wait for in-flight ones to land."""
        self._refresh_pool.shutdown(wait=wait)
