"""
Shared key-value store backends.

The coordinator and the lock only talk to a KeyValueStore. Every process
instance must reach the same store for locking and caching to be
distributed rather than per-process.
"""
import threading
import time
import logging
from contextlib import contextmanager
from typing import Callable, Dict, Optional, Protocol, Tuple

import redis

logger = logging.getLogger("cache.store")


# Atomic compare-and-delete, the same unlock script Redlock clients use.
_DELETE_IF_EQUALS_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class StoreUnavailable(Exception):
    """Raised when the shared store cannot be reached or rejects a command."""
    pass


class KeyValueStore(Protocol):
    """
    Interface for shared stores.

    Implementations:
    - RedisStore: redis-py client over a bounded connection pool (production)
    - InMemoryStore: process-local dict (single-process deployments, tests)
    """

    def get(self, key: str) -> Optional[bytes]:
        ...

    def set(self, key: str, value: bytes) -> None:
        ...

    def set_if_absent(self, key: str, value: bytes, ttl_seconds: float) -> bool:
        """Write only when the key does not exist; the key expires after ttl."""
        ...

    def delete_if_equals(self, key: str, expected: bytes) -> bool:
        """Delete the key only when it still holds ``expected``."""
        ...

    def ping(self) -> bool:
        ...


def _to_bytes(value) -> bytes:
    if isinstance(value, bytes):
        return value
    return str(value).encode("utf-8")


class RedisStore:
    """
    Redis-backed store.

    Any redis-py error (connection refused, timeout, response error) is
    re-raised as StoreUnavailable so callers never mistake an outage for a
    cache miss.
    """

    def __init__(self, client: redis.Redis):
        self.client = client
        self._delete_if_equals = client.register_script(_DELETE_IF_EQUALS_SCRIPT)

    @classmethod
    def from_url(
        cls,
        url: str,
        timeout: float = 3.0,
        pool_size: int = 20,
    ) -> "RedisStore":
        """
        Build a store over a blocking pool.

        Args:
            url: Redis connection URL (redis://host:port/db)
            timeout: Connect/read timeout and max wait for a pooled connection
            pool_size: Max connections held by this process
        """
        pool = redis.BlockingConnectionPool.from_url(
            url,
            max_connections=pool_size,
            timeout=timeout,
            socket_timeout=timeout,
            socket_connect_timeout=timeout,
        )
        logger.info(f"Redis store configured: {url} (pool={pool_size}, timeout={timeout}s)")
        return cls(redis.Redis(connection_pool=pool))

    @contextmanager
    def _translate_errors(self, operation: str, key: str):
        try:
            yield
        except redis.exceptions.RedisError as e:
            logger.error(f"Redis {operation} failed for {key}: {e}")
            raise StoreUnavailable(f"{operation} {key}: {e}") from e

    def get(self, key: str) -> Optional[bytes]:
        with self._translate_errors("GET", key):
            value = self.client.get(key)
        return None if value is None else _to_bytes(value)

    def set(self, key: str, value: bytes) -> None:
        with self._translate_errors("SET", key):
            self.client.set(key, value)

    def set_if_absent(self, key: str, value: bytes, ttl_seconds: float) -> bool:
        with self._translate_errors("SET NX", key):
            result = self.client.set(key, value, nx=True, px=max(1, int(ttl_seconds * 1000)))
        return bool(result)

    def delete_if_equals(self, key: str, expected: bytes) -> bool:
        with self._translate_errors("EVAL", key):
            deleted = self._delete_if_equals(keys=[key], args=[expected])
        return bool(deleted)

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.exceptions.RedisError:
            return False

    def close(self) -> None:
        self.client.close()


class InMemoryStore:
    """
    Process-local store with the same semantics as RedisStore.

    Shared by every thread of the process, so it gives real mutual
    exclusion between threads but none between processes.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._data: Dict[str, Tuple[bytes, Optional[float]]] = {}  # value, expiry
        self._lock = threading.Lock()
        self._clock = clock

    def _live(self, key: str) -> Optional[bytes]:
        # Caller holds self._lock
        item = self._data.get(key)
        if item is None:
            return None
        value, expires_at = item
        if expires_at is not None and self._clock() >= expires_at:
            del self._data[key]
            return None
        return value

    def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            return self._live(key)

    def set(self, key: str, value: bytes) -> None:
        with self._lock:
            self._data[key] = (_to_bytes(value), None)

    def set_if_absent(self, key: str, value: bytes, ttl_seconds: float) -> bool:
        with self._lock:
            if self._live(key) is not None:
                return False
            self._data[key] = (_to_bytes(value), self._clock() + ttl_seconds)
            return True

    def delete_if_equals(self, key: str, expected: bytes) -> bool:
        with self._lock:
            if self._live(key) != _to_bytes(expected):
                return False
            del self._data[key]
            return True

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        with self._lock:
            self._data.clear()
