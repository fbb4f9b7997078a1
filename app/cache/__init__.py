"""
Distributed stale-while-revalidate caching over a shared key-value store.
"""
from .core import (
    CacheEntry,
    CacheKey,
    CacheSource,
    FetchResult,
    RefreshError,
    RefreshOutcome,
    StalenessPolicy,
    format_timestamp,
    parse_timestamp,
)
from .store import InMemoryStore, KeyValueStore, RedisStore, StoreUnavailable
from .lock import DistributedLock, LockToken
from .coordinator import RefreshCoordinator

__all__ = [
    # Core types
    "CacheEntry",
    "CacheKey",
    "CacheSource",
    "FetchResult",
    "RefreshError",
    "RefreshOutcome",
    "StalenessPolicy",
    "format_timestamp",
    "parse_timestamp",
    # Stores
    "KeyValueStore",
    "RedisStore",
    "InMemoryStore",
    "StoreUnavailable",
    # Locking
    "DistributedLock",
    "LockToken",
    # Coordinator
    "RefreshCoordinator",
]
