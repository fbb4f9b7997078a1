"""
Core cache data structures.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional
from enum import Enum


class CacheSource(Enum):
    """Where the value handed back by the coordinator came from."""
    FRESH = "fresh"       # Within the staleness window
    STALE = "stale"       # Past the window, served while a refresh may run
    UPSTREAM = "upstream" # Waited on a refresh (cold miss)
    PENDING = "pending"   # Cold miss and another process holds the lock


@dataclass(frozen=True)
class CacheKey:
    """
    Namespaced identifier of one cached resource.

    The value, timestamp and lock keys are all derived from ``<prefix>:<id>``
    so unrelated resources never share a store key.
    """
    prefix: str
    identifier: str

    def __post_init__(self):
        if not self.prefix or ":" in self.prefix:
            raise ValueError(f"Invalid cache key prefix: {self.prefix!r}")
        identifier = str(self.identifier)
        if not identifier:
            raise ValueError("Cache key identifier must not be empty")
        # "1:lock" would alias the lock key of resource "1"
        if ":" in identifier:
            raise ValueError(f"Invalid cache key identifier: {identifier!r}")

    @property
    def value_key(self) -> str:
        return f"{self.prefix}:{self.identifier}"

    @property
    def timestamp_key(self) -> str:
        return f"{self.value_key}:timestamp"

    @property
    def lock_key(self) -> str:
        return f"{self.value_key}:lock"

    def __str__(self) -> str:
        return self.value_key


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_timestamp(moment: datetime) -> str:
    """Encode a timestamp as ISO-8601 (UTC offset included)."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.isoformat()


def parse_timestamp(raw: Optional[Any]) -> Optional[datetime]:
    """
    Decode an ISO-8601 timestamp written by any coordinator instance.

    Accepts bytes or str, a trailing "Z", and naive values (taken as UTC).
    Anything unreadable returns None, which callers treat as infinitely stale.
    """
    if raw is None:
        return None
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            return None
    text = str(raw).strip()
    if not text:
        return None
    try:
        moment = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment


@dataclass
class CacheEntry:
    """
    A cached payload and the time of the refresh that produced it.

    Value and timestamp are stored under separate keys, so ``stored_at`` may
    be missing or belong to a different write than ``value``.
    """
    value: bytes
    stored_at: Optional[datetime] = None

    def age_seconds(self, now: datetime) -> Optional[float]:
        """Seconds since the entry was stored, None if the timestamp is missing."""
        if self.stored_at is None:
            return None
        return (now - self.stored_at).total_seconds()


@dataclass(frozen=True)
class StalenessPolicy:
    """Single staleness window ``D``; the boundary itself counts as stale."""
    max_age_seconds: float = 60

    @property
    def max_age(self) -> timedelta:
        return timedelta(seconds=self.max_age_seconds)

    def is_stale(self, entry: Optional[CacheEntry], now: datetime) -> bool:
        if entry is None or entry.stored_at is None:
            return True
        return now - entry.stored_at >= self.max_age

    @staticmethod
    def merge(existing: Optional[CacheEntry], fresh: CacheEntry) -> CacheEntry:
        """Last write wins."""
        return fresh


@dataclass(frozen=True)
class RefreshError:
    """Why a refresh produced no value."""
    kind: str      # "producer" or "store"
    message: str

    def __str__(self) -> str:
        return f"{self.kind}: {self.message}"


@dataclass(frozen=True)
class RefreshOutcome:
    """
    Completion value of a background refresh task.

    Exactly one of ``value`` / ``error`` is meaningful; check ``ok`` first.
    """
    completed_at: datetime
    value: Any = None
    error: Optional[RefreshError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: Any, completed_at: datetime) -> "RefreshOutcome":
        return cls(completed_at=completed_at, value=value)

    @classmethod
    def failure(cls, kind: str, message: str, completed_at: datetime) -> "RefreshOutcome":
        return cls(completed_at=completed_at, error=RefreshError(kind, message))


@dataclass
class FetchResult:
    """
    What ``RefreshCoordinator.fetch`` hands back to the route layer.

    ``timestamp`` is the stored_at of a cached value, or the completion time
    of the refresh that was waited on. Both are None while PENDING.
    """
    source: CacheSource
    value: Any = None
    timestamp: Optional[datetime] = None
    error: Optional[RefreshError] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.source != CacheSource.PENDING

    @property
    def is_pending(self) -> bool:
        return self.source == CacheSource.PENDING

    def to_meta(self) -> dict:
        """Cache metadata for responses and logs."""
        return {
            "lastUpdated": format_timestamp(self.timestamp) if self.timestamp else None,
            "cacheSource": self.source.value,
        }
