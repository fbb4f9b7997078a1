"""
Best-effort distributed lock on top of a KeyValueStore.

One conditional write per acquire, no waiting and no retries: losing the
race means another process is already refreshing, so the caller should
serve what it has instead of queueing. The TTL is the only recovery path
for locks whose holder died before releasing.
"""
import uuid
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from .core import utc_now
from .store import KeyValueStore, StoreUnavailable

logger = logging.getLogger("cache.lock")


@dataclass(frozen=True)
class LockToken:
    """Proof of a successful acquire."""
    lock_key: str
    owner: str
    expires_at: datetime


class DistributedLock:
    """
    Usage:
        lock = DistributedLock(store)
        token = lock.acquire("competition:42:lock", ttl=60)
        if token:
            try:
                ...
            finally:
                lock.release(token)
    """

    def __init__(
        self,
        store: KeyValueStore,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._store = store
        self._clock = clock

    def acquire(self, lock_name: str, ttl: float) -> Optional[LockToken]:
        """
        Try once to take the lock.

        Returns:
            A LockToken, or None if the lock is held elsewhere or the store
            refused the write. Neither case is an error.
        """
        owner = uuid.uuid4().hex
        try:
            acquired = self._store.set_if_absent(lock_name, owner.encode("utf-8"), ttl)
        except StoreUnavailable as e:
            logger.warning(f"Lock {lock_name} unavailable, store error: {e}")
            return None

        if not acquired:
            logger.debug(f"Lock {lock_name} already held")
            return None

        logger.debug(f"Lock {lock_name} acquired by {owner} for {ttl}s")
        return LockToken(
            lock_key=lock_name,
            owner=owner,
            expires_at=self._clock() + timedelta(seconds=ttl),
        )

    def release(self, token: Optional[LockToken]) -> None:
        """
        Release a lock. Safe to call twice, after expiry, or with None.

        Only deletes the key if it still holds this token's owner, so a lock
        that expired and was re-acquired by another process is left alone.
        """
        if token is None:
            return
        try:
            released = self._store.delete_if_equals(token.lock_key, token.owner.encode("utf-8"))
        except StoreUnavailable as e:
            logger.warning(f"Failed to release {token.lock_key}, leaving it to expire: {e}")
            return

        if released:
            logger.debug(f"Lock {token.lock_key} released by {token.owner}")
        else:
            logger.debug(f"Lock {token.lock_key} no longer held by {token.owner}")

