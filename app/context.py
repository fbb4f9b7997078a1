"""
Process-wide wiring, built once at startup and passed to the routes.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict

from app.cache import (
    CacheKey,
    DistributedLock,
    FetchResult,
    KeyValueStore,
    RedisStore,
    RefreshCoordinator,
    StalenessPolicy,
)
from app.competitions import CompetitionClient
from config.settings import Settings

logger = logging.getLogger("app.context")


@dataclass
class CacheContext:
    """Everything a request needs to serve cached competitions."""
    settings: Settings
    store: KeyValueStore
    lock: DistributedLock
    coordinator: RefreshCoordinator
    client: CompetitionClient

    def competition_key(self, competition_id) -> CacheKey:
        return CacheKey(self.settings.cache_key_prefix, str(competition_id))

    def fetch_competition(self, competition_id) -> FetchResult:
        """Serve a competition document through the refresh coordinator."""
        return self.coordinator.fetch(
            self.competition_key(competition_id),
            lambda: self.client.fetch_competition(competition_id),
        )

    def get_stats(self) -> Dict[str, Any]:
        return {
            "store_reachable": self.store.ping(),
            "coordinator": self.coordinator.get_stats(),
        }

    def close(self) -> None:
        self.coordinator.close(wait=False)
        close = getattr(self.store, "close", None)
        if close is not None:
            close()


def build_context(settings: Settings, store: KeyValueStore = None) -> CacheContext:
    """
    Build the cache context from settings.

    Args:
        settings: Loaded application settings
        store: Optional store override; defaults to Redis at settings.redis_url
    """
    if store is None:
        store = RedisStore.from_url(
            settings.redis_url,
            timeout=settings.redis_timeout,
            pool_size=settings.redis_pool_size,
        )
    lock = DistributedLock(store)
    coordinator = RefreshCoordinator(
        store=store,
        lock=lock,
        policy=StalenessPolicy(max_age_seconds=settings.cache_duration),
        lock_ttl=settings.lock_ttl,
        max_refresh_workers=settings.refresh_workers,
    )
    client = CompetitionClient(
        settings.upstream_base_url,
        timeout=settings.upstream_timeout,
        max_workers=settings.upstream_workers,
    )
    logger.info(
        f"Cache context ready: window={settings.cache_duration}s, "
        f"lock_ttl={settings.lock_ttl}s, workers={settings.refresh_workers}"
    )
    return CacheContext(
        settings=settings,
        store=store,
        lock=lock,
        coordinator=coordinator,
        client=client,
    )
