"""
Competition View - Main FastAPI Application
Competition documents served from a shared Redis cache, refreshed in the background
"""
import time
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from app.cache import StoreUnavailable, format_timestamp
from app.cache.core import utc_now
from app.context import CacheContext, build_context
from config.settings import Settings, settings as default_settings

# Version tracking
APP_VERSION = "v0.3.0"
APP_NAME = "Competition View"

# Seconds a client should wait when another process is still producing a cold key
PENDING_RETRY_AFTER = 1

logger = logging.getLogger("app")

router = APIRouter()


def _context(request: Request) -> CacheContext:
    return request.app.state.context


@router.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


@router.get("/version")
def version_info():
    """Version information endpoint."""
    return {
        "name": APP_NAME,
        "version": APP_VERSION,
        "full": f"{APP_NAME} {APP_VERSION}",
    }


@router.get("/cache/stats")
def cache_stats(request: Request):
    """Get cache statistics."""
    return _context(request).get_stats()


@router.get("/competitions/{competition_id}.json")
def get_competition(competition_id: str, request: Request):
    """
    Get a competition with categories, competitors and ladders.

    Serves the cached document (possibly up to the staleness window old) and
    only waits on the upstream source when nothing is cached yet.
    """
    context = _context(request)
    try:
        context.competition_key(competition_id)
    except ValueError:
        raise HTTPException(status_code=400, detail="Invalid competition id")

    try:
        result = context.fetch_competition(competition_id)
    except StoreUnavailable as e:
        logger.error(f"Cache store unavailable for competition {competition_id}: {e}")
        raise HTTPException(status_code=503, detail="Cache store unavailable")

    if result.is_pending:
        return JSONResponse(
            status_code=503,
            content={"detail": "Competition is being prepared, try again shortly"},
            headers={"Retry-After": str(PENDING_RETRY_AFTER)},
        )

    if result.error is not None:
        logger.warning(f"Competition {competition_id} unavailable: {result.error}")
        raise HTTPException(status_code=502, detail=f"Upstream error: {result.error.message}")

    headers = {"X-Cache-Source": result.source.value}
    if result.timestamp is not None:
        headers["X-Cache-Timestamp"] = format_timestamp(result.timestamp)
    return JSONResponse(content=result.value, headers=headers)


@router.get("/test")
def latency_probe():
    """Slow endpoint for checking worker concurrency."""
    time.sleep(2)
    return {"timestamp": format_timestamp(utc_now())}


def create_app(
    app_settings: Optional[Settings] = None,
    context: Optional[CacheContext] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        app_settings: Settings to use (defaults to environment settings)
        context: Prebuilt cache context (tests pass one over an in-memory store)
    """
    app_settings = app_settings or default_settings
    logging.basicConfig(level=app_settings.log_level.upper())

    if context is None:
        context = build_context(app_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        logger.info("Shutting down cache context")
        context.close()

    application = FastAPI(
        title=APP_NAME,
        description="Karate competition documents with stale-while-revalidate caching",
        version=APP_VERSION,
        lifespan=lifespan,
    )
    application.state.context = context
    application.include_router(router)
    return application


app = create_app()
