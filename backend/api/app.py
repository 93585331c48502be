"""
FastAPI application factory for the Edit Watch API service.

Creates the app with:
- REST routes (monitoring control, games, play-by-play review)
- Middleware stack
- Health and readiness endpoints
- Lifespan management (startup/shutdown), including the in-process
  monitor loop when ``monitor_autostart`` is set
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict, Union

from fastapi import FastAPI
from redis.exceptions import RedisError
from sqlalchemy.exc import SQLAlchemyError

from review.service import ReviewService
from scheduler.service import build_monitoring_service, connect_with_retry
from shared.config import get_settings
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger, setup_logging
from shared.utils.metrics import start_metrics_server
from shared.utils.redis_manager import RedisManager

from api.dependencies import get_db, get_monitor, get_redis, init_dependencies
from api.middleware import setup_middleware
from api.routes.games import router as games_router
from api.routes.monitoring import router as monitoring_router
from api.routes.playbyplay import router as playbyplay_router

logger = get_logger(__name__)


@asynccontextmanager
async def _noop_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """No-op lifespan for testing without DB/Redis."""
    yield


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan manager.
    Handles startup (connect to Postgres/Redis, open the feed, start the
    monitor loop) and shutdown (stop the loop after its in-flight cycle).
    """
    settings = get_settings()
    setup_logging("api")
    start_metrics_server()

    # Initialize infrastructure (retry so healthcheck can pass once ready)
    db = DatabaseManager(settings)
    await connect_with_retry(db.connect, "postgres")
    redis: RedisManager | None = None
    if settings.redis_enabled:
        redis = RedisManager(settings)
        await connect_with_retry(redis.connect, "redis")

    monitor = build_monitoring_service(db, settings, redis)
    review = ReviewService(monitor.actions, monitor.games)
    init_dependencies(db, monitor, review, redis)

    await monitor.open()
    if settings.monitor_autostart:
        await monitor.start()

    logger.info(
        "api_service_started",
        host=settings.api_host,
        port=settings.api_port,
        monitor_running=monitor.is_running,
    )

    yield

    # Shutdown
    await monitor.close()
    if redis is not None:
        await redis.disconnect()
    await db.disconnect()
    logger.info("api_service_stopped")


def create_app(*, use_lifespan: bool = True) -> FastAPI:
    """Create and configure the FastAPI application. Set use_lifespan=False for testing without DB/Redis."""
    app = FastAPI(
        title="Edit Watch API",
        description="Play-by-play edit detection and review",
        version="1.0.0",
        lifespan=lifespan if use_lifespan else _noop_lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
    )

    # Middleware
    setup_middleware(app)

    # REST routes
    app.include_router(monitoring_router)
    app.include_router(games_router)
    app.include_router(playbyplay_router)

    # Health check
    @app.get("/health", tags=["system"])
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": "api"}

    @app.get("/ready", tags=["system"])
    async def readiness() -> Dict[str, Union[str, bool]]:
        """Readiness probe — checks downstream dependencies."""
        db_ok = False
        try:
            await get_db().ping()
            db_ok = True
        except (SQLAlchemyError, OSError) as exc:
            logger.warning("readiness_database_failed", error=str(exc))

        redis = get_redis()
        redis_ok = redis is None
        if redis is not None:
            try:
                redis_ok = await redis.ping()
            except (RedisError, OSError) as exc:
                logger.warning("readiness_redis_failed", error=str(exc))

        return {
            "status": "ok" if (redis_ok and db_ok) else "degraded",
            "database": db_ok,
            "redis": redis_ok,
            "monitor_running": get_monitor().is_running,
        }

    return app


# For running with uvicorn directly
app = create_app()
