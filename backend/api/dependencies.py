"""
Dependency injection for the API service.
Provides the monitoring service, the review workflow and infrastructure
handles to route handlers.
"""
from __future__ import annotations

from review.service import ReviewService
from scheduler.service import MonitoringService
from shared.utils.database import DatabaseManager
from shared.utils.redis_manager import RedisManager

# Module-level singletons, initialized at startup
_db: DatabaseManager | None = None
_redis: RedisManager | None = None
_monitor: MonitoringService | None = None
_review: ReviewService | None = None


def init_dependencies(
    db: DatabaseManager,
    monitor: MonitoringService,
    review: ReviewService,
    redis: RedisManager | None = None,
) -> None:
    """Initialize module-level singletons. Called once at startup."""
    global _db, _redis, _monitor, _review
    _db = db
    _redis = redis
    _monitor = monitor
    _review = review


def get_db() -> DatabaseManager:
    """FastAPI dependency: returns the shared DatabaseManager."""
    if _db is None:
        raise RuntimeError("DatabaseManager not initialized — call init_dependencies first")
    return _db


def get_redis() -> RedisManager | None:
    """FastAPI dependency: the shared RedisManager, or None when Redis is disabled."""
    return _redis


def get_monitor() -> MonitoringService:
    if _monitor is None:
        raise RuntimeError("MonitoringService not initialized — call init_dependencies first")
    return _monitor


def get_review() -> ReviewService:
    if _review is None:
        raise RuntimeError("ReviewService not initialized — call init_dependencies first")
    return _review
