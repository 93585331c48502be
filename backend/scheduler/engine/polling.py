"""
Polling policy for the monitor loop.
Chooses the sleep between cycles and decides when a game's lifecycle should
move on without operator action.
"""
from __future__ import annotations

from datetime import datetime, timedelta

from shared.config import Settings, get_settings
from shared.models.domain import Game
from shared.utils.logging import get_logger

logger = get_logger(__name__)


def compute_interval(has_active_games: bool, settings: Settings | None = None) -> float:
    """
    Seconds to sleep before the next cycle.

    Any game with monitoring on and no refresh lock held keeps the loop on
    the active cadence (30 s by default); otherwise it idles (300 s).
    """
    settings = settings or get_settings()
    if has_active_games:
        return float(settings.monitor_active_interval_s)
    return float(settings.monitor_idle_interval_s)


def should_stop_monitoring(game: Game, now: datetime, grace_s: float) -> bool:
    """
    True once a final game has gone ``grace_s`` seconds without further
    scoring. ``game_finished_at`` is re-stamped by every score change after
    the final status, so it marks the last activity.
    """
    if not game.game_status.is_terminal or game.game_finished_at is None:
        return False
    return now - game.game_finished_at >= timedelta(seconds=grace_s)


def is_stale_refresh_lock(game: Game, now: datetime, grace_s: float) -> bool:
    """A refresh lock is stale when it has been held longer than ``grace_s``."""
    if not game.is_refreshing:
        return False
    # Locks without a start time predate the timestamp column; treat as stale.
    if game.refresh_started_at is None:
        return True
    return now - game.refresh_started_at >= timedelta(seconds=grace_s)
