"""
Monitoring scheduler for Edit Watch.

Drives the poll loop for every game with monitoring on, owns the game
lifecycle (start, fresh start, stop, automatic stop after the final) and
re-pulls the league schedule once per day. Uses an optional Redis leader
lease so only one replica polls.
"""
from __future__ import annotations

import asyncio
import signal
import uuid
from datetime import date
from typing import Optional
from zoneinfo import ZoneInfo

from redis.exceptions import RedisError

from shared.config import Settings, get_settings
from shared.errors import (
    FeedUnavailableError,
    GameNotFoundError,
    MonitorError,
    RefreshInProgressError,
)
from shared.models.domain import Game, MonitoringStats, SyncResult
from shared.storage.base import ActionStore, GameStore
from shared.storage.sql import SQLActionStore, SQLGameStore
from shared.utils.clock import Clock, utc_now
from shared.utils.database import DatabaseManager
from shared.utils.health_server import start_health_server
from shared.utils.http_client import FeedHTTPClient
from shared.utils.logging import bound_game, get_logger, setup_logging
from shared.utils.metrics import (
    MONITOR_CYCLES,
    MONITORED_GAMES,
    POLL_ERRORS,
    POLL_INTERVAL,
    start_metrics_server,
)
from shared.utils.redis_manager import RedisManager

from ingest.providers.base import PlayByPlayFeed
from ingest.providers.nba_cdn import NBALiveFeed
from ingest.sync.engine import SyncEngine
from scheduler.engine.polling import (
    compute_interval,
    is_stale_refresh_lock,
    should_stop_monitoring,
)

logger = get_logger(__name__)

LEADER_ROLE = "monitor"

# Retry connection on startup (e.g. Redis/DB not ready yet in Docker)
CONNECT_RETRY_ATTEMPTS = 10
CONNECT_RETRY_BASE_DELAY_S = 2.0


async def connect_with_retry(connect_fn, name: str) -> None:
    """Call async connect_fn(); retry with exponential backoff on failure."""
    for attempt in range(1, CONNECT_RETRY_ATTEMPTS + 1):
        try:
            await connect_fn()
            return
        except Exception as exc:
            if attempt == CONNECT_RETRY_ATTEMPTS:
                raise
            delay = CONNECT_RETRY_BASE_DELAY_S * (2 ** (attempt - 1))
            logger.warning(
                "connect_retry",
                name=name,
                attempt=attempt,
                max_attempts=CONNECT_RETRY_ATTEMPTS,
                delay_s=delay,
                error=str(exc),
            )
            await asyncio.sleep(delay)


class MonitoringService:
    """
    The monitor loop and game lifecycle.

    Each cycle:
    1. Selects games with monitoring on and no refresh lock held
    2. Syncs box score, then play-by-play, for each of them in turn
    3. Updates poll bookkeeping and stops finished games after the grace period
    4. Sleeps 30 s while anything is monitored, 300 s otherwise

    ``stop()`` interrupts a pending sleep at once but lets an in-flight cycle
    finish.
    """

    def __init__(
        self,
        games: GameStore,
        actions: ActionStore,
        feed: PlayByPlayFeed,
        engine: SyncEngine,
        settings: Settings | None = None,
        redis: RedisManager | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._games = games
        self._actions = actions
        self._feed = feed
        self._engine = engine
        self._settings = settings or get_settings()
        self._redis = redis
        self._clock = clock or utc_now
        self._tz = ZoneInfo(self._settings.schedule_timezone)
        self._instance_id = self._settings.instance_id or str(uuid.uuid4())[:8]

        self._shutdown = asyncio.Event()
        self._cycle_lock = asyncio.Lock()
        self._loop_task: Optional[asyncio.Task[None]] = None
        self._running = False
        self._is_leader = False
        self._schedule_synced_on: Optional[date] = None
        self._current_interval = float(self._settings.monitor_idle_interval_s)
        self.reset_stats()

    @property
    def games(self) -> GameStore:
        return self._games

    @property
    def actions(self) -> ActionStore:
        return self._actions

    @property
    def engine(self) -> SyncEngine:
        return self._engine

    @property
    def is_running(self) -> bool:
        return self._running

    # ── Feed lifecycle ──────────────────────────────────────────────────

    async def open(self) -> None:
        """Open the upstream feed. Needed for lifecycle calls even when the loop is not running."""
        await self._feed.start()

    async def close(self) -> None:
        await self.stop()
        await self._feed.close()

    # ── Service lifecycle ───────────────────────────────────────────────

    async def start(self) -> None:
        if self._running:
            logger.info("monitor_already_running")
            return
        self._running = True
        self._shutdown.clear()

        await self.reconcile_refresh_locks()
        if await self._ensure_leader():
            await self._sync_schedule_safely()

        self._loop_task = asyncio.create_task(self._run_loop(), name="monitor-loop")
        logger.info("monitor_started", instance_id=self._instance_id)

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        self._shutdown.set()
        if self._loop_task is not None:
            await self._loop_task
            self._loop_task = None
        if self._redis is not None and self._is_leader:
            try:
                await self._redis.release_leader(LEADER_ROLE, self._instance_id)
            except RedisError as exc:
                logger.warning("leadership_release_failed", error=str(exc))
        self._is_leader = False
        logger.info("monitor_stopped", instance_id=self._instance_id)

    def request_shutdown(self) -> None:
        self._shutdown.set()

    async def wait_closed(self) -> None:
        await self._shutdown.wait()

    def stats(self) -> MonitoringStats:
        return MonitoringStats(
            is_running=self._running,
            is_leader=self._is_leader,
            last_run=self._last_run,
            total_runs=self._total_runs,
            games_monitored=self._games_monitored,
            total_polls=self._total_polls,
            errors=self._errors,
            current_interval_s=self._current_interval,
            schedule_synced_on=self._schedule_synced_on,
        )

    def reset_stats(self) -> None:
        self._last_run = None
        self._total_runs = 0
        self._games_monitored = 0
        self._total_polls = 0
        self._errors = 0
        logger.debug("monitor_stats_reset")

    # ── Main loop ───────────────────────────────────────────────────────

    async def _run_loop(self) -> None:
        while not self._shutdown.is_set():
            interval = float(self._settings.monitor_active_interval_s)
            try:
                if await self._ensure_leader():
                    await self._sync_schedule_safely()
                    interval = await self.run_cycle()
                else:
                    interval = max(1.0, self._settings.monitor_leader_ttl_s / 3)
            except asyncio.CancelledError:
                break
            except Exception as exc:
                self._errors += 1
                logger.error("monitor_loop_error", error=str(exc), exc_info=True)
            await self._sleep(interval)

    async def _sync_schedule_safely(self) -> None:
        """Schedule failures are counted and retried next iteration; they never skip the cycle."""
        try:
            await self.sync_todays_games()
        except MonitorError as exc:
            self._errors += 1
            POLL_ERRORS.labels(kind="schedule").inc()
            logger.warning("schedule_sync_failed", error=str(exc))

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _ensure_leader(self) -> bool:
        """Acquire or renew the monitor lease. Without Redis this instance always leads."""
        if self._redis is None:
            self._is_leader = True
            return True
        ttl = self._settings.monitor_leader_ttl_s
        try:
            if self._is_leader:
                renewed = await self._redis.renew_leader(LEADER_ROLE, self._instance_id, ttl)
                if not renewed:
                    logger.warning("leadership_lost", instance_id=self._instance_id)
                    self._is_leader = False
                return renewed
            acquired = await self._redis.try_acquire_leader(LEADER_ROLE, self._instance_id, ttl)
        except RedisError as exc:
            logger.warning("leader_lease_unavailable", error=str(exc))
            self._is_leader = False
            return False
        if acquired:
            self._is_leader = True
            logger.info("leadership_acquired", instance_id=self._instance_id)
        return acquired

    async def run_cycle(self) -> float:
        """Poll every monitorable game once and return the next sleep interval."""
        async with self._cycle_lock:
            games = await self._games.list_monitorable()
            interval = compute_interval(bool(games), self._settings)
            if interval != self._current_interval:
                logger.info(
                    "poll_interval_changed",
                    interval_s=interval,
                    active_games=len(games),
                )

            for game in games:
                with bound_game(game.game_id, matchup=game.matchup):
                    try:
                        await self._poll_game(game)
                    except MonitorError as exc:
                        self._errors += 1
                        POLL_ERRORS.labels(kind=type(exc).__name__).inc()
                        logger.warning("game_poll_failed", error=str(exc))
                    except Exception as exc:
                        self._errors += 1
                        POLL_ERRORS.labels(kind="unexpected").inc()
                        logger.error("game_poll_failed", error=str(exc), exc_info=True)

            self._last_run = self._clock()
            self._total_runs += 1
            self._games_monitored = len(games)
            self._current_interval = interval
            MONITOR_CYCLES.inc()
            MONITORED_GAMES.set(len(games))
            POLL_INTERVAL.set(interval)
            return interval

    async def _poll_game(self, game: Game) -> None:
        self._total_polls += 1
        await self._engine.sync_boxscore(game.game_id)
        result = await self._engine.sync(game.game_id)
        if result.significant_edits:
            logger.info("significant_edits_in_poll", count=result.significant_edits)

        # Re-read so an operator stop issued mid-poll is not overwritten.
        current = await self._games.get(game.game_id) or game
        now = self._clock()
        current.last_polled_at = now
        current.poll_count += 1
        if current.is_monitoring and should_stop_monitoring(
            current, now, self._settings.monitor_final_grace_s
        ):
            current.is_monitoring = False
            logger.info(
                "monitoring_auto_stopped",
                finished_at=current.game_finished_at.isoformat(),
            )
        await self._games.save(current)

    async def trigger_poll(self) -> float:
        """Run one cycle now, outside the regular cadence."""
        logger.info("manual_poll_triggered")
        return await self.run_cycle()

    # ── Game lifecycle ──────────────────────────────────────────────────

    async def start_monitoring(self, game_id: str, fresh: bool = True) -> Game:
        """
        Start monitoring ``game_id``.

        A fresh start takes the refresh lock, wipes the stored actions and
        rebuilds the baseline; the lock is released on every exit path.
        A non-fresh start keeps existing data and is a no-op when the game
        is already monitored.

        Raises:
            GameNotFoundError: The game is unknown even after re-pulling today's schedule.
            RefreshInProgressError: Another fresh start holds a lock that is not
                stale yet. A stale lock is cleared and the start proceeds.
        """
        game = await self._games.get(game_id)
        if game is None:
            logger.info("game_unknown_resyncing_schedule", game_id=game_id)
            await self._upsert_schedule(self._today())
            game = await self._games.get(game_id)
            if game is None:
                raise GameNotFoundError(game_id)

        with bound_game(game_id, matchup=game.matchup):
            if fresh:
                return await self._fresh_start(game)

            cleared = self._check_refresh_lock(game)
            if game.is_monitoring:
                if cleared:
                    await self._games.save(game)
                logger.debug("game_already_monitored")
                return game

            game.is_monitoring = True
            game.monitoring_started_at = self._clock()
            await self._games.save(game)
            logger.info("monitoring_started", fresh=False)
            try:
                await self._engine.sync(game_id)
            except FeedUnavailableError as exc:
                logger.warning("initial_sync_deferred", error=str(exc))
            return game

    def _check_refresh_lock(self, game: Game) -> bool:
        """
        Raise while another fresh start holds a live lock on ``game``. A stale
        lock is cleared in place (the caller persists it); returns True then.
        """
        if not game.is_refreshing:
            return False
        if not is_stale_refresh_lock(game, self._clock(), self._settings.refresh_lock_grace_s):
            raise RefreshInProgressError(game.game_id)
        game.is_refreshing = False
        game.refresh_started_at = None
        logger.warning("stale_refresh_lock_cleared", game_id=game.game_id)
        return True

    async def _fresh_start(self, game: Game) -> Game:
        self._check_refresh_lock(game)
        now = self._clock()
        game.is_refreshing = True
        game.is_monitoring = False
        game.refresh_started_at = now
        await self._games.save(game)
        try:
            removed = await self._actions.delete_for_game(game.game_id)
            result: SyncResult = await self._engine.sync(game.game_id)
            game.is_monitoring = True
            game.monitoring_started_at = self._clock()
        finally:
            game.is_refreshing = False
            game.refresh_started_at = None
            try:
                await self._games.save(game)
            except MonitorError as exc:
                logger.error("refresh_lock_release_failed", error=str(exc))
                raise
        logger.info(
            "monitoring_started",
            fresh=True,
            removed_actions=removed,
            baseline_actions=result.created,
        )
        return game

    async def stop_monitoring(self, game_id: str) -> Game:
        game = await self._games.get(game_id)
        if game is None:
            raise GameNotFoundError(game_id)
        if not game.is_monitoring:
            logger.debug("game_not_monitored", game_id=game_id)
            return game
        game.is_monitoring = False
        await self._games.save(game)
        logger.info("monitoring_stopped", game_id=game_id)
        return game

    async def monitored_games(self) -> list[Game]:
        return await self._games.list_monitored()

    async def refresh(self, game_id: str) -> SyncResult:
        """
        On-demand box score and play-by-play sync for one game.

        Raises:
            GameNotFoundError: Unknown game.
            RefreshInProgressError: A fresh start is rebuilding the game right now.
        """
        game = await self._games.get(game_id)
        if game is None:
            raise GameNotFoundError(game_id)
        if self._check_refresh_lock(game):
            await self._games.save(game)
        await self._engine.sync_boxscore(game_id)
        return await self._engine.sync(game_id)

    # ── Schedule ────────────────────────────────────────────────────────

    def _today(self) -> date:
        return self._clock().astimezone(self._tz).date()

    async def _upsert_schedule(self, day: date) -> list[Game]:
        entries = await self._feed.fetch_schedule(day)
        now = self._clock()
        games: list[Game] = []
        for entry in entries:
            game = await self._games.get(entry.game_id) or Game(game_id=entry.game_id)
            game.apply_schedule(entry, now)
            games.append(game)
        await self._games.save_many(games)
        logger.info("schedule_synced", day=day.isoformat(), games=len(games))
        return games

    async def sync_todays_games(self, force: bool = False) -> list[Game]:
        """
        Upsert today's games from the league schedule and auto-start
        monitoring for games already live. Runs at most once per calendar
        day unless ``force`` is set.
        """
        today = self._today()
        if not force and self._schedule_synced_on == today:
            return []
        games = await self._upsert_schedule(today)
        self._schedule_synced_on = today

        for game in games:
            if not game.game_status.is_live or game.is_monitoring or game.is_refreshing:
                continue
            try:
                await self.start_monitoring(game.game_id, fresh=False)
                logger.info("monitoring_auto_started", game_id=game.game_id)
            except MonitorError as exc:
                self._errors += 1
                logger.warning("auto_start_failed", game_id=game.game_id, error=str(exc))
        return games

    async def reconcile_refresh_locks(self) -> int:
        """Clear refresh locks left behind by a crashed fresh start."""
        now = self._clock()
        grace = self._settings.refresh_lock_grace_s
        stale = [g for g in await self._games.list_refreshing() if is_stale_refresh_lock(g, now, grace)]
        for game in stale:
            game.is_refreshing = False
            game.refresh_started_at = None
            logger.warning("stale_refresh_lock_cleared", game_id=game.game_id)
        await self._games.save_many(stale)
        return len(stale)


def build_monitoring_service(
    db: DatabaseManager,
    settings: Settings | None = None,
    redis: RedisManager | None = None,
) -> MonitoringService:
    """Wire the SQL stores, the CDN feed and the sync engine together."""
    settings = settings or get_settings()
    games = SQLGameStore(db)
    actions = SQLActionStore(db)
    feed = NBALiveFeed(FeedHTTPClient(settings.feed_base_url, settings), settings)
    engine = SyncEngine(actions, games, feed, settings, redis)
    return MonitoringService(games, actions, feed, engine, settings, redis)


async def main() -> None:
    """Standalone monitor entrypoint."""
    settings = get_settings()
    setup_logging("monitor")
    start_metrics_server()

    db = DatabaseManager(settings)
    await connect_with_retry(db.connect, "postgres")
    redis: RedisManager | None = None
    if settings.redis_enabled:
        redis = RedisManager(settings)
        await connect_with_retry(redis.connect, "redis")

    service = build_monitoring_service(db, settings, redis)
    start_health_server("monitor", lambda: service.stats().model_dump(mode="json"))

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, service.request_shutdown)

    await service.open()
    await service.start()
    try:
        await service.wait_closed()
    finally:
        await service.close()
        if redis is not None:
            await redis.disconnect()
        await db.disconnect()
        logger.info("monitor_service_stopped")


if __name__ == "__main__":
    asyncio.run(main())
