"""
Unit tests for the polling policy and the monitoring service lifecycle.

Run: pytest backend/tests/test_scheduler.py -v
"""
from __future__ import annotations

import asyncio
from datetime import date, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock
from zoneinfo import ZoneInfo

import pytest

from scheduler.engine.polling import (
    compute_interval,
    is_stale_refresh_lock,
    should_stop_monitoring,
)
from scheduler.service import MonitoringService
from shared.errors import (
    FeedUnavailableError,
    GameNotFoundError,
    RefreshInProgressError,
    StoreError,
)
from shared.models.domain import BoxscoreSummary, Game, ScheduleEntry, TeamLine
from shared.models.enums import GameStatus

from tests.conftest import GAME_ID, after, feed_action


def league_day(now: datetime) -> date:
    return now.astimezone(ZoneInfo("America/New_York")).date()


def monitored_game(game_id: str = GAME_ID, **overrides) -> Game:
    fields = {
        "game_id": game_id,
        "game_status": GameStatus.LIVE,
        "is_monitoring": True,
        "home_team": TeamLine(team_tricode="BOS"),
        "away_team": TeamLine(team_tricode="NYK"),
    }
    fields.update(overrides)
    return Game(**fields)


# ── Polling policy ──────────────────────────────────────────────────────

def test_interval_is_active_with_games(settings) -> None:
    assert compute_interval(True, settings) == 30.0


def test_interval_is_idle_without_games(settings) -> None:
    assert compute_interval(False, settings) == 300.0


def test_should_stop_only_after_grace(clock) -> None:
    game = monitored_game(game_status=GameStatus.FINAL, game_finished_at=clock.now)
    assert not should_stop_monitoring(game, clock.now + timedelta(minutes=19), 1200)
    assert should_stop_monitoring(game, clock.now + timedelta(minutes=20), 1200)


def test_should_not_stop_live_game(clock) -> None:
    game = monitored_game(game_finished_at=clock.now - timedelta(hours=2))
    assert not should_stop_monitoring(game, clock.now, 1200)


def test_stale_refresh_lock(clock) -> None:
    fresh = monitored_game(is_refreshing=True, refresh_started_at=clock.now - timedelta(seconds=30))
    stale = monitored_game(is_refreshing=True, refresh_started_at=clock.now - timedelta(minutes=10))
    untimed = monitored_game(is_refreshing=True)
    assert not is_stale_refresh_lock(fresh, clock.now, 300)
    assert is_stale_refresh_lock(stale, clock.now, 300)
    assert is_stale_refresh_lock(untimed, clock.now, 300)
    assert not is_stale_refresh_lock(monitored_game(), clock.now, 300)


# ── run_cycle ───────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_cycle_interval_tracks_monitorable_games(monitor: MonitoringService, games) -> None:
    assert await monitor.run_cycle() == 300.0

    games.rows[GAME_ID] = monitored_game()
    assert await monitor.run_cycle() == 30.0

    # A game under a refresh lock does not count as active.
    games.rows[GAME_ID] = monitored_game(is_refreshing=True)
    assert await monitor.run_cycle() == 300.0


@pytest.mark.asyncio
async def test_cycle_syncs_and_updates_bookkeeping(monitor: MonitoringService, games, feed, actions, clock) -> None:
    games.rows[GAME_ID] = monitored_game()
    feed.actions[GAME_ID] = [feed_action(1, "Jump Ball Jones vs. Smith")]

    await monitor.run_cycle()
    await monitor.run_cycle()

    stored = games.rows[GAME_ID]
    assert stored.poll_count == 2
    assert stored.last_polled_at == clock.now
    assert (GAME_ID, 1) in actions.rows
    stats = monitor.stats()
    assert stats.total_runs == 2
    assert stats.total_polls == 2
    assert stats.games_monitored == 1
    assert stats.current_interval_s == 30.0


@pytest.mark.asyncio
async def test_cycle_skips_refreshing_game(monitor: MonitoringService, games, feed) -> None:
    games.rows[GAME_ID] = monitored_game(is_refreshing=True)
    feed.actions[GAME_ID] = [feed_action(1, "Jump Ball Jones vs. Smith")]

    await monitor.run_cycle()

    assert feed.action_fetches == 0
    assert games.rows[GAME_ID].poll_count == 0


@pytest.mark.asyncio
async def test_one_failing_game_does_not_stop_the_cycle(monitor: MonitoringService, games, feed, actions) -> None:
    games.rows["g-broken"] = monitored_game("g-broken", game_time_utc=after(0))
    games.rows[GAME_ID] = monitored_game(game_time_utc=after(60))
    feed.actions[GAME_ID] = [feed_action(1, "Jump Ball Jones vs. Smith")]
    feed.actions["g-broken"] = [feed_action(1, "x")]
    original = feed.fetch_actions

    async def flaky(game_id: str):
        if game_id == "g-broken":
            raise StoreError("boom")
        return await original(game_id)

    feed.fetch_actions = flaky

    await monitor.run_cycle()

    assert (GAME_ID, 1) in actions.rows
    assert games.rows[GAME_ID].poll_count == 1
    assert games.rows["g-broken"].poll_count == 0
    assert monitor.stats().errors == 1


@pytest.mark.asyncio
async def test_feed_outage_is_counted_not_raised(monitor: MonitoringService, games, feed) -> None:
    games.rows[GAME_ID] = monitored_game()
    feed.fail = True

    assert await monitor.run_cycle() == 30.0
    assert monitor.stats().errors == 1


@pytest.mark.asyncio
async def test_final_game_is_auto_stopped_after_grace(monitor: MonitoringService, games, feed, clock) -> None:
    games.rows[GAME_ID] = monitored_game()
    feed.actions[GAME_ID] = []
    feed.boxscores[GAME_ID] = BoxscoreSummary.model_validate(
        {"gameId": GAME_ID, "gameStatus": 3, "homeTeam": {"score": 110}, "awayTeam": {"score": 104}}
    )

    await monitor.run_cycle()
    assert games.rows[GAME_ID].is_monitoring is True
    assert games.rows[GAME_ID].game_finished_at == clock.now

    clock.advance(1199)
    await monitor.run_cycle()
    assert games.rows[GAME_ID].is_monitoring is True

    clock.advance(1)
    await monitor.run_cycle()
    assert games.rows[GAME_ID].is_monitoring is False


# ── start_monitoring ────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_fresh_start_rebuilds_baseline(monitor: MonitoringService, games, feed, actions, clock) -> None:
    games.rows[GAME_ID] = Game(game_id=GAME_ID)
    feed.actions[GAME_ID] = [feed_action(1, "Old play")]
    await monitor.engine.sync(GAME_ID)
    actions.rows[(GAME_ID, 1)].has_significant_edit = True

    feed.actions[GAME_ID] = [feed_action(1, "Old play"), feed_action(2, "New play")]
    game = await monitor.start_monitoring(GAME_ID)

    stored = games.rows[GAME_ID]
    assert game.is_monitoring is True
    assert stored.is_monitoring is True
    assert stored.is_refreshing is False
    assert stored.monitoring_started_at == clock.now
    assert sorted(n for _, n in actions.rows) == [1, 2]
    assert not any(a.has_significant_edit for a in actions.rows.values())


@pytest.mark.asyncio
async def test_failed_fresh_start_releases_lock(monitor: MonitoringService, games, actions) -> None:
    games.rows[GAME_ID] = Game(game_id=GAME_ID)
    actions.fail_deletes = True

    with pytest.raises(StoreError):
        await monitor.start_monitoring(GAME_ID, fresh=True)

    stored = games.rows[GAME_ID]
    assert stored.is_refreshing is False
    assert stored.refresh_started_at is None
    assert stored.is_monitoring is False
    assert await games.list_monitorable() == []


@pytest.mark.asyncio
async def test_failed_baseline_sync_releases_lock(monitor: MonitoringService, games, feed) -> None:
    games.rows[GAME_ID] = Game(game_id=GAME_ID)
    feed.fail = True

    with pytest.raises(FeedUnavailableError):
        await monitor.start_monitoring(GAME_ID)

    assert games.rows[GAME_ID].is_refreshing is False


@pytest.mark.asyncio
async def test_fresh_start_rejected_while_locked(monitor: MonitoringService, games, clock) -> None:
    games.rows[GAME_ID] = Game(game_id=GAME_ID, is_refreshing=True, refresh_started_at=clock.now)
    with pytest.raises(RefreshInProgressError):
        await monitor.start_monitoring(GAME_ID)


@pytest.mark.asyncio
async def test_non_fresh_start_rejected_while_locked(monitor: MonitoringService, games, feed, clock) -> None:
    games.rows[GAME_ID] = Game(game_id=GAME_ID, is_refreshing=True, refresh_started_at=clock.now)
    with pytest.raises(RefreshInProgressError):
        await monitor.start_monitoring(GAME_ID, fresh=False)

    stored = games.rows[GAME_ID]
    assert stored.is_refreshing is True
    assert stored.is_monitoring is False
    assert feed.action_fetches == 0


@pytest.mark.asyncio
async def test_non_fresh_start_clears_stale_lock(monitor: MonitoringService, games, feed, clock) -> None:
    games.rows[GAME_ID] = Game(
        game_id=GAME_ID, is_refreshing=True, refresh_started_at=clock.now - timedelta(minutes=10)
    )
    feed.actions[GAME_ID] = []

    game = await monitor.start_monitoring(GAME_ID, fresh=False)

    assert game.is_monitoring is True
    assert game.is_refreshing is False
    assert games.rows[GAME_ID].refresh_started_at is None


@pytest.mark.asyncio
async def test_refresh_rejected_while_locked(monitor: MonitoringService, games, feed, clock) -> None:
    games.rows[GAME_ID] = monitored_game(is_monitoring=False, is_refreshing=True, refresh_started_at=clock.now)
    with pytest.raises(RefreshInProgressError):
        await monitor.refresh(GAME_ID)
    assert feed.action_fetches == 0


@pytest.mark.asyncio
async def test_non_fresh_start_keeps_data(monitor: MonitoringService, games, feed, actions) -> None:
    games.rows[GAME_ID] = Game(game_id=GAME_ID)
    feed.actions[GAME_ID] = [feed_action(1, "Jones Layup (2 PTS)")]
    await monitor.engine.sync(GAME_ID)
    actions.rows[(GAME_ID, 1)].review_note = "keep me"

    game = await monitor.start_monitoring(GAME_ID, fresh=False)

    assert game.is_monitoring is True
    assert actions.rows[(GAME_ID, 1)].review_note == "keep me"


@pytest.mark.asyncio
async def test_non_fresh_start_on_monitored_game_is_noop(monitor: MonitoringService, games, feed) -> None:
    games.rows[GAME_ID] = monitored_game(monitoring_started_at=after(0))
    game = await monitor.start_monitoring(GAME_ID, fresh=False)
    assert game.monitoring_started_at == after(0)
    assert feed.action_fetches == 0


@pytest.mark.asyncio
async def test_unknown_game_resyncs_schedule_then_fails(monitor: MonitoringService, feed) -> None:
    with pytest.raises(GameNotFoundError):
        await monitor.start_monitoring("0029999999")
    assert feed.schedule_fetches == 1


@pytest.mark.asyncio
async def test_unknown_game_found_after_schedule_resync(monitor: MonitoringService, feed, games, clock) -> None:
    today = league_day(clock.now)
    feed.schedule[today] = [ScheduleEntry(game_id=GAME_ID, game_date=today, game_status=1)]
    feed.actions[GAME_ID] = []

    game = await monitor.start_monitoring(GAME_ID)

    assert game.is_monitoring is True
    assert games.rows[GAME_ID].game_date == today


@pytest.mark.asyncio
async def test_stop_monitoring(monitor: MonitoringService, games) -> None:
    games.rows[GAME_ID] = monitored_game()
    game = await monitor.stop_monitoring(GAME_ID)
    assert game.is_monitoring is False
    assert games.rows[GAME_ID].is_monitoring is False
    with pytest.raises(GameNotFoundError):
        await monitor.stop_monitoring("0029999999")


# ── Schedule and lock reconciliation ────────────────────────────────────

@pytest.mark.asyncio
async def test_daily_schedule_sync_auto_starts_live_games(monitor: MonitoringService, feed, games, clock) -> None:
    today = league_day(clock.now)
    feed.schedule[today] = [
        ScheduleEntry(game_id="g-live", game_date=today, game_status=2),
        ScheduleEntry(game_id="g-later", game_date=today, game_status=1),
    ]
    feed.actions["g-live"] = [feed_action(1, "Jump Ball")]

    synced = await monitor.sync_todays_games()
    again = await monitor.sync_todays_games()

    assert {g.game_id for g in synced} == {"g-live", "g-later"}
    assert again == []
    assert feed.schedule_fetches == 1
    assert games.rows["g-live"].is_monitoring is True
    assert games.rows["g-later"].is_monitoring is False
    assert monitor.stats().schedule_synced_on == today


@pytest.mark.asyncio
async def test_schedule_uses_league_calendar_day(monitor: MonitoringService, feed, clock) -> None:
    # 00:15 UTC on Nov 4 is still the evening of Nov 3 in New York.
    await monitor.sync_todays_games()
    assert monitor.stats().schedule_synced_on == date(2025, 11, 3)


@pytest.mark.asyncio
async def test_reconcile_clears_only_stale_locks(monitor: MonitoringService, games, clock) -> None:
    games.rows["stale"] = Game(game_id="stale", is_refreshing=True, refresh_started_at=clock.now - timedelta(hours=1))
    games.rows["busy"] = Game(game_id="busy", is_refreshing=True, refresh_started_at=clock.now)

    assert await monitor.reconcile_refresh_locks() == 1
    assert games.rows["stale"].is_refreshing is False
    assert games.rows["busy"].is_refreshing is True


# ── Service lifecycle ───────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_stop_interrupts_pending_sleep(monitor: MonitoringService) -> None:
    await monitor.start()
    assert monitor.stats().is_running is True
    # Idle interval is 300 s; stop must not wait it out.
    await asyncio.wait_for(monitor.stop(), timeout=2.0)
    assert monitor.stats().is_running is False


@pytest.mark.asyncio
async def test_stop_lets_in_flight_cycle_finish(monitor: MonitoringService, games, feed) -> None:
    games.rows[GAME_ID] = monitored_game()
    feed.actions[GAME_ID] = []
    release = asyncio.Event()
    entered = asyncio.Event()
    original = feed.fetch_actions

    async def slow(game_id: str):
        entered.set()
        await release.wait()
        return await original(game_id)

    feed.fetch_actions = slow
    await monitor.start()
    await asyncio.wait_for(entered.wait(), timeout=2.0)

    stopping = asyncio.create_task(monitor.stop())
    await asyncio.sleep(0)
    assert not stopping.done()

    release.set()
    await asyncio.wait_for(stopping, timeout=2.0)
    assert games.rows[GAME_ID].poll_count == 1


@pytest.mark.asyncio
async def test_schedule_outage_does_not_stop_polling(monitor: MonitoringService, games, feed) -> None:
    games.rows[GAME_ID] = monitored_game()
    feed.actions[GAME_ID] = [feed_action(1, "Jump Ball Jones vs. Smith")]

    async def schedule_down(day):
        raise FeedUnavailableError("schedule", "down")

    feed.fetch_schedule = schedule_down

    async def polled() -> None:
        while games.rows[GAME_ID].poll_count < 1:
            await asyncio.sleep(0.01)

    await monitor.start()
    try:
        await asyncio.wait_for(polled(), timeout=2.0)
    finally:
        await asyncio.wait_for(monitor.stop(), timeout=2.0)

    assert games.rows[GAME_ID].poll_count >= 1
    assert monitor.stats().errors >= 1
    assert monitor.stats().schedule_synced_on is None


@pytest.mark.asyncio
async def test_reset_stats(monitor: MonitoringService) -> None:
    await monitor.run_cycle()
    monitor.reset_stats()
    stats = monitor.stats()
    assert stats.total_runs == 0
    assert stats.last_run is None


@pytest.mark.asyncio
async def test_only_leader_polls(games, actions, feed, engine, settings, clock) -> None:
    redis = MagicMock()
    redis.try_acquire_leader = AsyncMock(return_value=False)
    redis.release_leader = AsyncMock(return_value=True)
    service = MonitoringService(games, actions, feed, engine, settings, redis=redis, clock=clock)

    await service.start()
    await asyncio.wait_for(service.stop(), timeout=2.0)

    assert service.stats().is_leader is False
    assert feed.schedule_fetches == 0
    redis.release_leader.assert_not_awaited()
