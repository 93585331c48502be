"""
Shared test doubles: in-memory stores, a scripted feed and a settable clock.
"""
from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Iterable, Optional, Sequence

import pytest

from ingest.providers.base import PlayByPlayFeed
from ingest.sync.engine import SyncEngine
from review.service import ReviewService
from scheduler.service import MonitoringService
from shared.config import Settings
from shared.errors import FeedUnavailableError, StoreError
from shared.models.domain import (
    BoxscoreSummary,
    FeedAction,
    Game,
    PlayByPlayAction,
    ScheduleEntry,
)
from shared.storage.base import ActionStore, GameStore

GAME_ID = "0022500123"
TIP_OFF = datetime(2025, 11, 4, 0, 10, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = TIP_OFF) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class InMemoryActionStore(ActionStore):
    """Copies on the way in and out, like a real database would."""

    def __init__(self) -> None:
        self.rows: dict[tuple[str, int], PlayByPlayAction] = {}
        self.fail_writes = False
        self.fail_deletes = False
        self.save_calls = 0

    async def get(self, game_id: str, action_number: int) -> Optional[PlayByPlayAction]:
        row = self.rows.get((game_id, action_number))
        return row.model_copy(deep=True) if row else None

    async def list_for_game(
        self,
        game_id: str,
        *,
        period: Optional[int] = None,
        only_edited: bool = False,
    ) -> list[PlayByPlayAction]:
        rows = [
            r for (gid, _), r in self.rows.items()
            if gid == game_id
            and (period is None or r.period == period)
            and (not only_edited or r.has_significant_edit)
        ]
        rows.sort(key=lambda r: (r.period, r.order_number is None, r.order_number or 0, r.action_number))
        return [r.model_copy(deep=True) for r in rows]

    async def save_many(self, actions: Sequence[PlayByPlayAction]) -> None:
        if not actions:
            return
        self.save_calls += 1
        if self.fail_writes:
            raise StoreError("simulated write failure")
        for action in actions:
            self.rows[(action.game_id, action.action_number)] = action.model_copy(deep=True)

    async def delete_for_game(self, game_id: str) -> int:
        if self.fail_deletes:
            raise StoreError("simulated delete failure")
        keys = [k for k in self.rows if k[0] == game_id]
        for key in keys:
            del self.rows[key]
        return len(keys)

    async def delete_except_games(self, keep_game_ids: Iterable[str]) -> int:
        keep = set(keep_game_ids)
        keys = [k for k in self.rows if k[0] not in keep]
        for key in keys:
            del self.rows[key]
        return len(keys)


class InMemoryGameStore(GameStore):
    def __init__(self) -> None:
        self.rows: dict[str, Game] = {}
        self.fail_writes = False

    async def get(self, game_id: str) -> Optional[Game]:
        row = self.rows.get(game_id)
        return row.model_copy(deep=True) if row else None

    async def save_many(self, games: Sequence[Game]) -> None:
        if not games:
            return
        if self.fail_writes:
            raise StoreError("simulated write failure")
        for game in games:
            self.rows[game.game_id] = game.model_copy(deep=True)

    def _sorted(self, rows: Iterable[Game]) -> list[Game]:
        far = datetime.max.replace(tzinfo=timezone.utc)
        return [
            g.model_copy(deep=True)
            for g in sorted(rows, key=lambda g: (g.game_time_utc or far, g.game_id))
        ]

    async def list_monitorable(self) -> list[Game]:
        return self._sorted(g for g in self.rows.values() if g.is_monitoring and not g.is_refreshing)

    async def list_monitored(self) -> list[Game]:
        return self._sorted(g for g in self.rows.values() if g.is_monitoring)

    async def list_refreshing(self) -> list[Game]:
        return self._sorted(g for g in self.rows.values() if g.is_refreshing)

    async def list_game_ids_since(self, cutoff: date) -> list[str]:
        return [g.game_id for g in self.rows.values() if g.game_date and g.game_date >= cutoff]


class ScriptedFeed(PlayByPlayFeed):
    """Serves whatever the test put in; ``fail`` makes the next calls raise."""

    def __init__(self) -> None:
        self.actions: dict[str, Optional[list[FeedAction]]] = {}
        self.boxscores: dict[str, BoxscoreSummary] = {}
        self.schedule: dict[date, list[ScheduleEntry]] = {}
        self.fail = False
        self.action_fetches = 0
        self.schedule_fetches = 0

    async def fetch_actions(self, game_id: str) -> Optional[list[FeedAction]]:
        self.action_fetches += 1
        if self.fail:
            raise FeedUnavailableError("playbyplay", "scripted outage")
        actions = self.actions.get(game_id)
        return list(actions) if actions is not None else None

    async def fetch_boxscore(self, game_id: str) -> Optional[BoxscoreSummary]:
        if self.fail:
            raise FeedUnavailableError("boxscore", "scripted outage")
        return self.boxscores.get(game_id)

    async def fetch_schedule(self, day: date) -> list[ScheduleEntry]:
        self.schedule_fetches += 1
        if self.fail:
            raise FeedUnavailableError("schedule", "scripted outage")
        return list(self.schedule.get(day, []))


def feed_action(
    number: int,
    description: str,
    *,
    edited: datetime = TIP_OFF,
    time_actual: datetime = TIP_OFF,
    action_type: str = "2pt",
    period: int = 1,
    **extra,
) -> FeedAction:
    return FeedAction(
        action_number=number,
        description=description,
        edited=edited,
        time_actual=time_actual,
        action_type=action_type,
        period=period,
        order_number=number * 10000,
        **extra,
    )


def after(seconds: float) -> datetime:
    return TIP_OFF + timedelta(seconds=seconds)


@pytest.fixture
def settings() -> Settings:
    return Settings(redis_enabled=False, instance_id="test", metrics_enabled=False)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(TIP_OFF + timedelta(minutes=5))


@pytest.fixture
def actions() -> InMemoryActionStore:
    return InMemoryActionStore()


@pytest.fixture
def games() -> InMemoryGameStore:
    return InMemoryGameStore()


@pytest.fixture
def feed() -> ScriptedFeed:
    return ScriptedFeed()


@pytest.fixture
def engine(actions, games, feed, settings, clock) -> SyncEngine:
    return SyncEngine(actions, games, feed, settings, clock=clock)


@pytest.fixture
def monitor(games, actions, feed, engine, settings, clock) -> MonitoringService:
    return MonitoringService(games, actions, feed, engine, settings, clock=clock)


@pytest.fixture
def review(actions, games, clock) -> ReviewService:
    return ReviewService(actions, games, clock=clock)
