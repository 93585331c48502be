"""
NBA live-data CDN connector.
Fetches play-by-play, box score and league schedule JSON and parses them
into domain models.
"""
from __future__ import annotations

import time
from datetime import date, datetime
from typing import Any, Optional

from pydantic import ValidationError

from shared.config import Settings, get_settings
from shared.errors import FeedUnavailableError
from shared.models.domain import BoxscoreSummary, FeedAction, ScheduleEntry
from shared.utils.http_client import FeedHTTPClient
from shared.utils.logging import get_logger

from ingest.providers.base import PlayByPlayFeed

logger = get_logger(__name__)

PLAY_BY_PLAY_PATH = "/liveData/playbyplay/playbyplay_{game_id}.json"
BOXSCORE_PATH = "/liveData/boxscore/boxscore_{game_id}.json"
SCHEDULE_PATH = "/staticData/scheduleLeagueV2.json"

# Schedule documents carry dates as "10/02/2025 00:00:00"
_SCHEDULE_DATE_FORMAT = "%m/%d/%Y %H:%M:%S"


def parse_schedule_date(raw: Optional[str]) -> Optional[date]:
    if not raw:
        return None
    try:
        return datetime.strptime(raw, _SCHEDULE_DATE_FORMAT).date()
    except ValueError:
        return datetime.strptime(raw.split(" ")[0], "%m/%d/%Y").date()


class NBALiveFeed(PlayByPlayFeed):
    """Reads the public cdn.nba.com live-data documents."""

    def __init__(self, http_client: FeedHTTPClient, settings: Settings | None = None) -> None:
        self._http = http_client
        self._settings = settings or get_settings()
        self._schedule: Optional[dict[str, Any]] = None
        self._schedule_fetched_at: float = 0.0

    async def start(self) -> None:
        await self._http.start()

    async def close(self) -> None:
        await self._http.close()

    async def fetch_actions(self, game_id: str) -> Optional[list[FeedAction]]:
        payload = await self._http.get_json(
            PLAY_BY_PLAY_PATH.format(game_id=game_id), resource="playbyplay"
        )
        game = (payload or {}).get("game") or {}
        raw_actions = game.get("actions")
        if raw_actions is None:
            logger.debug("playbyplay_not_available", game_id=game_id)
            return None
        try:
            actions = [FeedAction.from_payload(item) for item in raw_actions]
        except ValidationError as exc:
            raise FeedUnavailableError("playbyplay", f"malformed action list: {exc}") from exc
        logger.debug("playbyplay_fetched", game_id=game_id, actions=len(actions))
        return actions

    async def fetch_boxscore(self, game_id: str) -> Optional[BoxscoreSummary]:
        payload = await self._http.get_json(
            BOXSCORE_PATH.format(game_id=game_id), resource="boxscore"
        )
        game = (payload or {}).get("game")
        if not game:
            logger.debug("boxscore_not_available", game_id=game_id)
            return None
        try:
            return BoxscoreSummary.model_validate(game)
        except ValidationError as exc:
            raise FeedUnavailableError("boxscore", f"malformed box score: {exc}") from exc

    async def fetch_schedule(self, day: date) -> list[ScheduleEntry]:
        schedule = await self._get_schedule()
        game_dates = (schedule or {}).get("leagueSchedule", {}).get("gameDates", [])
        for game_date in game_dates:
            if parse_schedule_date(game_date.get("gameDate")) != day:
                continue
            entries = []
            for raw in game_date.get("games", []):
                try:
                    entries.append(ScheduleEntry.model_validate({**raw, "gameDate": day}))
                except ValidationError as exc:
                    logger.warning("schedule_entry_skipped", game_id=raw.get("gameId"), error=str(exc))
            return entries
        return []

    async def _get_schedule(self) -> Optional[dict[str, Any]]:
        """Full-season schedule, cached for ``schedule_cache_ttl_s``."""
        now = time.monotonic()
        if self._schedule is not None and now - self._schedule_fetched_at < self._settings.schedule_cache_ttl_s:
            return self._schedule
        schedule = await self._http.get_json(SCHEDULE_PATH, resource="schedule")
        if schedule is not None:
            self._schedule = schedule
            self._schedule_fetched_at = now
        return schedule
