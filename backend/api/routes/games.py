"""
Game endpoints.

GET  /v1/games/{game_id}       — Stored game record (score, period, clock, monitoring flags).
GET  /v1/games/{game_id}/full  — Game + play-by-play grouped by period + edit stats.
POST /v1/schedule/sync         — Re-pull today's schedule and auto-start live games.
"""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from review.service import ReviewService
from scheduler.service import MonitoringService
from shared.errors import GameNotFoundError

from api.dependencies import get_monitor, get_review
from api.routes.playbyplay import action_view

router = APIRouter(tags=["games"])


@router.get("/v1/games/{game_id}")
async def get_game(
    game_id: str,
    monitor: MonitoringService = Depends(get_monitor),
) -> dict[str, Any]:
    game = await monitor.games.get(game_id)
    if game is None:
        raise GameNotFoundError(game_id)
    return game.model_dump(mode="json")


@router.get("/v1/games/{game_id}/full")
async def get_full_game(
    game_id: str,
    review: ReviewService = Depends(get_review),
) -> dict[str, Any]:
    full = await review.full_game(game_id)
    return {
        "game": full.game.model_dump(mode="json"),
        "play_by_play": {
            str(period): [action_view(a) for a in actions]
            for period, actions in full.play_by_play.items()
        },
        "edit_stats": full.edit_stats.model_dump(mode="json"),
    }


@router.post("/v1/schedule/sync")
async def sync_schedule(monitor: MonitoringService = Depends(get_monitor)) -> dict[str, Any]:
    games = await monitor.sync_todays_games(force=True)
    return {
        "count": len(games),
        "games": [g.model_dump(mode="json") for g in games],
    }
