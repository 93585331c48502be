"""
Monitoring control endpoints.

POST /v1/monitor/{game_id}/start          — Start monitoring (fresh baseline by default).
POST /v1/monitor/{game_id}/stop           — Stop monitoring.
GET  /v1/monitoring/active                — Games currently monitored.
GET  /v1/monitoring/stats                 — Monitor loop statistics.
POST /v1/monitoring/trigger-poll          — Run one cycle now.
POST /v1/monitoring/start-service         — Start the in-process monitor loop.
POST /v1/monitoring/stop-service          — Stop the in-process monitor loop.
"""
from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from scheduler.service import MonitoringService

from api.dependencies import get_monitor

router = APIRouter(tags=["monitoring"])


class StartMonitoringRequest(BaseModel):
    fresh: bool = True


@router.post("/v1/monitor/{game_id}/start")
async def start_monitoring(
    game_id: str,
    body: Optional[StartMonitoringRequest] = None,
    monitor: MonitoringService = Depends(get_monitor),
) -> dict[str, Any]:
    """
    Start monitoring a game. A fresh start wipes stored play-by-play and
    rebuilds the baseline; ``{"fresh": false}`` keeps existing data.
    """
    fresh = body.fresh if body is not None else True
    game = await monitor.start_monitoring(game_id, fresh=fresh)
    return {"game": game.model_dump(mode="json"), "fresh": fresh}


@router.post("/v1/monitor/{game_id}/stop")
async def stop_monitoring(
    game_id: str,
    monitor: MonitoringService = Depends(get_monitor),
) -> dict[str, Any]:
    game = await monitor.stop_monitoring(game_id)
    return {"game": game.model_dump(mode="json")}


@router.get("/v1/monitoring/active")
async def active_games(monitor: MonitoringService = Depends(get_monitor)) -> dict[str, Any]:
    games = await monitor.monitored_games()
    return {
        "count": len(games),
        "games": [g.model_dump(mode="json") for g in games],
    }


@router.get("/v1/monitoring/stats")
async def monitoring_stats(monitor: MonitoringService = Depends(get_monitor)) -> dict[str, Any]:
    return monitor.stats().model_dump(mode="json")


@router.post("/v1/monitoring/trigger-poll")
async def trigger_poll(monitor: MonitoringService = Depends(get_monitor)) -> dict[str, Any]:
    next_interval = await monitor.trigger_poll()
    return {
        "next_interval_s": next_interval,
        "stats": monitor.stats().model_dump(mode="json"),
    }


@router.post("/v1/monitoring/start-service")
async def start_service(monitor: MonitoringService = Depends(get_monitor)) -> dict[str, Any]:
    await monitor.start()
    return monitor.stats().model_dump(mode="json")


@router.post("/v1/monitoring/stop-service")
async def stop_service(monitor: MonitoringService = Depends(get_monitor)) -> dict[str, Any]:
    await monitor.stop()
    return monitor.stats().model_dump(mode="json")
