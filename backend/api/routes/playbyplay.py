"""
Play-by-play and review endpoints.

GET  /v1/playbyplay/{game_id}                          — Actions (optional ?period=, ?only_edited=).
GET  /v1/playbyplay/{game_id}/by-period                — Actions grouped by period.
GET  /v1/playbyplay/{game_id}/edited                   — Actions carrying a significant edit.
GET  /v1/playbyplay/{game_id}/stats                    — Edit statistics.
GET  /v1/playbyplay/{game_id}/review-stats             — Review progress statistics.
POST /v1/playbyplay/{game_id}/refresh                  — Sync box score + play-by-play now.
POST /v1/playbyplay/{game_id}/action/{n}/review        — Set review status/note/tags/priority.
POST /v1/playbyplay/{game_id}/batch-approve            — Approve every unedited, unreviewed action.
POST /v1/playbyplay/{game_id}/clear-reviewed           — Reset all review fields.
POST /v1/playbyplay/{game_id}/reset-edit-flags         — Forget recorded edits.
"""
from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query

from review.service import ReviewService
from scheduler.service import MonitoringService
from shared.models.domain import PlayByPlayAction, ReviewUpdate

from api.dependencies import get_monitor, get_review

router = APIRouter(prefix="/v1/playbyplay", tags=["playbyplay"])


def action_view(action: PlayByPlayAction) -> dict[str, Any]:
    """JSON view of an action without the verbatim upstream payload."""
    return action.model_dump(mode="json", exclude={"raw_data"})


@router.get("/{game_id}")
async def list_actions(
    game_id: str,
    period: Optional[int] = Query(default=None, ge=1),
    only_edited: bool = Query(default=False),
    review: ReviewService = Depends(get_review),
) -> dict[str, Any]:
    actions = await review.actions(game_id, period=period, only_edited=only_edited)
    return {
        "game_id": game_id,
        "count": len(actions),
        "actions": [action_view(a) for a in actions],
    }


@router.get("/{game_id}/by-period")
async def actions_by_period(
    game_id: str,
    review: ReviewService = Depends(get_review),
) -> dict[str, Any]:
    grouped = await review.actions_by_period(game_id)
    return {
        "game_id": game_id,
        "play_by_play": {
            str(period): [action_view(a) for a in actions] for period, actions in grouped.items()
        },
    }


@router.get("/{game_id}/edited")
async def edited_actions(
    game_id: str,
    review: ReviewService = Depends(get_review),
) -> dict[str, Any]:
    actions = await review.edited_actions(game_id)
    return {
        "game_id": game_id,
        "count": len(actions),
        "actions": [action_view(a) for a in actions],
    }


@router.get("/{game_id}/stats")
async def edit_stats(
    game_id: str,
    review: ReviewService = Depends(get_review),
) -> dict[str, Any]:
    return (await review.edit_stats(game_id)).model_dump(mode="json")


@router.get("/{game_id}/review-stats")
async def review_stats(
    game_id: str,
    review: ReviewService = Depends(get_review),
) -> dict[str, Any]:
    return (await review.review_stats(game_id)).model_dump(mode="json")


@router.post("/{game_id}/refresh")
async def refresh(
    game_id: str,
    monitor: MonitoringService = Depends(get_monitor),
) -> dict[str, Any]:
    result = await monitor.refresh(game_id)
    return result.model_dump(mode="json")


@router.post("/{game_id}/action/{action_number}/review")
async def set_review(
    game_id: str,
    action_number: int,
    update: ReviewUpdate,
    review: ReviewService = Depends(get_review),
) -> dict[str, Any]:
    action = await review.set_review_status(game_id, action_number, update)
    return action_view(action)


@router.post("/{game_id}/batch-approve")
async def batch_approve(
    game_id: str,
    review: ReviewService = Depends(get_review),
) -> dict[str, Any]:
    return {"game_id": game_id, "approved_count": await review.batch_approve_unedited(game_id)}


@router.post("/{game_id}/clear-reviewed")
async def clear_reviewed(
    game_id: str,
    review: ReviewService = Depends(get_review),
) -> dict[str, Any]:
    return {"game_id": game_id, "cleared_count": await review.clear_all_reviews(game_id)}


@router.post("/{game_id}/reset-edit-flags")
async def reset_edit_flags(
    game_id: str,
    review: ReviewService = Depends(get_review),
) -> dict[str, Any]:
    return {"game_id": game_id, "modified_count": await review.reset_edit_flags(game_id)}
