"""
Review workflow on top of detected edits.

Operator triage (approve, flag, batch-approve, clear) and the read views the
dashboard is built from. Runs independently of the sync engine.
"""
from __future__ import annotations

from collections import defaultdict
from datetime import timedelta
from typing import Optional

from shared.errors import ActionNotFoundError, GameNotFoundError
from shared.models.domain import (
    EditStats,
    FullGame,
    PlayByPlayAction,
    ReviewStats,
    ReviewUpdate,
)
from shared.models.enums import ReviewStatus
from shared.storage.base import ActionStore, GameStore
from shared.utils.clock import Clock, utc_now
from shared.utils.logging import get_logger

logger = get_logger(__name__)


def _has_review_state(action: PlayByPlayAction) -> bool:
    return (
        action.review_status != ReviewStatus.UNREVIEWED
        or action.reviewed_at is not None
        or action.review_note is not None
        or bool(action.review_tags)
        or action.was_re_edited_after_approval
    )


class ReviewService:
    def __init__(self, actions: ActionStore, games: GameStore, clock: Clock | None = None) -> None:
        self._actions = actions
        self._games = games
        self._clock = clock or utc_now

    # ── Triage ──────────────────────────────────────────────────────────

    async def set_review_status(
        self, game_id: str, action_number: int, update: ReviewUpdate
    ) -> PlayByPlayAction:
        """
        Apply the fields present in ``update`` to one action.

        Setting a status stamps ``reviewed_at``; approving or flagging also
        clears ``was_re_edited_after_approval``.

        Raises:
            ActionNotFoundError: No such action; nothing is written.
        """
        action = await self._actions.get(game_id, action_number)
        if action is None:
            raise ActionNotFoundError(game_id, action_number)

        provided = update.model_fields_set
        if update.status is not None:
            action.review_status = update.status
            action.reviewed_at = self._clock()
            if update.status.is_decided:
                action.was_re_edited_after_approval = False
        if "note" in provided:
            action.review_note = update.note
        if update.tags is not None:
            action.review_tags = list(update.tags)
        if update.priority is not None:
            action.flag_priority = update.priority

        await self._actions.save(action)
        logger.info(
            "review_updated",
            game_id=game_id,
            action_number=action_number,
            status=action.review_status.value,
            priority=action.flag_priority.value,
        )
        return action

    async def batch_approve_unedited(self, game_id: str) -> int:
        """Approve every unreviewed action that carries no significant edit."""
        now = self._clock()
        approved = []
        for action in await self._actions.list_for_game(game_id):
            if action.has_significant_edit or action.review_status != ReviewStatus.UNREVIEWED:
                continue
            action.review_status = ReviewStatus.APPROVED
            action.reviewed_at = now
            approved.append(action)
        await self._actions.save_many(approved)
        logger.info("batch_approved", game_id=game_id, count=len(approved))
        return len(approved)

    async def clear_all_reviews(self, game_id: str) -> int:
        """Reset every action's review fields for re-triage; returns how many changed."""
        cleared = []
        for action in await self._actions.list_for_game(game_id):
            if not _has_review_state(action):
                continue
            action.review_status = ReviewStatus.UNREVIEWED
            action.reviewed_at = None
            action.review_note = None
            action.review_tags = []
            action.was_re_edited_after_approval = False
            cleared.append(action)
        await self._actions.save_many(cleared)
        logger.info("reviews_cleared", game_id=game_id, count=len(cleared))
        return len(cleared)

    async def reset_edit_flags(self, game_id: str) -> int:
        """
        Forget recorded edits for a game. Soft-deleted actions keep their
        flag, since a deletion is always significant.
        """
        reset = []
        for action in await self._actions.list_for_game(game_id):
            if not (action.edit_history or action.edit_count or action.has_significant_edit):
                continue
            action.edit_history = []
            action.edit_count = 0
            action.last_edit_time_diff = None
            action.has_significant_edit = action.is_deleted
            reset.append(action)
        await self._actions.save_many(reset)
        logger.info("edit_flags_reset", game_id=game_id, count=len(reset))
        return len(reset)

    # ── Read views ──────────────────────────────────────────────────────

    async def actions(
        self, game_id: str, period: Optional[int] = None, only_edited: bool = False
    ) -> list[PlayByPlayAction]:
        return await self._actions.list_for_game(game_id, period=period, only_edited=only_edited)

    async def actions_by_period(self, game_id: str) -> dict[int, list[PlayByPlayAction]]:
        grouped: dict[int, list[PlayByPlayAction]] = defaultdict(list)
        for action in await self._actions.list_for_game(game_id):
            grouped[action.period].append(action)
        return dict(grouped)

    async def edited_actions(self, game_id: str) -> list[PlayByPlayAction]:
        return await self._actions.list_for_game(game_id, only_edited=True)

    async def edit_stats(self, game_id: str) -> EditStats:
        actions = await self._actions.list_for_game(game_id)
        edited = [a for a in actions if a.has_significant_edit]
        total_edits = sum(len(a.edit_history) for a in edited)
        avg_latency = (
            sum(a.last_edit_time_diff or 0.0 for a in edited) / len(edited) if edited else 0.0
        )
        return EditStats(
            game_id=game_id,
            total_actions=len(actions),
            edited_actions=len(edited),
            total_edits=total_edits,
            edit_percentage=round(len(edited) / len(actions) * 100, 2) if actions else 0.0,
            average_edit_time_diff=round(avg_latency),
        )

    async def review_stats(self, game_id: str) -> ReviewStats:
        actions = await self._actions.list_for_game(game_id)
        stats = ReviewStats(game_id=game_id, total=len(actions))
        for action in actions:
            if action.review_status == ReviewStatus.APPROVED:
                stats.approved += 1
            elif action.review_status == ReviewStatus.FLAGGED:
                stats.flagged += 1
            else:
                stats.unreviewed += 1
            if action.was_re_edited_after_approval:
                stats.re_edited += 1
            if action.edit_count > 1:
                stats.multiple_edits += 1
        if actions:
            stats.review_progress = round((stats.approved + stats.flagged) / len(actions) * 100)
        return stats

    async def full_game(self, game_id: str) -> FullGame:
        game = await self._games.get(game_id)
        if game is None:
            raise GameNotFoundError(game_id)
        return FullGame(
            game=game,
            play_by_play=await self.actions_by_period(game_id),
            edit_stats=await self.edit_stats(game_id),
        )

    # ── Retention ───────────────────────────────────────────────────────

    async def clear_old_play_by_play(self, days_to_keep: int = 7) -> int:
        """Purge actions of games older than ``days_to_keep`` days."""
        cutoff = (self._clock() - timedelta(days=days_to_keep)).date()
        keep = await self._games.list_game_ids_since(cutoff)
        removed = await self._actions.delete_except_games(keep)
        logger.info("old_play_by_play_cleared", days_to_keep=days_to_keep, removed=removed)
        return removed
