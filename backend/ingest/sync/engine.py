"""
Play-by-play sync engine.

Reconciles a freshly fetched action list against the stored mirror of one
game: creates, updates, restores and soft-deletes actions, and records the
changes the classifier considers significant.
"""
from __future__ import annotations

import asyncio
import json
from datetime import datetime
from typing import Optional

from redis.exceptions import RedisError

from shared.config import Settings, get_settings
from shared.errors import GameNotFoundError
from shared.models.domain import (
    FEED_FIELDS,
    EditRecord,
    FeedAction,
    Game,
    PlayByPlayAction,
    SyncResult,
)
from shared.storage.base import ActionStore, GameStore
from shared.utils.clock import Clock, utc_now
from shared.utils.logging import get_logger
from shared.utils.metrics import (
    DISCARDED_EDITS,
    SIGNIFICANT_EDITS,
    SYNC_DURATION,
    SYNC_RESULTS,
    atrack_latency,
)
from shared.utils.redis_manager import RedisManager

from ingest.providers.base import PlayByPlayFeed
from ingest.sync.classifier import is_significant

logger = get_logger(__name__)


def _matches_feed(action: PlayByPlayAction, feed: FeedAction) -> bool:
    return all(getattr(action, name) == getattr(feed, name) for name in FEED_FIELDS)


class SyncEngine:
    """
    Owns every write to the action store.

    ``sync`` is serialized per game inside the process; different games can
    be synced concurrently.
    """

    def __init__(
        self,
        actions: ActionStore,
        games: GameStore,
        feed: PlayByPlayFeed,
        settings: Settings | None = None,
        redis: RedisManager | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._actions = actions
        self._games = games
        self._feed = feed
        self._settings = settings or get_settings()
        self._redis = redis
        self._clock = clock or utc_now
        self._min_latency_s = float(self._settings.edit_min_latency_s)
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, game_id: str) -> asyncio.Lock:
        lock = self._locks.get(game_id)
        if lock is None:
            lock = self._locks[game_id] = asyncio.Lock()
        return lock

    async def sync(self, game_id: str) -> SyncResult:
        """
        Fetch the current action list for ``game_id`` and reconcile it.

        Returns an ``available=False`` result when the feed has nothing yet.
        Store failures propagate and leave the stored actions untouched.
        """
        async with self._lock_for(game_id):
            async with atrack_latency(SYNC_DURATION):
                return await self._sync_locked(game_id)

    async def _sync_locked(self, game_id: str) -> SyncResult:
        fetched = await self._feed.fetch_actions(game_id)
        if fetched is None:
            SYNC_RESULTS.labels(outcome="unavailable").inc()
            return SyncResult.unavailable(game_id)

        # Later duplicates of an action number win.
        incoming: dict[int, FeedAction] = {item.action_number: item for item in fetched}
        stored = {a.action_number: a for a in await self._actions.list_for_game(game_id)}
        now = self._clock()
        result = SyncResult(game_id=game_id, processed=len(incoming))
        touched: dict[int, PlayByPlayAction] = {}
        detected: list[tuple[PlayByPlayAction, EditRecord]] = []

        for number, action in stored.items():
            if action.is_deleted or number in incoming:
                continue
            action.mark_deleted(now)
            touched[number] = action
            result.deleted += 1
            logger.info(
                "action_deleted",
                game_id=game_id,
                action_number=number,
                description=action.description,
            )

        for number, feed_action in incoming.items():
            action = stored.get(number)
            if action is None:
                touched[number] = PlayByPlayAction.first_seen(game_id, feed_action)
                result.created += 1
                continue

            restored = action.is_deleted
            if restored:
                action.restore()
                result.restored += 1
                logger.info("action_restored", game_id=game_id, action_number=number)
            elif _matches_feed(action, feed_action):
                continue

            touched[number] = action
            result.updated += 1
            record = self._evaluate(action, feed_action, now)
            if record is not None:
                action.record_edit(record)
                detected.append((action, record))

        result.significant_edits = len(detected)
        if touched:
            await self._actions.save_many(list(touched.values()))

        for outcome in ("created", "updated", "deleted", "restored"):
            count = getattr(result, outcome)
            if count:
                SYNC_RESULTS.labels(outcome=outcome).inc(count)
        if detected:
            SIGNIFICANT_EDITS.inc(len(detected))
            await self._publish_alerts(game_id, detected)

        logger.info(
            "sync_completed",
            game_id=game_id,
            processed=result.processed,
            created=result.created,
            updated=result.updated,
            deleted=result.deleted,
            restored=result.restored,
            significant_edits=result.significant_edits,
        )
        return result

    def _evaluate(
        self, action: PlayByPlayAction, feed_action: FeedAction, now: datetime
    ) -> Optional[EditRecord]:
        """Apply the fetched fields and return an EditRecord when the change is significant."""
        old = action.snapshot()
        action.apply_feed(feed_action)

        baseline = action.initial_edited_timestamp
        if action.edited is None or (baseline is not None and action.edited <= baseline):
            return None

        time_diff = action.edit_time_diff()
        if time_diff < self._min_latency_s:
            DISCARDED_EDITS.labels(reason="too_fast").inc()
            logger.debug(
                "edit_too_fast",
                game_id=action.game_id,
                action_number=action.action_number,
                time_diff=round(time_diff, 1),
            )
            return None

        new = action.snapshot()
        fields_changed = old.diff(new)
        if not fields_changed or not is_significant(old, new):
            DISCARDED_EDITS.labels(reason="not_significant").inc()
            logger.debug(
                "edit_not_significant",
                game_id=action.game_id,
                action_number=action.action_number,
                fields=fields_changed,
            )
            return None

        logger.info(
            "significant_edit_detected",
            game_id=action.game_id,
            action_number=action.action_number,
            time_diff=round(time_diff, 1),
            old_description=old.description,
            new_description=new.description,
        )
        return EditRecord(
            edited_at=now,
            old_description=old.description,
            new_description=new.description,
            old_data=old,
            new_data=new,
            time_diff=time_diff,
            fields_changed=fields_changed,
        )

    async def _publish_alerts(
        self, game_id: str, detected: list[tuple[PlayByPlayAction, EditRecord]]
    ) -> None:
        if self._redis is None or not self._redis.is_connected:
            return
        for action, record in detected:
            payload = json.dumps({
                "game_id": game_id,
                "action_number": action.action_number,
                "period": action.period,
                "clock": action.clock,
                "edit_count": action.edit_count,
                "was_re_edited_after_approval": action.was_re_edited_after_approval,
                "edit": record.model_dump(mode="json"),
            })
            try:
                await self._redis.publish_edit_alert(game_id, payload)
            except RedisError as exc:
                logger.warning("edit_alert_publish_failed", game_id=game_id, error=str(exc))
                return

    async def sync_boxscore(self, game_id: str) -> Optional[Game]:
        """
        Copy live score, period, clock, status, arena and officials into the
        stored game. Returns the updated game, or None when no box score is
        published yet.
        """
        game = await self._games.get(game_id)
        if game is None:
            raise GameNotFoundError(game_id)
        box = await self._feed.fetch_boxscore(game_id)
        if box is None:
            return None
        game.apply_boxscore(box, self._clock())
        await self._games.save(game)
        logger.debug(
            "boxscore_synced",
            game_id=game_id,
            status=game.game_status.value,
            period=game.period,
            clock=game.game_clock,
            home_score=game.home_team.score,
            away_score=game.away_team.score,
        )
        return game
