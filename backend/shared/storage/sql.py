"""
PostgreSQL-backed game and action stores.

Every write goes through ``DatabaseManager.write_session`` so a batch either
commits as a whole or is rolled back; SQLAlchemy failures surface as
``StoreError``.
"""
from __future__ import annotations

from datetime import date
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from shared.errors import StoreError
from shared.models.domain import Game, PlayByPlayAction
from shared.models.orm import ActionORM, GameORM
from shared.storage.base import ActionStore, GameStore
from shared.utils.database import DatabaseManager
from shared.utils.logging import get_logger

logger = get_logger(__name__)


def _action_row_values(action: PlayByPlayAction) -> dict[str, Any]:
    values = action.model_dump(exclude={"edit_history", "review_status", "flag_priority"})
    values["edit_history"] = [record.model_dump(mode="json") for record in action.edit_history]
    values["review_status"] = action.review_status.value
    values["flag_priority"] = action.flag_priority.value
    return values


def _game_row_values(game: Game) -> dict[str, Any]:
    values = game.model_dump(exclude={"home_team", "away_team", "officials", "game_status"})
    values["home_team"] = game.home_team.model_dump(mode="json")
    values["away_team"] = game.away_team.model_dump(mode="json")
    values["officials"] = [o.model_dump(mode="json") for o in game.officials]
    values["game_status"] = game.game_status.value
    return values


class SQLActionStore(ActionStore):
    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def get(self, game_id: str, action_number: int) -> Optional[PlayByPlayAction]:
        async with self._db.read_session() as session:
            stmt = select(ActionORM).where(
                ActionORM.game_id == game_id,
                ActionORM.action_number == action_number,
            )
            row = (await session.execute(stmt)).scalar_one_or_none()
            return PlayByPlayAction.model_validate(row) if row else None

    async def list_for_game(
        self,
        game_id: str,
        *,
        period: Optional[int] = None,
        only_edited: bool = False,
    ) -> list[PlayByPlayAction]:
        stmt = select(ActionORM).where(ActionORM.game_id == game_id)
        if period is not None:
            stmt = stmt.where(ActionORM.period == period)
        if only_edited:
            stmt = stmt.where(ActionORM.has_significant_edit.is_(True))
        stmt = stmt.order_by(
            ActionORM.period,
            ActionORM.order_number.nulls_last(),
            ActionORM.action_number,
        )
        async with self._db.read_session() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [PlayByPlayAction.model_validate(row) for row in rows]

    async def save_many(self, actions: Sequence[PlayByPlayAction]) -> None:
        if not actions:
            return
        by_game: dict[str, dict[int, PlayByPlayAction]] = {}
        for action in actions:
            by_game.setdefault(action.game_id, {})[action.action_number] = action

        try:
            async with self._db.write_session() as session:
                for game_id, numbered in by_game.items():
                    stmt = select(ActionORM).where(
                        ActionORM.game_id == game_id,
                        ActionORM.action_number.in_(list(numbered)),
                    )
                    existing = {
                        row.action_number: row
                        for row in (await session.execute(stmt)).scalars().all()
                    }
                    for number, action in numbered.items():
                        values = _action_row_values(action)
                        row = existing.get(number)
                        if row is None:
                            session.add(ActionORM(**values))
                            continue
                        for key, value in values.items():
                            setattr(row, key, value)
        except SQLAlchemyError as exc:
            logger.error("action_store_write_failed", count=len(actions), error=str(exc))
            raise StoreError(f"Failed to persist {len(actions)} actions: {exc}") from exc

    async def delete_for_game(self, game_id: str) -> int:
        try:
            async with self._db.write_session() as session:
                result = await session.execute(delete(ActionORM).where(ActionORM.game_id == game_id))
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to delete actions for game {game_id}: {exc}") from exc
        logger.debug("actions_deleted", game_id=game_id, count=result.rowcount)
        return result.rowcount or 0

    async def delete_except_games(self, keep_game_ids: Iterable[str]) -> int:
        keep = list(keep_game_ids)
        try:
            async with self._db.write_session() as session:
                result = await session.execute(
                    delete(ActionORM).where(ActionORM.game_id.not_in(keep))
                )
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to purge old actions: {exc}") from exc
        return result.rowcount or 0


class SQLGameStore(GameStore):
    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def get(self, game_id: str) -> Optional[Game]:
        async with self._db.read_session() as session:
            row = await session.get(GameORM, game_id)
            return Game.model_validate(row) if row else None

    async def save_many(self, games: Sequence[Game]) -> None:
        if not games:
            return
        try:
            async with self._db.write_session() as session:
                for game in games:
                    values = _game_row_values(game)
                    row = await session.get(GameORM, game.game_id)
                    if row is None:
                        session.add(GameORM(**values))
                        continue
                    for key, value in values.items():
                        setattr(row, key, value)
        except SQLAlchemyError as exc:
            logger.error("game_store_write_failed", count=len(games), error=str(exc))
            raise StoreError(f"Failed to persist {len(games)} games: {exc}") from exc

    async def _select(self, *criteria: Any) -> list[Game]:
        stmt = (
            select(GameORM)
            .where(*criteria)
            .order_by(GameORM.game_time_utc.nulls_last(), GameORM.game_id)
        )
        async with self._db.read_session() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [Game.model_validate(row) for row in rows]

    async def list_monitorable(self) -> list[Game]:
        return await self._select(
            GameORM.is_monitoring.is_(True),
            GameORM.is_refreshing.is_(False),
        )

    async def list_monitored(self) -> list[Game]:
        return await self._select(GameORM.is_monitoring.is_(True))

    async def list_refreshing(self) -> list[Game]:
        return await self._select(GameORM.is_refreshing.is_(True))

    async def list_game_ids_since(self, cutoff: date) -> list[str]:
        async with self._db.read_session() as session:
            stmt = select(GameORM.game_id).where(GameORM.game_date >= cutoff)
            return list((await session.execute(stmt)).scalars().all())
