"""
Storage contracts for games and play-by-play actions.

The sync engine, scheduler and review workflow only talk to these
interfaces; ``shared.storage.sql`` provides the Postgres implementation.
"""
from __future__ import annotations

import abc
from datetime import date
from typing import Iterable, Optional, Sequence

from shared.models.domain import Game, PlayByPlayAction


class ActionStore(abc.ABC):
    """Durable keyed store of one record per (game_id, action_number)."""

    @abc.abstractmethod
    async def get(self, game_id: str, action_number: int) -> Optional[PlayByPlayAction]:
        ...

    @abc.abstractmethod
    async def list_for_game(
        self,
        game_id: str,
        *,
        period: Optional[int] = None,
        only_edited: bool = False,
    ) -> list[PlayByPlayAction]:
        """All actions for a game (deleted ones included), ordered by period then play order."""
        ...

    @abc.abstractmethod
    async def save_many(self, actions: Sequence[PlayByPlayAction]) -> None:
        """Insert or update every action in one transaction; all or nothing."""
        ...

    @abc.abstractmethod
    async def delete_for_game(self, game_id: str) -> int:
        ...

    @abc.abstractmethod
    async def delete_except_games(self, keep_game_ids: Iterable[str]) -> int:
        """Purge actions for every game not listed; returns rows removed."""
        ...

    async def save(self, action: PlayByPlayAction) -> None:
        await self.save_many([action])


class GameStore(abc.ABC):
    """Durable keyed store of one record per game."""

    @abc.abstractmethod
    async def get(self, game_id: str) -> Optional[Game]:
        ...

    @abc.abstractmethod
    async def save_many(self, games: Sequence[Game]) -> None:
        ...

    @abc.abstractmethod
    async def list_monitorable(self) -> list[Game]:
        """Games with monitoring on and no refresh lock held."""
        ...

    @abc.abstractmethod
    async def list_monitored(self) -> list[Game]:
        """Games with monitoring on, ordered by tip-off."""
        ...

    @abc.abstractmethod
    async def list_refreshing(self) -> list[Game]:
        ...

    @abc.abstractmethod
    async def list_game_ids_since(self, cutoff: date) -> list[str]:
        ...

    async def save(self, game: Game) -> None:
        await self.save_many([game])
