"""
Abstract base class for live play-by-play feeds.
Defines the read-only contract the sync engine and scheduler depend on.
"""
from __future__ import annotations

import abc
from datetime import date
from typing import Optional

from shared.models.domain import BoxscoreSummary, FeedAction, ScheduleEntry


class PlayByPlayFeed(abc.ABC):
    """
    Upstream source of truth for live games. Pure I/O, no state of its own
    beyond connection handling and response caching.

    ``None`` means "not published yet" and is never an error. Transient
    failures raise ``FeedUnavailableError``.
    """

    async def start(self) -> None:
        """Open network resources. Default: nothing to do."""

    async def close(self) -> None:
        """Release network resources. Default: nothing to do."""

    @abc.abstractmethod
    async def fetch_actions(self, game_id: str) -> Optional[list[FeedAction]]:
        """Current action list for a game, or None if not available yet."""
        ...

    @abc.abstractmethod
    async def fetch_boxscore(self, game_id: str) -> Optional[BoxscoreSummary]:
        """Live box-score summary (score, period, clock, arena, officials)."""
        ...

    @abc.abstractmethod
    async def fetch_schedule(self, day: date) -> list[ScheduleEntry]:
        """Games scheduled on ``day`` (league-local calendar day)."""
        ...
