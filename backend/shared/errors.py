"""Domain exceptions raised by the monitor, sync and review layers."""
from __future__ import annotations


class MonitorError(Exception):
    """Base class for all Edit Watch domain errors."""


class GameNotFoundError(MonitorError):
    def __init__(self, game_id: str) -> None:
        self.game_id = game_id
        super().__init__(f"Game {game_id} not found")


class ActionNotFoundError(MonitorError):
    def __init__(self, game_id: str, action_number: int) -> None:
        self.game_id = game_id
        self.action_number = action_number
        super().__init__(f"Action {action_number} not found for game {game_id}")


class RefreshInProgressError(MonitorError):
    """Raised when a fresh start is requested for a game that already holds the refresh lock."""

    def __init__(self, game_id: str) -> None:
        self.game_id = game_id
        super().__init__(f"Game {game_id} is already being refreshed")


class FeedUnavailableError(MonitorError):
    """Transient upstream failure: timeout, connection error or 5xx after retries."""

    def __init__(self, resource: str, reason: str) -> None:
        self.resource = resource
        self.reason = reason
        super().__init__(f"Upstream feed unavailable for {resource}: {reason}")


class StoreError(MonitorError):
    """A store write failed; the enclosing transaction was rolled back."""
