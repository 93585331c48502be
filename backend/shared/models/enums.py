"""Domain enumerations for the Edit Watch platform."""
from __future__ import annotations

from enum import Enum

SUBSTITUTION_ACTION_TYPE = "substitution"


class GameStatus(str, Enum):
    SCHEDULED = "scheduled"
    LIVE = "live"
    FINAL = "final"

    @classmethod
    def from_code(cls, code: int | None) -> "GameStatus":
        """Map the upstream numeric status (1 scheduled, 2 live, 3 final)."""
        if code == 2:
            return cls.LIVE
        if code == 3:
            return cls.FINAL
        return cls.SCHEDULED

    @property
    def is_live(self) -> bool:
        return self == GameStatus.LIVE

    @property
    def is_terminal(self) -> bool:
        return self == GameStatus.FINAL


class ReviewStatus(str, Enum):
    UNREVIEWED = "unreviewed"
    APPROVED = "approved"
    FLAGGED = "flagged"

    @property
    def is_decided(self) -> bool:
        return self in (ReviewStatus.APPROVED, ReviewStatus.FLAGGED)


class FlagPriority(str, Enum):
    MINOR = "minor"
    MAJOR = "major"
