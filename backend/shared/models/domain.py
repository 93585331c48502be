"""
Pydantic v2 domain models shared across the Edit Watch services.
These are the canonical wire/internal representations — NOT ORM models.

Upstream payloads are camelCase; ``FeedModel`` subclasses accept either the
upstream key or the snake_case field name.
"""
from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from shared.models.enums import FlagPriority, GameStatus, ReviewStatus

_ISO_CLOCK = re.compile(r"PT(?:(\d+)M)?(?:(\d+(?:\.\d+)?)S)?")


def parse_game_clock(iso_duration: Optional[str]) -> str:
    """Render an ISO-8601 game clock (``PT01M51.00S``) as ``1:51``."""
    if not iso_duration:
        return ""
    match = _ISO_CLOCK.fullmatch(iso_duration)
    if not match or not any(match.groups()):
        return iso_duration
    minutes = int(match.group(1) or 0)
    seconds = int(float(match.group(2) or 0))
    return f"{minutes}:{seconds:02d}"


# ── Base ────────────────────────────────────────────────────────────────
class DomainModel(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)


class FeedModel(DomainModel):
    """Model parsed from upstream camelCase JSON."""
    model_config = ConfigDict(alias_generator=to_camel, extra="ignore")


# ── Edit tracking ───────────────────────────────────────────────────────
class ActionSnapshot(DomainModel):
    """The fixed set of fields compared between two observations of one action."""
    model_config = ConfigDict(frozen=True)

    description: Optional[str] = None
    clock: Optional[str] = None
    score_home: Optional[str] = None
    score_away: Optional[str] = None
    action_type: Optional[str] = None
    sub_type: Optional[str] = None
    person_id: Optional[int] = None
    shot_result: Optional[str] = None
    edited: Optional[datetime] = None

    def diff(self, other: "ActionSnapshot") -> list[str]:
        """Names of tracked fields whose values differ, in declaration order."""
        return [name for name in TRACKED_FIELDS if getattr(self, name) != getattr(other, name)]


TRACKED_FIELDS: tuple[str, ...] = tuple(ActionSnapshot.model_fields)


class EditRecord(DomainModel):
    model_config = ConfigDict(frozen=True)

    edited_at: datetime
    old_description: Optional[str] = None
    new_description: Optional[str] = None
    old_data: ActionSnapshot
    new_data: ActionSnapshot
    time_diff: float = 0.0
    fields_changed: list[str] = Field(default_factory=list)


# ── Play-by-play actions ────────────────────────────────────────────────
class FeedAction(FeedModel):
    """One action exactly as the upstream play-by-play feed reports it."""
    action_number: int
    clock: Optional[str] = None
    time_actual: Optional[datetime] = None
    edited: Optional[datetime] = None
    period: int = 0
    period_type: Optional[str] = None
    team_id: Optional[int] = None
    team_tricode: Optional[str] = None
    action_type: str = ""
    sub_type: Optional[str] = None
    descriptor: Optional[str] = None
    qualifiers: list[str] = Field(default_factory=list)
    person_id: Optional[int] = None
    player_name: Optional[str] = None
    player_name_i: Optional[str] = None
    x: Optional[float] = None
    y: Optional[float] = None
    area: Optional[str] = None
    area_detail: Optional[str] = None
    side: Optional[str] = None
    shot_distance: Optional[float] = None
    possession: Optional[int] = None
    score_home: Optional[str] = None
    score_away: Optional[str] = None
    order_number: Optional[int] = None
    is_field_goal: Optional[int] = None
    shot_result: Optional[str] = None
    points_total: Optional[int] = None
    description: str = ""
    person_ids_filter: list[int] = Field(default_factory=list)
    # Secondary attribution
    assist_person_id: Optional[int] = None
    assist_player_name_initial: Optional[str] = None
    assist_total: Optional[int] = None
    block_person_id: Optional[int] = None
    block_player_name: Optional[str] = None
    steal_person_id: Optional[int] = None
    steal_player_name: Optional[str] = None
    foul_drawn_person_id: Optional[int] = None
    foul_drawn_player_name: Optional[str] = None
    foul_personal_total: Optional[int] = None
    foul_technical_total: Optional[int] = None
    turnover_total: Optional[int] = None
    rebound_total: Optional[int] = None
    raw_data: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "FeedAction":
        action = cls.model_validate(payload)
        action.raw_data = payload
        return action


FEED_FIELDS: tuple[str, ...] = tuple(
    name for name in FeedAction.model_fields if name != "action_number"
)


class PlayByPlayAction(FeedAction):
    """
    Locally owned mirror of one upstream action, keyed by (game_id, action_number).

    Carries the current upstream values plus everything we learned about the
    action over time: the first-seen edit timestamp, the edit history, soft
    deletion and the operator's review state.
    """
    game_id: str

    initial_edited_timestamp: Optional[datetime] = None
    edit_history: list[EditRecord] = Field(default_factory=list)
    edit_count: int = 0
    last_edit_time_diff: Optional[float] = None
    has_significant_edit: bool = False

    is_deleted: bool = False
    deleted_at: Optional[datetime] = None

    review_status: ReviewStatus = ReviewStatus.UNREVIEWED
    reviewed_at: Optional[datetime] = None
    review_note: Optional[str] = None
    review_tags: list[str] = Field(default_factory=list)
    flag_priority: FlagPriority = FlagPriority.MINOR
    was_re_edited_after_approval: bool = False

    @classmethod
    def first_seen(cls, game_id: str, feed: FeedAction) -> "PlayByPlayAction":
        """Create the record for an action observed for the first time; its ``edited`` becomes the baseline."""
        action = cls(game_id=game_id, action_number=feed.action_number)
        action.apply_feed(feed)
        action.initial_edited_timestamp = feed.edited
        return action

    def snapshot(self) -> ActionSnapshot:
        return ActionSnapshot(**{name: getattr(self, name) for name in TRACKED_FIELDS})

    def apply_feed(self, feed: FeedAction) -> None:
        """Overwrite every upstream field with the freshly fetched values."""
        for name in FEED_FIELDS:
            setattr(self, name, getattr(feed, name))

    def edit_time_diff(self) -> float:
        """Seconds between the reported play time and the upstream edit timestamp."""
        if self.time_actual is None or self.edited is None:
            return 0.0
        return abs((self.edited - self.time_actual).total_seconds())

    def mark_deleted(self, now: datetime) -> None:
        self.is_deleted = True
        self.deleted_at = now
        self.has_significant_edit = True

    def restore(self) -> None:
        self.is_deleted = False
        self.deleted_at = None
        self.has_significant_edit = self.edit_count > 0

    def record_edit(self, record: EditRecord) -> None:
        self.edit_history.append(record)
        self.edit_count += 1
        self.last_edit_time_diff = record.time_diff
        self.has_significant_edit = True
        if self.review_status == ReviewStatus.APPROVED:
            self.review_status = ReviewStatus.UNREVIEWED
            self.was_re_edited_after_approval = True


# ── Games ───────────────────────────────────────────────────────────────
class TeamLine(FeedModel):
    team_id: Optional[int] = None
    team_name: Optional[str] = None
    team_city: Optional[str] = None
    team_tricode: Optional[str] = None
    wins: Optional[int] = None
    losses: Optional[int] = None
    score: Optional[int] = None


class Official(FeedModel):
    person_id: Optional[int] = None
    name: Optional[str] = None
    name_i: Optional[str] = None
    first_name: Optional[str] = None
    family_name: Optional[str] = None
    jersey_num: Optional[str] = None
    assignment: Optional[str] = None


class Arena(FeedModel):
    arena_name: Optional[str] = None
    arena_city: Optional[str] = None
    arena_state: Optional[str] = None
    arena_attendance: Optional[int] = None


class BoxscoreSummary(FeedModel):
    """Live summary fields taken from the upstream box score."""
    game_id: str
    game_status: Optional[int] = None
    game_status_text: Optional[str] = None
    period: Optional[int] = None
    period_type: Optional[str] = None
    game_clock: Optional[str] = None
    home_team: Optional[TeamLine] = None
    away_team: Optional[TeamLine] = None
    arena: Optional[Arena] = None
    officials: list[Official] = Field(default_factory=list)


class ScheduleEntry(FeedModel):
    """One game row from the league schedule."""
    game_id: str
    game_date: Optional[date] = None
    game_code: Optional[str] = None
    game_status: int = 1
    game_status_text: Optional[str] = None
    game_date_time_utc: Optional[datetime] = Field(default=None, alias="gameDateTimeUTC")
    arena_name: Optional[str] = None
    arena_city: Optional[str] = None
    arena_state: Optional[str] = None
    home_team: TeamLine = Field(default_factory=TeamLine)
    away_team: TeamLine = Field(default_factory=TeamLine)


class Game(DomainModel):
    game_id: str
    game_date: Optional[date] = None
    game_code: Optional[str] = None
    game_status: GameStatus = GameStatus.SCHEDULED
    game_status_text: Optional[str] = None
    game_time_utc: Optional[datetime] = None
    home_team: TeamLine = Field(default_factory=TeamLine)
    away_team: TeamLine = Field(default_factory=TeamLine)
    period: Optional[int] = None
    period_type: Optional[str] = None
    game_clock: Optional[str] = None
    arena_name: Optional[str] = None
    arena_city: Optional[str] = None
    arena_state: Optional[str] = None
    attendance: Optional[int] = None
    officials: list[Official] = Field(default_factory=list)

    # Monitoring control
    is_monitoring: bool = False
    is_refreshing: bool = False
    refresh_started_at: Optional[datetime] = None
    monitoring_started_at: Optional[datetime] = None
    game_finished_at: Optional[datetime] = None
    last_polled_at: Optional[datetime] = None
    poll_count: int = 0

    @property
    def matchup(self) -> str:
        return f"{self.away_team.team_tricode or '?'} @ {self.home_team.team_tricode or '?'}"

    def apply_schedule(self, entry: ScheduleEntry, now: datetime) -> None:
        score_before = (self.home_team.score, self.away_team.score)
        self.game_code = entry.game_code
        self.game_status = GameStatus.from_code(entry.game_status)
        self.game_status_text = entry.game_status_text
        if entry.game_date is not None:
            self.game_date = entry.game_date
        if entry.game_date_time_utc is not None:
            self.game_time_utc = entry.game_date_time_utc
        self.arena_name = entry.arena_name or self.arena_name
        self.arena_city = entry.arena_city or self.arena_city
        self.arena_state = entry.arena_state or self.arena_state
        self.home_team = entry.home_team
        self.away_team = entry.away_team
        self._track_final(now, score_before)

    def apply_boxscore(self, box: BoxscoreSummary, now: datetime) -> None:
        score_before = (self.home_team.score, self.away_team.score)
        if box.period is not None:
            self.period = box.period
        if box.period_type:
            self.period_type = box.period_type
        if box.game_clock:
            self.game_clock = parse_game_clock(box.game_clock)
        if box.game_status is not None:
            self.game_status = GameStatus.from_code(box.game_status)
        if box.game_status_text:
            self.game_status_text = box.game_status_text
        if box.home_team is not None and box.home_team.score is not None:
            self.home_team = self.home_team.model_copy(update={"score": box.home_team.score})
        if box.away_team is not None and box.away_team.score is not None:
            self.away_team = self.away_team.model_copy(update={"score": box.away_team.score})
        if box.arena is not None:
            self.arena_name = box.arena.arena_name or self.arena_name
            self.arena_city = box.arena.arena_city or self.arena_city
            self.arena_state = box.arena.arena_state or self.arena_state
            if box.arena.arena_attendance is not None:
                self.attendance = box.arena.arena_attendance
        if box.officials:
            self.officials = list(box.officials)
        self._track_final(now, score_before)

    def _track_final(self, now: datetime, score_before: tuple[Optional[int], Optional[int]]) -> None:
        # A score change after the final horn restarts the cool-down.
        if not self.game_status.is_terminal:
            return
        score_changed = score_before != (self.home_team.score, self.away_team.score)
        if self.game_finished_at is None or score_changed:
            self.game_finished_at = now


# ── Results and views ───────────────────────────────────────────────────
class SyncResult(DomainModel):
    game_id: str
    available: bool = True
    processed: int = 0
    created: int = 0
    updated: int = 0
    deleted: int = 0
    restored: int = 0
    significant_edits: int = 0

    @classmethod
    def unavailable(cls, game_id: str) -> "SyncResult":
        return cls(game_id=game_id, available=False)


class ReviewUpdate(DomainModel):
    """
    Partial review change. Only fields present in the request are applied,
    so ``note=None`` clears a note while an omitted ``note`` leaves it alone.
    """
    status: Optional[ReviewStatus] = None
    note: Optional[str] = None
    tags: Optional[list[str]] = None
    priority: Optional[FlagPriority] = None


class EditStats(DomainModel):
    game_id: str
    total_actions: int = 0
    edited_actions: int = 0
    total_edits: int = 0
    edit_percentage: float = 0.0
    average_edit_time_diff: int = 0


class ReviewStats(DomainModel):
    game_id: str
    total: int = 0
    unreviewed: int = 0
    approved: int = 0
    flagged: int = 0
    re_edited: int = 0
    multiple_edits: int = 0
    review_progress: int = 0


class FullGame(DomainModel):
    game: Game
    play_by_play: dict[int, list[PlayByPlayAction]] = Field(default_factory=dict)
    edit_stats: EditStats


class MonitoringStats(DomainModel):
    is_running: bool = False
    is_leader: bool = False
    last_run: Optional[datetime] = None
    total_runs: int = 0
    games_monitored: int = 0
    total_polls: int = 0
    errors: int = 0
    current_interval_s: float = 0.0
    schedule_synced_on: Optional[date] = None
