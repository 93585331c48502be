"""
SQLAlchemy 2.0 ORM models for Edit Watch.
One row per game and one row per (game, upstream action number).
"""
from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# JSONB on Postgres, plain JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    pass


class GameORM(Base):
    __tablename__ = "games"
    __table_args__ = (
        Index("ix_games_monitoring", "is_monitoring", "is_refreshing"),
        Index("ix_games_date_status", "game_date", "game_status"),
    )

    game_id: Mapped[str] = mapped_column(String(20), primary_key=True)
    game_date: Mapped[Optional[date]] = mapped_column(Date, index=True)
    game_code: Mapped[Optional[str]] = mapped_column(String(50))
    game_status: Mapped[str] = mapped_column(String(20), nullable=False, default="scheduled")
    game_status_text: Mapped[Optional[str]] = mapped_column(String(50))
    game_time_utc: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    home_team: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    away_team: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    period: Mapped[Optional[int]] = mapped_column(Integer)
    period_type: Mapped[Optional[str]] = mapped_column(String(20))
    game_clock: Mapped[Optional[str]] = mapped_column(String(20))
    arena_name: Mapped[Optional[str]] = mapped_column(String(200))
    arena_city: Mapped[Optional[str]] = mapped_column(String(100))
    arena_state: Mapped[Optional[str]] = mapped_column(String(50))
    attendance: Mapped[Optional[int]] = mapped_column(Integer)
    officials: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)

    is_monitoring: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_refreshing: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    refresh_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    monitoring_started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    game_finished_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    last_polled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    poll_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class ActionORM(Base):
    __tablename__ = "play_by_play_actions"
    __table_args__ = (
        UniqueConstraint("game_id", "action_number", name="uq_action_game_number"),
        Index("ix_actions_game_edited", "game_id", "has_significant_edit"),
        Index("ix_actions_game_period", "game_id", "period", "order_number"),
        Index("ix_actions_game_review", "game_id", "review_status", "has_significant_edit"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    game_id: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    action_number: Mapped[int] = mapped_column(Integer, nullable=False)

    # Upstream fields
    clock: Mapped[Optional[str]] = mapped_column(String(20))
    time_actual: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    edited: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    period: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    period_type: Mapped[Optional[str]] = mapped_column(String(20))
    team_id: Mapped[Optional[int]] = mapped_column(Integer)
    team_tricode: Mapped[Optional[str]] = mapped_column(String(5))
    action_type: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    sub_type: Mapped[Optional[str]] = mapped_column(String(50))
    descriptor: Mapped[Optional[str]] = mapped_column(String(100))
    qualifiers: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    person_id: Mapped[Optional[int]] = mapped_column(Integer)
    player_name: Mapped[Optional[str]] = mapped_column(String(100))
    player_name_i: Mapped[Optional[str]] = mapped_column(String(100))
    x: Mapped[Optional[float]] = mapped_column(Float)
    y: Mapped[Optional[float]] = mapped_column(Float)
    area: Mapped[Optional[str]] = mapped_column(String(50))
    area_detail: Mapped[Optional[str]] = mapped_column(String(50))
    side: Mapped[Optional[str]] = mapped_column(String(20))
    shot_distance: Mapped[Optional[float]] = mapped_column(Float)
    possession: Mapped[Optional[int]] = mapped_column(Integer)
    score_home: Mapped[Optional[str]] = mapped_column(String(10))
    score_away: Mapped[Optional[str]] = mapped_column(String(10))
    order_number: Mapped[Optional[int]] = mapped_column(Integer)
    is_field_goal: Mapped[Optional[int]] = mapped_column(Integer)
    shot_result: Mapped[Optional[str]] = mapped_column(String(20))
    points_total: Mapped[Optional[int]] = mapped_column(Integer)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    person_ids_filter: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    assist_person_id: Mapped[Optional[int]] = mapped_column(Integer)
    assist_player_name_initial: Mapped[Optional[str]] = mapped_column(String(100))
    assist_total: Mapped[Optional[int]] = mapped_column(Integer)
    block_person_id: Mapped[Optional[int]] = mapped_column(Integer)
    block_player_name: Mapped[Optional[str]] = mapped_column(String(100))
    steal_person_id: Mapped[Optional[int]] = mapped_column(Integer)
    steal_player_name: Mapped[Optional[str]] = mapped_column(String(100))
    foul_drawn_person_id: Mapped[Optional[int]] = mapped_column(Integer)
    foul_drawn_player_name: Mapped[Optional[str]] = mapped_column(String(100))
    foul_personal_total: Mapped[Optional[int]] = mapped_column(Integer)
    foul_technical_total: Mapped[Optional[int]] = mapped_column(Integer)
    turnover_total: Mapped[Optional[int]] = mapped_column(Integer)
    rebound_total: Mapped[Optional[int]] = mapped_column(Integer)
    raw_data: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)

    # Edit tracking
    initial_edited_timestamp: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    edit_history: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    edit_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_edit_time_diff: Mapped[Optional[float]] = mapped_column(Float)
    has_significant_edit: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Deletion tracking
    is_deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, index=True)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    # Review
    review_status: Mapped[str] = mapped_column(String(20), nullable=False, default="unreviewed")
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    review_note: Mapped[Optional[str]] = mapped_column(Text)
    review_tags: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    flag_priority: Mapped[str] = mapped_column(String(10), nullable=False, default="minor")
    was_re_edited_after_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
