from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

SessionPhase = Literal["waiting", "countdown", "active", "completed"]
GameKindCode = Literal["quiz", "ladder", "card_match", "timed_round"]
WinCondition = Literal["line", "full_card", "four_corners", "any_pattern"]


class GameItem(BaseModel):
    id: str
    prompt: str = ""
    options: list[str] = Field(default_factory=list)
    correct_index: int | None = None
    points: int | None = None
    time_limit_seconds: int | None = None
    difficulty: str = "medium"


class CardItem(BaseModel):
    id: str
    text: str = ""
    points: int = 10
    challenge_item_id: str | None = None


class GameContent(BaseModel):
    items: list[GameItem] = Field(default_factory=list)
    card_items: list[CardItem] = Field(default_factory=list)
    card_size: int = 5
    card_seed: str = ""
    win_condition: WinCondition = "full_card"
    linked_quiz: bool = False
    pattern_points: dict[str, int] = Field(default_factory=dict)


class ScoringConfig(BaseModel):
    default_item_points: int = 100
    default_time_limit_seconds: int = 30
    speed_threshold_fraction: float = 0.25
    speed_multiplier: float = 1.5
    streak_threshold: int = 3
    streak_multiplier: float = 1.5
    streak_milestones: dict[str, int] = Field(
        default_factory=lambda: {"5": 50, "10": 100, "15": 200, "20": 500}
    )
    confidence_threshold: float = 0.8
    confidence_bonus_fraction: float = 0.1
    timed_round_max_points: int = 100
    timed_round_decay_factor: float = 50.0
    timed_round_min_points: int = 10


class SessionSettings(BaseModel):
    allow_late_join: bool = False
    min_participants: int = 1
    participant_limit: int = 100
    show_leaderboard: bool = True


class SessionDocument(BaseModel):
    id: str
    code: str
    title: str = ""
    game_kind: GameKindCode = "quiz"
    phase: SessionPhase = "waiting"
    anchor_ms: int | None = None
    total_duration_seconds: int = 0
    paused: bool = False
    remaining_at_pause_seconds: int | None = None
    countdown_anchor_ms: int | None = None
    countdown_ticks: int = 3
    settings: SessionSettings = Field(default_factory=SessionSettings)
    content: GameContent = Field(default_factory=GameContent)
    scoring: ScoringConfig = Field(default_factory=ScoringConfig)
    removed_participant_ids: list[str] = Field(default_factory=list)
    created_ms: int = 0
    completed_ms: int | None = None
    completion_reason: str | None = None


class JoinCodeDocument(BaseModel):
    code: str
    session_id: str
