from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

ProgressState = Literal["waiting", "in_progress", "completed"]


class PointsComponentRecord(BaseModel):
    kind: str
    amount: int


class AnswerRecord(BaseModel):
    item_id: str
    choice_index: int | None = None
    correct: bool = False
    elapsed_seconds: float = 0.0
    points: int = 0
    breakdown: list[PointsComponentRecord] = Field(default_factory=list)
    confidence: float | None = None
    kind: str = "answer"


class CardCell(BaseModel):
    item_id: str
    marked: bool = False


class ParticipantDocument(BaseModel):
    id: str
    session_id: str
    display_name: str
    progress_state: ProgressState = "waiting"
    current_item_index: int = 0
    item_started_ms: int | None = None
    score: int = 0
    streak: int = 0
    best_streak: int = 0
    winnings: int = 0
    answer_log: list[AnswerRecord] = Field(default_factory=list)
    card_state: list[list[CardCell]] | None = None
    completed_patterns: list[str] = Field(default_factory=list)
    first_pattern_ms: int | None = None
    joined_ms: int = 0
    completed_ms: int | None = None
