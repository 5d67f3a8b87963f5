from __future__ import annotations

from pydantic import BaseModel, Field

from app.db.models.live_sessions import GameContent, GameKindCode, ScoringConfig, SessionSettings


class CreateSessionRequest(BaseModel):
    game_kind: GameKindCode = "quiz"
    total_duration_seconds: int = Field(gt=0, le=86400)
    title: str = Field(default="", max_length=200)
    content: GameContent | None = None
    settings: SessionSettings | None = None
    scoring: ScoringConfig | None = None


class SessionCreatedResponse(BaseModel):
    session_id: str
    code: str
    phase: str
    game_kind: str
    total_duration_seconds: int


class JoinSessionRequest(BaseModel):
    code: str = Field(min_length=1, max_length=16)
    display_name: str = Field(min_length=1, max_length=80)
    participant_id: str | None = Field(default=None, min_length=1, max_length=64)


class JoinSessionResponse(BaseModel):
    session_id: str
    participant_id: str
    code: str
    progress_state: str
    late_join: bool


class ParticipantRowResponse(BaseModel):
    participant_id: str
    display_name: str
    score: int = Field(ge=0)
    streak: int = Field(ge=0)
    progress_state: str
    current_item_index: int = Field(ge=0)
    removed: bool = False


class ControllerProjectionResponse(BaseModel):
    session_id: str
    code: str
    phase: str
    remaining_seconds: int = Field(ge=0)
    paused: bool
    countdown_remaining_seconds: int | None = None
    participants: list[ParticipantRowResponse]
    completion_reason: str | None = None


class CardCellResponse(BaseModel):
    item_id: str
    marked: bool


class ParticipantProjectionResponse(BaseModel):
    session_id: str
    participant_id: str
    phase: str
    progress_state: str
    remaining_seconds: int = Field(ge=0)
    paused: bool
    current_item_index: int = Field(ge=0)
    total_items: int = Field(ge=0)
    score: int = Field(ge=0)
    streak: int = Field(ge=0)
    winnings: int = Field(default=0, ge=0)
    card_state: list[list[CardCellResponse]] | None = None
    completed_patterns: list[str] = Field(default_factory=list)
    pending_sync: bool = False


class SubmitAnswerRequest(BaseModel):
    choice_index: int | None = Field(default=None, ge=0)
    elapsed_seconds: float | None = Field(default=None, ge=0.0)
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)


class PointsComponentResponse(BaseModel):
    kind: str
    amount: int


class AnswerOutcomeResponse(BaseModel):
    participant_id: str
    item_id: str
    correct: bool
    points: int = Field(ge=0)
    breakdown: list[PointsComponentResponse]
    score: int = Field(ge=0)
    streak: int = Field(ge=0)
    current_item_index: int = Field(ge=0)
    completed: bool
    late: bool = False


class MarkCellRequest(BaseModel):
    row: int = Field(ge=0)
    col: int = Field(ge=0)
    challenge_choice: int | None = Field(default=None, ge=0)


class MarkOutcomeResponse(BaseModel):
    participant_id: str
    row: int
    col: int
    marked: bool
    changed: bool
    points: int = Field(ge=0)
    score: int = Field(ge=0)
    streak: int = Field(ge=0)
    new_patterns: list[str] = Field(default_factory=list)
    challenge_failed: bool = False
    completed: bool = False


class AnswerRecordResponse(BaseModel):
    item_id: str
    choice_index: int | None = None
    correct: bool
    elapsed_seconds: float
    points: int
    kind: str


class ParticipantReportResponse(BaseModel):
    participant_id: str
    display_name: str
    score: int = Field(ge=0)
    accuracy_percent: float = Field(ge=0.0, le=100.0)
    answered_count: int = Field(ge=0)
    correct_count: int = Field(ge=0)
    average_elapsed_seconds: float = Field(ge=0.0)
    best_streak: int = Field(ge=0)
    winnings: int = Field(default=0, ge=0)
    completed_patterns: list[str]
    answer_log: list[AnswerRecordResponse]
    time_to_first_pattern_seconds: float | None = None


class AwardRecipientResponse(BaseModel):
    participant_id: str
    display_name: str
    value: str | int
    rank: int | None = None


class AwardResponse(BaseModel):
    code: str
    name: str
    description: str
    recipients: list[AwardRecipientResponse]


class SessionReportResponse(BaseModel):
    session_id: str
    completion_reason: str | None = None
    participants: list[ParticipantReportResponse]
    awards: list[AwardResponse]
    top_performers: list[AwardRecipientResponse]
