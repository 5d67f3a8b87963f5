from __future__ import annotations

from dataclasses import dataclass, field

from app.db.models.live_participants import AnswerRecord, CardCell
from app.game.scoring.types import PointsComponent


@dataclass(slots=True)
class ParticipantRow:
    participant_id: str
    display_name: str
    score: int
    streak: int
    progress_state: str
    current_item_index: int
    removed: bool = False


@dataclass(slots=True)
class ControllerProjection:
    session_id: str
    code: str
    phase: str
    remaining_seconds: int
    paused: bool
    countdown_remaining_seconds: int | None
    participants: tuple[ParticipantRow, ...]
    completion_reason: str | None = None


@dataclass(slots=True)
class ParticipantProjection:
    session_id: str
    participant_id: str
    phase: str
    progress_state: str
    remaining_seconds: int
    paused: bool
    current_item_index: int
    total_items: int
    score: int
    streak: int
    winnings: int = 0
    card_state: tuple[tuple[CardCell, ...], ...] | None = None
    completed_patterns: tuple[str, ...] = ()
    pending_sync: bool = False


@dataclass(slots=True)
class JoinResult:
    session_id: str
    participant_id: str
    code: str
    progress_state: str
    late_join: bool = False


@dataclass(slots=True)
class AnswerOutcome:
    participant_id: str
    item_id: str
    correct: bool
    points: int
    breakdown: tuple[PointsComponent, ...]
    score: int
    streak: int
    current_item_index: int
    completed: bool
    late: bool = False


@dataclass(slots=True)
class MarkOutcome:
    participant_id: str
    row: int
    col: int
    marked: bool
    changed: bool
    points: int
    score: int
    streak: int
    new_patterns: tuple[str, ...] = ()
    challenge_failed: bool = False
    completed: bool = False


@dataclass(slots=True)
class ParticipantReport:
    participant_id: str
    display_name: str
    score: int
    accuracy_percent: float
    answered_count: int
    correct_count: int
    average_elapsed_seconds: float
    best_streak: int
    winnings: int
    completed_patterns: tuple[str, ...]
    answer_log: tuple[AnswerRecord, ...]
    time_to_first_pattern_seconds: float | None = None


@dataclass(slots=True)
class AwardRecipient:
    participant_id: str
    display_name: str
    value: str | int
    rank: int | None = None


@dataclass(slots=True)
class Award:
    code: str
    name: str
    description: str
    recipients: tuple[AwardRecipient, ...]


@dataclass(slots=True)
class SessionAwards:
    awards: tuple[Award, ...] = ()
    top_performers: tuple[AwardRecipient, ...] = field(default_factory=tuple)
