from app.game.scoring.engine import (
    ladder_points,
    ladder_safe_amount,
    round_half_up,
    score_answer,
    timed_round_points,
)
from app.game.scoring.types import (
    AnswerEvent,
    ItemMeta,
    ParticipantHistory,
    PointsComponent,
    ScoreResult,
    ScoringRules,
)

__all__ = [
    "AnswerEvent",
    "ItemMeta",
    "ParticipantHistory",
    "PointsComponent",
    "ScoreResult",
    "ScoringRules",
    "ladder_points",
    "ladder_safe_amount",
    "round_half_up",
    "score_answer",
    "timed_round_points",
]
