from app.db.models.live_participants import (
    AnswerRecord,
    CardCell,
    ParticipantDocument,
    PointsComponentRecord,
)
from app.db.models.live_sessions import (
    CardItem,
    GameContent,
    GameItem,
    JoinCodeDocument,
    ScoringConfig,
    SessionDocument,
    SessionSettings,
)

__all__ = [
    "AnswerRecord",
    "CardCell",
    "CardItem",
    "GameContent",
    "GameItem",
    "JoinCodeDocument",
    "ParticipantDocument",
    "PointsComponentRecord",
    "ScoringConfig",
    "SessionDocument",
    "SessionSettings",
]
