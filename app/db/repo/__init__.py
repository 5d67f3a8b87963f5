from app.db.repo.live_participants_repo import LiveParticipantsRepo
from app.db.repo.live_sessions_repo import LiveSessionsRepo

__all__ = [
    "LiveParticipantsRepo",
    "LiveSessionsRepo",
]
