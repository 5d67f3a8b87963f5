from __future__ import annotations

from collections.abc import Iterable

from app.db.models.live_participants import ParticipantDocument
from app.db.models.live_sessions import SessionDocument
from app.game.clock import ClockState, remaining_for, remaining_seconds, resume_anchor
from app.game.sessions.constants import (
    PROGRESS_COMPLETED,
    SESSION_PHASE_ACTIVE,
    SESSION_PHASE_COMPLETED,
    SESSION_PHASE_COUNTDOWN,
    SESSION_PHASE_WAITING,
)
from app.game.sessions.errors import InvalidPhaseTransitionError

# Mutators below run inside the store's atomic update. They return ``None``
# when the document already reflects the requested state, which makes every
# transition safe to repeat from any device.


def session_clock_state(session: SessionDocument) -> ClockState:
    return ClockState(
        anchor_ms=session.anchor_ms,
        total_duration_seconds=session.total_duration_seconds,
        paused=session.paused,
        frozen_remaining=session.remaining_at_pause_seconds,
    )


def session_remaining_seconds(session: SessionDocument, *, now_ms: int) -> int:
    if session.phase == SESSION_PHASE_COMPLETED:
        return 0
    if session.phase != SESSION_PHASE_ACTIVE:
        return max(0, session.total_duration_seconds)
    return remaining_for(session_clock_state(session), now_ms=now_ms)


def countdown_remaining_seconds(session: SessionDocument, *, now_ms: int) -> int | None:
    if session.phase != SESSION_PHASE_COUNTDOWN:
        return None
    return remaining_seconds(
        anchor_ms=session.countdown_anchor_ms,
        total_duration_seconds=session.countdown_ticks,
        paused=False,
        frozen_remaining=None,
        now_ms=now_ms,
    )


def is_session_expired(session: SessionDocument, *, now_ms: int) -> bool:
    if session.phase != SESSION_PHASE_ACTIVE or session.paused or session.anchor_ms is None:
        return False
    return remaining_for(session_clock_state(session), now_ms=now_ms) == 0


def session_deadline_ms(session: SessionDocument) -> int | None:
    """Wall-clock instant after which answers count as late, if known."""
    if session.phase == SESSION_PHASE_COMPLETED:
        return session.completed_ms
    if session.phase != SESSION_PHASE_ACTIVE or session.paused or session.anchor_ms is None:
        return None
    return session.anchor_ms + max(0, session.total_duration_seconds) * 1000


def apply_countdown(session: SessionDocument, *, now_ms: int) -> SessionDocument | None:
    if session.phase == SESSION_PHASE_COUNTDOWN:
        return None
    if session.phase != SESSION_PHASE_WAITING:
        raise InvalidPhaseTransitionError
    return session.model_copy(
        update={"phase": SESSION_PHASE_COUNTDOWN, "countdown_anchor_ms": now_ms}
    )


def apply_activation(session: SessionDocument, *, now_ms: int) -> SessionDocument | None:
    if session.phase == SESSION_PHASE_ACTIVE:
        return None
    if session.phase not in (SESSION_PHASE_WAITING, SESSION_PHASE_COUNTDOWN):
        raise InvalidPhaseTransitionError
    return session.model_copy(
        update={
            "phase": SESSION_PHASE_ACTIVE,
            "anchor_ms": now_ms,
            "paused": False,
            "remaining_at_pause_seconds": None,
        }
    )


def apply_pause(session: SessionDocument, *, now_ms: int) -> SessionDocument | None:
    if session.phase != SESSION_PHASE_ACTIVE:
        raise InvalidPhaseTransitionError
    if session.paused:
        return None
    return session.model_copy(
        update={
            "paused": True,
            "remaining_at_pause_seconds": remaining_for(session_clock_state(session), now_ms=now_ms),
        }
    )


def apply_resume(session: SessionDocument, *, now_ms: int) -> SessionDocument | None:
    if session.phase != SESSION_PHASE_ACTIVE:
        raise InvalidPhaseTransitionError
    if not session.paused:
        return None
    frozen = max(0, int(session.remaining_at_pause_seconds or 0))
    return session.model_copy(
        update={
            "paused": False,
            "remaining_at_pause_seconds": None,
            "anchor_ms": resume_anchor(
                now_ms=now_ms,
                total_duration_seconds=session.total_duration_seconds,
                frozen_remaining=frozen,
            ),
        }
    )


def apply_completion(
    session: SessionDocument,
    *,
    reason: str,
    now_ms: int,
    require_expired: bool = False,
) -> SessionDocument | None:
    """Terminal write; the first completion reason stored wins."""
    if session.phase == SESSION_PHASE_COMPLETED:
        return None
    if session.phase != SESSION_PHASE_ACTIVE:
        raise InvalidPhaseTransitionError
    if require_expired and not is_session_expired(session, now_ms=now_ms):
        return None
    return session.model_copy(
        update={
            "phase": SESSION_PHASE_COMPLETED,
            "completed_ms": now_ms,
            "completion_reason": reason,
            "paused": False,
            "remaining_at_pause_seconds": None,
        }
    )


def apply_removal(session: SessionDocument, *, participant_id: str) -> SessionDocument | None:
    if participant_id in session.removed_participant_ids:
        return None
    return session.model_copy(
        update={"removed_participant_ids": [*session.removed_participant_ids, participant_id]}
    )


def active_participants(
    session: SessionDocument,
    participants: Iterable[ParticipantDocument],
) -> list[ParticipantDocument]:
    removed = set(session.removed_participant_ids)
    return [participant for participant in participants if participant.id not in removed]


def all_participants_completed(
    session: SessionDocument,
    participants: Iterable[ParticipantDocument],
) -> bool:
    remaining = active_participants(session, participants)
    if not remaining:
        return False
    return all(participant.progress_state == PROGRESS_COMPLETED for participant in remaining)
