from __future__ import annotations

import secrets
from collections.abc import Callable
from uuid import uuid4

import structlog

from app.db.documents import DocumentStore
from app.db.models.live_participants import ParticipantDocument
from app.db.models.live_sessions import SessionDocument
from app.db.repo.live_participants_repo import LiveParticipantsRepo
from app.db.repo.live_sessions_repo import LiveSessionsRepo
from app.game.clock import now_ms as wall_clock_ms
from app.game.modes.rules import GameKindRules, resolve_game_kind
from app.game.patterns.cards import build_card
from app.game.sessions.constants import (
    DISPLAY_NAME_MAX_LENGTH,
    JOIN_CODE_ALPHABET,
    JOIN_CODE_LENGTH,
    JOIN_CODE_MAX_ATTEMPTS,
    PROGRESS_IN_PROGRESS,
    PROGRESS_WAITING,
    SESSION_JOINABLE_PHASES,
    SESSION_LATE_JOINABLE_PHASES,
    SESSION_PHASE_ACTIVE,
)
from app.game.sessions.errors import (
    InvalidDisplayNameError,
    JoinCodeGenerationError,
    JoinCodeNotFoundError,
    SessionFullError,
    SessionNotJoinableError,
)
from app.game.sessions.transitions import active_participants
from app.game.sessions.types import JoinResult

logger = structlog.get_logger(__name__)


def random_join_code() -> str:
    return "".join(secrets.choice(JOIN_CODE_ALPHABET) for _ in range(JOIN_CODE_LENGTH))


async def generate_join_code(
    store: DocumentStore,
    *,
    session_id: str,
    make_code: Callable[[], str] = random_join_code,
) -> str:
    for attempt in range(1, JOIN_CODE_MAX_ATTEMPTS + 1):
        code = make_code()
        if await LiveSessionsRepo.reserve_code(store, code=code, session_id=session_id):
            return code
        logger.info("join_code_collision", session_id=session_id, attempt=attempt)
    raise JoinCodeGenerationError


def normalize_display_name(display_name: str) -> str:
    normalized = " ".join(display_name.split())
    if not normalized or len(normalized) > DISPLAY_NAME_MAX_LENGTH:
        raise InvalidDisplayNameError
    return normalized


def participant_card_seed(session: SessionDocument, participant_id: str) -> str:
    return f"{session.content.card_seed}:{participant_id}"


def build_participant(
    session: SessionDocument,
    rules: GameKindRules,
    *,
    participant_id: str,
    display_name: str,
    now_ms: int,
) -> ParticipantDocument:
    late_start = session.phase == SESSION_PHASE_ACTIVE
    card_state = None
    if rules.uses_card:
        card_state = build_card(
            session.content.card_items,
            size=session.content.card_size,
            seed=participant_card_seed(session, participant_id),
        )
    return ParticipantDocument(
        id=participant_id,
        session_id=session.id,
        display_name=display_name,
        progress_state=PROGRESS_IN_PROGRESS if late_start else PROGRESS_WAITING,
        current_item_index=rules.sequence_policy.entry_index,
        item_started_ms=now_ms if late_start else None,
        card_state=card_state,
        joined_ms=now_ms,
    )


async def join_session(
    store: DocumentStore,
    *,
    code: str,
    display_name: str,
    participant_id: str | None = None,
    clock: Callable[[], int] | None = None,
) -> JoinResult:
    """Create the joining device's participant document.

    The participant limit is checked against a fresh count; two joins racing
    for the last slot can both succeed.
    """
    name = normalize_display_name(display_name)
    session = await LiveSessionsRepo.get_by_code(store, code)
    if session is None:
        raise JoinCodeNotFoundError

    allowed_phases = (
        SESSION_LATE_JOINABLE_PHASES if session.settings.allow_late_join else SESSION_JOINABLE_PHASES
    )
    if session.phase not in allowed_phases:
        logger.info("join_rejected", session_id=session.id, reason="not_joinable", phase=session.phase)
        raise SessionNotJoinableError

    existing = await LiveParticipantsRepo.list_for_session(store, session.id)
    if len(active_participants(session, existing)) >= max(1, session.settings.participant_limit):
        logger.info("join_rejected", session_id=session.id, reason="session_full")
        raise SessionFullError

    rules = resolve_game_kind(session.game_kind)
    resolved_id = participant_id or uuid4().hex
    participant = build_participant(
        session,
        rules,
        participant_id=resolved_id,
        display_name=name,
        now_ms=(clock or wall_clock_ms)(),
    )
    await LiveParticipantsRepo.create(store, participant=participant)
    late_join = session.phase == SESSION_PHASE_ACTIVE
    logger.info(
        "participant_joined",
        session_id=session.id,
        participant_id=resolved_id,
        phase=session.phase,
        late_join=late_join,
    )
    return JoinResult(
        session_id=session.id,
        participant_id=resolved_id,
        code=session.code,
        progress_state=participant.progress_state,
        late_join=late_join,
    )
