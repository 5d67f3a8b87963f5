from __future__ import annotations

from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager, contextmanager

import structlog
from fastapi import APIRouter, Depends, HTTPException, status

from app.api.routes.sessions_models import (
    AnswerOutcomeResponse,
    AnswerRecordResponse,
    AwardRecipientResponse,
    AwardResponse,
    CardCellResponse,
    ControllerProjectionResponse,
    CreateSessionRequest,
    JoinSessionRequest,
    JoinSessionResponse,
    MarkCellRequest,
    MarkOutcomeResponse,
    ParticipantProjectionResponse,
    ParticipantReportResponse,
    ParticipantRowResponse,
    PointsComponentResponse,
    SessionCreatedResponse,
    SessionReportResponse,
    SubmitAnswerRequest,
)
from app.db.documents import DocumentExistsError, DocumentStore, DocumentStoreError
from app.db.repo.live_participants_repo import LiveParticipantsRepo
from app.db.repo.live_sessions_repo import LiveSessionsRepo
from app.db.store import get_document_store
from app.game.sessions import errors as session_errors
from app.game.sessions.join import join_session
from app.game.sessions.lifecycle import SessionLifecycleController, create_session
from app.game.sessions.progression import ParticipantProgressionController
from app.game.sessions.reporting import build_participant_report, calculate_session_awards
from app.game.sessions.transitions import active_participants
from app.game.sessions.types import (
    AwardRecipient,
    ControllerProjection,
    ParticipantProjection,
    ParticipantReport,
)

router = APIRouter(prefix="/sessions", tags=["sessions"])
logger = structlog.get_logger(__name__)

_ERROR_RESPONSES: tuple[tuple[type[Exception], int, str], ...] = (
    (session_errors.SessionNotFoundError, status.HTTP_404_NOT_FOUND, "E_SESSION_NOT_FOUND"),
    (session_errors.JoinCodeNotFoundError, status.HTTP_404_NOT_FOUND, "E_JOIN_CODE_NOT_FOUND"),
    (session_errors.ParticipantNotFoundError, status.HTTP_404_NOT_FOUND, "E_PARTICIPANT_NOT_FOUND"),
    (session_errors.SessionNotJoinableError, status.HTTP_409_CONFLICT, "E_SESSION_NOT_JOINABLE"),
    (session_errors.SessionFullError, status.HTTP_409_CONFLICT, "E_SESSION_FULL"),
    (session_errors.InvalidPhaseTransitionError, status.HTTP_409_CONFLICT, "E_INVALID_PHASE"),
    (session_errors.NotEnoughParticipantsError, status.HTTP_409_CONFLICT, "E_NOT_ENOUGH_PARTICIPANTS"),
    (session_errors.ParticipantRemovedError, status.HTTP_409_CONFLICT, "E_PARTICIPANT_REMOVED"),
    (session_errors.ParticipantNotPlayingError, status.HTTP_409_CONFLICT, "E_PARTICIPANT_NOT_PLAYING"),
    (session_errors.StaleProgressError, status.HTTP_409_CONFLICT, "E_STALE_PROGRESS"),
    (session_errors.SessionNotCompletedError, status.HTTP_409_CONFLICT, "E_SESSION_NOT_COMPLETED"),
    (session_errors.UnsupportedActionError, status.HTTP_400_BAD_REQUEST, "E_UNSUPPORTED_ACTION"),
    (session_errors.InvalidAnswerOptionError, status.HTTP_422_UNPROCESSABLE_ENTITY, "E_INVALID_OPTION"),
    (session_errors.InvalidCardCellError, status.HTTP_422_UNPROCESSABLE_ENTITY, "E_INVALID_CELL"),
    (
        session_errors.ChallengeAnswerRequiredError,
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "E_CHALLENGE_ANSWER_REQUIRED",
    ),
    (session_errors.InvalidDisplayNameError, status.HTTP_422_UNPROCESSABLE_ENTITY, "E_INVALID_DISPLAY_NAME"),
    (session_errors.ProgressSyncError, status.HTTP_503_SERVICE_UNAVAILABLE, "E_PROGRESS_NOT_SAVED"),
    (session_errors.JoinCodeGenerationError, status.HTTP_503_SERVICE_UNAVAILABLE, "E_JOIN_CODE_UNAVAILABLE"),
    (DocumentExistsError, status.HTTP_409_CONFLICT, "E_ALREADY_EXISTS"),
    (DocumentStoreError, status.HTTP_503_SERVICE_UNAVAILABLE, "E_STORE_UNAVAILABLE"),
)


@contextmanager
def _domain_errors() -> Iterator[None]:
    try:
        yield
    except (session_errors.GameSessionError, DocumentStoreError) as exc:
        for error_type, status_code, code in _ERROR_RESPONSES:
            if isinstance(exc, error_type):
                logger.info("sessions_request_rejected", code=code, error_type=type(exc).__name__)
                raise HTTPException(status_code=status_code, detail={"code": code}) from exc
        raise


@asynccontextmanager
async def _attached_participant(
    store: DocumentStore,
    *,
    session_id: str,
    participant_id: str,
) -> AsyncIterator[ParticipantProgressionController]:
    controller = ParticipantProgressionController(
        store,
        session_id=session_id,
        participant_id=participant_id,
    )
    try:
        await controller.attach()
        yield controller
    finally:
        await controller.close()


def _controller_response(projection: ControllerProjection) -> ControllerProjectionResponse:
    return ControllerProjectionResponse(
        session_id=projection.session_id,
        code=projection.code,
        phase=projection.phase,
        remaining_seconds=projection.remaining_seconds,
        paused=projection.paused,
        countdown_remaining_seconds=projection.countdown_remaining_seconds,
        participants=[
            ParticipantRowResponse(
                participant_id=row.participant_id,
                display_name=row.display_name,
                score=row.score,
                streak=row.streak,
                progress_state=row.progress_state,
                current_item_index=row.current_item_index,
                removed=row.removed,
            )
            for row in projection.participants
        ],
        completion_reason=projection.completion_reason,
    )


def _participant_response(projection: ParticipantProjection) -> ParticipantProjectionResponse:
    card_state = None
    if projection.card_state is not None:
        card_state = [
            [CardCellResponse(item_id=cell.item_id, marked=cell.marked) for cell in cells]
            for cells in projection.card_state
        ]
    return ParticipantProjectionResponse(
        session_id=projection.session_id,
        participant_id=projection.participant_id,
        phase=projection.phase,
        progress_state=projection.progress_state,
        remaining_seconds=projection.remaining_seconds,
        paused=projection.paused,
        current_item_index=projection.current_item_index,
        total_items=projection.total_items,
        score=projection.score,
        streak=projection.streak,
        winnings=projection.winnings,
        card_state=card_state,
        completed_patterns=list(projection.completed_patterns),
        pending_sync=projection.pending_sync,
    )


def _report_response(report: ParticipantReport) -> ParticipantReportResponse:
    return ParticipantReportResponse(
        participant_id=report.participant_id,
        display_name=report.display_name,
        score=report.score,
        accuracy_percent=report.accuracy_percent,
        answered_count=report.answered_count,
        correct_count=report.correct_count,
        average_elapsed_seconds=report.average_elapsed_seconds,
        best_streak=report.best_streak,
        winnings=report.winnings,
        completed_patterns=list(report.completed_patterns),
        answer_log=[
            AnswerRecordResponse(
                item_id=record.item_id,
                choice_index=record.choice_index,
                correct=record.correct,
                elapsed_seconds=record.elapsed_seconds,
                points=record.points,
                kind=record.kind,
            )
            for record in report.answer_log
        ],
        time_to_first_pattern_seconds=report.time_to_first_pattern_seconds,
    )


def _recipient_response(recipient: AwardRecipient) -> AwardRecipientResponse:
    return AwardRecipientResponse(
        participant_id=recipient.participant_id,
        display_name=recipient.display_name,
        value=recipient.value,
        rank=recipient.rank,
    )


async def _controller_projection(controller: SessionLifecycleController) -> ControllerProjectionResponse:
    await controller.load()
    await controller.load_participants()
    return _controller_response(controller.projection())


@router.post("", response_model=SessionCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_session_route(
    payload: CreateSessionRequest,
    store: DocumentStore = Depends(get_document_store),
) -> SessionCreatedResponse:
    with _domain_errors():
        session = await create_session(
            store,
            game_kind=payload.game_kind,
            total_duration_seconds=payload.total_duration_seconds,
            content=payload.content,
            title=payload.title,
            session_settings=payload.settings,
            scoring=payload.scoring,
        )
    return SessionCreatedResponse(
        session_id=session.id,
        code=session.code,
        phase=session.phase,
        game_kind=session.game_kind,
        total_duration_seconds=session.total_duration_seconds,
    )


@router.post("/join", response_model=JoinSessionResponse, status_code=status.HTTP_201_CREATED)
async def join_session_route(
    payload: JoinSessionRequest,
    store: DocumentStore = Depends(get_document_store),
) -> JoinSessionResponse:
    with _domain_errors():
        result = await join_session(
            store,
            code=payload.code,
            display_name=payload.display_name,
            participant_id=payload.participant_id,
        )
    return JoinSessionResponse(
        session_id=result.session_id,
        participant_id=result.participant_id,
        code=result.code,
        progress_state=result.progress_state,
        late_join=result.late_join,
    )


@router.get("/{session_id}", response_model=ControllerProjectionResponse)
async def get_controller_projection(
    session_id: str,
    store: DocumentStore = Depends(get_document_store),
) -> ControllerProjectionResponse:
    with _domain_errors():
        return await _controller_projection(SessionLifecycleController(store, session_id))


@router.post("/{session_id}/start", response_model=ControllerProjectionResponse)
async def start_session(
    session_id: str,
    store: DocumentStore = Depends(get_document_store),
) -> ControllerProjectionResponse:
    controller = SessionLifecycleController(store, session_id)
    with _domain_errors():
        await controller.start()
        return await _controller_projection(controller)


@router.post("/{session_id}/pause", response_model=ControllerProjectionResponse)
async def pause_session(
    session_id: str,
    store: DocumentStore = Depends(get_document_store),
) -> ControllerProjectionResponse:
    controller = SessionLifecycleController(store, session_id)
    with _domain_errors():
        await controller.pause()
        return await _controller_projection(controller)


@router.post("/{session_id}/resume", response_model=ControllerProjectionResponse)
async def resume_session(
    session_id: str,
    store: DocumentStore = Depends(get_document_store),
) -> ControllerProjectionResponse:
    controller = SessionLifecycleController(store, session_id)
    with _domain_errors():
        await controller.resume()
        return await _controller_projection(controller)


@router.post("/{session_id}/end", response_model=ControllerProjectionResponse)
async def end_session(
    session_id: str,
    store: DocumentStore = Depends(get_document_store),
) -> ControllerProjectionResponse:
    controller = SessionLifecycleController(store, session_id)
    with _domain_errors():
        await controller.load()
        await controller.end_session()
        return await _controller_projection(controller)


@router.post("/{session_id}/tick", response_model=ControllerProjectionResponse)
async def tick_session(
    session_id: str,
    store: DocumentStore = Depends(get_document_store),
) -> ControllerProjectionResponse:
    controller = SessionLifecycleController(store, session_id)
    with _domain_errors():
        return _controller_response(await controller.tick())


@router.delete("/{session_id}/participants/{participant_id}", response_model=ControllerProjectionResponse)
async def remove_participant(
    session_id: str,
    participant_id: str,
    store: DocumentStore = Depends(get_document_store),
) -> ControllerProjectionResponse:
    controller = SessionLifecycleController(store, session_id)
    with _domain_errors():
        await controller.load_participants()
        await controller.remove_participant(participant_id)
        return await _controller_projection(controller)


@router.get(
    "/{session_id}/participants/{participant_id}",
    response_model=ParticipantProjectionResponse,
)
async def get_participant_projection(
    session_id: str,
    participant_id: str,
    store: DocumentStore = Depends(get_document_store),
) -> ParticipantProjectionResponse:
    with _domain_errors():
        async with _attached_participant(
            store,
            session_id=session_id,
            participant_id=participant_id,
        ) as participant:
            return _participant_response(participant.projection())


@router.post(
    "/{session_id}/participants/{participant_id}/answer",
    response_model=AnswerOutcomeResponse,
)
async def submit_answer(
    session_id: str,
    participant_id: str,
    payload: SubmitAnswerRequest,
    store: DocumentStore = Depends(get_document_store),
) -> AnswerOutcomeResponse:
    with _domain_errors():
        async with _attached_participant(
            store,
            session_id=session_id,
            participant_id=participant_id,
        ) as participant:
            outcome = await participant.submit_answer(
                payload.choice_index,
                elapsed_seconds=payload.elapsed_seconds,
                confidence=payload.confidence,
            )
    return AnswerOutcomeResponse(
        participant_id=outcome.participant_id,
        item_id=outcome.item_id,
        correct=outcome.correct,
        points=outcome.points,
        breakdown=[
            PointsComponentResponse(kind=component.kind, amount=component.amount)
            for component in outcome.breakdown
        ],
        score=outcome.score,
        streak=outcome.streak,
        current_item_index=outcome.current_item_index,
        completed=outcome.completed,
        late=outcome.late,
    )


@router.post(
    "/{session_id}/participants/{participant_id}/skip",
    response_model=AnswerOutcomeResponse,
)
async def skip_item(
    session_id: str,
    participant_id: str,
    store: DocumentStore = Depends(get_document_store),
) -> AnswerOutcomeResponse:
    return await submit_answer(
        session_id,
        participant_id,
        SubmitAnswerRequest(choice_index=None),
        store,
    )


@router.post(
    "/{session_id}/participants/{participant_id}/walk-away",
    response_model=ParticipantProjectionResponse,
)
async def walk_away(
    session_id: str,
    participant_id: str,
    store: DocumentStore = Depends(get_document_store),
) -> ParticipantProjectionResponse:
    with _domain_errors():
        async with _attached_participant(
            store,
            session_id=session_id,
            participant_id=participant_id,
        ) as participant:
            return _participant_response(await participant.walk_away())


@router.post(
    "/{session_id}/participants/{participant_id}/mark",
    response_model=MarkOutcomeResponse,
)
async def mark_cell(
    session_id: str,
    participant_id: str,
    payload: MarkCellRequest,
    store: DocumentStore = Depends(get_document_store),
) -> MarkOutcomeResponse:
    with _domain_errors():
        async with _attached_participant(
            store,
            session_id=session_id,
            participant_id=participant_id,
        ) as participant:
            outcome = await participant.mark_cell(
                payload.row,
                payload.col,
                challenge_choice=payload.challenge_choice,
            )
    return MarkOutcomeResponse(
        participant_id=outcome.participant_id,
        row=outcome.row,
        col=outcome.col,
        marked=outcome.marked,
        changed=outcome.changed,
        points=outcome.points,
        score=outcome.score,
        streak=outcome.streak,
        new_patterns=list(outcome.new_patterns),
        challenge_failed=outcome.challenge_failed,
        completed=outcome.completed,
    )


@router.get("/{session_id}/report", response_model=SessionReportResponse)
async def get_session_report(
    session_id: str,
    store: DocumentStore = Depends(get_document_store),
) -> SessionReportResponse:
    with _domain_errors():
        session = await LiveSessionsRepo.get_by_id(store, session_id)
        if session is None:
            raise session_errors.SessionNotFoundError
        participants = active_participants(
            session,
            await LiveParticipantsRepo.list_for_session(store, session_id),
        )
        reports = [build_participant_report(session, participant) for participant in participants]
        awards = calculate_session_awards(session, participants)
    reports.sort(key=lambda report: (-report.score, report.display_name.lower()))
    return SessionReportResponse(
        session_id=session.id,
        completion_reason=session.completion_reason,
        participants=[_report_response(report) for report in reports],
        awards=[
            AwardResponse(
                code=award.code,
                name=award.name,
                description=award.description,
                recipients=[_recipient_response(recipient) for recipient in award.recipients],
            )
            for award in awards.awards
        ],
        top_performers=[_recipient_response(recipient) for recipient in awards.top_performers],
    )
