from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from uuid import uuid4

import structlog

from app.core.config import Settings, get_settings
from app.db.documents import DocumentStore, DocumentStoreError, DocumentSubscription
from app.db.models.live_participants import ParticipantDocument
from app.db.models.live_sessions import GameContent, ScoringConfig, SessionDocument, SessionSettings
from app.db.repo.live_participants_repo import LiveParticipantsRepo
from app.db.repo.live_sessions_repo import LiveSessionsRepo, SessionMutator
from app.db.serialization import load_document
from app.db.store import read_with_retry
from app.game.clock import ClockProjector
from app.game.clock import now_ms as wall_clock_ms
from app.game.effects import EffectsPort, LoggingEffects
from app.game.modes.rules import resolve_game_kind
from app.game.sessions.arbitration import CompletionGuard
from app.game.sessions.constants import (
    COMPLETION_REASON_ALL_COMPLETED,
    COMPLETION_REASON_CONTROLLER_ENDED,
    COMPLETION_REASON_TIMEOUT,
    SESSION_PHASE_ACTIVE,
    SESSION_PHASE_COMPLETED,
    SESSION_PHASE_COUNTDOWN,
    SESSION_PHASE_WAITING,
)
from app.game.sessions.errors import (
    InvalidPhaseTransitionError,
    NotEnoughParticipantsError,
    SessionNotFoundError,
)
from app.game.sessions.join import generate_join_code
from app.game.sessions.transitions import (
    active_participants,
    all_participants_completed,
    apply_activation,
    apply_completion,
    apply_countdown,
    apply_pause,
    apply_removal,
    apply_resume,
    countdown_remaining_seconds,
    is_session_expired,
    session_clock_state,
)
from app.game.sessions.types import ControllerProjection, ParticipantRow

logger = structlog.get_logger(__name__)

SessionFinalizedCallback = Callable[[SessionDocument], Awaitable[None]]


async def create_session(
    store: DocumentStore,
    *,
    game_kind: str,
    total_duration_seconds: int,
    content: GameContent | None = None,
    title: str = "",
    session_settings: SessionSettings | None = None,
    scoring: ScoringConfig | None = None,
    session_id: str | None = None,
    clock: Callable[[], int] | None = None,
    settings: Settings | None = None,
) -> SessionDocument:
    """Open a lobby in ``waiting`` under a freshly reserved join code."""
    resolve_game_kind(game_kind)
    if int(total_duration_seconds) < 1:
        raise ValueError("total_duration_seconds must be positive")

    app_settings = settings or get_settings()
    resolved_id = session_id or uuid4().hex
    code = await generate_join_code(store, session_id=resolved_id)
    session = SessionDocument(
        id=resolved_id,
        code=code,
        title=title,
        game_kind=game_kind,
        phase=SESSION_PHASE_WAITING,
        total_duration_seconds=int(total_duration_seconds),
        countdown_ticks=max(0, app_settings.session_countdown_ticks),
        settings=session_settings
        or SessionSettings(
            allow_late_join=app_settings.session_allow_late_join,
            min_participants=app_settings.session_min_participants_to_start,
            participant_limit=app_settings.session_participant_limit,
        ),
        content=content or GameContent(),
        scoring=scoring or ScoringConfig(),
        created_ms=(clock or wall_clock_ms)(),
    )
    await LiveSessionsRepo.create(store, session=session)
    logger.info(
        "session_created",
        session_id=session.id,
        code=session.code,
        game_kind=session.game_kind,
        total_duration_seconds=session.total_duration_seconds,
    )
    return session


def build_participant_rows(
    session: SessionDocument,
    participants: Iterable[ParticipantDocument],
) -> tuple[ParticipantRow, ...]:
    removed = set(session.removed_participant_ids)
    rows = [
        ParticipantRow(
            participant_id=participant.id,
            display_name=participant.display_name,
            score=participant.score,
            streak=participant.streak,
            progress_state=participant.progress_state,
            current_item_index=participant.current_item_index,
            removed=participant.id in removed,
        )
        for participant in participants
    ]
    if session.settings.show_leaderboard:
        rows.sort(key=lambda row: (row.removed, -row.score, row.display_name.lower()))
    return tuple(rows)


class SessionLifecycleController:
    """Controller-device side of a live session.

    Owns phase transitions of the session document and decides when the
    session is over (timeout, everyone finished, or an explicit end). The
    terminal transition is guarded so it executes once per device, and the
    store write is idempotent so it is stored once overall.
    """

    def __init__(
        self,
        store: DocumentStore,
        session_id: str,
        *,
        clock: Callable[[], int] | None = None,
        settings: Settings | None = None,
        effects: EffectsPort | None = None,
        on_finalized: SessionFinalizedCallback | None = None,
    ) -> None:
        self._store = store
        self.session_id = session_id
        self._clock = clock or wall_clock_ms
        self._settings = settings or get_settings()
        self._effects = effects or LoggingEffects()
        self._on_finalized = on_finalized
        self._guard = CompletionGuard(name=f"session:{session_id}")
        self._projector = ClockProjector()
        self._participants: dict[str, ParticipantDocument] = {}
        self._tasks: list[asyncio.Task[None]] = []
        self._subscriptions: list[DocumentSubscription] = []
        self._closed = False
        self._log = logger.bind(session_id=session_id, role="controller")
        self.session: SessionDocument | None = None
        self.finalize_count = 0

    @property
    def guard(self) -> CompletionGuard:
        return self._guard

    @property
    def participants(self) -> list[ParticipantDocument]:
        return sorted(self._participants.values(), key=lambda item: (item.joined_ms, item.id))

    async def load(self) -> SessionDocument:
        session = await read_with_retry(
            lambda: LiveSessionsRepo.get_by_id(self._store, self.session_id),
            attempts=self._settings.store_read_retry_attempts,
            backoff_seconds=self._settings.store_read_retry_backoff_seconds,
        )
        if session is None:
            raise SessionNotFoundError
        self.session = session
        return session

    async def load_participants(self) -> list[ParticipantDocument]:
        participants = await read_with_retry(
            lambda: LiveParticipantsRepo.list_for_session(self._store, self.session_id),
            attempts=self._settings.store_read_retry_attempts,
            backoff_seconds=self._settings.store_read_retry_backoff_seconds,
        )
        self._participants = {participant.id: participant for participant in participants}
        return participants

    async def _update(self, mutate: SessionMutator) -> SessionDocument:
        updated = await LiveSessionsRepo.update(self._store, self.session_id, mutate)
        if updated is None:
            raise SessionNotFoundError
        self.session = updated
        return updated

    async def start(self) -> SessionDocument:
        session = await self.load()
        if session.phase != SESSION_PHASE_WAITING:
            raise InvalidPhaseTransitionError
        participants = await self.load_participants()
        joined = len(active_participants(session, participants))
        if joined < max(1, session.settings.min_participants):
            raise NotEnoughParticipantsError

        now = self._clock()
        if session.countdown_ticks <= 0:
            updated = await self._update(lambda current: apply_activation(current, now_ms=now))
            self._on_activated(updated)
            return updated

        updated = await self._update(lambda current: apply_countdown(current, now_ms=now))
        self._log.info("session_countdown_started", ticks=updated.countdown_ticks, participants=joined)
        self._effects.emit("countdown_started", ticks=updated.countdown_ticks)
        return updated

    async def activate(self, *, now_ms: int | None = None) -> SessionDocument:
        now = self._clock() if now_ms is None else now_ms
        updated = await self._update(lambda current: apply_activation(current, now_ms=now))
        self._on_activated(updated)
        return updated

    def _on_activated(self, session: SessionDocument) -> None:
        self._projector.reset()
        self._log.info(
            "session_activated",
            anchor_ms=session.anchor_ms,
            total_duration_seconds=session.total_duration_seconds,
        )
        self._effects.emit("session_started", total_duration_seconds=session.total_duration_seconds)

    async def pause(self) -> SessionDocument:
        now = self._clock()
        updated = await self._update(lambda current: apply_pause(current, now_ms=now))
        self._log.info("session_paused", remaining_seconds=updated.remaining_at_pause_seconds)
        return updated

    async def resume(self) -> SessionDocument:
        now = self._clock()
        updated = await self._update(lambda current: apply_resume(current, now_ms=now))
        self._log.info("session_resumed", anchor_ms=updated.anchor_ms)
        return updated

    async def remove_participant(self, participant_id: str) -> SessionDocument:
        updated = await self._update(
            lambda current: apply_removal(current, participant_id=participant_id)
        )
        self._log.info("participant_removed", participant_id=participant_id)
        if updated.phase == SESSION_PHASE_ACTIVE:
            await self.handle_participants_changed()
        return updated

    async def end_session(self) -> bool:
        session = self.session or await self.load()
        if session.phase in (SESSION_PHASE_WAITING, SESSION_PHASE_COUNTDOWN):
            raise InvalidPhaseTransitionError
        return await self.finalize(COMPLETION_REASON_CONTROLLER_ENDED)

    async def finalize(self, reason: str) -> bool:
        """Run the terminal transition; returns ``False`` when already latched."""
        result = await self._guard.run(reason, lambda: self._finalize(reason))
        return result is True

    async def _finalize(self, reason: str) -> bool:
        now = self._clock()
        updated = await self._update(
            lambda current: apply_completion(current, reason=reason, now_ms=now)
        )
        self.finalize_count += 1
        self._log.info(
            "session_finalized",
            requested_reason=reason,
            completion_reason=updated.completion_reason,
            completed_ms=updated.completed_ms,
        )
        self._effects.emit("session_completed", reason=updated.completion_reason)
        if self._on_finalized is not None:
            await self._on_finalized(updated)
        self._stop_background()
        return True

    async def handle_participants_changed(
        self,
        participants: Iterable[ParticipantDocument] | None = None,
    ) -> bool:
        if participants is not None:
            self._participants = {participant.id: participant for participant in participants}
        session = self.session or await self.load()
        if session.phase != SESSION_PHASE_ACTIVE or self._guard.latched:
            return False
        if not all_participants_completed(session, self._participants.values()):
            return False
        return await self.finalize(COMPLETION_REASON_ALL_COMPLETED)

    async def tick(self) -> ControllerProjection:
        session = await self.load()
        now = self._clock()

        if session.phase == SESSION_PHASE_COUNTDOWN:
            if countdown_remaining_seconds(session, now_ms=now) == 0:
                session = await self.activate(now_ms=now)
            else:
                self._effects.emit(
                    "countdown_tick",
                    remaining=countdown_remaining_seconds(session, now_ms=now),
                )

        if is_session_expired(session, now_ms=now):
            await self.finalize(COMPLETION_REASON_TIMEOUT)
        elif session.phase == SESSION_PHASE_COMPLETED and not self._guard.latched:
            # Completed by another device; run local completion effects once.
            await self.finalize(session.completion_reason or COMPLETION_REASON_TIMEOUT)

        participants = await self.load_participants()
        if self.session is not None and self.session.phase == SESSION_PHASE_ACTIVE:
            await self.handle_participants_changed(participants)
        return self.projection(now_ms=now)

    def projection(self, *, now_ms: int | None = None) -> ControllerProjection:
        session = self.session
        if session is None:
            raise SessionNotFoundError
        now = self._clock() if now_ms is None else now_ms
        if session.phase == SESSION_PHASE_ACTIVE:
            remaining = self._projector.project(session_clock_state(session), now_ms=now)
        elif session.phase == SESSION_PHASE_COMPLETED:
            remaining = 0
        else:
            remaining = max(0, session.total_duration_seconds)
        return ControllerProjection(
            session_id=session.id,
            code=session.code,
            phase=session.phase,
            remaining_seconds=remaining,
            paused=session.paused,
            countdown_remaining_seconds=countdown_remaining_seconds(session, now_ms=now),
            participants=build_participant_rows(session, self.participants),
            completion_reason=session.completion_reason,
        )

    async def watch(self) -> None:
        """Start the tick loop and the participants observer."""
        if self._tasks or self._closed:
            return
        await self.load()
        subscription = LiveParticipantsRepo.subscribe_for_session(self._store, self.session_id)
        self._subscriptions.append(subscription)
        await self.load_participants()
        self._tasks = [
            asyncio.create_task(self._tick_loop()),
            asyncio.create_task(self._participants_loop(subscription)),
        ]

    async def _tick_loop(self) -> None:
        interval = max(0.01, float(self._settings.session_tick_interval_seconds))
        while not self._closed and not self._guard.finalized:
            try:
                await self.tick()
            except DocumentStoreError as exc:
                self._log.warning("session_tick_failed", error=str(exc))
            await asyncio.sleep(interval)

    async def _participants_loop(self, subscription: DocumentSubscription) -> None:
        async for change in subscription:
            if self._closed:
                break
            if change.deleted:
                self._participants.pop(change.doc_id, None)
            else:
                participant = load_document(ParticipantDocument, change.data)
                if participant is not None:
                    self._participants[participant.id] = participant
            try:
                await self.handle_participants_changed()
            except DocumentStoreError as exc:
                self._log.warning("session_participants_check_failed", error=str(exc))

    def _stop_background(self) -> None:
        current = asyncio.current_task()
        for task in self._tasks:
            if task is not current and not task.done():
                task.cancel()

    async def close(self) -> None:
        self._closed = True
        self._stop_background()
        for subscription in self._subscriptions:
            await subscription.close()
        self._subscriptions.clear()
        current = asyncio.current_task()
        pending = [task for task in self._tasks if task is not current]
        self._tasks = []
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
