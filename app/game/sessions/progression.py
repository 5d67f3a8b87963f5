from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

import structlog

from app.core.config import Settings, get_settings
from app.db.documents import DocumentStore, DocumentStoreError, DocumentSubscription
from app.db.models.live_participants import AnswerRecord, ParticipantDocument, PointsComponentRecord
from app.db.models.live_sessions import SessionDocument
from app.db.repo.live_participants_repo import LiveParticipantsRepo
from app.db.repo.live_sessions_repo import LiveSessionsRepo
from app.db.serialization import load_document
from app.db.store import read_with_retry
from app.game.clock import ClockProjector, elapsed_seconds_since
from app.game.clock import now_ms as wall_clock_ms
from app.game.effects import EffectsPort, LoggingEffects
from app.game.modes.rules import (
    CardMatchRules,
    GameKindRules,
    is_correct_choice,
    is_item_playable,
    resolve_game_kind,
)
from app.game.patterns.cards import apply_marks, build_card, marked_grid
from app.game.patterns.engine import mark
from app.game.scoring.types import AnswerEvent, ParticipantHistory, PointsComponent
from app.game.sessions.arbitration import CompletionGuard
from app.game.sessions.constants import (
    ANSWER_KIND_ANSWER,
    ANSWER_KIND_CHALLENGE,
    ANSWER_KIND_MARK,
    ANSWER_KIND_SKIP,
    COMPLETION_REASON_TIMEOUT,
    PARTICIPANT_DONE_CARD_WON,
    PARTICIPANT_DONE_ITEMS_EXHAUSTED,
    PARTICIPANT_DONE_SESSION_COMPLETED,
    PARTICIPANT_DONE_STOPPED,
    PARTICIPANT_DONE_WALKED_AWAY,
    PROGRESS_COMPLETED,
    PROGRESS_IN_PROGRESS,
    PROGRESS_WAITING,
    SESSION_PHASE_ACTIVE,
    SESSION_PHASE_COMPLETED,
)
from app.game.sessions.errors import (
    ChallengeAnswerRequiredError,
    InvalidAnswerOptionError,
    InvalidCardCellError,
    ParticipantNotFoundError,
    ParticipantNotPlayingError,
    ParticipantRemovedError,
    ProgressSyncError,
    SessionNotFoundError,
    StaleProgressError,
    UnsupportedActionError,
)
from app.game.sessions.join import participant_card_seed
from app.game.sessions.reconcile import reconcile_progress
from app.game.sessions.transitions import (
    apply_completion,
    is_session_expired,
    session_clock_state,
    session_deadline_ms,
)
from app.game.sessions.types import AnswerOutcome, MarkOutcome, ParticipantProjection

logger = structlog.get_logger(__name__)

ParticipantFinalizedCallback = Callable[[ParticipantDocument], Awaitable[None]]


def _breakdown_records(breakdown: tuple[PointsComponent, ...]) -> list[PointsComponentRecord]:
    return [PointsComponentRecord(kind=component.kind, amount=component.amount) for component in breakdown]


class ParticipantProgressionController:
    """Participant-device side of a live session.

    Only this device writes the participant document. Every action applies
    locally first and is then pushed through a reconciling atomic update, so
    a failed write leaves ``pending_sync`` set without losing the action.
    """

    def __init__(
        self,
        store: DocumentStore,
        *,
        session_id: str,
        participant_id: str,
        clock: Callable[[], int] | None = None,
        settings: Settings | None = None,
        effects: EffectsPort | None = None,
        on_finalized: ParticipantFinalizedCallback | None = None,
    ) -> None:
        self._store = store
        self.session_id = session_id
        self.participant_id = participant_id
        self._clock = clock or wall_clock_ms
        self._settings = settings or get_settings()
        self._effects = effects or LoggingEffects()
        self._on_finalized = on_finalized
        self._guard = CompletionGuard(name=f"participant:{participant_id}")
        self._projector = ClockProjector()
        self._tasks: list[asyncio.Task[None]] = []
        self._grace_task: asyncio.Task[None] | None = None
        self._subscriptions: list[DocumentSubscription] = []
        self._closed = False
        self._log = logger.bind(
            session_id=session_id,
            participant_id=participant_id,
            role="participant",
        )
        self.session: SessionDocument | None = None
        self.state: ParticipantDocument | None = None
        self.rules: GameKindRules | None = None
        self.pending_sync = False
        self.removed = False
        self.finalize_count = 0

    @property
    def guard(self) -> CompletionGuard:
        return self._guard

    @property
    def _grace_ms(self) -> int:
        return max(0, int(self._settings.session_late_answer_grace_seconds)) * 1000

    def _require_ready(self) -> tuple[ParticipantDocument, SessionDocument, GameKindRules]:
        if self.state is None or self.session is None or self.rules is None:
            raise RuntimeError("attach() must be called before playing")
        return self.state, self.session, self.rules

    async def _load_session(self) -> SessionDocument:
        session = await read_with_retry(
            lambda: LiveSessionsRepo.get_by_id(self._store, self.session_id),
            attempts=self._settings.store_read_retry_attempts,
            backoff_seconds=self._settings.store_read_retry_backoff_seconds,
        )
        if session is None:
            raise SessionNotFoundError
        return session

    async def attach(self, local: ParticipantDocument | None = None) -> ParticipantDocument:
        """Load the stored participant and reconcile it with local progress."""
        session = await self._load_session()
        remote = await read_with_retry(
            lambda: LiveParticipantsRepo.get_by_id(
                self._store,
                session_id=self.session_id,
                participant_id=self.participant_id,
            ),
            attempts=self._settings.store_read_retry_attempts,
            backoff_seconds=self._settings.store_read_retry_backoff_seconds,
        )
        if remote is None:
            raise ParticipantNotFoundError

        self.rules = resolve_game_kind(session.game_kind)
        self.session = session
        try:
            merged = reconcile_progress(local if local is not None else self.state, remote)
        except StaleProgressError:
            self._log.warning("participant_local_progress_discarded", stored_answers=len(remote.answer_log))
            merged = remote
        assert merged is not None
        self.state = merged
        if merged != remote:
            try:
                await self._commit(merged)
            except ProgressSyncError:
                self._log.warning("participant_reconcile_push_deferred")
        if self.state.progress_state == PROGRESS_COMPLETED and self._guard.try_latch(
            PARTICIPANT_DONE_SESSION_COMPLETED
        ):
            self._guard.mark_finalized()

        await self.handle_session_changed(session)
        return self.state

    async def handle_session_changed(self, session: SessionDocument) -> None:
        self.session = session
        state = self.state
        if state is None:
            return
        if self.participant_id in session.removed_participant_ids:
            if not self.removed:
                self.removed = True
                self._log.info("participant_removed_observed")
                self._effects.emit("participant_removed")
                self._stop_background()
            return
        if state.progress_state == PROGRESS_COMPLETED or self._guard.latched:
            return

        now = self._clock()
        if session.phase == SESSION_PHASE_ACTIVE and state.progress_state == PROGRESS_WAITING:
            await self._begin(state, session, now_ms=now)
            return
        if session.phase != SESSION_PHASE_COMPLETED:
            return
        await self._finalize_after_grace(session, now_ms=now)

    async def _finalize_after_grace(self, session: SessionDocument, *, now_ms: int) -> bool:
        """Finalize now, or once the late-answer window past the deadline closes."""
        deadline = session_deadline_ms(session)
        grace_deadline = (deadline if deadline is not None else now_ms) + self._grace_ms
        state = self.state
        if state is not None and state.progress_state == PROGRESS_IN_PROGRESS and now_ms < grace_deadline:
            self._schedule_grace_finalize((grace_deadline - now_ms) / 1000)
            return False
        return await self.finalize(PARTICIPANT_DONE_SESSION_COMPLETED)

    async def _begin(self, state: ParticipantDocument, session: SessionDocument, *, now_ms: int) -> None:
        assert self.rules is not None
        update: dict[str, object] = {
            "progress_state": PROGRESS_IN_PROGRESS,
            "item_started_ms": now_ms,
            "current_item_index": max(state.current_item_index, self.rules.sequence_policy.entry_index),
        }
        if self.rules.uses_card and state.card_state is None:
            update["card_state"] = build_card(
                session.content.card_items,
                size=session.content.card_size,
                seed=participant_card_seed(session, self.participant_id),
            )
        await self._commit(state.model_copy(update=update))
        self._log.info("participant_started")

    def _schedule_grace_finalize(self, delay_seconds: float) -> None:
        if self._grace_task is not None:
            return
        self._grace_task = asyncio.create_task(self._finalize_after(delay_seconds))

    async def _finalize_after(self, delay_seconds: float) -> None:
        await asyncio.sleep(max(0.0, delay_seconds))
        try:
            await self.finalize(PARTICIPANT_DONE_SESSION_COMPLETED)
        except (DocumentStoreError, ProgressSyncError, StaleProgressError) as exc:
            self._log.warning("participant_grace_finalize_failed", error=str(exc))

    def _check_can_play(self, session: SessionDocument, state: ParticipantDocument, *, now_ms: int) -> bool:
        """Raise when no action is allowed; return whether the action is late."""
        if self.removed or self.participant_id in session.removed_participant_ids:
            raise ParticipantRemovedError
        if state.progress_state != PROGRESS_IN_PROGRESS or self._guard.latched:
            raise ParticipantNotPlayingError
        if session.phase not in (SESSION_PHASE_ACTIVE, SESSION_PHASE_COMPLETED) or session.paused:
            raise ParticipantNotPlayingError
        deadline = session_deadline_ms(session)
        if deadline is None or now_ms <= deadline:
            return False
        if now_ms > deadline + self._grace_ms:
            raise ParticipantNotPlayingError
        return True

    def _completed_copy(self, state: ParticipantDocument, *, now_ms: int) -> ParticipantDocument:
        return state.model_copy(
            update={
                "progress_state": PROGRESS_COMPLETED,
                "completed_ms": state.completed_ms or now_ms,
            }
        )

    async def submit_answer(
        self,
        choice_index: int | None,
        *,
        elapsed_seconds: float | None = None,
        confidence: float | None = None,
    ) -> AnswerOutcome:
        state, session, rules = self._require_ready()
        if rules.uses_card:
            raise UnsupportedActionError
        now = self._clock()
        late = self._check_can_play(session, state, now_ms=now)

        index = state.current_item_index
        total = rules.total_items(session.content)
        if index >= total:
            raise ParticipantNotPlayingError
        item = rules.item_at(session.content, index)
        if (
            choice_index is not None
            and item is not None
            and is_item_playable(item)
            and not 0 <= choice_index < len(item.options)
        ):
            raise InvalidAnswerOptionError

        if elapsed_seconds is None:
            elapsed_seconds = elapsed_seconds_since(state.item_started_ms, now_ms=now)
        correct = is_correct_choice(item, choice_index)
        answer = AnswerEvent(
            item_id=item.id if item is not None else f"missing:{index}",
            choice_index=choice_index,
            correct=correct,
            elapsed_seconds=max(0.0, float(elapsed_seconds)),
            confidence=confidence,
        )
        result = rules.compute_score(
            item,
            position=index,
            answer=answer,
            history=ParticipantHistory(streak=state.streak),
            config=session.scoring,
            effects=self._effects,
        )
        record = AnswerRecord(
            item_id=answer.item_id,
            choice_index=choice_index,
            correct=correct,
            elapsed_seconds=answer.elapsed_seconds,
            points=result.points,
            breakdown=_breakdown_records(result.breakdown),
            confidence=confidence,
            kind=ANSWER_KIND_SKIP if answer.skipped else ANSWER_KIND_ANSWER,
        )
        next_index = index + 1
        stopped = rules.sequence_policy.stop_on_incorrect and is_item_playable(item) and not correct
        updated = state.model_copy(
            update={
                "answer_log": [*state.answer_log, record],
                "score": state.score + result.points,
                "streak": result.new_streak,
                "best_streak": max(state.best_streak, result.new_streak),
                "current_item_index": next_index,
                "item_started_ms": now,
                "winnings": rules.winnings_after_answer(
                    state.winnings,
                    position=index,
                    correct=correct,
                    stopped=stopped,
                ),
            }
        )

        done_reason: str | None = None
        if stopped:
            done_reason = PARTICIPANT_DONE_STOPPED
        elif next_index >= total:
            done_reason = PARTICIPANT_DONE_ITEMS_EXHAUSTED
        elif session.phase == SESSION_PHASE_COMPLETED:
            done_reason = PARTICIPANT_DONE_SESSION_COMPLETED
        completed = done_reason is not None and self._guard.try_latch(done_reason)
        if completed:
            updated = self._completed_copy(updated, now_ms=now)

        self._log.info(
            "participant_answer_recorded",
            item_id=answer.item_id,
            position=index,
            correct=correct,
            points=result.points,
            score=updated.score,
            late=late,
        )
        self._effects.emit(
            "answer_correct" if correct else "answer_incorrect",
            item_id=answer.item_id,
            points=result.points,
        )
        await self._commit(updated)
        if completed:
            await self._after_finalized(done_reason or PARTICIPANT_DONE_ITEMS_EXHAUSTED)
        assert self.state is not None
        return AnswerOutcome(
            participant_id=self.participant_id,
            item_id=answer.item_id,
            correct=correct,
            points=result.points,
            breakdown=result.breakdown,
            score=self.state.score,
            streak=self.state.streak,
            current_item_index=self.state.current_item_index,
            completed=self.state.progress_state == PROGRESS_COMPLETED,
            late=late,
        )

    async def skip(self, *, elapsed_seconds: float | None = None) -> AnswerOutcome:
        return await self.submit_answer(None, elapsed_seconds=elapsed_seconds)

    async def mark_cell(
        self,
        row: int,
        col: int,
        *,
        challenge_choice: int | None = None,
    ) -> MarkOutcome:
        state, session, rules = self._require_ready()
        if not isinstance(rules, CardMatchRules):
            raise UnsupportedActionError
        now = self._clock()
        self._check_can_play(session, state, now_ms=now)

        card = state.card_state
        if card is None or not 0 <= row < len(card) or not 0 <= col < len(card[row]):
            raise InvalidCardCellError
        cell = card[row][col]
        if cell.marked:
            return MarkOutcome(
                participant_id=self.participant_id,
                row=row,
                col=col,
                marked=True,
                changed=False,
                points=0,
                score=state.score,
                streak=state.streak,
            )
        card_item = rules.find_card_item(session.content, cell.item_id)
        if card_item is None:
            raise InvalidCardCellError

        elapsed = elapsed_seconds_since(state.item_started_ms, now_ms=now)
        challenge = None
        if session.content.linked_quiz and card_item.challenge_item_id:
            challenge = rules.find_item(session.content, card_item.challenge_item_id)
        if challenge is not None and is_item_playable(challenge):
            if challenge_choice is None:
                raise ChallengeAnswerRequiredError
            if not 0 <= challenge_choice < len(challenge.options):
                raise InvalidAnswerOptionError
            if not is_correct_choice(challenge, challenge_choice):
                failed = AnswerRecord(
                    item_id=challenge.id,
                    choice_index=challenge_choice,
                    correct=False,
                    elapsed_seconds=elapsed,
                    kind=ANSWER_KIND_CHALLENGE,
                )
                self._effects.emit("challenge_failed", item_id=challenge.id)
                await self._commit(
                    state.model_copy(
                        update={"answer_log": [*state.answer_log, failed], "item_started_ms": now}
                    )
                )
                return MarkOutcome(
                    participant_id=self.participant_id,
                    row=row,
                    col=col,
                    marked=False,
                    changed=False,
                    points=0,
                    score=state.score,
                    streak=state.streak,
                    challenge_failed=True,
                )

        grid, _ = mark(marked_grid(card), row, col)
        new_card = apply_marks(card, grid)
        new_patterns = rules.detect_patterns(
            new_card,
            state.completed_patterns,
            content=session.content,
            effects=self._effects,
        )
        result = rules.score_mark(
            card_item,
            new_patterns=new_patterns,
            history=ParticipantHistory(streak=state.streak),
        )
        completed_patterns = [*state.completed_patterns, *(pattern.name for pattern in new_patterns)]
        record = AnswerRecord(
            item_id=card_item.id,
            choice_index=challenge_choice,
            correct=True,
            elapsed_seconds=elapsed,
            points=result.points,
            breakdown=_breakdown_records(result.breakdown),
            kind=ANSWER_KIND_MARK,
        )
        first_pattern_ms = state.first_pattern_ms
        if first_pattern_ms is None and new_patterns:
            first_pattern_ms = now
        updated = state.model_copy(
            update={
                "card_state": new_card,
                "answer_log": [*state.answer_log, record],
                "score": state.score + result.points,
                "streak": result.new_streak,
                "best_streak": max(state.best_streak, result.new_streak),
                "completed_patterns": completed_patterns,
                "first_pattern_ms": first_pattern_ms,
                "item_started_ms": now,
            }
        )

        done_reason: str | None = None
        if rules.is_won(session.content, completed_patterns):
            done_reason = PARTICIPANT_DONE_CARD_WON
        elif session.phase == SESSION_PHASE_COMPLETED:
            done_reason = PARTICIPANT_DONE_SESSION_COMPLETED
        completed = done_reason is not None and self._guard.try_latch(done_reason)
        if completed:
            updated = self._completed_copy(updated, now_ms=now)

        self._log.info(
            "participant_cell_marked",
            row=row,
            col=col,
            points=result.points,
            new_patterns=[pattern.name for pattern in new_patterns],
        )
        await self._commit(updated)
        if completed:
            await self._after_finalized(done_reason or PARTICIPANT_DONE_CARD_WON)
        assert self.state is not None
        return MarkOutcome(
            participant_id=self.participant_id,
            row=row,
            col=col,
            marked=True,
            changed=True,
            points=result.points,
            score=self.state.score,
            streak=self.state.streak,
            new_patterns=tuple(pattern.name for pattern in new_patterns),
            completed=self.state.progress_state == PROGRESS_COMPLETED,
        )

    async def walk_away(self) -> ParticipantProjection:
        """Leave a ladder climb early, keeping the winnings reached so far."""
        state, session, rules = self._require_ready()
        if not rules.tracks_winnings:
            raise UnsupportedActionError
        now = self._clock()
        self._check_can_play(session, state, now_ms=now)
        if not self._guard.try_latch(PARTICIPANT_DONE_WALKED_AWAY):
            raise ParticipantNotPlayingError

        await self._commit(self._completed_copy(state, now_ms=now))
        self._log.info("participant_walked_away", winnings=state.winnings, position=state.current_item_index)
        await self._after_finalized(PARTICIPANT_DONE_WALKED_AWAY)
        return self.projection(now_ms=now)

    async def finalize(self, reason: str) -> bool:
        """Write completion together with the final score; once per device."""
        result = await self._guard.run(reason, lambda: self._finalize(reason))
        return result is True

    async def _finalize(self, reason: str) -> bool:
        state, _, _ = self._require_ready()
        if state.progress_state != PROGRESS_COMPLETED:
            state = self._completed_copy(state, now_ms=self._clock())
        await self._commit(state)
        await self._after_finalized(reason)
        return True

    async def _after_finalized(self, reason: str) -> None:
        self._guard.mark_finalized()
        self.finalize_count += 1
        assert self.state is not None
        self._log.info(
            "participant_finalized",
            reason=reason,
            score=self.state.score,
            answers=len(self.state.answer_log),
        )
        self._effects.emit("participant_completed", score=self.state.score, reason=reason)
        if self._on_finalized is not None:
            await self._on_finalized(self.state)
        grace_task = self._grace_task
        if grace_task is not None and grace_task is not asyncio.current_task():
            grace_task.cancel()

    async def _commit(self, state: ParticipantDocument) -> ParticipantDocument:
        self.state = state

        def _merge(remote: ParticipantDocument) -> ParticipantDocument | None:
            merged = reconcile_progress(state, remote)
            return None if merged == remote else merged

        try:
            stored = await LiveParticipantsRepo.update(
                self._store,
                session_id=self.session_id,
                participant_id=self.participant_id,
                mutate=_merge,
            )
        except StaleProgressError:
            await self._adopt_stored_progress()
            raise
        except DocumentStoreError as exc:
            self.pending_sync = True
            self._log.warning("participant_progress_sync_failed", error=str(exc))
            raise ProgressSyncError from exc
        if stored is None:
            raise ParticipantNotFoundError
        self.pending_sync = False
        self.state = stored
        return stored

    async def _adopt_stored_progress(self) -> None:
        """Replace local progress that diverged from the stored document."""
        stored = await LiveParticipantsRepo.get_by_id(
            self._store,
            session_id=self.session_id,
            participant_id=self.participant_id,
        )
        if stored is None:
            raise ParticipantNotFoundError
        self.state = stored
        self.pending_sync = False
        if stored.progress_state == PROGRESS_COMPLETED:
            self._guard.try_latch(PARTICIPANT_DONE_SESSION_COMPLETED)
            self._guard.mark_finalized()
        elif not self._guard.finalized:
            self._guard.release()
        self._log.warning(
            "participant_progress_conflict",
            stored_answers=len(stored.answer_log),
            stored_index=stored.current_item_index,
        )

    async def sync(self) -> ParticipantDocument:
        """Push local progress again, e.g. after a failed write."""
        state, _, _ = self._require_ready()
        stored = await self._commit(state)
        if (
            stored.progress_state == PROGRESS_COMPLETED
            and self._guard.latched
            and not self._guard.finalized
        ):
            await self._after_finalized(self._guard.reason or PARTICIPANT_DONE_SESSION_COMPLETED)
        return stored

    async def check_timeout(self) -> bool:
        """Finalize locally once the shared clock and the late-answer window have run out.

        When enabled, the participant device also writes the terminal timeout;
        the expiry is re-checked inside the atomic update against the stored
        anchor, so a stale local copy cannot end a resumed session. A
        participant still in progress keeps its late-answer window either way.
        """
        session = self.session
        if session is None or self._guard.latched or self.removed:
            return False
        now = self._clock()
        if session.phase == SESSION_PHASE_ACTIVE:
            if not is_session_expired(session, now_ms=now):
                return False
            if self._settings.session_participant_timeout_termination:
                updated = await LiveSessionsRepo.update(
                    self._store,
                    self.session_id,
                    lambda current: apply_completion(
                        current,
                        reason=COMPLETION_REASON_TIMEOUT,
                        now_ms=now,
                        require_expired=True,
                    ),
                )
                if updated is not None:
                    self.session = session = updated
                    if updated.phase != SESSION_PHASE_COMPLETED:
                        return False
                self._log.info("participant_timeout_termination", now_ms=now)
        elif session.phase != SESSION_PHASE_COMPLETED:
            return False
        return await self._finalize_after_grace(session, now_ms=now)

    def projection(self, *, now_ms: int | None = None) -> ParticipantProjection:
        state, session, rules = self._require_ready()
        now = self._clock() if now_ms is None else now_ms
        if session.phase == SESSION_PHASE_ACTIVE:
            remaining = self._projector.project(session_clock_state(session), now_ms=now)
        elif session.phase == SESSION_PHASE_COMPLETED:
            remaining = 0
        else:
            remaining = max(0, session.total_duration_seconds)
        card_state = None
        if state.card_state is not None:
            card_state = tuple(tuple(cells) for cells in state.card_state)
        return ParticipantProjection(
            session_id=session.id,
            participant_id=self.participant_id,
            phase=session.phase,
            progress_state=state.progress_state,
            remaining_seconds=remaining,
            paused=session.paused,
            current_item_index=state.current_item_index,
            total_items=rules.total_items(session.content),
            score=state.score,
            streak=state.streak,
            winnings=state.winnings,
            card_state=card_state,
            completed_patterns=tuple(state.completed_patterns),
            pending_sync=self.pending_sync,
        )

    async def watch(self) -> None:
        """Follow the session document and run the local timeout check."""
        if self._tasks or self._closed:
            return
        subscription = LiveSessionsRepo.subscribe(self._store, self.session_id)
        self._subscriptions.append(subscription)
        if self.state is None:
            await self.attach()
        else:
            await self._handle_safely(await self._load_session())
        self._tasks = [
            asyncio.create_task(self._session_loop(subscription)),
            asyncio.create_task(self._tick_loop()),
        ]

    async def _handle_safely(self, session: SessionDocument) -> None:
        try:
            await self.handle_session_changed(session)
        except (ProgressSyncError, StaleProgressError):
            self._log.warning("participant_session_change_pending_sync", phase=session.phase)

    async def _session_loop(self, subscription: DocumentSubscription) -> None:
        async for change in subscription:
            if self._closed:
                break
            session = load_document(SessionDocument, change.data)
            if session is not None:
                await self._handle_safely(session)

    async def _tick_loop(self) -> None:
        interval = max(0.01, float(self._settings.session_tick_interval_seconds))
        while not self._closed and not self._guard.finalized and not self.removed:
            try:
                if self.pending_sync:
                    await self.sync()
                await self.check_timeout()
            except (DocumentStoreError, ProgressSyncError, StaleProgressError) as exc:
                self._log.warning("participant_tick_failed", error=str(exc))
            await asyncio.sleep(interval)

    def _stop_background(self) -> None:
        current = asyncio.current_task()
        for task in [*self._tasks, self._grace_task]:
            if task is not None and task is not current and not task.done():
                task.cancel()

    async def close(self) -> None:
        self._closed = True
        self._stop_background()
        for subscription in self._subscriptions:
            await subscription.close()
        self._subscriptions.clear()
        current = asyncio.current_task()
        pending = [
            task
            for task in [*self._tasks, self._grace_task]
            if task is not None and task is not current
        ]
        self._tasks = []
        self._grace_task = None
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
