from __future__ import annotations

import asyncio

import pytest

from app.db.memory_store import InMemoryDocumentStore
from app.db.models.live_sessions import SessionSettings
from app.db.repo.live_participants_repo import LiveParticipantsRepo
from app.db.repo.live_sessions_repo import LiveSessionsRepo
from app.game.effects import RecordingEffects
from app.game.sessions.constants import JOIN_CODE_ALPHABET, JOIN_CODE_LENGTH
from app.game.sessions.errors import (
    InvalidPhaseTransitionError,
    NotEnoughParticipantsError,
    SessionNotFoundError,
)
from app.game.sessions.join import join_session
from app.game.sessions.lifecycle import SessionLifecycleController, create_session
from tests.game.live_session_fixtures import FakeClock, fast_settings, quiz_content


async def _lobby(store: InMemoryDocumentStore, clock: FakeClock, **kwargs):
    settings = kwargs.pop("settings", fast_settings())
    session = await create_session(
        store,
        game_kind="quiz",
        total_duration_seconds=120,
        content=quiz_content(),
        clock=clock,
        settings=settings,
        **kwargs,
    )
    return session, settings


async def _active_session(store: InMemoryDocumentStore, clock: FakeClock, names=("Ana",)):
    session, settings = await _lobby(store, clock)
    joined = [
        await join_session(store, code=session.code, display_name=name, clock=clock) for name in names
    ]
    controller = SessionLifecycleController(store, session.id, clock=clock, settings=settings)
    await controller.start()
    clock.advance(3)
    await controller.tick()
    return controller, joined


@pytest.mark.asyncio
async def test_create_session_opens_lobby_with_join_code() -> None:
    store = InMemoryDocumentStore()
    clock = FakeClock()

    session, _ = await _lobby(store, clock, title="Friday quiz")

    assert session.phase == "waiting"
    assert session.anchor_ms is None
    assert len(session.code) == JOIN_CODE_LENGTH
    assert set(session.code) <= set(JOIN_CODE_ALPHABET)
    assert session.countdown_ticks == 3
    assert (await LiveSessionsRepo.get_by_code(store, session.code.lower())).id == session.id


@pytest.mark.asyncio
async def test_create_session_rejects_unknown_game_kind() -> None:
    with pytest.raises(ValueError):
        await create_session(
            InMemoryDocumentStore(),
            game_kind="karaoke",
            total_duration_seconds=60,
            settings=fast_settings(),
        )


@pytest.mark.asyncio
async def test_start_requires_minimum_participants() -> None:
    store = InMemoryDocumentStore()
    clock = FakeClock()
    session, settings = await _lobby(store, clock, session_settings=SessionSettings(min_participants=2))
    await join_session(store, code=session.code, display_name="Ana", clock=clock)
    controller = SessionLifecycleController(store, session.id, clock=clock, settings=settings)

    with pytest.raises(NotEnoughParticipantsError):
        await controller.start()

    await join_session(store, code=session.code, display_name="Ben", clock=clock)
    started = await controller.start()
    assert started.phase == "countdown"
    assert started.countdown_anchor_ms == clock.now


@pytest.mark.asyncio
async def test_countdown_activates_after_ticks_with_fresh_anchor() -> None:
    store = InMemoryDocumentStore()
    clock = FakeClock()
    effects = RecordingEffects()
    session, settings = await _lobby(store, clock)
    await join_session(store, code=session.code, display_name="Ana", clock=clock)
    controller = SessionLifecycleController(
        store,
        session.id,
        clock=clock,
        settings=settings,
        effects=effects,
    )

    await controller.start()
    clock.advance(1)
    projection = await controller.tick()
    assert projection.phase == "countdown"
    assert projection.countdown_remaining_seconds == 2

    clock.advance(2)
    projection = await controller.tick()
    assert projection.phase == "active"
    assert projection.remaining_seconds == 120
    stored = await LiveSessionsRepo.get_by_id(store, session.id)
    assert stored.anchor_ms == clock.now
    assert stored.paused is False
    assert "session_started" in effects.names()


@pytest.mark.asyncio
async def test_zero_countdown_starts_immediately() -> None:
    store = InMemoryDocumentStore()
    clock = FakeClock()
    session, settings = await _lobby(store, clock, settings=fast_settings(session_countdown_ticks=0))
    await join_session(store, code=session.code, display_name="Ana", clock=clock)

    started = await SessionLifecycleController(store, session.id, clock=clock, settings=settings).start()

    assert started.phase == "active"
    assert started.anchor_ms == clock.now


@pytest.mark.asyncio
async def test_start_is_rejected_outside_waiting() -> None:
    store = InMemoryDocumentStore()
    clock = FakeClock()
    controller, _ = await _active_session(store, clock)

    with pytest.raises(InvalidPhaseTransitionError):
        await controller.start()


@pytest.mark.asyncio
async def test_pause_and_resume_keep_remaining_time() -> None:
    store = InMemoryDocumentStore()
    clock = FakeClock()
    controller, _ = await _active_session(store, clock)

    clock.advance(10)
    paused = await controller.pause()
    assert paused.paused is True
    assert paused.remaining_at_pause_seconds == 110

    clock.advance(30)
    assert (await controller.tick()).remaining_seconds == 110

    resumed = await controller.resume()
    assert resumed.paused is False
    assert resumed.remaining_at_pause_seconds is None
    assert (await controller.tick()).remaining_seconds == 110
    clock.advance(1)
    assert (await controller.tick()).remaining_seconds == 109


@pytest.mark.asyncio
async def test_pause_requires_active_session() -> None:
    store = InMemoryDocumentStore()
    clock = FakeClock()
    session, settings = await _lobby(store, clock)
    controller = SessionLifecycleController(store, session.id, clock=clock, settings=settings)

    with pytest.raises(InvalidPhaseTransitionError):
        await controller.pause()


@pytest.mark.asyncio
async def test_timeout_completes_session_once() -> None:
    store = InMemoryDocumentStore()
    clock = FakeClock()
    finalized: list[str] = []

    async def on_finalized(session) -> None:
        finalized.append(session.completion_reason)

    session, settings = await _lobby(store, clock)
    await join_session(store, code=session.code, display_name="Ana", clock=clock)
    controller = SessionLifecycleController(
        store,
        session.id,
        clock=clock,
        settings=settings,
        on_finalized=on_finalized,
    )
    await controller.start()
    clock.advance(3)
    await controller.tick()

    clock.advance(119)
    assert (await controller.tick()).phase == "active"
    clock.advance(1)
    projection = await controller.tick()
    clock.advance(5)
    await controller.tick()

    assert projection.phase == "completed"
    assert projection.remaining_seconds == 0
    assert projection.completion_reason == "timeout"
    assert controller.finalize_count == 1
    assert finalized == ["timeout"]


@pytest.mark.asyncio
async def test_session_completes_when_all_participants_complete() -> None:
    store = InMemoryDocumentStore()
    clock = FakeClock()
    controller, joined = await _active_session(store, clock, names=("Ana", "Ben"))

    for index, result in enumerate(joined):
        await LiveParticipantsRepo.update(
            store,
            session_id=result.session_id,
            participant_id=result.participant_id,
            mutate=lambda participant: participant.model_copy(update={"progress_state": "completed"}),
        )
        finished = await controller.handle_participants_changed(await controller.load_participants())
        assert finished is (index == 1)

    stored = await LiveSessionsRepo.get_by_id(store, controller.session_id)
    assert stored.phase == "completed"
    assert stored.completion_reason == "all_completed"


@pytest.mark.asyncio
async def test_removed_participants_do_not_block_all_completed() -> None:
    store = InMemoryDocumentStore()
    clock = FakeClock()
    controller, joined = await _active_session(store, clock, names=("Ana", "Ben"))
    ana, ben = joined
    await LiveParticipantsRepo.update(
        store,
        session_id=ana.session_id,
        participant_id=ana.participant_id,
        mutate=lambda participant: participant.model_copy(update={"progress_state": "completed"}),
    )
    await controller.load_participants()

    updated = await controller.remove_participant(ben.participant_id)

    assert ben.participant_id in updated.removed_participant_ids
    stored = await LiveSessionsRepo.get_by_id(store, controller.session_id)
    assert stored.completion_reason == "all_completed"


@pytest.mark.asyncio
async def test_end_session_is_rejected_before_activation() -> None:
    store = InMemoryDocumentStore()
    clock = FakeClock()
    session, settings = await _lobby(store, clock)
    controller = SessionLifecycleController(store, session.id, clock=clock, settings=settings)

    with pytest.raises(InvalidPhaseTransitionError):
        await controller.end_session()
    assert controller.guard.latched is False


@pytest.mark.asyncio
async def test_first_completion_reason_wins_across_devices() -> None:
    store = InMemoryDocumentStore()
    clock = FakeClock()
    controller, _ = await _active_session(store, clock)
    other_device = SessionLifecycleController(
        store,
        controller.session_id,
        clock=clock,
        settings=fast_settings(),
    )
    await other_device.load()

    assert await controller.end_session() is True
    first = await LiveSessionsRepo.get_by_id(store, controller.session_id)
    clock.advance(200)
    assert await other_device.finalize("timeout") is True

    stored = await LiveSessionsRepo.get_by_id(store, controller.session_id)
    assert stored.completion_reason == "controller_ended"
    assert stored.completed_ms == first.completed_ms


@pytest.mark.asyncio
async def test_concurrent_finalize_paths_execute_once() -> None:
    store = InMemoryDocumentStore()
    clock = FakeClock()
    controller, _ = await _active_session(store, clock)

    results = await asyncio.gather(
        controller.finalize("timeout"),
        controller.finalize("all_completed"),
    )

    assert sorted(results) == [False, True]
    assert controller.finalize_count == 1


@pytest.mark.asyncio
async def test_projection_orders_leaderboard_by_score() -> None:
    store = InMemoryDocumentStore()
    clock = FakeClock()
    controller, joined = await _active_session(store, clock, names=("Ana", "Ben", "Cy"))
    for result, score in zip(joined, (50, 300, 120)):
        await LiveParticipantsRepo.update(
            store,
            session_id=result.session_id,
            participant_id=result.participant_id,
            mutate=lambda participant, score=score: participant.model_copy(update={"score": score}),
        )

    projection = await controller.tick()

    assert [row.display_name for row in projection.participants] == ["Ben", "Cy", "Ana"]
    assert [row.score for row in projection.participants] == [300, 120, 50]


@pytest.mark.asyncio
async def test_missing_session_raises_not_found() -> None:
    controller = SessionLifecycleController(
        InMemoryDocumentStore(),
        "missing",
        clock=FakeClock(),
        settings=fast_settings(),
    )
    with pytest.raises(SessionNotFoundError):
        await controller.tick()


@pytest.mark.asyncio
async def test_watch_finalizes_from_background_loop() -> None:
    store = InMemoryDocumentStore()
    clock = FakeClock()
    controller, _ = await _active_session(store, clock)

    await controller.watch()
    clock.advance(121)
    for _ in range(50):
        if controller.guard.finalized:
            break
        await asyncio.sleep(0.01)
    await controller.close()

    stored = await LiveSessionsRepo.get_by_id(store, controller.session_id)
    assert stored.phase == "completed"
    assert controller.finalize_count == 1
