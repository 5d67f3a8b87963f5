from __future__ import annotations

import pytest

from app.db.memory_store import InMemoryDocumentStore
from app.db.repo.live_participants_repo import LiveParticipantsRepo
from app.db.repo.live_sessions_repo import LiveSessionsRepo
from app.game.effects import RecordingEffects
from app.game.sessions.join import join_session
from app.game.sessions.lifecycle import SessionLifecycleController, create_session
from app.game.sessions.progression import ParticipantProgressionController
from app.game.sessions.reporting import build_participant_report, calculate_session_awards
from tests.game.live_session_fixtures import FakeClock, fast_settings, quiz_content


@pytest.mark.asyncio
async def test_timeout_with_a_lagging_participant() -> None:
    store = InMemoryDocumentStore()
    clock = FakeClock()
    settings = fast_settings()
    controller_effects = RecordingEffects()
    session = await create_session(
        store,
        game_kind="quiz",
        total_duration_seconds=120,
        content=quiz_content(4),
        clock=clock,
        settings=settings,
    )
    joined = {
        name: await join_session(store, code=session.code, display_name=name, clock=clock)
        for name in ("Ana", "Ben", "Cy")
    }
    controller = SessionLifecycleController(
        store,
        session.id,
        clock=clock,
        settings=settings,
        effects=controller_effects,
    )
    await controller.start()
    clock.advance(3)
    assert (await controller.tick()).phase == "active"

    devices = {
        name: ParticipantProgressionController(
            store,
            session_id=session.id,
            participant_id=result.participant_id,
            clock=clock,
            settings=settings,
        )
        for name, result in joined.items()
    }
    for device in devices.values():
        await device.attach()

    for round_index in range(4):
        clock.advance(4)
        await devices["Ana"].submit_answer(0)
        await devices["Ben"].submit_answer(0 if round_index == 0 else 1, elapsed_seconds=12)
    await devices["Cy"].submit_answer(0, elapsed_seconds=20)
    projection = await controller.tick()
    assert projection.phase == "active"
    assert [row.progress_state for row in projection.participants] == [
        "completed",
        "completed",
        "in_progress",
    ]

    clock.advance(120 - 16)
    projection = await controller.tick()
    assert projection.phase == "completed"
    assert projection.completion_reason == "timeout"

    completed = await LiveSessionsRepo.get_by_id(store, session.id)
    for device in devices.values():
        await device.handle_session_changed(completed)
    assert devices["Cy"].guard.latched is False

    clock.advance(2)
    late = await devices["Cy"].submit_answer(0, elapsed_seconds=30)
    assert late.late is True
    assert late.completed is True

    clock.advance(10)
    await controller.tick()
    mirror = SessionLifecycleController(store, session.id, clock=clock, settings=settings)
    await mirror.tick()

    stored_session = await LiveSessionsRepo.get_by_id(store, session.id)
    assert stored_session.completed_ms == completed.completed_ms
    assert controller.finalize_count == 1
    assert controller_effects.names().count("session_completed") == 1
    assert {name: device.finalize_count for name, device in devices.items()} == {
        "Ana": 1,
        "Ben": 1,
        "Cy": 1,
    }

    participants = await LiveParticipantsRepo.list_for_session(store, session.id)
    by_name = {participant.display_name: participant for participant in participants}
    assert all(participant.progress_state == "completed" for participant in participants)
    assert [record.item_id for record in by_name["Cy"].answer_log] == ["q1", "q2"]
    assert by_name["Ana"].score == 150 + 150 + 200 + 200

    cy_report = build_participant_report(stored_session, by_name["Cy"])
    assert cy_report.answered_count == 2
    assert cy_report.accuracy_percent == 100.0

    awards = calculate_session_awards(stored_session, participants)
    assert [recipient.display_name for recipient in awards.top_performers] == ["Ana", "Cy", "Ben"]

    for device in devices.values():
        await device.close()
