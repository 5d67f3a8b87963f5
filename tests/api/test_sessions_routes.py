from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from app.core.config import Settings
from app.db.memory_store import InMemoryDocumentStore
from app.db.store import get_document_store
from app.game.sessions import lifecycle
from app.game.sessions.errors import StaleProgressError
from app.game.sessions.progression import ParticipantProgressionController
from app.main import app


def _quiz_payload(**overrides: object) -> dict[str, object]:
    payload: dict[str, object] = {
        "game_kind": "quiz",
        "total_duration_seconds": 120,
        "title": "Friday quiz",
        "content": {
            "items": [
                {
                    "id": f"q{index}",
                    "prompt": f"Question {index}",
                    "options": ["right", "wrong"],
                    "correct_index": 0,
                    "points": 100,
                }
                for index in range(1, 4)
            ]
        },
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def client(monkeypatch):
    store = InMemoryDocumentStore()
    settings = Settings(session_countdown_ticks=0, store_read_retry_backoff_seconds=0.0)
    monkeypatch.setattr(lifecycle, "get_settings", lambda: settings)
    app.dependency_overrides[get_document_store] = lambda: store
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.pop(get_document_store, None)


def _create_and_join(client: TestClient, *names: str) -> tuple[str, str, list[str]]:
    created = client.post("/sessions", json=_quiz_payload())
    assert created.status_code == 201
    session = created.json()
    participant_ids = []
    for name in names:
        joined = client.post("/sessions/join", json={"code": session["code"].lower(), "display_name": name})
        assert joined.status_code == 201
        participant_ids.append(joined.json()["participant_id"])
    return session["session_id"], session["code"], participant_ids


def test_create_session_returns_join_code(client: TestClient) -> None:
    response = client.post("/sessions", json=_quiz_payload())

    assert response.status_code == 201
    payload = response.json()
    assert payload["phase"] == "waiting"
    assert payload["game_kind"] == "quiz"
    assert len(payload["code"]) == 6


def test_create_session_validates_payload(client: TestClient) -> None:
    response = client.post("/sessions", json=_quiz_payload(total_duration_seconds=0))
    assert response.status_code == 422


def test_join_unknown_code_returns_404(client: TestClient) -> None:
    response = client.post("/sessions/join", json={"code": "NOPE00", "display_name": "Ana"})
    assert response.status_code == 404
    assert response.json() == {"detail": {"code": "E_JOIN_CODE_NOT_FOUND"}}


def test_unknown_session_returns_404(client: TestClient) -> None:
    response = client.get("/sessions/missing")
    assert response.status_code == 404
    assert response.json() == {"detail": {"code": "E_SESSION_NOT_FOUND"}}


def test_end_before_start_is_a_phase_conflict(client: TestClient) -> None:
    session_id, _, _ = _create_and_join(client, "Ana")

    response = client.post(f"/sessions/{session_id}/end")

    assert response.status_code == 409
    assert response.json() == {"detail": {"code": "E_INVALID_PHASE"}}


def test_start_without_participants_is_rejected(client: TestClient) -> None:
    session_id, _, _ = _create_and_join(client)

    response = client.post(f"/sessions/{session_id}/start")

    assert response.status_code == 409
    assert response.json() == {"detail": {"code": "E_NOT_ENOUGH_PARTICIPANTS"}}


def test_live_session_flow(client: TestClient) -> None:
    session_id, code, (ana, ben) = _create_and_join(client, "Ana", "Ben")

    started = client.post(f"/sessions/{session_id}/start")
    assert started.status_code == 200
    assert started.json()["phase"] == "active"
    assert started.json()["code"] == code

    late = client.post("/sessions/join", json={"code": code, "display_name": "Cy"})
    assert late.status_code == 409
    assert late.json() == {"detail": {"code": "E_SESSION_NOT_JOINABLE"}}

    answer = client.post(
        f"/sessions/{session_id}/participants/{ana}/answer",
        json={"choice_index": 0, "elapsed_seconds": 3.0},
    )
    assert answer.status_code == 200
    assert answer.json()["points"] == 150
    assert answer.json()["breakdown"] == [
        {"kind": "base", "amount": 100},
        {"kind": "speed", "amount": 50},
    ]

    invalid = client.post(
        f"/sessions/{session_id}/participants/{ben}/answer",
        json={"choice_index": 5},
    )
    assert invalid.status_code == 422
    assert invalid.json() == {"detail": {"code": "E_INVALID_OPTION"}}

    skipped = client.post(f"/sessions/{session_id}/participants/{ben}/skip")
    assert skipped.status_code == 200
    assert skipped.json()["points"] == 0

    mark = client.post(f"/sessions/{session_id}/participants/{ben}/mark", json={"row": 0, "col": 0})
    assert mark.status_code == 400
    assert mark.json() == {"detail": {"code": "E_UNSUPPORTED_ACTION"}}

    projection = client.get(f"/sessions/{session_id}/participants/{ana}")
    assert projection.status_code == 200
    assert projection.json()["score"] == 150
    assert projection.json()["current_item_index"] == 1
    assert projection.json()["total_items"] == 3

    early_report = client.get(f"/sessions/{session_id}/report")
    assert early_report.status_code == 409
    assert early_report.json() == {"detail": {"code": "E_SESSION_NOT_COMPLETED"}}

    ended = client.post(f"/sessions/{session_id}/end")
    assert ended.status_code == 200
    assert ended.json()["phase"] == "completed"
    assert ended.json()["completion_reason"] == "controller_ended"
    assert ended.json()["remaining_seconds"] == 0
    assert [row["display_name"] for row in ended.json()["participants"]] == ["Ana", "Ben"]

    report = client.get(f"/sessions/{session_id}/report")
    assert report.status_code == 200
    payload = report.json()
    assert payload["completion_reason"] == "controller_ended"
    assert [row["participant_id"] for row in payload["participants"]] == [ana, ben]
    assert payload["participants"][0]["accuracy_percent"] == 100.0
    assert payload["top_performers"][0]["participant_id"] == ana
    assert "perfect-score" in {award["code"] for award in payload["awards"]}


def test_pause_resume_and_remove(client: TestClient) -> None:
    session_id, _, (ana, ben) = _create_and_join(client, "Ana", "Ben")
    client.post(f"/sessions/{session_id}/start")

    paused = client.post(f"/sessions/{session_id}/pause")
    assert paused.status_code == 200
    assert paused.json()["paused"] is True

    blocked = client.post(f"/sessions/{session_id}/participants/{ana}/answer", json={"choice_index": 0})
    assert blocked.status_code == 409
    assert blocked.json() == {"detail": {"code": "E_PARTICIPANT_NOT_PLAYING"}}

    resumed = client.post(f"/sessions/{session_id}/resume")
    assert resumed.status_code == 200
    assert resumed.json()["paused"] is False

    removed = client.delete(f"/sessions/{session_id}/participants/{ben}")
    assert removed.status_code == 200
    rows = {row["participant_id"]: row for row in removed.json()["participants"]}
    assert rows[ben]["removed"] is True

    rejected = client.post(f"/sessions/{session_id}/participants/{ben}/answer", json={"choice_index": 0})
    assert rejected.status_code == 409
    assert rejected.json() == {"detail": {"code": "E_PARTICIPANT_REMOVED"}}

    tick = client.post(f"/sessions/{session_id}/tick")
    assert tick.status_code == 200
    assert tick.json()["phase"] == "active"


def test_join_with_taken_participant_id_is_a_conflict(client: TestClient) -> None:
    _, code, _ = _create_and_join(client)
    body = {"code": code, "display_name": "Ana", "participant_id": "device-1"}

    first = client.post("/sessions/join", json=body)
    assert first.status_code == 201
    assert first.json()["participant_id"] == "device-1"

    again = client.post("/sessions/join", json={**body, "display_name": "Ana again"})
    assert again.status_code == 409
    assert again.json() == {"detail": {"code": "E_ALREADY_EXISTS"}}


def test_diverged_progress_returns_conflict(client: TestClient, monkeypatch) -> None:
    session_id, _, (ana,) = _create_and_join(client, "Ana")
    client.post(f"/sessions/{session_id}/start")

    async def _diverged(self, *args, **kwargs):
        raise StaleProgressError

    monkeypatch.setattr(ParticipantProgressionController, "submit_answer", _diverged)

    response = client.post(f"/sessions/{session_id}/participants/{ana}/answer", json={"choice_index": 0})
    assert response.status_code == 409
    assert response.json() == {"detail": {"code": "E_STALE_PROGRESS"}}


def test_ladder_walk_away_keeps_winnings(client: TestClient) -> None:
    created = client.post("/sessions", json=_quiz_payload(game_kind="ladder"))
    session = created.json()
    joined = client.post("/sessions/join", json={"code": session["code"], "display_name": "Ana"})
    ana = joined.json()["participant_id"]
    session_id = session["session_id"]
    client.post(f"/sessions/{session_id}/start")

    for _ in range(2):
        answer = client.post(
            f"/sessions/{session_id}/participants/{ana}/answer",
            json={"choice_index": 0, "elapsed_seconds": 20.0},
        )
        assert answer.status_code == 200

    walked = client.post(f"/sessions/{session_id}/participants/{ana}/walk-away")
    assert walked.status_code == 200
    assert walked.json()["progress_state"] == "completed"
    assert walked.json()["winnings"] == 200
    assert walked.json()["current_item_index"] == 2

    again = client.post(f"/sessions/{session_id}/participants/{ana}/walk-away")
    assert again.status_code == 409
    assert again.json() == {"detail": {"code": "E_PARTICIPANT_NOT_PLAYING"}}


def test_walk_away_on_a_quiz_is_unsupported(client: TestClient) -> None:
    session_id, _, (ana,) = _create_and_join(client, "Ana")
    client.post(f"/sessions/{session_id}/start")

    response = client.post(f"/sessions/{session_id}/participants/{ana}/walk-away")
    assert response.status_code == 400
    assert response.json() == {"detail": {"code": "E_UNSUPPORTED_ACTION"}}
