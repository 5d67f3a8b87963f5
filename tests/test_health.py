import pytest
from fastapi.testclient import TestClient

from app.api.routes import health as health_routes
from app.main import app


async def _ok_check() -> dict[str, str]:
    return {"status": "ok"}


def test_health_ok(monkeypatch) -> None:
    monkeypatch.setattr(health_routes, "_check_document_store", _ok_check)
    monkeypatch.setattr(health_routes, "_check_celery_worker", _ok_check)

    client = TestClient(app)
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {
        "status": "ok",
        "checks": {
            "document_store": {"status": "ok"},
            "celery": {"status": "ok"},
        },
    }


def test_live_ok() -> None:
    client = TestClient(app)
    response = client.get("/live")
    assert response.status_code == 200
    assert response.json() == {"status": "live"}


def test_health_returns_503_when_dependency_failed(monkeypatch) -> None:
    async def _failed_store() -> dict[str, str]:
        return {"status": "failed", "error": "document_store_unavailable"}

    monkeypatch.setattr(health_routes, "_check_document_store", _failed_store)
    monkeypatch.setattr(health_routes, "_check_celery_worker", _ok_check)

    client = TestClient(app)
    response = client.get("/health")

    assert response.status_code == 503
    payload = response.json()
    assert payload["status"] == "degraded"
    assert payload["checks"]["document_store"]["status"] == "failed"


def test_ready_stays_200_when_celery_failed(monkeypatch) -> None:
    async def _failed_celery() -> dict[str, str]:
        return {"status": "failed", "error": "no_celery_workers"}

    monkeypatch.setattr(health_routes, "_check_document_store", _ok_check)
    monkeypatch.setattr(health_routes, "_check_celery_worker", _failed_celery)

    client = TestClient(app)
    response = client.get("/ready")

    assert response.status_code == 200
    assert response.json() == {
        "status": "ready",
        "checks": {"document_store": {"status": "ok"}},
    }


def test_ready_returns_503_when_store_down(monkeypatch) -> None:
    async def _failed_store() -> dict[str, str]:
        return {"status": "failed", "error": "document_store_unavailable"}

    monkeypatch.setattr(health_routes, "_check_document_store", _failed_store)

    client = TestClient(app)
    response = client.get("/ready")

    assert response.status_code == 503
    assert response.json()["status"] == "not_ready"


@pytest.mark.asyncio
async def test_document_store_check_sanitizes_exception(monkeypatch) -> None:
    class _BrokenStore:
        async def ping(self) -> bool:
            raise RuntimeError("redis://:secret@cache")

    monkeypatch.setattr(health_routes, "get_document_store", lambda: _BrokenStore())

    result = await health_routes._check_document_store()
    assert result == {"status": "failed", "error": "document_store_unavailable"}


def test_celery_check_sanitizes_exception(monkeypatch) -> None:
    class _BrokenControl:
        def inspect(self, timeout: float):
            raise RuntimeError("broker-url=redis://secret")

    monkeypatch.setattr(health_routes.celery_app, "control", _BrokenControl())

    result = health_routes._check_celery_worker_sync()
    assert result == {"status": "failed", "error": "celery_unavailable"}
