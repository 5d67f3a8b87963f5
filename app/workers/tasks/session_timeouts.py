from __future__ import annotations

from time import perf_counter

import structlog

from app.core.config import get_settings
from app.db.documents import DocumentStoreError
from app.db.repo.live_sessions_repo import LiveSessionsRepo
from app.db.store import get_document_store
from app.game.clock import now_ms
from app.game.effects import NullEffects
from app.game.sessions.constants import (
    SESSION_PHASE_COMPLETED,
    SESSION_PHASE_COUNTDOWN,
    SESSION_RUNNING_PHASES,
)
from app.game.sessions.errors import GameSessionError
from app.game.sessions.lifecycle import SessionLifecycleController
from app.workers.asyncio_runner import run_async_job
from app.workers.celery_app import celery_app

logger = structlog.get_logger(__name__)


def _clamp_batch_size(value: int) -> int:
    return max(1, min(5000, int(value)))


def _clamp_schedule_seconds(value: int) -> int:
    return max(5, min(3600, int(value)))


async def run_session_timeouts_async() -> dict[str, object]:
    """Tick running sessions so they progress without a connected controller."""
    settings = get_settings()
    store = get_document_store()
    batch_size = _clamp_batch_size(settings.session_timeout_batch_size)
    started_at = perf_counter()

    sessions = await LiveSessionsRepo.list_by_phases(
        store,
        phases=SESSION_RUNNING_PHASES,
        limit=batch_size,
    )
    activated_total = 0
    completed_total = 0
    error_count = 0
    for session in sessions:
        controller = SessionLifecycleController(
            store,
            session.id,
            settings=settings,
            effects=NullEffects(),
        )
        try:
            with structlog.contextvars.bound_contextvars(session_id=session.id):
                projection = await controller.tick()
        except (GameSessionError, DocumentStoreError) as exc:
            error_count += 1
            logger.warning(
                "session_timeout_sweep_session_failed",
                session_id=session.id,
                phase=session.phase,
                error_type=type(exc).__name__,
            )
            continue
        finally:
            await controller.close()
        if session.phase == SESSION_PHASE_COUNTDOWN and projection.phase != SESSION_PHASE_COUNTDOWN:
            activated_total += 1
        if projection.phase == SESSION_PHASE_COMPLETED:
            completed_total += 1

    result: dict[str, object] = {
        "scanned_total": len(sessions),
        "activated_total": activated_total,
        "completed_total": completed_total,
        "error_count": error_count,
        "batch_size": batch_size,
        "scanned_at_ms": now_ms(),
        "duration_ms": int((perf_counter() - started_at) * 1000),
    }
    if error_count > 0:
        logger.warning("session_timeout_sweep_finished_with_errors", **result)
    else:
        logger.info("session_timeout_sweep_finished", **result)
    return result


@celery_app.task(name="app.workers.tasks.session_timeouts.run_session_timeouts")
def run_session_timeouts() -> dict[str, object]:
    return run_async_job(run_session_timeouts_async())


celery_app.conf.beat_schedule = celery_app.conf.beat_schedule or {}
settings = get_settings()
celery_app.conf.beat_schedule.update(
    {
        "session-timeouts-sweep": {
            "task": "app.workers.tasks.session_timeouts.run_session_timeouts",
            "schedule": _clamp_schedule_seconds(settings.session_timeout_scan_interval_seconds),
            "options": {"queue": "q_normal"},
        },
    }
)
