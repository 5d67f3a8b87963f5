from app.workers.tasks.session_timeouts import run_session_timeouts

__all__ = [
    "run_session_timeouts",
]
