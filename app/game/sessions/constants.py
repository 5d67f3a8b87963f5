from __future__ import annotations

SESSION_PHASE_WAITING = "waiting"
SESSION_PHASE_COUNTDOWN = "countdown"
SESSION_PHASE_ACTIVE = "active"
SESSION_PHASE_COMPLETED = "completed"

SESSION_PHASE_ORDER: tuple[str, ...] = (
    SESSION_PHASE_WAITING,
    SESSION_PHASE_COUNTDOWN,
    SESSION_PHASE_ACTIVE,
    SESSION_PHASE_COMPLETED,
)
SESSION_RUNNING_PHASES: frozenset[str] = frozenset({SESSION_PHASE_COUNTDOWN, SESSION_PHASE_ACTIVE})
SESSION_JOINABLE_PHASES: frozenset[str] = frozenset({SESSION_PHASE_WAITING})
SESSION_LATE_JOINABLE_PHASES: frozenset[str] = frozenset(
    {SESSION_PHASE_WAITING, SESSION_PHASE_COUNTDOWN, SESSION_PHASE_ACTIVE}
)

PROGRESS_WAITING = "waiting"
PROGRESS_IN_PROGRESS = "in_progress"
PROGRESS_COMPLETED = "completed"

PROGRESS_RANK: dict[str, int] = {
    PROGRESS_WAITING: 0,
    PROGRESS_IN_PROGRESS: 1,
    PROGRESS_COMPLETED: 2,
}

COMPLETION_REASON_ALL_COMPLETED = "all_completed"
COMPLETION_REASON_TIMEOUT = "timeout"
COMPLETION_REASON_CONTROLLER_ENDED = "controller_ended"
SESSION_COMPLETION_REASONS: frozenset[str] = frozenset(
    {
        COMPLETION_REASON_ALL_COMPLETED,
        COMPLETION_REASON_TIMEOUT,
        COMPLETION_REASON_CONTROLLER_ENDED,
    }
)

PARTICIPANT_DONE_ITEMS_EXHAUSTED = "items_exhausted"
PARTICIPANT_DONE_STOPPED = "stopped_on_incorrect"
PARTICIPANT_DONE_CARD_WON = "card_won"
PARTICIPANT_DONE_SESSION_COMPLETED = "session_completed"
PARTICIPANT_DONE_WALKED_AWAY = "walked_away"

ANSWER_KIND_ANSWER = "answer"
ANSWER_KIND_SKIP = "skip"
ANSWER_KIND_MARK = "mark"
ANSWER_KIND_CHALLENGE = "challenge"

JOIN_CODE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789"
JOIN_CODE_LENGTH = 6
JOIN_CODE_MAX_ATTEMPTS = 10

DISPLAY_NAME_MAX_LENGTH = 40
