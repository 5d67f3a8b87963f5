from __future__ import annotations

from app.db.models.live_participants import ParticipantDocument
from app.game.patterns.cards import merge_cards
from app.game.sessions.constants import PROGRESS_RANK
from app.game.sessions.errors import StaleProgressError


def _min_defined(*values: int | None) -> int | None:
    defined = [value for value in values if value is not None]
    return min(defined) if defined else None


def reconcile_progress(
    local: ParticipantDocument | None,
    remote: ParticipantDocument | None,
) -> ParticipantDocument | None:
    """Merge a device's local progress with the stored copy.

    Progress only moves forward: the longer answer log wins, scores and
    indices never decrease, and a completed participant stays completed.
    The shorter log must be a prefix of the longer one; two copies that
    recorded different actions raise ``StaleProgressError`` instead of
    dropping either entry.
    """
    if local is None:
        return remote
    if remote is None:
        return local
    if len(local.answer_log) >= len(remote.answer_log):
        leading, trailing = local, remote
    else:
        leading, trailing = remote, local
    if leading.answer_log[: len(trailing.answer_log)] != trailing.answer_log:
        raise StaleProgressError

    progress_state = max(
        (local.progress_state, remote.progress_state),
        key=lambda state: PROGRESS_RANK.get(state, 0),
    )
    completed_patterns = list(leading.completed_patterns)
    completed_patterns.extend(
        name for name in trailing.completed_patterns if name not in completed_patterns
    )
    return leading.model_copy(
        update={
            "display_name": remote.display_name,
            "progress_state": progress_state,
            "current_item_index": max(local.current_item_index, remote.current_item_index),
            "score": max(local.score, remote.score),
            "best_streak": max(local.best_streak, remote.best_streak, leading.streak),
            "card_state": merge_cards(leading.card_state, trailing.card_state),
            "completed_patterns": completed_patterns,
            "first_pattern_ms": _min_defined(local.first_pattern_ms, remote.first_pattern_ms),
            "completed_ms": leading.completed_ms or trailing.completed_ms,
            "joined_ms": remote.joined_ms,
        }
    )
