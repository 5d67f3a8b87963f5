from __future__ import annotations

import time
from dataclasses import dataclass

MS_PER_SECOND = 1000


def now_ms() -> int:
    return int(time.time() * MS_PER_SECOND)


@dataclass(frozen=True, slots=True)
class ClockState:
    anchor_ms: int | None
    total_duration_seconds: int
    paused: bool = False
    frozen_remaining: int | None = None


def remaining_seconds(
    *,
    anchor_ms: int | None,
    total_duration_seconds: int,
    paused: bool,
    frozen_remaining: int | None,
    now_ms: int,
) -> int:
    """Remaining whole seconds derived from the shared anchor.

    A local clock that runs behind the anchor is treated as zero elapsed time,
    so the result never exceeds the configured duration.
    """
    total = max(0, int(total_duration_seconds))
    if paused:
        return max(0, min(total, int(frozen_remaining or 0)))
    if anchor_ms is None:
        return total
    elapsed_seconds = max(0, (int(now_ms) - int(anchor_ms)) // MS_PER_SECOND)
    return max(0, total - elapsed_seconds)


def remaining_for(state: ClockState, *, now_ms: int) -> int:
    return remaining_seconds(
        anchor_ms=state.anchor_ms,
        total_duration_seconds=state.total_duration_seconds,
        paused=state.paused,
        frozen_remaining=state.frozen_remaining,
        now_ms=now_ms,
    )


def pause_remaining(state: ClockState, *, now_ms: int) -> int:
    return remaining_for(state, now_ms=now_ms)


def resume_anchor(*, now_ms: int, total_duration_seconds: int, frozen_remaining: int) -> int:
    """New anchor that keeps the displayed remaining time continuous across a pause."""
    consumed_seconds = max(0, int(total_duration_seconds) - max(0, int(frozen_remaining)))
    return int(now_ms) - consumed_seconds * MS_PER_SECOND


def elapsed_seconds_since(start_ms: int | None, *, now_ms: int) -> float:
    if start_ms is None:
        return 0.0
    return max(0, int(now_ms) - int(start_ms)) / MS_PER_SECOND


class ClockProjector:
    """Per-device read-derived view of a shared clock.

    The last projection is cached per ``ClockState``; an unchanged state can
    only count down, so a local clock stepping backwards never makes the
    displayed value jump up. A new state (new anchor, pause, resume) resets
    the cache.
    """

    def __init__(self) -> None:
        self._state: ClockState | None = None
        self._last_remaining: int | None = None

    def project(self, state: ClockState, *, now_ms: int) -> int:
        computed = remaining_for(state, now_ms=now_ms)
        if state != self._state or self._last_remaining is None:
            self._state = state
            self._last_remaining = computed
            return computed
        if computed > self._last_remaining:
            return self._last_remaining
        self._last_remaining = computed
        return computed

    def reset(self) -> None:
        self._state = None
        self._last_remaining = None
