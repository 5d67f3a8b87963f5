from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class CompletionGuard:
    """Per-device latch for the terminal transition.

    Several code paths on one device (tick, participant-change observer,
    explicit end, timeout) can decide to finalize within the same tick. The
    latch is checked and set without awaiting, so only the first caller's
    ``finalize`` runs; later callers return immediately. Cross-device
    exactly-once comes from the idempotent store mutation, not from here.
    """

    def __init__(self, name: str = "") -> None:
        self._name = name
        self._latched = False
        self._reason: str | None = None
        self._finalized = False

    @property
    def latched(self) -> bool:
        return self._latched

    @property
    def finalized(self) -> bool:
        return self._finalized

    @property
    def reason(self) -> str | None:
        return self._reason

    def try_latch(self, reason: str) -> bool:
        if self._latched:
            return False
        self._latched = True
        self._reason = reason
        return True

    def mark_finalized(self) -> None:
        self._finalized = True

    def release(self) -> None:
        if self._finalized:
            return
        self._latched = False
        self._reason = None

    async def run(self, reason: str, finalize: Callable[[], Awaitable[T]]) -> T | None:
        if not self.try_latch(reason):
            logger.debug(
                "completion_guard_skipped",
                guard=self._name,
                reason=reason,
                latched_reason=self._reason,
            )
            return None
        try:
            result = await finalize()
        except Exception:
            # A failed terminal write must stay retryable from a later tick.
            self.release()
            raise
        self._finalized = True
        return result
