from __future__ import annotations

from typing import Protocol

import structlog

logger = structlog.get_logger("app.game.effects")


class EffectsPort(Protocol):
    """Outbound port for presentation side effects (sounds, confetti, toasts)."""

    def emit(self, effect: str, **payload: object) -> None: ...


class NullEffects:
    def emit(self, effect: str, **payload: object) -> None:
        del effect, payload


class LoggingEffects:
    def emit(self, effect: str, **payload: object) -> None:
        logger.debug("game_effect", effect=effect, **payload)


class RecordingEffects:
    def __init__(self) -> None:
        self.events: list[tuple[str, dict[str, object]]] = []

    def emit(self, effect: str, **payload: object) -> None:
        self.events.append((effect, dict(payload)))

    def names(self) -> list[str]:
        return [name for name, _ in self.events]
