from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class AnswerEvent:
    item_id: str
    choice_index: int | None
    correct: bool
    elapsed_seconds: float
    confidence: float | None = None

    @property
    def skipped(self) -> bool:
        return self.choice_index is None


@dataclass(frozen=True, slots=True)
class ItemMeta:
    item_id: str
    base_points: int
    time_limit_seconds: int
    position: int = 0
    difficulty: str = "medium"
    valid: bool = True


@dataclass(frozen=True, slots=True)
class ParticipantHistory:
    streak: int = 0


@dataclass(frozen=True, slots=True)
class PointsComponent:
    kind: str
    amount: int


@dataclass(frozen=True, slots=True)
class ScoreResult:
    points: int
    new_streak: int
    breakdown: tuple[PointsComponent, ...] = ()


@dataclass(frozen=True, slots=True)
class ScoringRules:
    speed_threshold_fraction: float = 0.25
    speed_multiplier: float = 1.5
    streak_threshold: int = 3
    streak_multiplier: float = 1.5
    streak_milestones: dict[int, int] = field(
        default_factory=lambda: {5: 50, 10: 100, 15: 200, 20: 500}
    )
    confidence_enabled: bool = False
    confidence_threshold: float = 0.8
    confidence_bonus_fraction: float = 0.1
    timed_round_max_points: int = 100
    timed_round_decay_factor: float = 50.0
    timed_round_min_points: int = 10
