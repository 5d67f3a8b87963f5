from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from app.game.effects import EffectsPort
from app.game.scoring.constants import (
    BREAKDOWN_BASE,
    BREAKDOWN_CONFIDENCE,
    BREAKDOWN_INVALID_ITEM,
    BREAKDOWN_SPEED,
    BREAKDOWN_STREAK,
    BREAKDOWN_STREAK_MILESTONE,
    DIFFICULTY_MULTIPLIERS,
    LADDER_SAFE_LEVELS,
    LADDER_VALUES,
)
from app.game.scoring.types import (
    AnswerEvent,
    ItemMeta,
    ParticipantHistory,
    PointsComponent,
    ScoreResult,
    ScoringRules,
)


def round_half_up(value: float) -> int:
    return int(Decimal(str(value)).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def ladder_points(position: int) -> int:
    if position < 0:
        return LADDER_VALUES[0]
    return LADDER_VALUES[min(position, len(LADDER_VALUES) - 1)]


def ladder_safe_amount(levels_cleared: int) -> int:
    """Winnings kept at the highest safe level reached after ``levels_cleared`` correct answers."""
    safe_levels = [level for level in LADDER_SAFE_LEVELS if level <= levels_cleared]
    if not safe_levels:
        return 0
    return LADDER_VALUES[min(max(safe_levels), len(LADDER_VALUES)) - 1]


def timed_round_points(
    *,
    elapsed_seconds: float,
    time_limit_seconds: int,
    difficulty: str,
    rules: ScoringRules,
) -> int:
    budget = max(1, int(time_limit_seconds))
    elapsed_fraction = min(1.0, max(0.0, float(elapsed_seconds) / budget))
    decayed = rules.timed_round_max_points - rules.timed_round_decay_factor * elapsed_fraction
    floored = max(float(rules.timed_round_min_points), decayed)
    multiplier = DIFFICULTY_MULTIPLIERS.get(difficulty, 1.0)
    return round_half_up(floored * multiplier)


def _bonus(base_points: int, multiplier: float) -> int:
    return round_half_up(base_points * (multiplier - 1))


def score_answer(
    answer: AnswerEvent,
    item: ItemMeta,
    history: ParticipantHistory,
    *,
    rules: ScoringRules,
    effects: EffectsPort | None = None,
) -> ScoreResult:
    """Score one answer.

    Pure: identical inputs give identical results. Elapsed time is part of
    ``answer``; nothing here reads a clock. Every contribution is kept in the
    breakdown so the UI can show where the points came from.
    """
    if not item.valid:
        return ScoreResult(
            points=0,
            new_streak=max(0, history.streak),
            breakdown=(PointsComponent(BREAKDOWN_INVALID_ITEM, 0),),
        )

    if answer.skipped or not answer.correct:
        if history.streak > 0 and effects is not None:
            effects.emit("streak_broken", item_id=item.item_id, previous_streak=history.streak)
        return ScoreResult(points=0, new_streak=0, breakdown=())

    base_points = max(0, int(item.base_points))
    breakdown: list[PointsComponent] = [PointsComponent(BREAKDOWN_BASE, base_points)]

    time_limit = max(0, int(item.time_limit_seconds))
    if time_limit > 0 and answer.elapsed_seconds <= rules.speed_threshold_fraction * time_limit:
        speed_bonus = _bonus(base_points, rules.speed_multiplier)
        if speed_bonus > 0:
            breakdown.append(PointsComponent(BREAKDOWN_SPEED, speed_bonus))

    new_streak = max(0, history.streak) + 1
    if new_streak >= rules.streak_threshold:
        streak_bonus = _bonus(base_points, rules.streak_multiplier)
        if streak_bonus > 0:
            breakdown.append(PointsComponent(BREAKDOWN_STREAK, streak_bonus))

    milestone_bonus = rules.streak_milestones.get(new_streak, 0)
    if milestone_bonus > 0:
        breakdown.append(PointsComponent(BREAKDOWN_STREAK_MILESTONE, milestone_bonus))
        if effects is not None:
            effects.emit("streak_milestone", item_id=item.item_id, streak=new_streak, bonus=milestone_bonus)

    if (
        rules.confidence_enabled
        and answer.confidence is not None
        and answer.confidence > rules.confidence_threshold
    ):
        confidence_bonus = round_half_up(base_points * rules.confidence_bonus_fraction)
        if confidence_bonus > 0:
            breakdown.append(PointsComponent(BREAKDOWN_CONFIDENCE, confidence_bonus))

    return ScoreResult(
        points=sum(component.amount for component in breakdown),
        new_streak=new_streak,
        breakdown=tuple(breakdown),
    )
