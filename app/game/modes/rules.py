from __future__ import annotations

from collections.abc import Collection, Sequence
from dataclasses import dataclass

import structlog

from app.db.models.live_participants import CardCell
from app.db.models.live_sessions import CardItem, GameContent, GameItem, ScoringConfig
from app.db.serialization import coerce_int
from app.game.effects import EffectsPort
from app.game.modes.catalog import (
    GAME_KIND_CARD_MATCH,
    GAME_KIND_LADDER,
    GAME_KIND_QUIZ,
    GAME_KIND_TIMED_ROUND,
)
from app.game.patterns.cards import marked_grid
from app.game.patterns.engine import detect_new_patterns, win_condition_met
from app.game.patterns.library import Pattern, build_pattern_library
from app.game.scoring.constants import BREAKDOWN_CELL, BREAKDOWN_PATTERN_PREFIX
from app.game.scoring.engine import (
    ladder_points,
    ladder_safe_amount,
    score_answer,
    timed_round_points,
)
from app.game.scoring.types import (
    AnswerEvent,
    ItemMeta,
    ParticipantHistory,
    PointsComponent,
    ScoreResult,
    ScoringRules,
)

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ItemSequencePolicy:
    entry_index: int = 0
    stop_on_incorrect: bool = False


def build_scoring_rules(config: ScoringConfig, *, confidence_enabled: bool) -> ScoringRules:
    milestones: dict[int, int] = {}
    for raw_streak, bonus in config.streak_milestones.items():
        streak = coerce_int(raw_streak, default=0, minimum=1)
        if streak > 0:
            milestones[streak] = max(0, int(bonus))
    return ScoringRules(
        speed_threshold_fraction=config.speed_threshold_fraction,
        speed_multiplier=config.speed_multiplier,
        streak_threshold=max(1, config.streak_threshold),
        streak_multiplier=config.streak_multiplier,
        streak_milestones=milestones,
        confidence_enabled=confidence_enabled,
        confidence_threshold=config.confidence_threshold,
        confidence_bonus_fraction=config.confidence_bonus_fraction,
        timed_round_max_points=config.timed_round_max_points,
        timed_round_decay_factor=config.timed_round_decay_factor,
        timed_round_min_points=config.timed_round_min_points,
    )


def is_item_playable(item: GameItem | None) -> bool:
    if item is None or not item.options or item.correct_index is None:
        return False
    return 0 <= item.correct_index < len(item.options)


def is_correct_choice(item: GameItem | None, choice_index: int | None) -> bool:
    if choice_index is None or not is_item_playable(item):
        return False
    assert item is not None
    return choice_index == item.correct_index


class GameKindRules:
    """Per-kind behaviour, resolved once per session by ``resolve_game_kind``."""

    code = ""
    uses_card = False
    confidence_enabled = False
    tracks_winnings = False
    sequence_policy = ItemSequencePolicy()

    def total_items(self, content: GameContent) -> int:
        return len(content.items)

    def item_at(self, content: GameContent, index: int) -> GameItem | None:
        if 0 <= index < len(content.items):
            return content.items[index]
        return None

    def time_limit_seconds(self, item: GameItem | None, config: ScoringConfig) -> int:
        if item is None:
            return config.default_time_limit_seconds
        return coerce_int(
            item.time_limit_seconds,
            default=config.default_time_limit_seconds,
            minimum=1,
        )

    def base_points(
        self,
        item: GameItem,
        *,
        position: int,
        elapsed_seconds: float,
        config: ScoringConfig,
    ) -> int:
        return coerce_int(item.points, default=config.default_item_points, minimum=0)

    def winnings_after_answer(self, current: int, *, position: int, correct: bool, stopped: bool) -> int:
        return current

    def item_meta(
        self,
        item: GameItem | None,
        *,
        position: int,
        elapsed_seconds: float,
        config: ScoringConfig,
    ) -> ItemMeta:
        if item is None or not is_item_playable(item):
            item_id = item.id if item is not None else f"missing:{position}"
            logger.warning("scoring_item_voided", game_kind=self.code, item_id=item_id, position=position)
            return ItemMeta(
                item_id=item_id,
                base_points=0,
                time_limit_seconds=0,
                position=position,
                valid=False,
            )
        return ItemMeta(
            item_id=item.id,
            base_points=self.base_points(
                item,
                position=position,
                elapsed_seconds=elapsed_seconds,
                config=config,
            ),
            time_limit_seconds=self.time_limit_seconds(item, config),
            position=position,
            difficulty=item.difficulty,
        )

    def compute_score(
        self,
        item: GameItem | None,
        *,
        position: int,
        answer: AnswerEvent,
        history: ParticipantHistory,
        config: ScoringConfig,
        effects: EffectsPort | None = None,
    ) -> ScoreResult:
        meta = self.item_meta(
            item,
            position=position,
            elapsed_seconds=answer.elapsed_seconds,
            config=config,
        )
        return score_answer(
            answer,
            meta,
            history,
            rules=build_scoring_rules(config, confidence_enabled=self.confidence_enabled),
            effects=effects,
        )

    def detect_patterns(
        self,
        card: Sequence[Sequence[CardCell]],
        completed: Collection[str],
        *,
        content: GameContent,
        effects: EffectsPort | None = None,
    ) -> list[Pattern]:
        return []


class QuizRules(GameKindRules):
    code = GAME_KIND_QUIZ
    confidence_enabled = True


class LadderRules(GameKindRules):
    code = GAME_KIND_LADDER
    sequence_policy = ItemSequencePolicy(entry_index=0, stop_on_incorrect=True)
    tracks_winnings = True

    def base_points(
        self,
        item: GameItem,
        *,
        position: int,
        elapsed_seconds: float,
        config: ScoringConfig,
    ) -> int:
        return ladder_points(position)

    def winnings_after_answer(self, current: int, *, position: int, correct: bool, stopped: bool) -> int:
        if correct:
            return ladder_points(position)
        if stopped:
            # Losing drops back to the highest safe level already cleared.
            return ladder_safe_amount(position)
        return current


class TimedRoundRules(GameKindRules):
    code = GAME_KIND_TIMED_ROUND

    def base_points(
        self,
        item: GameItem,
        *,
        position: int,
        elapsed_seconds: float,
        config: ScoringConfig,
    ) -> int:
        return timed_round_points(
            elapsed_seconds=elapsed_seconds,
            time_limit_seconds=self.time_limit_seconds(item, config),
            difficulty=item.difficulty,
            rules=build_scoring_rules(config, confidence_enabled=False),
        )


class CardMatchRules(GameKindRules):
    code = GAME_KIND_CARD_MATCH
    uses_card = True

    def total_items(self, content: GameContent) -> int:
        # Card games have no linear item sequence; items only back challenges.
        return 0

    def pattern_library(self, content: GameContent) -> tuple[Pattern, ...]:
        return build_pattern_library(content.card_size, points_overrides=content.pattern_points)

    def find_item(self, content: GameContent, item_id: str | None) -> GameItem | None:
        if item_id is None:
            return None
        return next((item for item in content.items if item.id == item_id), None)

    def find_card_item(self, content: GameContent, item_id: str) -> CardItem | None:
        return next((item for item in content.card_items if item.id == item_id), None)

    def detect_patterns(
        self,
        card: Sequence[Sequence[CardCell]],
        completed: Collection[str],
        *,
        content: GameContent,
        effects: EffectsPort | None = None,
    ) -> list[Pattern]:
        return detect_new_patterns(
            marked_grid(card),
            self.pattern_library(content),
            completed,
            effects=effects,
        )

    def score_mark(
        self,
        cell_item: CardItem | None,
        *,
        new_patterns: Sequence[Pattern],
        history: ParticipantHistory,
    ) -> ScoreResult:
        breakdown: list[PointsComponent] = []
        cell_points = max(0, int(cell_item.points)) if cell_item is not None else 0
        if cell_points > 0:
            breakdown.append(PointsComponent(BREAKDOWN_CELL, cell_points))
        for pattern in new_patterns:
            breakdown.append(PointsComponent(f"{BREAKDOWN_PATTERN_PREFIX}{pattern.name}", pattern.points))
        return ScoreResult(
            points=sum(component.amount for component in breakdown),
            new_streak=max(0, history.streak) + 1,
            breakdown=tuple(breakdown),
        )

    def is_won(self, content: GameContent, completed: Collection[str]) -> bool:
        return win_condition_met(content.win_condition, completed, self.pattern_library(content))


_GAME_KIND_RULES: dict[str, GameKindRules] = {
    rules.code: rules
    for rules in (QuizRules(), LadderRules(), TimedRoundRules(), CardMatchRules())
}


def resolve_game_kind(game_kind: str) -> GameKindRules:
    rules = _GAME_KIND_RULES.get(game_kind)
    if rules is None:
        raise ValueError(f"unknown game kind: {game_kind}")
    return rules
