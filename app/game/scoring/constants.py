from __future__ import annotations

BREAKDOWN_BASE = "base"
BREAKDOWN_SPEED = "speed"
BREAKDOWN_STREAK = "streak"
BREAKDOWN_STREAK_MILESTONE = "streak_milestone"
BREAKDOWN_CONFIDENCE = "confidence"
BREAKDOWN_INVALID_ITEM = "invalid_item"
BREAKDOWN_CELL = "cell"
BREAKDOWN_PATTERN_PREFIX = "pattern:"

DIFFICULTY_MULTIPLIERS: dict[str, float] = {
    "easy": 1.0,
    "medium": 1.5,
    "hard": 2.0,
}

LADDER_VALUES: tuple[int, ...] = (
    100,
    200,
    300,
    500,
    1_000,
    2_000,
    4_000,
    8_000,
    16_000,
    32_000,
    64_000,
    125_000,
    250_000,
    500_000,
    1_000_000,
)
# 1-based ladder levels at which winnings are banked.
LADDER_SAFE_LEVELS: frozenset[int] = frozenset({5, 10, 15})
