from __future__ import annotations

from dataclasses import dataclass

PATTERN_FAMILY_LINE = "line"
PATTERN_FAMILY_CORNERS = "four_corners"
PATTERN_FAMILY_CROSS = "cross"
PATTERN_FAMILY_X = "x"
PATTERN_FAMILY_FULL_CARD = "full_card"

DEFAULT_PATTERN_POINTS: dict[str, int] = {
    PATTERN_FAMILY_LINE: 100,
    PATTERN_FAMILY_CORNERS: 150,
    PATTERN_FAMILY_CROSS: 250,
    PATTERN_FAMILY_X: 250,
    PATTERN_FAMILY_FULL_CARD: 500,
}

Cell = tuple[int, int]


@dataclass(frozen=True, slots=True)
class Pattern:
    name: str
    family: str
    cells: frozenset[Cell]
    points: int


def _points_for(name: str, family: str, overrides: dict[str, int]) -> int:
    if name in overrides:
        return max(0, int(overrides[name]))
    if family in overrides:
        return max(0, int(overrides[family]))
    return DEFAULT_PATTERN_POINTS[family]


def build_pattern_library(
    size: int,
    *,
    points_overrides: dict[str, int] | None = None,
) -> tuple[Pattern, ...]:
    """Named win patterns for a ``size`` x ``size`` card.

    Overrides may target a single pattern (``row_2``) or a whole family
    (``line``). Order is stable so detection results are deterministic.
    """
    if size < 1:
        raise ValueError("card size must be positive")
    overrides = points_overrides or {}
    last = size - 1
    center = size // 2
    shapes: list[tuple[str, str, frozenset[Cell]]] = []

    for row in range(size):
        shapes.append((f"row_{row}", PATTERN_FAMILY_LINE, frozenset((row, col) for col in range(size))))
    for col in range(size):
        shapes.append((f"col_{col}", PATTERN_FAMILY_LINE, frozenset((row, col) for row in range(size))))

    main_diagonal = frozenset((index, index) for index in range(size))
    anti_diagonal = frozenset((index, last - index) for index in range(size))
    shapes.append(("diagonal_main", PATTERN_FAMILY_LINE, main_diagonal))
    shapes.append(("diagonal_anti", PATTERN_FAMILY_LINE, anti_diagonal))
    shapes.append(
        (
            "four_corners",
            PATTERN_FAMILY_CORNERS,
            frozenset({(0, 0), (0, last), (last, 0), (last, last)}),
        )
    )
    shapes.append(
        (
            "cross",
            PATTERN_FAMILY_CROSS,
            frozenset((center, col) for col in range(size)) | frozenset((row, center) for row in range(size)),
        )
    )
    shapes.append(("x", PATTERN_FAMILY_X, main_diagonal | anti_diagonal))
    shapes.append(
        (
            "full_card",
            PATTERN_FAMILY_FULL_CARD,
            frozenset((row, col) for row in range(size) for col in range(size)),
        )
    )

    return tuple(
        Pattern(name=name, family=family, cells=cells, points=_points_for(name, family, overrides))
        for name, family, cells in shapes
    )
