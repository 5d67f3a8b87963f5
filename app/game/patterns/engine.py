from __future__ import annotations

from collections.abc import Collection, Iterable, Sequence

from app.game.effects import EffectsPort
from app.game.patterns.library import PATTERN_FAMILY_LINE, Pattern

MarkedGrid = Sequence[Sequence[bool]]

WIN_CONDITION_LINE = "line"
WIN_CONDITION_FULL_CARD = "full_card"
WIN_CONDITION_FOUR_CORNERS = "four_corners"
WIN_CONDITION_ANY_PATTERN = "any_pattern"


def _is_marked(marked: MarkedGrid, row: int, col: int) -> bool:
    if row < 0 or row >= len(marked):
        return False
    cells = marked[row]
    if col < 0 or col >= len(cells):
        return False
    return bool(cells[col])


def is_pattern_satisfied(marked: MarkedGrid, pattern: Pattern) -> bool:
    return all(_is_marked(marked, row, col) for row, col in pattern.cells)


def detect_new_patterns(
    marked: MarkedGrid,
    library: Iterable[Pattern],
    completed: Collection[str],
    *,
    effects: EffectsPort | None = None,
) -> list[Pattern]:
    """Patterns fully marked on the card that are not credited yet.

    Crediting is the caller's job: running detection twice against the same
    ``completed`` set returns the same patterns again, so the award must be
    recorded in ``completed`` before it is paid out.
    """
    newly_satisfied: list[Pattern] = []
    for pattern in library:
        if pattern.name in completed:
            continue
        if is_pattern_satisfied(marked, pattern):
            newly_satisfied.append(pattern)
            if effects is not None:
                effects.emit("pattern_completed", pattern=pattern.name, points=pattern.points)
    return newly_satisfied


def mark(marked: MarkedGrid, row: int, col: int) -> tuple[tuple[tuple[bool, ...], ...], bool]:
    """Mark one cell; returns the new grid and whether anything changed."""
    if row < 0 or row >= len(marked) or col < 0 or col >= len(marked[row]):
        raise IndexError(f"cell ({row}, {col}) is outside the card")
    grid = tuple(tuple(bool(cell) for cell in cells) for cells in marked)
    if grid[row][col]:
        return grid, False
    updated_row = grid[row][:col] + (True,) + grid[row][col + 1 :]
    return grid[:row] + (updated_row,) + grid[row + 1 :], True


def win_condition_met(
    win_condition: str,
    completed: Collection[str],
    library: Iterable[Pattern],
) -> bool:
    by_name = {pattern.name: pattern for pattern in library}
    credited = [by_name[name] for name in completed if name in by_name]
    if win_condition == WIN_CONDITION_LINE:
        return any(pattern.family == PATTERN_FAMILY_LINE for pattern in credited)
    if win_condition == WIN_CONDITION_FOUR_CORNERS:
        return any(pattern.name == "four_corners" for pattern in credited)
    if win_condition == WIN_CONDITION_ANY_PATTERN:
        return bool(credited)
    return any(pattern.name == "full_card" for pattern in credited)
