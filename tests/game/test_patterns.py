from __future__ import annotations

import pytest

from app.db.models.live_participants import CardCell
from app.db.models.live_sessions import CardItem
from app.game.effects import RecordingEffects
from app.game.patterns import (
    build_card,
    build_pattern_library,
    detect_new_patterns,
    free_cell,
    mark,
    marked_grid,
    win_condition_met,
)
from app.game.patterns.cards import FREE_CELL_ITEM_ID, merge_cards


def _empty_grid(size: int = 5) -> tuple[tuple[bool, ...], ...]:
    grid = [[False] * size for _ in range(size)]
    row, col = free_cell(size)
    grid[row][col] = True
    return tuple(tuple(cells) for cells in grid)


def test_library_names_and_order_for_five_by_five() -> None:
    names = [pattern.name for pattern in build_pattern_library(5)]
    assert names == [
        "row_0",
        "row_1",
        "row_2",
        "row_3",
        "row_4",
        "col_0",
        "col_1",
        "col_2",
        "col_3",
        "col_4",
        "diagonal_main",
        "diagonal_anti",
        "four_corners",
        "cross",
        "x",
        "full_card",
    ]


def test_library_point_overrides_by_family_and_name() -> None:
    library = {
        pattern.name: pattern.points
        for pattern in build_pattern_library(3, points_overrides={"line": 40, "row_0": 70})
    }
    assert library["row_0"] == 70
    assert library["col_2"] == 40
    assert library["full_card"] == 500


def test_main_diagonal_is_credited_once_with_free_centre() -> None:
    library = build_pattern_library(5)
    effects = RecordingEffects()
    grid = _empty_grid()
    for index in (0, 1, 3):
        grid, changed = mark(grid, index, index)
        assert changed is True
        assert detect_new_patterns(grid, library, set()) == []

    grid, _ = mark(grid, 4, 4)
    first = detect_new_patterns(grid, library, set(), effects=effects)
    assert [pattern.name for pattern in first] == ["diagonal_main"]
    assert effects.names() == ["pattern_completed"]

    credited = {pattern.name for pattern in first}
    assert detect_new_patterns(grid, library, credited) == []


def test_remark_is_a_no_op() -> None:
    grid, changed = mark(_empty_grid(), 0, 0)
    again, changed_again = mark(grid, 0, 0)
    assert changed is True
    assert changed_again is False
    assert again == grid


def test_mark_rejects_cells_outside_the_card() -> None:
    with pytest.raises(IndexError):
        mark(_empty_grid(), 5, 0)
    with pytest.raises(IndexError):
        mark(_empty_grid(), 0, -1)


@pytest.mark.parametrize(
    ("win_condition", "completed", "expected"),
    [
        ("line", ["row_1"], True),
        ("line", ["four_corners"], False),
        ("four_corners", ["four_corners"], True),
        ("any_pattern", ["cross"], True),
        ("any_pattern", [], False),
        ("full_card", ["row_0", "x"], False),
        ("full_card", ["full_card"], True),
    ],
)
def test_win_condition_met(win_condition: str, completed: list[str], expected: bool) -> None:
    assert win_condition_met(win_condition, completed, build_pattern_library(5)) is expected


def test_build_card_is_deterministic_with_free_centre() -> None:
    items = [CardItem(id=f"cell{index}") for index in range(24)]
    first = build_card(items, size=5, seed="s1")
    second = build_card(items, size=5, seed="s1")

    assert first == second
    assert first[2][2] == CardCell(item_id=FREE_CELL_ITEM_ID, marked=True)
    placed = [cell.item_id for cells in first for cell in cells if cell.item_id != FREE_CELL_ITEM_ID]
    assert sorted(placed) == sorted(item.id for item in items)
    assert sum(cell.marked for cells in first for cell in cells) == 1


def test_build_card_order_depends_on_seed() -> None:
    items = [CardItem(id=f"cell{index}") for index in range(24)]
    assert build_card(items, size=5, seed="s1") != build_card(items, size=5, seed="s2")


def test_build_card_pads_missing_items_with_marked_blanks() -> None:
    card = build_card([CardItem(id="only")], size=3, seed="s")
    flat = [cell for cells in card for cell in cells]
    assert [cell.item_id for cell in flat if not cell.marked] == ["only"]
    assert len([cell for cell in flat if cell.item_id.startswith("blank:")]) == 7


def test_merge_cards_unions_marks() -> None:
    local = [[CardCell(item_id="a", marked=True), CardCell(item_id="b")]]
    remote = [[CardCell(item_id="a"), CardCell(item_id="b", marked=True)]]
    merged = merge_cards(local, remote)
    assert merged is not None
    assert marked_grid(merged) == ((True, True),)
    assert merge_cards(None, None) is None
