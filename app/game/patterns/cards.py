from __future__ import annotations

import hashlib
from collections.abc import Sequence

from app.db.models.live_participants import CardCell
from app.db.models.live_sessions import CardItem

FREE_CELL_ITEM_ID = "free"
BLANK_CELL_PREFIX = "blank"


def free_cell(size: int) -> tuple[int, int]:
    center = size // 2
    return center, center


def _shuffle_key(seed: str, item_id: str) -> bytes:
    return hashlib.sha256(f"{seed}:{item_id}".encode("utf-8")).digest()


def build_card(items: Sequence[CardItem], *, size: int, seed: str) -> list[list[CardCell]]:
    """Lay items out on a card in a seed-determined order with the free cell pre-marked.

    Cards with fewer items than cells are padded with pre-marked blank cells
    instead of failing the join.
    """
    if size < 1:
        raise ValueError("card size must be positive")
    ordered = sorted(items, key=lambda item: _shuffle_key(seed, item.id))
    free_row, free_col = free_cell(size)
    remaining = iter(ordered)
    grid: list[list[CardCell]] = []
    for row in range(size):
        cells: list[CardCell] = []
        for col in range(size):
            if (row, col) == (free_row, free_col):
                cells.append(CardCell(item_id=FREE_CELL_ITEM_ID, marked=True))
                continue
            item = next(remaining, None)
            if item is None:
                cells.append(CardCell(item_id=f"{BLANK_CELL_PREFIX}:{row}:{col}", marked=True))
                continue
            cells.append(CardCell(item_id=item.id, marked=False))
        grid.append(cells)
    return grid


def marked_grid(card: Sequence[Sequence[CardCell]]) -> tuple[tuple[bool, ...], ...]:
    return tuple(tuple(cell.marked for cell in cells) for cells in card)


def apply_marks(
    card: Sequence[Sequence[CardCell]],
    marked: Sequence[Sequence[bool]],
) -> list[list[CardCell]]:
    """Copy ``marked`` onto the card; a cell that is already marked stays marked."""
    return [
        [
            CardCell(item_id=cell.item_id, marked=cell.marked or bool(marked[row][col]))
            for col, cell in enumerate(cells)
        ]
        for row, cells in enumerate(card)
    ]


def merge_cards(
    local: Sequence[Sequence[CardCell]] | None,
    remote: Sequence[Sequence[CardCell]] | None,
) -> list[list[CardCell]] | None:
    """Union of marks from two copies of the same card."""
    if local is None:
        return [list(cells) for cells in remote] if remote is not None else None
    if remote is None or len(remote) != len(local):
        return [list(cells) for cells in local]
    return apply_marks(local, marked_grid(remote))
