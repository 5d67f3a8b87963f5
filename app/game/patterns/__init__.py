from app.game.patterns.cards import build_card, free_cell, marked_grid
from app.game.patterns.engine import detect_new_patterns, mark, win_condition_met
from app.game.patterns.library import Pattern, build_pattern_library

__all__ = [
    "Pattern",
    "build_card",
    "build_pattern_library",
    "detect_new_patterns",
    "free_cell",
    "mark",
    "marked_grid",
    "win_condition_met",
]
