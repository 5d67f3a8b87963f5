from app.game.modes.catalog import GAME_KINDS, display_game_kind_label
from app.game.modes.rules import (
    CardMatchRules,
    GameKindRules,
    ItemSequencePolicy,
    resolve_game_kind,
)

__all__ = [
    "GAME_KINDS",
    "CardMatchRules",
    "GameKindRules",
    "ItemSequencePolicy",
    "display_game_kind_label",
    "resolve_game_kind",
]
