from __future__ import annotations

GAME_KIND_QUIZ = "quiz"
GAME_KIND_LADDER = "ladder"
GAME_KIND_CARD_MATCH = "card_match"
GAME_KIND_TIMED_ROUND = "timed_round"

GAME_KINDS: frozenset[str] = frozenset(
    {
        GAME_KIND_QUIZ,
        GAME_KIND_LADDER,
        GAME_KIND_CARD_MATCH,
        GAME_KIND_TIMED_ROUND,
    }
)

GAME_KIND_LABELS: dict[str, str] = {
    GAME_KIND_QUIZ: "QUIZ",
    GAME_KIND_LADDER: "MILLION LADDER",
    GAME_KIND_CARD_MATCH: "CARD MATCH",
    GAME_KIND_TIMED_ROUND: "SPEED ROUND",
}


def display_game_kind_label(game_kind: str) -> str:
    label = GAME_KIND_LABELS.get(game_kind)
    if label is not None:
        return label
    return game_kind.replace("_", " ").upper()
