"""
Game constants for Rulette.

Timing values are read from config.py (which reads env vars) so they can be
tuned per deployment. Names and deck layout are fixed.

Deck layout:
    The wheel has six segments, one per deck type. Each deck type holds a
    single kind of card:

    deckType1 -> rule       deckType4 -> clone
    deckType2 -> prompt     deckType5 -> flip
    deckType3 -> modifier   deckType6 -> swap
"""

from config import config


# =============================================================================
# Timing
# =============================================================================

REPLACEMENT_MEMORY_SECONDS: float = config.draw.replacement_memory_seconds
REPLACEMENT_MAX_ATTEMPTS: int = config.draw.replacement_max_attempts
PROMPT_TIME_LIMIT_MS: int = config.prompt.time_limit_ms


# =============================================================================
# Referee
# =============================================================================

REFEREE_CARD_NAME = "Referee Card"
REFEREE_CARD_TEXT = "You are the referee. Judge prompts and settle rule disputes."

# Record fields checked, in order, when resolving a fetched player's id
PLAYER_ID_FIELDS = ("uid", "id", "playerId", "userId")

# Removed card ids remembered for CARD_ALREADY_REMOVED reports
REMOVED_CARD_MEMORY = 1000


# =============================================================================
# Decks
# =============================================================================

DECK_TYPE_BY_CARD_TYPE: dict[str, str] = {
    "rule": "deckType1",
    "prompt": "deckType2",
    "modifier": "deckType3",
    "clone": "deckType4",
    "flip": "deckType5",
    "swap": "deckType6",
}

# When a deck runs dry, similar card kinds are tried first
DECK_FALLBACK_ORDER: dict[str, list[str]] = {
    "deckType1": ["deckType3", "deckType2", "deckType4", "deckType5", "deckType6"],
    "deckType2": ["deckType1", "deckType3", "deckType4", "deckType5", "deckType6"],
    "deckType3": ["deckType1", "deckType2", "deckType4", "deckType5", "deckType6"],
    "deckType4": ["deckType1", "deckType3", "deckType2", "deckType5", "deckType6"],
    "deckType5": ["deckType1", "deckType3", "deckType2", "deckType4", "deckType6"],
    "deckType6": ["deckType1", "deckType3", "deckType2", "deckType4", "deckType5"],
}
