"""
Rule constants for Bussfix.

This module is the single source of truth for rank ordering, table limits
and the pile sizes that trigger special combinations. Limits that operators
may tune come from config.py (environment-aware).

Rank ordering (low to high):
    3 4 5 6 7 8 9 10 J Q K A 2

    "2" is the highest ordinary rank; an all-2 play resets the pile.

Specials (evaluated on the top block of the whole pile):
    - 4 or more of any rank: everyone drinks
    - 2+ Kings: player drinks and gives one sip away
    - 3+ Jacks: everyone drinks ("trippelknull")
    - 4+ Sixes: waterfall, the player starts it
    - 3+ Sevens: spin the bottle
    - 2+ Queens: the sax section drinks
"""

from config import config


# =============================================================================
# Rank Ordering
# =============================================================================

RANK_ORDER: list[str] = ["3", "4", "5", "6", "7", "8", "9", "10", "J", "Q", "K", "A", "2"]

JOKER_RANK = "JOKER"

RESET_RANK = "2"
SIXTY_NINE = ("6", "9")
SIXTY_NINE_THRESHOLD = "9"


# =============================================================================
# Special Combination Thresholds
# =============================================================================

FOUR_OF_A_KIND_COUNT = 4
KINGS_COUNT = 2
JACKS_COUNT = 3
WATERFALL_SIXES_COUNT = 4
BOTTLE_SEVENS_COUNT = 3
QUEENS_COUNT = 2

SIPS_PER_SPECIAL = 1
SIPS_PER_PICKUP = 1


# =============================================================================
# Table Limits
# =============================================================================

STANDARD_DECK_SIZE = 52
HAND_SIZE = config.game_defaults.hand_size
MIN_PLAYERS = config.MIN_PLAYERS
MAX_PLAYERS = config.MAX_PLAYERS_PER_ROOM
MIN_JOKERS = config.game_defaults.min_jokers
MAX_JOKERS = config.game_defaults.max_jokers
DEFAULT_JOKERS = config.game_defaults.jokers
ROOM_CODE_LENGTH = config.ROOM_CODE_LENGTH
DISCONNECT_GRACE_SECONDS = config.DISCONNECT_GRACE_SECONDS


# =============================================================================
# Helper Functions
# =============================================================================

def rank_value(rank_str: str) -> int:
    """
    Get the comparison value of a rank string.

    Args:
        rank_str: Rank as string ('3', ..., 'A', '2').

    Returns:
        Position in RANK_ORDER (higher beats lower).

    Raises:
        ValueError: If the rank is not an ordinary rank (e.g. 'JOKER').
    """
    return RANK_ORDER.index(rank_str)


def clamp_jokers(count: int) -> int:
    """Clamp a requested joker count into the allowed range."""
    return max(MIN_JOKERS, min(MAX_JOKERS, count))
