"""
Card catalog and game constants for Love Letter.

This module is the single source of truth for card values, names and
how many copies of each card are in the 16-card deck.

Love Letter Card Reference:
    - 1 Guard (x5):    guess another player's card (not Guard) to knock them out
    - 2 Priest (x2):   look at another player's hand
    - 3 Baron (x2):    compare hands, lower card is knocked out
    - 4 Handmaid (x2): protection until your next turn
    - 5 Prince (x2):   a player discards their hand and draws a new card
    - 6 King (x1):     trade hands with another player
    - 7 Countess (x1): must be played if held with King or Prince
    - 8 Princess (x1): knocked out if discarded
"""

from enum import IntEnum

from config import config


class CardType(IntEnum):
    """Love Letter cards, valued by rank."""

    GUARD = 1
    PRIEST = 2
    BARON = 3
    HANDMAID = 4
    PRINCE = 5
    KING = 6
    COUNTESS = 7
    PRINCESS = 8

    @property
    def display_name(self) -> str:
        return card_name(self)


# =============================================================================
# Card Catalog - Single Source of Truth
# =============================================================================

CARD_NAMES: dict[CardType, str] = {
    CardType.GUARD: "Guard",
    CardType.PRIEST: "Priest",
    CardType.BARON: "Baron",
    CardType.HANDMAID: "Handmaid",
    CardType.PRINCE: "Prince",
    CardType.KING: "King",
    CardType.COUNTESS: "Countess",
    CardType.PRINCESS: "Princess",
}

CARD_COUNTS: dict[CardType, int] = {
    CardType.GUARD: 5,
    CardType.PRIEST: 2,
    CardType.BARON: 2,
    CardType.HANDMAID: 2,
    CardType.PRINCE: 2,
    CardType.KING: 1,
    CardType.COUNTESS: 1,
    CardType.PRINCESS: 1,
}

DECK_SIZE: int = sum(CARD_COUNTS.values())  # 16

# Cards that force the Countess out when held alongside her
COUNTESS_FORCING_CARDS: frozenset[CardType] = frozenset({CardType.PRINCE, CardType.KING})

# Valid Guard guesses (anything but Guard)
GUARD_GUESSES: frozenset[CardType] = frozenset(c for c in CardType if c != CardType.GUARD)


# =============================================================================
# Game Constants
# =============================================================================

MIN_PLAYERS = 2
MAX_PLAYERS = 4
TWO_PLAYER_FACE_UP_REMOVED = 3

LOVE_LETTER = "love_letter"
SUPPORTED_GAMES: frozenset[str] = frozenset({LOVE_LETTER})

MAX_LOBBY_PLAYERS = config.MAX_PLAYERS_PER_LOBBY
LOBBY_CODE_LENGTH = config.LOBBY_CODE_LENGTH
LOBBY_CLEANUP_SECONDS = config.LOBBY_CLEANUP_SECONDS


# =============================================================================
# Helper Functions
# =============================================================================

def card_name(value: int) -> str:
    """
    Get the display name for a card value.

    Args:
        value: Card value 1-8.

    Returns:
        Card name, or "Card <n>" for values outside the catalog.
    """
    try:
        return CARD_NAMES[CardType(value)]
    except ValueError:
        return f"Card {value}"


def build_card_list() -> list[CardType]:
    """Build the unshuffled 16-card Love Letter deck."""
    cards: list[CardType] = []
    for card, count in CARD_COUNTS.items():
        cards.extend([card] * count)
    return cards
