"""
Game logic for Love Letter.

This module implements the core game mechanics for a Love Letter round,
including deck management, player records, the eight card effects, turn
flow, round-end detection and per-player state projection.

Love Letter Rules Summary:
    - 16 cards, valued 1 (Guard) to 8 (Princess)
    - One card is removed face-down; with 2 players three more are removed face-up
    - Each player holds one card; on your turn you draw one and play one
    - Played cards resolve their effect and stay face-up in front of you
    - A round ends when one player is left, or when the deck runs out
      (highest card wins, ties broken by the total of discarded cards)

Move flow:
    make_move() validates the whole move against the current state and
    builds an EffectPlan. Only a fully valid plan is committed, so a
    rejected move never leaves anything behind.
"""

import logging
import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from constants import (
    CardType,
    COUNTESS_FORCING_CARDS,
    DECK_SIZE,
    GUARD_GUESSES,
    MAX_PLAYERS,
    MIN_PLAYERS,
    TWO_PLAYER_FACE_UP_REMOVED,
    build_card_list,
)

logger = logging.getLogger(__name__)

# 16! orderings need about 45 bits of seed
SEED_BITS = 128


# =============================================================================
# Errors
# =============================================================================

class GameSetupError(ValueError):
    """A round could not be set up with the given seats."""


class InvalidPlayerCount(GameSetupError):
    """Love Letter needs between MIN_PLAYERS and MAX_PLAYERS seats."""


class DuplicateSeat(GameSetupError):
    """The same session was seated twice."""


class RejectReason(str, Enum):
    """Machine-readable reasons a move was turned down."""

    NO_ROUND = "no_round"
    ROUND_OVER = "round_over"
    NOT_YOUR_TURN = "not_your_turn"
    ELIMINATED = "eliminated"
    MISSING_FIELD = "missing_field"
    MUST_DRAW = "must_draw"
    INVALID_CARD_INDEX = "invalid_card_index"
    MUST_PLAY_COUNTESS = "must_play_countess"
    TARGET_REQUIRED = "target_required"
    INVALID_TARGET = "invalid_target"
    TARGET_PROTECTED = "target_protected"
    GUESS_REQUIRED = "guess_required"
    CANNOT_GUESS_GUARD = "cannot_guess_guard"
    INVALID_GUESS = "invalid_guess"


class MoveRejected(Exception):
    """
    Raised by move validation when a move is not legal.

    Attributes:
        reason: Machine-readable rejection reason.
        message: Human-readable explanation for the player.
    """

    def __init__(self, reason: RejectReason, message: str) -> None:
        super().__init__(message)
        self.reason = reason
        self.message = message


# =============================================================================
# Enums
# =============================================================================

class GamePhase(Enum):
    """
    Phases of a Love Letter round.

    Flow: WAITING -> AWAITING_MOVE -> ROUND_OVER
    """

    WAITING = "waiting"              # Engine created, no round dealt yet
    AWAITING_MOVE = "awaiting_move"  # Current player holds two cards
    ROUND_OVER = "round_over"        # Terminal, no further moves accepted


class RoundOutcome(str, Enum):
    """How a round was decided."""

    LAST_STANDING = "last_standing"
    HIGHEST_CARD = "highest_card"
    TIEBREAK = "tiebreak"
    TIE = "tie"


class LogEvent(str, Enum):
    """Kinds of entries in the public round log."""

    ROUND_STARTED = "round_started"
    PLAY = "play"
    NO_TARGETS = "no_targets"
    GUARD_CORRECT = "guard_correct"
    GUARD_WRONG = "guard_wrong"
    PRIEST = "priest"
    BARON = "baron"
    HANDMAID = "handmaid"
    PRINCE = "prince"
    PRINCE_ELIMINATED = "prince_eliminated"
    KING = "king"
    PRINCESS = "princess"
    PROTECTION_END = "protection_end"
    WIN_LAST = "win_last"
    WIN_HIGHEST = "win_highest"
    WIN_TIEBREAK = "win_tiebreak"
    TIE = "tie"


# =============================================================================
# Records
# =============================================================================

@dataclass
class LogEntry:
    """
    One public event in the round log.

    Attributes:
        message: Human-readable description.
        meta: Structured fields (event kind, actor, target, card values).
        timestamp: When the event occurred (UTC).
    """

    message: str
    meta: dict = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        """Serialize entry for JSON transport."""
        return {
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
            "meta": dict(self.meta),
        }


class Deck:
    """
    The Love Letter draw pile plus the cards set aside before dealing.

    The deck can be initialized with a seed for deterministic shuffling,
    which makes a round reproducible in tests.
    """

    def __init__(self, player_count: int, seed: Optional[int] = None) -> None:
        """
        Build, shuffle and set aside cards for a new round.

        Args:
            player_count: Number of seated players (2 removes three extra cards face-up).
            seed: Optional random seed for deterministic shuffle.
                  If None, a 128-bit seed is drawn from the OS entropy
                  source and stored, wide enough to reach every ordering
                  of the 16 cards.
        """
        self.seed: int = seed if seed is not None else random.SystemRandom().getrandbits(SEED_BITS)
        self.cards: list[CardType] = build_card_list()
        self.shuffle()

        self.removed_face_down: Optional[CardType] = self.cards.pop()
        self.removed_face_up: list[CardType] = []
        if player_count == 2:
            self.removed_face_up = [
                self.cards.pop() for _ in range(TWO_PLAYER_FACE_UP_REMOVED)
            ]

    def shuffle(self) -> None:
        """Uniformly permute the draw pile using the deck's seed."""
        random.Random(self.seed).shuffle(self.cards)

    def draw(self) -> Optional[CardType]:
        """
        Draw the top card of the pile.

        Returns:
            The drawn card, or None if the pile is empty.
        """
        if self.cards:
            return self.cards.pop()
        return None

    def take_removed_face_down(self) -> Optional[CardType]:
        """Hand out the face-down removed card. It can only be taken once."""
        card = self.removed_face_down
        self.removed_face_down = None
        return card

    def cards_remaining(self) -> int:
        """Return the number of cards left in the draw pile."""
        return len(self.cards)

    def cards_set_aside(self) -> int:
        """Return how many removed cards (face-down and face-up) are still out of play."""
        return len(self.removed_face_up) + (1 if self.removed_face_down is not None else 0)


@dataclass
class Seat:
    """A player taking part in a round, as handed over by the lobby."""

    session_id: str
    name: str
    seat_id: Optional[str] = None


@dataclass
class Player:
    """
    A seat's in-round record.

    Attributes:
        seat_id: Stable seat identifier within the lobby.
        session_id: Session that controls this seat.
        name: Display name.
        hand: Cards held (1 at rest, 2 during the player's own turn).
        discards: Cards played or discarded this round, in order.
        eliminated: Whether the player is out of the round.
    """

    seat_id: str
    session_id: str
    name: str
    hand: list[CardType] = field(default_factory=list)
    discards: list[CardType] = field(default_factory=list)
    eliminated: bool = False

    def held_card(self) -> Optional[CardType]:
        """The single card held at rest, or None if the hand is empty."""
        return self.hand[0] if self.hand else None

    def discard_total(self) -> int:
        """Sum of the values in this player's discard pile."""
        return sum(int(card) for card in self.discards)


@dataclass
class Move:
    """
    A single play request.

    Attributes:
        card_index: Index into the acting player's two-card hand.
        target_session_id: Session of the targeted player, if the card needs one.
        guess_card: Guard guess (2-8).
    """

    card_index: Any = None
    target_session_id: Optional[str] = None
    guess_card: Any = None

    @classmethod
    def from_client_data(cls, data: Optional[dict]) -> "Move":
        """Build a Move from a client WebSocket message."""
        data = data or {}
        return cls(
            card_index=data.get("card_index"),
            target_session_id=data.get("target_session_id") or None,
            guess_card=data.get("guess_card"),
        )


@dataclass
class EffectPlan:
    """A validated effect, ready to be committed."""

    card: CardType
    target: Optional[Player] = None
    guess: Optional[CardType] = None
    no_target: bool = False


@dataclass
class MoveResult:
    """
    Outcome of make_move().

    Accepted moves carry the viewer-less game state and, for the Priest,
    a private payload meant for the acting player only.
    """

    valid: bool
    error: Optional[str] = None
    reason: Optional[RejectReason] = None
    game_state: Optional[dict] = None
    game_over: bool = False
    effect: dict = field(default_factory=dict)
    target_session_id: Optional[str] = None
    private_reveal: Optional[dict] = None

    @classmethod
    def rejected(cls, exc: MoveRejected) -> "MoveResult":
        return cls(valid=False, error=exc.message, reason=exc.reason)

    def to_dict(self) -> dict:
        if not self.valid:
            return {"valid": False, "error": self.error, "reason": self.reason.value}
        return {
            "valid": True,
            "game_state": self.game_state,
            "game_over": self.game_over,
            "effect": self.effect,
            "target_session_id": self.target_session_id,
        }


# =============================================================================
# Round Resolver
# =============================================================================

@dataclass
class RevealResult:
    """Result of comparing hands when the draw pile runs out."""

    winner: Optional[Player]
    outcome: RoundOutcome
    best_value: int
    discard_total: Optional[int] = None


def resolve_reveal(players: list[Player]) -> RevealResult:
    """
    Decide a round that ended because the draw pile is empty.

    The remaining player with the highest card wins. Players tied on the
    highest card compare the total of their discard piles. If that is
    also tied, nobody wins.

    Args:
        players: All players in the round (eliminated ones are ignored).

    Returns:
        RevealResult describing the winner (or lack of one).
    """
    active = [p for p in players if not p.eliminated]
    best_value = max((int(p.held_card() or 0) for p in active), default=0)
    candidates = [p for p in active if int(p.held_card() or 0) == best_value]

    if len(candidates) == 1:
        return RevealResult(candidates[0], RoundOutcome.HIGHEST_CARD, best_value)

    best_total = max(p.discard_total() for p in candidates)
    leaders = [p for p in candidates if p.discard_total() == best_total]
    if len(leaders) == 1:
        return RevealResult(leaders[0], RoundOutcome.TIEBREAK, best_value, best_total)
    return RevealResult(None, RoundOutcome.TIE, best_value, best_total)


# =============================================================================
# Game
# =============================================================================

@dataclass
class Game:
    """
    Authoritative state and rules engine for one Love Letter round.

    One instance lives in each lobby. It is not thread-safe: the lobby
    must serialize calls (see Room.game_lock).

    Attributes:
        seats: Seats passed to the last initialize(), reused by reset().
        players: In-round player records, in turn order.
        deck: Draw pile and removed cards.
        discard_pile: Every discarded card in play order.
        current_player_index: Index of the player whose turn it is.
        phase: Current phase of the round.
        protected_players: Sessions protected by a Handmaid.
        winner: Winning player, once decided.
        outcome: How the round ended.
        log: Public round log.
    """

    seats: list[Seat] = field(default_factory=list)
    players: list[Player] = field(default_factory=list)
    deck: Optional[Deck] = None
    discard_pile: list[CardType] = field(default_factory=list)
    current_player_index: int = 0
    phase: GamePhase = GamePhase.WAITING
    protected_players: set = field(default_factory=set)
    winner: Optional[Player] = None
    outcome: Optional[RoundOutcome] = None
    log: list[LogEntry] = field(default_factory=list)

    # -------------------------------------------------------------------------
    # Round Lifecycle
    # -------------------------------------------------------------------------

    def initialize(self, seats: list[Seat], seed: Optional[int] = None) -> None:
        """
        Deal a fresh round for the given seats.

        The first seat draws immediately, so it starts with two cards.
        Nothing is changed if the seats are not valid.

        Args:
            seats: 2-4 seats with distinct session ids, in turn order.
            seed: Optional shuffle seed.

        Raises:
            InvalidPlayerCount: Fewer than 2 or more than 4 seats.
            DuplicateSeat: A session appears more than once.
        """
        seats = list(seats)
        if not MIN_PLAYERS <= len(seats) <= MAX_PLAYERS:
            raise InvalidPlayerCount(
                f"Love Letter requires {MIN_PLAYERS}-{MAX_PLAYERS} players, got {len(seats)}"
            )
        session_ids = [seat.session_id for seat in seats]
        if len(set(session_ids)) != len(session_ids):
            raise DuplicateSeat("Each player may only take one seat")

        players = [
            Player(
                seat_id=seat.seat_id or str(i),
                session_id=seat.session_id,
                name=seat.name,
            )
            for i, seat in enumerate(seats)
        ]
        deck = Deck(len(players), seed=seed)
        for player in players:
            player.hand = [deck.draw()]

        self.seats = seats
        self.players = players
        self.deck = deck
        self.discard_pile = []
        self.current_player_index = 0
        self.protected_players = set()
        self.winner = None
        self.outcome = None
        self.log = []
        self.phase = GamePhase.AWAITING_MOVE

        self._log(
            LogEvent.ROUND_STARTED,
            f"A new round begins with {len(players)} players.",
            players=[p.session_id for p in players],
        )
        logger.info(
            f"Round dealt: players={len(players)} seed={deck.seed} "
            f"face_up={[int(c) for c in deck.removed_face_up]}"
        )

        self._start_turn_draw()

    def reset(self) -> None:
        """Deal a new round with the same seats ("play again")."""
        if not self.seats:
            raise InvalidPlayerCount("No seats to reset; initialize a round first")
        self.initialize(self.seats)

    @property
    def is_over(self) -> bool:
        return self.phase == GamePhase.ROUND_OVER

    # -------------------------------------------------------------------------
    # Player Queries
    # -------------------------------------------------------------------------

    def get_player(self, session_id: Optional[str]) -> Optional[Player]:
        """Find a player by session id."""
        for player in self.players:
            if player.session_id == session_id:
                return player
        return None

    def current_player(self) -> Optional[Player]:
        """Get the player whose turn it currently is."""
        if self.players:
            return self.players[self.current_player_index]
        return None

    def active_players(self) -> list[Player]:
        """Players still in the round."""
        return [p for p in self.players if not p.eliminated]

    def is_protected(self, player: Player) -> bool:
        return player.session_id in self.protected_players

    def valid_targets(self, actor: Player) -> list[Player]:
        """Other players that may be chosen by a hostile card."""
        return [
            p for p in self.players
            if p is not actor and not p.eliminated and not self.is_protected(p)
        ]

    def count_cards(self) -> int:
        """Every card accounted for: pile, set aside, hands and discards (always 16)."""
        if self.deck is None:
            return 0
        return (
            self.deck.cards_remaining()
            + self.deck.cards_set_aside()
            + sum(len(p.hand) for p in self.players)
            + sum(len(p.discards) for p in self.players)
        )

    # -------------------------------------------------------------------------
    # Moves
    # -------------------------------------------------------------------------

    def make_move(self, session_id: str, move) -> MoveResult:
        """
        Play one card for the current player.

        Args:
            session_id: Session of the player making the move.
            move: A Move, or a client dict with card_index / target_session_id / guess_card.

        Returns:
            MoveResult. Rejected moves leave the game untouched.
        """
        if not isinstance(move, Move):
            move = Move.from_client_data(move)

        try:
            actor, card_index, plan = self._validate_move(session_id, move)
        except MoveRejected as exc:
            logger.debug(f"Move rejected for {session_id}: {exc.reason.value} ({exc.message})")
            return MoveResult.rejected(exc)

        card = actor.hand.pop(card_index)
        self._discard(actor, card)

        shown_target = plan.target if plan.target is not None and plan.target is not actor else None
        play_meta = {
            "actor_session_id": actor.session_id,
            "target_session_id": shown_target.session_id if shown_target else None,
            "card": int(card),
        }
        if card == CardType.GUARD:
            play_meta["guess_card"] = int(plan.guess) if plan.guess else None
        self._log(
            LogEvent.PLAY,
            f"{actor.name} played {card.display_name}"
            f"{f' targeting {shown_target.name}' if shown_target else ''}.",
            **play_meta,
        )

        _, resolver = self._EFFECTS[card]
        effect = resolver(self, actor, plan)

        private_reveal = None
        revealed = effect.pop("revealed_card", None)
        if revealed is not None:
            private_reveal = {
                "type": "priest_reveal",
                "target_session_id": plan.target.session_id,
                "revealed_card": revealed,
            }

        self._finish_move()

        return MoveResult(
            valid=True,
            game_state=self.get_state(),
            game_over=self.is_over,
            effect=effect,
            target_session_id=plan.target.session_id if plan.target is not None else None,
            private_reveal=private_reveal,
        )

    def _validate_move(self, session_id: str, move: Move) -> tuple[Player, int, EffectPlan]:
        """Check a move in order and build its effect plan without touching state."""
        if self.phase == GamePhase.WAITING:
            raise MoveRejected(RejectReason.NO_ROUND, "No round in progress")
        if self.phase == GamePhase.ROUND_OVER:
            raise MoveRejected(RejectReason.ROUND_OVER, "Game is over")

        actor = self.current_player()
        if actor.session_id != session_id:
            raise MoveRejected(RejectReason.NOT_YOUR_TURN, "Not your turn")
        if actor.eliminated:
            raise MoveRejected(RejectReason.ELIMINATED, "You are eliminated")

        index = move.card_index
        if not isinstance(index, int) or isinstance(index, bool):
            raise MoveRejected(RejectReason.MISSING_FIELD, "card_index required")
        if len(actor.hand) < 2:
            raise MoveRejected(RejectReason.MUST_DRAW, "You must draw before playing")
        if not 0 <= index < len(actor.hand):
            raise MoveRejected(RejectReason.INVALID_CARD_INDEX, "Invalid card index")

        card = actor.hand[index]
        if self._requires_countess(actor) and card != CardType.COUNTESS:
            raise MoveRejected(
                RejectReason.MUST_PLAY_COUNTESS,
                "Must play Countess when also holding King or Prince",
            )

        planner, _ = self._EFFECTS[card]
        return actor, index, planner(self, card, actor, move)

    @staticmethod
    def _requires_countess(player: Player) -> bool:
        return CardType.COUNTESS in player.hand and any(
            card in COUNTESS_FORCING_CARDS for card in player.hand
        )

    def _require_target(self, card: CardType, actor: Player, target_id: Optional[str]) -> Player:
        """Resolve and check a hostile target."""
        if target_id is None:
            raise MoveRejected(RejectReason.TARGET_REQUIRED, f"{card.display_name} requires target")
        target = self.get_player(target_id)
        if target is None or target.eliminated:
            raise MoveRejected(RejectReason.INVALID_TARGET, "Invalid target")
        if target is actor:
            raise MoveRejected(
                RejectReason.INVALID_TARGET,
                f"You cannot target yourself with {card.display_name}",
            )
        if self.is_protected(target):
            raise MoveRejected(RejectReason.TARGET_PROTECTED, "Target is protected")
        return target

    # -------------------------------------------------------------------------
    # Effect Planners (validation only, no mutation)
    # -------------------------------------------------------------------------

    def _plan_untargeted(self, card: CardType, actor: Player, move: Move) -> EffectPlan:
        return EffectPlan(card)

    def _plan_hostile(self, card: CardType, actor: Player, move: Move) -> EffectPlan:
        if not self.valid_targets(actor):
            return EffectPlan(card, no_target=True)
        return EffectPlan(card, target=self._require_target(card, actor, move.target_session_id))

    def _plan_guard(self, card: CardType, actor: Player, move: Move) -> EffectPlan:
        # Naming Guard is never allowed, even when nobody can be targeted
        if move.guess_card == CardType.GUARD and not isinstance(move.guess_card, bool):
            raise MoveRejected(RejectReason.CANNOT_GUESS_GUARD, "Cannot guess Guard")
        if not self.valid_targets(actor):
            return EffectPlan(card, no_target=True)
        if move.target_session_id is None:
            raise MoveRejected(RejectReason.TARGET_REQUIRED, "Guard requires target and guess")
        if move.guess_card is None:
            raise MoveRejected(RejectReason.GUESS_REQUIRED, "Guard requires target and guess")

        guess = move.guess_card
        if not isinstance(guess, int) or isinstance(guess, bool):
            raise MoveRejected(RejectReason.INVALID_GUESS, "Guess must be a card value")
        if guess == CardType.GUARD:
            raise MoveRejected(RejectReason.CANNOT_GUESS_GUARD, "Cannot guess Guard")
        if guess not in GUARD_GUESSES:
            raise MoveRejected(RejectReason.INVALID_GUESS, "Guess must be between 2 and 8")

        target = self._require_target(card, actor, move.target_session_id)
        return EffectPlan(card, target=target, guess=CardType(guess))

    def _plan_prince(self, card: CardType, actor: Player, move: Move) -> EffectPlan:
        target_id = move.target_session_id
        if target_id is None or target_id == actor.session_id:
            # Self-target only when every other player is out of reach
            if self.valid_targets(actor):
                if target_id is None:
                    raise MoveRejected(RejectReason.TARGET_REQUIRED, "Prince requires target")
                raise MoveRejected(
                    RejectReason.INVALID_TARGET,
                    "Prince may only target yourself when no other player can be chosen",
                )
            return EffectPlan(card, target=actor)
        return EffectPlan(card, target=self._require_target(card, actor, target_id))

    # -------------------------------------------------------------------------
    # Effect Resolvers (commit a validated plan)
    # -------------------------------------------------------------------------

    def _log_no_targets(self, actor: Player, card: CardType) -> dict:
        self._log(
            LogEvent.NO_TARGETS,
            f"{actor.name} played {card.display_name} but there are no valid targets.",
            actor_session_id=actor.session_id,
            card=int(card),
        )
        return {"card": int(card), "result": "no_target"}

    def _resolve_guard(self, actor: Player, plan: EffectPlan) -> dict:
        if plan.no_target:
            return self._log_no_targets(actor, plan.card)

        target = plan.target
        meta = {
            "actor_session_id": actor.session_id,
            "target_session_id": target.session_id,
            "guess_card": int(plan.guess),
        }
        if target.held_card() == plan.guess:
            self._eliminate(target)
            self._log(
                LogEvent.GUARD_CORRECT,
                f"{actor.name} guessed correctly. {target.name} is eliminated.",
                **meta,
            )
            return {"card": int(plan.card), "result": "eliminated", "guess_card": int(plan.guess)}

        self._log(
            LogEvent.GUARD_WRONG,
            f"{actor.name} guessed wrong. {target.name} is safe.",
            **meta,
        )
        return {"card": int(plan.card), "result": "missed", "guess_card": int(plan.guess)}

    def _resolve_priest(self, actor: Player, plan: EffectPlan) -> dict:
        if plan.no_target:
            return self._log_no_targets(actor, plan.card)

        target = plan.target
        self._log(
            LogEvent.PRIEST,
            f"{actor.name} looked at {target.name}'s hand.",
            actor_session_id=actor.session_id,
            target_session_id=target.session_id,
        )
        return {"card": int(plan.card), "result": "looked", "revealed_card": int(target.held_card())}

    def _resolve_baron(self, actor: Player, plan: EffectPlan) -> dict:
        if plan.no_target:
            return self._log_no_targets(actor, plan.card)

        target = plan.target
        actor_card = actor.held_card()
        target_card = target.held_card()
        meta = {"actor_session_id": actor.session_id, "target_session_id": target.session_id}

        if actor_card == target_card:
            self._log(
                LogEvent.BARON,
                f"{actor.name} and {target.name} compared hands and tied.",
                outcome="tie",
                **meta,
            )
            return {"card": int(plan.card), "result": "tie"}

        loser, winner = (target, actor) if actor_card > target_card else (actor, target)
        losing_card = loser.held_card()
        self._eliminate(loser)
        self._log(
            LogEvent.BARON,
            f"{winner.name} beat {loser.name} ({losing_card.display_name}). "
            f"{loser.name} is eliminated.",
            outcome="target_eliminated" if loser is target else "actor_eliminated",
            eliminated_session_id=loser.session_id,
            eliminated_card=int(losing_card),
            **meta,
        )
        return {"card": int(plan.card), "result": "eliminated", "eliminated_session_id": loser.session_id}

    def _resolve_handmaid(self, actor: Player, plan: EffectPlan) -> dict:
        self.protected_players.add(actor.session_id)
        self._log(
            LogEvent.HANDMAID,
            f"{actor.name} is protected until their next turn.",
            actor_session_id=actor.session_id,
        )
        return {"card": int(plan.card), "result": "protected"}

    def _resolve_prince(self, actor: Player, plan: EffectPlan) -> dict:
        target = plan.target
        discarded = target.hand.pop()
        self._discard(target, discarded)
        meta = {
            "actor_session_id": actor.session_id,
            "target_session_id": target.session_id,
            "discarded": int(discarded),
        }

        if discarded == CardType.PRINCESS:
            target.eliminated = True
            self.protected_players.discard(target.session_id)
            self._log(
                LogEvent.PRINCE_ELIMINATED,
                f"{target.name} discarded Princess and is eliminated!",
                **meta,
            )
            return {"card": int(plan.card), "result": "eliminated", "discarded": int(discarded)}

        replacement = self.deck.draw()
        if replacement is None:
            replacement = self.deck.take_removed_face_down()
        if replacement is not None:
            target.hand.append(replacement)
        self._log(
            LogEvent.PRINCE,
            f"{target.name} discarded {discarded.display_name} and drew a new card.",
            **meta,
        )
        return {"card": int(plan.card), "result": "redrew", "discarded": int(discarded)}

    def _resolve_king(self, actor: Player, plan: EffectPlan) -> dict:
        if plan.no_target:
            return self._log_no_targets(actor, plan.card)

        target = plan.target
        actor.hand, target.hand = target.hand, actor.hand
        self._log(
            LogEvent.KING,
            f"{actor.name} and {target.name} swapped hands.",
            actor_session_id=actor.session_id,
            target_session_id=target.session_id,
        )
        return {"card": int(plan.card), "result": "swapped"}

    def _resolve_countess(self, actor: Player, plan: EffectPlan) -> dict:
        return {"card": int(plan.card), "result": "none"}

    def _resolve_princess(self, actor: Player, plan: EffectPlan) -> dict:
        self._eliminate(actor)
        self._log(
            LogEvent.PRINCESS,
            f"{actor.name} discarded Princess and is eliminated!",
            actor_session_id=actor.session_id,
        )
        return {"card": int(plan.card), "result": "eliminated"}

    # Closed dispatch table: card -> (planner, resolver)
    _EFFECTS = {
        CardType.GUARD: (_plan_guard, _resolve_guard),
        CardType.PRIEST: (_plan_hostile, _resolve_priest),
        CardType.BARON: (_plan_hostile, _resolve_baron),
        CardType.HANDMAID: (_plan_untargeted, _resolve_handmaid),
        CardType.PRINCE: (_plan_prince, _resolve_prince),
        CardType.KING: (_plan_hostile, _resolve_king),
        CardType.COUNTESS: (_plan_untargeted, _resolve_countess),
        CardType.PRINCESS: (_plan_untargeted, _resolve_princess),
    }

    # -------------------------------------------------------------------------
    # Turn & Round Flow (Internal)
    # -------------------------------------------------------------------------

    def _discard(self, player: Player, card: CardType) -> None:
        player.discards.append(card)
        self.discard_pile.append(card)

    def _eliminate(self, player: Player) -> None:
        """Knock a player out, moving any held card to their discards."""
        while player.hand:
            self._discard(player, player.hand.pop())
        player.eliminated = True
        self.protected_players.discard(player.session_id)

    def _finish_move(self) -> None:
        """Check the round-end conditions in priority order, else pass the turn."""
        active = self.active_players()
        if len(active) == 1:
            self._end_round_last_standing(active[0])
        elif self.deck.cards_remaining() == 0:
            self._end_round_by_reveal()
        else:
            self._advance_turn()

    def _advance_turn(self) -> None:
        """Move to the next player still in the round and start their turn."""
        count = len(self.players)
        index = self.current_player_index
        for _ in range(count):
            index = (index + 1) % count
            if not self.players[index].eliminated:
                break
        self.current_player_index = index
        self._start_turn_draw()

    def _start_turn_draw(self) -> None:
        """End the current player's protection and draw their second card."""
        player = self.current_player()
        if player.session_id in self.protected_players:
            self.protected_players.discard(player.session_id)
            self._log(
                LogEvent.PROTECTION_END,
                f"{player.name}'s protection has ended.",
                actor_session_id=player.session_id,
            )
        card = self.deck.draw()
        if card is not None:
            player.hand.append(card)

    def _end_round_last_standing(self, player: Player) -> None:
        self.phase = GamePhase.ROUND_OVER
        self.winner = player
        self.outcome = RoundOutcome.LAST_STANDING
        self._log(
            LogEvent.WIN_LAST,
            f"{player.name} wins by being the last player standing.",
            winner_session_id=player.session_id,
        )
        logger.info(f"Round over: {player.session_id} is the last player standing")

    def _end_round_by_reveal(self) -> None:
        result = resolve_reveal(self.players)
        self.phase = GamePhase.ROUND_OVER
        self.winner = result.winner
        self.outcome = result.outcome

        if result.outcome == RoundOutcome.HIGHEST_CARD:
            self._log(
                LogEvent.WIN_HIGHEST,
                f"{result.winner.name} wins the round with {CardType(result.best_value).display_name}.",
                winner_session_id=result.winner.session_id,
                winner_card=result.best_value,
            )
        elif result.outcome == RoundOutcome.TIEBREAK:
            self._log(
                LogEvent.WIN_TIEBREAK,
                f"{result.winner.name} wins the tie-breaker (discard total {result.discard_total}).",
                winner_session_id=result.winner.session_id,
                winner_card=result.best_value,
                discard_total=result.discard_total,
            )
        else:
            self._log(LogEvent.TIE, "Round ended in a tie.", best_card=result.best_value)

        logger.info(
            f"Round over by reveal: outcome={result.outcome.value} "
            f"winner={result.winner.session_id if result.winner else None}"
        )

    def _log(self, event: LogEvent, message: str, **meta: Any) -> None:
        self.log.append(LogEntry(message=message, meta={"event": event.value, **meta}))

    # -------------------------------------------------------------------------
    # State Projection
    # -------------------------------------------------------------------------

    def get_state(self, for_session_id: Optional[str] = None) -> dict:
        """
        Get the game state as seen by one player.

        Every viewer sees the same public facts (names, discards, hand
        sizes, protection, deck size, face-up removed cards, turn, log).
        Only the viewer's own hand is filled in; with no viewer all hands
        are hidden.

        Args:
            for_session_id: Session of the player who will receive this state.

        Returns:
            Dict suitable for JSON serialization.
        """
        current = self.current_player()

        players_data = []
        for player in self.players:
            is_self = for_session_id is not None and player.session_id == for_session_id
            players_data.append({
                "seat_id": player.seat_id,
                "session_id": player.session_id,
                "name": player.name,
                "eliminated": player.eliminated,
                "protected": self.is_protected(player),
                "discards": [int(c) for c in player.discards],
                "hand_size": len(player.hand),
                "hand": [int(c) for c in player.hand] if is_self else [],
            })

        return {
            "phase": self.phase.value,
            "players": players_data,
            "current_player_index": self.current_player_index,
            "current_session_id": current.session_id if current else None,
            "deck_size": self.deck.cards_remaining() if self.deck else 0,
            "public_removed_cards": [int(c) for c in self.deck.removed_face_up] if self.deck else [],
            "game_over": self.is_over,
            "winner": (
                {"session_id": self.winner.session_id, "name": self.winner.name}
                if self.winner else None
            ),
            "outcome": self.outcome.value if self.outcome else None,
            "total_cards": DECK_SIZE,
            "log": [entry.to_dict() for entry in self.log],
        }
