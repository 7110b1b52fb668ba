"""
Game logic for Bussfix.

This module implements the rules engine for the Bussfix drinking card game:
card/deck management, player state, play validation, special combinations,
hand replenishment and the turn state machine.

Bussfix Rules Summary:
    - Everyone starts with 3 cards; the rest forms the draw deck
    - On your turn: play a set of equal rank that beats or matches the
      comparison rank, or pick up the whole pile (and drink)
    - A 6+9 ("69") or any number of 2s can be played on anything
    - Whenever your turn starts you refill to 3 cards, from the deck while it
      lasts, then from the active player holding the most cards
    - If nobody can refill you, you are out of the game - you won

Stages:
    LOBBY -> PLAYING -> ENDED  (ENDED can be discarded back to a new LOBBY)

The engine never prompts anyone. Choices that need a human (who receives a
sip, where the bottle lands) are returned as a PendingDecision and resolved
by a follow-up call to Game.resolve_decision().
"""

import logging
import random
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, Union

from constants import (
    BOTTLE_SEVENS_COUNT,
    DEFAULT_JOKERS,
    FOUR_OF_A_KIND_COUNT,
    HAND_SIZE,
    JACKS_COUNT,
    JOKER_RANK,
    KINGS_COUNT,
    MAX_PLAYERS,
    MIN_PLAYERS,
    QUEENS_COUNT,
    RESET_RANK,
    SIPS_PER_PICKUP,
    SIPS_PER_SPECIAL,
    SIXTY_NINE,
    SIXTY_NINE_THRESHOLD,
    STANDARD_DECK_SIZE,
    WATERFALL_SIXES_COUNT,
    clamp_jokers,
    rank_value,
)

logger = logging.getLogger(__name__)


class GameInvariantError(RuntimeError):
    """Raised when the session reaches a state correct play can never produce."""


class Suit(str, Enum):
    """Card suits, plus the pseudo-suit carried by jokers."""

    HEARTS = "hearts"
    DIAMONDS = "diamonds"
    CLUBS = "clubs"
    SPADES = "spades"
    JOKER = "joker"


STANDARD_SUITS: list[Suit] = [Suit.HEARTS, Suit.DIAMONDS, Suit.CLUBS, Suit.SPADES]


class Rank(str, Enum):
    """
    The 13 ordinary ranks, listed in comparison order.

    "2" is the highest rank and doubles as the reset marker. Jokers have no
    Rank of their own; they borrow one through JokerCard.declared_rank.
    """

    THREE = "3"
    FOUR = "4"
    FIVE = "5"
    SIX = "6"
    SEVEN = "7"
    EIGHT = "8"
    NINE = "9"
    TEN = "10"
    JACK = "J"
    QUEEN = "Q"
    KING = "K"
    ACE = "A"
    TWO = "2"

    @property
    def value_index(self) -> int:
        """Comparison value (higher beats lower)."""
        return rank_value(self.value)


@dataclass(frozen=True)
class StandardCard:
    """
    One of the 52 ordinary cards.

    Attributes:
        id: Unique card identifier within a deck.
        suit: One of the four standard suits.
        rank: The card's rank.
    """

    id: int
    suit: Suit
    rank: Rank

    @property
    def is_joker(self) -> bool:
        return False

    @property
    def effective_rank(self) -> Rank:
        return self.rank

    def label(self) -> str:
        return self.rank.value

    def to_dict(self) -> dict:
        return {"id": self.id, "suit": self.suit.value, "rank": self.rank.value}


@dataclass(frozen=True)
class JokerCard:
    """
    A joker that impersonates whatever rank its holder declares.

    A joker with declared_rank None cannot be played.

    Attributes:
        id: Unique card identifier within a deck.
        declared_rank: The rank the joker currently stands in for.
    """

    id: int
    declared_rank: Optional[Rank] = None

    @property
    def is_joker(self) -> bool:
        return True

    @property
    def suit(self) -> Suit:
        return Suit.JOKER

    @property
    def effective_rank(self) -> Optional[Rank]:
        return self.declared_rank

    def declare(self, rank: Rank) -> "JokerCard":
        """Return a copy of this joker standing in for ``rank``."""
        return replace(self, declared_rank=rank)

    def label(self) -> str:
        return f"Joker({self.declared_rank.value if self.declared_rank else '?'})"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "suit": Suit.JOKER.value,
            "rank": JOKER_RANK,
            "declared_rank": self.declared_rank.value if self.declared_rank else None,
        }


Card = Union[StandardCard, JokerCard]

HIDDEN_CARD = {"hidden": True}


def effective_ranks(cards: list[Card]) -> list[Optional[Rank]]:
    """Effective rank of every card (undeclared jokers give None)."""
    return [card.effective_rank for card in cards]


def is_sixty_nine(ranks: list[Optional[Rank]]) -> bool:
    """Check for the order-independent 6+9 special."""
    return len(ranks) == 2 and sorted(r.value for r in ranks if r) == sorted(SIXTY_NINE)


def is_reset(ranks: list[Optional[Rank]]) -> bool:
    """Check for an all-2 play."""
    return bool(ranks) and all(r is not None and r.value == RESET_RANK for r in ranks)


def top_block(cards: list[Card]) -> tuple[Optional[Rank], int]:
    """
    Find the maximal run of equal effective rank at the end of the pile.

    Args:
        cards: The flattened pile, oldest card first.

    Returns:
        (rank, count) of the top block, or (None, 0) for an empty pile.
    """
    if not cards:
        return None, 0
    top = cards[-1].effective_rank
    count = 0
    for card in reversed(cards):
        if card.effective_rank != top:
            break
        count += 1
    return top, count


def label_cards(cards: list[Card]) -> str:
    return " ".join(card.label() for card in cards)


def new_deck(joker_count: int = DEFAULT_JOKERS, rng: Optional[random.Random] = None) -> list[Card]:
    """
    Build a shuffled deck of 52 standard cards plus jokers.

    Args:
        joker_count: Requested number of jokers, clamped to the allowed range.
        rng: Random source for the shuffle. Defaults to the module-level one.

    Returns:
        A shuffled list of 52 + jokers cards with unique ids.
    """
    cards: list[Card] = []
    next_id = 1
    for suit in STANDARD_SUITS:
        for rank in Rank:
            cards.append(StandardCard(id=next_id, suit=suit, rank=rank))
            next_id += 1
    for _ in range(clamp_jokers(joker_count)):
        cards.append(JokerCard(id=next_id))
        next_id += 1

    (rng or random).shuffle(cards)
    return cards


class Deck:
    """
    The draw deck of a session.

    The deck owns a seeded random source so a session can be replayed
    exactly from its seed.
    """

    def __init__(
        self,
        num_jokers: int = DEFAULT_JOKERS,
        rng: Optional[random.Random] = None,
        seed: Optional[int] = None,
    ) -> None:
        """
        Initialize and shuffle a new deck.

        Args:
            num_jokers: Number of jokers (clamped to the allowed range).
            rng: Random source to shuffle with. Built from ``seed`` if None.
            seed: Seed for a fresh random source when ``rng`` is not given.
        """
        self.num_jokers = clamp_jokers(num_jokers)
        self.seed: int = seed if seed is not None else random.randint(0, 2**31 - 1)
        self.rng = rng or random.Random(self.seed)
        self.cards: list[Card] = new_deck(self.num_jokers, self.rng)

    def draw(self) -> Optional[Card]:
        """
        Draw the top card from the deck.

        Returns:
            The drawn Card, or None if deck is empty.
        """
        if self.cards:
            return self.cards.pop()
        return None

    def cards_remaining(self) -> int:
        """Return the number of cards left in the deck."""
        return len(self.cards)

    def __len__(self) -> int:
        return len(self.cards)


@dataclass
class Player:
    """
    A seat at the table.

    Attributes:
        id: Unique identifier (the connection's player id in server mode).
        name: Display name.
        hand: Cards held, in the order received.
        drank: Sips taken so far; only ever increases.
        out: True once the player has won and left play.
    """

    id: str
    name: str
    hand: list[Card] = field(default_factory=list)
    drank: int = 0
    out: bool = False

    def find_card(self, card_id: int) -> Optional[int]:
        """Return the hand index of ``card_id``, or None."""
        for idx, card in enumerate(self.hand):
            if card.id == card_id:
                return idx
        return None

    def hand_to_dict(self, reveal: bool) -> list[dict]:
        """
        Convert the hand for JSON, hiding card faces unless ``reveal``.

        Hidden hands keep their length so opponents can see the hand size.
        """
        if reveal:
            return [card.to_dict() for card in self.hand]
        return [dict(HIDDEN_CARD) for _ in self.hand]


@dataclass
class Play:
    """The cards one player put on the pile in a single turn."""

    player_id: str
    cards: list[Card]

    def to_dict(self) -> dict:
        return {"player_id": self.player_id, "cards": [c.to_dict() for c in self.cards]}


class GameStage(str, Enum):
    """
    Lifecycle of a session.

    Flow: LOBBY -> PLAYING -> ENDED
    """

    LOBBY = "lobby"
    PLAYING = "playing"
    ENDED = "ended"


class DecisionKind(str, Enum):
    """Choices the engine hands back to a human."""

    GIVE_SIP = "give_sip"        # KK: the player gives one sip to someone else
    SPIN_BOTTLE = "spin_bottle"  # Three 7s: the bottle picks someone to drink


@dataclass
class PendingDecision:
    """A choice the acting player must make before the turn moves on."""

    kind: DecisionKind
    player_id: str

    def to_dict(self) -> dict:
        return {"kind": self.kind.value, "player_id": self.player_id}


@dataclass
class ActionResult:
    """
    Outcome of an engine action.

    A failed result never changes the session.

    Attributes:
        ok: Whether the action was accepted.
        reason: Why it was rejected (None when accepted).
        pending: The decision the caller must resolve next, if any.
    """

    ok: bool
    reason: Optional[str] = None
    pending: Optional[PendingDecision] = None

    @property
    def awaiting_decision(self) -> bool:
        return self.pending is not None

    @classmethod
    def fail(cls, reason: str) -> "ActionResult":
        return cls(ok=False, reason=reason)

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "reason": self.reason,
            "pending_decision": self.pending.to_dict() if self.pending else None,
        }


@dataclass
class Game:
    """
    Main game state and rules controller for Bussfix.

    A Game is the single source of truth for one session and is only ever
    mutated through its own methods. Player order is fixed once the game
    starts.

    Attributes:
        players: Seats in table order.
        stage: Current lifecycle stage.
        jokers: Number of jokers in play.
        current_player_index: Index of the player whose turn it is.
        deck: The draw deck (None until started).
        pile: Plays on the table, oldest first.
        discard: Cards cleared off the table, out of play for good.
        compare_rank: Rank the next play must meet or beat (None = anything).
        messages: Human-readable log, newest first.
        winners: Names of players who went out, in order.
        pending: Decisions waiting on the acting player, in resolution order.
        seed: Seed of the session's random source.
    """

    players: list[Player] = field(default_factory=list)
    stage: GameStage = GameStage.LOBBY
    jokers: int = DEFAULT_JOKERS
    current_player_index: int = 0
    deck: Optional[Deck] = None
    pile: list[Play] = field(default_factory=list)
    discard: list[Card] = field(default_factory=list)
    compare_rank: Optional[Rank] = None
    messages: list[str] = field(default_factory=list)
    winners: list[str] = field(default_factory=list)
    pending: list[PendingDecision] = field(default_factory=list)
    seed: Optional[int] = None
    rng: random.Random = field(default=None, repr=False, compare=False)

    def __post_init__(self) -> None:
        if self.seed is None:
            self.seed = random.randint(0, 2**31 - 1)
        if self.rng is None:
            self.rng = random.Random(self.seed)

    @classmethod
    def for_names(
        cls,
        names: list[str],
        jokers: int = DEFAULT_JOKERS,
        seed: Optional[int] = None,
    ) -> "Game":
        """
        Create and start a local (pass-and-play) game.

        Player ids are "p1", "p2", ... in the order of ``names``.

        Raises:
            ValueError: If the number of players is outside the allowed range.
        """
        game = cls(seed=seed)
        for i, name in enumerate(names):
            game.add_player(Player(id=f"p{i + 1}", name=name))
        result = game.start_game(jokers)
        if not result.ok:
            raise ValueError(result.reason)
        return game

    # -------------------------------------------------------------------------
    # Players
    # -------------------------------------------------------------------------

    def add_player(self, player: Player) -> bool:
        """
        Seat a player. Only allowed before the game starts.

        Returns:
            True if seated, False if the game already started or the table is full.
        """
        if self.stage != GameStage.LOBBY or len(self.players) >= MAX_PLAYERS:
            return False
        self.players.append(player)
        return True

    def get_player(self, player_id: Optional[str]) -> Optional[Player]:
        """Find a player by ID."""
        for player in self.players:
            if player.id == player_id:
                return player
        return None

    def current_player(self) -> Optional[Player]:
        """Get the player whose turn it currently is."""
        if self.players:
            return self.players[self.current_player_index]
        return None

    def active_players(self) -> list[Player]:
        """Players still in play (not out)."""
        return [p for p in self.players if not p.out]

    # -------------------------------------------------------------------------
    # Game Lifecycle
    # -------------------------------------------------------------------------

    def start_game(self, num_jokers: int = DEFAULT_JOKERS) -> ActionResult:
        """
        Shuffle a fresh deck, deal 3 cards to everyone and start playing.

        Args:
            num_jokers: Requested joker count (clamped to the allowed range).

        Returns:
            Failed result if the stage or player count does not allow a start.
        """
        if self.stage != GameStage.LOBBY:
            return ActionResult.fail("Game already started.")
        if not MIN_PLAYERS <= len(self.players) <= MAX_PLAYERS:
            return ActionResult.fail(f"Need {MIN_PLAYERS}-{MAX_PLAYERS} players.")

        self.jokers = clamp_jokers(num_jokers)
        self.deck = Deck(self.jokers, rng=self.rng, seed=self.seed)

        for _ in range(HAND_SIZE):
            for player in self.players:
                card = self.deck.draw()
                if card:
                    player.hand.append(card)

        self.current_player_index = 0
        self.stage = GameStage.PLAYING
        self._log(f"Game started. {self.players[0].name} begins.")
        return ActionResult(ok=True)

    # -------------------------------------------------------------------------
    # Pile helpers
    # -------------------------------------------------------------------------

    def pile_cards(self) -> list[Card]:
        """Flatten the pile, oldest card first."""
        return [card for play in self.pile for card in play.cards]

    def top_block(self) -> tuple[Optional[Rank], int]:
        """Rank and length of the equal-rank run on top of the pile."""
        return top_block(self.pile_cards())

    def card_count(self) -> int:
        """Count every card in hands, pile, deck and discard."""
        in_hands = sum(len(p.hand) for p in self.players)
        in_deck = len(self.deck) if self.deck else 0
        return in_hands + len(self.pile_cards()) + in_deck + len(self.discard)

    def expected_card_count(self) -> int:
        return STANDARD_DECK_SIZE + self.jokers

    # -------------------------------------------------------------------------
    # Rules Engine
    # -------------------------------------------------------------------------

    def validate_play(self, cards: list[Card]) -> ActionResult:
        """
        Check whether ``cards`` may go on the pile right now.

        Legal shapes are a set of one effective rank or exactly one 6 with
        one 9. On an empty pile any legal shape goes. A 69 or an all-2 set
        goes on anything. Otherwise the rank must meet or beat the comparison
        rank, or complete four of a kind with the top block.

        Args:
            cards: The selected cards (jokers must already be declared).

        Returns:
            ActionResult with ok=False and a reason when the play is illegal.
        """
        if not cards:
            return ActionResult.fail("Select one or more cards.")

        for card in cards:
            if card.is_joker and card.effective_rank is None:
                return ActionResult.fail("Choose a rank for each Joker.")

        ranks = effective_ranks(cards)
        same_rank = len(set(ranks)) == 1
        sixty_nine = is_sixty_nine(ranks)

        if not same_rank and not sixty_nine:
            return ActionResult.fail("Play a set of the same rank, or a 69 (6+9).")

        if not self.pile:
            return ActionResult(ok=True)

        if sixty_nine or is_reset(ranks):
            return ActionResult(ok=True)

        if self.compare_rank is None:
            return ActionResult(ok=True)

        played = ranks[0]
        if played.value_index >= self.compare_rank.value_index:
            return ActionResult(ok=True)

        # Sneaking in: completing four of a kind on the top block
        top_rank, top_count = self.top_block()
        if top_rank == played and top_count + len(cards) >= FOUR_OF_A_KIND_COUNT:
            return ActionResult(ok=True)

        return ActionResult.fail(f"Must beat or match {self.compare_rank.value}.")

    def apply_play(self, cards: list[Card]) -> ActionResult:
        """
        Move ``cards`` from the current player's hand onto the pile.

        Assumes validate_play() accepted the selection. Updates the comparison
        rank, then resolves specials against the top block of the whole pile,
        in order: four of a kind, KK, three Jacks, four 6s, three 7s, two
        Queens. Several specials can fire on the same play.

        Returns:
            Successful result; ``pending`` holds the first decision the player
            owes (KK sip target, then spin the bottle) if any fired.
        """
        player = self.current_player()
        played_ids = {card.id for card in cards}
        player.hand = [c for c in player.hand if c.id not in played_ids]
        self.pile.append(Play(player_id=player.id, cards=list(cards)))

        ranks = effective_ranks(cards)
        if is_sixty_nine(ranks):
            self.compare_rank = Rank(SIXTY_NINE_THRESHOLD)
            self._log(f"{player.name} played 69 - everyone drinks, next must beat 9.")
            self.everyone_drinks(SIPS_PER_SPECIAL)
        elif is_reset(ranks):
            self.compare_rank = Rank.TWO
            self._log(f"{player.name} played a 2 - pile reset, next must beat 2.")
        else:
            self.compare_rank = ranks[0]
            self._log(f"{player.name} played {label_cards(cards)}.")

        self.pending = []
        rank, count = self.top_block()

        if count >= FOUR_OF_A_KIND_COUNT:
            self._log(f"Four-of-a-kind ({rank.value}) - everyone drinks!")
            self.everyone_drinks(SIPS_PER_SPECIAL)

        if rank == Rank.KING and count >= KINGS_COUNT:
            self._log(f"KK - {player.name} drinks and gives 1 sip.")
            player.drank += SIPS_PER_SPECIAL
            if any(p is not player for p in self.active_players()):
                self.pending.append(PendingDecision(DecisionKind.GIVE_SIP, player.id))

        if rank == Rank.JACK and count >= JACKS_COUNT:
            self._log("Trippelknull (3+ Jacks) - everyone drinks!")
            self.everyone_drinks(SIPS_PER_SPECIAL)

        if rank == Rank.SIX and count >= WATERFALL_SIXES_COUNT:
            self._log(f"Quadrupellsex (4+ sixes) - WATERFALL! {player.name} starts.")

        if rank == Rank.SEVEN and count >= BOTTLE_SEVENS_COUNT:
            self._log("Three or more 7s - Spin the bottle!")
            self.pending.append(PendingDecision(DecisionKind.SPIN_BOTTLE, player.id))

        if rank == Rank.QUEEN and count >= QUEENS_COUNT:
            self._log("Two or more Queens - Sax section drinks!")

        return ActionResult(ok=True, pending=self.pending[0] if self.pending else None)

    def everyone_drinks(self, sips: int) -> None:
        for player in self.active_players():
            player.drank += sips

    def take_pile(self) -> None:
        """The current player picks up the whole pile and drinks."""
        player = self.current_player()
        player.hand.extend(self.pile_cards())
        self.pile = []
        self.compare_rank = None
        player.drank += SIPS_PER_PICKUP
        self._log(f"{player.name} picked up the pile and drank.")

    def clear_table(self) -> None:
        """
        Sweep the pile off the table without anyone picking it up.

        Used after a waterfall or a finished drink. The turn does not move.
        Swept cards go to the discard and stay out of play.
        """
        self.discard.extend(self.pile_cards())
        self.pile = []
        self.compare_rank = None
        self._log("Pile cleared (finished drink).")

    def advance_turn(self) -> None:
        """
        Pass the turn to the next player who is not out, then refill their hand.

        Raises:
            GameInvariantError: If the game is playing with nobody left in it.
        """
        if self.stage != GameStage.PLAYING:
            return
        if not self.active_players():
            logger.error("advance_turn called with no active players")
            raise GameInvariantError("No active players left to take a turn")

        n = len(self.players)
        for _ in range(n):
            self.current_player_index = (self.current_player_index + 1) % n
            if not self.players[self.current_player_index].out:
                break

        self.top_up_to_three()

    def top_up_to_three(self) -> None:
        """
        Refill the current player to 3 cards.

        Draws from the deck while it lasts, then takes one card at a time from
        the active player holding the most cards, as long as that player has
        more than 3. When nobody can feed the current player they are out:
        they won. The game ends once at most one player is left in play.
        """
        player = self.current_player()
        if player is None or player.out:
            return

        while len(player.hand) < HAND_SIZE:
            card = self.deck.draw() if self.deck else None
            if card is not None:
                player.hand.append(card)
                continue

            donors = [p for p in self.active_players() if p is not player]
            donor = max(donors, key=lambda p: len(p.hand)) if donors else None
            if donor is None or len(donor.hand) <= HAND_SIZE:
                self._player_out(player)
                return
            player.hand.append(donor.hand.pop())

    def _player_out(self, player: Player) -> None:
        player.out = True
        self.winners.append(player.name)
        self._log(f"{player.name} is out (won)!")

        remaining = self.active_players()
        if len(remaining) <= 1:
            self.stage = GameStage.ENDED
            self.pending = []
            if remaining:
                self._log(f"{remaining[0].name} is the last one left.")
            return

        self.advance_turn()

    # -------------------------------------------------------------------------
    # Player Actions
    # -------------------------------------------------------------------------

    def _turn_error(self, player_id: str) -> Optional[str]:
        if self.stage != GameStage.PLAYING:
            return "Game is not in progress."
        current = self.current_player()
        if current is None or current.id != player_id:
            return "Not your turn."
        return None

    def _pending_error(self) -> Optional[str]:
        if not self.pending:
            return None
        decision = self.pending[0]
        who = self.get_player(decision.player_id)
        name = who.name if who else decision.player_id
        return f"Waiting for {name} to {decision.kind.value.replace('_', ' ')}."

    def select_cards(self, player_id: str, card_ids: list[int]) -> tuple[list[Card], Optional[str]]:
        """
        Resolve card ids against a player's hand.

        Returns:
            (cards, None) on success, or ([], reason) if an id is unknown
            to the hand or listed twice.
        """
        player = self.get_player(player_id)
        if player is None:
            return [], "Unknown player."
        if len(set(card_ids)) != len(card_ids):
            return [], "Each card can only be played once."

        cards = []
        for card_id in card_ids:
            idx = player.find_card(card_id)
            if idx is None:
                return [], "Card is not in your hand."
            cards.append(player.hand[idx])
        return cards, None

    def play_cards(self, player_id: str, card_ids: list[int]) -> ActionResult:
        """
        Play cards from a player's hand as their turn.

        Validates, applies, and advances the turn unless a decision is owed.

        Args:
            player_id: The acting player.
            card_ids: Ids of the cards to play.

        Returns:
            The apply result, or a failed result with the session untouched.
        """
        error = self._turn_error(player_id) or self._pending_error()
        if error:
            return ActionResult.fail(error)

        cards, error = self.select_cards(player_id, card_ids)
        if error:
            return ActionResult.fail(error)

        check = self.validate_play(cards)
        if not check.ok:
            return check

        result = self.apply_play(cards)
        if not result.awaiting_decision:
            self.advance_turn()
        return result

    def pick_up_pile(self, player_id: str) -> ActionResult:
        """Take the pile as the player's turn, then pass the turn on."""
        error = self._turn_error(player_id) or self._pending_error()
        if error:
            return ActionResult.fail(error)

        self.take_pile()
        self.advance_turn()
        return ActionResult(ok=True)

    def clear_pile(self, player_id: str) -> ActionResult:
        """Clear the table on the player's turn; the turn stays put."""
        error = self._turn_error(player_id) or self._pending_error()
        if error:
            return ActionResult.fail(error)

        self.clear_table()
        return ActionResult(ok=True)

    def set_joker_rank(self, player_id: str, card_id: int, rank: Union[Rank, str]) -> ActionResult:
        """
        Declare which rank a joker in the player's hand stands in for.

        The joker is replaced in place by an updated copy.
        """
        error = self._turn_error(player_id)
        if error:
            return ActionResult.fail(error)

        try:
            declared = Rank(rank)
        except ValueError:
            return ActionResult.fail(f"Unknown rank: {rank}")

        player = self.get_player(player_id)
        idx = player.find_card(card_id)
        if idx is None:
            return ActionResult.fail("Card is not in your hand.")

        card = player.hand[idx]
        if not card.is_joker:
            return ActionResult.fail("Only jokers can be given a rank.")

        player.hand[idx] = card.declare(declared)
        return ActionResult(ok=True)

    def resolve_decision(self, player_id: str, target_id: Optional[str] = None) -> ActionResult:
        """
        Resolve the oldest pending decision.

        GIVE_SIP needs ``target_id``: another player still in play.
        SPIN_BOTTLE lands on ``target_id`` if given, otherwise on a random
        active player drawn from the session's random source.

        Once nothing is pending the turn passes on.
        """
        if self.stage != GameStage.PLAYING:
            return ActionResult.fail("Game is not in progress.")
        if not self.pending:
            return ActionResult.fail("Nothing to resolve.")

        decision = self.pending[0]
        if decision.player_id != player_id:
            return ActionResult.fail("Not your decision.")

        actor = self.get_player(player_id)
        target = self.get_player(target_id) if target_id is not None else None

        if decision.kind == DecisionKind.GIVE_SIP:
            if target is None or target.out or target is actor:
                return ActionResult.fail("Choose another active player to give a sip to.")
            target.drank += SIPS_PER_SPECIAL
            self._log(f"KK - {actor.name} gives 1 sip to {target.name}.")
        else:
            if target_id is not None and (target is None or target.out):
                return ActionResult.fail("The bottle must land on an active player.")
            if target is None:
                target = self.rng.choice(self.active_players())
            target.drank += SIPS_PER_SPECIAL
            self._log(f"Bottle spun -> {target.name} drinks 1 sip.")

        self.pending.pop(0)
        if not self.pending:
            self.advance_turn()
        return ActionResult(ok=True, pending=self.pending[0] if self.pending else None)

    # -------------------------------------------------------------------------
    # Views
    # -------------------------------------------------------------------------

    def _log(self, message: str) -> None:
        self.messages.insert(0, message)

    def _base_state(self) -> dict:
        current = self.current_player()
        rank, count = self.top_block()
        return {
            "stage": self.stage.value,
            "jokers": self.jokers,
            "turn": self.current_player_index,
            "current_player_id": current.id if current else None,
            "deck_remaining": self.deck.cards_remaining() if self.deck else 0,
            "pile": [play.to_dict() for play in self.pile],
            "compare_rank": self.compare_rank.value if self.compare_rank else None,
            "top_block": {"rank": rank.value if rank else None, "count": count},
            "messages": list(self.messages),
            "winners": list(self.winners),
            "pending_decision": self.pending[0].to_dict() if self.pending else None,
        }

    def get_state(self, for_player_id: Optional[str]) -> dict:
        """
        Get the session as seen by one participant.

        The recipient's own hand is shown in full; every other hand is
        replaced by the same number of hidden placeholders. Deck contents are
        never included, only the remaining count.

        Args:
            for_player_id: The player who will receive this state, or None
                to hide every hand.

        Returns:
            JSON-serializable dict of the filtered session.
        """
        state = self._base_state()
        state["players"] = [
            {
                "id": p.id,
                "name": p.name,
                "hand": p.hand_to_dict(reveal=p.id == for_player_id),
                "hand_count": len(p.hand),
                "drank": p.drank,
                "out": p.out,
            }
            for p in self.players
        ]
        return state

    def to_dict(self) -> dict:
        """Unfiltered snapshot, including deck order (local mode and tests)."""
        state = self._base_state()
        state["players"] = [
            {
                "id": p.id,
                "name": p.name,
                "hand": p.hand_to_dict(reveal=True),
                "hand_count": len(p.hand),
                "drank": p.drank,
                "out": p.out,
            }
            for p in self.players
        ]
        state["deck"] = [c.to_dict() for c in self.deck.cards] if self.deck else []
        state["discard"] = [c.to_dict() for c in self.discard]
        state["seed"] = self.seed
        return state
