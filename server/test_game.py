"""
Test suite for the Bussfix rules engine.

Covers:
- Deck construction and seeded determinism
- Play validation (sets, 69, resets, sneaking in)
- Specials (four of a kind, KK, JJJ, 6666, 777, QQ)
- Pick up / clear table
- Turn advance, hand replenishment and elimination
- Joker declaration
- Per-player state views
- Card conservation

Run with: pytest test_game.py -v
"""

import pytest

from constants import RANK_ORDER, clamp_jokers, rank_value
from game import (
    ActionResult,
    Deck,
    DecisionKind,
    Game,
    GameInvariantError,
    GameStage,
    JokerCard,
    Play,
    Player,
    Rank,
    StandardCard,
    Suit,
    is_reset,
    is_sixty_nine,
    new_deck,
    top_block,
)


# =============================================================================
# Helpers
# =============================================================================

_next_id = [1000]


def card(rank: str, suit: Suit = Suit.HEARTS) -> StandardCard:
    """Build a standard card with a fresh id."""
    _next_id[0] += 1
    return StandardCard(id=_next_id[0], suit=suit, rank=Rank(rank))


def joker(declared: str = None) -> JokerCard:
    _next_id[0] += 1
    return JokerCard(id=_next_id[0], declared_rank=Rank(declared) if declared else None)


def make_game(hands, deck_cards=None, pile=None, compare_rank=None) -> Game:
    """
    Build a game in PLAYING stage with exact hands, deck and pile.

    Player ids are p1, p2, ... and names P1, P2, ...; p1 is to play.
    """
    game = Game(seed=1)
    for i, hand in enumerate(hands):
        game.players.append(Player(id=f"p{i + 1}", name=f"P{i + 1}", hand=list(hand)))
    game.deck = Deck(num_jokers=2, seed=1)
    game.deck.cards = list(deck_cards or [])
    if pile:
        game.pile = [Play(player_id="p2", cards=list(pile))]
    game.compare_rank = Rank(compare_rank) if compare_rank else None
    game.stage = GameStage.PLAYING
    return game


def ids(cards) -> list[int]:
    return [c.id for c in cards]


def filler(n: int = 3) -> list[StandardCard]:
    """Some low cards to keep a hand at size."""
    return [card("3", Suit.CLUBS) for _ in range(n)]


# =============================================================================
# Ranks and deck
# =============================================================================

class TestRanks:

    def test_two_is_highest(self):
        assert RANK_ORDER[-1] == "2"
        assert rank_value("2") > rank_value("A") > rank_value("K")

    def test_three_is_lowest(self):
        assert rank_value("3") == 0

    def test_rank_enum_follows_order(self):
        assert [r.value for r in Rank] == RANK_ORDER
        assert Rank.ACE.value_index < Rank.TWO.value_index

    def test_clamp_jokers(self):
        assert clamp_jokers(0) == 2
        assert clamp_jokers(3) == 3
        assert clamp_jokers(99) == 5


class TestDeck:

    def test_deck_size_with_jokers(self):
        cards = new_deck(2)
        assert len(cards) == 54
        assert sum(1 for c in cards if c.is_joker) == 2

    def test_deck_ids_unique(self):
        cards = new_deck(5)
        assert sorted(c.id for c in cards) == list(range(1, 58))

    def test_each_suit_has_thirteen_ranks(self):
        cards = [c for c in new_deck(2) if not c.is_joker]
        for suit in (Suit.HEARTS, Suit.DIAMONDS, Suit.CLUBS, Suit.SPADES):
            assert sorted(c.rank.value_index for c in cards if c.suit == suit) == list(range(13))

    def test_joker_count_clamped(self):
        assert len(Deck(num_jokers=1)) == 54
        assert len(Deck(num_jokers=9)) == 57

    def test_new_jokers_undeclared(self):
        jokers = [c for c in new_deck(3) if c.is_joker]
        assert all(j.declared_rank is None for j in jokers)
        assert all(j.suit == Suit.JOKER for j in jokers)

    def test_same_seed_same_order(self):
        assert ids(Deck(2, seed=7).cards) == ids(Deck(2, seed=7).cards)

    def test_draw_pops_until_empty(self):
        deck = Deck(2, seed=3)
        top = deck.cards[-1]
        assert deck.draw() is top
        assert deck.cards_remaining() == 53
        deck.cards = []
        assert deck.draw() is None


class TestCardHelpers:

    def test_sixty_nine_order_independent(self):
        assert is_sixty_nine([Rank.SIX, Rank.NINE])
        assert is_sixty_nine([Rank.NINE, Rank.SIX])
        assert not is_sixty_nine([Rank.SIX, Rank.SIX])
        assert not is_sixty_nine([Rank.SIX, Rank.NINE, Rank.NINE])

    def test_reset(self):
        assert is_reset([Rank.TWO, Rank.TWO])
        assert not is_reset([Rank.TWO, Rank.ACE])
        assert not is_reset([])

    def test_top_block(self):
        cards = [card("5"), card("8"), card("8"), joker("8")]
        assert top_block(cards) == (Rank.EIGHT, 3)
        assert top_block([]) == (None, 0)

    def test_joker_declare_returns_copy(self):
        j = joker()
        declared = j.declare(Rank.KING)
        assert j.declared_rank is None
        assert declared.effective_rank == Rank.KING
        assert declared.id == j.id

    def test_card_dicts(self):
        assert card("Q", Suit.SPADES).to_dict()["rank"] == "Q"
        d = joker("7").to_dict()
        assert d["rank"] == "JOKER"
        assert d["declared_rank"] == "7"
        assert d["suit"] == "joker"


# =============================================================================
# Starting
# =============================================================================

class TestStartGame:

    def test_deals_three_each(self):
        game = Game.for_names(["A", "B", "C"], jokers=2, seed=42)
        assert game.stage == GameStage.PLAYING
        assert all(len(p.hand) == 3 for p in game.players)
        assert game.deck.cards_remaining() == 54 - 9
        assert game.current_player().id == "p1"
        assert game.messages[0] == "Game started. A begins."

    def test_too_few_players(self):
        with pytest.raises(ValueError):
            Game.for_names(["Solo"])

    def test_too_many_players(self):
        with pytest.raises(ValueError):
            Game.for_names([f"P{i}" for i in range(7)])

    def test_cannot_start_twice(self):
        game = Game.for_names(["A", "B"], seed=1)
        result = game.start_game()
        assert not result.ok

    def test_cannot_add_player_after_start(self):
        game = Game.for_names(["A", "B"], seed=1)
        assert not game.add_player(Player(id="late", name="Late"))

    def test_same_seed_same_deal(self):
        a = Game.for_names(["A", "B", "C"], seed=99)
        b = Game.for_names(["A", "B", "C"], seed=99)
        assert a.to_dict()["players"] == b.to_dict()["players"]
        assert a.to_dict()["deck"] == b.to_dict()["deck"]


# =============================================================================
# Validation
# =============================================================================

class TestValidatePlay:

    def test_empty_selection(self):
        game = make_game([filler(), filler()])
        assert game.validate_play([]).reason == "Select one or more cards."

    def test_undeclared_joker(self):
        game = make_game([filler(), filler()])
        assert game.validate_play([joker()]).reason == "Choose a rank for each Joker."

    def test_mixed_ranks(self):
        game = make_game([filler(), filler()])
        result = game.validate_play([card("5"), card("7")])
        assert result.reason == "Play a set of the same rank, or a 69 (6+9)."

    def test_anything_goes_on_empty_pile(self):
        game = make_game([filler(), filler()])
        assert game.validate_play([card("3")]).ok
        assert game.validate_play([card("9"), card("6")]).ok

    def test_must_meet_or_beat(self):
        game = make_game([filler(), filler()], pile=[card("8")], compare_rank="8")
        assert game.validate_play([card("7")]).reason == "Must beat or match 8."
        assert game.validate_play([card("8")]).ok
        assert game.validate_play([card("K"), card("K")]).ok

    def test_two_beats_everything(self):
        game = make_game([filler(), filler()], pile=[card("A")], compare_rank="A")
        assert game.validate_play([card("2")]).ok

    def test_sixty_nine_goes_on_anything(self):
        game = make_game([filler(), filler()], pile=[card("2")], compare_rank="2")
        assert game.validate_play([card("6"), card("9")]).ok

    def test_declared_joker_joins_set(self):
        game = make_game([filler(), filler()], pile=[card("8")], compare_rank="8")
        assert game.validate_play([card("9"), joker("9")]).ok

    def test_sneak_in_completes_four(self):
        pile = [card("5"), card("5", Suit.SPADES), card("5", Suit.CLUBS)]
        game = make_game([filler(), filler()], pile=pile, compare_rank="9")
        assert game.validate_play([card("5", Suit.DIAMONDS)]).ok

    def test_sneak_in_needs_four(self):
        pile = [card("5"), card("5", Suit.SPADES)]
        game = make_game([filler(), filler()], pile=pile, compare_rank="9")
        assert not game.validate_play([card("5", Suit.DIAMONDS)]).ok


# =============================================================================
# Playing
# =============================================================================

class TestPlayCards:

    def test_play_moves_cards_and_advances(self):
        eight = card("8")
        game = make_game([[eight] + filler(2), filler()], deck_cards=filler(5))
        result = game.play_cards("p1", [eight.id])

        assert result.ok
        assert game.pile[-1].cards == [eight]
        assert game.compare_rank == Rank.EIGHT
        assert eight.id not in ids(game.players[0].hand)
        assert game.current_player().id == "p2"
        assert game.messages[0] == "P1 played 8."

    def test_not_your_turn(self):
        game = make_game([filler(), filler()])
        result = game.play_cards("p2", ids(game.players[1].hand[:1]))
        assert result.reason == "Not your turn."

    def test_card_not_in_hand(self):
        game = make_game([filler(), filler()])
        result = game.play_cards("p1", [424242])
        assert result.reason == "Card is not in your hand."

    def test_duplicate_card(self):
        game = make_game([filler(), filler()])
        first = game.players[0].hand[0].id
        assert game.play_cards("p1", [first, first]).reason == "Each card can only be played once."

    def test_rejected_play_changes_nothing(self):
        seven = card("7")
        game = make_game([[seven] + filler(2), filler()], pile=[card("9")], compare_rank="9")
        before = game.to_dict()
        result = game.play_cards("p1", [seven.id])
        assert not result.ok
        assert game.to_dict() == before

    def test_not_in_progress(self):
        game = Game()
        assert game.play_cards("p1", [1]).reason == "Game is not in progress."

    def test_sixty_nine_everyone_drinks(self):
        six, nine = card("6"), card("9")
        game = make_game([[six, nine, card("3")], filler(), filler()], deck_cards=filler(3))
        game.play_cards("p1", [six.id, nine.id])

        assert game.compare_rank == Rank.NINE
        assert [p.drank for p in game.players] == [1, 1, 1]

    def test_reset_sets_threshold_two(self):
        two = card("2")
        game = make_game([[two] + filler(2), filler()], pile=[card("A")], compare_rank="A",
                         deck_cards=filler(3))
        game.play_cards("p1", [two.id])
        assert game.compare_rank == Rank.TWO


class TestSpecials:

    def test_four_of_a_kind_everyone_drinks(self):
        eights = [card("8", Suit.DIAMONDS), card("8", Suit.SPADES)]
        pile = [card("8"), card("8", Suit.CLUBS)]
        game = make_game([eights + filler(1), filler(), filler()], pile=pile, compare_rank="8",
                         deck_cards=filler(3))
        game.play_cards("p1", ids(eights))
        assert [p.drank for p in game.players] == [1, 1, 1]
        assert "Four-of-a-kind (8) - everyone drinks!" in game.messages

    def test_sneaked_four_triggers(self):
        five = card("5", Suit.DIAMONDS)
        pile = [card("5"), card("5", Suit.SPADES), card("5", Suit.CLUBS)]
        game = make_game([[five] + filler(2), filler()], pile=pile, compare_rank="9",
                         deck_cards=filler(3))
        assert game.play_cards("p1", [five.id]).ok
        assert [p.drank for p in game.players] == [1, 1]

    def test_kings_give_sip(self):
        kings = [card("K"), card("K", Suit.SPADES)]
        game = make_game([kings + filler(1), filler(), filler()], deck_cards=filler(3))
        result = game.play_cards("p1", ids(kings))

        assert result.awaiting_decision
        assert result.pending.kind == DecisionKind.GIVE_SIP
        assert game.players[0].drank == 1
        assert game.current_player().id == "p1"

        resolved = game.resolve_decision("p1", "p3")
        assert resolved.ok
        assert game.players[2].drank == 1
        assert game.current_player().id == "p2"
        assert game.messages[0] == "KK - P1 gives 1 sip to P3."

    def test_turn_blocked_while_decision_pending(self):
        kings = [card("K"), card("K", Suit.SPADES)]
        game = make_game([kings + filler(1), filler()], deck_cards=filler(3))
        game.play_cards("p1", ids(kings))

        assert game.pick_up_pile("p1").reason == "Waiting for P1 to give sip."
        assert game.resolve_decision("p2", "p1").reason == "Not your decision."

    def test_give_sip_needs_other_active_player(self):
        kings = [card("K"), card("K", Suit.SPADES)]
        game = make_game([kings + filler(1), filler()], deck_cards=filler(3))
        game.play_cards("p1", ids(kings))

        assert not game.resolve_decision("p1", "p1").ok
        assert not game.resolve_decision("p1", "nobody").ok
        assert not game.resolve_decision("p1").ok
        assert game.pending

    def test_four_kings_stack(self):
        kings = [card("K", s) for s in (Suit.HEARTS, Suit.SPADES, Suit.CLUBS, Suit.DIAMONDS)]
        game = make_game([kings, filler()], deck_cards=filler(6))
        result = game.play_cards("p1", ids(kings))
        assert result.pending.kind == DecisionKind.GIVE_SIP
        assert game.players[0].drank == 2
        assert game.players[1].drank == 1

    def test_three_jacks(self):
        jacks = [card("J"), card("J", Suit.SPADES), card("J", Suit.CLUBS)]
        game = make_game([jacks, filler(), filler()], deck_cards=filler(3))
        game.play_cards("p1", ids(jacks))
        assert [p.drank for p in game.players] == [1, 1, 1]
        assert game.current_player().id == "p2"

    def test_waterfall_announced_no_drinks(self):
        six = card("6", Suit.DIAMONDS)
        pile = [card("6"), card("6", Suit.SPADES), card("6", Suit.CLUBS)]
        game = make_game([[six] + filler(2), filler()], pile=pile, compare_rank="6",
                         deck_cards=filler(3))
        game.play_cards("p1", [six.id])
        assert any("WATERFALL" in m for m in game.messages)
        # Four of a kind still applies
        assert [p.drank for p in game.players] == [1, 1]

    def test_sevens_spin_bottle_to_target(self):
        sevens = [card("7"), card("7", Suit.SPADES), card("7", Suit.CLUBS)]
        game = make_game([sevens, filler(), filler()], deck_cards=filler(3))
        result = game.play_cards("p1", ids(sevens))
        assert result.pending.kind == DecisionKind.SPIN_BOTTLE

        assert game.resolve_decision("p1", "p2").ok
        assert [p.drank for p in game.players] == [0, 1, 0]
        assert game.current_player().id == "p2"

    def test_sevens_spin_bottle_random(self):
        sevens = [card("7"), card("7", Suit.SPADES), card("7", Suit.CLUBS)]
        game = make_game([sevens, filler(), filler()], deck_cards=filler(3))
        game.play_cards("p1", ids(sevens))

        assert game.resolve_decision("p1").ok
        assert sum(p.drank for p in game.players) == 1
        assert game.messages[0].startswith("Bottle spun -> ")

    def test_queens_sax_section(self):
        queens = [card("Q"), card("Q", Suit.SPADES)]
        game = make_game([queens + filler(1), filler()], deck_cards=filler(3))
        game.play_cards("p1", ids(queens))
        assert "Two or more Queens - Sax section drinks!" in game.messages
        assert [p.drank for p in game.players] == [0, 0]

    def test_nothing_to_resolve(self):
        game = make_game([filler(), filler()])
        assert game.resolve_decision("p1").reason == "Nothing to resolve."


# =============================================================================
# Pick up / clear
# =============================================================================

class TestPickupAndClear:

    def test_pick_up_pile(self):
        pile = [card("9"), card("10")]
        game = make_game([filler(), filler()], pile=pile, compare_rank="10")
        result = game.pick_up_pile("p1")

        assert result.ok
        assert game.pile == []
        assert game.compare_rank is None
        assert len(game.players[0].hand) == 5
        assert game.players[0].drank == 1
        assert game.current_player().id == "p2"
        assert "P1 picked up the pile and drank." in game.messages

    def test_clear_table_keeps_turn(self):
        pile = [card("6"), card("6", Suit.SPADES)]
        game = make_game([filler(), filler()], pile=pile, compare_rank="6")
        assert game.clear_pile("p1").ok

        assert game.pile == []
        assert game.compare_rank is None
        assert game.discard == pile
        assert game.current_player().id == "p1"
        assert game.messages[0] == "Pile cleared (finished drink)."

    def test_clear_not_your_turn(self):
        game = make_game([filler(), filler()], pile=[card("6")])
        assert game.clear_pile("p2").reason == "Not your turn."


# =============================================================================
# Turns and replenishment
# =============================================================================

class TestTurnsAndTopUp:

    def test_refill_from_deck(self):
        four = card("4")
        deck_cards = [card("K", Suit.CLUBS), card("A", Suit.CLUBS)]
        game = make_game([[four], filler()], deck_cards=deck_cards)
        game.pick_up_pile("p1")   # empty pile, p2 to play
        game.pick_up_pile("p2")   # back to p1, who draws up to 3

        assert len(game.players[0].hand) == 3
        assert game.deck.cards_remaining() == 0

    def test_refill_from_biggest_hand(self):
        game = make_game([[card("4")], filler(6), filler(3)])
        game.top_up_to_three()

        assert len(game.players[0].hand) == 3
        assert len(game.players[1].hand) == 4
        assert len(game.players[2].hand) == 3

    def test_donor_must_have_more_than_three(self):
        game = make_game([[card("4")], filler(3), filler(3)])
        game.top_up_to_three()

        assert game.players[0].out
        assert game.winners == ["P1"]
        assert game.current_player().id == "p2"
        assert game.stage == GameStage.PLAYING

    def test_elimination_during_play(self):
        eight = card("8")
        game = make_game([[eight], [card("4")], [card("9"), card("9", Suit.CLUBS), card("9", Suit.SPADES)]])
        game.play_cards("p1", [eight.id])

        assert game.players[1].out
        assert game.winners == ["P2"]
        assert game.current_player().id == "p3"
        assert not game.players[0].out

    def test_last_player_ends_game(self):
        eight = card("8")
        game = make_game([[eight], [card("4")]])
        game.play_cards("p1", [eight.id])

        assert game.stage == GameStage.ENDED
        assert game.winners == ["P2"]
        assert "P1 is the last one left." in game.messages
        assert game.play_cards("p1", []).reason == "Game is not in progress."

    def test_skips_players_who_are_out(self):
        game = make_game([filler(), filler(), filler()], deck_cards=filler(3))
        game.players[1].out = True
        game.pick_up_pile("p1")
        assert game.current_player().id == "p3"

    def test_advance_with_nobody_active_raises(self):
        game = make_game([filler(), filler()])
        for p in game.players:
            p.out = True
        with pytest.raises(GameInvariantError):
            game.advance_turn()

    def test_advance_after_end_is_noop(self):
        game = make_game([filler(), filler()])
        game.stage = GameStage.ENDED
        game.advance_turn()
        assert game.current_player_index == 0


# =============================================================================
# Jokers
# =============================================================================

class TestJokers:

    def test_declare_and_play(self):
        j, nine = joker(), card("9")
        game = make_game([[j, nine, card("3")], filler()], deck_cards=filler(3))
        assert game.set_joker_rank("p1", j.id, "9").ok
        assert game.players[0].hand[0].effective_rank == Rank.NINE

        assert game.play_cards("p1", [j.id, nine.id]).ok
        assert game.compare_rank == Rank.NINE

    def test_joker_as_reset(self):
        j = joker()
        game = make_game([[j] + filler(2), filler()], pile=[card("A")], compare_rank="A",
                         deck_cards=filler(3))
        game.set_joker_rank("p1", j.id, Rank.TWO)
        assert game.play_cards("p1", [j.id]).ok
        assert game.compare_rank == Rank.TWO

    def test_redeclare(self):
        j = joker("5")
        game = make_game([[j] + filler(2), filler()])
        game.set_joker_rank("p1", j.id, "K")
        assert game.players[0].hand[0].declared_rank == Rank.KING

    def test_unknown_rank(self):
        j = joker()
        game = make_game([[j] + filler(2), filler()])
        assert game.set_joker_rank("p1", j.id, "Z").reason == "Unknown rank: Z"

    def test_only_jokers(self):
        five = card("5")
        game = make_game([[five] + filler(2), filler()])
        assert game.set_joker_rank("p1", five.id, "K").reason == "Only jokers can be given a rank."

    def test_not_in_hand(self):
        game = make_game([filler(), [joker()] + filler(2)])
        other_joker = game.players[1].hand[0]
        assert game.set_joker_rank("p1", other_joker.id, "K").reason == "Card is not in your hand."

    def test_playing_undeclared_joker_rejected(self):
        j = joker()
        game = make_game([[j] + filler(2), filler()])
        assert game.play_cards("p1", [j.id]).reason == "Choose a rank for each Joker."


# =============================================================================
# Views
# =============================================================================

class TestGetState:

    def test_own_hand_visible_others_hidden(self):
        game = Game.for_names(["A", "B", "C"], seed=5)
        state = game.get_state("p2")
        players = {p["id"]: p for p in state["players"]}

        assert players["p2"]["hand"] == [c.to_dict() for c in game.players[1].hand]
        assert players["p1"]["hand"] == [{"hidden": True}] * 3
        assert players["p1"]["hand_count"] == 3

    def test_no_viewer_hides_everything(self):
        game = Game.for_names(["A", "B"], seed=5)
        state = game.get_state(None)
        assert all(c == {"hidden": True} for p in state["players"] for c in p["hand"])

    def test_deck_contents_never_sent(self):
        game = Game.for_names(["A", "B"], seed=5)
        state = game.get_state("p1")
        assert "deck" not in state
        assert state["deck_remaining"] == 54 - 6

    def test_state_fields(self):
        kings = [card("K"), card("K", Suit.SPADES)]
        game = make_game([kings + filler(1), filler()], deck_cards=filler(3))
        game.play_cards("p1", ids(kings))
        state = game.get_state("p1")

        assert state["stage"] == "playing"
        assert state["current_player_id"] == "p1"
        assert state["compare_rank"] == "K"
        assert state["top_block"] == {"rank": "K", "count": 2}
        assert state["pending_decision"] == {"kind": "give_sip", "player_id": "p1"}
        assert state["pile"][0]["player_id"] == "p1"

    def test_messages_newest_first(self):
        game = make_game([filler(), filler()], deck_cards=filler(3))
        game.pick_up_pile("p1")
        game.pick_up_pile("p2")
        assert game.get_state("p1")["messages"][:2] == [
            "P2 picked up the pile and drank.",
            "P1 picked up the pile and drank.",
        ]


# =============================================================================
# Conservation
# =============================================================================

class TestConservation:

    def test_cards_conserved_through_turns(self):
        game = Game.for_names(["A", "B", "C"], jokers=3, seed=11)
        assert game.card_count() == game.expected_card_count() == 55

        for _ in range(60):
            if game.stage != GameStage.PLAYING:
                break
            player = game.current_player()
            if len(game.pile_cards()) > 8:
                game.clear_pile(player.id)

            played = any(game.play_cards(player.id, [c.id]).ok for c in list(player.hand))
            if not played:
                game.pick_up_pile(player.id)

            while game.pending:
                decision = game.pending[0]
                others = [p.id for p in game.active_players() if p.id != decision.player_id]
                target = others[0] if decision.kind == DecisionKind.GIVE_SIP else None
                assert game.resolve_decision(decision.player_id, target).ok

            assert game.card_count() == game.expected_card_count()

    def test_failed_action_result(self):
        result = ActionResult.fail("nope")
        assert result.to_dict() == {"ok": False, "reason": "nope", "pending_decision": None}
