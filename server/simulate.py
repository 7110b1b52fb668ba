"""
Bussfix Local Simulation Runner

Runs bot-vs-bot games directly against the rules engine, the same way the
local pass-and-play UI drives it. No server/websocket needed.

Usage:
    python simulate.py [num_games] [num_players] [jokers]
    python simulate.py detail [num_players]

Examples:
    python simulate.py 10          # Run 10 games with 4 players each
    python simulate.py 50 2 5      # Run 50 two-player games with 5 jokers
    python simulate.py detail 3    # Play one 3-player game and print the log
"""

import logging
import random
import sys
from typing import Optional

from constants import DEFAULT_JOKERS, WATERFALL_SIXES_COUNT
from game import DecisionKind, Game, GameStage, Player, Rank

logger = logging.getLogger(__name__)

MAX_TURNS = 5000
BOT_NAMES = ["Alva", "Bosse", "Cissi", "Dante", "Elsa", "Frans"]


class SimulationStats:
    """Track simulation statistics."""

    def __init__(self):
        self.games_played = 0
        self.games_capped = 0
        self.total_turns = 0
        self.pickups = 0
        self.clears = 0
        self.finish_positions: dict[str, list[int]] = {}
        self.drinks: dict[str, list[int]] = {}

    def record_game(self, game: Game, turns: int):
        self.games_played += 1
        self.total_turns += turns
        if game.stage != GameStage.ENDED:
            self.games_capped += 1

        for place, name in enumerate(game.winners, start=1):
            self.finish_positions.setdefault(name, []).append(place)
        for player in game.players:
            self.drinks.setdefault(player.name, []).append(player.drank)

    def report(self) -> str:
        lines = [
            "=" * 50,
            "SIMULATION RESULTS",
            "=" * 50,
            f"Games played: {self.games_played}",
            f"Games stopped at turn cap: {self.games_capped}",
            f"Total turns: {self.total_turns}",
            f"Avg turns/game: {self.total_turns / max(1, self.games_played):.1f}",
            f"Pickups: {self.pickups}",
            f"Table clears: {self.clears}",
            "",
            "FIRST PLACES:",
        ]

        firsts = {
            name: places.count(1) for name, places in self.finish_positions.items()
        }
        for name, wins in sorted(firsts.items(), key=lambda x: -x[1]):
            lines.append(f"  {name}: {wins}")

        lines.append("")
        lines.append("AVERAGE SIPS:")
        for name, sips in sorted(self.drinks.items()):
            lines.append(f"  {name}: {sum(sips) / len(sips):.1f}")

        return "\n".join(lines)


def choose_play(game: Game, player: Player) -> Optional[list[int]]:
    """
    Pick the cheapest legal play: the lowest rank first, all cards of it.

    Falls back to a 69 when it is the only way to avoid picking up.

    Returns:
        Card ids to play, or None if nothing in hand is legal.
    """
    by_rank: dict[Rank, list[int]] = {}
    for card in player.hand:
        if card.effective_rank is not None:
            by_rank.setdefault(card.effective_rank, []).append(card.id)

    for rank in Rank:
        ids = by_rank.get(rank)
        if not ids:
            continue
        cards, _ = game.select_cards(player.id, ids)
        if game.validate_play(cards).ok:
            return ids

    sixes, nines = by_rank.get(Rank.SIX), by_rank.get(Rank.NINE)
    if sixes and nines:
        return [sixes[0], nines[0]]
    return None


def resolve_pending(game: Game, player: Player, rng: random.Random) -> None:
    """Answer every pending decision the way a table of bots would."""
    while game.pending and game.stage == GameStage.PLAYING:
        decision = game.pending[0]
        if decision.kind == DecisionKind.GIVE_SIP:
            others = [p for p in game.active_players() if p is not player]
            game.resolve_decision(player.id, rng.choice(others).id)
        else:
            game.resolve_decision(player.id)


def play_turn(game: Game, stats: SimulationStats, rng: random.Random) -> None:
    """Play one bot turn for the current player."""
    player = game.current_player()

    # Bots use every joker as a 2
    for card in list(player.hand):
        if card.is_joker and card.effective_rank is None:
            game.set_joker_rank(player.id, card.id, Rank.TWO)

    rank, count = game.top_block()
    if rank == Rank.SIX and count >= WATERFALL_SIXES_COUNT:
        game.clear_pile(player.id)
        stats.clears += 1

    ids = choose_play(game, player)
    if ids is None:
        game.pick_up_pile(player.id)
        stats.pickups += 1
    else:
        result = game.play_cards(player.id, ids)
        if not result.ok:
            raise RuntimeError(f"Bot chose an illegal play: {result.reason}")
        resolve_pending(game, player, rng)

    if game.card_count() != game.expected_card_count():
        raise RuntimeError(
            f"Card count drifted: {game.card_count()} != {game.expected_card_count()}"
        )


def run_game(
    num_players: int = 4,
    jokers: int = DEFAULT_JOKERS,
    seed: Optional[int] = None,
    stats: Optional[SimulationStats] = None,
    max_turns: int = MAX_TURNS,
) -> tuple[Game, int]:
    """
    Play one full bot game.

    Returns:
        (finished game, number of turns played)
    """
    stats = stats or SimulationStats()
    game = Game.for_names(BOT_NAMES[:num_players], jokers=jokers, seed=seed)
    rng = random.Random(game.seed)

    turns = 0
    while game.stage == GameStage.PLAYING and turns < max_turns:
        play_turn(game, stats, rng)
        turns += 1

    if game.stage == GameStage.PLAYING:
        logger.warning(f"Game with seed {game.seed} stopped after {turns} turns")

    stats.record_game(game, turns)
    return game, turns


def run_simulation(num_games: int = 10, num_players: int = 4, jokers: int = DEFAULT_JOKERS):
    stats = SimulationStats()
    for i in range(num_games):
        game, turns = run_game(num_players, jokers, stats=stats)
        print(f"Game {i + 1}/{num_games}: {turns} turns, winners: {', '.join(game.winners)}")
    print()
    print(stats.report())


def run_detailed_game(num_players: int = 4):
    game, turns = run_game(num_players)
    for message in reversed(game.messages):
        print(message)
    print()
    print(f"Finished in {turns} turns. Order: {', '.join(game.winners)}")
    for player in game.players:
        print(f"  {player.name}: {player.drank} sips")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    if len(sys.argv) > 1 and sys.argv[1] == "detail":
        num_players = int(sys.argv[2]) if len(sys.argv) > 2 else 4
        run_detailed_game(num_players)
    else:
        num_games = int(sys.argv[1]) if len(sys.argv) > 1 else 10
        num_players = int(sys.argv[2]) if len(sys.argv) > 2 else 4
        jokers = int(sys.argv[3]) if len(sys.argv) > 3 else DEFAULT_JOKERS
        run_simulation(num_games, num_players, jokers)
