"""WebSocket message handlers for the Bussfix card game.

Each handler corresponds to a single message type from the client.
Handlers are dispatched via the HANDLERS dict in main.py.

Every rejected action is answered to the acting connection only, with
``{"type": "error", "message": reason}``; nothing is broadcast and the
session is left untouched.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from fastapi import WebSocket

from constants import MAX_PLAYERS
from game import ActionResult, Game
from room import Room

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 32


@dataclass
class ConnectionContext:
    """State tracked per WebSocket connection."""

    websocket: WebSocket
    connection_id: str
    player_id: str
    current_room: Optional[Room] = None


async def send_error(ctx: ConnectionContext, message: str) -> None:
    await ctx.websocket.send_json({"type": "error", "message": message})


def _player_name(data: dict) -> str:
    name = data.get("name")
    if not isinstance(name, str) or not name.strip():
        return "Player"
    return name.strip()[:MAX_NAME_LENGTH]


def _room_code(data: dict) -> Optional[str]:
    code = data.get("room_id")
    if isinstance(code, str) and code.strip():
        return code.strip()
    return None


def _card_ids(data: dict) -> Optional[list[int]]:
    """Card ids from a play payload: a list of ids or of card dicts with "id"."""
    cards = data.get("cards")
    if not isinstance(cards, list):
        return None
    ids = []
    for card in cards:
        card_id = card.get("id") if isinstance(card, dict) else card
        if isinstance(card_id, bool) or not isinstance(card_id, int):
            return None
        ids.append(card_id)
    return ids


async def _require_room(ctx: ConnectionContext, action: str) -> Optional[Room]:
    if ctx.current_room is None:
        logger.warning(f"{action} from {ctx.player_id} outside any room")
        await send_error(ctx, "Not in a room")
        return None
    return ctx.current_room


async def _require_host(ctx: ConnectionContext, room: Room, message: str) -> bool:
    room_player = room.get_player(ctx.player_id)
    if not room_player or not room_player.is_host:
        await send_error(ctx, message)
        return False
    return True


async def _run_game_action(
    ctx: ConnectionContext,
    action: str,
    apply: Callable[[Game], ActionResult],
    broadcast_game_state: Callable[[Room], Any],
) -> None:
    """
    Apply one turn action to the room's authoritative game and rebroadcast.

    Holds the room lock so actions are applied strictly in arrival order.
    """
    room = await _require_room(ctx, action)
    if not room:
        return

    async with room.game_lock:
        if room.game is None:
            logger.warning(f"{action} from {ctx.player_id} in room {room.code} with no game")
            await send_error(ctx, "No game in progress")
            return

        result = apply(room.game)
        if not result.ok:
            logger.info(f"Rejected {action} from {ctx.player_id} in room {room.code}: {result.reason}")
            await send_error(ctx, result.reason)
            return

        logger.debug(f"{action} by {ctx.player_id} in room {room.code}")
        await broadcast_game_state(room)


# ---------------------------------------------------------------------------
# Lobby / Room handlers
# ---------------------------------------------------------------------------

async def handle_create(data: dict, ctx: ConnectionContext, *, room_manager, **kw) -> None:
    if ctx.current_room:
        await send_error(ctx, "Leave your current room first")
        return

    room_code = _room_code(data)
    if room_code and room_manager.get_room(room_code):
        await send_error(ctx, "Room already exists.")
        return

    room = room_manager.create_room(room_code)
    room.add_player(ctx.player_id, _player_name(data), ctx.websocket)
    ctx.current_room = room

    await ctx.websocket.send_json({
        "type": "room_created",
        "ok": True,
        "room_id": room.code,
        "player_id": ctx.player_id,
        "host_id": room.host_id,
    })
    await room.broadcast({"type": "players", **room.roster()})


async def handle_join(data: dict, ctx: ConnectionContext, *, room_manager, **kw) -> None:
    if ctx.current_room:
        await send_error(ctx, "Leave your current room first")
        return

    room = room_manager.get_room(_room_code(data))
    if not room:
        await send_error(ctx, "Room does not exist.")
        return

    if room.game_in_progress():
        await send_error(ctx, "Game already started.")
        return

    if ctx.player_id not in room.players and len(room.players) >= MAX_PLAYERS:
        await send_error(ctx, "Room is full.")
        return

    room.add_player(ctx.player_id, _player_name(data), ctx.websocket)
    ctx.current_room = room
    logger.info(f"{ctx.player_id} joined room {room.code}")

    await ctx.websocket.send_json({
        "type": "room_joined",
        "ok": True,
        "room_id": room.code,
        "player_id": ctx.player_id,
        "host_id": room.host_id,
    })
    await room.broadcast({"type": "players", **room.roster()})


async def handle_rejoin(data: dict, ctx: ConnectionContext, *, room_manager, **kw) -> None:
    """Take back a seat left by a dropped connection during its grace period."""
    if ctx.current_room:
        await send_error(ctx, "Leave your current room first")
        return

    room = room_manager.get_room(_room_code(data))
    player_id = data.get("player_id")
    room_player = room.get_player(player_id) if room and isinstance(player_id, str) else None
    if not room_player:
        await send_error(ctx, "Seat not found.")
        return

    if room_player.connected:
        await send_error(ctx, "Seat is already connected.")
        return

    room.reconnect(player_id, ctx.websocket)
    ctx.player_id = player_id
    ctx.current_room = room
    logger.info(f"Connection {ctx.connection_id} resumed seat {player_id} in room {room.code}")

    await ctx.websocket.send_json({
        "type": "rejoined",
        "ok": True,
        "room_id": room.code,
        "player_id": player_id,
        "host_id": room.host_id,
    })
    await room.broadcast({"type": "players", **room.roster()})
    if room.game:
        await room.send_to(player_id, {
            "type": "game_state",
            "game_state": room.game.get_state(player_id),
        })


# ---------------------------------------------------------------------------
# Game lifecycle handlers
# ---------------------------------------------------------------------------

async def handle_start(data: dict, ctx: ConnectionContext, **kw) -> None:
    room = await _require_room(ctx, "start")
    if not room:
        return

    if not await _require_host(ctx, room, "Only the host can start the game."):
        return

    jokers = data.get("jokers", room.settings["jokers"])
    if isinstance(jokers, bool) or not isinstance(jokers, int):
        await send_error(ctx, "Invalid joker count.")
        return

    async with room.game_lock:
        result = room.start_game(jokers)
        if not result.ok:
            await send_error(ctx, result.reason)
            return

        logger.info(
            f"Game started in room {room.code} with {len(room.game.players)} players "
            f"and {room.game.jokers} jokers"
        )
        await room.send_game_state("game_started")


async def handle_reset(data: dict, ctx: ConnectionContext, **kw) -> None:
    room = await _require_room(ctx, "reset")
    if not room:
        return

    if not await _require_host(ctx, room, "Only the host can reset the game."):
        return

    async with room.game_lock:
        room.reset_game()
        logger.info(f"Room {room.code} reset to lobby")
        await room.broadcast({"type": "game_reset"})
        await room.broadcast({"type": "players", **room.roster()})


async def handle_get_state(data: dict, ctx: ConnectionContext, **kw) -> None:
    room = await _require_room(ctx, "get_state")
    if not room:
        return

    if room.game is None:
        await send_error(ctx, "No game in progress")
        return

    await ctx.websocket.send_json({
        "type": "game_state",
        "game_state": room.game.get_state(ctx.player_id),
    })


# ---------------------------------------------------------------------------
# Turn action handlers
# ---------------------------------------------------------------------------

async def handle_play(data: dict, ctx: ConnectionContext, *, broadcast_game_state, **kw) -> None:
    card_ids = _card_ids(data)
    if card_ids is None:
        await send_error(ctx, "Invalid card list.")
        return

    await _run_game_action(
        ctx, "play",
        lambda game: game.play_cards(ctx.player_id, card_ids),
        broadcast_game_state,
    )


async def handle_pickup(data: dict, ctx: ConnectionContext, *, broadcast_game_state, **kw) -> None:
    await _run_game_action(
        ctx, "pickup",
        lambda game: game.pick_up_pile(ctx.player_id),
        broadcast_game_state,
    )


async def handle_clear_table(data: dict, ctx: ConnectionContext, *, broadcast_game_state, **kw) -> None:
    await _run_game_action(
        ctx, "clear_table",
        lambda game: game.clear_pile(ctx.player_id),
        broadcast_game_state,
    )


async def handle_set_joker_rank(data: dict, ctx: ConnectionContext, *, broadcast_game_state, **kw) -> None:
    card_id = data.get("card_id")
    rank = data.get("rank")
    if isinstance(card_id, bool) or not isinstance(card_id, int) or not isinstance(rank, str):
        await send_error(ctx, "Invalid joker declaration.")
        return

    await _run_game_action(
        ctx, "set_joker_rank",
        lambda game: game.set_joker_rank(ctx.player_id, card_id, rank),
        broadcast_game_state,
    )


async def handle_resolve_decision(data: dict, ctx: ConnectionContext, *, broadcast_game_state, **kw) -> None:
    target_id = data.get("target_id")
    if target_id is not None and not isinstance(target_id, str):
        await send_error(ctx, "Invalid target.")
        return

    await _run_game_action(
        ctx, "resolve_decision",
        lambda game: game.resolve_decision(ctx.player_id, target_id),
        broadcast_game_state,
    )


# ---------------------------------------------------------------------------
# Leave handler
# ---------------------------------------------------------------------------

async def handle_leave(data: dict, ctx: ConnectionContext, *, room_manager, handle_player_leave, **kw) -> None:
    if ctx.current_room:
        await handle_player_leave(ctx.current_room, ctx.player_id, room_manager)
        ctx.current_room = None


# ---------------------------------------------------------------------------
# Handler dispatch table
# ---------------------------------------------------------------------------

HANDLERS = {
    "create": handle_create,
    "join": handle_join,
    "rejoin": handle_rejoin,
    "start": handle_start,
    "reset": handle_reset,
    "get_state": handle_get_state,
    "play": handle_play,
    "pickup": handle_pickup,
    "clear_table": handle_clear_table,
    "set_joker_rank": handle_set_joker_rank,
    "resolve_decision": handle_resolve_decision,
    "leave": handle_leave,
}
