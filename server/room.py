"""
Room management for multiplayer Bussfix games.

This module handles room creation, participant management, and WebSocket
communication for networked sessions.

A Room contains:
    - A room code chosen by the creator (or generated)
    - A collection of RoomPlayers with their connectivity
    - At most one Game, the authoritative session for the room
    - Settings such as the joker count

Participants are never removed the moment they drop: they are marked
disconnected and removed only if they are still gone when the grace
timer (scheduled by main.py) fires.
"""

import asyncio
import logging
import random
import string
from dataclasses import dataclass, field
from typing import Optional

from fastapi import WebSocket

from constants import DEFAULT_JOKERS, ROOM_CODE_LENGTH
from game import ActionResult, Game, GameStage, Player

logger = logging.getLogger(__name__)


@dataclass
class RoomPlayer:
    """
    A participant in a game room (lobby-level representation).

    This is separate from game.Player - RoomPlayer tracks room-level info
    like the WebSocket connection and host status, while game.Player tracks
    in-game state like cards and drinks.

    Attributes:
        id: Unique participant identifier (connection id of the first socket).
        name: Display name.
        websocket: Current WebSocket connection (None while disconnected).
        is_host: Whether this participant can start and reset the game.
        connected: False between a drop and either a rejoin or removal.
        cleanup_task: Pending grace-period removal, if any.
    """

    id: str
    name: str
    websocket: Optional[WebSocket] = None
    is_host: bool = False
    connected: bool = True
    cleanup_task: Optional[asyncio.Task] = field(default=None, repr=False, compare=False)

    def cancel_cleanup(self) -> None:
        if self.cleanup_task and not self.cleanup_task.done():
            self.cleanup_task.cancel()
        self.cleanup_task = None


@dataclass
class Room:
    """
    A game room that owns at most one Bussfix session.

    Attributes:
        code: Room code used to join (e.g., "ABCD").
        players: Dict mapping participant IDs to RoomPlayer objects, in join order.
        game: The authoritative Game, or None while in the lobby.
        settings: Room settings (jokers).
        game_lock: asyncio.Lock serializing every mutation of the room's game.
    """

    code: str
    players: dict[str, RoomPlayer] = field(default_factory=dict)
    game: Optional[Game] = None
    settings: dict = field(default_factory=lambda: {"jokers": DEFAULT_JOKERS})
    game_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @property
    def host_id(self) -> Optional[str]:
        for player in self.players.values():
            if player.is_host:
                return player.id
        return None

    def add_player(self, player_id: str, name: str, websocket: Optional[WebSocket]) -> RoomPlayer:
        """
        Add a participant to the room.

        The first participant becomes the host. A participant who is still
        seated (e.g. left and came back inside the grace period) gets the
        same seat back, host role included.

        Args:
            player_id: Unique identifier for the participant (connection_id).
            name: Display name.
            websocket: The participant's WebSocket connection.

        Returns:
            The created or reattached RoomPlayer object.
        """
        existing = self.players.get(player_id)
        if existing is not None:
            existing.name = name
            self.reconnect(player_id, websocket)
            return existing

        room_player = RoomPlayer(
            id=player_id,
            name=name,
            websocket=websocket,
            is_host=len(self.players) == 0,
        )
        self.players[player_id] = room_player
        return room_player

    def remove_player(self, player_id: str) -> Optional[RoomPlayer]:
        """
        Remove a participant from the room.

        Hands the host role to the first remaining participant if the host
        leaves. The participant's seat in a running game is left in place.

        Returns:
            The removed RoomPlayer, or None if not found.
        """
        if player_id not in self.players:
            return None

        room_player = self.players.pop(player_id)
        room_player.cancel_cleanup()

        if room_player.is_host and self.players:
            next_host = next(iter(self.players.values()))
            next_host.is_host = True
            logger.info(f"Host of room {self.code} passed to {next_host.name}")

        return room_player

    def mark_disconnected(self, player_id: str) -> Optional[RoomPlayer]:
        """Flag a participant as dropped without giving up their seat."""
        room_player = self.players.get(player_id)
        if room_player:
            room_player.connected = False
            room_player.websocket = None
        return room_player

    def reconnect(self, player_id: str, websocket: WebSocket) -> Optional[RoomPlayer]:
        """
        Attach a new connection to an existing seat.

        Cancels any pending removal for the seat.

        Returns:
            The RoomPlayer, or None if the seat is gone.
        """
        room_player = self.players.get(player_id)
        if room_player is None:
            return None
        room_player.cancel_cleanup()
        room_player.websocket = websocket
        room_player.connected = True
        return room_player

    def get_player(self, player_id: str) -> Optional[RoomPlayer]:
        """Get a participant by ID, or None if not found."""
        return self.players.get(player_id)

    def is_empty(self) -> bool:
        """Check if the room has no participants."""
        return len(self.players) == 0

    def game_in_progress(self) -> bool:
        return self.game is not None and self.game.stage == GameStage.PLAYING

    # -------------------------------------------------------------------------
    # Session lifecycle
    # -------------------------------------------------------------------------

    def start_game(self, num_jokers: int, seed: Optional[int] = None) -> ActionResult:
        """
        Build a fresh session from the current participants and deal.

        Seats follow join order. The previous session, if any, is discarded
        only when the new one starts successfully.
        """
        if self.game_in_progress():
            return ActionResult.fail("Game already in progress.")

        game = Game(seed=seed)
        for room_player in self.players.values():
            game.add_player(Player(id=room_player.id, name=room_player.name))

        result = game.start_game(num_jokers)
        if result.ok:
            self.game = game
            self.settings["jokers"] = game.jokers
        return result

    def reset_game(self) -> None:
        """Discard the session and return the room to the lobby."""
        self.game = None

    # -------------------------------------------------------------------------
    # Views / messaging
    # -------------------------------------------------------------------------

    def roster(self) -> dict:
        """
        Roster push payload.

        Returns:
            Dict with players keyed by id ({name, connected}) and the host id.
        """
        return {
            "players": {
                p.id: {"name": p.name, "connected": p.connected}
                for p in self.players.values()
            },
            "host_id": self.host_id,
        }

    def player_list(self) -> list[dict]:
        """Participants as a list, in join order, for HTTP listings."""
        return [
            {
                "id": p.id,
                "name": p.name,
                "is_host": p.is_host,
                "connected": p.connected,
            }
            for p in self.players.values()
        ]

    async def broadcast(self, message: dict, exclude: Optional[str] = None) -> None:
        """
        Send a message to all connected participants.

        Args:
            message: JSON-serializable message dict.
            exclude: Optional participant ID to skip.
        """
        for player_id, player in self.players.items():
            if player_id != exclude and player.websocket and player.connected:
                try:
                    await player.websocket.send_json(message)
                except Exception as e:
                    logger.debug(f"Send to {player_id} in room {self.code} failed: {e}")

    async def send_to(self, player_id: str, message: dict) -> None:
        """
        Send a message to a specific participant.

        Args:
            player_id: ID of the recipient.
            message: JSON-serializable message dict.
        """
        player = self.players.get(player_id)
        if player and player.websocket and player.connected:
            try:
                await player.websocket.send_json(message)
            except Exception as e:
                logger.debug(f"Send to {player_id} in room {self.code} failed: {e}")

    async def send_game_state(self, message_type: str = "game_state") -> None:
        """
        Send every connected participant their own filtered view of the game.

        Args:
            message_type: "game_started" for the initial deal, else "game_state".
        """
        if self.game is None:
            return
        for player_id in self.players:
            await self.send_to(player_id, {
                "type": message_type,
                "game_state": self.game.get_state(player_id),
            })


class RoomManager:
    """
    Registry of all active game rooms.

    One RoomManager is created at server start and owned by the transport
    layer; close() tears it down at shutdown.
    """

    def __init__(self) -> None:
        """Initialize an empty room manager."""
        self.rooms: dict[str, Room] = {}

    @staticmethod
    def normalize_code(code: str) -> str:
        return code.strip().upper()

    def _generate_code(self, max_attempts: int = 100) -> str:
        """Generate a unique room code."""
        for _ in range(max_attempts):
            code = "".join(random.choices(string.ascii_uppercase, k=ROOM_CODE_LENGTH))
            if code not in self.rooms:
                return code
        raise RuntimeError("Could not generate unique room code")

    def create_room(self, code: Optional[str] = None) -> Room:
        """
        Create a new room.

        Args:
            code: Requested room code; a unique one is generated if omitted.

        Returns:
            The newly created Room.

        Raises:
            ValueError: If a room with that code already exists.
        """
        code = self.normalize_code(code) if code else self._generate_code()
        if code in self.rooms:
            raise ValueError(f"Room {code} already exists")
        room = Room(code=code)
        self.rooms[code] = room
        logger.info(f"Room {code} created")
        return room

    def get_room(self, code: Optional[str]) -> Optional[Room]:
        """
        Get a room by its code (case-insensitive).

        Returns:
            The Room if found, None otherwise.
        """
        if not code:
            return None
        return self.rooms.get(self.normalize_code(code))

    def remove_room(self, code: str) -> None:
        """Delete a room, cancelling any pending participant cleanups."""
        room = self.rooms.pop(code, None)
        if room is None:
            return
        for player in room.players.values():
            player.cancel_cleanup()
        logger.info(f"Room {code} removed")

    def close(self) -> None:
        """Tear down every room (server shutdown)."""
        for code in list(self.rooms):
            self.remove_room(code)
