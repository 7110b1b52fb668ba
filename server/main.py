"""FastAPI WebSocket server for the Bussfix card game."""

import asyncio
import json
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect

from config import config
from constants import DISCONNECT_GRACE_SECONDS
from game import GameInvariantError, GameStage
from handlers import HANDLERS, ConnectionContext, send_error
from logging_config import player_id_var, room_id_var, setup_logging
from middleware.request_id import RequestIDMiddleware
from room import Room, RoomManager
from routers.health import router as health_router, set_health_dependencies

# Configure logging based on environment
setup_logging(
    level=config.LOG_LEVEL,
    environment=config.ENVIRONMENT,
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: the room registry lives exactly as long as the server."""
    room_manager = RoomManager()
    app.state.room_manager = room_manager
    set_health_dependencies(room_manager=room_manager)
    logger.info(f"Bussfix server started (environment={config.ENVIRONMENT})")

    yield

    logger.info("Shutdown initiated...")
    await _close_all_websockets(room_manager)
    room_manager.close()
    set_health_dependencies(room_manager=None)
    app.state.room_manager = None
    logger.info("Shutdown complete")


async def _close_all_websockets(room_manager: RoomManager):
    """Close all active WebSocket connections gracefully."""
    for room in list(room_manager.rooms.values()):
        for player in room.players.values():
            if player.websocket and player.connected:
                try:
                    await player.websocket.close(code=1001, reason="Server shutting down")
                except Exception as e:
                    logger.debug(f"Closing websocket for {player.id} failed: {e}")
    logger.info("All WebSocket connections closed")


app = FastAPI(
    title="Bussfix Card Game",
    debug=config.DEBUG,
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(RequestIDMiddleware)
app.include_router(health_router)


@app.get("/")
async def root():
    return {"status": "ok", "message": "Bussfix server is running."}


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await websocket.accept()

    connection_id = str(uuid.uuid4())
    logger.debug(f"WebSocket connected as {connection_id}")

    ctx = ConnectionContext(
        websocket=websocket,
        connection_id=connection_id,
        player_id=connection_id,
    )

    room_manager: RoomManager = websocket.app.state.room_manager

    # Shared dependencies passed to every handler
    handler_deps = dict(
        room_manager=room_manager,
        broadcast_game_state=broadcast_game_state,
        handle_player_leave=handle_player_leave,
    )

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                data = json.loads(raw)
            except ValueError:
                await send_error(ctx, "Invalid JSON")
                continue
            if not isinstance(data, dict):
                await send_error(ctx, "Invalid message")
                continue

            handler = HANDLERS.get(data.get("type"))
            if not handler:
                logger.warning(f"Unknown message type from {ctx.player_id}: {data.get('type')!r}")
                await send_error(ctx, "Unknown message type")
                continue

            player_id_var.set(ctx.player_id)
            room_id_var.set(ctx.current_room.code if ctx.current_room else None)
            await handler(data, ctx, **handler_deps)
    except WebSocketDisconnect:
        if ctx.current_room:
            await handle_player_leave(ctx.current_room, ctx.player_id, room_manager)
    except GameInvariantError:
        logger.exception(f"Invariant violated while serving {ctx.player_id}")
        if ctx.current_room:
            await handle_player_leave(ctx.current_room, ctx.player_id, room_manager)
        raise


async def broadcast_game_state(room: Room):
    """Send each participant their filtered game state, plus a game_over notice at the end."""
    await room.send_game_state()

    if room.game and room.game.stage == GameStage.ENDED:
        logger.info(f"Game in room {room.code} ended; winners: {room.game.winners}")
        await room.broadcast({
            "type": "game_over",
            "winners": list(room.game.winners),
        })


async def handle_player_leave(
    room: Room,
    player_id: str,
    room_manager: RoomManager,
    grace_seconds: Optional[float] = None,
):
    """
    Handle a participant leaving or dropping.

    The seat is kept and flagged disconnected; it is removed only if nobody
    has rejoined it when the grace period runs out.
    """
    room_player = room.mark_disconnected(player_id)
    if room_player is None:
        return

    logger.info(f"{player_id} disconnected from room {room.code}")
    await room.broadcast({"type": "players", **room.roster()})

    delay = DISCONNECT_GRACE_SECONDS if grace_seconds is None else grace_seconds
    room_player.cancel_cleanup()
    room_player.cleanup_task = asyncio.create_task(
        remove_after_grace(room, player_id, room_manager, delay)
    )


async def remove_after_grace(room: Room, player_id: str, room_manager: RoomManager, delay: float):
    """Remove a still-disconnected participant; destroy the room once it is empty."""
    await asyncio.sleep(delay)

    room_player = room.get_player(player_id)
    if room_player is None or room_player.connected:
        return

    # This task is the pending cleanup; detach it so removal does not cancel itself
    room_player.cleanup_task = None
    room.remove_player(player_id)
    logger.info(f"{player_id} removed from room {room.code} after grace period")

    if room.is_empty():
        if room_manager.rooms.get(room.code) is room:
            room_manager.remove_room(room.code)
    else:
        await room.broadcast({"type": "players", **room.roster()})


def run():
    """Run the server using uvicorn."""
    import uvicorn

    logger.info(f"Starting Bussfix server on {config.HOST}:{config.PORT}")
    logger.info(f"Debug mode: {config.DEBUG}")

    uvicorn.run(
        "main:app",
        host=config.HOST,
        port=config.PORT,
        reload=config.DEBUG,
        log_level=config.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
