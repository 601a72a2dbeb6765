"""FastAPI WebSocket server for the Parlor lobby and Love Letter."""

import logging
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from config import config
from constants import MAX_LOBBY_PLAYERS
from handlers import HANDLERS, ConnectionContext
from logging_config import lobby_code_var, session_id_var, setup_logging
from middleware.request_id import RequestIDMiddleware
from room import Room, RoomManager
from routers.health import router as health_router
from routers.health import set_health_dependencies

# Configure logging based on environment
setup_logging(
    level=config.LOG_LEVEL,
    environment=config.ENVIRONMENT,
)
logger = logging.getLogger(__name__)

room_manager = RoomManager()


async def _close_all_websockets():
    """Close all active WebSocket connections gracefully."""
    for room in list(room_manager.rooms.values()):
        for player in room.players.values():
            if player.websocket:
                try:
                    await player.websocket.close(code=1001, reason="Server shutting down")
                except Exception as e:
                    logger.debug(f"WebSocket for {player.session_id} already closed: {e}")
    logger.info("All WebSocket connections closed")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    set_health_dependencies(room_manager=room_manager)
    logger.info(f"Parlor server started (environment={config.ENVIRONMENT})")

    yield

    logger.info("Shutdown initiated...")
    room_manager.cancel_all_cleanups()
    await _close_all_websockets()
    room_manager.rooms.clear()
    logger.info("Shutdown complete")


app = FastAPI(
    title="Parlor",
    debug=config.DEBUG,
    version="1.0.0",
    lifespan=lifespan,
)


# =============================================================================
# Middleware Setup (order matters: first added = outermost)
# =============================================================================

app.add_middleware(RequestIDMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(health_router)


# =============================================================================
# HTTP API
# =============================================================================

class LobbyPlayerSummary(BaseModel):
    session_id: str
    name: str
    is_owner: bool
    connected: bool


class LobbySummary(BaseModel):
    code: str
    players: list[LobbyPlayerSummary]
    owner_session_id: Optional[str] = None
    game: Optional[str] = None
    game_config: dict = {}
    status: str
    created_at: str


@app.get("/api/lobbies/{code}", response_model=LobbySummary)
async def get_lobby(code: str):
    """Public lobby lookup, used by the client before joining."""
    room = room_manager.get_room(code)
    if not room:
        raise HTTPException(status_code=404, detail="Lobby not found")
    return LobbySummary(**room.summary())


# =============================================================================
# WebSocket
# =============================================================================

@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    await websocket.accept()

    connection_id = str(uuid.uuid4())
    session_id = websocket.query_params.get("session_id") or connection_id
    logger.debug(f"WebSocket connected as {connection_id} (session {session_id})")

    ctx = ConnectionContext(
        websocket=websocket,
        connection_id=connection_id,
        session_id=session_id,
    )

    # Shared dependencies passed to every handler
    handler_deps = dict(
        room_manager=room_manager,
        handle_player_leave=handle_player_leave,
        max_players=MAX_LOBBY_PLAYERS,
    )

    try:
        while True:
            data = await websocket.receive_json()
            if not isinstance(data, dict):
                logger.debug(f"Ignoring non-object message: {type(data).__name__}")
                continue
            session_id_var.set(ctx.session_id)
            lobby_code_var.set(ctx.current_room.code if ctx.current_room else None)

            message_type = data.get("type")
            if message_type == "disconnect":
                await websocket.close()
                break
            handler = HANDLERS.get(message_type)
            if handler:
                await handler(data, ctx, **handler_deps)
            else:
                logger.debug(f"Ignoring unknown message type: {message_type}")
    except WebSocketDisconnect:
        logger.debug(f"WebSocket {connection_id} disconnected")
    finally:
        if ctx.current_room:
            await handle_player_leave(ctx.current_room, ctx.session_id, ctx.connection_id)


async def handle_player_leave(
    room: Room,
    session_id: str,
    connection_id: Optional[str] = None,
    reassign_owner: bool = False,
):
    """Handle a player leaving a lobby (explicitly or by disconnecting)."""
    room_player = room.remove_player(session_id, connection_id, reassign_owner=reassign_owner)
    if room_player is None:
        return

    logger.info(f"{session_id} left lobby {room.code}")
    if room.is_empty():
        room_manager.schedule_cleanup(room.code)
    else:
        await room.broadcast({"type": "lobby_updated", "lobby": room.summary()})


def run():
    """Run the server using uvicorn."""
    import uvicorn

    logger.info(f"Starting Parlor server on {config.HOST}:{config.PORT}")
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
