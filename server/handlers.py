"""WebSocket message handlers for the Parlor lobby server.

Each handler corresponds to a single message type from the client.
Handlers are dispatched via the HANDLERS dict in main.py.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import WebSocket

from logging_config import get_logger
from room import LobbyError, LobbyStatus, Room

logger = get_logger(__name__)

MAX_NAME_LENGTH = 32


@dataclass
class ConnectionContext:
    """State tracked per WebSocket connection."""

    websocket: WebSocket
    connection_id: str
    session_id: str
    current_room: Optional[Room] = None


async def send_error(ctx: ConnectionContext, message: str, reason: Optional[str] = None) -> None:
    payload = {"type": "error", "message": message}
    if reason:
        payload["reason"] = reason
    await ctx.websocket.send_json(payload)


async def _require_owner(ctx: ConnectionContext, action: str) -> bool:
    """Check the connection belongs to the lobby owner, replying with an error if not."""
    room = ctx.current_room
    if not room.get_player(ctx.session_id):
        await send_error(ctx, "Not in lobby")
        return False
    if not room.is_owner(ctx.session_id):
        await send_error(ctx, f"Only the lobby owner can {action}")
        return False
    return True


async def _switch_room(ctx: ConnectionContext, room: Room, handle_player_leave) -> None:
    """Leave the previous lobby (if any) before attaching to a new one."""
    if ctx.current_room and ctx.current_room is not room:
        await handle_player_leave(ctx.current_room, ctx.session_id, ctx.connection_id)
    ctx.current_room = room


# ---------------------------------------------------------------------------
# Lobby handlers
# ---------------------------------------------------------------------------

async def handle_create_lobby(data: dict, ctx: ConnectionContext, *, room_manager, handle_player_leave, **kw) -> None:
    ctx.session_id = data.get("session_id") or ctx.session_id

    room = room_manager.create_room()
    session = room_manager.get_session(ctx.session_id)
    if not session.name:
        session.name = "Player 1"
    room.add_player(ctx.session_id, session.name, ctx.websocket, ctx.connection_id)
    await _switch_room(ctx, room, handle_player_leave)

    await ctx.websocket.send_json({
        "type": "lobby_created",
        "lobby": room.summary(),
        "session_id": ctx.session_id,
    })


async def handle_join_lobby(data: dict, ctx: ConnectionContext, *, room_manager, handle_player_leave, max_players, **kw) -> None:
    lobby_code = (data.get("lobby_code") or "").upper()
    ctx.session_id = data.get("session_id") or ctx.session_id

    room = room_manager.get_room(lobby_code)
    if not room:
        logger.debug(f"Lobby {lobby_code} not found for {ctx.session_id}")
        await send_error(ctx, "Lobby not found")
        return

    if not room.get_player(ctx.session_id):
        if len(room.players) >= max_players:
            await send_error(ctx, "Lobby is full")
            return
        session = room_manager.get_session(ctx.session_id)
        if not session.name:
            session.name = f"Player {len(room.players) + 1}"
        room.add_player(ctx.session_id, session.name, ctx.websocket, ctx.connection_id)
        logger.with_context(lobby_code=room.code, session_id=ctx.session_id).info(
            f"Joined lobby as {session.name}"
        )
    else:
        # Returning session (reconnect / second tab): attach the new connection
        room.add_player(ctx.session_id, "", ctx.websocket, ctx.connection_id)

    room_manager.cancel_cleanup(room.code)
    await _switch_room(ctx, room, handle_player_leave)

    if room.status == LobbyStatus.PLAYING and room.game:
        await ctx.websocket.send_json({
            "type": "game_started",
            "game": room.game_name,
            "game_state": room.game.get_state(ctx.session_id),
        })
    await room.broadcast({"type": "lobby_updated", "lobby": room.summary()})


async def handle_change_name(data: dict, ctx: ConnectionContext, *, room_manager, **kw) -> None:
    if not ctx.current_room:
        return

    new_name = str(data.get("new_name") or "").strip()[:MAX_NAME_LENGTH]
    if not new_name:
        await send_error(ctx, "Name cannot be empty")
        return

    try:
        ctx.current_room.rename(ctx.session_id, new_name)
    except LobbyError as e:
        await send_error(ctx, str(e))
        return

    room_manager.get_session(ctx.session_id).name = new_name
    logger.debug(f"{ctx.session_id} renamed to {new_name}")
    await ctx.current_room.broadcast({"type": "lobby_updated", "lobby": ctx.current_room.summary()})


async def handle_select_game(data: dict, ctx: ConnectionContext, **kw) -> None:
    if not ctx.current_room:
        return
    if not await _require_owner(ctx, "select the game"):
        return

    try:
        ctx.current_room.select_game(data.get("game"), data.get("config"))
    except LobbyError as e:
        await send_error(ctx, str(e))
        return

    await ctx.current_room.broadcast({"type": "lobby_updated", "lobby": ctx.current_room.summary()})


# ---------------------------------------------------------------------------
# Game lifecycle handlers
# ---------------------------------------------------------------------------

async def _deal_new_game(ctx: ConnectionContext, action: str) -> None:
    if not ctx.current_room:
        return
    if not await _require_owner(ctx, action):
        return

    room = ctx.current_room
    async with room.game_lock:
        try:
            room.start_game()
        except LobbyError as e:
            await send_error(ctx, str(e))
            return
        await room.send_game_states("game_started")


async def handle_start_game(data: dict, ctx: ConnectionContext, **kw) -> None:
    await _deal_new_game(ctx, "start the game")


async def handle_play_again(data: dict, ctx: ConnectionContext, **kw) -> None:
    await _deal_new_game(ctx, "play again")


async def handle_back_to_lobby(data: dict, ctx: ConnectionContext, **kw) -> None:
    if not ctx.current_room:
        return
    if not await _require_owner(ctx, "return to lobby"):
        return

    async with ctx.current_room.game_lock:
        ctx.current_room.back_to_lobby()
    await ctx.current_room.broadcast({"type": "lobby_updated", "lobby": ctx.current_room.summary()})


async def handle_reset_game(data: dict, ctx: ConnectionContext, **kw) -> None:
    room = ctx.current_room
    if not room:
        return

    async with room.game_lock:
        # back_to_lobby may have dropped the game while we waited for the lock
        if room.game is None:
            await send_error(ctx, "No active game")
            return
        room.game.reset()
        room.status = LobbyStatus.PLAYING
        logger.with_context(lobby_code=room.code).info("Game reset")
        await room.send_game_states("game_reset")


# ---------------------------------------------------------------------------
# Turn action handler
# ---------------------------------------------------------------------------

async def handle_make_move(data: dict, ctx: ConnectionContext, **kw) -> None:
    room = ctx.current_room
    if not room:
        await send_error(ctx, "No active game")
        return

    async with room.game_lock:
        # Checked under the lock: back_to_lobby may run while a move is queued
        if room.status != LobbyStatus.PLAYING or room.game is None:
            await send_error(ctx, "No active game")
            return

        result = room.game.make_move(ctx.session_id, data)

        if not result.valid:
            await send_error(ctx, result.error, result.reason.value)
            return

        await room.send_game_states("move_made", game_over=result.game_over)

        # Private info only for the acting player (e.g., Priest reveal)
        if result.private_reveal:
            info = dict(result.private_reveal)
            await room.send_to(ctx.session_id, {"type": "private_info", "kind": info.pop("type"), **info})

    logger.debug(f"Move made in lobby {room.code} by {ctx.session_id}: {result.effect}")


# ---------------------------------------------------------------------------
# Leave handler
# ---------------------------------------------------------------------------

async def handle_leave_lobby(data: dict, ctx: ConnectionContext, *, handle_player_leave, **kw) -> None:
    if ctx.current_room:
        await handle_player_leave(ctx.current_room, ctx.session_id, ctx.connection_id, reassign_owner=True)
        ctx.current_room = None


# ---------------------------------------------------------------------------
# Handler dispatch table
# ---------------------------------------------------------------------------

HANDLERS = {
    "create_lobby": handle_create_lobby,
    "join_lobby": handle_join_lobby,
    "change_name": handle_change_name,
    "select_game": handle_select_game,
    "start_game": handle_start_game,
    "play_again": handle_play_again,
    "back_to_lobby": handle_back_to_lobby,
    "reset_game": handle_reset_game,
    "make_move": handle_make_move,
    "leave_lobby": handle_leave_lobby,
}
