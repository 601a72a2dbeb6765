"""
Test suite for WebSocket message handlers.

Tests lobby and game handler flows using a mock WebSocket and a real
RoomManager.

Run with: pytest test_handlers.py -v
"""

import asyncio
import pytest
from unittest.mock import AsyncMock

from constants import LOVE_LETTER, CardType
from handlers import (
    HANDLERS,
    ConnectionContext,
    handle_back_to_lobby,
    handle_change_name,
    handle_create_lobby,
    handle_join_lobby,
    handle_leave_lobby,
    handle_make_move,
    handle_play_again,
    handle_reset_game,
    handle_select_game,
    handle_start_game,
)
from room import LobbyStatus, RoomManager


# =============================================================================
# Mock helpers
# =============================================================================

class MockWebSocket:
    """Mock WebSocket that collects sent messages."""

    def __init__(self):
        self.messages: list[dict] = []

    async def send_json(self, data: dict):
        self.messages.append(data)

    def last_message(self) -> dict:
        return self.messages[-1] if self.messages else {}

    def messages_of_type(self, msg_type: str) -> list[dict]:
        return [m for m in self.messages if m.get("type") == msg_type]


def make_ctx(session_id="s0", room=None):
    """Create a ConnectionContext with sensible defaults."""
    return ConnectionContext(
        websocket=MockWebSocket(),
        connection_id=f"conn_{session_id}",
        session_id=session_id,
        current_room=room,
    )


def make_deps(room_manager=None, max_players=4):
    """Shared handler dependencies, as main.py passes them."""
    return dict(
        room_manager=room_manager or RoomManager(),
        handle_player_leave=AsyncMock(),
        max_players=max_players,
    )


async def make_lobby(num_players=2, deps=None):
    """Create a lobby through the handlers and return (deps, room, contexts)."""
    deps = deps or make_deps()
    owner = make_ctx("s0")
    await handle_create_lobby({}, owner, **deps)
    contexts = [owner]
    for i in range(1, num_players):
        ctx = make_ctx(f"s{i}")
        await handle_join_lobby({"lobby_code": owner.current_room.code}, ctx, **deps)
        contexts.append(ctx)
    return deps, owner.current_room, contexts


async def make_running_game(num_players=2, seed=1):
    deps, room, contexts = await make_lobby(num_players)
    room.select_game(LOVE_LETTER)
    room.start_game(seed=seed)
    return deps, room, contexts


# =============================================================================
# Lobby handlers
# =============================================================================

class TestHandleCreateLobby:

    @pytest.mark.asyncio
    async def test_creates_lobby(self):
        deps = make_deps()
        ctx = make_ctx()
        await handle_create_lobby({}, ctx, **deps)

        assert ctx.current_room is not None
        assert len(deps["room_manager"].rooms) == 1
        message = ctx.websocket.last_message()
        assert message["type"] == "lobby_created"
        assert message["lobby"]["owner_session_id"] == "s0"
        assert message["session_id"] == "s0"

    @pytest.mark.asyncio
    async def test_uses_session_id_from_message(self):
        deps = make_deps()
        ctx = make_ctx()
        await handle_create_lobby({"session_id": "browser-1"}, ctx, **deps)
        assert ctx.session_id == "browser-1"
        assert ctx.current_room.is_owner("browser-1")

    @pytest.mark.asyncio
    async def test_remembered_name_is_used(self):
        deps = make_deps()
        deps["room_manager"].get_session("s0").name = "Alice"
        ctx = make_ctx()
        await handle_create_lobby({}, ctx, **deps)
        assert ctx.current_room.get_player("s0").name == "Alice"

    @pytest.mark.asyncio
    async def test_creating_second_lobby_leaves_first(self):
        deps = make_deps()
        ctx = make_ctx()
        await handle_create_lobby({}, ctx, **deps)
        first = ctx.current_room
        await handle_create_lobby({}, ctx, **deps)

        deps["handle_player_leave"].assert_awaited_once_with(first, "s0", "conn_s0")
        assert ctx.current_room is not first


class TestHandleJoinLobby:

    @pytest.mark.asyncio
    async def test_join_broadcasts_lobby(self):
        deps, room, contexts = await make_lobby(2)
        assert len(room.players) == 2
        for ctx in contexts:
            updates = ctx.websocket.messages_of_type("lobby_updated")
            assert updates[-1]["lobby"]["code"] == room.code
            assert len(updates[-1]["lobby"]["players"]) == 2

    @pytest.mark.asyncio
    async def test_default_names(self):
        _, room, _ = await make_lobby(3)
        assert [p["name"] for p in room.player_list()] == ["Player 1", "Player 2", "Player 3"]

    @pytest.mark.asyncio
    async def test_code_is_case_insensitive(self):
        deps, room, _ = await make_lobby(1)
        ctx = make_ctx("s9")
        await handle_join_lobby({"lobby_code": room.code.lower()}, ctx, **deps)
        assert ctx.current_room is room

    @pytest.mark.asyncio
    async def test_join_nonexistent(self):
        ctx = make_ctx("s1")
        await handle_join_lobby({"lobby_code": "ZZZZ"}, ctx, **make_deps())
        assert ctx.current_room is None
        assert ctx.websocket.last_message() == {"type": "error", "message": "Lobby not found"}

    @pytest.mark.asyncio
    async def test_join_full_lobby(self):
        deps = make_deps(max_players=2)
        _, room, _ = await make_lobby(2, deps)
        ctx = make_ctx("s9")
        await handle_join_lobby({"lobby_code": room.code}, ctx, **deps)
        assert ctx.current_room is None
        assert ctx.websocket.last_message()["message"] == "Lobby is full"

    @pytest.mark.asyncio
    async def test_rejoin_same_session_does_not_duplicate(self):
        deps, room, _ = await make_lobby(2)
        ctx = make_ctx("s1")
        ctx.connection_id = "second-tab"
        await handle_join_lobby({"lobby_code": room.code}, ctx, **deps)
        assert len(room.players) == 2
        assert room.get_player("s1").connection_id == "second-tab"

    @pytest.mark.asyncio
    async def test_join_cancels_pending_cleanup(self):
        deps, room, _ = await make_lobby(1)
        rm = deps["room_manager"]
        room.remove_player("s0")
        rm.schedule_cleanup(room.code, delay=60)

        ctx = make_ctx("s5")
        await handle_join_lobby({"lobby_code": room.code}, ctx, **deps)
        assert not rm.has_pending_cleanup(room.code)

    @pytest.mark.asyncio
    async def test_join_running_game_sends_state(self):
        deps, room, contexts = await make_running_game(2)
        ctx = make_ctx("s1")
        await handle_join_lobby({"lobby_code": room.code}, ctx, **deps)
        started = ctx.websocket.messages_of_type("game_started")
        assert started
        hands = {p["session_id"]: p["hand"] for p in started[0]["game_state"]["players"]}
        assert hands["s1"]
        assert hands["s0"] == []


class TestHandleChangeName:

    @pytest.mark.asyncio
    async def test_rename_broadcasts_and_is_remembered(self):
        deps, room, contexts = await make_lobby(2)
        await handle_change_name({"new_name": "  Bob  "}, contexts[1], **deps)

        assert room.get_player("s1").name == "Bob"
        assert deps["room_manager"].get_session("s1").name == "Bob"
        assert contexts[0].websocket.last_message()["type"] == "lobby_updated"

    @pytest.mark.asyncio
    async def test_empty_name_rejected(self):
        deps, room, contexts = await make_lobby(2)
        await handle_change_name({"new_name": "   "}, contexts[1], **deps)
        assert contexts[1].websocket.last_message()["type"] == "error"
        assert room.get_player("s1").name == "Player 2"


class TestHandleSelectGame:

    @pytest.mark.asyncio
    async def test_owner_selects(self):
        deps, room, contexts = await make_lobby(2)
        await handle_select_game({"game": LOVE_LETTER}, contexts[0], **deps)
        assert room.game_name == LOVE_LETTER
        assert contexts[1].websocket.last_message()["lobby"]["game"] == LOVE_LETTER

    @pytest.mark.asyncio
    async def test_non_owner_rejected(self):
        deps, room, contexts = await make_lobby(2)
        await handle_select_game({"game": LOVE_LETTER}, contexts[1], **deps)
        assert room.game_name is None
        assert contexts[1].websocket.last_message()["type"] == "error"

    @pytest.mark.asyncio
    async def test_unknown_game_rejected(self):
        deps, room, contexts = await make_lobby(2)
        await handle_select_game({"game": "chess"}, contexts[0], **deps)
        assert contexts[0].websocket.last_message()["message"] == "Unknown game: chess"


# =============================================================================
# Game lifecycle handlers
# =============================================================================

class TestHandleStartGame:

    @pytest.mark.asyncio
    async def test_start_sends_private_states(self):
        deps, room, contexts = await make_lobby(3)
        await handle_select_game({"game": LOVE_LETTER}, contexts[0], **deps)
        await handle_start_game({}, contexts[0], **deps)

        assert room.status == LobbyStatus.PLAYING
        for ctx in contexts:
            message = ctx.websocket.last_message()
            assert message["type"] == "game_started"
            for player in message["game_state"]["players"]:
                if player["session_id"] == ctx.session_id:
                    assert player["hand"]
                else:
                    assert player["hand"] == []

    @pytest.mark.asyncio
    async def test_start_without_selection(self):
        deps, room, contexts = await make_lobby(2)
        await handle_start_game({}, contexts[0], **deps)
        assert room.game is None
        assert contexts[0].websocket.last_message()["message"] == "No game selected"

    @pytest.mark.asyncio
    async def test_start_alone(self):
        deps, room, contexts = await make_lobby(1)
        room.select_game(LOVE_LETTER)
        await handle_start_game({}, contexts[0], **deps)
        assert room.game is None
        assert contexts[0].websocket.last_message()["type"] == "error"

    @pytest.mark.asyncio
    async def test_non_owner_cannot_start(self):
        deps, room, contexts = await make_lobby(2)
        room.select_game(LOVE_LETTER)
        await handle_start_game({}, contexts[1], **deps)
        assert room.game is None

    @pytest.mark.asyncio
    async def test_play_again_deals_fresh_game(self):
        deps, room, contexts = await make_running_game(2)
        first = room.game
        await handle_play_again({}, contexts[0], **deps)
        assert room.game is not first
        assert contexts[1].websocket.last_message()["type"] == "game_started"

    @pytest.mark.asyncio
    async def test_back_to_lobby(self):
        deps, room, contexts = await make_running_game(2)
        await handle_back_to_lobby({}, contexts[0], **deps)
        assert room.status == LobbyStatus.WAITING
        assert room.game is None
        assert contexts[1].websocket.last_message()["type"] == "lobby_updated"

    @pytest.mark.asyncio
    async def test_reset_game(self):
        deps, room, contexts = await make_running_game(2)
        game = room.game
        await handle_reset_game({}, contexts[1], **deps)
        assert room.game is game
        assert len(game.log) == 1
        assert contexts[0].websocket.last_message()["type"] == "game_reset"


# =============================================================================
# Turn action handler
# =============================================================================

class TestHandleMakeMove:

    @pytest.mark.asyncio
    async def test_no_active_game(self):
        deps, room, contexts = await make_lobby(2)
        await handle_make_move({"card_index": 0}, contexts[0], **deps)
        assert contexts[0].websocket.last_message()["message"] == "No active game"

    @pytest.mark.asyncio
    async def test_move_queued_behind_back_to_lobby(self):
        deps, room, contexts = await make_running_game(2)

        await room.game_lock.acquire()
        back = asyncio.create_task(handle_back_to_lobby({}, contexts[0], **deps))
        move = asyncio.create_task(handle_make_move({"card_index": 0}, contexts[0], **deps))
        await asyncio.sleep(0)
        room.game_lock.release()
        results = await asyncio.gather(back, move, return_exceptions=True)

        assert results == [None, None]
        assert room.game is None
        errors = contexts[0].websocket.messages_of_type("error")
        assert errors[-1]["message"] == "No active game"

    @pytest.mark.asyncio
    async def test_reset_queued_behind_back_to_lobby(self):
        deps, room, contexts = await make_running_game(2)

        await room.game_lock.acquire()
        back = asyncio.create_task(handle_back_to_lobby({}, contexts[0], **deps))
        reset = asyncio.create_task(handle_reset_game({}, contexts[1], **deps))
        await asyncio.sleep(0)
        room.game_lock.release()
        results = await asyncio.gather(back, reset, return_exceptions=True)

        assert results == [None, None]
        assert room.status == LobbyStatus.WAITING
        assert contexts[1].websocket.messages_of_type("game_reset") == []

    @pytest.mark.asyncio
    async def test_rejected_move_only_reaches_sender(self):
        deps, room, contexts = await make_running_game(2)
        before = len(contexts[0].websocket.messages)
        await handle_make_move({"card_index": 0}, contexts[1], **deps)

        assert contexts[1].websocket.last_message() == {
            "type": "error",
            "message": "Not your turn",
            "reason": "not_your_turn",
        }
        assert len(contexts[0].websocket.messages) == before

    @pytest.mark.asyncio
    async def test_valid_move_broadcasts_state(self):
        deps, room, contexts = await make_running_game(2)
        room.game.players[0].hand = [CardType.HANDMAID, CardType.GUARD]
        await handle_make_move({"card_index": 0}, contexts[0], **deps)

        for ctx in contexts:
            message = ctx.websocket.last_message()
            assert message["type"] == "move_made"
            assert message["game_over"] is False
            assert message["game_state"]["current_session_id"] == "s1"

    @pytest.mark.asyncio
    async def test_priest_reveal_is_private(self):
        deps, room, contexts = await make_running_game(2)
        room.game.players[0].hand = [CardType.PRIEST, CardType.GUARD]
        room.game.players[1].hand = [CardType.KING]
        await handle_make_move(
            {"card_index": 0, "target_session_id": "s1"},
            contexts[0],
            **deps,
        )

        private = contexts[0].websocket.messages_of_type("private_info")
        assert private == [{
            "type": "private_info",
            "kind": "priest_reveal",
            "target_session_id": "s1",
            "revealed_card": 6,
        }]
        assert contexts[1].websocket.messages_of_type("private_info") == []

    @pytest.mark.asyncio
    async def test_game_over_flag(self):
        deps, room, contexts = await make_running_game(2)
        room.game.players[0].hand = [CardType.PRINCESS, CardType.GUARD]
        await handle_make_move({"card_index": 0}, contexts[0], **deps)

        message = contexts[1].websocket.last_message()
        assert message["game_over"] is True
        assert message["game_state"]["winner"]["session_id"] == "s1"


# =============================================================================
# Leave handler
# =============================================================================

class TestHandleLeaveLobby:

    @pytest.mark.asyncio
    async def test_leave_calls_player_leave(self):
        deps, room, contexts = await make_lobby(2)
        await handle_leave_lobby({}, contexts[1], **deps)

        deps["handle_player_leave"].assert_awaited_once_with(
            room, "s1", "conn_s1", reassign_owner=True
        )
        assert contexts[1].current_room is None

    @pytest.mark.asyncio
    async def test_leave_without_lobby(self):
        deps = make_deps()
        await handle_leave_lobby({}, make_ctx(), **deps)
        deps["handle_player_leave"].assert_not_awaited()


class TestDispatchTable:

    def test_all_message_types_registered(self):
        assert set(HANDLERS) == {
            "create_lobby", "join_lobby", "change_name", "select_game",
            "start_game", "play_again", "back_to_lobby", "reset_game",
            "make_move", "leave_lobby",
        }
