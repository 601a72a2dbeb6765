"""
Lobby management for multiplayer Love Letter games.

This module handles lobby creation, player membership, and WebSocket
fan-out for multiplayer game sessions.

A Room (lobby) contains:
    - A unique 4-letter code for joining
    - A collection of RoomPlayers keyed by session id
    - The owner, who selects and starts the game
    - At most one Game instance, plus a lock serializing every call into it
"""

import asyncio
import logging
import random
import string
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from fastapi import WebSocket

from constants import (
    LOBBY_CLEANUP_SECONDS,
    LOBBY_CODE_LENGTH,
    MAX_PLAYERS,
    MIN_PLAYERS,
    SUPPORTED_GAMES,
)
from game import Game, Seat

logger = logging.getLogger(__name__)


class LobbyError(Exception):
    """A lobby action was refused. The message is shown to the requesting player."""


class LobbyStatus(str, Enum):
    WAITING = "waiting"
    PLAYING = "playing"


@dataclass
class PlayerSession:
    """
    Server-side memory for a browser session, kept across lobbies and reconnects.

    Attributes:
        name: Last display name chosen by this session.
        last_seen: When the session last did something.
    """

    name: Optional[str] = None
    last_seen: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def touch(self) -> None:
        self.last_seen = datetime.now(timezone.utc)


@dataclass
class RoomPlayer:
    """
    A player in a lobby (lobby-level representation).

    This is separate from game.Player - RoomPlayer tracks the connection
    currently attached to a session, while game.Player tracks in-round
    state like hand and discards.

    Attributes:
        session_id: Stable identifier that survives reconnects.
        name: Display name.
        connection_id: Id of the WebSocket connection currently attached.
        websocket: WebSocket connection (None while disconnected).
    """

    session_id: str
    name: str
    connection_id: Optional[str] = None
    websocket: Optional[WebSocket] = None


@dataclass
class Room:
    """
    A lobby that can host a Love Letter game.

    Attributes:
        code: 4-letter lobby code for joining (e.g., "ABCD").
        players: Dict mapping session ids to RoomPlayer objects, in join order.
        owner_session_id: Session allowed to select, start and stop games.
        game_name: Selected game, if any.
        game_config: Options sent along with the game selection.
        status: Whether a game is running.
        game: The running Game instance.
        game_lock: asyncio.Lock serializing game mutations for this lobby.
    """

    code: str
    players: dict[str, RoomPlayer] = field(default_factory=dict)
    owner_session_id: Optional[str] = None
    game_name: Optional[str] = None
    game_config: dict = field(default_factory=dict)
    status: LobbyStatus = LobbyStatus.WAITING
    game: Optional[Game] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    game_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    # -------------------------------------------------------------------------
    # Membership
    # -------------------------------------------------------------------------

    def add_player(
        self,
        session_id: str,
        name: str,
        websocket: Optional[WebSocket] = None,
        connection_id: Optional[str] = None,
    ) -> RoomPlayer:
        """
        Add a player to the lobby, or re-attach a session that is already in it.

        The first player to join becomes the owner.

        Args:
            session_id: Stable session identifier.
            name: Display name (ignored when re-attaching).
            websocket: The player's WebSocket connection.
            connection_id: Id of that connection.

        Returns:
            The RoomPlayer for this session.
        """
        existing = self.players.get(session_id)
        if existing:
            existing.websocket = websocket
            existing.connection_id = connection_id
            return existing

        room_player = RoomPlayer(
            session_id=session_id,
            name=name,
            connection_id=connection_id,
            websocket=websocket,
        )
        self.players[session_id] = room_player
        if self.owner_session_id is None:
            self.owner_session_id = session_id
        return room_player

    def remove_player(
        self,
        session_id: str,
        connection_id: Optional[str] = None,
        reassign_owner: bool = False,
    ) -> Optional[RoomPlayer]:
        """
        Remove a player from the lobby.

        When connection_id is given, the player is only removed if that
        connection is still the one attached (a newer tab may have taken over).
        Seats in a running game are not affected.

        Args:
            session_id: Session to remove.
            connection_id: Connection that is going away, if known.
            reassign_owner: Pass ownership to the next player if the owner leaves.

        Returns:
            The removed RoomPlayer, or None if nothing was removed.
        """
        room_player = self.players.get(session_id)
        if room_player is None:
            return None
        if connection_id is not None and room_player.connection_id != connection_id:
            return None

        del self.players[session_id]

        if reassign_owner and self.owner_session_id == session_id:
            self.owner_session_id = next(iter(self.players), None)

        return room_player

    def get_player(self, session_id: Optional[str]) -> Optional[RoomPlayer]:
        """Get a player by session id, or None if not found."""
        return self.players.get(session_id)

    def is_owner(self, session_id: Optional[str]) -> bool:
        return session_id is not None and session_id == self.owner_session_id

    def is_empty(self) -> bool:
        """Check if the lobby has no players."""
        return len(self.players) == 0

    def rename(self, session_id: str, new_name: str) -> RoomPlayer:
        """Change a player's display name (also inside a running game)."""
        room_player = self.players.get(session_id)
        if room_player is None:
            raise LobbyError("Not in lobby")
        room_player.name = new_name
        if self.game:
            game_player = self.game.get_player(session_id)
            if game_player:
                game_player.name = new_name
            for seat in self.game.seats:
                if seat.session_id == session_id:
                    seat.name = new_name
        return room_player

    # -------------------------------------------------------------------------
    # Game lifecycle
    # -------------------------------------------------------------------------

    def select_game(self, game_name: str, game_config: Optional[dict] = None) -> None:
        if game_name not in SUPPORTED_GAMES:
            raise LobbyError(f"Unknown game: {game_name}")
        self.game_name = game_name
        self.game_config = game_config or {}

    def seats(self) -> list[Seat]:
        """Current lobby members as game seats, in join order."""
        return [
            Seat(session_id=p.session_id, name=p.name, seat_id=str(i))
            for i, p in enumerate(self.players.values())
        ]

    def start_game(self, seed: Optional[int] = None) -> Game:
        """
        Create a fresh game for the current members and deal the first round.

        Raises:
            LobbyError: No game selected, or the player count does not fit.
        """
        if not self.game_name:
            raise LobbyError("No game selected")
        if not MIN_PLAYERS <= len(self.players) <= MAX_PLAYERS:
            raise LobbyError(f"Love Letter requires {MIN_PLAYERS}-{MAX_PLAYERS} players")

        game = Game()
        game.initialize(self.seats(), seed=seed)
        self.game = game
        self.status = LobbyStatus.PLAYING
        logger.info(f"{self.game_name} started in lobby {self.code} with {len(self.players)} players")
        return game

    def back_to_lobby(self) -> None:
        """Stop the running game and clear the game selection."""
        self.status = LobbyStatus.WAITING
        self.game = None
        self.game_name = None

    # -------------------------------------------------------------------------
    # Views
    # -------------------------------------------------------------------------

    def player_list(self) -> list[dict]:
        """Get list of players for client display."""
        return [
            {
                "session_id": p.session_id,
                "name": p.name,
                "is_owner": self.is_owner(p.session_id),
                "connected": p.websocket is not None,
            }
            for p in self.players.values()
        ]

    def summary(self) -> dict:
        """Public description of the lobby (no game internals)."""
        return {
            "code": self.code,
            "players": self.player_list(),
            "owner_session_id": self.owner_session_id,
            "game": self.game_name,
            "game_config": self.game_config,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
        }

    # -------------------------------------------------------------------------
    # Messaging
    # -------------------------------------------------------------------------

    async def broadcast(self, message: dict, exclude: Optional[str] = None) -> None:
        """
        Send a message to every connected player in the lobby.

        Args:
            message: JSON-serializable message dict.
            exclude: Optional session id to skip.
        """
        for session_id in list(self.players):
            if session_id != exclude:
                await self.send_to(session_id, message)

    async def send_to(self, session_id: str, message: dict) -> None:
        """
        Send a message to a specific player.

        Args:
            session_id: Session of the recipient.
            message: JSON-serializable message dict.
        """
        player = self.players.get(session_id)
        if player and player.websocket:
            try:
                await player.websocket.send_json(message)
            except Exception as e:
                logger.debug(f"Send to {session_id} in lobby {self.code} failed: {e}")

    async def send_game_states(self, message_type: str, **extra) -> None:
        """
        Send each player their own projection of the running game.

        Args:
            message_type: Message type, e.g. "game_started" or "move_made".
            **extra: Additional fields added to every message.
        """
        if self.game is None:
            return
        for session_id in list(self.players):
            await self.send_to(session_id, {
                "type": message_type,
                "game": self.game_name,
                "game_state": self.game.get_state(session_id),
                **extra,
            })


class RoomManager:
    """
    Manages all active lobbies and the session name memory.

    Provides lobby creation with unique codes, lookup, and delayed cleanup
    of lobbies that stay empty. A single RoomManager instance is used by
    the server.
    """

    def __init__(self, cleanup_seconds: float = LOBBY_CLEANUP_SECONDS) -> None:
        self.rooms: dict[str, Room] = {}
        self.sessions: dict[str, PlayerSession] = {}
        self.cleanup_seconds = cleanup_seconds
        self._cleanup_tasks: dict[str, asyncio.Task] = {}

    def _generate_code(self, max_attempts: int = 100) -> str:
        """Generate a unique lobby code."""
        for _ in range(max_attempts):
            code = "".join(random.choices(string.ascii_uppercase, k=LOBBY_CODE_LENGTH))
            if code not in self.rooms:
                return code
        raise RuntimeError("Could not generate unique lobby code")

    def create_room(self) -> Room:
        """Create a new, empty lobby with a unique code."""
        code = self._generate_code()
        room = Room(code=code)
        self.rooms[code] = room
        logger.info(f"Lobby {code} created")
        return room

    def get_room(self, code: str) -> Optional[Room]:
        """Get a lobby by its code (case-insensitive)."""
        return self.rooms.get(code.upper())

    def remove_room(self, code: str) -> None:
        """Delete a lobby and any pending cleanup for it."""
        self.cancel_cleanup(code)
        if code in self.rooms:
            del self.rooms[code]

    def get_session(self, session_id: str) -> PlayerSession:
        """Get (or create) the remembered data for a session."""
        session = self.sessions.get(session_id)
        if session is None:
            session = PlayerSession()
            self.sessions[session_id] = session
        session.touch()
        return session

    # -------------------------------------------------------------------------
    # Cleanup timers
    # -------------------------------------------------------------------------

    def schedule_cleanup(self, code: str, delay: Optional[float] = None) -> None:
        """
        Delete a lobby after a delay if it is still empty by then.

        Rescheduling replaces any earlier timer for the same lobby.
        Must be called from within a running event loop.
        """
        self.cancel_cleanup(code)
        delay = self.cleanup_seconds if delay is None else delay
        self._cleanup_tasks[code] = asyncio.get_running_loop().create_task(
            self._cleanup_later(code, delay)
        )
        logger.info(f"Lobby {code} is empty, cleanup in {delay}s")

    def cancel_cleanup(self, code: str) -> None:
        task = self._cleanup_tasks.pop(code, None)
        if task is not None and not task.done():
            task.cancel()

    def has_pending_cleanup(self, code: str) -> bool:
        return code in self._cleanup_tasks

    async def _cleanup_later(self, code: str, delay: float) -> None:
        await asyncio.sleep(delay)
        self._cleanup_tasks.pop(code, None)
        room = self.rooms.get(code)
        if room is not None and room.is_empty():
            self.remove_room(code)
            logger.info(f"Lobby {code} deleted after {delay}s of being empty")

    def cancel_all_cleanups(self) -> None:
        for code in list(self._cleanup_tasks):
            self.cancel_cleanup(code)
