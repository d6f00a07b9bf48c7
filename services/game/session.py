"""
Game Session Contract

A game session is one live link to a Cubyz server: it delivers raw chat
strings, player list snapshots and disconnect notices, and accepts
outbound chat.

The connection manager owns exactly one session at a time and never
reuses a session after it has been closed.

IMPORTANT:
- Sessions MUST NOT reconnect on their own (retry policy lives in
  core.connection)
- close(notify=False) MUST NOT emit on_disconnect
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, List, Optional

from shared.logging.logger import get_logger

log = get_logger("game.session")


class SessionError(Exception):
    """
    Raised when a session cannot be established or cannot carry a request.
    """


@dataclass(frozen=True)
class SessionOptions:
    host: str
    port: int
    bot_name: str
    version: str
    log_path: Optional[str] = None
    poll_interval: float = 1.0


@dataclass(frozen=True)
class PlayerInfo:
    name: str


@dataclass(frozen=True)
class GenericUpdate:
    kind: str
    value: Any = None


class GameSessionListener:
    """
    Receives session callbacks. Every method is optional.
    """

    def on_connected(self) -> None:
        pass

    def on_chat(self, raw: str) -> None:
        pass

    def on_players(self, players: List[PlayerInfo]) -> None:
        pass

    def on_disconnect(self, reason: str) -> None:
        pass

    def on_generic_update(self, update: GenericUpdate) -> None:
        pass


class GameSession(ABC):
    """
    Base class for concrete session types.

    Subclasses call the _emit_* helpers; listener failures are logged and
    never reach the transport.
    """

    provides_player_list: bool = False

    def __init__(self, options: SessionOptions):
        self.options = options
        self._listeners: List[GameSessionListener] = []

    @property
    def server_version(self) -> Optional[str]:
        return None

    # --------------------------------------------------
    # Listener registry
    # --------------------------------------------------

    def add_listener(self, listener: GameSessionListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: GameSessionListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def _emit(self, method: str, *args) -> None:
        for listener in list(self._listeners):
            try:
                getattr(listener, method)(*args)
            except Exception as e:
                log.error(f"Session listener {method} failed: {e}")

    def _emit_connected(self) -> None:
        self._emit("on_connected")

    def _emit_chat(self, raw: str) -> None:
        self._emit("on_chat", raw)

    def _emit_players(self, players: List[PlayerInfo]) -> None:
        self._emit("on_players", players)

    def _emit_disconnect(self, reason: str) -> None:
        self._emit("on_disconnect", reason)

    def _emit_generic_update(self, update: GenericUpdate) -> None:
        self._emit("on_generic_update", update)

    # --------------------------------------------------
    # Transport
    # --------------------------------------------------

    @abstractmethod
    async def start(self) -> None:
        """
        Establish the session. Raises on failure.
        """

    @abstractmethod
    async def close(self, notify: bool = True) -> None:
        """
        Tear the session down. Must be safe to call more than once.
        """

    @abstractmethod
    async def send_chat(self, text: str) -> None:
        """
        Deliver one chat message to the server.
        """


__all__ = [
    "GameSession",
    "GameSessionListener",
    "GenericUpdate",
    "PlayerInfo",
    "SessionError",
    "SessionOptions",
]
