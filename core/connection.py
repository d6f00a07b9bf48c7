"""
Connection Manager

Owns the one live game session and the retry policy around it.

States:
- STOPPED     → nothing running, start() allowed
- CONNECTING  → an attempt is in flight or a reconnect timer is armed
- CONNECTED   → session live, send_chat() allowed

Consumers subscribe with a ConnectionListener. Events are delivered
synchronously, in the order the transitions produce them; listeners must
not block.

IMPORTANT:
- Exactly one connection attempt is in flight at a time
- Every new session gets a fresh bridge listener; the previous one is
  detached before the session is dropped
- The player set and retry counter are private to this module
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional

from services.game.session import (
    GameSession,
    GameSessionListener,
    GenericUpdate,
    PlayerInfo,
    SessionOptions,
)
from shared.chat.events import (
    CLIENT_VERSION_ATTRIBUTE,
    SERVER_VERSION_ATTRIBUTE,
    ChatEvent,
    EventKind,
    create_chat_event,
)
from shared.chat.parser import parse_chat_message
from shared.chat.usernames import normalize, normalized_key
from shared.logging.logger import get_logger
from shared.players.tracker import PlayerTracker

log = get_logger("core.connection")

NEWLINE_RUN_PATTERN = re.compile(r"(?:\r\n|\r|\n){2,}")


class ConnectionState(str, Enum):
    STOPPED = "stopped"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class DisconnectReason(str, Enum):
    SERVER = "server"
    STOPPED = "stopped"
    RETRIES_EXHAUSTED = "retries-exhausted"
    ERROR = "error"


class NotConnectedError(RuntimeError):
    def __init__(self):
        super().__init__("Not connected to the Cubyz server")


@dataclass(frozen=True)
class RetryPolicy:
    reconnect: bool = True
    max_retries: int = 0
    retry_delay_ms: int = 30000
    backoff_factor: float = 1.0
    max_retry_delay_ms: int = 300000

    def delay_ms(self, attempt: int) -> int:
        delay = self.retry_delay_ms * (self.backoff_factor ** max(attempt - 1, 0))
        return int(min(delay, self.max_retry_delay_ms))


@dataclass(frozen=True)
class RetryState:
    attempt: int
    max_retries: int
    base_delay_ms: int


@dataclass(frozen=True)
class DisconnectedPayload:
    reason: DisconnectReason
    attempts: Optional[int] = None


@dataclass(frozen=True)
class ReconnectingPayload:
    attempt: int
    max_retries: Optional[int]
    delay_ms: int


@dataclass(frozen=True)
class PlayersPayload:
    players: List[str]


class ConnectionListener:
    """
    Consumer interface. Every method is optional.
    """

    def on_connected(self) -> None:
        pass

    def on_disconnected(self, payload: DisconnectedPayload) -> None:
        pass

    def on_reconnecting(self, payload: ReconnectingPayload) -> None:
        pass

    def on_error(self, error: BaseException) -> None:
        pass

    def on_chat(self, event: ChatEvent) -> None:
        pass

    def on_players(self, payload: PlayersPayload) -> None:
        pass

    def on_gamemode(self, value) -> None:
        pass


class _SessionBridge(GameSessionListener):
    """
    Per-session listener. Events from a superseded session are dropped.
    """

    def __init__(self, manager: "ConnectionManager", session: GameSession):
        self._manager = manager
        self._session = session

    def _current(self) -> bool:
        return self._manager._session is self._session

    def on_connected(self) -> None:
        if self._current():
            self._manager._handle_connected()

    def on_chat(self, raw: str) -> None:
        if self._current():
            self._manager._handle_raw_chat(raw)

    def on_players(self, players: List[PlayerInfo]) -> None:
        if self._current():
            self._manager._handle_players(players)

    def on_disconnect(self, reason: str) -> None:
        if self._current():
            self._manager._handle_server_disconnect(reason)

    def on_generic_update(self, update: GenericUpdate) -> None:
        if self._current():
            self._manager._handle_generic_update(update)


class ConnectionManager:
    def __init__(
        self,
        *,
        options: SessionOptions,
        session_factory: Callable[[SessionOptions], GameSession],
        retry: Optional[RetryPolicy] = None,
        exclude_bot_from_count: bool = True,
        excluded_usernames: Optional[Iterable[str]] = None,
    ):
        self.options = options
        self.retry = retry or RetryPolicy()
        self._session_factory = session_factory
        self._exclude_bot = exclude_bot_from_count
        self._excluded = {
            normalized_key(name) for name in (excluded_usernames or []) if normalized_key(name)
        }

        self._state = ConnectionState.STOPPED
        self._listeners: List[ConnectionListener] = []
        self._session: Optional[GameSession] = None
        self._bridge: Optional[_SessionBridge] = None
        self._connect_task: Optional[asyncio.Task] = None
        self._reconnect_handle: Optional[asyncio.TimerHandle] = None
        self._stop_requested = False
        self._stopping: Optional[asyncio.Future] = None
        self._attempt = 0

        self._players = PlayerTracker()
        self._display_names: Dict[str, str] = {}

    # ------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def attempt(self) -> int:
        return self._attempt

    @property
    def retry_state(self) -> RetryState:
        return RetryState(
            attempt=self._attempt,
            max_retries=self.retry.max_retries,
            base_delay_ms=self.retry.retry_delay_ms,
        )

    @property
    def player_count(self) -> int:
        return len(self.players)

    @property
    def players(self) -> List[str]:
        """
        Sorted snapshot of online players, minus the bot and excluded names.
        """
        bot_key = normalized_key(self.options.bot_name)
        keys = []
        for key in self._players.players:
            if self._exclude_bot and key == bot_key:
                continue
            if key in self._excluded:
                continue
            keys.append(key)
        return [self._display_names.get(key, key) for key in sorted(keys)]

    # ------------------------------------------------------------
    # Listener registry
    # ------------------------------------------------------------

    def add_listener(self, listener: ConnectionListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: ConnectionListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    def _emit(self, method: str, *args) -> None:
        for listener in list(self._listeners):
            try:
                getattr(listener, method)(*args)
            except Exception as e:
                log.error(f"Connection listener {method} failed: {e}")

    # ------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------

    async def start(self) -> None:
        if self._state is not ConnectionState.STOPPED:
            log.debug(f"start() ignored in state {self._state.value}")
            return

        self._stop_requested = False
        self._attempt = 0
        self._state = ConnectionState.CONNECTING
        log.info(f"Connecting to Cubyz server {self.options.host}:{self.options.port}")

        task = asyncio.create_task(self._try_connect())
        self._connect_task = task
        await asyncio.wait({task})

    async def stop(self) -> None:
        if self._stopping is not None:
            await asyncio.shield(self._stopping)
            return
        if self._stop_requested and self._state is ConnectionState.STOPPED:
            return

        self._stopping = asyncio.get_running_loop().create_future()
        try:
            await self._teardown()
        finally:
            stopping = self._stopping
            self._stopping = None
            if not stopping.done():
                stopping.set_result(None)

    async def _teardown(self) -> None:
        self._stop_requested = True
        self._cancel_reconnect()
        self._attempt = 0

        task = self._connect_task
        self._connect_task = None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        session = self._detach_session()
        if session is not None:
            try:
                await session.close(notify=True)
            except Exception as e:
                log.warning(f"Session close error ignored: {e}")

        self._reset_players()
        self._state = ConnectionState.STOPPED
        log.info("Connection manager stopped")
        self._emit("on_disconnected", DisconnectedPayload(DisconnectReason.STOPPED))

    async def send_chat(self, text: str) -> None:
        message = (text or "").strip()
        if not message:
            return
        if self._state is not ConnectionState.CONNECTED or self._session is None:
            raise NotConnectedError()
        await self._session.send_chat(message)

    # ------------------------------------------------------------
    # Connection attempts
    # ------------------------------------------------------------

    async def _try_connect(self) -> None:
        try:
            session = self._session_factory(self.options)
        except Exception as e:
            await self._handle_connect_failure(e)
            return

        bridge = _SessionBridge(self, session)
        session.add_listener(bridge)
        self._session = session
        self._bridge = bridge

        try:
            await session.start()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if session is not self._session:
                log.debug(f"Superseded session failed: {e}")
                return
            await self._handle_connect_failure(e)
            return

        if session is self._session:
            self._handle_connected()

    async def _handle_connect_failure(self, error: BaseException) -> None:
        log.error(f"Failed to connect to Cubyz server: {error}")
        self._emit("on_error", error)

        session = self._detach_session()
        if session is not None:
            try:
                await session.close(notify=False)
            except Exception as e:
                log.debug(f"Session close after failure ignored: {e}")

        if self._stop_requested:
            if self._state is not ConnectionState.STOPPED:
                self._state = ConnectionState.STOPPED
                self._emit("on_disconnected", DisconnectedPayload(DisconnectReason.ERROR))
            return

        if not self.retry.reconnect:
            self._state = ConnectionState.STOPPED
            self._emit("on_disconnected", DisconnectedPayload(DisconnectReason.ERROR))
            return

        self._schedule_reconnect()

    def _schedule_reconnect(self) -> None:
        self._attempt += 1
        max_retries = self.retry.max_retries if self.retry.max_retries > 0 else None

        if max_retries is not None and self._attempt > max_retries:
            attempts = self._attempt - 1
            log.error(f"Giving up after {attempts} reconnect attempt(s)")
            self._state = ConnectionState.STOPPED
            self._emit(
                "on_disconnected",
                DisconnectedPayload(DisconnectReason.RETRIES_EXHAUSTED, attempts=attempts),
            )
            return

        delay_ms = self.retry.delay_ms(self._attempt)
        self._state = ConnectionState.CONNECTING
        self._emit(
            "on_reconnecting",
            ReconnectingPayload(attempt=self._attempt, max_retries=max_retries, delay_ms=delay_ms),
        )

        loop = asyncio.get_running_loop()
        self._cancel_reconnect()
        self._reconnect_handle = loop.call_later(delay_ms / 1000.0, self._on_reconnect_timer)

    def _on_reconnect_timer(self) -> None:
        self._reconnect_handle = None
        if self._stop_requested:
            return
        self._connect_task = asyncio.create_task(self._try_connect())

    def _cancel_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

    def _detach_session(self) -> Optional[GameSession]:
        session = self._session
        if session is not None and self._bridge is not None:
            session.remove_listener(self._bridge)
        self._session = None
        self._bridge = None
        return session

    # ------------------------------------------------------------
    # Session events
    # ------------------------------------------------------------

    def _handle_connected(self) -> None:
        if self._state is ConnectionState.CONNECTED:
            return
        self._state = ConnectionState.CONNECTED
        self._attempt = 0
        log.info("Connected to Cubyz server")
        self._emit("on_connected")

    def _handle_server_disconnect(self, reason: str) -> None:
        log.warning(f"Disconnected by server: {reason}")
        self._detach_session()
        self._reset_players()
        self._emit("on_disconnected", DisconnectedPayload(DisconnectReason.SERVER))

        if self._stop_requested:
            self._state = ConnectionState.STOPPED
            return

        if self.retry.reconnect:
            self._state = ConnectionState.CONNECTING
            self._schedule_reconnect()
        else:
            self._state = ConnectionState.STOPPED

    def _handle_raw_chat(self, raw: str) -> None:
        if not isinstance(raw, str):
            return
        message = NEWLINE_RUN_PATTERN.sub("\n", raw).strip()
        if not message:
            return

        event = parse_chat_message(message)
        if event is None or not event.display_name:
            return

        membership_changed = False
        if event.kind is EventKind.JOIN:
            membership_changed = self._add_player(event.display_name)
        elif event.kind is EventKind.LEAVE:
            before = self._players.count
            membership_changed = self._players.decrement(event.display_name) != before
            self._display_names.pop(normalized_key(event.display_name), None)

        self._emit("on_chat", event)

        if event.kind is EventKind.JOIN:
            self._check_client_version(event)

        provides_list = bool(self._session and self._session.provides_player_list)
        if membership_changed and not provides_list:
            self._emit("on_players", PlayersPayload(self.players))

    def _check_client_version(self, event: ChatEvent) -> None:
        client_version = event.attributes.get(CLIENT_VERSION_ATTRIBUTE)
        if not client_version:
            return

        server_version = (self._session.server_version if self._session else None) or self.options.version
        if not server_version or client_version == server_version:
            return

        log.warning(
            f"{event.display_name} joined with client {client_version} "
            f"(server {server_version})"
        )
        self._emit(
            "on_chat",
            create_chat_event(
                EventKind.VERSION_MISMATCH,
                event.raw_display_name,
                text=client_version,
                attributes={
                    CLIENT_VERSION_ATTRIBUTE: client_version,
                    SERVER_VERSION_ATTRIBUTE: server_version,
                },
            ),
        )

    def _add_player(self, name: str) -> bool:
        before = self._players.count
        changed = self._players.increment(name) != before
        if changed:
            self._display_names[normalized_key(name)] = name
        return changed

    def _reset_players(self) -> None:
        self._players.reset()
        self._display_names.clear()

    def _handle_players(self, players: List[PlayerInfo]) -> None:
        self._reset_players()
        for player in players or []:
            name = normalize(getattr(player, "name", ""))
            if name:
                self._add_player(name)

        self._emit("on_players", PlayersPayload(self.players))

    def _handle_generic_update(self, update: GenericUpdate) -> None:
        if update.kind == "gamemode":
            self._emit("on_gamemode", update.value)


__all__ = [
    "ConnectionListener",
    "ConnectionManager",
    "ConnectionState",
    "DisconnectReason",
    "DisconnectedPayload",
    "NotConnectedError",
    "PlayersPayload",
    "ReconnectingPayload",
    "RetryPolicy",
    "RetryState",
]
