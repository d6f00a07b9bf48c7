"""
Relay bridge.

Subscribes to the ConnectionManager and turns its synchronous events into
IntegrationManager rounds. Rounds are queued and run one at a time by a
single dispatcher task, so sinks see events in emission order while the
manager never waits on a sink.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional, Sequence, Tuple

from core.connection import (
    ConnectionListener,
    ConnectionManager,
    DisconnectedPayload,
    PlayersPayload,
    ReconnectingPayload,
)
from core.integrations import IntegrationManager
from services.integrations.base import ServerStatus, StatusContext
from shared.chat.events import ChatEvent
from shared.logging.logger import get_logger

log = get_logger("core.bridge")

_Round = Tuple[str, Tuple[Any, ...]]


class RelayBridge(ConnectionListener):
    def __init__(
        self,
        connection: ConnectionManager,
        integrations: IntegrationManager,
        *,
        startup_messages: Sequence[str] = (),
        startup_message_delay_ms: int = 0,
    ):
        self._connection = connection
        self._integrations = integrations
        self._startup_messages = [m for m in startup_messages if m and m.strip()]
        self._startup_delay = max(startup_message_delay_ms, 0) / 1000.0

        self._queue: "asyncio.Queue[Optional[_Round]]" = asyncio.Queue()
        self._dispatcher: Optional[asyncio.Task] = None
        self._startup_task: Optional[asyncio.Task] = None

    # --------------------------------------------------
    # Lifecycle
    # --------------------------------------------------

    def start(self) -> None:
        if self._dispatcher is not None:
            return
        self._connection.add_listener(self)
        self._dispatcher = asyncio.create_task(self._run())

    async def close(self) -> None:
        """
        Detach, then let queued rounds finish.
        """
        self._connection.remove_listener(self)
        self._cancel_startup_messages()

        if self._dispatcher is None:
            return

        self._queue.put_nowait(None)
        try:
            await self._dispatcher
        finally:
            self._dispatcher = None

    async def _run(self) -> None:
        while True:
            item = await self._queue.get()
            if item is None:
                return

            method, args = item
            try:
                await getattr(self._integrations, method)(*args)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.error(f"Integration round {method} failed: {e}")

    def _enqueue(self, method: str, *args) -> None:
        self._queue.put_nowait((method, args))

    # --------------------------------------------------
    # Connection events
    # --------------------------------------------------

    def on_connected(self) -> None:
        self._enqueue(
            "update_status",
            ServerStatus.ONLINE,
            StatusContext(reason="connected"),
        )
        self._schedule_startup_messages()

    def on_disconnected(self, payload: DisconnectedPayload) -> None:
        self._cancel_startup_messages()
        self._enqueue(
            "update_status",
            ServerStatus.OFFLINE,
            StatusContext(reason=payload.reason.value, attempts=payload.attempts),
        )

    def on_reconnecting(self, payload: ReconnectingPayload) -> None:
        total = payload.max_retries if payload.max_retries is not None else "∞"
        log.info(
            f"Reconnecting in {payload.delay_ms}ms "
            f"(attempt {payload.attempt}/{total})"
        )

    def on_error(self, error: BaseException) -> None:
        log.error(f"Connection error: {error}")

    def on_chat(self, event: ChatEvent) -> None:
        self._enqueue("relay_chat_message", event)

    def on_players(self, payload: PlayersPayload) -> None:
        self._enqueue("update_players", list(payload.players))

    def on_gamemode(self, value) -> None:
        self._enqueue("update_gamemode", value)

    # --------------------------------------------------
    # Startup messages
    # --------------------------------------------------

    def _schedule_startup_messages(self) -> None:
        if not self._startup_messages:
            return
        self._cancel_startup_messages()
        self._startup_task = asyncio.create_task(self._send_startup_messages())

    def _cancel_startup_messages(self) -> None:
        task = self._startup_task
        self._startup_task = None
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _send_startup_messages(self) -> None:
        for index, message in enumerate(self._startup_messages):
            if index and self._startup_delay:
                await asyncio.sleep(self._startup_delay)
            try:
                await self._connection.send_chat(message)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.warning(f"Startup message not sent: {e}")


__all__ = ["RelayBridge"]
