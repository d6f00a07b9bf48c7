from __future__ import annotations

import asyncio
import os
from typing import List, Optional

from services.game.server_monitor import is_server_online
from services.game.session import GameSession, SessionError, SessionOptions
from services.game.version import read_server_version
from shared.chat.parser import extract_log_payload
from shared.logging.logger import get_logger

log = get_logger("game.log_session")

# Liveness is re-checked every N polls.
SERVER_CHECK_EVERY = 5


class LogTailSession(GameSession):
    """
    Read-only session that follows the server's log file.

    Responsibilities:
    - Start tailing at the current end of the log (history is not replayed)
    - Forward chat payloads found in new lines
    - Report a disconnect once the server stops listening

    Outbound chat is not possible over a log file; send_chat raises.
    """

    provides_player_list = False

    def __init__(self, options: SessionOptions):
        super().__init__(options)
        if not options.log_path:
            raise SessionError("Log session requires a log path")

        self._path = options.log_path
        self._position = 0
        self._partial = ""
        self._server_version: Optional[str] = None
        self._task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def server_version(self) -> Optional[str]:
        return self._server_version

    # --------------------------------------------------
    # Lifecycle
    # --------------------------------------------------

    async def start(self) -> None:
        if self._closed:
            raise SessionError("Session already closed")

        try:
            self._position = os.path.getsize(self._path)
        except OSError:
            log.warning(f"Log file not found yet: {self._path}")
            self._position = 0

        self._server_version = await asyncio.to_thread(read_server_version, self._path)
        if self._server_version:
            log.info(f"Detected server version {self._server_version}")

        if not await is_server_online(self.options.port):
            raise SessionError(f"No Cubyz server listening on UDP port {self.options.port}")

        log.info(f"Tailing {self._path} from offset {self._position}")
        self._emit_connected()
        self._task = asyncio.create_task(self._poll_loop())

    async def close(self, notify: bool = True) -> None:
        if self._closed:
            return
        self._closed = True

        task = self._task
        self._task = None
        if task and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if notify:
            self._emit_disconnect("closed")

    async def send_chat(self, text: str) -> None:
        raise SessionError("Log sessions are read-only")

    # --------------------------------------------------
    # Polling
    # --------------------------------------------------

    def _read_new_lines(self) -> List[str]:
        try:
            size = os.path.getsize(self._path)
        except OSError:
            return []

        if size < self._position:
            log.info("Log file truncated, restarting from the beginning")
            self._position = 0
            self._partial = ""

        if size == self._position:
            return []

        with open(self._path, "r", encoding="utf-8", errors="replace") as f:
            f.seek(self._position)
            chunk = f.read()
            self._position = f.tell()

        data = self._partial + chunk
        lines = data.split("\n")
        self._partial = lines.pop()
        return [line.rstrip("\r") for line in lines]

    async def _poll_loop(self) -> None:
        polls = 0
        try:
            while not self._closed:
                lines = await asyncio.to_thread(self._read_new_lines)
                for line in lines:
                    payload = extract_log_payload(line)
                    if payload:
                        self._emit_chat(payload)

                polls += 1
                if polls % SERVER_CHECK_EVERY == 0:
                    if not await is_server_online(self.options.port):
                        log.warning("Cubyz server stopped listening")
                        self._closed = True
                        self._emit_disconnect("server offline")
                        return

                await asyncio.sleep(self.options.poll_interval)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error(f"Log tail failed: {e}")
            self._closed = True
            self._emit_disconnect(str(e))


__all__ = ["LogTailSession"]
