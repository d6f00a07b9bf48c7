"""
Cubyz list site integration.

Pushes a JSON status document to the list site's TCP endpoint on every
change, and at least every five minutes while running.
"""

from __future__ import annotations

import asyncio
import json
import time
from typing import Any, Dict, List, Optional, Set

from services.integrations.base import Integration, ServerStatus, StatusContext
from shared.logging.logger import get_logger

log = get_logger("listsite.integration", runtime="listsite")

SCRIPT_VERSION = "1.4"
CONNECT_TIMEOUT_SECONDS = 5.0
UPDATE_INTERVAL_SECONDS = 5 * 60
CHECK_INTERVAL_SECONDS = 60

GAMEMODES = {0: "survival", 1: "creative"}


class ListSiteIntegration(Integration):
    name = "CubyzListSite"
    call_timeout = CONNECT_TIMEOUT_SECONDS * 2

    def __init__(self, config):
        self.config = config
        self._players: Set[str] = set()
        self._status = ServerStatus.OFFLINE
        self._gamemode: Optional[str] = None
        self._last_update = 0.0
        self._ready = False
        self._periodic: Optional[asyncio.Task] = None

    # --------------------------------------------------
    # Lifecycle
    # --------------------------------------------------

    async def start(self) -> None:
        log.info("Integration started")
        self._ready = True
        await self.send_update()
        self._start_periodic_updates()

    async def stop(self) -> None:
        log.info("Integration stopped")
        self._stop_periodic_updates()
        self._status = ServerStatus.OFFLINE
        self._players.clear()
        try:
            await self.send_update()
        finally:
            self._ready = False

    def _start_periodic_updates(self) -> None:
        self._stop_periodic_updates()
        self._periodic = asyncio.create_task(self._periodic_loop())

    def _stop_periodic_updates(self) -> None:
        if self._periodic is not None:
            self._periodic.cancel()
            self._periodic = None

    async def _periodic_loop(self) -> None:
        while True:
            await asyncio.sleep(CHECK_INTERVAL_SECONDS)
            if time.monotonic() - self._last_update < UPDATE_INTERVAL_SECONDS:
                continue

            log.debug("Sending periodic update (5 minutes elapsed)")
            try:
                await self.send_update()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.error(f"Periodic update failed: {e}")

    # --------------------------------------------------
    # Rounds
    # --------------------------------------------------

    async def update_players(self, players: List[str]) -> None:
        self._players = set(players)
        await self.send_update()

    async def update_status(self, status: ServerStatus, context: StatusContext) -> None:
        self._status = status
        if status is ServerStatus.OFFLINE:
            self._players.clear()
        await self.send_update()

    async def update_gamemode(self, gamemode) -> None:
        if gamemode in GAMEMODES:
            self._gamemode = GAMEMODES[gamemode]
        await self.send_update()

    # --------------------------------------------------
    # Transport
    # --------------------------------------------------

    def build_payload(self) -> Dict[str, Any]:
        ip = self.config.server_ip
        if self.config.server_port:
            ip = f"{ip}:{self.config.server_port}"

        return {
            "server_id": self.config.server_name,
            "player_count": len(self._players),
            "status": self._status.value,
            "gamemode": self._gamemode,
            "ip": ip,
            "icon": self.config.icon_url or "",
            "client_download": self.config.custom_client_download_url or "",
            "script_version": SCRIPT_VERSION,
            "timestamp": int(time.time()),
        }

    async def send_update(self) -> None:
        if not self._ready:
            return

        data = json.dumps(self.build_payload())
        log.debug(f"Sending update: {data}")

        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(self.config.api_host, self.config.api_port),
                timeout=CONNECT_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError as e:
            raise ConnectionError("List site connection timeout") from e

        try:
            writer.write(data.encode("utf-8"))
            await asyncio.wait_for(writer.drain(), timeout=CONNECT_TIMEOUT_SECONDS)
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except OSError as e:
                log.debug(f"List site socket close error ignored: {e}")

        self._last_update = time.monotonic()


__all__ = ["ListSiteIntegration"]
