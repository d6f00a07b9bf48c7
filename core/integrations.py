"""
Integration fan-out.

Every round calls the same hook on all sinks concurrently. A sink that
raises or times out is logged and skipped; the others still complete and
the caller never sees the failure.
"""

from __future__ import annotations

import asyncio
from typing import Iterable, List

from services.integrations.base import Integration, ServerStatus, StatusContext
from shared.chat.events import ChatEvent
from shared.logging.logger import get_logger

log = get_logger("core.integrations")


class IntegrationManager:
    def __init__(self, integrations: Iterable[Integration] = ()):
        self._integrations: List[Integration] = list(integrations)

    @property
    def integrations(self) -> List[Integration]:
        return list(self._integrations)

    def add(self, integration: Integration) -> None:
        self._integrations.append(integration)

    # --------------------------------------------------
    # Dispatch
    # --------------------------------------------------

    async def _call(self, integration: Integration, action: str, method: str, *args) -> None:
        try:
            await asyncio.wait_for(
                getattr(integration, method)(*args),
                timeout=integration.call_timeout,
            )
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            log.error(
                f"Failed to {action} for integration {integration.name}: "
                f"timed out after {integration.call_timeout}s"
            )
        except Exception as e:
            log.error(f"Failed to {action} for integration {integration.name}: {e}")

    async def _dispatch(self, action: str, method: str, *args) -> None:
        if not self._integrations:
            return
        await asyncio.gather(
            *(self._call(i, action, method, *args) for i in self._integrations)
        )

    # --------------------------------------------------
    # Lifecycle
    # --------------------------------------------------

    async def start_all(self) -> None:
        log.info(f"Starting {len(self._integrations)} integration(s)")
        await self._dispatch("start", "start")

    async def stop_all(self) -> None:
        log.info("Stopping integrations")
        await self._dispatch("stop", "stop")

    # --------------------------------------------------
    # Rounds
    # --------------------------------------------------

    async def update_players(self, players: List[str]) -> None:
        await self._dispatch("update players", "update_players", list(players))

    async def update_status(self, status: ServerStatus, context: StatusContext) -> None:
        await self._dispatch("update status", "update_status", status, context)

    async def update_gamemode(self, gamemode) -> None:
        await self._dispatch("update gamemode", "update_gamemode", gamemode)

    async def relay_chat_message(self, event: ChatEvent) -> None:
        await self._dispatch("relay chat message", "relay_chat_message", event)

    async def send_message(self, text: str) -> None:
        """
        Plain-text broadcast to every sink. The relay loop does not call this;
        it is there for operators embedding the manager.
        """
        if not text or not text.strip():
            return
        await self._dispatch("send message", "send_message", text)


def create_integrations(config, connection) -> List[Integration]:
    """
    Build the enabled sinks in a fixed order: Discord, list site, webhook.
    """
    integrations: List[Integration] = []

    if config.discord.enabled:
        from services.discord.integration import DiscordIntegration

        integrations.append(DiscordIntegration(config, connection))

    if config.cubyzlist_site.enabled:
        from services.listsite.integration import ListSiteIntegration

        integrations.append(ListSiteIntegration(config.cubyzlist_site))

    if config.webhook.enabled:
        from services.webhook.integration import WebhookIntegration

        integrations.append(WebhookIntegration(config.webhook))

    log.info(
        "Enabled integrations: "
        + (", ".join(i.name for i in integrations) or "none")
    )
    return integrations


__all__ = [
    "IntegrationManager",
    "create_integrations",
]
