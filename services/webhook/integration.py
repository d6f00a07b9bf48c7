"""
Generic JSON webhook integration.

Every round is POSTed as {"type": ..., ...}. Failed posts are retried with
linear backoff, then logged and dropped.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

import httpx

from services.integrations.base import Integration, ServerStatus, StatusContext
from shared.chat.events import ChatEvent
from shared.logging.logger import get_logger

log = get_logger("webhook.integration")

POST_ATTEMPTS = 3
POST_BACKOFF_SECONDS = 0.5


class WebhookIntegration(Integration):
    name = "Webhook"

    def __init__(self, config, client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self.call_timeout = config.timeout_seconds * POST_ATTEMPTS + POST_BACKOFF_SECONDS * 3
        self._client = client
        self._owns_client = client is None

    async def start(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.config.timeout_seconds,
                headers=self.config.headers,
            )
        log.info(f"Webhook integration posting to {self.config.url}")

    async def stop(self) -> None:
        client = self._client
        if client is not None and self._owns_client:
            self._client = None
            await client.aclose()

    # --------------------------------------------------
    # Rounds
    # --------------------------------------------------

    async def update_players(self, players: List[str]) -> None:
        await self.post({"type": "players", "players": list(players), "count": len(players)})

    async def update_status(self, status: ServerStatus, context: StatusContext) -> None:
        payload: Dict[str, Any] = {"type": "status", "status": status.value, "reason": context.reason}
        if context.attempts is not None:
            payload["attempts"] = context.attempts
        await self.post(payload)

    async def update_gamemode(self, gamemode) -> None:
        await self.post({"type": "gamemode", "gamemode": gamemode})

    async def relay_chat_message(self, event: ChatEvent) -> None:
        await self.post({"type": "event", "event": event.to_dict()})

    async def send_message(self, text: str) -> None:
        await self.post({"type": "message", "text": text})

    # --------------------------------------------------
    # Transport
    # --------------------------------------------------

    async def post(self, payload: Dict[str, Any]) -> bool:
        if self._client is None:
            return False

        for attempt in range(1, POST_ATTEMPTS + 1):
            try:
                response = await self._client.post(self.config.url, json=payload)
                response.raise_for_status()
                return True
            except asyncio.CancelledError:
                raise
            except httpx.HTTPError as e:
                if attempt == POST_ATTEMPTS:
                    log.error(f"Webhook {payload.get('type')} dropped after {attempt} attempts: {e}")
                    return False
                log.warning(f"Webhook post failed (attempt {attempt}/{POST_ATTEMPTS}): {e}")
                await asyncio.sleep(POST_BACKOFF_SECONDS * attempt)

        return False


__all__ = ["WebhookIntegration"]
