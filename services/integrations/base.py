"""
Integration sink contract.

A sink receives every fan-out round from IntegrationManager. All hooks are
optional no-ops; a sink overrides only what it cares about.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from shared.chat.events import ChatEvent


class ServerStatus(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"


@dataclass(frozen=True)
class StatusContext:
    reason: str
    attempts: Optional[int] = None


class Integration:
    name: str = "integration"

    # Upper bound for a single hook call before the manager gives up on it.
    call_timeout: float = 30.0

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    async def update_players(self, players: List[str]) -> None:
        pass

    async def update_status(self, status: ServerStatus, context: StatusContext) -> None:
        pass

    async def update_gamemode(self, gamemode) -> None:
        pass

    async def relay_chat_message(self, event: ChatEvent) -> None:
        pass

    async def send_message(self, text: str) -> None:
        pass


__all__ = [
    "Integration",
    "ServerStatus",
    "StatusContext",
]
