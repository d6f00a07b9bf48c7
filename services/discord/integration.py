"""
Discord integration sink.

Outbound: formatted game events, status notices and presence.
Inbound: channel messages and reactions relayed into game chat.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass
from typing import Dict, List, Optional

import discord

from services.discord import commands as relay_commands
from services.discord.client import DiscordRelayClient
from services.integrations.base import Integration, ServerStatus, StatusContext
from shared.chat.events import ChatEvent, EventKind
from shared.chat.formatter import format_message, should_relay_event
from shared.chat.usernames import normalize, normalized_key
from shared.logging.logger import get_logger

log = get_logger("discord.integration", runtime="discord")

MESSAGE_CACHE_TTL_SECONDS = 60 * 60
MESSAGE_CACHE_PRUNE_EVERY = 50
CUBYZ_COLOR_RESET = "#FFFFFF"

WHITESPACE_PATTERN = re.compile(r"\s+")


def collapse_whitespace(text: str) -> str:
    return WHITESPACE_PATTERN.sub(" ", text or "").strip()


@dataclass
class CachedMessage:
    raw_display_name: str
    display_name: str
    content: str
    timestamp: float


class DiscordIntegration(Integration):
    name = "Discord"

    def __init__(self, config, connection, client: Optional[DiscordRelayClient] = None):
        self.config = config
        self.connection = connection
        self._bot_key = normalized_key(config.cubyz.bot_name)
        self._channel_id = int(config.discord.channel_id)
        self._cache: Dict[int, CachedMessage] = {}
        self._inserts = 0
        self._ready = False

        command_setup = None
        if config.discord.enable_commands:
            def command_setup(bot):
                relay_commands.setup(bot, players=lambda: list(connection.players))

        self.client = client or DiscordRelayClient(
            token=config.discord.token,
            channel_id=self._channel_id,
            allowed_mentions=config.discord.allowed_mentions,
            message_handler=self.handle_message,
            reaction_handler=self.handle_reaction,
            command_setup=command_setup,
        )

    # --------------------------------------------------
    # Lifecycle
    # --------------------------------------------------

    async def start(self) -> None:
        if self._ready:
            return

        await self.client.start()
        self._ready = True
        log.info("Connected to Discord")

        await self.send_message("**🤖 Bot has joined chat**")
        await self._update_presence(0)

    async def stop(self) -> None:
        if not self._ready:
            return

        await self.send_message("**🤖 Bot has left chat**")
        self._ready = False
        self._cache.clear()
        await self.client.close()

    # --------------------------------------------------
    # Outbound
    # --------------------------------------------------

    async def update_players(self, players: List[str]) -> None:
        if self._ready:
            await self._update_presence(len(players))

    async def update_status(self, status: ServerStatus, context: StatusContext) -> None:
        if not self._ready:
            return

        if status is ServerStatus.OFFLINE:
            await self._update_presence(0)

        message = resolve_status_message(status, context)
        if message:
            await self.send_message(message)

    async def relay_chat_message(self, event: ChatEvent) -> None:
        if not self._ready:
            return
        if not should_relay_event(event.kind, self.config.events):
            return
        if (
            event.kind is EventKind.CHAT
            and self._bot_key
            and normalized_key(event.display_name) == self._bot_key
        ):
            return

        try:
            sent = await self.client.send_message(
                format_message(event, self.config.censorlist)
            )
        except Exception as e:
            log.error(f"Failed to send message to Discord: {e}")
            return

        if event.kind is EventKind.CHAT and event.text:
            self._remember(sent.id, event)

    async def send_message(self, text: str) -> None:
        if not self._ready or not text or not text.strip():
            return
        try:
            await self.client.send_message(text)
        except Exception as e:
            log.error(f"Failed to send notification to Discord: {e}")

    async def _update_presence(self, count: int) -> None:
        try:
            await self.client.set_presence(count)
        except Exception as e:
            log.error(f"Failed to update Discord presence: {e}")

    # --------------------------------------------------
    # Reply cache
    # --------------------------------------------------

    def _remember(self, message_id: int, event: ChatEvent) -> None:
        self._cache[message_id] = CachedMessage(
            raw_display_name=event.raw_display_name,
            display_name=event.display_name,
            content=event.text or "",
            timestamp=time.monotonic(),
        )
        self._inserts += 1
        if self._inserts % MESSAGE_CACHE_PRUNE_EVERY == 0:
            self.prune_cache()

    def cached(self, message_id: int, now: Optional[float] = None) -> Optional[CachedMessage]:
        entry = self._cache.get(message_id)
        if entry is None:
            return None
        now = time.monotonic() if now is None else now
        if now - entry.timestamp > MESSAGE_CACHE_TTL_SECONDS:
            del self._cache[message_id]
            return None
        return entry

    def prune_cache(self, now: Optional[float] = None) -> None:
        now = time.monotonic() if now is None else now
        expired = [
            message_id
            for message_id, entry in self._cache.items()
            if now - entry.timestamp > MESSAGE_CACHE_TTL_SECONDS
        ]
        for message_id in expired:
            del self._cache[message_id]

    # --------------------------------------------------
    # Inbound
    # --------------------------------------------------

    async def handle_message(self, message: discord.Message) -> None:
        if not self._ready:
            return
        if message.channel.id != self._channel_id:
            return
        if message.author.bot or message.is_system():
            return

        content = collapse_whitespace(message.clean_content)
        if not content:
            return

        name = resolve_display_name(message.author)
        color = resolve_hex_color(message.author)

        if self.config.discord.enable_replies and message.reference and message.reference.message_id:
            referenced = self.cached(message.reference.message_id)
            if referenced:
                content = (
                    f'replying to {referenced.raw_display_name}: '
                    f'*"{referenced.content}"* - {content}'
                )

        await self._send_to_game(build_game_payload(name, color, content), "message")

    async def handle_reaction(self, payload: discord.RawReactionActionEvent) -> None:
        if not self._ready or not self.config.discord.enable_reactions:
            return
        if payload.channel_id != self._channel_id:
            return

        user = payload.member
        if user is None:
            user = await self.client.resolve_user(payload.user_id)
        if user is not None and user.bot:
            return

        candidate = resolve_display_name(user) if user is not None else f"User{str(payload.user_id)[-4:]}"
        reactor = normalize(candidate)
        if not reactor:
            return

        emoji = payload.emoji.name or "?"
        referenced = self.cached(payload.message_id)
        if referenced:
            text = (
                f'{reactor} reacted to {referenced.raw_display_name}: '
                f'*"{referenced.content}"* with {emoji}'
            )
        else:
            text = f"{reactor} reacted with {emoji}"

        await self._send_to_game(text, "reaction")

    async def _send_to_game(self, text: str, what: str) -> None:
        try:
            await self.connection.send_chat(text)
        except Exception as e:
            log.error(f"Failed to relay Discord {what} to Cubyz: {e}")


# ------------------------------------------------------------
# Helpers
# ------------------------------------------------------------

def resolve_status_message(status: ServerStatus, context: StatusContext) -> Optional[str]:
    if status is ServerStatus.ONLINE:
        return "🟢 **Bot connected to server**" if context.reason == "connected" else None

    if context.reason == "retries-exhausted":
        attempts = f" after {context.attempts} attempts" if context.attempts else ""
        return f"❌ **Failed to reconnect{attempts}**"
    if context.reason == "server":
        return "🔴 **Bot disconnected from server**"
    if context.reason == "error":
        return "⚠️ **Bot connection failed**"
    return None


def resolve_display_name(user) -> str:
    primary = normalize(getattr(user, "display_name", None) or getattr(user, "name", ""))
    if primary:
        return primary

    fallback = normalize(getattr(user, "name", ""))
    if fallback:
        return fallback

    return f"User{str(user.id)[-4:]}"


def resolve_hex_color(user) -> Optional[str]:
    colour = getattr(user, "colour", None)
    if colour is None or not colour.value:
        return None
    return str(colour).upper()


def build_game_payload(name: str, color: Optional[str], content: str) -> str:
    if color and color != CUBYZ_COLOR_RESET:
        return f"{color}{name}{CUBYZ_COLOR_RESET}: {content}"
    return f"{name}: {content}"


__all__ = [
    "DiscordIntegration",
    "build_game_payload",
    "collapse_whitespace",
    "resolve_display_name",
    "resolve_hex_color",
    "resolve_status_message",
]
