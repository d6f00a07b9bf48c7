"""
Discord Client (Relay Runtime)

This module owns the Discord connection itself.

Responsibilities:
- connect to Discord and wait for ready
- resolve the relay channel once and keep it
- send text with bounded retries
- publish the player count as bot presence
- forward channel messages and reactions to registered handlers

IMPORTANT:
- One instance per relay; nothing here is module-global
- This client MUST NOT create its own event loop
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Iterable, Optional

import discord
from discord.ext import commands

from shared.logging.logger import get_logger

# NOTE: routed to Discord runtime log file
log = get_logger("discord.client", runtime="discord")

SEND_ATTEMPTS = 3
SEND_BACKOFF_SECONDS = 0.5

MessageHandler = Callable[[discord.Message], Awaitable[None]]
ReactionHandler = Callable[[discord.RawReactionActionEvent], Awaitable[None]]
CommandSetup = Callable[[commands.Bot], None]


class DiscordRelayClient:
    """
    Thin wrapper around a discord.py Bot.

    This class provides:
    - async start() that returns once the gateway is ready
    - async close()
    - channel send / presence helpers
    """

    def __init__(
        self,
        *,
        token: str,
        channel_id: int,
        allowed_mentions: Iterable[str] = (),
        message_handler: Optional[MessageHandler] = None,
        reaction_handler: Optional[ReactionHandler] = None,
        command_setup: Optional[CommandSetup] = None,
    ):
        if not token:
            raise RuntimeError("Discord bot token is required")

        self._token = token
        self.channel_id = int(channel_id)
        self._allowed_mentions = set(allowed_mentions)
        self._message_handler = message_handler
        self._reaction_handler = reaction_handler
        self._command_setup = command_setup

        self._bot: Optional[commands.Bot] = None
        self._task: Optional[asyncio.Task] = None
        self._ready_event = asyncio.Event()
        self._channel: Optional[discord.abc.Messageable] = None

    # --------------------------------------------------

    @property
    def bot(self) -> Optional[commands.Bot]:
        return self._bot

    @property
    def user(self) -> Optional[discord.ClientUser]:
        return self._bot.user if self._bot else None

    def _build_bot(self) -> commands.Bot:
        intents = discord.Intents.default()
        intents.guilds = True
        intents.messages = True
        intents.message_content = True
        intents.reactions = True

        mentions = discord.AllowedMentions(
            everyone="everyone" in self._allowed_mentions,
            users="users" in self._allowed_mentions,
            roles="roles" in self._allowed_mentions,
        )

        bot = commands.Bot(
            command_prefix=commands.when_mentioned,
            intents=intents,
            allowed_mentions=mentions,
        )

        if self._command_setup:
            self._command_setup(bot)

        # --------------------------------------------------
        # Lifecycle Events
        # --------------------------------------------------

        @bot.event
        async def on_ready():
            log.info(
                f"Discord connected as {bot.user} "
                f"(id={bot.user.id}) "
                f"guilds={len(bot.guilds)}"
            )

            if self._command_setup:
                try:
                    await bot.tree.sync()
                    log.info("Discord command tree synced")
                except Exception as e:
                    log.error(f"Failed to sync Discord commands: {e}")

            self._ready_event.set()

        @bot.event
        async def on_disconnect():
            log.warning("Discord connection lost")

        @bot.event
        async def on_message(message: discord.Message):
            if self._message_handler:
                await self._message_handler(message)

        @bot.event
        async def on_raw_reaction_add(payload: discord.RawReactionActionEvent):
            if self._reaction_handler:
                await self._reaction_handler(payload)

        return bot

    # --------------------------------------------------
    # Lifecycle
    # --------------------------------------------------

    async def start(self) -> None:
        if self._bot is not None:
            raise RuntimeError("Discord client already running")

        log.info("Connecting to Discord")
        self._ready_event.clear()
        self._bot = self._build_bot()
        self._task = asyncio.create_task(self._bot.start(self._token))

        ready = asyncio.create_task(self._ready_event.wait())
        done, _ = await asyncio.wait(
            {ready, self._task},
            return_when=asyncio.FIRST_COMPLETED,
        )

        if self._task in done:
            ready.cancel()
            error = None if self._task.cancelled() else self._task.exception()
            await self.close()
            raise RuntimeError(f"Discord client failed to start: {error}")

        log.info("Discord client ready")

    async def close(self) -> None:
        self._channel = None
        bot, task = self._bot, self._task
        self._bot = None
        self._task = None

        if bot is not None and not bot.is_closed():
            try:
                await bot.close()
            except Exception as e:
                log.warning(f"Discord client close error ignored: {e}")

        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            except Exception as e:
                log.debug(f"Discord client task ended with: {e}")

        log.info("Discord client closed")

    # --------------------------------------------------
    # Channel
    # --------------------------------------------------

    async def get_channel(self) -> discord.abc.Messageable:
        if self._channel is not None:
            return self._channel
        if self._bot is None:
            raise RuntimeError("Discord client has not been started")

        channel = self._bot.get_channel(self.channel_id)
        if channel is None:
            channel = await self._bot.fetch_channel(self.channel_id)

        if not isinstance(channel, discord.abc.Messageable):
            raise RuntimeError(f"Channel {self.channel_id} cannot send messages")

        self._channel = channel
        return channel

    async def send_message(self, text: str) -> discord.Message:
        channel = await self.get_channel()

        for attempt in range(1, SEND_ATTEMPTS + 1):
            try:
                return await channel.send(text)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if attempt == SEND_ATTEMPTS:
                    raise
                log.warning(f"Discord send failed (attempt {attempt}/{SEND_ATTEMPTS}): {e}")
                await asyncio.sleep(SEND_BACKOFF_SECONDS * attempt)

        raise RuntimeError("Failed to send message after all retry attempts")

    async def set_presence(self, player_count: int) -> None:
        if self._bot is None or self._bot.user is None:
            log.warning("Discord client is not ready to update presence yet")
            return

        await self._bot.change_presence(
            status=discord.Status.online,
            activity=discord.CustomActivity(name=f"Players Online: {player_count}"),
        )

    async def resolve_user(self, user_id: int) -> Optional[discord.abc.User]:
        if self._bot is None:
            return None
        user = self._bot.get_user(user_id)
        if user is not None:
            return user
        try:
            return await self._bot.fetch_user(user_id)
        except discord.HTTPException as e:
            log.debug(f"Failed to fetch Discord user {user_id}: {e}")
            return None


__all__ = ["DiscordRelayClient"]
