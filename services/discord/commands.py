"""
Discord Relay Commands

Registers slash commands on the relay bot. Registration only; the
commands read state through the provider passed in.
"""

from __future__ import annotations

from typing import Callable, List

import discord
from discord import app_commands
from discord.ext import commands

from shared.logging.logger import get_logger

log = get_logger("discord.commands", runtime="discord")

PlayersProvider = Callable[[], List[str]]


def format_player_list(players: List[str]) -> str:
    if not players:
        return "No players online."
    return f"**Players Online ({len(players)}):** " + ", ".join(players)


def setup(bot: commands.Bot, *, players: PlayersProvider):
    """
    Register relay slash commands.
    Called by the Discord client while the bot is built.
    """

    @app_commands.command(
        name="players",
        description="List players currently on the Cubyz server",
    )
    async def players_command(interaction: discord.Interaction):
        await interaction.response.send_message(
            format_player_list(players()),
            ephemeral=True,
        )

    bot.tree.add_command(players_command)
    log.info("Discord relay commands registered")


__all__ = ["format_player_list", "setup"]
