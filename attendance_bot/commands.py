from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import discord

from .clock import utc_now
from .errors import PersistenceFailure
from .signals import help_text

if TYPE_CHECKING:
    from .main import AttendanceBot


def register_commands(bot: AttendanceBot) -> None:
    """Register all slash commands on the bot. Called once during setup."""
    guild_scope = discord.Object(id=bot.config.guild_id)

    async def ensure_group(interaction: discord.Interaction) -> bool:
        if interaction.guild is None or interaction.channel_id is None:
            await interaction.response.send_message("Please use this command in a server channel 🙂", ephemeral=True)
            return False
        return True

    @bot.tree.command(name="ping", description="Check that the bot is alive", guild=guild_scope)
    async def ping(interaction: discord.Interaction) -> None:
        await interaction.response.send_message("pong ✅", ephemeral=True)

    @bot.tree.command(name="codes", description="List the attendance short codes", guild=guild_scope)
    async def codes(interaction: discord.Interaction) -> None:
        await interaction.response.send_message(help_text(), ephemeral=True)

    @bot.tree.command(name="report", description="Today and this week's attendance summary", guild=guild_scope)
    async def report(interaction: discord.Interaction) -> None:
        if not await ensure_group(interaction):
            return

        try:
            content = await asyncio.to_thread(bot.group_report, interaction.channel_id, utc_now())
        except PersistenceFailure:
            bot.logger.exception("/report failed")
            await interaction.response.send_message("Could not read attendance records right now.", ephemeral=True)
            return

        await interaction.response.send_message(
            content or "No attendance records yet.",
            allowed_mentions=discord.AllowedMentions.none(),
        )

    @bot.tree.command(name="myreport", description="Your attendance today and this month", guild=guild_scope)
    async def myreport(interaction: discord.Interaction) -> None:
        if not await ensure_group(interaction):
            return

        user = interaction.user
        try:
            content = await asyncio.to_thread(
                bot.personal_report, interaction.channel_id, user.id, f"@{user.name}", utc_now()
            )
        except PersistenceFailure:
            bot.logger.exception("/myreport failed")
            await interaction.response.send_message("Could not read attendance records right now.", ephemeral=True)
            return

        await interaction.response.send_message(content or "No attendance records for you today.", ephemeral=True)
