"""Error reporting for the Mafia Nights bot: user-facing replies and owner DMs."""

import logging
import traceback
from datetime import datetime, timedelta, timezone
from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands

from mafiagame.errors import ConflictError, DependencyError, GameError


logger = logging.getLogger(__name__)

# Game errors the owner should hear about; the rest are ordinary refusals
OWNER_ALERT_ERRORS = (ConflictError, DependencyError)


def unwrap(error: Exception) -> Exception:
    """Dig the original exception out of discord.py's invoke wrappers."""
    while isinstance(error, (app_commands.CommandInvokeError, commands.CommandInvokeError)) and error.original:
        error = error.original
    return error


class ErrorHandler:
    """Centralized error handling and notification system."""

    def __init__(self, bot: commands.Bot, owner_id: int):
        self.bot = bot
        self.owner_id = owner_id
        self.error_counts = {}
        self.last_notification = {}
        self.notification_cooldown = 300  # 5 minutes between same error types

    async def notify_owner(self, title: str, description: str, error: Optional[Exception] = None):
        """Send a DM notification to the bot owner."""
        try:
            owner = self.bot.get_user(self.owner_id) or await self.bot.fetch_user(self.owner_id)

            embed = discord.Embed(
                title=f"🚨 {title}",
                description=description,
                color=0xff0000,
                timestamp=datetime.now(timezone.utc),
            )
            if error:
                embed.add_field(name="Error Details", value=f"```{str(error)[:1000]}```", inline=False)
                tb = ''.join(traceback.format_exception(type(error), error, error.__traceback__))
                embed.add_field(name="Traceback", value=f"```{tb[-1000:]}```", inline=False)
            embed.set_footer(text="Mafia Nights Error Handler")

            await owner.send(embed=embed)
            logger.info(f"Sent error notification to owner: {title}")
        except discord.HTTPException as e:
            logger.error(f"Failed to send error notification: {e}")

    def _should_notify(self, error_type: str) -> bool:
        now = datetime.now(timezone.utc)
        self.error_counts[error_type] = self.error_counts.get(error_type, 0) + 1
        last = self.last_notification.get(error_type)
        if last and now - last <= timedelta(seconds=self.notification_cooldown):
            return False
        self.last_notification[error_type] = now
        return True

    def describe(self, error: Exception) -> str:
        """The message a player sees for an error."""
        if isinstance(error, ConflictError):
            return "⏳ The game was busy with other players' actions. Please try again."
        if isinstance(error, DependencyError):
            return "🛠️ The game database is unavailable right now. The game master has been notified."
        if isinstance(error, GameError):
            return error.message
        if isinstance(error, discord.NotFound) and error.code == 10062:
            return "⏱️ The command took too long to process. Please try again."
        if isinstance(error, app_commands.CommandOnCooldown):
            return f"🕒 Command is on cooldown. Try again in {error.retry_after:.1f} seconds."
        if isinstance(error, (app_commands.MissingPermissions, app_commands.CheckFailure)):
            return "🔒 You don't have permission to use this command."
        return "An error occurred while processing your command. The bot owner has been notified."

    async def handle_interaction_error(self, interaction: discord.Interaction, error: Exception):
        """Handle slash command interaction errors."""
        error = unwrap(error)
        error_type = type(error).__name__
        command_name = interaction.command.name if interaction.command else "unknown"

        is_refusal = isinstance(error, GameError) and not isinstance(error, OWNER_ALERT_ERRORS)
        if is_refusal:
            logger.info(f"/{command_name} refused ({error.status_code}): {error.message}")
        else:
            logger.error(f"Interaction error in /{command_name}: {error}")
            if self._should_notify(error_type):
                guild = f"{interaction.guild.name} ({interaction.guild.id})" if interaction.guild else "DM"
                description = (
                    f"**Command:** /{command_name}\n"
                    f"**User:** {interaction.user.display_name} ({interaction.user.id})\n"
                    f"**Guild:** {guild}\n"
                    f"**Error Count:** {self.error_counts[error_type]} (since restart)"
                )
                await self.notify_owner(f"Slash Command Error: {error_type}", description, error)

        error_embed = discord.Embed(title="❌ Command Error", description=self.describe(error), color=0xff0000)
        try:
            if not interaction.response.is_done():
                await interaction.response.send_message(embed=error_embed, ephemeral=True)
            else:
                await interaction.followup.send(embed=error_embed, ephemeral=True)
        except discord.HTTPException as followup_error:
            logger.error(f"Failed to send error message to user: {followup_error}")

    async def send_startup_notification(self):
        """Send notification when bot starts successfully."""
        state = await self.bot.engine.phase.get_game_state()
        await self.notify_owner(
            "Mafia Nights Bot Started",
            f"Online in {len(self.bot.guilds)} guild(s). Game is at {state.phase.value} {state.current_day}.",
        )
