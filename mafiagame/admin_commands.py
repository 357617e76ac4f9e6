"""Admin commands for running a game of Mafia Nights."""

import logging
import os

import discord
from discord import app_commands
from discord.ext import commands

from .config import PUBLIC_CHANNEL_KEY
from .errors import GameError
from .models import AbilityFlag, GamePhase, Role
from .notifications import NotificationManager
from .view import GameView


logger = logging.getLogger(__name__)


class AdminCommands(commands.Cog):
    """Game master commands. Restricted to the bot owner and server administrators."""

    def __init__(self, bot: commands.Bot):
        self.bot = bot
        self.engine = bot.engine
        self.view = GameView()
        self.notifications = NotificationManager(bot, self.engine.storage)
        self.owner_id = int(os.getenv('BOT_OWNER_ID', '0'))

    def is_owner(self, user_id: int) -> bool:
        """Check if user is the bot owner."""
        if user_id == self.owner_id:
            return True
        application = self.bot.application
        if application and application.owner:
            return user_id == application.owner.id
        return False

    async def interaction_check(self, interaction: discord.Interaction) -> bool:
        permissions = getattr(interaction.user, "guild_permissions", None)
        if self.is_owner(interaction.user.id) or (permissions and permissions.administrator):
            return True
        await interaction.response.send_message("❌ This command is restricted to the game master.", ephemeral=True)
        return False

    async def _send_error(self, interaction: discord.Interaction, error: GameError):
        logger.info(f"Admin command refused ({error.status_code}): {error.message}")
        await interaction.response.send_message(embed=self.view.format_error(error.message), ephemeral=True)

    async def _announce_winner(self, interaction: discord.Interaction):
        state = await self.engine.phase.get_game_state()
        if state.phase == GamePhase.GAME_OVER and state.winner:
            await self.notifications.announce(embed=self.view.format_game_over(state.winner), interaction=interaction)

    async def _dm_role(self, player_id: str, role: Role):
        try:
            user = self.bot.get_user(int(player_id)) or await self.bot.fetch_user(int(player_id))
            await user.send(f"🎭 Your role for this game of Mafia is **{role.value}**. Keep it secret!")
        except (discord.HTTPException, ValueError) as e:
            logger.warning(f"Could not DM role to {player_id}: {e}")

    @app_commands.command(name="admin_assign_roles", description="[ADMIN] Deal roles and start Day 1")
    @app_commands.describe(
        mafia="Number of Mafia",
        doctor="Number of Doctors",
        detective="Number of Detectives",
        sheriff="Number of Sheriffs",
        jester="Number of Jesters",
    )
    async def assign_roles(self, interaction: discord.Interaction, mafia: int, doctor: int = 1,
                           detective: int = 1, sheriff: int = 0, jester: int = 0):
        counts = {
            Role.MAFIA: mafia,
            Role.DOCTOR: doctor,
            Role.DETECTIVE: detective,
            Role.SHERIFF: sheriff,
            Role.JESTER: jester,
        }
        try:
            assignments = await self.engine.registry.assign_roles(counts)
        except GameError as e:
            await self._send_error(interaction, e)
            return

        await interaction.response.send_message(
            embed=self.view.format_success(f"Roles dealt to {len(assignments)} players. Day 1 has begun."),
            ephemeral=True,
        )
        for player_id, role in assignments.items():
            await self._dm_role(player_id, role)
        await self.notifications.announce(
            content="☀️ Roles have been dealt. **Day 1** begins. Trust no one.", interaction=interaction
        )

    @app_commands.command(name="admin_start_night", description="[ADMIN] End the day and start the night")
    async def start_night(self, interaction: discord.Interaction):
        try:
            state = await self.engine.phase.start_night()
        except GameError as e:
            await self._send_error(interaction, e)
            return
        await interaction.response.send_message(embed=self.view.format_success("Night has fallen."), ephemeral=True)
        await self.notifications.announce(
            content=f"🌙 **Night {state.current_day}** has fallen. Submit your night actions.",
            interaction=interaction,
        )

    @app_commands.command(name="admin_start_day", description="[ADMIN] Resolve the night and start the next day")
    async def start_day(self, interaction: discord.Interaction):
        try:
            recap = await self.engine.phase.start_day()
        except GameError as e:
            await self._send_error(interaction, e)
            return
        await interaction.response.send_message(embed=self.view.format_success("The night was resolved."),
                                                ephemeral=True)
        await self.notifications.announce(embed=self.view.format_recap(recap), interaction=interaction)
        await self._announce_winner(interaction)

    @app_commands.command(name="admin_pending", description="[ADMIN] List accusations awaiting review")
    async def pending(self, interaction: discord.Interaction):
        accusations = await self.engine.trials.pending_accusations()
        await interaction.response.send_message(embed=self.view.format_pending(accusations), ephemeral=True)

    @app_commands.command(name="admin_approve", description="[ADMIN] Approve an accusation and open a trial")
    @app_commands.describe(accusation_id="The accusation to approve")
    async def approve(self, interaction: discord.Interaction, accusation_id: str):
        try:
            trial = await self.engine.trials.approve_accusation(accusation_id)
        except GameError as e:
            await self._send_error(interaction, e)
            return
        accused = await self.engine.storage.get_player(trial.accused_id)
        await interaction.response.send_message(embed=self.view.format_success("Trial opened."), ephemeral=True)
        await self.notifications.announce(embed=self.view.format_trial(trial, accused), interaction=interaction)

    @app_commands.command(name="admin_reject", description="[ADMIN] Reject an accusation")
    @app_commands.describe(accusation_id="The accusation to reject")
    async def reject(self, interaction: discord.Interaction, accusation_id: str):
        try:
            await self.engine.trials.reject_accusation(accusation_id)
        except GameError as e:
            await self._send_error(interaction, e)
            return
        await interaction.response.send_message(
            embed=self.view.format_success(f"Accusation `{accusation_id}` rejected."), ephemeral=True
        )

    @app_commands.command(name="admin_resolve_trial", description="[ADMIN] Close voting and read the verdict")
    async def resolve_trial(self, interaction: discord.Interaction):
        trial = await self.engine.trials.get_active_trial()
        if not trial:
            await interaction.response.send_message(
                embed=self.view.format_error("There is no trial in progress."), ephemeral=True
            )
            return
        try:
            await self.engine.trials.resolve_trial(trial.trial_id)
        except GameError as e:
            await self._send_error(interaction, e)
            return

        trial = await self.engine.trials.get_trial(trial.trial_id)
        accused = await self.engine.storage.get_player(trial.accused_id)
        await interaction.response.send_message(embed=self.view.format_success("Verdict delivered."), ephemeral=True)
        await self.notifications.announce(embed=self.view.format_trial(trial, accused), interaction=interaction)
        await self._announce_winner(interaction)

    @app_commands.command(name="admin_add_mission", description="[ADMIN] Add a mission to the catalog")
    @app_commands.describe(mission_id="Short unique ID", description="What the player has to do",
                           ability="Ability the mission unlocks")
    @app_commands.choices(ability=[app_commands.Choice(name=a.value, value=a.value) for a in AbilityFlag])
    async def add_mission(self, interaction: discord.Interaction, mission_id: str, description: str,
                          ability: app_commands.Choice[str]):
        try:
            mission = await self.engine.missions.add_mission(mission_id, description, ability.value)
        except GameError as e:
            await self._send_error(interaction, e)
            return
        await interaction.response.send_message(
            embed=self.view.format_success(f"Mission `{mission.mission_id}` unlocks {mission.ability_unlocked}."),
            ephemeral=True,
        )

    @app_commands.command(name="admin_assign_mission", description="[ADMIN] Give a player a mission")
    async def assign_mission(self, interaction: discord.Interaction, player: discord.Member, mission_id: str):
        try:
            mission = await self.engine.missions.assign_mission(str(player.id), mission_id)
        except GameError as e:
            await self._send_error(interaction, e)
            return
        await interaction.response.send_message(
            embed=self.view.format_success(f"{player.display_name} is now on mission `{mission.mission_id}`."),
            ephemeral=True,
        )

    @app_commands.command(name="admin_complete_mission", description="[ADMIN] Mark a mission complete")
    async def complete_mission(self, interaction: discord.Interaction, player: discord.Member, mission_id: str):
        try:
            ability = await self.engine.missions.complete_mission(str(player.id), mission_id)
        except GameError as e:
            await self._send_error(interaction, e)
            return
        await interaction.response.send_message(
            embed=self.view.format_success(f"{player.display_name} unlocked {ability}."), ephemeral=True
        )

    @app_commands.command(name="admin_reset_game", description="[ADMIN] Reset the entire game state")
    async def reset_game(self, interaction: discord.Interaction):
        try:
            await self.engine.reset_game()
        except GameError as e:
            await self._send_error(interaction, e)
            return
        embed = discord.Embed(
            title="🔄 Game Reset Complete",
            description="All game data has been cleared. Players can now use `/join` to start a new game!",
            color=0x00ff00,
        )
        await interaction.response.send_message(embed=embed)

    @app_commands.command(name="admin_setchannel", description="[ADMIN] Set the channel for public game messages")
    @app_commands.describe(channel="The channel where public game messages should be sent")
    async def set_channel(self, interaction: discord.Interaction, channel: discord.TextChannel):
        if interaction.guild and not channel.permissions_for(interaction.guild.me).send_messages:
            await interaction.response.send_message(
                f"❌ I don't have permission to send messages in {channel.mention}.", ephemeral=True
            )
            return

        await self.engine.storage.set_state(PUBLIC_CHANNEL_KEY, str(channel.id))
        await interaction.response.send_message(
            embed=self.view.format_success(f"Public game messages will now be sent to {channel.mention}"),
            ephemeral=True,
        )
        try:
            await channel.send(embed=discord.Embed(
                title="🌙 Mafia Nights Channel Configured",
                description="This channel has been set for public game messages!",
                color=0x2b2d42,
            ))
        except discord.HTTPException as e:
            await interaction.followup.send(f"⚠️ Channel set but failed to send test message: {e}", ephemeral=True)


async def setup(bot: commands.Bot):
    """Setup function to add the admin cog to the bot."""
    await bot.add_cog(AdminCommands(bot))
