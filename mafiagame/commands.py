"""Discord slash commands for Mafia Nights players."""

import logging
from typing import Optional

import discord
from discord import app_commands
from discord.ext import commands

from .errors import GameError
from .models import CHANGE_ROLE_CHOICES, ActionResult, VoteType
from .notifications import NotificationManager
from .view import GameView


logger = logging.getLogger(__name__)


class MafiaCommands(commands.Cog):
    """Cog containing all player slash commands."""

    def __init__(self, bot: commands.Bot):
        self.bot = bot
        self.engine = bot.engine
        self.view = GameView()
        self.notifications = NotificationManager(bot, self.engine.storage)

    async def _send_error(self, interaction: discord.Interaction, error: GameError):
        logger.info(f"/{interaction.command.name if interaction.command else '?'} by {interaction.user.id} "
                    f"refused ({error.status_code}): {error.message}")
        await interaction.response.send_message(embed=self.view.format_error(error.message), ephemeral=True)

    async def _reply(self, interaction: discord.Interaction, result: ActionResult):
        await interaction.response.send_message(result.message, ephemeral=True)
        if result.public_message:
            await self.notifications.announce(content=result.public_message, interaction=interaction)

    async def _perform(self, interaction: discord.Interaction, action, *args):
        """Run a game action that returns an ActionResult and report it."""
        try:
            result = await action(*args)
        except GameError as e:
            await self._send_error(interaction, e)
            return
        await self._reply(interaction, result)

    @app_commands.command(name="join", description="Join the next game of Mafia")
    async def join(self, interaction: discord.Interaction):
        await self._perform(
            interaction, self.engine.registry.join_game, str(interaction.user.id), interaction.user.display_name
        )

    @app_commands.command(name="status", description="See who is alive, and your own role")
    async def status(self, interaction: discord.Interaction):
        state = await self.engine.phase.get_game_state()
        players = await self.engine.registry.list_players()
        embeds = [self.view.format_roster(state, players)]

        me = next((p for p in players if p.player_id == str(interaction.user.id)), None)
        if me:
            mission = await self.engine.missions.get_player_mission(me.player_id)
            embeds.append(self.view.format_status(me, mission))
        await interaction.response.send_message(embeds=embeds, ephemeral=True)

    # Night actions

    @app_commands.command(name="kill", description="[Mafia] Choose tonight's victim")
    @app_commands.describe(target="The player to kill", second_target="Another victim, if the game allows more")
    async def kill(self, interaction: discord.Interaction, target: discord.Member,
                   second_target: Optional[discord.Member] = None):
        targets = [str(target.id)]
        if second_target:
            targets.append(str(second_target.id))
        await self._perform(interaction, self.engine.night.kill, str(interaction.user.id), targets)

    @app_commands.command(name="protect", description="[Doctor] Protect a player tonight")
    @app_commands.describe(target="The player to protect")
    async def protect(self, interaction: discord.Interaction, target: discord.Member):
        await self._perform(interaction, self.engine.night.protect, str(interaction.user.id), str(target.id))

    @app_commands.command(name="investigate", description="[Detective] Find out if a player is Mafia")
    @app_commands.describe(target="The player to investigate")
    async def investigate(self, interaction: discord.Interaction, target: discord.Member):
        await self._perform(interaction, self.engine.night.investigate, str(interaction.user.id), str(target.id))

    @app_commands.command(name="shoot", description="[Sheriff] Use your one shot")
    @app_commands.describe(target="The player to shoot")
    async def shoot(self, interaction: discord.Interaction, target: discord.Member):
        await self._perform(interaction, self.engine.night.shoot, str(interaction.user.id), str(target.id))

    @app_commands.command(name="night_vote", description="Put your voting power behind tonight's prime suspect")
    @app_commands.describe(target="The player you suspect")
    async def night_vote(self, interaction: discord.Interaction, target: discord.Member):
        await self._perform(interaction, self.engine.town_vote.cast_night_vote, str(interaction.user.id), str(target.id))

    # One-time abilities

    @app_commands.command(name="convert", description="[Mafia] Recruit a random villager")
    async def convert(self, interaction: discord.Interaction):
        await self._perform(interaction, self.engine.night.convert, str(interaction.user.id))

    @app_commands.command(name="reveal", description="[Mafia] Learn who one of your teammates is")
    async def reveal(self, interaction: discord.Interaction):
        await self._perform(interaction, self.engine.night.reveal, str(interaction.user.id))

    @app_commands.command(name="revive", description="[Doctor] Bring a random dead player back")
    async def revive(self, interaction: discord.Interaction):
        await self._perform(interaction, self.engine.night.revive, str(interaction.user.id))

    @app_commands.command(name="change_role", description="[Villager] Take on a new role")
    @app_commands.describe(role="Your new role")
    @app_commands.choices(role=[app_commands.Choice(name=r.value, value=r.value) for r in CHANGE_ROLE_CHOICES])
    async def change_role(self, interaction: discord.Interaction, role: app_commands.Choice[str]):
        await self._perform(interaction, self.engine.night.change_role, str(interaction.user.id), role.value)

    @app_commands.command(name="increase_vote", description="[Villager] Permanently add one to your voting power")
    async def increase_vote(self, interaction: discord.Interaction):
        await self._perform(interaction, self.engine.night.increase_vote_power, str(interaction.user.id))

    # Accusations and trials

    @app_commands.command(name="accuse", description="Accuse a player of being Mafia")
    @app_commands.describe(target="The player you accuse", evidence="Link to your audio evidence")
    async def accuse(self, interaction: discord.Interaction, target: discord.Member, evidence: Optional[str] = None):
        try:
            accusation_id = await self.engine.trials.submit_accusation(
                str(interaction.user.id), str(target.id), evidence
            )
        except GameError as e:
            await self._send_error(interaction, e)
            return
        await interaction.response.send_message(
            f"Your accusation against {target.display_name} (`{accusation_id}`) is waiting for the game master.",
            ephemeral=True,
        )

    @app_commands.command(name="trial", description="Show the trial in progress")
    async def trial(self, interaction: discord.Interaction):
        trial = await self.engine.trials.get_active_trial()
        if not trial:
            await interaction.response.send_message("There is no trial in progress.", ephemeral=True)
            return
        accused = await self.engine.storage.get_player(trial.accused_id)
        await interaction.response.send_message(embed=self.view.format_trial(trial, accused))

    @app_commands.command(name="vote", description="[Jury] Vote in the trial in progress")
    @app_commands.describe(verdict="Your vote")
    @app_commands.choices(verdict=[
        app_commands.Choice(name="Guilty", value=VoteType.GUILTY.value),
        app_commands.Choice(name="Not Guilty", value=VoteType.NOT_GUILTY.value),
    ])
    async def vote(self, interaction: discord.Interaction, verdict: app_commands.Choice[str]):
        trial = await self.engine.trials.get_active_trial()
        if not trial:
            await interaction.response.send_message(
                embed=self.view.format_error("There is no trial in progress."), ephemeral=True
            )
            return
        await self._perform(
            interaction, self.engine.jury.cast_vote, str(interaction.user.id), trial.trial_id, verdict.value
        )

    @app_commands.command(name="my_votes", description="See how you have voted in past trials")
    async def my_votes(self, interaction: discord.Interaction):
        try:
            votes = await self.engine.jury.votes_by_voter(str(interaction.user.id))
        except GameError as e:
            await self._send_error(interaction, e)
            return
        await interaction.response.send_message(embed=self.view.format_votes(votes), ephemeral=True)

    @app_commands.command(name="history", description="[Detective] Review your investigations")
    async def history(self, interaction: discord.Interaction):
        try:
            history = await self.engine.night.investigation_history(str(interaction.user.id))
        except GameError as e:
            await self._send_error(interaction, e)
            return
        await interaction.response.send_message(embed=self.view.format_history(history), ephemeral=True)

    @app_commands.command(name="mission", description="See your current mission")
    async def mission(self, interaction: discord.Interaction):
        try:
            mission = await self.engine.missions.get_player_mission(str(interaction.user.id))
        except GameError as e:
            await self._send_error(interaction, e)
            return
        if not mission:
            await interaction.response.send_message("You have no mission right now.", ephemeral=True)
            return
        await interaction.response.send_message(
            f"**Mission `{mission.mission_id}`:** {mission.description}\nUnlocks: {mission.ability_unlocked}",
            ephemeral=True,
        )

    @app_commands.command(name="recap", description="What happened during a night")
    @app_commands.describe(day="Night number (defaults to last night)")
    async def recap(self, interaction: discord.Interaction, day: Optional[int] = None):
        if day is None:
            state = await self.engine.phase.get_game_state()
            day = max(1, state.current_day - 1)
        try:
            recap = await self.engine.night_resolver.nightly_recap(day)
        except GameError as e:
            await self._send_error(interaction, e)
            return
        await interaction.response.send_message(embed=self.view.format_recap(recap))


async def setup(bot: commands.Bot):
    """Setup function to add the cog to the bot."""
    await bot.add_cog(MafiaCommands(bot))
