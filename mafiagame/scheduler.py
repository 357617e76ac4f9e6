"""Trial deadline scheduler for Mafia Nights."""

import logging

from discord.ext import commands, tasks

from .config import TRIAL_POLL_MINUTES
from .errors import GameError
from .models import GamePhase
from .notifications import NotificationManager
from .view import GameView


logger = logging.getLogger(__name__)


class TrialScheduler:
    """Closes trials whose voting window has run out."""

    def __init__(self, bot: commands.Bot, autostart: bool = True):
        self.bot = bot
        self.engine = bot.engine
        self.view = GameView()
        self.notifications = NotificationManager(bot, self.engine.storage)

        if autostart:
            self.expired_trials.start()

    def cog_unload(self):
        """Clean shutdown of the scheduler."""
        self.expired_trials.cancel()

    @tasks.loop(minutes=TRIAL_POLL_MINUTES)
    async def expired_trials(self):
        await self.close_expired_trials()

    async def close_expired_trials(self):
        """One polling pass. Failures are logged so the loop keeps running."""
        try:
            results = await self.engine.trials.resolve_expired_trials()

            for trial_id, verdict in results:
                logger.info(f"Deadline passed for {trial_id}: {verdict.value}")
                trial = await self.engine.trials.get_trial(trial_id)
                accused = await self.engine.storage.get_player(trial.accused_id)
                await self.notifications.announce(embed=self.view.format_trial(trial, accused))

            if results:
                state = await self.engine.phase.get_game_state()
                if state.phase == GamePhase.GAME_OVER and state.winner:
                    await self.notifications.announce(embed=self.view.format_game_over(state.winner))
        except GameError as e:
            logger.error(f"Could not resolve expired trials: {e.message}")
        except Exception as e:
            logger.error(f"Error in trial scheduler task: {str(e)}")

    @expired_trials.before_loop
    async def before_expired_trials(self):
        """Wait for bot to be ready before polling."""
        await self.bot.wait_until_ready()
        logger.info(f"Trial scheduler polling every {TRIAL_POLL_MINUTES} minute(s)")


async def setup(bot: commands.Bot):
    """Setup function to add the scheduler to the bot."""
    scheduler = TrialScheduler(bot)
    # Store reference so it doesn't get garbage collected
    bot.trial_scheduler = scheduler
