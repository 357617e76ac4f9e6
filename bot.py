"""Main entry point for the Mafia Nights Discord bot."""

import os
import sys
import asyncio
import logging
from pathlib import Path

import discord
from discord.ext import commands
from dotenv import load_dotenv

# Game settings are read from the environment at import time
load_dotenv()

from error_handler import ErrorHandler  # noqa: E402
from mafiagame.engine import GameEngine  # noqa: E402
from mafiagame.storage import GameStorage  # noqa: E402

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(),
        logging.FileHandler('mafia_nights.log')
    ]
)
logger = logging.getLogger(__name__)

EXTENSIONS = (
    ('mafiagame.commands', True),
    ('mafiagame.admin_commands', True),
    ('mafiagame.scheduler', False),
)


def load_or_prompt_token() -> str:
    """Read the bot token, prompting for it once if .env does not have it."""
    token = os.getenv('DISCORD_TOKEN')
    if not token:
        logger.warning("DISCORD_TOKEN not found in .env file")
        token = input("Please enter your Discord bot token: ").strip()

        if not token:
            logger.error("No token provided. Exiting.")
            sys.exit(1)

        with Path('.env').open('a') as f:
            f.write(f"\nDISCORD_TOKEN={token}\n")
        logger.info("Token saved to .env file")

    return token


class MafiaBot(commands.Bot):
    """The main Mafia Nights bot class."""

    def __init__(self, engine: GameEngine):
        intents = discord.Intents.default()
        intents.message_content = False  # We only use slash commands

        super().__init__(
            command_prefix='!',  # Unused but required
            intents=intents,
            description="A Discord bot for running Mafia Nights - a day/night social deduction game"
        )

        self.engine = engine
        owner_id = int(os.getenv('BOT_OWNER_ID', '0'))
        self.error_handler = ErrorHandler(self, owner_id)
        self.tree.on_error = self.on_app_command_error

    async def setup_hook(self):
        """Setup hook called before the bot connects."""
        logger.info("Setting up Mafia Nights bot...")
        await self.engine.initialize()

        for name, required in EXTENSIONS:
            try:
                await self.load_extension(name)
                logger.info(f"Loaded {name}")
            except commands.ExtensionError as e:
                await self.error_handler.notify_owner(f"Failed to load {name}", str(e), e)
                logger.error(f"Failed to load {name}: {e}")
                if required:
                    raise

        try:
            synced = await self.tree.sync()
            logger.info(f"Synced {len(synced)} command(s)")
        except discord.HTTPException as e:
            await self.error_handler.notify_owner("Failed to sync commands", str(e), e)
            logger.error(f"Failed to sync commands: {e}")

    async def on_ready(self):
        """Called when the bot is ready."""
        logger.info(f"Mafia Nights bot is ready! Logged in as {self.user}")
        logger.info(f"Bot is in {len(self.guilds)} guild(s)")

        await self.change_presence(activity=discord.Game(name="Mafia Nights | /status"))
        await self.error_handler.send_startup_notification()

    async def on_app_command_error(self, interaction, error):
        """Handle application command errors."""
        await self.error_handler.handle_interaction_error(interaction, error)

    async def on_error(self, event, *args, **kwargs):
        """Handle general bot errors."""
        exc_type, exc_value, exc_traceback = sys.exc_info()
        logger.error(f"Bot error in event {event}", exc_info=True)
        if exc_value:
            context = {"event": event, "args": str(args)[:500]}
            await self.error_handler.notify_owner(f"Bot Error in {event}", str(context), exc_value)

    async def close(self):
        """Clean shutdown."""
        logger.info("Shutting down Mafia Nights bot...")
        await self.error_handler.notify_owner("Bot Shutdown", "Mafia Nights bot is shutting down normally")
        await super().close()


async def main():
    """Main function to run the bot."""
    token = load_or_prompt_token()
    bot = MafiaBot(GameEngine(GameStorage()))
    try:
        await bot.start(token)
    except Exception as e:
        logger.error(f"Bot crashed: {e}", exc_info=True)
        await bot.error_handler.notify_owner("Bot Crashed", "Fatal error while running", e)
        raise
    finally:
        if not bot.is_closed():
            await bot.close()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Bot stopped by user")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)
