"""Public announcements for Mafia Nights."""

import logging
from typing import Optional

import discord

from .config import PUBLIC_CHANNEL_KEY
from .storage import GameStorage


logger = logging.getLogger(__name__)


class NotificationManager:
    """Sends public messages to the configured game channel."""

    def __init__(self, bot, storage: GameStorage):
        self.bot = bot
        self.storage = storage

    async def get_public_channel(self) -> Optional[discord.abc.Messageable]:
        channel_id = await self.storage.get_state(PUBLIC_CHANNEL_KEY)
        if not channel_id:
            return None
        channel = self.bot.get_channel(int(channel_id))
        if not channel:
            logger.warning(f"Configured channel {channel_id} not accessible, clearing setting")
            await self.storage.set_state(PUBLIC_CHANNEL_KEY, None)
        return channel

    async def announce(self, content: str = None, embed: discord.Embed = None,
                       interaction: Optional[discord.Interaction] = None) -> bool:
        """Post to the game channel, falling back to the interaction's channel."""
        channel = await self.get_public_channel()
        if not channel and interaction:
            channel = interaction.channel
        if not channel:
            logger.info("No public channel configured; announcement skipped")
            return False

        try:
            await channel.send(content=content, embed=embed)
        except discord.HTTPException as e:
            logger.error(f"Failed to send public message: {e}")
            return False
        return True
