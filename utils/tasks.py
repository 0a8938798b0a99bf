"""
Background tasks: the pumpkin scheduler and periodic cleanup.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from discord.ext import tasks

from config.constants import COOLDOWN_RETENTION_DAYS, PUMPKIN_STARTUP_DELAY

if TYPE_CHECKING:
    from bot import HalloweenBot

logger = logging.getLogger(__name__)


class BackgroundTasks:
    """Scheduled background tasks for the bot."""

    def __init__(self, bot: HalloweenBot):
        self.bot = bot
        self.pumpkin_task.change_interval(seconds=bot.settings.pumpkin_tick_seconds)
        self.pumpkin_task.start()
        self.cleanup_task.start()

    @tasks.loop(seconds=10)
    async def pumpkin_task(self):
        """Run one pumpkin scheduler decision."""
        cog = self.bot.get_cog("Pumpkins")
        if cog is None:
            return
        try:
            await cog.run_tick()
        except Exception as e:
            logger.error(f"Error during pumpkin tick: {e}", exc_info=True)

    @pumpkin_task.before_loop
    async def before_pumpkin(self):
        """Wait for the gateway, expire anything left over from a restart, then start."""
        await self.bot.wait_until_ready()
        await asyncio.sleep(PUMPKIN_STARTUP_DELAY)
        cog = self.bot.get_cog("Pumpkins")
        if cog is not None:
            try:
                await cog.sweep()
            except Exception as e:
                logger.error(f"Error during startup pumpkin sweep: {e}", exc_info=True)
        logger.info(
            "🎃 Pumpkin scheduler started (every %ds)", self.bot.settings.pumpkin_tick_seconds
        )

    @tasks.loop(hours=24)
    async def cleanup_task(self):
        """Drop stale cooldown rows daily."""
        try:
            deleted_count = await self.bot.database.cleanup_cooldowns(
                days=COOLDOWN_RETENTION_DAYS
            )
            logger.info(f"🧹 Cleaned up {deleted_count} stale cooldowns")
        except Exception as e:
            logger.error(f"Error during cleanup task: {e}", exc_info=True)

    @cleanup_task.before_loop
    async def before_cleanup(self):
        await self.bot.wait_until_ready()

    def stop(self):
        """Stop all background tasks."""
        self.pumpkin_task.cancel()
        self.cleanup_task.cancel()
        logger.info("Background tasks stopped")
