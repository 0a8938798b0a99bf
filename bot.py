"""
Pumpkin Patch Discord Bot — Main entry point.
Loads configuration, initializes services, and starts the bot.
"""

from __future__ import annotations

import logging
import sys
from typing import Optional

import discord
from cachetools import TTLCache
from discord.ext import commands

from config.constants import COMMAND_PREFIX, GUILD_CACHE_TTL
from config.settings import Settings
from utils.db_manager import DatabaseManager
from utils.embedder import Embedder
from utils.pumpkin import PumpkinHunt
from utils.tasks import BackgroundTasks

# ── Logging ──────────────────────────────────────────────────────────
settings = Settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s │ %(levelname)-8s │ %(name)-20s │ %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stdout,
)
logger = logging.getLogger("halloween")

# ── Cog list ─────────────────────────────────────────────────────────
COGS = [
    "cogs.pumpkin",
    "cogs.candy",
    "cogs.admin",
]


class GuildDisabled(commands.CheckFailure):
    """Raised by the global check when the guild has switched the bot off."""


# ── Bot subclass ─────────────────────────────────────────────────────
class HalloweenBot(commands.Bot):
    """Custom Bot with shared services attached."""

    def __init__(self, settings: Settings):
        intents = discord.Intents.default()
        intents.message_content = True  # prefix commands and passive candy
        intents.members = True          # moderatable checks for trick-or-treat
        intents.guilds = True
        intents.messages = True
        intents.typing = False

        super().__init__(
            command_prefix=COMMAND_PREFIX,
            intents=intents,
            help_command=None,
        )

        self.settings = settings
        self.database = DatabaseManager(settings.db_path)
        self.pumpkins = PumpkinHunt(
            self.database, despawn_after=settings.pumpkin_despawn_seconds
        )
        self.background_tasks: Optional[BackgroundTasks] = None
        # enabled flag is read on every message; keep it out of the DB hot path
        self._guild_enabled: TTLCache[int, bool] = TTLCache(
            maxsize=5_000, ttl=GUILD_CACHE_TTL
        )

    # ── Guild switch (DB-backed, cached) ─────────────────────────────

    async def is_guild_enabled(self, guild_id: Optional[int]) -> bool:
        """Return True if the bot is switched on for *guild_id* (DMs always are)."""
        if guild_id is None:
            return True
        cached = self._guild_enabled.get(guild_id)
        if cached is not None:
            return cached
        enabled = await self.database.is_guild_enabled(guild_id)
        self._guild_enabled[guild_id] = enabled
        return enabled

    async def set_guild_enabled(self, guild_id: int, enabled: bool) -> None:
        await self.database.set_guild_enabled(guild_id, enabled)
        self._guild_enabled[guild_id] = enabled

    async def _guild_enabled_check(self, ctx: commands.Context) -> bool:
        if ctx.command is not None and ctx.command.extras.get("always_allowed"):
            return True
        if await self.is_guild_enabled(ctx.guild.id if ctx.guild else None):
            return True
        await ctx.reply(embed=Embedder.disabled(), mention_author=False)
        raise GuildDisabled("Bot is disabled in this guild")

    # ── Startup ──────────────────────────────────────────────────────

    async def setup_hook(self) -> None:
        """Called once when the bot starts. Load cogs and init services."""
        logger.info("Running setup_hook…")

        await self.database.initialize()
        self.add_check(self._guild_enabled_check)

        for cog_path in COGS:
            try:
                await self.load_extension(cog_path)
                logger.info("Loaded cog: %s", cog_path)
            except Exception as exc:
                logger.error("Failed to load cog %s: %s", cog_path, exc, exc_info=True)

        self.background_tasks = BackgroundTasks(self)

    async def on_ready(self) -> None:
        logger.info("🎃 %s is online! Guilds: %d", self.user, len(self.guilds))
        await self.change_presence(
            activity=discord.Activity(
                type=discord.ActivityType.watching,
                name="for pumpkins • !commands",
            )
        )

    async def on_message(self, message: discord.Message) -> None:
        if message.author.bot or not message.guild:
            return
        await self.process_commands(message)

    # ── Shutdown ─────────────────────────────────────────────────────

    async def close(self) -> None:
        logger.info("Shutting down…")
        if self.background_tasks:
            self.background_tasks.stop()
        self.pumpkins.cancel_timers()
        await self.database.close()
        await super().close()

    # ── Global Error Handler ─────────────────────────────────────────

    async def on_command_error(
        self, ctx: commands.Context, error: commands.CommandError
    ) -> None:
        if isinstance(error, (commands.CommandNotFound, GuildDisabled)):
            return
        if isinstance(error, commands.MissingPermissions):
            await ctx.reply(
                embed=Embedder.error(
                    "Permission Denied", "Only administrators can use this command!"
                ),
                mention_author=False,
            )
            return
        if isinstance(error, commands.NoPrivateMessage):
            return
        if isinstance(error, commands.UserInputError):
            await ctx.reply(
                embed=Embedder.warning("Invalid Usage", str(error)),
                mention_author=False,
            )
            return
        logger.error("Unhandled command error in %s: %s", ctx.command, error, exc_info=error)
        await ctx.reply(
            embed=Embedder.error(
                "Something went wrong",
                "An unexpected error occurred. Please try again later.",
            ),
            mention_author=False,
        )


# ── Entry Point ──────────────────────────────────────────────────────
def main() -> None:
    errors = settings.validate()
    if errors:
        for e in errors:
            logger.critical("CONFIG ERROR: %s", e)
        sys.exit(1)

    bot = HalloweenBot(settings)

    try:
        bot.run(settings.discord_token, log_handler=None)
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt")
    except Exception as exc:
        logger.critical("Bot crashed: %s", exc, exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
