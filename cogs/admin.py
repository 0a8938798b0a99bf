"""
Admin cog — Per-guild switches and candy rate management.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from discord.ext import commands

from utils.embedder import Embedder
from utils.rewards import multiplier_from_percent, parse_modifier

if TYPE_CHECKING:
    from bot import HalloweenBot

logger = logging.getLogger(__name__)


def format_modifier(multiplier: float, decimals: int = 0) -> str:
    """Render a multiplier as '+25% (1.25x)'."""
    percent = (multiplier - 1) * 100
    sign = "+" if percent > 0 else ""
    return f"{sign}{percent:.{decimals}f}% ({multiplier:.2f}x)"


class AdminCog(commands.Cog, name="Admin"):
    """Guild administration — administrator-only commands."""

    def __init__(self, bot: HalloweenBot):
        self.bot = bot

    # ── !enable / !disable ───────────────────────────────────────────

    @commands.command(
        name="enable",
        help="Enable the bot (admin only)",
        extras={"always_allowed": True},
    )
    @commands.guild_only()
    @commands.has_permissions(administrator=True)
    async def enable_cmd(self, ctx: commands.Context) -> None:
        await self.bot.set_guild_enabled(ctx.guild.id, True)
        await ctx.reply(
            embed=Embedder.success(
                "Bot Enabled", "All commands are now available."
            ),
            mention_author=False,
        )
        logger.info("Bot enabled in guild %s by %s", ctx.guild.id, ctx.author.id)

    @commands.command(
        name="disable",
        help="Disable the bot (admin only)",
        extras={"always_allowed": True},
    )
    @commands.guild_only()
    @commands.has_permissions(administrator=True)
    async def disable_cmd(self, ctx: commands.Context) -> None:
        await self.bot.set_guild_enabled(ctx.guild.id, False)
        await ctx.reply(
            embed=Embedder.warning(
                "Bot Disabled", "Use `!enable` to re-enable it."
            ),
            mention_author=False,
        )
        logger.info("Bot disabled in guild %s by %s", ctx.guild.id, ctx.author.id)

    # ── !candymodifier [±N%] ─────────────────────────────────────────

    @commands.command(
        name="candymodifier",
        help="Adjust candy drop rates, e.g. `25%` or `-25%` (admin only)",
    )
    @commands.guild_only()
    @commands.has_permissions(administrator=True)
    async def candy_modifier_cmd(
        self, ctx: commands.Context, modifier: Optional[str] = None
    ) -> None:
        db = self.bot.database

        if modifier is None:
            current = await db.get_guild_multiplier(ctx.guild.id)
            await ctx.reply(
                embed=Embedder.info(
                    "Candy Modifier",
                    f"📊 **Current candy modifier:** {format_modifier(current)}\n\n"
                    "Usage: `!candymodifier <±%>`\n"
                    "Example: `!candymodifier 25%` or `!candymodifier -25%`",
                ),
                mention_author=False,
            )
            return

        change = parse_modifier(modifier)
        if change is None:
            await ctx.reply(
                embed=Embedder.error(
                    "Invalid Format",
                    "Use: `!candymodifier <±%>` "
                    "(e.g., `!candymodifier 25%` or `!candymodifier -25%`)",
                ),
                mention_author=False,
            )
            return

        saved = await db.set_guild_multiplier(ctx.guild.id, multiplier_from_percent(change))
        await ctx.reply(
            embed=Embedder.success(
                "Candy Modifier Updated",
                "**Candy modifier updated for everyone in this server!**\n\n"
                f"New modifier: {format_modifier(saved, decimals=1)}\n"
                f"All candy drops are now multiplied by {saved:.2f}!",
            ),
            mention_author=False,
        )
        logger.info(
            "Candy modifier in guild %s set to %.2f by %s (requested %+.1f%%)",
            ctx.guild.id, saved, ctx.author.id, change,
        )


async def setup(bot: HalloweenBot) -> None:
    await bot.add_cog(AdminCog(bot))
