"""
Candy cog — Balances, history, leaderboard, trick-or-treat, and passive chat earnings.
"""

from __future__ import annotations

import datetime
import logging
import math
import random
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

import discord
from discord.ext import commands

from config.constants import (
    BOT_COLOR,
    COMMAND_PREFIX,
    GHOST_BONUS,
    GHOST_CHANCE,
    GHOST_COLOR,
    HAUNTED_BONUS,
    HAUNTED_CHANCE,
    HAUNTED_COLOR,
    HISTORY_LIMIT,
    LEADERBOARD_LIMIT,
    PASSIVE_CANDY_MAX,
    PASSIVE_CANDY_MIN,
    PASSIVE_CHANCE,
    PASSIVE_MESSAGES,
    SOURCE_GHOST,
    SOURCE_HAUNTED,
    SOURCE_PASSIVE,
    SOURCE_TRICK_OR_TREAT,
    TREAT_CANDY_MAX,
    TREAT_CANDY_MIN,
    TRICK_CHANCE,
    TRICK_OR_TREAT_COOLDOWN,
    TRICK_TIMEOUT_SECONDS,
)
from utils.db_manager import utcnow
from utils.embedder import Embedder
from utils.rewards import format_award, total_multiplier

if TYPE_CHECKING:
    from bot import HalloweenBot

logger = logging.getLogger(__name__)

TRICK_OR_TREAT = "trickortreat"

_rng = random.Random()


@dataclass(frozen=True)
class PassiveFind:
    base: int
    source: str


def roll_passive_find(rng: Optional[random.Random] = None) -> Optional[PassiveFind]:
    """Roll the per-message chance of finding candy; None most of the time."""
    rng = rng or _rng
    if rng.random() >= PASSIVE_CHANCE:
        return None
    base = rng.randint(PASSIVE_CANDY_MIN, PASSIVE_CANDY_MAX)
    roll = rng.random()
    if roll < GHOST_CHANCE:
        return PassiveFind(base * GHOST_BONUS, SOURCE_GHOST)
    if roll < GHOST_CHANCE + HAUNTED_CHANCE:
        return PassiveFind(math.floor(base * HAUNTED_BONUS), SOURCE_HAUNTED)
    return PassiveFind(base, SOURCE_PASSIVE)


def cooldown_remaining(
    last_used: Optional[datetime.datetime],
    now: datetime.datetime,
    cooldown: float = TRICK_OR_TREAT_COOLDOWN,
) -> float:
    """Seconds left on a cooldown (0 when it has elapsed or never started)."""
    if last_used is None:
        return 0.0
    elapsed = max(0.0, (now - last_used).total_seconds())
    return max(0.0, cooldown - elapsed)


def can_timeout(me: discord.Member, member: discord.Member) -> bool:
    """Whether the bot is allowed to time *member* out."""
    if member.id == member.guild.owner_id:
        return False
    if member.guild_permissions.administrator:
        return False
    if not me.guild_permissions.moderate_members:
        return False
    return me.top_role > member.top_role


class CandyCog(commands.Cog, name="Candy"):
    """Earn and track candies."""

    def __init__(self, bot: HalloweenBot):
        self.bot = bot

    # ── !candies ─────────────────────────────────────────────────────

    @commands.command(name="candies", help="Check your candy balance")
    @commands.guild_only()
    async def candies_cmd(self, ctx: commands.Context) -> None:
        db = self.bot.database
        balance = await db.get_balance(ctx.author.id)
        multiplier = total_multiplier(
            await db.get_upgrade_level(ctx.author.id),
            await db.get_guild_multiplier(ctx.guild.id),
        )
        await ctx.reply(embed=Embedder.balance(balance, multiplier), mention_author=False)

    # ── !history ─────────────────────────────────────────────────────

    @commands.command(name="history", help="View your last 10 candy earnings")
    @commands.guild_only()
    async def history_cmd(self, ctx: commands.Context) -> None:
        entries = await self.bot.database.get_history(ctx.author.id, limit=HISTORY_LIMIT)
        await ctx.reply(embed=Embedder.history(entries), mention_author=False)

    # ── !leaderboard ─────────────────────────────────────────────────

    @commands.command(name="leaderboard", help="View the top 10 candy collectors")
    @commands.guild_only()
    async def leaderboard_cmd(self, ctx: commands.Context) -> None:
        rows = await self.bot.database.get_leaderboard(limit=LEADERBOARD_LIMIT)
        await ctx.reply(
            embed=Embedder.leaderboard(rows),
            mention_author=False,
            allowed_mentions=discord.AllowedMentions.none(),
        )

    # ── !trickortreat ────────────────────────────────────────────────

    @commands.command(
        name="trickortreat", help="Get random candies or a trick (1 hour cooldown)"
    )
    @commands.guild_only()
    async def trick_or_treat_cmd(self, ctx: commands.Context) -> None:
        db = self.bot.database
        now = utcnow()
        if not await db.claim_cooldown(
            ctx.author.id, TRICK_OR_TREAT, TRICK_OR_TREAT_COOLDOWN, now
        ):
            remaining = cooldown_remaining(
                await db.get_cooldown(ctx.author.id, TRICK_OR_TREAT), now
            )
            minutes = max(1, math.ceil(remaining / 60))
            await ctx.reply(
                embed=Embedder.standard(
                    None,
                    f"⏰ You need to wait **{minutes} minutes** "
                    "before trick-or-treating again!",
                ),
                mention_author=False,
            )
            return

        if _rng.random() < TRICK_CHANCE:
            await self._trick(ctx)
            return

        base = _rng.randint(TREAT_CANDY_MIN, TREAT_CANDY_MAX)
        award = await db.award_candy(ctx.author.id, ctx.guild.id, base, SOURCE_TRICK_OR_TREAT)
        await ctx.reply(
            embed=Embedder.standard(
                None,
                f"🎃 **TREAT!** You got {format_award(award)}! 🍬 "
                f"Your total: **{award.balance} candies**",
            ),
            mention_author=False,
        )

    async def _trick(self, ctx: commands.Context) -> None:
        member = ctx.author
        me = ctx.guild.me
        if not isinstance(member, discord.Member) or me is None or not can_timeout(me, member):
            await ctx.reply(
                embed=Embedder.standard(
                    None, "👻 **TRICK!** You got spooked, but you're too powerful to timeout! 💪"
                ),
                mention_author=False,
            )
            return

        try:
            await member.timeout(
                datetime.timedelta(seconds=TRICK_TIMEOUT_SECONDS),
                reason="👻 Trick or Treat - Got tricked!",
            )
        except discord.HTTPException as exc:
            logger.warning("Could not time out %s for a trick: %s", member.id, exc)
            await ctx.reply(
                embed=Embedder.standard(None, "👻 **TRICK!** Something spooky happened... 👻"),
                mention_author=False,
            )
            return

        await ctx.reply(
            embed=Embedder.standard(
                None,
                "👻 **TRICK!** You've been spooked and timed out for "
                f"**{TRICK_TIMEOUT_SECONDS} seconds** because you got tricked "
                "in Trick or Treat! 👻",
            ),
            mention_author=False,
        )

    # ── Passive earnings ─────────────────────────────────────────────

    @commands.Cog.listener("on_message")
    async def passive_candy(self, message: discord.Message) -> None:
        if message.author.bot or not message.guild:
            return
        if message.content.startswith(COMMAND_PREFIX):
            return

        find = roll_passive_find()
        if find is None:
            return
        if not await self.bot.is_guild_enabled(message.guild.id):
            return

        try:
            award = await self.bot.database.award_candy(
                message.author.id, message.guild.id, find.base, find.source
            )
        except Exception as e:
            logger.error("Error awarding passive candy: %s", e, exc_info=True)
            return

        candies = format_award(award)
        if find.source == SOURCE_GHOST:
            description = (
                "👻✨ **GHOST ENCOUNTER!** ✨👻\n\n"
                f"A friendly ghost appeared and showered you with {candies} (3x bonus)!"
            )
            color = GHOST_COLOR
        elif find.source == SOURCE_HAUNTED:
            description = (
                "🌟 **HAUNTED TREASURE!** 🌟\n\n"
                f"You found a haunted candy stash with {candies} (1.5x bonus)!"
            )
            color = HAUNTED_COLOR
        else:
            description = _rng.choice(PASSIVE_MESSAGES).format(candies=candies)
            color = BOT_COLOR
        description += f"\nYour total: **{award.balance} candies**"

        await message.reply(
            embed=Embedder.standard(None, description, color=color),
            mention_author=False,
            silent=True,
        )
        logger.info(
            "🍬 Passive candy for %s: %d (%s)", message.author.id, award.amount, find.source
        )

    # ── !commands ────────────────────────────────────────────────────

    @commands.command(name="commands", help="Show this command list")
    async def commands_cmd(self, ctx: commands.Context) -> None:
        player = []
        admin = []
        for command in sorted(self.bot.commands, key=lambda c: c.name):
            if command.hidden:
                continue
            entry = f"`{COMMAND_PREFIX}{command.name}` — {command.help or ''}"
            (admin if "admin only" in (command.help or "") else player).append(entry)

        fields = [("Commands", "\n".join(player) or "—", False)]
        if admin:
            fields.append(("Admin Commands", "\n".join(admin), False))
        await ctx.reply(
            embed=Embedder.standard(
                "🎃 AVAILABLE COMMANDS 🎃",
                "Here are all the commands you can use:",
                fields=fields,
            ),
            mention_author=False,
        )


async def setup(bot: HalloweenBot) -> None:
    await bot.add_cog(CandyCog(bot))
