"""
Pumpkin cog — Scheduled pumpkin spawns, !grab, and admin spawn commands.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, List, Optional

import discord
from discord.ext import commands

from config.constants import (
    PUMPKIN_INBOUND_COUNT,
    PUMPKIN_INBOUND_GAP,
    PUMPKIN_MANUAL_MAX,
    SOURCE_PUMPKIN,
)
from utils.embedder import Embedder
from utils.pumpkin import GrabOutcome, PumpkinState, TickOutcome

if TYPE_CHECKING:
    from bot import HalloweenBot

logger = logging.getLogger(__name__)


def eligible_channels(
    guild: discord.Guild,
    *,
    participant: Optional[discord.Role] = None,
    restricted_role_id: Optional[int] = None,
) -> List[discord.TextChannel]:
    """
    Text channels a pumpkin may appear in.

    The bot and *participant* (``@everyone`` by default) must be able to
    send messages; channels where the restricted role can send are skipped.
    """
    participant = participant or guild.default_role
    restricted = guild.get_role(restricted_role_id) if restricted_role_id else None
    me = guild.me

    channels: List[discord.TextChannel] = []
    for channel in guild.text_channels:
        if me is None or not channel.permissions_for(me).send_messages:
            continue
        if not channel.permissions_for(participant).send_messages:
            continue
        if restricted is not None and channel.permissions_for(restricted).send_messages:
            continue
        channels.append(channel)
    return channels


class PumpkinCog(commands.Cog, name="Pumpkins"):
    """Pumpkin hunt — catch the pumpkin before it rolls away."""

    def __init__(self, bot: HalloweenBot):
        self.bot = bot
        self.hunt = bot.pumpkins

    # ── Callbacks handed to PumpkinHunt ──────────────────────────────

    async def _announce(self, channel: discord.abc.Messageable, amount: int) -> int:
        message = await channel.send(embed=Embedder.pumpkin_spawned(channel.id, amount))
        return message.id

    async def _mark_missed(self, state: PumpkinState) -> None:
        if state.channel_id is None or state.message_id is None:
            return
        channel = self.bot.get_channel(state.channel_id)
        if channel is None:
            logger.warning("Pumpkin channel %s is gone; not editing", state.channel_id)
            return
        try:
            await channel.get_partial_message(state.message_id).edit(
                embed=Embedder.pumpkin_missed()
            )
        except discord.HTTPException as exc:
            logger.warning("Could not edit pumpkin message %s: %s", state.message_id, exc)

    async def _spawn_candidates(self) -> List[discord.TextChannel]:
        disabled = await self.bot.database.get_disabled_guilds()
        channels: List[discord.TextChannel] = []
        for guild in self.bot.guilds:
            if guild.id in disabled:
                continue
            channels.extend(
                eligible_channels(
                    guild, restricted_role_id=self.bot.settings.restricted_role_id
                )
            )
        return channels

    # ── Scheduler entry points (called from BackgroundTasks) ─────────

    async def run_tick(self) -> TickOutcome:
        result = await self.hunt.tick(
            self._spawn_candidates, self._announce, self._mark_missed
        )
        logger.debug("Pumpkin tick: %s", result.outcome.value)
        return result.outcome

    async def sweep(self) -> bool:
        return await self.hunt.sweep(self._mark_missed)

    # ── !grab ────────────────────────────────────────────────────────

    @commands.command(name="grab", help="Grab a spawned pumpkin to win candies")
    @commands.guild_only()
    async def grab_cmd(self, ctx: commands.Context) -> None:
        result = await self.hunt.grab(ctx.author.id, ctx.channel.id)

        if result.outcome is GrabOutcome.NOTHING:
            await ctx.reply(embed=Embedder.no_pumpkin(), mention_author=False)
            return
        if result.outcome is GrabOutcome.WRONG_CHANNEL:
            await ctx.reply(embed=Embedder.wrong_channel(), mention_author=False)
            return

        # The pumpkin is already marked claimed; a failure here means an unpaid grab.
        try:
            award = await self.bot.database.award_candy(
                ctx.author.id, ctx.guild.id, result.state.candy_amount, SOURCE_PUMPKIN
            )
        except Exception:
            logger.error(
                "Pumpkin %s claimed by %s but payout failed",
                result.state.message_id, ctx.author.id, exc_info=True,
            )
            raise

        await ctx.reply(
            embed=Embedder.pumpkin_grabbed(ctx.author.display_name, award),
            allowed_mentions=discord.AllowedMentions.none(),
        )

    # ── !spumpkin [count] ────────────────────────────────────────────

    @commands.command(name="spumpkin", help="Spawn pumpkins in this channel (admin only)")
    @commands.guild_only()
    @commands.has_permissions(administrator=True)
    async def spawn_here_cmd(self, ctx: commands.Context, count: int = 1) -> None:
        count = max(1, min(count, PUMPKIN_MANUAL_MAX))
        logger.info("%s spawning %d pumpkin(s) in %s", ctx.author, count, ctx.channel.id)

        if count > 1:
            await ctx.reply(
                embed=Embedder.standard(
                    None,
                    f"🎃 **Spawning {count} pumpkins!** "
                    "They'll appear one by one as each is claimed!",
                ),
                mention_author=False,
            )

        spawned = await self.hunt.spawn_many(
            count, lambda: ctx.channel, self._announce, self._mark_missed
        )
        if spawned == 0:
            await ctx.reply(
                embed=Embedder.warning(
                    "Pumpkin Busy", "A pumpkin is already out. Try again once it's gone!"
                ),
                mention_author=False,
            )

    # ── !pumpkininbound ──────────────────────────────────────────────

    @commands.command(
        name="pumpkininbound", help="Spawn 5 pumpkins in random channels (admin only)"
    )
    @commands.guild_only()
    @commands.has_permissions(administrator=True)
    async def inbound_cmd(self, ctx: commands.Context) -> None:
        role_id = self.bot.settings.pumpkin_role_id
        participant = ctx.guild.get_role(role_id) if role_id else ctx.guild.default_role

        channels: List[discord.TextChannel] = []
        if participant is not None:
            channels = eligible_channels(
                ctx.guild,
                participant=participant,
                restricted_role_id=self.bot.settings.restricted_role_id,
            )
        if not channels:
            await ctx.reply(
                embed=Embedder.error("No Channels", "No valid channels found!"),
                mention_author=False,
            )
            return

        await ctx.reply(
            embed=Embedder.standard(
                None,
                f"🎃 **Spawning {PUMPKIN_INBOUND_COUNT} pumpkins!** "
                "Watch out, they'll appear one by one!",
            ),
            mention_author=False,
        )
        spawned = await self.hunt.spawn_many(
            PUMPKIN_INBOUND_COUNT,
            lambda: self.hunt.rng.choice(channels),
            self._announce,
            self._mark_missed,
            gap=PUMPKIN_INBOUND_GAP,
        )
        logger.info("Pumpkin inbound by %s finished: %d spawned", ctx.author, spawned)


async def setup(bot: HalloweenBot) -> None:
    await bot.add_cog(PumpkinCog(bot))
