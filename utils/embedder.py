"""
Standardized Discord embed builder for consistent bot responses.
"""

from __future__ import annotations

import datetime
from typing import List, Optional, Sequence, Tuple

import discord

from config.constants import (
    BOT_COLOR,
    BOT_ERROR_COLOR,
    BOT_INFO_COLOR,
    BOT_NAME,
    BOT_SUCCESS_COLOR,
    BOT_WARN_COLOR,
)
from utils.rewards import Award, format_award

_MEDALS = {0: "🥇", 1: "🥈", 2: "🥉"}


def time_ago(when: Optional[datetime.datetime], now: Optional[datetime.datetime] = None) -> str:
    """Compact relative time: '5m ago' under an hour, '3h ago' after."""
    if when is None:
        return "a while ago"
    now = now or datetime.datetime.now(datetime.timezone.utc)
    minutes = max(0, int((now - when).total_seconds() // 60))
    if minutes < 60:
        return f"{minutes}m ago"
    return f"{minutes // 60}h ago"


class Embedder:
    """Factory for creating consistent, branded Discord embeds."""

    @staticmethod
    def _base(
        title: Optional[str],
        description: str,
        color: int,
        *,
        footer: Optional[str] = None,
    ) -> discord.Embed:
        embed = discord.Embed(
            title=title,
            description=description,
            color=color,
            timestamp=datetime.datetime.now(datetime.timezone.utc),
        )
        embed.set_footer(text=footer or f"🎃 {BOT_NAME}")
        return embed

    # ── Standard Embed Types ─────────────────────────────────────────

    @classmethod
    def standard(
        cls,
        title: Optional[str],
        description: str,
        *,
        fields: Optional[List[Tuple[str, str, bool]]] = None,
        footer: Optional[str] = None,
        color: int = BOT_COLOR,
    ) -> discord.Embed:
        """Create a standard themed embed."""
        embed = cls._base(title, description, color, footer=footer)
        for name, value, inline in (fields or []):
            embed.add_field(name=name, value=value, inline=inline)
        return embed

    @classmethod
    def success(cls, title: str, description: str) -> discord.Embed:
        return cls._base(f"✅ {title}", description, BOT_SUCCESS_COLOR)

    @classmethod
    def error(cls, title: str, description: str) -> discord.Embed:
        return cls._base(f"❌ {title}", description, BOT_ERROR_COLOR)

    @classmethod
    def warning(cls, title: str, description: str) -> discord.Embed:
        return cls._base(f"⚠️ {title}", description, BOT_WARN_COLOR)

    @classmethod
    def info(cls, title: str, description: str) -> discord.Embed:
        return cls._base(f"ℹ️ {title}", description, BOT_INFO_COLOR)

    # ── Pumpkin Hunt ─────────────────────────────────────────────────

    @classmethod
    def pumpkin_spawned(cls, channel_id: int, amount: int) -> discord.Embed:
        return cls.standard(
            None,
            f"👀 **A wild pumpkin has appeared in <#{channel_id}>!** "
            f"Type `!grab` fast to catch it and win **{amount} candies**! 🎃",
        )

    @classmethod
    def pumpkin_missed(cls) -> discord.Embed:
        return cls.standard(None, "💨 **Too slow! The pumpkin rolled away...**")

    @classmethod
    def pumpkin_grabbed(cls, username: str, award: Award) -> discord.Embed:
        return cls.standard(
            None,
            f"🎃 **Congratulations {username}!** You caught the pumpkin and got "
            f"{format_award(award)}! 🍬\nYour total: **{award.balance} candies**",
        )

    @classmethod
    def no_pumpkin(cls) -> discord.Embed:
        return cls.standard(
            None, "💨 **No pumpkin to grab!** Keep an eye out for the next one!"
        )

    @classmethod
    def wrong_channel(cls) -> discord.Embed:
        return cls.standard(None, "💨 **The pumpkin is not in this channel!**")

    # ── Candy ────────────────────────────────────────────────────────

    @classmethod
    def balance(cls, balance: int, multiplier: float) -> discord.Embed:
        description = f"🍬 You have **{balance} candies**!"
        if multiplier != 1:
            description += f"\nCurrent candy multiplier: **x{multiplier:.2f}**"
        return cls.standard(None, description)

    @classmethod
    def history(
        cls,
        entries: Sequence[dict],
        now: Optional[datetime.datetime] = None,
    ) -> discord.Embed:
        if not entries:
            return cls.standard(
                None,
                "📜 You haven't earned any candies yet! "
                "Try `!trickortreat` or chat to earn candies!",
            )
        lines = ["📜 **Your Last Candy Earnings:**", ""]
        for entry in entries:
            lines.append(
                f"🍬 **+{entry['amount']}** candies from **{entry['source']}** "
                f"({time_ago(entry['earned_at'], now)})"
            )
        return cls.standard(None, "\n".join(lines))

    @classmethod
    def leaderboard(cls, rows: Sequence[dict]) -> discord.Embed:
        if not rows:
            return cls.standard(None, "🏆 **No one has earned candies yet!** Be the first!")
        lines = ["🏆 **TOP CANDY COLLECTORS** 🏆", ""]
        for index, row in enumerate(rows):
            medal = _MEDALS.get(index, f"{index + 1}.")
            lines.append(f"{medal} <@{row['user_id']}>: **{row['balance']} candies** 🍬")
        return cls.standard(None, "\n".join(lines))

    @classmethod
    def disabled(cls) -> discord.Embed:
        return cls.standard(
            None,
            "🚫 The bot is currently disabled. "
            "An administrator can enable it with `!enable`.",
        )
