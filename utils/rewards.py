"""
Candy reward arithmetic shared by every earning path.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Optional

from config.constants import (
    GUILD_MULTIPLIER_DEFAULT,
    GUILD_MULTIPLIER_MAX,
    GUILD_MULTIPLIER_MIN,
    UPGRADE_STEP,
)

_MODIFIER_RE = re.compile(r"^([+-]?)(\d+(?:\.\d+)?)%?$")


@dataclass(frozen=True)
class Award:
    """Result of crediting candy to a user."""

    base: int
    multiplier: float
    amount: int
    balance: int


def upgrade_multiplier(level: int) -> float:
    return 1 + max(0, level) * UPGRADE_STEP


def sanitize_guild_multiplier(value: Optional[float]) -> float:
    """Stored multipliers that are missing, zero or non-finite count as 1.0."""
    if value is None:
        return GUILD_MULTIPLIER_DEFAULT
    try:
        value = float(value)
    except (TypeError, ValueError):
        return GUILD_MULTIPLIER_DEFAULT
    if not math.isfinite(value) or value <= 0:
        return GUILD_MULTIPLIER_DEFAULT
    return value


def clamp_guild_multiplier(value: float) -> float:
    """Clamp an admin-supplied multiplier into the allowed range."""
    if not math.isfinite(value):
        return GUILD_MULTIPLIER_DEFAULT
    return max(GUILD_MULTIPLIER_MIN, min(GUILD_MULTIPLIER_MAX, value))


def total_multiplier(level: int, guild_multiplier: Optional[float]) -> float:
    return upgrade_multiplier(level) * sanitize_guild_multiplier(guild_multiplier)


def compute_payout(base: int, level: int, guild_multiplier: Optional[float]) -> int:
    """
    Apply the personal upgrade and guild multipliers to a base amount.

    ``floor(base * (1 + level * 0.25) * guild_multiplier)``
    """
    return math.floor(base * total_multiplier(level, guild_multiplier))


def parse_modifier(arg: str) -> Optional[float]:
    """
    Parse a ``!candymodifier`` argument such as ``25%``, ``+25`` or ``-10%``
    into a signed percentage change. Returns None for anything else.
    """
    match = _MODIFIER_RE.match(arg.strip())
    if not match:
        return None
    sign, number = match.groups()
    value = float(number)
    if not math.isfinite(value):
        return None
    return -value if sign == "-" else value


def multiplier_from_percent(change: float) -> float:
    """Turn a percentage change into a clamped guild multiplier."""
    return clamp_guild_multiplier(1 + change / 100)


def format_award(award: Award) -> str:
    """Render an award as '**N candies**', showing the multiplier when it helped."""
    if award.multiplier > 1:
        return (
            f"**{award.base} candies** "
            f"(x{award.multiplier:.2f} = **{award.amount} candies**)"
        )
    return f"**{award.amount} candies**"
