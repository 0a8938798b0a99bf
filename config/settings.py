"""
Application settings loaded from environment variables.
All configuration is centralized here for easy management.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()


def _parse_optional_int(raw: str) -> Optional[int]:
    raw = raw.strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def _parse_int(raw: str, default: int) -> int:
    value = _parse_optional_int(raw)
    return default if value is None else value


@dataclass(frozen=True)
class Settings:
    """Immutable application settings loaded once at startup."""

    # Discord
    discord_token: str = field(default_factory=lambda: os.getenv("DISCORD_TOKEN", ""))

    # Bot
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    db_path: str = field(
        default_factory=lambda: os.getenv("DB_PATH", "data/halloween.db")
    )

    # Channel selection
    restricted_role_id: Optional[int] = field(
        default_factory=lambda: _parse_optional_int(os.getenv("RESTRICTED_ROLE_ID", ""))
    )
    pumpkin_role_id: Optional[int] = field(
        default_factory=lambda: _parse_optional_int(os.getenv("PUMPKIN_ROLE_ID", ""))
    )

    # Pumpkin timing
    pumpkin_tick_seconds: int = field(
        default_factory=lambda: _parse_int(os.getenv("PUMPKIN_TICK_SECONDS", ""), 10)
    )
    pumpkin_despawn_seconds: int = field(
        default_factory=lambda: _parse_int(os.getenv("PUMPKIN_DESPAWN_SECONDS", ""), 30)
    )

    def validate(self) -> List[str]:
        """Return a list of validation errors (empty = OK)."""
        errors: List[str] = []
        if not self.discord_token:
            errors.append("DISCORD_TOKEN is required")
        if self.pumpkin_tick_seconds <= 0:
            errors.append("PUMPKIN_TICK_SECONDS must be positive")
        if self.pumpkin_despawn_seconds <= 0:
            errors.append("PUMPKIN_DESPAWN_SECONDS must be positive")
        return errors
