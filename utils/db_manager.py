"""
Async SQLite database manager for candy balances, guild settings, and the pumpkin hunt.
"""

from __future__ import annotations

import datetime
import logging
import os
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional, Set

import aiosqlite

from config.constants import DB_LOCK_TIMEOUT, PUMPKIN_STATE_ID
from utils.rewards import (
    Award,
    clamp_guild_multiplier,
    compute_payout,
    sanitize_guild_multiplier,
    total_multiplier,
)

logger = logging.getLogger(__name__)

DB_PATH = os.getenv("DB_PATH", "data/halloween.db")

_PUMPKIN_COLUMNS = (
    "active",
    "channel_id",
    "message_id",
    "candy_amount",
    "spawned_at",
    "next_spawn_at",
    "expires_at",
)


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def to_db_value(value: Any) -> Any:
    """Convert Python values to what the schema stores (ISO text, 0/1)."""
    if isinstance(value, datetime.datetime):
        return value.astimezone(datetime.timezone.utc).isoformat()
    if isinstance(value, bool):
        return 1 if value else 0
    return value


def parse_timestamp(raw: Optional[str]) -> Optional[datetime.datetime]:
    if not raw:
        return None
    parsed = datetime.datetime.fromisoformat(raw)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed


class DatabaseManager:
    """Async SQLite wrapper for all bot persistence."""

    def __init__(self, db_path: str = DB_PATH):
        self.db_path = db_path
        self._db: Optional[aiosqlite.Connection] = None

    # ── Lifecycle ────────────────────────────────────────────────────

    async def initialize(self) -> None:
        """Open the database, create tables and the pumpkin row if needed."""
        os.makedirs(os.path.dirname(self.db_path) or ".", exist_ok=True)
        self._db = await aiosqlite.connect(self.db_path, timeout=DB_LOCK_TIMEOUT)
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA journal_mode=WAL")
        await self._create_tables()
        logger.info("Database initialized at %s", self.db_path)

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None
            logger.info("Database connection closed")

    @property
    def db(self) -> aiosqlite.Connection:
        if self._db is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        return self._db

    @asynccontextmanager
    async def exclusive(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Run a block inside a write-locked transaction on its own connection.

        ``BEGIN IMMEDIATE`` takes the database write lock up front, so every
        caller that branches on the pumpkin row is serialized against all the
        others until the block commits (normal exit) or rolls back (exception).
        """
        if self._db is None:
            raise RuntimeError("Database not initialized. Call initialize() first.")
        conn = await aiosqlite.connect(
            self.db_path, timeout=DB_LOCK_TIMEOUT, isolation_level=None
        )
        conn.row_factory = aiosqlite.Row
        try:
            await conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                await conn.execute("ROLLBACK")
                raise
            else:
                await conn.execute("COMMIT")
        finally:
            await conn.close()

    # ── Schema ───────────────────────────────────────────────────────

    async def _create_tables(self) -> None:
        await self.db.executescript(
            """
            CREATE TABLE IF NOT EXISTS guild_settings (
                guild_id         INTEGER PRIMARY KEY,
                enabled          INTEGER DEFAULT 1,
                candy_multiplier REAL    DEFAULT 1.0,
                updated_at       TEXT    DEFAULT (datetime('now'))
            );

            CREATE TABLE IF NOT EXISTS candy_balances (
                user_id     INTEGER PRIMARY KEY,
                balance     INTEGER NOT NULL DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS candy_history (
                id          INTEGER PRIMARY KEY AUTOINCREMENT,
                user_id     INTEGER NOT NULL,
                amount      INTEGER NOT NULL,
                source      TEXT,
                earned_at   TEXT    NOT NULL
            );

            CREATE TABLE IF NOT EXISTS candy_upgrades (
                user_id       INTEGER PRIMARY KEY,
                upgrade_level INTEGER DEFAULT 0
            );

            CREATE TABLE IF NOT EXISTS cooldowns (
                user_id     INTEGER NOT NULL,
                command     TEXT    NOT NULL,
                last_used   TEXT    NOT NULL,
                PRIMARY KEY (user_id, command)
            );

            CREATE TABLE IF NOT EXISTS pumpkin_state (
                id            INTEGER PRIMARY KEY,
                active        INTEGER NOT NULL DEFAULT 0,
                channel_id    INTEGER,
                message_id    INTEGER,
                candy_amount  INTEGER,
                spawned_at    TEXT,
                next_spawn_at TEXT,
                expires_at    TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_candy_history_user
                ON candy_history(user_id, earned_at);
            CREATE INDEX IF NOT EXISTS idx_candy_balances_balance
                ON candy_balances(balance);
            """
        )
        await self.db.execute(
            "INSERT OR IGNORE INTO pumpkin_state (id, active) VALUES (?, 0)",
            (PUMPKIN_STATE_ID,),
        )
        await self.db.commit()

    # ── Guild Settings ───────────────────────────────────────────────

    async def get_guild_settings(self, guild_id: int) -> Dict[str, Any]:
        async with self.db.execute(
            "SELECT enabled, candy_multiplier FROM guild_settings WHERE guild_id = ?",
            (guild_id,),
        ) as cur:
            row = await cur.fetchone()
        if not row:
            return {"guild_id": guild_id, "enabled": True, "candy_multiplier": 1.0}
        return {
            "guild_id": guild_id,
            "enabled": row["enabled"] != 0,
            "candy_multiplier": sanitize_guild_multiplier(row["candy_multiplier"]),
        }

    async def is_guild_enabled(self, guild_id: int) -> bool:
        return (await self.get_guild_settings(guild_id))["enabled"]

    async def set_guild_enabled(self, guild_id: int, enabled: bool) -> None:
        await self.db.execute(
            """INSERT INTO guild_settings (guild_id, enabled) VALUES (?, ?)
               ON CONFLICT(guild_id) DO UPDATE SET
                   enabled = excluded.enabled, updated_at = datetime('now')""",
            (guild_id, 1 if enabled else 0),
        )
        await self.db.commit()

    async def get_guild_multiplier(self, guild_id: Optional[int]) -> float:
        if guild_id is None:
            return 1.0
        return (await self.get_guild_settings(guild_id))["candy_multiplier"]

    async def set_guild_multiplier(self, guild_id: int, multiplier: float) -> float:
        """Store a clamped multiplier and return the value actually saved."""
        value = clamp_guild_multiplier(multiplier)
        await self.db.execute(
            """INSERT INTO guild_settings (guild_id, candy_multiplier) VALUES (?, ?)
               ON CONFLICT(guild_id) DO UPDATE SET
                   candy_multiplier = excluded.candy_multiplier,
                   updated_at = datetime('now')""",
            (guild_id, value),
        )
        await self.db.commit()
        return value

    async def get_disabled_guilds(self) -> Set[int]:
        async with self.db.execute(
            "SELECT guild_id FROM guild_settings WHERE enabled = 0"
        ) as cur:
            rows = await cur.fetchall()
        return {row["guild_id"] for row in rows}

    # ── Candy Ledger ─────────────────────────────────────────────────

    async def credit_candy(self, user_id: int, amount: int, source: str) -> int:
        """Add *amount* to the user's balance, log it, and return the new balance."""
        await self.db.execute(
            """INSERT INTO candy_balances (user_id, balance) VALUES (?, ?)
               ON CONFLICT(user_id) DO UPDATE SET balance = balance + excluded.balance""",
            (user_id, amount),
        )
        await self.db.execute(
            "INSERT INTO candy_history (user_id, amount, source, earned_at) VALUES (?, ?, ?, ?)",
            (user_id, amount, source, to_db_value(utcnow())),
        )
        async with self.db.execute(
            "SELECT balance FROM candy_balances WHERE user_id = ?", (user_id,)
        ) as cur:
            row = await cur.fetchone()
        await self.db.commit()
        return row["balance"] if row else amount

    async def award_candy(
        self,
        user_id: int,
        guild_id: Optional[int],
        base: int,
        source: str,
    ) -> Award:
        """Apply the user's and guild's multipliers to *base* and credit the result."""
        level = await self.get_upgrade_level(user_id)
        guild_multiplier = await self.get_guild_multiplier(guild_id)
        amount = compute_payout(base, level, guild_multiplier)
        balance = await self.credit_candy(user_id, amount, source)
        logger.info(
            "Credited %d candies to %s (base=%d, level=%d, guild=%.2f, source=%s)",
            amount, user_id, base, level, guild_multiplier, source,
        )
        return Award(
            base=base,
            multiplier=total_multiplier(level, guild_multiplier),
            amount=amount,
            balance=balance,
        )

    async def get_balance(self, user_id: int) -> int:
        async with self.db.execute(
            "SELECT balance FROM candy_balances WHERE user_id = ?", (user_id,)
        ) as cur:
            row = await cur.fetchone()
            return row["balance"] if row else 0

    async def get_history(self, user_id: int, limit: int = 10) -> List[Dict[str, Any]]:
        async with self.db.execute(
            """SELECT amount, source, earned_at FROM candy_history
               WHERE user_id = ? ORDER BY earned_at DESC, id DESC LIMIT ?""",
            (user_id, limit),
        ) as cur:
            rows = await cur.fetchall()
        return [
            {
                "amount": row["amount"],
                "source": row["source"],
                "earned_at": parse_timestamp(row["earned_at"]),
            }
            for row in rows
        ]

    async def get_leaderboard(self, limit: int = 10) -> List[Dict[str, Any]]:
        async with self.db.execute(
            "SELECT user_id, balance FROM candy_balances ORDER BY balance DESC LIMIT ?",
            (limit,),
        ) as cur:
            rows = await cur.fetchall()
        return [dict(row) for row in rows]

    # ── Upgrades ─────────────────────────────────────────────────────

    async def get_upgrade_level(self, user_id: int) -> int:
        async with self.db.execute(
            "SELECT upgrade_level FROM candy_upgrades WHERE user_id = ?", (user_id,)
        ) as cur:
            row = await cur.fetchone()
            return (row["upgrade_level"] or 0) if row else 0

    async def set_upgrade_level(self, user_id: int, level: int) -> None:
        await self.db.execute(
            """INSERT INTO candy_upgrades (user_id, upgrade_level) VALUES (?, ?)
               ON CONFLICT(user_id) DO UPDATE SET upgrade_level = excluded.upgrade_level""",
            (user_id, max(0, level)),
        )
        await self.db.commit()

    # ── Cooldowns ────────────────────────────────────────────────────

    async def get_cooldown(self, user_id: int, command: str) -> Optional[datetime.datetime]:
        async with self.db.execute(
            "SELECT last_used FROM cooldowns WHERE user_id = ? AND command = ?",
            (user_id, command),
        ) as cur:
            row = await cur.fetchone()
            return parse_timestamp(row["last_used"]) if row else None

    async def set_cooldown(
        self, user_id: int, command: str, when: Optional[datetime.datetime] = None
    ) -> None:
        await self.db.execute(
            """INSERT INTO cooldowns (user_id, command, last_used) VALUES (?, ?, ?)
               ON CONFLICT(user_id, command) DO UPDATE SET last_used = excluded.last_used""",
            (user_id, command, to_db_value(when or utcnow())),
        )
        await self.db.commit()

    async def claim_cooldown(
        self,
        user_id: int,
        command: str,
        cooldown: float,
        now: Optional[datetime.datetime] = None,
    ) -> bool:
        """
        Start *command*'s cooldown for *user_id* if the previous one has run out.

        Check and write are one conditional upsert, so of two racing calls only
        one gets True.
        """
        now = now or utcnow()
        cutoff = now - datetime.timedelta(seconds=cooldown)
        cursor = await self.db.execute(
            """INSERT INTO cooldowns (user_id, command, last_used) VALUES (?, ?, ?)
               ON CONFLICT(user_id, command) DO UPDATE SET last_used = excluded.last_used
               WHERE cooldowns.last_used <= ?""",
            (user_id, command, to_db_value(now), to_db_value(cutoff)),
        )
        await self.db.commit()
        return cursor.rowcount > 0

    async def cleanup_cooldowns(self, days: int = 7) -> int:
        """Delete cooldown rows older than *days*. Returns the number removed."""
        cutoff = utcnow() - datetime.timedelta(days=days)
        cursor = await self.db.execute(
            "DELETE FROM cooldowns WHERE last_used < ?", (to_db_value(cutoff),)
        )
        await self.db.commit()
        return cursor.rowcount

    # ── Pumpkin State ────────────────────────────────────────────────

    async def fetch_pumpkin_row(
        self, conn: Optional[aiosqlite.Connection] = None
    ) -> Dict[str, Any]:
        """Read the singleton pumpkin row (inside *conn*'s transaction if given)."""
        conn = conn or self.db
        async with conn.execute(
            "SELECT * FROM pumpkin_state WHERE id = ?", (PUMPKIN_STATE_ID,)
        ) as cur:
            row = await cur.fetchone()
        if row is None:
            raise RuntimeError("pumpkin_state row is missing; was initialize() run?")
        return dict(row)

    async def update_pumpkin_row(self, conn: aiosqlite.Connection, **fields: Any) -> None:
        """Overwrite columns of the singleton pumpkin row within *conn*'s transaction."""
        unknown = set(fields) - set(_PUMPKIN_COLUMNS)
        if unknown:
            raise ValueError(f"Unknown pumpkin_state columns: {sorted(unknown)}")
        if not fields:
            return
        assignments = ", ".join(f"{name} = ?" for name in fields)
        params = [to_db_value(value) for value in fields.values()]
        params.append(PUMPKIN_STATE_ID)
        await conn.execute(
            f"UPDATE pumpkin_state SET {assignments} WHERE id = ?", params
        )
