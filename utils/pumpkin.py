"""
Pumpkin hunt state machine.

A single ``pumpkin_state`` row says whether a pumpkin is out, where, and for
how much. Every mutation (scheduled spawn, manual spawn, grab, despawn) runs
inside ``DatabaseManager.exclusive()``, so the row's transitions happen in
lock-acquisition order:

    inactive --spawn--> active --grab / despawn--> inactive

A locked section only talks to its own connection and to Discord; reads
from the shared ``DatabaseManager.db`` connection happen before the lock.

Despawning is driven by the persisted ``expires_at`` column. In-process
timers only make it prompt; if they are lost (restart), the next sweep
expires the pumpkin anyway.
"""

from __future__ import annotations

import asyncio
import datetime
import enum
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, Sequence, Set

import aiosqlite

from config.constants import (
    PUMPKIN_CANDY_MAX,
    PUMPKIN_CANDY_MIN,
    PUMPKIN_NEXT_SPAWN_MAX,
    PUMPKIN_NEXT_SPAWN_MIN,
    PUMPKIN_RETRY_DELAY,
    PUMPKIN_WAIT_ATTEMPTS,
    PUMPKIN_WAIT_POLL,
)
from utils.db_manager import DatabaseManager, parse_timestamp, utcnow

logger = logging.getLogger(__name__)

# (channel, candy amount) -> id of the announcement message
Announce = Callable[[Any, int], Awaitable[int]]
# Called with the expiring state so the announcement can be edited
OnMissed = Callable[["PumpkinState"], Awaitable[None]]
Candidates = Callable[[], Awaitable[Sequence[Any]]]
Clock = Callable[[], datetime.datetime]


@dataclass(frozen=True)
class PumpkinState:
    """Snapshot of the singleton pumpkin row."""

    active: bool = False
    channel_id: Optional[int] = None
    message_id: Optional[int] = None
    candy_amount: int = 0
    spawned_at: Optional[datetime.datetime] = None
    next_spawn_at: Optional[datetime.datetime] = None
    expires_at: Optional[datetime.datetime] = None

    @classmethod
    def from_row(cls, row: dict) -> "PumpkinState":
        return cls(
            active=bool(row.get("active")),
            channel_id=row.get("channel_id"),
            message_id=row.get("message_id"),
            candy_amount=row.get("candy_amount") or 0,
            spawned_at=parse_timestamp(row.get("spawned_at")),
            next_spawn_at=parse_timestamp(row.get("next_spawn_at")),
            expires_at=parse_timestamp(row.get("expires_at")),
        )

    def is_expired(self, now: datetime.datetime) -> bool:
        return self.active and self.expires_at is not None and now >= self.expires_at


class TickOutcome(enum.Enum):
    SPAWNED = "spawned"
    BUSY = "busy"  # a live pumpkin is already out
    WAITING = "waiting"  # next_spawn_at not reached
    DEFERRED = "deferred"  # no eligible channel; retry later
    EXPIRED = "expired"  # swept an expired pumpkin instead of spawning


class GrabOutcome(enum.Enum):
    CLAIMED = "claimed"
    NOTHING = "nothing"
    WRONG_CHANNEL = "wrong_channel"


@dataclass(frozen=True)
class TickResult:
    outcome: TickOutcome
    state: PumpkinState


@dataclass(frozen=True)
class GrabResult:
    outcome: GrabOutcome
    state: Optional[PumpkinState] = None

    @property
    def claimed(self) -> bool:
        return self.outcome is GrabOutcome.CLAIMED


class PumpkinHunt:
    """
    Lock-guarded spawn / grab / despawn operations on the pumpkin row.

    Parameters
    ----------
    database : DatabaseManager
        Initialized database; provides the exclusive transactions.
    despawn_after : float
        Seconds an unclaimed pumpkin stays out.
    clock : callable
        Returns the current aware UTC datetime.
    rng : random.Random
        Source for amounts, channels, and spawn delays.
    """

    def __init__(
        self,
        database: DatabaseManager,
        *,
        despawn_after: float = 30.0,
        clock: Clock = utcnow,
        rng: Optional[random.Random] = None,
    ):
        self.database = database
        self.despawn_after = despawn_after
        self.clock = clock
        self.rng = rng or random.Random()
        self._timers: Set[asyncio.Task] = set()

    # ── Reads ────────────────────────────────────────────────────────

    async def current(self) -> PumpkinState:
        """Unlocked snapshot; fine for display and polling, not for branching writes."""
        return PumpkinState.from_row(await self.database.fetch_pumpkin_row())

    async def _locked_state(self, conn: aiosqlite.Connection) -> PumpkinState:
        return PumpkinState.from_row(await self.database.fetch_pumpkin_row(conn))

    # ── Scheduler ────────────────────────────────────────────────────

    async def tick(
        self,
        candidates: Candidates,
        announce: Announce,
        on_missed: OnMissed,
    ) -> TickResult:
        """
        One scheduler decision: expire, wait, defer, or spawn.

        *candidates* runs before the write lock is taken; nothing inside a
        locked section may touch the shared connection.
        """
        channels = list(await candidates())

        async with self.database.exclusive() as conn:
            state = await self._locked_state(conn)
            now = self.clock()

            if state.active:
                if state.is_expired(now):
                    await self._expire(conn, state, on_missed)
                    return TickResult(TickOutcome.EXPIRED, state)
                return TickResult(TickOutcome.BUSY, state)

            if state.next_spawn_at is not None and now < state.next_spawn_at:
                return TickResult(TickOutcome.WAITING, state)

            if not channels:
                retry_at = now + datetime.timedelta(seconds=PUMPKIN_RETRY_DELAY)
                await self.database.update_pumpkin_row(conn, next_spawn_at=retry_at)
                logger.info("No eligible channel for a pumpkin; retrying at %s", retry_at)
                return TickResult(TickOutcome.DEFERRED, state)

            channel = self.rng.choice(channels)
            next_spawn_at = now + datetime.timedelta(
                seconds=self.rng.randint(PUMPKIN_NEXT_SPAWN_MIN, PUMPKIN_NEXT_SPAWN_MAX)
            )
            spawned = await self._activate(
                conn, channel, announce, now, next_spawn_at=next_spawn_at
            )

        self.schedule_despawn(spawned, on_missed)
        return TickResult(TickOutcome.SPAWNED, spawned)

    # ── Manual spawns ────────────────────────────────────────────────

    async def spawn_in(
        self,
        channel: Any,
        announce: Announce,
        on_missed: OnMissed,
    ) -> Optional[PumpkinState]:
        """
        Spawn a pumpkin in *channel* unless a live one is already out.

        Returns the new state, or None when the slot was taken.
        Does not move ``next_spawn_at``.
        """
        async with self.database.exclusive() as conn:
            state = await self._locked_state(conn)
            now = self.clock()
            if state.active:
                if not state.is_expired(now):
                    return None
                await self._expire(conn, state, on_missed)
            spawned = await self._activate(conn, channel, announce, now)

        self.schedule_despawn(spawned, on_missed)
        return spawned

    async def wait_until_clear(
        self,
        attempts: int = PUMPKIN_WAIT_ATTEMPTS,
        poll: float = PUMPKIN_WAIT_POLL,
    ) -> bool:
        """Poll until no live pumpkin is out. Returns False on timeout."""
        for _ in range(attempts):
            state = await self.current()
            if not state.active or state.is_expired(self.clock()):
                return True
            await asyncio.sleep(poll)
        return False

    async def spawn_many(
        self,
        count: int,
        pick_channel: Callable[[], Any],
        announce: Announce,
        on_missed: OnMissed,
        *,
        gap: float = 0.0,
        attempts: int = PUMPKIN_WAIT_ATTEMPTS,
        poll: float = PUMPKIN_WAIT_POLL,
    ) -> int:
        """Spawn *count* pumpkins one after another. Returns how many appeared."""
        spawned = 0
        for number in range(1, count + 1):
            await self.wait_until_clear(attempts=attempts, poll=poll)
            channel = pick_channel()
            try:
                state = await self.spawn_in(channel, announce, on_missed)
            except Exception as exc:
                logger.error(
                    "Failed to spawn pumpkin %d/%d in %s: %s",
                    number, count, getattr(channel, "id", channel), exc, exc_info=True,
                )
                state = None
            if state is None:
                logger.info("Pumpkin %d/%d skipped; slot still taken", number, count)
            else:
                spawned += 1
            if gap and number < count:
                await asyncio.sleep(gap)
        return spawned

    # ── Grab ─────────────────────────────────────────────────────────

    async def grab(self, user_id: int, channel_id: int) -> GrabResult:
        """
        Try to claim the live pumpkin from *channel_id*.

        The row is flipped to inactive and committed before returning, so the
        caller pays out with the lock already released.
        """
        async with self.database.exclusive() as conn:
            state = await self._locked_state(conn)
            if not state.active or state.is_expired(self.clock()):
                logger.debug("Grab by %s: nothing to grab", user_id)
                return GrabResult(GrabOutcome.NOTHING)
            if state.channel_id != channel_id:
                logger.debug(
                    "Grab by %s in %s: pumpkin is in %s", user_id, channel_id, state.channel_id
                )
                return GrabResult(GrabOutcome.WRONG_CHANNEL, state)
            await self.database.update_pumpkin_row(conn, active=False)

        logger.info(
            "🎃 Pumpkin %s grabbed by %s in %s", state.message_id, user_id, channel_id
        )
        return GrabResult(GrabOutcome.CLAIMED, state)

    # ── Despawn ──────────────────────────────────────────────────────

    async def despawn(self, message_id: int, on_missed: OnMissed) -> bool:
        """Expire the pumpkin announced by *message_id* if it is still out."""
        async with self.database.exclusive() as conn:
            state = await self._locked_state(conn)
            if not state.active or state.message_id != message_id:
                return False
            await self._expire(conn, state, on_missed)
            return True

    async def sweep(self, on_missed: OnMissed) -> bool:
        """Expire whatever pumpkin is past its deadline, regardless of message id."""
        async with self.database.exclusive() as conn:
            state = await self._locked_state(conn)
            if not state.is_expired(self.clock()):
                return False
            await self._expire(conn, state, on_missed)
            return True

    def schedule_despawn(self, state: PumpkinState, on_missed: OnMissed) -> None:
        if state.expires_at is None or state.message_id is None:
            return
        delay = max(0.0, (state.expires_at - self.clock()).total_seconds())
        task = asyncio.create_task(
            self._despawn_later(delay, state.message_id, on_missed)
        )
        self._timers.add(task)
        task.add_done_callback(self._timers.discard)

    def cancel_timers(self) -> None:
        for task in list(self._timers):
            task.cancel()
        self._timers.clear()

    async def _despawn_later(self, delay: float, message_id: int, on_missed: OnMissed) -> None:
        await asyncio.sleep(delay)
        try:
            await self.despawn(message_id, on_missed)
        except Exception as exc:
            logger.error("Error despawning pumpkin %s: %s", message_id, exc, exc_info=True)

    # ── Internals ────────────────────────────────────────────────────

    async def _activate(
        self,
        conn: aiosqlite.Connection,
        channel: Any,
        announce: Announce,
        now: datetime.datetime,
        *,
        next_spawn_at: Optional[datetime.datetime] = None,
    ) -> PumpkinState:
        amount = self.rng.randint(PUMPKIN_CANDY_MIN, PUMPKIN_CANDY_MAX)
        message_id = await announce(channel, amount)
        fields = dict(
            active=True,
            channel_id=channel.id,
            message_id=message_id,
            candy_amount=amount,
            spawned_at=now,
            expires_at=now + datetime.timedelta(seconds=self.despawn_after),
        )
        if next_spawn_at is not None:
            fields["next_spawn_at"] = next_spawn_at
        await self.database.update_pumpkin_row(conn, **fields)
        logger.info(
            "🎃 Pumpkin spawned in %s worth %d candies (message %s)",
            channel.id, amount, message_id,
        )
        return await self._locked_state(conn)

    async def _expire(
        self, conn: aiosqlite.Connection, state: PumpkinState, on_missed: OnMissed
    ) -> None:
        try:
            await on_missed(state)
        except Exception as exc:
            logger.warning(
                "Could not mark pumpkin %s as missed: %s", state.message_id, exc, exc_info=True
            )
        await self.database.update_pumpkin_row(conn, active=False)
        logger.info("🎃 Pumpkin %s rolled away unclaimed", state.message_id)
