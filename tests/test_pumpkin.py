"""
Tests for the pumpkin hunt: spawning, grabbing, and despawning.
"""

import asyncio
import datetime
import os
import random
import tempfile
import unittest
from types import SimpleNamespace

from config.constants import PUMPKIN_CANDY_MIN, SOURCE_PUMPKIN
from utils.db_manager import DatabaseManager
from utils.pumpkin import GrabOutcome, PumpkinHunt, TickOutcome


class FixedRandom(random.Random):
    """Pays out *amount* for pumpkin rolls and the minimum for anything else."""

    def __init__(self, amount: int):
        super().__init__(0)
        self.amount = amount

    def randint(self, a, b):
        return self.amount if a == PUMPKIN_CANDY_MIN else a

    def choice(self, seq):
        return seq[0]


class PumpkinTestCase(unittest.IsolatedAsyncioTestCase):
    despawn_after = 30.0

    async def asyncSetUp(self):
        self.tmp = tempfile.mkdtemp()
        self.db_path = os.path.join(self.tmp, "test.db")
        self.db = DatabaseManager(self.db_path)
        await self.db.initialize()

        self.now = datetime.datetime(2025, 10, 31, 20, 0, tzinfo=datetime.timezone.utc)
        self.hunt = PumpkinHunt(
            self.db,
            despawn_after=self.despawn_after,
            clock=lambda: self.now,
            rng=FixedRandom(15),
        )
        self.channel = SimpleNamespace(id=100)
        self.other_channel = SimpleNamespace(id=200)
        self.announced = []
        self.missed = []
        self._next_message_id = 5000

    async def asyncTearDown(self):
        self.hunt.cancel_timers()
        await self.db.close()
        for suffix in ("", "-wal", "-shm"):
            path = self.db_path + suffix
            if os.path.exists(path):
                os.unlink(path)

    async def announce(self, channel, amount):
        self._next_message_id += 1
        self.announced.append((channel.id, amount, self._next_message_id))
        return self._next_message_id

    async def on_missed(self, state):
        self.missed.append(state)

    def advance(self, seconds):
        self.now += datetime.timedelta(seconds=seconds)


class TestSpawnAndGrab(PumpkinTestCase):
    async def test_spawn_then_grab_pays_out(self):
        state = await self.hunt.spawn_in(self.channel, self.announce, self.on_missed)
        self.assertTrue(state.active)
        self.assertEqual(state.channel_id, 100)
        self.assertEqual(state.candy_amount, 15)
        self.assertEqual(state.expires_at, self.now + datetime.timedelta(seconds=30))

        result = await self.hunt.grab(user_id=1, channel_id=100)
        self.assertTrue(result.claimed)
        self.assertEqual(result.state.candy_amount, 15)
        self.assertFalse((await self.hunt.current()).active)

        award = await self.db.award_candy(1, 10, result.state.candy_amount, SOURCE_PUMPKIN)
        self.assertEqual(award.amount, 15)
        self.assertEqual(await self.db.get_balance(1), 15)
        history = await self.db.get_history(1)
        self.assertEqual(history[0]["source"], "pumpkin_grab")
        self.assertEqual(history[0]["amount"], 15)

    async def test_grab_with_nothing_out(self):
        result = await self.hunt.grab(user_id=1, channel_id=100)
        self.assertEqual(result.outcome, GrabOutcome.NOTHING)
        self.assertFalse(result.claimed)

    async def test_grab_in_wrong_channel(self):
        await self.hunt.spawn_in(self.channel, self.announce, self.on_missed)

        result = await self.hunt.grab(user_id=1, channel_id=200)
        self.assertEqual(result.outcome, GrabOutcome.WRONG_CHANNEL)
        self.assertTrue((await self.hunt.current()).active)
        self.assertEqual(await self.db.get_balance(1), 0)

    async def test_concurrent_grabs_have_one_winner(self):
        await self.hunt.spawn_in(self.channel, self.announce, self.on_missed)

        results = await asyncio.gather(
            *(self.hunt.grab(user_id=user, channel_id=100) for user in range(1, 9))
        )
        claimed = [r for r in results if r.claimed]
        self.assertEqual(len(claimed), 1)
        self.assertTrue(
            all(r.outcome is GrabOutcome.NOTHING for r in results if not r.claimed)
        )

    async def test_grab_after_expiry_gets_nothing(self):
        await self.hunt.spawn_in(self.channel, self.announce, self.on_missed)
        self.advance(31)

        result = await self.hunt.grab(user_id=1, channel_id=100)
        self.assertEqual(result.outcome, GrabOutcome.NOTHING)

    async def test_manual_spawn_refused_while_active(self):
        first = await self.hunt.spawn_in(self.channel, self.announce, self.on_missed)
        second = await self.hunt.spawn_in(self.other_channel, self.announce, self.on_missed)
        self.assertIsNone(second)
        self.assertEqual((await self.hunt.current()).message_id, first.message_id)
        self.assertEqual(len(self.announced), 1)

    async def test_manual_spawn_keeps_schedule(self):
        await self.hunt.spawn_in(self.channel, self.announce, self.on_missed)
        self.assertIsNone((await self.hunt.current()).next_spawn_at)

    async def test_failed_announce_leaves_row_untouched(self):
        async def broken_announce(channel, amount):
            raise RuntimeError("missing access")

        with self.assertRaises(RuntimeError):
            await self.hunt.spawn_in(self.channel, broken_announce, self.on_missed)
        state = await self.hunt.current()
        self.assertFalse(state.active)
        self.assertIsNone(state.channel_id)


class TestDespawn(PumpkinTestCase):
    async def test_despawn_marks_missed(self):
        state = await self.hunt.spawn_in(self.channel, self.announce, self.on_missed)

        self.assertTrue(await self.hunt.despawn(state.message_id, self.on_missed))
        self.assertFalse((await self.hunt.current()).active)
        self.assertEqual([s.message_id for s in self.missed], [state.message_id])

    async def test_despawn_after_grab_is_noop(self):
        state = await self.hunt.spawn_in(self.channel, self.announce, self.on_missed)
        await self.hunt.grab(user_id=1, channel_id=100)

        self.assertFalse(await self.hunt.despawn(state.message_id, self.on_missed))
        self.assertEqual(self.missed, [])

    async def test_stale_despawn_ignores_newer_pumpkin(self):
        old = await self.hunt.spawn_in(self.channel, self.announce, self.on_missed)
        await self.hunt.grab(user_id=1, channel_id=100)
        new = await self.hunt.spawn_in(self.channel, self.announce, self.on_missed)

        self.assertFalse(await self.hunt.despawn(old.message_id, self.on_missed))
        current = await self.hunt.current()
        self.assertTrue(current.active)
        self.assertEqual(current.message_id, new.message_id)

    async def test_sweep_expires_overdue_pumpkin(self):
        await self.hunt.spawn_in(self.channel, self.announce, self.on_missed)
        self.assertFalse(await self.hunt.sweep(self.on_missed))

        self.advance(30)
        self.assertTrue(await self.hunt.sweep(self.on_missed))
        self.assertFalse((await self.hunt.current()).active)
        self.assertEqual(len(self.missed), 1)
        self.assertEqual(await self.db.get_balance(1), 0)

    async def test_failing_missed_callback_still_despawns(self):
        async def broken_on_missed(state):
            raise RuntimeError("message deleted")

        state = await self.hunt.spawn_in(self.channel, self.announce, self.on_missed)
        self.assertTrue(await self.hunt.despawn(state.message_id, broken_on_missed))
        self.assertFalse((await self.hunt.current()).active)


class TestDespawnTimer(PumpkinTestCase):
    despawn_after = 0.05

    async def asyncSetUp(self):
        await super().asyncSetUp()
        # real clock so the timer delay matches the persisted deadline
        self.hunt.clock = lambda: datetime.datetime.now(datetime.timezone.utc)

    async def test_timer_despawns_unclaimed_pumpkin(self):
        await self.hunt.spawn_in(self.channel, self.announce, self.on_missed)
        await asyncio.sleep(0.5)

        self.assertFalse((await self.hunt.current()).active)
        self.assertEqual(len(self.missed), 1)

    async def test_timer_after_grab_does_nothing(self):
        await self.hunt.spawn_in(self.channel, self.announce, self.on_missed)
        await self.hunt.grab(user_id=1, channel_id=100)
        await asyncio.sleep(0.5)

        self.assertEqual(self.missed, [])


class TestTick(PumpkinTestCase):
    async def candidates(self):
        return [self.channel, self.other_channel]

    async def no_candidates(self):
        return []

    async def test_first_tick_spawns(self):
        result = await self.hunt.tick(self.candidates, self.announce, self.on_missed)
        self.assertEqual(result.outcome, TickOutcome.SPAWNED)
        self.assertEqual(result.state.channel_id, 100)
        self.assertEqual(result.state.candy_amount, 15)
        self.assertEqual(
            result.state.next_spawn_at, self.now + datetime.timedelta(seconds=60)
        )

    async def test_busy_while_pumpkin_is_out(self):
        await self.hunt.tick(self.candidates, self.announce, self.on_missed)
        self.advance(5)

        result = await self.hunt.tick(self.candidates, self.announce, self.on_missed)
        self.assertEqual(result.outcome, TickOutcome.BUSY)
        self.assertEqual(len(self.announced), 1)

    async def test_waits_for_next_spawn(self):
        await self.hunt.tick(self.candidates, self.announce, self.on_missed)
        await self.hunt.grab(user_id=1, channel_id=100)
        self.advance(10)

        result = await self.hunt.tick(self.candidates, self.announce, self.on_missed)
        self.assertEqual(result.outcome, TickOutcome.WAITING)

        self.advance(60)
        result = await self.hunt.tick(self.candidates, self.announce, self.on_missed)
        self.assertEqual(result.outcome, TickOutcome.SPAWNED)

    async def test_tick_expires_overdue_pumpkin(self):
        await self.hunt.tick(self.candidates, self.announce, self.on_missed)
        self.advance(45)

        result = await self.hunt.tick(self.candidates, self.announce, self.on_missed)
        self.assertEqual(result.outcome, TickOutcome.EXPIRED)
        self.assertFalse((await self.hunt.current()).active)
        self.assertEqual(len(self.missed), 1)

    async def test_defers_without_channels(self):
        result = await self.hunt.tick(self.no_candidates, self.announce, self.on_missed)
        self.assertEqual(result.outcome, TickOutcome.DEFERRED)

        state = await self.hunt.current()
        self.assertFalse(state.active)
        self.assertEqual(state.next_spawn_at, self.now + datetime.timedelta(seconds=60))
        self.assertEqual(self.announced, [])

    async def test_award_during_candidate_lookup_is_not_blocked(self):
        awards = []

        async def candidates_with_chat_activity():
            awards.append(
                asyncio.create_task(self.db.award_candy(1, 9, 10, "passive_chat"))
            )
            await asyncio.sleep(0)
            await self.db.get_disabled_guilds()
            return [self.channel]

        result = await asyncio.wait_for(
            self.hunt.tick(candidates_with_chat_activity, self.announce, self.on_missed),
            timeout=5,
        )
        award = await asyncio.wait_for(awards[0], timeout=5)

        self.assertEqual(result.outcome, TickOutcome.SPAWNED)
        self.assertEqual(award.amount, 10)
        self.assertEqual(await self.db.get_balance(1), 10)

    async def test_award_while_tick_holds_lock(self):
        started = asyncio.Event()
        release = asyncio.Event()

        async def slow_announce(channel, amount):
            started.set()
            await release.wait()
            return await self.announce(channel, amount)

        tick = asyncio.create_task(
            self.hunt.tick(self.candidates, slow_announce, self.on_missed)
        )
        await started.wait()
        award = asyncio.create_task(self.db.award_candy(1, 9, 10, "passive_chat"))
        await asyncio.sleep(0.05)
        release.set()

        result = await asyncio.wait_for(tick, timeout=5)
        await asyncio.wait_for(award, timeout=5)
        self.assertEqual(result.outcome, TickOutcome.SPAWNED)
        self.assertEqual(await self.db.get_balance(1), 10)

    async def test_manual_spawn_blocks_scheduled_spawn(self):
        await self.hunt.spawn_in(self.other_channel, self.announce, self.on_missed)
        result = await self.hunt.tick(self.candidates, self.announce, self.on_missed)
        self.assertEqual(result.outcome, TickOutcome.BUSY)


class TestSpawnMany(PumpkinTestCase):
    async def test_spawns_after_each_grab(self):
        async def grab_when_out():
            while True:
                state = await self.hunt.current()
                if state.active:
                    await self.hunt.grab(user_id=1, channel_id=state.channel_id)
                await asyncio.sleep(0.01)

        grabber = asyncio.create_task(grab_when_out())
        try:
            spawned = await self.hunt.spawn_many(
                3, lambda: self.channel, self.announce, self.on_missed,
                attempts=100, poll=0.01,
            )
        finally:
            grabber.cancel()
        self.assertEqual(spawned, 3)
        self.assertEqual(len(self.announced), 3)

    async def test_skips_when_slot_stays_taken(self):
        spawned = await self.hunt.spawn_many(
            2, lambda: self.channel, self.announce, self.on_missed,
            attempts=2, poll=0.01,
        )
        self.assertEqual(spawned, 1)
        self.assertEqual(len(self.announced), 1)


if __name__ == "__main__":
    unittest.main()
