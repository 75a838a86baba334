"""
Tests for the RegistryStore implementation.

These tests verify the async boundary around the registry, including clock
injection, identity normalization, the event journal and streaming.
"""

import asyncio

import pytest

from echomint_registry.models import (
    Err,
    Minted,
    MoodState,
    MoodUpdated,
    RegistryError,
    Transfer,
)
from echomint_registry.store import RegistryStore

CURATOR = "0x" + "c0" * 20
ALICE = "0x" + "a1" * 20
BOB = "0x" + "b0" * 20
CAROL = "0x" + "ca" * 20
DAVE = "0x" + "da" * 20


class FakeClock:
    """Deterministic millisecond clock advancing by a fixed step per call."""

    def __init__(self, start: int = 1_700_000_000_000, step: int = 1_000) -> None:
        self.now = start
        self.step = step

    def __call__(self) -> int:
        current = self.now
        self.now += self.step
        return current


class TestRegistryStore:
    """Test suite for RegistryStore functionality."""

    def setup_method(self):
        """Set up a fresh RegistryStore for each test."""
        self.clock = FakeClock()
        self.store = RegistryStore(curator=CURATOR, clock=self.clock)

    async def test_initial_state(self):
        """Test that a new store starts empty."""
        assert await self.store.total_supply() == 0
        assert await self.store.events() == []
        assert self.store.curator == CURATOR

    async def test_mint_and_read(self):
        """Test minting stamps the clock time and is readable back."""
        result = await self.store.mint(ALICE, ALICE, "SOL", MoodState.BULLISH)
        assert result.value == 0

        metadata = await self.store.get_metadata(0)
        assert metadata.created_at == 1_700_000_000_000
        assert await self.store.owner_of(0) == ALICE
        assert await self.store.balance_of(ALICE) == 1
        assert await self.store.tokens_of_owner(ALICE) == [0]

    async def test_mood_update_advances_last_updated(self):
        await self.store.mint(ALICE, ALICE, "BTC", MoodState.BULLISH)

        result = await self.store.update_mood(CURATOR, 0, MoodState.BEARISH)
        assert result.ok

        metadata = await self.store.get_metadata(0)
        assert metadata.mood == MoodState.BEARISH
        assert metadata.last_updated > metadata.created_at

    async def test_identities_are_normalized(self):
        await self.store.mint(ALICE.upper().replace("0X", "0x"), ALICE, "SOL", MoodState.NEUTRAL)

        result = await self.store.transfer(ALICE.upper().replace("0X", "0x"), BOB, 0)

        assert result.ok
        assert await self.store.owner_of(0) == BOB

    async def test_invalid_identity_raises(self):
        with pytest.raises(ValueError):
            await self.store.mint("alice", ALICE, "SOL", MoodState.NEUTRAL)
        with pytest.raises(ValueError):
            await self.store.balance_of("0x1234")

    async def test_journal_records_events_in_order(self):
        await self.store.mint(ALICE, ALICE, "SOL", MoodState.NEUTRAL)
        await self.store.update_mood(CURATOR, 0, MoodState.VOLATILE)
        await self.store.update_image(CURATOR, 0, "ipfs://echo")
        await self.store.transfer(ALICE, BOB, 0)

        records = await self.store.events()

        assert [r.seq for r in records] == [0, 1, 2, 3]
        assert [r.event for r in records] == [
            Transfer(from_=None, to=ALICE, token_id=0),
            Minted(token_id=0, owner=ALICE, coin="SOL"),
            MoodUpdated(token_id=0, new_mood=MoodState.VOLATILE),
            Transfer(from_=ALICE, to=BOB, token_id=0),
        ]
        # Both mint events carry the mint time
        assert records[0].timestamp == records[1].timestamp
        assert [r.seq for r in await self.store.events(since=2)] == [2, 3]

    async def test_rejected_operations_are_not_journaled(self):
        await self.store.mint(ALICE, ALICE, "SOL", MoodState.NEUTRAL)

        result = await self.store.transfer(BOB, BOB, 0)

        assert result == Err(error=RegistryError.NOT_APPROVED)
        assert len(await self.store.events()) == 2

    async def test_concurrent_transfers_are_linearized(self):
        """Two racing uses of one single approval: exactly one wins."""
        await self.store.mint(ALICE, ALICE, "SOL", MoodState.NEUTRAL)
        await self.store.approve(ALICE, BOB, 0)

        results = await asyncio.gather(
            self.store.transfer(BOB, CAROL, 0),
            self.store.transfer(BOB, DAVE, 0),
        )

        # The first commit clears the approval, so the second is rejected
        assert [r.ok for r in results].count(True) == 1
        assert [r for r in results if not r.ok] == [Err(error=RegistryError.NOT_APPROVED)]
        owner = await self.store.owner_of(0)
        assert owner in (CAROL, DAVE)
        balances = [await self.store.balance_of(i) for i in (ALICE, CAROL, DAVE)]
        assert balances.count(1) == 1
        assert sum(balances) == 1
        assert await self.store.balance_of(owner) == 1
        assert await self.store.get_approved(0) is None
        # One Approval, one mint pair, one Transfer
        assert len(await self.store.events()) == 4

    async def test_journal_retention_keeps_recent_events(self):
        store = RegistryStore(curator=CURATOR, clock=FakeClock(), journal_retention=3)
        await store.mint(ALICE, ALICE, "SOL", MoodState.NEUTRAL)
        await store.set_approval_for_all(ALICE, BOB, True)
        await store.set_approval_for_all(ALICE, BOB, False)

        assert [r.seq for r in await store.events()] == [1, 2, 3]
        assert [r.seq for r in await store.events(since=3)] == [3]

        received = []

        async def consumer():
            async with store.stream(since=0) as event_stream:
                async for record in event_stream:
                    received.append(record.seq)
                    if len(received) >= 4:
                        break

        task = asyncio.create_task(consumer())
        await asyncio.sleep(0.01)
        await store.transfer(ALICE, BOB, 0)

        await asyncio.wait_for(task, timeout=2.0)
        assert received == [1, 2, 3, 4]
        assert [r.seq for r in await store.events()] == [2, 3, 4]

    def test_negative_retention_rejected(self):
        with pytest.raises(ValueError):
            RegistryStore(curator=CURATOR, journal_retention=-1)

    async def test_streaming(self):
        """Test that two consumers receive committed events."""
        consumer1_events = []
        consumer2_events = []

        async def consumer(received):
            async with self.store.stream() as event_stream:
                async for record in event_stream:
                    received.append(record.event.kind)
                    if len(received) >= 3:  # Transfer + Minted + MoodUpdated
                        break

        # Start both consumers
        task1 = asyncio.create_task(consumer(consumer1_events))
        task2 = asyncio.create_task(consumer(consumer2_events))

        # Let them set up
        await asyncio.sleep(0.01)

        await self.store.mint(ALICE, ALICE, "SOL", MoodState.NEUTRAL)
        await asyncio.sleep(0.01)
        await self.store.update_mood(CURATOR, 0, MoodState.BULLISH)

        try:
            await asyncio.wait_for(asyncio.gather(task1, task2), timeout=2.0)
        except TimeoutError:
            task1.cancel()
            task2.cancel()
            await asyncio.gather(task1, task2, return_exceptions=True)
            assert False, f"Test timed out: {consumer1_events}, {consumer2_events}"

        assert consumer1_events == ["Transfer", "Minted", "MoodUpdated"]
        assert consumer2_events == ["Transfer", "Minted", "MoodUpdated"]

    async def test_stream_replays_backlog(self):
        """A subscriber with ``since`` sees the journal before live events."""
        await self.store.mint(ALICE, ALICE, "SOL", MoodState.NEUTRAL)
        await self.store.set_approval_for_all(ALICE, BOB, True)

        received = []

        async def consumer():
            async with self.store.stream(since=1) as event_stream:
                async for record in event_stream:
                    received.append(record.seq)
                    if len(received) >= 3:
                        break

        task = asyncio.create_task(consumer())
        await asyncio.sleep(0.01)
        await self.store.transfer(BOB, BOB, 0)

        await asyncio.wait_for(task, timeout=2.0)
        assert received == [1, 2, 3]
