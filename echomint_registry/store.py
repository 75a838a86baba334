"""
Registry storage for the EchoMint service.

This module wraps the synchronous ``Registry`` in an async store that
serializes every call, supplies the current time, and keeps an ordered
journal of committed events that any number of subscribers can stream.
The design allows for replacing the in-memory journal with a persistent
backend later without touching the registry itself.
"""

import asyncio
import logging
import time
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager

from .models import (
    EventRecord,
    MoodState,
    Ok,
    Result,
    TokenMetadata,
    parse_identity,
)
from .registry import Registry

logger = logging.getLogger(__name__)


def wall_clock_ms() -> int:
    """Current wall-clock time in milliseconds."""
    return int(time.time() * 1000)


class RegistryStore:
    """
    In-memory registry with an event journal and real-time streaming.

    Every operation runs while holding one ``asyncio.Condition``, which is the
    single exclusive boundary the registry requires: two transfers of the
    same token are linearized, never interleaved. Identities are validated
    and lower-cased here before they reach the registry.

    The journal lives in memory. With ``journal_retention`` set, only the most
    recent events are kept; older ones drop off the front while sequence
    numbers keep counting, so ``events()`` and ``stream()`` resume from the
    oldest retained record. With the default of 0 the journal grows for the
    lifetime of the store.

    Args:
        curator: Deployer identity, allowed to update token metadata
        compact_owner_index: Passed through to ``Registry``
        clock: Returns the current time in milliseconds
        journal_retention: Maximum number of events kept, 0 for unbounded
    """

    def __init__(
        self,
        curator: str,
        compact_owner_index: bool = False,
        clock: Callable[[], int] = wall_clock_ms,
        journal_retention: int = 0,
    ) -> None:
        if journal_retention < 0:
            raise ValueError("journal_retention must not be negative")
        self._registry = Registry(
            parse_identity(curator), compact_owner_index=compact_owner_index
        )
        self._clock = clock
        self._condition = asyncio.Condition()
        self._journal: list[EventRecord] = []
        self._first_seq = 0
        self._journal_retention = journal_retention

    @property
    def curator(self) -> str:
        return self._registry.curator

    # MARK: - Mutations

    async def mint(self, caller: str, to: str, coin: str, mood: MoodState) -> Result:
        caller, to = parse_identity(caller), parse_identity(to)
        return await self._apply(
            lambda now: self._registry.mint(caller, now, to, coin, mood)
        )

    async def update_mood(self, caller: str, token_id: int, mood: MoodState) -> Result:
        caller = parse_identity(caller)
        return await self._apply(
            lambda now: self._registry.update_mood(caller, now, token_id, mood)
        )

    async def update_image(self, caller: str, token_id: int, image_url: str) -> Result:
        caller = parse_identity(caller)
        return await self._apply(
            lambda now: self._registry.update_image(caller, now, token_id, image_url)
        )

    async def transfer(self, caller: str, to: str, token_id: int) -> Result:
        caller, to = parse_identity(caller), parse_identity(to)
        return await self._apply(
            lambda now: self._registry.transfer(caller, now, to, token_id)
        )

    async def approve(self, caller: str, to: str, token_id: int) -> Result:
        caller, to = parse_identity(caller), parse_identity(to)
        return await self._apply(
            lambda now: self._registry.approve(caller, now, to, token_id)
        )

    async def set_approval_for_all(
        self, caller: str, operator: str, approved: bool
    ) -> Result:
        caller, operator = parse_identity(caller), parse_identity(operator)
        return await self._apply(
            lambda now: self._registry.set_approval_for_all(caller, now, operator, approved)
        )

    # MARK: - Queries

    async def get_metadata(self, token_id: int) -> TokenMetadata | None:
        async with self._condition:
            return self._registry.get_metadata(token_id)

    async def owner_of(self, token_id: int) -> str | None:
        async with self._condition:
            return self._registry.owner_of(token_id)

    async def total_supply(self) -> int:
        async with self._condition:
            return self._registry.total_supply()

    async def balance_of(self, owner: str) -> int:
        owner = parse_identity(owner)
        async with self._condition:
            return self._registry.balance_of(owner)

    async def get_approved(self, token_id: int) -> str | None:
        async with self._condition:
            return self._registry.get_approved(token_id)

    async def is_approved_for_all(self, owner: str, operator: str) -> bool:
        owner, operator = parse_identity(owner), parse_identity(operator)
        async with self._condition:
            return self._registry.is_approved_for_all(owner, operator)

    async def tokens_of_owner(self, owner: str) -> list[int]:
        owner = parse_identity(owner)
        async with self._condition:
            return self._registry.tokens_of_owner(owner)

    # MARK: - Events

    async def events(self, since: int = 0) -> list[EventRecord]:
        """
        Get committed events.

        Args:
            since: First journal position to include

        Returns:
            Retained event records with ``seq >= since``, oldest first
        """
        async with self._condition:
            return self._records_from(since)

    @asynccontextmanager
    async def stream(
        self, since: int | None = None
    ) -> AsyncGenerator[AsyncGenerator[EventRecord, None], None]:
        """
        Stream committed events to a subscriber.

        This context manager yields an async generator that produces event
        records as operations commit them. Uses the store's condition
        variable for signaling.

        Args:
            since: Replay the journal from this position first. When None,
                only events committed after subscribing are produced.

        Yields:
            An async generator of EventRecord objects
        """

        async def event_generator() -> AsyncGenerator[EventRecord, None]:
            async with self._condition:
                position = self._next_seq if since is None else max(since, 0)

            while True:
                async with self._condition:
                    await self._condition.wait_for(lambda: self._next_seq > position)
                    pending = self._records_from(position)
                    position = self._next_seq

                for record in pending:
                    yield record

        generator = event_generator()
        try:
            yield generator
        finally:
            await generator.aclose()

    # MARK: - Private Helpers

    @property
    def _next_seq(self) -> int:
        return self._first_seq + len(self._journal)

    def _records_from(self, since: int) -> list[EventRecord]:
        return self._journal[max(since - self._first_seq, 0):]

    async def _apply(self, operation: Callable[[int], Result]) -> Result:
        """Run one registry operation and journal its events on success."""
        async with self._condition:
            now = self._clock()
            result = operation(now)
            if isinstance(result, Ok) and result.events:
                for event in result.events:
                    record = EventRecord(seq=self._next_seq, timestamp=now, event=event)
                    self._journal.append(record)
                    logger.debug(
                        "Committed %s event", event.kind, extra={"seq": record.seq}
                    )

                overflow = len(self._journal) - self._journal_retention
                if self._journal_retention and overflow > 0:
                    del self._journal[:overflow]
                    self._first_seq += overflow

                # Notify all waiting subscribers
                self._condition.notify_all()

            return result
