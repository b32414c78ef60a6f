"""
Broadcast Aggregator

Turns poller events into outbound events.

On any ItemsUpdated the snapshot holds every registered source's
current items, not only the one that changed; consumers replace their
view with it wholesale. FetchFailed is forwarded as SourceError at once.

Snapshots are numbered when taken. One that finishes enrichment after a
newer snapshot was published is dropped, so the last published snapshot
always reflects the latest cache.
"""

from __future__ import annotations
from typing import Callable, Optional, Set
import asyncio

from .contracts import FetchFailed, ItemsSnapshot, ItemsUpdated, SourceError
from .imaging import ImageEnricher
from .poller import PollerEvent
from .registry import FetcherRegistry
from .log import get_logger

logger = get_logger(__name__)


class BroadcastAggregator:
    """
    Event sink for all pollers.

    With an enricher, a snapshot is held back until its images have
    settled and is then published once.
    """

    def __init__(
        self,
        registry: FetcherRegistry,
        publish: Callable[[object], None],
        enricher: Optional[ImageEnricher] = None
    ):
        self._registry = registry
        self._publish = publish
        self._enricher = enricher
        self._tasks: Set[asyncio.Task] = set()
        self._generation = 0
        self._published_generation = 0
        self.broadcast_count = 0
        self.dropped_count = 0

    def handle(self, event: PollerEvent) -> None:
        if isinstance(event, ItemsUpdated):
            self._schedule(self.broadcast())
        elif isinstance(event, FetchFailed):
            self._publish(SourceError(kind=event.kind, source_key=event.source_key))
        else:
            logger.warning("Ignoring unknown poller event: %r", event)

    def _schedule(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def broadcast(self) -> Optional[ItemsSnapshot]:
        """
        Build and publish one snapshot of every source.

        Returns None if a newer snapshot was published while this one
        was being enriched.
        """
        self._generation += 1
        generation = self._generation

        feeds = self._registry.snapshot()
        if self._enricher is not None:
            feeds = await self._enricher.enrich(feeds)

        if generation < self._published_generation:
            self.dropped_count += 1
            logger.debug(
                "Dropping stale snapshot %d, %d already published",
                generation, self._published_generation
            )
            return None

        snapshot = ItemsSnapshot(feeds=feeds)
        self._published_generation = generation
        self.broadcast_count += 1
        self._publish(snapshot)
        return snapshot

    async def drain(self) -> None:
        """Wait for every scheduled broadcast to be published or dropped."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
