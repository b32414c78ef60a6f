"""
Single-Source Poller

Owns one feed's reload timer, in-flight fetch and item cache.

STATE MACHINE:
==============
Idle -> Fetching -> Idle (success: cache replaced, ItemsUpdated)
                 -> Idle (failure: cache kept, FetchFailed)

GUARANTEES:
===========
1. At most one fetch in flight; ticks arriving meanwhile are dropped
2. At most one timer task, whatever the number of start() calls
3. A failed cycle never touches the cache
4. State is mutated only from this poller's own tick and fetch cycle
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional, Tuple, Union
import asyncio

from .contracts import (
    ErrorKind, FetchFailed, Item, ItemsUpdated, ParsedFeed, SourceDescriptor
)
from .fetcher import classify_fetch_error
from .log import get_logger

logger = get_logger(__name__)


PollerEvent = Union[ItemsUpdated, FetchFailed]


def _timestamp(value: datetime) -> float:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.timestamp()


def sort_items(items: Iterable[Item]) -> Tuple[Item, ...]:
    """Newest first; undated items last, in their original order."""
    items = list(items)
    dated = [item for item in items if item.published_at is not None]
    undated = [item for item in items if item.published_at is None]
    dated.sort(key=lambda item: _timestamp(item.published_at), reverse=True)
    return tuple(dated + undated)


@dataclass
class PollerState:
    """Mutable state of one poller. Owned by that poller only."""
    source_key: str
    descriptor: SourceDescriptor
    items: Tuple[Item, ...] = ()
    fetch_in_flight: bool = False
    last_error: Optional[ErrorKind] = None
    timer_running: bool = False
    fetch_count: int = 0
    skipped_ticks: int = 0
    last_success_at: Optional[datetime] = None


class SourcePoller:
    """
    Polls one source on a fixed reload interval.

    content_source must provide
    ``async fetch(address, encoding, use_proxy, log_warnings) -> ParsedFeed``.
    emit receives ItemsUpdated and FetchFailed events.
    """

    def __init__(
        self,
        source_key: str,
        descriptor: SourceDescriptor,
        content_source,
        emit: Callable[[PollerEvent], None]
    ):
        self._state = PollerState(source_key=source_key, descriptor=descriptor)
        self._source = content_source
        self._emit = emit
        self._timer: Optional[asyncio.Task] = None
        self._fetch_task: Optional[asyncio.Task] = None

    # -------------------------------------------------------------------------
    # Read-only views
    # -------------------------------------------------------------------------

    @property
    def source_key(self) -> str:
        return self._state.source_key

    @property
    def descriptor(self) -> SourceDescriptor:
        return self._state.descriptor

    @property
    def reload_interval_ms(self) -> int:
        return self._state.descriptor.reload_interval_ms

    @property
    def is_running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    @property
    def fetch_in_flight(self) -> bool:
        return self._state.fetch_in_flight

    @property
    def last_error(self) -> Optional[ErrorKind]:
        return self._state.last_error

    @property
    def state(self) -> PollerState:
        """Copy of the current state."""
        return replace(self._state, timer_running=self.is_running)

    def items(self) -> Tuple[Item, ...]:
        """Current cache. Never blocks, never fetches."""
        return self._state.items

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> bool:
        """
        Fetch immediately and arm the reload timer.

        Returns False (and does nothing) if the timer is already running.
        Must be called from within a running event loop.
        """
        if self.is_running:
            return False

        self.tick()
        self._timer = asyncio.get_running_loop().create_task(
            self._run_timer(), name=f"poller-timer:{self.source_key}"
        )
        return True

    def stop(self) -> None:
        """Cancel the timer and any in-flight fetch. Shutdown only."""
        for task in (self._timer, self._fetch_task):
            if task is not None and not task.done():
                task.cancel()
        self._timer = None

    async def _run_timer(self) -> None:
        while True:
            # period is re-read every cycle so interval changes apply next tick
            await asyncio.sleep(self._state.descriptor.reload_interval_ms / 1000)
            self.tick()

    def set_reload_interval(self, reload_interval_ms: int) -> None:
        """Replace the timer period; takes effect from the next cycle."""
        if reload_interval_ms == self._state.descriptor.reload_interval_ms:
            return
        self._state.descriptor = replace(self._state.descriptor, reload_interval_ms=reload_interval_ms)
        logger.info("Reload interval for %s set to %d ms", self.source_key, reload_interval_ms)

    def set_use_proxy(self, use_proxy: bool) -> None:
        if use_proxy != self._state.descriptor.use_proxy:
            self._state.descriptor = replace(self._state.descriptor, use_proxy=use_proxy)

    def refresh_subscribers(self) -> None:
        """Re-announce the current cache without fetching."""
        self._emit(ItemsUpdated(self.source_key))

    # -------------------------------------------------------------------------
    # Fetch cycle
    # -------------------------------------------------------------------------

    def tick(self) -> bool:
        """
        Timer body: start a fetch cycle unless one is in flight.

        Returns True if a fetch was started.
        """
        if self._state.fetch_in_flight:
            self._state.skipped_ticks += 1
            logger.debug("Fetch for %s still in flight, skipping tick", self.source_key)
            return False

        self._state.fetch_in_flight = True
        self._fetch_task = asyncio.get_running_loop().create_task(
            self._fetch_cycle(), name=f"poller-fetch:{self.source_key}"
        )
        return True

    async def wait_idle(self) -> None:
        """Wait for the in-flight fetch, if any, to finish."""
        task = self._fetch_task
        if task is not None and not task.done():
            await asyncio.wait([task])

    async def fetch_now(self) -> bool:
        """Run one fetch cycle to completion. False if one was already in flight."""
        if not self.tick():
            return False
        await self._fetch_task
        return True

    async def _fetch_cycle(self) -> None:
        descriptor = self._state.descriptor
        try:
            parsed = await self._source.fetch(
                descriptor.address,
                descriptor.encoding,
                descriptor.use_proxy,
                descriptor.log_warnings
            )
        except Exception as e:
            event = self._record_failure(e)
        else:
            event = self._record_success(parsed)
        finally:
            self._state.fetch_in_flight = False
            self._state.fetch_count += 1

        self._emit(event)

    def _record_success(self, parsed: ParsedFeed) -> ItemsUpdated:
        descriptor = self._state.descriptor
        source_title = descriptor.title or parsed.title or descriptor.address

        self._state.items = tuple(
            item.with_source_title(source_title) for item in sort_items(parsed.items)
        )
        self._state.last_error = None
        self._state.last_success_at = datetime.now(tz=timezone.utc)

        logger.debug("Fetched %d items from %s", len(self._state.items), self.source_key)
        return ItemsUpdated(self.source_key)

    def _record_failure(self, error: Exception) -> FetchFailed:
        kind = classify_fetch_error(error)
        self._state.last_error = kind

        logger.error("Could not fetch newsfeed %s: %s (%s)", self.source_key, error, kind.value)
        return FetchFailed(self.source_key, kind, str(error))
