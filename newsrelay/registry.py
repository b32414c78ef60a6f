"""
Fetcher Registry

Maps source keys to pollers. One poller (and one timer) per distinct
address, however many times or by however many consumers it is registered.
"""

from __future__ import annotations
from typing import Callable, Dict, Iterator, List, Optional, Tuple
import asyncio

from .contracts import Item, SourceDescriptor
from .normalizer import normalize
from .poller import PollerEvent, SourcePoller
from .log import get_logger

logger = get_logger(__name__)


class FetcherRegistry:
    """
    Registry of live pollers keyed by normalized address.

    Pollers report through the attached listener; the registry never
    touches poller state except through the poller's own reconfiguration.
    """

    def __init__(self, content_source, listener: Optional[Callable[[PollerEvent], None]] = None):
        self._content_source = content_source
        self._listener = listener
        self._pollers: Dict[str, SourcePoller] = {}

    def attach(self, listener: Callable[[PollerEvent], None]) -> None:
        """Set the sink for every poller's events."""
        self._listener = listener

    def _dispatch(self, event: PollerEvent) -> None:
        if self._listener is not None:
            self._listener(event)

    def register(self, descriptor: SourceDescriptor) -> SourcePoller:
        """
        Create-or-reuse the poller for descriptor.address.

        Raises MalformedSourceError before anything is created or changed.
        """
        source_key = normalize(descriptor.address)

        poller = self._pollers.get(source_key)
        if poller is None:
            logger.info(
                "Creating new newsfetcher for URL: %s - Interval: %d",
                source_key, descriptor.reload_interval_ms
            )
            poller = SourcePoller(source_key, descriptor, self._content_source, self._dispatch)
            self._pollers[source_key] = poller
            poller.start()
        else:
            logger.info("Using existing newsfetcher for URL: %s", source_key)
            poller.set_reload_interval(descriptor.reload_interval_ms)
            poller.set_use_proxy(descriptor.use_proxy)
            poller.refresh_subscribers()

        return poller

    def get(self, source_key: str) -> Optional[SourcePoller]:
        """Get poller by source key."""
        return self._pollers.get(source_key)

    def __contains__(self, source_key: str) -> bool:
        return source_key in self._pollers

    def __len__(self) -> int:
        return len(self._pollers)

    def source_keys(self) -> List[str]:
        return list(self._pollers)

    def pollers(self) -> Iterator[SourcePoller]:
        """Iterate pollers in registration order."""
        yield from self._pollers.values()

    def snapshot(self) -> Dict[str, Tuple[Item, ...]]:
        """Current items of every registered poller."""
        return {key: poller.items() for key, poller in self._pollers.items()}

    @property
    def running_timers(self) -> int:
        return sum(1 for poller in self._pollers.values() if poller.is_running)

    async def wait_idle(self) -> None:
        """Wait until no poller has a fetch in flight."""
        await asyncio.gather(*(poller.wait_idle() for poller in self._pollers.values()))

    def stop_all(self) -> None:
        for poller in self._pollers.values():
            poller.stop()

    def stats(self) -> dict:
        """Get registry statistics."""
        return {
            'sources': len(self._pollers),
            'running_timers': self.running_timers,
            'by_source': {
                key: {
                    'items': len(poller.items()),
                    'reload_interval_ms': poller.reload_interval_ms,
                    'fetch_in_flight': poller.fetch_in_flight,
                    'last_error': poller.last_error.value if poller.last_error else None,
                    'fetch_count': poller.state.fetch_count,
                    'skipped_ticks': poller.state.skipped_ticks,
                }
                for key, poller in self._pollers.items()
            }
        }
