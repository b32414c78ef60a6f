"""
Relay Service

Wires bridge, registry, aggregator and image pipeline into one engine.
"""

from __future__ import annotations
from typing import Optional
import asyncio

from .aggregator import BroadcastAggregator
from .bridge import Command, NotificationBridge
from .config import Settings, load_settings
from .contracts import (
    ErrorKind, InvalidFeedError, MalformedSourceError, RegisterSource, RequestImage, SourceError
)
from .fetcher import HttpFeedSource
from .imaging import ImageEnricher, QRCodeBackend
from .registry import FetcherRegistry
from .log import get_logger

logger = get_logger(__name__)


class NewsRelayService:
    """
    The polling engine behind the notification bridge.

    DESIGN:
    =======
    1. Consumers talk to the engine only through the bridge
    2. Registration errors are answered with a SourceError event
    3. Fetch errors never stop other sources
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        content_source=None,
        image_backend=None,
        bridge: Optional[NotificationBridge] = None
    ):
        self._settings = settings or Settings()
        self._bridge = bridge or NotificationBridge()

        if content_source is None:
            content_source = HttpFeedSource(
                timeout=self._settings.timeout_seconds,
                user_agent=self._settings.user_agent,
                proxy_url=self._settings.proxy_url
            )

        # on-demand requests are always served; show_images only gates snapshots
        self._enricher = ImageEnricher(image_backend or QRCodeBackend(), self._bridge.publish)

        self._registry = FetcherRegistry(content_source)
        self._aggregator = BroadcastAggregator(
            self._registry,
            self._bridge.publish,
            self._enricher if self._settings.show_images else None
        )
        self._registry.attach(self._aggregator.handle)

        self._loop_task: Optional[asyncio.Task] = None
        self._image_tasks = set()

    @property
    def bridge(self) -> NotificationBridge:
        return self._bridge

    @property
    def registry(self) -> FetcherRegistry:
        return self._registry

    @property
    def aggregator(self) -> BroadcastAggregator:
        return self._aggregator

    @property
    def settings(self) -> Settings:
        return self._settings

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Register configured feeds and start consuming commands."""
        if self._loop_task is not None:
            return

        for descriptor in self._settings.feeds:
            try:
                self._registry.register(descriptor)
            except MalformedSourceError as e:
                logger.error("Newsfeed Error. Malformed newsfeed URL: %s", e)

        self._loop_task = asyncio.get_running_loop().create_task(
            self._bridge.run(self.dispatch), name="newsrelay-inbound"
        )
        logger.info("Relay started with %d sources", len(self._registry))

    async def stop(self) -> None:
        self._registry.stop_all()
        tasks = list(self._image_tasks)
        if self._loop_task is not None:
            tasks.append(self._loop_task)
            self._loop_task = None
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Relay stopped")

    async def settle(self) -> None:
        """Wait for queued commands, broadcasts and image requests."""
        await self._bridge.join()
        await self._registry.wait_idle()
        await self._aggregator.drain()
        while self._image_tasks:
            await asyncio.gather(*list(self._image_tasks), return_exceptions=True)

    # -------------------------------------------------------------------------
    # Commands
    # -------------------------------------------------------------------------

    def dispatch(self, command: Command) -> None:
        if isinstance(command, RegisterSource):
            self._register(command)
        elif isinstance(command, RequestImage):
            self._request_image(command.url)
        else:
            logger.error("Unknown command: %r", command)

    def _register(self, command: RegisterSource) -> None:
        try:
            self._registry.register(command.descriptor(self._settings.module_config()))
        except MalformedSourceError as e:
            logger.error("Newsfeed Error. Malformed newsfeed URL: %s", e)
            self._bridge.publish(SourceError(kind=ErrorKind.MALFORMED_SOURCE, source_key=None))
        except (InvalidFeedError, ValueError) as e:
            logger.error("Newsfeed Error. Invalid feed: %s", e)
            self._bridge.publish(SourceError(kind=ErrorKind.INVALID_FEED, source_key=None))

    def _request_image(self, url: str) -> None:
        task = asyncio.get_running_loop().create_task(self._enricher.request_image(url))
        self._image_tasks.add(task)
        task.add_done_callback(self._image_tasks.discard)

    def stats(self) -> dict:
        return {
            'registry': self._registry.stats(),
            'subscribers': self._bridge.subscriber_count,
            'broadcasts': self._aggregator.broadcast_count,
        }


def create_service(settings: Optional[Settings] = None) -> NewsRelayService:
    """Create relay service from the configured settings."""
    return NewsRelayService(settings=settings or load_settings())
