"""
Image Enrichment

Attaches a generated image artifact (a QR code of the item URL, as a
data URI) to outgoing items, and serves on-demand image requests.

GUARANTEES:
===========
1. A failed image never fails a broadcast; the item carries None
2. Requests for different URLs run concurrently
3. Concurrent requests for the same URL share one generation
"""

from __future__ import annotations
from collections import OrderedDict
from typing import Callable, Dict, Mapping, Optional, Tuple
import asyncio
import base64
import io

import qrcode

from .contracts import ImageGenerationError, ImageReady, Item
from .log import get_logger

logger = get_logger(__name__)


class QRCodeBackend:
    """Renders a URL as a PNG QR code data URI."""

    def __init__(self, box_size: int = 4, border: int = 2):
        self._box_size = box_size
        self._border = border

    def render(self, url: str) -> str:
        if not url:
            raise ImageGenerationError("URL is missing or invalid")

        try:
            qr = qrcode.QRCode(box_size=self._box_size, border=self._border)
            qr.add_data(url)
            qr.make(fit=True)
            image = qr.make_image(fill_color="black", back_color="white")

            buffer = io.BytesIO()
            image.save(buffer, format="PNG")
        except Exception as e:
            raise ImageGenerationError(f"QR code generation failed for {url}: {e}") from e

        encoded = base64.b64encode(buffer.getvalue()).decode('ascii')
        return f"data:image/png;base64,{encoded}"

    async def generate(self, url: str) -> str:
        # PIL rendering is CPU bound, keep it off the event loop
        return await asyncio.to_thread(self.render, url)


class ImageEnricher:
    """
    Image pipeline in front of the outbound channel.

    backend must provide ``async generate(url) -> str``.
    Artifacts are cached per URL (LRU, cache_size entries).
    """

    def __init__(
        self,
        backend,
        publish: Callable[[object], None],
        cache_size: int = 512
    ):
        self._backend = backend
        self._publish = publish
        self._cache_size = cache_size
        self._cache: "OrderedDict[str, str]" = OrderedDict()
        self._pending: Dict[str, asyncio.Task] = {}

    def cached(self, url: str) -> Optional[str]:
        return self._cache.get(url)

    async def artifact_for(self, url: str) -> Optional[str]:
        """Artifact for url, or None if generation failed."""
        if url in self._cache:
            self._cache.move_to_end(url)
            return self._cache[url]

        task = self._pending.get(url)
        if task is None:
            task = asyncio.get_running_loop().create_task(self._generate(url))
            self._pending[url] = task
            task.add_done_callback(lambda _t, url=url: self._pending.pop(url, None))

        return await asyncio.shield(task)

    async def _generate(self, url: str) -> Optional[str]:
        try:
            artifact = await self._backend.generate(url)
        except Exception as e:
            logger.warning("Error generating image for %s: %s", url, e)
            return None

        self._cache[url] = artifact
        while len(self._cache) > self._cache_size:
            self._cache.popitem(last=False)
        return artifact

    async def enrich(
        self,
        feeds: Mapping[str, Tuple[Item, ...]]
    ) -> Dict[str, Tuple[Item, ...]]:
        """Return feeds with image_artifact set on every item (or None)."""
        urls = list(dict.fromkeys(
            item.url for items in feeds.values() for item in items
        ))
        results = await asyncio.gather(*(self.artifact_for(url) for url in urls))
        artifacts = dict(zip(urls, results))

        return {
            key: tuple(item.with_artifact(artifacts.get(item.url)) for item in items)
            for key, items in feeds.items()
        }

    async def request_image(self, url: str) -> Optional[str]:
        """
        On-demand path: publish one ImageReady, or log and drop.
        """
        if not url:
            logger.error("Image generation failed: URL is missing or invalid.")
            return None

        artifact = await self.artifact_for(url)
        if artifact is None:
            return None

        self._publish(ImageReady(url=url, image_artifact=artifact))
        return artifact
