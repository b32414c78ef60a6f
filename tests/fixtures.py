"""
Shared test fixtures: fake content source, fake image backend, item builders.
"""

import asyncio
from datetime import datetime, timezone, timedelta
from typing import Dict, List, Optional

from newsrelay.contracts import ImageGenerationError, Item, ParsedFeed


FEED_A = "https://example.com/a.xml"
FEED_B = "https://example.org/b.xml"

BASE_TIME = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def at(hours: int) -> datetime:
    return BASE_TIME + timedelta(hours=hours)


def make_item(n: int, published_at: Optional[datetime] = None, host: str = "example.com") -> Item:
    return Item(
        title=f"Article {n}",
        url=f"https://{host}/articles/{n}",
        published_at=published_at,
        description=f"Summary of article {n}"
    )


def make_feed(*items: Item, title: str = "Test Feed") -> ParsedFeed:
    return ParsedFeed(title=title, items=tuple(items))


class FakeContentSource:
    """
    Scripted content source.

    responses maps address -> list of ParsedFeed or exceptions, consumed in
    order; the last one repeats. gate(address) makes fetches of that
    address wait until release(address).
    """

    def __init__(self, responses: Optional[Dict[str, list]] = None):
        self.responses = responses or {}
        self.calls: List[tuple] = []
        self._gates: Dict[str, asyncio.Event] = {}

    def gate(self, address: str) -> None:
        self._gates[address] = asyncio.Event()

    def release(self, address: str) -> None:
        self._gates.pop(address).set()

    def calls_for(self, address: str) -> int:
        return sum(1 for call in self.calls if call[0] == address)

    async def fetch(self, address, encoding="UTF-8", use_proxy=True, log_warnings=False):
        self.calls.append((address, encoding, use_proxy))

        gate = self._gates.get(address)
        if gate is not None:
            await gate.wait()

        script = self.responses.get(address) or [make_feed()]
        result = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(result, BaseException):
            raise result
        return result


class FakeImageBackend:
    """
    Returns a fake data URI per URL; fails for URLs in failing.

    delays maps URL -> seconds and overrides delay for that URL.
    """

    def __init__(self, failing=(), delay: float = 0.0, delays: Optional[Dict[str, float]] = None):
        self.failing = set(failing)
        self.delay = delay
        self.delays = delays or {}
        self.calls: List[str] = []
        self.active = 0
        self.max_active = 0

    async def generate(self, url: str) -> str:
        self.calls.append(url)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(self.delays.get(url, self.delay))
            if url in self.failing:
                raise ImageGenerationError(f"cannot render {url}")
            return f"data:image/png;base64,{url}"
        finally:
            self.active -= 1


class Recorder:
    """Collects published events."""

    def __init__(self):
        self.events = []

    def __call__(self, event) -> None:
        self.events.append(event)

    def of_type(self, cls) -> list:
        return [event for event in self.events if isinstance(event, cls)]
