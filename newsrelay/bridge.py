"""
Notification Bridge

The only contact point between consumers and the engine.

Two one-directional channels:
- inbound: consumers submit RegisterSource / RequestImage, the engine
  consumes them one at a time
- outbound: the engine publishes ItemsSnapshot / SourceError / ImageReady
  to every subscribed consumer queue

Nothing is shared across the boundary except the messages themselves.
Subscriber queues are bounded; a consumer that falls behind loses its
oldest undelivered events first.
"""

from __future__ import annotations
from typing import Any, Awaitable, Callable, List, Optional, Union
import asyncio

from .contracts import (
    ImageReady, ItemsSnapshot, RegisterSource, RequestImage, SourceError,
    command_from_message
)
from .log import get_logger

logger = get_logger(__name__)


Command = Union[RegisterSource, RequestImage]
Event = Union[ItemsSnapshot, SourceError, ImageReady]


class NotificationBridge:

    def __init__(self, max_pending: int = 100):
        self._max_pending = max_pending
        self._inbound: "asyncio.Queue[Command]" = asyncio.Queue()
        self._subscribers: List["asyncio.Queue[Event]"] = []

    # -------------------------------------------------------------------------
    # Inbound
    # -------------------------------------------------------------------------

    def submit(self, command: Command) -> None:
        """Fire-and-forget a command to the engine."""
        self._inbound.put_nowait(command)

    def submit_message(self, notification: str, payload: Any) -> bool:
        """Decode and submit a wire message. False if it was dropped."""
        command = command_from_message(notification, payload)
        if command is None:
            logger.error("Dropping invalid notification %s with payload %r", notification, payload)
            return False
        self.submit(command)
        return True

    @property
    def pending_commands(self) -> int:
        return self._inbound.qsize()

    async def run(self, handler: Callable[[Command], Optional[Awaitable[None]]]) -> None:
        """Consume inbound commands forever, one at a time."""
        while True:
            command = await self._inbound.get()
            try:
                result = handler(command)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("Failed to handle %r", command)
            finally:
                self._inbound.task_done()

    async def join(self) -> None:
        """Wait until every submitted command has been handled."""
        await self._inbound.join()

    # -------------------------------------------------------------------------
    # Outbound
    # -------------------------------------------------------------------------

    def subscribe(self) -> "asyncio.Queue[Event]":
        queue: "asyncio.Queue[Event]" = asyncio.Queue(maxsize=self._max_pending)
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: "asyncio.Queue[Event]") -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def publish(self, event: Event) -> None:
        """Push event to every subscriber. No response is expected."""
        for queue in list(self._subscribers):
            if queue.full():
                dropped = queue.get_nowait()
                logger.warning("Subscriber queue full, dropping %s", dropped.notification)
            queue.put_nowait(event)
