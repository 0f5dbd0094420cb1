"""
Fan-out of progress, completion and metrics events to observers.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from fetchq.models.events import CompletionEvent, MetricsEvent, ProgressEvent

log = logging.getLogger(__name__)

Event = ProgressEvent | CompletionEvent | MetricsEvent
EventListener = Callable[[Event], Any]

_CLOSED = object()


class Subscription:
    """An async iterator over published events, ended by ``close()``."""

    def __init__(self, bus: "EventBus", maxsize: int = 0):
        self._bus = bus
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self.closed = False

    def _offer(self, event: Event) -> None:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            log.debug(f"Subscriber queue full; dropping {type(event).__name__}.")

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._bus._unsubscribe(self)
        # Drop the oldest pending events if needed so the sentinel always fits.
        while True:
            try:
                self._queue.put_nowait(_CLOSED)
                return
            except asyncio.QueueFull:
                self._queue.get_nowait()

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> Event:
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class EventBus:
    """Delivers every event to each subscription queue and callback listener."""

    def __init__(self):
        self._subscriptions: list[Subscription] = []
        self._listeners: list[EventListener] = []

    def subscribe(self, maxsize: int = 0) -> Subscription:
        subscription = Subscription(self, maxsize=maxsize)
        self._subscriptions.append(subscription)
        return subscription

    def _unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def add_listener(self, listener: EventListener) -> Callable[[], None]:
        """Registers a callback. Returns a function that removes it."""
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def publish(self, event: Event) -> None:
        for subscription in list(self._subscriptions):
            subscription._offer(event)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                log.error(
                    f"[red]Event listener failed on {type(event).__name__}: {e}[/red]",
                    exc_info=log.getEffectiveLevel() == logging.DEBUG,
                )

    def close(self) -> None:
        for subscription in list(self._subscriptions):
            subscription.close()
