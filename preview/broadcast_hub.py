"""Fan-out of filesystem changes to waiting reload channels.

The hub is shared by the watchdog observer thread, which publishes, and the
aiohttp event loop, where every open reload channel holds a subscription.
Each subscription owns its own small bounded queue; publishing offers the
event to every queue registered at that moment and never waits for anyone.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Set, Tuple

from .config import DEFAULT_QUEUE_SIZE
from .errors import HubClosedError, SubscriptionClosedError

logger = logging.getLogger(__name__)


class ChangeKind(enum.Enum):
    CREATED = "created"
    MODIFIED = "modified"
    REMOVED = "removed"
    ACCESS = "access"
    OTHER = "other"


RELEVANT_KINDS = frozenset({ChangeKind.CREATED, ChangeKind.MODIFIED, ChangeKind.REMOVED})


@dataclass(frozen=True)
class ChangeEvent:
    """A normalized filesystem notification."""

    kind: ChangeKind
    paths: Tuple[Path, ...] = ()

    @property
    def is_relevant(self) -> bool:
        return self.kind in RELEVANT_KINDS


_HUB_CLOSED = object()


class Subscription:
    """Single-use registration on a :class:`BroadcastHub`.

    The first event handed out by :meth:`wait` consumes the subscription and
    removes it from the hub; nothing is delivered to it afterwards.
    """

    def __init__(self, hub: "BroadcastHub", loop: asyncio.AbstractEventLoop, maxsize: int) -> None:
        self._hub = hub
        self._loop = loop
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0
        self.closed = False

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def offer(self, event: Any) -> None:
        """Hand ``event`` to the subscriber's loop without blocking.

        Raises:
            RuntimeError: if the subscriber's loop is already closed.
        """
        self._loop.call_soon_threadsafe(self._deliver, event)

    def _deliver(self, event: Any) -> None:
        if self.closed:
            return
        if event is _HUB_CLOSED and self._queue.full():
            # Make room so the shutdown signal is never the one dropped.
            self._queue.get_nowait()
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.debug("Subscriber queue full, dropping %s", event)

    async def wait(self, timeout: Optional[float] = None) -> Optional[ChangeEvent]:
        """Wait for the next change.

        Returns ``None`` if ``timeout`` expires first; the subscription stays
        registered in that case so the caller can keep polling.

        Raises:
            HubClosedError: if the hub shut down.
            SubscriptionClosedError: if the subscription was already consumed.
        """
        if self.closed:
            raise SubscriptionClosedError("subscription already consumed")

        try:
            item = await asyncio.wait_for(self._queue.get(), timeout)
        except asyncio.TimeoutError:
            return None

        self.close()
        if item is _HUB_CLOSED:
            raise HubClosedError("broadcast hub closed")
        return item

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._hub._unregister(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class BroadcastHub:
    """Registry of subscriber queues behind a single lock."""

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        self.queue_size = queue_size
        self._subscribers: Set[Subscription] = set()
        self._lock = threading.Lock()
        self._closed = False
        self._observer = None

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    @property
    def closed(self) -> bool:
        return self._closed

    def attach_observer(self, observer) -> None:
        """Tie a running watchdog observer to the hub's lifetime."""
        self._observer = observer

    def subscribe(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> Subscription:
        """Register a new subscription that sees only events published from now on."""
        loop = loop or asyncio.get_running_loop()
        with self._lock:
            if self._closed:
                raise HubClosedError("broadcast hub closed")
            subscription = Subscription(self, loop, self.queue_size)
            self._subscribers.add(subscription)
        logger.debug("Subscriber registered (%d active)", self.subscriber_count)
        return subscription

    def _unregister(self, subscription: Subscription) -> None:
        with self._lock:
            self._subscribers.discard(subscription)

    def publish(self, event: ChangeEvent) -> int:
        """Offer ``event`` to every current subscriber.

        Safe to call from any thread. Returns the number of subscribers the
        event was offered to; irrelevant events are dropped and return 0.
        """
        if not event.is_relevant:
            return 0

        with self._lock:
            if self._closed:
                return 0
            subscribers = list(self._subscribers)

        logger.debug("watcher broadcast: %s %s", event.kind.value, [str(p) for p in event.paths])
        return self._offer_all(subscribers, event)

    def _offer_all(self, subscribers, event: Any) -> int:
        offered = 0
        for subscription in subscribers:
            try:
                subscription.offer(event)
                offered += 1
            except RuntimeError:
                logger.debug("Dropping subscriber whose event loop is gone")
                self._unregister(subscription)
        return offered

    def close(self) -> None:
        """Stop watching and wake every waiting subscriber with a shutdown signal."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            subscribers = list(self._subscribers)
            observer, self._observer = self._observer, None

        if observer is not None:
            observer.stop()
            observer.join(timeout=1)

        self._offer_all(subscribers, _HUB_CLOSED)
        logger.debug("Broadcast hub closed (%d subscribers woken)", len(subscribers))
