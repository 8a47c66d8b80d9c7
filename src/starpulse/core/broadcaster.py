"""
In-memory fan-out of accepted events to live subscribers.

Each [Subscriber][starpulse.core.broadcaster.Subscriber] owns a FIFO queue
of serialized messages. [Broadcaster.publish()][starpulse.core.broadcaster.Broadcaster.publish]
serializes an event once and offers it to every open subscriber without
suspending, so the order of messages on every channel equals the order in
which events were published.

Delivery is at-most-once: there is no backlog for late joiners, no replay
and no retry. A subscriber whose queue is full loses the message; other
subscribers are unaffected.

Examples:
    ```python
    broadcaster = Broadcaster(max_pending=100)
    subscriber = broadcaster.subscribe()
    broadcaster.publish(event)

    async for message in subscriber:
        await websocket.send_text(message)
    ```
"""

from __future__ import annotations

import asyncio
import itertools
import json
from typing import TYPE_CHECKING, Self

from .logger import Logger


if TYPE_CHECKING:
    from starpulse.models import Event


DEFAULT_MAX_PENDING = 1000
MESSAGE_TYPE_EVENT = "event"

_ids = itertools.count(1)


def encode_event_message(event: Event) -> str:
    """Return the ``{"type": "event", "event": {...}}`` frame for *event*."""
    return json.dumps(
        {"type": MESSAGE_TYPE_EVENT, "event": event.to_dict()},
        separators=(",", ":"),
        ensure_ascii=False,
    )


class Subscriber:
    """One live channel: a bounded FIFO of pending messages.

    Iterating yields messages in publish order and stops once the
    subscriber is closed. Messages still queued at close time are discarded.

    Attributes:
        id: Process-unique identifier, used in logs.
        max_pending: Queue bound; offers beyond it are dropped.
        dropped: Number of messages dropped because the queue was full.
    """

    def __init__(self, max_pending: int = DEFAULT_MAX_PENDING) -> None:
        if max_pending < 1:
            raise ValueError(f"max_pending must be >= 1, got {max_pending}")
        self.id = next(_ids)
        self.max_pending = max_pending
        self.dropped = 0
        self._queue: asyncio.Queue[str | None] = asyncio.Queue()
        self._pending = 0
        self._closed = False

    @property
    def is_open(self) -> bool:
        return not self._closed

    @property
    def pending(self) -> int:
        return self._pending

    def offer(self, message: str) -> bool:
        """Enqueue *message* without blocking.

        Returns:
            True if queued; False if the subscriber is closed or full.
        """
        if self._closed:
            return False
        if self._pending >= self.max_pending:
            self.dropped += 1
            return False
        self._pending += 1
        self._queue.put_nowait(message)
        return True

    def close(self) -> None:
        """Stop accepting messages and end iteration. Idempotent."""
        if self._closed:
            return
        self._closed = True
        # Wakes a consumer blocked in __anext__
        self._queue.put_nowait(None)

    def __aiter__(self) -> Self:
        return self

    async def __anext__(self) -> str:
        if self._closed:
            raise StopAsyncIteration
        message = await self._queue.get()
        if message is None or self._closed:
            raise StopAsyncIteration
        self._pending -= 1
        return message

    def __repr__(self) -> str:
        return f"Subscriber(id={self.id}, open={self.is_open}, pending={self._pending})"


class Broadcaster:
    """Registry of live subscribers with synchronous fan-out.

    Owned by the relay process and injected into the ingestion pipeline
    and the HTTP layer. Not thread-safe: use from one event loop.
    """

    def __init__(self, max_pending: int = DEFAULT_MAX_PENDING) -> None:
        self._max_pending = max_pending
        self._subscribers: set[Subscriber] = set()
        self._retired_dropped = 0
        self._logger = Logger("broadcaster")

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    @property
    def dropped_total(self) -> int:
        """Messages dropped since start, including by subscribers that have left."""
        return self._retired_dropped + sum(s.dropped for s in self._subscribers)

    def subscribe(self, max_pending: int | None = None) -> Subscriber:
        """Register and return a new open subscriber."""
        subscriber = Subscriber(max_pending or self._max_pending)
        self._subscribers.add(subscriber)
        self._logger.debug("subscriber_added", subscriber=subscriber.id, total=len(self._subscribers))
        return subscriber

    def unsubscribe(self, subscriber: Subscriber) -> None:
        """Remove and close *subscriber*. Idempotent."""
        subscriber.close()
        if subscriber in self._subscribers:
            self._retire(subscriber)
            self._logger.debug(
                "subscriber_removed",
                subscriber=subscriber.id,
                dropped=subscriber.dropped,
                total=len(self._subscribers),
            )

    def publish(self, event: Event) -> int:
        """Offer *event* to every open subscriber.

        Never suspends and never raises because of a subscriber.

        Returns:
            Number of subscribers that queued the message.
        """
        if not self._subscribers:
            return 0
        message = encode_event_message(event)
        delivered = 0
        for subscriber in tuple(self._subscribers):
            if not subscriber.is_open:
                self._retire(subscriber)
                continue
            if subscriber.offer(message):
                delivered += 1
            else:
                self._logger.warning(
                    "message_dropped", subscriber=subscriber.id, pending=subscriber.pending
                )
        return delivered

    def close(self) -> None:
        """Close and remove every subscriber."""
        for subscriber in tuple(self._subscribers):
            self.unsubscribe(subscriber)

    def _retire(self, subscriber: Subscriber) -> None:
        self._subscribers.discard(subscriber)
        self._retired_dropped += subscriber.dropped
