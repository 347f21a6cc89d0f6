"""
In-process fan-out from the ingestion pipeline to live subscribers.

Delivery is best-effort and at most once per subscriber: nothing is queued
for subscribers that are not registered yet, and nothing is replayed.

Every subscriber gets its own bounded queue drained by its own sender task,
so publishing never waits on a subscriber. A subscriber whose queue fills up
is dropped.
"""

import asyncio
import inspect
import logging
import threading
import uuid
from typing import Any, Awaitable, Callable, Optional

from wabridge.metrics import ws_subscribers
from wabridge.schemas import EventEnvelope

logger = logging.getLogger(__name__)

Deliver = Callable[[EventEnvelope], Awaitable[None]]

DEFAULT_MAX_PENDING = 256


class _Subscription:
    def __init__(self, deliver: Deliver, max_pending: int, on_overflow: Optional[Callable[[], Any]]):
        self.deliver = deliver
        self.on_overflow = on_overflow
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=max_pending)
        self.sender: Optional[asyncio.Task] = None


class EventBus:
    """Registry of subscriber handles mapped to their delivery queues."""

    def __init__(self, max_pending: int = DEFAULT_MAX_PENDING):
        self.max_pending = max_pending
        self._subscribers: dict[str, _Subscription] = {}
        self._lock = threading.Lock()
        self._background: set[asyncio.Task] = set()

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def subscribe(self, deliver: Deliver, on_overflow: Optional[Callable[[], Any]] = None) -> str:
        """
        Register a delivery function and return its handle.

        Args:
            deliver: Coroutine function called once per envelope, in order
            on_overflow: Called after the subscriber was dropped for falling
                too far behind; may return an awaitable
        """
        handle = str(uuid.uuid4())
        with self._lock:
            self._subscribers[handle] = _Subscription(deliver, self.max_pending, on_overflow)
            count = len(self._subscribers)
        ws_subscribers.set(count)
        logger.info(f"Subscriber registered: {handle} (total={count})")
        return handle

    def unsubscribe(self, handle: str) -> None:
        """Remove a subscriber and stop its sender. Unknown handles are ignored."""
        with self._lock:
            removed = self._subscribers.pop(handle, None)
            count = len(self._subscribers)
        ws_subscribers.set(count)
        if removed is None:
            return
        if removed.sender is not None:
            removed.sender.cancel()
        logger.info(f"Subscriber removed: {handle} (total={count})")

    async def publish(self, envelope: EventEnvelope) -> int:
        """
        Queue an envelope for every currently registered subscriber.

        Never waits on a subscriber. One that is too far behind is dropped
        without affecting the others.

        Returns:
            Number of subscribers the envelope was queued for
        """
        # Snapshot so subscribers may (un)register while we deliver
        with self._lock:
            targets = list(self._subscribers.items())

        queued = 0
        for handle, subscription in targets:
            if subscription.sender is None or subscription.sender.done():
                subscription.sender = asyncio.create_task(self._send(handle, subscription))
            try:
                subscription.queue.put_nowait(envelope)
                queued += 1
            except asyncio.QueueFull:
                logger.warning(f"Subscriber {handle} fell {self.max_pending} envelopes behind, dropping it")
                self._drop(handle, subscription)
        logger.debug(f"Published {envelope.type} to {queued}/{len(targets)} subscribers")
        return queued

    async def drain(self) -> None:
        """Wait until every queued envelope has been handed to its subscriber."""
        with self._lock:
            subscriptions = list(self._subscribers.values())
        for subscription in subscriptions:
            await subscription.queue.join()

    async def close(self) -> None:
        """Drop every subscriber and wait for their sender tasks to stop."""
        with self._lock:
            handles = list(self._subscribers)
            senders = [s.sender for s in self._subscribers.values() if s.sender is not None]
        for handle in handles:
            self.unsubscribe(handle)
        pending = senders + list(self._background)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def _send(self, handle: str, subscription: _Subscription) -> None:
        while True:
            envelope = await subscription.queue.get()
            try:
                await subscription.deliver(envelope)
            except Exception as e:
                logger.error(f"Delivery to subscriber {handle} failed: {e}")
            finally:
                subscription.queue.task_done()

    def _drop(self, handle: str, subscription: _Subscription) -> None:
        self.unsubscribe(handle)
        if subscription.on_overflow is None:
            return
        try:
            result = subscription.on_overflow()
        except Exception as e:
            logger.error(f"Overflow handler for subscriber {handle} failed: {e}")
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(self._guard(handle, result))
            self._background.add(task)
            task.add_done_callback(self._background.discard)

    async def _guard(self, handle: str, awaitable) -> None:
        try:
            await awaitable
        except Exception as e:
            logger.error(f"Overflow handler for subscriber {handle} failed: {e}")
