"""
In-process topic-based publish/subscribe.

The bus is an explicitly owned component: the application lifespan creates
one instance and hands it to whoever needs to publish or subscribe. Delivery
is best-effort and at-most-once. A payload reaches only the subscriptions
registered at the moment it is published; nothing is buffered for later
subscribers and nothing is replayed.
"""
import asyncio
import logging
import threading
from collections import defaultdict
from itertools import count
from typing import Any, AsyncIterator, Dict, Optional, Set

logger = logging.getLogger(__name__)

_CLOSED = object()


def chat_topic(chat_id: str) -> str:
    """Topic carrying the events of one chat."""
    return f"chat:{chat_id}"


class Subscription:
    """
    Live registration on a topic plus the async sequence of its future payloads.

    Iterating yields payloads published after the subscription was made, in
    publish order, until the subscription is closed. Once ``close()`` returns,
    no further payload is yielded, including ones already queued.
    """

    _ids = count(1)

    def __init__(self, bus: "EventBus", topic: str):
        self.id = next(self._ids)
        self.topic = topic
        self._bus = bus
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        try:
            self._loop: Optional[asyncio.AbstractEventLoop] = asyncio.get_running_loop()
        except RuntimeError:
            self._loop = None

    @property
    def closed(self) -> bool:
        return self._closed

    def _deliver(self, payload: Any) -> bool:
        if self._closed:
            return False
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if self._loop is None or running is self._loop:
            self._put(payload)
        else:
            # Publisher runs on another thread: hand over to the subscriber's loop
            self._loop.call_soon_threadsafe(self._put, payload)
        return True

    def _put(self, payload: Any) -> None:
        if not self._closed:
            self._queue.put_nowait(payload)

    def close(self) -> None:
        """Unregister from the bus and end iteration. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self._bus._remove(self)
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> AsyncIterator[Any]:
        return self

    async def __anext__(self) -> Any:
        if self._closed:
            raise StopAsyncIteration
        payload = await self._queue.get()
        if payload is _CLOSED or self._closed:
            raise StopAsyncIteration
        return payload

    def __repr__(self) -> str:
        return f"<Subscription id={self.id} topic={self.topic!r} closed={self._closed}>"


class EventBus:
    """
    Topic-keyed multicast register.

    The topic registry is the only shared mutable state; every mutation and
    every snapshot taken for a publish happens under one lock that is never
    held across an await.
    """

    def __init__(self):
        self._topics: Dict[str, Set[Subscription]] = defaultdict(set)
        self._lock = threading.Lock()
        logger.info("EventBus initialized")

    def subscribe(self, topic: str) -> Subscription:
        """Register a new listener on a topic."""
        subscription = Subscription(self, topic)
        with self._lock:
            self._topics[topic].add(subscription)
        logger.debug(f"Subscription {subscription.id} registered on {topic}")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        """Remove a registration. Safe to call more than once."""
        subscription.close()

    def _remove(self, subscription: Subscription) -> None:
        with self._lock:
            listeners = self._topics.get(subscription.topic)
            if listeners is None:
                return
            listeners.discard(subscription)
            if not listeners:
                del self._topics[subscription.topic]
        logger.debug(f"Subscription {subscription.id} removed from {subscription.topic}")

    def publish(self, topic: str, payload: Any) -> int:
        """
        Deliver a payload to every listener currently registered on the topic.

        Returns:
            Number of listeners reached. Zero when nobody is listening, in
            which case the payload is discarded.
        """
        with self._lock:
            listeners = list(self._topics.get(topic, ()))

        delivered = 0
        for subscription in listeners:
            if subscription._deliver(payload):
                delivered += 1

        logger.debug(f"Published to {topic}: {delivered} listeners")
        return delivered

    def listener_count(self, topic: str) -> int:
        with self._lock:
            return len(self._topics.get(topic, ()))

    def topic_count(self) -> int:
        with self._lock:
            return len(self._topics)

    def close(self) -> None:
        """Close every subscription. Called on application shutdown."""
        with self._lock:
            subscriptions = [s for listeners in self._topics.values() for s in listeners]
        for subscription in subscriptions:
            subscription.close()
        logger.info(f"EventBus closed ({len(subscriptions)} subscriptions released)")
