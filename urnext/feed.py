"""In-process change notifications.

Operations publish topic names after they commit; subscribers get the
topic and reload whatever state they render. Delivery is at-least-once
and coalesced: a topic already waiting in a subscriber's queue is not
queued twice.
"""

import asyncio
from typing import Optional


def watchlist_topic(watchlist_id: str) -> str:
    return f"watchlist:{watchlist_id}"


def items_topic(watchlist_id: str) -> str:
    return f"items:{watchlist_id}"


def user_topic(user_id: str) -> str:
    return f"user:{user_id}"


class Subscription:
    """A registration on the feed for a fixed set of topics."""

    def __init__(self, feed: "ChangeFeed", topics: frozenset[str]):
        self.feed = feed
        self.topics = topics
        self.queue: asyncio.Queue[Optional[str]] = asyncio.Queue()
        self._waiting: set[str] = set()
        self.released = False

    def _deliver(self, topic: str):
        if topic in self._waiting:
            return
        self._waiting.add(topic)
        self.queue.put_nowait(topic)

    async def get(self, timeout: Optional[float] = None) -> Optional[str]:
        """Wait for the next changed topic, None on timeout or release."""
        try:
            topic = await asyncio.wait_for(self.queue.get(), timeout)
        except asyncio.TimeoutError:
            return None
        if topic is not None:
            self._waiting.discard(topic)
        return topic

    def drain(self) -> list[str]:
        """Take the topics already queued without waiting."""
        topics = []
        while not self.queue.empty():
            topic = self.queue.get_nowait()
            if topic is not None:
                topics.append(topic)
        self._waiting.clear()
        return topics

    def release(self):
        if self.released:
            return
        self.released = True
        self.feed._unregister(self)
        # Wakes a reader blocked in get()
        self.queue.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        if self.released and self.queue.empty():
            raise StopAsyncIteration
        topic = await self.get()
        if topic is None:
            raise StopAsyncIteration
        return topic

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.release()


class ChangeFeed:
    """Topic broker shared by the request handlers of one process."""

    def __init__(self):
        self._subscriptions: dict[str, set[Subscription]] = {}

    def subscribe(self, *topics: str) -> Subscription:
        subscription = Subscription(self, frozenset(topics))
        for topic in subscription.topics:
            self._subscriptions.setdefault(topic, set()).add(subscription)
        return subscription

    def _unregister(self, subscription: Subscription):
        for topic in subscription.topics:
            subscribers = self._subscriptions.get(topic)
            if not subscribers:
                continue
            subscribers.discard(subscription)
            if not subscribers:
                del self._subscriptions[topic]

    def publish(self, *topics: str):
        for topic in topics:
            for subscription in list(self._subscriptions.get(topic, ())):
                subscription._deliver(topic)

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscriptions.get(topic, ()))


class SubscriptionSlot:
    """Holds at most one subscription, swapped when what it follows changes."""

    def __init__(self, feed: ChangeFeed):
        self.feed = feed
        self.current: Optional[Subscription] = None

    def replace(self, *topics: str) -> Subscription:
        """Swap in a subscription for topics, keeping queued changes it still covers."""
        carried = self.current.drain() if self.current is not None else []
        self.release()
        self.current = self.feed.subscribe(*topics)
        for topic in carried:
            if topic in self.current.topics:
                self.current._deliver(topic)
        return self.current

    def release(self):
        if self.current is not None:
            self.current.release()
            self.current = None


# Global feed instance
feed = ChangeFeed()
