"""
Ride change feed.

Tells subscribers that a ride row changed so they can re-fetch it.
Events only carry identifiers for filtering; the database stays the
source of truth. Delivery is at-least-once with no ordering across rides,
and a subscriber that reconnects receives a RESYNC event telling it to
re-fetch everything it shows.

Two backends share one interface:

* ``InMemoryChangeFeed`` for a single process (tests, development)
* ``RedisChangeFeed`` fanning Redis pub/sub messages out to local subscribers
"""

import asyncio
import json
import logging
from dataclasses import dataclass, asdict
from typing import Optional, Set

from redis.exceptions import RedisError

from campus_shuttle.app.core.config import settings

logger = logging.getLogger(__name__)


class ChangeType:
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    RESYNC = "RESYNC"


@dataclass(frozen=True)
class RideChangeEvent:
    event: str
    ride_id: Optional[int] = None
    passenger_id: Optional[int] = None
    driver_id: Optional[int] = None
    table: str = "rides"

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str) -> "RideChangeEvent":
        return cls(**json.loads(raw))


@dataclass(frozen=True)
class RideFilter:
    """Which rides a subscriber cares about; no criteria means any ride."""
    ride_id: Optional[int] = None
    passenger_id: Optional[int] = None
    driver_id: Optional[int] = None

    def matches(self, event: RideChangeEvent) -> bool:
        if event.event == ChangeType.RESYNC:
            return True
        if self.ride_id is not None and event.ride_id != self.ride_id:
            return False
        if self.passenger_id is not None and event.passenger_id != self.passenger_id:
            return False
        if self.driver_id is not None and event.driver_id != self.driver_id:
            return False
        return True


class Subscription:
    """
    Handle returned by ``subscribe``.

    Iterate it for events; call ``unsubscribe`` (or leave the ``async with``
    block) to stop receiving them. A subscriber that falls ``max_pending``
    events behind loses its backlog and gets a single RESYNC instead.
    """

    def __init__(self, feed: "ChangeFeed", ride_filter: RideFilter, max_pending: int = 100):
        self.feed = feed
        self.filter = ride_filter
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=max_pending)
        self.closed = False

    def deliver(self, event: RideChangeEvent) -> None:
        if self.closed or not self.filter.matches(event):
            return
        try:
            self.queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("Ride feed subscriber fell behind, dropping backlog")
            self._drain()
            self.queue.put_nowait(RideChangeEvent(event=ChangeType.RESYNC))

    def _drain(self) -> None:
        while not self.queue.empty():
            self.queue.get_nowait()

    async def get(self, timeout: Optional[float] = None) -> Optional[RideChangeEvent]:
        """Next event, or None once unsubscribed."""
        if self.closed and self.queue.empty():
            return None
        if timeout is None:
            return await self.queue.get()
        return await asyncio.wait_for(self.queue.get(), timeout)

    def unsubscribe(self) -> None:
        if not self.closed:
            self.closed = True
            self.feed.remove(self)
            # Wake up a reader blocked in get()
            self._drain()
            self.queue.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self) -> RideChangeEvent:
        if self.closed:
            raise StopAsyncIteration
        event = await self.queue.get()
        if event is None:
            raise StopAsyncIteration
        return event

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc) -> None:
        self.unsubscribe()


class ChangeFeed:
    """Base feed holding local subscriptions."""

    def __init__(self, max_pending: int = 100):
        self.subscriptions: Set[Subscription] = set()
        self.max_pending = max_pending

    def subscribe(self, ride_filter: Optional[RideFilter] = None) -> Subscription:
        subscription = Subscription(self, ride_filter or RideFilter(), self.max_pending)
        self.subscriptions.add(subscription)
        return subscription

    def remove(self, subscription: Subscription) -> None:
        self.subscriptions.discard(subscription)

    def fan_out(self, event: RideChangeEvent) -> None:
        for subscription in list(self.subscriptions):
            subscription.deliver(event)

    async def publish(self, event: RideChangeEvent) -> None:
        raise NotImplementedError

    async def notify(self, event: RideChangeEvent) -> None:
        """Publish after a committed write; the write stands even if publishing fails."""
        try:
            await self.publish(event)
        except RedisError as e:
            logger.error("Could not publish %s for ride %s: %s", event.event, event.ride_id, e)

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass


class InMemoryChangeFeed(ChangeFeed):
    async def publish(self, event: RideChangeEvent) -> None:
        self.fan_out(event)


class RedisChangeFeed(ChangeFeed):
    """Publishes events to a Redis channel and fans incoming messages out locally."""

    def __init__(
        self,
        redis_client,
        channel: str = "rides:changes",
        reconnect_delay: float = 5.0,
        max_pending: int = 100,
    ):
        super().__init__(max_pending)
        self.redis_client = redis_client
        self.channel = channel
        self.reconnect_delay = reconnect_delay
        self.task: Optional[asyncio.Task] = None

    async def publish(self, event: RideChangeEvent) -> None:
        await self.redis_client.publish(self.channel, event.to_json())

    async def start(self) -> None:
        if self.task is None:
            self.task = asyncio.create_task(self._listen())

    async def stop(self) -> None:
        if self.task:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
            self.task = None

    def handle_message(self, message: dict) -> None:
        if message.get("type") != "message":
            return
        try:
            event = RideChangeEvent.from_json(message["data"])
        except (TypeError, ValueError) as e:
            logger.warning("Invalid ride change message from Redis: %s (%s)", message.get("data"), e)
            return
        self.fan_out(event)

    async def _listen(self) -> None:
        reconnecting = False
        while True:
            pubsub = self.redis_client.pubsub()
            try:
                await pubsub.subscribe(self.channel)
                if reconnecting:
                    # Anything published while we were away is lost
                    self.fan_out(RideChangeEvent(event=ChangeType.RESYNC))
                    reconnecting = False

                async for message in pubsub.listen():
                    self.handle_message(message)
                # listen() only returns once the connection is gone
                reconnecting = True

            except (RedisError, OSError) as e:
                logger.error("Redis change feed lost (%s), reconnecting in %ss...", e, self.reconnect_delay)
                reconnecting = True
            except asyncio.CancelledError:
                break
            finally:
                await self._close_pubsub(pubsub)

            if reconnecting:
                try:
                    await asyncio.sleep(self.reconnect_delay)
                except asyncio.CancelledError:
                    break

    @staticmethod
    async def _close_pubsub(pubsub) -> None:
        try:
            await pubsub.aclose()
        except (RedisError, OSError) as e:
            logger.warning("Could not close Redis pubsub: %s", e)


def build_change_feed() -> ChangeFeed:
    if settings.change_feed_backend == "redis":
        from campus_shuttle.app.core.redis_client import redis_client
        return RedisChangeFeed(
            redis_client,
            channel=settings.change_feed_channel,
            reconnect_delay=settings.change_feed_reconnect_delay,
            max_pending=settings.change_feed_max_pending,
        )
    return InMemoryChangeFeed(max_pending=settings.change_feed_max_pending)


change_feed = build_change_feed()


def get_change_feed() -> ChangeFeed:
    """FastAPI dependency returning the process-wide feed."""
    return change_feed
