"""
Event Broadcaster - ordered per-topic fan-out.

Design:
1. Ordered: every publish on a topic gets the next sequence number and reaches
   every subscriber of that topic in that order
2. Non-blocking: publish never awaits a subscriber; a subscriber whose buffer is
   full is disconnected instead of slowing the topic down
3. Recoverable: each topic keeps a bounded buffer of recent events so a
   reconnecting subscriber can resume after the last sequence it saw
4. Independent topics: no lock spans topics

Subscriptions are async iterators rather than callbacks:

    async with broadcaster.subscribe(tournament_topic(tid)) as events:
        async for event in events:
            ...

Optionally every event is mirrored into a Redis Stream by a background writer.
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Deque, Dict, List, Optional

import redis.asyncio as redis

from arenacore.utils.errors import SubscriberDisconnectedError

from .models import Event, EventPayload

logger = logging.getLogger(__name__)

# Queue marker that wakes a consumer blocked on an empty buffer when closed
_CLOSED = object()

CLOSED_BY_SUBSCRIBER = "closed"
CLOSED_SLOW_CONSUMER = "slow_consumer"
CLOSED_SHUTDOWN = "shutdown"
CLOSED_TOPIC_RETIRED = "topic_retired"


@dataclass
class BroadcastMetrics:
    """Fan-out counters."""

    events_published: int = 0
    events_delivered: int = 0
    subscribers_dropped: int = 0
    mirror_failures: int = 0
    last_event_time: Optional[datetime] = None


class Subscription:
    """
    Cancellable stream of events for one topic.

    Iteration ends with ``StopAsyncIteration`` after ``close()``, or raises
    ``SubscriberDisconnectedError`` once buffered events are drained if the
    broadcaster dropped this subscriber. ``last_sequence`` is the sequence of
    the last event handed to the consumer; pass it back to
    ``subscribe(topic, after_sequence=...)`` to resume.
    """

    def __init__(
        self,
        broadcaster: "EventBroadcaster",
        topic: str,
        capacity: int,
        after_sequence: int = 0,
    ):
        self._broadcaster = broadcaster
        self.topic = topic
        self.capacity = capacity
        self.last_sequence = after_sequence
        self.replay_truncated = False
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=capacity + 1)
        self._pending = 0
        self._closed_reason: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self._closed_reason is None

    @property
    def closed_reason(self) -> Optional[str]:
        return self._closed_reason

    def _deliver(self, event: Event) -> bool:
        """Buffer an event; False means the subscriber is full or closed."""
        if self._closed_reason is not None or self._pending >= self.capacity:
            return False
        self._queue.put_nowait(event)
        self._pending += 1
        return True

    def _mark_closed(self, reason: str) -> None:
        if self._closed_reason is not None:
            return
        self._closed_reason = reason
        # One spare slot is reserved for the marker
        self._queue.put_nowait(_CLOSED)

    def close(self) -> None:
        """Stop receiving events; buffered events are still yielded."""
        self._broadcaster._remove(self)
        self._mark_closed(CLOSED_BY_SUBSCRIBER)

    def _end_of_stream(self):
        if self._closed_reason in (CLOSED_BY_SUBSCRIBER, CLOSED_SHUTDOWN):
            raise StopAsyncIteration
        raise SubscriberDisconnectedError(
            self.topic, self.last_sequence, reason=self._closed_reason
        )

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> Event:
        if self._closed_reason is not None and self._queue.empty():
            self._end_of_stream()
        item = await self._queue.get()
        if item is _CLOSED:
            self._end_of_stream()
        self._pending -= 1
        self.last_sequence = item.sequence
        return item

    async def get(self, timeout: Optional[float] = None) -> Event:
        """Next event, optionally bounded by a timeout."""
        if timeout is None:
            return await self.__anext__()
        return await asyncio.wait_for(self.__anext__(), timeout=timeout)

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


class EventBroadcaster:
    """
    Per-topic ordered fan-out with bounded replay.

    Everything that touches sequence numbers runs without awaiting, so on one
    event loop a publish is atomic with respect to other publishes and
    subscribes on the same topic.
    """

    STREAM_KEY_PREFIX = "events"

    # Max events per mirror batch
    BATCH_SIZE = 100

    def __init__(
        self,
        replay_size: int = 256,
        subscriber_buffer: int = 64,
        redis_client: Optional[redis.Redis] = None,
        stream_max_len: int = 10000,
        mirror_queue_size: int = 1000,
    ):
        if replay_size <= 0 or subscriber_buffer <= 0:
            raise ValueError("replay_size and subscriber_buffer must be positive")
        self.replay_size = replay_size
        self.subscriber_buffer = subscriber_buffer
        self.redis = redis_client
        self.stream_max_len = stream_max_len

        self._sequences: Dict[str, int] = {}
        self._history: Dict[str, Deque[Event]] = {}
        self._subscribers: Dict[str, List[Subscription]] = {}

        self._metrics = BroadcastMetrics()

        self._mirror_queue: asyncio.Queue = asyncio.Queue(maxsize=mirror_queue_size)
        self._mirror_task: Optional[asyncio.Task] = None
        self._running = False

    async def initialize(self) -> None:
        """Start the Redis Stream mirror when a client is configured."""
        if self.redis is None or self._running:
            return
        self._running = True
        self._mirror_task = asyncio.create_task(self._stream_writer())

    async def shutdown(self) -> None:
        """Stop the mirror and end every subscription."""
        self._running = False
        if self._mirror_task:
            self._mirror_task.cancel()
            try:
                await self._mirror_task
            except asyncio.CancelledError:
                pass
            self._mirror_task = None

        for subscribers in self._subscribers.values():
            for subscription in subscribers:
                subscription._mark_closed(CLOSED_SHUTDOWN)
        self._subscribers.clear()

    # =========================================================================
    # Publish / Subscribe
    # =========================================================================

    async def publish(self, topic: str, payload: EventPayload) -> Event:
        """
        Publish a payload to a topic.

        Assigns the next sequence number, records the event for replay and hands
        it to every live subscriber. Subscribers that cannot take it are
        disconnected; nothing here waits on them.
        """
        sequence = self._sequences.get(topic, 0) + 1
        self._sequences[topic] = sequence
        event = Event(topic=topic, sequence=sequence, payload=payload)

        history = self._history.get(topic)
        if history is None:
            history = deque(maxlen=self.replay_size)
            self._history[topic] = history
        history.append(event)

        for subscription in list(self._subscribers.get(topic, ())):
            if subscription._deliver(event):
                self._metrics.events_delivered += 1
            else:
                self._drop(subscription, CLOSED_SLOW_CONSUMER)

        if self._running:
            try:
                self._mirror_queue.put_nowait(event)
            except asyncio.QueueFull:
                self._metrics.mirror_failures += 1
                logger.warning("Mirror queue full, event %s:%d not mirrored", topic, sequence)

        self._metrics.events_published += 1
        self._metrics.last_event_time = event.timestamp
        return event

    def subscribe(self, topic: str, after_sequence: Optional[int] = None) -> Subscription:
        """
        Open a stream for a topic.

        Args:
            topic: Topic to follow
            after_sequence: Resume point; retained events with a greater
                sequence are delivered before any live event

        Returns:
            Subscription (async iterator, async context manager)
        """
        replay: List[Event] = []
        if after_sequence is not None:
            replay = self.replay(topic, after_sequence)

        subscription = Subscription(
            self,
            topic,
            capacity=self.subscriber_buffer + len(replay),
            after_sequence=after_sequence or 0,
        )
        if after_sequence is not None:
            oldest = self.oldest_retained(topic)
            subscription.replay_truncated = oldest is not None and oldest > after_sequence + 1

        for event in replay:
            subscription._deliver(event)

        self._subscribers.setdefault(topic, []).append(subscription)
        return subscription

    def replay(self, topic: str, after_sequence: int) -> List[Event]:
        """Retained events on a topic with sequence greater than after_sequence."""
        return [e for e in self._history.get(topic, ()) if e.sequence > after_sequence]

    def current_sequence(self, topic: str) -> int:
        """Sequence of the last event published on a topic (0 if none)."""
        return self._sequences.get(topic, 0)

    def oldest_retained(self, topic: str) -> Optional[int]:
        history = self._history.get(topic)
        if not history:
            return None
        return history[0].sequence

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscribers.get(topic, ()))

    def retire_topic(self, topic: str) -> None:
        """Close a topic's subscribers and drop its replay buffer.

        The sequence counter is kept so a retired topic never reuses numbers.
        """
        for subscription in self._subscribers.pop(topic, []):
            subscription._mark_closed(CLOSED_TOPIC_RETIRED)
        self._history.pop(topic, None)

    def _remove(self, subscription: Subscription) -> None:
        subscribers = self._subscribers.get(subscription.topic)
        if subscribers and subscription in subscribers:
            subscribers.remove(subscription)
            if not subscribers:
                del self._subscribers[subscription.topic]

    def _drop(self, subscription: Subscription, reason: str) -> None:
        self._remove(subscription)
        subscription._mark_closed(reason)
        self._metrics.subscribers_dropped += 1
        logger.info(
            "Dropped subscriber on %s at sequence %d (%s)",
            subscription.topic,
            subscription.last_sequence,
            reason,
        )

    def get_metrics(self) -> BroadcastMetrics:
        return self._metrics

    # =========================================================================
    # Redis Stream mirror
    # =========================================================================

    def _stream_key(self, topic: str) -> str:
        return f"{self.STREAM_KEY_PREFIX}:{topic}"

    async def _stream_writer(self) -> None:
        """
        Background task mirroring events into Redis Streams.

        Collects up to BATCH_SIZE events or waits 100ms, then writes them in one
        pipeline. Failures are counted and logged, never raised to publishers.
        """
        while self._running:
            batch: List[Event] = []
            try:
                deadline = time.monotonic() + 0.1

                while len(batch) < self.BATCH_SIZE and time.monotonic() < deadline:
                    try:
                        event = await asyncio.wait_for(
                            self._mirror_queue.get(),
                            timeout=max(0.01, deadline - time.monotonic()),
                        )
                        batch.append(event)
                    except asyncio.TimeoutError:
                        break

                if batch:
                    await self._write_batch(batch)

            except asyncio.CancelledError:
                break
            except redis.RedisError as e:
                self._metrics.mirror_failures += len(batch)
                logger.warning("Event mirror write failed: %s", e)
                await asyncio.sleep(0.1)

    async def _write_batch(self, batch: List[Event]) -> None:
        async with self.redis.pipeline(transaction=False) as pipe:
            for event in batch:
                pipe.xadd(
                    self._stream_key(event.topic),
                    {
                        "event_id": event.event_id,
                        "event_type": event.event_type.value,
                        "sequence": event.sequence,
                        "timestamp": event.timestamp.isoformat(),
                        "data": event.to_json(),
                    },
                    maxlen=self.stream_max_len,
                    approximate=True,
                )
            await pipe.execute()

    async def flush_mirror(self) -> int:
        """Write everything waiting in the mirror queue now.

        Returns:
            Number of events written
        """
        batch: List[Event] = []
        while not self._mirror_queue.empty():
            batch.append(self._mirror_queue.get_nowait())
        if batch and self.redis is not None:
            await self._write_batch(batch)
        return len(batch)
