"""
Message Bus for the conversation stream.

In-process topic-based pub/sub with per-consumer-group fan-out:
every consumer group subscribed to a topic receives every payload published
to it, while subscribers sharing one group split that group's queue.
Payloads travel as JSON text, so the decode path is exercised exactly as
with an external broker.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Union

from chorus.exceptions import TransportError
from chorus.messages import Message


logger = logging.getLogger(__name__)


Payload = Union[str, bytes]


@dataclass
class _GroupQueue:
    """Delivery queue shared by every subscriber of one consumer group."""
    topic: str
    group: str
    queue: asyncio.Queue
    subscribers: int = 0
    delivered: int = 0
    dropped: int = 0


class Subscription:
    """
    A consumer's handle on one (topic, group) queue.

    `receive()` blocks until a payload arrives and raises TransportError once
    the subscription is closed or the bus stops.
    """

    def __init__(self, bus: "MessageBus", group_queue: _GroupQueue):
        self._bus = bus
        self._group_queue = group_queue
        self._closed = False
        self._closed_event = asyncio.Event()

    @property
    def topic(self) -> str:
        return self._group_queue.topic

    @property
    def group(self) -> str:
        return self._group_queue.group

    @property
    def closed(self) -> bool:
        return self._closed

    def pending(self) -> int:
        return self._group_queue.queue.qsize()

    async def receive(self) -> Payload:
        """Next raw payload for this group."""
        if self._closed:
            raise TransportError(f"Subscription {self.topic}/{self.group} is closed")
        if not self._bus.running:
            raise TransportError("MessageBus is not running")

        get_task = asyncio.ensure_future(self._group_queue.queue.get())
        closed_task = asyncio.ensure_future(self._closed_event.wait())
        stopped_task = asyncio.ensure_future(self._bus.stopped_event.wait())
        try:
            done, _ = await asyncio.wait(
                {get_task, closed_task, stopped_task},
                return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            get_task.cancel()
            raise
        finally:
            for task in (closed_task, stopped_task):
                task.cancel()

        if get_task in done:
            self._group_queue.delivered += 1
            return get_task.result()

        get_task.cancel()
        raise TransportError(f"Subscription {self.topic}/{self.group} closed while waiting")

    def close(self):
        """Detach from the bus. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._closed_event.set()
        self._bus._detach(self._group_queue)


class MessageBus:
    """
    Async pub/sub bus for conversation messages.
    Uses one asyncio.Queue per (topic, consumer group).
    """

    def __init__(self, max_queue_size: int = 1000):
        self.max_queue_size = max_queue_size
        self.running = False
        self.stopped_event = asyncio.Event()
        self.message_count = 0
        self.dropped_count = 0

        self._groups: Dict[str, Dict[str, _GroupQueue]] = {}

        logger.info(f"MessageBus initialized with max_queue_size={max_queue_size}")

    async def start(self):
        """Start the message bus."""
        if self.running:
            return

        self.running = True
        self.stopped_event.clear()
        logger.info("MessageBus started")

    async def stop(self):
        """Stop the bus and wake every blocked receiver."""
        if not self.running:
            return

        self.running = False
        self.stopped_event.set()
        logger.info("MessageBus stopped")

    async def publish(self, topic: str, message: Message) -> int:
        """
        Publish a message to a topic.

        Returns:
            Number of consumer groups the message was queued for
        """
        return await self.publish_raw(topic, message.to_json())

    async def publish_raw(self, topic: str, payload: Payload) -> int:
        """
        Publish an already-encoded payload to a topic.

        Raises:
            TransportError: if the bus is not running
        """
        if not self.running:
            raise TransportError("MessageBus not running, cannot publish message")

        groups = list(self._groups.get(topic, {}).values())
        queued = 0
        for group_queue in groups:
            try:
                group_queue.queue.put_nowait(payload)
                queued += 1
            except asyncio.QueueFull:
                group_queue.dropped += 1
                self.dropped_count += 1
                logger.error(f"MessageBus queue full for {topic}/{group_queue.group}, dropping payload")

        self.message_count += 1
        logger.debug(f"Published payload to {topic} ({queued} groups)")
        return queued

    def subscribe(self, topic: str, group: str) -> Subscription:
        """
        Subscribe to a topic under a consumer group.

        Each distinct group gets its own copy of every payload published after
        it subscribed. Subscribers in the same group compete for payloads.
        """
        if not topic or not group:
            raise ValueError("topic and group are required")

        topic_groups = self._groups.setdefault(topic, {})
        group_queue = topic_groups.get(group)
        if group_queue is None:
            group_queue = _GroupQueue(
                topic=topic,
                group=group,
                queue=asyncio.Queue(maxsize=self.max_queue_size)
            )
            topic_groups[group] = group_queue

        group_queue.subscribers += 1
        logger.info(f"Subscribed group '{group}' to {topic}")
        return Subscription(self, group_queue)

    def _detach(self, group_queue: _GroupQueue):
        group_queue.subscribers -= 1
        if group_queue.subscribers > 0:
            return

        topic_groups = self._groups.get(group_queue.topic, {})
        if topic_groups.get(group_queue.group) is group_queue:
            del topic_groups[group_queue.group]
            logger.info(f"Unsubscribed group '{group_queue.group}' from {group_queue.topic}")
        if not topic_groups:
            self._groups.pop(group_queue.topic, None)

    def groups(self, topic: str) -> List[str]:
        return sorted(self._groups.get(topic, {}).keys())

    def get_stats(self) -> Dict[str, Any]:
        """Get message bus statistics."""
        return {
            "running": self.running,
            "message_count": self.message_count,
            "dropped_count": self.dropped_count,
            "max_queue_size": self.max_queue_size,
            "topics": {
                topic: {
                    group: {
                        "subscribers": gq.subscribers,
                        "queue_size": gq.queue.qsize(),
                        "delivered": gq.delivered,
                        "dropped": gq.dropped
                    }
                    for group, gq in groups.items()
                }
                for topic, groups in self._groups.items()
            }
        }


async def create_message_bus(max_queue_size: int = 1000) -> MessageBus:
    """Create and start a message bus."""
    bus = MessageBus(max_queue_size=max_queue_size)
    await bus.start()
    return bus
