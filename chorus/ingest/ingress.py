"""
Ingress Consumer

Feeds the canonical conversation stream into the flow coordinator. It uses
its own consumer group, so it sees every message alongside the agents.
"""
import logging
from typing import Any, Dict, Optional

from chorus.conversation.flow import FlowCoordinator
from chorus.exceptions import StoreClosedError
from chorus.infra.bus import MessageBus
from chorus.infra.consumer import StreamConsumer
from chorus.messages import Message


logger = logging.getLogger(__name__)


INGRESS_GROUP = "flow-coordinator"


class IngressConsumer:
    """Applies every message on the stream to shared conversation state."""

    def __init__(self, bus: MessageBus, coordinator: FlowCoordinator, topic: str,
                 group: str = INGRESS_GROUP):
        self.bus = bus
        self.coordinator = coordinator
        self.topic = topic
        self.group = group
        self.consumer: Optional[StreamConsumer] = None

    @property
    def running(self) -> bool:
        return self.consumer is not None and self.consumer.running

    def start(self):
        if self.consumer is not None:
            return

        subscription = self.bus.subscribe(self.topic, self.group)
        self.consumer = StreamConsumer(subscription, self.handle_message, name=f"ingress:{self.topic}")
        self.consumer.start()
        logger.info(f"📥 Ingress consuming {self.topic} as '{self.group}'")

    async def stop(self):
        if self.consumer is None:
            return
        await self.consumer.stop()
        self.consumer = None

    def handle_message(self, message: Message):
        try:
            self.coordinator.on_message(message)
        except StoreClosedError:
            logger.debug(f"Store closed, ingress skipped message {message.id}")

    def get_stats(self) -> Dict[str, Any]:
        return {
            'topic': self.topic,
            'group': self.group,
            'running': self.running,
            'consumer': self.consumer.get_stats() if self.consumer else None,
            'flow': self.coordinator.get_stats()
        }
