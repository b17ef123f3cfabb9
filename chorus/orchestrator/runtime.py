"""
Agent Runtime

One long-lived worker per agent. It consumes the conversation stream under
its own consumer group, asks the arbiter whether to reply, waits a
personality-scaled pacing delay, generates a reply and publishes it back
onto the same stream.

State machine:
    IDLE -> EVALUATING -> SUPPRESSED -> IDLE
                       -> COMPOSING -> PUBLISHING -> IDLE
    any  -> STOPPED (absorbing)

Messages are handled one at a time. Anything that arrives during a pacing
delay waits in this agent's subscription queue.
"""
import asyncio
import logging
import random
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from chorus.conversation.store import ConversationStore
from chorus.exceptions import GenerationError, StoreClosedError
from chorus.infra.bus import MessageBus
from chorus.infra.consumer import StreamConsumer
from chorus.llm.base import TextGenerator
from chorus.llm.prompts import build_prompt
from chorus.messages import Message, MessageKind
from chorus.orchestrator.arbiter import AgentProfile, RandomSource, ResponseArbiter


logger = logging.getLogger(__name__)


class AgentState(str, Enum):
    IDLE = "idle"
    EVALUATING = "evaluating"
    SUPPRESSED = "suppressed"
    COMPOSING = "composing"
    PUBLISHING = "publishing"
    STOPPED = "stopped"


DEFAULT_PERSONALITY_SCALE: Dict[str, float] = {
    "curious": 0.8,
    "social": 0.8,
    "helpful": 1.0,
    "technical": 1.2,
    "philosophical": 1.5,
}


@dataclass
class PacingPolicy:
    """
    How long an agent "thinks" before replying.

    delay = base_seconds * personality scale * (1 +/- jitter)
    """
    base_seconds: float = 3.0
    personality_scale: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_PERSONALITY_SCALE))
    jitter: float = 0.25
    rng: Optional[RandomSource] = None

    def __post_init__(self):
        if self.rng is None:
            self.rng = random.Random()

    def delay_for(self, personality: Optional[str]) -> float:
        scale = self.personality_scale.get(personality or "", 1.0)
        spread = (self.rng.random() * 2.0 - 1.0) * self.jitter
        return max(0.0, self.base_seconds * scale * (1.0 + spread))


class AgentRuntime:
    """Drives one agent from inbound message to published reply."""

    def __init__(
        self,
        profile: AgentProfile,
        store: ConversationStore,
        arbiter: ResponseArbiter,
        generator: TextGenerator,
        pacing: Optional[PacingPolicy] = None,
        history_window: Optional[int] = None,
        context_window: int = 20
    ):
        self.profile = profile
        self.store = store
        self.arbiter = arbiter
        self.generator = generator
        self.pacing = pacing or PacingPolicy()
        self.history_window = history_window if history_window is not None else arbiter.history_window
        self.context_window = context_window

        self.state = AgentState.IDLE
        self.bus: Optional[MessageBus] = None
        self.topic: Optional[str] = None
        self.consumer: Optional[StreamConsumer] = None
        self._stop_event = asyncio.Event()

        self._stats = {
            'messages_evaluated': 0,
            'replies_published': 0,
            'suppressed_by_reason': {},
            'dropped_after_pacing': 0,
            'generation_failures': 0,
            'publish_failures': 0,
            'last_reply_time': None
        }

    @property
    def agent_id(self) -> str:
        return self.profile.id

    @property
    def consumer_group(self) -> str:
        return f"agent-{self.profile.id}"

    @property
    def running(self) -> bool:
        return self.state != AgentState.STOPPED and self.consumer is not None

    # -- lifecycle ------------------------------------------------------

    def start(self, bus: MessageBus, topic: str):
        """Subscribe under this agent's own consumer group and start consuming."""
        if self.state == AgentState.STOPPED:
            raise RuntimeError(f"Agent {self.agent_id} was stopped and cannot be restarted")
        if self.consumer is not None:
            return

        self.bus = bus
        self.topic = topic
        subscription = bus.subscribe(topic, self.consumer_group)
        self.consumer = StreamConsumer(subscription, self.handle_message, name=self.consumer_group)
        self.consumer.start()

        logger.info(f"🤖 Agent {self.profile.display_name} ({self.agent_id}) started on {topic}")

    async def stop(self):
        """Stop the agent. A pending pacing delay ends without publishing."""
        if self.state == AgentState.STOPPED:
            return

        self.state = AgentState.STOPPED
        self._stop_event.set()
        if self.consumer is not None:
            await self.consumer.stop()

        logger.info(f"🛑 Agent {self.profile.display_name} ({self.agent_id}) stopped")

    def _set_state(self, state: AgentState) -> bool:
        """Transition unless already STOPPED. Returns False once stopped."""
        if self.state == AgentState.STOPPED:
            return False
        self.state = state
        return True

    # -- message handling -----------------------------------------------

    async def handle_message(self, message: Message):
        """Evaluate one inbound message and maybe publish a reply."""
        if not self._set_state(AgentState.EVALUATING):
            return

        try:
            await self._process(message)
        finally:
            self._set_state(AgentState.IDLE)

    async def _process(self, message: Message):
        self._stats['messages_evaluated'] += 1
        conversation_id = message.conversation_id

        history = self._recent(conversation_id, self.history_window)
        if history is None:
            return

        decision = self.arbiter.decide(message, self.profile, history)
        if not decision.respond:
            self._set_state(AgentState.SUPPRESSED)
            reason = decision.reason.value
            self._stats['suppressed_by_reason'][reason] = self._stats['suppressed_by_reason'].get(reason, 0) + 1
            logger.debug(f"Agent {self.agent_id} not replying to {message.id}: {reason}")
            return

        logger.info(
            f"💭 Agent {self.agent_id} will reply to {message.sender_id} "
            f"({decision.relevance.value if decision.relevance else 'n/a'})"
        )

        if not await self._pace():
            return

        # History may have moved on while we waited
        fresh_history = self._recent(conversation_id, self.history_window)
        if fresh_history is None:
            return
        if self.arbiter.exceeds_reply_cap(fresh_history, self.agent_id):
            self._stats['dropped_after_pacing'] += 1
            logger.info(f"🔇 Agent {self.agent_id} dropped reply to {message.id}: reply cap reached during pacing")
            return

        if not self._set_state(AgentState.COMPOSING):
            return

        context = self._recent(conversation_id, self.context_window)
        if context is None:
            return
        if all(m.id != message.id for m in context):
            context.append(message)

        prompt = build_prompt(self.profile, decision.style_hint, message)
        try:
            text = await self.generator.generate(prompt, context)
        except GenerationError as e:
            self._stats['generation_failures'] += 1
            logger.warning(f"⚠️ Agent {self.agent_id} generation failed, not replying: {e}")
            return
        except Exception as e:
            self._stats['generation_failures'] += 1
            logger.error(f"❌ Agent {self.agent_id} generator raised unexpectedly, not replying: {e}", exc_info=True)
            return

        text = (text or "").strip()
        if not text:
            self._stats['generation_failures'] += 1
            logger.warning(f"⚠️ Agent {self.agent_id} generated empty text, not replying")
            return

        if not self._set_state(AgentState.PUBLISHING):
            return

        # reply_to only ever names a human sender
        reply = Message(
            kind=MessageKind.AGENT,
            text=text,
            sender_id=self.agent_id,
            conversation_id=conversation_id,
            reply_to=message.sender_id if message.kind == MessageKind.USER else None,
            display_name=self.profile.display_name
        )
        await self._publish(reply)

    async def _pace(self) -> bool:
        """Wait out the pacing delay. Returns False if stopped meanwhile."""
        delay = self.pacing.delay_for(self.profile.personality)
        if delay > 0:
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                pass
        return not self._stop_event.is_set()

    def _recent(self, conversation_id: str, limit: int) -> Optional[List[Message]]:
        try:
            return self.store.recent(conversation_id, limit)
        except StoreClosedError:
            logger.debug(f"Agent {self.agent_id}: store closed, skipping message")
            return None

    async def _publish(self, reply: Message):
        if self.bus is None or self.topic is None:
            logger.error(f"Agent {self.agent_id} has no bus to publish on")
            return

        try:
            await self.bus.publish(self.topic, reply)
        except Exception as e:
            self._stats['publish_failures'] += 1
            logger.error(f"❌ Agent {self.agent_id} failed to publish reply: {e}")
            return

        self._stats['replies_published'] += 1
        self._stats['last_reply_time'] = datetime.now()
        logger.info(f"📤 {self.profile.display_name}: {reply.text}")

    # -- observability --------------------------------------------------

    def get_stats(self) -> Dict[str, Any]:
        stats = self._stats.copy()
        stats['suppressed_by_reason'] = dict(stats['suppressed_by_reason'])
        if stats['last_reply_time']:
            stats['last_reply_time'] = stats['last_reply_time'].isoformat()
        stats['state'] = self.state.value
        stats['consumer'] = self.consumer.get_stats() if self.consumer else None
        return stats

    def describe(self) -> Dict[str, Any]:
        return {
            'id': self.agent_id,
            'name': self.profile.display_name,
            'personality': self.profile.personality,
            'capabilities': list(self.profile.capabilities),
            'base_response_probability': self.profile.base_response_probability,
            'state': self.state.value
        }
