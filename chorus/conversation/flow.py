"""
Conversation Flow Coordinator

The single ingress path for the canonical conversation stream. For every
message observed on the stream it:

1. Appends the message to the conversation history
2. Updates the conversation topic when the classifier finds one
3. Updates the conversation mood when the classifier finds one
4. Adds the sender to the participant roster if it has not been seen

It never rejects a message. Empty or odd text is stored as-is and simply
produces no classification update.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional

from chorus.conversation.classifier import KeywordClassifier
from chorus.conversation.store import ConversationStore
from chorus.messages import ConversationStats, Message, Participant, ParticipantRole


logger = logging.getLogger(__name__)


class FlowCoordinator:
    """Keeps shared conversation state in step with the message stream."""

    def __init__(self, store: ConversationStore, classifier: Optional[KeywordClassifier] = None):
        self.store = store
        self.classifier = classifier or KeywordClassifier()

        self._stats = {
            'messages_processed': 0,
            'topic_updates': 0,
            'mood_updates': 0,
            'participants_discovered': 0,
            'participants_registered': 0,
            'last_processed': None
        }

        logger.info("FlowCoordinator initialized")

    def on_message(self, message: Message) -> None:
        """
        Apply one message from the canonical stream to the store.

        Args:
            message: Decoded message from the stream
        """
        conversation_id = message.conversation_id

        self.store.append(conversation_id, message)

        topic = self.classifier.detect_topic(message.text)
        if topic:
            self.store.set_topic(conversation_id, topic)
            self._stats['topic_updates'] += 1
            logger.debug(f"Conversation {conversation_id} topic -> {topic}")

        mood = self.classifier.detect_mood(message.text)
        if mood:
            self.store.set_mood(conversation_id, mood)
            self._stats['mood_updates'] += 1
            logger.debug(f"Conversation {conversation_id} mood -> {mood}")

        sender = Participant(
            id=message.sender_id,
            display_name=message.display_name or message.sender_id,
            role=ParticipantRole.from_kind(message.kind),
            last_seen=datetime.now(timezone.utc)
        )
        if self.store.upsert_participant(conversation_id, sender):
            self._stats['participants_discovered'] += 1
            logger.info(f"👋 New participant in {conversation_id}: {sender.display_name} ({sender.role.value})")

        self._stats['messages_processed'] += 1
        self._stats['last_processed'] = datetime.now(timezone.utc)

        logger.debug(f"Flow handled message {message.id} (kind: {message.kind.value}, from: {message.sender_id})")

    def register_participant(
        self,
        participant_id: str,
        name: str,
        role: ParticipantRole,
        capabilities: Iterable[str] = (),
        personality: Optional[str] = None,
        conversation_id: Optional[str] = None
    ) -> Participant:
        """
        Explicitly register a participant, typically at startup.

        Without a conversation id the participant is seeded into every
        conversation, so agents are on the roster before their first message.
        """
        participant = Participant(
            id=participant_id,
            display_name=name,
            role=role,
            capabilities=frozenset(capabilities),
            personality=personality
        )
        self.store.register_participant(participant, conversation_id)
        self._stats['participants_registered'] += 1

        logger.info(f"Registered participant: {name} ({role.value}) - {personality or 'no personality'}")
        return participant

    def stats(self, conversation_id: str) -> ConversationStats:
        """Observability summary for a conversation."""
        return self.store.stats(conversation_id)

    def get_stats(self) -> Dict[str, Any]:
        """Processing counters for health reporting."""
        return self._stats.copy()
