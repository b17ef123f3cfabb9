"""
Conversation Store

In-memory, concurrency-safe registry of conversations keyed by conversation id.
The store is the only owner of conversation and participant state:

1. History is append-only and ordered by arrival at the store
2. Topic and mood are derived metadata written by the flow coordinator
3. The participant roster is per conversation, seeded from a store-wide roster

Locking is per conversation. A registry lock only guards the id -> state map,
so work on unrelated conversations never contends. Callers receive immutable
snapshots or copies, never the internal state.
"""
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from chorus.exceptions import InvalidMessageError, StoreClosedError
from chorus.messages import ConversationSnapshot, ConversationStats, Message, Participant


logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class _ConversationState:
    """Mutable conversation record. Only touched while holding `lock`."""
    id: str
    participants: Dict[str, Participant] = field(default_factory=dict)
    history: List[Message] = field(default_factory=list)
    topic: Optional[str] = None
    mood: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def touch(self) -> None:
        # updated_at >= created_at even if the wall clock steps back
        self.updated_at = max(_utcnow(), self.created_at, self.updated_at)

    def snapshot(self) -> ConversationSnapshot:
        return ConversationSnapshot(
            id=self.id,
            participants=dict(self.participants),
            history=tuple(self.history),
            topic=self.topic,
            mood=self.mood,
            created_at=self.created_at,
            updated_at=self.updated_at
        )


class ConversationStore:
    """
    Registry of conversations with per-conversation serialization.

    Created once at process start and injected into every component that
    needs it. `close()` tears it down after in-flight operations complete.
    """

    def __init__(self):
        self._conversations: Dict[str, _ConversationState] = {}
        self._registry_lock = threading.Lock()
        self._seed_roster: Dict[str, Participant] = {}
        self._closed = False

        logger.info("ConversationStore initialized")

    # -- registry -------------------------------------------------------

    def _state(self, conversation_id: str) -> _ConversationState:
        """Get or lazily create the internal state for a conversation."""
        if not conversation_id or not conversation_id.strip():
            raise InvalidMessageError("conversation id must not be empty")

        with self._registry_lock:
            if self._closed:
                raise StoreClosedError("ConversationStore is closed")

            state = self._conversations.get(conversation_id)
            if state is None:
                state = _ConversationState(
                    id=conversation_id,
                    participants=dict(self._seed_roster)
                )
                self._conversations[conversation_id] = state
                logger.debug(f"Created conversation {conversation_id}")
            return state

    def get_or_create(self, conversation_id: str) -> ConversationSnapshot:
        """Return a snapshot of the conversation, creating it on first reference."""
        state = self._state(conversation_id)
        with state.lock:
            return state.snapshot()

    def conversation_ids(self) -> List[str]:
        """Ids of every conversation created so far."""
        with self._registry_lock:
            return list(self._conversations.keys())

    # -- history --------------------------------------------------------

    def append(self, conversation_id: str, message: Message) -> None:
        """
        Append a message to a conversation's history.

        Updates updated_at and, if the sender is on the roster, its last_seen.
        """
        state = self._state(conversation_id)
        with state.lock:
            state.history.append(message)
            state.touch()

            participant = state.participants.get(message.sender_id)
            if participant is not None:
                state.participants[message.sender_id] = participant.seen_at(state.updated_at)

    def recent(self, conversation_id: str, limit: int) -> List[Message]:
        """
        Most recent `limit` messages, oldest first.

        Returns an empty list when limit <= 0 and the whole history when it
        holds fewer than `limit` messages.
        """
        if limit <= 0:
            return []

        state = self._state(conversation_id)
        with state.lock:
            return state.history[-limit:]

    # -- derived metadata -----------------------------------------------

    def set_topic(self, conversation_id: str, topic: str) -> None:
        state = self._state(conversation_id)
        with state.lock:
            state.topic = topic
            state.touch()

    def set_mood(self, conversation_id: str, mood: str) -> None:
        state = self._state(conversation_id)
        with state.lock:
            state.mood = mood
            state.touch()

    # -- roster ---------------------------------------------------------

    def register_participant(self, participant: Participant,
                             conversation_id: Optional[str] = None) -> None:
        """
        Register (or re-register) a participant.

        With a conversation id, the participant joins that conversation only.
        Without one, it joins the seed roster: every existing conversation gets
        it now and every future conversation starts with it.
        """
        if conversation_id is not None:
            state = self._state(conversation_id)
            with state.lock:
                state.participants[participant.id] = participant
                state.touch()
            return

        with self._registry_lock:
            if self._closed:
                raise StoreClosedError("ConversationStore is closed")
            self._seed_roster[participant.id] = participant
            states = list(self._conversations.values())

        for state in states:
            with state.lock:
                state.participants[participant.id] = participant
                state.touch()

    def upsert_participant(self, conversation_id: str, participant: Participant) -> bool:
        """
        Add a participant if it is not on the roster yet.

        Returns:
            True if the participant was added, False if it already existed
        """
        state = self._state(conversation_id)
        with state.lock:
            if participant.id in state.participants:
                return False
            state.participants[participant.id] = participant
            state.touch()
            return True

    def deactivate_participant(self, conversation_id: str, participant_id: str) -> bool:
        """Mark a participant inactive. Participants are never removed."""
        state = self._state(conversation_id)
        with state.lock:
            participant = state.participants.get(participant_id)
            if participant is None:
                return False
            state.participants[participant_id] = participant.model_copy(update={"active": False})
            state.touch()
            return True

    def active_participants(self, conversation_id: str) -> List[Participant]:
        """Active participants of a conversation, ordered by id."""
        state = self._state(conversation_id)
        with state.lock:
            active = [p for p in state.participants.values() if p.active]
        return sorted(active, key=lambda p: p.id)

    # -- observability --------------------------------------------------

    def stats(self, conversation_id: str) -> ConversationStats:
        state = self._state(conversation_id)
        with state.lock:
            return ConversationStats(
                id=state.id,
                participant_count=len(state.participants),
                message_count=len(state.history),
                topic=state.topic,
                mood=state.mood,
                created_at=state.created_at,
                updated_at=state.updated_at
            )

    def get_stats(self) -> Dict[str, int]:
        """Store-wide counters for health reporting."""
        with self._registry_lock:
            states = list(self._conversations.values())
            seed_size = len(self._seed_roster)

        total_messages = 0
        for state in states:
            with state.lock:
                total_messages += len(state.history)

        return {
            "conversations": len(states),
            "messages": total_messages,
            "seed_roster_size": seed_size,
        }

    # -- lifecycle ------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """
        Tear the store down.

        New operations are refused first, then every conversation lock is
        acquired once so in-flight operations finish before state is dropped.
        """
        with self._registry_lock:
            if self._closed:
                return
            self._closed = True
            states = list(self._conversations.values())

        for state in states:
            with state.lock:
                pass

        with self._registry_lock:
            self._conversations.clear()
            self._seed_roster.clear()

        logger.info(f"ConversationStore closed ({len(states)} conversations released)")
