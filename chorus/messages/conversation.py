# messages/conversation.py
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .envelope import Message, MessageKind


class ParticipantRole(str, Enum):
    """Roster role of a participant."""
    USER = "user"
    AGENT = "agent"
    SYSTEM = "system"

    @classmethod
    def from_kind(cls, kind: MessageKind) -> "ParticipantRole":
        """Infer the roster role of a sender from the kind of message it published."""
        if kind == MessageKind.USER:
            return cls.USER
        if kind == MessageKind.AGENT:
            return cls.AGENT
        # system and context messages are both machine-authored
        return cls.SYSTEM


class Participant(BaseModel):
    """A member of a conversation roster. Immutable, the store swaps in updated copies."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    display_name: str
    role: ParticipantRole
    active: bool = True
    last_seen: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    capabilities: FrozenSet[str] = frozenset()
    personality: Optional[str] = None

    def seen_at(self, when: datetime) -> "Participant":
        """Return a copy with last_seen moved forward (never backwards)."""
        if when <= self.last_seen:
            return self
        return self.model_copy(update={"last_seen": when})


class ConversationSnapshot(BaseModel):
    """Read-only view of a conversation handed out by the store."""
    model_config = ConfigDict(frozen=True)

    id: str
    participants: Dict[str, Participant]
    history: Tuple[Message, ...]
    topic: Optional[str] = None
    mood: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class ConversationStats(BaseModel):
    """Observability summary of one conversation."""
    id: str
    participant_count: int
    message_count: int
    topic: Optional[str] = None
    mood: Optional[str] = None
    created_at: datetime
    updated_at: datetime
