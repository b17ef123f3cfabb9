# Message and conversation model package
from .envelope import Message, MessageKind
from .conversation import ConversationSnapshot, ConversationStats, Participant, ParticipantRole

__all__ = [
    "Message",
    "MessageKind",
    "ConversationSnapshot",
    "ConversationStats",
    "Participant",
    "ParticipantRole",
]
