"""
Conversation package.

Holds the shared conversation state (store), the keyword classifier that
derives topic and mood, and the flow coordinator that applies every message
on the canonical stream to the store.
"""

from .classifier import KeywordClassifier, DEFAULT_TOPIC_RULES, DEFAULT_MOOD_RULES
from .store import ConversationStore
from .flow import FlowCoordinator

__all__ = [
    'KeywordClassifier',
    'DEFAULT_TOPIC_RULES',
    'DEFAULT_MOOD_RULES',
    'ConversationStore',
    'FlowCoordinator'
]
