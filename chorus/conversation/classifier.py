"""
Keyword Classification

Derives a topic label and a mood label from message text using fixed keyword
tables. Matching is case-insensitive substring matching. Rules are ordered, and
when text matches several labels the one listed first wins, so results do not
depend on mapping iteration order.
"""
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple


KeywordRule = Tuple[str, Tuple[str, ...]]


DEFAULT_TOPIC_RULES: List[KeywordRule] = [
    ("technology", ("code", "programming", "software", "computer", "tech", "ai", "machine learning")),
    ("philosophy", ("think", "believe", "meaning", "purpose", "existence", "truth", "reality")),
    ("science", ("research", "study", "experiment", "theory", "hypothesis", "data")),
    ("art", ("creative", "artistic", "design", "beautiful", "aesthetic", "music")),
    ("politics", ("government", "policy", "election", "democracy", "rights", "law")),
    ("health", ("health", "medical", "doctor", "medicine", "wellness", "fitness")),
    ("travel", ("travel", "trip", "vacation", "journey", "adventure", "explore")),
    ("food", ("food", "cooking", "recipe", "restaurant", "meal", "taste")),
]

DEFAULT_MOOD_RULES: List[KeywordRule] = [
    ("excited", ("excited", "amazing", "awesome", "fantastic", "wow", "incredible")),
    ("curious", ("wonder", "curious", "interesting", "fascinating", "intriguing")),
    ("concerned", ("worried", "concerned", "problem", "issue", "trouble", "difficult")),
    ("happy", ("happy", "joy", "pleased", "delighted", "cheerful", "glad")),
    ("serious", ("serious", "important", "critical", "urgent", "matter")),
    ("casual", ("casual", "relaxed", "easy", "simple", "chill")),
]


def _match_first(rules: Sequence[KeywordRule], text: Optional[str]) -> Optional[str]:
    if not text:
        return None

    content = text.lower()
    for label, keywords in rules:
        for keyword in keywords:
            if keyword in content:
                return label
    return None


@dataclass
class KeywordClassifier:
    """
    Stateless topic/mood classifier.

    Rule lists are lower-cased once at construction; `detect_*` are pure.
    """
    topic_rules: List[KeywordRule] = field(default_factory=lambda: list(DEFAULT_TOPIC_RULES))
    mood_rules: List[KeywordRule] = field(default_factory=lambda: list(DEFAULT_MOOD_RULES))

    def __post_init__(self):
        """Normalize keyword case for matching."""
        self.topic_rules = [(label, tuple(k.lower() for k in keywords)) for label, keywords in self.topic_rules]
        self.mood_rules = [(label, tuple(k.lower() for k in keywords)) for label, keywords in self.mood_rules]

    @property
    def topic_labels(self) -> List[str]:
        return [label for label, _ in self.topic_rules]

    @property
    def mood_labels(self) -> List[str]:
        return [label for label, _ in self.mood_rules]

    def detect_topic(self, text: Optional[str]) -> Optional[str]:
        """Topic label for the text, or None when no keyword matches."""
        return _match_first(self.topic_rules, text)

    def detect_mood(self, text: Optional[str]) -> Optional[str]:
        """Mood label for the text, or None when no keyword matches."""
        return _match_first(self.mood_rules, text)
