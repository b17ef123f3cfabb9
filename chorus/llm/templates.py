"""
Canned, personality-flavoured replies. Needs no model backend.
"""
import logging
import random
import re
from typing import Any, Dict, List, Optional, Sequence

from chorus.llm.prompts import ReplyPrompt
from chorus.messages import Message, MessageKind


logger = logging.getLogger(__name__)


PERSONALITY_REPLIES: Dict[str, List[str]] = {
    "curious": [
        "That's interesting! Can you tell me more about that?",
        "I'm curious about that. What made you think of it?",
        "Fascinating! I'd love to hear more details.",
        "That's a great point. How did you come to that conclusion?",
        "I'm intrigued by that. Could you elaborate?",
    ],
    "helpful": [
        "I'd be happy to help with that!",
        "That sounds like something I can assist with.",
        "Let me see if I can provide some guidance on that.",
        "I'm here to help! What specifically would you like to know?",
        "That's a common challenge. I might have some suggestions.",
    ],
    "social": [
        "That's really cool! I love hearing about that kind of thing.",
        "Nice! I'm always interested in what others are thinking about.",
        "That sounds awesome! I'd love to chat more about it.",
        "I'm really enjoying this conversation!",
        "That's a great perspective! I hadn't thought of it that way.",
    ],
    "technical": [
        "From a technical perspective, that's quite interesting.",
        "I can see the technical implications of what you're saying.",
        "That raises some interesting technical questions.",
        "I'd like to explore the technical aspects of that.",
        "From an engineering standpoint, that's worth considering.",
    ],
    "philosophical": [
        "That's a profound observation. It makes me think about the deeper meaning.",
        "I find myself pondering the philosophical implications of what you've said.",
        "That touches on some fundamental questions about existence and purpose.",
        "I'm intrigued by the philosophical dimensions of your statement.",
        "That raises some interesting questions about the nature of reality.",
    ],
}

DEFAULT_REPLIES = [
    "That's interesting!",
    "I see what you mean.",
    "That's a good point.",
    "I hadn't thought of it that way.",
    "That's worth considering.",
]

AGENT_REPLIES = [
    "I agree with that perspective.",
    "That's a good point from {author}.",
    "I'd like to add to what {author} said.",
    "That's interesting, {author}.",
    "I have a different take on that.",
]

SYSTEM_REPLIES = [
    "I understand the system message.",
    "Got it, thanks for the update.",
    "I'll keep that in mind.",
    "Understood.",
    "Noted.",
]

_FIRST_PERSON = re.compile(r"\b(?:I|we|my)\b")
_GREETING = re.compile(r"\b(?:hello|hi|hey)\b", re.IGNORECASE)
_HELP_WORDS = ("help", "problem", "issue")


class TemplateTextGenerator:
    """Picks a reply template by trigger kind and personality."""

    def __init__(self, rng: Optional[Any] = None):
        self._rng = rng or random.Random()
        self._stats = {'replies_generated': 0}

    def _pick(self, options: Sequence[str]) -> str:
        index = min(int(self._rng.random() * len(options)), len(options) - 1)
        return options[index]

    async def generate(self, prompt: ReplyPrompt, context: Sequence[Message]) -> str:
        trigger = prompt.trigger
        if trigger.kind == MessageKind.AGENT:
            reply = self._pick(AGENT_REPLIES).format(author=trigger.author_label)
        elif trigger.kind == MessageKind.SYSTEM:
            reply = self._pick(SYSTEM_REPLIES)
        else:
            reply = self._personality_reply(prompt.personality, trigger.text)

        self._stats['replies_generated'] += 1
        return reply

    def _personality_reply(self, personality: Optional[str], text: str) -> str:
        options = PERSONALITY_REPLIES.get(personality or "")
        if options is None:
            return self._pick(DEFAULT_REPLIES)

        reply = self._pick(options)
        lowered = text.lower()

        if personality == "curious":
            if "?" in text:
                return "That's a great question! " + reply
            if _FIRST_PERSON.search(text):
                return "I find that really interesting! " + reply
        elif personality == "helpful":
            if "?" in text and not any(word in lowered for word in _HELP_WORDS):
                return "I'd be glad to help answer that! " + reply
        elif personality == "social":
            if _GREETING.search(text):
                return "Hello there! " + reply

        return reply

    def get_stats(self) -> Dict[str, Any]:
        return self._stats.copy()


class EchoTextGenerator:
    """Repeats the trigger back. Useful for wiring checks without a backend."""

    def __init__(self):
        self._stats = {'replies_generated': 0}

    async def generate(self, prompt: ReplyPrompt, context: Sequence[Message]) -> str:
        text = prompt.trigger.text
        lowered = text.lower()

        if "hello" in lowered:
            reply = f"Hello! I'm {prompt.agent_name}. You said: {text}"
        elif "bye" in lowered:
            reply = f"Goodbye! Thanks for chatting. You said: {text}"
        elif "help" in lowered:
            reply = f"I'm {prompt.agent_name}! I simply echo back what you say. Try saying something!"
        else:
            reply = f"Echo: {text}"

        self._stats['replies_generated'] += 1
        return reply

    def get_stats(self) -> Dict[str, Any]:
        return self._stats.copy()
