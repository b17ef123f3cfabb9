"""
Response Arbiter

Decides, for one (incoming message, candidate agent) pair, whether the agent
should reply. The decision pipeline short-circuits on the first refusal:

1. Self-suppression - an agent never answers its own message
2. Relevance gate - system messages, direct address, capability keywords,
   flagged relevance, personality heuristics, and finally a random
   "overhear" chance
3. Probability gate - the agent's base response probability
4. Anti-spam cap - no more than N replies in the recent history window

Cheap deterministic checks run first. The random overhear draw is the last
relevance check, so deterministic relevance always wins over chance. The
arbiter holds no mutable state and does no I/O, so concurrent calls for
different agents against the same message are safe.
"""
import logging
import random
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, Optional, Protocol, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator

from chorus.messages import Message, MessageKind


logger = logging.getLogger(__name__)


DEFAULT_OVERHEAR_CHANCE = 0.3
DEFAULT_HISTORY_WINDOW = 5
DEFAULT_MAX_RECENT_REPLIES = 2
DEFAULT_RESPONSE_PROBABILITY = 0.7


class RandomSource(Protocol):
    """Anything with a uniform `random()` in [0, 1)."""

    def random(self) -> float:
        ...


class Relevance(str, Enum):
    """Why a message passed the relevance gate."""
    SYSTEM_MESSAGE = "system_message"
    DIRECT_ADDRESS = "direct_address"
    CAPABILITY_MATCH = "capability_match"
    FLAGGED_RELEVANT = "flagged_relevant"
    PERSONALITY_MATCH = "personality_match"
    OVERHEARD = "overheard"


class DecisionReason(str, Enum):
    """Which pipeline stage settled the decision."""
    RESPOND = "respond"
    SELF_MESSAGE = "self_message"
    NOT_RELEVANT = "not_relevant"
    PROBABILITY_GATE = "probability_gate"
    ANTI_SPAM = "anti_spam"


class AgentProfile(BaseModel):
    """What the arbiter knows about the agent it decides for."""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    display_name: str = ""
    capabilities: Tuple[str, ...] = ()
    personality: Optional[str] = None
    base_response_probability: float = Field(DEFAULT_RESPONSE_PROBABILITY, ge=0.0, le=1.0)

    @model_validator(mode="before")
    @classmethod
    def _default_display_name(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("display_name"):
            data = {**data, "display_name": data.get("id") or ""}
        return data


@dataclass(frozen=True)
class StyleHint:
    """Handed to reply generation: how the reply should sound."""
    personality: Optional[str]
    kind: MessageKind


@dataclass(frozen=True)
class Decision:
    """Outcome of one arbitration."""
    respond: bool
    reason: DecisionReason
    relevance: Optional[Relevance] = None
    style_hint: Optional[StyleHint] = None

    @classmethod
    def refuse(cls, reason: DecisionReason, relevance: Optional[Relevance] = None) -> "Decision":
        return cls(respond=False, reason=reason, relevance=relevance)


@dataclass
class PersonalityHeuristic:
    """
    Personality-specific relevance test.

    `whole_words` requires full-word matches (so "hi" does not fire on
    "this"); otherwise words match as prefixes ("problem" hits "problems").
    """
    words: Tuple[str, ...]
    match_question_mark: bool = False
    whole_words: bool = False
    _pattern: Optional[re.Pattern] = field(default=None, init=False, repr=False)

    def __post_init__(self):
        """Compile the keyword pattern once."""
        if self.words:
            alternation = "|".join(re.escape(w) for w in self.words)
            suffix = r"\b" if self.whole_words else ""
            self._pattern = re.compile(rf"\b(?:{alternation}){suffix}", re.IGNORECASE)

    def matches(self, text: str) -> bool:
        if self.match_question_mark and "?" in text:
            return True
        return bool(self._pattern and self._pattern.search(text))


DEFAULT_PERSONALITY_HEURISTICS: Dict[str, PersonalityHeuristic] = {
    "curious": PersonalityHeuristic(
        words=("what", "how", "why", "when", "where", "who", "which"),
        match_question_mark=True,
        whole_words=True
    ),
    "helpful": PersonalityHeuristic(words=("help", "problem", "issue")),
    "social": PersonalityHeuristic(
        words=("hello", "hi", "hey", "greetings"),
        whole_words=True
    ),
    "technical": PersonalityHeuristic(
        words=("code", "programming", "software", "system", "algorithm", "data", "function", "method")
    ),
    "philosophical": PersonalityHeuristic(
        words=("think", "believe", "feel", "meaning", "purpose", "life", "existence", "truth", "reality")
    ),
}


def count_replies_by(history: Iterable[Message], agent_id: str) -> int:
    """Number of messages in `history` authored by `agent_id`."""
    return sum(1 for message in history if message.sender_id == agent_id)


class ResponseArbiter:
    """
    Per-message, per-agent go/no-go decision.

    Randomness comes from an injectable source so tests can script the draws.
    Every call makes fresh draws; nothing is cached between calls.
    """

    def __init__(
        self,
        rng: Optional[RandomSource] = None,
        overhear_chance: float = DEFAULT_OVERHEAR_CHANCE,
        history_window: int = DEFAULT_HISTORY_WINDOW,
        max_recent_replies: int = DEFAULT_MAX_RECENT_REPLIES,
        personality_heuristics: Optional[Dict[str, PersonalityHeuristic]] = None
    ):
        if not 0.0 <= overhear_chance <= 1.0:
            raise ValueError(f"overhear_chance must be within [0, 1], got {overhear_chance}")

        self._rng = rng or random.Random()
        self.overhear_chance = overhear_chance
        self.history_window = history_window
        self.max_recent_replies = max_recent_replies
        self.personality_heuristics = (
            personality_heuristics if personality_heuristics is not None
            else dict(DEFAULT_PERSONALITY_HEURISTICS)
        )

    def decide(self, message: Message, profile: AgentProfile, history: Sequence[Message]) -> Decision:
        """
        Run the decision pipeline.

        Args:
            message: The incoming message
            profile: The evaluating agent's profile
            history: Recent conversation history, oldest first

        Returns:
            Decision with respond flag, the deciding stage and a style hint
        """
        if message.sender_id == profile.id:
            return Decision.refuse(DecisionReason.SELF_MESSAGE)

        relevance = self._check_relevance(message, profile)
        if relevance is None:
            return Decision.refuse(DecisionReason.NOT_RELEVANT)

        if not self._rng.random() < profile.base_response_probability:
            return Decision.refuse(DecisionReason.PROBABILITY_GATE, relevance)

        if self.exceeds_reply_cap(history, profile.id):
            return Decision.refuse(DecisionReason.ANTI_SPAM, relevance)

        return Decision(
            respond=True,
            reason=DecisionReason.RESPOND,
            relevance=relevance,
            style_hint=StyleHint(personality=profile.personality, kind=message.kind)
        )

    def exceeds_reply_cap(self, history: Sequence[Message], agent_id: str) -> bool:
        """True when the agent already authored too many of the recent messages."""
        if self.history_window <= 0:
            return False
        window = list(history)[-self.history_window:]
        return count_replies_by(window, agent_id) >= self.max_recent_replies

    def _check_relevance(self, message: Message, profile: AgentProfile) -> Optional[Relevance]:
        if message.kind == MessageKind.SYSTEM:
            return Relevance.SYSTEM_MESSAGE

        if message.reply_to and message.reply_to == profile.id:
            return Relevance.DIRECT_ADDRESS

        content = message.text.lower()
        for capability in profile.capabilities:
            if capability and capability.lower() in content:
                return Relevance.CAPABILITY_MATCH

        if message.custom.get("relevance") == "high":
            return Relevance.FLAGGED_RELEVANT

        heuristic = self.personality_heuristics.get(profile.personality or "")
        if heuristic is not None and heuristic.matches(message.text):
            return Relevance.PERSONALITY_MATCH

        if self._rng.random() < self.overhear_chance:
            return Relevance.OVERHEARD

        return None
