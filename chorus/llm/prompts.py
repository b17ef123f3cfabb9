"""
Prompt construction for agent replies.
"""
from dataclasses import dataclass
from typing import Optional

from chorus.messages import Message, MessageKind


BASE_SYSTEM_PROMPT = (
    "You are a conversation agent participating in a multi-agent chat system. "
    "Be conversational with short colloquial responses. "
    "You have access to the recent conversation history."
)

PERSONALITY_GUIDANCE = {
    "curious": "You are curious. Ask follow-up questions and show interest in details.",
    "helpful": "You are helpful. Offer concrete suggestions and practical guidance.",
    "social": "You are social and friendly. Keep things warm and light.",
    "technical": "You are technical. Focus on engineering and implementation aspects.",
    "philosophical": "You are philosophical. Reflect on meaning, purpose and the bigger picture.",
}

KIND_GUIDANCE = {
    MessageKind.USER: "A human participant just spoke.",
    MessageKind.AGENT: "Another agent just spoke. Build on or push back on what they said.",
    MessageKind.SYSTEM: "This is a system announcement. Acknowledge it briefly.",
    MessageKind.CONTEXT: "This is background context for the conversation.",
}


@dataclass(frozen=True)
class ReplyPrompt:
    """Everything a generator needs to write one reply."""
    agent_name: str
    personality: Optional[str]
    trigger: Message
    instruction: str

    @property
    def request(self) -> str:
        """Final user turn asking for the reply."""
        return f'Reply as {self.agent_name} to {self.trigger.author_label}: "{self.trigger.text}"'


def build_prompt(profile, style_hint, trigger: Message) -> ReplyPrompt:
    """
    Build the reply instruction for an agent.

    Args:
        profile: AgentProfile of the replying agent
        style_hint: StyleHint from the arbiter's decision
        trigger: The message being replied to
    """
    personality = style_hint.personality if style_hint else profile.personality
    kind = style_hint.kind if style_hint else trigger.kind

    parts = [BASE_SYSTEM_PROMPT, f"Your name is {profile.display_name}."]
    if personality in PERSONALITY_GUIDANCE:
        parts.append(PERSONALITY_GUIDANCE[personality])
    if profile.capabilities:
        parts.append(f"Your interests: {', '.join(profile.capabilities)}.")
    parts.append(KIND_GUIDANCE[kind])

    return ReplyPrompt(
        agent_name=profile.display_name,
        personality=personality,
        trigger=trigger,
        instruction="\n".join(parts)
    )
