# messages/envelope.py
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from chorus.exceptions import MessageDecodeError


class MessageKind(str, Enum):
    """Who (or what) produced a message."""
    USER = "user"
    AGENT = "agent"
    SYSTEM = "system"
    CONTEXT = "context"


class Message(BaseModel):
    """
    Canonical envelope for everything carried on the conversation stream.

    Immutable once built. Both human and agent producers publish this shape,
    and every consumer (ingress, agent runtimes, fan-out to browsers) reads it.
    """
    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=lambda: str(uuid4()))
    kind: MessageKind
    text: str = ""
    sender_id: str = Field(..., min_length=1)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    conversation_id: str = Field(..., min_length=1)
    reply_to: Optional[str] = None
    display_name: Optional[str] = None
    tags: Tuple[str, ...] = ()
    custom: Dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def _normalize_legacy_envelope(cls, data: Any) -> Any:
        """
        Accept the older nested envelope as well:
        {id, type, content, agent_id|user_id, timestamp, metadata: {...}}.
        """
        if not isinstance(data, dict) or "kind" in data:
            return data
        if not any(key in data for key in ("type", "content", "metadata")):
            return data

        metadata = data.get("metadata") or {}
        normalized = {
            "id": data.get("id") or str(uuid4()),
            "kind": data.get("type"),
            "text": data.get("content") or "",
            # agent_id takes precedence, a message has exactly one sender
            "sender_id": data.get("agent_id") or data.get("user_id"),
            "conversation_id": metadata.get("conversation_id"),
            "reply_to": metadata.get("reply_to") or None,
            "display_name": metadata.get("from_agent") or None,
            "tags": metadata.get("tags") or (),
            "custom": metadata.get("custom") or {},
        }
        if data.get("timestamp"):
            normalized["timestamp"] = data["timestamp"]
        return normalized

    @field_validator("conversation_id", "sender_id")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value

    @field_validator("tags", mode="before")
    @classmethod
    def _dedupe_tags(cls, value: Any) -> Any:
        if value is None:
            return ()
        # ordered set: keep first occurrence
        return tuple(dict.fromkeys(value))

    @property
    def author_label(self) -> str:
        """Name shown for this message when rendered as conversational context."""
        return self.display_name or self.sender_id

    def to_json(self) -> str:
        """Serialize to the wire format."""
        return self.model_dump_json()

    @classmethod
    def from_json(cls, payload: Union[str, bytes]) -> "Message":
        """
        Decode a wire payload.

        Raises:
            MessageDecodeError: if the payload is not a valid envelope
        """
        try:
            return cls.model_validate_json(payload)
        except ValidationError as e:
            raise MessageDecodeError(f"Invalid message payload: {e.error_count()} validation error(s)") from e
