"""
Unit tests for the message envelope and conversation model.
"""
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from chorus.exceptions import MessageDecodeError
from chorus.messages import Message, MessageKind, Participant, ParticipantRole
from tests.helpers import make_message


@pytest.mark.unit
def test_message_defaults():
    message = make_message("hello")

    assert message.id
    assert message.kind == MessageKind.USER
    assert message.timestamp.tzinfo is not None
    assert message.tags == ()
    assert message.custom == {}
    assert message.reply_to is None


@pytest.mark.unit
def test_message_is_immutable():
    message = make_message("hello")

    with pytest.raises(ValidationError):
        message.text = "changed"


@pytest.mark.unit
@pytest.mark.parametrize("conversation_id", ["", "   "])
def test_message_requires_conversation_id(conversation_id):
    with pytest.raises(ValidationError):
        make_message("hello", conversation_id=conversation_id)


@pytest.mark.unit
def test_message_requires_sender():
    with pytest.raises(ValidationError):
        make_message("hello", sender_id="")


@pytest.mark.unit
def test_tags_are_deduplicated_in_first_seen_order():
    message = make_message("hello", tags=["b", "a", "b", "c", "a"])

    assert message.tags == ("b", "a", "c")


@pytest.mark.unit
def test_wire_format_roundtrip_keeps_fields():
    original = make_message(
        "What about Rust?",
        display_name="Alice",
        reply_to="technical-agent",
        tags=["question"],
        custom={"relevance": "high"}
    )

    decoded = Message.from_json(original.to_json())

    assert decoded == original


@pytest.mark.unit
def test_legacy_envelope_is_accepted():
    payload = """
    {
        "id": "msg-42",
        "type": "agent",
        "content": "I agree with that perspective.",
        "agent_id": "helpful-agent",
        "user_id": "someone-else",
        "timestamp": "2024-05-01T12:00:00Z",
        "metadata": {
            "conversation_id": "main-conversation",
            "reply_to": "user-1",
            "from_agent": "Helpful Agent",
            "tags": ["reply", "reply"],
            "custom": {"source": "legacy"}
        }
    }
    """

    message = Message.from_json(payload)

    assert message.id == "msg-42"
    assert message.kind == MessageKind.AGENT
    assert message.text == "I agree with that perspective."
    assert message.sender_id == "helpful-agent"
    assert message.conversation_id == "main-conversation"
    assert message.reply_to == "user-1"
    assert message.display_name == "Helpful Agent"
    assert message.tags == ("reply",)
    assert message.custom == {"source": "legacy"}
    assert message.timestamp == datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


@pytest.mark.unit
def test_legacy_user_envelope_uses_user_id():
    payload = '{"type": "user", "content": "hi", "user_id": "user-9", "metadata": {"conversation_id": "c"}}'

    message = Message.from_json(payload)

    assert message.sender_id == "user-9"
    assert message.display_name is None
    assert message.author_label == "user-9"


@pytest.mark.unit
@pytest.mark.parametrize("payload", [
    "not json at all",
    '{"kind": "user", "text": "no conversation", "sender_id": "u"}',
    '{"kind": "shouting", "text": "x", "sender_id": "u", "conversation_id": "c"}',
    '{"type": "user", "content": "legacy without metadata", "user_id": "u"}',
])
def test_invalid_payloads_raise_decode_error(payload):
    with pytest.raises(MessageDecodeError):
        Message.from_json(payload)


@pytest.mark.unit
@pytest.mark.parametrize("kind,role", [
    (MessageKind.USER, ParticipantRole.USER),
    (MessageKind.AGENT, ParticipantRole.AGENT),
    (MessageKind.SYSTEM, ParticipantRole.SYSTEM),
    (MessageKind.CONTEXT, ParticipantRole.SYSTEM),
])
def test_participant_role_from_kind(kind, role):
    assert ParticipantRole.from_kind(kind) == role


@pytest.mark.unit
def test_participant_last_seen_never_moves_backwards():
    now = datetime.now(timezone.utc)
    participant = Participant(id="u", display_name="U", role=ParticipantRole.USER, last_seen=now)

    assert participant.seen_at(now - timedelta(seconds=5)).last_seen == now
    assert participant.seen_at(now + timedelta(seconds=5)).last_seen == now + timedelta(seconds=5)
