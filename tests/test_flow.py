"""
Unit tests for the flow coordinator.
"""
import pytest

from chorus.conversation import ConversationStore, FlowCoordinator
from chorus.messages import MessageKind, ParticipantRole
from tests.helpers import make_message


@pytest.fixture
def store():
    store = ConversationStore()
    yield store
    store.close()


@pytest.fixture
def coordinator(store):
    return FlowCoordinator(store)


@pytest.mark.unit
def test_on_message_updates_history_topic_mood_and_roster(coordinator, store):
    message = make_message("This programming problem is awesome", sender_id="alice", display_name="Alice")

    coordinator.on_message(message)

    snapshot = store.get_or_create("conv-1")
    assert snapshot.history == (message,)
    assert snapshot.topic == "technology"
    assert snapshot.mood == "excited"
    assert snapshot.participants["alice"].display_name == "Alice"
    assert snapshot.participants["alice"].role == ParticipantRole.USER


@pytest.mark.unit
def test_topic_is_kept_when_message_has_none(coordinator, store):
    coordinator.on_message(make_message("Let's talk about travel"))
    coordinator.on_message(make_message("ok"))

    assert store.stats("conv-1").topic == "travel"
    assert store.stats("conv-1").message_count == 2


@pytest.mark.unit
def test_empty_text_is_stored_without_classification(coordinator, store):
    coordinator.on_message(make_message(""))

    stats = store.stats("conv-1")
    assert stats.message_count == 1
    assert stats.topic is None
    assert stats.mood is None


@pytest.mark.unit
def test_context_messages_register_system_participants(coordinator, store):
    coordinator.on_message(make_message("Background notes", sender_id="loader", kind=MessageKind.CONTEXT))

    assert store.get_or_create("conv-1").participants["loader"].role == ParticipantRole.SYSTEM


@pytest.mark.unit
def test_registered_agents_are_not_rediscovered(coordinator, store):
    coordinator.register_participant(
        "technical-agent", "Technical Agent", ParticipantRole.AGENT,
        capabilities=["code"], personality="technical"
    )

    coordinator.on_message(make_message("hi", sender_id="technical-agent", kind=MessageKind.AGENT))

    participant = store.get_or_create("conv-1").participants["technical-agent"]
    assert participant.display_name == "Technical Agent"
    assert participant.capabilities == frozenset({"code"})
    assert participant.personality == "technical"

    stats = coordinator.get_stats()
    assert stats["participants_registered"] == 1
    assert stats["participants_discovered"] == 0
    assert stats["messages_processed"] == 1


@pytest.mark.unit
def test_stats_delegates_to_store(coordinator):
    coordinator.on_message(make_message("one", sender_id="a"))
    coordinator.on_message(make_message("two", sender_id="b"))

    stats = coordinator.stats("conv-1")

    assert stats.message_count == 2
    assert stats.participant_count == 2
