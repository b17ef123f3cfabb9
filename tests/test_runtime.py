"""
Async tests for agent runtimes and the agent manager, wired over the
in-process bus.
"""
import asyncio
from typing import List

import pytest

from chorus.conversation import ConversationStore, FlowCoordinator
from chorus.infra.bus import MessageBus
from chorus.ingest.ingress import IngressConsumer
from chorus.messages import Message, MessageKind
from chorus.orchestrator import (
    AgentManager,
    AgentProfile,
    AgentRuntime,
    AgentState,
    PacingPolicy,
    ResponseArbiter,
)
from tests.helpers import (
    BlockingTextGenerator,
    FailingTextGenerator,
    MockTextGenerator,
    ScriptedRandom,
    make_message,
    wait_until,
)


TOPIC = "chat-messages"


class GateTextGenerator:
    """Holds every caller in generate() until released."""

    def __init__(self):
        self.waiting = 0
        self.release = asyncio.Event()

    async def generate(self, prompt, context) -> str:
        self.waiting += 1
        await self.release.wait()
        return f"{prompt.agent_name} checking in"


def _arbiter() -> ResponseArbiter:
    # probability draws always pass, nothing is overheard
    return ResponseArbiter(rng=ScriptedRandom(default=0.0), overhear_chance=0.0)


def _no_pacing() -> PacingPolicy:
    return PacingPolicy(base_seconds=0.0, jitter=0.0)


def _runtime(store, generator, agent_id="technical-agent", pacing=None, **profile_overrides) -> AgentRuntime:
    profile = AgentProfile(
        id=agent_id,
        display_name=profile_overrides.pop("display_name", agent_id.replace("-", " ").title()),
        capabilities=profile_overrides.pop("capabilities", ("code",)),
        base_response_probability=profile_overrides.pop("base_response_probability", 1.0),
        **profile_overrides
    )
    return AgentRuntime(profile, store, _arbiter(), generator, pacing=pacing or _no_pacing())


def _agent_messages(store: ConversationStore, conversation_id: str = "conv-1") -> List[Message]:
    return [m for m in store.recent(conversation_id, 100) if m.kind == MessageKind.AGENT]


async def _start_system():
    bus = MessageBus()
    await bus.start()
    store = ConversationStore()
    ingress = IngressConsumer(bus, FlowCoordinator(store), TOPIC)
    ingress.start()
    return bus, store, ingress


async def _shutdown(bus, store, ingress, *runtimes):
    for runtime in runtimes:
        await runtime.stop()
    await ingress.stop()
    await bus.stop()
    store.close()


@pytest.mark.unit
def test_pacing_policy_scales_by_personality():
    pacing = PacingPolicy(base_seconds=2.0, personality_scale={"philosophical": 1.5},
                          jitter=0.25, rng=ScriptedRandom(0.5, 0.0, 0.999999))

    assert pacing.delay_for("philosophical") == pytest.approx(3.0)
    assert pacing.delay_for("unknown") == pytest.approx(1.5)
    assert pacing.delay_for(None) == pytest.approx(2.5, rel=1e-3)


@pytest.mark.unit
def test_pacing_policy_never_negative():
    pacing = PacingPolicy(base_seconds=1.0, jitter=1.0, rng=ScriptedRandom(0.0))

    assert pacing.delay_for(None) == 0.0


@pytest.mark.asyncio
async def test_reply_is_published_with_addressing_fields():
    bus, store, ingress = await _start_system()
    generator = MockTextGenerator("Happy to look at that code.")
    runtime = _runtime(store, generator)
    runtime.start(bus, TOPIC)

    trigger = make_message("Can someone review my code?", sender_id="alice", display_name="Alice")
    await bus.publish(TOPIC, trigger)

    await wait_until(lambda: len(_agent_messages(store)) == 1)
    reply = _agent_messages(store)[0]

    assert reply.sender_id == "technical-agent"
    assert reply.display_name == "Technical Agent"
    assert reply.reply_to == "alice"
    assert reply.conversation_id == trigger.conversation_id
    assert reply.text == "Happy to look at that code."

    prompt, context = generator.calls[0]
    assert prompt.trigger == trigger
    assert trigger.id in [m.id for m in context]

    await _shutdown(bus, store, ingress, runtime)


@pytest.mark.asyncio
async def test_agent_never_replies_to_itself():
    bus, store, ingress = await _start_system()
    # the reply itself mentions "code", which would otherwise be relevant
    runtime = _runtime(store, MockTextGenerator("More code talk."))
    runtime.start(bus, TOPIC)

    await bus.publish(TOPIC, make_message("Talk to me about code", sender_id="alice"))

    await wait_until(lambda: len(_agent_messages(store)) == 1)
    await wait_until(lambda: runtime.get_stats()["messages_evaluated"] == 2)
    await asyncio.sleep(0.05)

    assert len(_agent_messages(store)) == 1
    assert runtime.get_stats()["suppressed_by_reason"] == {"self_message": 1}

    await _shutdown(bus, store, ingress, runtime)


@pytest.mark.asyncio
async def test_two_agents_compose_and_publish_concurrently():
    bus, store, ingress = await _start_system()
    gate = GateTextGenerator()
    alpha = _runtime(store, gate, agent_id="alpha-agent")
    beta = _runtime(store, gate, agent_id="beta-agent")
    alpha.start(bus, TOPIC)
    beta.start(bus, TOPIC)

    await bus.publish(TOPIC, make_message("Any thoughts on this code?", sender_id="alice"))

    await wait_until(lambda: gate.waiting == 2)
    assert alpha.state == AgentState.COMPOSING
    assert beta.state == AgentState.COMPOSING

    gate.release.set()

    await wait_until(lambda: len(_agent_messages(store)) == 2)
    assert {m.sender_id for m in _agent_messages(store)} == {"alpha-agent", "beta-agent"}

    # replies do not mention "code", so nothing further is triggered
    await asyncio.sleep(0.05)
    assert len(_agent_messages(store)) == 2

    await _shutdown(bus, store, ingress, alpha, beta)


@pytest.mark.asyncio
async def test_stop_while_composing_publishes_nothing():
    bus, store, ingress = await _start_system()
    generator = BlockingTextGenerator()
    runtime = _runtime(store, generator)
    runtime.start(bus, TOPIC)

    await bus.publish(TOPIC, make_message("code question", sender_id="alice"))
    await asyncio.wait_for(generator.entered.wait(), timeout=2.0)
    assert runtime.state == AgentState.COMPOSING

    await runtime.stop()
    generator.release.set()
    await asyncio.sleep(0.05)

    assert runtime.state == AgentState.STOPPED
    assert runtime.get_stats()["replies_published"] == 0
    assert _agent_messages(store) == []

    await _shutdown(bus, store, ingress, runtime)


@pytest.mark.asyncio
async def test_stop_interrupts_pacing_delay():
    bus, store, ingress = await _start_system()
    generator = MockTextGenerator()
    runtime = _runtime(store, generator, pacing=PacingPolicy(base_seconds=30.0, jitter=0.0))
    runtime.start(bus, TOPIC)

    await bus.publish(TOPIC, make_message("code question", sender_id="alice"))
    await wait_until(lambda: runtime.get_stats()["messages_evaluated"] == 1)

    await asyncio.wait_for(runtime.stop(), timeout=2.0)

    assert generator.calls == []
    assert _agent_messages(store) == []

    await _shutdown(bus, store, ingress, runtime)


@pytest.mark.asyncio
async def test_generation_failure_means_no_reply():
    bus, store, ingress = await _start_system()
    runtime = _runtime(store, FailingTextGenerator())
    runtime.start(bus, TOPIC)

    await bus.publish(TOPIC, make_message("code question", sender_id="alice"))
    await wait_until(lambda: runtime.get_stats()["generation_failures"] == 1)
    await wait_until(lambda: runtime.state == AgentState.IDLE)

    assert _agent_messages(store) == []
    assert runtime.get_stats()["replies_published"] == 0

    await _shutdown(bus, store, ingress, runtime)


@pytest.mark.asyncio
async def test_reply_to_another_agent_does_not_address_it():
    bus, store, ingress = await _start_system()
    alpha = _runtime(store, MockTextGenerator("Sounds good!"), agent_id="alpha-agent", capabilities=("code",))
    beta = _runtime(store, MockTextGenerator("Nice weather."), agent_id="beta-agent", capabilities=("zzz",))
    alpha.start(bus, TOPIC)
    beta.start(bus, TOPIC)

    await bus.publish(TOPIC, make_message("code stuff", sender_id="beta-agent", kind=MessageKind.AGENT))

    await wait_until(lambda: len(_agent_messages(store)) == 2)
    await wait_until(lambda: beta.get_stats()["messages_evaluated"] == 2)
    await asyncio.sleep(0.05)

    replies = [m for m in _agent_messages(store) if m.sender_id == "alpha-agent"]
    assert len(replies) == 1
    assert replies[0].reply_to is None
    assert beta.get_stats()["replies_published"] == 0
    assert beta.get_stats()["suppressed_by_reason"] == {"self_message": 1, "not_relevant": 1}

    await _shutdown(bus, store, ingress, alpha, beta)


@pytest.mark.asyncio
async def test_unexpected_generator_error_counts_as_generation_failure():
    bus, store, ingress = await _start_system()
    runtime = _runtime(store, MockTextGenerator(error=RuntimeError("plugin bug")))
    runtime.start(bus, TOPIC)

    await bus.publish(TOPIC, make_message("code question", sender_id="alice"))
    await wait_until(lambda: runtime.get_stats()["generation_failures"] == 1)
    await wait_until(lambda: runtime.state == AgentState.IDLE)

    assert _agent_messages(store) == []
    assert runtime.get_stats()["consumer"]["handler_errors"] == 0

    await _shutdown(bus, store, ingress, runtime)


@pytest.mark.asyncio
async def test_empty_generated_text_means_no_reply():
    bus, store, ingress = await _start_system()
    runtime = _runtime(store, MockTextGenerator("   "))
    runtime.start(bus, TOPIC)

    await bus.publish(TOPIC, make_message("code question", sender_id="alice"))
    await wait_until(lambda: runtime.get_stats()["generation_failures"] == 1)

    assert _agent_messages(store) == []

    await _shutdown(bus, store, ingress, runtime)


@pytest.mark.asyncio
async def test_reply_cap_is_rechecked_after_pacing():
    bus = MessageBus()
    await bus.start()
    store = ConversationStore()
    generator = MockTextGenerator()
    runtime = _runtime(store, generator, pacing=PacingPolicy(base_seconds=0.2, jitter=0.0))
    runtime.start(bus, TOPIC)

    own = lambda: make_message("earlier reply", sender_id="technical-agent", kind=MessageKind.AGENT)
    store.append("conv-1", own())

    await bus.publish(TOPIC, make_message("code question", sender_id="alice"))
    await wait_until(lambda: runtime.get_stats()["messages_evaluated"] == 1)

    # a second reply lands while the agent is pacing
    store.append("conv-1", own())

    await wait_until(lambda: runtime.get_stats()["dropped_after_pacing"] == 1)
    assert generator.calls == []
    assert runtime.get_stats()["replies_published"] == 0

    await runtime.stop()
    await bus.stop()
    store.close()


@pytest.mark.asyncio
async def test_stopped_runtime_cannot_restart():
    bus = MessageBus()
    await bus.start()
    store = ConversationStore()
    runtime = _runtime(store, MockTextGenerator())
    runtime.start(bus, TOPIC)

    await runtime.stop()
    await runtime.stop()

    with pytest.raises(RuntimeError):
        runtime.start(bus, TOPIC)

    await bus.stop()
    store.close()


@pytest.mark.asyncio
async def test_agent_manager_lifecycle():
    bus = MessageBus()
    await bus.start()
    store = ConversationStore()
    manager = AgentManager()
    alpha = _runtime(store, MockTextGenerator(), agent_id="alpha-agent")
    beta = _runtime(store, MockTextGenerator(), agent_id="beta-agent")

    manager.register(alpha)
    manager.register(beta)
    with pytest.raises(ValueError):
        manager.register(_runtime(store, MockTextGenerator(), agent_id="alpha-agent"))

    assert manager.get("beta-agent") is beta
    assert manager.get("missing") is None
    assert [r.agent_id for r in manager.list()] == ["alpha-agent", "beta-agent"]

    manager.start_all(bus, TOPIC)
    assert manager.running is True
    assert bus.groups(TOPIC) == ["agent-alpha-agent", "agent-beta-agent"]

    await manager.stop_all()
    assert manager.running is False
    assert all(r.state == AgentState.STOPPED for r in manager.list())
    assert bus.groups(TOPIC) == []

    await bus.stop()
    store.close()
