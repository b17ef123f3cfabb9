"""
Shared test helpers.
"""
import asyncio
from typing import List, Optional, Sequence

import pytest

from chorus.exceptions import GenerationError
from chorus.messages import Message, MessageKind


class ScriptedRandom:
    """Deterministic random source: returns scripted draws, then `default`."""

    def __init__(self, *values: float, default: float = 0.0):
        self.values = list(values)
        self.default = default
        self.calls = 0

    def random(self) -> float:
        self.calls += 1
        if self.values:
            return self.values.pop(0)
        return self.default


class MockTextGenerator:
    """Records generate() calls and returns a fixed reply."""

    def __init__(self, reply: str = "Sounds good!", error: Optional[Exception] = None):
        self.reply = reply
        self.error = error
        self.calls: List[tuple] = []

    async def generate(self, prompt, context: Sequence[Message]) -> str:
        self.calls.append((prompt, list(context)))
        if self.error is not None:
            raise self.error
        return self.reply


class BlockingTextGenerator:
    """Blocks inside generate() until released, to observe the COMPOSING state."""

    def __init__(self, reply: str = "Finally done thinking."):
        self.reply = reply
        self.entered = asyncio.Event()
        self.release = asyncio.Event()

    async def generate(self, prompt, context: Sequence[Message]) -> str:
        self.entered.set()
        await self.release.wait()
        return self.reply


class FailingTextGenerator:
    async def generate(self, prompt, context: Sequence[Message]) -> str:
        raise GenerationError("backend unavailable")


def make_message(
    text: str = "",
    sender_id: str = "user-1",
    kind: MessageKind = MessageKind.USER,
    conversation_id: str = "conv-1",
    **kwargs
) -> Message:
    return Message(kind=kind, text=text, sender_id=sender_id, conversation_id=conversation_id, **kwargs)


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.01):
    """Poll until predicate() is truthy or fail the test."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            pytest.fail("condition not met before timeout")
        await asyncio.sleep(interval)
