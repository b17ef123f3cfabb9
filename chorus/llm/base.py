"""
Text generation capability.

Agents never talk to a model directly. They hand a ReplyPrompt and the recent
conversation to a TextGenerator and get back the reply text, or a
GenerationError meaning "no reply this time".
"""
import logging
from typing import Any, Dict, Optional, Protocol, Sequence

from chorus.exceptions import CircuitBreakerOpenError, GenerationError
from chorus.infra.error_handler import CircuitBreaker, CircuitBreakerConfig
from chorus.llm.prompts import ReplyPrompt
from chorus.messages import Message


logger = logging.getLogger(__name__)


class TextGenerator(Protocol):
    """Pluggable reply generator."""

    async def generate(self, prompt: ReplyPrompt, context: Sequence[Message]) -> str:
        """
        Produce reply text.

        Raises:
            GenerationError: when no usable text could be produced
        """
        ...


class ResilientTextGenerator:
    """
    Wraps a generator with a circuit breaker.

    While the breaker is open, calls fail fast with GenerationError instead of
    waiting on a backend that is known to be down.
    """

    def __init__(self, inner: TextGenerator, breaker_config: Optional[CircuitBreakerConfig] = None,
                 name: str = "text-generation"):
        self.inner = inner
        self.breaker = CircuitBreaker(breaker_config, name=name)

    async def generate(self, prompt: ReplyPrompt, context: Sequence[Message]) -> str:
        try:
            return await self.breaker.call(self.inner.generate, prompt, context)
        except CircuitBreakerOpenError as e:
            raise GenerationError(str(e)) from e

    def get_stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = {'circuit_breaker': self.breaker.get_stats()}
        inner_stats = getattr(self.inner, "get_stats", None)
        if callable(inner_stats):
            stats['generator'] = inner_stats()
        return stats
