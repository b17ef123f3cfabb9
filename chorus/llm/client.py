"""
OpenAI Text Generation Module

Reply generation through the OpenAI chat completions API. Any
OpenAI-compatible server works (Ollama, vLLM, ...) by setting base_url.
Recent conversation turns are sent as "<sender>: <text>" chat messages,
with agent-authored turns in the assistant role.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

import openai
from openai import AsyncOpenAI

from chorus.exceptions import GenerationError
from chorus.llm.prompts import ReplyPrompt
from chorus.messages import Message, MessageKind


logger = logging.getLogger(__name__)


@dataclass
class LLMConfig:
    """Configuration for LLM operations."""
    model: str = "gpt-4o-mini"
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    max_tokens: int = 300
    temperature: float = 0.7
    top_p: float = 0.9
    timeout: float = 30.0
    max_retries: int = 2

    @classmethod
    def from_settings(cls, settings) -> "LLMConfig":
        return cls(
            model=settings.llm_model,
            api_key=settings.llm_api_key,
            base_url=settings.llm_base_url,
            max_tokens=settings.llm_max_tokens,
            timeout=settings.llm_timeout_seconds
        )


def render_context(prompt: ReplyPrompt, context: Sequence[Message]) -> List[Dict[str, str]]:
    """Chat messages for one reply request."""
    messages = [{"role": "system", "content": prompt.instruction}]

    for message in context:
        role = "assistant" if message.kind == MessageKind.AGENT else "user"
        messages.append({"role": role, "content": f"{message.author_label}: {message.text}"})

    messages.append({"role": "user", "content": prompt.request})
    return messages


class OpenAITextGenerator:
    """
    Async OpenAI client for agent replies.

    Failures of any kind surface as GenerationError, which the agent runtime
    treats as "no reply this time".
    """

    def __init__(self, config: Optional[LLMConfig] = None, client: Optional[AsyncOpenAI] = None):
        """Initialize the OpenAI text generator."""
        self.config = config or LLMConfig()

        # Local OpenAI-compatible servers accept any key
        self.client = client or AsyncOpenAI(
            api_key=self.config.api_key or "not-needed",
            base_url=self.config.base_url,
            timeout=self.config.timeout,
            max_retries=self.config.max_retries
        )

        # Statistics tracking
        self.stats = {
            'total_requests': 0,
            'successful_requests': 0,
            'failed_requests': 0,
            'empty_responses': 0,
            'total_tokens_used': 0,
            'average_response_time': 0.0,
            'errors_by_type': {},
            'last_request_time': None
        }

    async def generate(self, prompt: ReplyPrompt, context: Sequence[Message]) -> str:
        """
        Generate a reply.

        Raises:
            GenerationError: on API failure or an empty completion
        """
        start_time = datetime.now()
        messages = render_context(prompt, context)

        try:
            response = await self.client.chat.completions.create(
                model=self.config.model,
                messages=messages,
                max_tokens=self.config.max_tokens,
                temperature=self.config.temperature,
                top_p=self.config.top_p
            )
        except openai.RateLimitError as e:
            logger.warning(f"⏱️ Rate limit hit: {e}")
            self._record_failure(e, start_time)
            raise GenerationError(f"Rate limited: {e}") from e
        except openai.AuthenticationError as e:
            logger.error(f"🔐 Authentication failed: {e}")
            self._record_failure(e, start_time)
            raise GenerationError(f"Authentication failed: {e}") from e
        except openai.APITimeoutError as e:
            logger.warning(f"⏰ Request timeout: {e}")
            self._record_failure(e, start_time)
            raise GenerationError(f"Request timed out: {e}") from e
        except openai.OpenAIError as e:
            logger.error(f"❌ OpenAI API error: {e}")
            self._record_failure(e, start_time)
            raise GenerationError(f"OpenAI API error: {e}") from e

        content = ""
        if response.choices:
            content = (response.choices[0].message.content or "").strip()

        if not content:
            self.stats['empty_responses'] += 1
            self._record_failure(GenerationError("empty completion"), start_time)
            raise GenerationError("Model returned an empty completion")

        self._record_success(start_time, response)
        logger.debug(f"✅ Generated reply for {prompt.agent_name} ({len(content)} chars)")
        return content

    def _record_success(self, start_time: datetime, response: Any):
        response_time = (datetime.now() - start_time).total_seconds()
        self.stats['total_requests'] += 1
        self.stats['successful_requests'] += 1
        self.stats['last_request_time'] = datetime.now().isoformat()

        total_successful = self.stats['successful_requests']
        current_avg = self.stats['average_response_time']
        self.stats['average_response_time'] = (
            (current_avg * (total_successful - 1) + response_time) / total_successful
        )

        usage = getattr(response, "usage", None)
        if usage is not None and getattr(usage, "total_tokens", None):
            self.stats['total_tokens_used'] += usage.total_tokens

    def _record_failure(self, error: Exception, start_time: datetime):
        self.stats['total_requests'] += 1
        self.stats['failed_requests'] += 1
        self.stats['last_request_time'] = datetime.now().isoformat()

        error_name = type(error).__name__
        self.stats['errors_by_type'][error_name] = self.stats['errors_by_type'].get(error_name, 0) + 1

    async def health_check(self) -> Dict[str, Any]:
        """Perform a health check of the model backend."""
        try:
            await self.client.models.list()
            return {
                'status': 'healthy',
                'model': self.config.model,
                'api_accessible': True
            }
        except Exception as e:
            return {
                'status': 'unhealthy',
                'model': self.config.model,
                'error': str(e),
                'api_accessible': False
            }

    def get_stats(self) -> Dict[str, Any]:
        """Get client statistics."""
        return self.stats.copy()
