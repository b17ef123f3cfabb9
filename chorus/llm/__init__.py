"""
Text Generation Package

Reply generation for agents: template and echo generators that need no backend, an
OpenAI-compatible client, prompt construction and a circuit-breaker wrapper.
"""

from .prompts import ReplyPrompt, build_prompt
from .base import TextGenerator, ResilientTextGenerator
from .templates import EchoTextGenerator, TemplateTextGenerator
from .client import LLMConfig, OpenAITextGenerator, render_context


def create_text_generator(settings) -> ResilientTextGenerator:
    """Build the configured generator, wrapped in a circuit breaker."""
    if settings.llm_provider == "openai":
        inner = OpenAITextGenerator(LLMConfig.from_settings(settings))
    elif settings.llm_provider == "echo":
        inner = EchoTextGenerator()
    elif settings.llm_provider == "template":
        inner = TemplateTextGenerator()
    else:
        raise ValueError(f"Unsupported LLM provider: {settings.llm_provider}")
    return ResilientTextGenerator(inner)


__all__ = [
    'ReplyPrompt',
    'build_prompt',
    'TextGenerator',
    'ResilientTextGenerator',
    'TemplateTextGenerator',
    'EchoTextGenerator',
    'LLMConfig',
    'OpenAITextGenerator',
    'render_context',
    'create_text_generator'
]
