"""
Configuration management for Chorus.
Handles environment variables, the agent roster and configuration validation.
"""
import json
import logging
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, TypeAdapter
from pydantic_settings import BaseSettings, SettingsConfigDict

from chorus.orchestrator.arbiter import AgentProfile


# Load environment variables from .env file if present
load_dotenv()


logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings with environment variable support."""
    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    # Stream Configuration
    chat_topic: str = "chat-messages"
    default_conversation_id: str = "main-conversation"
    bus_max_queue_size: int = 1000

    # Logging Configuration
    log_level: str = "INFO"

    # Admin API Configuration
    admin_api_host: str = "127.0.0.1"
    admin_api_port: int = 8080

    # LLM Configuration
    llm_provider: str = "template"  # "template", "echo" or "openai"
    llm_api_key: Optional[str] = None
    llm_model: str = "gpt-4o-mini"
    llm_base_url: Optional[str] = None  # e.g. http://localhost:11434/v1 for Ollama
    llm_timeout_seconds: float = 30.0
    llm_max_tokens: int = 300

    # Decision Configuration
    overhear_chance: float = 0.3
    history_window: int = 5
    max_recent_replies: int = 2
    context_window: int = 20

    # Pacing Configuration
    pacing_base_seconds: float = 3.0
    pacing_jitter: float = 0.25

    # Agent roster (JSON file); the built-in roster is used when unset
    agents_file: Optional[str] = None


class AgentConfig(BaseModel):
    """One entry of the agent roster."""
    id: str = Field(..., min_length=1)
    name: str = ""
    personality: Optional[str] = None
    interests: List[str] = Field(default_factory=list)
    response_probability: float = Field(0.7, ge=0.0, le=1.0)
    enabled: bool = True
    description: Optional[str] = None

    def to_profile(self) -> AgentProfile:
        return AgentProfile(
            id=self.id,
            display_name=self.name or self.id,
            capabilities=tuple(self.interests),
            personality=self.personality,
            base_response_probability=self.response_probability
        )


DEFAULT_AGENT_ROSTER: List[AgentConfig] = [
    AgentConfig(
        id="curious-agent",
        name="Curious Agent",
        personality="curious",
        interests=["questions", "learning", "discovery", "science", "philosophy"]
    ),
    AgentConfig(
        id="helpful-agent",
        name="Helpful Agent",
        personality="helpful",
        interests=["help", "support", "guidance", "problem-solving", "assistance"]
    ),
    AgentConfig(
        id="technical-agent",
        name="Technical Agent",
        personality="technical",
        interests=["programming", "technology", "software", "engineering", "code"]
    ),
    AgentConfig(
        id="philosophical-agent",
        name="Philosophical Agent",
        personality="philosophical",
        interests=["philosophy", "meaning", "existence", "truth", "reality", "ethics"]
    ),
]

_roster_adapter = TypeAdapter(List[AgentConfig])


def load_agent_roster(path: Optional[str] = None) -> List[AgentConfig]:
    """
    Load the enabled agents.

    The file is either a JSON list of agent entries or an object with an
    "agents" list. Without a path the built-in roster is returned.
    """
    if not path:
        return [agent for agent in DEFAULT_AGENT_ROSTER if agent.enabled]

    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if isinstance(data, dict):
        data = data.get("agents", [])

    agents = _roster_adapter.validate_python(data)

    ids = [agent.id for agent in agents]
    duplicates = sorted({agent_id for agent_id in ids if ids.count(agent_id) > 1})
    if duplicates:
        raise ValueError(f"Duplicate agent ids in roster: {duplicates}")

    enabled = [agent for agent in agents if agent.enabled]
    logger.info(f"Loaded {len(enabled)} enabled agents from {path}")
    return enabled


def get_settings() -> Settings:
    """Get application settings instance."""
    return Settings()


def validate_configuration(settings: Optional[Settings] = None) -> Settings:
    """Validate all configuration settings on startup."""
    settings = settings or get_settings()

    # Validate log level
    valid_log_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    if settings.log_level.upper() not in valid_log_levels:
        raise ValueError(f"Invalid log level: {settings.log_level}")

    # Validate LLM provider
    if settings.llm_provider not in ["template", "echo", "openai"]:
        raise ValueError(f"Unsupported LLM provider: {settings.llm_provider}")

    if settings.llm_provider == "openai" and not settings.llm_api_key and not settings.llm_base_url:
        raise ValueError("LLM_API_KEY is required when LLM_PROVIDER is openai")

    # Validate decision parameters
    if not 0.0 <= settings.overhear_chance <= 1.0:
        raise ValueError(f"overhear_chance must be within [0, 1]: {settings.overhear_chance}")
    if not 0.0 <= settings.pacing_jitter <= 1.0:
        raise ValueError(f"pacing_jitter must be within [0, 1]: {settings.pacing_jitter}")
    if settings.pacing_base_seconds < 0:
        raise ValueError(f"pacing_base_seconds must not be negative: {settings.pacing_base_seconds}")
    if settings.history_window < 0 or settings.max_recent_replies < 1:
        raise ValueError("history_window must be >= 0 and max_recent_replies >= 1")

    if not settings.chat_topic or not settings.default_conversation_id:
        raise ValueError("chat_topic and default_conversation_id are required")

    return settings
