"""
Configuration schema using Pydantic v2.
"""

from pathlib import Path

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AgentConfig(BaseModel):
    """Defaults for the agent turn loop."""

    model: str = "gpt-4o-mini"
    max_iterations: int = 20
    max_tokens: int = 4096
    temperature: float = 0.7
    memory_window: int = 50
    # Prior user messages replayed into each turn. 0 sends only the current one.
    history_messages: int = 0
    subagent_max_iterations: int = 15


class ProviderConfig(BaseModel):
    """
    OpenAI-compatible LLM endpoint.

    Works with OpenAI itself or any compatible proxy
    (OpenRouter, LiteLLM, vLLM, Ollama).
    """

    api_key: str = ""
    api_base: str = "https://api.openai.com/v1"
    timeout_s: float = 120.0


class ExecToolConfig(BaseModel):
    """Shell tool configuration."""

    timeout: int = 60
    deny_patterns: list[str] | None = None  # None = built-in safety patterns
    allow_patterns: list[str] = Field(default_factory=list)


class WebToolsConfig(BaseModel):
    """Web search/fetch tool configuration."""

    search_api_key: str = ""  # Brave Search API key
    max_results: int = 5
    fetch_max_chars: int = 50_000


class ToolsConfig(BaseModel):
    """Tool configuration."""

    restrict_to_workspace: bool = False
    exec: ExecToolConfig = Field(default_factory=ExecToolConfig)
    web: WebToolsConfig = Field(default_factory=WebToolsConfig)
    # Extra regexes for detecting "I have no tools" replies
    no_tools_patterns: list[str] = Field(default_factory=list)


class BusConfig(BaseModel):
    """Message bus configuration."""

    capacity: int = 1024


class GatewayConfig(BaseModel):
    """Gateway services: health endpoint, heartbeat and cron cadence."""

    host: str = "0.0.0.0"
    port: int = 18790
    heartbeat_interval_s: int = 30 * 60
    cron_interval_s: int = 60


class TelegramConfig(BaseModel):
    """Telegram channel configuration."""

    enabled: bool = False
    token: str = ""
    allow_from: list[str] = Field(default_factory=list)


class ChannelConfigs(BaseModel):
    """All channel configurations."""

    telegram: TelegramConfig = Field(default_factory=TelegramConfig)


class Config(BaseSettings):
    """
    Root configuration.

    Loads from ~/.tidebot/config.json and environment variables
    with TIDEBOT_ prefix (nested with __, e.g. TIDEBOT_PROVIDER__API_KEY).
    """

    workspace: Path = Field(default=Path("~/.tidebot/workspace"))
    agent: AgentConfig = Field(default_factory=AgentConfig)
    provider: ProviderConfig = Field(default_factory=ProviderConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    bus: BusConfig = Field(default_factory=BusConfig)
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    channels: ChannelConfigs = Field(default_factory=ChannelConfigs)

    model_config = SettingsConfigDict(
        env_prefix="TIDEBOT_",
        env_nested_delimiter="__",
    )

    @field_validator("workspace")
    @classmethod
    def expand_workspace(cls, v: str) -> Path:
        """Expand ~ in workspace path."""
        return Path(v).expanduser().resolve()
