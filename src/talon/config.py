"""Configuration loader with YAML parsing, env-var interpolation, and Pydantic validation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Literal, Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, model_validator

from talon.errors import ConfigError

DEFAULT_SYSTEM_PROMPT = (
    "You are Talon, a personal assistant. Be concise. "
    "Use tools when they help and explain tool failures plainly."
)


class AgentConfig(BaseModel):
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    max_iterations: int = Field(default=10, ge=1)
    max_output_tokens: int = 4096
    temperature: float = 0.7
    reserved_output_tokens: int = 4096  # subtracted from the context window when budgeting
    chars_per_token: float = 3.0
    keep_recent_messages: int = Field(default=10, ge=1)
    compression_threshold: int = 40  # raw message count that triggers compression
    summary_max_tokens: int = 800
    summary_max_chars: int = 4000
    tool_timeout: float = 30.0
    tools: list[str] = Field(default_factory=lambda: ["scratchpad", "clock"])


class ModelConfig(BaseModel):
    name: str
    cost_rank: int = 0  # lower is cheaper
    supports_tools: bool = True
    context_window: int = 128_000
    priority: Optional[int] = None  # defaults to declaration order


class ProviderConfig(BaseModel):
    id: str
    kind: Literal["anthropic", "openai"] = "openai"
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    timeout: float = 60.0
    models: list[ModelConfig] = Field(default_factory=list)

    @property
    def has_credentials(self) -> bool:
        return bool(self.api_key) and not self.api_key.startswith("${")


class RouterConfig(BaseModel):
    retry_backoff: float = 1.0  # seconds, doubled per same-route retry
    same_route_retries: int = Field(default=1, ge=0)


class StorageConfig(BaseModel):
    backend: Literal["sqlite", "memory"] = "sqlite"
    db_path: str = "./data/talon.db"


class ConsoleChannelConfig(BaseModel):
    enabled: bool = True
    sender_id: str = "local"


class ChannelsConfig(BaseModel):
    console: ConsoleChannelConfig = Field(default_factory=ConsoleChannelConfig)


class AppConfig(BaseModel):
    log_level: str = "INFO"
    log_format: Literal["console", "json"] = "console"
    data_dir: str = "./data"
    agent: AgentConfig = Field(default_factory=AgentConfig)
    providers: list[ProviderConfig] = Field(default_factory=list)
    router: RouterConfig = Field(default_factory=RouterConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    channels: ChannelsConfig = Field(default_factory=ChannelsConfig)

    @model_validator(mode="after")
    def _unique_provider_ids(self) -> AppConfig:
        ids = [p.id for p in self.providers]
        duplicates = sorted({i for i in ids if ids.count(i) > 1})
        if duplicates:
            raise ValueError(f"Duplicate provider ids: {', '.join(duplicates)}")
        return self


_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


def _interpolate_env_vars(text: str, extra: dict[str, str] | None = None) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        if extra and var_name in extra:
            return extra[var_name]
        value = os.environ.get(var_name)
        if value is None:
            return match.group(0)
        return value

    return _ENV_VAR_PATTERN.sub(_replace, text)


def load_config(config_path: str | Path = "config.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Load and validate configuration from YAML file with env-var interpolation."""
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    raw_text = config_file.read_text(encoding="utf-8")

    # First pass: extract data_dir for self-referencing
    raw_data = yaml.safe_load(raw_text) or {}
    data_dir = _interpolate_env_vars(str(raw_data.get("data_dir", "./data")))

    # Second pass: interpolate all env vars
    interpolated = _interpolate_env_vars(raw_text, extra={"data_dir": data_dir})
    data = yaml.safe_load(interpolated) or {}

    try:
        return AppConfig(**data)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration in {config_file}: {e}") from e
