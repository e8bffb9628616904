"""Configuration loader with YAML parsing, env-var interpolation, and Pydantic validation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field


class AssistantConfig(BaseModel):
    name: str = "Assistant"
    personality: str = "helpful, precise and friendly"
    language: str = "en"
    model: str = ""
    max_tokens: int = 2000
    temperature: float = 0.6
    chat_history: int = 10  # number of remembered turns, 0 disables history
    max_retries: int = 3
    retry_delay: float = 15
    debug_output: bool = False
    max_chain_depth: int = 10  # 0 = unbounded
    clear_history_delay: float = 3


class ModelConfig(BaseModel):
    name: str
    provider: str = "anthropic"
    active: bool = True


class AnthropicConfig(BaseModel):
    api_key: str = ""
    base_url: Optional[str] = None
    max_retries: int = 0  # retries are driven by the orchestrator
    timeout: int = 120


class EndpointConfig(BaseModel):
    name: str
    obj_id: str
    sort: str = "General"
    active: bool = True


class FunctionConfig(BaseModel):
    """An externally implemented tool reached through two value slots."""

    name: str
    description: str = ""
    request_id: str
    result_id: str


class ExternalToolsConfig(BaseModel):
    poll_interval: float = 1.0
    poll_attempts: int = 60


class SchedulerServiceConfig(BaseModel):
    timezone: str = "UTC"


class StorageConfig(BaseModel):
    db_path: str = "./data/ai_assistant.db"


class AppConfig(BaseModel):
    log_level: str = "INFO"
    log_format: str = "console"  # console | json
    data_dir: str = "./data"
    assistant: AssistantConfig = Field(default_factory=AssistantConfig)
    models: list[ModelConfig] = Field(default_factory=list)
    anthropic: Optional[AnthropicConfig] = None
    available_endpoints: list[EndpointConfig] = Field(default_factory=list)
    available_functions: list[FunctionConfig] = Field(default_factory=list)
    external_tools: ExternalToolsConfig = Field(default_factory=ExternalToolsConfig)
    scheduler: SchedulerServiceConfig = Field(default_factory=SchedulerServiceConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)

    def find_model(self, name: str) -> ModelConfig | None:
        """Return the active model entry called *name*, if any."""
        for model in self.models:
            if model.name == name and model.active:
                return model
        return None


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
    data_dir = raw_data.get("data_dir", "./data")
    data_dir = _interpolate_env_vars(data_dir)

    # Second pass: interpolate all env vars
    interpolated = _interpolate_env_vars(raw_text, extra={"data_dir": data_dir})
    data = yaml.safe_load(interpolated) or {}

    return AppConfig(**data)
