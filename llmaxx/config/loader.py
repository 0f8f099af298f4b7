"""Load configuration from YAML and environment variables. API keys come from env only."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from llmaxx.core.types import GenerationOptions

# Default config lives next to this module
_DEFAULT_CONFIG_PATH = Path(__file__).parent / "default.yaml"


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


class _TimeoutsMixin(BaseSettings):
    timeout: float = 30.0
    status_timeout: float = 3.0

    @model_validator(mode="after")
    def _status_probe_is_shorter(self) -> "_TimeoutsMixin":
        if self.status_timeout >= self.timeout:
            raise ValueError("status_timeout must be shorter than timeout")
        return self


class ClientSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="LLMAXX_", extra="ignore")
    active_provider: str = "ollama"


class DefaultsSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="LLMAXX_DEFAULT_", extra="ignore")
    model: str = "llama2"
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    top_p: float = Field(default=0.9, ge=0.0, le=1.0)
    max_tokens: int = Field(default=2048, gt=0)

    def to_options(self) -> GenerationOptions:
        return GenerationOptions(
            model=self.model,
            temperature=self.temperature,
            top_p=self.top_p,
            max_tokens=self.max_tokens,
        )


class OllamaSettings(_TimeoutsMixin):
    model_config = SettingsConfigDict(env_prefix="OLLAMA_", extra="ignore")
    base_url: str = "http://localhost:11434"
    pull_timeout: float = 600.0


class OpenAISettings(_TimeoutsMixin):
    model_config = SettingsConfigDict(env_prefix="OPENAI_", extra="ignore")
    base_url: str = "https://api.openai.com/v1"
    api_key: str = Field(default="", alias="OPENAI_API_KEY")


class AnthropicSettings(_TimeoutsMixin):
    model_config = SettingsConfigDict(env_prefix="ANTHROPIC_", extra="ignore")
    base_url: str = "https://api.anthropic.com/v1"
    api_key: str = Field(default="", alias="ANTHROPIC_API_KEY")


class GoogleSettings(_TimeoutsMixin):
    model_config = SettingsConfigDict(env_prefix="GOOGLE_", extra="ignore")
    base_url: str = "https://generativelanguage.googleapis.com/v1"
    api_key: str = Field(default="", alias="GOOGLE_API_KEY")


class LoggingSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="LOG_", extra="ignore")
    level: str = "INFO"
    use_json: bool = True


class Config(BaseSettings):
    """Application config: YAML + env. Secrets from env only."""

    model_config = SettingsConfigDict(env_nested_delimiter="__", extra="ignore")

    client: ClientSettings = Field(default_factory=ClientSettings)
    defaults: DefaultsSettings = Field(default_factory=DefaultsSettings)
    ollama: OllamaSettings = Field(default_factory=OllamaSettings)
    openai: OpenAISettings = Field(default_factory=OpenAISettings)
    anthropic: AnthropicSettings = Field(default_factory=AnthropicSettings)
    google: GoogleSettings = Field(default_factory=GoogleSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def load(cls, config_path: str | Path | None = None) -> "Config":
        path = Path(config_path) if config_path else _DEFAULT_CONFIG_PATH
        yaml_data = _load_yaml(path)
        env_prefix = os.getenv("LLMAXX_ENV_PREFIX", "")
        if env_prefix:
            yaml_data = _deep_merge(yaml_data, _load_yaml(Path(f"config/{env_prefix}.yaml")))
        base_url = os.getenv("OLLAMA_BASE_URL")
        if base_url:
            yaml_data.setdefault("ollama", {})["base_url"] = base_url
        active = os.getenv("LLMAXX_ACTIVE_PROVIDER")
        if active:
            yaml_data.setdefault("client", {})["active_provider"] = active
        for section, var in (
            ("openai", "OPENAI_API_KEY"),
            ("anthropic", "ANTHROPIC_API_KEY"),
            ("google", "GOOGLE_API_KEY"),
        ):
            key = os.getenv(var)
            if key:
                yaml_data.setdefault(section, {})[var] = key
        return cls(**yaml_data)


def get_config(config_path: str | Path | None = None) -> Config:
    return Config.load(config_path)
