"""Configuration management for the LLM Gateway.

Supports YAML configuration files and environment variable overrides.
Configuration is loaded once and cached.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class OllamaSettings(BaseSettings):
    """Ollama backend configuration."""
    base_url: str = Field(default="http://localhost:11434")
    default_model: str = Field(default="gemma2:2b")
    timeout_seconds: float = Field(default=120.0, gt=0)

    model_config = SettingsConfigDict(
        env_prefix="OLLAMA_",
        env_file=".env",
        extra="ignore"
    )


class OpenAISettings(BaseSettings):
    """OpenAI-compatible backend configuration."""
    base_url: str = Field(default="https://api.openai.com")
    api_key: Optional[str] = Field(default=None, description="Bearer token")
    default_model: str = Field(default="gpt-3.5-turbo")
    timeout_seconds: float = Field(default=60.0, gt=0)

    # Sampling parameters sent with every completion
    temperature: float = Field(default=0.7, ge=0, le=2)
    top_p: float = Field(default=0.95, gt=0, le=1)
    max_tokens: int = Field(default=1000, gt=0)
    presence_penalty: float = Field(default=0.0, ge=-2, le=2)
    frequency_penalty: float = Field(default=0.0, ge=-2, le=2)

    model_config = SettingsConfigDict(
        env_prefix="OPENAI_",
        env_file=".env",
        extra="ignore"
    )


class GatewaySettings(BaseSettings):
    """HTTP gateway and session configuration."""
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)
    backends: list[str] = Field(
        default_factory=lambda: ["ollama", "openai"],
        description="Backends to register at startup"
    )

    # Sessions live for the process lifetime unless a TTL is set
    session_ttl_minutes: Optional[int] = Field(default=None, gt=0)
    cleanup_interval_seconds: int = Field(default=300, gt=0)

    model_config = SettingsConfigDict(
        env_prefix="GATEWAY_",
        env_file=".env",
        extra="ignore"
    )


class Settings(BaseSettings):
    """Main application settings."""
    environment: str = Field(default="development")
    debug: bool = Field(default=False)
    log_level: str = Field(default="INFO")

    # Component settings
    ollama: OllamaSettings = Field(default_factory=OllamaSettings)
    openai: OpenAISettings = Field(default_factory=OpenAISettings)
    gateway: GatewaySettings = Field(default_factory=GatewaySettings)

    model_config = SettingsConfigDict(
        env_prefix="LLM_GATEWAY_",
        env_file=".env",
        extra="ignore"
    )

    @classmethod
    def from_yaml(cls, path: str | Path) -> "Settings":
        """Load settings from a YAML file."""
        return cls(**load_yaml_config(path))


def load_yaml_config(path: str | Path) -> dict[str, Any]:
    """Load a YAML configuration file."""
    path = Path(path)
    if not path.exists():
        return {}

    with open(path) as f:
        return yaml.safe_load(f) or {}


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    config_path = os.environ.get("LLM_GATEWAY_CONFIG_PATH", "config/settings.yaml")
    return Settings.from_yaml(config_path)
