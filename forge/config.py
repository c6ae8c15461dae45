"""Configuration loader — reads config.yaml, validates with Pydantic.

Generation parameters, upstream location and stream limits live in YAML.
The upstream credential is read from the environment only.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config.yaml"


class RateLimitConfig(BaseModel):
    """Declared limits. Not enforced by the relay."""

    requests_per_minute: int = 60
    requests_per_hour: int = 1000


class UpstreamConfig(BaseModel):
    """Where the chat completion provider lives and how to reach it."""

    base_url: str = "https://api.cerebras.ai/v1"
    chat_path: str = "/chat/completions"
    api_key_env: str = "CEREBRAS_API_KEY"
    timeout: float = 60.0
    retries: int = 3  # declared only, no retry is performed
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)

    @property
    def url(self) -> str:
        return self.base_url.rstrip("/") + "/" + self.chat_path.lstrip("/")


class GenerationConfig(BaseModel):
    """Fixed sampling parameters sent with every completion request."""

    model: str = "gpt-oss-120b"
    temperature: float = 1.0
    top_p: float = 1.0
    max_completion_tokens: int = 65536
    reasoning_effort: str | None = "medium"

    @field_validator("temperature")
    @classmethod
    def temperature_in_range(cls, v: float) -> float:
        if not 0 <= v <= 2:
            raise ValueError("temperature must be between 0 and 2")
        return v

    @field_validator("top_p")
    @classmethod
    def top_p_in_range(cls, v: float) -> float:
        if not 0 < v <= 1:
            raise ValueError("top_p must be in (0, 1]")
        return v


class StreamConfig(BaseModel):
    max_pending_line_bytes: int = 1024 * 1024

    @field_validator("max_pending_line_bytes")
    @classmethod
    def must_be_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("max_pending_line_bytes must be positive")
        return v


class PromptConfig(BaseModel):
    max_length: int = 2000


class PreviewConfig(BaseModel):
    debounce_seconds: float = 0.3


class ForgeConfig(BaseModel):
    """Top-level Forge configuration."""

    upstream: UpstreamConfig = Field(default_factory=UpstreamConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)
    stream: StreamConfig = Field(default_factory=StreamConfig)
    prompt: PromptConfig = Field(default_factory=PromptConfig)
    preview: PreviewConfig = Field(default_factory=PreviewConfig)

    # CORS
    allowed_origins: list[str] = ["*"]

    def api_key(self) -> str | None:
        """Return the upstream credential from the environment, or None if unset."""
        value = os.environ.get(self.upstream.api_key_env, "").strip()
        return value or None


# ---------------------------------------------------------------------------
# Module-level config cache
# ---------------------------------------------------------------------------

_config: ForgeConfig | None = None
_config_path: str = DEFAULT_CONFIG_PATH


def default_config_path() -> str:
    return os.environ.get("FORGE_CONFIG", DEFAULT_CONFIG_PATH)


def load_config(path: str | None = None) -> ForgeConfig:
    """Read the YAML config from disk, validate, and cache.

    A missing file is not an error: defaults are used.
    """
    global _config, _config_path
    _config_path = path or default_config_path()

    config_file = Path(_config_path)
    if config_file.exists():
        raw = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
        _config = ForgeConfig(**raw)
        logger.info(
            f"Loaded config from {config_file}: "
            f"model={_config.generation.model}, upstream={_config.upstream.base_url}"
        )
    else:
        logger.info(f"Config file {config_file} not found, using defaults")
        _config = ForgeConfig()
    return _config


def get_config() -> ForgeConfig:
    """Return cached config, loading it on first use."""
    if _config is None:
        return load_config()
    return _config


def reload_config() -> ForgeConfig:
    """Re-read config from the last loaded path."""
    logger.info(f"Reloading config from {_config_path}")
    return load_config(_config_path)
