"""Engine configuration.

Every tunable lives on `Settings`, with the game-design constants as
defaults (balance ratio, stat clamps, memory cap, per-type trait caps).
`load_settings()` merges a stored JSON file and then environment variables
over the defaults.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Literal

from dotenv import load_dotenv
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class GenerateOptions(BaseModel):
    """Per-call generation options. `channel` selects cache bucket and fallback."""

    temperature: float = 0.7
    max_tokens: int = 800
    channel: str = "perception"


def _default_channels() -> dict[str, GenerateOptions]:
    return {
        "perception": GenerateOptions(temperature=0.7, max_tokens=800, channel="perception"),
        "core": GenerateOptions(temperature=0.8, max_tokens=1000, channel="core"),
        "execution": GenerateOptions(temperature=0.6, max_tokens=1200, channel="execution"),
        "evolution": GenerateOptions(temperature=0.8, max_tokens=1200, channel="evolution"),
        "numerical": GenerateOptions(temperature=0.2, max_tokens=800, channel="numerical"),
    }


class GeneratorSettings(BaseModel):
    max_requests: int = 1000  # per budget window; the window reset is owned by the caller
    cache_prefix_length: int | None = None  # None keys on the whole prompt
    timeout: float = 15.0
    channels: dict[str, GenerateOptions] = Field(default_factory=_default_channels)

    def options(self, channel: str) -> GenerateOptions:
        return self.channels.get(channel) or GenerateOptions(channel=channel)


class ConnectionSettings(BaseModel):
    provider_url: str = "http://localhost:5001"
    api_key: str = ""
    provider_format: Literal["koboldcpp", "openai"] = "koboldcpp"
    model: str = ""


def _default_trait_caps() -> dict[str, int]:
    return {"attack": 5, "defense": 5, "special": 3, "passive": 8}


class Settings(BaseModel):
    stat_min: int = 0
    stat_max: int = 100
    stat_change_limit: int = 20
    stability_threshold: int = 10
    memory_capacity: int = 20
    memory_scan_window: int = 5
    trait_caps: dict[str, int] = Field(default_factory=_default_trait_caps)
    effect_min: int = 1
    effect_max: int = 50
    balance_ratio: float = 1.2
    compensation_factor: float = 0.8
    mechanism_factor: float = 1.5
    base_prompt_max_length: int = 220
    generator: GeneratorSettings = Field(default_factory=GeneratorSettings)
    connection: ConnectionSettings = Field(default_factory=ConnectionSettings)

    def clamp_stat(self, value: int) -> int:
        return max(self.stat_min, min(self.stat_max, value))


_ENV_CONNECTION = {
    "LLM_PROVIDER_URL": "provider_url",
    "LLM_API_KEY": "api_key",
    "LLM_PROVIDER_FORMAT": "provider_format",
    "LLM_MODEL": "model",
}


def _merge(base: dict[str, Any], stored: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge stored values into base; unknown keys are dropped."""
    merged = dict(base)
    for key, value in stored.items():
        if key not in base:
            logger.warning("Ignoring unknown config key %r", key)
            continue
        if isinstance(base[key], dict) and isinstance(value, dict):
            merged[key] = _merge(base[key], value)
        else:
            merged[key] = value
    return merged


def load_settings(path: Path | None = None, env_file: Path | None = None) -> Settings:
    """Read settings: defaults, then the JSON file at `path`, then env vars."""
    if env_file is not None:
        load_dotenv(env_file)
    else:
        load_dotenv()

    data = Settings().model_dump()
    if path is not None and path.is_file():
        data = _merge(data, json.loads(path.read_text()))

    for env_key, field in _ENV_CONNECTION.items():
        value = os.getenv(env_key)
        if value:
            data["connection"][field] = value
    max_requests = os.getenv("LLM_MAX_REQUESTS")
    if max_requests:
        data["generator"]["max_requests"] = int(max_requests)

    return Settings.model_validate(data)
