"""Tests for settings loading."""

import json
import os
from pathlib import Path

import pytest

from pet_evolution.config import GenerateOptions, Settings, load_settings

ENV_KEYS = ("LLM_PROVIDER_URL", "LLM_API_KEY", "LLM_PROVIDER_FORMAT", "LLM_MODEL", "LLM_MAX_REQUESTS")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def no_env_file(tmp_path: Path) -> Path:
    return tmp_path / "missing.env"


def test_defaults(no_env_file: Path) -> None:
    settings = load_settings(env_file=no_env_file)
    assert settings == Settings()
    assert settings.stat_change_limit == 20
    assert settings.memory_capacity == 20
    assert settings.trait_caps == {"attack": 5, "defense": 5, "special": 3, "passive": 8}
    assert settings.balance_ratio == 1.2
    assert settings.generator.max_requests == 1000


def test_channel_options() -> None:
    settings = Settings()
    assert settings.generator.options("numerical") == GenerateOptions(
        temperature=0.2, max_tokens=800, channel="numerical"
    )
    assert settings.generator.options("unknown").channel == "unknown"


def test_file_overrides_merge_recursively(tmp_path: Path, no_env_file: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({
        "memory_capacity": 5,
        "trait_caps": {"special": 1},
        "generator": {"channels": {"core": {"temperature": 0.1}}},
    }))
    settings = load_settings(path, env_file=no_env_file)
    assert settings.memory_capacity == 5
    assert settings.trait_caps == {"attack": 5, "defense": 5, "special": 1, "passive": 8}
    assert settings.generator.options("core").temperature == 0.1
    assert settings.generator.options("core").max_tokens == 1000
    assert settings.generator.options("perception").temperature == 0.7


def test_unknown_keys_ignored(tmp_path: Path, no_env_file: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text(json.dumps({"colour": "blue"}))
    assert load_settings(path, env_file=no_env_file) == Settings()


def test_env_vars_override_connection(
    monkeypatch: pytest.MonkeyPatch, no_env_file: Path
) -> None:
    monkeypatch.setenv("LLM_PROVIDER_URL", "http://gpu:8080")
    monkeypatch.setenv("LLM_PROVIDER_FORMAT", "openai")
    monkeypatch.setenv("LLM_MAX_REQUESTS", "50")
    settings = load_settings(env_file=no_env_file)
    assert settings.connection.provider_url == "http://gpu:8080"
    assert settings.connection.provider_format == "openai"
    assert settings.generator.max_requests == 50


def test_env_file_loaded(tmp_path: Path) -> None:
    env_file = tmp_path / ".env"
    env_file.write_text("LLM_MODEL=tiny-pet-model\n")
    try:
        settings = load_settings(env_file=env_file)
    finally:
        os.environ.pop("LLM_MODEL", None)
    assert settings.connection.model == "tiny-pet-model"


def test_clamp_stat() -> None:
    settings = Settings()
    assert settings.clamp_stat(-3) == 0
    assert settings.clamp_stat(130) == 100
    assert settings.clamp_stat(42) == 42
