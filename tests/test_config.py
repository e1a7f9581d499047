"""Tests for config/config_loader.py."""

from pathlib import Path

import pytest
import yaml

from config.config_loader import AppConfig, ModelConfig, load_config


@pytest.fixture
def minimal_settings(tmp_path: Path) -> Path:
    """Write a minimal valid settings.yaml to a temp path."""
    settings = {
        "defaults": {
            "rounds": 2,
            "max_rounds": 5,
            "output_dir": "./answers",
            "request_timeout_sec": 90,
            "default_panel": ["grok", "claude"],
        },
        "retry": {
            "max_attempts": 4,
            "initial_delay_sec": 0.5,
        },
        "models": {
            "grok": {
                "sdk": "xai",
                "model": "grok-4-fast",
                "api_key_env": "TEST_GROK_KEY",
                "base_url": "https://api.x.ai/v1",
                "timeout_sec": 60,
                "max_tokens": 2048,
                "rate_in": 0.2,
                "rate_out": 0.5,
            },
            "claude": {
                "sdk": "anthropic",
                "model": "claude-3-5-haiku-latest",
                "api_key_env": "TEST_CLAUDE_KEY",
                "timeout_sec": 60,
                "max_tokens": 2048,
            },
        },
    }
    path = tmp_path / "settings.yaml"
    path.write_text(yaml.dump(settings), encoding="utf-8")
    return path


def test_load_config_returns_app_config(minimal_settings):
    config = load_config(minimal_settings)
    assert isinstance(config, AppConfig)


def test_load_config_defaults(minimal_settings, monkeypatch):
    monkeypatch.delenv("FAT_MODEL_TIMEOUT", raising=False)
    config = load_config(minimal_settings)
    assert config.defaults.rounds == 2
    assert config.defaults.max_rounds == 5
    assert config.defaults.request_timeout_sec == 90.0
    assert config.defaults.default_panel == ["grok", "claude"]
    assert isinstance(config.defaults.output_dir, Path)


def test_db_and_export_paths_default_under_output_dir(minimal_settings):
    config = load_config(minimal_settings)
    assert config.defaults.db_path == Path("./answers") / "fat.db"
    assert config.defaults.export_dir == Path("./answers") / "static"


def test_retry_section_with_defaults_for_missing_keys(minimal_settings):
    retry = load_config(minimal_settings).retry
    assert retry.max_attempts == 4
    assert retry.initial_delay_sec == 0.5
    assert retry.max_delay_sec == 10.0
    assert retry.multiplier == 2.0


def test_load_config_models(minimal_settings):
    config = load_config(minimal_settings)
    grok = config.models["grok"]
    assert isinstance(grok, ModelConfig)
    assert grok.sdk == "xai"
    assert grok.base_url == "https://api.x.ai/v1"
    assert (grok.rate_in, grok.rate_out) == (0.2, 0.5)
    assert config.models["claude"].base_url is None
    assert config.models["claude"].rate_in == 0.0


def test_timeout_env_override(minimal_settings, monkeypatch):
    monkeypatch.setenv("FAT_MODEL_TIMEOUT", "45s")
    config = load_config(minimal_settings)
    assert config.defaults.request_timeout_sec == 45.0
    assert {m.timeout_sec for m in config.models.values()} == {45.0}


def test_model_timeouts_without_override(minimal_settings, monkeypatch):
    monkeypatch.delenv("FAT_MODEL_TIMEOUT", raising=False)
    config = load_config(minimal_settings)
    assert config.models["grok"].timeout_sec == 60.0


def test_invalid_timeout_env(minimal_settings, monkeypatch):
    monkeypatch.setenv("FAT_MODEL_TIMEOUT", "soon")
    with pytest.raises(ValueError, match="FAT_MODEL_TIMEOUT"):
        load_config(minimal_settings)


def test_load_config_available_providers_with_key(minimal_settings, monkeypatch):
    monkeypatch.setenv("TEST_CLAUDE_KEY", "sk-test-key")
    monkeypatch.delenv("TEST_GROK_KEY", raising=False)
    config = load_config(minimal_settings)
    assert config.available_providers == {"claude"}


def test_load_config_missing_file():
    with pytest.raises(FileNotFoundError):
        load_config(Path("/nonexistent/settings.yaml"))


def test_shipped_settings_load():
    config = load_config()
    assert set(config.defaults.default_panel) <= set(config.models)
    assert {m.sdk for m in config.models.values()} <= {"xai", "openai", "anthropic", "gemini"}
