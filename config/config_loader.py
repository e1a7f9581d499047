"""Load settings.yaml into typed dataclasses. Validates API keys at startup."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"

# Overrides defaults.request_timeout_sec and every model's timeout_sec, in seconds
_TIMEOUT_ENV = "FAT_MODEL_TIMEOUT"


@dataclass
class ModelConfig:
    name: str
    sdk: str
    model: str
    api_key_env: str
    timeout_sec: float  # per-agent deadline for a round or ranking call
    max_tokens: int
    base_url: str | None = None
    rate_in: float = 0.0   # USD per 1M input tokens
    rate_out: float = 0.0  # USD per 1M output tokens


@dataclass
class RetrySettings:
    max_attempts: int = 3
    initial_delay_sec: float = 1.0
    max_delay_sec: float = 10.0
    multiplier: float = 2.0


@dataclass
class DefaultsConfig:
    rounds: int
    output_dir: Path
    max_rounds: int = 10
    db_path: Path = Path("answers/fat.db")
    export_dir: Path = Path("answers/static")
    request_timeout_sec: float = 120.0
    default_panel: list[str] = field(default_factory=list)


@dataclass
class AppConfig:
    defaults: DefaultsConfig
    models: dict[str, ModelConfig]
    retry: RetrySettings = field(default_factory=RetrySettings)
    available_providers: set[str] = field(default_factory=set)


def _timeout_override() -> float | None:
    raw = os.environ.get(_TIMEOUT_ENV, "").strip()
    if not raw:
        return None
    try:
        return float(raw.rstrip("s"))
    except ValueError as exc:
        raise ValueError(f"invalid {_TIMEOUT_ENV} value {raw!r}") from exc


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing, ValueError if
    FAT_MODEL_TIMEOUT is set to something that is not a number of seconds.
    Logs missing API keys but does not raise; callers check
    available_providers count.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    timeout_override = _timeout_override()
    defaults_raw = raw["defaults"]
    output_dir = Path(defaults_raw["output_dir"])
    defaults = DefaultsConfig(
        rounds=int(defaults_raw["rounds"]),
        max_rounds=int(defaults_raw.get("max_rounds", 10)),
        output_dir=output_dir,
        db_path=Path(defaults_raw.get("db_path", output_dir / "fat.db")),
        export_dir=Path(defaults_raw.get("export_dir", output_dir / "static")),
        request_timeout_sec=timeout_override or float(defaults_raw.get("request_timeout_sec", 120)),
        default_panel=list(defaults_raw.get("default_panel", [])),
    )

    retry_raw = raw.get("retry") or {}
    retry = RetrySettings(
        max_attempts=int(retry_raw.get("max_attempts", 3)),
        initial_delay_sec=float(retry_raw.get("initial_delay_sec", 1.0)),
        max_delay_sec=float(retry_raw.get("max_delay_sec", 10.0)),
        multiplier=float(retry_raw.get("multiplier", 2.0)),
    )

    models: dict[str, ModelConfig] = {}
    available_providers: set[str] = set()

    for provider_name, model_raw in raw["models"].items():
        model_cfg = ModelConfig(
            name=provider_name,
            sdk=model_raw["sdk"],
            model=model_raw["model"],
            api_key_env=model_raw["api_key_env"],
            timeout_sec=timeout_override or float(model_raw["timeout_sec"]),
            max_tokens=int(model_raw["max_tokens"]),
            base_url=model_raw.get("base_url"),
            rate_in=float(model_raw.get("rate_in", 0.0)),
            rate_out=float(model_raw.get("rate_out", 0.0)),
        )
        models[provider_name] = model_cfg

        api_key = os.environ.get(model_raw["api_key_env"], "").strip()
        if api_key:
            available_providers.add(provider_name)
            logger.info("Provider available: %s", provider_name)
        else:
            logger.info(
                "Provider skipped (no API key): %s, set %s in .env",
                provider_name,
                model_raw["api_key_env"],
            )

    return AppConfig(
        defaults=defaults,
        models=models,
        retry=retry,
        available_providers=available_providers,
    )
