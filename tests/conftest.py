"""Shared pytest fixtures."""

import asyncio
import re
from pathlib import Path
from typing import Any

import pytest

from config.config_loader import AppConfig, DefaultsConfig, ModelConfig, RetrySettings
from fat.events import Broadcaster
from fat.models import Agent, Completion, Rate
from fat.providers.base import AIProvider, ProviderError
from fat.retry import RetryConfig, RetryPolicy

_ROUND_RE = re.compile(r"Round (\d+) of (\d+)")


class MockProvider(AIProvider):
    """Test double AIProvider.

    Round prompts get a ``# ANSWER`` reply (plus ``# DISCUSSION`` targets from
    ``discussion`` after round 1); ranking prompts get ``ranking`` verbatim.
    The first ``failures`` round calls raise ``error``; ``always_fail`` makes
    every round call raise.
    """

    def __init__(
        self,
        provider_name: str = "mock",
        answer: str | None = None,
        model: str | None = None,
        discussion: dict[str, str] | None = None,
        ranking: str = "",
        delay: float = 0.0,
        failures: int = 0,
        always_fail: bool = False,
        error: Exception | None = None,
    ) -> None:
        self._name = provider_name
        self._model = model or f"{provider_name}-model"
        self.answer = answer or f"Answer from {provider_name}"
        self.discussion = discussion or {}
        self.ranking = ranking
        self.delay = delay
        self.failures = failures
        self.always_fail = always_fail
        self.error = error or ProviderError(provider_name, "API call failed: 503 Service Unavailable")
        self.prompts: list[str] = []
        self.ranking_prompts: list[str] = []

    def name(self) -> str:
        return self._name

    def model_string(self) -> str:
        return self._model

    async def complete(self, prompt: str) -> Completion:
        if "acting as a JUDGE" in prompt:
            self.ranking_prompts.append(prompt)
            return Completion(text=self.ranking, tokens_in=20, tokens_out=3)

        self.prompts.append(prompt)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.always_fail:
            raise self.error
        if self.failures > 0:
            self.failures -= 1
            raise self.error

        match = _ROUND_RE.search(prompt)
        round_number = int(match.group(1)) if match else 1
        text = f"# ANSWER\n\n{self.answer} (round {round_number})\n\n# RATIONALE\n\nBecause.\n"
        if round_number > 1 and self.discussion:
            text += "\n# DISCUSSION\n"
            for target, message in self.discussion.items():
                text += f"\n## With {target}\n\n{message}\n"
        return Completion(text=text, tokens_in=100, tokens_out=50)


class RecordingBroadcaster(Broadcaster):
    def __init__(self) -> None:
        self.messages: list[dict[str, Any]] = []

    def broadcast(self, message: dict[str, Any]) -> None:
        self.messages.append(message)

    @property
    def types(self) -> list[str]:
        return [m["type"] for m in self.messages]

    def of_type(self, event_type: str) -> list[dict[str, Any]]:
        return [m for m in self.messages if m["type"] == event_type]


def make_agent(provider: AIProvider, timeout: float | None = None, rate: Rate | None = None) -> Agent:
    return Agent(
        family_id=provider.name(),
        variant_id=provider.model_string(),
        capability=provider,
        request_timeout_sec=timeout,
        rate=rate or Rate(),
    )


@pytest.fixture
def fast_retry() -> RetryPolicy:
    return RetryPolicy(RetryConfig(max_attempts=3, initial_delay_sec=0.001, max_delay_sec=0.01))


@pytest.fixture
def broadcaster() -> RecordingBroadcaster:
    return RecordingBroadcaster()


@pytest.fixture
def three_providers() -> list[MockProvider]:
    return [MockProvider("grok"), MockProvider("gpt"), MockProvider("claude")]


@pytest.fixture
def three_agents(three_providers: list[MockProvider]) -> list[Agent]:
    return [make_agent(p) for p in three_providers]


@pytest.fixture
def sample_model_config() -> ModelConfig:
    return ModelConfig(
        name="test_model",
        sdk="openai",
        model="test-model-1",
        api_key_env="TEST_API_KEY",
        timeout_sec=30,
        max_tokens=1024,
        base_url=None,
    )


@pytest.fixture
def sample_app_config(tmp_path: Path) -> AppConfig:
    models = {
        name: ModelConfig(
            name=name,
            sdk=sdk,
            model=f"{name}-model",
            api_key_env=f"TEST_{name.upper()}_KEY",
            timeout_sec=30,
            max_tokens=1024,
            base_url="https://api.x.ai/v1" if sdk == "xai" else None,
            rate_in=1.0,
            rate_out=2.0,
        )
        for name, sdk in (("grok", "xai"), ("gpt", "openai"), ("claude", "anthropic"), ("gemini", "gemini"))
    }
    return AppConfig(
        defaults=DefaultsConfig(
            rounds=2,
            output_dir=tmp_path / "answers",
            db_path=tmp_path / "answers" / "fat.db",
            export_dir=tmp_path / "answers" / "static",
            default_panel=["grok", "gpt", "claude"],
        ),
        models=models,
        retry=RetrySettings(max_attempts=2, initial_delay_sec=0.001, max_delay_sec=0.01),
        available_providers=set(models),
    )
