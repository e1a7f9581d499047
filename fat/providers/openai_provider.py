"""OpenAI provider using openai SDK with native async."""

import logging
import os
import time

import openai
from openai import AsyncOpenAI

from config.config_loader import ModelConfig
from fat.models import Completion
from fat.providers.base import AIProvider, ProviderError

logger = logging.getLogger(__name__)


class OpenAIProvider(AIProvider):
    """OpenAI provider via openai SDK. Also the base for OpenAI-compatible APIs."""

    _label = "OpenAI"

    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env, "").strip()
        if not api_key:
            raise ProviderError(config.name, f"Missing API key: {config.api_key_env}", retryable=False)
        self._client = self._make_client(api_key)

    def _make_client(self, api_key: str) -> AsyncOpenAI:
        return AsyncOpenAI(api_key=api_key, max_retries=0)

    def name(self) -> str:
        return self._config.name

    def model_string(self) -> str:
        return self._config.model

    async def complete(self, prompt: str) -> Completion:
        start = time.monotonic()
        try:
            response = await self._client.chat.completions.create(
                model=self._config.model,
                messages=[{"role": "user", "content": prompt}],
                max_completion_tokens=self._config.max_tokens,
            )
        except openai.AuthenticationError as exc:
            raise ProviderError(self._config.name, f"Authentication failed: {exc}", retryable=False) from exc
        except Exception as exc:
            raise ProviderError(self._config.name, f"API call failed: {exc}") from exc

        latency = time.monotonic() - start

        choice = response.choices[0] if response.choices else None
        if not choice or not choice.message.content:
            raise ProviderError(self._config.name, "Empty response content")

        tokens_in = tokens_out = 0
        if response.usage:
            tokens_in = response.usage.prompt_tokens
            tokens_out = response.usage.completion_tokens

        logger.info("%s %s: %.2fs, %d/%d tokens", self._label, self._config.model, latency, tokens_in, tokens_out)

        return Completion(text=choice.message.content, tokens_in=tokens_in, tokens_out=tokens_out)
