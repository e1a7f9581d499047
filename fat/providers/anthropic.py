"""Anthropic Claude provider using anthropic SDK with native async."""

import logging
import os
import time

import anthropic as anthropic_sdk

from config.config_loader import ModelConfig
from fat.models import Completion
from fat.providers.base import AIProvider, ProviderError

logger = logging.getLogger(__name__)


class AnthropicProvider(AIProvider):
    """Anthropic Claude provider via anthropic SDK."""

    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env, "").strip()
        if not api_key:
            raise ProviderError(config.name, f"Missing API key: {config.api_key_env}", retryable=False)
        self._client = anthropic_sdk.AsyncAnthropic(api_key=api_key, max_retries=0)

    def name(self) -> str:
        return self._config.name

    def model_string(self) -> str:
        return self._config.model

    async def complete(self, prompt: str) -> Completion:
        start = time.monotonic()
        try:
            response = await self._client.messages.create(
                model=self._config.model,
                max_tokens=self._config.max_tokens,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic_sdk.AuthenticationError as exc:
            raise ProviderError(self._config.name, f"Authentication failed: {exc}", retryable=False) from exc
        except Exception as exc:
            raise ProviderError(self._config.name, f"API call failed: {exc}") from exc

        latency = time.monotonic() - start

        text_blocks = [b.text for b in response.content or [] if b.type == "text"]
        if not text_blocks:
            raise ProviderError(self._config.name, "No text blocks in response")

        tokens_in = tokens_out = 0
        if response.usage:
            tokens_in = response.usage.input_tokens
            tokens_out = response.usage.output_tokens

        logger.info("Anthropic %s: %.2fs, %d/%d tokens", self._config.model, latency, tokens_in, tokens_out)

        return Completion(text="\n".join(text_blocks), tokens_in=tokens_in, tokens_out=tokens_out)
