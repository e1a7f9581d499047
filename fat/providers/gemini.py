"""Gemini provider using google-genai SDK with native async."""

import logging
import os
import time

from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types

from config.config_loader import ModelConfig
from fat.models import Completion
from fat.providers.base import AIProvider, ProviderError

logger = logging.getLogger(__name__)

_AUTH_CODES = {401, 403}


class GeminiProvider(AIProvider):
    """Google Gemini provider via google-genai SDK."""

    def __init__(self, config: ModelConfig) -> None:
        self._config = config
        api_key = os.environ.get(config.api_key_env, "").strip()
        if not api_key:
            raise ProviderError(config.name, f"Missing API key: {config.api_key_env}", retryable=False)
        self._client = genai.Client(api_key=api_key)

    def name(self) -> str:
        return self._config.name

    def model_string(self) -> str:
        return self._config.model

    async def complete(self, prompt: str) -> Completion:
        start = time.monotonic()
        try:
            response = await self._client.aio.models.generate_content(
                model=self._config.model,
                contents=prompt,
                config=genai_types.GenerateContentConfig(
                    max_output_tokens=self._config.max_tokens,
                ),
            )
        except genai_errors.ClientError as exc:
            retryable = getattr(exc, "code", None) not in _AUTH_CODES
            raise ProviderError(self._config.name, f"API call failed: {exc}", retryable=retryable) from exc
        except Exception as exc:
            raise ProviderError(self._config.name, f"API call failed: {exc}") from exc

        latency = time.monotonic() - start

        if not response.text:
            raise ProviderError(self._config.name, "Empty response text")

        tokens_in = tokens_out = 0
        usage = response.usage_metadata
        if usage:
            tokens_in = usage.prompt_token_count or 0
            tokens_out = usage.candidates_token_count or 0

        logger.info("Gemini %s: %.2fs, %d/%d tokens", self._config.model, latency, tokens_in, tokens_out)

        return Completion(text=response.text, tokens_in=tokens_in, tokens_out=tokens_out)
