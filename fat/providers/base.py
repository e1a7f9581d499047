"""Abstract base for all AI model providers: the agent capability the core calls."""

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping

from fat.discussion import ThreadSnapshot
from fat.models import Completion, ModelResult, Reply, RoundMeta
from fat.prompts import format_round_prompt, parse_reply

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """Raised when a provider call fails.

    ``retryable`` is False for failures another attempt cannot fix
    (missing key, rejected credentials).
    """

    def __init__(self, provider_name: str, message: str, *, retryable: bool = True) -> None:
        self.provider_name = provider_name
        self.retryable = retryable
        super().__init__(f"[{provider_name}] {message}")


class AIProvider(ABC):
    """Abstract base for all AI model providers.

    Safe to call concurrently; each call is independent.
    """

    @abstractmethod
    def name(self) -> str:
        """Return the short provider name (e.g. 'gemini', 'claude')."""
        ...

    @abstractmethod
    def model_string(self) -> str:
        """Return the actual model identifier string."""
        ...

    @abstractmethod
    async def complete(self, prompt: str) -> Completion:
        """Send a single prompt and return the raw text plus token usage.

        Raises:
            ProviderError: On API failure or invalid response. The deadline
                belongs to the caller, usually an enclosing ``asyncio.timeout``.
        """
        ...

    async def prompt(
        self,
        question: str,
        meta: RoundMeta,
        replies: Mapping[str, Reply],
        discussion: ThreadSnapshot,
    ) -> ModelResult:
        """Produce this agent's structured reply for one round.

        Args:
            question: The question under discussion.
            meta: Round number, total rounds and the other agents' names.
            replies: Latest reply per agent id, frozen at the end of the previous round.
            discussion: Thread snapshot, frozen at the end of the previous round.

        Raises:
            ProviderError: On API failure or an empty reply.
        """
        text = format_round_prompt(self.name(), self.model_string(), question, meta, replies, discussion)
        completion = await self.complete(text)
        reply = parse_reply(completion.text)
        if not reply.answer and not reply.rationale:
            raise ProviderError(self.name(), "Reply contained no answer")
        return ModelResult(
            reply=reply,
            tokens_in=completion.tokens_in,
            tokens_out=completion.tokens_out,
            prompt=text,
        )
