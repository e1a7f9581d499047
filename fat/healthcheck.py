"""Provider health checks: ping each API before the first round."""

import asyncio
import logging

from fat.providers.base import AIProvider

logger = logging.getLogger(__name__)

_PING_PROMPT = "Reply with the word OK only."
_TIMEOUT_SEC = 15.0


async def _check_one(name: str, provider: AIProvider, timeout: float) -> tuple[str, bool, str]:
    """Ping a single provider. Returns (name, ok, error_message)."""
    try:
        async with asyncio.timeout(timeout):
            completion = await provider.complete(_PING_PROMPT)
    except TimeoutError:
        return name, False, f"no reply within {timeout:g}s"
    except Exception as exc:
        return name, False, str(exc)
    logger.debug("Health check %s replied %r", name, completion.text[:40])
    return name, True, ""


async def run_health_checks(
    providers: dict[str, AIProvider],
    timeout: float = _TIMEOUT_SEC,
) -> dict[str, tuple[bool, str]]:
    """Ping all providers in parallel.

    Returns:
        Dict mapping provider name -> (ok, error_message).
        error_message is "" when ok is True.
    """
    results = await asyncio.gather(*(_check_one(n, p, timeout) for n, p in providers.items()))
    return {name: (ok, err) for name, ok, err in results}
