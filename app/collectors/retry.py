"""Retry/backoff combinator around a provider client.

Retries transient failures (timeouts, network errors, 408/429/5xx) with
exponential backoff: ``base_delay * 2 ** attempt`` (1s, 2s, ... by default).
Auth failures (401/403) and malformed requests (400) end the call
immediately. The outcome is returned as a value, never raised.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from app.collectors.errors import ProviderError
from app.collectors.llm_base import LlmResponse
from app.collectors.registry import get_collector_class, is_supported
from app.core.metrics import PROVIDER_CALLS, PROVIDER_LATENCY

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay: float = 1.0  # seconds

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number *attempt* (0-based)."""
        return self.base_delay * (2**attempt)


@dataclass
class ProviderOutcome:
    """Either a response or the error that ended the call."""

    provider: str
    response: LlmResponse | None = None
    error: ProviderError | None = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.response is not None


async def call_with_retry(
    provider: str,
    call: Callable[[], Awaitable[LlmResponse]],
    policy: RetryPolicy,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> ProviderOutcome:
    """Invoke *call* until it succeeds, fails permanently, or attempts run out."""
    last_error: ProviderError | None = None
    attempts = max(1, policy.max_attempts)

    for attempt in range(attempts):
        try:
            response = await call()
            return ProviderOutcome(provider=provider, response=response, attempts=attempt + 1)
        except ProviderError as e:
            last_error = e
            if not e.retryable:
                logger.warning("%s: non-retryable failure on attempt %d: %s", provider, attempt + 1, e)
                return ProviderOutcome(provider=provider, error=e, attempts=attempt + 1)
            if attempt + 1 < attempts:
                delay = policy.delay_for(attempt)
                logger.info(
                    "%s: transient failure (attempt %d/%d), retrying in %.1fs: %s",
                    provider,
                    attempt + 1,
                    attempts,
                    delay,
                    e,
                )
                await sleep(delay)

    logger.warning("%s: giving up after %d attempts: %s", provider, attempts, last_error)
    return ProviderOutcome(provider=provider, error=last_error, attempts=attempts)


async def execute(
    provider: str,
    prompt_text: str,
    api_key: str,
    *,
    model: str | None = None,
    timeout: float | None = None,
    policy: RetryPolicy | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> ProviderOutcome:
    """Send one prompt to one provider with the retry policy applied."""
    if not is_supported(provider):
        error = ProviderError(provider, f"Unknown provider '{provider}'", retryable=False)
        PROVIDER_CALLS.labels(provider=provider, outcome="error").inc()
        return ProviderOutcome(provider=provider, error=error)

    collector = get_collector_class(provider)(api_key=api_key, model=model, timeout=timeout)

    start = time.perf_counter()
    outcome = await call_with_retry(provider, lambda: collector.query_llm(prompt_text), policy or RetryPolicy(), sleep=sleep)
    PROVIDER_LATENCY.labels(provider=provider).observe(time.perf_counter() - start)
    PROVIDER_CALLS.labels(provider=provider, outcome="success" if outcome.ok else outcome.error.kind).inc()
    return outcome
