"""Base LLM provider client.

A collector wraps one chat-completions style HTTP API. It is stateless apart
from its constructor arguments (credentials, model, timeout), so a fresh
instance can be built per call. HTTP failures are translated into
``ProviderError`` / ``AuthError``; retrying is the caller's business
(see ``app.collectors.retry``).
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

import httpx

from app.collectors.errors import AuthError, ProviderError, error_for_status

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "You are a helpful assistant. Answer the following question thoroughly."
MAX_OUTPUT_TOKENS = 2048


@dataclass
class LlmResponse:
    """Raw response from an LLM API."""

    text: str
    model: str
    token_in: int = 0
    token_out: int = 0
    cited_urls: list[str] = field(default_factory=list)  # some APIs return citations natively


# ---------------------------------------------------------------------------
# RPM-aware rate limiter (token bucket)
# ---------------------------------------------------------------------------


class RpmLimiter:
    """Token-bucket rate limiter that enforces requests-per-minute.

    Allows bursts up to *burst* tokens, refills at *rpm* tokens per minute.
    Each ``acquire()`` consumes one token, sleeping when the bucket is empty.
    """

    def __init__(self, rpm: int, burst: int | None = None):
        self.rpm = rpm
        self.burst = burst or max(rpm // 4, 1)
        self._tokens = float(self.burst)
        self._last_refill = time.monotonic()
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        while True:
            async with self._lock:
                now = time.monotonic()
                elapsed = now - self._last_refill
                self._tokens = min(self.burst, self._tokens + elapsed * (self.rpm / 60.0))
                self._last_refill = now

                if self._tokens >= 1.0:
                    self._tokens -= 1.0
                    return

                wait = (1.0 - self._tokens) / (self.rpm / 60.0)

            # Sleep outside the lock so other coroutines can refill
            logger.debug("RpmLimiter: waiting %.2fs (rpm=%d)", wait, self.rpm)
            await asyncio.sleep(wait)


# Requests per minute per provider
PROVIDER_RPM: dict[str, int] = {
    "openai": 60,
    "perplexity": 20,
    "gemini": 15,
}


# ---------------------------------------------------------------------------
# Base client
# ---------------------------------------------------------------------------


class BaseLlmCollector(ABC):
    """Abstract chat-completions client for one provider."""

    provider: str = ""
    api_url: str = ""
    default_model: str = ""
    default_timeout: float = 60.0

    def __init__(self, api_key: str, model: str | None = None, timeout: float | None = None):
        self.api_key = api_key
        self.model = model or self.default_model
        self.timeout = timeout or self.default_timeout

    @abstractmethod
    async def query_llm(self, prompt: str) -> LlmResponse:
        """Send *prompt* and return the answer. Raises ProviderError on failure."""

    def _chat_payload(self, prompt: str) -> dict[str, Any]:
        return {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "temperature": 0.0,
            "max_tokens": MAX_OUTPUT_TOKENS,
        }

    async def _post_chat(self, payload: dict[str, Any]) -> dict[str, Any]:
        """POST to the provider and return the decoded JSON body."""
        if not self.api_key:
            raise AuthError(self.provider, "No API key configured")

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(self.api_url, json=payload, headers=headers)
        except httpx.TimeoutException as e:
            raise ProviderError(self.provider, f"Timed out after {self.timeout:.0f}s: {e}") from e
        except httpx.TransportError as e:
            raise ProviderError(self.provider, f"Network error: {type(e).__name__}: {e}") from e

        if resp.status_code >= 400:
            message = _error_message(resp)
            logger.warning("%s API %d for model=%s: %s", self.provider, resp.status_code, self.model, message)
            raise error_for_status(self.provider, resp.status_code, message)

        try:
            return resp.json()
        except ValueError as e:
            raise ProviderError(self.provider, "Response body is not JSON", retryable=False) from e

    def _parse_chat(self, data: dict[str, Any], cited_urls: list[str] | None = None) -> LlmResponse:
        """Read an OpenAI-shaped chat completion body."""
        try:
            text = data["choices"][0]["message"]["content"] or ""
        except (KeyError, IndexError, TypeError) as e:
            raise ProviderError(self.provider, "Unexpected response shape", retryable=False) from e

        usage = data.get("usage") or {}
        return LlmResponse(
            text=text,
            model=data.get("model") or self.model,
            token_in=int(usage.get("prompt_tokens") or 0),
            token_out=int(usage.get("completion_tokens") or 0),
            cited_urls=cited_urls or [],
        )


def _error_message(resp: httpx.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return resp.text[:500]
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict) and err.get("message"):
            return str(err["message"])[:500]
        if isinstance(err, str):
            return err[:500]
    return resp.text[:500]
