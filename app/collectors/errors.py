"""Provider call failures, carried as values inside ``ProviderOutcome``."""

from __future__ import annotations


class ProviderError(Exception):
    """A provider call failed.

    ``retryable`` is True for timeouts, network errors, 408/429 and 5xx;
    False for malformed requests (400 and other 4xx) and bad payloads.
    """

    def __init__(
        self,
        provider: str,
        message: str,
        *,
        status_code: int | None = None,
        retryable: bool = True,
    ):
        super().__init__(message)
        self.provider = provider
        self.message = message
        self.status_code = status_code
        self.retryable = retryable

    @property
    def kind(self) -> str:
        return "provider_error"

    def __str__(self) -> str:
        code = f" [{self.status_code}]" if self.status_code is not None else ""
        return f"{self.provider}{code}: {self.message}"


class AuthError(ProviderError):
    """Missing or rejected credentials (401/403). Never retried."""

    def __init__(self, provider: str, message: str, *, status_code: int | None = None):
        super().__init__(provider, message, status_code=status_code, retryable=False)

    @property
    def kind(self) -> str:
        return "auth_error"


def error_for_status(provider: str, status_code: int, message: str) -> ProviderError:
    """Classify an HTTP error status."""
    if status_code in (401, 403):
        return AuthError(provider, message, status_code=status_code)
    retryable = status_code >= 500 or status_code in (408, 429)
    return ProviderError(provider, message, status_code=status_code, retryable=retryable)
