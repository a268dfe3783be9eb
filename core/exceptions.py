# core/exceptions.py
"""
Centralized exception definitions for the generation gateway.

Errors are typed at the HTTP/SDK boundary so the classifier can work on
structured fields (status codes, provider codes) instead of message text.
"""

from typing import Optional


# ============================================================
# Base Exceptions
# ============================================================

class GatewayError(Exception):
    """
    Root base exception for the entire gateway.
    All custom exceptions should inherit from this.
    """
    pass


class ConfigurationError(GatewayError):
    """
    A provider configuration is unusable. Raised before any network call
    and never retried.
    """
    pass


class MissingConfigurationError(ConfigurationError):
    """A required provider field (endpoint, credential, model) is absent."""

    def __init__(self, provider: str, missing: tuple):
        self.provider = provider
        self.missing = tuple(missing)
        super().__init__(
            f"Missing provider configuration for '{provider}': {', '.join(self.missing)}"
        )


# ============================================================
# Provider / Transport
# ============================================================

class ProviderError(GatewayError):
    """
    Raised when a backend rejects a request or returns something unusable.
    Non-retryable unless a subclass says otherwise.
    """

    def __init__(
        self,
        message: str,
        *,
        provider: Optional[str] = None,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        self.body = body


class TransientError(ProviderError):
    """
    Raised when an operation is safe to retry.
    """
    pass


class TransientNetworkError(TransientError):
    """Transport failure with no response (DNS, refused, reset, timeout)."""
    pass


class TransientServerError(TransientError):
    """5xx or provider 'overloaded' response."""
    pass


class RateLimitError(TransientError):
    """429 or quota exhaustion. May carry a Retry-After hint in seconds."""

    def __init__(self, message: str, *, retry_after: Optional[float] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.retry_after = retry_after


class SafetyBlockError(ProviderError):
    """
    Content-moderation rejection. Terminal on first occurrence: sending the
    same input again cannot succeed, so the user has to change it.
    """
    pass


class StreamingError(ProviderError):
    """
    Raised when a streaming response fails mid-stream.
    """
    pass


# ============================================================
# Request lifecycle / output
# ============================================================

class CancellationError(GatewayError):
    """
    The caller's cancellation handle was triggered. Takes priority over any
    concurrently resolving result or error.
    """
    pass


class UnparsableOutputError(GatewayError):
    """
    Raised by the repair pipeline once every strategy has failed.
    """

    PREFIX_CHARS = 50

    def __init__(self, raw_text: str):
        self.raw_prefix = (raw_text or "")[: self.PREFIX_CHARS]
        super().__init__(
            f"Could not parse or repair model output. Raw: {self.raw_prefix}..."
        )
