# core/classifier.py
"""
Transport classifier: map a failure to a retry decision.

Typed errors raised at the HTTP boundary are classified on their fields.
Message substrings are only consulted for opaque errors thrown by SDKs.
"""

import asyncio
import re
from enum import Enum
from typing import Optional

import httpx

from core.exceptions import (
    CancellationError,
    ConfigurationError,
    RateLimitError,
    SafetyBlockError,
    TransientNetworkError,
    TransientServerError,
    UnparsableOutputError,
)


class ErrorClass(str, Enum):
    RETRYABLE_NETWORK = "retryable_network"
    RETRYABLE_RATE_LIMIT = "retryable_rate_limit"
    RETRYABLE_SERVER = "retryable_server"
    SAFETY_BLOCK = "safety_block"
    NON_RETRYABLE = "non_retryable"
    CANCELLED = "cancelled"

    @property
    def retryable(self) -> bool:
        return self in (
            ErrorClass.RETRYABLE_NETWORK,
            ErrorClass.RETRYABLE_RATE_LIMIT,
            ErrorClass.RETRYABLE_SERVER,
        )


# Provider moderation markers: Gemini finish/block reasons, OpenAI-style
# content_filter, DashScope DataInspectionFailed, Volcano Ark SensitiveContent*.
SAFETY_MARKERS = re.compile(
    r"\bSAFETY\b|PROHIBITED_CONTENT|content_filter|DataInspectionFailed|"
    r"data_inspection_failed|SensitiveContent|blocked.{0,40}safety|safety.{0,40}block",
    re.IGNORECASE,
)
RATE_LIMIT_MARKERS = re.compile(r"\b429\b|quota|RESOURCE_EXHAUSTED|rate.?limit", re.IGNORECASE)
SERVER_MARKERS = re.compile(r"\b50[0234]\b|overloaded|\bUNAVAILABLE\b", re.IGNORECASE)
NETWORK_MARKERS = re.compile(
    r"Failed to fetch|NetworkError|fetch failed|connection refused|connection reset|"
    r"Name or service not known|getaddrinfo",
    re.IGNORECASE,
)


def classify_status(status: int) -> ErrorClass:
    """Status-code rules shared by httpx errors and SDK errors."""
    if status == 429:
        return ErrorClass.RETRYABLE_RATE_LIMIT
    if status >= 500:
        return ErrorClass.RETRYABLE_SERVER
    return ErrorClass.NON_RETRYABLE


def _status_of(exc: Exception) -> Optional[int]:
    for attr in ("status_code", "code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int) and not isinstance(value, bool) and 100 <= value < 600:
            return value
    return None


def classify_message(message: str) -> ErrorClass:
    """Substring fallback for errors that expose nothing but text."""
    if SAFETY_MARKERS.search(message):
        return ErrorClass.SAFETY_BLOCK
    if RATE_LIMIT_MARKERS.search(message):
        return ErrorClass.RETRYABLE_RATE_LIMIT
    if SERVER_MARKERS.search(message):
        return ErrorClass.RETRYABLE_SERVER
    if NETWORK_MARKERS.search(message):
        return ErrorClass.RETRYABLE_NETWORK
    return ErrorClass.NON_RETRYABLE


def classify(exc: BaseException) -> ErrorClass:
    """
    Classify a failure.

    Cancellation always wins. Safety blocks are terminal even when they come
    back with a status that would otherwise be retried.
    """
    if isinstance(exc, (CancellationError, asyncio.CancelledError)):
        return ErrorClass.CANCELLED

    # Typed gateway errors
    if isinstance(exc, SafetyBlockError):
        return ErrorClass.SAFETY_BLOCK
    if isinstance(exc, RateLimitError):
        return ErrorClass.RETRYABLE_RATE_LIMIT
    if isinstance(exc, TransientServerError):
        return ErrorClass.RETRYABLE_SERVER
    if isinstance(exc, TransientNetworkError):
        return ErrorClass.RETRYABLE_NETWORK
    if isinstance(exc, (ConfigurationError, UnparsableOutputError)):
        return ErrorClass.NON_RETRYABLE

    # httpx
    if isinstance(exc, httpx.HTTPStatusError) and exc.response is not None:
        if SAFETY_MARKERS.search(exc.response.text or ""):
            return ErrorClass.SAFETY_BLOCK
        return classify_status(exc.response.status_code)
    if isinstance(exc, httpx.TransportError):
        return ErrorClass.RETRYABLE_NETWORK
    if isinstance(exc, (asyncio.TimeoutError, ConnectionError)):
        return ErrorClass.RETRYABLE_NETWORK

    message = str(exc) or type(exc).__name__

    # Opaque SDK errors that still carry a status
    status = _status_of(exc)
    if status is not None:
        if SAFETY_MARKERS.search(message):
            return ErrorClass.SAFETY_BLOCK
        return classify_status(status)

    return classify_message(message)
