# tests/test_classifier.py
import asyncio

import httpx
import pytest

from core.classifier import ErrorClass, classify, classify_message, classify_status
from core.exceptions import (
    CancellationError,
    MissingConfigurationError,
    RateLimitError,
    SafetyBlockError,
    TransientNetworkError,
    TransientServerError,
    UnparsableOutputError,
)


def _status_error(status: int, body: str = "") -> httpx.HTTPStatusError:
    request = httpx.Request("POST", "https://example.test/v1/chat/completions")
    response = httpx.Response(status, text=body, request=request)
    return httpx.HTTPStatusError(f"status {status}", request=request, response=response)


@pytest.mark.parametrize("status, expected", [
    (429, ErrorClass.RETRYABLE_RATE_LIMIT),
    (500, ErrorClass.RETRYABLE_SERVER),
    (503, ErrorClass.RETRYABLE_SERVER),
    (400, ErrorClass.NON_RETRYABLE),
    (401, ErrorClass.NON_RETRYABLE),
    (404, ErrorClass.NON_RETRYABLE),
])
def test_status_codes(status, expected):
    assert classify_status(status) is expected
    assert classify(_status_error(status)) is expected


def test_safety_body_wins_over_status():
    exc = _status_error(500, '{"error": {"code": "DataInspectionFailed"}}')
    assert classify(exc) is ErrorClass.SAFETY_BLOCK


def test_typed_errors():
    assert classify(SafetyBlockError("x")) is ErrorClass.SAFETY_BLOCK
    assert classify(RateLimitError("x")) is ErrorClass.RETRYABLE_RATE_LIMIT
    assert classify(TransientServerError("x")) is ErrorClass.RETRYABLE_SERVER
    assert classify(TransientNetworkError("x")) is ErrorClass.RETRYABLE_NETWORK
    assert classify(MissingConfigurationError("volcano", ("model",))) is ErrorClass.NON_RETRYABLE
    assert classify(UnparsableOutputError("not json")) is ErrorClass.NON_RETRYABLE


def test_cancellation_is_terminal():
    assert classify(CancellationError()) is ErrorClass.CANCELLED
    assert classify(asyncio.CancelledError()) is ErrorClass.CANCELLED
    assert not ErrorClass.CANCELLED.retryable


def test_transport_failures_are_network():
    assert classify(httpx.ConnectError("refused")) is ErrorClass.RETRYABLE_NETWORK
    assert classify(httpx.ReadTimeout("slow")) is ErrorClass.RETRYABLE_NETWORK
    assert classify(ConnectionResetError()) is ErrorClass.RETRYABLE_NETWORK
    assert classify(asyncio.TimeoutError()) is ErrorClass.RETRYABLE_NETWORK


def test_status_attribute_on_opaque_errors():
    class SdkError(Exception):
        pass

    exc = SdkError("quota exceeded")
    exc.code = 429
    assert classify(exc) is ErrorClass.RETRYABLE_RATE_LIMIT

    exc = SdkError("Response was blocked due to SAFETY")
    exc.code = 400
    assert classify(exc) is ErrorClass.SAFETY_BLOCK

    # A boolean is not a status code
    exc = SdkError("nothing useful")
    exc.code = True
    assert classify(exc) is ErrorClass.NON_RETRYABLE


@pytest.mark.parametrize("message, expected", [
    ("Candidate was blocked due to SAFETY", ErrorClass.SAFETY_BLOCK),
    ("finish_reason: content_filter", ErrorClass.SAFETY_BLOCK),
    ("Output data may contain inappropriate content (DataInspectionFailed)", ErrorClass.SAFETY_BLOCK),
    ("RESOURCE_EXHAUSTED: quota exceeded", ErrorClass.RETRYABLE_RATE_LIMIT),
    ("HTTP 429 Too Many Requests", ErrorClass.RETRYABLE_RATE_LIMIT),
    ("The model is overloaded", ErrorClass.RETRYABLE_SERVER),
    ("503 UNAVAILABLE", ErrorClass.RETRYABLE_SERVER),
    ("TypeError: Failed to fetch", ErrorClass.RETRYABLE_NETWORK),
    ("invalid api key", ErrorClass.NON_RETRYABLE),
])
def test_message_fallback(message, expected):
    assert classify_message(message) is expected
    assert classify(RuntimeError(message)) is expected


def test_retryable_members():
    retryable = {c for c in ErrorClass if c.retryable}
    assert retryable == {
        ErrorClass.RETRYABLE_NETWORK,
        ErrorClass.RETRYABLE_RATE_LIMIT,
        ErrorClass.RETRYABLE_SERVER,
    }
