# tests/conftest.py
import json
from types import SimpleNamespace

import httpx
import pytest

from core.models import ProviderConfig, ProviderId
from core.retry import RetryConfig


class ChunkedStream(httpx.AsyncByteStream):
    """Response body delivered as the given byte chunks, in order."""

    def __init__(self, chunks):
        self._chunks = list(chunks)

    async def __aiter__(self):
        for chunk in self._chunks:
            yield chunk


def sse_record(content=None, usage=None) -> str:
    record = {"choices": [{"index": 0, "delta": {"content": content} if content is not None else {}}]}
    if usage is not None:
        record["usage"] = usage
    return "data: " + json.dumps(record, ensure_ascii=False) + "\n\n"


@pytest.fixture
def fast_retry():
    """Three attempts with millisecond backoff so retry tests stay fast."""
    return RetryConfig(attempts=3, base_delay=0.01, max_backoff=1.0)


@pytest.fixture
def alibaba_config():
    return ProviderConfig(provider=ProviderId.ALIBABA, credential="sk-test")


@pytest.fixture
def gemini_config():
    return ProviderConfig(provider=ProviderId.GEMINI, credential="gm-test")


@pytest.fixture
def sse_body():
    """Build an SSE body from (content, usage) pairs, terminated by [DONE]."""

    def build(*records, done=True) -> str:
        body = "".join(sse_record(content, usage) for content, usage in records)
        if done:
            body += "data: [DONE]\n\n"
        return body

    return build


@pytest.fixture
def mock_http():
    """
    Factory for an httpx.AsyncClient backed by a scripted handler.
    Returns (client, calls) where calls collects every request sent.
    """
    def build(handler):
        calls = []

        def _handler(request: httpx.Request):
            calls.append(request)
            return handler(request, len(calls))

        client = httpx.AsyncClient(transport=httpx.MockTransport(_handler))
        return client, calls

    return build


@pytest.fixture
def chunked_response():
    """httpx.Response whose body arrives as the given byte chunks."""

    def build(status_code: int, chunks, headers=None) -> httpx.Response:
        return httpx.Response(status_code, stream=ChunkedStream(chunks), headers=headers)

    return build


def _gemini_response(text="", usage=(0, 0), finish_reason="STOP", block_reason=None):
    return SimpleNamespace(
        text=text,
        prompt_feedback=SimpleNamespace(block_reason=block_reason) if block_reason else None,
        candidates=[SimpleNamespace(finish_reason=SimpleNamespace(name=finish_reason))],
        usage_metadata=SimpleNamespace(prompt_token_count=usage[0], candidates_token_count=usage[1]),
    )


class FakeGeminiModels:
    """Stands in for client.aio.models; scripted per call."""

    def __init__(self, outcomes=None, stream_chunks=None):
        self.outcomes = list(outcomes or [])
        self.stream_chunks = list(stream_chunks or [])
        self.calls = []

    def _next(self):
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    async def generate_content(self, *, model, contents, config):
        self.calls.append({"model": model, "contents": contents, "config": config})
        return self._next()

    async def generate_content_stream(self, *, model, contents, config):
        self.calls.append({"model": model, "contents": contents, "config": config})
        if self.outcomes:
            self._next()
        chunks = list(self.stream_chunks)

        async def gen():
            for chunk in chunks:
                yield chunk

        return gen()


@pytest.fixture
def fake_gemini():
    """Returns (client_factory, models) for GeminiAdapter."""

    def build(outcomes=None, stream_chunks=None):
        models = FakeGeminiModels(outcomes, stream_chunks)
        credentials = []
        closed = []

        def factory(api_key):
            credentials.append(api_key)

            async def aclose():
                closed.append(api_key)

            return SimpleNamespace(aio=SimpleNamespace(models=models, aclose=aclose))

        factory.credentials = credentials
        factory.closed = closed
        return factory, models

    return build


@pytest.fixture
def gemini_response():
    """Builds objects shaped like google.genai GenerateContentResponse."""
    return _gemini_response
