# providers/schema_native.py
"""
Gemini adapter (google-genai SDK).

The backend enforces response schemas natively, so structured requests come
back as JSON that needs no repair. Safety blocks are read from the response
(prompt feedback and candidate finish reasons) instead of error strings.
"""

import logging
from typing import Any, AsyncIterator, Callable, Dict, Optional

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types

from core.classifier import SAFETY_MARKERS
from core.exceptions import (
    ProviderError,
    RateLimitError,
    SafetyBlockError,
    TransientNetworkError,
    TransientServerError,
)
from core.models import Completion, GenerationRequest, ProviderFamily, StreamEvent, StreamToken, UsageDelta
from providers.base import ProviderAdapter, shape_system_instruction
from providers.registry import ResolvedProvider

logger = logging.getLogger(__name__)

BLOCKING_FINISH_REASONS = {"SAFETY", "PROHIBITED_CONTENT", "BLOCKLIST", "SPII", "IMAGE_SAFETY"}

_SCHEMA_TYPES = {
    "string": genai_types.Type.STRING,
    "number": genai_types.Type.NUMBER,
    "integer": genai_types.Type.INTEGER,
    "boolean": genai_types.Type.BOOLEAN,
    "array": genai_types.Type.ARRAY,
    "object": genai_types.Type.OBJECT,
}


def to_genai_schema(schema: Dict[str, Any]) -> genai_types.Schema:
    """
    Recursively convert a JSON Schema dict into a google.genai types.Schema.

    Handles type, description, properties, required, items, and enum.
    """
    kwargs: Dict[str, Any] = {"type": _SCHEMA_TYPES.get(schema.get("type", "string"), genai_types.Type.STRING)}
    if "description" in schema:
        kwargs["description"] = schema["description"]
    if "enum" in schema:
        kwargs["enum"] = schema["enum"]
    if "properties" in schema:
        kwargs["properties"] = {k: to_genai_schema(v) for k, v in schema["properties"].items()}
    if "required" in schema:
        kwargs["required"] = list(schema["required"])
    if "items" in schema:
        kwargs["items"] = to_genai_schema(schema["items"])
    return genai_types.Schema(**kwargs)


def _reason_name(value: Any) -> Optional[str]:
    if value is None:
        return None
    return getattr(value, "name", None) or str(value).rsplit(".", 1)[-1]


def check_blocked(response: Any, provider: str) -> None:
    """Raise SafetyBlockError if the prompt or a candidate was blocked."""
    feedback = getattr(response, "prompt_feedback", None)
    block_reason = _reason_name(getattr(feedback, "block_reason", None))
    if block_reason and block_reason != "BLOCK_REASON_UNSPECIFIED":
        raise SafetyBlockError(f"{provider} blocked the prompt ({block_reason})", provider=provider)

    for candidate in getattr(response, "candidates", None) or []:
        reason = _reason_name(getattr(candidate, "finish_reason", None))
        if reason in BLOCKING_FINISH_REASONS:
            raise SafetyBlockError(f"{provider} blocked the response ({reason})", provider=provider)


def usage_from(response: Any) -> Optional[UsageDelta]:
    meta = getattr(response, "usage_metadata", None)
    if meta is None:
        return None
    return UsageDelta(
        input_tokens=int(getattr(meta, "prompt_token_count", 0) or 0),
        output_tokens=int(getattr(meta, "candidates_token_count", 0) or 0),
    )


def translate_error(exc: Exception, provider: str) -> Exception:
    """Map SDK exceptions onto the gateway's typed errors."""
    if isinstance(exc, genai_errors.APIError):
        code = getattr(exc, "code", None)
        message = f"{provider} API error {code} {getattr(exc, 'status', '') or ''}: {getattr(exc, 'message', '') or exc}"
        kwargs = {"provider": provider, "status_code": code}
        if SAFETY_MARKERS.search(message):
            return SafetyBlockError(message, **kwargs)
        if code == 429:
            return RateLimitError(message, **kwargs)
        if isinstance(code, int) and code >= 500:
            return TransientServerError(message, **kwargs)
        return ProviderError(message, **kwargs)
    if isinstance(exc, httpx.TransportError):
        return TransientNetworkError(f"{provider} transport failure: {type(exc).__name__}: {exc}", provider=provider)
    return exc


def _default_client_factory(api_key: str) -> genai.Client:
    return genai.Client(api_key=api_key)


class GeminiAdapter(ProviderAdapter):
    """
    Args:
        client_factory: Callable building an SDK client from a credential.
                        One client is built per credential and reused
                        until aclose().
    """

    family = ProviderFamily.SCHEMA_NATIVE

    def __init__(self, client_factory: Optional[Callable[[str], Any]] = None):
        self._client_factory = client_factory or _default_client_factory
        self._clients: Dict[str, Any] = {}

    def _client(self, credential: str) -> Any:
        client = self._clients.get(credential)
        if client is None:
            client = self._client_factory(credential)
            self._clients[credential] = client
        return client

    async def aclose(self) -> None:
        clients = list(self._clients.values())
        self._clients.clear()
        for client in clients:
            try:
                await client.aio.aclose()
            except Exception:
                logger.debug("genai client close failed", exc_info=True)

    def build_config(self, request: GenerationRequest, provider: ResolvedProvider) -> genai_types.GenerateContentConfig:
        kwargs: Dict[str, Any] = {"temperature": request.temperature}

        system = shape_system_instruction(provider.spec, request.system_instruction)
        if system:
            kwargs["system_instruction"] = system

        max_tokens = request.max_output_tokens or provider.max_output_tokens
        if max_tokens:
            kwargs["max_output_tokens"] = max_tokens

        if request.schema is not None:
            kwargs["response_mime_type"] = "application/json"
            kwargs["response_schema"] = to_genai_schema(request.schema)

        if request.thinking_budget is not None:
            kwargs["thinking_config"] = genai_types.ThinkingConfig(thinking_budget=request.thinking_budget)

        return genai_types.GenerateContentConfig(**kwargs)

    async def complete_once(self, request: GenerationRequest, provider: ResolvedProvider) -> Completion:
        client = self._client(provider.credential)
        try:
            response = await client.aio.models.generate_content(
                model=provider.model,
                contents=request.prompt,
                config=self.build_config(request, provider),
            )
        except Exception as e:
            translated = translate_error(e, provider.name)
            if translated is e:
                raise
            raise translated from e

        check_blocked(response, provider.name)
        usage = usage_from(response)
        return Completion(text=response.text or "", usage=(usage,) if usage else ())

    async def complete_streaming(
        self, request: GenerationRequest, provider: ResolvedProvider
    ) -> AsyncIterator[StreamEvent]:
        client = self._client(provider.credential)
        try:
            stream = await client.aio.models.generate_content_stream(
                model=provider.model,
                contents=request.prompt,
                config=self.build_config(request, provider),
            )
        except Exception as e:
            translated = translate_error(e, provider.name)
            if translated is e:
                raise
            raise translated from e
        return self._events(stream, provider.name)

    async def _events(self, stream: AsyncIterator[Any], provider: str) -> AsyncIterator[StreamEvent]:
        # usage_metadata is cumulative across chunks; only the last one is a
        # delta relative to the start of the request.
        last_usage: Optional[UsageDelta] = None
        try:
            async for chunk in stream:
                check_blocked(chunk, provider)
                text = chunk.text
                if text:
                    yield StreamToken(text)
                last_usage = usage_from(chunk) or last_usage
        except (genai_errors.APIError, httpx.TransportError) as e:
            raise translate_error(e, provider) from e
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()

        if last_usage is not None:
            yield last_usage
