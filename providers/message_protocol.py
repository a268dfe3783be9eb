# providers/message_protocol.py
"""
Chat-completion adapter for OpenAI-compatible HTTP backends (DashScope,
Volcano Ark, self-hosted gateways).

These backends have no structured-output contract. When a schema is
requested the adapter appends formatting instructions to the prompt and
the caller has to run the result through core.repair.
"""

import email.utils
import json
import logging
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, Optional

import httpx

from core.classifier import SAFETY_MARKERS
from core.exceptions import (
    ProviderError,
    RateLimitError,
    SafetyBlockError,
    StreamingError,
    TransientNetworkError,
    TransientServerError,
)
from core.http_client import get_client
from core.models import Completion, GenerationRequest, ProviderFamily, StreamEvent, UsageDelta
from core.sse import decode_stream
from providers.base import ProviderAdapter, shape_system_instruction
from providers.registry import ResolvedProvider

logger = logging.getLogger(__name__)

JSON_ONLY_INSTRUCTION = (
    "IMPORTANT: Return valid JSON ONLY. No markdown formatting. No ```json block.\n"
    "CRITICAL: You MUST enclose all keys and string values in DOUBLE QUOTES. "
    'Example: "title": "Chapter 1".'
)

_EXAMPLE_SCALARS = {"integer": 1, "number": 1.0, "boolean": True}


def schema_example(schema: Dict[str, Any]) -> Any:
    """Build a compact example value from a JSON-Schema dict."""
    kind = schema.get("type")
    if kind == "array":
        return [schema_example(schema.get("items") or {"type": "string"})]
    if kind == "object":
        return {name: schema_example(sub) for name, sub in (schema.get("properties") or {}).items()}
    return _EXAMPLE_SCALARS.get(kind, "...")


def format_instruction(schema: Dict[str, Any]) -> str:
    example = json.dumps(schema_example(schema), ensure_ascii=False)
    if schema.get("type") == "array":
        example = example[:-1] + ", ...]"
    return f"{JSON_ONLY_INSTRUCTION}\nFormat: {example}"


def parse_retry_after(raw: Optional[str]) -> Optional[float]:
    """Retry-After as seconds: either delta-seconds or an HTTP-date."""
    if not raw:
        return None
    raw = raw.strip()
    if raw.isdigit():
        return float(raw)
    try:
        parsed = email.utils.parsedate_to_datetime(raw)
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return max(0.0, (parsed - datetime.now(timezone.utc)).total_seconds())


def error_from_response(
    status: int, body: str, provider: str, headers: Optional[httpx.Headers] = None
) -> ProviderError:
    """Convert a non-2xx response into a typed gateway error."""
    message = f"Provider API Error: {status} {body[:500]}"
    kwargs = {"provider": provider, "status_code": status, "body": body}

    if SAFETY_MARKERS.search(body or ""):
        return SafetyBlockError(message, **kwargs)
    if status == 429:
        retry_after = parse_retry_after(headers.get("Retry-After") if headers is not None else None)
        return RateLimitError(message, retry_after=retry_after, **kwargs)
    if status >= 500:
        return TransientServerError(message, **kwargs)
    return ProviderError(message, **kwargs)


def _usage_from(record: Dict[str, Any]) -> tuple:
    usage = record.get("usage")
    if not isinstance(usage, dict):
        return ()
    return (
        UsageDelta(
            input_tokens=int(usage.get("prompt_tokens") or 0),
            output_tokens=int(usage.get("completion_tokens") or 0),
        ),
    )


class ChatCompletionsAdapter(ProviderAdapter):
    """
    Args:
        client: Optional httpx.AsyncClient. Defaults to the shared
                per-event-loop client from core.http_client.
    """

    family = ProviderFamily.MESSAGE_PROTOCOL

    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        return self._client or get_client()

    # ----------------------------------------------------------------------
    # Request shaping
    # ----------------------------------------------------------------------
    def build_payload(self, request: GenerationRequest, provider: ResolvedProvider, *, stream: bool) -> Dict[str, Any]:
        prompt = request.prompt
        if request.schema is not None:
            prompt = f"{prompt}\n\n{format_instruction(request.schema)}"

        system = shape_system_instruction(provider.spec, request.system_instruction)
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        payload: Dict[str, Any] = {
            "model": provider.model,
            "messages": messages,
            "stream": stream,
            "temperature": request.temperature,
        }
        max_tokens = request.max_output_tokens or provider.max_output_tokens
        if max_tokens:
            payload["max_tokens"] = max_tokens
        return payload

    def _headers(self, provider: ResolvedProvider) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {provider.credential}",
        }

    async def _send(self, request: GenerationRequest, provider: ResolvedProvider, *, stream: bool) -> httpx.Response:
        client = self.client
        http_request = client.build_request(
            "POST",
            provider.endpoint,
            json=self.build_payload(request, provider, stream=stream),
            headers=self._headers(provider),
        )
        try:
            response = await client.send(http_request, stream=stream)
        except httpx.TransportError as e:
            raise TransientNetworkError(
                f"{provider.name} transport failure: {type(e).__name__}: {e}", provider=provider.name
            ) from e

        if response.status_code >= 400:
            try:
                body = (await response.aread()).decode("utf-8", errors="replace")
            finally:
                await response.aclose()
            raise error_from_response(response.status_code, body, provider.name, response.headers)
        return response

    # ----------------------------------------------------------------------
    # ProviderAdapter
    # ----------------------------------------------------------------------
    async def complete_once(self, request: GenerationRequest, provider: ResolvedProvider) -> Completion:
        response = await self._send(request, provider, stream=False)
        try:
            data = response.json()
        except ValueError as e:
            raise ProviderError(
                f"Unexpected {provider.name} response: not JSON", provider=provider.name, body=response.text[:500]
            ) from e

        try:
            choice = data["choices"][0]
            text = choice["message"].get("content") or ""
        except (KeyError, IndexError, TypeError, AttributeError) as e:
            raise ProviderError(
                f"Unexpected {provider.name} response structure: {e}", provider=provider.name
            ) from e

        if choice.get("finish_reason") == "content_filter":
            raise SafetyBlockError(
                f"{provider.name} blocked the response (content_filter)", provider=provider.name
            )

        return Completion(text=text, usage=_usage_from(data))

    async def complete_streaming(
        self, request: GenerationRequest, provider: ResolvedProvider
    ) -> AsyncIterator[StreamEvent]:
        response = await self._send(request, provider, stream=True)
        logger.debug("Stream opened", extra={"event": "stream_opened", "provider": provider.name})
        return self._events(response, provider.name)

    async def _events(self, response: httpx.Response, provider: str) -> AsyncIterator[StreamEvent]:
        try:
            async for event in decode_stream(response.aiter_bytes()):
                yield event
        except httpx.TransportError as e:
            raise StreamingError(
                f"{provider} stream interrupted: {type(e).__name__}: {e}", provider=provider
            ) from e
        finally:
            await response.aclose()
