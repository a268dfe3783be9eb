# core/gateway.py
"""
core/gateway.py

Single entry point for generation requests.

    gateway = Gateway(retry_config=Settings.from_env().retry_config())

    result = await gateway.complete(TaskKind.OUTLINE, config, prompt)
    result.value          # parsed chapter list

    async with gateway.stream(TaskKind.CHAPTER, config, prompt, cancellation=token) as chapter:
        async for text in chapter:
            ...
        chapter.usage     # UsageDelta events seen so far

Each request is an independent state machine
IDLE -> DISPATCHED -> (RETRYING)* -> COMPLETED | FAILED | CANCELLED.
Nothing is shared between requests except the read-only provider table and
the HTTP connection pool.
"""

import asyncio
import dataclasses
import logging
import time
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple, Union

from core import cancellation as cancel
from core.cancellation import CancellationToken
from core.classifier import ErrorClass
from core.exceptions import CancellationError, StreamingError
from core.metrics import record_latency, record_request, record_retry, record_stream_end, record_stream_start
from core.models import (
    GenerationRequest,
    ProviderConfig,
    ProviderFamily,
    RequestState,
    StreamEvent,
    StreamToken,
    TextResult,
    UsageDelta,
)
from core.repair import repair
from core.request_context import get_request_id, new_request_id
from core.retry import RetryConfig, retry_async
from core.tasks import TaskSpec, get_task
from providers.base import ProviderAdapter
from providers.message_protocol import ChatCompletionsAdapter
from providers.registry import ResolvedProvider, resolve
from providers.schema_native import GeminiAdapter

logger = logging.getLogger(__name__)

# Thinking budget for long-form tasks on the schema-native path when the
# caller did not pin a model.
LONG_FORM_THINKING_BUDGET = 2048


class RequestTracker:
    """
    Per-request state machine. Once a terminal state is reached further
    transitions are ignored, so a late success cannot overwrite CANCELLED.
    """

    def __init__(self, provider: str, task: str, request_id: str, streaming: bool = False):
        self.provider = provider
        self.task = task
        self.request_id = request_id
        self.streaming = streaming
        self.state = RequestState.IDLE
        self.retries = 0
        self._started = time.monotonic()

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self._started

    def _move(self, state: RequestState, **extra: Any) -> bool:
        if self.state.terminal:
            return False
        self.state = state
        logger.debug(
            "Request state changed",
            extra={
                "event": "request_state",
                "state": state.value,
                "provider": self.provider,
                "task": self.task,
                "request_id": self.request_id,
                **extra,
            },
        )
        return True

    def dispatched(self) -> None:
        self._move(RequestState.DISPATCHED)
        if self.streaming:
            record_stream_start(self.provider)

    def retrying(self, decision: ErrorClass) -> None:
        if self._move(RequestState.RETRYING, reason=decision.value):
            self.retries += 1
            record_retry(self.provider, decision.value)

    def _finish(self, state: RequestState, **extra: Any) -> None:
        if not self._move(state, **extra):
            return
        elapsed = self.elapsed
        record_request(self.provider, self.task, state.value)
        if self.streaming:
            record_stream_end(self.provider, state.value, elapsed)
        else:
            record_latency(self.provider, elapsed)
        logger.info(
            "Generation finished",
            extra={
                "event": "generation_finished",
                "state": state.value,
                "provider": self.provider,
                "task": self.task,
                "streaming": self.streaming,
                "retries": self.retries,
                "latency_sec": round(elapsed, 3),
                "request_id": self.request_id,
                **extra,
            },
        )

    def completed(self) -> None:
        self._finish(RequestState.COMPLETED)

    def failed(self, exc: BaseException) -> None:
        self._finish(RequestState.FAILED, error_type=type(exc).__name__, error_message=str(exc))

    def cancelled(self) -> None:
        self._finish(RequestState.CANCELLED)


async def _next_event(source: AsyncIterator[StreamEvent]) -> StreamEvent:
    return await source.__anext__()


class GenerationStream:
    """
    Lazy handle over one streaming request.

    Iterating yields text fragments; events() yields StreamToken and
    UsageDelta in arrival order; usage holds every UsageDelta seen so far.
    The stream opens on first iteration and can be consumed once.
    Cancellation ends iteration quietly; fragments already delivered stay valid.
    """

    def __init__(
        self,
        request: GenerationRequest,
        provider: ResolvedProvider,
        adapter: ProviderAdapter,
        *,
        retry_config: RetryConfig,
        cancellation: Optional[CancellationToken],
        tracker: RequestTracker,
    ):
        self.request = request
        self.provider = provider
        self._adapter = adapter
        self._retry_config = retry_config
        self._cancellation = cancellation
        self._tracker = tracker
        self._usage: List[UsageDelta] = []
        self._consumed = False
        self._iterators: List[Any] = []

    @property
    def state(self) -> RequestState:
        return self._tracker.state

    @property
    def usage(self) -> Tuple[UsageDelta, ...]:
        return tuple(self._usage)

    def _is_cancelled(self) -> bool:
        return self._cancellation is not None and self._cancellation.cancelled

    async def events(self) -> AsyncIterator[StreamEvent]:
        if self._consumed:
            raise StreamingError("stream already consumed; issue a new request instead")
        self._consumed = True
        tracker = self._tracker
        tracker.dispatched()

        try:
            # Only the opening call is retried; tokens cannot be taken back
            source = await retry_async(
                lambda: self._adapter.complete_streaming(self.request, self.provider),
                config=self._retry_config,
                cancellation=self._cancellation,
                request_id=tracker.request_id,
            )
        except CancellationError:
            tracker.cancelled()
            return
        except asyncio.CancelledError:
            tracker.cancelled()
            raise
        except Exception as e:
            tracker.failed(e)
            raise

        try:
            while True:
                if self._is_cancelled():
                    tracker.cancelled()
                    return
                try:
                    event = await cancel.race(_next_event(source), self._cancellation)
                except StopAsyncIteration:
                    tracker.completed()
                    return
                except CancellationError:
                    tracker.cancelled()
                    return
                if isinstance(event, UsageDelta):
                    self._usage.append(event)
                yield event
        except asyncio.CancelledError:
            tracker.cancelled()
            raise
        except GeneratorExit:
            # Consumer stopped iterating early
            tracker.cancelled()
            raise
        except Exception as e:
            tracker.failed(e)
            raise
        finally:
            aclose = getattr(source, "aclose", None)
            if aclose is not None:
                await aclose()

    async def _tokens(self) -> AsyncIterator[str]:
        events = self.events()
        try:
            async for event in events:
                if isinstance(event, StreamToken):
                    yield event.text
        finally:
            await events.aclose()

    def __aiter__(self) -> AsyncIterator[str]:
        iterator = self._tokens()
        self._iterators.append(iterator)
        return iterator

    async def text(self) -> str:
        """Consume the whole stream and return the concatenated text."""
        return "".join([fragment async for fragment in self])

    async def aclose(self) -> None:
        for iterator in self._iterators:
            await iterator.aclose()
        self._iterators.clear()

    async def __aenter__(self) -> "GenerationStream":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()


class Gateway:
    """
    Facade over the provider adapters.

    Args:
        adapters: Adapter per provider family. Defaults to the Gemini SDK
                  adapter and the chat-completions HTTP adapter.
        retry_config: Backoff policy for every request issued through this
                      gateway.
    """

    def __init__(
        self,
        adapters: Optional[Dict[ProviderFamily, ProviderAdapter]] = None,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.adapters = adapters if adapters is not None else {
            ProviderFamily.SCHEMA_NATIVE: GeminiAdapter(),
            ProviderFamily.MESSAGE_PROTOCOL: ChatCompletionsAdapter(),
        }
        self.retry_config = retry_config or RetryConfig()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self) -> None:
        for adapter in self.adapters.values():
            await adapter.aclose()

    # ----------------------------------------------------------------------
    # Request preparation
    # ----------------------------------------------------------------------
    def prepare(
        self,
        task,
        config: ProviderConfig,
        prompt: str,
        *,
        system_instruction: Optional[str] = None,
        schema: Optional[Dict[str, Any]] = None,
        temperature: Optional[float] = None,
    ) -> Tuple[TaskSpec, ResolvedProvider, GenerationRequest]:
        """
        Resolve the provider and build the immutable request.
        Configuration errors surface here, before any network call.
        """
        spec = get_task(task)
        resolved = resolve(config, long_form=spec.long_form)

        thinking_budget = None
        if spec.long_form and not resolved.model_pinned and resolved.spec.family is ProviderFamily.SCHEMA_NATIVE:
            thinking_budget = LONG_FORM_THINKING_BUDGET

        request = GenerationRequest(
            task=spec.kind.value,
            prompt=prompt,
            provider=config.provider,
            model=resolved.model,
            system_instruction=system_instruction if system_instruction is not None else spec.system_instruction,
            max_output_tokens=config.max_output_tokens,
            temperature=0.7 if temperature is None else temperature,
            schema=schema if schema is not None else spec.schema,
            thinking_budget=thinking_budget,
        )
        return spec, resolved, request

    def _adapter_for(self, resolved: ResolvedProvider) -> ProviderAdapter:
        return self.adapters[resolved.spec.family]

    def _retry_config_for(self, tracker: RequestTracker) -> RetryConfig:
        hook = self.retry_config.on_retry

        def on_retry(attempt: int, delay: float, exc: BaseException, decision: ErrorClass) -> None:
            tracker.retrying(decision)
            if hook:
                hook(attempt, delay, exc, decision)

        return dataclasses.replace(self.retry_config, on_retry=on_retry)

    # ----------------------------------------------------------------------
    # Public API
    # ----------------------------------------------------------------------
    async def complete(
        self,
        task,
        config: ProviderConfig,
        prompt: str,
        *,
        system_instruction: Optional[str] = None,
        schema: Optional[Dict[str, Any]] = None,
        temperature: Optional[float] = None,
        cancellation: Optional[CancellationToken] = None,
        request_id: Optional[str] = None,
    ) -> TextResult:
        """
        One-shot generation. Structured tasks come back with `value` set to
        the parsed payload.
        """
        spec, resolved, request = self.prepare(
            task, config, prompt,
            system_instruction=system_instruction, schema=schema, temperature=temperature,
        )
        tracker = RequestTracker(resolved.name, request.task, request_id or get_request_id() or new_request_id())
        adapter = self._adapter_for(resolved)

        tracker.dispatched()
        try:
            completion = await retry_async(
                lambda: adapter.complete_once(request, resolved),
                config=self._retry_config_for(tracker),
                cancellation=cancellation,
                request_id=tracker.request_id,
            )

            text = completion.text
            value = None
            if request.schema is not None:
                value = repair(text)
            elif not text.strip() and spec.empty_default is not None:
                text = spec.empty_default

            # A cancellation that lands after the response still wins
            if cancellation is not None:
                cancellation.raise_if_cancelled()
        except (CancellationError, asyncio.CancelledError):
            tracker.cancelled()
            raise
        except Exception as e:
            tracker.failed(e)
            raise

        tracker.completed()
        return TextResult(
            text=text,
            usage=completion.usage,
            value=value,
            provider=resolved.name,
            model=resolved.model,
            meta={"request_id": tracker.request_id, "retries": tracker.retries},
        )

    def stream(
        self,
        task,
        config: ProviderConfig,
        prompt: str,
        *,
        system_instruction: Optional[str] = None,
        temperature: Optional[float] = None,
        cancellation: Optional[CancellationToken] = None,
        request_id: Optional[str] = None,
    ) -> GenerationStream:
        """
        Streaming generation. Returns immediately; the request is issued
        when the handle is first iterated.
        """
        spec, resolved, request = self.prepare(
            task, config, prompt, system_instruction=system_instruction, temperature=temperature,
        )
        tracker = RequestTracker(
            resolved.name, request.task, request_id or get_request_id() or new_request_id(), streaming=True
        )
        return GenerationStream(
            request,
            resolved,
            self._adapter_for(resolved),
            retry_config=self._retry_config_for(tracker),
            cancellation=cancellation,
            tracker=tracker,
        )

    async def run(
        self,
        task,
        config: ProviderConfig,
        prompt: str,
        *,
        cancellation: Optional[CancellationToken] = None,
        **kwargs: Any,
    ) -> Union[TextResult, GenerationStream]:
        """Dispatch by task: streaming tasks get a handle, the rest a TextResult."""
        if get_task(task).streaming:
            kwargs.pop("schema", None)
            return self.stream(task, config, prompt, cancellation=cancellation, **kwargs)
        return await self.complete(task, config, prompt, cancellation=cancellation, **kwargs)
