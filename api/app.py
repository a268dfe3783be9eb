# api/app.py
# NOTE:
# The HTTP surface is a thin shell over core.gateway.Gateway. Provider
# configuration travels with each request; only the Gemini credential may
# fall back to the environment (GEMINI_API_KEY / API_KEY).
# NOTE:
# /generate returns a single JSON document. /generate/stream returns
# Server-Sent Events: `data: {"text": ...}` per fragment, `event: usage`
# for token counters, then `event: done` (or `event: error`).

import asyncio
import json
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.responses import StreamingResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import BaseModel, Field

from core.cancellation import CancellationToken
from core.config import Settings
from core.exceptions import (
    CancellationError,
    ConfigurationError,
    GatewayError,
    ProviderError,
    SafetyBlockError,
    TransientError,
    UnparsableOutputError,
)
from core.gateway import Gateway
from core.http_client import build_timeout, close_client, configure, get_client
from core.logging_config import setup_logging
from core.models import ProviderConfig, ProviderId, StreamToken, UsageDelta
from core.request_context import set_request_id
from core.tasks import TaskKind, get_task
from providers.registry import provider_table

logger = logging.getLogger(__name__)

settings = Settings.from_env()

DISCONNECT_POLL_SECONDS = 0.5


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup: configure structured JSON logging
    setup_logging(settings.log_level)

    # Shared HTTP pool uses the configured timeouts
    configure(build_timeout(settings.http_connect_timeout, settings.http_read_timeout))
    get_client()
    app.state.gateway = Gateway(retry_config=settings.retry_config())

    yield

    await app.state.gateway.close()
    await close_client()


app = FastAPI(
    title="Novel Generation Gateway",
    lifespan=lifespan
)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    """Generate a unique request ID and store it in the context."""
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    set_request_id(request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


class GenerateRequest(BaseModel):
    task: TaskKind
    prompt: str = Field(..., min_length=1)
    provider: ProviderId = ProviderId.GEMINI
    credential: Optional[str] = None
    model: Optional[str] = None
    base_url: Optional[str] = None
    max_output_tokens: Optional[int] = Field(None, gt=0)
    system_instruction: Optional[str] = None
    temperature: float = Field(0.7, ge=0.0, le=2.0)

    def provider_config(self) -> ProviderConfig:
        credential = self.credential
        if not credential and self.provider is ProviderId.GEMINI:
            credential = settings.gemini_api_key
        return ProviderConfig(
            provider=self.provider,
            credential=credential,
            model=self.model,
            base_url=self.base_url,
            max_output_tokens=self.max_output_tokens,
        )


def _usage_json(usage: UsageDelta) -> dict:
    return {"input_tokens": usage.input_tokens, "output_tokens": usage.output_tokens}


def http_error(exc: GatewayError) -> HTTPException:
    """Map gateway errors onto HTTP status codes."""
    if isinstance(exc, ConfigurationError):
        return HTTPException(status_code=400, detail=str(exc))
    if isinstance(exc, SafetyBlockError):
        return HTTPException(status_code=422, detail={"error": "safety_block", "message": str(exc)})
    if isinstance(exc, CancellationError):
        return HTTPException(status_code=499, detail="request cancelled")
    if isinstance(exc, TransientError):
        return HTTPException(status_code=503, detail=str(exc))
    if isinstance(exc, (UnparsableOutputError, ProviderError)):
        return HTTPException(status_code=502, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))


def _sse(data: dict, event: Optional[str] = None) -> str:
    frame = f"event: {event}\n" if event else ""
    return frame + f"data: {json.dumps(data, ensure_ascii=False)}\n\n"


@app.post("/generate")
async def generate(req: GenerateRequest, request: Request):
    """Run a one-shot task and return its text (and parsed value for structured tasks)."""
    gateway: Gateway = request.app.state.gateway
    try:
        result = await gateway.complete(
            req.task,
            req.provider_config(),
            req.prompt,
            system_instruction=req.system_instruction,
            temperature=req.temperature,
        )
    except GatewayError as e:
        logger.warning("Generation failed", extra={"event": "api_generate_failed", "error_type": type(e).__name__})
        raise http_error(e)

    return {
        "task": req.task.value,
        "text": result.text,
        "value": result.value,
        "usage": [_usage_json(u) for u in result.usage],
        "provider": result.provider,
        "model": result.model,
    }


async def watch_disconnect(request: Request, token: CancellationToken, interval: float = DISCONNECT_POLL_SECONDS) -> None:
    """Cancel `token` once the client goes away, even while the provider sends nothing."""
    while not token.cancelled:
        if await request.is_disconnected():
            logger.info("Client disconnected", extra={"event": "client_disconnected"})
            token.cancel("client disconnected")
            return
        await asyncio.sleep(interval)


@app.post("/generate/stream")
async def generate_stream(req: GenerateRequest, request: Request):
    """Stream a task as Server-Sent Events. Client disconnects cancel the request."""
    gateway: Gateway = request.app.state.gateway
    token = CancellationToken()
    try:
        handle = gateway.stream(
            req.task,
            req.provider_config(),
            req.prompt,
            system_instruction=req.system_instruction,
            temperature=req.temperature,
            cancellation=token,
        )
    except GatewayError as e:
        raise http_error(e)

    async def event_stream():
        events = handle.events()
        watcher = asyncio.ensure_future(watch_disconnect(request, token))
        try:
            async for event in events:
                if isinstance(event, StreamToken):
                    yield _sse({"text": event.text})
                elif isinstance(event, UsageDelta):
                    yield _sse(_usage_json(event), event="usage")
        except GatewayError as e:
            status = http_error(e).status_code
            yield _sse({"status": status, "error": type(e).__name__, "message": str(e)}, event="error")
            return
        finally:
            watcher.cancel()
            await events.aclose()
        yield _sse({"state": handle.state.value}, event="done")

    return StreamingResponse(event_stream(), media_type="text/event-stream")


@app.get("/tasks")
async def tasks():
    """Task table: which tasks stream and which return structured values."""
    return [
        {"task": kind.value, "streaming": get_task(kind).streaming, "structured": get_task(kind).structured}
        for kind in TaskKind
    ]


@app.get("/providers")
async def providers():
    return provider_table()


@app.get("/health")
async def health():
    """Liveness plus a view of the shared HTTP client."""
    client = get_client()
    return {
        "status": "ok",
        "http_client": "closed" if client.is_closed else "connected",
        "retry_attempts": settings.retry_attempts,
    }


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
