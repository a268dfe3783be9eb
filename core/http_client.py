# core/http_client.py
"""
Connection pool for the chat-completion adapters.

An httpx.AsyncClient is bound to the event loop that created it, and a
process may run several loops (TestClient, worker threads), so one client
is kept per loop.
"""

import asyncio
import logging
from typing import Optional
from weakref import WeakKeyDictionary

import httpx

logger = logging.getLogger(__name__)

# Check if HTTP/2 is supported (requires 'h2' package)
try:
    import h2  # noqa: F401
    HTTP2_ENABLED = True
except ImportError:
    HTTP2_ENABLED = False

# Chapter streams can sit silent for a long time while the model is thinking
STREAM_READ_TIMEOUT = 120.0

POOL_LIMITS = httpx.Limits(max_connections=100, max_keepalive_connections=20)

_clients: "WeakKeyDictionary[asyncio.AbstractEventLoop, httpx.AsyncClient]" = WeakKeyDictionary()
_default_timeout: Optional[httpx.Timeout] = None


def build_timeout(connect: float = 5.0, read: float = STREAM_READ_TIMEOUT) -> httpx.Timeout:
    return httpx.Timeout(connect=connect, read=read, write=10.0, pool=5.0)


def configure(timeout: httpx.Timeout) -> None:
    """Timeout for clients created from now on. Existing clients keep theirs."""
    global _default_timeout
    _default_timeout = timeout


def get_client(timeout: Optional[httpx.Timeout] = None) -> httpx.AsyncClient:
    """
    Client for the running loop, created on first use (or after close).
    `timeout` only applies when a client is created.
    """
    loop = asyncio.get_running_loop()

    client = _clients.get(loop)
    if client is None or client.is_closed:
        client = httpx.AsyncClient(
            timeout=timeout or _default_timeout or build_timeout(),
            limits=POOL_LIMITS,
            http2=HTTP2_ENABLED,
        )
        _clients[loop] = client
        logger.debug(
            "HTTP client created",
            extra={"event": "http_client_created", "http2": HTTP2_ENABLED, "read_timeout": client.timeout.read},
        )
    return client


async def close_client() -> None:
    """Close every pooled client. Call on application shutdown."""
    for client in list(_clients.values()):
        try:
            await client.aclose()
        except Exception:
            logger.debug("http client close failed", exc_info=True)
    _clients.clear()
