import pytest
from core.http_client import build_timeout, close_client, get_client


@pytest.mark.asyncio
async def test_http_client_shutdown():

    client = get_client()
    assert client is not None

    await close_client()

    assert client.is_closed


@pytest.mark.asyncio
async def test_client_is_shared_within_a_loop():
    first = get_client(build_timeout(connect=1.0, read=30.0))
    assert get_client() is first
    assert first.timeout.read == 30.0
    assert first.timeout.connect == 1.0

    await close_client()
    assert get_client() is not first
    await close_client()


def test_default_timeouts_allow_slow_streams():
    timeout = build_timeout()
    assert timeout.read == 120.0
    assert timeout.connect == 5.0


@pytest.mark.asyncio
async def test_configured_timeout_applies_to_new_clients(monkeypatch):
    from core import http_client

    monkeypatch.setattr(http_client, "_default_timeout", None)
    await close_client()

    http_client.configure(build_timeout(connect=2.0, read=45.0))
    client = get_client()

    assert client.timeout.read == 45.0
    assert client.timeout.connect == 2.0
    await close_client()
