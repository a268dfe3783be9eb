# tests/test_cancellation.py
import asyncio
import time

import pytest

from core import cancellation as cancel
from core.cancellation import CancellationToken
from core.exceptions import CancellationError


@pytest.mark.asyncio
async def test_race_returns_result_when_not_cancelled():
    async def work():
        return 7

    assert await cancel.race(work(), CancellationToken()) == 7
    assert await cancel.race(work(), None) == 7


@pytest.mark.asyncio
async def test_race_cancels_in_flight_work():
    token = CancellationToken()
    state = {"cleaned_up": False}

    async def work():
        try:
            await asyncio.sleep(10)
        finally:
            state["cleaned_up"] = True

    asyncio.get_running_loop().call_later(0.01, token.cancel, "stop")
    with pytest.raises(CancellationError, match="stop"):
        await cancel.race(work(), token)

    assert state["cleaned_up"]


@pytest.mark.asyncio
async def test_already_cancelled_token_never_starts_work():
    token = CancellationToken()
    token.cancel()
    started = False

    async def work():
        nonlocal started
        started = True

    with pytest.raises(CancellationError):
        await cancel.race(work(), token)

    assert not started


@pytest.mark.asyncio
async def test_sleep_wakes_early_on_cancel():
    token = CancellationToken()
    asyncio.get_running_loop().call_later(0.01, token.cancel)

    started = time.monotonic()
    with pytest.raises(CancellationError):
        await cancel.sleep(10, token)

    assert time.monotonic() - started < 1


@pytest.mark.asyncio
async def test_sleep_completes_without_cancel():
    await cancel.sleep(0.01, CancellationToken())
    await cancel.sleep(0.01, None)


def test_cancel_is_idempotent():
    token = CancellationToken()
    token.cancel("first")
    token.cancel("second")

    assert token.cancelled
    assert token.reason == "first"
    with pytest.raises(CancellationError, match="first"):
        token.raise_if_cancelled()
