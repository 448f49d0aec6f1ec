"""
Unit tests for cooperative cancellation tokens.
"""
import asyncio

import pytest

from figbud.core.cancellation import CancellationToken, RequestCancelled


@pytest.mark.asyncio
async def test_guard_returns_result_when_not_cancelled():
    token = CancellationToken()

    async def work():
        await asyncio.sleep(0.01)
        return "done"

    assert await token.guard(work()) == "done"


@pytest.mark.asyncio
async def test_guard_raises_when_cancelled_mid_flight():
    token = CancellationToken()
    finished = []

    async def work():
        await asyncio.sleep(1.0)
        finished.append(True)

    async def cancel_soon():
        await asyncio.sleep(0.01)
        token.cancel("superseded")

    canceller = asyncio.create_task(cancel_soon())
    with pytest.raises(RequestCancelled) as exc_info:
        await token.guard(work())
    await canceller

    assert exc_info.value.reason == "superseded"
    assert finished == []


@pytest.mark.asyncio
async def test_guard_refuses_already_cancelled_token():
    token = CancellationToken()
    token.cancel()
    coro = asyncio.sleep(0)
    with pytest.raises(RequestCancelled):
        await token.guard(coro)
    coro.close()


@pytest.mark.asyncio
async def test_sleep_reports_cancellation():
    token = CancellationToken()
    assert await token.sleep(0.01) is False

    asyncio.get_running_loop().call_later(0.01, token.cancel, "stop")
    assert await token.sleep(5.0) is True
    assert token.reason == "stop"


def test_first_reason_wins():
    token = CancellationToken()
    token.cancel("first")
    token.cancel("second")
    assert token.cancelled
    assert token.reason == "first"
    with pytest.raises(RequestCancelled):
        token.raise_if_cancelled()
