"""Unit tests for the upstream circuit breaker."""
from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from shared.errors import UpstreamMalformed, UpstreamUnavailable
from shared.utils.circuit_breaker import CircuitBreaker, CircuitBreakerOpen, CircuitState

from conftest import FakeClock


def _breaker(clock: FakeClock) -> CircuitBreaker:
    return CircuitBreaker("fake", failure_threshold=2, recovery_timeout_s=60, clock=clock)


async def _fail(breaker: CircuitBreaker) -> None:
    with pytest.raises(UpstreamUnavailable):
        await breaker.call(AsyncMock(side_effect=UpstreamUnavailable("fake", "HTTP 503")))


@pytest.mark.asyncio
async def test_opens_after_threshold(clock: FakeClock) -> None:
    breaker = _breaker(clock)
    await _fail(breaker)
    assert breaker.state == CircuitState.CLOSED
    await _fail(breaker)
    assert breaker.state == CircuitState.OPEN


@pytest.mark.asyncio
async def test_open_circuit_fails_fast(clock: FakeClock) -> None:
    breaker = _breaker(clock)
    await _fail(breaker)
    await _fail(breaker)
    func = AsyncMock(return_value="ok")
    with pytest.raises(CircuitBreakerOpen):
        await breaker.call(func)
    func.assert_not_awaited()


@pytest.mark.asyncio
async def test_half_open_trial_success_closes(clock: FakeClock) -> None:
    breaker = _breaker(clock)
    await _fail(breaker)
    await _fail(breaker)
    clock.advance(61)
    assert breaker.state == CircuitState.HALF_OPEN
    assert await breaker.call(AsyncMock(return_value="ok")) == "ok"
    assert breaker.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_half_open_trial_failure_reopens(clock: FakeClock) -> None:
    breaker = _breaker(clock)
    await _fail(breaker)
    await _fail(breaker)
    clock.advance(61)
    await _fail(breaker)
    assert breaker.state == CircuitState.OPEN


@pytest.mark.asyncio
async def test_success_resets_failure_count(clock: FakeClock) -> None:
    breaker = _breaker(clock)
    await _fail(breaker)
    await breaker.call(AsyncMock(return_value=None))
    await _fail(breaker)
    assert breaker.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_malformed_payload_is_not_a_failure(clock: FakeClock) -> None:
    breaker = _breaker(clock)
    for _ in range(3):
        with pytest.raises(UpstreamMalformed):
            await breaker.call(AsyncMock(side_effect=UpstreamMalformed("fake", "bad body")))
    assert breaker.state == CircuitState.CLOSED
