"""
Unit tests for error classification, retry and the circuit breaker.
"""
import asyncio
from unittest.mock import AsyncMock

import pytest

from chorus.exceptions import (
    CircuitBreakerOpenError,
    GenerationError,
    InvalidMessageError,
    MessageDecodeError,
    TransportError,
)
from chorus.infra.error_handler import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
    ErrorMetrics,
    ErrorType,
    RetryConfig,
    classify_error,
    retry_with_backoff,
)


@pytest.mark.unit
@pytest.mark.parametrize("error,expected", [
    (TransportError("down"), ErrorType.TRANSPORT),
    (ConnectionResetError(), ErrorType.TRANSPORT),
    (asyncio.TimeoutError(), ErrorType.TRANSPORT),
    (MessageDecodeError("bad"), ErrorType.DECODE),
    (GenerationError("empty"), ErrorType.GENERATION),
    (CircuitBreakerOpenError("open"), ErrorType.GENERATION),
    (InvalidMessageError("no id"), ErrorType.INVARIANT),
    (KeyError("x"), ErrorType.UNKNOWN),
])
def test_classify_error(error, expected):
    assert classify_error(error) == expected


@pytest.mark.unit
def test_retry_delay_grows_and_caps():
    config = RetryConfig(base_delay=1.0, max_delay=5.0, exponential_base=2.0, jitter=False)

    assert [config.get_delay(n) for n in range(0, 6)] == [0.0, 1.0, 2.0, 4.0, 5.0, 5.0]


@pytest.mark.unit
def test_retry_delay_jitter_stays_in_range():
    config = RetryConfig(base_delay=1.0, jitter=True)

    for _ in range(50):
        assert 1.1 <= config.get_delay(1) <= 1.3


@pytest.mark.unit
def test_error_metrics_record():
    metrics = ErrorMetrics()

    metrics.record(TransportError("down"))
    metrics.record(MessageDecodeError("bad"))
    metrics.record(TransportError("down again"))

    data = metrics.to_dict()
    assert data["total_errors"] == 3
    assert data["errors_by_type"] == {"transport": 2, "decode": 1}
    assert data["last_error"] == "TransportError: down again"


@pytest.mark.asyncio
async def test_retry_with_backoff_recovers_from_transport_errors():
    func = AsyncMock(side_effect=[TransportError("a"), TransportError("b"), "ok"])
    metrics = ErrorMetrics()

    result = await retry_with_backoff(
        func, retry_config=RetryConfig(max_attempts=5, base_delay=0.001, jitter=False), metrics=metrics
    )

    assert result == "ok"
    assert func.await_count == 3
    assert metrics.retry_attempts == 2


@pytest.mark.asyncio
async def test_retry_with_backoff_does_not_retry_other_errors():
    func = AsyncMock(side_effect=GenerationError("nope"))

    with pytest.raises(GenerationError):
        await retry_with_backoff(func, retry_config=RetryConfig(base_delay=0.001, jitter=False))

    assert func.await_count == 1


@pytest.mark.asyncio
async def test_circuit_breaker_opens_and_recovers():
    breaker = CircuitBreaker(CircuitBreakerConfig(failure_threshold=2, recovery_timeout=0.05, success_threshold=1))
    failing = AsyncMock(side_effect=GenerationError("backend down"))
    working = AsyncMock(return_value="fine")

    for _ in range(2):
        with pytest.raises(GenerationError):
            await breaker.call(failing)
    assert breaker.state == CircuitState.OPEN

    with pytest.raises(CircuitBreakerOpenError):
        await breaker.call(working)
    assert working.await_count == 0

    await asyncio.sleep(0.06)
    assert await breaker.call(working) == "fine"
    assert breaker.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_half_open_failure_reopens():
    breaker = CircuitBreaker(CircuitBreakerConfig(failure_threshold=1, recovery_timeout=0.01, success_threshold=2))
    failing = AsyncMock(side_effect=GenerationError("still down"))

    with pytest.raises(GenerationError):
        await breaker.call(failing)
    await asyncio.sleep(0.02)

    with pytest.raises(GenerationError):
        await breaker.call(failing)

    assert breaker.state == CircuitState.OPEN
    assert breaker.get_stats()["state"] == "open"


@pytest.mark.asyncio
async def test_retry_with_backoff_uses_the_given_sleep():
    func = AsyncMock(side_effect=[TransportError("a"), TransportError("b"), "ok"])
    delays = []

    async def record_sleep(delay: float):
        delays.append(delay)

    result = await retry_with_backoff(
        func,
        retry_config=RetryConfig(base_delay=1.0, max_delay=30.0, jitter=False),
        sleep=record_sleep
    )

    assert result == "ok"
    assert delays == [1.0, 2.0]
