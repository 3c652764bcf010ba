"""
Tests for CircuitBreaker
"""

import asyncio

import pytest

from invex.exceptions import CircuitOpenError, DecodeError, ExtractionError
from invex.jobs.circuit_breaker import CircuitBreaker, CircuitBreakerConfig, CircuitState


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def breaker(clock):
    return CircuitBreaker(
        CircuitBreakerConfig(failure_threshold=3, window_seconds=60, recovery_timeout=30),
        clock=clock
    )


async def ok():
    return 'ok'


async def fail():
    raise ExtractionError('upstream 503')


async def trip(breaker):
    for _ in range(breaker.config.failure_threshold):
        with pytest.raises(ExtractionError):
            await breaker.call(fail)


class TestCircuitBreaker:
    """Tests for the failure-rate breaker"""

    @pytest.mark.asyncio
    async def test_closed_passes_calls(self, breaker):
        """Calls go through while closed"""
        assert await breaker.call(ok) == 'ok'
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_opens_at_threshold(self, breaker):
        """Threshold failures inside the window open the circuit"""
        await trip(breaker)

        assert breaker.state == CircuitState.OPEN
        with pytest.raises(CircuitOpenError) as exc_info:
            await breaker.call(ok)
        assert exc_info.value.retry_after == pytest.approx(30)

    @pytest.mark.asyncio
    async def test_failures_outside_window_expire(self, breaker, clock):
        """Old failures no longer count"""
        for _ in range(2):
            with pytest.raises(ExtractionError):
                await breaker.call(fail)

        clock.advance(61)
        with pytest.raises(ExtractionError):
            await breaker.call(fail)

        assert breaker.state == CircuitState.CLOSED
        assert breaker.get_stats()['recent_failures'] == 1

    @pytest.mark.asyncio
    async def test_untracked_errors_ignored(self, breaker):
        """Errors that are not service failures do not trip the breaker"""
        async def bad_payload():
            raise DecodeError('garbage')

        for _ in range(5):
            with pytest.raises(DecodeError):
                await breaker.call(bad_payload)
        assert breaker.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_half_open_success_closes(self, breaker, clock):
        """A successful trial after recovery closes the circuit"""
        await trip(breaker)
        clock.advance(30)

        assert breaker.state == CircuitState.HALF_OPEN
        assert await breaker.call(ok) == 'ok'
        assert breaker.state == CircuitState.CLOSED
        assert breaker.get_stats()['recent_failures'] == 0

    @pytest.mark.asyncio
    async def test_half_open_failure_reopens(self, breaker, clock):
        """A failed trial reopens for another recovery period"""
        await trip(breaker)
        clock.advance(30)

        with pytest.raises(ExtractionError):
            await breaker.call(fail)

        assert breaker.state == CircuitState.OPEN
        clock.advance(29)
        with pytest.raises(CircuitOpenError):
            await breaker.call(ok)

    @pytest.mark.asyncio
    async def test_single_trial_in_half_open(self, breaker, clock):
        """Only one call is let through while half-open"""
        await trip(breaker)
        clock.advance(30)

        release = asyncio.Event()

        async def slow_ok():
            await release.wait()
            return 'ok'

        trial = asyncio.create_task(breaker.call(slow_ok))
        await asyncio.sleep(0)

        with pytest.raises(CircuitOpenError):
            await breaker.call(ok)

        release.set()
        assert await trial == 'ok'
        assert breaker.state == CircuitState.CLOSED

    def test_config_from_dict(self):
        """Missing keys fall back to defaults"""
        config = CircuitBreakerConfig.from_dict({'failure_threshold': 4})

        assert config.failure_threshold == 4
        assert config.window_seconds == 300.0
        assert config.recovery_timeout == 30.0
