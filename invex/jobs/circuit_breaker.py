"""
Circuit Breaker

Failure-rate breaker for the extraction service. Independent of the stage
retry policy: retries decide whether *this* invoice tries again, the breaker
decides whether *anyone* may call the service right now.

States:
- closed: calls pass; failures inside the rolling window are counted
- open: calls fail fast with CircuitOpenError until the recovery timeout
- half_open: a single trial call is let through; success closes, failure reopens
"""

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Deque, Dict, Optional, Tuple, Type, TypeVar

from invex.exceptions import CircuitOpenError, ExtractionError

logger = logging.getLogger(__name__)

T = TypeVar('T')


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    """Circuit breaker configuration"""
    failure_threshold: int = 10
    window_seconds: float = 300.0
    recovery_timeout: float = 30.0

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> 'CircuitBreakerConfig':
        data = data or {}
        return cls(
            failure_threshold=int(data.get('failure_threshold', cls.failure_threshold)),
            window_seconds=float(data.get('window_seconds', cls.window_seconds)),
            recovery_timeout=float(data.get('recovery_timeout', cls.recovery_timeout))
        )


class CircuitBreaker:
    """
    Opens after ``failure_threshold`` failures within ``window_seconds``.

    Usage:
        breaker = CircuitBreaker(CircuitBreakerConfig(failure_threshold=5))
        result = await breaker.call(service.extract, images, schema, ...)
    """

    def __init__(
        self,
        config: Optional[CircuitBreakerConfig] = None,
        name: str = 'extraction',
        tracked_exceptions: Tuple[Type[BaseException], ...] = (ExtractionError, asyncio.TimeoutError),
        clock: Callable[[], float] = time.monotonic
    ):
        self.config = config or CircuitBreakerConfig()
        self.name = name
        self.tracked_exceptions = tracked_exceptions
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failures: Deque[float] = deque()
        self._opened_at: Optional[float] = None
        self._trial_in_flight = False
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        if self._state == CircuitState.OPEN and self._recovery_elapsed():
            return CircuitState.HALF_OPEN
        return self._state

    async def call(self, func: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
        """
        Invoke ``func`` through the breaker.

        Raises:
            CircuitOpenError: If the breaker is open (or a half-open trial is already running)
        """
        is_trial = await self._before_call()
        try:
            result = await func(*args, **kwargs)
        except self.tracked_exceptions:
            await self._record_failure()
            raise
        except BaseException:
            if is_trial:
                self._trial_in_flight = False
            raise
        await self._record_success()
        return result

    async def _before_call(self) -> bool:
        async with self._lock:
            if self._state == CircuitState.CLOSED:
                return False

            if self._state == CircuitState.OPEN:
                if not self._recovery_elapsed():
                    retry_after = self.config.recovery_timeout - (self._clock() - self._opened_at)
                    raise CircuitOpenError(
                        f"Circuit '{self.name}' is open; retry in {retry_after:.1f}s",
                        retry_after=max(0.0, retry_after)
                    )
                self._state = CircuitState.HALF_OPEN
                logger.info(f"Circuit '{self.name}' half-open, allowing trial call")

            # Half-open: exactly one trial at a time
            if self._trial_in_flight:
                raise CircuitOpenError(
                    f"Circuit '{self.name}' is half-open; trial call in progress",
                    retry_after=self.config.recovery_timeout
                )
            self._trial_in_flight = True
            return True

    async def _record_success(self) -> None:
        async with self._lock:
            if self._state != CircuitState.CLOSED:
                logger.info(f"Circuit '{self.name}' closed after successful trial")
            self._state = CircuitState.CLOSED
            self._failures.clear()
            self._opened_at = None
            self._trial_in_flight = False

    async def _record_failure(self) -> None:
        async with self._lock:
            now = self._clock()

            if self._state == CircuitState.HALF_OPEN:
                self._trip(now)
                return

            self._failures.append(now)
            self._prune(now)
            if len(self._failures) >= self.config.failure_threshold:
                self._trip(now)

    def _trip(self, now: float) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = now
        self._trial_in_flight = False
        self._failures.clear()
        logger.warning(
            f"Circuit '{self.name}' opened; blocking calls for {self.config.recovery_timeout}s"
        )

    def _prune(self, now: float) -> None:
        cutoff = now - self.config.window_seconds
        while self._failures and self._failures[0] < cutoff:
            self._failures.popleft()

    def _recovery_elapsed(self) -> bool:
        return self._opened_at is not None and (self._clock() - self._opened_at) >= self.config.recovery_timeout

    def get_stats(self) -> Dict[str, Any]:
        """Get breaker statistics"""
        self._prune(self._clock())
        return {
            'name': self.name,
            'state': self.state.value,
            'recent_failures': len(self._failures),
            'failure_threshold': self.config.failure_threshold,
            'window_seconds': self.config.window_seconds,
            'recovery_timeout': self.config.recovery_timeout
        }
