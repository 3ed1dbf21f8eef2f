"""Circuit breaker for calls to the identity provider."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from peerlab_gateway.utils.time import utc_now

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Calls pass through
    OPEN = "open"  # Calls fail fast
    HALF_OPEN = "half_open"  # Probing for recovery


@dataclass
class CircuitBreakerConfig:
    """Circuit breaker configuration."""

    failure_threshold: int = 5  # Consecutive failures before opening
    timeout_seconds: int = 60  # Time before probing
    half_open_max_calls: int = 3  # Probe calls allowed while half-open
    success_threshold: int = 2  # Probe successes needed to close


class CircuitBreakerOpen(Exception):
    """Raised instead of calling through while the circuit is open."""

    def __init__(self, service_name: str, retry_after: int):
        self.service_name = service_name
        self.retry_after = retry_after
        super().__init__(f"Circuit breaker open for {service_name}, retry after {retry_after}s")


class CircuitBreaker:
    """
    Fail fast after repeated upstream failures.

    State transitions:
    - CLOSED -> OPEN: failure_threshold consecutive failures
    - OPEN -> HALF_OPEN: timeout_seconds elapsed
    - HALF_OPEN -> CLOSED: success_threshold consecutive successes
    - HALF_OPEN -> OPEN: any failure
    """

    def __init__(self, name: str, config: CircuitBreakerConfig):
        self.name = name
        self.config = config
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._successes = 0
        self._half_open_calls = 0
        self._opened_at: Optional[datetime] = None
        self._lock = asyncio.Lock()

    @property
    def state(self) -> CircuitState:
        return self._state

    async def call(self, func: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        """
        Await ``func`` through the breaker.

        Raises:
            CircuitBreakerOpen: Circuit is open or the half-open probe budget is spent.
            Exception: Whatever ``func`` raised, after it is recorded.
        """
        async with self._lock:
            if self._state == CircuitState.OPEN:
                if self._elapsed_since_open() >= self.config.timeout_seconds:
                    self._set_state(CircuitState.HALF_OPEN)
                else:
                    raise CircuitBreakerOpen(self.name, self._retry_after())

            if self._state == CircuitState.HALF_OPEN:
                if self._half_open_calls >= self.config.half_open_max_calls:
                    raise CircuitBreakerOpen(self.name, self._retry_after())
                self._half_open_calls += 1

        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            await self._record_failure(e)
            raise

        await self._record_success()
        return result

    async def reset(self) -> None:
        """Force the circuit closed."""
        async with self._lock:
            logger.info(f"Circuit {self.name} manually reset")
            self._set_state(CircuitState.CLOSED)

    async def _record_success(self) -> None:
        async with self._lock:
            self._failures = 0
            self._successes += 1
            if (
                self._state == CircuitState.HALF_OPEN
                and self._successes >= self.config.success_threshold
            ):
                self._set_state(CircuitState.CLOSED)

    async def _record_failure(self, error: Exception) -> None:
        async with self._lock:
            self._failures += 1
            self._successes = 0
            logger.warning(
                f"Circuit {self.name} failure "
                f"({self._failures}/{self.config.failure_threshold}): {error}"
            )
            if self._state == CircuitState.HALF_OPEN or (
                self._state == CircuitState.CLOSED
                and self._failures >= self.config.failure_threshold
            ):
                self._set_state(CircuitState.OPEN)

    def _set_state(self, state: CircuitState) -> None:
        self._state = state
        self._successes = 0
        self._half_open_calls = 0
        if state == CircuitState.OPEN:
            self._opened_at = utc_now()
            logger.error(f"Circuit {self.name} opened after {self._failures} failures")
        elif state == CircuitState.HALF_OPEN:
            self._failures = 0
            logger.info(f"Circuit {self.name} entering half-open state")
        else:
            self._failures = 0
            self._opened_at = None
            logger.info(f"Circuit {self.name} closed")

    def _elapsed_since_open(self) -> float:
        if not self._opened_at:
            return float(self.config.timeout_seconds)
        return (utc_now() - self._opened_at).total_seconds()

    def _retry_after(self) -> int:
        return int(max(0.0, self.config.timeout_seconds - self._elapsed_since_open()))
