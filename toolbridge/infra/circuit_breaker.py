"""Circuit breaker for external service calls."""

import asyncio
import logging
from enum import Enum
from typing import Callable, Any, Optional
from datetime import datetime, timezone

from toolbridge.infra.metrics import circuit_breaker_state

logger = logging.getLogger(__name__)

_STATE_GAUGE_VALUES = {"closed": 0, "half_open": 1, "open": 2}


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject requests
    HALF_OPEN = "half_open"  # Testing if service recovered


class CircuitOpenError(RuntimeError):
    """Raised instead of calling the service while the circuit is open."""


class CircuitBreaker:
    """
    Circuit breaker for AI backend calls.

    Opens after ``failure_threshold`` consecutive failures, rejects calls until
    ``recovery_timeout`` has elapsed, then lets calls through half-open and
    closes again after two consecutive successes.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: int = 60,
        expected_exception: type = Exception,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exception = expected_exception
        self._clock = clock

        self.failure_count = 0
        self.last_failure_time: Optional[datetime] = None
        self.state = CircuitState.CLOSED
        self.success_count = 0  # For half-open state
        self._publish_state()

    def _publish_state(self) -> None:
        circuit_breaker_state.labels(service=self.name).set(_STATE_GAUGE_VALUES[self.state.value])

    def _transition(self, state: CircuitState) -> None:
        if state != self.state:
            logger.warning(
                "Circuit breaker state changed",
                extra={"service": self.name, "from_state": self.state.value, "to_state": state.value},
            )
            self.state = state
            self._publish_state()

    def _before_call(self) -> None:
        if self.state != CircuitState.OPEN:
            return
        if self.last_failure_time is None:
            raise CircuitOpenError(f"Circuit breaker '{self.name}' is OPEN. Service unavailable.")
        elapsed = (self._clock() - self.last_failure_time).total_seconds()
        if elapsed < self.recovery_timeout:
            raise CircuitOpenError(
                f"Circuit breaker '{self.name}' is OPEN. Service unavailable. "
                f"Retry after {int(self.recovery_timeout - elapsed)} seconds."
            )
        self.success_count = 0
        self._transition(CircuitState.HALF_OPEN)

    def _on_success(self) -> None:
        if self.state == CircuitState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= 2:  # Need 2 successes to close
                self.failure_count = 0
                self.success_count = 0
                self._transition(CircuitState.CLOSED)
        else:
            self.failure_count = 0

    def _on_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = self._clock()
        if self.state == CircuitState.HALF_OPEN or self.failure_count >= self.failure_threshold:
            self._transition(CircuitState.OPEN)

    async def call_async(self, func: Callable, *args, **kwargs) -> Any:
        """
        Execute async function with circuit breaker protection.

        Args:
            func: Async function to execute
            *args, **kwargs: Function arguments

        Returns:
            Function result

        Raises:
            CircuitOpenError: If circuit is open
            Exception: Original exception from function
        """
        self._before_call()
        try:
            result = await func(*args, **kwargs)
        except asyncio.CancelledError:
            # A caller-side timeout cancels the call; a backend that hangs is failing.
            self._on_failure()
            raise
        except self.expected_exception:
            self._on_failure()
            raise
        self._on_success()
        return result


# Global circuit breakers for AI backends
openai_circuit_breaker = CircuitBreaker(
    "openai",
    failure_threshold=5,
    recovery_timeout=60,
)

gemini_circuit_breaker = CircuitBreaker(
    "gemini",
    failure_threshold=5,
    recovery_timeout=60,
)


def get_circuit_breaker(provider: str) -> CircuitBreaker:
    """Return the shared breaker for an AI provider."""
    if provider == "openai":
        return openai_circuit_breaker
    return gemini_circuit_breaker
