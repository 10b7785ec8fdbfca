"""Circuit Breaker Utility

Stops calling an LLM collaborator that keeps failing.

States:
- CLOSED: Normal operation, requests allowed
- OPEN: After failure threshold, requests blocked
- HALF_OPEN: After cooldown, testing with limited requests

State Transitions:
- CLOSED → OPEN: After failure_threshold consecutive failures
- OPEN → HALF_OPEN: After cooldown_seconds
- HALF_OPEN → CLOSED: After success_threshold consecutive successes
- HALF_OPEN → OPEN: On any failure

Only retryable (transient) failures count against the breaker; caller
mistakes such as validation errors say nothing about provider health.
"""

import threading
import time
from enum import Enum
from typing import Awaitable, Callable, Dict, Optional, TypeVar

import structlog

from resilient_llm.models.llm import CircuitBreakerConfig
from resilient_llm.observability.metrics import CIRCUIT_STATE
from resilient_llm.services.llm.error_classifier import classify
from resilient_llm.utils.exceptions import AIError, ErrorCode

logger = structlog.get_logger()

T = TypeVar("T")


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


_STATE_GAUGE_VALUES = {
    CircuitState.CLOSED: 0,
    CircuitState.HALF_OPEN: 1,
    CircuitState.OPEN: 2,
}


class CircuitBreaker:
    """Thread-safe circuit breaker implementation."""

    def __init__(
        self,
        name: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize circuit breaker.

        Args:
            name: Identifier for this breaker (e.g., collaborator name)
            config: Thresholds and cooldown
            clock: Monotonic time source, injectable for tests
        """
        self.name = name
        self.config = config or CircuitBreakerConfig(enabled=True)
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._consecutive_failures = 0
        self._consecutive_successes = 0
        self._last_failure_time: Optional[float] = None
        self._lock = threading.RLock()
        self._publish_state()

    @property
    def state(self) -> CircuitState:
        """Current state, auto-transitioning OPEN to HALF_OPEN after cooldown."""
        with self._lock:
            if self._state == CircuitState.OPEN and self._cooldown_remaining() <= 0:
                self._transition(CircuitState.HALF_OPEN)
                self._consecutive_successes = 0
            return self._state

    def _cooldown_remaining(self) -> float:
        if self._last_failure_time is None:
            return 0.0
        elapsed = self._clock() - self._last_failure_time
        return max(0.0, self.config.cooldown_seconds - elapsed)

    def _transition(self, new_state: CircuitState) -> None:
        if new_state != self._state:
            logger.info(
                "circuit_state_changed",
                name=self.name,
                previous=self._state.value,
                current=new_state.value,
            )
            self._state = new_state
            self._publish_state()

    def _publish_state(self) -> None:
        CIRCUIT_STATE.labels(name=self.name).set(_STATE_GAUGE_VALUES[self._state])

    def record_success(self) -> None:
        """Record a successful request."""
        with self._lock:
            self._consecutive_successes += 1
            self._consecutive_failures = 0
            if (
                self._state == CircuitState.HALF_OPEN
                and self._consecutive_successes >= self.config.success_threshold
            ):
                self._transition(CircuitState.CLOSED)

    def record_failure(self) -> None:
        """Record a failed request."""
        with self._lock:
            self._consecutive_failures += 1
            self._consecutive_successes = 0
            self._last_failure_time = self._clock()

            if self._state == CircuitState.HALF_OPEN:
                self._transition(CircuitState.OPEN)
            elif (
                self._state == CircuitState.CLOSED
                and self._consecutive_failures >= self.config.failure_threshold
            ):
                self._transition(CircuitState.OPEN)

    def check_or_raise(self) -> None:
        """Raise CIRCUIT_OPEN if requests are currently blocked.

        Raises:
            AIError: With code CIRCUIT_OPEN and the remaining cooldown
        """
        if self.state == CircuitState.OPEN:
            with self._lock:
                remaining = self._cooldown_remaining()
            raise AIError(
                f"Circuit breaker '{self.name}' is OPEN",
                ErrorCode.CIRCUIT_OPEN,
                retry_after=round(remaining, 1),
            )

    async def call(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` through the breaker."""
        self.check_or_raise()
        try:
            result = await operation()
        except Exception as e:
            if classify(e).retryable:
                self.record_failure()
            raise
        self.record_success()
        return result

    def reset(self) -> None:
        """Manually reset circuit breaker to CLOSED state."""
        with self._lock:
            self._transition(CircuitState.CLOSED)
            self._consecutive_failures = 0
            self._consecutive_successes = 0
            self._last_failure_time = None

    def get_stats(self) -> Dict:
        """Get circuit breaker statistics."""
        state = self.state
        with self._lock:
            return {
                "name": self.name,
                "state": state.value,
                "consecutive_failures": self._consecutive_failures,
                "consecutive_successes": self._consecutive_successes,
                "cooldown_remaining": (
                    self._cooldown_remaining() if state == CircuitState.OPEN else 0.0
                ),
            }
