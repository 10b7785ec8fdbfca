"""Unit tests for the circuit breaker."""

from unittest.mock import AsyncMock

import pytest

from resilient_llm.models.llm import CircuitBreakerConfig
from resilient_llm.utils.circuit_breaker import CircuitBreaker, CircuitState
from resilient_llm.utils.exceptions import AIError, ErrorCode


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    """Create fake clock."""
    return FakeClock()


@pytest.fixture
def breaker(clock):
    """Create breaker opening after 2 failures with a 30s cooldown."""
    config = CircuitBreakerConfig(
        enabled=True, failure_threshold=2, success_threshold=1, cooldown_seconds=30
    )
    return CircuitBreaker("llm", config=config, clock=clock)


class TestStateTransitions:
    """Tests for state machine transitions."""

    def test_starts_closed(self, breaker):
        """New breakers allow traffic."""
        assert breaker.state == CircuitState.CLOSED

    def test_opens_after_threshold(self, breaker):
        """Consecutive failures open the circuit."""
        breaker.record_failure()
        assert breaker.state == CircuitState.CLOSED
        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN

    def test_success_resets_failure_streak(self, breaker):
        """A success between failures keeps the circuit closed."""
        breaker.record_failure()
        breaker.record_success()
        breaker.record_failure()
        assert breaker.state == CircuitState.CLOSED

    def test_half_open_after_cooldown(self, breaker, clock):
        """Cooldown expiry moves OPEN to HALF_OPEN."""
        breaker.record_failure()
        breaker.record_failure()
        clock.now = 30
        assert breaker.state == CircuitState.HALF_OPEN

    def test_half_open_success_closes(self, breaker, clock):
        """A success while half-open closes the circuit."""
        breaker.record_failure()
        breaker.record_failure()
        clock.now = 30
        assert breaker.state == CircuitState.HALF_OPEN
        breaker.record_success()
        assert breaker.state == CircuitState.CLOSED

    def test_half_open_failure_reopens(self, breaker, clock):
        """A failure while half-open reopens the circuit."""
        breaker.record_failure()
        breaker.record_failure()
        clock.now = 30
        assert breaker.state == CircuitState.HALF_OPEN
        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN


class TestCheckOrRaise:
    """Tests for check_or_raise."""

    def test_open_raises_with_remaining_cooldown(self, breaker, clock):
        """An open circuit raises CIRCUIT_OPEN with retry_after."""
        breaker.record_failure()
        breaker.record_failure()
        clock.now = 10

        with pytest.raises(AIError) as info:
            breaker.check_or_raise()

        assert info.value.code == ErrorCode.CIRCUIT_OPEN
        assert info.value.status_code == 503
        assert info.value.retryable is False
        assert info.value.retry_after == 20

    def test_closed_passes(self, breaker):
        """A closed circuit does not raise."""
        breaker.check_or_raise()


class TestCall:
    """Tests for wrapping operations."""

    @pytest.mark.asyncio
    async def test_success(self, breaker):
        """Results pass through."""
        assert await breaker.call(AsyncMock(return_value=1)) == 1

    @pytest.mark.asyncio
    async def test_retryable_failures_count(self, breaker):
        """Transient failures open the circuit and block further calls."""
        failing = AsyncMock(side_effect=RuntimeError("server error"))
        for _ in range(2):
            with pytest.raises(RuntimeError):
                await breaker.call(failing)

        operation = AsyncMock(return_value=1)
        with pytest.raises(AIError):
            await breaker.call(operation)
        operation.assert_not_called()

    @pytest.mark.asyncio
    async def test_non_retryable_failures_ignored(self, breaker):
        """Caller mistakes do not count against the collaborator."""
        failing = AsyncMock(side_effect=AIError("bad", ErrorCode.VALIDATION_ERROR))
        for _ in range(3):
            with pytest.raises(AIError):
                await breaker.call(failing)
        assert breaker.state == CircuitState.CLOSED


class TestResetAndStats:
    """Tests for reset and get_stats."""

    def test_reset(self, breaker):
        """reset closes an open circuit."""
        breaker.record_failure()
        breaker.record_failure()
        breaker.reset()
        assert breaker.state == CircuitState.CLOSED

    def test_stats(self, breaker):
        """Stats report state and streaks."""
        breaker.record_failure()
        stats = breaker.get_stats()
        assert stats["name"] == "llm"
        assert stats["state"] == "closed"
        assert stats["consecutive_failures"] == 1
        assert stats["cooldown_remaining"] == 0.0
