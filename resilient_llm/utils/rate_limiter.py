"""Per-identity, per-operation rate limiting over fixed time windows.

Counters live in an injected CounterStore whose ``increment`` is an
atomic increment-and-read, so two concurrent checks for the same
identity can never both observe room under the ceiling.

Every checked call is counted, including the one that gets rejected:
the stored count reflects true call volume, not just admitted calls.
"""

import asyncio
import math
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Optional, Protocol, Tuple

import diskcache
import structlog

from resilient_llm.models.llm import RateLimitConfig
from resilient_llm.observability.metrics import RATE_LIMIT_REJECTIONS

logger = structlog.get_logger()

MINUTE_SECONDS = 60
HOUR_SECONDS = 3600


class CounterStore(Protocol):
    """Shared counter storage for rate limiting."""

    async def increment(self, key: str, window_seconds: int) -> int:
        """Atomically increment ``key`` and return the new count.

        A missing or expired key starts again at 1 and expires after
        ``window_seconds``.
        """
        ...


class InMemoryCounterStore:
    """Process-local counter store (tests and single-worker deployments)"""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._counters: Dict[str, Tuple[int, float]] = {}
        self._next_sweep = 0.0
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._counters)

    async def increment(self, key: str, window_seconds: int) -> int:
        async with self._lock:
            now = self._clock()
            # Window keys are never reused once their window passes
            if now >= self._next_sweep:
                self._counters = {
                    k: v for k, v in self._counters.items() if v[1] > now
                }
                self._next_sweep = now + window_seconds
            count, expires_at = self._counters.get(key, (0, 0.0))
            if now >= expires_at:
                count, expires_at = 0, now + window_seconds
            count += 1
            self._counters[key] = (count, expires_at)
            return count

    def clear(self) -> None:
        self._counters.clear()


class DiskCounterStore:
    """diskcache-backed counter store shared by processes on one host"""

    def __init__(self, directory: str) -> None:
        Path(directory).mkdir(parents=True, exist_ok=True)
        self.cache = diskcache.Cache(directory)

    async def increment(self, key: str, window_seconds: int) -> int:
        return await asyncio.to_thread(self._increment, key, window_seconds)

    def _increment(self, key: str, window_seconds: int) -> int:
        with self.cache.transact():
            if key not in self.cache:
                self.cache.set(key, 0, expire=window_seconds)
            return int(self.cache.incr(key))

    def close(self) -> None:
        self.cache.close()


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of a rate limit check"""

    allowed: bool
    count: int
    limit: int
    retry_after: Optional[int] = None


class RateLimiter:
    """Fixed-window rate limiter keyed by (identity, operation)."""

    def __init__(
        self,
        store: Optional[CounterStore] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store: CounterStore = (
            store if store is not None else InMemoryCounterStore(clock=clock)
        )
        self._clock = clock

    async def check(
        self,
        identity: str,
        operation: str,
        max_per_window: int,
        window_seconds: int = MINUTE_SECONDS,
    ) -> RateLimitDecision:
        """Count one call and decide whether it is allowed.

        Args:
            identity: Opaque caller identity
            operation: Operation (function) name
            max_per_window: Ceiling for the window
            window_seconds: Window length; windows align to multiples of it

        Returns:
            RateLimitDecision; rejected decisions carry ``retry_after``
            seconds until the window resets (at least 1)
        """
        now = self._clock()
        window_index = int(now // window_seconds)
        key = f"ratelimit:{identity}:{operation}:{window_seconds}:{window_index}"

        count = await self.store.increment(key, window_seconds)
        if count <= max_per_window:
            return RateLimitDecision(allowed=True, count=count, limit=max_per_window)

        window_end = (window_index + 1) * window_seconds
        retry_after = max(1, math.ceil(window_end - now))
        logger.warning(
            "rate_limit_exceeded",
            identity=identity,
            operation=operation,
            count=count,
            limit=max_per_window,
            window_seconds=window_seconds,
            retry_after=retry_after,
        )
        RATE_LIMIT_REJECTIONS.labels(operation=operation).inc()
        return RateLimitDecision(
            allowed=False,
            count=count,
            limit=max_per_window,
            retry_after=retry_after,
        )

    async def check_all(
        self, identity: str, operation: str, limits: RateLimitConfig
    ) -> RateLimitDecision:
        """Apply the per-minute ceiling, then the optional hourly one."""
        decision = await self.check(
            identity, operation, limits.max_per_minute, MINUTE_SECONDS
        )
        if not decision.allowed or limits.max_per_hour is None:
            return decision
        return await self.check(identity, operation, limits.max_per_hour, HOUR_SECONDS)
