"""
Resilience primitives used by the repositories and the confirmation workflow.

1. **Circuit Breaker**: short-circuits database calls after a run of
   consecutive connection-level failures, so an outage fails fast instead of
   piling requests up behind pool timeouts.

   States:
   - CLOSED    → Normal operation; failures are counted.
   - OPEN      → All calls fail immediately until the recovery timeout passes.
   - HALF_OPEN → One probe call is let through; success closes the circuit,
                 failure re-opens it.

2. **Deadline**: a monotonic time budget for one confirm/cancel call.  The
   workflow asks it how much time is left before each phase and bounds
   awaitables with the remaining budget.

3. **Keyed locks**: one asyncio lock per key, used to serialize the
   confirmation writes that touch the same opportunity.

There is no retry helper: nothing in the confirmation workflow
may be retried automatically (minting in particular is not idempotent).
"""

import asyncio
import logging
import time
import weakref
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Hashable, Optional, Tuple, Type, TypeVar

from investment_platform.core.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ────────────────────────────────────────────────────────────────────────────
# Circuit Breaker
# ────────────────────────────────────────────────────────────────────────────


class CircuitState(str, Enum):
    """Possible states of a circuit breaker."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreakerError(Exception):
    """Raised when a call is rejected because the circuit is open."""

    def __init__(self, name: str, retry_after: float):
        self.name = name
        self.retry_after = retry_after
        super().__init__(
            f"Circuit breaker '{name}' is OPEN, failing fast. "
            f"Retry after {retry_after:.1f}s."
        )


class CircuitBreaker:
    """
    Async circuit breaker.

    Parameters
    ----------
    name : str
        Identifier used in logs and health output (e.g. ``"database"``).
    failure_threshold : int
        Consecutive failures before the circuit opens.
    recovery_timeout : float
        Seconds spent OPEN before a probe is allowed (HALF_OPEN).
    expected_exceptions : tuple
        Exception types that count as failures.  Anything else (including
        domain errors) passes through without touching the counters.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        expected_exceptions: Tuple[Type[Exception], ...] = (Exception,),
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.expected_exceptions = expected_exceptions

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: float = 0.0
        self._success_count = 0

    @property
    def state(self) -> CircuitState:
        """Current state; an expired OPEN circuit reports HALF_OPEN."""
        if self._state == CircuitState.OPEN:
            elapsed = time.monotonic() - self._last_failure_time
            if elapsed >= self.recovery_timeout:
                self._state = CircuitState.HALF_OPEN
                logger.info(
                    "Circuit '%s' -> HALF_OPEN after %.1fs", self.name, elapsed
                )
        return self._state

    def _record_success(self) -> None:
        if self._state != CircuitState.CLOSED:
            logger.info(
                "Circuit '%s' -> CLOSED (probe succeeded after %d failures)",
                self.name,
                self._failure_count,
            )
        self._failure_count = 0
        self._success_count += 1
        self._state = CircuitState.CLOSED

    def _record_failure(self) -> None:
        self._failure_count += 1
        self._last_failure_time = time.monotonic()

        if self._failure_count >= self.failure_threshold:
            self._state = CircuitState.OPEN
            logger.error(
                "Circuit '%s' -> OPEN (failure #%d reached threshold %d), "
                "fast-failing for %.1fs",
                self.name,
                self._failure_count,
                self.failure_threshold,
                self.recovery_timeout,
            )
        else:
            logger.warning(
                "Circuit '%s' failure #%d/%d",
                self.name,
                self._failure_count,
                self.failure_threshold,
            )

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """
        Await ``func(*args, **kwargs)`` through the breaker.

        Raises :class:`CircuitBreakerError` without calling ``func`` if the
        circuit is OPEN.
        """
        if self.state == CircuitState.OPEN:
            retry_after = self.recovery_timeout - (
                time.monotonic() - self._last_failure_time
            )
            raise CircuitBreakerError(self.name, max(retry_after, 0))

        try:
            result = await func(*args, **kwargs)
        except self.expected_exceptions:
            self._record_failure()
            raise
        self._record_success()
        return result

    def get_status(self) -> dict:
        """Return a dict suitable for the health-check endpoint."""
        return {
            "name": self.name,
            "state": self.state.value,
            "failure_count": self._failure_count,
            "failure_threshold": self.failure_threshold,
            "success_count": self._success_count,
            "recovery_timeout_s": self.recovery_timeout,
        }


# ── Global circuit breaker instance for database operations ──
db_circuit_breaker = CircuitBreaker(
    name="database",
    failure_threshold=settings.CB_FAILURE_THRESHOLD,
    recovery_timeout=settings.CB_RECOVERY_TIMEOUT,
    expected_exceptions=(
        ConnectionError,
        OSError,
        TimeoutError,
    ),
)


# ────────────────────────────────────────────────────────────────────────────
# Deadline
# ────────────────────────────────────────────────────────────────────────────


class Deadline:
    """
    A fixed point in monotonic time by which a unit of work should finish.

    ``Deadline(None)`` never expires.  Example::

        deadline = Deadline(5.0)
        row = await deadline.bound(repo.get(some_id))   # asyncio.TimeoutError if late
        if deadline.expired:
            ...  # skip optional work
    """

    def __init__(self, timeout: Optional[float]):
        self.timeout = timeout
        self._expires_at = (
            None if timeout is None else time.monotonic() + max(timeout, 0.0)
        )

    def remaining(self) -> Optional[float]:
        """Seconds left, clamped at zero; ``None`` for an unbounded deadline."""
        if self._expires_at is None:
            return None
        return max(self._expires_at - time.monotonic(), 0.0)

    @property
    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0

    async def bound(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` within the remaining budget."""
        return await asyncio.wait_for(awaitable, timeout=self.remaining())


# ────────────────────────────────────────────────────────────────────────────
# Keyed locks
# ────────────────────────────────────────────────────────────────────────────


class KeyedLocks:
    """
    One ``asyncio.Lock`` per key, created on first use.

    Locks are kept per running event loop, since an ``asyncio.Lock`` that
    has been waited on is bound to its loop.  Example::

        async with opportunity_locks(opportunity_id):
            ...  # one writer per opportunity in this process
    """

    def __init__(self):
        self._by_loop: "weakref.WeakKeyDictionary[Any, Dict[Hashable, asyncio.Lock]]" = (
            weakref.WeakKeyDictionary()
        )

    def __call__(self, key: Hashable) -> asyncio.Lock:
        locks = self._by_loop.setdefault(asyncio.get_running_loop(), {})
        lock = locks.get(key)
        if lock is None:
            lock = locks[key] = asyncio.Lock()
        return lock


# ── Global lock registry serializing funding writes per opportunity ──
opportunity_locks = KeyedLocks()
