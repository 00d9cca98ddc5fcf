"""
Circuit breaker for flaky upstream sources.

The aggregator API goes offline or starts returning 403s for minutes at a
time. Without a breaker every resolution would wait on it (and on the
cross-catalog sweep, which fans out to it once per fallback source).

States:
    CLOSED     Calls allowed. `failure_threshold` consecutive failures -> OPEN.
    OPEN       Calls rejected without a network request until
               `recovery_timeout` seconds have passed -> HALF_OPEN.
    HALF_OPEN  Up to `half_open_max_calls` trial calls allowed.
               Success -> CLOSED (counters zeroed). Failure -> OPEN
               (cool-down restarts).

State is per process and never persisted.

Usage:
    breaker = CircuitBreaker("aggregator", failure_threshold=3, recovery_timeout=30)

    if breaker.can_execute():
        try:
            data = await fetch(...)
            breaker.record_success()
        except TransientNetworkError:
            breaker.record_failure()
"""

import threading
import time
from enum import Enum
from typing import Callable

from song_resolver.core.config import CircuitBreakerConfig
from song_resolver.core.logger import get_logger


logger = get_logger(__name__)


class CircuitState(Enum):
    """Availability state of a guarded source."""
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


class CircuitBreaker:
    """
    Per-source availability state machine.

    Attributes:
        name: Source name used in log messages.
        failure_threshold: Consecutive failures that open the circuit.
        recovery_timeout: Seconds to stay OPEN before allowing a trial call.
        half_open_max_calls: Trial calls allowed while HALF_OPEN.

    Thread Safety:
        All state transitions happen under a lock, so overlapping
        foreground and background reporters never corrupt the counters.
        Critical sections never await, which keeps the lock safe to use
        from coroutines on the event loop thread.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 3,
        recovery_timeout: float = 30.0,
        half_open_max_calls: int = 1,
        clock: Callable[[], float] = time.monotonic
    ) -> None:
        if failure_threshold < 1:
            raise ValueError("failure_threshold must be >= 1")
        if half_open_max_calls < 1:
            raise ValueError("half_open_max_calls must be >= 1")

        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.half_open_max_calls = half_open_max_calls
        self._clock = clock
        self._lock = threading.Lock()

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: float | None = None
        self._half_open_calls = 0

    @classmethod
    def from_config(
        cls,
        name: str,
        config: CircuitBreakerConfig,
        clock: Callable[[], float] = time.monotonic
    ) -> "CircuitBreaker":
        """Create a breaker from the `circuit_breaker` config section."""
        return cls(
            name,
            failure_threshold=config.failure_threshold,
            recovery_timeout=config.recovery_timeout,
            half_open_max_calls=config.half_open_max_calls,
            clock=clock,
        )

    @property
    def failure_count(self) -> int:
        """Current consecutive failure count."""
        with self._lock:
            return self._failure_count

    @property
    def last_failure_time(self) -> float | None:
        """Clock value of the most recent failure, or None."""
        with self._lock:
            return self._last_failure_time

    def _maybe_half_open(self) -> None:
        # Caller holds the lock
        if self._state is not CircuitState.OPEN or self._last_failure_time is None:
            return
        if self._clock() - self._last_failure_time >= self.recovery_timeout:
            self._state = CircuitState.HALF_OPEN
            self._half_open_calls = 0
            logger.info(f"Circuit '{self.name}' half-open: allowing trial call")

    def get_state(self) -> CircuitState:
        """Return the current state, moving OPEN -> HALF_OPEN once the cool-down elapsed."""
        with self._lock:
            self._maybe_half_open()
            return self._state

    def can_execute(self) -> bool:
        """
        Check whether a call may go through.

        Returns:
            True in CLOSED. In HALF_OPEN, True while trial slots remain
            (each True consumes one slot). False in OPEN.
        """
        with self._lock:
            self._maybe_half_open()

            if self._state is CircuitState.CLOSED:
                return True

            if self._state is CircuitState.HALF_OPEN:
                if self._half_open_calls < self.half_open_max_calls:
                    self._half_open_calls += 1
                    return True
                return False

            return False

    def record_success(self) -> None:
        """Report a successful call. Closes the circuit and zeroes counters."""
        with self._lock:
            if self._state is CircuitState.HALF_OPEN:
                logger.info(f"Circuit '{self.name}' closed: trial call succeeded")
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._half_open_calls = 0

    def record_failure(self) -> None:
        """Report a failed call. May open (or re-open) the circuit."""
        with self._lock:
            self._failure_count += 1
            self._last_failure_time = self._clock()

            if self._state is CircuitState.HALF_OPEN:
                self._state = CircuitState.OPEN
                self._half_open_calls = 0
                logger.warning(
                    f"Circuit '{self.name}' re-opened: trial call failed, "
                    f"retrying after {self.recovery_timeout:.0f}s"
                )
            elif (
                self._state is CircuitState.CLOSED
                and self._failure_count >= self.failure_threshold
            ):
                self._state = CircuitState.OPEN
                logger.warning(
                    f"Circuit '{self.name}' opened after {self._failure_count} "
                    f"consecutive failures, retrying after {self.recovery_timeout:.0f}s"
                )

    def release_trial(self) -> None:
        """
        Return a HALF_OPEN trial slot whose call ended without an outcome.

        Used when an admitted call is cancelled, so the next caller gets
        the trial instead of the circuit staying HALF_OPEN with no slots.
        No effect in other states.
        """
        with self._lock:
            if self._state is CircuitState.HALF_OPEN and self._half_open_calls > 0:
                self._half_open_calls -= 1

    def reset(self) -> None:
        """Force the breaker back to a fresh CLOSED state."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._last_failure_time = None
            self._half_open_calls = 0
