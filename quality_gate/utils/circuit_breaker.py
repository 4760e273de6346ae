"""Circuit breaker for scoring oracle calls.

Shared by every regeneration session in the process, so a struggling or
unreachable oracle is detected once and concurrent sessions stop queueing
doomed requests behind it.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from quality_gate.utils.exceptions import CircuitOpenError

logger = logging.getLogger(__name__)


class CircuitState(Enum):
    """States of the circuit breaker."""

    CLOSED = "closed"  # Calls pass through, failures are counted
    OPEN = "open"  # Calls rejected until the timeout elapses
    HALF_OPEN = "half_open"  # One probe call allowed


@dataclass
class CircuitBreaker:
    """Circuit breaker guarding the scoring oracle.

    State transitions:
    - CLOSED -> OPEN: failure_count reaches failure_threshold
    - OPEN -> HALF_OPEN: timeout_seconds after the last failure
    - HALF_OPEN -> CLOSED: success_count reaches success_threshold
    - HALF_OPEN -> OPEN: any failure

    Attributes:
        name: Identifier used in log messages.
        failure_threshold: Consecutive failures before opening.
        success_threshold: Probe successes needed to close again.
        timeout_seconds: Seconds to stay open before probing.
        enabled: When False every call is allowed and nothing is counted.
    """

    name: str = "oracle"
    failure_threshold: int = 5
    success_threshold: int = 2
    timeout_seconds: float = 60.0
    enabled: bool = True

    _state: CircuitState = field(default=CircuitState.CLOSED, init=False)
    _failure_count: int = field(default=0, init=False)
    _success_count: int = field(default=0, init=False)
    _last_failure_time: float | None = field(default=None, init=False)
    _probe_in_flight: bool = field(default=False, init=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False)

    def __post_init__(self) -> None:
        """Log the configuration once the dataclass is built."""
        logger.debug(
            "Circuit breaker '%s' created: enabled=%s, failures=%d, successes=%d, timeout=%.1fs",
            self.name,
            self.enabled,
            self.failure_threshold,
            self.success_threshold,
            self.timeout_seconds,
        )

    @property
    def state(self) -> CircuitState:
        """Current state, applying the OPEN -> HALF_OPEN timeout first."""
        with self._lock:
            if self._state == CircuitState.OPEN:
                self._maybe_half_open()
            return self._state

    @property
    def is_open(self) -> bool:
        """True while calls are being rejected."""
        return self.state == CircuitState.OPEN

    def _maybe_half_open(self) -> None:
        """Move to HALF_OPEN once the timeout has passed. Caller holds _lock."""
        if self._last_failure_time is None:
            return
        elapsed = time.time() - self._last_failure_time
        if elapsed >= self.timeout_seconds:
            logger.info(
                "Circuit breaker '%s': %.1fs since last failure, OPEN -> HALF_OPEN",
                self.name,
                elapsed,
            )
            self._state = CircuitState.HALF_OPEN
            self._success_count = 0
            self._probe_in_flight = False

    def _time_until_half_open(self) -> float | None:
        """Seconds left in the OPEN state. Caller holds _lock."""
        if self._last_failure_time is None:
            return None
        return max(0.0, self.timeout_seconds - (time.time() - self._last_failure_time))

    def allow_request(self) -> bool:
        """Return True if a call may proceed.

        In HALF_OPEN only a single probe is let through at a time.
        """
        if not self.enabled:
            return True

        with self._lock:
            state = self.state
            if state == CircuitState.CLOSED:
                return True
            if state == CircuitState.HALF_OPEN:
                if self._probe_in_flight:
                    logger.debug("Circuit breaker '%s': probe already in flight", self.name)
                    return False
                self._probe_in_flight = True
                return True
            logger.warning("Circuit breaker '%s': OPEN, rejecting oracle call", self.name)
            return False

    def guard(self, operation: str) -> None:
        """Raise CircuitOpenError unless a call may proceed.

        Args:
            operation: Name of the guarded call, for the error message.

        Raises:
            CircuitOpenError: If the circuit rejects the call.
        """
        if self.allow_request():
            return
        with self._lock:
            wait = self._time_until_half_open()
        raise CircuitOpenError(
            f"Oracle circuit '{self.name}' is open; {operation} call rejected",
            time_until_retry=wait,
        )

    def record_success(self) -> None:
        """Record a successful call."""
        if not self.enabled:
            return

        with self._lock:
            if self._state == CircuitState.HALF_OPEN:
                self._probe_in_flight = False
                self._success_count += 1
                if self._success_count >= self.success_threshold:
                    logger.info(
                        "Circuit breaker '%s': oracle recovered, HALF_OPEN -> CLOSED", self.name
                    )
                    self._state = CircuitState.CLOSED
                    self._failure_count = 0
                    self._success_count = 0
            elif self._state == CircuitState.CLOSED and self._failure_count:
                self._failure_count = 0

    def record_failure(self, error: Exception | None = None) -> None:
        """Record a failed call.

        Args:
            error: The exception that caused the failure, for logging.
        """
        if not self.enabled:
            return

        with self._lock:
            self._last_failure_time = time.time()
            if self._state == CircuitState.HALF_OPEN:
                self._probe_in_flight = False
                logger.warning(
                    "Circuit breaker '%s': probe failed, HALF_OPEN -> OPEN (%s)",
                    self.name,
                    error,
                )
                self._state = CircuitState.OPEN
                self._failure_count = self.failure_threshold
            elif self._state == CircuitState.CLOSED:
                self._failure_count += 1
                logger.debug(
                    "Circuit breaker '%s': failure %d/%d (%s)",
                    self.name,
                    self._failure_count,
                    self.failure_threshold,
                    error,
                )
                if self._failure_count >= self.failure_threshold:
                    logger.warning(
                        "Circuit breaker '%s': failure threshold reached, CLOSED -> OPEN",
                        self.name,
                    )
                    self._state = CircuitState.OPEN

    def abandon(self) -> None:
        """Release a HALF_OPEN probe whose outcome will never be reported.

        Called when a session is cancelled or times out mid-call.
        """
        with self._lock:
            self._probe_in_flight = False

    def reset(self) -> None:
        """Return to the initial CLOSED state."""
        with self._lock:
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._success_count = 0
            self._last_failure_time = None
            self._probe_in_flight = False

    def get_status(self) -> dict[str, Any]:
        """Snapshot of the breaker for diagnostics."""
        with self._lock:
            state = self.state
            status: dict[str, Any] = {
                "name": self.name,
                "enabled": self.enabled,
                "state": state.value,
                "failure_count": self._failure_count,
                "failure_threshold": self.failure_threshold,
            }
            if state == CircuitState.OPEN:
                status["time_until_half_open"] = self._time_until_half_open()
            return status


_global_circuit_breaker: CircuitBreaker | None = None
_circuit_breaker_lock = threading.Lock()


def get_circuit_breaker(
    failure_threshold: int = 5,
    success_threshold: int = 2,
    timeout_seconds: float = 60.0,
    enabled: bool = True,
) -> CircuitBreaker:
    """Get or lazily create the process-wide oracle circuit breaker.

    Arguments only apply on first creation.
    """
    global _global_circuit_breaker

    if _global_circuit_breaker is None:
        with _circuit_breaker_lock:
            if _global_circuit_breaker is None:
                _global_circuit_breaker = CircuitBreaker(
                    name="oracle",
                    failure_threshold=failure_threshold,
                    success_threshold=success_threshold,
                    timeout_seconds=timeout_seconds,
                    enabled=enabled,
                )
    return _global_circuit_breaker


def reset_global_circuit_breaker() -> None:
    """Drop the process-wide breaker. Used by tests."""
    global _global_circuit_breaker
    with _circuit_breaker_lock:
        _global_circuit_breaker = None
