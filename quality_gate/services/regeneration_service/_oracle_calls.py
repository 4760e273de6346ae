"""Call policy for oracle and generator calls inside one session.

Every call runs on the session's executor while the session thread waits in
short slices, so a per-call timeout, the session deadline and external
cancellation can all abandon an in-flight call.
"""

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import FIRST_COMPLETED, Executor, Future, wait
from typing import Any

from quality_gate.utils.circuit_breaker import CircuitBreaker
from quality_gate.utils.exceptions import (
    GenerationCancelledError,
    OracleError,
    OracleFormatError,
    OracleTransientError,
    SessionDeadlineExceeded,
    summarize_error,
)

logger = logging.getLogger(__name__)

# Seconds between cancellation checks while a call is in flight
POLL_INTERVAL_S = 0.05


class SessionClock:
    """Wall-clock budget of one session, on an injectable monotonic clock."""

    def __init__(self, timeout_s: float, clock: Callable[[], float] = time.monotonic):
        self.timeout_s = timeout_s
        self._clock = clock
        self._started = clock()

    def now(self) -> float:
        """Current reading of the underlying clock."""
        return self._clock()

    def elapsed_s(self) -> float:
        """Seconds since the session started."""
        return self._clock() - self._started

    def elapsed_ms(self) -> float:
        """Milliseconds since the session started."""
        return self.elapsed_s() * 1000.0

    def remaining_s(self) -> float:
        """Seconds left in the budget (never negative)."""
        return max(0.0, self.timeout_s - self.elapsed_s())

    def expired(self) -> bool:
        """True once elapsed time reaches the budget."""
        return self.elapsed_s() >= self.timeout_s


class OracleCallPolicy:
    """Applies the circuit breaker, transient retry, timeouts and cancellation."""

    def __init__(
        self,
        *,
        executor: Executor,
        session_clock: SessionClock,
        cancel_event: threading.Event,
        breaker: CircuitBreaker | None = None,
        call_timeout_s: float = 45.0,
        transient_retries: int = 1,
        retry_backoff_s: float = 1.0,
    ):
        """Initialize the policy for one session.

        Args:
            executor: Runs the calls; shut down by the session owner.
            session_clock: Session budget, checked before and during each call.
            cancel_event: External cancellation, checked while waiting.
            breaker: Shared oracle circuit breaker, or None to skip it.
            call_timeout_s: Timeout for a single oracle call.
            transient_retries: Retries after an OracleTransientError.
            retry_backoff_s: Wait before each retry.
        """
        self.executor = executor
        self.session_clock = session_clock
        self.cancel_event = cancel_event
        self.breaker = breaker
        self.call_timeout_s = call_timeout_s
        self.transient_retries = transient_retries
        self.retry_backoff_s = retry_backoff_s

    def check(self) -> None:
        """Raise if the session was cancelled or its budget is spent.

        Raises:
            GenerationCancelledError: If the cancel event is set.
            SessionDeadlineExceeded: If the session budget is exhausted.
        """
        if self.cancel_event.is_set():
            raise GenerationCancelledError("Session cancelled")
        if self.session_clock.expired():
            raise SessionDeadlineExceeded(
                "Session deadline reached", elapsed_ms=self.session_clock.elapsed_ms()
            )

    def _await(self, name: str, call: Callable[[], Any], timeout_s: float) -> Any:
        """Run ``call`` on the executor and wait for it, abandoning it on expiry."""
        self.check()
        budget = min(timeout_s, self.session_clock.remaining_s())
        future: Future[Any] = self.executor.submit(call)
        wait_until = self.session_clock.now() + budget

        while True:
            remaining = wait_until - self.session_clock.now()
            if remaining <= 0:
                break
            done, _ = wait(
                [future], timeout=min(remaining, POLL_INTERVAL_S), return_when=FIRST_COMPLETED
            )
            if done:
                return future.result()
            if self.cancel_event.is_set():
                future.cancel()
                logger.info("%s call abandoned: session cancelled", name)
                raise GenerationCancelledError(f"Session cancelled during {name} call")

        if future.done():
            return future.result()
        future.cancel()
        if self.session_clock.expired():
            logger.warning("%s call abandoned: session deadline reached", name)
            raise SessionDeadlineExceeded(
                f"Session deadline reached during {name} call",
                elapsed_ms=self.session_clock.elapsed_ms(),
            )
        raise OracleTransientError(f"{name} call timed out after {budget:.1f}s", operation=name)

    def run(self, operation: str, call: Callable[[], Any]) -> Any:
        """Run one oracle call under the full policy.

        Raises:
            CircuitOpenError: If the shared circuit rejects the call.
            OracleTransientError: If the call still fails after the retries.
            OracleFormatError: If the response could not be parsed (never retried).
            GenerationCancelledError: On cancellation.
            SessionDeadlineExceeded: When the session budget runs out.
        """
        for attempt in range(self.transient_retries + 1):
            self.check()
            if self.breaker is not None:
                self.breaker.guard(operation)
            try:
                result = self._await(f"oracle {operation}", call, self.call_timeout_s)
            except GenerationCancelledError:
                if self.breaker is not None:
                    self.breaker.abandon()
                raise
            except OracleFormatError:
                # The oracle answered, so it is reachable
                if self.breaker is not None:
                    self.breaker.record_success()
                raise
            except OracleTransientError as e:
                self._record_failure(e)
                if attempt >= self.transient_retries:
                    raise
                logger.warning(
                    "Oracle %s failed (attempt %d/%d), retrying: %s",
                    operation,
                    attempt + 1,
                    self.transient_retries + 1,
                    summarize_error(e),
                )
                self._backoff()
                continue
            except OracleError:
                self._record_failure(None)
                raise
            except Exception as e:
                self._record_failure(e)
                raise OracleTransientError(
                    f"Unexpected oracle {operation} error: {summarize_error(e)}",
                    operation=operation,
                ) from e

            if self.breaker is not None:
                self.breaker.record_success()
            return result

        raise AssertionError("unreachable")

    def run_generator(self, call: Callable[[], Any]) -> Any:
        """Run a generator call, bounded only by the session budget."""
        return self._await("generator", call, self.session_clock.remaining_s())

    def _record_failure(self, error: Exception | None) -> None:
        if self.breaker is not None:
            self.breaker.record_failure(error)

    def _backoff(self) -> None:
        """Wait before a retry, waking early on cancellation."""
        delay = min(self.retry_backoff_s, self.session_clock.remaining_s())
        if delay > 0 and self.cancel_event.wait(delay):
            raise GenerationCancelledError("Session cancelled during retry backoff")
