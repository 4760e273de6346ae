"""Regeneration controller: the generate, score, decide loop for one content unit.

The loop is sequential. Every failure mode (generator failure, oracle
failure, deadline, cancellation) becomes a reason code on the returned
SessionResult; the loop never raises to its caller.
"""

import logging
import threading
import time
from collections.abc import Callable, Mapping
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime
from typing import Any

from quality_gate.memory.quality import (
    Attempt,
    ContentKind,
    ContentUnit,
    Decision,
    RegenerationConfig,
    RegenerationReason,
    RegenerationSession,
    SessionResult,
    SessionStatus,
    determine_regeneration_reason,
)
from quality_gate.services.quality_validation import (
    QualityValidator,
    ValidationOutcome,
    ValidationRequest,
)
from quality_gate.services.quality_validation._feedback import Diagnostics
from quality_gate.utils.circuit_breaker import CircuitBreaker
from quality_gate.utils.exceptions import (
    CircuitOpenError,
    GenerationCancelledError,
    OracleError,
    SessionDeadlineExceeded,
    summarize_error,
)
from quality_gate.utils.logging_config import log_context

from ._oracle_calls import OracleCallPolicy, SessionClock
from ._prompting import adapt_prompt, build_directives

logger = logging.getLogger(__name__)

# Generic error codes stored on attempts; raw error text never leaves the logs
ERROR_GENERATOR_FAILURE = "generator_failure"
ERROR_ORACLE_UNAVAILABLE = "oracle_unavailable"
ERROR_CIRCUIT_OPEN = "oracle_circuit_open"
ERROR_TIMED_OUT = "timed_out"
ERROR_CANCELLED = "cancelled"


def _now() -> datetime:
    return datetime.now(UTC)


def session_worker_count(config: RegenerationConfig) -> int:
    """Upper bound on the calls one session can submit.

    Abandoned calls keep their worker until they return, so the pool holds
    one worker per possible call: a generation plus every try of the score
    and feedback calls, for each attempt. Workers start lazily.
    """
    tries_per_oracle_call = config.oracle_transient_retries + 1
    return config.max_attempts * (1 + 2 * tries_per_oracle_call)


class _SessionRun:
    """State for one run of the loop. Not shared across threads."""

    def __init__(
        self,
        *,
        session: RegenerationSession,
        initial_prompt: str,
        context: Mapping[str, Any],
        generator: Any,
        validator: QualityValidator,
        policy: OracleCallPolicy,
        session_clock: SessionClock,
    ):
        self.session = session
        self.config = session.config
        self.initial_prompt = initial_prompt
        self.context = dict(context)
        self.generator = generator
        self.validator = validator
        self.policy = policy
        self.session_clock = session_clock
        self.scoring_failures = 0
        self.prompt = initial_prompt
        self.directives: list[str] = []

    def _record(
        self,
        *,
        attempt_number: int,
        started_at: datetime,
        decision: Decision,
        unit: ContentUnit | None = None,
        outcome: ValidationOutcome | None = None,
        warnings: list[str] | None = None,
        error: str | None = None,
        improvement: float | None = None,
    ) -> Attempt:
        attempt = Attempt(
            attempt_number=attempt_number,
            unit=unit,
            metrics=outcome.metrics if outcome else None,
            feedback=outcome.feedback if outcome else None,
            decision=decision,
            started_at=started_at,
            ended_at=_now(),
            prompt=self.prompt,
            directives=tuple(self.directives),
            technical_issues=outcome.technical_issues if outcome else (),
            improvement_suggestions=outcome.improvement_suggestions if outcome else (),
            warnings=tuple([*(outcome.warnings if outcome else ()), *(warnings or [])]),
            error=error,
            improvement=improvement,
        )
        self.session.record(attempt)
        return attempt

    def _abort(
        self,
        status: SessionStatus,
        error: str,
        attempt_number: int,
        started_at: datetime,
        unit: ContentUnit | None = None,
    ) -> SessionResult:
        """Record an aborted attempt and close the session with ``status``."""
        self._record(
            attempt_number=attempt_number,
            started_at=started_at,
            decision=Decision.ABORT,
            unit=unit,
            error=error,
        )
        self.session.transition(status)
        return self.result()

    def _close_without_attempt(self, status: SessionStatus) -> SessionResult:
        self.session.transition(status)
        return self.result()

    def run(self) -> SessionResult:
        """Drive the session to a terminal status."""
        session = self.session
        threshold = session.threshold

        while True:
            attempt_number = session.next_attempt_number
            started_at = _now()

            if self.policy.cancel_event.is_set():
                logger.info(
                    "Session %s cancelled before attempt %d", session.content_id, attempt_number
                )
                return self._close_without_attempt(SessionStatus.CANCELLED)
            if self.session_clock.expired():
                logger.warning(
                    "Session %s out of time before attempt %d", session.content_id, attempt_number
                )
                return self._close_without_attempt(SessionStatus.TIMED_OUT)

            # Generate
            unit: ContentUnit | None = None
            outcome: ValidationOutcome | None = None
            error: str | None = None
            try:
                unit = self.policy.run_generator(
                    lambda: self.generator.generate(session.kind, self.prompt, self.context)
                )
            except SessionDeadlineExceeded:
                return self._abort(
                    SessionStatus.TIMED_OUT, ERROR_TIMED_OUT, attempt_number, started_at
                )
            except GenerationCancelledError:
                return self._abort(
                    SessionStatus.CANCELLED, ERROR_CANCELLED, attempt_number, started_at
                )
            except Exception as e:
                logger.warning(
                    "Attempt %d: generator failed: %s", attempt_number, summarize_error(e)
                )
                error = ERROR_GENERATOR_FAILURE
            else:
                if not isinstance(unit, ContentUnit) or unit.kind != session.kind:
                    logger.warning(
                        "Attempt %d: generator returned %s instead of a %s unit",
                        attempt_number,
                        getattr(unit, "kind", type(unit).__name__),
                        session.kind,
                    )
                    unit = None
                    error = ERROR_GENERATOR_FAILURE

            # Score
            if unit is not None:
                session.transition(SessionStatus.SCORING)
                try:
                    outcome = self.validator.validate(
                        ValidationRequest(unit=unit, context=self.context)
                    )
                except SessionDeadlineExceeded:
                    return self._abort(
                        SessionStatus.TIMED_OUT, ERROR_TIMED_OUT, attempt_number, started_at, unit
                    )
                except GenerationCancelledError:
                    return self._abort(
                        SessionStatus.CANCELLED, ERROR_CANCELLED, attempt_number, started_at, unit
                    )
                except CircuitOpenError as e:
                    logger.error(
                        "Attempt %d: oracle circuit open, ending session: %s",
                        attempt_number,
                        summarize_error(e),
                    )
                    return self._abort(
                        SessionStatus.ORACLE_FAILURE,
                        ERROR_CIRCUIT_OPEN,
                        attempt_number,
                        started_at,
                        unit,
                    )
                except OracleError as e:
                    logger.warning(
                        "Attempt %d: scoring failed: %s",
                        attempt_number,
                        summarize_error(e),
                    )
                    self.scoring_failures += 1
                    error = ERROR_ORACLE_UNAVAILABLE

            # Decide
            session.transition(SessionStatus.DECIDING)
            metrics = outcome.metrics if outcome else None
            best_before = session.best_score()
            improvement = (
                round(metrics.overall_score - best_before, 1)
                if metrics is not None and best_before is not None
                else None
            )
            warnings: list[str] = []

            # Out of budget with nothing ever scored because the oracle kept failing
            never_scored = (
                metrics is None and not session.scored_attempts() and self.scoring_failures > 0
            )
            if metrics is not None and metrics.passes_threshold:
                decision, status = Decision.ACCEPT, SessionStatus.ACCEPTED
            elif attempt_number >= self.config.max_attempts:
                decision = Decision.ABORT
                if never_scored:
                    status = SessionStatus.ORACLE_FAILURE
                else:
                    status = SessionStatus.EXHAUSTED_ATTEMPTS
            elif self.session_clock.expired():
                decision = Decision.ABORT
                if never_scored:
                    status = SessionStatus.ORACLE_FAILURE
                else:
                    status = SessionStatus.TIMED_OUT
            else:
                decision, status = Decision.REGENERATE, SessionStatus.REGENERATING
                if improvement is not None and improvement < self.config.improvement_threshold:
                    message = (
                        f"Improvement {improvement:+.1f} below threshold "
                        f"{self.config.improvement_threshold:.1f}"
                    )
                    logger.warning("Attempt %d: %s, regenerating anyway", attempt_number, message)
                    warnings.append(message)

            self._record(
                attempt_number=attempt_number,
                started_at=started_at,
                decision=decision,
                unit=unit,
                outcome=outcome,
                warnings=warnings,
                error=error,
                improvement=improvement,
            )
            logger.info(
                "Attempt %d/%d: score=%s threshold=%.1f -> %s",
                attempt_number,
                self.config.max_attempts,
                f"{metrics.overall_score:.1f}" if metrics else "n/a",
                threshold,
                status,
            )
            session.transition(status)
            if status.is_terminal:
                return self.result()

            # Regenerate
            if self.config.enable_adaptive_prompts and outcome is not None:
                self.directives = build_directives(
                    outcome.metrics,
                    outcome.feedback,
                    threshold,
                    max_per_metric=self.config.max_directives_per_metric,
                )
            self.prompt = adapt_prompt(self.initial_prompt, self.directives, attempt_number + 1)

    def close_on_error(self, error: Exception) -> SessionResult:
        """Close the session as an oracle failure after an unexpected error."""
        logger.exception(
            "Session %s failed unexpectedly, closing as %s: %s",
            self.session.content_id,
            SessionStatus.ORACLE_FAILURE,
            summarize_error(error),
        )
        if not self.session.closed:
            self.session.transition(SessionStatus.ORACLE_FAILURE)
        return self.result()

    def result(self) -> SessionResult:
        """Build the SessionResult for a closed session."""
        session = self.session
        attempts = list(session.attempts)
        best = session.best_attempt()
        accepted = session.status == SessionStatus.ACCEPTED
        final = attempts[-1] if accepted else best

        reason: RegenerationReason | None = None
        first_scored = next((a for a in attempts if a.metrics is not None), None)
        if first_scored is not None and not first_scored.metrics.passes_threshold:  # type: ignore[union-attr]
            reason = determine_regeneration_reason(first_scored.metrics)  # type: ignore[arg-type]

        result = SessionResult(
            content_id=session.content_id,
            kind=session.kind,
            final_unit=final.unit if final else None,
            final_metrics=final.metrics if final else None,
            accepted=accepted,
            attempts=tuple(attempts),
            termination_reason=session.status,
            quality_bar_not_met=not accepted,
            best_attempt_number=best.attempt_number if best else None,
            elapsed_ms=self.session_clock.elapsed_ms(),
            regeneration_reason=reason,
        )
        logger.info(
            "Session %s finished: %s after %d attempts (best=%s, %.0fms)",
            session.content_id,
            session.status,
            len(attempts),
            result.best_attempt_number,
            result.elapsed_ms,
        )
        return result


def regeneration_loop(
    *,
    content_id: str,
    kind: ContentKind,
    initial_prompt: str,
    context: Mapping[str, Any],
    config: RegenerationConfig,
    generator: Any,
    oracle: Any,
    breaker: CircuitBreaker | None = None,
    cancel_event: threading.Event | None = None,
    clock: Callable[[], float] = time.monotonic,
    diagnostics: Diagnostics | None = None,
) -> SessionResult:
    """Run one regeneration session to completion.

    Args:
        content_id: Identifier of the content unit; also the log correlation ID.
        kind: Content kind to generate.
        initial_prompt: The request for attempt 1.
        context: Opaque context forwarded to the generator and oracle.
        config: Frozen configuration snapshot for this session.
        generator: ContentGenerator producing one unit per attempt.
        oracle: ScoringOracle for score and feedback calls.
        breaker: Shared oracle circuit breaker, or None to run without one.
        cancel_event: Set from another thread to cancel the session.
        clock: Monotonic clock in seconds; injectable for tests.
        diagnostics: Receives raw oracle feedback errors.

    Returns:
        SessionResult with a terminal ``termination_reason``.
    """
    cancel_event = cancel_event or threading.Event()
    session = RegenerationSession(content_id=content_id, kind=kind, config=config)
    session_clock = SessionClock(config.timeout_s, clock)
    executor = ThreadPoolExecutor(
        max_workers=session_worker_count(config), thread_name_prefix=f"session-{content_id}"
    )

    with log_context(content_id):
        try:
            policy = OracleCallPolicy(
                executor=executor,
                session_clock=session_clock,
                cancel_event=cancel_event,
                breaker=breaker,
                call_timeout_s=config.oracle_call_timeout_s,
                transient_retries=config.oracle_transient_retries,
                retry_backoff_s=config.oracle_retry_backoff_s,
            )
            validator = QualityValidator(
                oracle, config, runner=policy.run, diagnostics=diagnostics
            )
            logger.info(
                "Session %s started: kind=%s, max_attempts=%d, threshold=%.1f, timeout=%dms",
                content_id,
                kind,
                config.max_attempts,
                config.threshold_for(kind),
                config.timeout_ms,
            )
            run = _SessionRun(
                session=session,
                initial_prompt=initial_prompt,
                context=context,
                generator=generator,
                validator=validator,
                policy=policy,
                session_clock=session_clock,
            )
            try:
                return run.run()
            except Exception as e:
                return run.close_on_error(e)
        finally:
            # Abandoned calls may still be running; do not block on them
            executor.shutdown(wait=False, cancel_futures=True)
