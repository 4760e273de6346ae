"""Centralized exception hierarchy for the quality gate.

Exception Hierarchy:

    QualityGateError (base for all application errors)
    ├── LLMError (LLM/Ollama related errors)
    │   ├── LLMConnectionError (connection failures and timeouts)
    │   └── CircuitOpenError (circuit breaker blocking requests)
    ├── ValidationError (validation failures)
    │   ├── ResponseValidationError (LLM response failed schema validation)
    │   └── ValidationInputError (malformed score, recovered locally)
    ├── OracleError (scoring oracle failures)
    │   ├── OracleTransientError (retry once at the call site)
    │   └── OracleFormatError (unparseable response, fall back)
    ├── GeneratorFailure (content generator failed, consumes one attempt)
    ├── GenerationCancelledError (session cancelled at a transition boundary)
    │   └── SessionDeadlineExceeded (session wall-clock budget expired)
    ├── ConfigError (configuration parsing/validation failures)
    └── SessionStateError (invalid session transition)

Usage:
    from quality_gate.utils.exceptions import OracleError, OracleTransientError

    try:
        oracle.score(unit, context)
    except OracleTransientError:
        logger.warning("Oracle timed out, retrying once")
    except OracleError:
        logger.error("Oracle call failed")
"""

import logging

logger = logging.getLogger(__name__)


def summarize_error(error: Exception, max_length: int = 300) -> str:
    """Create a concise summary of an exception for logging.

    Oracle and LLM exceptions can carry full response bodies, which turns
    a single failure into hundreds of log lines. This keeps the type name and
    a truncated message.

    Args:
        error: The exception to summarize.
        max_length: Maximum length of the message part.

    Returns:
        A concise error summary suitable for log messages.
    """
    error_type = type(error).__name__
    msg = str(error)
    if len(msg) <= max_length:
        return f"{error_type}: {msg}"
    return f"{error_type}: {msg[:max_length]}... [{len(msg) - max_length} chars truncated]"


class QualityGateError(Exception):
    """Base exception for all quality gate errors.

    All custom exceptions inherit from this class so callers can catch
    every application-specific error with a single except clause.
    """

    pass


class LLMError(QualityGateError):
    """Base exception for LLM-related errors.

    Raised when an Ollama request fails for a reason that is not a
    connection problem or a malformed response.
    """

    pass


class LLMConnectionError(LLMError):
    """Raised when Ollama cannot be reached or the request timed out."""

    pass


class CircuitOpenError(LLMError):
    """Raised when the circuit breaker is open and blocking oracle calls.

    Too many consecutive oracle failures have occurred. The circuit moves to
    half-open after its timeout and lets a single probe request through.

    Attributes:
        time_until_retry: Seconds until the circuit may allow requests.
    """

    def __init__(self, message: str, time_until_retry: float | None = None):
        """Initialize CircuitOpenError with timing information.

        Args:
            message: Human-readable error message.
            time_until_retry: Seconds until circuit may transition to half-open.
        """
        super().__init__(message)
        self.time_until_retry = time_until_retry
        logger.debug(
            "CircuitOpenError initialized: message=%s, time_until_retry=%s",
            message,
            time_until_retry,
        )


class ValidationError(QualityGateError):
    """Base exception for validation errors."""

    pass


class ResponseValidationError(ValidationError):
    """Raised when an LLM response does not match the requested schema.

    Attributes:
        response_preview: First 500 chars of the raw response for debugging.
    """

    def __init__(self, message: str, response_preview: str | None = None):
        """Initialize with an optional preview of the offending response.

        Args:
            message: Human-readable error message.
            response_preview: Truncated raw response text.
        """
        super().__init__(message)
        self.response_preview = response_preview


class ValidationInputError(ValidationError):
    """Raised for a malformed oracle score.

    Never escapes the metric aggregator: the score is defaulted and the
    problem is recorded as a soft warning instead.

    Attributes:
        metric: Name of the metric whose score was malformed.
        raw_value: The value the oracle returned.
    """

    def __init__(self, message: str, metric: str | None = None, raw_value: object = None):
        """Initialize with the metric name and raw value.

        Args:
            message: Human-readable error message.
            metric: Metric the value belongs to, if known.
            raw_value: The malformed value.
        """
        super().__init__(message)
        self.metric = metric
        self.raw_value = raw_value


class OracleError(QualityGateError):
    """Base exception for scoring oracle failures.

    Attributes:
        operation: Which oracle call failed ("score" or "feedback").
    """

    def __init__(self, message: str, operation: str | None = None):
        """Initialize with the failing operation name.

        Args:
            message: Human-readable error message.
            operation: Oracle operation that failed.
        """
        super().__init__(message)
        self.operation = operation


class OracleTransientError(OracleError):
    """Raised for oracle failures worth one retry (timeouts, connection drops)."""

    pass


class OracleFormatError(OracleError):
    """Raised when the oracle response cannot be parsed.

    Retrying the same request is not expected to help; callers fall back to
    neutral scores or generic feedback instead.
    """

    pass


class GeneratorFailure(QualityGateError):
    """Raised when the content generator fails to produce a unit.

    The controller records the failure as an attempt with empty metrics;
    the session itself continues while budget remains.
    """

    pass


class GenerationCancelledError(QualityGateError):
    """Raised when a session is cancelled by an external request.

    Checked at every state transition and while waiting on in-flight
    oracle or generator calls.
    """

    pass


class SessionDeadlineExceeded(GenerationCancelledError):
    """Raised when the session wall-clock budget expires mid-call.

    Attributes:
        elapsed_ms: Milliseconds elapsed since the session started.
    """

    def __init__(self, message: str, elapsed_ms: float = 0.0):
        """Initialize with the elapsed time.

        Args:
            message: Human-readable error message.
            elapsed_ms: Milliseconds elapsed when the deadline was detected.
        """
        super().__init__(message)
        self.elapsed_ms = elapsed_ms


class ConfigError(QualityGateError):
    """Raised when configuration parsing or validation fails."""

    pass


class SessionStateError(QualityGateError):
    """Raised on an invalid regeneration session transition.

    Signals a controller bug, not a content or oracle problem.
    """

    pass
