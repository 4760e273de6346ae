"""Feedback synthesizer: one oracle feedback call with a safe fallback."""

import logging
from collections.abc import Callable, Mapping
from typing import Any, Protocol

from quality_gate.memory.quality import ContentKind, ContentUnit, FeedbackRecord, metric_names
from quality_gate.utils.exceptions import CircuitOpenError, OracleError, summarize_error

logger = logging.getLogger(__name__)

_FALLBACK_STRENGTHS: dict[ContentKind, str] = {
    ContentKind.TEXT: "Content analysis completed",
    ContentKind.IMAGE: "Visual analysis completed",
}


class Diagnostics(Protocol):
    """Where raw oracle errors are reported. A logging.Logger satisfies this."""

    def warning(self, msg: str, *args: Any) -> None: ...


OracleRunner = Callable[[str, Callable[[], Any]], Any]


def run_directly(operation: str, call: Callable[[], Any]) -> Any:
    """OracleRunner that invokes the call on the current thread."""
    return call()


class FeedbackSynthesizer:
    """Requests per-metric feedback and normalizes it into a FeedbackRecord.

    Oracle errors never reach the record: they go to ``diagnostics`` and a
    generic fallback record is returned. Cancellation and the session
    deadline always propagate.
    """

    def __init__(
        self,
        oracle: Any,
        runner: OracleRunner | None = None,
        diagnostics: Diagnostics | None = None,
    ):
        """Initialize the synthesizer.

        Args:
            oracle: ScoringOracle providing ``feedback(unit, scores)``.
            runner: Wraps each oracle call (retry, timeout, cancellation).
            diagnostics: Receives raw oracle errors; defaults to this module's logger.
        """
        self.oracle = oracle
        self.runner = runner or run_directly
        self.diagnostics = diagnostics or logger

    def request_feedback(self, unit: ContentUnit, scores: Mapping[str, float]) -> FeedbackRecord:
        """Ask the oracle for feedback on ``unit``.

        Returns:
            Parsed feedback, or the fallback record if the oracle failed.
        """
        names = metric_names(unit.kind)
        try:
            raw = self.runner("feedback", lambda: self.oracle.feedback(unit, dict(scores)))
            record = FeedbackRecord.from_oracle(raw, names)
        except (OracleError, CircuitOpenError) as e:
            self.diagnostics.warning(
                "Oracle feedback unavailable, using fallback: %s", summarize_error(e)
            )
            return FeedbackRecord.fallback(names, strength=_FALLBACK_STRENGTHS[unit.kind])

        logger.debug(
            "Feedback received for %s unit: %d issues across %d metrics",
            unit.kind,
            record.issue_count,
            len(record.metrics),
        )
        return record
