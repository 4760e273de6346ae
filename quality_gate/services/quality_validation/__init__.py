"""Dual validator facade for text and image content.

One QualityValidator serves both content kinds: each is a parameterization of
the metric aggregator (weights, threshold) plus the feedback synthesizer.
validate_text and validate_image share a signature and dispatch through
validate() on a kind-tagged ValidationRequest.
"""

import logging
from collections.abc import Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from quality_gate.memory.quality import (
    ContentKind,
    ContentUnit,
    FeedbackRecord,
    QualityMetricSet,
    RegenerationConfig,
    build_metric_set,
    metric_names,
    neutral_metric_set,
)
from quality_gate.utils.exceptions import OracleFormatError, summarize_error

from ._feedback import Diagnostics, FeedbackSynthesizer, OracleRunner, run_directly
from ._rules import (
    CANNED_SUGGESTIONS,
    TECHNICAL_ISSUE_MESSAGES,
    canned_suggestion,
    identify_technical_issues,
    improvement_suggestions,
)

logger = logging.getLogger(__name__)

SCORES_UNREADABLE_WARNING = "Oracle score response unreadable; neutral scores used"


class ValidationRequest(BaseModel):
    """A unit to validate, tagged with its kind through the unit itself."""

    model_config = ConfigDict(frozen=True)

    unit: ContentUnit
    context: dict[str, Any] = Field(default_factory=dict)

    @property
    def kind(self) -> ContentKind:
        """Content kind of the unit."""
        return self.unit.kind


class ValidationOutcome(BaseModel):
    """Result of validating one unit."""

    model_config = ConfigDict(frozen=True)

    metrics: QualityMetricSet
    feedback: FeedbackRecord
    regeneration_required: bool
    technical_issues: tuple[str, ...] = ()
    improvement_suggestions: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    scores_degraded: bool = Field(
        default=False, description="True when neutral scores replaced an unreadable response"
    )


def _require_kind(unit: ContentUnit, kind: ContentKind) -> None:
    if unit.kind != kind:
        raise ValueError(f"Expected a {kind} unit, got {unit.kind}")


class QualityValidator:
    """Scores a unit and gathers feedback, for either content kind."""

    def __init__(
        self,
        oracle: Any,
        config: RegenerationConfig | None = None,
        runner: OracleRunner | None = None,
        diagnostics: Diagnostics | None = None,
    ):
        """Initialize the validator.

        Args:
            oracle: ScoringOracle used for both score and feedback calls.
            config: Thresholds and feedback switch; defaults to RegenerationConfig().
            runner: Wraps each oracle call (retry, timeout, cancellation).
            diagnostics: Receives raw oracle errors from the feedback call.
        """
        self.oracle = oracle
        self.config = config or RegenerationConfig()
        self.runner = runner or run_directly
        self.feedback = FeedbackSynthesizer(oracle, runner=self.runner, diagnostics=diagnostics)

    def validate_text(self, unit: ContentUnit, context: Mapping[str, Any]) -> ValidationOutcome:
        """Validate narrative content."""
        _require_kind(unit, ContentKind.TEXT)
        return self.validate(ValidationRequest(unit=unit, context=dict(context)))

    def validate_image(self, unit: ContentUnit, context: Mapping[str, Any]) -> ValidationOutcome:
        """Validate an image."""
        _require_kind(unit, ContentKind.IMAGE)
        return self.validate(ValidationRequest(unit=unit, context=dict(context)))

    def validate(self, request: ValidationRequest) -> ValidationOutcome:
        """Run one scoring call and, if enabled, one feedback call.

        A scoring OracleFormatError degrades to neutral scores with a warning.
        Transient oracle errors, an open circuit and cancellation propagate
        to the caller.
        """
        unit = request.unit
        kind = request.kind
        threshold = self.config.threshold_for(kind)
        warnings: list[str] = []
        degraded = False

        try:
            raw_scores = self.runner("score", lambda: self.oracle.score(unit, request.context))
            metrics, score_warnings = build_metric_set(raw_scores, kind, threshold)
            warnings.extend(score_warnings)
        except OracleFormatError as e:
            logger.warning("Scoring response unreadable for %s unit: %s", kind, summarize_error(e))
            metrics = neutral_metric_set(kind, threshold)
            warnings.append(SCORES_UNREADABLE_WARNING)
            degraded = True

        if self.config.enable_feedback_loop:
            feedback = self.feedback.request_feedback(unit, metrics.scores)
        else:
            feedback = FeedbackRecord.empty(metric_names(kind))

        technical_issues = identify_technical_issues(
            unit, metrics, threshold=self.config.technical_issue_threshold
        )
        suggestions = improvement_suggestions(metrics, feedback)

        logger.info(
            "Validated %s unit: overall=%.1f threshold=%.1f regenerate=%s",
            kind,
            metrics.overall_score,
            threshold,
            not metrics.passes_threshold,
        )
        return ValidationOutcome(
            metrics=metrics,
            feedback=feedback,
            regeneration_required=not metrics.passes_threshold,
            technical_issues=tuple(technical_issues),
            improvement_suggestions=tuple(suggestions),
            warnings=tuple(warnings),
            scores_degraded=degraded,
        )


__all__ = [
    "CANNED_SUGGESTIONS",
    "SCORES_UNREADABLE_WARNING",
    "TECHNICAL_ISSUE_MESSAGES",
    "FeedbackSynthesizer",
    "OracleRunner",
    "QualityValidator",
    "ValidationOutcome",
    "ValidationRequest",
    "canned_suggestion",
    "identify_technical_issues",
    "improvement_suggestions",
    "run_directly",
]
