"""Pydantic models for generated content, metric sets, attempts and results.

These models carry a content unit through the generate, score and decide
cycle. Everything except the session itself is frozen: once an attempt is
recorded it never changes.
"""

import logging
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ._feedback import FeedbackRecord

logger = logging.getLogger(__name__)


class ContentKind(StrEnum):
    """Kind of generated content."""

    TEXT = "text"
    IMAGE = "image"


class Decision(StrEnum):
    """Outcome of the Deciding step for one attempt."""

    ACCEPT = "accept"
    REGENERATE = "regenerate"
    ABORT = "abort"


class RegenerationReason(StrEnum):
    """Why a session needed regeneration, from its weakest metric."""

    BELOW_THRESHOLD = "below_threshold"
    NARRATIVE_COHERENCE_LOW = "narrative_coherence_low"
    CHARACTER_DEPTH_INSUFFICIENT = "character_depth_insufficient"
    PLOT_COMPLEXITY_LOW = "plot_complexity_low"
    THEMATIC_INCONSISTENCY = "thematic_inconsistency"
    IMAGE_QUALITY_POOR = "image_quality_poor"
    VISUAL_INCONSISTENCY = "visual_inconsistency"
    PROFESSIONAL_STANDARD_UNMET = "professional_standard_unmet"
    NARRATIVE_MISALIGNMENT = "narrative_misalignment"


class QualityGrade(StrEnum):
    """Human-readable grade band for an overall score."""

    EXCELLENT = "Excellent"
    GOOD = "Good"
    ACCEPTABLE = "Acceptable"
    NEEDS_IMPROVEMENT = "Needs Improvement"
    POOR = "Poor"


class ContentUnit(BaseModel):
    """One generated piece of content and the request that produced it.

    The context mapping (theme, tone, prior elements) is opaque here and only
    forwarded to the oracle.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    kind: ContentKind
    payload: Any = Field(description="Generated text, or an image reference/bytes")
    prompt: str = Field(description="Prompt that produced this unit")
    context: dict[str, Any] = Field(default_factory=dict)


class QualityMetricSet(BaseModel):
    """Validated per-metric scores with their weighted overall verdict."""

    model_config = ConfigDict(frozen=True)

    kind: ContentKind
    scores: dict[str, float] = Field(description="Metric name -> score in [0, 10]")
    weights: dict[str, float] = Field(description="Metric name -> weight, summing to 1")
    overall_score: float = Field(ge=0.0, le=10.0)
    threshold: float = Field(ge=0.0, le=10.0)
    passes_threshold: bool

    def score(self, metric: str) -> float:
        """Score for one metric by name."""
        return self.scores[metric]


class Attempt(BaseModel):
    """Record of one generate, score and decide cycle.

    ``unit`` is None when the generator failed, ``metrics`` is None when the
    unit was never scored.
    """

    model_config = ConfigDict(frozen=True)

    attempt_number: int = Field(ge=1, description="1-indexed attempt number")
    unit: ContentUnit | None = None
    metrics: QualityMetricSet | None = None
    feedback: FeedbackRecord | None = None
    decision: Decision
    started_at: datetime
    ended_at: datetime
    prompt: str = Field(description="Full prompt sent to the generator")
    directives: tuple[str, ...] = Field(
        default=(), description="Adaptation directives appended to the prompt"
    )
    technical_issues: tuple[str, ...] = ()
    improvement_suggestions: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()
    error: str | None = Field(default=None, description="Generic error code, never raw text")
    improvement: float | None = Field(
        default=None, description="Overall score gain over the best earlier attempt"
    )

    @property
    def overall_score(self) -> float | None:
        """Overall score, or None if the attempt was not scored."""
        return self.metrics.overall_score if self.metrics is not None else None

    @property
    def duration_ms(self) -> float:
        """Wall-clock duration of the attempt in milliseconds."""
        return (self.ended_at - self.started_at).total_seconds() * 1000.0


class SessionStatus(StrEnum):
    """States of a regeneration session."""

    PENDING = "pending"
    SCORING = "scoring"
    DECIDING = "deciding"
    REGENERATING = "regenerating"
    ACCEPTED = "accepted"
    EXHAUSTED_ATTEMPTS = "exhausted_attempts"
    TIMED_OUT = "timed_out"
    ORACLE_FAILURE = "oracle_failure"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """True for statuses that end a session."""
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {
        SessionStatus.ACCEPTED,
        SessionStatus.EXHAUSTED_ATTEMPTS,
        SessionStatus.TIMED_OUT,
        SessionStatus.ORACLE_FAILURE,
        SessionStatus.CANCELLED,
    }
)


class SessionResult(BaseModel):
    """Terminal outcome of a regeneration session."""

    model_config = ConfigDict(frozen=True)

    content_id: str
    kind: ContentKind
    final_unit: ContentUnit | None = None
    final_metrics: QualityMetricSet | None = None
    accepted: bool
    attempts: tuple[Attempt, ...] = ()
    termination_reason: SessionStatus
    quality_bar_not_met: bool = False
    best_attempt_number: int | None = None
    elapsed_ms: float = 0.0
    regeneration_reason: RegenerationReason | None = None

    @property
    def regenerations_triggered(self) -> int:
        """Number of attempts after the first."""
        return max(0, len(self.attempts) - 1)

    @property
    def improvement_achieved(self) -> float:
        """Percentage gain of the final score over the first scored attempt."""
        scored = [a for a in self.attempts if a.metrics is not None]
        if not scored or self.final_metrics is None:
            return 0.0
        initial = scored[0].metrics.overall_score  # type: ignore[union-attr]
        if initial <= 0:
            return 0.0
        return round((self.final_metrics.overall_score - initial) / initial * 100.0, 1)

    def to_summary(self) -> dict[str, Any]:
        """JSON-friendly summary without content payloads."""
        return {
            "content_id": self.content_id,
            "kind": self.kind.value,
            "accepted": self.accepted,
            "termination_reason": self.termination_reason.value,
            "quality_bar_not_met": self.quality_bar_not_met,
            "best_attempt_number": self.best_attempt_number,
            "final_score": self.final_metrics.overall_score if self.final_metrics else None,
            "final_scores": dict(self.final_metrics.scores) if self.final_metrics else None,
            "regeneration_reason": (
                self.regeneration_reason.value if self.regeneration_reason else None
            ),
            "improvement_achieved": self.improvement_achieved,
            "elapsed_ms": round(self.elapsed_ms, 1),
            "attempts": [
                {
                    "attempt_number": a.attempt_number,
                    "decision": a.decision.value,
                    "overall_score": a.overall_score,
                    "directives": list(a.directives),
                    "technical_issues": list(a.technical_issues),
                    "warnings": list(a.warnings),
                    "error": a.error,
                    "duration_ms": round(a.duration_ms, 1),
                }
                for a in self.attempts
            ],
        }
