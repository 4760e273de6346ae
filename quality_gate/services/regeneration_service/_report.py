"""Quality report over a batch of finished regeneration sessions."""

import logging
from collections.abc import Sequence
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from quality_gate.memory.quality import ContentKind, QualityGrade, SessionResult, quality_grade

logger = logging.getLogger(__name__)

# A kind is flagged when more than this share of items scores under LOW_SCORE
LOW_SCORE = 8.0
LOW_SCORE_SHARE = 0.3
MAX_FAILURE_RATE = 0.2
MIN_PASS_RATE = 0.8

RECOMMEND_TEXT = (
    "Focus on improving content quality: enhance narrative coherence and character depth"
)
RECOMMEND_IMAGE = (
    "Improve visual quality: enhance image resolution and professional standards"
)
RECOMMEND_THRESHOLDS = "Consider adjusting quality thresholds or improving base prompts"
RECOMMEND_MAINTAIN = (
    "Quality standards are being met consistently - maintain current processes"
)


class QualitySummary(BaseModel):
    """Aggregate counts and grade for a batch."""

    model_config = ConfigDict(frozen=True)

    total_items: int = Field(ge=0)
    items_passed: int = Field(ge=0)
    items_failed: int = Field(ge=0)
    average_quality_score: float = Field(ge=0.0, le=10.0)
    regenerations_triggered: int = Field(
        ge=0, description="Sessions that needed more than one attempt"
    )
    regenerations_successful: int = Field(
        ge=0, description="Of those, sessions that were accepted"
    )
    overall_grade: QualityGrade


class QualityReport(BaseModel):
    """Summary, per-session results and advice for one batch."""

    model_config = ConfigDict(frozen=True)

    summary: QualitySummary
    results: tuple[SessionResult, ...] = ()
    recommendations: tuple[str, ...] = ()
    next_steps: tuple[str, ...] = ()

    def to_summary(self) -> dict[str, Any]:
        """JSON-friendly form of the report."""
        return {
            "summary": self.summary.model_dump(mode="json"),
            "results": [r.to_summary() for r in self.results],
            "recommendations": list(self.recommendations),
            "next_steps": list(self.next_steps),
        }


def _final_score(result: SessionResult) -> float:
    return result.final_metrics.overall_score if result.final_metrics else 0.0


def summarize(results: Sequence[SessionResult]) -> QualitySummary:
    """Count passes and regenerations and grade the average final score."""
    total = len(results)
    passed = sum(1 for r in results if r.accepted)
    average = round(sum(_final_score(r) for r in results) / total, 1) if total else 0.0
    regenerated = [r for r in results if len(r.attempts) > 1]
    return QualitySummary(
        total_items=total,
        items_passed=passed,
        items_failed=total - passed,
        average_quality_score=average,
        regenerations_triggered=len(regenerated),
        regenerations_successful=sum(1 for r in regenerated if r.accepted),
        overall_grade=quality_grade(average),
    )


def recommendations(results: Sequence[SessionResult]) -> list[str]:
    """Batch-level advice based on low scores and the failure rate."""
    if not results:
        return []
    total = len(results)
    advice: list[str] = []

    low_text = sum(
        1 for r in results if r.kind == ContentKind.TEXT and _final_score(r) < LOW_SCORE
    )
    low_image = sum(
        1 for r in results if r.kind == ContentKind.IMAGE and _final_score(r) < LOW_SCORE
    )
    if low_text > total * LOW_SCORE_SHARE:
        advice.append(RECOMMEND_TEXT)
    if low_image > total * LOW_SCORE_SHARE:
        advice.append(RECOMMEND_IMAGE)

    failure_rate = sum(1 for r in results if not r.accepted) / total
    if failure_rate > MAX_FAILURE_RATE:
        advice.append(RECOMMEND_THRESHOLDS)

    if not advice:
        advice.append(RECOMMEND_MAINTAIN)
    return advice


def next_steps(summary: QualitySummary) -> list[str]:
    """Follow-up actions derived from the summary."""
    steps: list[str] = []
    if summary.total_items == 0:
        return steps

    if summary.overall_grade in (QualityGrade.POOR, QualityGrade.NEEDS_IMPROVEMENT):
        steps.append("Immediate action required: Review and improve base prompt templates")
        steps.append("Enable automatic regeneration for all content below threshold")

    if summary.regenerations_triggered > 0 and (
        summary.regenerations_successful < summary.regenerations_triggered
    ):
        steps.append("Investigate regeneration failures and improve feedback mechanisms")

    if summary.items_passed / summary.total_items < MIN_PASS_RATE:
        steps.append(
            "Consider lowering quality thresholds temporarily while improving base quality"
        )

    if summary.overall_grade == QualityGrade.EXCELLENT:
        steps.append(
            "Quality standards exceeded - consider raising thresholds for continuous improvement"
        )
    return steps


def build_quality_report(results: Sequence[SessionResult]) -> QualityReport:
    """Summarize a batch of session results into a QualityReport."""
    summary = summarize(results)
    report = QualityReport(
        summary=summary,
        results=tuple(results),
        recommendations=tuple(recommendations(results)),
        next_steps=tuple(next_steps(summary)),
    )
    logger.info(
        "Quality report: grade=%s, passed %d/%d, regenerations %d/%d successful",
        summary.overall_grade,
        summary.items_passed,
        summary.total_items,
        summary.regenerations_successful,
        summary.regenerations_triggered,
    )
    return report
