"""Metric aggregation: validate raw oracle scores and compute the weighted verdict.

All functions here are pure. A malformed score never fails the pipeline; it
is defaulted to 5.0 and reported back as a soft warning.
"""

import logging
import math
from collections.abc import Mapping
from typing import Any

from quality_gate.utils.exceptions import ValidationInputError

from ._models import ContentKind, QualityGrade, QualityMetricSet, RegenerationReason
from ._names import normalize_metric_name

logger = logging.getLogger(__name__)

DEFAULT_SCORE = 5.0
MIN_SCORE = 0.0
MAX_SCORE = 10.0

# Weight order is also the priority order for regeneration reasons
TEXT_METRIC_WEIGHTS: dict[str, float] = {
    "narrative_coherence": 0.30,
    "character_depth": 0.25,
    "plot_complexity": 0.25,
    "thematic_consistency": 0.20,
}

IMAGE_METRIC_WEIGHTS: dict[str, float] = {
    "image_quality": 0.30,
    "visual_consistency": 0.25,
    "professional_standard": 0.25,
    "narrative_alignment": 0.20,
}

METRIC_WEIGHTS: dict[ContentKind, dict[str, float]] = {
    ContentKind.TEXT: TEXT_METRIC_WEIGHTS,
    ContentKind.IMAGE: IMAGE_METRIC_WEIGHTS,
}

_REASON_BY_METRIC: dict[str, RegenerationReason] = {
    "narrative_coherence": RegenerationReason.NARRATIVE_COHERENCE_LOW,
    "character_depth": RegenerationReason.CHARACTER_DEPTH_INSUFFICIENT,
    "plot_complexity": RegenerationReason.PLOT_COMPLEXITY_LOW,
    "thematic_consistency": RegenerationReason.THEMATIC_INCONSISTENCY,
    "image_quality": RegenerationReason.IMAGE_QUALITY_POOR,
    "visual_consistency": RegenerationReason.VISUAL_INCONSISTENCY,
    "professional_standard": RegenerationReason.PROFESSIONAL_STANDARD_UNMET,
    "narrative_alignment": RegenerationReason.NARRATIVE_MISALIGNMENT,
}

REASON_SCORE_CEILING = 6.0

# (minimum overall score, grade), checked top-down
_GRADE_BANDS: tuple[tuple[float, QualityGrade], ...] = (
    (9.0, QualityGrade.EXCELLENT),
    (8.0, QualityGrade.GOOD),
    (7.0, QualityGrade.ACCEPTABLE),
    (5.0, QualityGrade.NEEDS_IMPROVEMENT),
)


def metric_names(kind: ContentKind) -> list[str]:
    """Metric names for a content kind, in weight order."""
    return list(METRIC_WEIGHTS[kind])


def _coerce_score(raw: Any, metric: str | None) -> float:
    """Convert a raw oracle value to float.

    Raises:
        ValidationInputError: If the value is not numeric.
    """
    # bool is an int subclass; True must not score 1.0
    if isinstance(raw, bool) or raw is None:
        raise ValidationInputError(
            f"Non-numeric score for {metric or 'metric'}: {raw!r}", metric=metric, raw_value=raw
        )
    if isinstance(raw, int | float):
        value = float(raw)
    elif isinstance(raw, str):
        try:
            value = float(raw.strip())
        except ValueError as e:
            raise ValidationInputError(
                f"Non-numeric score for {metric or 'metric'}: {raw!r}",
                metric=metric,
                raw_value=raw,
            ) from e
    else:
        raise ValidationInputError(
            f"Unsupported score type for {metric or 'metric'}: {type(raw).__name__}",
            metric=metric,
            raw_value=raw,
        )
    if math.isnan(value):
        raise ValidationInputError(
            f"NaN score for {metric or 'metric'}", metric=metric, raw_value=raw
        )
    return value


def validate_score(
    raw: Any, metric: str | None = None, warnings: list[str] | None = None
) -> float:
    """Clamp a raw score to [0, 10], defaulting malformed input to 5.0.

    Args:
        raw: Value returned by the oracle (number, numeric string, or junk).
        metric: Metric name, for the warning text.
        warnings: If given, a soft warning is appended when the value is defaulted.

    Returns:
        A score in [0, 10].
    """
    try:
        value = _coerce_score(raw, metric)
    except ValidationInputError as e:
        logger.warning("Invalid score received, defaulting to %.1f: %s", DEFAULT_SCORE, e)
        if warnings is not None:
            warnings.append(f"{e}; defaulted to {DEFAULT_SCORE}")
        return DEFAULT_SCORE
    return max(MIN_SCORE, min(MAX_SCORE, value))


def compute_overall(scores: Mapping[str, float], weights: Mapping[str, float]) -> float:
    """Weighted sum of metric scores, rounded to one decimal.

    Metrics missing from ``scores`` count as the default score.
    """
    total = sum(scores.get(name, DEFAULT_SCORE) * weight for name, weight in weights.items())
    return max(MIN_SCORE, min(MAX_SCORE, round(total, 1)))


def passes_threshold(overall: float, threshold: float) -> bool:
    """True when the overall score meets the threshold."""
    return overall >= threshold


def build_metric_set(
    raw: Any, kind: ContentKind, threshold: float
) -> tuple[QualityMetricSet, list[str]]:
    """Normalize an oracle score mapping into a QualityMetricSet.

    Keys may be camelCase or snake_case. Missing and malformed metrics are
    defaulted with a warning; unknown keys are ignored.

    Args:
        raw: Mapping of metric name to raw score.
        kind: Content kind, selects the metric weights.
        threshold: Overall score needed to pass.

    Returns:
        Tuple of (metric set, soft warnings).
    """
    weights = METRIC_WEIGHTS[kind]
    warnings: list[str] = []

    if not isinstance(raw, Mapping):
        warnings.append(
            f"Score response was {type(raw).__name__}, not a mapping; all metrics defaulted"
        )
        raw = {}

    normalized = {normalize_metric_name(str(k)): v for k, v in raw.items()}
    scores: dict[str, float] = {}
    for name in weights:
        if name not in normalized:
            warnings.append(f"Missing score for {name}; defaulted to {DEFAULT_SCORE}")
            scores[name] = DEFAULT_SCORE
            continue
        scores[name] = validate_score(normalized[name], metric=name, warnings=warnings)

    overall = compute_overall(scores, weights)
    metric_set = QualityMetricSet(
        kind=kind,
        scores=scores,
        weights=dict(weights),
        overall_score=overall,
        threshold=threshold,
        passes_threshold=passes_threshold(overall, threshold),
    )
    logger.debug(
        "Built %s metric set: overall=%.1f threshold=%.1f passes=%s warnings=%d",
        kind,
        overall,
        threshold,
        metric_set.passes_threshold,
        len(warnings),
    )
    return metric_set, warnings


def neutral_metric_set(kind: ContentKind, threshold: float) -> QualityMetricSet:
    """Metric set with every score at the default, used when scores are unreadable."""
    metric_set, _ = build_metric_set(
        dict.fromkeys(METRIC_WEIGHTS[kind], DEFAULT_SCORE), kind, threshold
    )
    return metric_set


def metrics_below(metrics: QualityMetricSet, threshold: float) -> list[str]:
    """Metric names scoring under ``threshold``, in weight order."""
    return [name for name in metrics.weights if metrics.scores[name] < threshold]


def quality_grade(score: float) -> QualityGrade:
    """Grade band for an overall score."""
    for floor, grade in _GRADE_BANDS:
        if score >= floor:
            return grade
    return QualityGrade.POOR


def determine_regeneration_reason(
    metrics: QualityMetricSet, ceiling: float = REASON_SCORE_CEILING
) -> RegenerationReason:
    """Reason code from the first metric under ``ceiling`` in weight order."""
    for name in metrics_below(metrics, ceiling):
        reason = _REASON_BY_METRIC.get(name)
        if reason is not None:
            return reason
    return RegenerationReason.BELOW_THRESHOLD
