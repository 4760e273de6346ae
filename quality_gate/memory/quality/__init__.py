"""Quality models for generated adventure content.

This package provides the data model of the quality gate:
- _models: ContentUnit, QualityMetricSet, Attempt, SessionResult and enums
- _feedback: MetricFeedback, FeedbackRecord
- _scoring: metric weights and the pure aggregation functions
- _config: RegenerationConfig
- _session: RegenerationSession
"""

from ._config import RegenerationConfig
from ._feedback import FALLBACK_ISSUE, FeedbackRecord, MetricFeedback
from ._models import (
    TERMINAL_STATUSES,
    Attempt,
    ContentKind,
    ContentUnit,
    Decision,
    QualityGrade,
    QualityMetricSet,
    RegenerationReason,
    SessionResult,
    SessionStatus,
)
from ._names import normalize_metric_name
from ._scoring import (
    DEFAULT_SCORE,
    IMAGE_METRIC_WEIGHTS,
    METRIC_WEIGHTS,
    TEXT_METRIC_WEIGHTS,
    build_metric_set,
    compute_overall,
    determine_regeneration_reason,
    metric_names,
    metrics_below,
    neutral_metric_set,
    passes_threshold,
    quality_grade,
    validate_score,
)
from ._session import RegenerationSession

__all__ = [
    "DEFAULT_SCORE",
    "FALLBACK_ISSUE",
    "IMAGE_METRIC_WEIGHTS",
    "METRIC_WEIGHTS",
    "TERMINAL_STATUSES",
    "TEXT_METRIC_WEIGHTS",
    "Attempt",
    "ContentKind",
    "ContentUnit",
    "Decision",
    "FeedbackRecord",
    "MetricFeedback",
    "QualityGrade",
    "QualityMetricSet",
    "RegenerationConfig",
    "RegenerationReason",
    "RegenerationSession",
    "SessionResult",
    "SessionStatus",
    "build_metric_set",
    "compute_overall",
    "determine_regeneration_reason",
    "metric_names",
    "metrics_below",
    "neutral_metric_set",
    "normalize_metric_name",
    "passes_threshold",
    "quality_grade",
    "validate_score",
]
