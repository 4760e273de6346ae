"""Structured per-metric feedback from the scoring oracle."""

import logging
from collections.abc import Iterable, Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from quality_gate.utils.exceptions import OracleFormatError

from ._names import normalize_metric_name

logger = logging.getLogger(__name__)

FALLBACK_STRENGTH = "Content analysis completed"
FALLBACK_WEAKNESS = "Detailed feedback unavailable"
FALLBACK_ISSUE = "Manual review recommended"

# Oracles name the per-metric issue list differently depending on content kind
_ISSUE_KEYS = (
    "issues",
    "specific_issues",
    "technical_issues",
    "consistency_issues",
    "standard_issues",
    "alignment_issues",
)


def _as_string_list(value: Any) -> list[str]:
    """Coerce an oracle list field into a list of non-empty strings."""
    if value is None:
        return []
    if isinstance(value, str):
        return [value.strip()] if value.strip() else []
    if not isinstance(value, Iterable) or isinstance(value, Mapping):
        return [str(value)]
    items: list[str] = []
    for item in value:
        if item is None:
            continue
        text = item.strip() if isinstance(item, str) else str(item).strip()
        if text:
            items.append(text)
    return items


class MetricFeedback(BaseModel):
    """Strengths, weaknesses and concrete issues for one metric.

    All three lists default to empty and are never None.
    """

    model_config = ConfigDict(frozen=True)

    strengths: list[str] = Field(default_factory=list)
    weaknesses: list[str] = Field(default_factory=list)
    issues: list[str] = Field(default_factory=list)

    @field_validator("strengths", "weaknesses", "issues", mode="before")
    @classmethod
    def _coerce_list(cls, value: Any) -> list[str]:
        return _as_string_list(value)

    @property
    def is_empty(self) -> bool:
        """True when the oracle said nothing about this metric."""
        return not (self.strengths or self.weaknesses or self.issues)


class FeedbackRecord(BaseModel):
    """Feedback for every metric of one content unit.

    ``is_fallback`` marks the generic record produced when the oracle could
    not be reached or its response could not be parsed.
    """

    model_config = ConfigDict(frozen=True)

    metrics: dict[str, MetricFeedback] = Field(default_factory=dict)
    is_fallback: bool = False
    notes: str = ""

    def for_metric(self, name: str) -> MetricFeedback:
        """Feedback for one metric, empty if the oracle omitted it."""
        return self.metrics.get(name) or MetricFeedback()

    @property
    def issue_count(self) -> int:
        """Total issues across all metrics."""
        return sum(len(m.issues) for m in self.metrics.values())

    @classmethod
    def empty(cls, metric_names: Iterable[str]) -> "FeedbackRecord":
        """Record with empty feedback for every metric."""
        return cls(metrics={name: MetricFeedback() for name in metric_names})

    @classmethod
    def fallback(
        cls, metric_names: Iterable[str], strength: str = FALLBACK_STRENGTH
    ) -> "FeedbackRecord":
        """Generic record used when detailed feedback is unavailable."""
        return cls(
            metrics={
                name: MetricFeedback(
                    strengths=[strength],
                    weaknesses=[FALLBACK_WEAKNESS],
                    issues=[FALLBACK_ISSUE],
                )
                for name in metric_names
            },
            is_fallback=True,
        )

    @classmethod
    def from_oracle(cls, raw: Any, metric_names: Iterable[str]) -> "FeedbackRecord":
        """Normalize an oracle feedback response.

        Accepts an existing FeedbackRecord or a mapping keyed by metric name
        (camelCase or snake_case). Per-metric issues may arrive under
        ``issues``, ``specificIssues`` or a kind-specific key such as
        ``technicalIssues``. Metrics the oracle omitted get empty feedback.

        Args:
            raw: Oracle response.
            metric_names: Metrics the record must cover.

        Returns:
            Normalized FeedbackRecord.

        Raises:
            OracleFormatError: If the response is not a mapping of mappings.
        """
        names = list(metric_names)
        if isinstance(raw, FeedbackRecord):
            return cls(
                metrics={name: raw.for_metric(name) for name in names},
                is_fallback=raw.is_fallback,
                notes=raw.notes,
            )
        if not isinstance(raw, Mapping):
            raise OracleFormatError(
                f"Feedback response must be a mapping, got {type(raw).__name__}",
                operation="feedback",
            )

        body: Mapping[str, Any] = raw
        if isinstance(raw.get("metrics"), Mapping):
            body = raw["metrics"]

        by_name = {normalize_metric_name(str(k)): v for k, v in body.items()}
        metrics: dict[str, MetricFeedback] = {}
        for name in names:
            entry = by_name.get(name)
            if entry is None:
                logger.debug("Oracle feedback omitted metric %s", name)
                metrics[name] = MetricFeedback()
                continue
            if not isinstance(entry, Mapping):
                raise OracleFormatError(
                    f"Feedback for {name} must be a mapping, got {type(entry).__name__}",
                    operation="feedback",
                )
            fields = {normalize_metric_name(str(k)): v for k, v in entry.items()}
            issues: list[str] = []
            for key in _ISSUE_KEYS:
                issues.extend(_as_string_list(fields.get(key)))
            metrics[name] = MetricFeedback(
                strengths=fields.get("strengths"),
                weaknesses=fields.get("weaknesses"),
                issues=issues,
            )

        notes = raw.get("analysis_notes") or raw.get("analysisNotes") or raw.get("notes") or ""
        return cls(metrics=metrics, notes=str(notes))
