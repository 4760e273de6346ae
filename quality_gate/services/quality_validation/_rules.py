"""Deterministic local rules applied on top of oracle scores."""

import logging
from collections.abc import Mapping
from typing import Any

from quality_gate.memory.quality import (
    ContentKind,
    ContentUnit,
    FeedbackRecord,
    QualityMetricSet,
)

logger = logging.getLogger(__name__)

# Metrics under this score get canned suggestions
SUGGESTION_THRESHOLD = 8.0

# Image generation faster than this usually means low-quality sampler settings
FAST_GENERATION_MS = 5000

CANNED_SUGGESTIONS: dict[str, tuple[str, ...]] = {
    "narrative_coherence": (
        "Strengthen narrative flow by ensuring each scene builds logically on the previous one",
    ),
    "character_depth": (
        "Develop character motivations and relationships more deeply",
        "Add distinctive personality traits and memorable dialogue",
    ),
    "plot_complexity": (
        "Increase plot sophistication with meaningful choices and consequences",
        "Add unexpected twists that recontextualize earlier events",
    ),
    "thematic_consistency": (
        "Ensure all elements reinforce the central themes",
        "Maintain consistent tone and symbolic elements throughout",
    ),
    "image_quality": (
        "Improve technical image quality: enhance resolution, lighting, and composition",
    ),
    "visual_consistency": (
        "Maintain consistent art style, color palette, and lighting approach",
        "Ensure visual coherence with established style guidelines",
    ),
    "professional_standard": (
        "Elevate to professional publication standards",
        "Increase detail level and artistic craftsmanship",
    ),
    "narrative_alignment": (
        "Better align visual elements with story context and mood",
        "Ensure image accurately depicts described narrative elements",
    ),
}

# Metrics whose first oracle issue is echoed as its own suggestion
_ISSUE_PREFIXES: dict[str, str] = {
    "narrative_coherence": "Address narrative issues",
    "image_quality": "Address technical issues",
}

_OVERALL_SUGGESTIONS: dict[ContentKind, tuple[str, ...]] = {
    ContentKind.TEXT: (
        "Content requires regeneration to meet professional quality standards",
        "Focus on the lowest-scoring quality metrics for maximum improvement",
    ),
    ContentKind.IMAGE: (
        "Image requires regeneration to meet professional quality standards",
        "Focus on the lowest-scoring visual metrics for maximum improvement",
    ),
}

TECHNICAL_ISSUE_MESSAGES: dict[str, str] = {
    "image_quality": "Low technical quality detected - resolution or clarity issues likely",
    "professional_standard": "Below professional standards - significant quality improvements needed",
    "visual_consistency": "Visual inconsistency with established style guidelines",
    "narrative_alignment": (
        "Poor alignment with narrative context - image may not match story requirements"
    ),
}

FAST_GENERATION_ISSUE = "Very fast generation time may indicate lower quality settings"


def canned_suggestion(metric: str) -> str:
    """Primary canned suggestion for a metric."""
    suggestions = CANNED_SUGGESTIONS.get(metric)
    if suggestions:
        return suggestions[0]
    return f"Improve {metric.replace('_', ' ')}"


def improvement_suggestions(
    metrics: QualityMetricSet,
    feedback: FeedbackRecord,
    suggestion_threshold: float = SUGGESTION_THRESHOLD,
) -> list[str]:
    """Canned improvement suggestions for every metric under the threshold."""
    suggestions: list[str] = []
    for name in metrics.weights:
        if metrics.scores[name] >= suggestion_threshold:
            continue
        suggestions.extend(CANNED_SUGGESTIONS.get(name, ()))
        prefix = _ISSUE_PREFIXES.get(name)
        issues = feedback.for_metric(name).issues
        if prefix and issues and not feedback.is_fallback:
            suggestions.append(f"{prefix}: {issues[0]}")

    if not metrics.passes_threshold:
        suggestions.extend(_OVERALL_SUGGESTIONS[metrics.kind])
    return suggestions


def _context_flag(context: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in context:
            return context[key]
    return None


def identify_technical_issues(
    unit: ContentUnit, metrics: QualityMetricSet, threshold: float = 6.0
) -> list[str]:
    """Image technical issues derived from sub-scores, independent of oracle feedback.

    Visual inconsistency is only reported when the context names an
    established style to be inconsistent with.
    """
    if unit.kind != ContentKind.IMAGE:
        return []

    issues: list[str] = []
    scores = metrics.scores
    if scores.get("image_quality", 10.0) < threshold:
        issues.append(TECHNICAL_ISSUE_MESSAGES["image_quality"])
    if scores.get("professional_standard", 10.0) < threshold:
        issues.append(TECHNICAL_ISSUE_MESSAGES["professional_standard"])
    if scores.get("visual_consistency", 10.0) < threshold and _context_flag(
        unit.context, "established_style", "establishedStyle"
    ):
        issues.append(TECHNICAL_ISSUE_MESSAGES["visual_consistency"])
    if scores.get("narrative_alignment", 10.0) < threshold:
        issues.append(TECHNICAL_ISSUE_MESSAGES["narrative_alignment"])

    generation_ms = _context_flag(unit.context, "generation_time_ms", "generationTime")
    if isinstance(generation_ms, int | float) and 0 < generation_ms < FAST_GENERATION_MS:
        issues.append(FAST_GENERATION_ISSUE)

    if issues:
        logger.debug("Identified %d technical issues for image unit", len(issues))
    return issues
