"""Adaptive prompting: turn oracle feedback into regeneration directives."""

import logging

from quality_gate.memory.quality import FeedbackRecord, QualityMetricSet, metrics_below
from quality_gate.services.quality_validation import canned_suggestion

logger = logging.getLogger(__name__)

DIRECTIVES_HEADER = "QUALITY IMPROVEMENTS NEEDED (Attempt {attempt})"


def build_directives(
    metrics: QualityMetricSet,
    feedback: FeedbackRecord,
    threshold: float,
    max_per_metric: int = 2,
) -> list[str]:
    """Directives for every metric under ``threshold``, in weight order.

    Each metric contributes its top weaknesses, then its issues, up to
    ``max_per_metric`` strings. A metric with no usable feedback (including
    fallback feedback) gets its canned suggestion instead, so a weak metric
    always yields at least one directive.
    """
    directives: list[str] = []
    for name in metrics_below(metrics, threshold):
        entry = feedback.for_metric(name)
        texts: list[str] = []
        if not feedback.is_fallback:
            for text in [*entry.weaknesses, *entry.issues]:
                if text not in texts:
                    texts.append(text)
                if len(texts) >= max_per_metric:
                    break
        if not texts:
            texts = [canned_suggestion(name)]
        directives.extend(f"[{name}] {text}" for text in texts)

    logger.debug("Built %d adaptation directives", len(directives))
    return directives


def adapt_prompt(initial_prompt: str, directives: list[str], attempt_number: int) -> str:
    """Append numbered directives to the original request.

    Directives replace, rather than accumulate on, those of earlier attempts.
    """
    if not directives:
        return initial_prompt
    lines = [f"{i}. {text}" for i, text in enumerate(directives, start=1)]
    header = DIRECTIVES_HEADER.format(attempt=attempt_number)
    return f"{initial_prompt}\n\n{header}:\n" + "\n".join(lines)
