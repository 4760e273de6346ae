"""Tests for the local quality rules and adaptive prompting."""

import pytest

from quality_gate.memory.quality import (
    ContentKind,
    ContentUnit,
    FeedbackRecord,
    MetricFeedback,
    build_metric_set,
    metric_names,
)
from quality_gate.services.quality_validation import (
    CANNED_SUGGESTIONS,
    canned_suggestion,
    identify_technical_issues,
    improvement_suggestions,
)
from quality_gate.services.quality_validation._rules import FAST_GENERATION_ISSUE
from quality_gate.services.regeneration_service import (
    DIRECTIVES_HEADER,
    adapt_prompt,
    build_directives,
)

TEXT_NAMES = metric_names(ContentKind.TEXT)


def _text_metrics(**scores):
    base = dict.fromkeys(TEXT_NAMES, 9.0)
    base.update(scores)
    metrics, _ = build_metric_set(base, ContentKind.TEXT, 8.0)
    return metrics


def _image(scores, **context):
    metrics, _ = build_metric_set(scores, ContentKind.IMAGE, 8.0)
    unit = ContentUnit(kind=ContentKind.IMAGE, payload="img.png", prompt="p", context=context)
    return unit, metrics


class TestImprovementSuggestions:
    """Tests for improvement_suggestions."""

    def test_no_suggestions_when_all_metrics_strong(self):
        """Metrics at 8.0 or above get no suggestions."""
        metrics = _text_metrics()
        assert improvement_suggestions(metrics, FeedbackRecord.empty(TEXT_NAMES)) == []

    def test_weak_metric_gets_canned_suggestions(self):
        """Each weak metric contributes its canned suggestions."""
        metrics = _text_metrics(character_depth=7.0)
        suggestions = improvement_suggestions(metrics, FeedbackRecord.empty(TEXT_NAMES))
        assert suggestions == list(CANNED_SUGGESTIONS["character_depth"])

    def test_fallback_issues_are_not_echoed(self):
        """Generic fallback issues never become 'Address ...' suggestions."""
        metrics = _text_metrics(narrative_coherence=5.0)
        suggestions = improvement_suggestions(metrics, FeedbackRecord.fallback(TEXT_NAMES))
        assert not any(s.startswith("Address") for s in suggestions)

    def test_canned_suggestion_for_unknown_metric(self):
        """Unknown metrics get a readable generic suggestion."""
        assert canned_suggestion("pacing_rhythm") == "Improve pacing rhythm"


class TestTechnicalIssues:
    """Tests for identify_technical_issues."""

    def test_text_units_have_none(self):
        """Technical issues are an image-only rule."""
        unit = ContentUnit(kind=ContentKind.TEXT, payload="x", prompt="p")
        assert identify_technical_issues(unit, _text_metrics(narrative_coherence=1.0)) == []

    def test_visual_consistency_needs_established_style(self):
        """Inconsistency is only reported against an established style."""
        scores = {
            "image_quality": 9,
            "visual_consistency": 3,
            "professional_standard": 9,
            "narrative_alignment": 9,
        }
        assert identify_technical_issues(*_image(scores)) == []
        issues = identify_technical_issues(*_image(scores, establishedStyle="watercolour"))
        assert len(issues) == 1

    def test_fast_generation_flagged(self):
        """Generation under five seconds is flagged."""
        scores = dict.fromkeys(metric_names(ContentKind.IMAGE), 9)
        issues = identify_technical_issues(*_image(scores, generation_time_ms=1200))
        assert issues == [FAST_GENERATION_ISSUE]

    def test_threshold_is_configurable(self):
        """The sub-score threshold comes from the caller."""
        scores = {**dict.fromkeys(metric_names(ContentKind.IMAGE), 9), "image_quality": 6.5}
        unit, metrics = _image(scores)
        assert identify_technical_issues(unit, metrics, threshold=6.0) == []
        assert len(identify_technical_issues(unit, metrics, threshold=7.0)) == 1


class TestBuildDirectives:
    """Tests for build_directives."""

    def test_directives_from_weaknesses_then_issues(self):
        """Weaknesses come first, capped per metric."""
        metrics = _text_metrics(character_depth=6.0)
        feedback = FeedbackRecord(
            metrics={
                "character_depth": MetricFeedback(
                    weaknesses=["Villain lacks motive", "Flat dialogue", "Third"],
                    issues=["Mayor vanishes in act 2"],
                )
            }
        )
        directives = build_directives(metrics, feedback, 8.0, max_per_metric=2)

        assert directives == [
            "[character_depth] Villain lacks motive",
            "[character_depth] Flat dialogue",
        ]

    def test_issues_fill_remaining_slots(self):
        """Issues are used when there are fewer weaknesses than slots."""
        metrics = _text_metrics(plot_complexity=5.0)
        feedback = FeedbackRecord(
            metrics={"plot_complexity": MetricFeedback(weaknesses=["Linear"], issues=["No twist"])}
        )
        directives = build_directives(metrics, feedback, 8.0)
        assert directives == ["[plot_complexity] Linear", "[plot_complexity] No twist"]

    def test_canned_suggestion_when_feedback_empty(self):
        """A weak metric with no feedback still yields one directive."""
        metrics = _text_metrics(thematic_consistency=4.0)
        directives = build_directives(metrics, FeedbackRecord.empty(TEXT_NAMES), 8.0)
        assert directives == [f"[thematic_consistency] {canned_suggestion('thematic_consistency')}"]

    def test_fallback_feedback_uses_canned_suggestion(self):
        """Generic fallback text is never used as a directive."""
        metrics = _text_metrics(narrative_coherence=4.0)
        directives = build_directives(metrics, FeedbackRecord.fallback(TEXT_NAMES), 8.0)
        assert "Manual review recommended" not in " ".join(directives)
        assert len(directives) == 1

    def test_no_directives_when_nothing_is_weak(self):
        """Strong content needs no directives."""
        assert build_directives(_text_metrics(), FeedbackRecord.empty(TEXT_NAMES), 8.0) == []


class TestAdaptPrompt:
    """Tests for adapt_prompt."""

    def test_appends_numbered_directives(self):
        """Directives are appended under the attempt header."""
        prompt = adapt_prompt("Write a heist.", ["[plot_complexity] Add a twist", "[x] y"], 2)

        header = DIRECTIVES_HEADER.format(attempt=2)
        assert prompt.startswith("Write a heist.\n\n")
        assert f"{header}:\n1. [plot_complexity] Add a twist\n2. [x] y" in prompt

    def test_no_directives_returns_original(self):
        """Without directives the original request is reused."""
        assert adapt_prompt("Write a heist.", [], 3) == "Write a heist."

    @pytest.mark.parametrize("attempt", [2, 3])
    def test_directives_replace_previous(self, attempt):
        """Each adapted prompt is built from the original, not the last prompt."""
        prompt = adapt_prompt("Base", ["[a] b"], attempt)
        assert prompt.count("QUALITY IMPROVEMENTS NEEDED") == 1
