"""Tests for the batch quality report."""

from datetime import UTC, datetime

from quality_gate.memory.quality import (
    Attempt,
    ContentKind,
    Decision,
    QualityGrade,
    SessionResult,
    SessionStatus,
    build_metric_set,
    metric_names,
)
from quality_gate.services.regeneration_service import build_quality_report
from quality_gate.services.regeneration_service._report import (
    RECOMMEND_IMAGE,
    RECOMMEND_MAINTAIN,
    RECOMMEND_TEXT,
    RECOMMEND_THRESHOLDS,
    next_steps,
    recommendations,
    summarize,
)

NOW = datetime(2026, 1, 1, tzinfo=UTC)


def _result(
    score: float | None,
    *,
    kind: ContentKind = ContentKind.TEXT,
    accepted: bool | None = None,
    attempts: int = 1,
) -> SessionResult:
    metrics = None
    if score is not None:
        metrics, _ = build_metric_set(dict.fromkeys(metric_names(kind), score), kind, 8.0)
    if accepted is None:
        accepted = metrics is not None and metrics.passes_threshold
    history = tuple(
        Attempt(
            attempt_number=n,
            metrics=metrics,
            decision=Decision.ACCEPT if accepted and n == attempts else Decision.REGENERATE,
            started_at=NOW,
            ended_at=NOW,
            prompt="p",
        )
        for n in range(1, attempts + 1)
    )
    return SessionResult(
        content_id=f"{kind}-{score}",
        kind=kind,
        final_metrics=metrics,
        accepted=accepted,
        attempts=history,
        termination_reason=(
            SessionStatus.ACCEPTED if accepted else SessionStatus.EXHAUSTED_ATTEMPTS
        ),
        quality_bar_not_met=not accepted,
    )


class TestSummarize:
    """Tests for summarize."""

    def test_counts_and_average(self):
        """Passes, failures and the average final score are counted."""
        summary = summarize([_result(9.0), _result(8.0), _result(6.0)])

        assert summary.total_items == 3
        assert summary.items_passed == 2
        assert summary.items_failed == 1
        assert summary.average_quality_score == 7.7
        assert summary.overall_grade == QualityGrade.ACCEPTABLE

    def test_regenerations_counted_per_session(self):
        """Sessions with more than one attempt count as regenerations."""
        summary = summarize(
            [_result(9.0, attempts=3), _result(6.0, attempts=2), _result(9.0)]
        )
        assert summary.regenerations_triggered == 2
        assert summary.regenerations_successful == 1

    def test_unscored_session_counts_as_zero(self):
        """A session that was never scored contributes 0 to the average."""
        summary = summarize([_result(None, accepted=False), _result(8.0)])
        assert summary.average_quality_score == 4.0
        assert summary.overall_grade == QualityGrade.POOR

    def test_empty_batch(self):
        """An empty batch has zero counts."""
        summary = summarize([])
        assert summary.total_items == 0
        assert summary.average_quality_score == 0.0


class TestRecommendations:
    """Tests for recommendations."""

    def test_all_good_maintains(self):
        """A clean batch gets the maintain message only."""
        assert recommendations([_result(9.0), _result(9.0, kind=ContentKind.IMAGE)]) == [
            RECOMMEND_MAINTAIN
        ]

    def test_low_text_share(self):
        """More than 30% low-scoring text triggers the text advice."""
        results = [_result(7.0, accepted=True), _result(9.0), _result(9.0)]
        assert recommendations(results) == [RECOMMEND_TEXT]

    def test_low_images_and_failures(self):
        """Low images and a high failure rate both add advice."""
        results = [
            _result(6.0, kind=ContentKind.IMAGE),
            _result(6.5, kind=ContentKind.IMAGE),
            _result(9.0),
        ]
        assert recommendations(results) == [RECOMMEND_IMAGE, RECOMMEND_THRESHOLDS]

    def test_empty(self):
        """No results, no advice."""
        assert recommendations([]) == []


class TestNextSteps:
    """Tests for next_steps."""

    def test_poor_batch(self):
        """A poor batch asks for immediate action and threshold review."""
        steps = next_steps(summarize([_result(4.0, attempts=3), _result(4.0, attempts=3)]))

        assert steps[0].startswith("Immediate action required")
        assert any("regeneration failures" in s for s in steps)
        assert any("lowering quality thresholds" in s for s in steps)

    def test_excellent_batch(self):
        """An excellent batch suggests raising thresholds."""
        steps = next_steps(summarize([_result(9.5), _result(9.0)]))
        assert steps == [
            "Quality standards exceeded - consider raising thresholds for continuous improvement"
        ]

    def test_empty_summary(self):
        """No items, no steps."""
        assert next_steps(summarize([])) == []


class TestBuildQualityReport:
    """Tests for build_quality_report."""

    def test_report_keeps_results_in_order(self):
        """Results are kept as given and the summary is serializable."""
        results = [_result(9.0), _result(8.5, kind=ContentKind.IMAGE)]
        report = build_quality_report(results)

        assert report.results == tuple(results)
        data = report.to_summary()
        assert data["summary"]["total_items"] == 2
        assert data["summary"]["overall_grade"] == "Good"
        assert [r["kind"] for r in data["results"]] == ["text", "image"]
        assert data["recommendations"] == [RECOMMEND_MAINTAIN]
