"""Tests for RegenerationConfig, RegenerationSession and SessionResult."""

from datetime import UTC, datetime, timedelta

import pytest
from pydantic import ValidationError as PydanticValidationError

from quality_gate.memory.quality import (
    Attempt,
    ContentKind,
    ContentUnit,
    Decision,
    RegenerationConfig,
    RegenerationSession,
    SessionResult,
    SessionStatus,
    build_metric_set,
)
from quality_gate.settings import Settings
from quality_gate.utils.exceptions import ConfigError, SessionStateError

T0 = datetime(2026, 1, 1, tzinfo=UTC)


def _attempt(number: int, overall: float | None, decision=Decision.REGENERATE) -> Attempt:
    metrics = None
    unit = None
    if overall is not None:
        metrics, _ = build_metric_set(
            {
                "narrative_coherence": overall,
                "character_depth": overall,
                "plot_complexity": overall,
                "thematic_consistency": overall,
            },
            ContentKind.TEXT,
            8.0,
        )
        unit = ContentUnit(kind=ContentKind.TEXT, payload=f"draft {number}", prompt="p")
    return Attempt(
        attempt_number=number,
        unit=unit,
        metrics=metrics,
        decision=decision,
        started_at=T0 + timedelta(seconds=number),
        ended_at=T0 + timedelta(seconds=number, milliseconds=250),
        prompt="p",
    )


class TestRegenerationConfig:
    """Tests for RegenerationConfig."""

    def test_defaults(self):
        """Defaults match the documented configuration."""
        config = RegenerationConfig()
        assert config.max_attempts == 3
        assert config.quality_threshold == 8.0
        assert config.visual_quality_threshold == 8.0
        assert config.improvement_threshold == 0.5
        assert config.timeout_ms == 300_000
        assert config.enable_adaptive_prompts
        assert config.enable_feedback_loop
        assert config.timeout_s == 300.0

    def test_threshold_for_kind(self):
        """Text and image use their own thresholds."""
        config = RegenerationConfig(quality_threshold=7.0, visual_quality_threshold=6.0)
        assert config.threshold_for(ContentKind.TEXT) == 7.0
        assert config.threshold_for(ContentKind.IMAGE) == 6.0

    def test_with_overrides_returns_new_config(self):
        """Overrides produce a new validated copy and leave the original alone."""
        config = RegenerationConfig()
        changed = config.with_overrides(max_attempts=1, timeout_ms=10)

        assert changed.max_attempts == 1
        assert changed.timeout_ms == 10
        assert config.max_attempts == 3

    @pytest.mark.parametrize(
        "overrides", [{"max_attempts": 0}, {"quality_threshold": 11}, {"bogus": 1}]
    )
    def test_invalid_overrides_raise_config_error(self, overrides):
        """Out-of-range values and unknown fields raise ConfigError."""
        with pytest.raises(ConfigError):
            RegenerationConfig().with_overrides(**overrides)

    def test_from_settings(self):
        """Settings fields map onto the config snapshot."""
        settings = Settings(
            regeneration_max_attempts=5,
            regeneration_visual_quality_threshold=7.5,
            regeneration_adaptive_prompts=False,
            oracle_call_timeout=30.0,
        )
        config = RegenerationConfig.from_settings(settings)

        assert config.max_attempts == 5
        assert config.visual_quality_threshold == 7.5
        assert not config.enable_adaptive_prompts
        assert config.oracle_call_timeout_s == 30.0

    def test_config_is_frozen(self):
        """The snapshot cannot be mutated."""
        config = RegenerationConfig()
        with pytest.raises(PydanticValidationError):
            config.max_attempts = 9  # type: ignore[misc]


class TestRegenerationSession:
    """Tests for RegenerationSession transitions and bookkeeping."""

    @pytest.fixture
    def session(self):
        return RegenerationSession(
            content_id="text-1", kind=ContentKind.TEXT, config=RegenerationConfig()
        )

    def test_happy_path_transitions(self, session):
        """Pending -> Scoring -> Deciding -> Accepted closes the session."""
        session.transition(SessionStatus.SCORING)
        session.transition(SessionStatus.DECIDING)
        session.transition(SessionStatus.ACCEPTED)

        assert session.status == SessionStatus.ACCEPTED
        assert session.closed

    def test_invalid_transition_raises(self, session):
        """Pending cannot jump straight to Accepted."""
        with pytest.raises(SessionStateError):
            session.transition(SessionStatus.ACCEPTED)

    def test_closed_session_rejects_transitions(self, session):
        """A terminal status can only be reached once."""
        session.transition(SessionStatus.CANCELLED)
        with pytest.raises(SessionStateError):
            session.transition(SessionStatus.SCORING)

    @pytest.mark.parametrize(
        "status",
        [SessionStatus.TIMED_OUT, SessionStatus.ORACLE_FAILURE, SessionStatus.CANCELLED],
    )
    def test_abort_statuses_reachable_from_scoring(self, session, status):
        """Timeouts, oracle failure and cancellation end a live session."""
        session.transition(SessionStatus.SCORING)
        session.transition(status)
        assert session.closed

    def test_record_enforces_sequence(self, session):
        """Attempts must be recorded 1, 2, 3 ..."""
        session.record(_attempt(1, 6.0))
        with pytest.raises(SessionStateError):
            session.record(_attempt(3, 7.0))

    def test_record_rejected_when_closed(self, session):
        """No attempts can be added after the session closes."""
        session.transition(SessionStatus.CANCELLED)
        with pytest.raises(SessionStateError):
            session.record(_attempt(1, 6.0))

    def test_best_attempt_highest_score(self, session):
        """The best attempt has the highest overall score."""
        for number, score in enumerate([6.0, 7.5, 7.0], start=1):
            session.record(_attempt(number, score))

        assert session.best_attempt().attempt_number == 2
        assert session.best_score() == 7.5

    def test_best_attempt_tie_prefers_earliest(self, session):
        """Ties are broken by the lowest attempt number."""
        session.record(_attempt(1, 5.0))
        session.record(_attempt(2, 5.0))
        assert session.best_attempt().attempt_number == 1

    def test_unscored_attempts_are_skipped(self, session):
        """Attempts without metrics are never the best attempt."""
        session.record(_attempt(1, None))
        assert session.best_attempt() is None
        session.record(_attempt(2, 4.0))
        assert session.best_attempt().attempt_number == 2
        assert session.next_attempt_number == 3


class TestSessionResult:
    """Tests for SessionResult derived values."""

    def test_improvement_achieved_percentage(self):
        """Improvement is the percentage gain over the first scored attempt."""
        attempts = (_attempt(1, 6.0), _attempt(2, 7.5), _attempt(3, 8.4, Decision.ACCEPT))
        result = SessionResult(
            content_id="c",
            kind=ContentKind.TEXT,
            final_unit=attempts[2].unit,
            final_metrics=attempts[2].metrics,
            accepted=True,
            attempts=attempts,
            termination_reason=SessionStatus.ACCEPTED,
            best_attempt_number=3,
        )

        assert result.improvement_achieved == 40.0
        assert result.regenerations_triggered == 2

    def test_summary_is_json_friendly(self):
        """to_summary uses plain values and omits payloads."""
        attempts = (_attempt(1, 5.0, Decision.ABORT),)
        result = SessionResult(
            content_id="c",
            kind=ContentKind.TEXT,
            final_unit=attempts[0].unit,
            final_metrics=attempts[0].metrics,
            accepted=False,
            attempts=attempts,
            termination_reason=SessionStatus.EXHAUSTED_ATTEMPTS,
            quality_bar_not_met=True,
            best_attempt_number=1,
        )
        summary = result.to_summary()

        assert summary["termination_reason"] == "exhausted_attempts"
        assert summary["final_score"] == 5.0
        assert summary["attempts"][0]["decision"] == "abort"
        assert summary["attempts"][0]["duration_ms"] == 250.0
        assert "payload" not in str(summary)

    def test_no_scored_attempts_means_no_improvement(self):
        """Without any scored attempt the improvement is 0."""
        result = SessionResult(
            content_id="c",
            kind=ContentKind.IMAGE,
            accepted=False,
            attempts=(_attempt(1, None, Decision.ABORT),),
            termination_reason=SessionStatus.ORACLE_FAILURE,
        )
        assert result.improvement_achieved == 0.0
