"""Per-session configuration for the regeneration controller."""

import logging
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from quality_gate.utils.exceptions import ConfigError

from ._models import ContentKind

logger = logging.getLogger(__name__)


class RegenerationConfig(BaseModel):
    """Frozen configuration snapshot taken when a session starts."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_attempts: int = Field(default=3, ge=1, le=10, description="Max generations per session")
    quality_threshold: float = Field(
        default=8.0, ge=0.0, le=10.0, description="Overall score needed to accept text"
    )
    visual_quality_threshold: float = Field(
        default=8.0, ge=0.0, le=10.0, description="Overall score needed to accept an image"
    )
    improvement_threshold: float = Field(
        default=0.5,
        ge=0.0,
        le=10.0,
        description="Gain over the best earlier score below which a warning is logged",
    )
    timeout_ms: int = Field(default=300_000, ge=1, description="Session wall-clock budget")
    enable_adaptive_prompts: bool = Field(
        default=True, description="Append feedback directives to regeneration prompts"
    )
    enable_feedback_loop: bool = Field(
        default=True, description="Request detailed feedback after scoring"
    )
    oracle_call_timeout_s: float = Field(
        default=45.0, gt=0.0, le=600.0, description="Timeout for a single oracle call"
    )
    oracle_transient_retries: int = Field(
        default=1, ge=0, le=5, description="Retries after a transient oracle failure"
    )
    oracle_retry_backoff_s: float = Field(
        default=1.0, ge=0.0, le=60.0, description="Wait before a transient retry"
    )
    max_directives_per_metric: int = Field(
        default=2, ge=1, le=10, description="Feedback strings used per weak metric"
    )
    technical_issue_threshold: float = Field(
        default=6.0, ge=0.0, le=10.0, description="Image sub-score flagged as a technical issue"
    )

    def threshold_for(self, kind: ContentKind) -> float:
        """Acceptance threshold for a content kind."""
        if kind == ContentKind.IMAGE:
            return self.visual_quality_threshold
        return self.quality_threshold

    @property
    def timeout_s(self) -> float:
        """Session budget in seconds."""
        return self.timeout_ms / 1000.0

    def with_overrides(self, **overrides: Any) -> "RegenerationConfig":
        """Return a validated copy with the given fields replaced.

        Raises:
            ConfigError: If a field is unknown or a value is out of range.
        """
        if not overrides:
            return self
        try:
            return type(self).model_validate({**self.model_dump(), **overrides})
        except PydanticValidationError as e:
            raise ConfigError(f"Invalid regeneration override: {e}") from e

    @classmethod
    def from_settings(cls, settings: Any) -> "RegenerationConfig":
        """Build a RegenerationConfig from a Settings-like object.

        Args:
            settings: Object exposing the ``regeneration_*``, ``oracle_*`` and
                ``technical_issue_threshold`` attributes of Settings.

        Returns:
            RegenerationConfig populated from settings.
        """
        config = cls(
            max_attempts=settings.regeneration_max_attempts,
            quality_threshold=settings.regeneration_quality_threshold,
            visual_quality_threshold=settings.regeneration_visual_quality_threshold,
            improvement_threshold=settings.regeneration_improvement_threshold,
            timeout_ms=settings.regeneration_timeout_ms,
            enable_adaptive_prompts=settings.regeneration_adaptive_prompts,
            enable_feedback_loop=settings.regeneration_feedback_loop,
            oracle_call_timeout_s=settings.oracle_call_timeout,
            oracle_transient_retries=settings.oracle_transient_retries,
            oracle_retry_backoff_s=settings.oracle_retry_backoff,
            max_directives_per_metric=settings.regeneration_max_directives_per_metric,
            technical_issue_threshold=settings.technical_issue_threshold,
        )
        logger.debug(
            "RegenerationConfig from settings: max_attempts=%d, thresholds=%.1f/%.1f, timeout=%dms",
            config.max_attempts,
            config.quality_threshold,
            config.visual_quality_threshold,
            config.timeout_ms,
        )
        return config
