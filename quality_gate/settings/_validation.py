"""Validation functions for Settings."""

import logging
from typing import TYPE_CHECKING
from urllib.parse import urlparse

from quality_gate.settings._types import LOG_LEVELS

if TYPE_CHECKING:
    from quality_gate.settings._settings import Settings

logger = logging.getLogger(__name__)


def validate(settings: "Settings") -> None:
    """Validate all settings fields.

    Raises:
        ValueError: If any field contains an invalid value.
    """
    _validate_log_level(settings)
    _validate_url(settings)
    _validate_models(settings)
    _validate_temperatures(settings)
    _validate_regeneration(settings)
    _validate_oracle_calls(settings)
    _validate_circuit_breaker(settings)
    _validate_parallelism(settings)


def _validate_log_level(settings: "Settings") -> None:
    """Validate log_level is a known logging level."""
    if settings.log_level not in LOG_LEVELS:
        raise ValueError(
            f"log_level must be one of {list(LOG_LEVELS.keys())}, got {settings.log_level}"
        )


def _validate_url(settings: "Settings") -> None:
    """Validate URL format for ollama_url."""
    try:
        parsed = urlparse(settings.ollama_url)
        if parsed.scheme not in ("http", "https"):
            raise ValueError(f"Invalid URL scheme in ollama_url: {settings.ollama_url}")
        if not parsed.netloc:
            raise ValueError(f"Invalid URL (missing host) in ollama_url: {settings.ollama_url}")
    except (AttributeError, TypeError) as e:
        raise ValueError(f"Invalid ollama_url: {settings.ollama_url} - {e}") from e

    if not 10 <= settings.ollama_timeout <= 1800:
        raise ValueError(
            f"ollama_timeout must be between 10 and 1800 seconds, got {settings.ollama_timeout}"
        )


def _validate_models(settings: "Settings") -> None:
    """Model names must be non-empty strings."""
    for name in ("oracle_model", "oracle_vision_model", "generator_model"):
        value = getattr(settings, name)
        if not isinstance(value, str) or not value.strip():
            raise ValueError(f"{name} must be a non-empty model name, got {value!r}")


def _validate_temperatures(settings: "Settings") -> None:
    """Validate sampling temperatures."""
    for name in (
        "oracle_score_temperature",
        "oracle_feedback_temperature",
        "generator_temperature",
    ):
        value = getattr(settings, name)
        if not 0.0 <= value <= 2.0:
            raise ValueError(f"{name} must be between 0.0 and 2.0, got {value}")

    if not 1 <= settings.generator_max_retries <= 10:
        raise ValueError(
            f"generator_max_retries must be between 1 and 10, got {settings.generator_max_retries}"
        )


def _validate_regeneration(settings: "Settings") -> None:
    """Validate regeneration defaults."""
    if not 1 <= settings.regeneration_max_attempts <= 10:
        raise ValueError(
            f"regeneration_max_attempts must be between 1 and 10, "
            f"got {settings.regeneration_max_attempts}"
        )
    for name in (
        "regeneration_quality_threshold",
        "regeneration_visual_quality_threshold",
        "technical_issue_threshold",
    ):
        value = getattr(settings, name)
        if not 0.0 <= value <= 10.0:
            raise ValueError(f"{name} must be between 0.0 and 10.0, got {value}")
    if not 0.0 <= settings.regeneration_improvement_threshold <= 10.0:
        raise ValueError(
            f"regeneration_improvement_threshold must be between 0.0 and 10.0, "
            f"got {settings.regeneration_improvement_threshold}"
        )
    if settings.regeneration_timeout_ms < 1:
        raise ValueError(
            f"regeneration_timeout_ms must be positive, got {settings.regeneration_timeout_ms}"
        )
    if not 1 <= settings.regeneration_max_directives_per_metric <= 10:
        raise ValueError(
            f"regeneration_max_directives_per_metric must be between 1 and 10, "
            f"got {settings.regeneration_max_directives_per_metric}"
        )


def _validate_oracle_calls(settings: "Settings") -> None:
    """Validate the oracle call policy."""
    if not 1.0 <= settings.oracle_call_timeout <= 600.0:
        raise ValueError(
            f"oracle_call_timeout must be between 1 and 600 seconds, "
            f"got {settings.oracle_call_timeout}"
        )
    if not 0 <= settings.oracle_transient_retries <= 5:
        raise ValueError(
            f"oracle_transient_retries must be between 0 and 5, "
            f"got {settings.oracle_transient_retries}"
        )
    if not 0.0 <= settings.oracle_retry_backoff <= 60.0:
        raise ValueError(
            f"oracle_retry_backoff must be between 0 and 60 seconds, "
            f"got {settings.oracle_retry_backoff}"
        )


def _validate_circuit_breaker(settings: "Settings") -> None:
    """Validate circuit breaker settings."""
    if not 1 <= settings.circuit_breaker_failure_threshold <= 20:
        raise ValueError(
            f"circuit_breaker_failure_threshold must be between 1 and 20, "
            f"got {settings.circuit_breaker_failure_threshold}"
        )
    if not 1 <= settings.circuit_breaker_success_threshold <= 10:
        raise ValueError(
            f"circuit_breaker_success_threshold must be between 1 and 10, "
            f"got {settings.circuit_breaker_success_threshold}"
        )
    if not 10.0 <= settings.circuit_breaker_timeout <= 600.0:
        raise ValueError(
            f"circuit_breaker_timeout must be between 10 and 600 seconds, "
            f"got {settings.circuit_breaker_timeout}"
        )


def _validate_parallelism(settings: "Settings") -> None:
    """Validate the parallel worker cap (0 means auto)."""
    if not 0 <= settings.parallel_max_workers <= 32:
        raise ValueError(
            f"parallel_max_workers must be between 0 and 32, got {settings.parallel_max_workers}"
        )
