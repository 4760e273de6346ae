"""Main Settings dataclass for the quality gate.

Settings are stored in settings.json next to the package and merged with the
dataclass defaults on every load.
"""

import copy
import json
import logging
import os
import shutil
import tempfile
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any, ClassVar

from quality_gate.settings import _validation as _validation_mod
from quality_gate.settings import _paths

logger = logging.getLogger(__name__)


def _merge_with_defaults(data: dict[str, Any], settings_cls: type["Settings"]) -> bool:
    """Merge loaded JSON data with dataclass defaults.

    Adds missing keys with their default values and removes keys that no
    longer exist on the dataclass. Modifies *data* in place.

    Returns:
        True if any changes were made, False otherwise.
    """
    default_dict = asdict(settings_cls())
    known_fields = {f.name for f in fields(settings_cls)}
    changed = False

    for key in list(data):
        if key not in known_fields:
            logger.info("Removing obsolete setting: %s", key)
            del data[key]
            changed = True

    for key in known_fields:
        if key not in data:
            logger.info("Adding new setting with default: %s", key)
            data[key] = default_dict[key]
            changed = True

    logger.debug("Merge summary: %d known fields, changed=%s", len(known_fields), changed)
    return changed


def _atomic_write_json(path: Path | str, data: dict[str, Any]) -> None:
    """Write JSON to *path* atomically via a temp file + rename."""
    path = Path(path)
    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), suffix=".tmp")
    try:
        with os.fdopen(fd, "w") as f:
            json.dump(data, f, indent=2)
        os.replace(tmp_path, str(path))
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError as cleanup_err:
            logger.warning("Failed to remove temp settings file %s: %s", tmp_path, cleanup_err)
        raise


def _backup_corrupt_file(path: Path) -> None:
    """Copy an unreadable settings file aside before it gets overwritten."""
    backup_path = path.with_suffix(".json.corrupt")
    try:
        shutil.copy(path, backup_path)
        logger.info("Backed up corrupted settings to %s", backup_path)
    except OSError as copy_err:
        logger.warning("Failed to backup corrupted settings: %s", copy_err)


@dataclass
class Settings:
    """Application settings."""

    # Ollama connection
    ollama_url: str = "http://localhost:11434"
    ollama_timeout: int = 120  # Seconds, applied to the HTTP client
    log_level: str = "INFO"

    # Models
    oracle_model: str = "qwen3:8b"
    oracle_vision_model: str = "llava:13b"  # Must accept images
    generator_model: str = "qwen3:8b"

    # Temperatures
    oracle_score_temperature: float = 0.3
    oracle_feedback_temperature: float = 0.4
    generator_temperature: float = 0.8
    generator_max_retries: int = 2

    # Regeneration defaults (snapshotted per session into RegenerationConfig)
    regeneration_max_attempts: int = 3
    regeneration_quality_threshold: float = 8.0
    regeneration_visual_quality_threshold: float = 8.0
    regeneration_improvement_threshold: float = 0.5
    regeneration_timeout_ms: int = 300_000
    regeneration_adaptive_prompts: bool = True
    regeneration_feedback_loop: bool = True
    regeneration_max_directives_per_metric: int = 2
    technical_issue_threshold: float = 6.0

    # Oracle call policy
    oracle_call_timeout: float = 45.0
    oracle_transient_retries: int = 1
    oracle_retry_backoff: float = 1.0

    # Circuit breaker shared by all sessions
    circuit_breaker_enabled: bool = True
    circuit_breaker_failure_threshold: int = 5
    circuit_breaker_success_threshold: int = 2
    circuit_breaker_timeout: float = 60.0

    # 0 = one worker per session in the batch
    parallel_max_workers: int = 0

    def save(self) -> None:
        """Validate and save settings to the JSON file."""
        self.validate()
        _atomic_write_json(_paths.SETTINGS_FILE, asdict(self))
        logger.info("Settings saved to %s", _paths.SETTINGS_FILE)

    def validate(self) -> None:
        """Validate all settings fields. Delegates to the _validation module.

        Raises:
            ValueError: If any field contains an invalid value.
        """
        _validation_mod.validate(self)

    _cached_instance: ClassVar["Settings | None"] = None

    @classmethod
    def load(cls, use_cache: bool = True) -> "Settings":
        """Load settings from the JSON file, or create defaults.

        New fields get their default values and removed fields are dropped;
        customized values are preserved.

        Args:
            use_cache: If True, return the cached instance if available.

        Returns:
            Settings instance.

        Raises:
            ValueError: If a stored value fails validation.
        """
        if use_cache and cls._cached_instance is not None:
            return cls._cached_instance

        settings_file = _paths.SETTINGS_FILE
        data: dict[str, Any] = {}
        loaded_from_file = False

        if settings_file.exists():
            try:
                with open(settings_file) as f:
                    raw = json.load(f)
                if isinstance(raw, dict):
                    data = raw
                    loaded_from_file = bool(data)
                else:
                    logger.error(
                        "Corrupted settings file (expected JSON object, got %s)",
                        type(raw).__name__,
                    )
                    _backup_corrupt_file(settings_file)
            except json.JSONDecodeError as e:
                logger.error("Corrupted settings file (invalid JSON): %s", e)
                _backup_corrupt_file(settings_file)
            except OSError as e:
                logger.error("Cannot read settings file: %s", e)

        original_data = copy.deepcopy(data)
        changed = _merge_with_defaults(data, cls)

        try:
            settings = cls(**data)
            settings.validate()
        except TypeError as e:
            raise ValueError(f"A setting has an invalid type: {e}") from e

        if changed and original_data:
            logger.debug("Settings merged with defaults: %d keys on disk", len(original_data))

        if changed or not loaded_from_file:
            try:
                _atomic_write_json(settings_file, asdict(settings))
            except OSError as write_err:
                logger.warning(
                    "Could not persist settings to disk: %s - changes will not survive restart",
                    write_err,
                )

        cls._cached_instance = settings
        return settings

    @classmethod
    def clear_cache(cls) -> None:
        """Clear the cached settings instance."""
        cls._cached_instance = None
