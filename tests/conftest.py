"""Pytest fixtures for quality gate tests."""

import logging

import pytest

from quality_gate.services.llm_client import clear_client_cache
from quality_gate.settings import Settings
from quality_gate.utils.circuit_breaker import reset_global_circuit_breaker


@pytest.fixture(autouse=True, scope="function")
def cleanup_production_log_handlers():
    """Remove file handlers pointing to the production log after each test."""
    yield

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        if isinstance(handler, logging.FileHandler) and "quality_gate.log" in getattr(
            handler, "baseFilename", ""
        ):
            handler.close()
            root_logger.removeHandler(handler)


@pytest.fixture(autouse=True)
def clear_settings_cache_per_test():
    """Clear Settings cache before and after each test."""
    Settings.clear_cache()
    yield
    Settings.clear_cache()


@pytest.fixture(autouse=True)
def isolate_settings_file(tmp_path, monkeypatch):
    """Point SETTINGS_FILE at a temp path so tests never touch the real settings.json."""
    import quality_gate.settings._paths as paths_module

    monkeypatch.setattr(paths_module, "SETTINGS_FILE", tmp_path / "settings.json")
    yield


@pytest.fixture(autouse=True)
def reset_shared_state():
    """Reset the process-wide circuit breaker and Ollama client cache."""
    reset_global_circuit_breaker()
    clear_client_cache()
    yield
    reset_global_circuit_breaker()
    clear_client_cache()


@pytest.fixture
def settings() -> Settings:
    """Default settings, not persisted."""
    return Settings()
