"""Tests for the shared Ollama client helpers."""

import threading
from unittest.mock import patch

import httpx
import ollama
import pytest
from pydantic import BaseModel

from quality_gate.services.llm_client import (
    clear_client_cache,
    generate_structured,
    generate_text,
    get_ollama_client,
)
from quality_gate.utils.exceptions import (
    GenerationCancelledError,
    LLMConnectionError,
    LLMError,
    ResponseValidationError,
)
from tests.shared.mock_ollama import (
    TEST_MODEL,
    MockOllamaClient,
    make_json_stream,
    make_stream,
)


class Verdict(BaseModel):
    """Small response model for structured calls."""

    score: float
    notes: str = ""


@pytest.fixture
def no_sleep():
    with patch("quality_gate.services.llm_client.time.sleep") as sleep:
        yield sleep


def _patched(client):
    return patch("quality_gate.services.llm_client.get_ollama_client", return_value=client)


class TestGetOllamaClient:
    """Tests for the client cache."""

    def test_client_cached_per_url_and_timeout(self, settings):
        """The same settings give the same client until the cache is cleared."""
        first = get_ollama_client(settings)
        assert get_ollama_client(settings) is first

        clear_client_cache()
        assert get_ollama_client(settings) is not first


class TestGenerateStructured:
    """Tests for generate_structured."""

    def test_parses_streamed_json(self, settings):
        """Streamed chunks are joined and validated against the model."""
        client = MockOllamaClient([make_json_stream({"score": 7.5, "notes": "ok"})])
        with _patched(client):
            result = generate_structured(settings, TEST_MODEL, "Rate this", Verdict)

        assert result == Verdict(score=7.5, notes="ok")
        call = client.calls[0]
        assert call["model"] == TEST_MODEL
        assert call["stream"] is True
        assert call["format"] == Verdict.model_json_schema()

    def test_system_prompt_and_images(self, settings):
        """The system prompt leads and images ride on the user message."""
        client = MockOllamaClient([make_json_stream({"score": 8})])
        with _patched(client):
            generate_structured(
                settings,
                TEST_MODEL,
                "Rate this map",
                Verdict,
                system_prompt="You are an art director",
                images=[b"\x89PNG"],
            )

        messages = client.calls[0]["messages"]
        assert messages[0] == {"role": "system", "content": "You are an art director"}
        assert messages[1]["images"] == [b"\x89PNG"]

    def test_retries_invalid_json(self, settings):
        """Unparseable output is retried up to max_retries."""
        client = MockOllamaClient([make_stream("not json"), make_json_stream({"score": 6})])
        with _patched(client):
            result = generate_structured(settings, TEST_MODEL, "p", Verdict, max_retries=2)

        assert result.score == 6
        assert len(client.calls) == 2

    def test_invalid_json_after_retries(self, settings):
        """The last parse failure becomes ResponseValidationError with a preview."""
        client = MockOllamaClient([make_stream('{"notes": "no score"}')])
        with _patched(client), pytest.raises(ResponseValidationError) as exc_info:
            generate_structured(settings, TEST_MODEL, "p", Verdict, max_retries=1)

        assert "no score" in exc_info.value.response_preview

    def test_connection_errors_become_llm_connection_error(self, settings, no_sleep):
        """Transport failures on every attempt raise LLMConnectionError."""
        client = MockOllamaClient(
            [httpx.ConnectError("refused"), httpx.ReadTimeout("slow")]
        )
        with _patched(client), pytest.raises(LLMConnectionError):
            generate_structured(settings, TEST_MODEL, "p", Verdict, max_retries=2)

        no_sleep.assert_called_once_with(1)

    def test_response_error_not_retried(self, settings):
        """An Ollama response error is raised at once as LLMError."""
        client = MockOllamaClient([ollama.ResponseError("model not found", 404)])
        with _patched(client), pytest.raises(LLMError, match="model not found"):
            generate_structured(settings, TEST_MODEL, "p", Verdict)

        assert len(client.calls) == 1

    def test_cancelled_stream(self, settings):
        """A set cancel event stops reading and raises GenerationCancelledError."""
        cancel_event = threading.Event()
        cancel_event.set()
        client = MockOllamaClient([make_json_stream({"score": 1})])
        with _patched(client), pytest.raises(GenerationCancelledError):
            generate_structured(settings, TEST_MODEL, "p", Verdict, cancel_event=cancel_event)

    def test_max_retries_validated(self, settings):
        """max_retries below 1 is a programming error."""
        with pytest.raises(ValueError, match="max_retries"):
            generate_structured(settings, TEST_MODEL, "p", Verdict, max_retries=0)


class TestGenerateText:
    """Tests for generate_text."""

    def test_returns_stripped_text(self, settings):
        """Free-form output is returned without surrounding whitespace."""
        client = MockOllamaClient([make_stream("  The gate creaks open.\n", pieces=4)])
        with _patched(client):
            text = generate_text(settings, TEST_MODEL, "Write", system_prompt="Be vivid")

        assert text == "The gate creaks open."
        assert client.calls[0]["format"] is None

    def test_empty_response_raises(self, settings):
        """An empty completion is an error."""
        client = MockOllamaClient([make_stream("   ")])
        with _patched(client), pytest.raises(LLMError, match="empty"):
            generate_text(settings, TEST_MODEL, "Write")

    def test_transient_then_success(self, settings, no_sleep):
        """A transient failure is retried after a backoff."""
        client = MockOllamaClient([ConnectionError("reset"), make_stream("Done.")])
        with _patched(client):
            assert generate_text(settings, TEST_MODEL, "Write", max_retries=2) == "Done."
        no_sleep.assert_called_once()

    def test_transient_every_attempt(self, settings, no_sleep):
        """Only transient failures end in LLMConnectionError."""
        client = MockOllamaClient([TimeoutError("slow"), TimeoutError("slow")])
        with _patched(client), pytest.raises(LLMConnectionError):
            generate_text(settings, TEST_MODEL, "Write", max_retries=2)

    def test_response_error(self, settings):
        """Response errors are not retried."""
        client = MockOllamaClient([ollama.ResponseError("bad request", 400)])
        with _patched(client), pytest.raises(LLMError):
            generate_text(settings, TEST_MODEL, "Write")
