"""Tests for consume_stream."""

import threading
from unittest.mock import patch

import httpcore
import pytest

from quality_gate.utils.streaming import (
    StreamCancelledError,
    StreamTimeoutError,
    consume_stream,
)
from tests.shared.mock_ollama import MockMessage, MockStreamChunk, make_stream


class TestConsumeStream:
    """Tests for consume_stream."""

    def test_joins_content_and_token_counts(self):
        """Chunks are joined and token counts come from the final chunk."""
        result = consume_stream(
            make_stream("Beneath the ziggurat", pieces=4, prompt_eval_count=12, eval_count=7)
        )

        assert result["message"]["content"] == "Beneath the ziggurat"
        assert result["prompt_eval_count"] == 12
        assert result["eval_count"] == 7

    def test_empty_stream(self):
        """An empty stream gives empty content."""
        result = consume_stream(iter([]))
        assert result["message"]["content"] == ""
        assert result["eval_count"] is None

    def test_cancel_event_stops_reading(self):
        """A set cancel event raises before the next chunk is read."""
        cancel_event = threading.Event()
        chunks = [MockStreamChunk(message=MockMessage(content="a"))]

        def stream():
            yield chunks[0]
            cancel_event.set()
            yield MockStreamChunk(message=MockMessage(content="b"))

        with pytest.raises(StreamCancelledError):
            consume_stream(stream(), cancel_event=cancel_event)

    def test_wall_clock_timeout(self):
        """A stream running past the wall-clock limit raises StreamTimeoutError."""
        readings = iter([0.0, 0.0, 5.0])
        with patch("quality_gate.utils.streaming.time.monotonic", lambda: next(readings, 5.0)):
            with pytest.raises(StreamTimeoutError) as exc_info:
                consume_stream(make_stream("abcdef", pieces=3), wall_clock_timeout=1.0)

        assert exc_info.value.partial_content_length == 2
        assert isinstance(exc_info.value, TimeoutError)

    def test_network_error_becomes_connection_error(self):
        """httpcore read errors mid-stream surface as ConnectionError."""

        def stream():
            yield MockStreamChunk(message=MockMessage(content="partial"))
            raise httpcore.ReadError("connection reset")

        with pytest.raises(ConnectionError, match="interrupted"):
            consume_stream(stream())
