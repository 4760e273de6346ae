"""Shared Ollama mock utilities for quality gate tests.

The adapters call ``ollama.Client.chat(..., stream=True)`` and read the
stream through consume_stream(), so fakes only need to yield chunks with a
``message.content`` attribute and a ``done`` flag.

Usage:
    from tests.shared.mock_ollama import MockOllamaClient, make_stream

    client = MockOllamaClient([make_stream('{"narrative_coherence": 8}')])
    with patch("quality_gate.services.llm_client.get_ollama_client", return_value=client):
        ...
"""

import json
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any

TEST_MODEL = "test-model:8b"


@dataclass
class MockMessage:
    """Mimics an Ollama ChatResponse message."""

    content: str = ""


@dataclass
class MockStreamChunk:
    """Mimics one chunk of a streaming Ollama chat response."""

    message: MockMessage = field(default_factory=MockMessage)
    done: bool = False
    prompt_eval_count: int | None = None
    eval_count: int | None = None


def make_stream(
    content: str, *, pieces: int = 1, prompt_eval_count: int = 100, eval_count: int = 50
) -> Iterator[MockStreamChunk]:
    """Split ``content`` into chunks, the last one carrying token counts."""
    if pieces < 1:
        pieces = 1
    size = max(1, len(content) // pieces) if content else 1
    parts = [content[i : i + size] for i in range(0, len(content), size)] or [""]
    chunks = [MockStreamChunk(message=MockMessage(content=p)) for p in parts]
    chunks.append(
        MockStreamChunk(
            message=MockMessage(content=""),
            done=True,
            prompt_eval_count=prompt_eval_count,
            eval_count=eval_count,
        )
    )
    return iter(chunks)


def make_json_stream(payload: dict[str, Any]) -> Iterator[MockStreamChunk]:
    """Stream whose joined content is ``payload`` as JSON."""
    return make_stream(json.dumps(payload), pieces=3)


class MockOllamaClient:
    """Fake ollama.Client whose chat() replays scripted results.

    Each scripted item is either a stream iterator to return or an exception
    to raise. Calls are recorded in ``calls``.
    """

    def __init__(self, script: list[Any] | None = None):
        self.script = list(script or [])
        self.calls: list[dict[str, Any]] = []

    def chat(self, **kwargs: Any) -> Any:
        """Return or raise the next scripted item."""
        self.calls.append(kwargs)
        if not self.script:
            raise AssertionError("MockOllamaClient.chat called more times than scripted")
        item = self.script.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


TEXT_SCORES = {
    "narrative_coherence": 9.0,
    "character_depth": 8.0,
    "plot_complexity": 8.0,
    "thematic_consistency": 8.0,
    "analysis_notes": "Solid module",
}

IMAGE_SCORES = {
    "image_quality": 8.0,
    "visual_consistency": 8.0,
    "professional_standard": 8.0,
    "narrative_alignment": 9.0,
    "analysis_notes": "Clean illustration",
}


def feedback_payload(names: list[str]) -> dict[str, Any]:
    """Feedback response with one strength, weakness and issue per metric."""
    return {
        name: {
            "strengths": [f"{name} strength"],
            "weaknesses": [f"{name} weakness"],
            "issues": [f"{name} issue"],
        }
        for name in names
    }
