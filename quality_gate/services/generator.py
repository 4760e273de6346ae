"""Content generator collaborators.

The controller asks a ContentGenerator for each attempt. Narrative text can
be produced by a local Ollama model; image backends are external and plug in
through the same protocol.
"""

import logging
import threading
from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

from quality_gate.memory.quality import ContentKind, ContentUnit
from quality_gate.settings import Settings
from quality_gate.services.llm_client import generate_text
from quality_gate.utils.exceptions import GeneratorFailure, LLMError, summarize_error

logger = logging.getLogger(__name__)


@runtime_checkable
class ContentGenerator(Protocol):
    """Produces one content unit per call."""

    def generate(
        self, kind: ContentKind, prompt: str, context: Mapping[str, Any]
    ) -> ContentUnit:
        """Generate a unit for ``prompt``.

        Raises:
            GeneratorFailure: If no unit could be produced.
        """
        ...


_SYSTEM_PROMPT = """You are a professional tabletop RPG adventure writer.
Write publication-quality adventure content: coherent narrative, memorable characters
with clear motivations, a plot with meaningful choices, and consistent themes.
Follow every numbered improvement directive in the request."""


class OllamaTextGenerator:
    """Narrative generator backed by ``settings.generator_model``."""

    def __init__(self, settings: Settings, cancel_event: threading.Event | None = None):
        self.settings = settings
        self.cancel_event = cancel_event

    def generate(
        self, kind: ContentKind, prompt: str, context: Mapping[str, Any]
    ) -> ContentUnit:
        """Generate narrative text for ``prompt``.

        Raises:
            GeneratorFailure: For image requests or when the model call fails.
        """
        if kind != ContentKind.TEXT:
            raise GeneratorFailure(f"OllamaTextGenerator cannot produce {kind} content")

        full_prompt = prompt
        if context:
            context_lines = "\n".join(f"- {k}: {v}" for k, v in context.items())
            full_prompt = f"{prompt}\n\nADVENTURE CONTEXT:\n{context_lines}"

        try:
            text = generate_text(
                self.settings,
                self.settings.generator_model,
                full_prompt,
                system_prompt=_SYSTEM_PROMPT,
                temperature=self.settings.generator_temperature,
                max_retries=self.settings.generator_max_retries,
                cancel_event=self.cancel_event,
            )
        except LLMError as e:
            logger.warning("Text generation failed: %s", summarize_error(e))
            raise GeneratorFailure("Text generation failed") from e

        logger.debug("Generated %d chars of narrative text", len(text))
        return ContentUnit(kind=kind, payload=text, prompt=prompt, context=dict(context))
