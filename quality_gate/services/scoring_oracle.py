"""Scoring oracle: per-metric scores and structured feedback for content units.

The controller only depends on the ScoringOracle protocol. OllamaScoringOracle
is the concrete adapter over a local Ollama server; prompts and response
schemas for each content kind live in one OracleProfile instead of separate
text and image code paths.
"""

import json
import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from pydantic import BaseModel, Field

from quality_gate.memory.quality import ContentKind, ContentUnit, FeedbackRecord, metric_names
from quality_gate.settings import Settings
from quality_gate.services.llm_client import generate_structured
from quality_gate.utils.exceptions import (
    LLMError,
    OracleFormatError,
    OracleTransientError,
    ResponseValidationError,
    summarize_error,
)

logger = logging.getLogger(__name__)


@runtime_checkable
class ScoringOracle(Protocol):
    """External service that scores content and explains its scores."""

    def score(self, unit: ContentUnit, context: Mapping[str, Any]) -> Mapping[str, Any]:
        """Return raw per-metric scores for a unit.

        Raises:
            OracleTransientError: On timeouts or connection failures.
            OracleFormatError: If the response cannot be parsed.
        """
        ...

    def feedback(
        self, unit: ContentUnit, scores: Mapping[str, float]
    ) -> FeedbackRecord | Mapping[str, Any]:
        """Return strengths, weaknesses and issues per metric.

        Raises:
            OracleTransientError: On timeouts or connection failures.
            OracleFormatError: If the response cannot be parsed.
        """
        ...


# Scores are left unbounded here; the aggregator clamps them
class TextScoreResponse(BaseModel):
    """Oracle scores for narrative content."""

    narrative_coherence: float
    character_depth: float
    plot_complexity: float
    thematic_consistency: float
    analysis_notes: str = ""


class ImageScoreResponse(BaseModel):
    """Oracle scores for an adventure image."""

    image_quality: float
    visual_consistency: float
    professional_standard: float
    narrative_alignment: float
    analysis_notes: str = ""


class MetricFeedbackResponse(BaseModel):
    """Feedback for one metric as returned by the oracle."""

    strengths: list[str] = Field(default_factory=list)
    weaknesses: list[str] = Field(default_factory=list)
    issues: list[str] = Field(default_factory=list)


class TextFeedbackResponse(BaseModel):
    """Oracle feedback for narrative content."""

    narrative_coherence: MetricFeedbackResponse
    character_depth: MetricFeedbackResponse
    plot_complexity: MetricFeedbackResponse
    thematic_consistency: MetricFeedbackResponse


class ImageFeedbackResponse(BaseModel):
    """Oracle feedback for an adventure image."""

    image_quality: MetricFeedbackResponse
    visual_consistency: MetricFeedbackResponse
    professional_standard: MetricFeedbackResponse
    narrative_alignment: MetricFeedbackResponse


@dataclass(frozen=True)
class OracleProfile:
    """Prompts and response schemas for one content kind."""

    kind: ContentKind
    subject: str
    score_system_prompt: str
    feedback_system_prompt: str
    criteria: dict[str, str]
    score_model: type[BaseModel]
    feedback_model: type[BaseModel]
    uses_vision: bool = False


_CALIBRATION = """EVALUATION STANDARDS:
- Professional publication quality (8-10): ready for commercial release
- Good amateur quality (6-7): solid with minor issues
- Basic quality (4-5): functional but needs significant improvement
- Poor quality (0-3): major issues that prevent effective use"""

TEXT_PROFILE = OracleProfile(
    kind=ContentKind.TEXT,
    subject="adventure content",
    score_system_prompt=(
        "You are an expert tabletop RPG content analyst evaluating adventure modules "
        "against professional publication standards, not casual ones.\n\n"
        f"{_CALIBRATION}\n\n"
        "Score each criterion 0-10 with one decimal place. Be precise and objective."
    ),
    feedback_system_prompt=(
        "You are a professional tabletop RPG editor. Give specific, actionable feedback "
        "that helps bring content to publication standard. Avoid vague generalities."
    ),
    criteria={
        "narrative_coherence": "Logical flow, connected plot elements, no plot holes or contradictions",
        "character_depth": "Distinct personalities, believable motivations, meaningful relationships",
        "plot_complexity": "Depth, twists, balanced pacing, meaningful choices and consequences",
        "thematic_consistency": "Themes established and maintained, consistent tone and motifs",
    },
    score_model=TextScoreResponse,
    feedback_model=TextFeedbackResponse,
)

IMAGE_PROFILE = OracleProfile(
    kind=ContentKind.IMAGE,
    subject="adventure illustration",
    score_system_prompt=(
        "You are a professional art director for tabletop RPG publications. You can see "
        "the attached image; base every score on what you observe.\n\n"
        f"{_CALIBRATION}\n\n"
        "Score each criterion 0-10 with one decimal place. Be precise and objective."
    ),
    feedback_system_prompt=(
        "You are a professional art director. Give visually specific, actionable feedback "
        "based on what you observe in the image."
    ),
    criteria={
        "image_quality": "Resolution, clarity, lighting and composition",
        "visual_consistency": "Coherent art style, palette and lighting with the established style",
        "professional_standard": "Detail level and craftsmanship expected in a published product",
        "narrative_alignment": "Depicts the described scene, mood and story elements accurately",
    },
    score_model=ImageScoreResponse,
    feedback_model=ImageFeedbackResponse,
    uses_vision=True,
)

ORACLE_PROFILES: dict[ContentKind, OracleProfile] = {
    ContentKind.TEXT: TEXT_PROFILE,
    ContentKind.IMAGE: IMAGE_PROFILE,
}


def _render_payload(unit: ContentUnit) -> str:
    """Text form of a unit's payload for inclusion in a prompt."""
    payload = unit.payload
    if isinstance(payload, str):
        return payload
    if isinstance(payload, bytes | Path):
        return "(attached image)"
    try:
        return json.dumps(payload, indent=2, default=str)
    except TypeError:
        return str(payload)


def _image_inputs(unit: ContentUnit) -> list[Any] | None:
    """Images Ollama can attach for a unit, or None if the payload is remote."""
    payload = unit.payload
    if isinstance(payload, bytes):
        return [payload]
    if isinstance(payload, Path):
        return [str(payload)]
    if isinstance(payload, str) and not payload.startswith(("http://", "https://")):
        return [payload]
    return None


def _render_context(context: Mapping[str, Any]) -> str:
    if not context:
        return "CONTEXT: none provided"
    lines = ["CONTEXT:"]
    for key, value in context.items():
        if isinstance(value, list | tuple):
            lines.append(f"- {key}: {len(value)} related elements")
        else:
            lines.append(f"- {key}: {value}")
    return "\n".join(lines)


class OllamaScoringOracle:
    """Scoring oracle backed by a local Ollama model.

    Text units are judged by ``settings.oracle_model``; images by
    ``settings.oracle_vision_model`` with the image attached.
    """

    def __init__(
        self,
        settings: Settings,
        profiles: Mapping[ContentKind, OracleProfile] | None = None,
        cancel_event: threading.Event | None = None,
    ):
        """Initialize the oracle.

        Args:
            settings: Application settings (models, temperatures, Ollama URL).
            profiles: Per-kind prompt profiles; defaults to ORACLE_PROFILES.
            cancel_event: Stops in-flight streams once set.
        """
        self.settings = settings
        self.profiles = dict(profiles or ORACLE_PROFILES)
        self.cancel_event = cancel_event
        logger.debug("OllamaScoringOracle initialized for kinds: %s", list(self.profiles))

    def _profile(self, kind: ContentKind) -> OracleProfile:
        try:
            return self.profiles[kind]
        except KeyError as e:
            raise OracleFormatError(f"No oracle profile for content kind {kind}") from e

    def _model_for(self, profile: OracleProfile) -> str:
        if profile.uses_vision:
            return self.settings.oracle_vision_model
        return self.settings.oracle_model

    def _call(
        self,
        operation: str,
        profile: OracleProfile,
        prompt: str,
        system_prompt: str,
        response_model: type[BaseModel],
        temperature: float,
        unit: ContentUnit,
    ) -> BaseModel:
        images = _image_inputs(unit) if profile.uses_vision else None
        try:
            return generate_structured(
                self.settings,
                self._model_for(profile),
                prompt,
                response_model,
                system_prompt=system_prompt,
                temperature=temperature,
                max_retries=1,
                images=images,
                cancel_event=self.cancel_event,
            )
        except ResponseValidationError as e:
            logger.warning("Oracle %s response unparseable: %s", operation, summarize_error(e))
            raise OracleFormatError(
                f"Oracle {operation} response could not be parsed", operation=operation
            ) from e
        except LLMError as e:
            logger.warning("Oracle %s call failed: %s", operation, summarize_error(e))
            raise OracleTransientError(
                f"Oracle {operation} call failed", operation=operation
            ) from e

    def score(self, unit: ContentUnit, context: Mapping[str, Any]) -> Mapping[str, Any]:
        """Score a unit against its kind's criteria."""
        profile = self._profile(unit.kind)
        criteria = "\n".join(
            f"{i}. {name} (0-10): {text}"
            for i, (name, text) in enumerate(profile.criteria.items(), start=1)
        )
        prompt = f"""Analyze the quality of this {profile.subject} for professional TTRPG use.

{_render_context(context)}

ORIGINAL PROMPT:
{unit.prompt}

CONTENT TO ANALYZE:
{_render_payload(unit)}

Evaluate on these criteria:
{criteria}

Return ONLY a flat JSON object with one numeric field per criterion and a short analysis_notes string."""

        result = self._call(
            "score",
            profile,
            prompt,
            profile.score_system_prompt,
            profile.score_model,
            self.settings.oracle_score_temperature,
            unit,
        )
        scores = result.model_dump()
        logger.debug("Oracle scores for %s unit: %s", unit.kind, scores)
        return scores

    def feedback(self, unit: ContentUnit, scores: Mapping[str, float]) -> FeedbackRecord:
        """Ask for per-metric strengths, weaknesses and concrete issues."""
        profile = self._profile(unit.kind)
        score_lines = "\n".join(
            f"- {name}: {scores.get(name, 'n/a')}/10" for name in profile.criteria
        )
        prompt = f"""Provide detailed feedback for this {profile.subject} based on its quality scores.

QUALITY SCORES:
{score_lines}

ORIGINAL PROMPT:
{unit.prompt}

CONTENT:
{_render_payload(unit)}

For each metric give 2-3 specific strengths, 2-3 specific weaknesses and 1-2 concrete issues to fix."""

        result = self._call(
            "feedback",
            profile,
            prompt,
            profile.feedback_system_prompt,
            profile.feedback_model,
            self.settings.oracle_feedback_temperature,
            unit,
        )
        return FeedbackRecord.from_oracle(result.model_dump(), metric_names(unit.kind))
