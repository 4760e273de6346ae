"""Regeneration service: quality-gated generation of adventure content.

This package is organized into:
- _session_loop: the per-unit generate, score, decide state machine
- _oracle_calls: circuit breaker, retry, timeout and cancellation policy
- _prompting: adaptation directives built from oracle feedback
- _parallel: concurrent narrative and image sessions
- _report: batch quality report
"""

import logging
import threading
import time
import uuid
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from pydantic import BaseModel, ConfigDict

from quality_gate.memory.quality import (
    ContentKind,
    RegenerationConfig,
    SessionResult,
)
from quality_gate.services.generator import ContentGenerator, OllamaTextGenerator
from quality_gate.services.quality_validation._feedback import Diagnostics
from quality_gate.services.scoring_oracle import OllamaScoringOracle, ScoringOracle
from quality_gate.settings import Settings
from quality_gate.utils.circuit_breaker import CircuitBreaker, get_circuit_breaker

from ._oracle_calls import OracleCallPolicy, SessionClock
from ._parallel import SessionRequest, default_worker_count, run_parallel_sessions
from ._prompting import DIRECTIVES_HEADER, adapt_prompt, build_directives
from ._report import QualityReport, QualitySummary, build_quality_report
from ._session_loop import (
    ERROR_CANCELLED,
    ERROR_CIRCUIT_OPEN,
    ERROR_GENERATOR_FAILURE,
    ERROR_ORACLE_UNAVAILABLE,
    ERROR_TIMED_OUT,
    regeneration_loop,
    session_worker_count,
)

logger = logging.getLogger(__name__)


class AdventureResult(BaseModel):
    """Sessions for one adventure and the report over them."""

    model_config = ConfigDict(frozen=True)

    narrative: SessionResult
    images: tuple[SessionResult, ...] = ()
    report: QualityReport


class RegenerationService:
    """Runs regeneration sessions against a generator and a scoring oracle.

    The oracle and generator default to the Ollama-backed adapters; the
    circuit breaker defaults to the process-wide oracle breaker so every
    service instance sees the same oracle health.
    """

    def __init__(
        self,
        settings: Settings | None = None,
        generator: ContentGenerator | None = None,
        oracle: ScoringOracle | None = None,
        breaker: CircuitBreaker | None = None,
        diagnostics: Diagnostics | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the service.

        Args:
            settings: Application settings; loaded from disk when omitted.
            generator: Produces a unit per attempt.
            oracle: Scores units and gives feedback.
            breaker: Oracle circuit breaker.
            diagnostics: Receives raw oracle feedback errors.
            clock: Monotonic clock for session budgets.
        """
        self.settings = settings or Settings.load()
        self._cancel_event = threading.Event()
        self.generator = generator or OllamaTextGenerator(
            self.settings, cancel_event=self._cancel_event
        )
        self.oracle = oracle or OllamaScoringOracle(self.settings, cancel_event=self._cancel_event)
        if breaker is None:
            breaker = get_circuit_breaker(
                failure_threshold=self.settings.circuit_breaker_failure_threshold,
                success_threshold=self.settings.circuit_breaker_success_threshold,
                timeout_seconds=self.settings.circuit_breaker_timeout,
                enabled=self.settings.circuit_breaker_enabled,
            )
        self.breaker = breaker
        self.diagnostics = diagnostics
        self._clock = clock
        logger.debug("RegenerationService initialized")

    @property
    def cancelled(self) -> bool:
        """True once cancel() has been called."""
        return self._cancel_event.is_set()

    def cancel(self) -> None:
        """Cancel every running and future session of this service."""
        logger.info("Cancelling regeneration sessions")
        self._cancel_event.set()

    def session_config(
        self, config: RegenerationConfig | None = None, **overrides: Any
    ) -> RegenerationConfig:
        """Configuration snapshot for one session.

        Raises:
            ConfigError: If an override is unknown or out of range.
        """
        base = config or RegenerationConfig.from_settings(self.settings)
        return base.with_overrides(**overrides) if overrides else base

    def run_regeneration_session(
        self,
        kind: ContentKind | str,
        initial_prompt: str,
        context: Mapping[str, Any] | None = None,
        config: RegenerationConfig | None = None,
        **overrides: Any,
    ) -> SessionResult:
        """Generate, score and regenerate one content unit until it terminates.

        Args:
            kind: ``text`` or ``image``.
            initial_prompt: The generation request for attempt 1.
            context: Opaque context forwarded to the generator and oracle.
            config: Base configuration; built from settings when omitted.
            **overrides: RegenerationConfig fields replaced for this call only.

        Returns:
            SessionResult with a terminal termination_reason.

        Raises:
            ValueError: If kind is not a content kind or the prompt is empty.
            ConfigError: If an override is invalid.
        """
        kind = ContentKind(kind)
        if not initial_prompt or not initial_prompt.strip():
            raise ValueError("initial_prompt must not be empty")
        session_config = self.session_config(config, **overrides)
        content_id = f"{kind}-{uuid.uuid4().hex[:12]}"

        return regeneration_loop(
            content_id=content_id,
            kind=kind,
            initial_prompt=initial_prompt,
            context=context or {},
            config=session_config,
            generator=self.generator,
            oracle=self.oracle,
            breaker=self.breaker,
            cancel_event=self._cancel_event,
            clock=self._clock,
            diagnostics=self.diagnostics,
        )

    def _run_request(self, request: SessionRequest) -> SessionResult:
        return self.run_regeneration_session(
            request.kind, request.initial_prompt, request.context, **request.overrides
        )

    def run_sessions(
        self, requests: Sequence[SessionRequest], max_workers: int | None = None
    ) -> list[SessionResult]:
        """Run independent sessions concurrently, results in request order."""
        if max_workers is None:
            image_count = sum(1 for r in requests if r.kind == ContentKind.IMAGE)
            max_workers = default_worker_count(image_count, self.settings.parallel_max_workers)
        return run_parallel_sessions(requests, self._run_request, max_workers)

    def run_adventure(
        self, narrative: SessionRequest, images: Sequence[SessionRequest] = ()
    ) -> AdventureResult:
        """Run the narrative session and its image sessions concurrently.

        Raises:
            ValueError: If the narrative request is not text or an image
                request is not an image.
        """
        if narrative.kind != ContentKind.TEXT:
            raise ValueError(f"Narrative request must be text, got {narrative.kind}")
        for request in images:
            if request.kind != ContentKind.IMAGE:
                raise ValueError(f"Image request must be image, got {request.kind}")

        logger.info("Running adventure: 1 narrative session and %d image sessions", len(images))
        results = self.run_sessions([narrative, *images])
        report = build_quality_report(results)
        return AdventureResult(narrative=results[0], images=tuple(results[1:]), report=report)


__all__ = [
    "DIRECTIVES_HEADER",
    "ERROR_CANCELLED",
    "ERROR_CIRCUIT_OPEN",
    "ERROR_GENERATOR_FAILURE",
    "ERROR_ORACLE_UNAVAILABLE",
    "ERROR_TIMED_OUT",
    "AdventureResult",
    "OracleCallPolicy",
    "QualityReport",
    "QualitySummary",
    "RegenerationService",
    "SessionClock",
    "SessionRequest",
    "adapt_prompt",
    "build_directives",
    "build_quality_report",
    "default_worker_count",
    "regeneration_loop",
    "run_parallel_sessions",
    "session_worker_count",
]
