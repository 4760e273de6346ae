"""Services layer - quality gate logic behind a single container.

The container wires the Ollama adapters, the shared oracle circuit breaker,
the standalone validator and the regeneration service around one Settings
object.
"""

import logging
import time
from dataclasses import dataclass

from quality_gate.memory.quality import RegenerationConfig
from quality_gate.settings import Settings
from quality_gate.utils.circuit_breaker import CircuitBreaker, get_circuit_breaker

from .generator import ContentGenerator, OllamaTextGenerator
from .quality_validation import QualityValidator
from .regeneration_service import RegenerationService
from .scoring_oracle import OllamaScoringOracle, ScoringOracle

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """Dependency injection container for the quality gate services.

    Usage:
        settings = Settings.load()
        services = ServiceContainer(settings)

        result = services.regeneration.run_regeneration_session("text", prompt, context)
        outcome = services.validator.validate_text(unit, context)
    """

    settings: Settings
    breaker: CircuitBreaker
    oracle: ScoringOracle
    generator: ContentGenerator
    validator: QualityValidator
    regeneration: RegenerationService

    def __init__(
        self,
        settings: Settings | None = None,
        oracle: ScoringOracle | None = None,
        generator: ContentGenerator | None = None,
    ):
        """Create the services around a shared Settings object.

        Args:
            settings: Application settings; loaded via Settings.load() when omitted.
            oracle: Scoring oracle; defaults to OllamaScoringOracle.
            generator: Content generator; defaults to OllamaTextGenerator.
        """
        t0 = time.perf_counter()
        self.settings = settings or Settings.load()
        self.breaker = get_circuit_breaker(
            failure_threshold=self.settings.circuit_breaker_failure_threshold,
            success_threshold=self.settings.circuit_breaker_success_threshold,
            timeout_seconds=self.settings.circuit_breaker_timeout,
            enabled=self.settings.circuit_breaker_enabled,
        )
        self.regeneration = RegenerationService(
            self.settings, generator=generator, oracle=oracle, breaker=self.breaker
        )
        # Adapters created by the regeneration service share its cancel event
        self.oracle = self.regeneration.oracle
        self.generator = self.regeneration.generator
        self.validator = QualityValidator(
            self.oracle, RegenerationConfig.from_settings(self.settings)
        )
        logger.info("ServiceContainer initialized in %.2fms", (time.perf_counter() - t0) * 1000)


__all__ = [
    "ContentGenerator",
    "OllamaScoringOracle",
    "OllamaTextGenerator",
    "QualityValidator",
    "RegenerationService",
    "ScoringOracle",
    "ServiceContainer",
]
