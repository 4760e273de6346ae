"""Concurrent execution of independent regeneration sessions.

One adventure is one narrative session plus one session per companion image.
Sessions never share attempts, so they run side by side; admission is bounded
by a counting semaphore sized to the worker limit.
"""

import logging
import threading
import time
from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from quality_gate.memory.quality import ContentKind, SessionResult

logger = logging.getLogger(__name__)


class SessionRequest(BaseModel):
    """Input for one regeneration session."""

    model_config = ConfigDict(frozen=True)

    kind: ContentKind
    initial_prompt: str = Field(min_length=1)
    context: dict[str, Any] = Field(default_factory=dict)
    overrides: dict[str, Any] = Field(
        default_factory=dict, description="Per-session RegenerationConfig overrides"
    )


def default_worker_count(image_count: int, configured: int = 0) -> int:
    """Pool size for an adventure: ``configured`` when positive, else images + 1."""
    if configured > 0:
        return configured
    return image_count + 1


def run_parallel_sessions(
    requests: Sequence[SessionRequest],
    run_session: Callable[[SessionRequest], SessionResult],
    max_workers: int,
) -> list[SessionResult]:
    """Run sessions concurrently and return their results in request order.

    Args:
        requests: Sessions to run.
        run_session: Runs one request to a terminal SessionResult.
        max_workers: Maximum number of sessions in flight.

    Returns:
        One SessionResult per request, in the order given.

    Raises:
        ValueError: If max_workers is less than 1.
    """
    if max_workers < 1:
        raise ValueError(f"max_workers must be at least 1, got {max_workers}")
    if not requests:
        return []

    admission = threading.BoundedSemaphore(max_workers)
    results: list[SessionResult | None] = [None] * len(requests)
    start = time.perf_counter()

    def _admitted(request: SessionRequest) -> SessionResult:
        with admission:
            return run_session(request)

    pool_size = min(max_workers, len(requests))
    logger.info("Running %d sessions with up to %d in flight", len(requests), pool_size)
    with ThreadPoolExecutor(max_workers=pool_size, thread_name_prefix="quality-session") as executor:
        futures: dict[Future[SessionResult], int] = {
            executor.submit(_admitted, request): index for index, request in enumerate(requests)
        }
        for future in as_completed(futures):
            index = futures[future]
            try:
                results[index] = future.result()
            except Exception:
                logger.exception(
                    "Session %d (%s) raised instead of returning a result",
                    index,
                    requests[index].kind,
                )
                for pending in futures:
                    pending.cancel()
                raise
            logger.debug(
                "Session %d/%d finished: %s",
                index + 1,
                len(requests),
                results[index].termination_reason,  # type: ignore[union-attr]
            )

    logger.info(
        "All %d sessions finished in %.2fs", len(requests), time.perf_counter() - start
    )
    return [r for r in results if r is not None]
