"""Helpers for consuming streaming Ollama chat responses.

Oracle and generator calls use stream=True so the HTTP read timeout resets
with every chunk. The stream is checked between chunks for a wall-clock
limit and for cancellation, so an abandoned call stops reading promptly.
"""

import logging
import threading
import time
from collections.abc import Iterator
from typing import Any

import httpcore

logger = logging.getLogger(__name__)

_DEFAULT_WALL_CLOCK_TIMEOUT = 600.0


class StreamTimeoutError(TimeoutError):
    """Raised when a stream runs past its wall-clock limit.

    Attributes:
        partial_content_length: Characters received before the timeout.
        elapsed_seconds: Time spent reading the stream.
    """

    def __init__(
        self,
        message: str,
        *,
        partial_content_length: int = 0,
        elapsed_seconds: float = 0.0,
    ):
        super().__init__(message)
        self.partial_content_length = partial_content_length
        self.elapsed_seconds = elapsed_seconds


class StreamCancelledError(Exception):
    """Raised when the cancel event is set while a stream is being read."""


def consume_stream(
    stream: Iterator[Any],
    *,
    wall_clock_timeout: float | None = None,
    cancel_event: threading.Event | None = None,
) -> dict[str, Any]:
    """Collect a streaming chat response into a non-streaming style dict.

    Args:
        stream: Iterator of ChatResponse chunks from client.chat(stream=True).
        wall_clock_timeout: Max seconds for the whole stream (None = 600s).
        cancel_event: Checked before each chunk; reading stops once set.

    Returns:
        Dict with 'message.content', 'prompt_eval_count' and 'eval_count'.

    Raises:
        StreamTimeoutError: If the wall-clock limit is exceeded.
        StreamCancelledError: If cancel_event is set mid-stream.
        ConnectionError: If the stream is interrupted by a network error.
    """
    wall_clock = (
        wall_clock_timeout if wall_clock_timeout is not None else _DEFAULT_WALL_CLOCK_TIMEOUT
    )

    content_parts: list[str] = []
    prompt_eval_count: int | None = None
    eval_count: int | None = None
    start_time = time.monotonic()

    try:
        for chunk in stream:
            if cancel_event is not None and cancel_event.is_set():
                logger.debug("Stream abandoned after %d chunks: cancelled", len(content_parts))
                raise StreamCancelledError("Stream cancelled by caller")

            elapsed = time.monotonic() - start_time
            if elapsed > wall_clock:
                content_len = sum(len(p) for p in content_parts)
                logger.error(
                    "Stream wall-clock timeout after %.1fs (limit=%.0fs, partial_content=%d chars)",
                    elapsed,
                    wall_clock,
                    content_len,
                )
                raise StreamTimeoutError(
                    f"Stream exceeded wall-clock timeout of {wall_clock:.0f}s",
                    partial_content_length=content_len,
                    elapsed_seconds=elapsed,
                )

            if chunk.message and chunk.message.content:
                content_parts.append(chunk.message.content)
            if chunk.done:
                prompt_eval_count = getattr(chunk, "prompt_eval_count", None)
                eval_count = getattr(chunk, "eval_count", None)
    except (
        httpcore.RemoteProtocolError,
        httpcore.ReadError,
        httpcore.NetworkError,
    ) as e:
        logger.error("Ollama stream interrupted mid-response: %s", e)
        raise ConnectionError(f"Ollama stream interrupted: {e}") from e

    content = "".join(content_parts)
    logger.debug(
        "Stream consumed: %d chunks, %d chars, %.2fs",
        len(content_parts),
        len(content),
        time.monotonic() - start_time,
    )
    return {
        "message": {"content": content},
        "prompt_eval_count": prompt_eval_count,
        "eval_count": eval_count,
    }
