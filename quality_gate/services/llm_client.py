"""Shared Ollama client helpers for the oracle and generator adapters.

Structured calls use ollama.Client.chat() with ``format=`` set to a pydantic
model's JSON schema for grammar-constrained output. All calls stream so the
HTTP read timeout resets with every chunk.
"""

import logging
import threading
import time
from typing import Any, TypeVar

import httpx
import ollama
from pydantic import BaseModel, ValidationError

from quality_gate.settings import Settings
from quality_gate.utils.exceptions import (
    GenerationCancelledError,
    LLMConnectionError,
    LLMError,
    ResponseValidationError,
)
from quality_gate.utils.streaming import StreamCancelledError, consume_stream

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

# Module-level cache for Ollama clients (keyed by (url, timeout))
_ollama_clients: dict[tuple[str, float], ollama.Client] = {}
_ollama_clients_lock = threading.Lock()

_TRANSIENT_ERRORS = (ConnectionError, TimeoutError, httpx.TimeoutException, httpx.TransportError)


def get_ollama_client(settings: Settings) -> ollama.Client:
    """Get or create an Ollama client for the given settings.

    Cached on URL and timeout. Thread-safe via double-checked locking.
    """
    timeout = float(settings.ollama_timeout)
    cache_key = (settings.ollama_url, timeout)

    if cache_key not in _ollama_clients:
        with _ollama_clients_lock:
            if cache_key not in _ollama_clients:
                _ollama_clients[cache_key] = ollama.Client(
                    host=settings.ollama_url, timeout=timeout
                )
                logger.debug(
                    "Created Ollama client for %s (timeout=%.0fs)", settings.ollama_url, timeout
                )

    return _ollama_clients[cache_key]


def clear_client_cache() -> None:
    """Drop cached clients. Used by tests."""
    with _ollama_clients_lock:
        _ollama_clients.clear()


def _build_messages(
    prompt: str, system_prompt: str | None, images: list[Any] | None
) -> list[dict[str, Any]]:
    messages: list[dict[str, Any]] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    user_message: dict[str, Any] = {"role": "user", "content": prompt}
    if images:
        user_message["images"] = images
    messages.append(user_message)
    return messages


def _stream_chat(
    client: ollama.Client,
    *,
    model: str,
    messages: list[dict[str, Any]],
    options: dict[str, Any],
    response_format: dict[str, Any] | None,
    cancel_event: threading.Event | None,
) -> dict[str, Any]:
    stream = client.chat(
        model=model,
        messages=messages,
        format=response_format,
        options=options,
        stream=True,
    )
    return consume_stream(stream, cancel_event=cancel_event)


def generate_structured(
    settings: Settings,
    model: str,
    prompt: str,
    response_model: type[T],
    system_prompt: str | None = None,
    temperature: float = 0.1,
    max_retries: int = 3,
    images: list[Any] | None = None,
    cancel_event: threading.Event | None = None,
) -> T:
    """Generate structured output using the native Ollama format parameter.

    Args:
        settings: Application settings.
        model: The Ollama model to use.
        prompt: The user prompt to send.
        response_model: Pydantic model class defining the expected output.
        system_prompt: Optional system prompt.
        temperature: Sampling temperature.
        max_retries: Total attempts for parse and transport failures.
        images: Optional images for vision models (bytes, paths or base64).
        cancel_event: Stops reading the stream once set.

    Returns:
        Instance of response_model with validated data.

    Raises:
        ResponseValidationError: If the last attempt returned unparseable output.
        LLMConnectionError: If the last attempt failed on transport or timeout.
        LLMError: On a non-retryable Ollama response error.
        GenerationCancelledError: If cancel_event was set mid-stream.
        ValueError: If max_retries < 1.
    """
    if max_retries < 1:
        raise ValueError(f"max_retries must be >= 1, got {max_retries}")

    client = get_ollama_client(settings)
    messages = _build_messages(prompt, system_prompt, images)
    json_schema = response_model.model_json_schema()

    logger.debug(
        "Generating structured output: model=%s, response_model=%s, temperature=%s, images=%d",
        model,
        response_model.__name__,
        temperature,
        len(images or []),
    )

    last_error: Exception | None = None
    last_content = ""

    for attempt in range(max_retries):
        try:
            start_time = time.time()
            response = _stream_chat(
                client,
                model=model,
                messages=messages,
                options={"temperature": temperature},
                response_format=json_schema,
                cancel_event=cancel_event,
            )
            last_content = response["message"]["content"]
            result = response_model.model_validate_json(last_content)
            logger.info(
                "LLM call complete: model=%s, schema=%s, %.2fs, tokens: %s+%s",
                model,
                response_model.__name__,
                time.time() - start_time,
                response.get("prompt_eval_count"),
                response.get("eval_count"),
            )
            return result

        except StreamCancelledError as e:
            raise GenerationCancelledError("Structured generation cancelled") from e

        except (ValidationError, KeyError, TypeError) as e:
            last_error = e
            logger.warning(
                "Structured output validation failed (attempt %d/%d): %s",
                attempt + 1,
                max_retries,
                e,
            )

        except _TRANSIENT_ERRORS as e:
            last_error = e
            logger.warning(
                "Transient error in structured output (attempt %d/%d): %s",
                attempt + 1,
                max_retries,
                e,
            )
            if attempt < max_retries - 1:
                backoff = min(2**attempt, 10)
                logger.debug("Backing off %.1fs before retry", backoff)
                time.sleep(backoff)

        except ollama.ResponseError as e:
            logger.error("Ollama response error during structured generation: %s", e)
            raise LLMError(
                f"Structured generation failed for {response_model.__name__}: {e}"
            ) from e

    logger.error("Structured output generation failed after %d attempts", max_retries)
    if isinstance(last_error, _TRANSIENT_ERRORS):
        raise LLMConnectionError(
            f"Ollama unreachable for {response_model.__name__}: {last_error}"
        ) from last_error
    raise ResponseValidationError(
        f"Invalid {response_model.__name__} response after {max_retries} attempts: {last_error}",
        response_preview=last_content[:500] or None,
    ) from last_error


def generate_text(
    settings: Settings,
    model: str,
    prompt: str,
    system_prompt: str | None = None,
    temperature: float = 0.8,
    max_retries: int = 2,
    cancel_event: threading.Event | None = None,
) -> str:
    """Generate free-form text.

    Raises:
        LLMConnectionError: If every attempt failed on transport or timeout.
        LLMError: On an Ollama response error or an empty response.
        GenerationCancelledError: If cancel_event was set mid-stream.
    """
    if max_retries < 1:
        raise ValueError(f"max_retries must be >= 1, got {max_retries}")

    client = get_ollama_client(settings)
    messages = _build_messages(prompt, system_prompt, None)
    last_error: Exception | None = None

    for attempt in range(max_retries):
        try:
            response = _stream_chat(
                client,
                model=model,
                messages=messages,
                options={"temperature": temperature},
                response_format=None,
                cancel_event=cancel_event,
            )
        except StreamCancelledError as e:
            raise GenerationCancelledError("Text generation cancelled") from e
        except _TRANSIENT_ERRORS as e:
            last_error = e
            logger.warning(
                "Transient error in text generation (attempt %d/%d): %s",
                attempt + 1,
                max_retries,
                e,
            )
            if attempt < max_retries - 1:
                time.sleep(min(2**attempt, 10))
            continue
        except ollama.ResponseError as e:
            logger.error("Ollama response error during text generation: %s", e)
            raise LLMError(f"Text generation failed: {e}") from e

        content = response["message"]["content"].strip()
        if not content:
            raise LLMError(f"Model {model} returned an empty response")
        return content

    raise LLMConnectionError(
        f"Text generation failed after {max_retries} attempts: {last_error}"
    ) from last_error
