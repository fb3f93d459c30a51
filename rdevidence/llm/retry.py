"""Shared LLM call with retry and timeout.

Both the link classifier and the narrative generator call Gemini through
call_llm. Each wraps it in its own try/except to apply its failure policy
(bump attempt timestamps vs. leave the job queued).

Retries up to LLM_MAX_RETRIES times with exponential backoff on timeouts,
unavailability, rate limiting and 5xx errors. Each attempt is bounded by
LLM_TIMEOUT_SECONDS of wall-clock time.
"""

from __future__ import annotations

import concurrent.futures

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from rdevidence.config import LLM_MAX_RETRIES, LLM_TIMEOUT_SECONDS
from rdevidence.infrastructure.settings import GEMINI_MAX_TOKENS, GEMINI_TEMPERATURE
from rdevidence.llm.gemini import get_gemini_model
from rdevidence.observability.logging import get_logger
from rdevidence.observability.telemetry import counter

logger = get_logger(__name__)


def _generate_with_timeout(model, prompt: str, generation_config: dict, timeout_seconds: float):
    executor = concurrent.futures.ThreadPoolExecutor(max_workers=1)
    try:
        future = executor.submit(model.generate_content, prompt, generation_config=generation_config)
        try:
            return future.result(timeout=timeout_seconds)
        except concurrent.futures.TimeoutError:
            raise TimeoutError(f"LLM call timed out after {timeout_seconds}s") from None
    finally:
        # Do not wait for a hung request; the worker thread finishes on its own
        executor.shutdown(wait=False)


@retry(
    stop=stop_after_attempt(LLM_MAX_RETRIES),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((TimeoutError, ConnectionError, OSError)),
    reraise=True,
)
def call_llm(
    prompt: str,
    counter_prefix: str = "llm",
    max_tokens: int = GEMINI_MAX_TOKENS,
    json_output: bool = True,
) -> str:
    """Call Gemini with retry and Vertex AI exception conversion.

    Args:
        prompt: The prompt to send to the model.
        counter_prefix: Telemetry counter prefix (e.g., "linking", "narratives").
        max_tokens: Maximum output tokens.
        json_output: Ask the model for a JSON response body.

    Returns:
        The model's response text.

    Raises:
        TimeoutError: On deadline exceeded or local timeout (retryable).
        ConnectionError: On service unavailable or internal error (retryable).
        OSError: On resource exhausted / rate limited (retryable).
        GeminiInitializationError: When the model cannot be created (not retried).
        Exception: On other errors (not retried, caller handles).
    """
    from google.api_core.exceptions import (
        DeadlineExceeded,
        InternalServerError,
        ResourceExhausted,
        ServiceUnavailable,
    )

    model = get_gemini_model()

    generation_config = {
        "temperature": GEMINI_TEMPERATURE,
        "max_output_tokens": max_tokens,
    }
    if json_output:
        generation_config["response_mime_type"] = "application/json"

    try:
        response = _generate_with_timeout(model, prompt, generation_config, LLM_TIMEOUT_SECONDS)
        return response.text
    except TimeoutError:
        counter(f"{counter_prefix}.llm.timeout")
        logger.warning("LLM call timed out after %ds", LLM_TIMEOUT_SECONDS)
        raise
    except DeadlineExceeded as e:
        counter(f"{counter_prefix}.llm.timeout")
        logger.warning("LLM deadline exceeded after %ds", LLM_TIMEOUT_SECONDS)
        raise TimeoutError(f"LLM call timed out: {e}") from e
    except ServiceUnavailable as e:
        counter(f"{counter_prefix}.llm.service_unavailable")
        logger.warning("LLM service unavailable, will retry: %s", e)
        raise ConnectionError(f"LLM service unavailable: {e}") from e
    except ResourceExhausted as e:
        counter(f"{counter_prefix}.llm.rate_limited")
        logger.warning("LLM rate limited (429), will retry: %s", e)
        raise OSError(f"LLM rate limited: {e}") from e
    except InternalServerError as e:
        counter(f"{counter_prefix}.llm.internal_error")
        logger.warning("LLM internal error (500), will retry: %s", e)
        raise ConnectionError(f"LLM internal error: {e}") from e
    except Exception as e:
        logger.error("LLM call failed: %s", e)
        raise
