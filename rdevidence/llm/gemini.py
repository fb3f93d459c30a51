"""
Gemini Model Manager - Singleton for shared model instance.

The link classifier and the narrative generator share one model instance.

Supports two backends, chosen by which credential is configured:
  1. Vertex AI SDK (production) - GOOGLE_CLOUD_PROJECT + service account
  2. google-generativeai (local dev) - GOOGLE_API_KEY
"""

from __future__ import annotations

import os
from functools import lru_cache

from rdevidence.infrastructure.settings import GEMINI_LOCATION, GEMINI_MODEL, GOOGLE_CLOUD_PROJECT
from rdevidence.observability.logging import get_logger

logger = get_logger(__name__)


class GeminiInitializationError(RuntimeError):
    """Raised when Gemini model cannot be initialized."""


class LLMConfigurationError(GeminiInitializationError):
    """Raised when no Gemini credentials are configured at all."""


@lru_cache(maxsize=1)
def get_gemini_model():
    """
    Get or create shared Gemini model instance.

    Vertex AI is used when GOOGLE_CLOUD_PROJECT is set, otherwise
    google-generativeai with GOOGLE_API_KEY.

    Returns:
        GenerativeModel: Shared Gemini model

    Raises:
        LLMConfigurationError: If neither credential is configured
        GeminiInitializationError: If the SDK fails to initialize
    """
    # Read env vars fresh (settings.py may have stale values if loaded before dotenv)
    project = os.getenv("GOOGLE_CLOUD_PROJECT") or GOOGLE_CLOUD_PROJECT
    location = os.getenv("GEMINI_LOCATION", "") or GEMINI_LOCATION or "us-central1"
    api_key = os.getenv("GOOGLE_API_KEY")
    model_name = os.getenv("GEMINI_MODEL") or GEMINI_MODEL

    if not project and not api_key:
        raise LLMConfigurationError("Set GOOGLE_CLOUD_PROJECT or GOOGLE_API_KEY to enable Gemini.")

    try:
        if project:
            import vertexai
            from vertexai.generative_models import GenerativeModel

            vertexai.init(project=project, location=location)
            model = GenerativeModel(model_name)
            logger.info(
                "Initialized Gemini model (Vertex AI): project=%s, location=%s, model=%s",
                project,
                location,
                model_name,
            )
            return model

        import google.generativeai as genai

        genai.configure(api_key=api_key)
        model = genai.GenerativeModel(model_name)
        logger.info("Initialized Gemini model (google-generativeai): model=%s", model_name)
        return model

    except Exception as e:
        logger.error("Failed to initialize Gemini model: %s", e)
        raise GeminiInitializationError(f"Failed to initialize Gemini: {e}") from e


def clear_model_cache() -> None:
    """
    Clear the cached model instance.

    Useful for testing or when reconfiguration is needed.
    """
    get_gemini_model.cache_clear()
    logger.info("Cleared Gemini model cache")
