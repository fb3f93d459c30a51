"""
Application-wide settings and environment configuration
"""

import os
from pathlib import Path

# Project paths
PACKAGE_ROOT = Path(__file__).parent.parent

# Environment
ENV = os.getenv("RDEVIDENCE_ENV", "development")
DEBUG = ENV == "development"

# API Configuration
API_HOST = os.getenv("API_HOST", "0.0.0.0")
API_PORT = int(os.getenv("API_PORT", "8000"))
LOG_LEVEL = os.getenv("RDEVIDENCE_LOG_LEVEL", "INFO")

# Google Cloud / Gemini
GOOGLE_CLOUD_PROJECT = os.getenv("GOOGLE_CLOUD_PROJECT")
GOOGLE_API_KEY = os.getenv("GOOGLE_API_KEY")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.0-flash-001")
GEMINI_LOCATION = os.getenv("GEMINI_LOCATION", "us-central1")
GEMINI_MAX_TOKENS = int(os.getenv("GEMINI_MAX_TOKENS", "600"))
GEMINI_TEMPERATURE = float(os.getenv("GEMINI_TEMPERATURE", "0.1"))

# Scheduler trigger shared secret
CRON_SECRET = os.getenv("CRON_SECRET")


def is_production() -> bool:
    """Check if running in production"""
    return os.getenv("RDEVIDENCE_ENV", ENV) == "production"


def is_development() -> bool:
    """Check if running in development"""
    return os.getenv("RDEVIDENCE_ENV", ENV) == "development"


def llm_credentials_present() -> bool:
    """True when either a Vertex AI project or a Gemini API key is configured.

    Reads the environment fresh so a .env loaded after import is honoured.
    """
    return bool(os.getenv("GOOGLE_CLOUD_PROJECT") or os.getenv("GOOGLE_API_KEY"))
