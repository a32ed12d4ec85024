"""Configuration constants, export format tables, and .env loading.

WHY: The service talks to two external platforms (speech-to-text and
Label Studio) and two storage backends. Their URLs, credentials and
tuning knobs must be easy to find and override without touching logic.

HOW: python-dotenv loads the .env file on import. Constants are
module-level values read with os.getenv so every default can be
overridden by the environment. Credentials are loaded through small
functions that fail loudly when the value is missing.

RULES:
- Credentials are never hardcoded and never defaulted to placeholders
- TOKEN_MARGIN_S stays below the platform's 5-minute access-token lifetime
- PEAK_SAMPLES is both the peak envelope length and the resample rate
- SUPPORTED_AUDIO_FORMATS lists accepted upload extensions (lowercase, with dot)
"""

from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

# Load .env from the project root (where the service is started from)
load_dotenv()

# ---------------------------------------------------------------------------
# Label Studio
# ---------------------------------------------------------------------------

LABEL_STUDIO_URL = os.getenv("LABEL_STUDIO_URL", "http://label-studio:8080").rstrip("/")
LABEL_STUDIO_PROJECT_ID = os.getenv("LABEL_STUDIO_PROJECT_ID", "1")
TOKEN_MARGIN_S = float(os.getenv("LABEL_STUDIO_TOKEN_MARGIN_S", "270"))
TASK_PAGE_SIZE = int(os.getenv("LABEL_STUDIO_TASK_PAGE_SIZE", "20"))

TRANSCRIPTION_FIELD = "transcription"
"""Label config field that carries per-segment text (``from_name``)."""

AUDIO_FIELD = "audio"
"""Label config object the transcription regions attach to (``to_name``)."""

# ---------------------------------------------------------------------------
# Speech-to-text
# ---------------------------------------------------------------------------

OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1").rstrip("/")
WHISPER_MODEL = os.getenv("WHISPER_MODEL", "whisper-1")
PREDICTION_SCORE = 0.95

# ---------------------------------------------------------------------------
# Pipeline
# ---------------------------------------------------------------------------

PEAK_SAMPLES = int(os.getenv("PEAK_SAMPLES", "1000"))
TASK_TIMEOUT_S = float(os.getenv("TASK_TIMEOUT_S", "540"))  # 9 minutes

PEAKS_CACHE_CONTROL = "public, max-age=31536000"

SUPPORTED_AUDIO_FORMATS: set[str] = {
    ".aac", ".flac", ".m4a", ".mp3", ".mp4",
    ".mpeg", ".mpga", ".ogg", ".wav", ".webm",
}
"""Audio file extensions accepted for upload (lowercase, with dot)."""

# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

BLOB_ROOT = os.getenv("BLOB_ROOT", "./blobs")
BLOB_PUBLIC_BASE_URL = os.getenv("BLOB_PUBLIC_BASE_URL", "http://localhost:8000/blobs").rstrip("/")
DEFAULT_PROJECT_ID = "default"

# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

EXPORT_FORMATS: tuple[str, ...] = ("srt", "vtt", "txt", "json")
"""Supported export formats, in the order they are listed to clients."""

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Error tracking is off unless SENTRY_DSN is set
SENTRY_DSN = os.getenv("SENTRY_DSN", "").strip()
SENTRY_ENVIRONMENT = os.getenv("SENTRY_ENVIRONMENT", "development")
SENTRY_TRACES_SAMPLE_RATE = float(os.getenv("SENTRY_TRACES_SAMPLE_RATE", "0.1"))


def load_label_studio_api_key() -> str:
    """Load the Label Studio refresh credential from the environment.

    WHY: Every platform call needs an access token, and access tokens are
    only obtainable by exchanging this long-lived credential.

    RULES:
    - Raises ValueError if the key is missing or empty
    - Never returns a default/placeholder value
    """
    key = os.getenv("LABEL_STUDIO_API_KEY", "").strip()
    if not key:
        raise ValueError(
            "Label Studio API key not configured. "
            "Add LABEL_STUDIO_API_KEY (a refresh token) to the .env file."
        )
    return key


def load_openai_api_key() -> str:
    """Load the speech-to-text API key from the environment.

    Raises ValueError if the key is missing or empty.
    """
    key = os.getenv("OPENAI_API_KEY", "").strip()
    if not key:
        raise ValueError(
            "Speech-to-text API key not configured. "
            "Add OPENAI_API_KEY to the .env file."
        )
    return key


def configure_logging(level: str | None = None) -> None:
    """Configure root logging for the CLI and server entry points."""
    logging.basicConfig(
        level=level or LOG_LEVEL,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
