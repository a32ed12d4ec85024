"""Optional error tracking through Sentry.

WHY: Failures happen in background transcription runs and in calls to
external services, where nobody is watching the logs. When a Sentry DSN
is configured those failures are reported with the task context.

HOW: init_error_tracking() calls sentry_sdk.init() once when a DSN is
available. capture_exception() forwards an exception plus keyword
context as Sentry extras, and is a no-op when tracking is off.

RULES:
- Without SENTRY_DSN nothing is sent and sentry_sdk is never initialised
- capture_exception() never raises
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import sentry_sdk

from transcript_review.config import (
    SENTRY_DSN,
    SENTRY_ENVIRONMENT,
    SENTRY_TRACES_SAMPLE_RATE,
)

logger = logging.getLogger(__name__)

_enabled = False


def init_error_tracking(dsn: Optional[str] = None) -> bool:
    """Initialise Sentry if a DSN is configured. Returns whether tracking is on."""
    global _enabled
    if _enabled:
        return True
    dsn = dsn or SENTRY_DSN
    if not dsn:
        logger.info("Sentry DSN not configured, skipping error tracking")
        return False
    sentry_sdk.init(
        dsn=dsn,
        environment=SENTRY_ENVIRONMENT,
        traces_sample_rate=SENTRY_TRACES_SAMPLE_RATE,
    )
    _enabled = True
    logger.info("Sentry error tracking initialised (environment=%s)", SENTRY_ENVIRONMENT)
    return True


def capture_exception(exc: BaseException, **context: Any) -> None:
    """Report exc to Sentry with context as extras."""
    if not _enabled:
        return
    try:
        sentry_sdk.capture_exception(exc, extras=context)
    except Exception:
        logger.warning("Could not report exception to Sentry", exc_info=True)
