"""Error taxonomy shared by the pipeline, the clients and the HTTP layer.

WHY: Callers need to tell "the task does not exist" from "the upstream
service broke" from "the token could not be refreshed" without parsing
messages. Each category carries a short machine-checkable code so every
boundary response can expose it next to the human-readable text.

HOW: One base class with a class-level ``code``; one subclass per
category. The HTTP layer maps ``code`` to a status code.

RULES:
- NotFoundError: task, mirrored platform task, or blob absent
- ValidationError: missing/empty segments, malformed bounds, unsupported format
- UpstreamError: speech-to-text or platform call failed (status + body)
- AuthError: token refresh failed; NOT an UpstreamError, so it can never
  trigger the one-shot unauthorized retry
- StorageError: blob or task store I/O failure
"""

from __future__ import annotations


class TranscriptReviewError(Exception):
    """Base class for all errors raised by this package."""

    code = "internal_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class NotFoundError(TranscriptReviewError):
    code = "not_found"


class ValidationError(TranscriptReviewError):
    code = "validation_error"


class UpstreamError(TranscriptReviewError):
    """Raised when an external service answers with an error or is unreachable.

    ``status_code`` is 0 when no HTTP response was received at all.
    """

    code = "upstream_error"

    def __init__(self, service: str, status_code: int, body: str) -> None:
        self.service = service
        self.status_code = status_code
        self.body = body
        super().__init__(f"{service} error {status_code}: {body}")


class AuthError(TranscriptReviewError):
    code = "auth_error"


class StorageError(TranscriptReviewError):
    code = "storage_error"
