"""Speech-to-text client package.

RULES:
- All speech-to-text HTTP calls go through WhisperClient
- The orchestrator depends only on the ``transcribe`` coroutine, so any
  object providing it can stand in
"""

from transcript_review.stt.client import TranscriptionResult, WhisperClient

__all__ = ["TranscriptionResult", "WhisperClient"]
