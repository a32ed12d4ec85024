"""Async client for a Whisper-compatible speech-to-text endpoint.

WHY: The orchestrator treats speech-to-text as a black box: audio bytes
in, duration plus ordered ``(start, end, text)`` segments out. This
module hides the HTTP details behind one method so the orchestrator can
be tested with a fake.

HOW: Uses httpx.AsyncClient. The client is an async context manager:
enter it to get an authenticated connection pool, exit to close it.
``transcribe()`` uploads the file as multipart form data asking for
``verbose_json`` with segment-level timestamps.

RULES:
- Always use the async context manager (async with WhisperClient() as stt:)
- Non-2xx responses raise UpstreamError carrying the response body text
- Transport failures raise UpstreamError with status_code 0
- No retries: every failure is terminal for this invocation
- Raw segments are returned untouched; mapping to Segment is the caller's job
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import httpx

from transcript_review.config import (
    OPENAI_BASE_URL,
    TASK_TIMEOUT_S,
    WHISPER_MODEL,
    load_openai_api_key,
)
from transcript_review.errors import UpstreamError

_SERVICE = "Speech-to-text"


@dataclass
class TranscriptionResult:
    """Parsed ``verbose_json`` response.

    RULES:
    - duration: seconds as reported by the service, None if absent
    - segments: raw segment dicts in the order returned
    - raw: the full response body, persisted for audit
    """

    duration: Optional[float]
    segments: List[Dict[str, Any]] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> TranscriptionResult:
        duration = data.get("duration")
        segments = data.get("segments") or []
        if not isinstance(segments, list):
            raise UpstreamError(_SERVICE, 200, "segments is not a list")
        return cls(
            duration=float(duration) if isinstance(duration, (int, float)) else None,
            segments=[s for s in segments if isinstance(s, dict)],
            raw=data,
        )


class WhisperClient:
    """Async client for ``POST /audio/transcriptions``.

    RULES:
    - Use as: async with WhisperClient() as stt: ...
    - api_key defaults to load_openai_api_key() from .env
    - transport is for tests (httpx.MockTransport)
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        model: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key or load_openai_api_key()
        self._base_url = (base_url or OPENAI_BASE_URL).rstrip("/")
        self.model = model or WHISPER_MODEL
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> WhisperClient:
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={"Authorization": f"Bearer {self._api_key}"},
            timeout=httpx.Timeout(TASK_TIMEOUT_S, connect=30.0),
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        if self._client:
            await self._client.aclose()
            self._client = None

    def _ensure_client(self) -> httpx.AsyncClient:
        """Return the active httpx client, raising if not in context manager."""
        if self._client is None:
            raise RuntimeError(
                "WhisperClient must be used as an async context manager: "
                "async with WhisperClient() as stt: ..."
            )
        return self._client

    async def transcribe(self, audio_path: Path, filename: str | None = None) -> TranscriptionResult:
        """Transcribe a local audio file.

        Args:
            audio_path: Path to the downloaded audio file.
            filename: Name sent with the upload; the service uses its
                extension to pick a decoder. Defaults to the path's name.

        Returns:
            TranscriptionResult with duration, raw segments and raw body.
        """
        client = self._ensure_client()
        audio_path = Path(audio_path)
        upload_name = filename or audio_path.name

        try:
            with open(audio_path, "rb") as f:
                resp = await client.post(
                    "/audio/transcriptions",
                    files={"file": (upload_name, f)},
                    data={
                        "model": self.model,
                        "response_format": "verbose_json",
                        "timestamp_granularities[]": "segment",
                    },
                )
        except httpx.HTTPError as exc:
            raise UpstreamError(_SERVICE, 0, str(exc)) from exc

        if not resp.is_success:
            raise UpstreamError(_SERVICE, resp.status_code, resp.text)

        try:
            data = resp.json()
        except ValueError as exc:
            raise UpstreamError(_SERVICE, resp.status_code, "response is not JSON") from exc
        if not isinstance(data, dict):
            raise UpstreamError(_SERVICE, resp.status_code, "response is not a JSON object")

        return TranscriptionResult.from_dict(data)
