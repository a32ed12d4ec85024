"""Async Label Studio client with access-token lifecycle management.

WHY: Reviewers correct transcripts in Label Studio. The service mirrors
each transcribed task there as pre-filled predictions and later pulls
the corrected regions back. Label Studio authenticates with short-lived
access tokens exchanged from one long-lived refresh token, so every call
has to go through token bookkeeping that is safe under concurrent use.

HOW: Uses httpx.AsyncClient (created lazily, or on ``async with``). The
access token and its expiry live on the client instance and are only
read or written while holding an asyncio.Lock, so check-then-refresh is
atomic across concurrent calls. ``_request()`` attaches the token and
retries exactly once on 401 after forcing a refresh.

Task creation goes through the bulk import endpoint because the single
create endpoint drops predictions. Import does not return the new task's
ID, so it is resolved afterwards by querying recent project tasks (see
labelstudio.models.select_created_task).

RULES:
- Token validity window is token_margin_s (4.5 min against a 5 min token)
- One 401 retry per call; a second 401 raises AuthError
- Refresh failures raise AuthError, never UpstreamError
- Other non-2xx responses raise UpstreamError with the body text
- delete_task() treats 404 as already deleted and returns False
- Segments with invalid bounds are dropped before import, never sent
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

import httpx
import jsonschema

from transcript_review.config import (
    LABEL_STUDIO_PROJECT_ID,
    LABEL_STUDIO_URL,
    PREDICTION_SCORE,
    TASK_PAGE_SIZE,
    TOKEN_MARGIN_S,
    TRANSCRIPTION_FIELD,
    WHISPER_MODEL,
    load_label_studio_api_key,
)
from transcript_review.core.models import Segment, has_valid_bounds
from transcript_review.errors import AuthError, UpstreamError, ValidationError
from transcript_review.labelstudio.models import (
    SERVICE,
    AccessToken,
    CreatedTask,
    ImportResponse,
    PredictionItem,
    QueriedTask,
    parse_timestamp,
    select_created_task,
    validate_annotations,
)

logger = logging.getLogger(__name__)

SegmentLike = Union[Segment, Dict[str, Any]]


def _segment_fields(seg: SegmentLike) -> Tuple[Any, Any, str]:
    if isinstance(seg, Segment):
        return seg.start, seg.end, seg.text
    return seg.get("start"), seg.get("end"), str(seg.get("text") or "")


class LabelStudioClient:
    """Async client for the Label Studio REST API.

    RULES:
    - Use as: async with LabelStudioClient() as ls: ...  (or call aclose())
    - refresh_token defaults to load_label_studio_api_key() from .env
    - transport is for tests (httpx.MockTransport)
    - clock must be monotonic; it is injectable for expiry tests
    """

    def __init__(
        self,
        refresh_token: str | None = None,
        base_url: str | None = None,
        project_id: str | int | None = None,
        token_margin_s: float = TOKEN_MARGIN_S,
        page_size: int = TASK_PAGE_SIZE,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._refresh_token = refresh_token or load_label_studio_api_key()
        self.base_url = (base_url or LABEL_STUDIO_URL).rstrip("/")
        self.project_id = str(project_id or LABEL_STUDIO_PROJECT_ID)
        self.token_margin_s = token_margin_s
        self.page_size = page_size
        self._transport = transport
        self._clock = clock
        self._client: httpx.AsyncClient | None = None
        self._token: AccessToken | None = None
        self._token_lock = asyncio.Lock()

    async def __aenter__(self) -> LabelStudioClient:
        self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:  # noqa: ANN001
        await self.aclose()

    async def aclose(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=f"{self.base_url}/api",
                headers={"Content-Type": "application/json"},
                timeout=httpx.Timeout(30.0),
                transport=self._transport,
            )
        return self._client

    def task_url(self, external_task_id: int) -> str:
        """Browser URL of a Label Studio task."""
        return f"{self.base_url}/tasks/{external_task_id}"

    # ------------------------------------------------------------------
    # Token lifecycle
    # ------------------------------------------------------------------

    async def ensure_token(self) -> str:
        """Return a valid access token, refreshing it if missing or expired."""
        async with self._token_lock:
            if self._token is None or not self._token.is_valid(self._clock()):
                self._token = await self._exchange_refresh_token()
            return self._token.value

    async def refresh_access_token(self, stale: str | None = None) -> str:
        """Force a refresh and return the new access token.

        If ``stale`` is given and another caller has already replaced that
        token while we waited for the lock, the current token is returned
        instead of refreshing a second time.
        """
        async with self._token_lock:
            current = self._token
            if (
                stale is not None
                and current is not None
                and current.value != stale
                and current.is_valid(self._clock())
            ):
                return current.value
            self._token = await self._exchange_refresh_token()
            return self._token.value

    async def _exchange_refresh_token(self) -> AccessToken:
        client = self._ensure_client()
        try:
            resp = await client.post("/token/refresh", json={"refresh": self._refresh_token})
        except httpx.HTTPError as exc:
            raise AuthError(f"Token refresh failed: {exc}") from exc

        if not resp.is_success:
            raise AuthError(f"Token refresh failed ({resp.status_code}): {resp.text}")

        try:
            data = resp.json()
            jsonschema.validate(instance=data, schema=AccessToken.SCHEMA)
        except (ValueError, jsonschema.ValidationError) as exc:
            raise AuthError(f"Token refresh returned an unexpected body: {resp.text}") from exc

        logger.info("Label Studio access token refreshed")
        return AccessToken(value=data["access"], expires_at=self._clock() + self.token_margin_s)

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _send(
        self,
        method: str,
        path: str,
        token: str,
        json: Any = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        client = self._ensure_client()
        try:
            return await client.request(
                method,
                path,
                json=json,
                params=params,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as exc:
            raise UpstreamError(SERVICE, 0, str(exc)) from exc

    async def _request(
        self,
        method: str,
        path: str,
        json: Any = None,
        params: Optional[Dict[str, Any]] = None,
        allow_not_found: bool = False,
    ) -> httpx.Response:
        token = await self.ensure_token()
        resp = await self._send(method, path, token, json=json, params=params)

        if resp.status_code == 401:
            logger.info("Label Studio answered 401 for %s %s, refreshing token", method, path)
            token = await self.refresh_access_token(stale=token)
            resp = await self._send(method, path, token, json=json, params=params)
            if resp.status_code == 401:
                raise AuthError(f"Label Studio rejected a refreshed token for {method} {path}")

        if resp.status_code == 404 and allow_not_found:
            return resp
        if not resp.is_success:
            raise UpstreamError(SERVICE, resp.status_code, resp.text)
        return resp

    @staticmethod
    def _json(resp: httpx.Response) -> Any:
        try:
            return resp.json()
        except ValueError as exc:
            raise UpstreamError(SERVICE, resp.status_code, "response is not JSON") from exc

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    async def create_task(
        self,
        audio_url: str,
        segments: Sequence[SegmentLike],
        task_id: str,
        filename: str,
    ) -> CreatedTask:
        """Mirror a transcribed task into the project as pre-filled predictions.

        Raises:
            ValidationError: segments is empty.
            UpstreamError: the import failed or the created task could not
                be identified.
        """
        if not segments:
            raise ValidationError(
                "No segments available. Task must be transcribed before "
                "creating a Label Studio task."
            )

        items: List[PredictionItem] = []
        for idx, seg in enumerate(segments):
            start, end, text = _segment_fields(seg)
            if not has_valid_bounds(start, end):
                logger.warning(
                    "Skipping segment %d of task %s: invalid bounds start=%r end=%r",
                    idx, task_id, start, end,
                )
                continue
            items.append(PredictionItem(start=start, end=end, text=text))

        predictions: List[Dict[str, Any]] = []
        if items:
            predictions.append({
                "model_version": WHISPER_MODEL,
                "score": PREDICTION_SCORE,
                "result": [item.to_dict() for item in items],
            })

        payload = {
            "data": {"audio": audio_url, "taskId": task_id, "filename": filename},
            "predictions": predictions,
        }

        resp = await self._request("POST", f"/projects/{self.project_id}/import", json=[payload])
        imported = ImportResponse.from_dict(self._json(resp))
        logger.info(
            "Imported task %s into project %s (tasks=%d predictions=%d)",
            task_id, self.project_id, imported.task_count, imported.prediction_count,
        )
        if imported.task_count == 0:
            raise UpstreamError(SERVICE, resp.status_code, "import created no task")

        resp = await self._request(
            "GET",
            f"/projects/{self.project_id}/tasks",
            params={"page_size": self.page_size},
        )
        recent = QueriedTask.list_from_response(self._json(resp))
        chosen = select_created_task(recent, task_id)
        if chosen is None:
            raise UpstreamError(SERVICE, resp.status_code, "Failed to resolve task ID after import")

        if chosen.internal_id != task_id:
            logger.warning(
                "No recent task carries internal id %s; falling back to task %s",
                task_id, chosen.id,
            )
        elif chosen.total_predictions == 0:
            logger.warning("Task %s was created without predictions", chosen.id)

        return CreatedTask(id=chosen.id, url=self.task_url(chosen.id))

    async def get_task(self, external_task_id: int) -> Dict[str, Any]:
        resp = await self._request("GET", f"/tasks/{external_task_id}")
        return self._json(resp)

    async def get_annotations(self, external_task_id: int) -> List[Dict[str, Any]]:
        resp = await self._request("GET", f"/tasks/{external_task_id}/annotations")
        return validate_annotations(self._json(resp))

    async def update_task(self, external_task_id: int, changes: Dict[str, Any]) -> Dict[str, Any]:
        resp = await self._request("PATCH", f"/tasks/{external_task_id}", json=changes)
        return self._json(resp)

    async def delete_task(self, external_task_id: int) -> bool:
        """Delete a task. Returns False when it was already gone."""
        resp = await self._request(
            "DELETE", f"/tasks/{external_task_id}", allow_not_found=True
        )
        if resp.status_code == 404:
            logger.info("Label Studio task %s already deleted", external_task_id)
            return False
        logger.info("Deleted Label Studio task %s", external_task_id)
        return True

    async def get_project(self) -> Dict[str, Any]:
        resp = await self._request("GET", f"/projects/{self.project_id}")
        return self._json(resp)

    # ------------------------------------------------------------------
    # Annotation parsing
    # ------------------------------------------------------------------

    @staticmethod
    def parse_annotations(annotations: Sequence[Dict[str, Any]]) -> List[Segment]:
        """Turn reviewer annotations into segments.

        Cancelled annotations are ignored. Of the rest, the newest by
        created_at is used when every one carries a timestamp; otherwise
        the last in returned order. Regions keep their order; regions with
        invalid bounds are dropped.
        """
        active = [a for a in annotations if not a.get("was_cancelled")]
        if not active:
            return []
        chosen = _latest_annotation(active)

        regions = [
            r for r in (chosen.get("result") or [])
            if r.get("type") == "textarea"
            and r.get("from_name") == TRANSCRIPTION_FIELD
            and "start" in (r.get("value") or {})
        ]

        segments: List[Segment] = []
        for idx, region in enumerate(regions):
            value = region["value"]
            start = value.get("start") or 0
            end = value.get("end") or 0
            text = value.get("text")
            if isinstance(text, list):
                text = text[0] if text else ""
            if not has_valid_bounds(start, end):
                logger.warning(
                    "Dropping annotated region %s: invalid bounds start=%r end=%r",
                    region.get("id"), start, end,
                )
                continue
            segments.append(Segment(
                id=str(region.get("id") or f"s{idx + 1}"),
                start=float(start),
                end=float(end),
                text=str(text or ""),
            ))
        return segments


def _latest_annotation(annotations: List[Dict[str, Any]]) -> Dict[str, Any]:
    stamps = [parse_timestamp(a.get("created_at")) for a in annotations]
    if all(stamps):
        newest = max(range(len(annotations)), key=lambda i: (stamps[i], i))
        return annotations[newest]
    return annotations[-1]
