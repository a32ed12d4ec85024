"""Transcription orchestrator: queued audio in, transcribed task out.

WHY: Turning an uploaded file into a reviewable task takes several steps
that can each fail (storage lookup, download, probe, speech-to-text).
The task record must end up in exactly one of two outcomes, transcribed
with segments or error with a message, and never half-written.

HOW: run() claims the task with a conditional ``queued → transcribing``
update, then walks the steps:

  resolve key → exists? → download → probe → peaks → publish peaks
  → speech-to-text → map segments → persist

Blocking steps (blob I/O, ffprobe, ffmpeg) run in worker threads so an
optional wall-clock ceiling can cancel the run. A cancelled run still
waits for its in-flight worker threads before removing the scratch file.
Any exception is recorded on the task as ``status=error`` and reported
to error tracking before it is re-raised.

RULES:
- Only QUEUED tasks with an audio_url are processed; anything else is a
  no-op with no store writes
- Losing the claim race is a no-op
- Peak generation never fails the task (see audio.peaks)
- Segments are written only on success, in speech-to-text order
- The scratch file is always removed; removal failures are only logged
"""

from __future__ import annotations

import asyncio
import json
import logging
import tempfile
import threading
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from transcript_review.audio import generate_peaks, probe_duration
from transcript_review.config import PEAKS_CACHE_CONTROL
from transcript_review.core.models import PeakEnvelope, Segment, Task, TaskStatus, has_valid_bounds
from transcript_review.errors import NotFoundError, TranscriptReviewError, ValidationError
from transcript_review.monitoring import capture_exception
from transcript_review.storage.blobs import BlobStore, resolve_storage_path
from transcript_review.storage.tasks import TaskStore
from transcript_review.stt import WhisperClient

logger = logging.getLogger(__name__)

PeakGenerator = Callable[[Path, Optional[float]], PeakEnvelope]
DurationProbe = Callable[[Path], Optional[float]]


def peaks_key(project_id: str, task_id: str) -> str:
    """Blob key of a task's peak envelope."""
    return f"peaks/{project_id}/{task_id}/peaks.json"


def map_stt_segments(raw_segments: Iterable[Dict[str, Any]], task_id: str = "") -> List[Segment]:
    """Map raw speech-to-text segments to Segments.

    IDs follow the raw position (``s1``, ``s2``, ...) so a dropped
    segment leaves a gap instead of renumbering the rest. Missing
    numbers default to 0; segments that then violate 0 <= start < end
    are dropped with a warning.
    """
    segments: List[Segment] = []
    for idx, raw in enumerate(raw_segments):
        start = raw.get("start")
        end = raw.get("end")
        start = 0 if start is None else start
        end = 0 if end is None else end
        if not has_valid_bounds(start, end):
            logger.warning(
                "Dropping speech-to-text segment %d of task %s: start=%r end=%r",
                idx, task_id, start, end,
            )
            continue
        segments.append(Segment(
            id=f"s{idx + 1}",
            start=float(start),
            end=float(end),
            text=str(raw.get("text") or "").strip(),
            speaker=None,
        ))
    return segments


class TranscriptionOrchestrator:
    """Runs the transcription pipeline for one task at a time.

    Args:
        store: Task store providing get_task/transition/update_task.
        blobs: Blob store holding the uploaded audio.
        stt_factory: Returns an async context manager exposing
            ``transcribe(path, filename)``. Called once per run, inside
            the error boundary, so a missing credential fails the task.
        peak_generator: ``(path, duration) -> PeakEnvelope``.
        probe: ``path -> duration or None``.
        scratch_dir: Directory for downloaded audio (system temp dir
            when None).
    """

    def __init__(
        self,
        store: TaskStore,
        blobs: BlobStore,
        stt_factory: Callable[[], Any] = WhisperClient,
        peak_generator: PeakGenerator = generate_peaks,
        probe: DurationProbe = probe_duration,
        scratch_dir: Optional[Path] = None,
    ) -> None:
        self.store = store
        self.blobs = blobs
        self.stt_factory = stt_factory
        self.peak_generator = peak_generator
        self.probe = probe
        self.scratch_dir = Path(scratch_dir) if scratch_dir else Path(tempfile.gettempdir())

    async def run(self, task_id: str, timeout_s: Optional[float] = None) -> Optional[Task]:
        """Process a queued task.

        Returns the transcribed Task, or None when the run was a no-op
        (task missing, not queued, no audio, or claimed by someone else).
        Re-raises the failure after recording it on the task.
        """
        task = self.store.get_task(task_id)
        if task is None:
            logger.warning("Task %s not found, nothing to transcribe", task_id)
            return None
        if task.status != TaskStatus.QUEUED or not task.audio_url:
            logger.info(
                "Skipping task %s (status=%s, audio_url=%s)",
                task_id, task.status.value, "set" if task.audio_url else "missing",
            )
            return None
        if not self.store.transition(task_id, TaskStatus.QUEUED, TaskStatus.TRANSCRIBING):
            logger.info("Task %s was claimed by another worker", task_id)
            return None

        logger.info("Task %s: transcribing %s", task_id, task.filename or task.audio_url)
        scratch = self._scratch_path(task)
        pending: List[threading.Event] = []
        try:
            if timeout_s:
                try:
                    return await asyncio.wait_for(
                        self._process(task, scratch, pending), timeout_s
                    )
                except asyncio.TimeoutError as exc:
                    raise TranscriptReviewError(
                        f"Transcription timed out after {timeout_s:g}s"
                    ) from exc
            return await self._process(task, scratch, pending)
        except Exception as exc:
            logger.exception("Transcription failed for task %s", task_id)
            capture_exception(exc, task_id=task_id, stage="transcription")
            self._record_failure(task_id, exc)
            raise
        finally:
            await asyncio.to_thread(self._settle_and_remove, pending, scratch)

    async def _process(self, task: Task, scratch: Path, pending: List[threading.Event]) -> Task:
        key = task.storage_path or resolve_storage_path(task.audio_url)
        if not key:
            raise ValidationError(
                f"Could not resolve storage path from audio URL: {task.audio_url}"
            )

        exists = await self._offload(pending, self.blobs.exists, key)
        if not exists:
            raise NotFoundError(f"Audio file not found in storage: {key}")

        await self._offload(pending, self.blobs.download, key, scratch)
        duration = await self._offload(pending, self.probe, scratch)
        logger.info("Task %s: downloaded %s (duration=%s)", task.id, key, duration)

        envelope = await self._offload(pending, self.peak_generator, scratch, duration)
        peaks_url = await self._offload(pending, self._publish_peaks, task, envelope)
        logger.info("Task %s: peaks stored at %s", task.id, peaks_url)

        async with self.stt_factory() as stt:
            result = await stt.transcribe(scratch, task.filename or scratch.name)
        segments = map_stt_segments(result.segments, task.id)
        logger.info("Task %s: %d segments transcribed", task.id, len(segments))

        changes: Dict[str, Any] = {
            "status": TaskStatus.TRANSCRIBED,
            "storage_path": key,
            "segments": segments,
            "peaks_url": peaks_url,
            "stt_raw": result.raw,
        }
        final_duration = duration or result.duration
        if task.duration is None and final_duration is not None:
            changes["duration"] = final_duration

        updated = self.store.update_task(task.id, changes)
        if updated is None:
            raise NotFoundError(f"Task {task.id} was deleted during transcription")
        return updated

    def _publish_peaks(self, task: Task, envelope: PeakEnvelope) -> str:
        key = peaks_key(task.project_id, task.id)
        self.blobs.upload(
            key,
            json.dumps(envelope.to_dict()),
            content_type="application/json",
            cache_control=PEAKS_CACHE_CONTROL,
        )
        return self.blobs.make_public(key)

    def _scratch_path(self, task: Task) -> Path:
        suffix = Path(task.filename or task.storage_path or "").suffix
        return self.scratch_dir / f"transcript-review-{task.id}{suffix}"

    def _record_failure(self, task_id: str, exc: Exception) -> None:
        message = exc.message if isinstance(exc, TranscriptReviewError) else str(exc)
        try:
            self.store.update_task(
                task_id,
                {"status": TaskStatus.ERROR, "error": message or type(exc).__name__},
            )
        except Exception:
            logger.exception("Could not record failure on task %s", task_id)

    @staticmethod
    async def _offload(pending: List[threading.Event], func: Callable[..., Any], *args: Any) -> Any:
        """Run func in a worker thread, tracked in pending until it returns."""
        done = threading.Event()
        pending.append(done)

        def call() -> Any:
            try:
                return func(*args)
            finally:
                done.set()

        return await asyncio.to_thread(call)

    @classmethod
    def _settle_and_remove(cls, pending: List[threading.Event], scratch: Path) -> None:
        # A timed-out run leaves its worker thread running; it may still write scratch.
        for done in pending:
            done.wait()
        cls._remove_scratch(scratch)

    @staticmethod
    def _remove_scratch(scratch: Path) -> None:
        try:
            scratch.unlink()
        except FileNotFoundError:
            pass
        except OSError as exc:
            logger.warning("Could not remove scratch file %s: %s", scratch, exc)
