"""Review sync: connects stored tasks with their Label Studio mirrors.

WHY: The HTTP layer needs a handful of task-level operations that touch
both the task store and Label Studio: create the mirror, pull reviewed
segments back, look up or remove the mirror, and delete everything that
belongs to a task. Keeping them here makes them testable without HTTP.

HOW: ReviewSync holds the task store, the blob store and an optional
LabelStudioClient. Every method loads the task first (NotFoundError when
absent), then talks to Label Studio, then writes the store.

RULES:
- create_external() never creates a second mirror for the same task
- sync_annotations() reports "nothing to sync" as SyncResult(synced=False)
- unlink_external() and delete_task() tolerate a mirror that is already gone
- Label Studio is optional; operations that need it raise ValidationError
  when it is not configured
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

from transcript_review.config import LABEL_STUDIO_URL
from transcript_review.core.models import Task, TaskStatus
from transcript_review.errors import NotFoundError, ValidationError
from transcript_review.labelstudio.client import LabelStudioClient
from transcript_review.pipeline.deletion import CleanupOutcome, DeletionReport, run_cleanup
from transcript_review.pipeline.orchestrator import peaks_key
from transcript_review.storage.blobs import BlobStore, resolve_storage_path
from transcript_review.storage.tasks import TaskStore

logger = logging.getLogger(__name__)


@dataclass
class ExternalLink:
    external_task_id: int
    external_task_url: str
    created: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "external_task_id": self.external_task_id,
            "external_task_url": self.external_task_url,
            "created": self.created,
        }


@dataclass
class SyncResult:
    synced: bool
    message: str
    segment_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "synced": self.synced,
            "message": self.message,
            "segment_count": self.segment_count,
        }


class ReviewSync:
    def __init__(
        self,
        store: TaskStore,
        blobs: BlobStore,
        label_studio: Optional[LabelStudioClient] = None,
    ) -> None:
        self.store = store
        self.blobs = blobs
        self.label_studio = label_studio

    def _get(self, task_id: str) -> Task:
        task = self.store.get_task(task_id)
        if task is None:
            raise NotFoundError(f"Task not found: {task_id}")
        return task

    def _require_label_studio(self) -> LabelStudioClient:
        if self.label_studio is None:
            raise ValidationError(
                "Label Studio is not configured. Set LABEL_STUDIO_API_KEY in the .env file."
            )
        return self.label_studio

    # ------------------------------------------------------------------
    # Mirror
    # ------------------------------------------------------------------

    async def create_external(self, task_id: str) -> ExternalLink:
        """Mirror a transcribed task into Label Studio, once."""
        task = self._get(task_id)
        if not task.segments:
            raise ValidationError(
                "Task has no segments. Task must be transcribed before creating a "
                f"Label Studio task. Current status: {task.status.value}"
            )

        if task.external_task_id is not None:
            logger.info("Task %s already mirrored as %s", task_id, task.external_task_id)
            return ExternalLink(
                external_task_id=task.external_task_id,
                external_task_url=task.external_task_url or _default_url(task.external_task_id),
                created=False,
            )

        ls = self._require_label_studio()
        created = await ls.create_task(
            audio_url=task.audio_url,
            segments=task.segments,
            task_id=task.id,
            filename=task.filename,
        )
        self.store.update_task(
            task_id,
            {"external_task_id": created.id, "external_task_url": created.url},
        )
        logger.info("Task %s mirrored as Label Studio task %s", task_id, created.id)
        return ExternalLink(created.id, created.url, created=True)

    async def sync_annotations(self, task_id: str) -> SyncResult:
        """Replace the task's segments with the reviewer's corrections."""
        task = self._get(task_id)
        if task.external_task_id is None:
            raise ValidationError(f"Task {task_id} does not have a Label Studio task")

        ls = self._require_label_studio()
        annotations = await ls.get_annotations(task.external_task_id)
        if not annotations:
            return SyncResult(False, "No annotations found in Label Studio")

        segments = ls.parse_annotations(annotations)
        if not segments:
            return SyncResult(False, "No valid segments found in annotations")

        self.store.update_task(task_id, {
            "segments": segments,
            "status": TaskStatus.REVIEWED,
            "reviewed_at": time.time(),
        })
        logger.info("Synced %d segments from Label Studio for task %s", len(segments), task_id)
        return SyncResult(True, "Annotations synced successfully", len(segments))

    def external_link(self, task_id: str) -> ExternalLink:
        task = self._get(task_id)
        if task.external_task_id is None:
            raise NotFoundError(f"Task {task_id} does not have a Label Studio task")
        return ExternalLink(
            external_task_id=task.external_task_id,
            external_task_url=task.external_task_url or _default_url(task.external_task_id),
        )

    async def unlink_external(self, task_id: str) -> bool:
        """Delete the mirror (best effort) and clear the link.

        Returns False when the task no longer exists.
        """
        task = self.store.get_task(task_id)
        if task is None:
            logger.info("Task %s not found, nothing to unlink", task_id)
            return False

        if task.external_task_id is not None:
            try:
                await self._require_label_studio().delete_task(task.external_task_id)
            except Exception as exc:
                logger.warning(
                    "Failed to delete Label Studio task %s: %s", task.external_task_id, exc
                )

        self.store.update_task(task_id, {"external_task_id": None, "external_task_url": None})
        return True

    # ------------------------------------------------------------------
    # Deletion
    # ------------------------------------------------------------------

    async def delete_task(self, task_id: str) -> DeletionReport:
        """Remove the mirror, the blobs and the record, in that order."""
        task = self.store.get_task(task_id)

        async def delete_external() -> CleanupOutcome:
            if task is None or task.external_task_id is None:
                return CleanupOutcome.ALREADY_GONE
            deleted = await self._require_label_studio().delete_task(task.external_task_id)
            return CleanupOutcome.DONE if deleted else CleanupOutcome.ALREADY_GONE

        async def delete_audio() -> CleanupOutcome:
            key = None
            if task is not None:
                key = task.storage_path or resolve_storage_path(task.audio_url)
            return self._delete_blob(key)

        async def delete_peaks() -> CleanupOutcome:
            key = peaks_key(task.project_id, task.id) if task is not None else None
            return self._delete_blob(key)

        async def delete_record() -> CleanupOutcome:
            removed = self.store.delete_task(task_id)
            return CleanupOutcome.DONE if removed else CleanupOutcome.ALREADY_GONE

        return await run_cleanup(task_id, [
            ("external_task", delete_external),
            ("audio_blob", delete_audio),
            ("peaks_blob", delete_peaks),
            ("task_record", delete_record),
        ])

    def _delete_blob(self, key: Optional[str]) -> CleanupOutcome:
        if not key:
            return CleanupOutcome.ALREADY_GONE
        return CleanupOutcome.DONE if self.blobs.delete(key) else CleanupOutcome.ALREADY_GONE


def _default_url(external_task_id: int) -> str:
    return f"{LABEL_STUDIO_URL}/tasks/{external_task_id}"
