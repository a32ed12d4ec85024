"""Single and batch transcript export.

WHY: Exports are read paths: they either produce the whole rendered file
or a clear error. In a batch, one bad task ID must not cost the caller
the other files.

RULES:
- The format is validated before the store is touched
- A missing task raises NotFoundError, a task without segments ValidationError
- export_batch() turns any per-task failure into an item with ``error`` set
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from transcript_review.config import EXPORT_FORMATS
from transcript_review.errors import NotFoundError, TranscriptReviewError, ValidationError
from transcript_review.formatters import FORMATTERS, FormatterOutput
from transcript_review.monitoring import capture_exception
from transcript_review.storage.tasks import TaskStore

logger = logging.getLogger(__name__)


def validate_format(fmt: str) -> str:
    """Return the normalized format key or raise ValidationError."""
    key = (fmt or "").strip().lower()
    if key not in FORMATTERS:
        raise ValidationError(
            "Invalid format '{}'. Supported formats: {}".format(fmt, ", ".join(EXPORT_FORMATS))
        )
    return key


def export_task(store: TaskStore, task_id: str, fmt: str) -> FormatterOutput:
    key = validate_format(fmt)
    task = store.get_task(task_id)
    if task is None:
        raise NotFoundError(f"Task not found: {task_id}")
    if not task.segments:
        raise ValidationError(f"Task {task_id} has no segments to export")
    return FORMATTERS[key]().format(task)


@dataclass
class BatchItem:
    """One entry of a batch export: content or error, never both."""

    task_id: str
    filename: Optional[str] = None
    content: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        if self.error is not None:
            return {"task_id": self.task_id, "error": self.error}
        return {"task_id": self.task_id, "filename": self.filename, "content": self.content}


def export_batch(store: TaskStore, task_ids: Iterable[str], fmt: str) -> List[BatchItem]:
    key = validate_format(fmt)
    items: List[BatchItem] = []
    for task_id in task_ids:
        try:
            output = export_task(store, task_id, key)
        except TranscriptReviewError as exc:
            logger.info("Batch export skipped task %s: %s", task_id, exc.message)
            items.append(BatchItem(task_id=task_id, error=exc.message))
            continue
        except Exception as exc:
            logger.exception("Batch export failed for task %s", task_id)
            capture_exception(exc, task_id=task_id, stage="export")
            items.append(BatchItem(task_id=task_id, error=str(exc) or type(exc).__name__))
            continue
        items.append(BatchItem(task_id=task_id, filename=output.filename, content=output.content))
    return items
