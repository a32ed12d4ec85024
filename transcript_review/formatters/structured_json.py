"""Structured JSON export of a whole task.

WHY: Downstream tools (and regression tests) need the complete reviewed
record, not just the subtitle text, and need it byte-for-byte
reproducible.

HOW: Builds a dict with a fixed key order and serializes it with a fixed
indent. Timestamps are rendered as ISO 8601 UTC strings.

RULES:
- Key order: id, filename, duration, status, segments, sttRaw,
  createdAt, updatedAt, metadata
- Missing segments render as [], missing sttRaw as null, missing metadata as {}
- Media type: "application/json"
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from transcript_review.core.models import Task
from transcript_review.formatters.base import BaseFormatter


def _iso(ts: Optional[float]) -> Optional[str]:
    if not ts:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).isoformat()


def render_structured(task: Task) -> str:
    """Serialize the task's reviewable fields deterministically."""
    payload: Dict[str, Any] = {
        "id": task.id,
        "filename": task.filename,
        "duration": task.duration,
        "status": task.status.value,
        "segments": [seg.to_dict() for seg in task.segments],
        "sttRaw": task.stt_raw,
        "createdAt": _iso(task.created_at),
        "updatedAt": _iso(task.updated_at),
        "metadata": task.metadata or {},
    }
    return json.dumps(payload, indent=2, ensure_ascii=False)


class StructuredJSONFormatter(BaseFormatter):

    @property
    def name(self) -> str:
        return "Structured JSON"

    @property
    def extension(self) -> str:
        return ".json"

    @property
    def media_type(self) -> str:
        return "application/json"

    def render(self, task: Task) -> str:
        return render_structured(task)
