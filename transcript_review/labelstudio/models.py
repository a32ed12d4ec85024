"""Label Studio payload schemas and dataclasses.

WHY: Label Studio payloads are free-form JSON. Accessing fields
defensively at every call site hides shape changes until something
breaks far away. Each payload the client sends or receives is instead
declared once here, validated with jsonschema and turned into a typed
dataclass.

HOW: Each dataclass has a JSON Schema (``SCHEMA``) and a ``from_dict``
factory that validates first. A validation failure becomes an
UpstreamError, because a response of unknown shape is a platform fault.
select_created_task() is the pure identity-resolution rule, kept apart
from HTTP so it can be tested on plain dicts.

RULES:
- Required fields are listed in each schema; extra fields are allowed
- from_dict() never returns a half-parsed object
- PredictionItem.to_dict() produces exactly the import payload shape
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

import jsonschema

from transcript_review.config import AUDIO_FIELD, TRANSCRIPTION_FIELD
from transcript_review.errors import UpstreamError

SERVICE = "Label Studio"


def _validate(data: Any, schema: Dict[str, Any], what: str) -> None:
    try:
        jsonschema.validate(instance=data, schema=schema)
    except jsonschema.ValidationError as exc:
        raise UpstreamError(SERVICE, 200, "unexpected {} shape: {}".format(what, exc.message)) from exc


# ---------------------------------------------------------------------------
# Token
# ---------------------------------------------------------------------------


@dataclass
class AccessToken:
    """Short-lived bearer credential. Never persisted.

    expires_at is a reading of the client's monotonic clock.
    """

    value: str
    expires_at: float

    SCHEMA = {
        "type": "object",
        "required": ["access"],
        "properties": {"access": {"type": "string", "minLength": 1}},
    }

    def is_valid(self, now: float) -> bool:
        return now < self.expires_at


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------


@dataclass
class PredictionItem:
    """One pre-filled transcription region of an imported task."""

    start: float
    end: float
    text: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from_name": TRANSCRIPTION_FIELD,
            "to_name": AUDIO_FIELD,
            "type": "textarea",
            "value": {
                "start": self.start,
                "end": self.end,
                "text": [self.text],
            },
        }


@dataclass
class ImportResponse:
    """Counters returned by ``POST /projects/{id}/import``."""

    task_count: int
    prediction_count: int = 0
    annotation_count: int = 0

    SCHEMA = {
        "type": "object",
        "required": ["task_count"],
        "properties": {
            "task_count": {"type": "integer", "minimum": 0},
            "prediction_count": {"type": "integer", "minimum": 0},
            "annotation_count": {"type": "integer", "minimum": 0},
        },
    }

    @classmethod
    def from_dict(cls, data: Any) -> ImportResponse:
        _validate(data, cls.SCHEMA, "import response")
        return cls(
            task_count=data["task_count"],
            prediction_count=data.get("prediction_count", 0),
            annotation_count=data.get("annotation_count", 0),
        )


# ---------------------------------------------------------------------------
# Task query
# ---------------------------------------------------------------------------


@dataclass
class QueriedTask:
    """One entry of ``GET /projects/{id}/tasks``.

    RULES:
    - data is the task's data payload ({} when absent)
    - total_predictions defaults to 0
    - created_at is epoch seconds, 0.0 when absent or unparseable
    """

    id: int
    data: Dict[str, Any] = field(default_factory=dict)
    total_predictions: int = 0
    created_at: float = 0.0

    SCHEMA = {
        "type": "object",
        "required": ["id"],
        "properties": {
            "id": {"type": "integer"},
            "data": {"type": ["object", "null"]},
            "total_predictions": {"type": ["integer", "null"]},
            "created_at": {"type": ["string", "null"]},
        },
    }

    LIST_SCHEMA = {
        "oneOf": [
            {"type": "array"},
            {
                "type": "object",
                "required": ["tasks"],
                "properties": {"tasks": {"type": "array"}},
            },
        ]
    }

    @classmethod
    def from_dict(cls, data: Any) -> QueriedTask:
        _validate(data, cls.SCHEMA, "task")
        return cls(
            id=data["id"],
            data=data.get("data") or {},
            total_predictions=data.get("total_predictions") or 0,
            created_at=parse_timestamp(data.get("created_at")),
        )

    @classmethod
    def list_from_response(cls, payload: Any) -> List[QueriedTask]:
        """Parse the task list; the endpoint answers a bare list or ``{"tasks": [...]}``."""
        _validate(payload, cls.LIST_SCHEMA, "task list")
        items = payload if isinstance(payload, list) else payload["tasks"]
        return [cls.from_dict(item) for item in items]

    @property
    def internal_id(self) -> Optional[str]:
        value = self.data.get("taskId")
        return str(value) if value is not None else None


@dataclass
class CreatedTask:
    """Identity of a task created in Label Studio."""

    id: int
    url: str


def parse_timestamp(value: Optional[str]) -> float:
    if not value:
        return 0.0
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return 0.0
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


def _preference_key(task: QueriedTask) -> tuple:
    return (task.total_predictions > 0, task.created_at)


def select_created_task(tasks: Sequence[QueriedTask], internal_id: str) -> Optional[QueriedTask]:
    """Pick the task an import just created.

    Tasks whose data carries ``internal_id`` are preferred. Among the
    candidates, one with stored predictions wins over one without, then
    the newest wins. With no matching task the same rule runs over all
    tasks; this fallback can pick the wrong task when imports into one
    project overlap.
    """
    matching = [t for t in tasks if t.internal_id == internal_id]
    candidates = matching or list(tasks)
    if not candidates:
        return None
    return max(candidates, key=_preference_key)


# ---------------------------------------------------------------------------
# Annotations
# ---------------------------------------------------------------------------

ANNOTATION_LIST_SCHEMA = {
    "type": "array",
    "items": {
        "type": "object",
        "properties": {
            "was_cancelled": {"type": ["boolean", "null"]},
            "result": {"type": ["array", "null"]},
            "created_at": {"type": ["string", "null"]},
        },
    },
}


def validate_annotations(payload: Any) -> List[Dict[str, Any]]:
    _validate(payload, ANNOTATION_LIST_SCHEMA, "annotation list")
    return payload
