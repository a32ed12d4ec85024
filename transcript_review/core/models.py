"""Task, segment and peak-envelope dataclasses.

WHY: The pipeline, the Label Studio client, the stores and the exporters
all exchange the same three shapes. Typed dataclasses make the contract
explicit and keep validation of segment bounds in one place.

HOW: Four types:
  TaskStatus    the five lifecycle states and the allowed transitions
  Segment       one time-bounded span of text
  PeakEnvelope  fixed-length normalized amplitude series
  Task          one audio file's job record

RULES:
- Segment invariant: 0 <= start < end, both real numbers (bool is not a number)
- Segments are stored and returned in insertion order, never sorted
- PeakEnvelope.length always equals len(data)
- error is the only terminal status; nothing leaves it automatically
"""

from __future__ import annotations

import enum
import math
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional


class TaskStatus(str, enum.Enum):
    """Lifecycle states of a task.

    Inherits from str so values serialize cleanly to JSON and compare
    equal to their raw string form.
    """

    QUEUED = "queued"
    TRANSCRIBING = "transcribing"
    TRANSCRIBED = "transcribed"
    REVIEWED = "reviewed"
    ERROR = "error"

    def can_transition_to(self, new: TaskStatus) -> bool:
        """Return True if moving from this status to ``new`` is allowed.

        Forward moves (and staying put, e.g. re-syncing a reviewed task)
        are allowed; ``error`` is reachable from every other state and is
        itself terminal.
        """
        if self is TaskStatus.ERROR:
            return new is TaskStatus.ERROR
        if new is TaskStatus.ERROR:
            return True
        return _STATUS_RANK[new] >= _STATUS_RANK[self]


_STATUS_RANK = {
    TaskStatus.QUEUED: 0,
    TaskStatus.TRANSCRIBING: 1,
    TaskStatus.TRANSCRIBED: 2,
    TaskStatus.REVIEWED: 3,
}


def is_number(value: Any) -> bool:
    """True for finite ints/floats; bools and NaN/inf are rejected."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def has_valid_bounds(start: Any, end: Any) -> bool:
    """Check the segment invariant ``0 <= start < end`` on raw values."""
    return is_number(start) and is_number(end) and 0 <= start < end


@dataclass
class Segment:
    """One time-bounded span of transcribed text.

    RULES:
    - start/end: float seconds from the beginning of the audio
    - speaker: carried through untouched; never computed here
    """

    id: str
    start: float
    end: float
    text: str
    speaker: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Segment:
        """Build a Segment from a stored dict, rejecting invalid bounds."""
        start = data.get("start")
        end = data.get("end")
        if not has_valid_bounds(start, end):
            raise ValueError(
                "Invalid segment bounds: start={!r} end={!r}".format(start, end)
            )
        return cls(
            id=str(data.get("id", "")),
            start=float(start),
            end=float(end),
            text=str(data.get("text") or ""),
            speaker=data.get("speaker"),
        )


@dataclass
class PeakEnvelope:
    """Downsampled waveform used to draw the audio without decoding it client-side."""

    data: List[float]
    length: int

    def to_dict(self) -> Dict[str, Any]:
        return {"data": list(self.data), "length": self.length}


@dataclass
class Task:
    """One audio file's transcription job and its review state.

    RULES:
    - id is assigned by the task store at creation
    - storage_path may be empty; the orchestrator then derives it from audio_url
    - duration is written once and never changed afterwards
    - external_task_id/external_task_url are None until a mirror exists
    - error is only meaningful when status is ERROR
    - created_at/updated_at/reviewed_at are epoch seconds set by the store
    """

    id: str
    status: TaskStatus
    filename: str = ""
    audio_url: str = ""
    storage_path: str = ""
    project_id: str = "default"
    duration: Optional[float] = None
    segments: List[Segment] = field(default_factory=list)
    peaks_url: Optional[str] = None
    stt_raw: Optional[Dict[str, Any]] = None
    external_task_id: Optional[int] = None
    external_task_url: Optional[str] = None
    error: Optional[str] = None
    created_at: float = 0.0
    updated_at: float = 0.0
    reviewed_at: Optional[float] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["status"] = self.status.value
        return data
