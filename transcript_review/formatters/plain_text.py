"""Plain text transcript formatter.

WHY: Reviewers and archivists want a readable transcript without
subtitle syntax, optionally with coarse timestamps for navigation.

HOW: One line per segment. With timestamps each line starts with
``[MM:SS - MM:SS]``; a speaker, when present, follows as ``[SPEAKER]``.

RULES:
- One line per segment, joined with "\\n", no trailing newline
- Timestamps are included by default
- Empty segment list renders as an empty string
- Media type: "text/plain"
"""

from __future__ import annotations

from typing import List, Sequence

from transcript_review.core.models import Segment, Task
from transcript_review.formatters.base import BaseFormatter, format_clock


def render_plain_text(segments: Sequence[Segment], include_timestamps: bool = True) -> str:
    """Render segments as plain text lines."""
    lines: List[str] = []
    for seg in segments:
        speaker = "[{}] ".format(seg.speaker) if seg.speaker else ""
        text = seg.text or ""
        if include_timestamps:
            lines.append("[{} - {}] {}{}".format(
                format_clock(seg.start), format_clock(seg.end), speaker, text,
            ))
        else:
            lines.append("{}{}".format(speaker, text))
    return "\n".join(lines)


class PlainTextFormatter(BaseFormatter):

    def __init__(self, include_timestamps: bool = True) -> None:
        self.include_timestamps = include_timestamps

    @property
    def name(self) -> str:
        return "Plain Text"

    @property
    def extension(self) -> str:
        return ".txt"

    @property
    def media_type(self) -> str:
        return "text/plain"

    def render(self, task: Task) -> str:
        return render_plain_text(task.segments, self.include_timestamps)
