"""WebVTT subtitle formatter.

WHY: Browsers only play ``<track>`` captions in WebVTT.

HOW: Same per-cue shape as SRT but with ``.`` as the millisecond
separator, a mandatory ``WEBVTT`` header, and the speaker rendered as a
voice tag (``<v SPEAKER>``).

RULES:
- Header "WEBVTT\\n\\n" is always present, even with no segments
- Media type: "text/vtt"
"""

from __future__ import annotations

from typing import Sequence

from transcript_review.core.models import Segment, Task
from transcript_review.formatters.base import BaseFormatter, to_subtitle_timestamp

WEBVTT_HEADER = "WEBVTT\n\n"


def render_vtt(segments: Sequence[Segment]) -> str:
    """Render segments as a WebVTT document."""
    if not segments:
        return WEBVTT_HEADER

    cues = []
    for index, seg in enumerate(segments, start=1):
        voice = "<v {}>".format(seg.speaker) if seg.speaker else ""
        cues.append("{}\n{} --> {}\n{}{}\n".format(
            index,
            to_subtitle_timestamp(seg.start, "."),
            to_subtitle_timestamp(seg.end, "."),
            voice,
            seg.text or "",
        ))
    return WEBVTT_HEADER + "\n".join(cues)


class VTTFormatter(BaseFormatter):

    @property
    def name(self) -> str:
        return "WebVTT"

    @property
    def extension(self) -> str:
        return ".vtt"

    @property
    def media_type(self) -> str:
        return "text/vtt"

    def render(self, task: Task) -> str:
        return render_vtt(task.segments)
