"""SubRip (SRT) subtitle formatter.

WHY: SRT is the lowest common denominator for subtitle import in video
editors and players.

HOW: One numbered cue per segment, ``HH:MM:SS,mmm`` timestamps, speaker
rendered as a ``[SPEAKER] `` prefix. Cues are separated by a blank line.

RULES:
- 1-based cue numbers in segment order
- Empty segment list renders as an empty string
- Media type: "application/x-subrip"
"""

from __future__ import annotations

from typing import Sequence

from transcript_review.core.models import Segment, Task
from transcript_review.formatters.base import BaseFormatter, to_subtitle_timestamp


def render_srt(segments: Sequence[Segment]) -> str:
    """Render segments as an SRT document."""
    if not segments:
        return ""

    cues = []
    for index, seg in enumerate(segments, start=1):
        speaker = "[{}] ".format(seg.speaker) if seg.speaker else ""
        cues.append("{}\n{} --> {}\n{}{}\n".format(
            index,
            to_subtitle_timestamp(seg.start, ","),
            to_subtitle_timestamp(seg.end, ","),
            speaker,
            seg.text or "",
        ))
    return "\n".join(cues)


class SRTFormatter(BaseFormatter):

    @property
    def name(self) -> str:
        return "SubRip (SRT)"

    @property
    def extension(self) -> str:
        return ".srt"

    @property
    def media_type(self) -> str:
        return "application/x-subrip"

    def render(self, task: Task) -> str:
        return render_srt(task.segments)
