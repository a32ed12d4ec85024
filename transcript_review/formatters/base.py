"""Abstract base formatter, output container, and shared timestamp helpers.

WHY: Every export format consumes the same Task but produces different
text. This base class gives the HTTP layer, the batch exporter and the
CLI one interface for all of them.

HOW: BaseFormatter is an ABC requiring ``name``, ``extension``,
``media_type`` and ``render()``. ``format()`` wraps the rendered text in a
FormatterOutput together with the download filename. The timestamp
helpers live here because two formatters share them with different
fractional separators.

RULES:
- Formatters never reorder segments
- Formatters never mutate the Task
- Filename is "{task.filename or task.id}{extension}"
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass

from transcript_review.core.models import Task


@dataclass
class FormatterOutput:
    """One rendered export.

    Attributes:
        filename: Download filename, e.g. ``"interview.mp3.srt"``.
        content: The rendered text.
        media_type: MIME type for the Content-Type header.
    """

    filename: str
    content: str
    media_type: str


def to_subtitle_timestamp(seconds: float, fractional_separator: str) -> str:
    """Render seconds as ``HH:MM:SS<sep>mmm``.

    Hours, minutes and seconds are floored; milliseconds are the floored
    fractional part times 1000 (truncation, not rounding).

    >>> to_subtitle_timestamp(3661.25, ",")
    '01:01:01,250'
    """
    hours = math.floor(seconds / 3600)
    minutes = math.floor((seconds % 3600) / 60)
    secs = math.floor(seconds % 60)
    millis = math.floor((seconds % 1) * 1000)
    return "{:02d}:{:02d}:{:02d}{}{:03d}".format(
        hours, minutes, secs, fractional_separator, millis
    )


def format_clock(seconds: float) -> str:
    """Render seconds as ``MM:SS`` for plain-text timestamps."""
    minutes = math.floor(seconds / 60)
    secs = math.floor(seconds % 60)
    return "{:02d}:{:02d}".format(minutes, secs)


class BaseFormatter(ABC):
    """Abstract base for all export formatters.

    To add a new export format:
    1. Create a new module in formatters/
    2. Subclass BaseFormatter and implement the abstract members
    3. Register it in FORMATTERS in formatters/__init__.py
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable format name, e.g. 'SubRip (SRT)'."""

    @property
    @abstractmethod
    def extension(self) -> str:
        """File extension including the dot, e.g. '.srt'."""

    @property
    @abstractmethod
    def media_type(self) -> str:
        """MIME type of the rendered content."""

    @abstractmethod
    def render(self, task: Task) -> str:
        """Render the task's transcript as text."""

    def format(self, task: Task) -> FormatterOutput:
        return FormatterOutput(
            filename="{}{}".format(task.filename or task.id, self.extension),
            content=self.render(task),
            media_type=self.media_type,
        )
