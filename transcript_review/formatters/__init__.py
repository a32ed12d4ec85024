"""Export formatter registry: pluggable format hub.

WHY: The HTTP export routes, the batch exporter and the CLI need a single
lookup to find the right formatter by name.

HOW: FORMATTERS maps format keys to formatter *classes* (not instances).
Callers instantiate as needed: ``formatter = FORMATTERS["srt"]()``.
content_type() and file_extension() are total lookups that fall back to
plain text for unknown keys.

RULES:
- Keys are the public format names accepted by the export surface
- content_type()/file_extension() never raise
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Dict

from transcript_review.formatters.base import FormatterOutput, format_clock, to_subtitle_timestamp
from transcript_review.formatters.plain_text import PlainTextFormatter, render_plain_text
from transcript_review.formatters.srt import SRTFormatter, render_srt
from transcript_review.formatters.structured_json import StructuredJSONFormatter, render_structured
from transcript_review.formatters.vtt import VTTFormatter, render_vtt

if TYPE_CHECKING:
    from transcript_review.formatters.base import BaseFormatter

FORMATTERS: dict[str, type[BaseFormatter]] = {
    "srt": SRTFormatter,
    "vtt": VTTFormatter,
    "txt": PlainTextFormatter,
    "json": StructuredJSONFormatter,
}

_CONTENT_TYPES: Dict[str, str] = {
    "srt": "application/x-subrip",
    "vtt": "text/vtt",
    "txt": "text/plain",
    "json": "application/json",
}

_EXTENSIONS: Dict[str, str] = {
    "srt": ".srt",
    "vtt": ".vtt",
    "txt": ".txt",
    "json": ".json",
}


def content_type(fmt: str) -> str:
    """MIME type for an export format; "text/plain" when unknown."""
    return _CONTENT_TYPES.get((fmt or "").lower(), "text/plain")


def file_extension(fmt: str) -> str:
    """File extension for an export format; ".txt" when unknown."""
    return _EXTENSIONS.get((fmt or "").lower(), ".txt")


__all__ = [
    "FORMATTERS",
    "FormatterOutput",
    "content_type",
    "file_extension",
    "format_clock",
    "render_plain_text",
    "render_srt",
    "render_structured",
    "render_vtt",
    "to_subtitle_timestamp",
]
