"""Media duration probe.

WHY: The task record shows the audio length before the transcript
arrives, and the speech-to-text response does not always include it.

HOW: Runs ``ffprobe`` asking only for ``format=duration`` and parses the
single number it prints.

RULES:
- Returns None when the duration is unknown (probe failed, no binary,
  unparsable output); an unknown duration is never fatal
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


def probe_duration(audio_path: Path) -> Optional[float]:
    """Return the audio duration in seconds, or None if it can't be determined."""
    cmd = [
        "ffprobe",
        "-v", "error",
        "-show_entries", "format=duration",
        "-of", "default=noprint_wrappers=1:nokey=1",
        str(audio_path),
    ]
    try:
        proc = subprocess.run(cmd, capture_output=True, text=True, check=False)
    except OSError as exc:
        logger.warning("ffprobe unavailable for %s: %s", audio_path, exc)
        return None

    if proc.returncode != 0:
        logger.warning("ffprobe failed for %s: %s", audio_path, proc.stderr.strip())
        return None

    try:
        duration = float((proc.stdout or "").strip())
    except ValueError:
        return None
    return duration if duration > 0 else None
