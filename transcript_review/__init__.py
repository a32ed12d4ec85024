"""Transcript Review: audio transcription with human review in Label Studio.

WHY: Machine transcripts need a human pass before they can be published as
subtitles. This package turns an uploaded audio file into time-coded
segments, mirrors them into Label Studio for correction, pulls the
corrected segments back, and exports them as SRT, VTT, text or JSON.

HOW: Four stages, each independently testable: analyse (probe, waveform
peaks, speech-to-text), mirror (Label Studio client), sync (annotations
back into the task record), export (pluggable formatters).

RULES:
- Segment order is playback order at every stage, never re-sorted
- The task store's conditional status update is the only claim mechanism
- Only the waveform peak decode swallows its own errors
"""

__version__ = "0.1.0"
