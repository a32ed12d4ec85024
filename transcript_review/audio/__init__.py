"""Audio analysis: duration probe and waveform peak envelope."""

from transcript_review.audio.peaks import ffmpeg_decode, generate_peaks, synthetic_envelope
from transcript_review.audio.probe import probe_duration

__all__ = ["ffmpeg_decode", "generate_peaks", "probe_duration", "synthetic_envelope"]
