"""Waveform peak envelope generation.

WHY: The review UI draws a waveform next to the segments. Decoding the
full audio in the browser is slow for long files, so a small fixed-length
envelope is precomputed and stored next to the audio.

HOW: A decoder turns the audio file into mono float PCM resampled to
``samples`` Hz (by default ffmpeg: ``aformat`` + ``aresample`` into an
``f32le`` stream read with numpy). The absolute values, in arrival order,
are clamped to exactly ``samples`` entries by truncation or zero padding.
The decoder is injectable so the failure branch is testable without
real audio.

RULES:
- The result always has length == samples and every value in [0, 1]
- Decode failure of any kind is logged and replaced by a synthetic
  envelope of uniform values in [0.25, 0.75]; it never raises
- The waveform is cosmetic: it must never fail a transcription
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Callable, Optional, Sequence

import numpy as np

from transcript_review.config import PEAK_SAMPLES
from transcript_review.core.models import PeakEnvelope

logger = logging.getLogger(__name__)

Decoder = Callable[[Path, int], Sequence[float]]
"""(audio_path, sample_rate) -> mono float PCM samples."""

_SYNTHETIC_LOW = 0.25
_SYNTHETIC_HIGH = 0.75


def ffmpeg_decode(audio_path: Path, sample_rate: int) -> np.ndarray:
    """Decode an audio file to mono float32 PCM at ``sample_rate`` Hz.

    Raises RuntimeError when ffmpeg exits non-zero and OSError when the
    binary is missing.
    """
    cmd = [
        "ffmpeg",
        "-v", "error",
        "-i", str(audio_path),
        "-af", "aformat=channel_layouts=mono,aresample=resampler=swr:osr={}".format(sample_rate),
        "-f", "f32le",
        "-",
    ]
    proc = subprocess.run(cmd, capture_output=True, check=False)
    if proc.returncode != 0:
        stderr = proc.stderr.decode("utf-8", errors="replace").strip()
        raise RuntimeError("ffmpeg decode failed ({}): {}".format(proc.returncode, stderr))
    usable = len(proc.stdout) - (len(proc.stdout) % 4)
    return np.frombuffer(proc.stdout[:usable], dtype="<f4")


def synthetic_envelope(samples: int, rng: Optional[np.random.Generator] = None) -> PeakEnvelope:
    """Placeholder envelope used when the audio cannot be decoded."""
    rng = rng or np.random.default_rng()
    values = rng.uniform(_SYNTHETIC_LOW, _SYNTHETIC_HIGH, size=samples)
    return PeakEnvelope(data=[float(v) for v in values], length=samples)


def generate_peaks(
    audio_path: Path,
    duration: Optional[float] = None,
    samples: int = PEAK_SAMPLES,
    decoder: Decoder = ffmpeg_decode,
    rng: Optional[np.random.Generator] = None,
) -> PeakEnvelope:
    """Compute the peak envelope for an audio file.

    Args:
        audio_path: Local path of the audio file.
        duration: Probed duration in seconds, None/0 when unknown. Only
            used for logging; the envelope length is fixed by ``samples``.
        samples: Envelope length, also used as the resample rate.
        decoder: Callable producing mono float PCM.
        rng: Random generator for the synthetic fallback.

    Returns:
        PeakEnvelope with exactly ``samples`` values.
    """
    try:
        pcm = np.asarray(decoder(Path(audio_path), samples), dtype=np.float64)
    except Exception as exc:
        logger.warning(
            "Peak generation failed for %s, using synthetic envelope: %s",
            audio_path, exc,
        )
        return synthetic_envelope(samples, rng)

    frames = np.nan_to_num(pcm[:samples], nan=0.0, posinf=1.0, neginf=-1.0)
    peaks = np.clip(np.abs(frames), 0.0, 1.0)
    if peaks.size < samples:
        peaks = np.concatenate([peaks, np.zeros(samples - peaks.size)])

    logger.info(
        "Generated %d peaks for %s (decoded %d frames, duration=%s)",
        samples, audio_path, pcm.size, duration,
    )
    return PeakEnvelope(data=[float(v) for v in peaks], length=samples)
