"""Task pipeline: transcription, review sync, deletion and export."""

from transcript_review.pipeline.deletion import CleanupOutcome, DeletionReport, run_cleanup
from transcript_review.pipeline.export import BatchItem, export_batch, export_task, validate_format
from transcript_review.pipeline.orchestrator import (
    TranscriptionOrchestrator,
    map_stt_segments,
    peaks_key,
)
from transcript_review.pipeline.review import ExternalLink, ReviewSync, SyncResult

__all__ = [
    "BatchItem",
    "CleanupOutcome",
    "DeletionReport",
    "ExternalLink",
    "ReviewSync",
    "SyncResult",
    "TranscriptionOrchestrator",
    "export_batch",
    "export_task",
    "map_stt_segments",
    "peaks_key",
    "run_cleanup",
    "validate_format",
]
