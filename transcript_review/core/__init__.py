"""Core data model: tasks, segments, peak envelopes."""

from transcript_review.core.models import (
    PeakEnvelope,
    Segment,
    Task,
    TaskStatus,
    has_valid_bounds,
)

__all__ = ["PeakEnvelope", "Segment", "Task", "TaskStatus", "has_valid_bounds"]
