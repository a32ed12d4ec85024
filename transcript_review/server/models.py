"""Pydantic request/response models for the HTTP API.

WHY: The FastAPI endpoints need typed schemas for request validation,
response serialization, and automatic OpenAPI documentation.

HOW: Each endpoint has its own response model; request bodies that are
JSON (not multipart) have request models. Task status is exposed as its
string value.

RULES:
- All models use Field(description=...) for OpenAPI documentation
- Python 3.9+ compatible (no PEP 604 unions, use Optional from typing)
- Raw speech-to-text output is not part of TaskResponse; the json export
  carries it
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Shared
# ---------------------------------------------------------------------------


class SegmentModel(BaseModel):
    """One time-bounded span of transcript text."""

    id: str = Field(description="Segment identifier, e.g. 's1'.")
    start: float = Field(description="Start time in seconds.")
    end: float = Field(description="End time in seconds.")
    text: str = Field(description="Segment text.")
    speaker: Optional[str] = Field(default=None, description="Speaker label, if known.")


class ErrorResponse(BaseModel):
    """Standard error response body.

    RULES:
    - code is a short machine-checkable category (not_found, validation_error, ...)
    - detail is always a human-readable error message
    """

    code: str = Field(description="Machine-readable error category.")
    detail: str = Field(description="Human-readable error description.")


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


class TaskResponse(BaseModel):
    """Full state of one task."""

    id: str = Field(description="Unique task identifier.")
    status: str = Field(description="queued, transcribing, transcribed, reviewed or error.")
    filename: str = Field(description="Original uploaded filename.")
    audio_url: str = Field(description="Public URL of the source audio.")
    storage_path: str = Field(description="Blob store key of the source audio.")
    project_id: str = Field(description="Project the task belongs to.")
    duration: Optional[float] = Field(default=None, description="Audio duration in seconds.")
    segments: List[SegmentModel] = Field(default_factory=list, description="Transcript segments in playback order.")
    peaks_url: Optional[str] = Field(default=None, description="Public URL of the waveform peak envelope.")
    external_task_id: Optional[int] = Field(default=None, description="Label Studio task ID.")
    external_task_url: Optional[str] = Field(default=None, description="Label Studio task URL.")
    error: Optional[str] = Field(default=None, description="Failure message, only when status is 'error'.")
    created_at: float = Field(description="Creation timestamp (Unix epoch seconds).")
    updated_at: float = Field(description="Last update timestamp (Unix epoch seconds).")
    reviewed_at: Optional[float] = Field(default=None, description="Time of the last review sync.")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Free-form task metadata.")


class TaskCreatedResponse(BaseModel):
    """Returned when an upload is accepted.

    RULES:
    - status is always 'queued' on creation
    """

    id: str = Field(description="Unique task identifier for polling.")
    status: str = Field(description="Initial task status (always 'queued').")
    filename: str = Field(description="Original uploaded filename.")

    model_config = {"json_schema_extra": {
        "examples": [
            {
                "id": "550e8400e29b41d4a716446655440000",
                "status": "queued",
                "filename": "interview.mp3",
            }
        ]
    }}


class DeletionStep(BaseModel):
    name: str = Field(description="Cleanup step name.")
    outcome: str = Field(description="done, already_gone or failed.")
    detail: Optional[str] = Field(default=None, description="Failure message for failed steps.")


class DeletionResponse(BaseModel):
    """Outcome of each cleanup step of a task deletion."""

    task_id: str = Field(description="The deleted task ID.")
    steps: List[DeletionStep] = Field(description="Cleanup steps in execution order.")
    failed_steps: List[str] = Field(description="Names of steps that failed (best effort).")


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------


class BatchExportRequest(BaseModel):
    task_ids: List[str] = Field(min_length=1, description="Task IDs to export.")
    format: str = Field(default="srt", description="Export format: srt, vtt, txt or json.")


class BatchExportItem(BaseModel):
    """One batch entry: filename + content on success, error otherwise."""

    task_id: str = Field(description="Task ID.")
    filename: Optional[str] = Field(default=None, description="Download filename.")
    content: Optional[str] = Field(default=None, description="Rendered export.")
    error: Optional[str] = Field(default=None, description="Why this task could not be exported.")


class BatchExportResponse(BaseModel):
    format: str = Field(description="Export format used.")
    items: List[BatchExportItem] = Field(description="One entry per requested task, in request order.")


class FormatInfo(BaseModel):
    """Description of an available export format."""

    key: str = Field(description="Format identifier used in export requests.")
    name: str = Field(description="Human-readable format name.")
    extension: str = Field(description="File extension produced (e.g. '.srt').")
    media_type: str = Field(description="Content-Type of the export.")


# ---------------------------------------------------------------------------
# Label Studio
# ---------------------------------------------------------------------------


class LabelStudioCreateRequest(BaseModel):
    task_id: str = Field(description="Task to mirror into Label Studio.")


class ExternalLinkResponse(BaseModel):
    external_task_id: int = Field(description="Label Studio task ID.")
    external_task_url: str = Field(description="Label Studio task URL.")
    created: bool = Field(default=False, description="True if this call created the mirror.")
    message: str = Field(default="", description="Human-readable summary.")


class SyncResponse(BaseModel):
    synced: bool = Field(description="True if segments were replaced by reviewed ones.")
    message: str = Field(description="Human-readable summary.")
    segment_count: int = Field(default=0, description="Number of segments stored.")


class MessageResponse(BaseModel):
    message: str = Field(description="Human-readable summary.")


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(description="Service health status.", json_schema_extra={"example": "ok"})
    version: str = Field(description="API version string.", json_schema_extra={"example": "0.1.0"})
