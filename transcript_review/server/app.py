"""FastAPI application: upload, task state, export and Label Studio review.

WHY: The review UI and scripts need an HTTP API to upload audio, watch
tasks move through transcription, hand them to reviewers in Label
Studio, pull corrections back and download subtitle/transcript files.

HOW: One FastAPI app with endpoints grouped by tag. POST /tasks stores
the upload in the blob store, creates a queued task and runs the
TranscriptionOrchestrator in the background. Label Studio routes go
through ReviewSync. Package errors, request validation failures and
unexpected exceptions are all turned into ``{"code", "detail"}``
responses by exception handlers.

RULES:
- The task store, blob store and Label Studio client are module-level
  singletons (tests patch them)
- Label Studio is optional; without LABEL_STUDIO_API_KEY its routes
  answer 400
- Background transcription uses FastAPI BackgroundTasks with the
  TASK_TIMEOUT_S ceiling
- Export format is validated before any store access
- Python 3.9+ compatible (no match/case, no PEP 604 unions)
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Annotated, List, Optional

from fastapi import BackgroundTasks, FastAPI, File, Form, Query, Request, UploadFile
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from transcript_review import __version__
from transcript_review.config import (
    DEFAULT_PROJECT_ID,
    EXPORT_FORMATS,
    SUPPORTED_AUDIO_FORMATS,
    TASK_TIMEOUT_S,
)
from transcript_review.core.models import Task
from transcript_review.errors import (
    AuthError,
    NotFoundError,
    StorageError,
    TranscriptReviewError,
    UpstreamError,
    ValidationError,
)
from transcript_review.formatters import FORMATTERS
from transcript_review.labelstudio.client import LabelStudioClient
from transcript_review.monitoring import capture_exception, init_error_tracking
from transcript_review.pipeline import (
    ReviewSync,
    TranscriptionOrchestrator,
    export_batch,
    export_task,
)
from transcript_review.server.models import (
    BatchExportItem,
    BatchExportRequest,
    BatchExportResponse,
    DeletionResponse,
    ErrorResponse,
    ExternalLinkResponse,
    FormatInfo,
    HealthResponse,
    LabelStudioCreateRequest,
    MessageResponse,
    SegmentModel,
    SyncResponse,
    TaskCreatedResponse,
    TaskResponse,
)
from transcript_review.storage import InMemoryTaskStore, LocalBlobStore

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# App and store setup
# ---------------------------------------------------------------------------

task_store = InMemoryTaskStore()
blob_store = LocalBlobStore()
_label_studio: Optional[LabelStudioClient] = None

_ERROR_STATUS = {
    NotFoundError: 404,
    ValidationError: 400,
    UpstreamError: 502,
    AuthError: 502,
    StorageError: 500,
}


def get_label_studio() -> Optional[LabelStudioClient]:
    """Return the shared Label Studio client, or None when not configured."""
    global _label_studio
    if _label_studio is None:
        try:
            _label_studio = LabelStudioClient()
        except ValueError as exc:
            logger.warning("Label Studio disabled: %s", exc)
            return None
    return _label_studio


def _review_sync() -> ReviewSync:
    return ReviewSync(task_store, blob_store, get_label_studio())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start error tracking; close the Label Studio connection pool on shutdown."""
    init_error_tracking()
    yield
    if _label_studio is not None:
        await _label_studio.aclose()


app = FastAPI(
    lifespan=lifespan,
    title="Transcript Review API",
    description=(
        "Upload audio, get speech-to-text segments and a waveform envelope, "
        "review them in Label Studio, and export SRT, WebVTT, plain text "
        "or JSON."
    ),
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)


@app.exception_handler(TranscriptReviewError)
async def _handle_package_error(request: Request, exc: TranscriptReviewError) -> JSONResponse:
    status_code = _ERROR_STATUS.get(type(exc), 500)
    if status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message, exc_info=exc)
        capture_exception(exc, method=request.method, path=request.url.path)
    return JSONResponse(
        status_code=status_code,
        content={"code": exc.code, "detail": exc.message},
    )


def _describe_validation_errors(exc: RequestValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()))
        parts.append(f"{location}: {error.get('msg', 'invalid value')}")
    return "; ".join(parts) or "Invalid request"


@app.exception_handler(RequestValidationError)
async def _handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={"code": "validation_error", "detail": _describe_validation_errors(exc)},
    )


@app.exception_handler(Exception)
async def _handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error("%s %s failed unexpectedly", request.method, request.url.path, exc_info=exc)
    capture_exception(exc, method=request.method, path=request.url.path)
    return JSONResponse(
        status_code=500,
        content={"code": "internal_error", "detail": "Internal server error"},
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _task_to_response(task: Task) -> TaskResponse:
    return TaskResponse(
        id=task.id,
        status=task.status.value,
        filename=task.filename,
        audio_url=task.audio_url,
        storage_path=task.storage_path,
        project_id=task.project_id,
        duration=task.duration,
        segments=[SegmentModel(**seg.to_dict()) for seg in task.segments],
        peaks_url=task.peaks_url,
        external_task_id=task.external_task_id,
        external_task_url=task.external_task_url,
        error=task.error,
        created_at=task.created_at,
        updated_at=task.updated_at,
        reviewed_at=task.reviewed_at,
        metadata=task.metadata,
    )


def _validate_file_extension(filename: str) -> None:
    ext = Path(filename).suffix.lower()
    if ext not in SUPPORTED_AUDIO_FORMATS:
        raise ValidationError(
            "Unsupported file type '{}'. Supported formats: {}".format(
                ext, ", ".join(sorted(SUPPORTED_AUDIO_FORMATS))
            )
        )


def _run_transcription_sync(task_id: str) -> None:
    """Synchronous wrapper for the async orchestrator.

    WHY: FastAPI BackgroundTasks run synchronous callables in a thread
    pool. This wraps the orchestrator run with asyncio.run().
    """
    orchestrator = TranscriptionOrchestrator(task_store, blob_store)
    try:
        asyncio.run(orchestrator.run(task_id, timeout_s=TASK_TIMEOUT_S))
    except Exception as exc:
        # The orchestrator has already written status=error on the task.
        logger.error("Background transcription of task %s failed: %s", task_id, exc)


# ---------------------------------------------------------------------------
# Endpoints: Tasks
# ---------------------------------------------------------------------------


@app.post(
    "/tasks",
    response_model=TaskCreatedResponse,
    status_code=201,
    tags=["tasks"],
    summary="Upload audio and queue transcription",
    description=(
        "Upload an audio file. Returns the task ID immediately; the "
        "transcription runs in the background. Poll GET /tasks/{id}."
    ),
    responses={400: {"model": ErrorResponse, "description": "Unsupported file type"}},
)
async def create_task(
    background_tasks: BackgroundTasks,
    file: Annotated[UploadFile, File(description="Audio file to transcribe")],
    project_id: Annotated[
        str,
        Form(description="Project the task belongs to."),
    ] = DEFAULT_PROJECT_ID,
) -> TaskCreatedResponse:
    # Sanitize filename to prevent path traversal
    filename = Path(file.filename or "upload").name
    _validate_file_extension(filename)

    key = "audio/{}/{}/{}".format(project_id, uuid.uuid4().hex, filename)
    content = await file.read()
    blob_store.upload(key, content, content_type=file.content_type or "application/octet-stream")
    audio_url = blob_store.make_public(key)

    task = task_store.create_task(
        filename=filename,
        audio_url=audio_url,
        storage_path=key,
        project_id=project_id,
    )
    background_tasks.add_task(_run_transcription_sync, task.id)

    return TaskCreatedResponse(id=task.id, status=task.status.value, filename=task.filename)


@app.get(
    "/tasks",
    response_model=List[TaskResponse],
    tags=["tasks"],
    summary="List tasks, newest first",
)
async def list_tasks() -> List[TaskResponse]:
    return [_task_to_response(t) for t in task_store.list_tasks()]


@app.get(
    "/tasks/{task_id}",
    response_model=TaskResponse,
    tags=["tasks"],
    summary="Get task state",
    responses={404: {"model": ErrorResponse, "description": "Task not found"}},
)
async def get_task(task_id: str) -> TaskResponse:
    task = task_store.get_task(task_id)
    if task is None:
        raise NotFoundError("Task not found: {}".format(task_id))
    return _task_to_response(task)


@app.delete(
    "/tasks/{task_id}",
    response_model=DeletionResponse,
    tags=["tasks"],
    summary="Delete a task and everything attached to it",
    description=(
        "Removes the Label Studio mirror, the audio and peaks blobs and the "
        "task record. Parts that are already gone count as success."
    ),
)
async def delete_task(task_id: str) -> DeletionResponse:
    report = await _review_sync().delete_task(task_id)
    return DeletionResponse(**report.to_dict())


# ---------------------------------------------------------------------------
# Endpoints: Export
# ---------------------------------------------------------------------------


@app.get(
    "/export/{task_id}",
    tags=["export"],
    summary="Download a task's transcript in one format",
    responses={
        400: {"model": ErrorResponse, "description": "Unsupported format or no segments"},
        404: {"model": ErrorResponse, "description": "Task not found"},
    },
)
async def export_single(
    task_id: str,
    format: Annotated[str, Query(description="srt, vtt, txt or json")] = "srt",
) -> Response:
    output = export_task(task_store, task_id, format)
    return Response(
        content=output.content,
        media_type=output.media_type,
        headers={"Content-Disposition": 'attachment; filename="{}"'.format(output.filename)},
    )


@app.post(
    "/export/batch",
    response_model=BatchExportResponse,
    tags=["export"],
    summary="Export several tasks at once",
    description="Each task either yields filename + content or an error; one bad ID never fails the batch.",
    responses={400: {"model": ErrorResponse, "description": "Unsupported format"}},
)
async def export_many(body: BatchExportRequest) -> BatchExportResponse:
    items = export_batch(task_store, body.task_ids, body.format)
    return BatchExportResponse(
        format=body.format.lower(),
        items=[BatchExportItem(**item.to_dict()) for item in items],
    )


# ---------------------------------------------------------------------------
# Endpoints: Label Studio
# ---------------------------------------------------------------------------


@app.post(
    "/label-studio/create",
    response_model=ExternalLinkResponse,
    tags=["label-studio"],
    summary="Mirror a transcribed task into Label Studio",
    responses={
        400: {"model": ErrorResponse, "description": "Task has no segments"},
        404: {"model": ErrorResponse, "description": "Task not found"},
        502: {"model": ErrorResponse, "description": "Label Studio call failed"},
    },
)
async def create_label_studio_task(body: LabelStudioCreateRequest) -> ExternalLinkResponse:
    link = await _review_sync().create_external(body.task_id)
    message = (
        "Label Studio task created successfully"
        if link.created
        else "Task already exists in Label Studio"
    )
    return ExternalLinkResponse(**link.to_dict(), message=message)


@app.post(
    "/label-studio/sync/{task_id}",
    response_model=SyncResponse,
    tags=["label-studio"],
    summary="Pull reviewed segments back from Label Studio",
    responses={
        400: {"model": ErrorResponse, "description": "Task has no Label Studio task"},
        404: {"model": ErrorResponse, "description": "Task not found"},
        502: {"model": ErrorResponse, "description": "Label Studio call failed"},
    },
)
async def sync_label_studio_task(task_id: str) -> SyncResponse:
    result = await _review_sync().sync_annotations(task_id)
    return SyncResponse(**result.to_dict())


@app.get(
    "/label-studio/task/{task_id}",
    response_model=ExternalLinkResponse,
    tags=["label-studio"],
    summary="Get the Label Studio task linked to a task",
    responses={404: {"model": ErrorResponse, "description": "Task or link not found"}},
)
async def get_label_studio_task(task_id: str) -> ExternalLinkResponse:
    link = _review_sync().external_link(task_id)
    return ExternalLinkResponse(**link.to_dict())


@app.delete(
    "/label-studio/task/{task_id}",
    response_model=MessageResponse,
    tags=["label-studio"],
    summary="Delete the Label Studio mirror and unlink it",
)
async def delete_label_studio_task(task_id: str) -> MessageResponse:
    found = await _review_sync().unlink_external(task_id)
    if not found:
        return MessageResponse(message="Task not found (may have been already deleted)")
    return MessageResponse(message="Label Studio task deletion completed")


# ---------------------------------------------------------------------------
# Endpoints: Blobs
# ---------------------------------------------------------------------------


@app.get(
    "/blobs/{key:path}",
    tags=["blobs"],
    summary="Serve a public blob (audio or peaks)",
    responses={404: {"model": ErrorResponse, "description": "Blob not found or not public"}},
)
async def get_blob(key: str) -> Response:
    meta = blob_store.metadata(key)
    if not meta.get("public"):
        raise NotFoundError("Object not found: {}".format(key))
    headers = {}
    if meta.get("cache_control"):
        headers["Cache-Control"] = meta["cache_control"]
    return Response(
        content=blob_store.read(key),
        media_type=meta.get("content_type") or "application/octet-stream",
        headers=headers,
    )


# ---------------------------------------------------------------------------
# Endpoints: Formats / Health
# ---------------------------------------------------------------------------


@app.get(
    "/formats",
    response_model=List[FormatInfo],
    tags=["formats"],
    summary="List available export formats",
)
async def list_formats() -> List[FormatInfo]:
    result = []
    for key in EXPORT_FORMATS:
        formatter = FORMATTERS[key]()
        result.append(FormatInfo(
            key=key,
            name=formatter.name,
            extension=formatter.extension,
            media_type=formatter.media_type,
        ))
    return result


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["health"],
    summary="Health check",
    description="Liveness and readiness check for load balancers and orchestrators.",
)
async def health_check() -> HealthResponse:
    return HealthResponse(status="ok", version=__version__)


def run_api(host: str = "0.0.0.0", port: int = 8000) -> None:
    """Entry point for the transcript-review-api console script."""
    import uvicorn
    uvicorn.run(app, host=host, port=port)
