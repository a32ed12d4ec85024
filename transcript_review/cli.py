"""Command-line interface for the transcript review service.

WHY: Operators need to start the API, and it is handy to transcribe a
single local file without the API or Label Studio, e.g. to check STT
credentials or produce subtitles directly.

HOW: argparse with three subcommands:

  serve       run the FastAPI app with uvicorn
  transcribe  run the full pipeline on a local file against a throwaway
              blob store, then write the requested exports and the peak
              envelope next to the input (or to --output-dir)
  project     print the configured Label Studio project

RULES:
- Status output goes to stderr (not stdout); `project` prints JSON to stdout
- transcribe validates the file extension and formats before any API call
- Output naming: {filename}{extension}, numeric suffix on conflict
- Exit code 1 on any error, 130 on Ctrl-C
"""

from __future__ import annotations

import argparse
import asyncio
import json
import shutil
import sys
import tempfile
from pathlib import Path
from typing import List, Optional

from transcript_review.config import (
    EXPORT_FORMATS,
    SUPPORTED_AUDIO_FORMATS,
    configure_logging,
)
from transcript_review.errors import TranscriptReviewError
from transcript_review.formatters import FORMATTERS
from transcript_review.labelstudio.client import LabelStudioClient
from transcript_review.monitoring import init_error_tracking
from transcript_review.pipeline import TranscriptionOrchestrator, peaks_key
from transcript_review.storage import InMemoryTaskStore, LocalBlobStore


def _status(msg: str) -> None:
    """Print a status message to stderr so stdout stays pipeable."""
    print(msg, file=sys.stderr, flush=True)


def _fail(msg: str) -> None:
    print("Error: {}".format(msg), file=sys.stderr)
    sys.exit(1)


def _resolve_output_path(filename: str, output_dir: Path) -> Path:
    """Return output_dir/filename, or filename-2, -3, ... when taken."""
    base_path = output_dir / filename
    if not base_path.exists():
        return base_path

    stem, dot, ext = filename.rpartition(".")
    if not dot:
        stem, ext = filename, ""
    counter = 2
    while True:
        candidate = output_dir / "{}-{}{}{}".format(stem, counter, dot, ext)
        if not candidate.exists():
            return candidate
        counter += 1


def _parse_formats(raw: Optional[str]) -> List[str]:
    if not raw:
        return list(EXPORT_FORMATS)
    keys = [f.strip().lower() for f in raw.split(",") if f.strip()]
    for key in keys:
        if key not in FORMATTERS:
            _fail("Unknown format '{}'. Supported formats: {}".format(
                key, ", ".join(EXPORT_FORMATS)
            ))
    return keys


async def _transcribe(args: argparse.Namespace) -> None:
    input_path = Path(args.input_file).resolve()
    if not input_path.is_file():
        _fail("File not found: {}".format(input_path))

    ext = input_path.suffix.lower()
    if ext not in SUPPORTED_AUDIO_FORMATS:
        _fail("Unsupported file type '{}'. Supported formats: {}".format(
            ext, ", ".join(sorted(SUPPORTED_AUDIO_FORMATS))
        ))

    output_dir = Path(args.output_dir).resolve() if args.output_dir else input_path.parent
    if not output_dir.is_dir():
        _fail("Output directory does not exist: {}".format(output_dir))

    format_keys = _parse_formats(args.formats)

    workdir = Path(tempfile.mkdtemp(prefix="transcript-review-"))
    try:
        blobs = LocalBlobStore(root=workdir / "blobs", public_base_url=workdir.as_uri())
        store = InMemoryTaskStore()

        key = "audio/local/{}".format(input_path.name)
        blobs.upload(key, input_path.read_bytes(), content_type="application/octet-stream")
        task = store.create_task(
            filename=input_path.name,
            audio_url=blobs.public_url(key),
            storage_path=key,
            project_id="local",
        )

        _status("Transcribing {}...".format(input_path.name))
        orchestrator = TranscriptionOrchestrator(store, blobs, scratch_dir=workdir)
        task = await orchestrator.run(task.id)
        _status("  {} segments, duration {}".format(
            len(task.segments),
            "{:.1f}s".format(task.duration) if task.duration else "unknown",
        ))

        saved: List[Path] = []
        for fmt in format_keys:
            output = FORMATTERS[fmt]().format(task)
            path = _resolve_output_path(output.filename, output_dir)
            path.write_text(output.content, encoding="utf-8")
            saved.append(path)

        peaks_path = _resolve_output_path(input_path.name + ".peaks.json", output_dir)
        peaks_path.write_bytes(blobs.read(peaks_key(task.project_id, task.id)))
        saved.append(peaks_path)

        _status("")
        _status("Done! Saved {} file(s) to {}".format(len(saved), output_dir))
        for path in saved:
            _status("  {}".format(path.name))
    finally:
        shutil.rmtree(workdir, ignore_errors=True)


async def _show_project(args: argparse.Namespace) -> None:
    async with LabelStudioClient(project_id=args.project_id) as client:
        project = await client.get_project()
    print(json.dumps(project, indent=2, ensure_ascii=False))


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser (separate from main() for testability)."""
    parser = argparse.ArgumentParser(
        prog="transcript_review",
        description="Transcribe audio, review it in Label Studio, and export "
                    "SRT, WebVTT, plain text or JSON.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (default: LOG_LEVEL from the environment, or INFO).",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API.")
    serve.add_argument("--host", default="0.0.0.0", help="Bind address (default: %(default)s).")
    serve.add_argument("--port", type=int, default=8000, help="Port (default: %(default)s).")

    transcribe = sub.add_parser("transcribe", help="Transcribe a local audio file.")
    transcribe.add_argument("input_file", help="Path to the audio file to transcribe.")
    transcribe.add_argument(
        "--formats",
        default=None,
        help="Comma-separated export formats. Available: {}. Default: all.".format(
            ", ".join(EXPORT_FORMATS)
        ),
    )
    transcribe.add_argument(
        "--output-dir",
        default=None,
        help="Directory to save output files (default: same as input file).",
    )

    project = sub.add_parser("project", help="Show the configured Label Studio project.")
    project.add_argument(
        "--project-id",
        default=None,
        help="Project ID (default: LABEL_STUDIO_PROJECT_ID).",
    )

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for ``python -m transcript_review``.

    argv=None means use sys.argv; explicit argv is for testing.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)
    init_error_tracking()

    if args.command == "serve":
        from transcript_review.server.app import run_api
        run_api(host=args.host, port=args.port)
        return

    handler = _transcribe if args.command == "transcribe" else _show_project
    try:
        asyncio.run(handler(args))
    except KeyboardInterrupt:
        _status("\nCancelled by user.")
        sys.exit(130)
    except (TranscriptReviewError, ValueError) as exc:
        # ValueError covers missing credentials
        _fail(str(exc))


if __name__ == "__main__":
    main()
