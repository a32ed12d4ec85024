"""Tests for the transcription orchestrator.

WHY: Every run must end in exactly one of two states (transcribed with
segments, or error with a message) and never write anything for a task
it does not own. These tests drive the whole pipeline against real
stores with the speech-to-text service, the probe and the peak generator
replaced by fakes.

HOW: FakeSTT is an async context manager returning a canned
TranscriptionResult. The orchestrator receives it through stt_factory.
Scratch files go to pytest's tmp_path so their removal can be checked.
"""

from __future__ import annotations

import asyncio
import functools
import json
import time
from unittest.mock import MagicMock, patch

import pytest

from transcript_review.audio import generate_peaks
from transcript_review.core.models import PeakEnvelope, Segment, TaskStatus
from transcript_review.errors import NotFoundError, TranscriptReviewError, UpstreamError, ValidationError
from transcript_review.pipeline import TranscriptionOrchestrator, map_stt_segments, peaks_key
from transcript_review.stt import TranscriptionResult

AUDIO_KEY = "audio/default/abc/talk.mp3"

STT_RESPONSE = {
    "duration": 8.0,
    "text": "One. Two.",
    "segments": [
        {"id": 0, "start": 0.0, "end": 3.0, "text": " One."},
        {"id": 1, "start": 3.0, "end": 8.0, "text": " Two. "},
    ],
}


class FakeSTT:
    """Async-context-manager stand-in for WhisperClient."""

    def __init__(self, response=None, error=None, delay=0.0):
        self.response = response if response is not None else STT_RESPONSE
        self.error = error
        self.delay = delay
        self.calls = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return None

    async def transcribe(self, audio_path, filename=None):
        self.calls.append((audio_path, filename, audio_path.exists()))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return TranscriptionResult.from_dict(self.response)


def _flat_peaks(path, duration):
    return PeakEnvelope(data=[0.5] * 4, length=4)


@pytest.fixture
def stt():
    return FakeSTT()


@pytest.fixture
def orchestrator(task_store, blob_store, stt, tmp_path):
    return TranscriptionOrchestrator(
        task_store,
        blob_store,
        stt_factory=lambda: stt,
        peak_generator=_flat_peaks,
        probe=lambda path: 8.25,
        scratch_dir=tmp_path / "scratch",
    )


@pytest.fixture
def queued_task(task_store, blob_store):
    blob_store.upload(AUDIO_KEY, b"ID3audio", "audio/mpeg")
    url = blob_store.make_public(AUDIO_KEY)
    return task_store.create_task("talk.mp3", url, storage_path=AUDIO_KEY)


def _scratch_files(tmp_path):
    scratch = tmp_path / "scratch"
    return list(scratch.iterdir()) if scratch.exists() else []


# ---------------------------------------------------------------------------
# Success path
# ---------------------------------------------------------------------------


class TestSuccess:
    def test_transcribes_queued_task(self, orchestrator, queued_task, task_store):
        result = asyncio.run(orchestrator.run(queued_task.id))

        assert result.status == TaskStatus.TRANSCRIBED
        stored = task_store.get_task(queued_task.id)
        assert stored.status == TaskStatus.TRANSCRIBED
        assert stored.segments == [
            Segment("s1", 0.0, 3.0, "One."),
            Segment("s2", 3.0, 8.0, "Two."),
        ]
        assert stored.duration == 8.25
        assert stored.stt_raw == STT_RESPONSE
        assert stored.error is None
        assert stored.storage_path == AUDIO_KEY

    def test_peaks_are_published(self, orchestrator, queued_task, task_store, blob_store):
        asyncio.run(orchestrator.run(queued_task.id))

        key = peaks_key("default", queued_task.id)
        stored = task_store.get_task(queued_task.id)
        assert stored.peaks_url == blob_store.public_url(key)
        assert json.loads(blob_store.read(key)) == {"data": [0.5] * 4, "length": 4}
        meta = blob_store.metadata(key)
        assert meta["content_type"] == "application/json"
        assert meta["cache_control"] == "public, max-age=31536000"
        assert meta["public"] is True

    def test_stt_receives_downloaded_file_and_scratch_is_removed(
        self, orchestrator, queued_task, stt, tmp_path
    ):
        asyncio.run(orchestrator.run(queued_task.id))

        path, filename, existed = stt.calls[0]
        assert existed
        assert filename == "talk.mp3"
        assert path.suffix == ".mp3"
        assert _scratch_files(tmp_path) == []

    def test_duration_falls_back_to_stt(self, orchestrator, queued_task, task_store):
        orchestrator.probe = lambda path: None
        asyncio.run(orchestrator.run(queued_task.id))
        assert task_store.get_task(queued_task.id).duration == 8.0

    def test_storage_path_derived_from_url(self, orchestrator, task_store, blob_store):
        blob_store.upload(AUDIO_KEY, b"ID3", "audio/mpeg")
        task = task_store.create_task("talk.mp3", "gs://bucket/" + AUDIO_KEY)
        asyncio.run(orchestrator.run(task.id))

        stored = task_store.get_task(task.id)
        assert stored.status == TaskStatus.TRANSCRIBED
        assert stored.storage_path == AUDIO_KEY

    def test_undecodable_audio_still_transcribes(self, orchestrator, queued_task, task_store, blob_store):
        def broken(path, rate):
            raise RuntimeError("Invalid data found when processing input")

        orchestrator.peak_generator = functools.partial(generate_peaks, decoder=broken)
        asyncio.run(orchestrator.run(queued_task.id))

        assert task_store.get_task(queued_task.id).status == TaskStatus.TRANSCRIBED
        peaks = json.loads(blob_store.read(peaks_key("default", queued_task.id)))
        assert peaks["length"] == 1000
        assert all(0.25 <= v <= 0.75 for v in peaks["data"])


# ---------------------------------------------------------------------------
# No-ops
# ---------------------------------------------------------------------------


class TestNoOp:
    def test_missing_task(self, orchestrator):
        assert asyncio.run(orchestrator.run("nope")) is None

    @pytest.mark.parametrize("status", [TaskStatus.TRANSCRIBING, TaskStatus.TRANSCRIBED, TaskStatus.ERROR])
    def test_non_queued_task_is_untouched(self, orchestrator, queued_task, task_store, stt, status):
        task_store.update_task(queued_task.id, {"status": status})
        before = task_store.get_task(queued_task.id)

        assert asyncio.run(orchestrator.run(queued_task.id)) is None
        assert task_store.get_task(queued_task.id) == before
        assert stt.calls == []

    def test_no_writes_without_audio_url(self, blob_store, stt, queued_task):
        store = MagicMock()
        task = queued_task
        task.audio_url = ""
        store.get_task.return_value = task
        orch = TranscriptionOrchestrator(store, blob_store, stt_factory=lambda: stt)

        assert asyncio.run(orch.run(task.id)) is None
        store.transition.assert_not_called()
        store.update_task.assert_not_called()

    def test_lost_claim_writes_nothing(self, blob_store, stt, queued_task):
        store = MagicMock()
        store.get_task.return_value = queued_task
        store.transition.return_value = False
        orch = TranscriptionOrchestrator(store, blob_store, stt_factory=lambda: stt)

        assert asyncio.run(orch.run(queued_task.id)) is None
        store.update_task.assert_not_called()
        assert stt.calls == []

    def test_concurrent_runs_transcribe_once(self, orchestrator, queued_task, stt):
        async def both():
            return await asyncio.gather(
                orchestrator.run(queued_task.id),
                orchestrator.run(queued_task.id),
            )

        results = asyncio.run(both())
        assert sum(r is not None for r in results) == 1
        assert len(stt.calls) == 1


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


class TestFailures:
    def test_stt_error_marks_task_failed(self, orchestrator, queued_task, task_store, stt, tmp_path):
        stt.error = UpstreamError("Speech-to-text", 500, "model overloaded")

        with pytest.raises(UpstreamError):
            asyncio.run(orchestrator.run(queued_task.id))

        stored = task_store.get_task(queued_task.id)
        assert stored.status == TaskStatus.ERROR
        assert "model overloaded" in stored.error
        assert stored.segments == []
        assert _scratch_files(tmp_path) == []

    def test_missing_blob(self, orchestrator, task_store):
        task = task_store.create_task("gone.mp3", "http://x", storage_path="audio/gone.mp3")

        with pytest.raises(NotFoundError):
            asyncio.run(orchestrator.run(task.id))

        stored = task_store.get_task(task.id)
        assert stored.status == TaskStatus.ERROR
        assert stored.error == "Audio file not found in storage: audio/gone.mp3"

    def test_unresolvable_audio_url(self, orchestrator, task_store):
        task = task_store.create_task("x.mp3", "not-a-url")

        with pytest.raises(ValidationError):
            asyncio.run(orchestrator.run(task.id))
        assert task_store.get_task(task.id).error.startswith("Could not resolve storage path")

    def test_timeout(self, orchestrator, queued_task, task_store, stt):
        stt.delay = 5.0

        with pytest.raises(TranscriptReviewError, match="timed out"):
            asyncio.run(orchestrator.run(queued_task.id, timeout_s=0.2))

        stored = task_store.get_task(queued_task.id)
        assert stored.status == TaskStatus.ERROR
        assert stored.error == "Transcription timed out after 0.2s"

    def test_timeout_during_download_still_removes_scratch(
        self, orchestrator, queued_task, blob_store, tmp_path, monkeypatch
    ):
        download = blob_store.download

        def slow_download(key, dest):
            time.sleep(0.5)
            return download(key, dest)

        monkeypatch.setattr(blob_store, "download", slow_download)

        with pytest.raises(TranscriptReviewError, match="timed out after 0.1s"):
            asyncio.run(orchestrator.run(queued_task.id, timeout_s=0.1))

        assert _scratch_files(tmp_path) == []

    def test_failure_is_reported_to_error_tracking(self, orchestrator, queued_task, stt):
        stt.error = UpstreamError("Speech-to-text", 500, "model overloaded")

        with patch("transcript_review.pipeline.orchestrator.capture_exception") as capture:
            with pytest.raises(UpstreamError):
                asyncio.run(orchestrator.run(queued_task.id))

        capture.assert_called_once_with(stt.error, task_id=queued_task.id, stage="transcription")

    def test_missing_credentials_fail_the_task(self, orchestrator, queued_task, task_store):
        def no_key():
            raise ValueError("OPENAI_API_KEY not found")

        orchestrator.stt_factory = no_key
        with pytest.raises(ValueError):
            asyncio.run(orchestrator.run(queued_task.id))

        stored = task_store.get_task(queued_task.id)
        assert stored.status == TaskStatus.ERROR
        assert stored.error == "OPENAI_API_KEY not found"

    def test_error_status_is_terminal_for_later_runs(self, orchestrator, queued_task, task_store, stt):
        stt.error = UpstreamError("Speech-to-text", 0, "unreachable")
        with pytest.raises(UpstreamError):
            asyncio.run(orchestrator.run(queued_task.id))

        stt.error = None
        assert asyncio.run(orchestrator.run(queued_task.id)) is None
        assert task_store.get_task(queued_task.id).status == TaskStatus.ERROR


# ---------------------------------------------------------------------------
# map_stt_segments
# ---------------------------------------------------------------------------


class TestMapSttSegments:
    def test_ids_follow_raw_position(self):
        raw = [
            {"start": 0, "end": 1, "text": " a "},
            {"start": 2, "end": 1, "text": "backwards"},
            {"start": 2, "end": 3, "text": "c"},
        ]
        segments = map_stt_segments(raw)
        assert [(s.id, s.text) for s in segments] == [("s1", "a"), ("s3", "c")]

    def test_missing_start_defaults_to_zero(self):
        assert map_stt_segments([{"end": 1.5, "text": "x"}]) == [Segment("s1", 0.0, 1.5, "x")]

    def test_missing_end_is_dropped(self):
        assert map_stt_segments([{"start": 1.0, "text": "x"}]) == []

    def test_speaker_is_never_set(self):
        segments = map_stt_segments([{"start": 0, "end": 1, "text": "x", "speaker": "A"}])
        assert segments[0].speaker is None

    def test_empty(self):
        assert map_stt_segments([]) == []
