"""Tests for the FastAPI application.

WHY: The HTTP layer is the contract with the review UI. It has to map
package errors to stable status codes and ``{"code", "detail"}`` bodies,
validate export formats before touching any task, and keep Label Studio
optional.

HOW: FastAPI TestClient against the real app. The module-level stores
are swapped for fresh ones per test, background transcription is
patched out, and get_label_studio returns a fake client.

RULES:
- No network: speech-to-text and Label Studio are never called
- Each test gets its own task store and blob store
"""

from __future__ import annotations

import io
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from transcript_review.core.models import TaskStatus
from transcript_review.errors import StorageError, UpstreamError
from transcript_review.labelstudio import CreatedTask, LabelStudioClient
from transcript_review.server.app import app


class FakeLabelStudio:
    parse_annotations = staticmethod(LabelStudioClient.parse_annotations)

    def __init__(self):
        self.annotations = []
        self.create_error = None
        self.deleted = []

    async def create_task(self, audio_url, segments, task_id, filename):
        if self.create_error is not None:
            raise self.create_error
        return CreatedTask(id=42, url="http://ls.test/tasks/42")

    async def get_annotations(self, external_task_id):
        return self.annotations

    async def delete_task(self, external_task_id):
        self.deleted.append(external_task_id)
        return True


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def label_studio():
    return FakeLabelStudio()


@pytest.fixture
def client(task_store, blob_store, label_studio):
    """TestClient with fresh stores, no background transcription and a fake Label Studio."""
    with patch("transcript_review.server.app.task_store", task_store), \
            patch("transcript_review.server.app.blob_store", blob_store), \
            patch("transcript_review.server.app._run_transcription_sync", new=lambda task_id: None), \
            patch("transcript_review.server.app.get_label_studio", new=lambda: label_studio):
        yield TestClient(app)


@pytest.fixture
def transcribed(task_store, sample_segments):
    task = task_store.create_task("interview.mp3", "http://blobs.test/audio/x/interview.mp3")
    return task_store.update_task(task.id, {
        "status": TaskStatus.TRANSCRIBED,
        "segments": sample_segments,
        "duration": 3723.5,
    })


def _audio_file(name="talk.mp3", content=b"ID3 fake audio"):
    return ("file", (name, io.BytesIO(content), "audio/mpeg"))


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


class TestTasks:
    def test_upload_creates_queued_task(self, client, task_store, blob_store):
        resp = client.post("/tasks", files=[_audio_file()], data={"project_id": "p1"})

        assert resp.status_code == 201
        body = resp.json()
        assert body["status"] == "queued"
        assert body["filename"] == "talk.mp3"

        task = task_store.get_task(body["id"])
        assert task.project_id == "p1"
        assert task.storage_path.startswith("audio/p1/")
        assert task.storage_path.endswith("/talk.mp3")
        assert blob_store.read(task.storage_path) == b"ID3 fake audio"
        assert task.audio_url == blob_store.public_url(task.storage_path)

    def test_upload_strips_directories_from_filename(self, client, task_store):
        resp = client.post("/tasks", files=[_audio_file(name="../../etc/talk.mp3")])
        assert resp.status_code == 201
        assert resp.json()["filename"] == "talk.mp3"

    def test_upload_rejects_unsupported_type(self, client, task_store):
        resp = client.post("/tasks", files=[("file", ("notes.xyz", io.BytesIO(b"x"), "text/plain"))])

        assert resp.status_code == 400
        assert resp.json()["code"] == "validation_error"
        assert "Unsupported file type" in resp.json()["detail"]
        assert task_store.list_tasks() == []

    def test_get_task(self, client, transcribed):
        resp = client.get("/tasks/{}".format(transcribed.id))

        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "transcribed"
        assert body["duration"] == 3723.5
        assert body["segments"][1] == {
            "id": "s2", "start": 2.5, "end": 5.25, "text": "General Kenobi.", "speaker": "B",
        }

    def test_get_missing_task(self, client):
        resp = client.get("/tasks/nonexistent")
        assert resp.status_code == 404
        assert resp.json() == {"code": "not_found", "detail": "Task not found: nonexistent"}

    def test_list_tasks(self, client, transcribed):
        resp = client.get("/tasks")
        assert resp.status_code == 200
        assert [t["id"] for t in resp.json()] == [transcribed.id]

    def test_delete_task(self, client, task_store, transcribed):
        resp = client.delete("/tasks/{}".format(transcribed.id))

        assert resp.status_code == 200
        body = resp.json()
        assert body["task_id"] == transcribed.id
        assert body["failed_steps"] == []
        assert body["steps"][-1] == {"name": "task_record", "outcome": "done", "detail": None}
        assert task_store.get_task(transcribed.id) is None

    def test_delete_missing_task_is_ok(self, client):
        resp = client.delete("/tasks/nonexistent")
        assert resp.status_code == 200
        assert {s["outcome"] for s in resp.json()["steps"]} == {"already_gone"}


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------


class TestExport:
    def test_srt_download(self, client, transcribed):
        resp = client.get("/export/{}".format(transcribed.id), params={"format": "srt"})

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("application/x-subrip")
        assert resp.headers["content-disposition"] == 'attachment; filename="interview.mp3.srt"'
        assert resp.text.startswith("1\n00:00:00,000 --> 00:00:02,500\nHello there.\n")

    def test_json_download(self, client, transcribed):
        resp = client.get("/export/{}".format(transcribed.id), params={"format": "json"})
        assert resp.status_code == 200
        assert resp.json()["id"] == transcribed.id
        assert resp.json()["status"] == "transcribed"

    def test_default_format_is_srt(self, client, transcribed):
        resp = client.get("/export/{}".format(transcribed.id))
        assert resp.headers["content-disposition"].endswith('.srt"')

    def test_invalid_format(self, client, transcribed):
        resp = client.get("/export/{}".format(transcribed.id), params={"format": "ass"})
        assert resp.status_code == 400
        assert resp.json() == {
            "code": "validation_error",
            "detail": "Invalid format 'ass'. Supported formats: srt, vtt, txt, json",
        }

    def test_invalid_format_wins_over_missing_task(self, client):
        resp = client.get("/export/nonexistent", params={"format": "docx"})
        assert resp.status_code == 400

    def test_missing_task(self, client):
        resp = client.get("/export/nonexistent", params={"format": "txt"})
        assert resp.status_code == 404

    def test_task_without_segments(self, client, task_store):
        task = task_store.create_task("a.mp3", "u")
        resp = client.get("/export/{}".format(task.id), params={"format": "vtt"})
        assert resp.status_code == 400
        assert "no segments" in resp.json()["detail"]

    def test_batch(self, client, transcribed):
        resp = client.post("/export/batch", json={"task_ids": [transcribed.id, "nope"], "format": "VTT"})

        assert resp.status_code == 200
        body = resp.json()
        assert body["format"] == "vtt"
        assert body["items"][0]["filename"] == "interview.mp3.vtt"
        assert body["items"][0]["content"].startswith("WEBVTT\n\n")
        assert body["items"][0]["error"] is None
        assert body["items"][1] == {
            "task_id": "nope", "filename": None, "content": None, "error": "Task not found: nope",
        }

    def test_batch_invalid_format(self, client, transcribed):
        resp = client.post("/export/batch", json={"task_ids": [transcribed.id], "format": "docx"})
        assert resp.status_code == 400

    def test_batch_requires_ids(self, client):
        resp = client.post("/export/batch", json={"task_ids": []})
        assert resp.status_code == 422
        body = resp.json()
        assert body["code"] == "validation_error"
        assert "task_ids" in body["detail"]


# ---------------------------------------------------------------------------
# Unexpected errors
# ---------------------------------------------------------------------------


class TestUnexpectedErrors:
    def test_unhandled_exception_has_error_code(self, task_store, blob_store, label_studio):
        def broken(task_id):
            raise RuntimeError("store unavailable")

        with patch.object(task_store, "get_task", side_effect=broken), \
                patch("transcript_review.server.app.task_store", task_store), \
                patch("transcript_review.server.app.blob_store", blob_store), \
                patch("transcript_review.server.app.get_label_studio", new=lambda: label_studio), \
                patch("transcript_review.server.app.capture_exception") as capture:
            resp = TestClient(app, raise_server_exceptions=False).get("/tasks/abc")

        assert resp.status_code == 500
        assert resp.json() == {"code": "internal_error", "detail": "Internal server error"}
        assert isinstance(capture.call_args.args[0], RuntimeError)

    def test_server_side_package_error_is_reported(self, client, transcribed):
        with patch("transcript_review.server.app.export_task", side_effect=StorageError("disk full")), \
                patch("transcript_review.server.app.capture_exception") as capture:
            resp = client.get("/export/{}".format(transcribed.id), params={"format": "srt"})

        assert resp.status_code == 500
        assert resp.json() == {"code": "storage_error", "detail": "disk full"}
        capture.assert_called_once()


# ---------------------------------------------------------------------------
# Label Studio
# ---------------------------------------------------------------------------


class TestLabelStudio:
    def test_create_then_create_again(self, client, transcribed):
        resp = client.post("/label-studio/create", json={"task_id": transcribed.id})
        assert resp.status_code == 200
        assert resp.json() == {
            "external_task_id": 42,
            "external_task_url": "http://ls.test/tasks/42",
            "created": True,
            "message": "Label Studio task created successfully",
        }

        resp = client.post("/label-studio/create", json={"task_id": transcribed.id})
        assert resp.json()["created"] is False
        assert resp.json()["message"] == "Task already exists in Label Studio"

    def test_create_without_segments(self, client, task_store):
        task = task_store.create_task("a.mp3", "u")
        resp = client.post("/label-studio/create", json={"task_id": task.id})
        assert resp.status_code == 400

    def test_upstream_failure_is_502(self, client, transcribed, label_studio):
        label_studio.create_error = UpstreamError("Label Studio", 500, "db down")
        resp = client.post("/label-studio/create", json={"task_id": transcribed.id})
        assert resp.status_code == 502
        assert resp.json() == {"code": "upstream_error", "detail": "Label Studio error 500: db down"}

    def test_not_configured(self, client, transcribed):
        with patch("transcript_review.server.app.get_label_studio", new=lambda: None):
            resp = client.post("/label-studio/create", json={"task_id": transcribed.id})
        assert resp.status_code == 400
        assert "not configured" in resp.json()["detail"]

    def test_sync(self, client, transcribed, label_studio, task_store):
        client.post("/label-studio/create", json={"task_id": transcribed.id})
        label_studio.annotations = [{"result": [{
            "id": "r1",
            "from_name": "transcription",
            "to_name": "audio",
            "type": "textarea",
            "value": {"start": 0, "end": 2, "text": ["Corrected."]},
        }]}]

        resp = client.post("/label-studio/sync/{}".format(transcribed.id))

        assert resp.status_code == 200
        assert resp.json() == {"synced": True, "message": "Annotations synced successfully", "segment_count": 1}
        assert task_store.get_task(transcribed.id).status == TaskStatus.REVIEWED

    def test_sync_without_annotations(self, client, transcribed):
        client.post("/label-studio/create", json={"task_id": transcribed.id})
        resp = client.post("/label-studio/sync/{}".format(transcribed.id))
        assert resp.status_code == 200
        assert resp.json()["synced"] is False

    def test_sync_without_link(self, client, transcribed):
        resp = client.post("/label-studio/sync/{}".format(transcribed.id))
        assert resp.status_code == 400

    def test_get_link(self, client, transcribed):
        assert client.get("/label-studio/task/{}".format(transcribed.id)).status_code == 404
        client.post("/label-studio/create", json={"task_id": transcribed.id})
        resp = client.get("/label-studio/task/{}".format(transcribed.id))
        assert resp.status_code == 200
        assert resp.json()["external_task_id"] == 42

    def test_delete_link(self, client, transcribed, label_studio, task_store):
        client.post("/label-studio/create", json={"task_id": transcribed.id})
        resp = client.delete("/label-studio/task/{}".format(transcribed.id))

        assert resp.json() == {"message": "Label Studio task deletion completed"}
        assert label_studio.deleted == [42]
        assert task_store.get_task(transcribed.id).external_task_id is None

    def test_delete_link_missing_task(self, client):
        resp = client.delete("/label-studio/task/nonexistent")
        assert resp.status_code == 200
        assert resp.json() == {"message": "Task not found (may have been already deleted)"}


# ---------------------------------------------------------------------------
# Blobs, formats, health
# ---------------------------------------------------------------------------


class TestMisc:
    def test_public_blob_is_served(self, client, blob_store):
        blob_store.upload("peaks/p/t/peaks.json", '{"data": [], "length": 0}', "application/json",
                          cache_control="public, max-age=60")
        blob_store.make_public("peaks/p/t/peaks.json")

        resp = client.get("/blobs/peaks/p/t/peaks.json")

        assert resp.status_code == 200
        assert resp.json() == {"data": [], "length": 0}
        assert resp.headers["cache-control"] == "public, max-age=60"

    def test_private_blob_is_hidden(self, client, blob_store):
        blob_store.upload("audio/secret.mp3", b"x", "audio/mpeg")
        assert client.get("/blobs/audio/secret.mp3").status_code == 404

    def test_formats(self, client):
        resp = client.get("/formats")
        assert resp.status_code == 200
        assert [f["key"] for f in resp.json()] == ["srt", "vtt", "txt", "json"]
        assert resp.json()[0]["extension"] == ".srt"

    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"
