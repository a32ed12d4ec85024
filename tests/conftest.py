"""Shared test fixtures for the transcript_review test suite.

WHY: Most test modules need the same small transcript, a task built
around it, and fresh stores. Centralizing them here keeps the expected
strings in one place.

HOW: Plain pytest fixtures. Stores are created per test; the blob store
lives under pytest's tmp_path.

RULES:
- Segment times are exact in milliseconds so timestamp assertions are stable
- Timestamps on the sample task are fixed (no time.time())
"""

from __future__ import annotations

from typing import List

import pytest

from transcript_review.core.models import Segment, Task, TaskStatus
from transcript_review.storage import InMemoryTaskStore, LocalBlobStore

SAMPLE_SEGMENTS: List[Segment] = [
    Segment(id="s1", start=0.0, end=2.5, text="Hello there."),
    Segment(id="s2", start=2.5, end=5.25, text="General Kenobi.", speaker="B"),
    Segment(id="s3", start=61.125, end=3723.5, text="A long pause, then more."),
]

BLOB_BASE_URL = "http://blobs.test"


def make_segments() -> List[Segment]:
    return [Segment(s.id, s.start, s.end, s.text, s.speaker) for s in SAMPLE_SEGMENTS]


@pytest.fixture
def sample_segments() -> List[Segment]:
    return make_segments()


@pytest.fixture
def sample_task(sample_segments) -> Task:
    """A transcribed task with fixed timestamps."""
    return Task(
        id="task-1",
        status=TaskStatus.TRANSCRIBED,
        filename="interview.mp3",
        audio_url="http://blobs.test/audio/default/abc/interview.mp3",
        storage_path="audio/default/abc/interview.mp3",
        duration=3723.5,
        segments=sample_segments,
        stt_raw={"text": "Hello there. General Kenobi.", "duration": 3723.5},
        created_at=1700000000.0,
        updated_at=1700000100.0,
        metadata={"source": "upload"},
    )


@pytest.fixture
def task_store() -> InMemoryTaskStore:
    return InMemoryTaskStore()


@pytest.fixture
def blob_store(tmp_path) -> LocalBlobStore:
    return LocalBlobStore(root=tmp_path / "blobs", public_base_url=BLOB_BASE_URL)
