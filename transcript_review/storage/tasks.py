"""Task store contract and a thread-safe in-memory implementation.

WHY: The orchestrator, the review sync and the HTTP layer all read and
write task records concurrently. Claiming a task for transcription must
be exclusive: of two workers racing to flip ``queued → transcribing``,
exactly one may win. The store's single-record conditional update is
the only mechanism providing that.

HOW: Tasks are stored in a plain dict keyed by task ID. All mutations
acquire a threading.Lock; reads return deep copies so callers can only
change a task through the store. ``transition()`` is the conditional
update: it applies only when the current status equals the expected one.
Subscribers receive a newest-first snapshot after every change.

RULES:
- create_task() assigns a UUID4 hex ID and starts in QUEUED
- get_task() returns None for missing IDs (no exceptions)
- update_task() applies a partial change; None if the task is missing
- Status changes must follow TaskStatus.can_transition_to
- duration is write-once: changing an already-set value is rejected
- transition() returns False (and writes nothing) when the status differs
- Subscriber callbacks run outside the lock
"""

from __future__ import annotations

import copy
import logging
import threading
import time
import uuid
from typing import Any, Callable, Dict, List, Optional, Protocol

from transcript_review.config import DEFAULT_PROJECT_ID
from transcript_review.core.models import Segment, Task, TaskStatus
from transcript_review.errors import StorageError, ValidationError

logger = logging.getLogger(__name__)

Subscriber = Callable[[List[Task]], None]

_UPDATABLE_FIELDS = frozenset({
    "status",
    "filename",
    "audio_url",
    "storage_path",
    "duration",
    "segments",
    "peaks_url",
    "stt_raw",
    "external_task_id",
    "external_task_url",
    "error",
    "reviewed_at",
    "metadata",
})


class TaskStore(Protocol):
    """What the pipeline needs from a task store."""

    def get_task(self, task_id: str) -> Optional[Task]: ...

    def list_tasks(self) -> List[Task]: ...

    def update_task(self, task_id: str, changes: Dict[str, Any]) -> Optional[Task]: ...

    def transition(
        self,
        task_id: str,
        expected: TaskStatus,
        new: TaskStatus,
        changes: Optional[Dict[str, Any]] = None,
    ) -> bool: ...

    def delete_task(self, task_id: str) -> bool: ...


class InMemoryTaskStore:
    """Thread-safe in-memory task store.

    RULES:
    - All public methods that touch state acquire self._lock
    - max_tasks bounds memory; create_task raises StorageError when full
    """

    def __init__(self, max_tasks: int = 1000) -> None:
        self._tasks: Dict[str, Task] = {}
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()
        self.max_tasks = max_tasks

    # ------------------------------------------------------------------
    # Create / read
    # ------------------------------------------------------------------

    def create_task(
        self,
        filename: str,
        audio_url: str,
        storage_path: str = "",
        project_id: str = DEFAULT_PROJECT_ID,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Task:
        """Create a new task in QUEUED state and return a copy of it."""
        with self._lock:
            if len(self._tasks) >= self.max_tasks:
                raise StorageError(
                    "Maximum number of stored tasks ({}) reached".format(self.max_tasks)
                )

            now = time.time()
            task = Task(
                id=uuid.uuid4().hex,
                status=TaskStatus.QUEUED,
                filename=filename,
                audio_url=audio_url,
                storage_path=storage_path,
                project_id=project_id,
                created_at=now,
                updated_at=now,
                metadata=dict(metadata or {}),
            )
            self._tasks[task.id] = task
            created = copy.deepcopy(task)

        logger.info("Created task %s for file %s", created.id, filename)
        self._notify()
        return created

    def get_task(self, task_id: str) -> Optional[Task]:
        with self._lock:
            task = self._tasks.get(task_id)
            return copy.deepcopy(task) if task is not None else None

    def list_tasks(self) -> List[Task]:
        """Snapshot of all tasks, newest first by created_at."""
        with self._lock:
            return self._snapshot_locked()

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    def update_task(self, task_id: str, changes: Dict[str, Any]) -> Optional[Task]:
        """Apply a partial update.

        Keys map to Task attributes; an explicit None clears a field.
        Raises ValidationError for unknown fields, forbidden status moves
        and attempts to overwrite a set duration.
        """
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                return None
            self._apply_locked(task, changes)
            updated = copy.deepcopy(task)

        self._notify()
        return updated

    def transition(
        self,
        task_id: str,
        expected: TaskStatus,
        new: TaskStatus,
        changes: Optional[Dict[str, Any]] = None,
    ) -> bool:
        """Conditionally move a task from ``expected`` to ``new``.

        The check and the write happen under one lock acquisition, so of
        several concurrent callers with the same ``expected`` status at
        most one gets True.
        """
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None or task.status != expected:
                return False
            merged = dict(changes or {})
            merged["status"] = new
            self._apply_locked(task, merged)

        self._notify()
        return True

    # ------------------------------------------------------------------
    # Delete / subscribe
    # ------------------------------------------------------------------

    def delete_task(self, task_id: str) -> bool:
        """Remove a task. Returns True if it existed."""
        with self._lock:
            task = self._tasks.pop(task_id, None)

        if task is None:
            return False
        logger.info("Deleted task %s", task_id)
        self._notify()
        return True

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a change listener; returns a function that unregisters it.

        The callback is invoked immediately with the current snapshot and
        again after every change.
        """
        with self._lock:
            self._subscribers.append(callback)
            snapshot = self._snapshot_locked()
        callback(snapshot)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return unsubscribe

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _snapshot_locked(self) -> List[Task]:
        ordered = sorted(self._tasks.values(), key=lambda t: t.created_at, reverse=True)
        return [copy.deepcopy(t) for t in ordered]

    def _notify(self) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
            if not subscribers:
                return
            snapshot = self._snapshot_locked()
        for callback in subscribers:
            try:
                callback(snapshot)
            except Exception:
                logger.exception("Task store subscriber failed")

    @staticmethod
    def _apply_locked(task: Task, changes: Dict[str, Any]) -> None:
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ValidationError(
                "Unknown task field(s): {}".format(", ".join(sorted(unknown)))
            )

        if "status" in changes:
            new_status = TaskStatus(changes["status"])
            if not task.status.can_transition_to(new_status):
                raise ValidationError(
                    "Task {} cannot move from {} to {}".format(
                        task.id, task.status.value, new_status.value
                    )
                )

        if "duration" in changes and task.duration is not None:
            if changes["duration"] != task.duration:
                raise ValidationError(
                    "Task {} duration is already set to {}".format(task.id, task.duration)
                )

        for key, value in changes.items():
            if key == "status":
                value = TaskStatus(value)
            elif key == "segments":
                value = [
                    seg if isinstance(seg, Segment) else Segment.from_dict(seg)
                    for seg in (value or [])
                ]
            else:
                value = copy.deepcopy(value)
            setattr(task, key, value)

        task.updated_at = time.time()
