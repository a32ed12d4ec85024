"""Ordered, idempotent cleanup for task deletion.

WHY: A task leaves traces in several places (the Label Studio mirror,
the audio blob, the peaks blob, the store record). Any of them may
already be gone, and a failure in one must not keep the record alive.

HOW: Deletion is an ordered list of named async steps. Each step
reports DONE, ALREADY_GONE or FAILED. Failures of every step but the
last are logged and recorded; the last step (removing the store record)
propagates its exceptions.

RULES:
- Steps run in the given order, each exactly once
- A non-final step that raises is recorded as FAILED and the run continues
- Only the final step may raise
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)


class CleanupOutcome(str, enum.Enum):
    DONE = "done"
    ALREADY_GONE = "already_gone"
    FAILED = "failed"


CleanupAction = Callable[[], Awaitable[CleanupOutcome]]
CleanupStep = Tuple[str, CleanupAction]


@dataclass
class StepResult:
    name: str
    outcome: CleanupOutcome
    detail: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "outcome": self.outcome.value, "detail": self.detail}


@dataclass
class DeletionReport:
    """What happened at each cleanup step of one deletion."""

    task_id: str
    steps: List[StepResult] = field(default_factory=list)

    @property
    def failed_steps(self) -> List[str]:
        return [s.name for s in self.steps if s.outcome is CleanupOutcome.FAILED]

    def outcome_of(self, name: str) -> Optional[CleanupOutcome]:
        for step in self.steps:
            if step.name == name:
                return step.outcome
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "steps": [s.to_dict() for s in self.steps],
            "failed_steps": self.failed_steps,
        }


async def run_cleanup(task_id: str, steps: Sequence[CleanupStep]) -> DeletionReport:
    """Run cleanup steps in order. See module docstring for error rules."""
    report = DeletionReport(task_id=task_id)
    if not steps:
        return report

    *best_effort, (final_name, final_action) = steps
    for name, action in best_effort:
        try:
            outcome = await action()
            report.steps.append(StepResult(name, outcome))
        except Exception as exc:
            logger.warning("Cleanup step %s failed for task %s: %s", name, task_id, exc)
            report.steps.append(StepResult(name, CleanupOutcome.FAILED, str(exc)))

    outcome = await final_action()
    report.steps.append(StepResult(final_name, outcome))
    logger.info(
        "Deleted task %s (%s)",
        task_id, ", ".join(f"{s.name}={s.outcome.value}" for s in report.steps),
    )
    return report
