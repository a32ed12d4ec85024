"""Label Studio integration: async client and payload schemas."""

from transcript_review.labelstudio.client import LabelStudioClient
from transcript_review.labelstudio.models import (
    AccessToken,
    CreatedTask,
    ImportResponse,
    PredictionItem,
    QueriedTask,
    select_created_task,
)

__all__ = [
    "AccessToken",
    "CreatedTask",
    "ImportResponse",
    "LabelStudioClient",
    "PredictionItem",
    "QueriedTask",
    "select_created_task",
]
