"""Pipeline worker exports."""

from .dispatch import enqueue_submission_tasks
from .task_worker import TaskWorker, backoff_seconds

__all__ = [
    "TaskWorker",
    "backoff_seconds",
    "enqueue_submission_tasks",
]
