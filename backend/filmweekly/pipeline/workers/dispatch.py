"""Producer side of the pipeline: enqueue the tasks for a new submission."""

from __future__ import annotations

import asyncio
import logging

from filmweekly.pipeline.domain.queue import TaskQueue
from filmweekly.pipeline.domain.tasks import ModerationTask, QueueTask, ThumbnailTask, encode_task

logger = logging.getLogger(__name__)


def submission_tasks(submission_id: int) -> list[QueueTask]:
    return [ThumbnailTask(submission_id=submission_id), ModerationTask(submission_id=submission_id)]


async def enqueue_submission_tasks(queue: TaskQueue, submission_id: int) -> list[str]:
    """Send one thumbnail and one moderation task; the caller does not wait on processing."""
    tasks = submission_tasks(submission_id)
    message_ids = await asyncio.gather(*(queue.send(encode_task(task)) for task in tasks))
    logger.info("submission tasks enqueued", extra={"submission_id": submission_id, "message_ids": list(message_ids)})
    return list(message_ids)
