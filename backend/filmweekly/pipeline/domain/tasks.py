"""Task messages exchanged over the pipeline queue.

Messages travel as JSON text of the form ``{"type": ..., "submissionId": n}``.
The two task kinds are independent and are dispatched to distinct handlers.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, ClassVar, Union

from filmweekly.pipeline.domain.errors import InvalidTaskError

THUMBNAIL_TASK = "generate-thumbnails"
MODERATION_TASK = "content-moderation"


@dataclass(frozen=True, slots=True)
class ThumbnailTask:
    submission_id: int
    type: ClassVar[str] = THUMBNAIL_TASK


@dataclass(frozen=True, slots=True)
class ModerationTask:
    submission_id: int
    type: ClassVar[str] = MODERATION_TASK


QueueTask = Union[ThumbnailTask, ModerationTask]

_TASK_TYPES: dict[str, type[ThumbnailTask] | type[ModerationTask]] = {
    THUMBNAIL_TASK: ThumbnailTask,
    MODERATION_TASK: ModerationTask,
}


def encode_task(task: QueueTask) -> str:
    return json.dumps({"type": task.type, "submissionId": task.submission_id}, separators=(",", ":"))


def decode_task(body: str | bytes) -> QueueTask:
    """Parse a queue message body, raising InvalidTaskError for anything unrecognised."""
    if isinstance(body, bytes):
        try:
            body = body.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise InvalidTaskError("message body is not utf-8") from exc
    try:
        data: Any = json.loads(body)
    except (TypeError, ValueError) as exc:
        raise InvalidTaskError("message body is not valid JSON") from exc
    if not isinstance(data, dict):
        raise InvalidTaskError("message body is not an object")
    task_type = data.get("type")
    task_cls = _TASK_TYPES.get(task_type) if isinstance(task_type, str) else None
    if task_cls is None:
        raise InvalidTaskError(f"unknown task type: {task_type!r}")
    submission_id = data.get("submissionId")
    # bool is an int subclass; a JSON true must not become submission 1
    if isinstance(submission_id, bool) or not isinstance(submission_id, int):
        raise InvalidTaskError("submissionId must be an integer")
    if submission_id <= 0:
        raise InvalidTaskError("submissionId must be positive")
    return task_cls(submission_id=submission_id)
