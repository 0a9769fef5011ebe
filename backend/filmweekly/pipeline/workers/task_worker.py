"""Worker that consumes pipeline tasks and routes them to their handlers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from time import perf_counter
from typing import Any, Awaitable, Callable, Mapping

from filmweekly.obs import metrics
from filmweekly.obs.logging import bind_context, reset_context
from filmweekly.pipeline.domain.errors import InvalidTaskError
from filmweekly.pipeline.domain.queue import TaskMessage, TaskQueue
from filmweekly.pipeline.domain.tasks import decode_task

logger = logging.getLogger(__name__)

TaskHandler = Callable[[int], Awaitable[Any]]


def backoff_seconds(attempts: int, *, base: float, maximum: float) -> float:
    """Exponential delay for the retry following the given delivery attempt."""
    exponent = min(max(attempts - 1, 0), 16)
    return min(maximum, base * (2 ** exponent))


@dataclass(slots=True)
class TaskWorker:
    """Reads task messages, runs the matching handler, then acks or retries.

    Handlers receive the submission id. A handler that returns has handled the
    task, including any per-image failures it recorded; a handler that raises
    asks the queue for a delayed redelivery. Unparseable or unknown messages
    are acknowledged and dropped so they cannot loop forever.
    """

    queue: TaskQueue
    handlers: Mapping[str, TaskHandler]
    batch_size: int = 10
    block_ms: int | None = 5000
    retry_base_seconds: float = 30
    retry_max_seconds: float = 900

    async def run_once(self) -> int:
        await self.queue.promote_due()
        messages = await self.queue.receive(count=self.batch_size, block_ms=self.block_ms)
        for message in messages:
            await self.process_message(message)
        return len(messages)

    async def process_message(self, message: TaskMessage) -> str:
        tokens = bind_context(message_id=message.message_id)
        start = perf_counter()
        try:
            try:
                task = decode_task(message.body)
            except InvalidTaskError as exc:
                return await self._drop(message, str(exc))
            handler = self.handlers.get(task.type)
            if handler is None:
                return await self._drop(message, f"no handler registered for {task.type}")

            tokens.update(bind_context(task_type=task.type, submission_id=task.submission_id))
            try:
                await handler(task.submission_id)
            except Exception:
                delay = backoff_seconds(
                    message.attempts, base=self.retry_base_seconds, maximum=self.retry_max_seconds
                )
                logger.exception(
                    "task failed; requesting redelivery",
                    extra={"attempts": message.attempts, "retry_delay_seconds": delay},
                )
                redelivered = await message.retry(delay)
                outcome = "retry" if redelivered else "dead_letter"
            else:
                await message.ack()
                outcome = "ok"
            metrics.record_task(task.type, outcome, duration_seconds=perf_counter() - start)
            return outcome
        finally:
            reset_context(tokens)

    async def _drop(self, message: TaskMessage, reason: str) -> str:
        logger.warning("dropping task message: %s", reason, extra={"attempts": message.attempts})
        await message.ack()
        metrics.record_task("unknown", "dropped")
        return "dropped"
