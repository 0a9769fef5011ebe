"""Utilities for wiring pipeline workers into an event loop."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, Optional

from filmweekly.pipeline.domain.container import task_handlers
from filmweekly.pipeline.infra.redis_queue import RedisTaskQueue
from filmweekly.pipeline.workers.task_worker import TaskWorker
from filmweekly.settings import settings

logger = logging.getLogger(__name__)

_ERROR_BACKOFF_SECONDS = 5.0
_RECLAIM_INTERVAL_SECONDS = 60.0


def build_queue(redis_client: Any, *, consumer: Optional[str] = None) -> RedisTaskQueue:
    return RedisTaskQueue(
        redis_client,
        stream=settings.task_stream,
        group=settings.task_group,
        consumer=consumer or settings.task_consumer,
        delayed_key=settings.task_delayed_key,
        dead_letter_stream=settings.task_dead_letter_stream,
        max_attempts=settings.task_max_attempts,
    )


def build_worker(queue: RedisTaskQueue) -> TaskWorker:
    return TaskWorker(
        queue=queue,
        handlers=task_handlers(),
        batch_size=settings.task_batch_size,
        block_ms=settings.task_block_ms,
        retry_base_seconds=settings.task_retry_base_seconds,
        retry_max_seconds=settings.task_retry_max_seconds,
    )


async def _run_forever(worker: TaskWorker, delay: float) -> None:
    while True:
        try:
            processed = await worker.run_once()
        except asyncio.CancelledError:
            raise
        except Exception:
            # queue unreachable; messages stay in redis until the next pass
            logger.exception("task worker iteration failed")
            await asyncio.sleep(_ERROR_BACKOFF_SECONDS)
            continue
        if processed == 0:
            await asyncio.sleep(delay)


async def _reclaim_forever(worker: TaskWorker, queue: RedisTaskQueue, interval: float) -> None:
    while True:
        await asyncio.sleep(interval)
        try:
            messages = await queue.reclaim_stale()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("stale task reclaim failed")
            continue
        for message in messages:
            try:
                await worker.process_message(message)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("reclaimed task processing failed: message_id=%s", message.message_id)


def spawn_workers(
    redis_client: Any,
    *,
    concurrency: Optional[int] = None,
    poll_interval: Optional[float] = None,
    loop: Optional[asyncio.AbstractEventLoop] = None,
) -> Iterable[asyncio.Task]:
    """Create asyncio tasks consuming the pipeline task stream."""

    event_loop = loop or asyncio.get_event_loop()
    count = max(1, concurrency or settings.pipeline_worker_concurrency)
    delay = settings.pipeline_poll_interval if poll_interval is None else poll_interval
    tasks: list[asyncio.Task] = []
    for index in range(count):
        queue = build_queue(redis_client, consumer=f"{settings.task_consumer}-{index}")
        worker = build_worker(queue)
        tasks.append(event_loop.create_task(_run_forever(worker, delay), name=f"pipeline-worker-{index}"))
        if index == 0:
            tasks.append(
                event_loop.create_task(
                    _reclaim_forever(worker, queue, _RECLAIM_INTERVAL_SECONDS), name="pipeline-reclaimer"
                )
            )
    logger.info("pipeline workers started", extra={"concurrency": count})
    return tasks
