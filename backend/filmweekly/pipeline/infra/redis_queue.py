"""Redis Streams task queue with consumer groups and delayed retries.

Messages are stream entries ``{"body": <json text>, "attempts": "<n>"}`` read
through a consumer group. Retries leave the stream and wait in a sorted set
scored by due time until ``promote_due`` appends them again with an incremented
attempt counter. Messages past ``max_attempts`` go to a dead-letter stream.
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Sequence

from redis.exceptions import ResponseError, WatchError

from filmweekly.obs import metrics
from filmweekly.pipeline.domain.queue import TaskMessage, TaskQueue

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RedisTaskMessage(TaskMessage):
    queue: "RedisTaskQueue"
    message_id: str
    body: str
    attempts: int

    async def ack(self) -> None:
        await self.queue.ack(self)

    async def retry(self, delay_seconds: float) -> bool:
        return await self.queue.retry(self, delay_seconds)


class RedisTaskQueue(TaskQueue):
    def __init__(
        self,
        redis: Any,
        *,
        stream: str = "pipeline:tasks",
        group: str = "pipeline-workers",
        consumer: str = "worker-1",
        delayed_key: str = "pipeline:tasks:delayed",
        dead_letter_stream: str = "pipeline:tasks:dead",
        max_attempts: int = 8,
        promote_batch: int = 100,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.redis = redis
        self.stream = stream
        self.group = group
        self.consumer = consumer
        self.delayed_key = delayed_key
        self.dead_letter_stream = dead_letter_stream
        self.max_attempts = max_attempts
        self.promote_batch = promote_batch
        self.clock = clock
        self._group_ready = False

    async def ensure_group(self) -> None:
        if self._group_ready:
            return
        try:
            await self.redis.xgroup_create(self.stream, self.group, id="0", mkstream=True)
        except ResponseError as exc:
            if "BUSYGROUP" not in str(exc):
                raise
        self._group_ready = True

    async def send(self, body: str, *, attempts: int = 1) -> str:
        entry_id = await self.redis.xadd(self.stream, {"body": body, "attempts": str(attempts)})
        return _text(entry_id)

    async def receive(self, *, count: int, block_ms: int | None) -> Sequence[RedisTaskMessage]:
        await self.ensure_group()
        response = await self.redis.xreadgroup(
            self.group,
            self.consumer,
            {self.stream: ">"},
            count=count,
            block=block_ms,
        )
        messages: list[RedisTaskMessage] = []
        for _stream, entries in _stream_entries(response):
            for entry_id, fields in entries:
                messages.append(self._message(entry_id, fields))
        return messages

    async def ack(self, message: RedisTaskMessage) -> None:
        await self.redis.xack(self.stream, self.group, message.message_id)
        await self.redis.xdel(self.stream, message.message_id)

    async def retry(self, message: RedisTaskMessage, delay_seconds: float) -> bool:
        next_attempt = message.attempts + 1
        if next_attempt > self.max_attempts:
            logger.error(
                "task abandoned after %s attempts: message_id=%s", message.attempts, message.message_id
            )
            await self.redis.xadd(
                self.dead_letter_stream,
                {"body": message.body, "attempts": str(message.attempts), "message_id": message.message_id},
            )
            await self.ack(message)
            return False
        # the source id keeps members unique when identical bodies are delayed together
        member = json.dumps({"body": message.body, "attempts": next_attempt, "source": message.message_id})
        await self.redis.zadd(self.delayed_key, {member: self.clock() + delay_seconds})
        await self.ack(message)
        return True

    async def promote_due(self) -> int:
        due = await self.redis.zrangebyscore(
            self.delayed_key, "-inf", self.clock(), start=0, num=self.promote_batch
        )
        promoted = 0
        for member in due:
            if await self._promote(member):
                promoted += 1
        if promoted:
            metrics.DELAYED_TASKS_PROMOTED.inc(promoted)
        return promoted

    async def _promote(self, member: Any) -> bool:
        """Move one delayed entry back onto the stream; ZREM and XADD commit together or not at all."""
        data = json.loads(_text(member))
        fields = {"body": str(data.get("body", "")), "attempts": str(_attempts(data.get("attempts")))}
        async with self.redis.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(self.delayed_key)
                # another consumer may already have promoted this entry
                if await pipe.zscore(self.delayed_key, member) is None:
                    return False
                pipe.multi()
                pipe.zrem(self.delayed_key, member)
                pipe.xadd(self.stream, fields)
                await pipe.execute()
            except WatchError:
                # the delayed set changed underneath us; the next pass picks the entry up
                return False
        return True

    async def reclaim_stale(self, *, min_idle_ms: int = 300_000, count: int = 50) -> list[RedisTaskMessage]:
        """Take over entries a crashed consumer read but never acknowledged."""
        await self.ensure_group()
        response = await self.redis.xautoclaim(
            self.stream, self.group, self.consumer, min_idle_time=min_idle_ms, start_id="0-0", count=count
        )
        claimed = response[1] if len(response) > 1 else []
        # entries deleted while pending come back with empty fields
        messages = [self._message(entry_id, fields) for entry_id, fields in claimed if fields]
        if messages:
            logger.warning("reclaimed %s stale task entries", len(messages))
        return messages

    def _message(self, entry_id: Any, fields: Mapping[Any, Any]) -> RedisTaskMessage:
        decoded = _decode(fields)
        return RedisTaskMessage(
            queue=self,
            message_id=_text(entry_id),
            body=str(decoded.get("body", "")),
            attempts=_attempts(decoded.get("attempts")),
        )


def _text(value: Any) -> str:
    return value.decode("utf-8") if isinstance(value, bytes) else str(value)


def _attempts(raw: Any) -> int:
    try:
        return max(1, int(raw))
    except (TypeError, ValueError):
        return 1


def _decode(payload: Mapping[Any, Any]) -> Mapping[str, Any]:
    decoded: dict[str, Any] = {}
    for key, value in payload.items():
        decoded[_text(key)] = value.decode("utf-8") if isinstance(value, bytes) else value
    return decoded


def _stream_entries(response: Any) -> list[tuple[Any, list[tuple[Any, Mapping[Any, Any]]]]]:
    if not response:
        return []
    return [(stream, entries) for stream, entries in response]
