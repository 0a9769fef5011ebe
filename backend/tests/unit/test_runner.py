import asyncio

import pytest

from filmweekly.pipeline.workers import runner


class StubMessage:
    def __init__(self, message_id: str) -> None:
        self.message_id = message_id


class StaleQueue:
    async def reclaim_stale(self):
        return [StubMessage("1-0"), StubMessage("2-0")]


class FlakyWorker:
    def __init__(self) -> None:
        self.seen: list[str] = []

    async def process_message(self, message):
        self.seen.append(message.message_id)
        if message.message_id == "1-0":
            raise ConnectionError("redis blip during ack")
        return "ok"


@pytest.mark.asyncio
async def test_reclaimer_survives_processing_errors():
    worker = FlakyWorker()
    task = asyncio.create_task(runner._reclaim_forever(worker, StaleQueue(), 0))  # type: ignore[arg-type]

    for _ in range(10):
        await asyncio.sleep(0)

    assert not task.done()
    # the failing message does not stop the rest of the batch or later passes
    assert worker.seen[:4] == ["1-0", "2-0", "1-0", "2-0"]

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
