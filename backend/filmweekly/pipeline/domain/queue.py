"""Queue contracts consumed by the task worker."""

from __future__ import annotations

from typing import Protocol, Sequence


class TaskMessage(Protocol):
    """One delivery of a queue message; the same body may be delivered more than once."""

    message_id: str
    body: str
    attempts: int

    async def ack(self) -> None:
        """Mark the message handled so it is not delivered again."""

    async def retry(self, delay_seconds: float) -> bool:
        """Redeliver after delay_seconds; False when the message was abandoned instead."""


class TaskQueue(Protocol):
    async def send(self, body: str) -> str:
        """Enqueue a message body and return its id."""

    async def receive(self, *, count: int, block_ms: int | None) -> Sequence[TaskMessage]:
        """Return up to count messages, waiting at most block_ms for the first one."""

    async def promote_due(self) -> int:
        """Make delayed retries whose delay has elapsed deliverable again."""
