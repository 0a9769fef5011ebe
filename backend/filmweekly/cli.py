"""Command line entrypoint for running and driving the submission pipeline."""

from __future__ import annotations

import argparse
import asyncio
import logging
from typing import Optional, Sequence

import httpx

from filmweekly import obs
from filmweekly.infra import postgres
from filmweekly.infra.redis import redis_client
from filmweekly.pipeline import configure_postgres, spawn_workers
from filmweekly.pipeline.domain.moderation_orchestrator import recompute_submission_moderation
from filmweekly.pipeline.infra.postgres_repo import PostgresPipelineRepository
from filmweekly.pipeline.workers.dispatch import enqueue_submission_tasks
from filmweekly.pipeline.workers.runner import build_queue

logger = logging.getLogger("filmweekly.cli")


async def _run_workers(concurrency: Optional[int]) -> int:
    pool = await postgres.init_pool()
    http = httpx.AsyncClient()
    configure_postgres(pool, http=http)
    tasks = list(spawn_workers(redis_client, concurrency=concurrency))
    try:
        await asyncio.gather(*tasks)
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await http.aclose()
        await postgres.close_pool()
    return 0


async def _enqueue(submission_id: int) -> int:
    queue = build_queue(redis_client)
    message_ids = await enqueue_submission_tasks(queue, submission_id)
    print("\n".join(message_ids))
    return 0


async def _recompute(submission_id: int) -> int:
    pool = await postgres.init_pool()
    try:
        repository = PostgresPipelineRepository(pool)
        if await repository.get_submission(submission_id) is None:
            logger.error("submission not found", extra={"submission_id": submission_id})
            return 1
        aggregate = await recompute_submission_moderation(repository, submission_id)
    finally:
        await postgres.close_pool()
    print(aggregate.summary)
    return 0


def _positive_int(raw: str) -> int:
    value = int(raw)
    if value <= 0:
        raise argparse.ArgumentTypeError("submission id must be a positive integer")
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="filmweekly-worker", description="FilmWeekly submission pipeline")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="consume the task stream until interrupted")
    run.add_argument("--concurrency", type=int, default=None)

    enqueue = sub.add_parser("enqueue", help="queue thumbnail and moderation tasks for a submission")
    enqueue.add_argument("submission_id", type=_positive_int)

    recompute = sub.add_parser("recompute", help="rebuild a submission's moderation status from stored results")
    recompute.add_argument("submission_id", type=_positive_int)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    obs.init()
    if args.command == "run":
        coro = _run_workers(args.concurrency)
    elif args.command == "enqueue":
        coro = _enqueue(args.submission_id)
    else:
        coro = _recompute(args.submission_id)
    try:
        return asyncio.run(coro)
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
