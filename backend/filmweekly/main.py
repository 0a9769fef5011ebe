"""FastAPI entrypoint for the pipeline worker process (ops endpoints only)."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI

from filmweekly import obs
from filmweekly.api import ops
from filmweekly.infra import postgres
from filmweekly.infra.redis import redis_client
from filmweekly.pipeline import configure_postgres as configure_pipeline
from filmweekly.pipeline import spawn_workers as spawn_pipeline_workers
from filmweekly.settings import settings


@asynccontextmanager
async def lifespan(app: FastAPI):
	obs.init()
	pool = await postgres.init_pool()
	http = httpx.AsyncClient()
	configure_pipeline(pool, http=http)
	worker_tasks: list[asyncio.Task] = []
	if settings.pipeline_workers_enabled:
		worker_tasks.extend(spawn_pipeline_workers(redis_client))
	app.state.pipeline_workers = worker_tasks
	try:
		yield
	finally:
		for task in worker_tasks:
			task.cancel()
		if worker_tasks:
			await asyncio.gather(*worker_tasks, return_exceptions=True)
		await http.aclose()
		await postgres.close_pool()


def create_app() -> FastAPI:
	application = FastAPI(title="FilmWeekly pipeline", lifespan=lifespan)
	application.include_router(ops.router)
	return application


app = create_app()
