"""Lightweight service container shared by the pipeline workers."""

from __future__ import annotations

from typing import Optional

import asyncpg
import httpx

from filmweekly.pipeline.domain.errors import PipelineError
from filmweekly.pipeline.domain.moderation_client import HttpModerationClient, ModerationClient
from filmweekly.pipeline.domain.moderation_orchestrator import ModerationOrchestrator
from filmweekly.pipeline.domain.repository import InMemoryPipelineRepository, PipelineRepository
from filmweekly.pipeline.domain.storage import InMemoryObjectStore, ObjectStore
from filmweekly.pipeline.domain.tasks import MODERATION_TASK, THUMBNAIL_TASK
from filmweekly.pipeline.domain.thumbnail_generator import ThumbnailGenerator
from filmweekly.pipeline.domain.thumbnails import ThumbnailPolicy
from filmweekly.pipeline.infra.postgres_repo import PostgresPipelineRepository
from filmweekly.pipeline.infra.s3_store import S3ObjectStore
from filmweekly.settings import settings

_repository: PipelineRepository = InMemoryPipelineRepository()
_storage: ObjectStore = InMemoryObjectStore()
_moderation_client: Optional[ModerationClient] = None
_policy: ThumbnailPolicy = ThumbnailPolicy.from_settings(settings)


def configure(
    *,
    repository: Optional[PipelineRepository] = None,
    storage: Optional[ObjectStore] = None,
    moderation_client: Optional[ModerationClient] = None,
    policy: Optional[ThumbnailPolicy] = None,
) -> None:
    global _repository, _storage, _moderation_client, _policy
    if repository is not None:
        _repository = repository
    if storage is not None:
        _storage = storage
    if moderation_client is not None:
        _moderation_client = moderation_client
    if policy is not None:
        _policy = policy


def configure_postgres(pool: asyncpg.Pool, *, http: httpx.AsyncClient) -> None:
    """Wire production implementations: asyncpg metadata, configured object store, HTTP moderation.

    The caller owns ``http`` and closes it on shutdown.
    """
    configure(
        repository=PostgresPipelineRepository(pool),
        storage=build_object_store(),
        moderation_client=build_moderation_client(http),
    )


def build_object_store() -> ObjectStore:
    if settings.object_store_backend.lower() == "memory":
        return InMemoryObjectStore()
    return S3ObjectStore.from_settings(settings)


def build_moderation_client(http: httpx.AsyncClient) -> HttpModerationClient:
    return HttpModerationClient(
        http=http,
        endpoint=settings.moderation_api_url,
        token=settings.moderation_api_token,
        key_header=settings.moderation_key_header,
        request_timeout=settings.moderation_timeout_seconds,
    )


def get_moderation_client() -> ModerationClient:
    if _moderation_client is None:
        raise PipelineError("moderation client is not configured; call configure_postgres() or configure() first")
    return _moderation_client


def get_thumbnail_generator() -> ThumbnailGenerator:
    return ThumbnailGenerator(repository=_repository, storage=_storage, policy=_policy)


def get_moderation_orchestrator() -> ModerationOrchestrator:
    return ModerationOrchestrator(
        repository=_repository,
        storage=_storage,
        client=get_moderation_client(),
        provider=settings.moderation_provider_name,
    )


def task_handlers() -> dict:
    """Map each task type to the bound handler that processes it."""
    return {
        THUMBNAIL_TASK: get_thumbnail_generator().run,
        MODERATION_TASK: get_moderation_orchestrator().run,
    }
