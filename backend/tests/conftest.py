import sys
from pathlib import Path

import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from filmweekly.infra.redis import redis_client, set_redis_client
from filmweekly.pipeline.domain.repository import InMemoryPipelineRepository
from filmweekly.pipeline.domain.storage import InMemoryObjectStore


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	original = redis_client.client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture
def repository() -> InMemoryPipelineRepository:
	return InMemoryPipelineRepository()


@pytest.fixture
def storage() -> InMemoryObjectStore:
	return InMemoryObjectStore()
