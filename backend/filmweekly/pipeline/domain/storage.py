"""Object storage contract for original and derived images."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import MutableMapping, Protocol


@dataclass(frozen=True, slots=True)
class StoredObject:
    key: str
    data: bytes
    content_type: str | None = None
    cache_control: str | None = None


class ObjectStore(Protocol):
    async def get(self, key: str) -> StoredObject | None:
        """Return the object stored under key, or None when it does not exist."""

    async def put(self, key: str, data: bytes, *, content_type: str, cache_control: str | None = None) -> None:
        """Write data under key, replacing any previous object."""


@dataclass
class InMemoryObjectStore(ObjectStore):
    """Dictionary-backed store for local development and tests."""

    objects: MutableMapping[str, StoredObject] = field(default_factory=dict)

    async def get(self, key: str) -> StoredObject | None:
        return self.objects.get(key)

    async def put(self, key: str, data: bytes, *, content_type: str, cache_control: str | None = None) -> None:
        self.objects[key] = StoredObject(key=key, data=bytes(data), content_type=content_type, cache_control=cache_control)
