import pytest

from filmweekly.pipeline.domain import container
from filmweekly.pipeline.domain.errors import PipelineError
from filmweekly.pipeline.domain.moderation_client import ModerationVerdict
from filmweekly.pipeline.domain.tasks import MODERATION_TASK, THUMBNAIL_TASK


class ApproveAll:
    def __init__(self) -> None:
        self.keys: list[str] = []

    async def moderate(self, payload, *, content_type, source_key):
        self.keys.append(source_key)
        return ModerationVerdict(verdict="approved", raw={"verdict": "approved"})


@pytest.mark.asyncio
async def test_task_handlers_use_configured_dependencies(repository, storage, monkeypatch):
    monkeypatch.setattr(container, "_repository", container._repository)
    monkeypatch.setattr(container, "_storage", container._storage)
    monkeypatch.setattr(container, "_moderation_client", container._moderation_client)
    client = ApproveAll()
    container.configure(repository=repository, storage=storage, moderation_client=client)
    repository.add_submission(40)
    image = repository.add_image(40, "s/40/a.jpg", thumbnail_key="s/40/a.jpg.thumbnail.webp")
    await storage.put(image.r2_key, b"bytes", content_type="image/jpeg")

    handlers = container.task_handlers()
    await handlers[MODERATION_TASK](40)

    assert set(handlers) == {THUMBNAIL_TASK, MODERATION_TASK}
    assert client.keys == ["s/40/a.jpg"]
    assert repository.submissions[40].moderation_status == "approved"


def test_handlers_require_a_configured_moderation_client(monkeypatch):
    monkeypatch.setattr(container, "_moderation_client", None)

    with pytest.raises(PipelineError):
        container.task_handlers()
