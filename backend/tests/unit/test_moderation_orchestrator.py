import httpx
import pytest

from filmweekly.pipeline.domain.moderation_client import HttpModerationClient
from filmweekly.pipeline.domain.moderation_orchestrator import (
    ModerationOrchestrator,
    recompute_submission_moderation,
)


def _orchestrator(repository, storage, responses):
    """Build an orchestrator whose endpoint answers per object key.

    ``responses`` maps a key to an httpx.Response or an exception to raise.
    """
    calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        key = request.headers["X-R2-Key"]
        calls.append(key)
        outcome = responses[key]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    client = HttpModerationClient(
        http=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        endpoint="https://moderation.test/v1/moderate",
        token="t",
    )
    return ModerationOrchestrator(repository=repository, storage=storage, client=client), calls


async def _seed(repository, storage, submission_id, keys):
    repository.add_submission(submission_id)
    images = []
    for key in keys:
        images.append(repository.add_image(submission_id, key, thumbnail_key=f"{key}.thumbnail.webp"))
        await storage.put(key, b"bytes-of-" + key.encode(), content_type="image/jpeg")
    return images


@pytest.mark.asyncio
async def test_provider_outage_on_one_image_holds_for_review(repository, storage):
    first, second = await _seed(repository, storage, 10, ["s/10/a.jpg", "s/10/b.jpg"])
    orchestrator, _ = _orchestrator(
        repository,
        storage,
        {
            "s/10/a.jpg": httpx.Response(200, json={"verdict": "approved", "score": 0.01, "reasons": []}),
            "s/10/b.jpg": httpx.Response(503, text="try later"),
        },
    )

    aggregate = await orchestrator.run(10)

    assert aggregate.status == "manual-review"
    assert aggregate.summary == "manual-review • http-503"
    submission = repository.submissions[10]
    assert submission.moderation_status == "manual-review"
    assert submission.moderation_summary == "manual-review • http-503"
    rows = {row.image_id: row for row in repository.moderation_results}
    assert rows[first.image_id].verdict == "approved"
    assert rows[first.image_id].raw_response == {"verdict": "approved", "score": 0.01, "reasons": []}
    assert rows[second.image_id].verdict == "error"
    assert rows[second.image_id].reasons == ["http-503"]
    assert repository.audit_log[-1].action == "submission-moderated"
    assert repository.audit_log[-1].payload == {"status": "manual-review", "summary": "manual-review • http-503"}


@pytest.mark.asyncio
async def test_rejection_wins_and_reasons_are_deduplicated(repository, storage):
    await _seed(repository, storage, 11, ["s/11/a.jpg", "s/11/b.jpg", "s/11/c.jpg"])
    orchestrator, _ = _orchestrator(
        repository,
        storage,
        {
            "s/11/a.jpg": httpx.Response(200, json={"verdict": "rejected", "reasons": ["nudity"]}),
            "s/11/b.jpg": httpx.Response(200, json={"verdict": "flagged", "reasons": ["violence", "nudity"]}),
            "s/11/c.jpg": httpx.Response(200, json={"verdict": "approved"}),
        },
    )

    aggregate = await orchestrator.run(11)

    assert aggregate.status == "rejected"
    assert aggregate.summary == "rejected • nudity, violence"


@pytest.mark.asyncio
async def test_every_image_gets_a_result_despite_failures(repository, storage):
    images = await _seed(repository, storage, 12, ["s/12/a.jpg", "s/12/b.jpg", "s/12/c.jpg"])
    missing = repository.add_image(12, "s/12/missing.jpg", thumbnail_key="s/12/missing.jpg.thumbnail.webp")
    orchestrator, calls = _orchestrator(
        repository,
        storage,
        {
            "s/12/a.jpg": httpx.ConnectError("refused"),
            "s/12/b.jpg": httpx.Response(200, text="<html>oops</html>"),
            "s/12/c.jpg": httpx.Response(200, json={"verdict": "approved"}),
        },
    )

    aggregate = await orchestrator.run(12)

    assert calls == ["s/12/a.jpg", "s/12/b.jpg", "s/12/c.jpg"]
    reasons = {row.image_id: row.reasons for row in repository.moderation_results}
    assert reasons[images[0].image_id] == ["network-error"]
    assert reasons[images[1].image_id] == ["invalid-response"]
    assert reasons[missing.image_id] == ["missing-source"]
    assert len(repository.moderation_results) == 4
    assert aggregate.status == "manual-review"
    assert aggregate.summary == "manual-review • network-error, invalid-response, missing-source"
    failures = [entry for entry in repository.audit_log if entry.action == "moderation-failed-per-image"]
    assert [entry.payload["reason"] for entry in failures] == ["network-error", "invalid-response", "missing-source"]
    assert [entry.entity_id for entry in failures] == [str(images[0].image_id), str(images[1].image_id), str(missing.image_id)]
    assert repository.audit_actions()[-1] == "submission-moderated"


@pytest.mark.asyncio
async def test_submission_without_images_needs_review(repository, storage):
    repository.add_submission(13)
    orchestrator, calls = _orchestrator(repository, storage, {})

    aggregate = await orchestrator.run(13)

    assert calls == []
    assert aggregate.status == "manual-review"
    assert repository.submissions[13].moderation_summary == "manual-review"


@pytest.mark.asyncio
async def test_duplicate_delivery_appends_and_keeps_status(repository, storage):
    await _seed(repository, storage, 14, ["s/14/a.jpg", "s/14/b.jpg"])
    orchestrator, _ = _orchestrator(
        repository,
        storage,
        {
            "s/14/a.jpg": httpx.Response(200, json={"verdict": "approved"}),
            "s/14/b.jpg": httpx.Response(200, json={"verdict": "approved"}),
        },
    )

    first = await orchestrator.run(14)
    second = await orchestrator.run(14)

    assert first == second
    assert repository.submissions[14].moderation_status == "approved"
    assert len(await repository.list_moderation_results(14)) == 4
    assert len(await repository.latest_moderation_results(14)) == 2


@pytest.mark.asyncio
async def test_recompute_uses_latest_result_per_image(repository, storage):
    first, second = await _seed(repository, storage, 15, ["s/15/a.jpg", "s/15/b.jpg"])
    await repository.insert_moderation_result(
        submission_id=15, image_id=first.image_id, provider="external", verdict="rejected", reasons=["nudity"]
    )
    await repository.insert_moderation_result(
        submission_id=15, image_id=first.image_id, provider="manual", verdict="approved"
    )
    await repository.insert_moderation_result(
        submission_id=15, image_id=second.image_id, provider="external", verdict="approved"
    )

    aggregate = await recompute_submission_moderation(repository, 15)

    assert aggregate.status == "approved"
    assert aggregate.summary == "approved"
    assert repository.submissions[15].moderation_status == "approved"


@pytest.mark.asyncio
async def test_recompute_holds_unmoderated_images_for_review(repository, storage):
    first, _ = await _seed(repository, storage, 16, ["s/16/a.jpg", "s/16/b.jpg"])
    await repository.insert_moderation_result(
        submission_id=16, image_id=first.image_id, provider="external", verdict="approved"
    )

    aggregate = await recompute_submission_moderation(repository, 16)

    assert aggregate.status == "manual-review"
    assert aggregate.summary == "manual-review • not-moderated"


@pytest.mark.asyncio
async def test_results_listing_is_most_recent_first(repository, storage):
    first, _ = await _seed(repository, storage, 17, ["s/17/a.jpg", "s/17/b.jpg"])
    older = await repository.insert_moderation_result(
        submission_id=17, image_id=first.image_id, provider="external", verdict="error", reasons=["http-500"]
    )
    newer = await repository.insert_moderation_result(
        submission_id=17, image_id=first.image_id, provider="external", verdict="approved"
    )

    rows = await repository.list_moderation_results(17)

    assert [row.result_id for row in rows] == [newer.result_id, older.result_id]
    assert rows[1].reasons == ["http-500"]


@pytest.mark.asyncio
async def test_timed_out_request_is_recorded_as_network_error(repository, storage):
    [image] = await _seed(repository, storage, 18, ["s/18/slow.jpg"])
    orchestrator, _ = _orchestrator(repository, storage, {"s/18/slow.jpg": httpx.ReadTimeout("read timed out")})

    aggregate = await orchestrator.run(18)

    [row] = repository.moderation_results
    assert row.image_id == image.image_id
    assert row.verdict == "error"
    assert row.reasons == ["network-error"]
    assert row.raw_response == {"message": "read timed out"}
    assert aggregate.summary == "manual-review • network-error"
