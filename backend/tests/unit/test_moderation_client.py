import json

import httpx
import pytest

from filmweekly.pipeline.domain.errors import (
    ModerationHttpError,
    ModerationResponseError,
    ModerationTransportError,
)
from filmweekly.pipeline.domain.moderation_client import HttpModerationClient, parse_moderation_response


def _client(handler, **kwargs) -> HttpModerationClient:
    return HttpModerationClient(
        http=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        endpoint="https://moderation.test/v1/moderate",
        token="secret-token",
        **kwargs,
    )


@pytest.mark.asyncio
async def test_posts_raw_bytes_with_source_headers():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"verdict": "approved", "score": 0.02, "reasons": []})

    result = await _client(handler).moderate(b"image-bytes", content_type="image/png", source_key="submissions/1/a.png")

    request = seen[0]
    assert request.method == "POST"
    assert request.content == b"image-bytes"
    assert request.headers["Authorization"] == "Bearer secret-token"
    assert request.headers["Content-Type"] == "image/png"
    assert request.headers["X-R2-Key"] == "submissions/1/a.png"
    assert result.verdict == "approved"
    assert result.score == pytest.approx(0.02)
    assert result.reasons == []


@pytest.mark.asyncio
async def test_non_success_status_raises_http_error():
    client = _client(lambda request: httpx.Response(503, text="unavailable"))

    with pytest.raises(ModerationHttpError) as excinfo:
        await client.moderate(b"x", content_type="image/jpeg", source_key="k")

    assert excinfo.value.status_code == 503


@pytest.mark.asyncio
async def test_transport_failure_raises_transport_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ModerationTransportError):
        await _client(handler).moderate(b"x", content_type="image/jpeg", source_key="k")


def test_parse_keeps_full_payload_as_raw():
    body = json.dumps({"verdict": "flagged", "score": 1, "reasons": ["violence"], "model": "v3"})

    result = parse_moderation_response(body)

    assert result.verdict == "flagged"
    assert result.score == 1.0
    assert result.reasons == ["violence"]
    assert result.raw["model"] == "v3"


def test_parse_drops_malformed_optional_fields():
    result = parse_moderation_response('{"verdict": "approved", "score": true, "reasons": "none"}')

    assert result.score is None
    assert result.reasons is None


@pytest.mark.parametrize("body", ["<html>", "[1, 2]", '{"score": 0.5}', '{"verdict": ""}'])
def test_parse_rejects_bodies_without_verdict(body):
    with pytest.raises(ModerationResponseError):
        parse_moderation_response(body)


@pytest.mark.asyncio
async def test_request_timeout_is_applied_to_the_call():
    timeouts: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        timeouts.append(request.extensions["timeout"])
        return httpx.Response(200, json={"verdict": "approved"})

    await _client(handler, request_timeout=2.5).moderate(b"x", content_type="image/jpeg", source_key="k")

    assert timeouts[0]["read"] == 2.5
    assert timeouts[0]["connect"] == 2.5


@pytest.mark.asyncio
async def test_read_timeout_raises_transport_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("read timed out", request=request)

    with pytest.raises(ModerationTransportError) as excinfo:
        await _client(handler, request_timeout=0.1).moderate(b"x", content_type="image/jpeg", source_key="k")

    assert str(excinfo.value) == "read timed out"
