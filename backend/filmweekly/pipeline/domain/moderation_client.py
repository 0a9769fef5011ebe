"""Client for the external image moderation endpoint."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from time import perf_counter
from typing import Any, Protocol

import httpx

from filmweekly.obs import metrics
from filmweekly.pipeline.domain.errors import (
    ModerationHttpError,
    ModerationResponseError,
    ModerationTransportError,
)

_MAX_ERROR_BODY = 2000


@dataclass(frozen=True)
class ModerationVerdict:
    """Structured result returned by the provider for one image."""

    verdict: str
    score: float | None = None
    reasons: list[str] | None = None
    summary: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)


class ModerationClient(Protocol):
    """Moderation endpoint interface for dependency injection."""

    async def moderate(self, payload: bytes, *, content_type: str, source_key: str) -> ModerationVerdict:
        ...


def parse_moderation_response(body: str | bytes) -> ModerationVerdict:
    """Decode a 2xx response body; anything without a string verdict is rejected."""
    try:
        data = json.loads(body)
    except (TypeError, ValueError) as exc:
        raise ModerationResponseError("moderation response is not JSON", body=_preview(body)) from exc
    if not isinstance(data, dict):
        raise ModerationResponseError("moderation response is not an object", body=_preview(body))
    verdict = data.get("verdict")
    if not isinstance(verdict, str) or not verdict:
        raise ModerationResponseError("moderation response has no verdict", body=_preview(body))

    score = data.get("score")
    if isinstance(score, bool) or not isinstance(score, (int, float)):
        score = None
    reasons = data.get("reasons")
    if isinstance(reasons, list):
        reasons = [str(reason) for reason in reasons if isinstance(reason, (str, int, float))]
    else:
        reasons = None
    summary = data.get("summary")
    return ModerationVerdict(
        verdict=verdict,
        score=float(score) if score is not None else None,
        reasons=reasons,
        summary=summary if isinstance(summary, str) else None,
        raw=data,
    )


def _preview(body: str | bytes) -> str:
    if isinstance(body, bytes):
        body = body.decode("utf-8", errors="replace")
    return body[:_MAX_ERROR_BODY]


@dataclass
class HttpModerationClient(ModerationClient):
    """Posts raw image bytes to the moderation endpoint with httpx."""

    http: httpx.AsyncClient
    endpoint: str
    token: str
    key_header: str = "X-R2-Key"
    request_timeout: float = 15.0

    async def moderate(self, payload: bytes, *, content_type: str, source_key: str) -> ModerationVerdict:
        headers = {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": content_type,
            self.key_header: source_key,
        }
        start = perf_counter()
        try:
            response = await self.http.post(
                self.endpoint,
                content=payload,
                headers=headers,
                timeout=self.request_timeout,
            )
        except httpx.HTTPError as exc:
            raise ModerationTransportError(str(exc) or exc.__class__.__name__) from exc
        finally:
            metrics.MODERATION_REQUEST_SECONDS.observe(perf_counter() - start)
        if not response.is_success:
            raise ModerationHttpError(response.status_code, body=response.text[:_MAX_ERROR_BODY])
        return parse_moderation_response(response.content)
