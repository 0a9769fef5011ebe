"""Submits every image of a submission for moderation and aggregates the verdicts."""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from typing import Any

from filmweekly.obs import metrics
from filmweekly.pipeline.domain.errors import (
    ModerationHttpError,
    ModerationResponseError,
    ModerationTransportError,
)
from filmweekly.pipeline.domain.moderation_client import ModerationClient
from filmweekly.pipeline.domain.repository import SYSTEM_ACTOR, PipelineRepository, SubmissionImage
from filmweekly.pipeline.domain.storage import ObjectStore
from filmweekly.pipeline.domain.thumbnails import GENERIC_CONTENT_TYPE
from filmweekly.pipeline.domain.verdicts import MANUAL_REVIEW, AggregateVerdict, summarize

logger = logging.getLogger(__name__)

ERROR_VERDICT = "error"


@dataclass(slots=True)
class ImageModeration:
    verdict: str
    reasons: list[str]


@dataclass(slots=True)
class ModerationOrchestrator:
    """Handler for content-moderation tasks.

    Each image yields exactly one appended ModerationResult, whether the provider
    answered or not, and the loop never stops early. The aggregate is written to
    the submission afterwards.
    """

    repository: PipelineRepository
    storage: ObjectStore
    client: ModerationClient
    provider: str = "external"

    async def run(self, submission_id: int) -> AggregateVerdict:
        images = await self.repository.list_images(submission_id)
        verdicts: list[str] = []
        reasons: list[str] = []
        for image in images:
            outcome = await self._moderate_image(submission_id, image)
            verdicts.append(outcome.verdict)
            reasons.extend(outcome.reasons)

        aggregate = summarize(verdicts, reasons)
        await self.repository.update_submission_moderation(submission_id, aggregate.status, aggregate.summary)
        metrics.MODERATION_AGGREGATE_TOTAL.labels(status=aggregate.status).inc()
        logger.info(
            "submission moderated",
            extra={"moderation_status": aggregate.status, "moderation_summary": aggregate.summary, "image_count": len(images)},
        )
        return aggregate

    async def _moderate_image(self, submission_id: int, image: SubmissionImage) -> ImageModeration:
        source = await self.storage.get(image.r2_key)
        if source is None:
            return await self._record_error(submission_id, image, "missing-source")

        try:
            result = await self.client.moderate(
                source.data,
                content_type=source.content_type or GENERIC_CONTENT_TYPE,
                source_key=image.r2_key,
            )
        except ModerationTransportError as exc:
            return await self._record_error(submission_id, image, "network-error", raw={"message": str(exc)})
        except ModerationHttpError as exc:
            return await self._record_error(submission_id, image, f"http-{exc.status_code}")
        except ModerationResponseError as exc:
            return await self._record_error(
                submission_id, image, "invalid-response", raw={"message": str(exc), "body": exc.body}
            )

        await self.repository.insert_moderation_result(
            submission_id=submission_id,
            image_id=image.image_id,
            provider=self.provider,
            verdict=result.verdict,
            score=result.score,
            reasons=result.reasons,
            raw_response=result.raw,
        )
        metrics.MODERATION_VERDICTS_TOTAL.labels(verdict=metrics.verdict_label(result.verdict)).inc()
        return ImageModeration(verdict=result.verdict, reasons=list(result.reasons or []))

    async def _record_error(
        self,
        submission_id: int,
        image: SubmissionImage,
        reason: str,
        *,
        raw: Any = None,
    ) -> ImageModeration:
        logger.warning("image moderation failed: image_id=%s reason=%s", image.image_id, reason)
        metrics.record_image_failure("moderation", reason)
        metrics.MODERATION_VERDICTS_TOTAL.labels(verdict=ERROR_VERDICT).inc()
        await self.repository.insert_moderation_result(
            submission_id=submission_id,
            image_id=image.image_id,
            provider=self.provider,
            verdict=ERROR_VERDICT,
            reasons=[reason],
            raw_response=raw,
        )
        await self.repository.append_audit_log(
            actor=SYSTEM_ACTOR,
            action="moderation-failed-per-image",
            entity="submission-image",
            entity_id=image.image_id,
            payload={"reason": reason, "key": image.r2_key},
        )
        return ImageModeration(verdict=ERROR_VERDICT, reasons=[reason])


async def recompute_submission_moderation(repository: PipelineRepository, submission_id: int) -> AggregateVerdict:
    """Re-derive the cached moderation status from the latest result per image.

    Images that have no result yet count as awaiting review.
    """
    latest = await repository.latest_moderation_results(submission_id)
    images = await repository.list_images(submission_id)
    moderated = {row.image_id for row in latest}
    verdicts = [row.verdict for row in latest]
    reasons = list(itertools.chain.from_iterable(row.reasons or [] for row in latest))
    unmoderated = [image for image in images if image.image_id not in moderated]
    if unmoderated:
        verdicts.append(MANUAL_REVIEW)
        reasons.append("not-moderated")
    aggregate = summarize(verdicts, reasons)
    await repository.update_submission_moderation(submission_id, aggregate.status, aggregate.summary)
    return aggregate
