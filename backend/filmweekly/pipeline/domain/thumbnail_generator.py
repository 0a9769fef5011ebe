"""Derives display thumbnails for every image of a submission."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from filmweekly.obs import metrics
from filmweekly.pipeline.domain.errors import ThumbnailConversionError
from filmweekly.pipeline.domain.repository import SYSTEM_ACTOR, PipelineRepository, SubmissionImage
from filmweekly.pipeline.domain.storage import ObjectStore
from filmweekly.pipeline.domain.thumbnails import (
    ThumbnailPolicy,
    normalise_content_type,
    render_thumbnail,
    thumbnail_key_for,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ThumbnailRun:
    """Outcome of one thumbnail task, keyed by image id."""

    submission_id: int
    outcomes: dict[int, str] = field(default_factory=dict)

    @property
    def image_count(self) -> int:
        return len(self.outcomes)


@dataclass(slots=True)
class ThumbnailGenerator:
    """Handler for generate-thumbnails tasks.

    Per-image problems (missing source, undecodable bytes) are recorded in the
    audit log and never fail the task. Only errors that stop iteration, such as
    the image list being unavailable, propagate to the queue.
    """

    repository: PipelineRepository
    storage: ObjectStore
    policy: ThumbnailPolicy = field(default_factory=ThumbnailPolicy)

    async def run(self, submission_id: int) -> ThumbnailRun:
        images = await self.repository.list_images(submission_id)
        run = ThumbnailRun(submission_id=submission_id)
        for image in images:
            run.outcomes[image.image_id] = await self._process_image(image)
        await self.repository.append_audit_log(
            actor=SYSTEM_ACTOR,
            action="thumbnails-generated",
            entity="submission",
            entity_id=submission_id,
            payload={"imageCount": len(images)},
        )
        logger.info("thumbnails generated", extra={"image_count": len(images), "outcomes": sorted(run.outcomes.values())})
        return run

    def _thumbnail_key(self, image: SubmissionImage) -> str:
        return image.thumbnail_key or thumbnail_key_for(image.r2_key, self.policy.key_suffix)

    async def _process_image(self, image: SubmissionImage) -> str:
        source = await self.storage.get(image.r2_key)
        if source is None:
            logger.warning("thumbnail source missing: image_id=%s key=%s", image.image_id, image.r2_key)
            metrics.THUMBNAILS_TOTAL.labels(outcome="missing").inc()
            metrics.record_image_failure("thumbnail", "missing-source")
            await self.repository.append_audit_log(
                actor=SYSTEM_ACTOR,
                action="thumbnail-source-missing",
                entity="submission-image",
                entity_id=image.image_id,
                payload={"key": image.r2_key},
            )
            return "missing"

        try:
            render = await asyncio.to_thread(render_thumbnail, source.data, source.content_type, self.policy)
        except ThumbnailConversionError as exc:
            logger.warning("thumbnail conversion failed: image_id=%s error=%s", image.image_id, exc)
            metrics.record_image_failure("thumbnail", "conversion-failed")
            await self.repository.append_audit_log(
                actor=SYSTEM_ACTOR,
                action="thumbnail-conversion-failed",
                entity="submission-image",
                entity_id=image.image_id,
                payload={"message": str(exc)},
            )
            # The original bytes stand in for the thumbnail so the reference always resolves
            data = source.data
            content_type = normalise_content_type(source.content_type)
            width, height = exc.width, exc.height
            outcome = "fallback"
        else:
            data = render.data
            content_type = render.content_type
            width, height = render.width, render.height
            outcome = render.plan.value

        await self.storage.put(
            self._thumbnail_key(image),
            data,
            content_type=content_type,
            cache_control=self.policy.cache_control,
        )
        await self.repository.update_image_dimensions(image.image_id, width=width, height=height)
        metrics.THUMBNAILS_TOTAL.labels(outcome=outcome).inc()
        return outcome
