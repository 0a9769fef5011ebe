"""Storage contracts and in-memory fallbacks for submission pipeline data."""

from __future__ import annotations

import itertools
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Mapping, MutableMapping, Protocol, Sequence

SYSTEM_ACTOR = "system"


@dataclass(slots=True)
class SubmissionRecord:
    """Submission fields the pipeline reads or owns."""

    submission_id: int
    issue_id: int
    status: str
    moderation_status: str
    moderation_summary: str | None
    created_at: datetime
    updated_at: datetime


@dataclass(slots=True)
class SubmissionImage:
    """One uploaded image belonging to a submission."""

    image_id: int
    submission_id: int
    position: int
    r2_key: str
    thumbnail_key: str
    original_name: str
    size: int
    width: int | None = None
    height: int | None = None
    metadata: dict[str, Any] | None = None


@dataclass(slots=True)
class ModerationResultRecord:
    """Append-only moderation attempt for one image."""

    result_id: int
    submission_id: int
    image_id: int | None
    provider: str
    verdict: str
    score: float | None
    reasons: list[str] | None
    raw_response: Any
    created_at: datetime


@dataclass(slots=True)
class AuditLogEntry:
    """Append-only record of a pipeline side effect."""

    entry_id: int
    actor: str
    action: str
    entity: str
    entity_id: str | None
    payload: Any
    created_at: datetime


class PipelineRepository(Protocol):
    """Persistence layer consumed by the thumbnail and moderation handlers."""

    async def get_submission(self, submission_id: int) -> SubmissionRecord | None:
        """Fetch a submission by identifier."""

    async def list_images(self, submission_id: int) -> Sequence[SubmissionImage]:
        """Return a submission's images ordered by position."""

    async def update_image_dimensions(
        self,
        image_id: int,
        *,
        width: int | None = None,
        height: int | None = None,
    ) -> None:
        """Record measured dimensions; absent values keep whatever is stored."""

    async def insert_moderation_result(
        self,
        *,
        submission_id: int,
        image_id: int | None,
        provider: str,
        verdict: str,
        score: float | None = None,
        reasons: Sequence[str] | None = None,
        raw_response: Any = None,
    ) -> ModerationResultRecord:
        """Append a moderation attempt."""

    async def list_moderation_results(self, submission_id: int) -> Sequence[ModerationResultRecord]:
        """Return every moderation row for a submission, most recent first."""

    async def latest_moderation_results(self, submission_id: int) -> Sequence[ModerationResultRecord]:
        """Return the most recent moderation row per image, in image position order."""

    async def update_submission_moderation(self, submission_id: int, status: str, summary: str) -> None:
        """Persist the aggregate moderation status and append the matching audit entry."""

    async def append_audit_log(
        self,
        *,
        actor: str,
        action: str,
        entity: str,
        entity_id: str | int | None = None,
        payload: Any = None,
    ) -> AuditLogEntry:
        """Append an audit entry."""


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class InMemoryPipelineRepository(PipelineRepository):
    """Simple repository with in-memory state for local development and tests."""

    submissions: MutableMapping[int, SubmissionRecord] = field(default_factory=dict)
    images: MutableMapping[int, SubmissionImage] = field(default_factory=dict)
    moderation_results: list[ModerationResultRecord] = field(default_factory=list)
    audit_log: list[AuditLogEntry] = field(default_factory=list)
    _ids: Any = field(default_factory=lambda: itertools.count(1), repr=False)

    def add_submission(self, submission_id: int, *, issue_id: int = 1, status: str = "pending") -> SubmissionRecord:
        now = _now()
        record = SubmissionRecord(
            submission_id=submission_id,
            issue_id=issue_id,
            status=status,
            moderation_status="pending",
            moderation_summary=None,
            created_at=now,
            updated_at=now,
        )
        self.submissions[submission_id] = record
        return record

    def add_image(
        self,
        submission_id: int,
        r2_key: str,
        *,
        thumbnail_key: str,
        position: int | None = None,
        original_name: str | None = None,
        size: int = 0,
        width: int | None = None,
        height: int | None = None,
    ) -> SubmissionImage:
        existing = [image for image in self.images.values() if image.submission_id == submission_id]
        if position is None:
            position = len(existing)
        if any(image.position == position for image in existing):
            raise ValueError(f"position {position} already used for submission {submission_id}")
        image = SubmissionImage(
            image_id=next(self._ids),
            submission_id=submission_id,
            position=position,
            r2_key=r2_key,
            thumbnail_key=thumbnail_key,
            original_name=original_name or r2_key.rsplit("/", 1)[-1],
            size=size,
            width=width,
            height=height,
        )
        self.images[image.image_id] = image
        return image

    async def get_submission(self, submission_id: int) -> SubmissionRecord | None:
        return self.submissions.get(submission_id)

    async def list_images(self, submission_id: int) -> Sequence[SubmissionImage]:
        images = [image for image in self.images.values() if image.submission_id == submission_id]
        return sorted(images, key=lambda image: image.position)

    async def update_image_dimensions(
        self,
        image_id: int,
        *,
        width: int | None = None,
        height: int | None = None,
    ) -> None:
        image = self.images.get(image_id)
        if image is None:
            return
        if width is not None:
            image.width = width
        if height is not None:
            image.height = height
        submission = self.submissions.get(image.submission_id)
        if submission is not None:
            submission.updated_at = _now()

    async def insert_moderation_result(
        self,
        *,
        submission_id: int,
        image_id: int | None,
        provider: str,
        verdict: str,
        score: float | None = None,
        reasons: Sequence[str] | None = None,
        raw_response: Any = None,
    ) -> ModerationResultRecord:
        record = ModerationResultRecord(
            result_id=next(self._ids),
            submission_id=submission_id,
            image_id=image_id,
            provider=provider,
            verdict=verdict,
            score=score,
            reasons=list(reasons) if reasons is not None else None,
            raw_response=raw_response,
            created_at=_now(),
        )
        self.moderation_results.append(record)
        return record

    async def list_moderation_results(self, submission_id: int) -> Sequence[ModerationResultRecord]:
        rows = [row for row in self.moderation_results if row.submission_id == submission_id]
        # ids are monotonic, so they break ties between rows sharing a timestamp
        return sorted(rows, key=lambda row: (row.created_at, row.result_id), reverse=True)

    async def latest_moderation_results(self, submission_id: int) -> Sequence[ModerationResultRecord]:
        latest: dict[int | None, ModerationResultRecord] = {}
        for row in await self.list_moderation_results(submission_id):
            latest.setdefault(row.image_id, row)
        positions = {image.image_id: image.position for image in await self.list_images(submission_id)}
        return sorted(latest.values(), key=lambda row: positions.get(row.image_id, len(positions)))

    async def update_submission_moderation(self, submission_id: int, status: str, summary: str) -> None:
        submission = self.submissions.get(submission_id)
        if submission is not None:
            submission.moderation_status = status
            submission.moderation_summary = summary
            submission.updated_at = _now()
        await self.append_audit_log(
            actor=SYSTEM_ACTOR,
            action="submission-moderated",
            entity="submission",
            entity_id=submission_id,
            payload={"status": status, "summary": summary},
        )

    async def append_audit_log(
        self,
        *,
        actor: str,
        action: str,
        entity: str,
        entity_id: str | int | None = None,
        payload: Any = None,
    ) -> AuditLogEntry:
        entry = AuditLogEntry(
            entry_id=next(self._ids),
            actor=actor,
            action=action,
            entity=entity,
            entity_id=str(entity_id) if entity_id is not None else None,
            payload=dict(payload) if isinstance(payload, Mapping) else payload,
            created_at=_now(),
        )
        self.audit_log.append(entry)
        return entry

    def audit_actions(self) -> list[str]:
        return [entry.action for entry in self.audit_log]
