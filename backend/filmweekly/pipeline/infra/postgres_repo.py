"""PostgreSQL implementation of the pipeline repository."""

from __future__ import annotations

import json
from typing import Any, Sequence

import asyncpg

from filmweekly.pipeline.domain.repository import (
    SYSTEM_ACTOR,
    AuditLogEntry,
    ModerationResultRecord,
    PipelineRepository,
    SubmissionImage,
    SubmissionRecord,
)

_RESULT_COLUMNS = "id, submission_id, image_id, provider, verdict, score, reasons, raw_response, created_at"


class PostgresPipelineRepository(PipelineRepository):
    """Asyncpg-backed repository for submissions, images, moderation results and audit logs."""

    def __init__(self, pool: asyncpg.Pool) -> None:
        self.pool = pool

    async def get_submission(self, submission_id: int) -> SubmissionRecord | None:
        query = """
        SELECT id, issue_id, status, moderation_status, moderation_summary, created_at, updated_at
        FROM submissions
        WHERE id = $1
        """
        record = await self.pool.fetchrow(query, submission_id)
        return _submission_from_record(record) if record else None

    async def list_images(self, submission_id: int) -> Sequence[SubmissionImage]:
        query = """
        SELECT id, submission_id, position, r2_key, thumbnail_key, original_name, size, width, height, metadata_json
        FROM submission_images
        WHERE submission_id = $1
        ORDER BY position
        """
        rows = await self.pool.fetch(query, submission_id)
        return [_image_from_record(row) for row in rows]

    async def update_image_dimensions(
        self,
        image_id: int,
        *,
        width: int | None = None,
        height: int | None = None,
    ) -> None:
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(
                    """
                    UPDATE submission_images
                    SET width = COALESCE($2, width),
                        height = COALESCE($3, height)
                    WHERE id = $1
                    """,
                    image_id,
                    width,
                    height,
                )
                await conn.execute(
                    """
                    UPDATE submissions
                    SET updated_at = NOW()
                    WHERE id = (SELECT submission_id FROM submission_images WHERE id = $1)
                    """,
                    image_id,
                )

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
        query = f"""
        INSERT INTO moderation_results (submission_id, image_id, provider, verdict, score, reasons, raw_response)
        VALUES ($1, $2, $3, $4, $5, $6::jsonb, $7::jsonb)
        RETURNING {_RESULT_COLUMNS}
        """
        record = await self.pool.fetchrow(
            query,
            submission_id,
            image_id,
            provider,
            verdict,
            score,
            _dump(list(reasons) if reasons is not None else None),
            _dump(raw_response),
        )
        return _result_from_record(record)

    async def list_moderation_results(self, submission_id: int) -> Sequence[ModerationResultRecord]:
        query = f"""
        SELECT {_RESULT_COLUMNS}
        FROM moderation_results
        WHERE submission_id = $1
        ORDER BY created_at DESC, id DESC
        """
        rows = await self.pool.fetch(query, submission_id)
        return [_result_from_record(row) for row in rows]

    async def latest_moderation_results(self, submission_id: int) -> Sequence[ModerationResultRecord]:
        query = f"""
        SELECT latest.*
        FROM (
            SELECT DISTINCT ON (image_id) {_RESULT_COLUMNS}
            FROM moderation_results
            WHERE submission_id = $1
            ORDER BY image_id, created_at DESC, id DESC
        ) AS latest
        LEFT JOIN submission_images si ON si.id = latest.image_id
        ORDER BY si.position NULLS LAST
        """
        rows = await self.pool.fetch(query, submission_id)
        return [_result_from_record(row) for row in rows]

    async def update_submission_moderation(self, submission_id: int, status: str, summary: str) -> None:
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(
                    """
                    UPDATE submissions
                    SET moderation_status = $2,
                        moderation_summary = $3,
                        updated_at = NOW()
                    WHERE id = $1
                    """,
                    submission_id,
                    status,
                    summary,
                )
                await _insert_audit(
                    conn,
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
        async with self.pool.acquire() as conn:
            return await _insert_audit(
                conn,
                actor=actor,
                action=action,
                entity=entity,
                entity_id=entity_id,
                payload=payload,
            )


async def _insert_audit(
    conn: asyncpg.Connection,
    *,
    actor: str,
    action: str,
    entity: str,
    entity_id: str | int | None,
    payload: Any,
) -> AuditLogEntry:
    record = await conn.fetchrow(
        """
        INSERT INTO audit_logs (actor, action, entity, entity_id, payload)
        VALUES ($1, $2, $3, $4, $5::jsonb)
        RETURNING id, actor, action, entity, entity_id, payload, created_at
        """,
        actor,
        action,
        entity,
        str(entity_id) if entity_id is not None else None,
        _dump(payload),
    )
    return AuditLogEntry(
        entry_id=record["id"],
        actor=record["actor"],
        action=record["action"],
        entity=record["entity"],
        entity_id=record["entity_id"],
        payload=_load(record["payload"]),
        created_at=record["created_at"],
    )


def _dump(value: Any) -> str | None:
    return json.dumps(value) if value is not None else None


def _load(value: Any) -> Any:
    if isinstance(value, str):
        return json.loads(value)
    return value


def _submission_from_record(record: asyncpg.Record) -> SubmissionRecord:
    return SubmissionRecord(
        submission_id=record["id"],
        issue_id=record["issue_id"],
        status=record["status"],
        moderation_status=record["moderation_status"],
        moderation_summary=record["moderation_summary"],
        created_at=record["created_at"],
        updated_at=record["updated_at"],
    )


def _image_from_record(record: asyncpg.Record) -> SubmissionImage:
    return SubmissionImage(
        image_id=record["id"],
        submission_id=record["submission_id"],
        position=record["position"],
        r2_key=record["r2_key"],
        thumbnail_key=record["thumbnail_key"],
        original_name=record["original_name"],
        size=record["size"],
        width=record["width"],
        height=record["height"],
        metadata=_load(record["metadata_json"]),
    )


def _result_from_record(record: asyncpg.Record) -> ModerationResultRecord:
    return ModerationResultRecord(
        result_id=record["id"],
        submission_id=record["submission_id"],
        image_id=record["image_id"],
        provider=record["provider"],
        verdict=record["verdict"],
        score=record["score"],
        reasons=_load(record["reasons"]),
        raw_response=_load(record["raw_response"]),
        created_at=record["created_at"],
    )
