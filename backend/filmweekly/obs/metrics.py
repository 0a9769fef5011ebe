"""Central registry for Prometheus metrics used by the submission pipeline."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, Summary

# Per-image verdicts come from an external service; anything outside this set is
# bucketed as "other" to keep label cardinality bounded.
_KNOWN_VERDICTS = frozenset(
	{"approved", "manual-review", "flagged", "rejected", "blocked", "error"}
)


TASKS_TOTAL = Counter(
	"filmweekly_pipeline_tasks_total",
	"Queue tasks handled by type and outcome",
	["type", "outcome"],
)

TASK_LATENCY_SECONDS = Histogram(
	"filmweekly_pipeline_task_duration_seconds",
	"Task handler latency in seconds",
	["type"],
	buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 30.0, 60.0),
)

THUMBNAILS_TOTAL = Counter(
	"filmweekly_thumbnails_total",
	"Thumbnails written, segmented by render path",
	["outcome"],
)

IMAGE_FAILURES_TOTAL = Counter(
	"filmweekly_pipeline_image_failures_total",
	"Per-image processing failures recorded as data",
	["stage", "reason"],
)

MODERATION_VERDICTS_TOTAL = Counter(
	"filmweekly_moderation_verdicts_total",
	"Per-image verdicts returned by the moderation provider",
	["verdict"],
)

MODERATION_AGGREGATE_TOTAL = Counter(
	"filmweekly_moderation_aggregate_total",
	"Submission-level moderation outcomes",
	["status"],
)

MODERATION_REQUEST_SECONDS = Histogram(
	"filmweekly_moderation_request_seconds",
	"Latency of calls to the moderation endpoint",
	buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0, 15.0),
)

DELAYED_TASKS_PROMOTED = Counter(
	"filmweekly_pipeline_delayed_promoted_total",
	"Delayed retries moved back onto the task stream",
)

REDIS_UP = Gauge("filmweekly_redis_up", "Redis availability (1=up,0=down)")
REDIS_LATENCY = Summary("filmweekly_redis_latency_seconds", "Redis ping latency (seconds)")

POSTGRES_UP = Gauge("filmweekly_postgres_up", "Postgres availability (1=up,0=down)")
POSTGRES_LATENCY = Summary("filmweekly_postgres_latency_seconds", "Postgres ping latency (seconds)")


def verdict_label(verdict: str) -> str:
	return verdict if verdict in _KNOWN_VERDICTS else "other"


def record_task(task_type: str, outcome: str, *, duration_seconds: float | None = None) -> None:
	TASKS_TOTAL.labels(type=task_type, outcome=outcome).inc()
	if duration_seconds is not None:
		TASK_LATENCY_SECONDS.labels(type=task_type).observe(duration_seconds)


def record_image_failure(stage: str, reason: str) -> None:
	# http-<status> reasons collapse to their class to bound cardinality
	if reason.startswith("http-") and len(reason) == 8:
		reason = f"http-{reason[5]}xx"
	IMAGE_FAILURES_TOTAL.labels(stage=stage, reason=reason).inc()


def mark_redis(ok: bool, *, latency_seconds: float | None = None) -> None:
	REDIS_UP.set(1 if ok else 0)
	if latency_seconds is not None:
		REDIS_LATENCY.observe(latency_seconds)


def mark_postgres(ok: bool, *, latency_seconds: float | None = None) -> None:
	POSTGRES_UP.set(1 if ok else 0)
	if latency_seconds is not None:
		POSTGRES_LATENCY.observe(latency_seconds)
