"""Submission-level aggregation of per-image moderation verdicts."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Sequence

APPROVED = "approved"
MANUAL_REVIEW = "manual-review"
REJECTED = "rejected"

REJECTING_VERDICTS = frozenset({"rejected", "blocked"})
REVIEW_VERDICTS = frozenset({"manual-review", "flagged", "error"})

SUMMARY_SEPARATOR = " • "


@dataclass(frozen=True)
class AggregateVerdict:
    """Aggregate moderation status plus the summary shown to reviewers."""

    status: str
    summary: str


def aggregate_verdicts(verdicts: Sequence[str]) -> str:
    """Combine per-image verdicts into approved, manual-review or rejected.

    Any rejecting verdict wins; otherwise any review or error verdict holds the
    submission for manual review. An empty list is never approved.
    """
    if any(verdict in REJECTING_VERDICTS for verdict in verdicts):
        return REJECTED
    if any(verdict in REVIEW_VERDICTS for verdict in verdicts):
        return MANUAL_REVIEW
    return APPROVED if verdicts else MANUAL_REVIEW


def dedupe_reasons(reasons: Iterable[str]) -> list[str]:
    # dict preserves first-occurrence order
    return list(dict.fromkeys(reasons))


def build_summary(status: str, reasons: Iterable[str]) -> str:
    unique = dedupe_reasons(reasons)
    if not unique:
        return status
    return f"{status}{SUMMARY_SEPARATOR}{', '.join(unique)}"


def summarize(verdicts: Sequence[str], reasons: Iterable[str]) -> AggregateVerdict:
    status = aggregate_verdicts(verdicts)
    return AggregateVerdict(status=status, summary=build_summary(status, reasons))
