import pytest

from filmweekly.pipeline.domain.verdicts import (
    APPROVED,
    MANUAL_REVIEW,
    REJECTED,
    aggregate_verdicts,
    build_summary,
    dedupe_reasons,
    summarize,
)


@pytest.mark.parametrize(
    "verdicts, expected",
    [
        (["approved", "approved"], APPROVED),
        (["approved", "rejected"], REJECTED),
        (["blocked"], REJECTED),
        (["flagged", "blocked", "error"], REJECTED),
        (["approved", "flagged"], MANUAL_REVIEW),
        (["approved", "error"], MANUAL_REVIEW),
        (["manual-review"], MANUAL_REVIEW),
        ([], MANUAL_REVIEW),
        (["safe", "unknown-label"], APPROVED),
    ],
)
def test_aggregate_precedence(verdicts, expected):
    assert aggregate_verdicts(verdicts) == expected


def test_aggregate_ignores_order():
    verdicts = ["error", "approved", "rejected"]
    assert aggregate_verdicts(verdicts) == aggregate_verdicts(list(reversed(verdicts)))


def test_dedupe_keeps_first_occurrence_order():
    assert dedupe_reasons(["nudity", "violence", "nudity", "spam"]) == ["nudity", "violence", "spam"]


def test_summary_without_reasons_is_status_only():
    assert build_summary(APPROVED, []) == "approved"


def test_summarize_joins_unique_reasons():
    aggregate = summarize(["rejected", "flagged"], ["nudity", "violence", "nudity"])
    assert aggregate.status == REJECTED
    assert aggregate.summary == "rejected • nudity, violence"


def test_summarize_empty_submission_needs_review():
    aggregate = summarize([], [])
    assert aggregate.status == MANUAL_REVIEW
    assert aggregate.summary == "manual-review"
