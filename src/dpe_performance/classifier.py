"""Satisfaction scoring: score buckets, count rollups and percentage distributions."""
import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable

from .models import (
    DataQualityIssue,
    DataQualityKind,
    SatisfactionCounts,
    SatisfactionSummary,
    SurveyRecord,
)


logger = logging.getLogger(__name__)

CATEGORIES = ("csat", "neutral", "dsat")
CHART_LABELS = {"csat": "CSAT", "neutral": "Neutral", "dsat": "DSAT"}

_ONE_DECIMAL = Decimal("0.1")


def category_for(score: int) -> str:
    """Bucket a 1-5 survey score: 4-5 csat, 3 neutral, 1-2 dsat."""
    if score in (4, 5):
        return "csat"
    if score == 3:
        return "neutral"
    if score in (1, 2):
        return "dsat"
    raise ValueError(f"Satisfaction score must be between 1 and 5, got {score!r}")


def _percentage(count: int, total: int) -> float:
    """Share of total as a percentage, rounded half-up to one decimal."""
    share = Decimal(count * 100) / Decimal(total)
    return float(share.quantize(_ONE_DECIMAL, rounding=ROUND_HALF_UP))


def classify(counts: SatisfactionCounts | None) -> SatisfactionSummary | None:
    """Derive the percentage distribution for a set of counts.

    Returns None ("no data") when there are no surveys at all, so callers can
    tell an empty population apart from a real distribution.
    """
    if counts is None or counts.total == 0:
        return None

    total = counts.total
    return SatisfactionSummary(
        csat=counts.csat,
        neutral=counts.neutral,
        dsat=counts.dsat,
        total=counts.total,
        csat_pct=_percentage(counts.csat, total),
        neutral_pct=_percentage(counts.neutral, total),
        dsat_pct=_percentage(counts.dsat, total),
    )


def combine(counts: Iterable[SatisfactionCounts | None]) -> SatisfactionCounts | None:
    """Sum counts across records. Absent inputs are skipped, all absent gives None."""
    present = [c for c in counts if c is not None]
    if not present:
        return None
    return sum(present[1:], present[0])


def count_surveys(records: Iterable[SurveyRecord]) -> SatisfactionCounts | None:
    """Build counts from raw survey scores."""
    tally = dict.fromkeys(CATEGORIES, 0)
    seen = False
    for record in records:
        tally[category_for(record.overall_satisfaction)] += 1
        seen = True
    if not seen:
        return None
    return SatisfactionCounts(**tally)


def check_categories(
    records: Iterable[SurveyRecord],
    individual: str
) -> list[DataQualityIssue]:
    """Report survey records whose stored category disagrees with their score."""
    issues = []
    for record in records:
        if record.category is None:
            continue
        expected = category_for(record.overall_satisfaction)
        stored = record.category.strip().lower()
        if stored != expected:
            issues.append(DataQualityIssue(
                kind=DataQualityKind.CATEGORY_MISMATCH,
                individual=individual,
                reference=record.case_number,
                detail=(
                    f"score {record.overall_satisfaction} implies {expected}, "
                    f"record says {record.category!r}"
                ),
            ))
    if issues:
        logger.warning("%d survey category mismatch(es) for %s", len(issues), individual)
    return issues


def to_chart_rows(summary: SatisfactionSummary | None) -> list[dict]:
    """Flatten a summary into name/value/percentage rows for charting."""
    if summary is None:
        return []
    return [
        {
            "name": CHART_LABELS[category],
            "value": getattr(summary, category),
            "percentage": getattr(summary, f"{category}_pct"),
        }
        for category in CATEGORIES
    ]
