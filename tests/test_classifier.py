"""Tests for satisfaction scoring."""
import pytest

from dpe_performance.classifier import (
    category_for,
    check_categories,
    classify,
    combine,
    count_surveys,
    to_chart_rows,
)
from dpe_performance.models import DataQualityKind, SatisfactionCounts


# ---------------------------------------------------------------------------
# category_for
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("score,expected", [
    (5, "csat"), (4, "csat"), (3, "neutral"), (2, "dsat"), (1, "dsat"),
])
def test_category_for_buckets(score, expected):
    assert category_for(score) == expected


@pytest.mark.parametrize("score", [0, 6, -1])
def test_category_for_rejects_out_of_range(score):
    with pytest.raises(ValueError):
        category_for(score)


# ---------------------------------------------------------------------------
# classify
# ---------------------------------------------------------------------------


def test_classify_zero_total_is_no_data():
    assert classify(SatisfactionCounts()) is None


def test_classify_none_is_no_data():
    assert classify(None) is None


def test_classify_two_thirds():
    summary = classify(SatisfactionCounts(csat=2, neutral=1, dsat=0))
    assert summary.total == 3
    assert summary.csat_pct == 66.7
    assert summary.neutral_pct == 33.3
    assert summary.dsat_pct == 0.0


def test_classify_single_bucket():
    summary = classify(SatisfactionCounts(dsat=4))
    assert (summary.csat_pct, summary.neutral_pct, summary.dsat_pct) == (0.0, 0.0, 100.0)


def test_classify_percentages_within_rounding_of_hundred():
    for csat in range(0, 8):
        for neutral in range(0, 8):
            for dsat in range(0, 8):
                summary = classify(SatisfactionCounts(csat=csat, neutral=neutral, dsat=dsat))
                if csat + neutral + dsat == 0:
                    assert summary is None
                    continue
                total_pct = summary.csat_pct + summary.neutral_pct + summary.dsat_pct
                # each bucket rounds independently, so the sum may drift by one tenth
                assert abs(total_pct - 100.0) <= 0.1 + 1e-9


def test_classify_even_thirds_round_independently():
    summary = classify(SatisfactionCounts(csat=1, neutral=1, dsat=1))
    assert (summary.csat_pct, summary.neutral_pct, summary.dsat_pct) == (33.3, 33.3, 33.3)


def test_classify_rounds_half_up():
    # 1/8 = 12.5% exactly; 1/16 = 6.25% rounds up to 6.3
    summary = classify(SatisfactionCounts(csat=14, neutral=1, dsat=1))
    assert summary.neutral_pct == 6.3
    assert summary.dsat_pct == 6.3
    assert summary.csat_pct == 87.5


def test_classify_exact_eighths():
    summary = classify(SatisfactionCounts(csat=6, neutral=1, dsat=1))
    assert summary.csat_pct == 75.0
    assert summary.neutral_pct == 12.5
    assert summary.dsat_pct == 12.5


# ---------------------------------------------------------------------------
# combine / count_surveys
# ---------------------------------------------------------------------------


def test_combine_sums_counts_not_percentages():
    # 1/1 csat and 0/9 csat: averaging percentages would give 50%, summing gives 10%
    combined = combine([
        SatisfactionCounts(csat=1),
        SatisfactionCounts(dsat=9),
    ])
    assert combined == SatisfactionCounts(csat=1, neutral=0, dsat=9)
    assert classify(combined).csat_pct == 10.0


def test_combine_skips_absent():
    combined = combine([None, SatisfactionCounts(neutral=2), None])
    assert combined == SatisfactionCounts(neutral=2)


def test_combine_all_absent_is_none():
    assert combine([None, None]) is None
    assert combine([]) is None


def test_combine_present_zero_is_not_absent():
    assert combine([SatisfactionCounts()]) == SatisfactionCounts()


def test_count_surveys(make_survey, september):
    day = september[0]
    counts = count_surveys([
        make_survey("1", 5, day, "A"),
        make_survey("2", 3, day, "A"),
        make_survey("3", 1, day, "A"),
        make_survey("4", 2, day, "A"),
    ])
    assert counts == SatisfactionCounts(csat=1, neutral=1, dsat=2)


def test_count_surveys_empty_is_none():
    assert count_surveys([]) is None


# ---------------------------------------------------------------------------
# check_categories / to_chart_rows
# ---------------------------------------------------------------------------


def test_check_categories_reports_mismatch(make_survey, september):
    day = september[0]
    issues = check_categories([
        make_survey("OK-1", 5, day, "A", category="CSAT"),
        make_survey("BAD-1", 2, day, "A", category="neutral"),
        make_survey("NONE-1", 3, day, "A"),
    ], "A")
    assert len(issues) == 1
    assert issues[0].kind is DataQualityKind.CATEGORY_MISMATCH
    assert issues[0].reference == "BAD-1"
    assert issues[0].individual == "A"


def test_to_chart_rows():
    rows = to_chart_rows(classify(SatisfactionCounts(csat=3, neutral=1)))
    assert [r["name"] for r in rows] == ["CSAT", "Neutral", "DSAT"]
    assert rows[0]["value"] == 3
    assert rows[0]["percentage"] == 75.0


def test_to_chart_rows_no_data():
    assert to_chart_rows(None) == []
