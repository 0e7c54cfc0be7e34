"""CSV case and survey export loading, and snapshot building."""
import logging
from collections import defaultdict
from datetime import date
from pathlib import Path

import pandas as pd
from pydantic import ValidationError

from .classifier import count_surveys
from .models import Case, DateWindow, PerformanceSnapshot, SurveyRecord


logger = logging.getLogger(__name__)


def _rows(csv_path: Path):
    """Yield (index, row dict) with blank cells dropped."""
    df = pd.read_csv(csv_path, dtype=str, keep_default_na=False)
    for idx, row in df.iterrows():
        yield idx, {k: v.strip() for k, v in row.items() if v.strip() != ""}


def get_date_range(csv_path: Path) -> tuple[date, date]:
    """Extract the span of case activity (first created to last closed) from a CSV."""
    dates = []
    for _, row in _rows(csv_path):
        try:
            case = Case.model_validate(row)
        except ValidationError:
            continue
        dates.append(case.created_date)
        if case.closed_date is not None:
            dates.append(case.closed_date)

    if not dates:
        raise ValueError(f"No valid case dates found in {csv_path}")
    return min(dates), max(dates)


def load_cases(
    csv_path: Path,
    start_date: date | None = None,
    end_date: date | None = None
) -> list[Case]:
    """Load cases from a CSV export.

    With a date range, only cases created or closed inside it are kept.
    Rows that fail validation are skipped with a warning.
    """
    window = None
    if start_date is not None or end_date is not None:
        window = DateWindow(date_from=start_date or date.min, date_to=end_date or date.max)

    cases = []
    for idx, row in _rows(csv_path):
        try:
            case = Case.model_validate(row)
        except ValidationError as e:
            logger.warning("Skipping case row %s in %s: %d error(s)", idx, csv_path, e.error_count())
            continue
        if window is not None and not case.is_relevant_to(window):
            continue
        cases.append(case)

    logger.info("Loaded %d case(s) from %s", len(cases), csv_path)
    return cases


def load_surveys(csv_path: Path) -> list[SurveyRecord]:
    """Load survey records from a CSV export, skipping invalid rows."""
    surveys = []
    for idx, row in _rows(csv_path):
        try:
            surveys.append(SurveyRecord.model_validate(row))
        except ValidationError as e:
            logger.warning("Skipping survey row %s in %s: %d error(s)", idx, csv_path, e.error_count())

    logger.info("Loaded %d survey(s) from %s", len(surveys), csv_path)
    return surveys


def _activity_day(case: Case) -> date:
    if case.is_terminal and case.closed_date is not None:
        return case.closed_date
    return case.created_date


def build_snapshots(
    cases: list[Case],
    surveys: list[SurveyRecord] | None = None
) -> list[PerformanceSnapshot]:
    """Group cases and surveys into one snapshot per (owner, day).

    A case is filed under the day it closed, or the day it was created while
    still open. Snapshot SCT is the mean cycle time of the cases closed that
    day (0.0 when none closed).
    """
    cases_by_day = defaultdict(list)
    for case in cases:
        cases_by_day[(case.owner_name, _activity_day(case))].append(case)

    surveys_by_day = defaultdict(list)
    for survey in surveys or []:
        surveys_by_day[(survey.owner_name, survey.survey_date)].append(survey)

    snapshots = []
    for owner, day in sorted(set(cases_by_day) | set(surveys_by_day)):
        if not owner:
            logger.warning("Skipping %s record(s) without an owner", day)
            continue
        day_cases = cases_by_day.get((owner, day), [])
        day_surveys = surveys_by_day.get((owner, day), [])
        closed = [c for c in day_cases if c.is_terminal and c.closed_date is not None]
        cycle_days = [c.cycle_days for c in closed if c.cycle_days >= 0]

        snapshots.append(PerformanceSnapshot(
            individual=owner,
            snapshot_date=day,
            sct=round(sum(cycle_days) / len(cycle_days), 2) if cycle_days else 0.0,
            closed_case_count=len(closed),
            total_case_count=len(day_cases),
            satisfaction_counts=count_surveys(day_surveys),
            sample_cases=day_cases,
            survey_details=day_surveys,
        ))

    return snapshots
