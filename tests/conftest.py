"""Shared fixtures and in-memory collaborators."""
import asyncio
from datetime import date

import pytest

from dpe_performance.models import (
    Case,
    Entity,
    Hierarchy,
    PerformanceSnapshot,
    SatisfactionCounts,
    SurveyRecord,
)


class FakeHierarchyStore:
    def __init__(self, hierarchy: Hierarchy):
        self.hierarchy = hierarchy
        self.reads = 0

    async def load_hierarchy(self) -> Hierarchy:
        self.reads += 1
        return self.hierarchy


class FakeRecordSource:
    """Snapshot source with per-individual failures and delays."""

    def __init__(self, snapshots=None, failures=None, delays=None):
        self.snapshots = snapshots or {}
        self.failures = failures or {}
        self.delays = delays or {}
        self.calls = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def get_snapshots(self, individual, date_from, date_to):
        self.calls.append(individual)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(self.delays.get(individual, 0))
            failure = self.failures.get(individual)
            if isinstance(failure, list):
                if failure:
                    raise failure.pop(0)
            elif failure is not None:
                raise failure
            return list(self.snapshots.get(individual, []))
        finally:
            self.in_flight -= 1


def _case(case_id, owner, created, closed=None, status=None, priority="P2"):
    return Case(
        case_id=case_id,
        owner_name=owner,
        title=f"Case {case_id}",
        priority=priority,
        products=["Apex One"],
        status=status or ("Closed" if closed else "Open"),
        created_date=created,
        closed_date=closed,
    )


def _snapshot(individual, day, cases=(), satisfaction=None, surveys=()):
    closed = [c for c in cases if c.is_terminal]
    return PerformanceSnapshot(
        individual=individual,
        snapshot_date=day,
        closed_case_count=len(closed),
        total_case_count=len(cases),
        satisfaction_counts=SatisfactionCounts(**satisfaction) if satisfaction else None,
        sample_cases=list(cases),
        survey_details=list(surveys),
    )


def _survey(case_number, score, day, owner, category=None):
    return SurveyRecord(
        case_number=case_number,
        overall_satisfaction=score,
        category=category,
        feedback="",
        survey_date=day,
        customer_name="Acme",
        product_area="Endpoint",
        owner_name=owner,
    )


@pytest.fixture
def make_case():
    return _case


@pytest.fixture
def make_snapshot():
    return _snapshot


@pytest.fixture
def make_survey():
    return _survey


@pytest.fixture
def september():
    return date(2025, 9, 1), date(2025, 9, 30)


@pytest.fixture
def hierarchy():
    """Two teams: Support (Alpha, Beta squads) and Platform (Gamma squad)."""
    return Hierarchy(
        teams=[
            Entity(id="t1", name="Support"),
            Entity(id="t2", name="Platform"),
        ],
        squads=[
            Entity(id="s1", name="Alpha", parent_id="t1"),
            Entity(id="s2", name="Beta", parent_id="t1"),
            Entity(id="s3", name="Gamma", parent_id="t2"),
        ],
        dpes=[
            Entity(id="d1", name="A", parent_id="s1"),
            Entity(id="d2", name="B", parent_id="s1"),
            Entity(id="d3", name="C", parent_id="s2"),
            Entity(id="d4", name="D", parent_id="s3"),
        ],
    )


@pytest.fixture
def alpha_source():
    """Squad Alpha: A has SCT 4 over 3 closed cases, B has SCT 8 over 1."""
    a_cases = [
        _case("A-1", "A", date(2025, 9, 1), date(2025, 9, 5)),
        _case("A-2", "A", date(2025, 9, 2), date(2025, 9, 6)),
        _case("A-3", "A", date(2025, 9, 10), date(2025, 9, 14)),
    ]
    a_surveys = [
        _survey("A-1", 5, date(2025, 9, 7), "A", category="csat"),
        _survey("A-2", 4, date(2025, 9, 8), "A", category="csat"),
        _survey("A-3", 3, date(2025, 9, 15), "A", category="neutral"),
    ]
    b_cases = [_case("B-1", "B", date(2025, 9, 3), date(2025, 9, 11))]
    return FakeRecordSource(snapshots={
        "A": [_snapshot(
            "A", date(2025, 9, 15), a_cases,
            satisfaction={"csat": 2, "neutral": 1, "dsat": 0}, surveys=a_surveys
        )],
        "B": [_snapshot("B", date(2025, 9, 11), b_cases)],
    })
