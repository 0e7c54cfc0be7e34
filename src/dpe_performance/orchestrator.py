"""Entity resolution, performance aggregation and hierarchy validation."""
import asyncio
import logging
from collections import Counter
from datetime import date, datetime, timezone
from itertools import chain

from pydantic import ValidationError

from .cache import FileHierarchyStore, SnapshotStore
from .classifier import check_categories, classify, combine
from .client import SnapshotClient
from .config import Settings
from .models import (
    AggregatedResult,
    DataQualityIssue,
    DataQualityKind,
    DateWindow,
    Entity,
    EntityType,
    Hierarchy,
    IndividualPerformance,
    Issue,
    IssueKind,
    PerformanceSnapshot,
    Severity,
    SkippedIndividual,
    SurveyRecord,
    ValidationReport,
    ValidationSummary,
)


logger = logging.getLogger(__name__)


class InvalidQueryError(ValueError):
    """Query rejected before any data was read."""


class EntityResolver:
    """Expand a team, squad or DPE selection into DPE names."""

    def resolve(
        self,
        entity_type: EntityType | str,
        entity_name: str,
        hierarchy: Hierarchy
    ) -> list[str]:
        """Return the DPEs an entity denotes, in hierarchy order.

        An entity without members, or one that does not exist, resolves to an
        empty list. Dangling parent references are skipped here and reported
        by HierarchyValidator.
        """
        entity_type = EntityType(entity_type)
        if entity_type is EntityType.DPE:
            return [entity_name]

        if entity_type is EntityType.SQUAD:
            squad_ids = {s.id for s in hierarchy.squads if s.name == entity_name}
        else:
            team_ids = {t.id for t in hierarchy.teams if t.name == entity_name}
            squad_ids = {s.id for s in hierarchy.squads if s.parent_id in team_ids}

        members = [d.name for d in hierarchy.dpes if d.parent_id in squad_ids]
        return list(dict.fromkeys(members))


class Aggregator:
    """Fetch per-individual snapshots and roll them up over a date window."""

    def __init__(self, client: SnapshotClient, max_concurrent: int = 16):
        self.client = client
        self.max_concurrent = max_concurrent

    async def fetch_all(
        self,
        names: list[str],
        window: DateWindow
    ) -> tuple[dict[str, list[PerformanceSnapshot]], list[SkippedIndividual]]:
        """Fetch every individual concurrently; failures are skipped, not raised."""
        semaphore = asyncio.Semaphore(self.max_concurrent)
        total = len(names)
        completed = 0
        skipped = []

        async def fetch_with_progress(name: str):
            nonlocal completed
            try:
                snapshots = await self.client.fetch(name, window, semaphore)
                completed += 1
                logger.debug("Progress: %d/%d individuals", completed, total)
                return name, snapshots
            except asyncio.TimeoutError:
                reason = f"timed out after {self.client.timeout}s"
            except ValidationError as e:
                reason = f"malformed snapshot: {e.error_count()} validation error(s)"
            except Exception as e:
                reason = f"{type(e).__name__}: {e}"
            completed += 1
            logger.warning("Skipping %s: %s", name, reason)
            skipped.append(SkippedIndividual(name=name, reason=reason))
            return name, None

        results = await asyncio.gather(*[fetch_with_progress(n) for n in names])
        fetched = {name: snapshots for name, snapshots in results if snapshots is not None}
        # gather completion order is arbitrary; report skips in request order
        order = {name: i for i, name in enumerate(names)}
        skipped.sort(key=lambda s: order[s.name])
        return fetched, skipped

    @staticmethod
    def summarize_individual(
        name: str,
        snapshots: list[PerformanceSnapshot],
        window: DateWindow
    ) -> tuple[IndividualPerformance | None, list[DataQualityIssue]]:
        """Recompute one individual's metrics from the cases in their snapshots.

        Returns None when no case is relevant to the window. SCT comes only
        from cases closed inside the window and is None when there are none.
        """
        ordered = sorted(snapshots, key=lambda s: s.snapshot_date)

        # A case can appear in several daily snapshots; the latest state wins
        cases_by_id = {}
        for snapshot in ordered:
            for case in snapshot.sample_cases:
                cases_by_id[case.case_id] = case
        relevant = [c for c in cases_by_id.values() if c.is_relevant_to(window)]
        if not relevant:
            return None, []

        issues = []
        closed = [c for c in relevant if c.is_closed_in(window)]
        cycle_days = []
        for case in closed:
            if case.cycle_days < 0:
                issues.append(DataQualityIssue(
                    kind=DataQualityKind.CLOSED_BEFORE_CREATED,
                    individual=name,
                    reference=case.case_id,
                    detail=f"closed {case.closed_date} before created {case.created_date}",
                ))
                continue
            cycle_days.append(case.cycle_days)
        sct = round(sum(cycle_days) / len(cycle_days), 2) if cycle_days else None

        in_window = [s for s in ordered if window.contains(s.snapshot_date)]
        satisfaction = combine(s.satisfaction_counts for s in in_window)

        # the same survey repeats across daily snapshots; distinct ones are all kept
        surveys_by_key: dict[str, SurveyRecord] = {}
        for snapshot in ordered:
            for survey in snapshot.survey_details:
                if window.contains(survey.survey_date):
                    surveys_by_key[survey.model_dump_json()] = survey
        surveys = sorted(surveys_by_key.values(), key=lambda s: s.survey_date, reverse=True)
        issues.extend(check_categories(surveys, name))

        performance = IndividualPerformance(
            name=name,
            sct=sct,
            total_cases=len(relevant),
            closed_cases=len(closed),
            open_cases=max(0, len(relevant) - len(closed)),
            satisfaction=satisfaction,
            cases=sorted(closed, key=lambda c: c.created_date, reverse=True),
            survey_details=surveys,
        )
        return performance, issues

    async def aggregate(
        self,
        names: list[str],
        date_from: date,
        date_to: date,
        entity_type: EntityType | None = None,
        entity_name: str | None = None
    ) -> AggregatedResult:
        """Combine the individuals' snapshots for the window into one result."""
        window = DateWindow(date_from=date_from, date_to=date_to)
        names = list(dict.fromkeys(names))
        fetched, skipped = await self.fetch_all(names, window)

        individuals = []
        data_quality = []
        for name in names:
            if name not in fetched:
                continue
            performance, issues = self.summarize_individual(name, fetched[name], window)
            data_quality.extend(issues)
            if performance is not None:
                individuals.append(performance)

        total_cases = sum(p.total_cases for p in individuals)
        closed_cases = sum(p.closed_cases for p in individuals)

        # Every individual weighs the same regardless of caseload
        scts = [p.sct for p in individuals if p.sct is not None]
        sct = round(sum(scts) / len(scts), 2) if scts else None

        result = AggregatedResult(
            entity_type=entity_type,
            entity_name=entity_name,
            date_from=window.date_from,
            date_to=window.date_to,
            resolved_individuals=names,
            contributing_individuals=[p.name for p in individuals],
            skipped=skipped,
            sct=sct,
            total_cases=total_cases,
            closed_cases=closed_cases,
            open_cases=max(0, total_cases - closed_cases),
            satisfaction=classify(combine(p.satisfaction for p in individuals)),
            individuals=sorted(
                individuals, key=lambda p: (p.sct is None, p.sct or 0.0)
            ),
            cases=sorted(
                chain.from_iterable(p.cases for p in individuals),
                key=lambda c: c.created_date,
                reverse=True
            ),
            survey_details=sorted(
                chain.from_iterable(p.survey_details for p in individuals),
                key=lambda s: s.survey_date,
                reverse=True
            ),
            data_quality=data_quality,
        )
        logger.info(
            "Aggregated %d/%d individual(s) for %s %s: %d case(s), %d skipped",
            len(individuals), len(names), entity_type.value if entity_type else "selection",
            entity_name or "", total_cases, len(skipped)
        )
        return result


class HierarchyValidator:
    """Scan the hierarchy for orphaned and empty nodes."""

    def validate(
        self,
        teams: list[Entity],
        squads: list[Entity],
        dpes: list[Entity]
    ) -> ValidationReport:
        """Report structural defects. Only errors make the hierarchy invalid."""
        team_ids = {t.id for t in teams}
        squad_ids = {s.id for s in squads}
        squads_per_team = Counter(s.parent_id for s in squads)
        dpes_per_squad = Counter(d.parent_id for d in dpes)

        orphaned_squads = [s.name for s in squads if s.parent_id not in team_ids]
        orphaned_dpes = [d.name for d in dpes if d.parent_id not in squad_ids]
        empty_teams = [t.name for t in teams if squads_per_team[t.id] == 0]
        empty_squads = [s.name for s in squads if dpes_per_squad[s.id] == 0]

        checks = [
            (IssueKind.ORPHANED_SQUAD, Severity.ERROR, orphaned_squads,
             "squad(s) are not mapped to any existing team"),
            (IssueKind.ORPHANED_DPE, Severity.ERROR, orphaned_dpes,
             "DPE(s) are not mapped to any existing squad"),
            (IssueKind.EMPTY_TEAM, Severity.WARNING, empty_teams,
             "team(s) have no squads assigned"),
            (IssueKind.EMPTY_SQUAD, Severity.WARNING, empty_squads,
             "squad(s) have no DPEs assigned"),
        ]
        issues = [
            Issue(
                kind=kind,
                severity=severity,
                affected_names=names,
                message=f"{len(names)} {text}",
            )
            for kind, severity, names, text in checks
            if names
        ]

        return ValidationReport(
            valid=not any(i.severity is Severity.ERROR for i in issues),
            issues=issues,
            summary=ValidationSummary(
                total_teams=len(teams),
                total_squads=len(squads),
                total_dpes=len(dpes),
                orphaned_squads=len(orphaned_squads),
                orphaned_dpes=len(orphaned_dpes),
                empty_teams=len(empty_teams),
                empty_squads=len(empty_squads),
            ),
            validated_at=datetime.now(timezone.utc),
        )


def _parse_date(value, field: str) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise InvalidQueryError(f"{field} must be an ISO date, got {value!r}") from None


class PerformanceService:
    """Query entry points over a hierarchy store and a performance record source.

    Both collaborators are passed in: the hierarchy store must provide
    ``async load_hierarchy() -> Hierarchy`` and the record source
    ``async get_snapshots(individual, date_from, date_to)``.
    """

    def __init__(
        self,
        hierarchy_store,
        record_source,
        *,
        max_concurrent: int = 16,
        fetch_timeout: float = 8.0,
        max_retries: int = 2,
        backoff: float = 0.5
    ):
        self.hierarchy_store = hierarchy_store
        self.resolver = EntityResolver()
        self.aggregator = Aggregator(
            SnapshotClient(record_source, fetch_timeout, max_retries, backoff),
            max_concurrent
        )
        self.validator = HierarchyValidator()

    @classmethod
    def from_settings(cls, settings: Settings) -> "PerformanceService":
        return cls(
            FileHierarchyStore(settings.hierarchy_file),
            SnapshotStore(settings.snapshot_dir),
            max_concurrent=settings.max_concurrent,
            fetch_timeout=settings.fetch_timeout,
            max_retries=settings.fetch_retries,
        )

    @staticmethod
    def check_query(entity_type, entity_name, date_from, date_to) -> tuple[EntityType, str, DateWindow]:
        """Validate query parameters, raising InvalidQueryError on bad input."""
        try:
            if isinstance(entity_type, EntityType):
                parsed_type = entity_type
            else:
                parsed_type = EntityType(str(entity_type).strip().lower())
        except ValueError:
            allowed = ", ".join(t.value for t in EntityType)
            raise InvalidQueryError(
                f"Unknown entity type {entity_type!r}; expected one of {allowed}"
            ) from None

        if entity_name is not None and not isinstance(entity_name, str):
            raise InvalidQueryError(
                f"Entity name must be a string, got {type(entity_name).__name__}"
            )
        name = (entity_name or "").strip()
        if not name:
            raise InvalidQueryError("Entity name must not be empty")

        start = _parse_date(date_from, "date_from")
        end = _parse_date(date_to, "date_to")
        if start > end:
            raise InvalidQueryError(f"date_from {start} is after date_to {end}")
        return parsed_type, name, DateWindow(date_from=start, date_to=end)

    async def query(self, entity_type, entity_name, date_from, date_to) -> AggregatedResult:
        """Resolve an entity to its DPEs and aggregate their performance."""
        entity_type, entity_name, window = self.check_query(
            entity_type, entity_name, date_from, date_to
        )

        if entity_type is EntityType.DPE:
            names = [entity_name]
        else:
            hierarchy = await self.hierarchy_store.load_hierarchy()
            names = self.resolver.resolve(entity_type, entity_name, hierarchy)
            if not names:
                logger.info("%s %r resolves to no DPEs", entity_type.value, entity_name)

        return await self.aggregator.aggregate(
            names, window.date_from, window.date_to,
            entity_type=entity_type, entity_name=entity_name
        )

    async def validate(self) -> ValidationReport:
        """Validate the full hierarchy from a single read."""
        hierarchy = await self.hierarchy_store.load_hierarchy()
        report = self.validator.validate(hierarchy.teams, hierarchy.squads, hierarchy.dpes)
        for issue in report.issues:
            log = logger.error if issue.severity is Severity.ERROR else logger.warning
            log("%s: %s", issue.kind.value, ", ".join(issue.affected_names))
        return report
