"""Command-line entry points: query, validate and import."""
import argparse
import asyncio
import logging
import sys
from datetime import date, timedelta
from pathlib import Path

from .cache import SnapshotStore
from .classifier import to_chart_rows
from .config import Settings
from .csv_loader import build_snapshots, get_date_range, load_cases, load_surveys
from .models import AggregatedResult, ValidationReport
from .orchestrator import InvalidQueryError, PerformanceService


def _fmt(value, suffix: str = "") -> str:
    """Format an optional metric; absence renders as N/A, never as zero."""
    if value is None:
        return "N/A"
    return f"{value}{suffix}"


def result_to_markdown(result: AggregatedResult) -> str:
    """Convert an aggregated result to markdown."""
    title = result.entity_name or "Selection"
    if result.entity_type is not None:
        title = f"{result.entity_type.value.upper()}: {title}"
    lines = [
        f"# Performance Report: {title}",
        f"**Period:** {result.date_from} to {result.date_to}\n",
        "## Summary",
        f"- **SCT (days):** {_fmt(result.sct)}",
        f"- **Total Cases:** {result.total_cases}",
        f"- **Closed Cases:** {result.closed_cases}",
        f"- **Open Cases:** {result.open_cases}",
        f"- **Individuals:** {len(result.contributing_individuals)} of "
        f"{len(result.resolved_individuals)} with data",
        "",
        "## Customer Satisfaction",
    ]

    rows = to_chart_rows(result.satisfaction)
    if rows:
        lines.extend(f"- **{r['name']}:** {r['value']} ({r['percentage']}%)" for r in rows)
        lines.append(f"- **Total Surveys:** {result.satisfaction.total}")
    else:
        lines.append("No survey data")
    lines.append("")

    if result.individuals:
        lines.extend([
            "## Individuals",
            "| Name | SCT | Total | Closed | Open |",
            "| --- | --- | --- | --- | --- |",
        ])
        lines.extend(
            f"| {p.name} | {_fmt(p.sct)} | {p.total_cases} | {p.closed_cases} | {p.open_cases} |"
            for p in result.individuals
        )
        lines.append("")

    if result.cases:
        lines.append("## Closed Cases")
        for case in result.cases:
            lines.append(
                f"- `{case.case_id}` [{case.priority}] {case.title} "
                f"({case.owner_name}; {case.created_date} to {case.closed_date}, "
                f"{case.cycle_days} days)"
            )
        lines.append("")

    if result.survey_details:
        lines.append("## Surveys")
        for survey in result.survey_details:
            feedback = f": {survey.feedback}" if survey.feedback else ""
            lines.append(
                f"- `{survey.case_number}` {survey.survey_date} score "
                f"{survey.overall_satisfaction} ({survey.owner_name}){feedback}"
            )
        lines.append("")

    if result.skipped:
        lines.append("## Skipped")
        lines.extend(f"- {s.name}: {s.reason}" for s in result.skipped)
        lines.append("")

    if result.data_quality:
        lines.append("## Data Quality")
        lines.extend(
            f"- [{d.kind.value}] {d.individual} `{d.reference}`: {d.detail}"
            for d in result.data_quality
        )
        lines.append("")

    return "\n".join(lines)


def report_to_markdown(report: ValidationReport) -> str:
    """Convert a validation report to markdown."""
    s = report.summary
    lines = [
        "# Hierarchy Validation",
        f"**Validated:** {report.validated_at.isoformat()}\n",
        f"**Status:** {'All mappings valid' if report.valid else 'Mapping issues found'}",
        "",
        f"- **Teams:** {s.total_teams}",
        f"- **Squads:** {s.total_squads}",
        f"- **DPEs:** {s.total_dpes}",
        "",
    ]
    if not report.issues:
        lines.append("No issues found.")
    for issue in report.issues:
        lines.extend([
            f"### [{issue.severity.value.upper()}] {issue.message}",
            *[f"- {name}" for name in issue.affected_names],
            "",
        ])
    return "\n".join(lines)


async def run_query(
    settings: Settings,
    entity_type: str,
    entity_name: str,
    start_date: date | None = None,
    end_date: date | None = None
) -> AggregatedResult:
    """Aggregate one entity and save the markdown report."""
    end_date = end_date or date.today()
    start_date = start_date or end_date - timedelta(days=30)

    service = PerformanceService.from_settings(settings)
    result = await service.query(entity_type, entity_name, start_date, end_date)

    md_content = result_to_markdown(result)
    settings.reports_dir.mkdir(parents=True, exist_ok=True)
    safe_name = entity_name.strip().replace(" ", "_").replace("/", "_")
    md_file = settings.reports_dir / f"{entity_type}_{safe_name}_{start_date}_{end_date}.md"
    md_file.write_text(md_content)

    print(md_content)
    print(f"Full report: {md_file}")
    return result


async def run_validation(settings: Settings) -> ValidationReport:
    service = PerformanceService.from_settings(settings)
    report = await service.validate()
    print(report_to_markdown(report))
    return report


def run_import(settings: Settings, cases_csv: Path, surveys_csv: Path | None = None) -> int:
    """Build snapshots from CSV exports and write them to the snapshot store."""
    start, end = get_date_range(cases_csv)
    print(f"Importing cases from {cases_csv} ({start} to {end})...")
    cases = load_cases(cases_csv)
    surveys = load_surveys(surveys_csv) if surveys_csv else []

    store = SnapshotStore(settings.snapshot_dir)
    snapshots = build_snapshots(cases, surveys)
    for snapshot in snapshots:
        store.save(snapshot)
    print(f"✓ Saved {len(snapshots)} snapshot(s) to {settings.snapshot_dir}")
    return len(snapshots)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="dpe-performance")
    commands = parser.add_subparsers(dest="command", required=True)

    query = commands.add_parser("query", help="Aggregate SCT and satisfaction for an entity")
    query.add_argument("entity_type", help="team, squad or dpe")
    query.add_argument("entity_name")
    query.add_argument("--from", dest="date_from", type=date.fromisoformat)
    query.add_argument("--to", dest="date_to", type=date.fromisoformat)

    commands.add_parser("validate", help="Check the hierarchy for orphaned and empty nodes")

    ingest = commands.add_parser("import", help="Build snapshots from CSV exports")
    ingest.add_argument("cases_csv", type=Path)
    ingest.add_argument("--surveys", type=Path)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    settings = Settings.from_env()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    if args.command == "query":
        try:
            asyncio.run(run_query(
                settings, args.entity_type, args.entity_name, args.date_from, args.date_to
            ))
        except InvalidQueryError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 2
        return 0

    if args.command == "validate":
        report = asyncio.run(run_validation(settings))
        return 0 if report.valid else 1

    if not args.cases_csv.exists():
        print(f"Error: {args.cases_csv} not found", file=sys.stderr)
        return 2
    run_import(settings, args.cases_csv, args.surveys)
    return 0


if __name__ == "__main__":
    sys.exit(main())
