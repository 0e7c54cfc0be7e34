"""Performance record source access with retry, timeout and payload normalization."""
import asyncio
import logging

from .models import DateWindow, PerformanceSnapshot


logger = logging.getLogger(__name__)


def _first(data: dict, *keys, default=None):
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return default


def normalize_snapshot(raw: dict) -> PerformanceSnapshot:
    """Normalize an upstream snapshot payload to handle variations in structure.

    Workflow output nests counts under ``metrics``, spells satisfaction as
    ``customerSatisfaction`` and mixes camelCase with snake_case keys.
    Malformed payloads raise ``pydantic.ValidationError``.
    """
    normalized = raw.copy()
    metrics = normalized.pop("metrics", None) or {}
    if not isinstance(metrics, dict):
        metrics = {}

    # Normalize identity and date
    individual = _first(normalized, "individual", "entity_name", "owner", "entity_id")
    if individual is not None:
        normalized["individual"] = str(individual)
    snapshot_date = _first(normalized, "snapshot_date", "date")
    if snapshot_date is not None:
        normalized["snapshot_date"] = snapshot_date

    # Normalize counts
    normalized["sct"] = _first(normalized, "sct", default=_first(metrics, "sct", default=0.0))
    closed = _first(
        normalized, "closed_case_count", "closedCaseCount",
        default=_first(metrics, "closedCases", "closed_cases", default=0)
    )
    total = _first(
        normalized, "total_case_count", "totalCaseCount", "cases_count",
        default=_first(metrics, "totalCases", "total_cases", default=closed)
    )
    normalized["closed_case_count"] = closed
    normalized["total_case_count"] = total

    # Normalize satisfaction; missing stays missing, zeros stay zeros
    satisfaction = _first(
        normalized, "satisfaction_counts", "satisfactionCounts",
        default=_first(metrics, "customerSatisfaction", "satisfaction_counts")
    )
    if isinstance(satisfaction, dict):
        normalized["satisfaction_counts"] = {
            key: satisfaction.get(key) or 0 for key in ("csat", "neutral", "dsat")
        }
    else:
        normalized["satisfaction_counts"] = None

    # Normalize detail lists
    normalized["sample_cases"] = _first(
        normalized, "sample_cases", "sampleCases", default=[]
    )
    normalized["survey_details"] = _first(
        normalized, "survey_details", "surveyDetails",
        default=_first(metrics, "surveyDetails", default=[])
    )

    return PerformanceSnapshot.model_validate(normalized)


class SnapshotClient:
    """Wrapper around a performance record source with retry and timeout handling."""

    retryable = (asyncio.TimeoutError, OSError)

    def __init__(
        self,
        source,
        timeout: float = 8.0,
        max_retries: int = 2,
        backoff: float = 0.5
    ):
        self.source = source
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff = backoff

    async def _get(self, individual: str, window: DateWindow) -> list:
        return await asyncio.wait_for(
            self.source.get_snapshots(individual, window.date_from, window.date_to),
            timeout=self.timeout
        )

    async def fetch(
        self,
        individual: str,
        window: DateWindow,
        semaphore: asyncio.Semaphore | None = None
    ) -> list[PerformanceSnapshot]:
        """Fetch one individual's snapshots, retrying transient failures."""
        for attempt in range(self.max_retries):
            try:
                if semaphore:
                    async with semaphore:
                        records = await self._get(individual, window)
                else:
                    records = await self._get(individual, window)
                break
            except self.retryable as e:
                if attempt < self.max_retries - 1:
                    logger.debug(
                        "Retrying %s after %s (attempt %d)",
                        individual, type(e).__name__, attempt + 1
                    )
                    await asyncio.sleep(self.backoff * 2 ** attempt)
                    continue
                raise

        return [
            record if isinstance(record, PerformanceSnapshot) else normalize_snapshot(record)
            for record in records or []
        ]
