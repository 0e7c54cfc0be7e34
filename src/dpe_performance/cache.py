"""File-backed hierarchy store and snapshot store."""
import json
import logging
from datetime import date
from pathlib import Path

from .models import DateWindow, Hierarchy, PerformanceSnapshot


logger = logging.getLogger(__name__)


def _key(individual: str) -> str:
    """File-safe key for an individual's name."""
    return individual.strip().replace("/", "_").replace("\\", "_")


class FileHierarchyStore:
    """Hierarchy kept in a single JSON document: {teams, squads, dpes}."""

    def __init__(self, path: Path):
        self.path = path

    async def load_hierarchy(self) -> Hierarchy:
        """Read all three collections in one go."""
        if not self.path.exists():
            logger.warning("Hierarchy file %s not found, using empty hierarchy", self.path)
            return Hierarchy()
        return Hierarchy.model_validate_json(self.path.read_text())

    def save(self, hierarchy: Hierarchy) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(hierarchy.model_dump_json(indent=2))


class SnapshotStore:
    """Snapshots organized by date: YYYY-MM/DD/<individual>.json"""

    def __init__(self, cache_dir: Path):
        self.cache_dir = cache_dir
        self.cache_dir.mkdir(parents=True, exist_ok=True)

    def _path(self, individual: str, target_date: date) -> Path:
        year_month = target_date.strftime("%Y-%m")
        day = target_date.strftime("%d")
        return self.cache_dir / year_month / day / f"{_key(individual)}.json"

    def save(self, snapshot: PerformanceSnapshot) -> Path:
        """Save snapshot, replacing any earlier one for the same individual and date."""
        cache_file = self._path(snapshot.individual, snapshot.snapshot_date)
        cache_file.parent.mkdir(parents=True, exist_ok=True)
        cache_file.write_text(snapshot.model_dump_json(indent=2))
        return cache_file

    def exists(self, individual: str, target_date: date) -> bool:
        return self._path(individual, target_date).exists()

    def get(self, individual: str, target_date: date) -> PerformanceSnapshot | None:
        cache_file = self._path(individual, target_date)
        if cache_file.exists():
            return PerformanceSnapshot.model_validate_json(cache_file.read_text())
        return None

    async def get_snapshots(
        self,
        individual: str,
        date_from: date,
        date_to: date
    ) -> list[dict]:
        """Raw snapshots dated in the window or carrying a case relevant to it.

        Payloads are returned undecoded; the client normalizes and validates them.
        """
        window = DateWindow(date_from=date_from, date_to=date_to)
        file_name = f"{_key(individual)}.json"
        results = []
        # names may hold glob metacharacters, so match the file name literally
        for cache_file in sorted(self.cache_dir.glob("*/*/*.json")):
            if cache_file.name != file_name:
                continue
            raw = json.loads(cache_file.read_text())
            if self._matches(raw, window):
                results.append(raw)
        logger.debug("Loaded %d snapshot(s) for %s", len(results), individual)
        return results

    @staticmethod
    def _matches(raw: dict, window: DateWindow) -> bool:
        snapshot = PerformanceSnapshot.model_validate(raw)
        if window.contains(snapshot.snapshot_date):
            return True
        return any(case.is_relevant_to(window) for case in snapshot.sample_cases)
