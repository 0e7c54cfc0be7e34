"""DPE performance aggregation and hierarchy validation."""
from .classifier import classify
from .models import AggregatedResult, EntityType, ValidationReport
from .orchestrator import (
    Aggregator,
    EntityResolver,
    HierarchyValidator,
    InvalidQueryError,
    PerformanceService,
)

__all__ = [
    "AggregatedResult",
    "Aggregator",
    "EntityResolver",
    "EntityType",
    "HierarchyValidator",
    "InvalidQueryError",
    "PerformanceService",
    "ValidationReport",
    "classify",
]
