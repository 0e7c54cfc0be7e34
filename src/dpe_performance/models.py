"""Data models for the hierarchy, performance records and query results."""
import json
from datetime import date, datetime
from enum import Enum

from pydantic import AliasChoices, BaseModel, Field, field_validator, model_validator


TERMINAL_STATUSES = frozenset({"closed", "resolved"})


def parse_day(value):
    """Reduce ISO timestamps to their calendar date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, str) and len(value) > 10:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
        except ValueError:
            return value[:10]
    return value


def _alias(*names: str) -> AliasChoices:
    return AliasChoices(*names)


class EntityType(str, Enum):
    TEAM = "team"
    SQUAD = "squad"
    DPE = "dpe"


class Entity(BaseModel):
    """Team, squad or DPE record as read from the hierarchy store."""
    id: str = Field(validation_alias=_alias("id", "_id"))
    name: str
    parent_id: str | None = Field(
        default=None,
        validation_alias=_alias("parent_id", "parentId", "team_id", "squad_id"),
    )


class Hierarchy(BaseModel):
    """One consistent read of all three entity collections."""
    teams: list[Entity] = Field(default_factory=list)
    squads: list[Entity] = Field(default_factory=list)
    dpes: list[Entity] = Field(default_factory=list)


class DateWindow(BaseModel):
    """Inclusive calendar date range."""
    date_from: date
    date_to: date

    @model_validator(mode="after")
    def _check_order(self):
        if self.date_from > self.date_to:
            raise ValueError(f"date_from {self.date_from} is after date_to {self.date_to}")
        return self

    def contains(self, day: date | None) -> bool:
        return day is not None and self.date_from <= day <= self.date_to


class Case(BaseModel):
    """Support case sampled into a performance snapshot."""
    case_id: str = Field(validation_alias=_alias("case_id", "caseId"))
    priority: str = ""
    owner_name: str = Field(
        default="", validation_alias=_alias("owner_name", "owner_full_name", "ownerName")
    )
    title: str = ""
    products: list[str] = Field(default_factory=list)
    status: str
    created_date: date = Field(validation_alias=_alias("created_date", "createdDate"))
    closed_date: date | None = Field(
        default=None, validation_alias=_alias("closed_date", "closedDate")
    )
    age_days: int = Field(
        default=0, validation_alias=_alias("age_days", "case_age_days", "ageDays")
    )

    @field_validator("created_date", "closed_date", mode="before")
    @classmethod
    def _to_day(cls, value):
        if value == "":
            return None
        return parse_day(value)

    @field_validator("products", mode="before")
    @classmethod
    def _to_product_list(cls, value):
        # Upstream exports store the list as a JSON-encoded string
        if value is None:
            return []
        if isinstance(value, str):
            try:
                parsed = json.loads(value)
            except json.JSONDecodeError:
                return [value] if value else []
            return parsed if isinstance(parsed, list) else [str(parsed)]
        return value

    @property
    def is_terminal(self) -> bool:
        return self.status.strip().lower() in TERMINAL_STATUSES

    @property
    def cycle_days(self) -> int | None:
        """Whole days between creation and closure, None while open."""
        if self.closed_date is None:
            return None
        return (self.closed_date - self.created_date).days

    def is_closed_in(self, window: DateWindow) -> bool:
        return self.is_terminal and window.contains(self.closed_date)

    def is_relevant_to(self, window: DateWindow) -> bool:
        return window.contains(self.created_date) or self.is_closed_in(window)


class SurveyRecord(BaseModel):
    """Customer satisfaction survey tied to a case."""
    case_number: str = Field(validation_alias=_alias("case_number", "caseNumber"))
    overall_satisfaction: int = Field(
        ge=1, le=5, validation_alias=_alias("overall_satisfaction", "overallSatisfaction")
    )
    category: str | None = None
    feedback: str = ""
    survey_date: date = Field(validation_alias=_alias("survey_date", "surveyDate"))
    customer_name: str = Field(
        default="", validation_alias=_alias("customer_name", "customerName")
    )
    product_area: str = Field(
        default="", validation_alias=_alias("product_area", "productArea")
    )
    owner_name: str = Field(default="", validation_alias=_alias("owner_name", "ownerName"))

    @field_validator("survey_date", mode="before")
    @classmethod
    def _to_day(cls, value):
        return parse_day(value)


class SatisfactionCounts(BaseModel):
    csat: int = Field(default=0, ge=0)
    neutral: int = Field(default=0, ge=0)
    dsat: int = Field(default=0, ge=0)

    @property
    def total(self) -> int:
        return self.csat + self.neutral + self.dsat

    def __add__(self, other: "SatisfactionCounts") -> "SatisfactionCounts":
        return SatisfactionCounts(
            csat=self.csat + other.csat,
            neutral=self.neutral + other.neutral,
            dsat=self.dsat + other.dsat,
        )


class PerformanceSnapshot(BaseModel):
    """Metrics for one individual on one calendar date."""
    individual: str
    snapshot_date: date = Field(validation_alias=_alias("snapshot_date", "date"))
    sct: float = Field(default=0.0, ge=0)
    closed_case_count: int = Field(default=0, ge=0)
    total_case_count: int = Field(default=0, ge=0)
    # None means no survey data for this date, which is not the same as zero surveys
    satisfaction_counts: SatisfactionCounts | None = None
    sample_cases: list[Case] = Field(default_factory=list)
    survey_details: list[SurveyRecord] = Field(default_factory=list)

    @field_validator("snapshot_date", mode="before")
    @classmethod
    def _to_day(cls, value):
        return parse_day(value)

    @model_validator(mode="after")
    def _check_counts(self):
        if self.total_case_count < self.closed_case_count:
            raise ValueError(
                f"total_case_count {self.total_case_count} is below "
                f"closed_case_count {self.closed_case_count}"
            )
        return self


class SatisfactionSummary(BaseModel):
    """Satisfaction counts with their percentage distribution."""
    csat: int
    neutral: int
    dsat: int
    total: int
    csat_pct: float
    neutral_pct: float
    dsat_pct: float


class DataQualityKind(str, Enum):
    CATEGORY_MISMATCH = "category_mismatch"
    CLOSED_BEFORE_CREATED = "closed_before_created"


class DataQualityIssue(BaseModel):
    kind: DataQualityKind
    individual: str
    reference: str
    detail: str


class IndividualPerformance(BaseModel):
    """One individual's contribution to an aggregate."""
    name: str
    sct: float | None
    total_cases: int
    closed_cases: int
    open_cases: int
    satisfaction: SatisfactionCounts | None = None
    cases: list[Case] = Field(default_factory=list)
    survey_details: list[SurveyRecord] = Field(default_factory=list)


class SkippedIndividual(BaseModel):
    name: str
    reason: str


class AggregatedResult(BaseModel):
    """Rolled-up performance for an entity over a date window."""
    entity_type: EntityType | None = None
    entity_name: str | None = None
    date_from: date
    date_to: date
    resolved_individuals: list[str] = Field(default_factory=list)
    contributing_individuals: list[str] = Field(default_factory=list)
    skipped: list[SkippedIndividual] = Field(default_factory=list)
    sct: float | None = None
    total_cases: int = 0
    closed_cases: int = 0
    open_cases: int = 0
    satisfaction: SatisfactionSummary | None = None
    individuals: list[IndividualPerformance] = Field(default_factory=list)
    cases: list[Case] = Field(default_factory=list)
    survey_details: list[SurveyRecord] = Field(default_factory=list)
    data_quality: list[DataQualityIssue] = Field(default_factory=list)


class IssueKind(str, Enum):
    ORPHANED_SQUAD = "orphaned_squad"
    ORPHANED_DPE = "orphaned_dpe"
    EMPTY_TEAM = "empty_team"
    EMPTY_SQUAD = "empty_squad"


class Severity(str, Enum):
    WARNING = "warning"
    ERROR = "error"


class Issue(BaseModel):
    """Structural defect found in the hierarchy."""
    kind: IssueKind
    severity: Severity
    affected_names: list[str]
    message: str


class ValidationSummary(BaseModel):
    total_teams: int
    total_squads: int
    total_dpes: int
    orphaned_squads: int
    orphaned_dpes: int
    empty_teams: int
    empty_squads: int


class ValidationReport(BaseModel):
    """Outcome of a full hierarchy scan."""
    valid: bool
    issues: list[Issue] = Field(default_factory=list)
    summary: ValidationSummary
    validated_at: datetime
