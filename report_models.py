import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator


class HarvestAssistantError(Exception):
    pass


class ValidationError(HarvestAssistantError):
    """Malformed caller input or internally impossible aggregate input (e.g. negative hours)."""


class UpstreamError(HarvestAssistantError):
    """Any failure talking to the time-tracking provider: network, auth, non-2xx, malformed payload."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ConfigurationMissingError(HarvestAssistantError):
    pass


class ReportConfigError(HarvestAssistantError):
    """The server-side target-group document is missing or malformed."""


# ─────────────────────────────────────────────────────────────
# Provider shapes (Harvest API v2)
# ─────────────────────────────────────────────────────────────

class NamedRef(BaseModel):
    id: int
    name: str = ""


class TimeEntry(BaseModel):
    id: int
    spent_date: date
    hours: float = 0.0
    notes: str | None = None
    billable: bool = False
    billable_rate: float | None = None
    hourly_rate: float | None = None
    user: NamedRef | None = None
    project: NamedRef
    client: NamedRef | None = None
    task: NamedRef | None = None


class Project(BaseModel):
    id: int
    name: str
    code: str | None = None
    is_active: bool = True
    budget: float | None = None
    budget_spent: float | None = None
    budget_remaining: float | None = None
    client: NamedRef | None = None


class Client(BaseModel):
    id: int
    name: str
    is_active: bool = True
    address: str | None = None


# ─────────────────────────────────────────────────────────────
# Report configuration
# ─────────────────────────────────────────────────────────────

GroupCategory = Literal["primary", "hosting-support"]


def slugify(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


class TargetGroup(BaseModel):
    display_name: str
    keywords: list[str]
    category: GroupCategory = "primary"
    # primary: substituted when the provider reports no budget
    fallback_budget: float = Field(default=0.0, ge=0)
    # hosting-support: nominal budget = support_hours * support_rate
    support_hours: float = Field(default=0.0, ge=0)
    support_rate: float = Field(default=0.0, ge=0)

    @field_validator("display_name")
    @classmethod
    def _non_empty_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("display_name must not be empty")
        return v

    @field_validator("keywords")
    @classmethod
    def _normalize_keywords(cls, v: list[str]) -> list[str]:
        seen: list[str] = []
        for kw in v:
            kw = kw.strip().lower()
            if kw and kw not in seen:
                seen.append(kw)
        if not seen:
            raise ValueError("at least one keyword is required")
        return seen

    @property
    def key(self) -> str:
        return self.display_name

    @property
    def row_id(self) -> str:
        if self.category == "hosting-support":
            return f"bhs-{slugify(self.display_name)}"
        return slugify(self.display_name)

    def matches(self, name: str | None) -> bool:
        lowered = (name or "").lower()
        return any(kw in lowered for kw in self.keywords)


class RatePolicy(BaseModel):
    """Which entry field prices billable hours, and what to use when none is present."""

    rate_fields: list[Literal["billable_rate", "hourly_rate"]] = Field(
        default_factory=lambda: ["billable_rate", "hourly_rate"]
    )
    fallback_rate: float | None = Field(default=75.0, ge=0)

    def rate_for(self, entry: TimeEntry) -> float:
        for field in self.rate_fields:
            value = getattr(entry, field)
            if value is not None:
                return value
        return self.fallback_rate or 0.0


class ReportConfig(BaseModel):
    target_groups: list[TargetGroup]
    hosting_support_keywords: list[str] = Field(
        default_factory=lambda: ["basic hosting support", "bhs", "hosting support"]
    )
    hosting_support_label: str = "Basic Hosting Support"
    rate_policy: RatePolicy = Field(default_factory=RatePolicy)

    @field_validator("hosting_support_keywords")
    @classmethod
    def _lower_keywords(cls, v: list[str]) -> list[str]:
        return [kw.strip().lower() for kw in v if kw.strip()]

    @model_validator(mode="after")
    def _unique_names(self) -> "ReportConfig":
        # A client can be both a primary line and a hosting-support client; names are unique per category.
        for category in ("primary", "hosting-support"):
            names = [g.display_name for g in self.target_groups if g.category == category]
            dupes = sorted({n for n in names if names.count(n) > 1})
            if dupes:
                raise ValueError(f"duplicate {category} target group display_name: {', '.join(dupes)}")
        return self

    @property
    def primary_groups(self) -> list[TargetGroup]:
        return [g for g in self.target_groups if g.category == "primary"]

    @property
    def hosting_support_groups(self) -> list[TargetGroup]:
        return [g for g in self.target_groups if g.category == "hosting-support"]


# ─────────────────────────────────────────────────────────────
# Accumulation and output
# ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class PartialRow:
    """Full-precision running sums for one target group. Never mutated; folds return new rows."""

    id: str
    name: str
    category: str
    total_hours: float = 0.0
    billable_hours: float = 0.0
    billed_amount: float = 0.0
    budget: float = 0.0
    budget_spent: float = 0.0
    support_hours: float | None = None


class AggregateRow(BaseModel):
    id: str
    name: str
    category: GroupCategory
    total_hours: float
    billable_hours: float
    billed_amount: float
    budget: float
    budget_spent: float
    budget_remaining: float
    budget_used_pct: float
    budget_percent_complete: float
    support_hours: float | None = None


class ReportData(BaseModel):
    month: str  # YYYY-MM
    report_label: str  # "October 2026"
    date_from: date
    date_to: date
    primary_groups: list[AggregateRow]
    hosting_support_groups: list[AggregateRow]
    total_hours: float


class ParsedQuery(BaseModel):
    query_type: Literal["time_entries", "projects", "clients", "users", "summary", "report"] = "time_entries"
    parameters: dict[str, Any] = Field(default_factory=dict)
    summary_type: Literal["weekly", "monthly", "daily", "project", "client"] | None = None
