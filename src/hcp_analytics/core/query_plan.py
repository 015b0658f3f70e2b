"""
QueryPlan Contract

Defines the structured query plan schema that serves as the contract between
question understanding (intent analysis, external chart specs) and execution.

All question handling must produce a QueryPlan, and the executor only consumes a QueryPlan.
This prevents ad-hoc dict structures and keeps the executor independent of how
a plan was obtained.
"""

import hashlib
import json
from dataclasses import dataclass, field
from typing import Any, Literal

import structlog

logger = structlog.get_logger()

Operator = Literal["==", "!=", ">", ">=", "<", "<=", "IN", "NOT_IN", "CONTAINS"]
Aggregation = Literal["count", "sum", "avg", "min", "max"]
SortOrder = Literal["asc", "desc"]

# Single source of truth for canonical operator and aggregation names
VALID_OPERATORS = {"==", "!=", ">", ">=", "<", "<=", "IN", "NOT_IN", "CONTAINS"}
NUMERIC_OPERATORS = {">", ">=", "<", "<="}
VALID_AGGREGATIONS = {"count", "sum", "avg", "min", "max"}
VALID_CHART_TYPES = {"bar", "pie", "line", "composed"}
VALID_SOURCES = {"practitioners", "kols"}

# "k" divides by 1000, "percent" multiplies by 100; anything else rounds to one decimal
THOUSANDS_FORMATS = {"k", "thousands"}
PERCENT_FORMATS = {"percent", "%"}

# Columns of an enriched record row (see EnrichedRecord.to_row)
RECORD_FIELDS = {
    "id",
    "name",
    "title",
    "first_name",
    "last_name",
    "full_name",
    "specialty",
    "is_kol",
    "city",
    "postal_code",
    "volume",
    "loyalty_score",
    "vingtile",
    "potential_growth",
    "days_since_contact",
    "risk_tier",
    "publication_count",
    "has_publications",
    "news_count",
    "note_count",
    "visit_count",
}

# Bucketed dimensions with a fixed label table in the executor
BUCKET_DIMENSIONS = {"vingtile_bucket", "loyalty_bucket", "visit_bucket", "risk_tier", "is_kol", "total"}


@dataclass
class FilterSpec:
    """Single filter condition specification."""

    column: str  # Canonical column name (after alias resolution)
    operator: str  # One of VALID_OPERATORS; anything else matches nothing
    value: Any  # Scalar, or list for IN / NOT_IN

    def to_dict(self) -> dict[str, Any]:
        return {"column": self.column, "operator": self.operator, "value": self.value}


@dataclass
class MetricSpec:
    """
    One named output value per result row.

    Attributes:
        name: Display name, also the key of the value in each ResultPoint
        field: Source column (None for count)
        aggregation: count | sum | avg | min | max
        format: Output transform applied once after aggregation ("k", "percent", or None)
    """

    name: str
    field: str | None = None
    aggregation: str = "count"
    format: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "field": self.field, "aggregation": self.aggregation, "format": self.format}


@dataclass
class QueryPlan:
    """Structured query plan consumed by the executor."""

    metrics: list[MetricSpec]
    source: str = "practitioners"
    filters: list[FilterSpec] = field(default_factory=list)  # AND-combined
    group_by: str | None = None  # Dimension name (bucketed or raw field)
    sort_by: str | None = None  # Metric display name, metric source field, or record field
    sort_order: SortOrder = "desc"
    limit: int | None = None
    explanation: str = ""  # Human-readable explanation (shown in UI + logs)
    run_key: str | None = None  # Deterministic hash of the normalized plan

    def to_dict(self) -> dict[str, Any]:
        """Normalized, JSON-serializable form (also the input of run_key)."""
        return {
            "source": self.source,
            "filters": [f.to_dict() for f in self.filters],
            "group_by": self.group_by,
            "metrics": [m.to_dict() for m in self.metrics],
            "sort_by": self.sort_by,
            "sort_order": self.sort_order,
            "limit": self.limit,
        }

    def primary_metric(self) -> MetricSpec | None:
        return self.metrics[0] if self.metrics else None


class QueryPlanValidationError(ValueError):
    """Raised when a plan cannot be executed (no metrics)."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__("; ".join(errors))


def validate_plan(plan: QueryPlan) -> None:
    """
    Validate a plan before execution.

    Only an empty metric list is an error; every other unrecognized value
    is resolved by a documented fallback at execution time.

    Raises:
        QueryPlanValidationError: If the plan has no metrics
    """
    errors: list[str] = []
    if not plan.metrics:
        errors.append("Query plan must declare at least one metric")

    if errors:
        logger.warning("query_plan_invalid", errors=errors)
        raise QueryPlanValidationError(errors)


def compute_run_key(plan: QueryPlan, dataset_version: str = "practitioners") -> str:
    """
    Deterministic key for a plan against a dataset version.

    Identical plans produce identical keys, so callers can cache results if they want to.
    """
    plan_hash = hashlib.sha256(json.dumps(plan.to_dict(), sort_keys=True, default=str).encode()).hexdigest()[:16]
    return f"{dataset_version}_{plan_hash}"
