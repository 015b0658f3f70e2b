"""
Query Executor - runs a QueryPlan over the in-memory practitioner dataset.

Steps, in fixed order:
1. Enrich every record (days since contact, risk tier, publication count)
2. Apply every filter as a logical AND
3. If the plan has a limit, a group_by and a sort key that resolves to a record
   field, keep only the top-N individual records before grouping
   ("top 15 practitioners by city" sums to exactly 15)
4. Bucket records by the group dimension ("total" is a single bucket)
5. Aggregate each metric per bucket (or per record), then apply its output format
6. Stable sort by the sort key
7. Apply the limit (no-op if consumed in step 3)

Deterministic: identical plan, dataset and `now` always produce identical output.
Unknown operators match nothing, unknown dimensions group by the raw field
(with an "other" bucket for missing values), unknown formats round to one decimal.
"""

import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from types import MappingProxyType
from typing import Any

import polars as pl
import structlog

from hcp_analytics.core.enrichment import enrich_all
from hcp_analytics.core.query_engine_config import DEFAULT_AGGREGATION, NEVER_CONTACTED_SENTINEL_DAYS
from hcp_analytics.core.query_plan import (
    NUMERIC_OPERATORS,
    PERCENT_FORMATS,
    THOUSANDS_FORMATS,
    VALID_AGGREGATIONS,
    VALID_OPERATORS,
    FilterSpec,
    MetricSpec,
    QueryPlan,
    validate_plan,
)
from hcp_analytics.core.records import PractitionerRecord

logger = structlog.get_logger()

# Explicit schema so an empty dataset still yields a typed (empty) frame
ROW_SCHEMA: dict[str, Any] = {
    "id": pl.String,
    "name": pl.String,
    "title": pl.String,
    "first_name": pl.String,
    "last_name": pl.String,
    "full_name": pl.String,
    "specialty": pl.String,
    "is_kol": pl.Boolean,
    "city": pl.String,
    "postal_code": pl.String,
    "volume": pl.Float64,
    "loyalty_score": pl.Float64,
    "vingtile": pl.Int64,
    "potential_growth": pl.Float64,
    "days_since_contact": pl.Int64,
    "risk_tier": pl.String,
    "publication_count": pl.Int64,
    "has_publications": pl.Boolean,
    "news_count": pl.Int64,
    "note_count": pl.Int64,
    "visit_count": pl.Int64,
}

BUCKET_COLUMN = "__bucket"
OTHER_BUCKET = "other"

VINGTILE_BUCKETS = ("V1-2 (Top)", "V3-5 (High)", "V6-10 (Medium)", "V11+ (Low)")
LOYALTY_BUCKETS = ("Very low", "Low", "Medium", "Good", "Excellent")
VISIT_BUCKETS = ("<30d", "30-60d", "60-90d", ">90d", "Never")
RISK_BUCKETS = {"high": "High", "medium": "Medium", "low": "Low"}
KOL_BUCKETS = ("KOLs", "Others")
TOTAL_BUCKET = "Total"


@dataclass(frozen=True)
class ResultPoint:
    """
    One output row: a bucket label or a record's display name, plus one value per metric.

    `values` is keyed by metric display name and read-only.
    """

    name: str
    values: Mapping[str, int | float]
    record_id: str | None = None

    def __post_init__(self):
        object.__setattr__(self, "values", MappingProxyType(dict(self.values)))

    def __getitem__(self, metric_name: str) -> int | float:
        return self.values[metric_name]

    def to_dict(self) -> dict[str, Any]:
        """Chart-ready flat form: {"name": ..., "<metric>": value, ...}."""
        return {"name": self.name, **self.values}


@dataclass(frozen=True)
class _SortKey:
    metric: MetricSpec | None  # sort by this metric's output value
    record_field: str | None  # record column usable for individual rows and the pre-group limit


def _round_half_up(value: float, digits: int = 0) -> float:
    if not math.isfinite(value):
        return value
    quantum = Decimal(1).scaleb(-digits)
    return float(Decimal(repr(float(value))).quantize(quantum, rounding=ROUND_HALF_UP))


def format_metric_value(value: float | int, fmt: str | None) -> int | float:
    """
    Apply a metric's output format once, after aggregation.

    "k" / "thousands": divide by 1000, rounded to an integer.
    "percent": multiply by 100, rounded to an integer.
    Anything else (including unknown formats): one decimal place; counts stay integers.
    """
    if fmt in THOUSANDS_FORMATS:
        return int(_round_half_up(value / 1000))
    if fmt in PERCENT_FORMATS:
        return int(_round_half_up(value * 100))
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    return _round_half_up(float(value), 1)


def build_frame(records: Sequence[PractitionerRecord], now: datetime) -> pl.DataFrame:
    """Enrich records and flatten them into a frame with ROW_SCHEMA."""
    rows = [enriched.to_row() for enriched in enrich_all(records, now)]
    return pl.DataFrame(rows, schema=ROW_SCHEMA)


def _coerce_scalar(value: Any, dtype: pl.DataType) -> tuple[bool, Any]:
    """Coerce a filter value to a column dtype. Returns (ok, value)."""
    if value is None or isinstance(value, (list, tuple, set, dict)):
        return False, None

    if dtype == pl.Boolean:
        if isinstance(value, bool):
            return True, value
        if isinstance(value, str) and value.strip().lower() in ("true", "false"):
            return True, value.strip().lower() == "true"
        return False, None

    if dtype.is_numeric():
        if isinstance(value, bool):
            return False, None
        if isinstance(value, (int, float)):
            return True, value
        if isinstance(value, str):
            try:
                return True, float(value.strip())
            except ValueError:
                return False, None
        return False, None

    # String columns compare against the value's string form
    return True, str(value)


def _filter_expression(spec: FilterSpec, schema: pl.Schema) -> pl.Expr:
    """
    Translate one filter into a boolean expression.

    Anything that cannot be evaluated (unknown operator, numeric operator on a
    non-numeric column, uncoercible value) matches nothing; negated operators
    (!=, NOT_IN) match everything instead.
    """
    operator = spec.operator
    if operator not in VALID_OPERATORS:
        logger.warning("filter_unrecognized_operator", column=spec.column, operator=operator)
        return pl.lit(False)

    negated = operator in ("!=", "NOT_IN")
    if spec.column not in schema:
        logger.warning("filter_unknown_column", column=spec.column, operator=operator)
        return pl.lit(negated)

    dtype = schema[spec.column]
    column = pl.col(spec.column)

    if operator in ("==", "!="):
        ok, value = _coerce_scalar(spec.value, dtype)
        if not ok:
            return pl.lit(negated)
        return column == value if operator == "==" else column != value

    if operator in NUMERIC_OPERATORS:
        if not dtype.is_numeric():
            return pl.lit(False)
        ok, value = _coerce_scalar(spec.value, dtype)
        if not ok:
            return pl.lit(False)
        if operator == ">":
            return column > value
        if operator == ">=":
            return column >= value
        if operator == "<":
            return column < value
        return column <= value

    if operator == "CONTAINS":
        if dtype != pl.String or spec.value is None or isinstance(spec.value, (list, tuple, set, dict)):
            return pl.lit(False)
        return column.str.to_lowercase().str.contains(str(spec.value).lower(), literal=True)

    # IN / NOT_IN: ensure value is a list for is_in()
    raw_values = list(spec.value) if isinstance(spec.value, (list, tuple, set)) else [spec.value]
    values = [value for ok, value in (_coerce_scalar(raw, dtype) for raw in raw_values) if ok]
    if dtype.is_integer():
        values = [int(v) for v in values if float(v).is_integer()]
    elif dtype.is_float():
        values = [float(v) for v in values]

    if not values:
        return pl.lit(negated)
    if dtype == pl.String:
        # Membership on text is case-insensitive ("lyon" matches "Lyon")
        membership = column.str.to_lowercase().is_in([v.lower() for v in values])
    else:
        membership = column.is_in(values)
    return ~membership if negated else membership


def apply_filters(frame: pl.DataFrame, filters: Sequence[FilterSpec]) -> pl.DataFrame:
    """AND-combine every filter (no OR support)."""
    for spec in filters:
        frame = frame.filter(_filter_expression(spec, frame.schema))
    return frame


def bucket_expression(dimension: str, schema: pl.Schema) -> pl.Expr:
    """
    Bucket label per record for a group dimension.

    Bucketed dimensions use fixed label tables; any other dimension groups by the
    raw field's string value, with OTHER_BUCKET for missing or empty values.
    """
    if dimension == "vingtile_bucket":
        v = pl.col("vingtile")
        return (
            pl.when(v <= 2)
            .then(pl.lit(VINGTILE_BUCKETS[0]))
            .when(v <= 5)
            .then(pl.lit(VINGTILE_BUCKETS[1]))
            .when(v <= 10)
            .then(pl.lit(VINGTILE_BUCKETS[2]))
            .otherwise(pl.lit(VINGTILE_BUCKETS[3]))
        )

    if dimension == "loyalty_bucket":
        score = pl.col("loyalty_score")
        return (
            pl.when(score <= 2)
            .then(pl.lit(LOYALTY_BUCKETS[0]))
            .when(score <= 4)
            .then(pl.lit(LOYALTY_BUCKETS[1]))
            .when(score <= 6)
            .then(pl.lit(LOYALTY_BUCKETS[2]))
            .when(score <= 8)
            .then(pl.lit(LOYALTY_BUCKETS[3]))
            .otherwise(pl.lit(LOYALTY_BUCKETS[4]))
        )

    if dimension == "visit_bucket":
        days = pl.col("days_since_contact")
        return (
            pl.when(days < 30)
            .then(pl.lit(VISIT_BUCKETS[0]))
            .when(days < 60)
            .then(pl.lit(VISIT_BUCKETS[1]))
            .when(days < 90)
            .then(pl.lit(VISIT_BUCKETS[2]))
            .when(days < NEVER_CONTACTED_SENTINEL_DAYS)
            .then(pl.lit(VISIT_BUCKETS[3]))
            .otherwise(pl.lit(VISIT_BUCKETS[4]))
        )

    if dimension == "risk_tier":
        tier = pl.col("risk_tier")
        return (
            pl.when(tier == "high")
            .then(pl.lit(RISK_BUCKETS["high"]))
            .when(tier == "medium")
            .then(pl.lit(RISK_BUCKETS["medium"]))
            .otherwise(pl.lit(RISK_BUCKETS["low"]))
        )

    if dimension == "is_kol":
        return pl.when(pl.col("is_kol")).then(pl.lit(KOL_BUCKETS[0])).otherwise(pl.lit(KOL_BUCKETS[1]))

    if dimension == "total":
        return pl.lit(TOTAL_BUCKET)

    if dimension not in schema:
        logger.warning("group_dimension_fallback", dimension=dimension, bucket=OTHER_BUCKET)
        return pl.lit(OTHER_BUCKET)

    raw = pl.col(dimension).cast(pl.String)
    return pl.when(raw.is_null() | (raw == "")).then(pl.lit(OTHER_BUCKET)).otherwise(raw)


def _aggregation(metric: MetricSpec) -> str:
    return metric.aggregation if metric.aggregation in VALID_AGGREGATIONS else DEFAULT_AGGREGATION


def _is_numeric_field(metric_field: str | None, schema: pl.Schema) -> bool:
    if metric_field is None or metric_field not in schema:
        return False
    dtype = schema[metric_field]
    return dtype.is_numeric() or dtype == pl.Boolean


def _metric_expression(metric: MetricSpec, schema: pl.Schema, alias: str) -> pl.Expr:
    aggregation = _aggregation(metric)
    if aggregation == "count":
        return pl.len().alias(alias)

    if not _is_numeric_field(metric.field, schema):
        logger.warning("metric_field_unusable", metric=metric.name, field=metric.field)
        # Scalar zero per group
        return (pl.len() * 0).cast(pl.Float64).alias(alias)

    value = pl.col(metric.field).cast(pl.Float64)
    if aggregation == "sum":
        return value.sum().alias(alias)
    if aggregation == "avg":
        return value.mean().alias(alias)
    if aggregation == "min":
        return value.min().alias(alias)
    return value.max().alias(alias)


def _record_metric_value(metric: MetricSpec, row: dict[str, Any], schema: pl.Schema) -> int | float:
    # Every aggregation over a single record is the record's own value (count is 1)
    if _aggregation(metric) == "count":
        return 1
    if not _is_numeric_field(metric.field, schema):
        return 0.0
    return float(row[metric.field])


def _resolve_sort(plan: QueryPlan, schema: pl.Schema) -> _SortKey | None:
    """
    Resolve plan.sort_by: a metric display name, then a metric's source field, then a record field.
    """
    if not plan.sort_by:
        return None
    for metric in plan.metrics:
        if metric.name == plan.sort_by:
            record_field = metric.field if _is_numeric_field(metric.field, schema) else None
            return _SortKey(metric=metric, record_field=record_field)
    for metric in plan.metrics:
        if metric.field and metric.field == plan.sort_by:
            return _SortKey(metric=metric, record_field=metric.field if metric.field in schema else None)
    if plan.sort_by in schema:
        return _SortKey(metric=None, record_field=plan.sort_by)
    logger.debug("sort_key_unresolved", sort_by=plan.sort_by)
    return _SortKey(metric=None, record_field=None)


def _group_rows(
    frame: pl.DataFrame, plan: QueryPlan, dimension: str
) -> list[tuple[ResultPoint, dict[str, Any] | None]]:
    aliases = [f"__m{i}" for i in range(len(plan.metrics))]
    grouped = (
        frame.with_columns(bucket_expression(dimension, frame.schema).alias(BUCKET_COLUMN))
        .group_by(BUCKET_COLUMN, maintain_order=True)
        .agg([_metric_expression(m, frame.schema, a) for m, a in zip(plan.metrics, aliases, strict=True)])
    )

    points: dict[str, ResultPoint] = {}
    for row in grouped.iter_rows(named=True):
        values = {
            metric.name: format_metric_value(row[alias] if row[alias] is not None else 0, metric.format)
            for metric, alias in zip(plan.metrics, aliases, strict=True)
        }
        points[row[BUCKET_COLUMN]] = ResultPoint(name=row[BUCKET_COLUMN], values=values)

    if dimension == "is_kol" and frame.height > 0:
        # The KOL split always reports both sides, in a fixed order
        empty_side = {
            metric.name: format_metric_value(0 if _aggregation(metric) == "count" else 0.0, metric.format)
            for metric in plan.metrics
        }
        return [(points.get(label) or ResultPoint(name=label, values=dict(empty_side)), None) for label in KOL_BUCKETS]

    return [(point, None) for point in points.values()]


def _record_rows(frame: pl.DataFrame, plan: QueryPlan) -> list[tuple[ResultPoint, dict[str, Any] | None]]:
    rows = []
    for row in frame.iter_rows(named=True):
        values = {
            metric.name: format_metric_value(_record_metric_value(metric, row, frame.schema), metric.format)
            for metric in plan.metrics
        }
        rows.append((ResultPoint(name=row["name"], values=values, record_id=row["id"]), row))
    return rows


def _sort_rows(
    rows: list[tuple[ResultPoint, dict[str, Any] | None]], sort_key: _SortKey | None, descending: bool
) -> list[tuple[ResultPoint, dict[str, Any] | None]]:
    if sort_key is None:
        return rows
    # Individual rows sort on the raw record value, not the rounded output
    if sort_key.record_field is not None and all(record is not None for _, record in rows):
        record_field = sort_key.record_field
        return sorted(rows, key=lambda item: item[1][record_field], reverse=descending)  # type: ignore[index]
    if sort_key.metric is not None:
        metric_name = sort_key.metric.name
        return sorted(rows, key=lambda item: item[0].values[metric_name], reverse=descending)
    # Grouped rows with no matching metric keep first-appearance order
    return rows


def execute(plan: QueryPlan, dataset: Sequence[PractitionerRecord], now: datetime) -> list[ResultPoint]:
    """
    Execute a plan against the dataset.

    Args:
        plan: Plan to run (must declare at least one metric)
        dataset: Practitioner records (read-only)
        now: Reference timestamp for enrichment

    Returns:
        Ordered ResultPoints; empty list (never None) when nothing matches

    Raises:
        QueryPlanValidationError: If the plan has no metrics
    """
    validate_plan(plan)

    frame = build_frame(dataset, now)
    input_count = frame.height

    filters = list(plan.filters)
    if plan.source == "kols":
        filters.append(FilterSpec(column="is_kol", operator="==", value=True))
    frame = apply_filters(frame, filters)
    filtered_count = frame.height

    sort_key = _resolve_sort(plan, frame.schema)
    descending = plan.sort_order != "asc"
    limit = plan.limit if plan.limit and plan.limit > 0 else None

    limit_strategy = "none"
    if limit and plan.group_by and sort_key is not None and sort_key.record_field is not None:
        # Top-N individual records first, then group only those
        frame = frame.sort(sort_key.record_field, descending=descending, maintain_order=True).head(limit)
        limit_strategy = "before_group"
    elif limit:
        limit_strategy = "after_group" if plan.group_by else "after_sort"

    rows = _group_rows(frame, plan, plan.group_by) if plan.group_by else _record_rows(frame, plan)
    rows = _sort_rows(rows, sort_key, descending)

    if limit and limit_strategy != "before_group":
        rows = rows[:limit]

    results = [point for point, _ in rows]
    logger.info(
        "query_executed",
        run_key=plan.run_key,
        input_count=input_count,
        filtered_count=filtered_count,
        group_by=plan.group_by,
        limit_strategy=limit_strategy,
        result_count=len(results),
    )
    return results
