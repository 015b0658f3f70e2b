"""
Query Plan Builder - QueryIntent or untrusted external spec -> QueryPlan.

External specs (typically JSON written by an LLM) are first parsed into a tagged
intermediate representation: every field carries a Resolution saying whether the
value was recognized as-is, recognized through an alias, coerced from a near-miss
shape, replaced by a documented default, or dropped. Building the plan from that
representation is then mechanical, and tests can assert exactly which fallback
path triggered.

Only an empty metric list is fatal (QueryPlanValidationError); every other
malformed fragment degrades gracefully.
"""

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

import structlog

from hcp_analytics.core.intent_analyzer import QueryIntent
from hcp_analytics.core.query_engine_config import (
    DEFAULT_AGGREGATION,
    DEFAULT_CHART_TYPE,
    DEFAULT_RESULT_LIMIT,
)
from hcp_analytics.core.query_plan import (
    BUCKET_DIMENSIONS,
    RECORD_FIELDS,
    VALID_AGGREGATIONS,
    VALID_CHART_TYPES,
    VALID_OPERATORS,
    VALID_SOURCES,
    FilterSpec,
    MetricSpec,
    QueryPlan,
    compute_run_key,
    validate_plan,
)

logger = structlog.get_logger()

T = TypeVar("T")

# camelCase names used in prompts and by the data generator -> canonical row fields
FIELD_ALIASES = {
    "volumeL": "volume",
    "volumel": "volume",
    "loyaltyScore": "loyalty_score",
    "loyalty": "loyalty_score",
    "isKOL": "is_kol",
    "isKol": "is_kol",
    "kol": "is_kol",
    "daysSinceVisit": "days_since_contact",
    "daysSinceContact": "days_since_contact",
    "riskLevel": "risk_tier",
    "riskTier": "risk_tier",
    "publicationsCount": "publication_count",
    "publicationCount": "publication_count",
    "hasPublications": "has_publications",
    "vingtileBucket": "vingtile_bucket",
    "loyaltyBucket": "loyalty_bucket",
    "visitBucket": "visit_bucket",
    "firstName": "first_name",
    "lastName": "last_name",
    "fullName": "full_name",
    "postalCode": "postal_code",
    "potentialGrowth": "potential_growth",
    "newsCount": "news_count",
    "noteCount": "note_count",
    "visitCount": "visit_count",
}

OPERATOR_ALIASES = {
    "eq": "==",
    "=": "==",
    "ne": "!=",
    "neq": "!=",
    "gt": ">",
    "gte": ">=",
    "lt": "<",
    "lte": "<=",
    "contains": "CONTAINS",
    "in": "IN",
    "not_in": "NOT_IN",
    "nin": "NOT_IN",
}

AGGREGATION_ALIASES = {"average": "avg", "mean": "avg", "total": "sum", "minimum": "min", "maximum": "max"}

# Default metric for a sort field: (display name, field, aggregation, format)
SORT_FIELD_METRICS: dict[str, tuple[str, str, str, str | None]] = {
    "volume": ("Volume (K L)", "volume", "sum", "k"),
    "loyalty_score": ("Loyalty", "loyalty_score", "avg", None),
    "vingtile": ("Vingtile", "vingtile", "avg", None),
    "days_since_contact": ("Days since contact", "days_since_contact", "max", None),
    "publication_count": ("Publications", "publication_count", "sum", None),
}
DEFAULT_METRIC_FIELD = "volume"
# Single-bucket dimension for count questions without a breakdown
TOTAL_DIMENSION = "total"

_METRIC_SHORTHAND = re.compile(r"^\s*(\w+)\s*\(\s*([\w*]*)\s*\)\s*$")


class Resolution(str, Enum):
    RECOGNIZED = "recognized"  # taken as-is
    ALIASED = "aliased"  # recognized through an alias table
    COERCED = "coerced"  # near-miss shape converted (single object wrapped, "10" -> 10, ...)
    UNRECOGNIZED = "unrecognized"  # kept verbatim, the executor applies its fallback
    DEFAULTED = "defaulted"  # missing or invalid, replaced by the documented default
    DROPPED = "dropped"  # unusable fragment discarded


@dataclass(frozen=True)
class Tagged(Generic[T]):
    value: T
    resolution: Resolution
    raw: Any = None


@dataclass
class ParsedSpec:
    """Tagged intermediate representation of an external chart/query spec."""

    chart_type: Tagged[str]
    source: Tagged[str]
    filters_shape: Resolution
    filters: list[Tagged[FilterSpec | None]]
    group_by: Tagged[str | None]
    metrics_shape: Resolution
    metrics: list[Tagged[MetricSpec | None]]
    sort_by: Tagged[str | None]
    sort_order: Tagged[str]
    limit: Tagged[int | None]
    title: str = ""
    description: str = ""
    formatting: dict[str, Any] = field(default_factory=dict)
    insights: list[str] | None = None
    suggestions: list[str] | None = None

    def fallbacks(self) -> dict[str, Resolution]:
        """Every field that did not resolve as RECOGNIZED or ALIASED, keyed by path."""
        entries: dict[str, Resolution] = {
            "chart_type": self.chart_type.resolution,
            "source": self.source.resolution,
            "filters": self.filters_shape,
            "group_by": self.group_by.resolution,
            "metrics": self.metrics_shape,
            "sort_by": self.sort_by.resolution,
            "sort_order": self.sort_order.resolution,
            "limit": self.limit.resolution,
        }
        for i, tagged_filter in enumerate(self.filters):
            entries[f"filters[{i}]"] = tagged_filter.resolution
        for i, tagged_metric in enumerate(self.metrics):
            entries[f"metrics[{i}]"] = tagged_metric.resolution
        return {
            path: resolution
            for path, resolution in entries.items()
            if resolution not in (Resolution.RECOGNIZED, Resolution.ALIASED)
        }


def resolve_field(name: str) -> tuple[str, Resolution]:
    """Map a field name to its canonical row column."""
    if name in FIELD_ALIASES:
        return FIELD_ALIASES[name], Resolution.ALIASED
    return name, Resolution.RECOGNIZED


def resolve_operator(operator: str) -> tuple[str, Resolution]:
    if operator in VALID_OPERATORS:
        return operator, Resolution.RECOGNIZED
    alias = OPERATOR_ALIASES.get(operator.strip().lower())
    if alias:
        return alias, Resolution.ALIASED
    if operator.strip().upper() in VALID_OPERATORS:
        return operator.strip().upper(), Resolution.ALIASED
    return operator, Resolution.UNRECOGNIZED


def _as_list(value: Any) -> tuple[list[Any], Resolution]:
    if value is None:
        return [], Resolution.DEFAULTED
    if isinstance(value, list):
        return value, Resolution.RECOGNIZED
    if isinstance(value, (dict, str)):
        return [value], Resolution.COERCED
    return [], Resolution.DROPPED


def _parse_filter(raw: Any) -> Tagged[FilterSpec | None]:
    if not isinstance(raw, dict):
        return Tagged(None, Resolution.DROPPED, raw)
    column = raw.get("field", raw.get("column"))
    if not isinstance(column, str) or not column:
        return Tagged(None, Resolution.DROPPED, raw)

    canonical_column, column_resolution = resolve_field(column)
    operator, operator_resolution = resolve_operator(str(raw.get("operator", "==")))
    spec = FilterSpec(column=canonical_column, operator=operator, value=raw.get("value"))

    if operator_resolution == Resolution.UNRECOGNIZED:
        logger.warning("spec_field_fallback", path="filter.operator", operator=operator, column=canonical_column)
        return Tagged(spec, Resolution.UNRECOGNIZED, raw)
    if "operator" not in raw:
        return Tagged(spec, Resolution.DEFAULTED, raw)
    if Resolution.ALIASED in (column_resolution, operator_resolution):
        return Tagged(spec, Resolution.ALIASED, raw)
    return Tagged(spec, Resolution.RECOGNIZED, raw)


def _parse_aggregation(raw: Any) -> tuple[str, Resolution]:
    if isinstance(raw, str):
        key = raw.strip().lower()
        if key in VALID_AGGREGATIONS:
            return key, Resolution.RECOGNIZED if key == raw else Resolution.ALIASED
        if key in AGGREGATION_ALIASES:
            return AGGREGATION_ALIASES[key], Resolution.ALIASED
    return DEFAULT_AGGREGATION, Resolution.DEFAULTED


def _parse_metric(raw: Any) -> Tagged[MetricSpec | None]:
    if isinstance(raw, str):
        # Shorthand: "count" or "sum(volumeL)"
        match = _METRIC_SHORTHAND.match(raw)
        aggregation_raw, field_raw = (match.group(1), match.group(2)) if match else (raw, "")
        aggregation, _ = _parse_aggregation(aggregation_raw)
        metric_field = resolve_field(field_raw)[0] if field_raw and field_raw != "*" else None
        if aggregation != "count" and metric_field is None:
            return Tagged(None, Resolution.DROPPED, raw)
        return Tagged(MetricSpec(name=raw.strip(), field=metric_field, aggregation=aggregation), Resolution.COERCED, raw)

    if not isinstance(raw, dict):
        return Tagged(None, Resolution.DROPPED, raw)

    aggregation, aggregation_resolution = _parse_aggregation(raw.get("aggregation"))
    field_raw = raw.get("field")
    metric_field = None
    field_resolution = Resolution.RECOGNIZED
    if isinstance(field_raw, str) and field_raw and field_raw != "*":
        metric_field, field_resolution = resolve_field(field_raw)

    if aggregation != "count" and metric_field is None:
        logger.warning("spec_field_fallback", path="metric.field", metric=raw, reason="missing_field")
        return Tagged(None, Resolution.DROPPED, raw)

    name = raw.get("name")
    name_resolution = Resolution.RECOGNIZED
    if not isinstance(name, str) or not name.strip():
        name = f"{aggregation}({metric_field})" if metric_field else aggregation
        name_resolution = Resolution.DEFAULTED

    fmt = raw.get("format")
    spec = MetricSpec(
        name=name,
        field=metric_field,
        aggregation=aggregation,
        format=fmt if isinstance(fmt, str) and fmt else None,
    )

    if aggregation_resolution == Resolution.DEFAULTED:
        logger.warning("spec_field_fallback", path="metric.aggregation", raw=raw.get("aggregation"))
        return Tagged(spec, Resolution.DEFAULTED, raw)
    if name_resolution == Resolution.DEFAULTED:
        return Tagged(spec, Resolution.DEFAULTED, raw)
    if Resolution.ALIASED in (aggregation_resolution, field_resolution):
        return Tagged(spec, Resolution.ALIASED, raw)
    return Tagged(spec, Resolution.RECOGNIZED, raw)


def _parse_limit(raw: Any) -> Tagged[int | None]:
    if raw is None:
        return Tagged(None, Resolution.DEFAULTED, raw)
    if isinstance(raw, bool):
        return Tagged(None, Resolution.DEFAULTED, raw)
    if isinstance(raw, int):
        return Tagged(raw, Resolution.RECOGNIZED, raw) if raw > 0 else Tagged(None, Resolution.DEFAULTED, raw)
    try:
        value = int(float(raw))
    except (OverflowError, TypeError, ValueError):
        return Tagged(None, Resolution.DEFAULTED, raw)
    return Tagged(value, Resolution.COERCED, raw) if value > 0 else Tagged(None, Resolution.DEFAULTED, raw)


def _parse_chart_type(raw: Any) -> Tagged[str]:
    if isinstance(raw, str):
        if raw in VALID_CHART_TYPES:
            return Tagged(raw, Resolution.RECOGNIZED, raw)
        if raw.strip().lower() in VALID_CHART_TYPES:
            return Tagged(raw.strip().lower(), Resolution.ALIASED, raw)
    logger.warning("spec_field_fallback", path="chart_type", raw=raw, default=DEFAULT_CHART_TYPE)
    return Tagged(DEFAULT_CHART_TYPE, Resolution.DEFAULTED, raw)


def _parse_optional_name(raw: Any, known: set[str] | None = None) -> Tagged[str | None]:
    if raw is None or raw == "":
        return Tagged(None, Resolution.DEFAULTED, raw)
    if not isinstance(raw, str):
        return Tagged(None, Resolution.DROPPED, raw)
    canonical, resolution = resolve_field(raw)
    if known is not None and canonical not in known:
        logger.warning("spec_field_fallback", path="group_by", raw=raw, fallback="raw_field_grouping")
        return Tagged(canonical, Resolution.UNRECOGNIZED, raw)
    return Tagged(canonical, resolution, raw)


def _string_list(raw: Any) -> list[str] | None:
    if isinstance(raw, list):
        return [str(item) for item in raw if item is not None]
    if isinstance(raw, str) and raw:
        return [raw]
    return None


def parse_external_spec(raw: Any) -> ParsedSpec:
    """
    Parse an untrusted chart/query spec into the tagged representation.

    Accepts either a chart spec ({"chartType", "title", "query": {...}, ...})
    or a bare query ({"filters", "groupBy", "metrics", ...}). Never raises.
    """
    spec = raw if isinstance(raw, dict) else {}
    query = spec.get("query") if isinstance(spec.get("query"), dict) else spec

    source_raw = query.get("source")
    if isinstance(source_raw, str) and source_raw in VALID_SOURCES:
        source = Tagged(source_raw, Resolution.RECOGNIZED, source_raw)
    else:
        source = Tagged("practitioners", Resolution.DEFAULTED, source_raw)

    filter_items, filters_shape = _as_list(query.get("filters"))
    metric_items, metrics_shape = _as_list(query.get("metrics"))

    sort_order_raw = query.get("sortOrder", query.get("sort_order"))
    if isinstance(sort_order_raw, str) and sort_order_raw.strip().lower() in ("asc", "desc"):
        resolution = Resolution.RECOGNIZED if sort_order_raw in ("asc", "desc") else Resolution.ALIASED
        sort_order = Tagged(sort_order_raw.strip().lower(), resolution, sort_order_raw)
    else:
        sort_order = Tagged("desc", Resolution.DEFAULTED, sort_order_raw)

    formatting = spec.get("formatting")

    parsed = ParsedSpec(
        chart_type=_parse_chart_type(spec.get("chartType", spec.get("chart_type"))),
        source=source,
        filters_shape=filters_shape,
        filters=[_parse_filter(item) for item in filter_items],
        group_by=_parse_optional_name(query.get("groupBy", query.get("group_by")), RECORD_FIELDS | BUCKET_DIMENSIONS),
        metrics_shape=metrics_shape,
        metrics=[_parse_metric(item) for item in metric_items],
        sort_by=_parse_optional_name(query.get("sortBy", query.get("sort_by"))),
        sort_order=sort_order,
        limit=_parse_limit(query.get("limit")),
        title=str(spec.get("title") or ""),
        description=str(spec.get("description") or ""),
        formatting=formatting if isinstance(formatting, dict) else {},
        insights=_string_list(spec.get("insights")),
        suggestions=_string_list(spec.get("suggestions")),
    )

    fallbacks = parsed.fallbacks()
    if fallbacks:
        logger.debug("external_spec_fallbacks", fallbacks={k: v.value for k, v in fallbacks.items()})
    return parsed


def build_plan_from_spec(raw: Any) -> QueryPlan:
    """
    Build a QueryPlan from an external spec (raw dict or ParsedSpec).

    Raises:
        QueryPlanValidationError: If no usable metric remains
    """
    parsed = raw if isinstance(raw, ParsedSpec) else parse_external_spec(raw)

    plan = QueryPlan(
        source=parsed.source.value,
        filters=[tagged.value for tagged in parsed.filters if tagged.value is not None],
        group_by=parsed.group_by.value,
        metrics=[tagged.value for tagged in parsed.metrics if tagged.value is not None],
        sort_by=parsed.sort_by.value,
        sort_order=parsed.sort_order.value,  # type: ignore[arg-type]
        limit=parsed.limit.value if parsed.limit.value is not None else DEFAULT_RESULT_LIMIT,
        explanation=parsed.description or parsed.title,
    )
    validate_plan(plan)
    plan.run_key = compute_run_key(plan)

    logger.info(
        "plan_built",
        origin="external_spec",
        run_key=plan.run_key,
        filter_count=len(plan.filters),
        metric_count=len(plan.metrics),
        group_by=plan.group_by,
        limit=plan.limit,
    )
    return plan


def _default_metric(sort_field: str | None, aggregation: str | None) -> MetricSpec:
    name, metric_field, default_aggregation, fmt = SORT_FIELD_METRICS.get(
        sort_field or DEFAULT_METRIC_FIELD, SORT_FIELD_METRICS[DEFAULT_METRIC_FIELD]
    )
    if aggregation in ("sum", "avg", "min", "max") and aggregation != default_aggregation:
        name = f"{name} ({aggregation})"
        return MetricSpec(name=name, field=metric_field, aggregation=aggregation, format=fmt)
    return MetricSpec(name=name, field=metric_field, aggregation=default_aggregation, format=fmt)


def build_plan_from_intent(intent: QueryIntent) -> QueryPlan:
    """
    Build a QueryPlan from an analyzed question.

    Entity filters: cities -> city IN, specialties -> specialty IN,
    each name fragment -> full_name CONTAINS. Keyword filters come from the intent.

    The metric follows the sort field, then the measure the question names, then
    volume. Count questions get a count metric, over a single "total" bucket when
    nothing is grouped. Grouped plans without a sort rank by the metric, descending.

    Raises:
        QueryPlanValidationError: If no metric could be derived
    """
    filters = list(intent.filters)
    if intent.entities.cities:
        filters.append(FilterSpec(column="city", operator="IN", value=list(intent.entities.cities)))
    if intent.entities.specialties:
        filters.append(FilterSpec(column="specialty", operator="IN", value=list(intent.entities.specialties)))
    for name in intent.entities.names:
        filters.append(FilterSpec(column="full_name", operator="CONTAINS", value=name))

    sort_field = intent.sort.field if intent.sort else None
    sort_order = intent.sort.order if intent.sort else "desc"
    group_by = intent.group_by
    wants_count = intent.aggregation == "count" or intent.category == "count"

    if wants_count:
        metrics = [MetricSpec(name="Count", aggregation="count")]
        if group_by is None:
            # "How many ..." without a breakdown is one total, not a row per practitioner
            group_by = TOTAL_DIMENSION
    else:
        metrics = [_default_metric(sort_field or intent.measure, intent.aggregation)]

    if group_by and sort_field is None:
        # Grouped rows rank by their primary metric so the first row is the leader
        sort_field = metrics[0].name
        sort_order = "desc"

    plan = QueryPlan(
        filters=filters,
        group_by=group_by,
        metrics=metrics,
        sort_by=sort_field,
        sort_order=sort_order,  # type: ignore[arg-type]
        limit=intent.limit if intent.limit is not None else DEFAULT_RESULT_LIMIT,
        explanation=intent.question,
    )
    validate_plan(plan)
    plan.run_key = compute_run_key(plan)

    logger.info(
        "plan_built",
        origin="intent",
        category=intent.category,
        run_key=plan.run_key,
        filter_count=len(plan.filters),
        group_by=plan.group_by,
        sort_by=plan.sort_by,
        limit=plan.limit,
    )
    return plan
