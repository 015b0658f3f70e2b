"""
Chart Spec Assembler - thin adapter between a QueryPlan and the presentation layer.

A ChartSpec wraps a plan with its chart type, title, description and formatting
hints. `assemble_chart` executes the plan and bundles rows, insights and
follow-up suggestions into a ChartResult.
"""

import json
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import structlog

from hcp_analytics.core.insights import generate_insights, suggest_followups
from hcp_analytics.core.llm_json import parse_json_response, validate_shape
from hcp_analytics.core.plan_builder import ParsedSpec, build_plan_from_spec, parse_external_spec
from hcp_analytics.core.query_engine_config import DEFAULT_CHART_TYPE
from hcp_analytics.core.query_executor import ResultPoint, execute
from hcp_analytics.core.query_plan import QueryPlan, QueryPlanValidationError
from hcp_analytics.core.records import PractitionerRecord

logger = structlog.get_logger()

# Human-readable dimension names for generated titles and axis labels
DIMENSION_LABELS = {
    "city": "City",
    "specialty": "Specialty",
    "vingtile": "Vingtile",
    "vingtile_bucket": "Segment",
    "loyalty_bucket": "Loyalty level",
    "visit_bucket": "Last visit",
    "risk_tier": "Risk level",
    "is_kol": "KOL status",
    "total": "Total",
}


@dataclass
class ChartFormatting:
    """Display hints; none of them affect the data."""

    colors: list[str] | None = None
    show_legend: bool = True
    show_grid: bool = True
    x_axis_label: str = ""
    y_axis_label: str = ""
    value_prefix: str = ""
    value_suffix: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChartFormatting":
        colors = data.get("colors")
        return cls(
            colors=[str(c) for c in colors] if isinstance(colors, list) else None,
            show_legend=bool(data.get("showLegend", True)),
            show_grid=bool(data.get("showGrid", True)),
            x_axis_label=str(data.get("xAxisLabel") or ""),
            y_axis_label=str(data.get("yAxisLabel") or ""),
            value_prefix=str(data.get("valuePrefix") or ""),
            value_suffix=str(data.get("valueSuffix") or ""),
        )


@dataclass
class ChartSpec:
    """Chart descriptor: plan plus presentation metadata."""

    chart_type: str
    title: str
    plan: QueryPlan
    description: str = ""
    formatting: ChartFormatting = field(default_factory=ChartFormatting)
    insights: list[str] | None = None  # Supplied with the spec (e.g. by an LLM)
    suggestions: list[str] | None = None


@dataclass
class ChartResult:
    """Executed chart: rows plus insights, follow-ups and the serialized query."""

    spec: ChartSpec
    data: list[ResultPoint]
    insights: list[str]
    suggestions: list[str]
    raw_query: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "chart_type": self.spec.chart_type,
            "title": self.spec.title,
            "description": self.spec.description,
            "data": [point.to_dict() for point in self.data],
            "insights": self.insights,
            "suggestions": self.suggestions,
            "raw_query": self.raw_query,
        }


def generate_chart_spec(plan: QueryPlan, chart_type: str | None = None, title: str = "") -> ChartSpec:
    """
    Deterministic chart spec for a plan built without presentation metadata.

    Grouped plans default to a bar chart of the primary metric by dimension;
    ungrouped plans list individual practitioners.
    """
    primary = plan.primary_metric()
    metric_name = primary.name if primary else "value"
    dimension = DIMENSION_LABELS.get(plan.group_by or "", plan.group_by or "")

    if not title:
        if plan.group_by == "total":
            title = metric_name
        elif plan.group_by:
            title = f"{metric_name} by {dimension}"
        else:
            title = f"{metric_name} per practitioner"

    return ChartSpec(
        chart_type=chart_type or DEFAULT_CHART_TYPE,
        title=title,
        plan=plan,
        description=plan.explanation,
        formatting=ChartFormatting(x_axis_label=dimension or "Practitioner", y_axis_label=metric_name),
    )


def chart_spec_from_parsed(parsed: ParsedSpec) -> ChartSpec:
    """
    Build a ChartSpec from a parsed external spec.

    Raises:
        QueryPlanValidationError: If no usable metric remains
    """
    plan = build_plan_from_spec(parsed)
    return ChartSpec(
        chart_type=parsed.chart_type.value,
        title=parsed.title or generate_chart_spec(plan).title,
        plan=plan,
        description=parsed.description,
        formatting=ChartFormatting.from_dict(parsed.formatting),
        insights=parsed.insights,
        suggestions=parsed.suggestions,
    )


def parse_chart_response(text: str | None) -> ChartSpec | None:
    """
    Parse an LLM chart answer (optionally a ```json fenced block) into a ChartSpec.

    Requires chartType, query and query.metrics; returns None when any is missing,
    when the JSON is malformed, or when no usable metric survives coercion.
    """
    payload = parse_json_response(text)
    shape = validate_shape(payload, "chart_spec")
    if not shape.valid:
        logger.warning("chart_response_invalid", errors=shape.errors)
        return None

    try:
        return chart_spec_from_parsed(parse_external_spec(payload))
    except QueryPlanValidationError as e:
        logger.warning("chart_response_unusable", errors=e.errors)
        return None


def assemble_chart(spec: ChartSpec, records: Sequence[PractitionerRecord], now: datetime) -> ChartResult:
    """
    Execute a chart spec and bundle the result.

    Insights and suggestions supplied with the spec take precedence over generated ones.
    """
    data = execute(spec.plan, records, now)

    insights = spec.insights
    if insights is None:
        insights = generate_insights(spec.plan, data, spec.chart_type, spec.formatting.value_suffix)
    suggestions = spec.suggestions if spec.suggestions is not None else suggest_followups(spec.plan)

    logger.info("chart_assembled", chart_type=spec.chart_type, rows=len(data), run_key=spec.plan.run_key)
    return ChartResult(
        spec=spec,
        data=data,
        insights=list(insights),
        suggestions=list(suggestions),
        raw_query=json.dumps(spec.plan.to_dict(), indent=2, ensure_ascii=False, default=str),
    )
