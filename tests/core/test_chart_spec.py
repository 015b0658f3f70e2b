"""
Tests for chart spec generation, LLM chart parsing and chart assembly.

Test name follows: test_unit_scenario_expectedBehavior
"""

import json

from hcp_analytics.core.chart_spec import (
    ChartFormatting,
    ChartSpec,
    assemble_chart,
    generate_chart_spec,
    parse_chart_response,
)
from hcp_analytics.core.query_plan import MetricSpec, QueryPlan

VOLUME_K = MetricSpec(name="Volume", field="volume", aggregation="sum", format="k")


class TestGenerateChartSpec:
    """Deterministic chart spec from a QueryPlan."""

    def test_generate_chart_spec_grouped_plan_titles_by_dimension(self):
        # Arrange
        plan = QueryPlan(metrics=[VOLUME_K], group_by="city")

        # Act
        spec = generate_chart_spec(plan)

        # Assert
        assert spec.chart_type == "bar"
        assert spec.title == "Volume by City"
        assert spec.formatting.x_axis_label == "City"
        assert spec.formatting.y_axis_label == "Volume"

    def test_generate_chart_spec_ungrouped_plan_lists_practitioners(self):
        # Arrange
        plan = QueryPlan(metrics=[VOLUME_K])

        # Act
        spec = generate_chart_spec(plan, chart_type="line")

        # Assert
        assert spec.chart_type == "line"
        assert spec.title == "Volume per practitioner"
        assert spec.formatting.x_axis_label == "Practitioner"

    def test_generate_chart_spec_unknown_dimension_uses_raw_name(self):
        # Arrange
        plan = QueryPlan(metrics=[VOLUME_K], group_by="postal_code")

        # Act
        spec = generate_chart_spec(plan)

        # Assert
        assert spec.title == "Volume by postal_code"


class TestChartFormatting:
    """Test suite for ChartFormatting.from_dict."""

    def test_from_dict_reads_camel_case_keys(self):
        # Arrange
        data = {"colors": ["#0057A4"], "showLegend": False, "xAxisLabel": "City", "valueSuffix": "K L"}

        # Act
        formatting = ChartFormatting.from_dict(data)

        # Assert
        assert formatting.colors == ["#0057A4"]
        assert formatting.show_legend is False
        assert formatting.show_grid is True
        assert formatting.x_axis_label == "City"
        assert formatting.value_suffix == "K L"


class TestParseChartResponse:
    """Test suite for parse_chart_response."""

    def test_parse_chart_response_fenced_json(self):
        # Arrange
        payload = {
            "chartType": "pie",
            "title": "KOL share",
            "query": {"groupBy": "isKOL", "metrics": [{"name": "Count", "aggregation": "count"}]},
            "insights": ["KOLs are a minority"],
        }
        text = f"Here is the chart:\n```json\n{json.dumps(payload)}\n```\nAnything else?"

        # Act
        spec = parse_chart_response(text)

        # Assert
        assert spec is not None
        assert spec.chart_type == "pie"
        assert spec.title == "KOL share"
        assert spec.plan.group_by == "is_kol"
        assert spec.insights == ["KOLs are a minority"]

    def test_parse_chart_response_missing_metrics_returns_none(self):
        # Arrange
        text = json.dumps({"chartType": "bar", "query": {"groupBy": "city"}})

        # Act & Assert
        assert parse_chart_response(text) is None

    def test_parse_chart_response_missing_chart_type_returns_none(self):
        # Arrange
        text = json.dumps({"query": {"metrics": [{"name": "Count", "aggregation": "count"}]}})

        # Act & Assert
        assert parse_chart_response(text) is None

    def test_parse_chart_response_no_usable_metric_returns_none(self):
        # Arrange
        text = json.dumps({"chartType": "bar", "query": {"metrics": []}})

        # Act & Assert
        assert parse_chart_response(text) is None

    def test_parse_chart_response_malformed_json_returns_none(self):
        # Act & Assert
        assert parse_chart_response('{"chartType": "bar",') is None
        assert parse_chart_response(None) is None

    def test_parse_chart_response_missing_title_generates_one(self):
        # Arrange
        text = json.dumps(
            {"chartType": "bar", "query": {"groupBy": "city", "metrics": [{"name": "Count", "aggregation": "count"}]}}
        )

        # Act
        spec = parse_chart_response(text)

        # Assert
        assert spec is not None
        assert spec.title == "Count by City"


class TestAssembleChart:
    """Test suite for assemble_chart."""

    def test_assemble_chart_generates_insights_and_suggestions(self, lyon_grenoble_records, now):
        # Arrange
        plan = QueryPlan(metrics=[VOLUME_K], group_by="city", sort_by="Volume")
        spec = generate_chart_spec(plan)

        # Act
        result = assemble_chart(spec, lyon_grenoble_records, now)

        # Assert
        assert [point.to_dict() for point in result.data] == [
            {"name": "Lyon", "Volume": 800},
            {"name": "Grenoble", "Volume": 100},
        ]
        assert result.insights[0] == "**Lyon** leads with 800"
        assert result.suggestions == ["KOL details by city", "At-risk practitioners by city"]

    def test_assemble_chart_supplied_insights_take_precedence(self, lyon_grenoble_records, now):
        # Arrange
        plan = QueryPlan(metrics=[VOLUME_K], group_by="city")
        spec = ChartSpec(chart_type="bar", title="t", plan=plan, insights=["Given"], suggestions=["Ask this"])

        # Act
        result = assemble_chart(spec, lyon_grenoble_records, now)

        # Assert
        assert result.insights == ["Given"]
        assert result.suggestions == ["Ask this"]

    def test_assemble_chart_raw_query_is_indented_plan_json(self, lyon_grenoble_records, now):
        # Arrange
        plan = QueryPlan(metrics=[VOLUME_K], group_by="city")
        spec = generate_chart_spec(plan)

        # Act
        result = assemble_chart(spec, lyon_grenoble_records, now)

        # Assert
        assert json.loads(result.raw_query) == plan.to_dict()
        assert "\n  " in result.raw_query

    def test_assemble_chart_empty_result_has_no_data_insight(self, now):
        # Arrange
        spec = generate_chart_spec(QueryPlan(metrics=[VOLUME_K], group_by="city"))

        # Act
        result = assemble_chart(spec, [], now)

        # Assert
        assert result.data == []
        assert result.insights == ["No data matches the criteria"]
        assert result.to_dict()["data"] == []
