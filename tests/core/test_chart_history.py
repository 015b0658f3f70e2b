"""
Tests for ChartHistory - caller-owned bounded history of chart results.

Test name follows: test_unit_scenario_expectedBehavior
"""

from datetime import datetime

import pytest

from hcp_analytics.core.chart_history import ChartHistory, requested_chart_type
from hcp_analytics.core.chart_spec import ChartResult, generate_chart_spec
from hcp_analytics.core.query_executor import ResultPoint
from hcp_analytics.core.query_plan import MetricSpec, QueryPlan


def _result(title: str) -> ChartResult:
    spec = generate_chart_spec(QueryPlan(metrics=[MetricSpec(name="Count")], group_by="city"), title=title)
    return ChartResult(
        spec=spec,
        data=[ResultPoint(name="Lyon", values={"Count": 2})],
        insights=["**Lyon** leads with 2"],
        suggestions=[],
        raw_query="{}",
    )


class TestChartHistory:
    """Test suite for ChartHistory."""

    def test_chart_history_initializes_empty(self):
        # Arrange
        history = ChartHistory(max_size=3)

        # Act & Assert
        assert len(history) == 0
        assert history.latest() is None
        assert history.entries() == []

    def test_chart_history_record_returns_entry_most_recent_first(self):
        # Arrange
        history = ChartHistory(max_size=3)

        # Act
        history.record("first question", _result("first"))
        entry = history.record("second question", _result("second"))

        # Assert
        assert history.latest() is entry
        assert [e.question for e in history.entries()] == ["second question", "first question"]

    def test_chart_history_evicts_oldest_when_full(self):
        # Arrange
        history = ChartHistory(max_size=2)

        # Act
        for i in range(3):
            history.record(f"question {i}", _result(f"chart {i}"))

        # Assert
        assert len(history) == 2
        assert [e.spec.title for e in history.entries()] == ["chart 2", "chart 1"]

    def test_chart_history_invalid_size_raises(self):
        # Act & Assert
        with pytest.raises(ValueError, match="max_size"):
            ChartHistory(max_size=0)

    def test_chart_history_default_size_from_config(self):
        # Act
        history = ChartHistory()

        # Assert
        assert history.max_size == 5

    def test_chart_history_entry_data_is_copied(self):
        # Arrange
        history = ChartHistory(max_size=2)
        result = _result("chart")

        # Act
        entry = history.record("question", result)
        result.data.clear()

        # Assert
        assert len(entry.data) == 1

    def test_chart_history_serialize(self):
        # Arrange
        history = ChartHistory(max_size=2)
        timestamp = datetime(2025, 1, 15, 9, 0)
        history.record("How many by city?", _result("Count by City"), timestamp=timestamp)

        # Act
        serialized = history.serialize()

        # Assert
        assert serialized == [
            {
                "question": "How many by city?",
                "chart_type": "bar",
                "title": "Count by City",
                "query": serialized[0]["query"],
                "data": [{"name": "Lyon", "Count": 2}],
                "insights": ["**Lyon** leads with 2"],
                "timestamp": "2025-01-15T09:00:00",
            }
        ]
        assert serialized[0]["query"]["group_by"] == "city"

    def test_chart_history_clear(self):
        # Arrange
        history = ChartHistory(max_size=2)
        history.record("question", _result("chart"))

        # Act
        history.clear()

        # Assert
        assert len(history) == 0


class TestRequestedChartType:
    """Chart-type words in follow-up questions."""

    @pytest.mark.parametrize(
        ("question", "expected"),
        [
            ("Make it a pie chart", "pie"),
            ("En camembert", "pie"),
            ("Show it as bars", "bar"),
            ("Plutôt en courbe", "line"),
            ("How many practitioners by city?", None),
        ],
    )
    def test_requested_chart_type(self, question, expected):
        # Act & Assert
        assert requested_chart_type(question) == expected
