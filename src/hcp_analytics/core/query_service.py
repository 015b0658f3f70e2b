"""
QueryService - pipeline facade for the presentation layer.

Ties the pure pieces together:
    ask(question):  analyze -> build plan -> execute -> insights
    run_spec(raw):  parse external spec -> build plan -> execute -> insights

The service holds a reference to the caller's dataset and a fixed `now`
(or the current time per call); it keeps no other state between calls.
Conversation history is a ChartHistory the caller passes to ask/run_spec.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import structlog

from hcp_analytics.core.chart_history import ChartHistory, requested_chart_type
from hcp_analytics.core.chart_spec import ChartSpec, assemble_chart, chart_spec_from_parsed, generate_chart_spec
from hcp_analytics.core.intent_analyzer import IntentStrategy, QueryIntent, analyze
from hcp_analytics.core.plan_builder import ParsedSpec, build_plan_from_intent, parse_external_spec
from hcp_analytics.core.query_executor import ResultPoint
from hcp_analytics.core.query_plan import QueryPlan
from hcp_analytics.core.records import PractitionerRecord

logger = structlog.get_logger()


@dataclass
class QueryOutcome:
    """Result of one question or spec, as handed to the presentation layer."""

    plan: QueryPlan
    rows: list[ResultPoint]
    insights: list[str]
    suggestions: list[str] = field(default_factory=list)
    intent: QueryIntent | None = None  # Set for free-text questions
    parsed_spec: ParsedSpec | None = None  # Set for external specs
    chart: ChartSpec | None = None

    @property
    def is_empty(self) -> bool:
        return not self.rows

    def to_dict(self) -> dict[str, Any]:
        return {
            "plan": self.plan.to_dict(),
            "run_key": self.plan.run_key,
            "rows": [row.to_dict() for row in self.rows],
            "insights": list(self.insights),
            "suggestions": list(self.suggestions),
            "category": self.intent.category if self.intent else None,
            "chart_type": self.chart.chart_type if self.chart else None,
            "title": self.chart.title if self.chart else None,
        }


class QueryService:
    """
    Question answering over an in-memory practitioner dataset.

    Args:
        records: Practitioner records (read-only, owned by the caller)
        now: Fixed reference time for enrichment; current UTC time per call if None
        strategy: Optional intent classification strategy
    """

    def __init__(
        self,
        records: Sequence[PractitionerRecord],
        now: datetime | None = None,
        strategy: IntentStrategy | None = None,
    ) -> None:
        self.records = records
        self._now = now
        self._strategy = strategy

    def now(self) -> datetime:
        return self._now or datetime.now(UTC)

    def ask(self, question: str, history: ChartHistory | None = None) -> QueryOutcome:
        """
        Answer a free-text question.

        Args:
            question: User's question
            history: Caller-owned chart history; the answer is recorded in it, and
                a bare chart-type follow-up ("make it a pie chart") redraws its latest chart

        Raises:
            QueryPlanValidationError: If no metric could be derived for the question
        """
        intent = analyze(question, self.records, self._strategy)
        chart = self._followup_chart(intent, history)
        if chart is None:
            plan = build_plan_from_intent(intent)
            chart = generate_chart_spec(plan, chart_type=intent.chart_type)
        result = assemble_chart(chart, self.records, self.now())
        if history is not None:
            history.record(question, result, timestamp=self.now())

        logger.info(
            "question_answered",
            category=intent.category,
            run_key=chart.plan.run_key,
            rows=len(result.data),
        )
        return QueryOutcome(
            plan=chart.plan,
            rows=result.data,
            insights=result.insights,
            suggestions=result.suggestions,
            intent=intent,
            chart=chart,
        )

    @staticmethod
    def _followup_chart(intent: QueryIntent, history: ChartHistory | None) -> ChartSpec | None:
        """Latest chart redrawn with a new chart type, when the question asks only for that."""
        latest = history.latest() if history is not None else None
        if latest is None:
            return None
        chart_type = requested_chart_type(intent.question)
        if chart_type is None or intent.group_by or intent.filters or not intent.entities.is_empty():
            return None
        logger.info("chart_followup", chart_type=chart_type, previous_question=latest.question)
        return generate_chart_spec(latest.spec.plan, chart_type=chart_type, title=latest.spec.title)

    def run_spec(self, raw: Any, history: ChartHistory | None = None) -> QueryOutcome:
        """
        Run an externally supplied chart/query spec (e.g. LLM output).

        Args:
            raw: Chart or query spec, typically parsed LLM JSON
            history: Caller-owned chart history the result is recorded in

        Raises:
            QueryPlanValidationError: If the spec has no usable metric
        """
        parsed = parse_external_spec(raw)
        chart = chart_spec_from_parsed(parsed)
        result = assemble_chart(chart, self.records, self.now())
        if history is not None:
            history.record(chart.description or chart.title, result, timestamp=self.now())

        logger.info(
            "spec_answered",
            run_key=chart.plan.run_key,
            fallbacks=sorted(parsed.fallbacks()),
            rows=len(result.data),
        )
        return QueryOutcome(
            plan=chart.plan,
            rows=result.data,
            insights=result.insights,
            suggestions=result.suggestions,
            parsed_spec=parsed,
            chart=chart,
        )
