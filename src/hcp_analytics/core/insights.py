"""
Insight generation - short natural-language observations over a finished result set.

Pure functions of (plan, results). An empty result set yields exactly one
"no data" observation, so no arithmetic is ever attempted on it.
"""

from collections.abc import Sequence
from decimal import ROUND_HALF_UP, Decimal

import structlog

from hcp_analytics.core.query_engine_config import INSIGHT_RATIO_MAX, INSIGHT_RATIO_MIN
from hcp_analytics.core.query_executor import KOL_BUCKETS, ResultPoint
from hcp_analytics.core.query_plan import QueryPlan

logger = structlog.get_logger()

NO_DATA_INSIGHT = "No data matches the criteria"

# Follow-up questions keyed on the group dimension
FOLLOWUPS_BY_DIMENSION: dict[str, list[str]] = {
    "city": ["KOL details by city", "At-risk practitioners by city"],
    "specialty": ["Top 10 by specialty", "Loyalty by specialty"],
    "vingtile_bucket": ["Details of the top segment", "KOLs by segment"],
    "vingtile": ["Details of the top segment", "KOLs by segment"],
    "risk_tier": ["List of high-risk practitioners", "Priority actions"],
}
GENERIC_FOLLOWUPS = ["Breakdown by city", "Analysis by segment"]


def _whole_number(value: float) -> int:
    return int(Decimal(repr(float(value))).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def _display(value: int | float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def generate_insights(
    plan: QueryPlan,
    results: Sequence[ResultPoint],
    chart_type: str | None = None,
    value_suffix: str = "",
) -> list[str]:
    """
    Derive observations about the result rows, in order.

    1. The leading row and its primary metric value
    2. For pie charts, the leader's share of the total
    3. For the KOL split, each side's share of the total
    4. With more than two rows, the first/last ratio when it is meaningful
       (strictly between INSIGHT_RATIO_MIN and INSIGHT_RATIO_MAX)

    Args:
        plan: Plan that produced the results (primary metric = first metric)
        results: Result rows in output order
        chart_type: Chart type the rows are displayed with
        value_suffix: Unit appended to the leader's value (e.g. "K L")

    Returns:
        List of insight strings; exactly one when results is empty
    """
    if not results:
        return [NO_DATA_INSIGHT]

    primary = plan.primary_metric()
    if primary is None:
        return []
    metric = primary.name

    insights: list[str] = []
    leader = results[0]
    leader_value = leader.values.get(metric, 0)
    suffix = f" {value_suffix}" if value_suffix else ""
    insights.append(f"**{leader.name}** leads with {_display(leader_value)}{suffix}")

    total = sum(point.values.get(metric, 0) for point in results)

    if chart_type == "pie" and total > 0:
        share = _whole_number(leader_value / total * 100)
        insights.append(f"{leader.name} accounts for {share}% of the total")

    if plan.group_by == "is_kol" and total > 0:
        shares = {point.name: _whole_number(point.values.get(metric, 0) / total * 100) for point in results}
        kol_share = shares.get(KOL_BUCKETS[0], 0)
        other_share = shares.get(KOL_BUCKETS[1], 0)
        insights.append(f"KOLs represent {kol_share}% of {metric}, others {other_share}%")

    if len(results) > 2:
        last = results[-1]
        last_value = last.values.get(metric, 0)
        if last_value:
            ratio = _whole_number(leader_value / last_value)
            if INSIGHT_RATIO_MIN < ratio < INSIGHT_RATIO_MAX:
                insights.append(f"x{ratio} gap between {leader.name} and {last.name}")

    logger.debug("insights_generated", count=len(insights), result_count=len(results))
    return insights


def suggest_followups(plan: QueryPlan) -> list[str]:
    """Two follow-up questions for the plan's group dimension, generic ones otherwise."""
    return list(FOLLOWUPS_BY_DIMENSION.get(plan.group_by or "", GENERIC_FOLLOWUPS))
