"""
Practitioner analytics query engine.

Answers free-text or structured questions about a practitioner dataset:
question -> QueryIntent -> QueryPlan -> ResultPoints + insights.

Modules:
- core: enrichment, intent analysis, plan building, execution, insights, charts
- datasets: loaders for practitioner databases

Applications call `hcp_analytics.core.logging_config.configure_logging()` once at
startup; library modules only obtain loggers and never configure handlers.

Example:
    >>> from hcp_analytics.core.logging_config import configure_logging
    >>> from hcp_analytics.core.query_service import QueryService
    >>> from hcp_analytics.datasets.practitioners import load_practitioners
    >>> configure_logging()
    >>> service = QueryService(load_practitioners("data/practitioners.json"))
    >>> service.ask("Top 10 prescribers by city").rows
"""

__version__ = "0.3.0"
