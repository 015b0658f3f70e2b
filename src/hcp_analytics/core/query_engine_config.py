"""Query Engine Configuration Constants.

Single source of truth for enrichment thresholds, insight bounds and plan defaults.
These are domain config, not code - adjust config/query_engine.yaml without code changes.
"""

from hcp_analytics.core.config_loader import load_query_engine_config

_config = load_query_engine_config()

# Enrichment: "never contacted" stand-in, far beyond every recency threshold
NEVER_CONTACTED_SENTINEL_DAYS: int = _config["never_contacted_sentinel_days"]

# Risk tier rule (high is evaluated before medium)
RISK_HIGH_DAYS: int = _config["risk_high_days"]
RISK_HIGH_LOYALTY: float = _config["risk_high_loyalty"]
RISK_MEDIUM_DAYS: int = _config["risk_medium_days"]
RISK_MEDIUM_LOYALTY: float = _config["risk_medium_loyalty"]

# First/last ratio insight bounds (exclusive)
INSIGHT_RATIO_MIN: int = _config["insight_ratio_min"]
INSIGHT_RATIO_MAX: int = _config["insight_ratio_max"]

CHART_HISTORY_SIZE: int = _config["chart_history_size"]

# None means no implicit limit
DEFAULT_RESULT_LIMIT: int | None = _config["default_result_limit"] or None

# Fallbacks used by the plan builder for unrecognized values
DEFAULT_CHART_TYPE: str = _config["default_chart_type"]
DEFAULT_AGGREGATION: str = _config["default_aggregation"]

MAX_KEYWORDS: int = _config["max_keywords"]
