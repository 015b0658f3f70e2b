"""
ChartHistory - caller-owned ring buffer of recent chart results.

Used for conversational follow-ups such as "make it a pie chart", which redraw
the latest chart. The engine never holds history itself: callers create a
ChartHistory, pass it where follow-ups need it, and decide its lifetime.
"""

import re
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from hcp_analytics.core.chart_spec import ChartResult, ChartSpec
from hcp_analytics.core.intent_analyzer import normalize_text
from hcp_analytics.core.query_engine_config import CHART_HISTORY_SIZE
from hcp_analytics.core.query_executor import ResultPoint

# Chart-type words in a follow-up such as "make it a pie chart" or "en camembert"
CHART_TYPE_WORDS = {
    "pie": "pie",
    "camembert": "pie",
    "bar": "bar",
    "bars": "bar",
    "barres": "bar",
    "histogramme": "bar",
    "line": "line",
    "courbe": "line",
}


def requested_chart_type(question: str) -> str | None:
    """Chart type a follow-up question asks for, None if it names none."""
    text = normalize_text(question or "")
    for word, chart_type in CHART_TYPE_WORDS.items():
        if re.search(rf"\b{word}\b", text):
            return chart_type
    return None


@dataclass
class ChartHistoryEntry:
    """One remembered chart."""

    question: str
    spec: ChartSpec
    data: list[ResultPoint]
    insights: list[str]
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "question": self.question,
            "chart_type": self.spec.chart_type,
            "title": self.spec.title,
            "query": self.spec.plan.to_dict(),
            "data": [point.to_dict() for point in self.data],
            "insights": list(self.insights),
            "timestamp": self.timestamp.isoformat(),
        }


class ChartHistory:
    """
    Bounded history of chart results, most recent first.

    Oldest entries are evicted once max_size is reached.
    """

    def __init__(self, max_size: int = CHART_HISTORY_SIZE) -> None:
        """
        Initialize chart history.

        Args:
            max_size: Maximum number of entries kept (default: CHART_HISTORY_SIZE)
        """
        if max_size < 1:
            raise ValueError(f"max_size must be >= 1, got {max_size}")
        self._max_size = max_size
        # Most recent entry at the left
        self._entries: deque[ChartHistoryEntry] = deque(maxlen=max_size)

    @property
    def max_size(self) -> int:
        return self._max_size

    def record(self, question: str, result: ChartResult, timestamp: datetime | None = None) -> ChartHistoryEntry:
        """Remember a chart result; evicts the oldest entry when full."""
        entry = ChartHistoryEntry(
            question=question,
            spec=result.spec,
            data=list(result.data),
            insights=list(result.insights),
            timestamp=timestamp or datetime.now(),
        )
        self._entries.appendleft(entry)
        return entry

    def latest(self) -> ChartHistoryEntry | None:
        return self._entries[0] if self._entries else None

    def entries(self) -> list[ChartHistoryEntry]:
        """Entries, most recent first."""
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def serialize(self) -> list[dict[str, Any]]:
        """Serializable summary, e.g. for an LLM context window."""
        return [entry.to_dict() for entry in self._entries]
