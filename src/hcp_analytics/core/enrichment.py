"""
Record enrichment - derived fields recomputed on every query.

Computes days since last contact, risk tier and publication count for a
PractitionerRecord. Pure and total: never raises for a well-formed record,
including one with no contact history.
"""

import math
from collections.abc import Iterable
from datetime import UTC, datetime
from enum import Enum

from hcp_analytics.core.query_engine_config import (
    NEVER_CONTACTED_SENTINEL_DAYS,
    RISK_HIGH_DAYS,
    RISK_HIGH_LOYALTY,
    RISK_MEDIUM_DAYS,
    RISK_MEDIUM_LOYALTY,
)
from hcp_analytics.core.records import EnrichedRecord, PractitionerRecord

SECONDS_PER_DAY = 86_400


class RiskTier(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


def _as_utc(value: datetime) -> datetime:
    # Naive timestamps are treated as UTC so naive and aware values can be compared
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def days_since(last_contact: datetime | None, now: datetime) -> int:
    """Whole days elapsed since last contact; the sentinel when never contacted, 0 for future dates."""
    if last_contact is None:
        return NEVER_CONTACTED_SENTINEL_DAYS
    elapsed = (_as_utc(now) - _as_utc(last_contact)).total_seconds()
    return max(0, math.floor(elapsed / SECONDS_PER_DAY))


def risk_tier(days_since_contact: int, loyalty_score: float) -> RiskTier:
    # high must be checked first: a record meeting both conditions is high
    if days_since_contact > RISK_HIGH_DAYS or loyalty_score < RISK_HIGH_LOYALTY:
        return RiskTier.HIGH
    if days_since_contact > RISK_MEDIUM_DAYS or loyalty_score < RISK_MEDIUM_LOYALTY:
        return RiskTier.MEDIUM
    return RiskTier.LOW


def publication_count(record: PractitionerRecord) -> int:
    return sum(1 for item in record.news if item.type == "publication")


def enrich(record: PractitionerRecord, now: datetime) -> EnrichedRecord:
    """
    Compute the derived fields for one record.

    Args:
        record: Source record (read-only)
        now: Reference timestamp; identical `now` gives identical output

    Returns:
        EnrichedRecord wrapping the source record
    """
    days = days_since(record.last_visit_date, now)
    return EnrichedRecord(
        record=record,
        days_since_contact=days,
        risk_tier=risk_tier(days, record.loyalty_score).value,
        publication_count=publication_count(record),
    )


def enrich_all(records: Iterable[PractitionerRecord], now: datetime) -> list[EnrichedRecord]:
    """Enrich every record, preserving input order."""
    return [enrich(record, now) for record in records]
