"""
Practitioner records - typed domain model for the dataset the query engine reads.

PractitionerRecord is owned by the external data store and is read-only here.
EnrichedRecord adds the derived fields (days since contact, risk tier,
publication count) that enrichment recomputes on every query.

The `from_dict` constructors accept the nested JSON shape produced by the data
generator (`address.city`, `metrics.volumeL`, `news[].type`, ...).
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any


def _parse_datetime(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp (accepts trailing 'Z'); None for empty values."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    text = str(value)
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text)


@dataclass(frozen=True)
class NewsItem:
    """News or publication attached to a practitioner."""

    id: str
    type: str  # "publication", "certification", "event", "award", "conference"
    title: str = ""
    date: datetime | None = None
    content: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> NewsItem:
        return cls(
            id=str(data.get("id", "")),
            type=str(data.get("type", "")),
            title=str(data.get("title", "")),
            date=_parse_datetime(data.get("date")),
            content=str(data.get("content", "")),
        )


@dataclass(frozen=True)
class VisitRecord:
    """Past visit to a practitioner."""

    id: str
    date: datetime | None
    type: str = "completed"
    products_discussed: tuple[str, ...] = ()
    notes: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> VisitRecord:
        return cls(
            id=str(data.get("id", "")),
            date=_parse_datetime(data.get("date")),
            type=str(data.get("type", "completed")),
            products_discussed=tuple(data.get("productsDiscussed") or ()),
            notes=str(data.get("notes") or ""),
        )


@dataclass(frozen=True)
class PractitionerNote:
    """Free-text note written by a sales rep."""

    id: str
    content: str
    date: datetime | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PractitionerNote:
        return cls(
            id=str(data.get("id", "")),
            content=str(data.get("content", "")),
            date=_parse_datetime(data.get("date")),
        )


@dataclass(frozen=True)
class PractitionerRecord:
    """
    One practitioner as stored by the data source.

    Attributes:
        id: Unique, stable identifier
        title: Honorific ("Dr", "Pr")
        first_name / last_name: Identity
        specialty: Medical specialty (e.g. "Pneumologue")
        is_kol: Key opinion leader flag
        city / postal_code: Practice location
        volume: Annual volume (litres per year)
        loyalty_score: 0-10
        vingtile: 1-20, 1 is the best-performing tier
        potential_growth: Potential growth percentage
        last_visit_date: Last contact, None if never contacted
        notes / news / visit_history: Nested collections
    """

    id: str
    first_name: str
    last_name: str
    title: str = "Dr"
    specialty: str = ""
    is_kol: bool = False
    city: str = ""
    postal_code: str = ""
    volume: float = 0.0
    loyalty_score: float = 0.0
    vingtile: int = 20
    potential_growth: float = 0.0
    last_visit_date: datetime | None = None
    notes: tuple[PractitionerNote, ...] = ()
    news: tuple[NewsItem, ...] = ()
    visit_history: tuple[VisitRecord, ...] = ()

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def display_name(self) -> str:
        """Short label used for individual result rows ("Dr Martin")."""
        return f"{self.title} {self.last_name}".strip()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PractitionerRecord:
        """
        Build a record from the generator's nested JSON shape.

        Flat keys (`city`, `volumeL`, `isKOL`, ...) are accepted as well. In the
        flat layout `address` is the street line, so city and postal code come
        from the top level.
        """
        address = data.get("address")
        if not isinstance(address, dict):
            address = {}
        metrics = data.get("metrics") or {}

        def pick(key: str, default: Any) -> Any:
            if key in metrics:
                return metrics[key]
            return data.get(key, default)

        return cls(
            id=str(data["id"]),
            first_name=str(data.get("firstName", "")),
            last_name=str(data.get("lastName", "")),
            title=str(data.get("title", "Dr")),
            specialty=str(data.get("specialty", "")),
            is_kol=bool(pick("isKOL", False)),
            city=str(address.get("city", data.get("city", ""))),
            postal_code=str(address.get("postalCode", data.get("postalCode", ""))),
            volume=float(pick("volumeL", 0.0)),
            loyalty_score=float(pick("loyaltyScore", 0.0)),
            vingtile=int(pick("vingtile", 20)),
            potential_growth=float(pick("potentialGrowth", 0.0)),
            last_visit_date=_parse_datetime(data.get("lastVisitDate")),
            notes=tuple(PractitionerNote.from_dict(n) for n in data.get("notes") or ()),
            news=tuple(NewsItem.from_dict(n) for n in data.get("news") or ()),
            visit_history=tuple(VisitRecord.from_dict(v) for v in data.get("visitHistory") or ()),
        )


@dataclass(frozen=True)
class EnrichedRecord:
    """
    PractitionerRecord plus derived fields, recomputed on every query.

    Never persisted, so derived values cannot go stale relative to the source.
    """

    record: PractitionerRecord
    days_since_contact: int
    risk_tier: str  # "low" | "medium" | "high"
    publication_count: int

    def to_row(self) -> dict[str, Any]:
        """Flatten to the scalar fields filters, groupings and metrics address."""
        r = self.record
        return {
            "id": r.id,
            "name": r.display_name,
            "title": r.title,
            "first_name": r.first_name,
            "last_name": r.last_name,
            "full_name": r.full_name,
            "specialty": r.specialty,
            "is_kol": r.is_kol,
            "city": r.city,
            "postal_code": r.postal_code,
            "volume": float(r.volume),
            "loyalty_score": float(r.loyalty_score),
            "vingtile": int(r.vingtile),
            "potential_growth": float(r.potential_growth),
            "days_since_contact": self.days_since_contact,
            "risk_tier": self.risk_tier,
            "publication_count": self.publication_count,
            "has_publications": self.publication_count > 0,
            "news_count": len(r.news),
            "note_count": len(r.notes),
            "visit_count": len(r.visit_history),
        }
