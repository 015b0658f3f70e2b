"""
Pytest configuration and fixtures for practitioner query engine tests.
"""

import json
from datetime import UTC, datetime, timedelta

import pytest

from hcp_analytics.core.records import NewsItem, PractitionerNote, PractitionerRecord

# Fixed reference time so enrichment is deterministic
NOW = datetime(2025, 1, 15, 12, 0, tzinfo=UTC)


@pytest.fixture(scope="session")
def now():
    """Return the fixed reference timestamp."""
    return NOW


@pytest.fixture
def make_record():
    """Factory for PractitionerRecord with sensible defaults."""

    def _make(record_id: str = "p1", **overrides) -> PractitionerRecord:
        values = {
            "id": record_id,
            "first_name": "Jean",
            "last_name": "Martin",
            "specialty": "Pneumologue",
            "city": "Lyon",
            "volume": 100_000.0,
            "loyalty_score": 8.0,
            "vingtile": 5,
            "last_visit_date": NOW - timedelta(days=10),
        }
        values.update(overrides)
        return PractitionerRecord(**values)

    return _make


@pytest.fixture
def lyon_grenoble_records():
    """
    Three practitioners across two cities.

    A: Lyon, 500 000 L, KOL, visited 10 days ago (low risk)
    B: Lyon, 300 000 L, visited 45 days ago (medium risk)
    C: Grenoble, 100 000 L, never visited (high risk)
    """
    return [
        PractitionerRecord(
            id="p1",
            first_name="Alice",
            last_name="Martin",
            specialty="Pneumologue",
            is_kol=True,
            city="Lyon",
            volume=500_000.0,
            loyalty_score=8.0,
            vingtile=1,
            last_visit_date=NOW - timedelta(days=10),
            news=(
                NewsItem(id="n1", type="publication", title="COPD outcomes"),
                NewsItem(id="n2", type="conference", title="ERS congress"),
            ),
            notes=(PractitionerNote(id="note1", content="Interested in telemonitoring"),),
        ),
        PractitionerRecord(
            id="p2",
            first_name="Bruno",
            last_name="Durand",
            specialty="Médecin généraliste",
            city="Lyon",
            volume=300_000.0,
            loyalty_score=6.0,
            vingtile=4,
            last_visit_date=NOW - timedelta(days=45),
        ),
        PractitionerRecord(
            id="p3",
            first_name="Claire",
            last_name="Petit",
            specialty="Pneumologue",
            city="Grenoble",
            volume=100_000.0,
            loyalty_score=9.0,
            vingtile=12,
            last_visit_date=None,
        ),
    ]


@pytest.fixture
def generated_records():
    """
    Forty practitioners spread over four cities.

    Every fifth record is a KOL, every seventh was never visited,
    volumes are distinct so volume sorts have no ties.
    """
    cities = ["Lyon", "Grenoble", "Annecy", "Valence"]
    specialties = ["Pneumologue", "Médecin généraliste"]
    records = []
    for i in range(40):
        records.append(
            PractitionerRecord(
                id=f"gen-{i:03d}",
                first_name=f"Prenom{i}",
                last_name=f"Nom{i}",
                specialty=specialties[i % 2],
                is_kol=i % 5 == 0,
                city=cities[i % 4],
                volume=float((i + 1) * 10_000),
                loyalty_score=float(i % 10),
                vingtile=i % 20 + 1,
                last_visit_date=None if i % 7 == 0 else NOW - timedelta(days=i * 3),
            )
        )
    return records


@pytest.fixture
def practitioner_payload():
    """Raw generator-shaped JSON payload for two practitioners."""
    return {
        "practitioners": [
            {
                "id": "pr-001",
                "title": "Dr",
                "firstName": "Sophie",
                "lastName": "Bernard",
                "specialty": "Pneumologue",
                "address": {"street": "1 rue de la République", "city": "Lyon", "postalCode": "69002"},
                "metrics": {
                    "volumeL": 420000,
                    "loyaltyScore": 7.5,
                    "vingtile": 2,
                    "isKOL": True,
                    "potentialGrowth": 12.5,
                },
                "lastVisitDate": "2024-12-20T09:30:00Z",
                "notes": [{"id": "note-1", "content": "Asked about VitalAire", "date": "2024-12-20T10:00:00Z"}],
                "news": [
                    {"id": "news-1", "type": "publication", "title": "Home oxygen study", "date": "2024-06-01"},
                    {"id": "news-2", "type": "award", "title": "Regional award", "date": "2024-09-01"},
                ],
                "visitHistory": [
                    {
                        "id": "visit-1",
                        "date": "2024-12-20T09:30:00Z",
                        "type": "completed",
                        "productsDiscussed": ["VitalAire Confort+"],
                    }
                ],
            },
            {
                "id": "pr-002",
                "firstName": "Marc",
                "lastName": "Roux",
                "specialty": "Médecin généraliste",
                "address": {"city": "Grenoble", "postalCode": "38000"},
                "metrics": {"volumeL": 35000, "loyaltyScore": 4.0, "vingtile": 15, "isKOL": False},
            },
        ]
    }


@pytest.fixture
def practitioner_db_file(tmp_path, practitioner_payload):
    """Write the practitioner payload to a temporary JSON file."""
    path = tmp_path / "practitioners.json"
    path.write_text(json.dumps(practitioner_payload), encoding="utf-8")
    return path
