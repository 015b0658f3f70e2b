import json
import logging
from pathlib import Path
from typing import Any

from hcp_analytics.core.records import PractitionerRecord

logger = logging.getLogger(__name__)


def _practitioner_entries(payload: Any, path: Path) -> list[dict[str, Any]]:
    """Accept {"practitioners": [...]} or a bare list."""
    if isinstance(payload, dict) and isinstance(payload.get("practitioners"), list):
        return payload["practitioners"]
    if isinstance(payload, list):
        return payload
    raise ValueError(f"Unsupported practitioner database layout in {path}: expected a list or a 'practitioners' key")


def load_practitioners(path: Path | str, limit: int | None = None) -> list[PractitionerRecord]:
    """
    Load practitioner records from the generated JSON database.

    The engine never loads files itself; callers load once and pass the
    records to every query.

    Args:
        path: JSON file ({"practitioners": [...]} or a bare list)
        limit: Optional maximum number of records to load

    Returns:
        Records in file order

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file is not valid JSON, has an unexpected layout,
            or contains a record without an id
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Practitioner database not found: {path}")

    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in {path}: {e}") from e

    entries = _practitioner_entries(payload, path)
    if limit is not None:
        entries = entries[:limit]

    records = []
    seen_ids: set[str] = set()
    for index, entry in enumerate(entries):
        if not isinstance(entry, dict) or "id" not in entry:
            raise ValueError(f"Practitioner entry {index} in {path} has no id")
        try:
            record = PractitionerRecord.from_dict(entry)
        except (AttributeError, TypeError, ValueError) as e:
            raise ValueError(f"Invalid practitioner entry {index} ({entry.get('id')}) in {path}: {e}") from e
        if record.id in seen_ids:
            raise ValueError(f"Duplicate practitioner id {record.id} in {path}")
        seen_ids.add(record.id)
        records.append(record)

    logger.info(f"Loaded {len(records)} practitioners from {path}")
    return records
