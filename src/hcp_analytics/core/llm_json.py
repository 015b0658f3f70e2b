"""
Centralized LLM JSON parsing and validation module.

Single choke point for parsing chart/query specs written by an LLM, so the
brittle parsing logic is not duplicated across callers.

Key functions:
- extract_json_block: Pull the JSON payload out of a markdown answer
- parse_json_response: Parse raw LLM text into Python dict/list
- validate_shape: Validate parsed payload against known schemas

Design principles:
- Graceful degradation (return None on failures, never crash)
- Standardized error logging
- Shape checks only; value coercion belongs to the plan builder
"""

import json
import re
from dataclasses import dataclass
from typing import Any, cast

import structlog

logger = structlog.get_logger()

_FENCED_JSON = re.compile(r"```json\s*([\s\S]*?)\s*```")


@dataclass
class ValidationResult:
    """Result of schema validation."""

    valid: bool
    errors: list[str]


def extract_json_block(raw: str) -> str:
    """Return the first ```json fenced block, or the text itself when there is none."""
    match = _FENCED_JSON.search(raw)
    return match.group(1) if match else raw.strip()


def parse_json_response(raw: str | None) -> dict[str, Any] | list[Any] | None:
    """
    Parse raw LLM response into Python dict or list.

    A ```json fenced block is extracted first when present.

    Args:
        raw: Raw text from LLM response (may be None, empty, or malformed)

    Returns:
        Parsed dict/list if valid JSON, None otherwise

    Examples:
        >>> parse_json_response('{"chartType": "bar"}')
        {'chartType': 'bar'}
        >>> parse_json_response('Here you go: ```json\\n[1, 2]\\n```')
        [1, 2]
        >>> parse_json_response('not json')
        None
    """
    if raw is None or raw == "":
        logger.debug("llm_json_parse_empty", raw=raw)
        return None

    payload = extract_json_block(raw)
    try:
        parsed = json.loads(payload)
    except json.JSONDecodeError as e:
        logger.warning(
            "llm_json_parse_failed",
            error=str(e),
            raw_length=len(raw),
            raw_preview=raw[:100] if len(raw) > 100 else raw,
        )
        return None

    if not isinstance(parsed, (dict, list)):
        logger.warning("llm_json_parse_not_container", parsed_type=type(parsed).__name__)
        return None

    logger.debug("llm_json_parse_success", length=len(payload))
    return cast(dict[str, Any] | list[Any], parsed)


# Schema definitions
# Each schema defines required fields and their expected types
_SCHEMAS: dict[str, dict[str, Any]] = {
    "chart_spec": {
        "required_fields": ["chartType", "query"],
        "field_types": {
            "chartType": str,
            "title": str,
            "description": str,
            "query": dict,
            "formatting": dict,
            "insights": list,
            "suggestions": list,
        },
        "nested_required": {"query": ["metrics"]},
    },
    "query": {
        "required_fields": ["metrics"],
        "field_types": {
            "source": str,
            "filters": (list, dict),
            "groupBy": (str, type(None)),
            "metrics": (list, dict, str),
            "sortBy": (str, type(None)),
            "sortOrder": (str, type(None)),
            "limit": (int, float, str, type(None)),
        },
    },
}


def validate_shape(payload: dict[str, Any] | list[Any] | None, schema_name: str) -> ValidationResult:
    """
    Validate parsed JSON payload against expected schema.

    Args:
        payload: Parsed JSON (dict or list)
        schema_name: Name of schema to validate against ("chart_spec", "query")

    Returns:
        ValidationResult with valid flag and error list

    Examples:
        >>> validate_shape({"chartType": "bar", "query": {"metrics": []}}, "chart_spec").valid
        True
        >>> validate_shape({"chartType": "bar"}, "chart_spec").valid
        False
    """
    if payload is None:
        return ValidationResult(valid=False, errors=["Payload is None"])

    if schema_name not in _SCHEMAS:
        return ValidationResult(
            valid=False,
            errors=[f"Unknown schema: {schema_name}. Available schemas: {list(_SCHEMAS.keys())}"],
        )

    if not isinstance(payload, dict):
        return ValidationResult(
            valid=False, errors=[f"Expected dict for schema '{schema_name}', got {type(payload).__name__}"]
        )

    schema = _SCHEMAS[schema_name]
    errors: list[str] = []

    for field in schema.get("required_fields", []):
        if field not in payload or payload[field] is None:
            errors.append(f"Missing required field: {field}")

    for field, expected_type in schema.get("field_types", {}).items():
        if field in payload and payload[field] is not None and not isinstance(payload[field], expected_type):
            errors.append(
                f"Field '{field}' has wrong type: expected {expected_type}, got {type(payload[field]).__name__}"
            )

    for parent, nested_fields in schema.get("nested_required", {}).items():
        nested = payload.get(parent)
        if not isinstance(nested, dict):
            continue
        for field in nested_fields:
            if field not in nested or nested[field] is None:
                errors.append(f"Missing required field: {parent}.{field}")

    if errors:
        logger.debug("llm_json_shape_invalid", schema=schema_name, errors=errors)
    return ValidationResult(valid=not errors, errors=errors)
