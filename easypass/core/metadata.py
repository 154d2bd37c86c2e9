"""
Payment metadata normalization.

Stored metadata is a flat map of string keys to scalar values
(str, int, float, bool or None). Anything else is serialized to a JSON
string before it reaches the database.
"""
import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Mapping, Optional, Union

MetadataValue = Union[str, int, float, bool, None]


def _to_json_string(value: Any) -> str:
    return json.dumps(value, default=str, sort_keys=True, separators=(",", ":"))


def normalize_value(value: Any) -> MetadataValue:
    """
    Coerce a single value into the scalar union.

    Args:
        value: Arbitrary value from a provider payload or internal code

    Returns:
        MetadataValue: The value itself when scalar, else its string form
    """
    if value is None or isinstance(value, (str, bool, int, float)):
        return value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return _to_json_string(value)


def normalize_metadata(
    metadata: Optional[Mapping[Any, Any]], drop_structured: bool = False
) -> Dict[str, MetadataValue]:
    """
    Normalize a metadata mapping for storage.

    Args:
        metadata: Raw mapping (may be None)
        drop_structured: Skip nested dicts/lists instead of serializing them

    Returns:
        Dict[str, MetadataValue]: Flat, storage-safe metadata
    """
    if not metadata:
        return {}

    normalized: Dict[str, MetadataValue] = {}
    for key, value in metadata.items():
        if drop_structured and isinstance(value, (dict, list, tuple, set)):
            continue
        normalized[str(key)] = normalize_value(value)
    return normalized
