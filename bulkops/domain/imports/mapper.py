"""
Field mapping and default-value overlay applied to raw rows before validation.
"""
from typing import Any, Dict, List, Optional

from bulkops.utils.serialization import is_absent


def apply_field_mapping(record: Dict[str, Any], mapping: Optional[Dict[str, str]]) -> Dict[str, Any]:
    """Rename keys through ``mapping``; unmapped keys pass through unchanged."""
    if not mapping:
        return dict(record)

    mapped: Dict[str, Any] = {}
    for key, value in record.items():
        mapped[mapping.get(key) or key] = value
    return mapped


def apply_default_values(record: Dict[str, Any], default_values: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Overlay ``record`` on top of ``default_values``.

    Fields supplied by the row always win; a blank cell counts as not supplied,
    so the default fills it.
    """
    if not default_values:
        return dict(record)

    supplied = {key: value for key, value in record.items() if not is_absent(value)}
    return {**default_values, **supplied}


def map_record(
    record: Dict[str, Any],
    mapping: Optional[Dict[str, str]] = None,
    default_values: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """Produce the canonical record: mapping first, then defaults."""
    return apply_default_values(apply_field_mapping(record, mapping), default_values)


def map_records(
    records: List[Dict[str, Any]],
    mapping: Optional[Dict[str, str]] = None,
    default_values: Optional[Dict[str, Any]] = None,
) -> List[Dict[str, Any]]:
    return [map_record(record, mapping, default_values) for record in records]
