"""
Cell cleanup shared by every file parser.
"""
from typing import Any, Dict

from bulkops.utils.serialization import is_absent


def normalize_cell(value: Any) -> Any:
    """Trim string cells; blank strings and NaN become ``None``."""
    if is_absent(value):
        return None
    if isinstance(value, str):
        stripped = value.strip()
        return stripped if stripped else None
    return value


def normalize_row(record: Dict[str, Any]) -> Dict[str, Any]:
    """Return a copy of ``record`` with stripped field names and normalized cells."""
    return {
        (key.strip() if isinstance(key, str) else key): normalize_cell(value)
        for key, value in record.items()
    }
