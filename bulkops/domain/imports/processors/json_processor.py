import json
import logging
from typing import Any, Dict, List

from bulkops.core.exceptions import MalformedInputError

from .cells import normalize_row

logger = logging.getLogger(__name__)


def process_json(file_content: bytes) -> List[Dict[str, Any]]:
    """
    Process JSON holding either a top-level array or ``{"data": [...]}``.

    Rows get the same cleanup as CSV cells: keys and string values are
    trimmed and blank strings become ``None``.
    """
    try:
        data = json.loads(file_content.decode("utf-8-sig"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        logger.warning("Could not parse JSON upload: %s", e)
        raise MalformedInputError(f"Could not parse JSON file: {e}") from e

    if isinstance(data, list):
        rows = data
    elif isinstance(data, dict) and isinstance(data.get("data"), list):
        rows = data["data"]
    else:
        raise MalformedInputError(
            "Invalid JSON structure. Expected array or object with data property."
        )

    for position, row in enumerate(rows, start=1):
        if not isinstance(row, dict):
            raise MalformedInputError(f"JSON row {position} is not an object")

    logger.info(f"Processed JSON with {len(rows)} rows")
    return [normalize_row(row) for row in rows]
