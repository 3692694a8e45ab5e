"""
File parsers turning an uploaded payload into ordered row dictionaries.
"""
from typing import Any, Dict, List

from bulkops.domain.bulk.models import ImportFormat

from .csv_processor import process_csv, process_spreadsheet
from .json_processor import process_json


def parse_file(file_content: bytes, file_format: Any) -> List[Dict[str, Any]]:
    """
    Parse ``file_content`` according to ``file_format``.

    Rows come back in file order, one per data row. Raises
    ``UnsupportedFormatError`` for unknown formats and ``MalformedInputError``
    when the payload cannot be read.
    """
    import_format = ImportFormat.parse(file_format)

    if import_format is ImportFormat.CSV:
        return process_csv(file_content)
    if import_format is ImportFormat.SPREADSHEET:
        return process_spreadsheet(file_content)
    return process_json(file_content)
