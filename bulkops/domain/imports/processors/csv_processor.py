import io
import logging
from typing import Any, Dict, List

import pandas as pd

from bulkops.core.exceptions import MalformedInputError

from .cells import normalize_cell

logger = logging.getLogger(__name__)


def _records_from_frame(df: pd.DataFrame) -> List[Dict[str, Any]]:
    """
    Convert a parsed frame into row dictionaries.

    Header names are whitespace-stripped, string cells are trimmed, and blank
    or NaN cells become ``None`` so later stages can treat them as absent.
    """
    df.columns = [str(column).strip() for column in df.columns]
    records = df.to_dict("records")

    for record in records:
        for key, value in record.items():
            cell = normalize_cell(value)
            if cell is not None and not isinstance(cell, str) and pd.isna(cell):
                # pandas NaT and friends
                cell = None
            record[key] = cell

    return records


def process_csv(file_content: bytes) -> List[Dict[str, Any]]:
    """
    Process a CSV file whose first row holds the field names.

    Every cell is read as text; type coercion is left to the validators so
    values such as phone numbers or zero-padded codes survive untouched.
    """
    try:
        df = pd.read_csv(
            io.BytesIO(file_content),
            dtype=str,
            keep_default_na=False,
            encoding="utf-8-sig",
        )
    except pd.errors.EmptyDataError:
        logger.warning("CSV upload is empty")
        raise MalformedInputError("CSV file is empty") from None
    except (pd.errors.ParserError, UnicodeDecodeError) as e:
        logger.warning("Could not parse CSV upload: %s", e)
        raise MalformedInputError(f"Could not parse CSV file: {e}") from e

    records = _records_from_frame(df)
    logger.info(f"Processed CSV with header: {len(records)} rows, columns: {list(df.columns)}")
    return records


def _open_workbook(file_content: bytes) -> pd.ExcelFile:
    try:
        return pd.ExcelFile(io.BytesIO(file_content), engine="openpyxl")
    except Exception:
        # Fallback to pandas engine detection (e.g. legacy .xls via xlrd)
        try:
            return pd.ExcelFile(io.BytesIO(file_content))
        except Exception as e:
            logger.warning("Could not read spreadsheet upload: %s", e)
            raise MalformedInputError(f"Could not read spreadsheet file: {e}") from e


def process_spreadsheet(file_content: bytes) -> List[Dict[str, Any]]:
    """Process the first sheet of a workbook and return one dictionary per data row."""
    workbook = _open_workbook(file_content)
    try:
        if not workbook.sheet_names:
            raise MalformedInputError("No worksheet found in spreadsheet file")

        sheet_name = workbook.sheet_names[0]
        df = workbook.parse(sheet_name, dtype=object)
    finally:
        workbook.close()

    df = df.dropna(how="all")
    records = _records_from_frame(df)
    logger.info(
        f"Processed spreadsheet sheet '{sheet_name}': {len(records)} rows, columns: {list(df.columns)}"
    )
    return records
