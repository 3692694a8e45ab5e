"""
File import pipeline: parse -> map -> validate -> deduplicate -> chunked write.
"""
import logging
from typing import List, Optional

from bulkops.core.exceptions import MalformedInputError, UnsupportedEntityTypeError
from bulkops.domain.bulk.executor import ChunkedWriteExecutor
from bulkops.domain.bulk.models import (
    IMPORTABLE_ENTITY_TYPES,
    Disposition,
    DuplicateEntry,
    ImportRequest,
    ImportResult,
    OperationKind,
    RowOutcome,
)
from bulkops.domain.imports.mapper import map_records
from bulkops.domain.imports.processors import parse_file

logger = logging.getLogger(__name__)


def _collect_duplicates(outcomes: List[RowOutcome]) -> List[DuplicateEntry]:
    duplicates: List[DuplicateEntry] = []
    for outcome in outcomes:
        if outcome.existing_id is None:
            continue
        if outcome.disposition is Disposition.SKIPPED_DUPLICATE:
            duplicates.append(DuplicateEntry(row=outcome.index, existing_id=outcome.existing_id, action="skipped"))
        elif outcome.disposition is Disposition.UPDATED_EXISTING:
            duplicates.append(DuplicateEntry(row=outcome.index, existing_id=outcome.existing_id, action="updated"))
    return duplicates


class ImportService:
    def __init__(self, executor: ChunkedWriteExecutor):
        self.executor = executor

    def import_file(self, request: ImportRequest, user_id: Optional[str] = None) -> ImportResult:
        if request.entity_type not in IMPORTABLE_ENTITY_TYPES:
            valid = ", ".join(entity.value for entity in IMPORTABLE_ENTITY_TYPES)
            raise UnsupportedEntityTypeError(
                f"Import is not supported for '{request.entity_type.value}'. Must be one of: {valid}"
            )

        rows = parse_file(request.file_bytes, request.format)
        logger.info(
            "Parsed %d rows from %s upload%s",
            len(rows),
            request.format.value,
            f" '{request.file_name}'" if request.file_name else "",
        )
        if not rows:
            raise MalformedInputError("No data found in file")

        options = request.options
        records = map_records(rows, options.field_mapping, options.default_values)

        result = self.executor.run_job(
            operation=OperationKind.IMPORT,
            entity_type=request.entity_type,
            items=records,
            options=options.as_bulk_options(),
            user_id=user_id,
            id_prefix="import",
            extra_options={
                "format": request.format.value,
                "file_name": request.file_name,
                "field_mapping": options.field_mapping,
                "default_values": options.default_values,
            },
        )

        return ImportResult(
            **result.model_dump(exclude={"outcomes"}),
            outcomes=result.outcomes,
            duplicates=_collect_duplicates(result.outcomes),
        )
