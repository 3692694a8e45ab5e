"""
File import endpoint.
"""
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool

from bulkops.api.dependencies import get_import_service, get_user_id, raise_http_error
from bulkops.api.schemas.shared import ImportResponse
from bulkops.core.config import settings
from bulkops.core.exceptions import BulkOperationError
from bulkops.domain.bulk.models import EntityType, ImportFormat, ImportOptions, ImportRequest
from bulkops.domain.imports.service import ImportService

router = APIRouter(prefix="/bulk", tags=["imports"])

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = settings.upload_max_file_size_mb * 1024 * 1024


def _ensure_within_size_limit(file_size: int, file_name: str) -> None:
    """Raise an HTTPException if a file exceeds the configured upload limit."""
    if file_size > MAX_UPLOAD_BYTES:
        raise HTTPException(
            status_code=413,
            detail=(
                f"{file_name} is too large. "
                f"Maximum allowed upload size is {settings.upload_max_file_size_mb}MB."
            ),
        )


def _parse_options(options_json: Optional[str]) -> ImportOptions:
    if not options_json:
        return ImportOptions()
    try:
        return ImportOptions(**json.loads(options_json))
    except (json.JSONDecodeError, TypeError, ValidationError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid import options: {e}")


@router.post("/import/{entity_type}", response_model=ImportResponse)
async def import_file_endpoint(
    entity_type: str,
    file: UploadFile = File(...),
    format: str = Form(...),
    options_json: Optional[str] = Form(None),
    service: ImportService = Depends(get_import_service),
    user_id: str = Depends(get_user_id),
):
    """
    Import customers, services or equipment from a CSV, spreadsheet or JSON file.

    Parameters:
    - file: The file to import
    - format: csv, spreadsheet (xlsx, xls, excel) or json
    - options_json: JSON object with chunk_size, continue_on_error,
      update_existing, matching_field, field_mapping and default_values
    """
    options = _parse_options(options_json)
    file_content = await file.read()
    file_name = file.filename or "upload"
    _ensure_within_size_limit(len(file_content), file_name)
    logger.info("Received import for %s: '%s' (%d bytes)", entity_type, file_name, len(file_content))

    try:
        request = ImportRequest(
            format=ImportFormat.parse(format),
            entity_type=EntityType.parse(entity_type),
            file_bytes=file_content,
            file_name=file_name,
            options=options,
        )
        # Parsing and chunk writes block; keep them off the event loop
        result = await run_in_threadpool(service.import_file, request, user_id=user_id)
    except BulkOperationError as e:
        raise_http_error(e)

    return ImportResponse(success=result.success, result=result)
