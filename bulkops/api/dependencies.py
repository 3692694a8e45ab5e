"""
Shared dependencies for the API routers.

Each request gets the record store, operation store, executor and import
service through FastAPI dependencies so tests can swap them with
``app.dependency_overrides``.
"""
import logging
from typing import NoReturn

from fastapi import Depends, Header, HTTPException

from bulkops.core.config import settings
from bulkops.core.exceptions import BulkOperationError
from bulkops.db.session import get_engine
from bulkops.db.store import RecordStore, SqlRecordStore
from bulkops.domain.bulk.executor import ChunkedWriteExecutor
from bulkops.domain.bulk.operations import OperationStore
from bulkops.domain.imports.service import ImportService

logger = logging.getLogger(__name__)


def get_record_store() -> RecordStore:
    return SqlRecordStore(get_engine(), max_write_group_size=settings.store_max_write_group_size)


def get_operation_store() -> OperationStore:
    return OperationStore(get_engine())


def get_executor(
    store: RecordStore = Depends(get_record_store),
    operations: OperationStore = Depends(get_operation_store),
) -> ChunkedWriteExecutor:
    return ChunkedWriteExecutor(store, operations)


def get_import_service(executor: ChunkedWriteExecutor = Depends(get_executor)) -> ImportService:
    return ImportService(executor)


def get_user_id(x_user_id: str = Header(default="system")) -> str:
    """Caller identity recorded on each operation (``X-User-Id`` header)."""
    return x_user_id.strip() or "system"


def raise_http_error(exc: BulkOperationError) -> NoReturn:
    """Translate an engine error into the HTTP response for it."""
    logger.warning("Bulk request rejected (%s): %s", exc.code, exc.message)
    raise HTTPException(
        status_code=exc.status_code,
        detail={"code": exc.code, "message": exc.message},
    ) from exc
