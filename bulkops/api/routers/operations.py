"""
Endpoints for tracking, listing and cancelling bulk operations.
"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from bulkops.api.dependencies import get_operation_store, raise_http_error
from bulkops.api.schemas.shared import (
    CancelOperationResponse,
    OperationHistoryResponse,
    OperationStatusResponse,
)
from bulkops.core.config import settings
from bulkops.core.exceptions import BulkOperationError
from bulkops.domain.bulk.models import HistoryFilters
from bulkops.domain.bulk.operations import OperationStore

router = APIRouter(prefix="/bulk/operations", tags=["bulk-operations"])


@router.get("/history", response_model=OperationHistoryResponse)
def operation_history_endpoint(
    entity_type: Optional[str] = None,
    operation: Optional[str] = None,
    status: Optional[str] = None,
    user_id: Optional[str] = None,
    page: int = 1,
    limit: int = settings.history_default_page_size,
    operations: OperationStore = Depends(get_operation_store),
):
    filters = HistoryFilters(
        entity_type=entity_type,
        operation_kind=operation,
        status=status,
        user_id=user_id,
    )
    try:
        history = operations.list_operations(filters, page=page, limit=limit)
    except BulkOperationError as e:
        raise_http_error(e)
    return OperationHistoryResponse(success=True, history=history)


@router.get("/{operation_id}/status", response_model=OperationStatusResponse)
def operation_status_endpoint(
    operation_id: str,
    operations: OperationStore = Depends(get_operation_store),
):
    record = operations.get_operation(operation_id)
    if not record:
        raise HTTPException(status_code=404, detail="Operation not found")
    return OperationStatusResponse(success=True, operation=record)


@router.delete("/{operation_id}", response_model=CancelOperationResponse)
def cancel_operation_endpoint(
    operation_id: str,
    operations: OperationStore = Depends(get_operation_store),
):
    """Request cancellation; a running job stops before its next chunk."""
    result = operations.cancel_operation(operation_id)
    if not result.cancelled and result.message == "Operation not found":
        raise HTTPException(status_code=404, detail=result.message)
    return CancelOperationResponse(success=result.cancelled, result=result)
