"""
Direct bulk mutation endpoints.
"""
import logging

from fastapi import APIRouter, Depends

from bulkops.api.dependencies import get_executor, get_user_id, raise_http_error
from bulkops.api.schemas.shared import BulkExecuteRequest, BulkExecuteResponse, EntityBulkRequest
from bulkops.core.exceptions import BulkOperationError, InvalidRequestError
from bulkops.domain.bulk.executor import ChunkedWriteExecutor, build_items_from_ids
from bulkops.domain.bulk.models import MutationRequest

router = APIRouter(prefix="/bulk", tags=["bulk"])

logger = logging.getLogger(__name__)


@router.post("/execute", response_model=BulkExecuteResponse)
def execute_bulk_endpoint(
    request: BulkExecuteRequest,
    executor: ChunkedWriteExecutor = Depends(get_executor),
    user_id: str = Depends(get_user_id),
):
    """
    Run a create, update, delete or status_change over a list of items.

    Row-level failures do not fail the request; they are reported in
    ``result.errors`` with the row index.
    """
    try:
        mutation = MutationRequest.build(
            request.operation, request.entity_type, request.items, request.options
        )
        result = executor.execute(mutation, user_id=user_id)
    except BulkOperationError as e:
        raise_http_error(e)

    return BulkExecuteResponse(success=result.success, result=result)


@router.post("/{entity_type}", response_model=BulkExecuteResponse)
def entity_bulk_endpoint(
    entity_type: str,
    request: EntityBulkRequest,
    executor: ChunkedWriteExecutor = Depends(get_executor),
    user_id: str = Depends(get_user_id),
):
    """Entity-scoped variant accepting either explicit items or ids plus shared data."""
    try:
        if request.items:
            items = request.items
        elif request.ids:
            items = build_items_from_ids(request.ids, request.data)
        else:
            raise InvalidRequestError("Either items or ids must be provided")

        mutation = MutationRequest.build(request.operation, entity_type, items, request.options)
        result = executor.execute(mutation, user_id=user_id)
    except BulkOperationError as e:
        raise_http_error(e)

    return BulkExecuteResponse(success=result.success, result=result)
