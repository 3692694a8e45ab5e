from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from bulkops.domain.bulk.models import (
    BulkOptions,
    CancelResult,
    ImportResult,
    OperationHistoryPage,
    OperationRecord,
    OperationResult,
)


class BulkExecuteRequest(BaseModel):
    """Body of ``POST /bulk/execute``."""
    operation: str
    entity_type: str
    items: List[Dict[str, Any]] = Field(default_factory=list)
    options: BulkOptions = Field(default_factory=BulkOptions)


class EntityBulkRequest(BaseModel):
    """
    Body of ``POST /bulk/{entity_type}``.

    Either ``items`` or ``ids`` must be given; with ``ids`` every id receives
    the shared ``data`` payload (e.g. ``{"status": "archived"}``).
    """
    operation: str
    items: Optional[List[Dict[str, Any]]] = None
    ids: Optional[List[Any]] = None
    data: Optional[Dict[str, Any]] = None
    options: BulkOptions = Field(default_factory=BulkOptions)


class BulkExecuteResponse(BaseModel):
    success: bool
    result: OperationResult


class ImportResponse(BaseModel):
    success: bool
    result: ImportResult


class OperationStatusResponse(BaseModel):
    success: bool
    operation: OperationRecord


class OperationHistoryResponse(BaseModel):
    success: bool
    history: OperationHistoryPage


class CancelOperationResponse(BaseModel):
    success: bool
    result: CancelResult
