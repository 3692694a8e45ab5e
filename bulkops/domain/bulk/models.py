"""
Data model for bulk mutation and import jobs.

Requests arrive as loosely typed string-keyed rows; everything the engine
reports back (per-row outcomes, error entries, persisted operation records)
is a pydantic model so the API layer can return it directly.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from bulkops.core.config import settings
from bulkops.core.exceptions import (
    UnsupportedEntityTypeError,
    UnsupportedFormatError,
    UnsupportedOperationError,
)


class OperationKind(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    STATUS_CHANGE = "status_change"
    IMPORT = "import"  # Recorded for file imports; not accepted on the direct path

    @classmethod
    def parse(cls, value: Any) -> "OperationKind":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = ", ".join(kind.value for kind in DIRECT_OPERATION_KINDS)
            raise UnsupportedOperationError(
                f"Unsupported operation '{value}'. Must be one of: {valid}"
            ) from None


DIRECT_OPERATION_KINDS = (
    OperationKind.CREATE,
    OperationKind.UPDATE,
    OperationKind.DELETE,
    OperationKind.STATUS_CHANGE,
)


class EntityType(str, Enum):
    CUSTOMERS = "customers"
    BOOKINGS = "bookings"
    SERVICES = "services"
    EQUIPMENT = "equipment"
    USERS = "users"

    @classmethod
    def parse(cls, value: Any) -> "EntityType":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = ", ".join(entity.value for entity in cls)
            raise UnsupportedEntityTypeError(
                f"Unsupported entity type '{value}'. Must be one of: {valid}"
            ) from None

    @property
    def collection(self) -> str:
        return self.value


# Field used to match incoming rows against existing documents.
DEFAULT_MATCHING_FIELDS: Dict[EntityType, str] = {
    EntityType.CUSTOMERS: "email",
    EntityType.SERVICES: "name",
    EntityType.EQUIPMENT: "name",
    EntityType.USERS: "email",
}

IMPORTABLE_ENTITY_TYPES = (EntityType.CUSTOMERS, EntityType.SERVICES, EntityType.EQUIPMENT)


class ImportFormat(str, Enum):
    CSV = "csv"
    SPREADSHEET = "spreadsheet"
    JSON = "json"

    @classmethod
    def parse(cls, value: Any) -> "ImportFormat":
        if isinstance(value, cls):
            return value
        normalized = str(value or "").strip().lower()
        if normalized in _FORMAT_ALIASES:
            return _FORMAT_ALIASES[normalized]
        raise UnsupportedFormatError(
            f"Unsupported import format '{value}'. Must be one of: csv, spreadsheet, json"
        )


_FORMAT_ALIASES = {
    "csv": ImportFormat.CSV,
    "spreadsheet": ImportFormat.SPREADSHEET,
    "xlsx": ImportFormat.SPREADSHEET,
    "xls": ImportFormat.SPREADSHEET,
    "excel": ImportFormat.SPREADSHEET,
    "json": ImportFormat.JSON,
}


class OperationStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class Disposition(str, Enum):
    CREATED_NEW = "created_new"
    UPDATED_EXISTING = "updated_existing"
    DELETED = "deleted"
    SKIPPED_DUPLICATE = "skipped_duplicate"
    VALIDATION_FAILED = "validation_failed"
    WRITE_FAILED = "write_failed"


class BulkOptions(BaseModel):
    """Options shared by direct mutations and imports."""
    chunk_size: int = Field(default_factory=lambda: settings.bulk_default_chunk_size, gt=0)
    continue_on_error: bool = False
    update_existing: bool = False
    matching_field: Optional[str] = None
    skip_validation: bool = False  # Direct-mutation path only


class ImportOptions(BaseModel):
    chunk_size: int = Field(default_factory=lambda: settings.bulk_default_chunk_size, gt=0)
    continue_on_error: bool = False
    update_existing: bool = False
    matching_field: Optional[str] = None
    field_mapping: Optional[Dict[str, str]] = None
    default_values: Optional[Dict[str, Any]] = None

    def as_bulk_options(self) -> BulkOptions:
        return BulkOptions(
            chunk_size=self.chunk_size,
            continue_on_error=self.continue_on_error,
            update_existing=self.update_existing,
            matching_field=self.matching_field,
        )


class MutationRequest(BaseModel):
    operation: OperationKind
    entity_type: EntityType
    items: List[Dict[str, Any]]
    options: BulkOptions = Field(default_factory=BulkOptions)

    @classmethod
    def build(
        cls,
        operation: Any,
        entity_type: Any,
        items: List[Dict[str, Any]],
        options: Optional[BulkOptions] = None,
    ) -> "MutationRequest":
        """Build a request from wire values, raising the engine's unsupported-* errors."""
        kind = OperationKind.parse(operation)
        if kind not in DIRECT_OPERATION_KINDS:
            raise UnsupportedOperationError(
                f"Operation '{kind.value}' is not available for direct bulk mutations"
            )
        return cls(
            operation=kind,
            entity_type=EntityType.parse(entity_type),
            items=list(items or []),
            options=options or BulkOptions(),
        )


class ImportRequest(BaseModel):
    format: ImportFormat
    entity_type: EntityType
    file_bytes: bytes
    file_name: Optional[str] = None
    options: ImportOptions = Field(default_factory=ImportOptions)


class ErrorEntry(BaseModel):
    index: int  # 1-based row position; -1 for job-level failures
    item_id: Optional[str] = None
    message: str
    code: Optional[str] = None


class WarningEntry(BaseModel):
    index: int
    item_id: Optional[str] = None
    message: str


class RowOutcome(BaseModel):
    index: int
    item_id: Optional[str] = None
    disposition: Disposition
    message: Optional[str] = None
    existing_id: Optional[str] = None


class DuplicateEntry(BaseModel):
    row: int
    existing_id: str
    action: Literal["skipped", "updated"]


class OperationResult(BaseModel):
    """
    Outcome of one bulk job.

    ``success`` is true only for a completed job with no failures, or with
    failures under ``continue_on_error``. Cancelled and failed jobs always
    report ``success=False`` alongside the partial counts they reached.
    """

    success: bool
    operation_id: str
    status: OperationStatus
    total_items: int
    success_count: int = 0
    failure_count: int = 0
    skipped_count: int = 0
    not_attempted_count: int = 0
    errors: List[ErrorEntry] = Field(default_factory=list)
    warnings: List[WarningEntry] = Field(default_factory=list)
    summary: Dict[str, Any] = Field(default_factory=dict)
    outcomes: List[RowOutcome] = Field(default_factory=list)


class ImportResult(OperationResult):
    duplicates: List[DuplicateEntry] = Field(default_factory=list)


class OperationRecord(BaseModel):
    id: str
    status: OperationStatus
    operation_kind: OperationKind
    entity_type: EntityType
    total_items: int
    processed_items: int = 0
    success_count: int = 0
    failure_count: int = 0
    skipped_count: int = 0
    errors: List[ErrorEntry] = Field(default_factory=list)
    warnings: List[WarningEntry] = Field(default_factory=list)
    summary: Optional[Dict[str, Any]] = None
    options: Optional[Dict[str, Any]] = None
    start_time: datetime
    end_time: Optional[datetime] = None
    created_by: Optional[str] = None


class CancelResult(BaseModel):
    cancelled: bool
    message: str


class HistoryFilters(BaseModel):
    entity_type: Optional[str] = None
    operation_kind: Optional[str] = None
    status: Optional[str] = None
    user_id: Optional[str] = None


class OperationHistoryPage(BaseModel):
    operations: List[OperationRecord]
    total_count: int
    page: int
    limit: int
    total_pages: int
