"""
Persistent tracking for bulk mutation and import jobs.

One ``bulk_operations`` row exists per submitted job. Only the executor that
owns a job writes its progress; callers may read it at any time and may flip
it to ``cancelled``, which the executor observes between chunks.
"""
from __future__ import annotations

import logging
import math
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select, update
from sqlalchemy.engine import Engine

from bulkops.core.exceptions import InvalidRequestError
from bulkops.db.tables import bulk_operations_table
from bulkops.domain.bulk.models import (
    CancelResult,
    EntityType,
    ErrorEntry,
    HistoryFilters,
    OperationHistoryPage,
    OperationKind,
    OperationRecord,
    OperationStatus,
    WarningEntry,
)

logger = logging.getLogger(__name__)


def generate_operation_id(prefix: str = "bulk") -> str:
    """Time-derived id with a random suffix, e.g. ``bulk_1718000000000_3f9a1c2b7``."""
    return f"{prefix}_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


def _row_to_operation(row: Any) -> OperationRecord:
    return OperationRecord(
        id=row["id"],
        status=row["status"],
        operation_kind=row["operation_kind"],
        entity_type=row["entity_type"],
        total_items=row["total_items"],
        processed_items=row["processed_items"],
        success_count=row["success_count"],
        failure_count=row["failure_count"],
        skipped_count=row["skipped_count"],
        errors=row["errors"] or [],
        warnings=row["warnings"] or [],
        summary=row["summary"],
        options=row["options"],
        start_time=row["start_time"],
        end_time=row["end_time"],
        created_by=row["created_by"],
    )


def _dump_entries(entries: List[Any]) -> List[Dict[str, Any]]:
    return [entry.model_dump() if hasattr(entry, "model_dump") else dict(entry) for entry in entries]


class OperationStore:
    def __init__(self, engine: Engine):
        self.engine = engine

    def create_operation(
        self,
        *,
        operation_kind: OperationKind,
        entity_type: EntityType,
        total_items: int,
        created_by: Optional[str] = None,
        options: Optional[Dict[str, Any]] = None,
        id_prefix: str = "bulk",
    ) -> OperationRecord:
        """Persist a new job in ``running`` state."""
        operation_id = generate_operation_id(id_prefix)
        values = {
            "id": operation_id,
            "status": OperationStatus.RUNNING.value,
            "operation_kind": OperationKind(operation_kind).value,
            "entity_type": EntityType(entity_type).value,
            "total_items": total_items,
            "processed_items": 0,
            "success_count": 0,
            "failure_count": 0,
            "skipped_count": 0,
            "errors": [],
            "warnings": [],
            "summary": None,
            "options": options or {},
            "created_by": created_by,
            "start_time": datetime.now(timezone.utc),
            "end_time": None,
        }
        with self.engine.begin() as conn:
            conn.execute(bulk_operations_table.insert().values(**values))

        logger.info(
            "Created bulk operation %s (%s %s, %d items)",
            operation_id,
            values["operation_kind"],
            values["entity_type"],
            total_items,
        )
        return _row_to_operation(values)

    def get_operation(self, operation_id: str) -> Optional[OperationRecord]:
        """Fetch a single job by ID."""
        stmt = select(bulk_operations_table).where(bulk_operations_table.c.id == operation_id)
        with self.engine.connect() as conn:
            row = conn.execute(stmt).mappings().first()
        return _row_to_operation(row) if row else None

    def is_cancelled(self, operation_id: str) -> bool:
        stmt = select(bulk_operations_table.c.status).where(bulk_operations_table.c.id == operation_id)
        with self.engine.connect() as conn:
            status = conn.execute(stmt).scalar()
        return status == OperationStatus.CANCELLED.value

    def record_progress(
        self,
        operation_id: str,
        *,
        processed_items: int,
        success_count: int,
        failure_count: int,
        skipped_count: int,
        errors: List[ErrorEntry],
        warnings: List[WarningEntry],
    ) -> None:
        """Write the running counters after a chunk; status is left untouched."""
        stmt = (
            update(bulk_operations_table)
            .where(bulk_operations_table.c.id == operation_id)
            .values(
                processed_items=processed_items,
                success_count=success_count,
                failure_count=failure_count,
                skipped_count=skipped_count,
                errors=_dump_entries(errors),
                warnings=_dump_entries(warnings),
            )
        )
        with self.engine.begin() as conn:
            conn.execute(stmt)

    def finish_operation(
        self,
        operation_id: str,
        *,
        status: OperationStatus,
        processed_items: int,
        success_count: int,
        failure_count: int,
        skipped_count: int,
        errors: List[ErrorEntry],
        warnings: List[WarningEntry],
        summary: Dict[str, Any],
    ) -> Optional[OperationRecord]:
        """
        Store final counters and move a running job to its terminal status.

        A job cancelled after its last chunk keeps ``cancelled``; only the
        counters and summary are written in that case.
        """
        table = bulk_operations_table
        with self.engine.begin() as conn:
            conn.execute(
                update(table)
                .where(table.c.id == operation_id)
                .values(
                    processed_items=processed_items,
                    success_count=success_count,
                    failure_count=failure_count,
                    skipped_count=skipped_count,
                    errors=_dump_entries(errors),
                    warnings=_dump_entries(warnings),
                    summary=summary,
                )
            )
            result = conn.execute(
                update(table)
                .where(table.c.id == operation_id)
                .where(table.c.status == OperationStatus.RUNNING.value)
                .values(status=OperationStatus(status).value, end_time=datetime.now(timezone.utc))
            )
            if result.rowcount == 0:
                logger.info(
                    "Bulk operation %s was no longer running; keeping its current status",
                    operation_id,
                )

        return self.get_operation(operation_id)

    def cancel_operation(self, operation_id: str) -> CancelResult:
        """Request cooperative cancellation; the executor stops before its next commit."""
        operation = self.get_operation(operation_id)
        if operation is None:
            return CancelResult(cancelled=False, message="Operation not found")
        if operation.status is OperationStatus.COMPLETED:
            return CancelResult(cancelled=False, message="Operation already completed")
        if operation.status is OperationStatus.CANCELLED:
            return CancelResult(cancelled=True, message="Operation already cancelled")

        table = bulk_operations_table
        with self.engine.begin() as conn:
            result = conn.execute(
                update(table)
                .where(table.c.id == operation_id)
                .where(table.c.status != OperationStatus.COMPLETED.value)
                .values(status=OperationStatus.CANCELLED.value, end_time=datetime.now(timezone.utc))
            )

        if result.rowcount == 0:
            # Completed between the read and the update
            return CancelResult(cancelled=False, message="Operation already completed")

        logger.info("Bulk operation %s cancelled", operation_id)
        return CancelResult(cancelled=True, message="Operation cancelled successfully")

    def list_operations(
        self,
        filters: Optional[HistoryFilters] = None,
        page: int = 1,
        limit: int = 20,
    ) -> OperationHistoryPage:
        """List jobs newest-first with optional filters and page-based pagination."""
        if page < 1:
            raise InvalidRequestError("page must be >= 1")
        if limit < 1:
            raise InvalidRequestError("limit must be >= 1")

        filters = filters or HistoryFilters()
        table = bulk_operations_table
        conditions = []
        if filters.entity_type:
            conditions.append(table.c.entity_type == filters.entity_type)
        if filters.operation_kind:
            conditions.append(table.c.operation_kind == filters.operation_kind)
        if filters.status:
            conditions.append(table.c.status == filters.status)
        if filters.user_id:
            conditions.append(table.c.created_by == filters.user_id)

        query = select(table)
        count_query = select(func.count()).select_from(table)
        for condition in conditions:
            query = query.where(condition)
            count_query = count_query.where(condition)

        query = (
            query
            .order_by(table.c.start_time.desc(), table.c.id.desc())
            .limit(limit)
            .offset((page - 1) * limit)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).mappings().all()
            total = conn.execute(count_query).scalar() or 0

        return OperationHistoryPage(
            operations=[_row_to_operation(row) for row in rows],
            total_count=total,
            page=page,
            limit=limit,
            total_pages=math.ceil(total / limit),
        )
