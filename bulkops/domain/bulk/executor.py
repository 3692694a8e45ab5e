"""
Chunked Write Executor.

Runs a bulk job over an ordered list of rows: rows are split into chunks,
each chunk is staged into one atomic write group and committed, and the
persisted operation record is updated after every chunk. Cancellation is
cooperative: it is observed before each chunk and again right before a
staged chunk commits.
"""
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Tuple

from bulkops.core.config import settings
from bulkops.core.exceptions import InvalidRequestError, UnsupportedOperationError, WriteGroupError
from bulkops.db.store import RecordStore, WriteAction, WriteGroup
from bulkops.domain.bulk.models import (
    DIRECT_OPERATION_KINDS,
    BulkOptions,
    Disposition,
    EntityType,
    ErrorEntry,
    MutationRequest,
    OperationKind,
    OperationResult,
    OperationStatus,
    RowOutcome,
    WarningEntry,
)
from bulkops.domain.bulk.operations import OperationStore
from bulkops.domain.imports.dedup import Deduplicator
from bulkops.domain.imports.validators import build_validated_row, coerce_fields, validate_record
from bulkops.utils.serialization import is_absent, strip_absent_values

logger = logging.getLogger(__name__)


def chunk_records(items: List[Dict[str, Any]], chunk_size: int) -> Iterator[Tuple[int, List[Dict[str, Any]]]]:
    """Yield ``(offset, chunk)`` pairs covering ``items`` in order."""
    for offset in range(0, len(items), chunk_size):
        yield offset, items[offset:offset + chunk_size]


def build_items_from_ids(ids: List[Any], data: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
    """Expand a list of ids plus a shared payload into one row per id."""
    return [{**(data or {}), "id": str(record_id)} for record_id in ids]


def _item_id(item: Dict[str, Any]) -> Optional[str]:
    value = item.get("id")
    if is_absent(value):
        return None
    text = str(value).strip()
    return text or None


class _JobAborted(Exception):
    """A write group failed and the job does not continue on error."""


class _JobCancelled(Exception):
    """The job was cancelled while a chunk was being staged."""


@dataclass
class _Job:
    operation_id: str
    operation: OperationKind
    entity_type: EntityType
    options: BulkOptions
    total_items: int
    dedup: Deduplicator
    processed_items: int = 0
    success_count: int = 0
    failure_count: int = 0
    skipped_count: int = 0
    errors: List[ErrorEntry] = field(default_factory=list)
    warnings: List[WarningEntry] = field(default_factory=list)
    outcomes: List[RowOutcome] = field(default_factory=list)

    @property
    def not_attempted_count(self) -> int:
        return self.total_items - self.success_count - self.failure_count - self.skipped_count

    def snapshot(self) -> Tuple[int, ...]:
        return (
            self.processed_items,
            self.success_count,
            self.failure_count,
            self.skipped_count,
            len(self.errors),
            len(self.warnings),
            len(self.outcomes),
        )

    def restore(self, snapshot: Tuple[int, ...]) -> None:
        """Forget everything recorded after ``snapshot`` was taken."""
        (self.processed_items, self.success_count, self.failure_count, self.skipped_count,
         errors, warnings, outcomes) = snapshot
        del self.errors[errors:]
        del self.warnings[warnings:]
        del self.outcomes[outcomes:]

    def counters(self) -> Dict[str, Any]:
        return {
            "processed_items": self.processed_items,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "skipped_count": self.skipped_count,
            "errors": self.errors,
            "warnings": self.warnings,
        }

    def disposition_count(self, disposition: Disposition) -> int:
        return sum(1 for outcome in self.outcomes if outcome.disposition is disposition)

    def summary(self, execution_time_ms: int) -> Dict[str, Any]:
        return {
            "operation": self.operation.value,
            "entity_type": self.entity_type.value,
            "total_items": self.total_items,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "skipped_count": self.skipped_count,
            "not_attempted_count": self.not_attempted_count,
            "new_records": self.disposition_count(Disposition.CREATED_NEW),
            "updated_records": self.disposition_count(Disposition.UPDATED_EXISTING),
            "deleted_records": self.disposition_count(Disposition.DELETED),
            "success_rate": self.success_count / self.total_items if self.total_items else 0.0,
            "execution_time_ms": execution_time_ms,
        }


class ChunkedWriteExecutor:
    def __init__(self, store: RecordStore, operations: OperationStore, max_items: Optional[int] = None):
        self.store = store
        self.operations = operations
        self.max_items = max_items if max_items is not None else settings.bulk_max_items

    def execute(self, request: MutationRequest, user_id: Optional[str] = None) -> OperationResult:
        """Run a direct create/update/delete/status_change request."""
        if request.operation not in DIRECT_OPERATION_KINDS:
            raise UnsupportedOperationError(
                f"Operation '{request.operation.value}' is not available for direct bulk mutations"
            )
        if len(request.items) > self.max_items:
            raise InvalidRequestError(f"Maximum {self.max_items} items allowed per bulk operation")

        return self.run_job(
            operation=request.operation,
            entity_type=request.entity_type,
            items=request.items,
            options=request.options,
            user_id=user_id,
        )

    def run_job(
        self,
        *,
        operation: OperationKind,
        entity_type: EntityType,
        items: List[Dict[str, Any]],
        options: BulkOptions,
        user_id: Optional[str] = None,
        id_prefix: str = "bulk",
        extra_options: Optional[Dict[str, Any]] = None,
    ) -> OperationResult:
        """
        Create the operation record and process ``items`` chunk by chunk.

        Request-level problems raise before any record is created. Everything
        that goes wrong afterwards is reported in the returned result and on
        the persisted operation record.
        """
        if not items:
            raise InvalidRequestError("Items array is required and must not be empty")
        if options.chunk_size > self.store.max_write_group_size:
            raise InvalidRequestError(
                f"chunk_size must not exceed {self.store.max_write_group_size}"
            )

        started = time.monotonic()
        record = self.operations.create_operation(
            operation_kind=operation,
            entity_type=entity_type,
            total_items=len(items),
            created_by=user_id,
            options={**options.model_dump(), **(extra_options or {})},
            id_prefix=id_prefix,
        )
        job = _Job(
            operation_id=record.id,
            operation=operation,
            entity_type=entity_type,
            options=options,
            total_items=len(items),
            dedup=Deduplicator(self.store),
        )
        logger.info(
            "Running bulk operation %s in chunks of %d (continue_on_error=%s)",
            record.id,
            options.chunk_size,
            options.continue_on_error,
        )

        status = OperationStatus.COMPLETED
        try:
            for chunk_number, (offset, chunk) in enumerate(chunk_records(items, options.chunk_size), start=1):
                if self.operations.is_cancelled(record.id):
                    logger.info(
                        "Bulk operation %s cancelled; stopping before chunk %d",
                        record.id,
                        chunk_number,
                    )
                    status = OperationStatus.CANCELLED
                    break

                stop = self._process_chunk(job, chunk, offset, chunk_number)
                self.operations.record_progress(record.id, **job.counters())
                if stop:
                    logger.info(
                        "Bulk operation %s stopped at row %d (continue_on_error disabled)",
                        record.id,
                        job.processed_items,
                    )
                    break
        except _JobCancelled:
            logger.info("Bulk operation %s cancelled; dropped the chunk being staged", record.id)
            status = OperationStatus.CANCELLED
        except _JobAborted as exc:
            status = OperationStatus.FAILED
            job.errors.append(ErrorEntry(index=-1, message=str(exc), code="OPERATION_FAILED"))
        except Exception as exc:
            logger.exception("Bulk operation %s failed", record.id)
            status = OperationStatus.FAILED
            job.errors.append(
                ErrorEntry(index=-1, message=str(exc) or exc.__class__.__name__, code="OPERATION_FAILED")
            )

        execution_time_ms = int((time.monotonic() - started) * 1000)
        final = self.operations.finish_operation(
            record.id,
            status=status,
            summary=job.summary(execution_time_ms),
            **job.counters(),
        )
        if final is not None:
            status = final.status

        logger.info(
            "Bulk operation %s %s: %d succeeded, %d failed, %d skipped of %d",
            record.id,
            status.value,
            job.success_count,
            job.failure_count,
            job.skipped_count,
            job.total_items,
        )

        return OperationResult(
            success=status is OperationStatus.COMPLETED and (job.failure_count == 0 or options.continue_on_error),
            operation_id=record.id,
            status=status,
            total_items=job.total_items,
            success_count=job.success_count,
            failure_count=job.failure_count,
            skipped_count=job.skipped_count,
            not_attempted_count=job.not_attempted_count,
            errors=job.errors,
            warnings=job.warnings,
            summary=job.summary(execution_time_ms),
            outcomes=job.outcomes,
        )

    def _process_chunk(self, job: _Job, chunk: List[Dict[str, Any]], offset: int, chunk_number: int) -> bool:
        """
        Stage and commit one chunk. Returns True when the job must stop afterwards.

        Cancellation is checked again right before the commit. A chunk whose
        job was cancelled while it was staged is dropped along with its
        counters, so nothing is written after ``cancel`` returned.
        """
        snapshot = job.snapshot()
        group = self.store.open_write_group()
        staged: List[RowOutcome] = []
        stop = False
        try:
            for position, item in enumerate(chunk):
                index = offset + position + 1
                job.processed_items += 1
                try:
                    outcome = self._stage_item(job, group, item, index)
                except Exception:
                    job.outcomes.append(
                        RowOutcome(index=index, item_id=_item_id(item), disposition=Disposition.WRITE_FAILED,
                                   message="Not committed: operation aborted")
                    )
                    job.failure_count += 1
                    self._abandon(job, staged, "Not committed: operation aborted")
                    raise
                job.outcomes.append(outcome)

                if outcome.disposition is Disposition.VALIDATION_FAILED:
                    if not job.options.continue_on_error:
                        stop = True
                        break
                elif outcome.disposition is Disposition.SKIPPED_DUPLICATE:
                    job.skipped_count += 1
                else:
                    staged.append(outcome)

            if staged and self.operations.is_cancelled(job.operation_id):
                job.restore(snapshot)
                raise _JobCancelled()
            self._commit(job, group, staged, chunk_number)
        finally:
            job.dedup.clear_pending()
        return stop

    def _commit(self, job: _Job, group: WriteGroup, staged: List[RowOutcome], chunk_number: int) -> None:
        if not staged:
            return
        try:
            group.commit()
        except WriteGroupError as exc:
            logger.error(
                "Bulk operation %s: write group for chunk %d failed: %s",
                job.operation_id,
                chunk_number,
                exc,
            )
            for outcome in staged:
                job.errors.append(
                    ErrorEntry(index=outcome.index, item_id=outcome.item_id,
                               message=str(exc), code="WRITE_GROUP_FAILED")
                )
            self._abandon(job, staged, str(exc))
            if not job.options.continue_on_error:
                raise _JobAborted(f"Write group for chunk {chunk_number} failed: {exc}") from exc
            return

        job.success_count += len(staged)
        logger.info(
            "Bulk operation %s: committed chunk %d (%d writes)",
            job.operation_id,
            chunk_number,
            len(staged),
        )

    @staticmethod
    def _abandon(job: _Job, staged: List[RowOutcome], message: str) -> None:
        for outcome in staged:
            outcome.disposition = Disposition.WRITE_FAILED
            outcome.message = message
            job.failure_count += 1
        staged.clear()

    # Per-row staging

    def _stage_item(self, job: _Job, group: WriteGroup, item: Dict[str, Any], index: int) -> RowOutcome:
        if job.operation in (OperationKind.CREATE, OperationKind.IMPORT):
            return self._stage_create(job, group, item, index)
        if job.operation is OperationKind.UPDATE:
            return self._stage_update(job, group, item, index)
        if job.operation is OperationKind.DELETE:
            return self._stage_delete(job, group, item, index)
        return self._stage_status_change(job, group, item, index)

    def _reject(self, job: _Job, index: int, item_id: Optional[str], message: str, code: str) -> RowOutcome:
        job.failure_count += 1
        job.errors.append(ErrorEntry(index=index, item_id=item_id, message=message, code=code))
        return RowOutcome(
            index=index,
            item_id=item_id,
            disposition=Disposition.VALIDATION_FAILED,
            message=message,
        )

    def _check_rules(
        self, job: _Job, item: Dict[str, Any], index: int, partial: bool
    ) -> Tuple[Optional[RowOutcome], bool]:
        """Returns ``(rejection, passed)``; failures become warnings when validation is skipped."""
        item_id = _item_id(item)
        verdict = validate_record(job.entity_type, item, partial=partial)
        if verdict.is_valid:
            return None, True

        problems = ", ".join(verdict.errors)
        if job.options.skip_validation:
            job.warnings.append(
                WarningEntry(index=index, item_id=item_id, message=f"Validation warnings: {problems}")
            )
            return None, False
        return self._reject(job, index, item_id, f"Validation failed: {problems}", "VALIDATION_ERROR"), False

    def _prepare(self, job: _Job, item: Dict[str, Any], partial: bool, passed: bool) -> Dict[str, Any]:
        if passed and partial:
            data = coerce_fields(job.entity_type, item)
        elif passed:
            data = build_validated_row(job.entity_type, item).model_dump()
        else:
            data = dict(item)
        data = strip_absent_values(data)
        data.pop("id", None)
        return data

    def _require_existing(
        self, job: _Job, item: Dict[str, Any], index: int
    ) -> Tuple[Optional[str], Optional[RowOutcome]]:
        item_id = _item_id(item)
        if item_id is None:
            message = f"Item ID is required for {job.operation.value} operation"
            return None, self._reject(job, index, None, message, "MISSING_ID")
        if job.dedup.get_existing(job.entity_type, item_id) is None:
            message = f"{job.entity_type.value} with ID {item_id} not found"
            return None, self._reject(job, index, item_id, message, "NOT_FOUND")
        return item_id, None

    def _stage_create(self, job: _Job, group: WriteGroup, item: Dict[str, Any], index: int) -> RowOutcome:
        rejection, passed = self._check_rules(job, item, index, partial=False)
        if rejection is not None:
            return rejection

        collection = job.entity_type.collection
        data = self._prepare(job, item, partial=False, passed=passed)
        existing = job.dedup.find(data, job.entity_type, job.options.matching_field)
        if existing is not None:
            existing_id = str(existing["id"])
            if not job.options.update_existing:
                return RowOutcome(
                    index=index,
                    item_id=existing_id,
                    disposition=Disposition.SKIPPED_DUPLICATE,
                    message=f"Duplicate of existing record {existing_id}",
                    existing_id=existing_id,
                )
            group.stage(WriteAction.UPDATE, collection, existing_id, data)
            return RowOutcome(
                index=index,
                item_id=existing_id,
                disposition=Disposition.UPDATED_EXISTING,
                existing_id=existing_id,
            )

        record_id = self.store.allocate_id(collection)
        group.stage(WriteAction.CREATE, collection, record_id, data)
        job.dedup.remember_create(job.entity_type, record_id, data, job.options.matching_field)
        return RowOutcome(index=index, item_id=record_id, disposition=Disposition.CREATED_NEW)

    def _stage_update(self, job: _Job, group: WriteGroup, item: Dict[str, Any], index: int) -> RowOutcome:
        if _item_id(item) is None:
            return self._reject(job, index, None, "Item ID is required for update operation", "MISSING_ID")

        rejection, passed = self._check_rules(job, item, index, partial=True)
        if rejection is not None:
            return rejection

        item_id, rejection = self._require_existing(job, item, index)
        if rejection is not None:
            return rejection

        group.stage(WriteAction.UPDATE, job.entity_type.collection, item_id,
                    self._prepare(job, item, partial=True, passed=passed))
        return RowOutcome(index=index, item_id=item_id, disposition=Disposition.UPDATED_EXISTING,
                          existing_id=item_id)

    def _stage_delete(self, job: _Job, group: WriteGroup, item: Dict[str, Any], index: int) -> RowOutcome:
        item_id, rejection = self._require_existing(job, item, index)
        if rejection is not None:
            return rejection

        group.stage(WriteAction.DELETE, job.entity_type.collection, item_id)
        job.dedup.remember_delete(job.entity_type, item_id)
        return RowOutcome(index=index, item_id=item_id, disposition=Disposition.DELETED, existing_id=item_id)

    def _stage_status_change(self, job: _Job, group: WriteGroup, item: Dict[str, Any], index: int) -> RowOutcome:
        item_id = _item_id(item)
        if item_id is None:
            return self._reject(job, index, None, "Item ID is required for status change operation", "MISSING_ID")

        status = item.get("status")
        if is_absent(status) or (isinstance(status, str) and not status.strip()):
            return self._reject(job, index, item_id, "Status is required for status change operation",
                                "MISSING_STATUS")

        item_id, rejection = self._require_existing(job, item, index)
        if rejection is not None:
            return rejection

        group.stage(WriteAction.UPDATE, job.entity_type.collection, item_id, {"status": status})
        return RowOutcome(index=index, item_id=item_id, disposition=Disposition.UPDATED_EXISTING,
                          existing_id=item_id)
