"""
Tests for the chunked write executor: chunk boundaries, error policies,
deduplication, cancellation and operation accounting.
"""

import pytest

from bulkops.core.exceptions import InvalidRequestError, UnsupportedOperationError
from bulkops.db.store import SqlRecordStore
from bulkops.domain.bulk.executor import ChunkedWriteExecutor, build_items_from_ids, chunk_records
from bulkops.domain.bulk.models import (
    BulkOptions,
    Disposition,
    EntityType,
    MutationRequest,
    OperationKind,
    OperationStatus,
)
from tests.utils.bulk_helpers import (
    BrokenIdStore,
    CancelDuringStagingStore,
    CancellingOperationStore,
    FlakyRecordStore,
    RecordingOperationStore,
    seed,
)


def _customers(*emails):
    return [{"email": email, "name": f"Customer {position}"} for position, email in enumerate(emails, start=1)]


def _request(operation, entity_type, items, **options):
    return MutationRequest.build(operation, entity_type, items, BulkOptions(**options))


def _assert_accounted(result):
    assert (
        result.success_count + result.failure_count + result.skipped_count + result.not_attempted_count
        == result.total_items
    )


def test_chunk_records_preserves_order_and_offsets():
    items = [{"n": n} for n in range(5)]

    chunks = list(chunk_records(items, 2))

    assert [offset for offset, _ in chunks] == [0, 2, 4]
    assert [len(chunk) for _, chunk in chunks] == [2, 2, 1]


def test_build_items_from_ids():
    assert build_items_from_ids(["a", 7], {"status": "archived"}) == [
        {"status": "archived", "id": "a"},
        {"status": "archived", "id": "7"},
    ]


class TestCreate:
    def test_creates_every_valid_row(self, executor, store):
        result = executor.execute(_request("create", "customers", _customers("a@b.com", "c@d.com")))

        assert result.success is True
        assert result.status is OperationStatus.COMPLETED
        assert result.success_count == 2
        assert [outcome.disposition for outcome in result.outcomes] == [Disposition.CREATED_NEW] * 2
        assert len(store.query("customers", "email", "==", "a@b.com")) == 1
        assert result.operation_id.startswith("bulk_")

    def test_stop_on_first_invalid_row(self, executor, store):
        items = _customers("a@b.com", "not-an-email", "c@d.com")

        result = executor.execute(_request("create", "customers", items))

        assert result.success is False
        assert result.status is OperationStatus.COMPLETED
        assert result.success_count == 1
        assert result.failure_count == 1
        assert result.not_attempted_count == 1
        assert [(error.index, error.code) for error in result.errors] == [(2, "VALIDATION_ERROR")]
        assert "Invalid email format" in result.errors[0].message
        assert store.query("customers", "email", "==", "c@d.com") == []
        _assert_accounted(result)

    def test_continue_on_error_processes_remaining_rows(self, executor, store):
        items = _customers("a@b.com", "not-an-email", "c@d.com")

        result = executor.execute(_request("create", "customers", items, continue_on_error=True))

        assert result.success is True
        assert result.success_count == 2
        assert result.failure_count == 1
        assert result.not_attempted_count == 0
        assert len(store.query("customers", "email", "==", "c@d.com")) == 1

    def test_absent_values_are_not_persisted(self, executor, store):
        items = [{"email": "a@b.com", "name": "Ada", "phone": None, "notes": float("nan")}]

        result = executor.execute(_request("create", "customers", items))

        stored = store.get("customers", result.outcomes[0].item_id)
        assert stored == {"id": result.outcomes[0].item_id, "email": "a@b.com", "name": "Ada"}

    def test_typed_fields_are_coerced(self, executor, store):
        items = [{"name": "Cut", "price": "25.50", "duration": "30"}]

        result = executor.execute(_request("create", "services", items))

        stored = store.get("services", result.outcomes[0].item_id)
        assert stored["price"] == 25.5
        assert stored["duration"] == 30

    def test_skip_validation_stores_row_with_warning(self, executor, store):
        items = [{"email": "broken", "name": "Ada"}]

        result = executor.execute(_request("create", "customers", items, skip_validation=True))

        assert result.success_count == 1
        assert result.errors == []
        assert [warning.index for warning in result.warnings] == [1]
        assert "Invalid email format" in result.warnings[0].message
        assert store.get("customers", result.outcomes[0].item_id)["email"] == "broken"

    def test_bookings_have_no_rules_and_no_dedup(self, executor):
        items = [{"customer_id": "c1", "status": "pending"}] * 2

        result = executor.execute(_request("create", "bookings", items))

        assert [outcome.disposition for outcome in result.outcomes] == [Disposition.CREATED_NEW] * 2


class TestDuplicates:
    def test_existing_match_is_skipped(self, executor, store):
        (existing_id,) = seed(store, "customers", [{"email": "a@b.com", "name": "Ada"}])

        result = executor.execute(_request("create", "customers", _customers("a@b.com", "c@d.com")))

        assert result.skipped_count == 1
        assert result.outcomes[0].disposition is Disposition.SKIPPED_DUPLICATE
        assert result.outcomes[0].existing_id == existing_id
        assert store.get("customers", existing_id)["name"] == "Ada"
        _assert_accounted(result)

    def test_update_existing_merges_into_match(self, executor, store):
        (existing_id,) = seed(store, "customers", [{"email": "a@b.com", "name": "Ada", "tier": "gold"}])

        result = executor.execute(
            _request("create", "customers", [{"email": "a@b.com", "name": "Ada L."}], update_existing=True)
        )

        assert result.outcomes[0].disposition is Disposition.UPDATED_EXISTING
        assert store.get("customers", existing_id) == {
            "id": existing_id,
            "email": "a@b.com",
            "name": "Ada L.",
            "tier": "gold",
        }

    @pytest.mark.parametrize("chunk_size", [1, 2, 3, 50])
    def test_outcomes_do_not_depend_on_chunk_size(self, executor, chunk_size):
        items = _customers("a@b.com", "b@b.com", "a@b.com", "broken", "c@b.com", "b@b.com")

        result = executor.execute(
            _request("create", "customers", items, chunk_size=chunk_size, continue_on_error=True)
        )

        assert [outcome.disposition for outcome in result.outcomes] == [
            Disposition.CREATED_NEW,
            Disposition.CREATED_NEW,
            Disposition.SKIPPED_DUPLICATE,
            Disposition.VALIDATION_FAILED,
            Disposition.CREATED_NEW,
            Disposition.SKIPPED_DUPLICATE,
        ]
        assert (result.success_count, result.failure_count, result.skipped_count) == (3, 1, 2)
        assert result.outcomes[2].existing_id == result.outcomes[0].item_id

    def test_rerun_with_update_existing_is_idempotent(self, executor, store):
        items = _customers("a@b.com", "b@b.com")

        executor.execute(_request("create", "customers", items, update_existing=True))
        first = {doc["email"]: doc for doc in store.query("customers", "name", "!=", "")}

        rerun = executor.execute(_request("create", "customers", items, update_existing=True))
        second = {doc["email"]: doc for doc in store.query("customers", "name", "!=", "")}

        assert [outcome.disposition for outcome in rerun.outcomes] == [Disposition.UPDATED_EXISTING] * 2
        assert second == first


class TestUpdateDeleteStatusChange:
    def test_update_requires_an_id(self, executor):
        result = executor.execute(
            _request("update", "customers", [{"name": "Ada"}], continue_on_error=True)
        )

        assert result.errors[0].code == "MISSING_ID"
        assert result.errors[0].message == "Item ID is required for update operation"

    def test_update_unknown_id_is_not_found(self, executor):
        result = executor.execute(_request("update", "customers", [{"id": "nope", "name": "Ada"}]))

        assert result.errors[0].code == "NOT_FOUND"
        assert result.outcomes[0].disposition is Disposition.VALIDATION_FAILED

    def test_partial_update(self, executor, store):
        (customer_id,) = seed(store, "customers", [{"email": "a@b.com", "name": "Ada"}])

        result = executor.execute(_request("update", "customers", [{"id": customer_id, "phone": "5551234567"}]))

        assert result.success_count == 1
        assert store.get("customers", customer_id) == {
            "id": customer_id,
            "email": "a@b.com",
            "name": "Ada",
            "phone": "5551234567",
        }

    def test_update_still_checks_formats(self, executor, store):
        (customer_id,) = seed(store, "customers", [{"email": "a@b.com", "name": "Ada"}])

        result = executor.execute(_request("update", "customers", [{"id": customer_id, "email": "broken"}]))

        assert result.errors[0].code == "VALIDATION_ERROR"
        assert store.get("customers", customer_id)["email"] == "a@b.com"

    def test_delete(self, executor, store):
        ids = seed(store, "equipment", [{"name": "Tent", "type": "camping"}, {"name": "Stove", "type": "camping"}])

        result = executor.execute(
            _request("delete", "equipment", build_items_from_ids(ids + ["missing"]), continue_on_error=True)
        )

        assert [outcome.disposition for outcome in result.outcomes] == [
            Disposition.DELETED,
            Disposition.DELETED,
            Disposition.VALIDATION_FAILED,
        ]
        assert all(store.get("equipment", record_id) is None for record_id in ids)
        assert result.summary["deleted_records"] == 2

    def test_deleting_the_same_id_twice_in_a_chunk(self, executor, store):
        (record_id,) = seed(store, "bookings", [{"status": "pending"}])

        result = executor.execute(
            _request("delete", "bookings", [{"id": record_id}, {"id": record_id}], continue_on_error=True)
        )

        assert result.success_count == 1
        assert result.errors[0].code == "NOT_FOUND"

    def test_status_change_requires_status(self, executor, store):
        (booking_id,) = seed(store, "bookings", [{"status": "pending"}])

        result = executor.execute(_request("status_change", "bookings", [{"id": booking_id}]))

        assert result.errors[0].code == "MISSING_STATUS"

    def test_status_change_in_chunks_reports_progress(self, engine, store):
        booking_ids = seed(store, "bookings", [{"status": "pending", "slot": n} for n in range(5)])
        operations = RecordingOperationStore(engine)
        executor = ChunkedWriteExecutor(store, operations)

        result = executor.execute(
            _request("status_change", "bookings", build_items_from_ids(booking_ids, {"status": "confirmed"}),
                     chunk_size=2)
        )

        assert operations.progress == [2, 4, 5]
        assert result.success_count == 5
        for slot, booking_id in enumerate(booking_ids):
            assert store.get("bookings", booking_id) == {"id": booking_id, "status": "confirmed", "slot": slot}

        record = operations.get_operation(result.operation_id)
        assert record.status is OperationStatus.COMPLETED
        assert record.processed_items == 5
        assert record.end_time is not None


class TestWriteGroupFailures:
    def test_failed_group_marks_its_rows_and_continues(self, engine, store, operations):
        executor = ChunkedWriteExecutor(FlakyRecordStore(store, fail_groups={2}), operations)
        items = _customers("a@b.com", "b@b.com", "c@b.com", "d@b.com", "e@b.com")

        result = executor.execute(_request("create", "customers", items, chunk_size=2, continue_on_error=True))

        assert result.status is OperationStatus.COMPLETED
        assert (result.success_count, result.failure_count) == (3, 2)
        assert [(error.index, error.code) for error in result.errors] == [
            (3, "WRITE_GROUP_FAILED"),
            (4, "WRITE_GROUP_FAILED"),
        ]
        assert [outcome.disposition for outcome in result.outcomes][2:4] == [Disposition.WRITE_FAILED] * 2
        assert store.query("customers", "email", "==", "c@b.com") == []
        assert len(store.query("customers", "email", "==", "e@b.com")) == 1
        _assert_accounted(result)

    def test_failed_group_ends_the_job_when_not_continuing(self, engine, store, operations):
        executor = ChunkedWriteExecutor(FlakyRecordStore(store, fail_groups={2}), operations)
        items = _customers("a@b.com", "b@b.com", "c@b.com", "d@b.com", "e@b.com")

        result = executor.execute(_request("create", "customers", items, chunk_size=2))

        assert result.success is False
        assert result.status is OperationStatus.FAILED
        assert (result.success_count, result.failure_count, result.not_attempted_count) == (2, 2, 1)
        assert result.errors[-1].index == -1
        assert result.errors[-1].code == "OPERATION_FAILED"
        assert operations.get_operation(result.operation_id).status is OperationStatus.FAILED
        _assert_accounted(result)

    def test_unexpected_error_fails_the_job(self, store, operations):
        executor = ChunkedWriteExecutor(BrokenIdStore(store), operations)

        result = executor.execute(_request("create", "customers", _customers("a@b.com", "b@b.com")))

        assert result.status is OperationStatus.FAILED
        assert len(result.errors) == 1
        assert (result.errors[0].index, result.errors[0].code) == (-1, "OPERATION_FAILED")
        assert "id allocator unavailable" in result.errors[0].message
        assert result.outcomes[0].disposition is Disposition.WRITE_FAILED
        _assert_accounted(result)


class TestCancellation:
    def test_cancel_stops_before_next_chunk(self, engine, store):
        operations = CancellingOperationStore(engine)
        executor = ChunkedWriteExecutor(store, operations)
        items = _customers("a@b.com", "b@b.com", "c@b.com", "d@b.com", "e@b.com")

        result = executor.execute(_request("create", "customers", items, chunk_size=2))

        assert result.status is OperationStatus.CANCELLED
        assert result.success is False
        assert result.success_count == 2
        assert result.not_attempted_count == 3
        assert operations.progress == [2]

        record = operations.get_operation(result.operation_id)
        assert record.status is OperationStatus.CANCELLED
        assert record.processed_items == 2
        assert store.query("customers", "email", "==", "c@b.com") == []

    def test_cancel_while_staging_drops_the_chunk(self, engine, store):
        operations = RecordingOperationStore(engine)
        staging_store = CancelDuringStagingStore(store, operations, cancel_on_allocation=3)
        executor = ChunkedWriteExecutor(staging_store, operations)
        items = _customers("a@b.com", "b@b.com", "c@b.com", "d@b.com", "e@b.com")

        result = executor.execute(_request("create", "customers", items, chunk_size=2))

        assert result.status is OperationStatus.CANCELLED
        assert result.success is False
        assert result.success_count == 2
        assert len(result.outcomes) == 2
        assert result.not_attempted_count == 3
        assert operations.progress == [2]
        _assert_accounted(result)

        record = operations.get_operation(result.operation_id)
        assert record.status is OperationStatus.CANCELLED
        assert record.processed_items == 2
        assert store.query("customers", "email", "==", "c@b.com") == []
        assert store.query("customers", "email", "==", "d@b.com") == []


class TestRequestChecks:
    def test_empty_items_rejected_before_any_record(self, executor, operations):
        with pytest.raises(InvalidRequestError):
            executor.execute(_request("create", "customers", []))

        assert operations.list_operations().total_count == 0

    def test_item_cap(self, store, operations):
        executor = ChunkedWriteExecutor(store, operations, max_items=3)

        with pytest.raises(InvalidRequestError) as exc_info:
            executor.execute(_request("create", "customers", _customers("a@b.com") * 4))

        assert "Maximum 3 items" in exc_info.value.message

    def test_chunk_size_limited_by_store(self, engine, operations):
        executor = ChunkedWriteExecutor(SqlRecordStore(engine, max_write_group_size=10), operations)

        with pytest.raises(InvalidRequestError):
            executor.execute(_request("create", "customers", _customers("a@b.com"), chunk_size=11))

    def test_import_is_not_a_direct_operation(self):
        with pytest.raises(UnsupportedOperationError):
            MutationRequest.build("import", "customers", [{}])

    def test_unknown_operation(self):
        with pytest.raises(UnsupportedOperationError):
            MutationRequest.build("archive", "customers", [{}])


def test_summary_and_persisted_record(executor, operations):
    items = _customers("a@b.com", "broken", "c@b.com", "d@b.com")

    result = executor.execute(_request("create", "customers", items, continue_on_error=True), user_id="u-42")

    summary = result.summary
    assert summary["operation"] == "create"
    assert summary["entity_type"] == "customers"
    assert summary["success_rate"] == 0.75
    assert summary["new_records"] == 3
    assert summary["execution_time_ms"] >= 0

    record = operations.get_operation(result.operation_id)
    assert record.operation_kind is OperationKind.CREATE
    assert record.entity_type is EntityType.CUSTOMERS
    assert record.created_by == "u-42"
    assert (record.success_count, record.failure_count) == (3, 1)
    assert [error.index for error in record.errors] == [2]
    assert record.summary == summary
    assert record.options["continue_on_error"] is True
