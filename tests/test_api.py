"""
HTTP-level tests for the bulk, import and operation routes.
"""

import asyncio
import json

import httpx
from sqlalchemy import create_engine

from bulkops.api.dependencies import get_operation_store, get_record_store
from bulkops.api.routers import imports as imports_router
from bulkops.db.store import SqlRecordStore
from bulkops.db.tables import create_tables
from bulkops.domain.bulk.operations import OperationStore
from tests.utils.bulk_helpers import SlowRecordStore, seed


def test_health_check(client):
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_execute_create(client, store):
    response = client.post(
        "/bulk/execute",
        json={
            "operation": "create",
            "entity_type": "customers",
            "items": [{"email": "a@b.com", "name": "Ada"}, {"email": "bad", "name": "Bob"}],
            "options": {"continue_on_error": True},
        },
        headers={"X-User-Id": "u-7"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["result"]["success_count"] == 1
    assert body["result"]["errors"][0]["index"] == 2
    assert len(store.query("customers", "email", "==", "a@b.com")) == 1


def test_execute_rejects_unknown_operation(client):
    response = client.post(
        "/bulk/execute",
        json={"operation": "archive", "entity_type": "customers", "items": [{"id": "x"}]},
    )

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "UNSUPPORTED_OPERATION"


def test_execute_rejects_unknown_entity(client):
    response = client.post(
        "/bulk/execute",
        json={"operation": "create", "entity_type": "invoices", "items": [{"name": "x"}]},
    )

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "UNSUPPORTED_ENTITY_TYPE"


def test_execute_rejects_empty_items(client):
    response = client.post(
        "/bulk/execute",
        json={"operation": "create", "entity_type": "customers", "items": []},
    )

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "INVALID_REQUEST"


def test_entity_route_with_ids_and_shared_data(client, store):
    ids = seed(store, "bookings", [{"status": "pending"}, {"status": "pending"}])

    response = client.post(
        "/bulk/bookings",
        json={"operation": "status_change", "ids": ids, "data": {"status": "cancelled"}, "options": {"chunk_size": 1}},
    )

    assert response.status_code == 200
    assert response.json()["result"]["success_count"] == 2
    assert all(store.get("bookings", booking_id)["status"] == "cancelled" for booking_id in ids)


def test_entity_route_needs_items_or_ids(client):
    response = client.post("/bulk/bookings", json={"operation": "delete"})

    assert response.status_code == 400


def test_import_upload(client, store):
    response = client.post(
        "/bulk/import/customers",
        files={"file": ("customers.csv", b"Email,Full Name\na@b.com,Ada\n", "text/csv")},
        data={
            "format": "csv",
            "options_json": json.dumps({"field_mapping": {"Email": "email", "Full Name": "name"}}),
        },
    )

    assert response.status_code == 200
    result = response.json()["result"]
    assert result["operation_id"].startswith("import_")
    assert result["success_count"] == 1
    assert store.query("customers", "email", "==", "a@b.com")[0]["name"] == "Ada"


def test_import_rejects_malformed_file(client):
    response = client.post(
        "/bulk/import/customers",
        files={"file": ("data.json", b'{"rows": []}', "application/json")},
        data={"format": "json"},
    )

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "MALFORMED_INPUT"


def test_import_rejects_unknown_format(client):
    response = client.post(
        "/bulk/import/customers",
        files={"file": ("data.xml", b"<rows/>", "application/xml")},
        data={"format": "xml"},
    )

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "UNSUPPORTED_FORMAT"


def test_import_rejects_bad_options(client):
    response = client.post(
        "/bulk/import/customers",
        files={"file": ("c.csv", b"email\na@b.com\n", "text/csv")},
        data={"format": "csv", "options_json": "{not json"},
    )

    assert response.status_code == 400


def test_import_size_limit(client, monkeypatch):
    monkeypatch.setattr(imports_router, "MAX_UPLOAD_BYTES", 10)

    response = client.post(
        "/bulk/import/customers",
        files={"file": ("big.csv", b"email,name\na@b.com,Ada\n", "text/csv")},
        data={"format": "csv"},
    )

    assert response.status_code == 413


def test_status_history_and_cancel(client):
    created = client.post(
        "/bulk/execute",
        json={"operation": "create", "entity_type": "services",
              "items": [{"name": "Cut", "price": 20, "duration": 30}]},
        headers={"X-User-Id": "u-9"},
    ).json()
    operation_id = created["result"]["operation_id"]

    status = client.get(f"/bulk/operations/{operation_id}/status")
    assert status.status_code == 200
    assert status.json()["operation"]["status"] == "completed"
    assert status.json()["operation"]["created_by"] == "u-9"

    history = client.get("/bulk/operations/history", params={"user_id": "u-9", "limit": 5})
    assert history.status_code == 200
    assert [op["id"] for op in history.json()["history"]["operations"]] == [operation_id]

    cancel = client.delete(f"/bulk/operations/{operation_id}")
    assert cancel.status_code == 200
    assert cancel.json()["success"] is False
    assert cancel.json()["result"]["message"] == "Operation already completed"


def test_unknown_operation_routes(client):
    assert client.get("/bulk/operations/bulk_0_missing/status").status_code == 404
    assert client.delete("/bulk/operations/bulk_0_missing").status_code == 404


def test_history_rejects_bad_paging(client):
    response = client.get("/bulk/operations/history", params={"page": 0})

    assert response.status_code == 400


def test_history_is_served_while_an_import_runs(tmp_path):
    from bulkops.main import app

    engine = create_engine(f"sqlite:///{tmp_path / 'bulk.db'}", connect_args={"check_same_thread": False})
    create_tables(engine)
    store = SlowRecordStore(SqlRecordStore(engine, max_write_group_size=500), delay=0.2)
    operations = OperationStore(engine)
    app.dependency_overrides[get_record_store] = lambda: store
    app.dependency_overrides[get_operation_store] = lambda: operations

    csv_bytes = b"email,name\na@b.com,Ada\nb@b.com,Bob\nc@b.com,Cy\nd@b.com,Di\n"

    async def scenario():
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
            upload = asyncio.create_task(
                http.post(
                    "/bulk/import/customers",
                    files={"file": ("customers.csv", csv_bytes, "text/csv")},
                    data={"format": "csv", "options_json": json.dumps({"chunk_size": 1})},
                )
            )
            await asyncio.sleep(0.3)
            history = await http.get("/bulk/operations/history")
            upload_done_first = upload.done()
            return history, upload_done_first, await upload

    try:
        history, upload_done_first, upload = asyncio.run(scenario())
    finally:
        app.dependency_overrides.clear()
        engine.dispose()

    assert upload_done_first is False
    assert history.status_code == 200
    assert history.json()["history"]["operations"][0]["status"] == "running"
    assert upload.status_code == 200
    assert upload.json()["result"]["success_count"] == 4
