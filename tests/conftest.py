"""
Pytest configuration and fixtures for the bulk operations tests.

Every test gets its own in-memory SQLite database holding the records and
bulk_operations tables, so no external database is required.
"""

import os

# The app's lifespan must not try to reach the configured database.
os.environ.setdefault("SKIP_DB_INIT", "1")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from bulkops.api.dependencies import get_operation_store, get_record_store
from bulkops.db.store import SqlRecordStore
from bulkops.db.tables import create_tables
from bulkops.domain.bulk.executor import ChunkedWriteExecutor
from bulkops.domain.bulk.operations import OperationStore
from bulkops.domain.imports.service import ImportService


def make_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    create_tables(engine)
    return engine


@pytest.fixture
def engine():
    engine = make_engine()
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine):
    return SqlRecordStore(engine, max_write_group_size=500)


@pytest.fixture
def operations(engine):
    return OperationStore(engine)


@pytest.fixture
def executor(store, operations):
    return ChunkedWriteExecutor(store, operations)


@pytest.fixture
def import_service(executor):
    return ImportService(executor)


@pytest.fixture
def client(store, operations):
    from bulkops.main import app

    app.dependency_overrides[get_record_store] = lambda: store
    app.dependency_overrides[get_operation_store] = lambda: operations
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
