"""
SQLAlchemy Core table definitions backing the record store and the
bulk operation status records.
"""
from sqlalchemy import JSON, Column, DateTime, Index, Integer, MetaData, String, Table
from sqlalchemy.engine import Engine

metadata = MetaData()

# Every entity collection (customers, bookings, ...) lives in one document table.
records_table = Table(
    "records",
    metadata,
    Column("collection", String(64), primary_key=True),
    Column("id", String(64), primary_key=True),
    Column("data", JSON, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
)

bulk_operations_table = Table(
    "bulk_operations",
    metadata,
    Column("id", String(64), primary_key=True),
    Column("status", String(32), nullable=False),
    Column("operation_kind", String(32), nullable=False),
    Column("entity_type", String(32), nullable=False),
    Column("total_items", Integer, nullable=False, default=0),
    Column("processed_items", Integer, nullable=False, default=0),
    Column("success_count", Integer, nullable=False, default=0),
    Column("failure_count", Integer, nullable=False, default=0),
    Column("skipped_count", Integer, nullable=False, default=0),
    Column("errors", JSON, nullable=False),
    Column("warnings", JSON, nullable=False),
    Column("summary", JSON),
    Column("options", JSON),
    Column("created_by", String(255)),
    Column("start_time", DateTime(timezone=True), nullable=False),
    Column("end_time", DateTime(timezone=True)),
    Index("idx_bulk_operations_start_time", "start_time"),
    Index("idx_bulk_operations_status", "status"),
)


def create_tables(engine: Engine) -> None:
    """Create the record store and operation tables if they don't exist."""
    metadata.create_all(engine)
