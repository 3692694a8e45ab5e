"""
Record Store Adapter.

The bulk engine only talks to persisted entities through the ``RecordStore``
protocol: point reads, single-field queries, id allocation and atomic write
groups. ``SqlRecordStore`` implements it on top of a SQLAlchemy engine, keeping
each entity as a JSON document keyed by ``(collection, id)``.
"""
from __future__ import annotations

import logging
import operator
import secrets
import string
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Protocol

from sqlalchemy import and_, delete, insert, select, update
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from bulkops.core.exceptions import WriteGroupError
from bulkops.db.tables import records_table

logger = logging.getLogger(__name__)

_ID_ALPHABET = string.ascii_letters + string.digits
_ID_LENGTH = 20

QUERY_OPERATORS: Dict[str, Callable[[Any, Any], Any]] = {
    "==": operator.eq,
    "!=": operator.ne,
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
}


class WriteAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class StagedWrite:
    action: WriteAction
    collection: str
    record_id: str
    data: Dict[str, Any] = field(default_factory=dict)


class WriteGroup(Protocol):
    def stage(self, action: WriteAction, collection: str, record_id: str,
              data: Optional[Dict[str, Any]] = None) -> None: ...

    def commit(self) -> None: ...

    def __len__(self) -> int: ...


class RecordStore(Protocol):
    max_write_group_size: int

    def get(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]: ...

    def query(self, collection: str, field: str, op: str, value: Any,
              limit: Optional[int] = None) -> List[Dict[str, Any]]: ...

    def open_write_group(self) -> WriteGroup: ...

    def allocate_id(self, collection: str) -> str: ...


def generate_record_id() -> str:
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(_ID_LENGTH))


def _row_to_record(row: Any) -> Dict[str, Any]:
    return {"id": row["id"], **(row["data"] or {})}


def _json_field(field_name: str, value: Any):
    """Typed accessor for a top-level document field, chosen from the comparison value."""
    element = records_table.c.data[field_name]
    if isinstance(value, bool):
        return element.as_boolean()
    if isinstance(value, int):
        return element.as_integer()
    if isinstance(value, float):
        return element.as_float()
    return element.as_string()


class SqlWriteGroup:
    """Stages writes in memory and applies them in a single transaction on commit."""

    def __init__(self, engine: Engine, max_size: int):
        self._engine = engine
        self._max_size = max_size
        self._staged: List[StagedWrite] = []
        self._committed = False

    def __len__(self) -> int:
        return len(self._staged)

    def stage(self, action: WriteAction, collection: str, record_id: str,
              data: Optional[Dict[str, Any]] = None) -> None:
        if self._committed:
            raise WriteGroupError("Write group has already been committed")
        if len(self._staged) >= self._max_size:
            raise WriteGroupError(
                f"Write group is limited to {self._max_size} items"
            )
        self._staged.append(
            StagedWrite(WriteAction(action), collection, record_id, dict(data or {}))
        )

    def commit(self) -> None:
        if self._committed:
            raise WriteGroupError("Write group has already been committed")
        if not self._staged:
            self._committed = True
            return

        now = datetime.now(timezone.utc)
        try:
            with self._engine.begin() as conn:
                for write in self._staged:
                    self._apply(conn, write, now)
        except SQLAlchemyError as exc:
            logger.error("Write group of %d items rolled back: %s", len(self._staged), exc)
            raise WriteGroupError(f"Write group commit failed: {exc}") from exc
        self._committed = True

    def _apply(self, conn: Connection, write: StagedWrite, now: datetime) -> None:
        key = and_(
            records_table.c.collection == write.collection,
            records_table.c.id == write.record_id,
        )

        if write.action is WriteAction.CREATE:
            conn.execute(
                insert(records_table).values(
                    collection=write.collection,
                    id=write.record_id,
                    data=write.data,
                    created_at=now,
                    updated_at=now,
                )
            )
            return

        existing = conn.execute(select(records_table.c.data).where(key)).first()
        if existing is None:
            raise WriteGroupError(
                f"{write.collection} document {write.record_id} does not exist"
            )

        if write.action is WriteAction.UPDATE:
            merged = {**(existing[0] or {}), **write.data}
            conn.execute(update(records_table).where(key).values(data=merged, updated_at=now))
        else:
            conn.execute(delete(records_table).where(key))


class SqlRecordStore:
    """``RecordStore`` backed by the ``records`` table."""

    def __init__(self, engine: Engine, max_write_group_size: int = 500):
        self.engine = engine
        self.max_write_group_size = max_write_group_size

    def get(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        stmt = select(records_table).where(
            records_table.c.collection == collection,
            records_table.c.id == str(record_id),
        )
        with self.engine.connect() as conn:
            row = conn.execute(stmt).mappings().first()
        return _row_to_record(row) if row else None

    def query(self, collection: str, field: str, op: str, value: Any,
              limit: Optional[int] = None) -> List[Dict[str, Any]]:
        comparator = QUERY_OPERATORS.get(op)
        if comparator is None:
            raise ValueError(f"Unsupported query operator: {op}")

        stmt = (
            select(records_table)
            .where(records_table.c.collection == collection)
            .where(comparator(_json_field(field, value), value))
            .order_by(records_table.c.created_at, records_table.c.id)
        )
        if limit is not None:
            stmt = stmt.limit(limit)

        with self.engine.connect() as conn:
            rows = conn.execute(stmt).mappings().all()
        return [_row_to_record(row) for row in rows]

    def open_write_group(self) -> SqlWriteGroup:
        return SqlWriteGroup(self.engine, self.max_write_group_size)

    def allocate_id(self, collection: str) -> str:
        return generate_record_id()
