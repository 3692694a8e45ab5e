"""
Duplicate detection against existing documents.

Rows are matched on a single field (``email`` for customers, ``name`` for
services and equipment unless the caller overrides it). The deduplicator also
remembers what the current chunk has staged but not yet committed, so a row
matches an earlier row of the same chunk exactly as it would after a commit.
"""
import logging
from typing import Any, Dict, Optional, Set, Tuple

from bulkops.db.store import RecordStore
from bulkops.domain.bulk.models import DEFAULT_MATCHING_FIELDS, EntityType
from bulkops.utils.serialization import is_absent

logger = logging.getLogger(__name__)


def resolve_matching_field(entity_type: EntityType, matching_field: Optional[str] = None) -> Optional[str]:
    """Return the caller's matching field, else the entity convention (None for bookings)."""
    if matching_field and matching_field.strip():
        return matching_field.strip()
    return DEFAULT_MATCHING_FIELDS.get(entity_type)


def _blank(value: Any) -> bool:
    return is_absent(value) or (isinstance(value, str) and not value.strip())


class Deduplicator:
    def __init__(self, store: RecordStore):
        self.store = store
        self._pending_creates: Dict[Tuple[str, str, str], Dict[str, Any]] = {}
        self._pending_deletes: Set[Tuple[str, str]] = set()

    def find(
        self,
        record: Dict[str, Any],
        entity_type: EntityType,
        matching_field: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """Look up an existing document whose ``matching_field`` equals the record's value."""
        field = resolve_matching_field(entity_type, matching_field)
        if not field:
            return None

        value = record.get(field)
        if _blank(value):
            return None

        collection = entity_type.collection
        pending = self._pending_creates.get((collection, field, repr(value)))
        if pending is not None:
            return pending.copy()

        limit = None if self._pending_deletes else 1
        for match in self.store.query(collection, field, "==", value, limit=limit):
            if (collection, match["id"]) not in self._pending_deletes:
                logger.debug("Row matched existing %s %s on %s", collection, match["id"], field)
                return match
        return None

    def get_existing(self, entity_type: EntityType, record_id: str) -> Optional[Dict[str, Any]]:
        """Point lookup by id, honouring deletes staged in the current chunk."""
        collection = entity_type.collection
        if (collection, record_id) in self._pending_deletes:
            return None
        for (pending_collection, _, _), pending in self._pending_creates.items():
            if pending_collection == collection and pending["id"] == record_id:
                return pending.copy()
        return self.store.get(collection, record_id)

    def remember_create(
        self,
        entity_type: EntityType,
        record_id: str,
        data: Dict[str, Any],
        matching_field: Optional[str] = None,
    ) -> None:
        field = resolve_matching_field(entity_type, matching_field)
        collection = entity_type.collection
        entry = {**data, "id": record_id}
        if field and not _blank(data.get(field)):
            self._pending_creates[(collection, field, repr(data[field]))] = entry
        else:
            self._pending_creates[(collection, "id", record_id)] = entry

    def remember_delete(self, entity_type: EntityType, record_id: str) -> None:
        self._pending_deletes.add((entity_type.collection, record_id))

    def clear_pending(self) -> None:
        """Forget staged writes once their write group has committed or failed."""
        self._pending_creates.clear()
        self._pending_deletes.clear()
