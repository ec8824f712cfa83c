"""
In-memory record store - authoritative state for all collections.

Collections are created on first write and hold schemaless records keyed by
an opaque string id. Every value crossing the store boundary is deep-copied,
so callers never hold a reference into stored state.

System fields:
- _id: assigned on creation, immutable
- _ownerId: set once at creation, preserved across replace/merge
- _createdOn: creation timestamp (ms)
- _updatedOn: stamped on every replace/merge
"""

from __future__ import annotations

import threading
import time
import uuid
from collections.abc import Callable, Mapping
from typing import Any, cast

from docstore.errors import NotFoundError
from docstore.logging import get_logger
from docstore.values import JsonValue, Record, copy_record, deep_copy

logger = get_logger("Store")

SYSTEM_FIELDS: tuple[str, ...] = ("_id", "_createdOn", "_updatedOn", "_ownerId")


def now_ms() -> int:
    """Current server time in milliseconds since the epoch."""
    return int(time.time() * 1000)


def _strip_system_fields(payload: Mapping[str, Any]) -> Record:
    return {k: deep_copy(v) for k, v in payload.items() if k not in SYSTEM_FIELDS}


def _system_fields_of(record: Mapping[str, Any]) -> Record:
    return {k: deep_copy(record[k]) for k in SYSTEM_FIELDS if k in record}


def _values_match(expected: Any, actual: Any) -> bool:
    if isinstance(expected, str) and isinstance(actual, str):
        return expected.casefold() == actual.casefold()
    return bool(expected == actual)


class RecordStore:
    """
    Mutex-guarded map of collections to records.

    Each public operation runs entirely under the store lock, so concurrent
    callers never observe a partially-applied mutation.
    """

    def __init__(
        self,
        seed_data: Mapping[str, Mapping[str, Any]] | None = None,
        id_factory: Callable[[], str] | None = None,
        clock: Callable[[], int] | None = None,
    ):
        """
        Initialize the store.

        Args:
            seed_data: Collection name -> {record id -> record}
            id_factory: Generator for new record ids (default: uuid4)
            clock: Millisecond clock used for timestamps
        """
        self._lock = threading.RLock()
        self._collections: dict[str, dict[str, Record]] = {}
        self._id_factory = id_factory or (lambda: str(uuid.uuid4()))
        self._clock = clock or now_ms

        for collection_name, records in (seed_data or {}).items():
            collection: dict[str, Record] = {}
            for record_id, record in records.items():
                collection[str(record_id)] = copy_record(record)
            self._collections[collection_name] = collection

    # =========================================================================
    # Internal helpers
    # =========================================================================

    def _collection(self, name: str) -> dict[str, Record]:
        collection = self._collections.get(name)
        if collection is None:
            raise NotFoundError(f"Collection does not exist: {name}")
        return collection

    def _entry(self, collection_name: str, record_id: str) -> Record:
        collection = self._collection(collection_name)
        if record_id not in collection:
            raise NotFoundError(f"Entry does not exist: {record_id}")
        return collection[record_id]

    @staticmethod
    def _annotated(record_id: str, record: Record) -> Record:
        result = copy_record(record)
        result["_id"] = record_id
        return result

    def _next_update_stamp(self, existing: Record) -> int:
        stamp = self._clock()
        previous = existing.get("_updatedOn")
        if isinstance(previous, int) and not isinstance(previous, bool) and stamp <= previous:
            stamp = previous + 1
        return stamp

    # =========================================================================
    # Read operations
    # =========================================================================

    def list_collections(self) -> list[str]:
        """Names of all collections, in creation order."""
        with self._lock:
            return list(self._collections)

    def has_collection(self, name: str) -> bool:
        with self._lock:
            return name in self._collections

    def get(self, collection: str, record_id: str | None = None) -> Record | list[Record]:
        """
        Get one record or every record in a collection.

        Args:
            collection: Collection name
            record_id: Record id; when omitted, all records are returned

        Returns:
            An independent copy of the record(s), each annotated with _id

        Raises:
            NotFoundError: If the collection or record does not exist
        """
        with self._lock:
            if record_id is None:
                return [
                    self._annotated(key, value)
                    for key, value in self._collection(collection).items()
                ]
            return self._annotated(record_id, self._entry(collection, record_id))

    def get_one(self, collection: str, record_id: str) -> Record:
        """Typed variant of :meth:`get` for a single record."""
        return cast(Record, self.get(collection, record_id))

    def get_all(self, collection: str) -> list[Record]:
        """Typed variant of :meth:`get` for a whole collection."""
        return cast(list[Record], self.get(collection))

    def query_exact(self, collection: str, field_equals: Mapping[str, JsonValue]) -> list[Record]:
        """
        Linear scan for records whose fields equal all the given values.

        String/string comparisons are case-insensitive. A record missing one
        of the queried fields does not match.

        Raises:
            NotFoundError: If the collection does not exist
        """
        with self._lock:
            result: list[Record] = []
            for key, entry in self._collection(collection).items():
                candidate = {**entry, "_id": key}
                if all(
                    name in candidate and _values_match(expected, candidate[name])
                    for name, expected in field_equals.items()
                ):
                    result.append(self._annotated(key, entry))
            return result

    # =========================================================================
    # Write operations
    # =========================================================================

    def add(self, collection: str, payload: Mapping[str, Any]) -> Record:
        """
        Create a record with a fresh id.

        System fields in the payload are dropped, except a supplied _ownerId.
        The collection is created if it does not exist yet.

        Raises:
            ValueError: If the payload is not a JSON object
        """
        if not isinstance(payload, Mapping):
            raise ValueError("Record must be a JSON object")

        record: Record = {}
        owner_id = payload.get("_ownerId")
        if owner_id is not None:
            record["_ownerId"] = deep_copy(owner_id)
        record.update(_strip_system_fields(payload))

        with self._lock:
            target = self._collections.setdefault(collection, {})
            record_id = self._id_factory()
            while record_id in target:
                record_id = self._id_factory()

            record["_createdOn"] = self._clock()
            target[record_id] = record
            logger.debug("Added %s/%s", collection, record_id)
            return self._annotated(record_id, record)

    def set(self, collection: str, record_id: str, payload: Mapping[str, Any]) -> Record:
        """
        Replace a record.

        Only the system fields of the existing record survive; every other
        existing field is discarded in favour of the payload.

        Raises:
            NotFoundError: If the collection or record does not exist
            ValueError: If the payload is not a JSON object
        """
        if not isinstance(payload, Mapping):
            raise ValueError("Record must be a JSON object")

        replacement = _strip_system_fields(payload)
        with self._lock:
            existing = self._entry(collection, record_id)
            record = {**replacement, **_system_fields_of(existing)}
            record["_updatedOn"] = self._next_update_stamp(existing)
            self._collections[collection][record_id] = record
            logger.debug("Replaced %s/%s", collection, record_id)
            return self._annotated(record_id, record)

    def merge(self, collection: str, record_id: str, payload: Mapping[str, Any]) -> Record:
        """
        Shallow-merge payload fields onto an existing record.

        Raises:
            NotFoundError: If the collection or record does not exist
            ValueError: If the payload is not a JSON object
        """
        if not isinstance(payload, Mapping):
            raise ValueError("Record must be a JSON object")

        changes = _strip_system_fields(payload)
        with self._lock:
            existing = self._entry(collection, record_id)
            record = copy_record(existing)
            record.update(changes)
            record["_updatedOn"] = self._next_update_stamp(existing)
            self._collections[collection][record_id] = record
            logger.debug("Merged %s/%s", collection, record_id)
            return self._annotated(record_id, record)

    def delete(self, collection: str, record_id: str) -> Record:
        """
        Remove a record.

        Returns:
            {"_deletedOn": <server time>}

        Raises:
            NotFoundError: If the collection or record does not exist
        """
        with self._lock:
            self._entry(collection, record_id)
            del self._collections[collection][record_id]
            logger.debug("Deleted %s/%s", collection, record_id)
            return {"_deletedOn": self._clock()}
