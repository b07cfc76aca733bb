"""
Storage capability consumed by the entity store and the index query engine.

Backends expose four primitives: point read, conditional insert, conditional
update guarded by the record version, and a single-partition index query with
DynamoDB-style ``exclusive_start_key`` / ``last_evaluated_key`` paging.
"""
import copy
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Protocol, Tuple

from src.specs.common.keys import IndexDefinition, KeyCondition, StorageKey

VERSION_ATTR = "version"


class RecordNotFound(Exception):
    """The addressed record does not exist"""


class PreconditionFailed(Exception):
    """The stored version did not match the expected version"""


class RecordExists(Exception):
    """A conditional insert found an existing record"""


@dataclass
class QueryPage:
    items: List[Dict[str, Any]] = field(default_factory=list)
    last_evaluated_key: Optional[Dict[str, str]] = None


class StorageBackend(Protocol):
    def get(self, key: StorageKey) -> Optional[Dict[str, Any]]:
        ...

    def put_if_absent(self, key: StorageKey, record: Mapping[str, Any]) -> Dict[str, Any]:
        ...

    def conditional_update(
        self, key: StorageKey, patch: Mapping[str, Any], expected_version: int
    ) -> Dict[str, Any]:
        """Apply ``patch`` only if the stored version equals ``expected_version``.

        Raises RecordNotFound when the record is absent and PreconditionFailed
        when the versions differ. Returns the stored record after the write.
        """
        ...

    def query(
        self,
        index: IndexDefinition,
        condition: KeyCondition,
        limit: int,
        exclusive_start_key: Optional[Dict[str, str]] = None,
    ) -> QueryPage:
        ...


def index_position(index: IndexDefinition, record: Mapping[str, Any]) -> Dict[str, str]:
    """Position of ``record`` inside ``index``, usable as an exclusive start key."""
    return {
        index.partition_attr: record[index.partition_attr],
        index.sort_attr: record[index.sort_attr],
    }


class MemoryStorageBackend:
    """In-process backend for local runs and tests.

    A single lock makes every primitive atomic, mirroring the per-item
    compare-and-set a real store provides.
    """

    def __init__(self) -> None:
        self._items: Dict[Tuple[str, str], Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: StorageKey) -> Optional[Dict[str, Any]]:
        with self._lock:
            record = self._items.get((key.partition, key.sort))
            return copy.deepcopy(record) if record is not None else None

    def put_if_absent(self, key: StorageKey, record: Mapping[str, Any]) -> Dict[str, Any]:
        with self._lock:
            slot = (key.partition, key.sort)
            if slot in self._items:
                raise RecordExists(key.sort)
            self._items[slot] = copy.deepcopy(dict(record))
            return copy.deepcopy(self._items[slot])

    def conditional_update(
        self, key: StorageKey, patch: Mapping[str, Any], expected_version: int
    ) -> Dict[str, Any]:
        with self._lock:
            slot = (key.partition, key.sort)
            current = self._items.get(slot)
            if current is None:
                raise RecordNotFound(key.sort)
            if current.get(VERSION_ATTR) != expected_version:
                raise PreconditionFailed(key.sort)
            updated = copy.deepcopy(current)
            updated.update(copy.deepcopy(dict(patch)))
            self._items[slot] = updated
            return copy.deepcopy(updated)

    def query(
        self,
        index: IndexDefinition,
        condition: KeyCondition,
        limit: int,
        exclusive_start_key: Optional[Dict[str, str]] = None,
    ) -> QueryPage:
        with self._lock:
            matches = [
                copy.deepcopy(record)
                for (partition, _), record in self._items.items()
                if partition == condition.tenant_id
                and record.get(index.partition_attr) == condition.value
                and index.sort_attr in record
            ]
        matches.sort(key=lambda r: r[index.sort_attr], reverse=index.descending)
        if exclusive_start_key:
            start = exclusive_start_key[index.sort_attr]
            if index.descending:
                matches = [r for r in matches if r[index.sort_attr] < start]
            else:
                matches = [r for r in matches if r[index.sort_attr] > start]
        page = matches[:limit]
        last_key = index_position(index, page[-1]) if page and len(matches) > limit else None
        return QueryPage(items=page, last_evaluated_key=last_key)
