"""
Generic tenant-scoped entity store with optimistic concurrency.

Every mutation is one conditional write against the stored ``version``: the
write succeeds only if the record exists and its version equals the caller's
expected version, and it bumps the version by exactly one. A mismatch is
reported as ConflictError and is never retried here.
"""
from typing import Any, Callable, Dict, Generic, Mapping, Type, TypeVar

from pydantic import BaseModel
from pydantic_core import to_jsonable_python

from src.shared.logging_utils import info as log_info, warning as log_warning
from src.shared.storage import (
    VERSION_ATTR,
    PreconditionFailed,
    RecordExists,
    RecordNotFound,
    StorageBackend,
)
from src.specs.common.datetime_utils import utc_now
from src.specs.common.enums import EntityKind
from src.specs.common.errors import ConflictError, NotFoundError, ValidationError
from src.specs.common.keys import (
    STORAGE_ATTRIBUTES,
    EntityKey,
    campaign_index_attributes,
    campaign_status_attributes,
    post_index_attributes,
)
from src.specs.common.validation import validate
from src.specs.models.domain import Campaign, SocialPost

E = TypeVar("E", bound=BaseModel)

INITIAL_VERSION = 1

PROTECTED_FIELDS = frozenset(
    {VERSION_ATTR, "tenantId", "campaignId", "postId", "createdAt", "updatedAt"}
) | STORAGE_ATTRIBUTES

# Written only by operations, never accepted from a create payload
SERVER_FIELDS = frozenset(
    {"status", "callbackId", "lastError", "completedAt", "deletedAt", "approval", "planVersion"}
)


def to_storage(value: Any) -> Any:
    """Plain JSON-compatible form of a patch value (models, enums, lists)."""
    return to_jsonable_python(value)


def strip_storage_attributes(record: Mapping[str, Any]) -> Dict[str, Any]:
    return {
        k: v for k, v in record.items()
        if k not in STORAGE_ATTRIBUTES and not k.startswith("_")
    }


class CampaignIndexer:
    kind = EntityKind.CAMPAIGN

    def on_create(self, key: EntityKey, record: Mapping[str, Any]) -> Dict[str, Any]:
        return campaign_index_attributes(key, record["createdAt"], record["status"])

    def on_update(self, key: EntityKey, patch: Mapping[str, Any]) -> Dict[str, Any]:
        if "status" in patch:
            return campaign_status_attributes(key, patch["status"])
        return {}


class PostIndexer:
    kind = EntityKind.SOCIAL_POST

    def on_create(self, key: EntityKey, record: Mapping[str, Any]) -> Dict[str, Any]:
        return post_index_attributes(key, record.get("scheduledAt") or record["createdAt"])

    def on_update(self, key: EntityKey, patch: Mapping[str, Any]) -> Dict[str, Any]:
        return {}


class EntityStore(Generic[E]):
    def __init__(
        self,
        backend: StorageBackend,
        model: Type[E],
        indexer,
        clock: Callable[[], str] = utc_now,
    ):
        self._backend = backend
        self._model = model
        self._indexer = indexer
        self._clock = clock

    def load(self, record: Mapping[str, Any]) -> E:
        return self._model.model_validate(strip_storage_attributes(record))

    def _check_kind(self, key: EntityKey) -> None:
        if key.kind != self._indexer.kind:
            raise ValueError(f"{key.kind.value} key passed to {self._indexer.kind.value} store")

    def get(self, key: EntityKey) -> E:
        self._check_kind(key)
        record = self._backend.get(key.encode())
        if record is None:
            raise NotFoundError(f"{key.describe()} not found")
        return self.load(record)

    def create(self, key: EntityKey, fields: Mapping[str, Any]) -> E:
        """Insert a new entity at version 1; fails with ConflictError if the key exists."""
        self._check_kind(key)
        now = self._clock()
        record = {k: to_storage(v) for k, v in fields.items() if k not in PROTECTED_FIELDS}
        record.update(key.identity())
        record.update({VERSION_ATTR: INITIAL_VERSION, "createdAt": now, "updatedAt": now})
        entity = validate(self._model, record).unwrap(f"Invalid {self._indexer.kind.value} document")
        record = entity.model_dump(mode="json")
        record.update(self._indexer.on_create(key, record))
        try:
            stored = self._backend.put_if_absent(key.encode(), record)
        except RecordExists:
            log_warning(key.tenant_id, "store:create_conflict", key=key.encode().sort)
            raise ConflictError(f"{key.describe()} already exists")
        log_info(key.tenant_id, "store:created", key=key.encode().sort)
        return self.load(stored)

    def update(self, key: EntityKey, patch: Mapping[str, Any], expected_version: int) -> E:
        """Apply ``patch`` in one conditional write guarded by ``expected_version``.

        Keys present in ``patch`` are written (``None`` clears the field); keys
        absent from it are left untouched. The patched document is validated
        against the model before the write, so an invalid patch changes nothing.
        """
        self._check_kind(key)
        blocked = sorted(set(patch) & PROTECTED_FIELDS)
        if blocked:
            raise ValidationError(
                "Read-only fields cannot be updated",
                [{"field": name, "reason": "read-only"} for name in blocked],
            )
        if isinstance(expected_version, bool) or not isinstance(expected_version, int) or expected_version < 0:
            raise ValidationError.for_field("expectedVersion", "must be a non-negative integer")

        body = {k: to_storage(v) for k, v in patch.items()}
        body[VERSION_ATTR] = expected_version + 1
        body["updatedAt"] = self._clock()

        current = self._backend.get(key.encode())
        if current is None:
            log_info(key.tenant_id, "store:update_missing", key=key.encode().sort)
            raise NotFoundError(f"{key.describe()} not found")
        if current.get(VERSION_ATTR) != expected_version:
            raise self._conflict(key, expected_version)
        merged = strip_storage_attributes(current)
        merged.update(body)
        validate(self._model, merged).unwrap(f"Invalid {self._indexer.kind.value} update")

        body.update(self._indexer.on_update(key, body))
        try:
            stored = self._backend.conditional_update(key.encode(), body, expected_version)
        except RecordNotFound:
            log_info(key.tenant_id, "store:update_missing", key=key.encode().sort)
            raise NotFoundError(f"{key.describe()} not found")
        except PreconditionFailed:
            raise self._conflict(key, expected_version)
        log_info(
            key.tenant_id,
            "store:updated",
            key=key.encode().sort,
            version=stored.get(VERSION_ATTR),
            fields=sorted(patch),
        )
        return self.load(stored)

    def _conflict(self, key: EntityKey, expected_version: int) -> ConflictError:
        log_warning(
            key.tenant_id,
            "store:conflict",
            key=key.encode().sort,
            expectedVersion=expected_version,
        )
        return ConflictError(
            f"{key.describe()} was modified by another process",
            details={"expectedVersion": expected_version},
        )


def campaign_store(backend: StorageBackend, clock: Callable[[], str] = utc_now) -> EntityStore[Campaign]:
    return EntityStore(backend, Campaign, CampaignIndexer(), clock)


def post_store(backend: StorageBackend, clock: Callable[[], str] = utc_now) -> EntityStore[SocialPost]:
    return EntityStore(backend, SocialPost, PostIndexer(), clock)
