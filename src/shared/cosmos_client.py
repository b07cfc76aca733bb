# Cosmos DB implementation of the storage capability

import logging
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, TypeVar

import backoff
from azure.core import MatchConditions
from azure.core.exceptions import AzureError
from azure.cosmos import CosmosClient, exceptions
from azure.cosmos.container import ContainerProxy

from src.shared.logging_utils import error as log_error, warning as log_warning
from src.shared.storage import (
    VERSION_ATTR,
    PreconditionFailed,
    QueryPage,
    RecordExists,
    RecordNotFound,
    index_position,
)
from src.specs.common.errors import ConfigurationError, ExternalServiceError
from src.specs.common.keys import IndexDefinition, KeyCondition, StorageKey

T = TypeVar("T")

# Cosmos system properties that must not leak into domain records
_SYSTEM_PREFIX = "_"


class RetryableCosmosError(Exception):
    """Indicates a Cosmos DB operation that should be retried"""
    pass


def _strip_system(item: Mapping[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in item.items() if not k.startswith(_SYSTEM_PREFIX)}


class CosmosStorageBackend:
    """Single-container backend partitioned on ``/tenantId``.

    Item ``id`` is the encoded entity sort key, so a point read needs both the
    tenant (partition) and the sort key, and every query is pinned to one
    partition.
    """

    # Max retries and timeout configuration
    MAX_RETRIES = 3
    OPERATION_TIMEOUT = 10.0    # 10s
    RETRYABLE_STATUS = (429, 503)  # Too Many Requests or Service Unavailable

    def __init__(self, container: ContainerProxy):
        self._container = container

    @classmethod
    def from_settings(cls, settings) -> "CosmosStorageBackend":
        if not settings.cosmos_connection_string or not settings.cosmos_database:
            raise ConfigurationError("Missing Cosmos DB connection string or database name")
        client = CosmosClient.from_connection_string(
            settings.cosmos_connection_string,
            retry_total=cls.MAX_RETRIES
        )
        database = client.get_database_client(settings.cosmos_database)
        return cls(database.get_container_client(settings.cosmos_container))

    def get(self, key: StorageKey) -> Optional[Dict[str, Any]]:
        def read() -> Optional[Dict[str, Any]]:
            try:
                return _strip_system(self._container.read_item(item=key.sort, partition_key=key.partition))
            except exceptions.CosmosResourceNotFoundError:
                return None
        return self._call("read_item", key.partition, read, itemId=key.sort)

    def put_if_absent(self, key: StorageKey, record: Mapping[str, Any]) -> Dict[str, Any]:
        body = dict(record)
        body["id"] = key.sort

        def create() -> Dict[str, Any]:
            try:
                return _strip_system(self._container.create_item(body=body))
            except exceptions.CosmosResourceExistsError as exc:
                raise RecordExists(key.sort) from exc
        return self._call("create_item", key.partition, create, itemId=key.sort)

    def conditional_update(
        self, key: StorageKey, patch: Mapping[str, Any], expected_version: int
    ) -> Dict[str, Any]:
        def replace() -> Dict[str, Any]:
            try:
                current = self._container.read_item(item=key.sort, partition_key=key.partition)
            except exceptions.CosmosResourceNotFoundError as exc:
                raise RecordNotFound(key.sort) from exc
            if current.get(VERSION_ATTR) != expected_version:
                raise PreconditionFailed(key.sort)
            body = _strip_system(current)
            body.update(patch)
            # The etag check closes the gap between the read and the replace
            try:
                stored = self._container.replace_item(
                    item=key.sort,
                    body=body,
                    etag=current.get("_etag"),
                    match_condition=MatchConditions.IfNotModified,
                )
            except exceptions.CosmosAccessConditionFailedError as exc:
                raise PreconditionFailed(key.sort) from exc
            except exceptions.CosmosResourceNotFoundError as exc:
                raise RecordNotFound(key.sort) from exc
            return _strip_system(stored)
        return self._call("replace_item", key.partition, replace, itemId=key.sort)

    def query(
        self,
        index: IndexDefinition,
        condition: KeyCondition,
        limit: int,
        exclusive_start_key: Optional[Dict[str, str]] = None,
    ) -> QueryPage:
        # Attribute names come from IndexDefinition constants, values are parameters
        clauses = [f"c.{index.partition_attr} = @pk"]
        parameters: List[Dict[str, Any]] = [
            {"name": "@pk", "value": condition.value},
            {"name": "@limit", "value": limit + 1},
        ]
        if exclusive_start_key:
            op = "<" if index.descending else ">"
            clauses.append(f"c.{index.sort_attr} {op} @start")
            parameters.append({"name": "@start", "value": exclusive_start_key[index.sort_attr]})
        order = "DESC" if index.descending else "ASC"
        query = (
            f"SELECT * FROM c WHERE {' AND '.join(clauses)} "
            f"ORDER BY c.{index.sort_attr} {order} OFFSET 0 LIMIT @limit"
        )

        def run() -> QueryPage:
            items = [
                _strip_system(item)
                for item in self._container.query_items(
                    query=query,
                    parameters=parameters,
                    partition_key=condition.tenant_id,
                )
            ]
            page = items[:limit]
            last_key = index_position(index, page[-1]) if page and len(items) > limit else None
            return QueryPage(items=page, last_evaluated_key=last_key)
        return self._call("query_items", condition.tenant_id, run, index=index.name)

    def _call(self, operation: str, tenant_id: str, fn: Callable[[], T], **context: Any) -> T:
        start_time = time.time()
        try:
            result = self._with_retry(fn)
            logging.debug(f"Cosmos {operation} completed in {time.time() - start_time:.2f}s")
            return result
        except RetryableCosmosError as exc:
            log_error(tenant_id, "cosmos:retries_exhausted", operation=operation, error=str(exc), **context)
            raise ExternalServiceError("Storage backend is temporarily unavailable", retryable=True) from exc
        except exceptions.CosmosHttpResponseError as exc:
            log_error(
                tenant_id,
                "cosmos:request_failed",
                operation=operation,
                statusCode=exc.status_code,
                error=str(exc),
                **context,
            )
            raise ExternalServiceError(
                "Storage backend request failed",
                retryable=exc.status_code in (408, 449),
            ) from exc
        except AzureError as exc:
            log_error(tenant_id, "cosmos:transport_failed", operation=operation, error=str(exc), **context)
            raise ExternalServiceError("Storage backend is temporarily unavailable", retryable=True) from exc

    @backoff.on_exception(
        backoff.expo,
        RetryableCosmosError,
        max_tries=MAX_RETRIES,
        max_time=OPERATION_TIMEOUT
    )
    def _with_retry(self, fn: Callable[[], T]) -> T:
        try:
            return fn()
        except exceptions.CosmosHttpResponseError as e:
            if e.status_code in self.RETRYABLE_STATUS:
                log_warning(None, "cosmos:retryable_status", statusCode=e.status_code)
                raise RetryableCosmosError(f"Retriable Cosmos error: {str(e)}") from e
            raise
