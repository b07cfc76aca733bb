from unittest.mock import MagicMock

import pytest
from azure.core import MatchConditions
from azure.cosmos import exceptions

from src.shared.config import Settings
from src.shared.cosmos_client import CosmosStorageBackend
from src.shared.storage import PreconditionFailed, RecordExists, RecordNotFound
from src.specs.common.errors import ConfigurationError, ExternalServiceError
from src.specs.common.keys import RECENCY_INDEX, EntityKey, recency_condition

KEY = EntityKey.campaign("tenant-a", "C1").encode()


def stored(version=1, **fields):
    item = {"id": KEY.sort, "tenantId": "tenant-a", "campaignId": "C1", "version": version, "_etag": '"e1"', "_ts": 1}
    item.update(fields)
    return item


@pytest.fixture
def container():
    return MagicMock()


@pytest.fixture
def cosmos(container):
    return CosmosStorageBackend(container)


class TestReads:
    def test_get_strips_system_properties(self, cosmos, container):
        container.read_item.return_value = stored()
        record = cosmos.get(KEY)
        container.read_item.assert_called_once_with(item="CAMPAIGN#C1", partition_key="tenant-a")
        assert "_etag" not in record
        assert record["version"] == 1

    def test_missing_item_is_none(self, cosmos, container):
        container.read_item.side_effect = exceptions.CosmosResourceNotFoundError(status_code=404, message="gone")
        assert cosmos.get(KEY) is None


class TestConditionalWrites:
    def test_put_if_absent_reports_existing_items(self, cosmos, container):
        container.create_item.side_effect = exceptions.CosmosResourceExistsError(status_code=409, message="exists")
        with pytest.raises(RecordExists):
            cosmos.put_if_absent(KEY, {"tenantId": "tenant-a"})

    def test_update_replaces_with_etag_precondition(self, cosmos, container):
        container.read_item.return_value = stored(version=3, name="old")
        container.replace_item.side_effect = lambda item, body, **kwargs: {**body, "_etag": '"e2"'}

        result = cosmos.conditional_update(KEY, {"name": "new", "version": 4}, expected_version=3)

        kwargs = container.replace_item.call_args.kwargs
        assert kwargs["etag"] == '"e1"'
        assert kwargs["match_condition"] == MatchConditions.IfNotModified
        assert "_ts" not in kwargs["body"]
        assert result["name"] == "new"
        assert result["version"] == 4

    def test_version_mismatch_never_writes(self, cosmos, container):
        container.read_item.return_value = stored(version=4)
        with pytest.raises(PreconditionFailed):
            cosmos.conditional_update(KEY, {"version": 4}, expected_version=3)
        container.replace_item.assert_not_called()

    def test_etag_race_is_a_precondition_failure(self, cosmos, container):
        container.read_item.return_value = stored(version=3)
        container.replace_item.side_effect = exceptions.CosmosAccessConditionFailedError(status_code=412, message="etag")
        with pytest.raises(PreconditionFailed):
            cosmos.conditional_update(KEY, {"version": 4}, expected_version=3)

    def test_update_of_missing_item(self, cosmos, container):
        container.read_item.side_effect = exceptions.CosmosResourceNotFoundError(status_code=404, message="gone")
        with pytest.raises(RecordNotFound):
            cosmos.conditional_update(KEY, {"version": 2}, expected_version=1)


class TestQuery:
    def test_single_partition_query_with_lookahead(self, cosmos, container):
        items = [{"gsi1pk": "tenant-a#CAMPAIGN", "gsi1sk": f"2024-01-0{i}#C{i}"} for i in (3, 2, 1)]
        container.query_items.return_value = iter(items)

        page = cosmos.query(RECENCY_INDEX, recency_condition("tenant-a"), 2, {"gsi1pk": "tenant-a#CAMPAIGN", "gsi1sk": "z"})

        kwargs = container.query_items.call_args.kwargs
        assert kwargs["partition_key"] == "tenant-a"
        assert "ORDER BY c.gsi1sk DESC" in kwargs["query"]
        assert "c.gsi1sk < @start" in kwargs["query"]
        assert {"name": "@limit", "value": 3} in kwargs["parameters"]
        assert len(page.items) == 2
        assert page.last_evaluated_key == {"gsi1pk": "tenant-a#CAMPAIGN", "gsi1sk": "2024-01-02#C2"}

    def test_last_page_has_no_key(self, cosmos, container):
        container.query_items.return_value = iter([{"gsi1pk": "tenant-a#CAMPAIGN", "gsi1sk": "a"}])
        page = cosmos.query(RECENCY_INDEX, recency_condition("tenant-a"), 2)
        assert page.last_evaluated_key is None


class TestFailures:
    def test_client_errors_are_not_retried(self, cosmos, container):
        container.read_item.side_effect = exceptions.CosmosHttpResponseError(status_code=400, message="bad request")
        with pytest.raises(ExternalServiceError) as exc:
            cosmos.get(KEY)
        assert container.read_item.call_count == 1
        assert exc.value.retryable is False
        assert "bad request" not in str(exc.value)

    def test_throttling_is_retried(self, cosmos, container):
        container.read_item.side_effect = [
            exceptions.CosmosHttpResponseError(status_code=429, message="throttled"),
            stored(),
        ]
        assert cosmos.get(KEY)["campaignId"] == "C1"
        assert container.read_item.call_count == 2


class TestSettings:
    def test_defaults(self, monkeypatch):
        for name in ("COSMOS_DB_CONNECTION_STRING", "COSMOS_DB_NAME", "DEFAULT_PAGE_SIZE", "MAX_PAGE_SIZE", "TENANT_HEADER"):
            monkeypatch.delenv(name, raising=False)
        settings = Settings.from_env()
        assert settings.default_page_size == 20
        assert settings.max_page_size == 100
        assert settings.tenant_header == "x-tenant-id"

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("DEFAULT_PAGE_SIZE", "50")
        monkeypatch.setenv("COSMOS_DB_CONTAINER_CAMPAIGNS", "campaigns-test")
        settings = Settings.from_env()
        assert settings.default_page_size == 50
        assert settings.cosmos_container == "campaigns-test"

    @pytest.mark.parametrize("value", ["abc", "0", "500"])
    def test_invalid_page_size_is_a_configuration_error(self, monkeypatch, value):
        monkeypatch.setenv("DEFAULT_PAGE_SIZE", value)
        with pytest.raises(ConfigurationError):
            Settings.from_env()

    def test_cosmos_backend_requires_connection_settings(self):
        with pytest.raises(ConfigurationError):
            CosmosStorageBackend.from_settings(Settings())
