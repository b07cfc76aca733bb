import base64

import pytest

from src.specs.common.cursor import Cursor
from src.specs.common.enums import EntityKind
from src.specs.common.errors import ValidationError
from src.specs.common.keys import (
    CAMPAIGN_POSTS_INDEX,
    RECENCY_INDEX,
    STATUS_INDEX,
    EntityKey,
    StorageKey,
    campaign_index_attributes,
    post_index_attributes,
)


class TestEntityKey:
    def test_campaign_key_encodes_under_tenant_partition(self):
        key = EntityKey.campaign("tenant-a", "C1")
        assert key.kind == EntityKind.CAMPAIGN
        assert key.encode() == StorageKey(partition="tenant-a", sort="CAMPAIGN#C1")

    def test_post_key_is_a_sub_key_of_its_campaign(self):
        key = EntityKey.post("tenant-a", "C1", "P1")
        assert key.kind == EntityKind.SOCIAL_POST
        assert key.encode().sort == "CAMPAIGN#C1#POST#P1"

    def test_decode_inverts_encode(self):
        for key in (EntityKey.campaign("t", "C1"), EntityKey.post("t", "C1", "P1")):
            assert EntityKey.decode(key.encode()) == key

    def test_decode_rejects_foreign_keys(self):
        with pytest.raises(ValueError):
            EntityKey.decode(StorageKey("t", "BRAND#b1"))

    @pytest.mark.parametrize("tenant, campaign", [("", "C1"), ("t", ""), ("t#x", "C1"), ("t", "C#1")])
    def test_invalid_components_are_rejected(self, tenant, campaign):
        with pytest.raises(ValidationError):
            EntityKey.campaign(tenant, campaign)

    def test_identity_fields(self):
        assert EntityKey.post("t", "C1", "P1").identity() == {
            "tenantId": "t",
            "campaignId": "C1",
            "postId": "P1",
        }


class TestIndexAttributes:
    def test_campaign_attributes_cover_recency_and_status(self):
        attrs = campaign_index_attributes(EntityKey.campaign("t", "C1"), "2024-01-01T00:00:00+00:00", "planned")
        assert attrs[RECENCY_INDEX.partition_attr] == "t#CAMPAIGN"
        assert attrs[STATUS_INDEX.partition_attr] == "t#CAMPAIGN#planned"
        assert attrs[RECENCY_INDEX.sort_attr] == "2024-01-01T00:00:00+00:00#C1"
        assert attrs[STATUS_INDEX.sort_attr] == attrs[RECENCY_INDEX.sort_attr]

    def test_post_attributes_group_by_campaign(self):
        attrs = post_index_attributes(EntityKey.post("t", "C1", "P1"), "2024-03-01T10:00:00+00:00")
        assert attrs[CAMPAIGN_POSTS_INDEX.partition_attr] == "t#CAMPAIGN#C1#POST"
        assert attrs[CAMPAIGN_POSTS_INDEX.sort_attr] == "2024-03-01T10:00:00+00:00#P1"


class TestCursor:
    def test_round_trip_is_exact(self):
        position = {"gsi2pk": "t#CAMPAIGN#completed", "gsi2sk": "2024-01-01T00:00:05+00:00#C5"}
        token = Cursor(position).encode()
        assert Cursor.decode(token).position == position
        assert Cursor.decode(token) == Cursor(position)

    def test_token_is_url_safe_text(self):
        token = Cursor({"gsi1pk": "t#CAMPAIGN", "gsi1sk": "a/b+c?"}).encode()
        assert all(ch.isalnum() or ch in "-_=" for ch in token)

    def test_parse_treats_empty_as_first_page(self):
        assert Cursor.parse(None) is None
        assert Cursor.parse("") is None

    @pytest.mark.parametrize(
        "token",
        [
            "not-a-token",
            "!!!",
            base64.urlsafe_b64encode(b"[1, 2]").decode(),
            base64.urlsafe_b64encode(b'{"gsi1pk": 5}').decode(),
            base64.urlsafe_b64encode(b"{}").decode(),
        ],
    )
    def test_malformed_tokens_are_validation_errors(self, token):
        with pytest.raises(ValidationError) as exc:
            Cursor.decode(token)
        assert exc.value.fields == [{"field": "nextToken", "reason": "malformed pagination token"}]

    def test_repr_does_not_expose_position(self):
        assert "gsi1pk" not in repr(Cursor({"gsi1pk": "t#CAMPAIGN", "gsi1sk": "x"}))
