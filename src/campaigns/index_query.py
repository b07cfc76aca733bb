"""
List queries over the secondary indexes.

A status filter selects the status index, otherwise the recency index is used.
Other filters and the soft-delete check run in memory after the fetch, so a page
can hold fewer items than requested while more remain. Callers keep following
``next_cursor`` until it is None.
"""
from dataclasses import dataclass, field
from typing import Any, Callable, Generic, List, Mapping, Optional, Type, TypeVar

from pydantic import BaseModel

from src.campaigns.entity_store import strip_storage_attributes
from src.shared.logging_utils import info as log_info
from src.shared.storage import StorageBackend
from src.specs.common.cursor import Cursor
from src.specs.common.enums import CampaignStatus, Platform, PostStatus
from src.specs.common.errors import ValidationError
from src.specs.common.keys import (
    CAMPAIGN_POSTS_INDEX,
    RECENCY_INDEX,
    STATUS_INDEX,
    IndexDefinition,
    KeyCondition,
    campaign_posts_condition,
    recency_condition,
    status_condition,
)
from src.specs.models.domain import Campaign, SocialPost

E = TypeVar("E", bound=BaseModel)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class CampaignFilters:
    status: Optional[CampaignStatus] = None
    brandId: Optional[str] = None
    personaId: Optional[str] = None

    def matches(self, campaign: Campaign) -> bool:
        if self.brandId is not None and campaign.brandId != self.brandId:
            return False
        if self.personaId is not None and self.personaId not in campaign.participants.personaIds:
            return False
        return True


@dataclass(frozen=True)
class PostFilters:
    status: Optional[PostStatus] = None
    personaId: Optional[str] = None
    platform: Optional[Platform] = None

    def matches(self, post: SocialPost) -> bool:
        if self.status is not None and post.status != self.status:
            return False
        if self.personaId is not None and post.personaId != self.personaId:
            return False
        if self.platform is not None and post.platform != self.platform:
            return False
        return True


@dataclass
class Page(Generic[E]):
    items: List[E] = field(default_factory=list)
    next_cursor: Optional[Cursor] = None

    @property
    def next_token(self) -> Optional[str]:
        return self.next_cursor.encode() if self.next_cursor else None


class IndexQueryEngine:
    def __init__(
        self,
        backend: StorageBackend,
        default_page_size: int = DEFAULT_PAGE_SIZE,
        max_page_size: int = MAX_PAGE_SIZE,
    ):
        self._backend = backend
        self._max_page_size = min(max_page_size, MAX_PAGE_SIZE)
        self._default_page_size = min(default_page_size, self._max_page_size)

    def resolve_page_size(self, page_size: Optional[int]) -> int:
        if page_size is None:
            return self._default_page_size
        if isinstance(page_size, bool) or not isinstance(page_size, int) or page_size < 1:
            raise ValidationError.for_field("limit", "must be a positive integer")
        return min(page_size, self._max_page_size)

    def list_campaigns(
        self,
        tenant_id: str,
        filters: Optional[CampaignFilters] = None,
        page_size: Optional[int] = None,
        cursor: Optional[Cursor] = None,
    ) -> Page[Campaign]:
        filters = filters or CampaignFilters()
        if filters.status is not None:
            index = STATUS_INDEX
            condition = status_condition(tenant_id, CampaignStatus(filters.status).value)
        else:
            index = RECENCY_INDEX
            condition = recency_condition(tenant_id)
        return self._run(index, condition, page_size, cursor, Campaign, filters.matches)

    def list_posts(
        self,
        tenant_id: str,
        campaign_id: str,
        filters: Optional[PostFilters] = None,
        page_size: Optional[int] = None,
        cursor: Optional[Cursor] = None,
    ) -> Page[SocialPost]:
        filters = filters or PostFilters()
        condition = campaign_posts_condition(tenant_id, campaign_id)
        return self._run(CAMPAIGN_POSTS_INDEX, condition, page_size, cursor, SocialPost, filters.matches)

    def _run(
        self,
        index: IndexDefinition,
        condition: KeyCondition,
        page_size: Optional[int],
        cursor: Optional[Cursor],
        model: Type[E],
        predicate: Callable[[E], bool],
    ) -> Page[E]:
        limit = self.resolve_page_size(page_size)
        start_key = self._start_key(index, condition, cursor)
        result = self._backend.query(index, condition, limit, start_key)

        items: List[E] = []
        for record in result.items:
            if _is_deleted(record):
                continue
            entity = model.model_validate(strip_storage_attributes(record))
            if predicate(entity):
                items.append(entity)

        next_cursor = Cursor(result.last_evaluated_key) if result.last_evaluated_key else None
        log_info(
            condition.tenant_id,
            "query:page",
            index=index.name,
            fetched=len(result.items),
            returned=len(items),
            hasMore=next_cursor is not None,
        )
        return Page(items=items, next_cursor=next_cursor)

    @staticmethod
    def _start_key(index: IndexDefinition, condition: KeyCondition, cursor: Optional[Cursor]):
        if cursor is None:
            return None
        position = cursor.position
        if set(position) != {index.partition_attr, index.sort_attr}:
            raise ValidationError.for_field("nextToken", "does not belong to this query")
        # A cursor from another tenant or another status partition is rejected
        if position[index.partition_attr] != condition.value:
            raise ValidationError.for_field("nextToken", "does not belong to this query")
        return position


def _is_deleted(record: Mapping[str, Any]) -> bool:
    return bool(record.get("deletedAt"))
