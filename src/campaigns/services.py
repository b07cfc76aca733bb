from dataclasses import dataclass
from typing import Callable, Optional

from src.campaigns.entity_store import EntityStore, campaign_store, post_store
from src.campaigns.index_query import IndexQueryEngine
from src.campaigns.operations import CampaignOperations, PostOperations
from src.shared.config import Settings
from src.shared.cosmos_client import CosmosStorageBackend
from src.shared.storage import StorageBackend
from src.specs.common.datetime_utils import utc_now
from src.specs.models.domain import Campaign, SocialPost


@dataclass
class CampaignServices:
    """Components for one invocation, all sharing one storage backend."""

    settings: Settings
    campaign_store: EntityStore[Campaign]
    post_store: EntityStore[SocialPost]
    campaigns: CampaignOperations
    posts: PostOperations

    @classmethod
    def build(
        cls,
        settings: Settings,
        backend: Optional[StorageBackend] = None,
        clock: Callable[[], str] = utc_now,
    ) -> "CampaignServices":
        if backend is None:
            backend = CosmosStorageBackend.from_settings(settings)
        campaigns = campaign_store(backend, clock)
        posts = post_store(backend, clock)
        queries = IndexQueryEngine(backend, settings.default_page_size, settings.max_page_size)
        return cls(
            settings=settings,
            campaign_store=campaigns,
            post_store=posts,
            campaigns=CampaignOperations(campaigns, queries, clock),
            posts=PostOperations(posts, campaigns, queries, clock),
        )
