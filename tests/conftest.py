"""
Shared fixtures: an in-memory backend, a deterministic clock and a recording
signaller, wired the same way the Functions app wires Cosmos.
"""
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import pytest

from src.campaigns.services import CampaignServices
from src.shared.config import Settings
from src.shared.storage import MemoryStorageBackend
from src.specs.common.errors import NotFoundError
from src.specs.common.keys import EntityKey

TENANT = "tenant-a"
OTHER_TENANT = "tenant-b"


class FakeClock:
    """Returns strictly increasing ISO timestamps, one second apart."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> str:
        value = self.now.isoformat()
        self.now += timedelta(seconds=1)
        return value


class RecordingSignaller:
    def __init__(self) -> None:
        self.calls: List[Tuple[str, str]] = []

    async def send_decision(self, callback_id: str, result: str) -> None:
        self.calls.append((callback_id, result))


@pytest.fixture
def backend():
    return MemoryStorageBackend()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def services(settings, backend, clock):
    return CampaignServices.build(settings, backend=backend, clock=clock)


@pytest.fixture
def signaller():
    return RecordingSignaller()


@pytest.fixture
def make_campaign(services):
    """Insert a campaign directly through the store, in any status."""

    def _make(campaign_id: str = "C1", tenant_id: str = TENANT, **fields: Any):
        body: Dict[str, Any] = {
            "name": "Spring launch",
            "brandId": "brand-1",
            "participants": {"personaIds": ["persona-1"]},
            "status": "planned",
        }
        body.update(fields)
        return services.campaign_store.create(EntityKey.campaign(tenant_id, campaign_id), body)

    return _make


@pytest.fixture
def make_post(services, make_campaign):
    def _make(post_id: str = "P1", campaign_id: str = "C1", tenant_id: str = TENANT, **fields: Any):
        try:
            services.campaigns.get(tenant_id, campaign_id)
        except NotFoundError:
            make_campaign(campaign_id, tenant_id)
        body: Dict[str, Any] = {
            "postId": post_id,
            "personaId": "persona-1",
            "platform": "twitter",
            "scheduledAt": "2024-03-01T10:00:00Z",
            "topic": "Launch day",
        }
        status = fields.pop("status", None)
        body.update(fields)
        post = services.posts.create(tenant_id, campaign_id, body)
        if status is not None and status != "planned":
            key = EntityKey.post(tenant_id, campaign_id, post_id)
            post = services.post_store.update(key, {"status": status}, post.version)
        return post

    return _make
