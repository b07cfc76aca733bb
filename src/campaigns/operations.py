"""
Campaign and post operations.

Each operation validates its input before touching the store, reads the current
entity, consults the transition guard and then performs one conditional write.
When a request carries no ``expectedVersion`` the version read in the same call
is used, so a concurrent writer between the read and the write still surfaces as
ConflictError.
"""
import hashlib
import json
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel

from src.campaigns.entity_store import PROTECTED_FIELDS, SERVER_FIELDS, EntityStore
from src.campaigns.index_query import MAX_PAGE_SIZE, CampaignFilters, IndexQueryEngine, Page, PostFilters
from src.campaigns.transitions import (
    PLAN_FIELDS,
    ensure_transition,
    next_status_from_posts,
    updatable_fields,
)
from src.shared.logging_utils import info as log_info
from src.specs.common.cursor import Cursor
from src.specs.common.datetime_utils import utc_now
from src.specs.common.enums import (
    ApprovalDecision,
    CampaignSource,
    CampaignStatus,
    EntityKind,
    PostStatus,
)
from src.specs.common.errors import ConflictError, ValidationError
from src.specs.common.keys import EntityKey
from src.specs.common.validation import validate
from src.specs.models.domain import Campaign, SocialPost
from src.specs.models.http import (
    CreateCampaignRequest,
    CreatePostRequest,
    ErrorPayload,
    GenerationCompleteRequest,
    ReviewPostRequest,
    UpdateCampaignRequest,
    UpdateCampaignStatusRequest,
    UpdatePostRequest,
)

DECISION_OUTCOMES = {
    ApprovalDecision.APPROVED: CampaignStatus.COMPLETED,
    ApprovalDecision.REJECTED: CampaignStatus.CANCELLED,
    ApprovalDecision.NEEDS_REVISION: CampaignStatus.GENERATING,
}

GENERATION_FAILED = ErrorPayload(code="CONTENT_GENERATION_FAILED", message="Content generation workflow failed")


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


def error_info(error: ErrorPayload, at: str) -> Dict[str, Any]:
    return {"code": error.code, "message": error.message, "at": at, "retryable": error.retryable}


def plan_version(document: Mapping[str, Any]) -> str:
    """Short fingerprint of the planning fields."""
    plan = {name: document.get(name) for name in sorted(PLAN_FIELDS)}
    raw = json.dumps(plan, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]


def _error_patch(status: Optional[Union[CampaignStatus, PostStatus]], error: Optional[ErrorPayload], at: str) -> Dict[str, Any]:
    # An explicit error always wins; a non-failed status without one clears the old error
    if error is not None:
        return {"lastError": error_info(error, at)}
    if status is not None and status.value != "failed":
        return {"lastError": None}
    return {}


def _refuse_server_fields(request: BaseModel) -> None:
    owned = sorted(set(request.model_extra or {}) & (SERVER_FIELDS | PROTECTED_FIELDS))
    if owned:
        raise ValidationError(
            "Server-managed fields cannot be set",
            [{"field": name, "reason": "read-only"} for name in owned],
        )


def _refuse_pending_approval(status: Optional[CampaignStatus]) -> None:
    if status == CampaignStatus.PENDING_APPROVAL:
        raise ValidationError.for_field("status", "pending_approval is entered by starting an approval")


def _status_patch(
    current: Campaign,
    target: CampaignStatus,
    error: Optional[ErrorPayload],
    now: str,
) -> Dict[str, Any]:
    ensure_transition(current.status, target, EntityKind.CAMPAIGN)
    patch: Dict[str, Any] = {"status": target}
    patch.update(_error_patch(target, error, now))
    if target == CampaignStatus.COMPLETED and current.status != CampaignStatus.COMPLETED:
        patch["completedAt"] = now
    if current.status == CampaignStatus.PENDING_APPROVAL:
        patch["callbackId"] = None
    return patch


def _permitted(fields: Mapping[str, Any], allowed, current: Campaign) -> Tuple[Dict[str, Any], List[str]]:
    patch: Dict[str, Any] = {}
    ignored: List[str] = []
    document = current.model_dump(mode="json")
    for name, value in fields.items():
        if name not in allowed:
            ignored.append(name)
            continue
        parent, _, child = name.partition(".")
        if child:
            nested = dict(patch.get(parent) or document.get(parent) or {})
            nested[child] = value
            patch[parent] = nested
        else:
            patch[name] = value
    return patch, ignored


@dataclass(frozen=True)
class GenerationOutcome:
    campaign: Campaign
    target: CampaignStatus

    @property
    def ready_for_approval(self) -> bool:
        return (
            self.campaign.status == CampaignStatus.GENERATING
            and self.target == CampaignStatus.PENDING_APPROVAL
        )


class CampaignOperations:
    def __init__(
        self,
        campaigns: EntityStore[Campaign],
        queries: IndexQueryEngine,
        clock: Callable[[], str] = utc_now,
    ):
        self._campaigns = campaigns
        self._queries = queries
        self._clock = clock

    def get(self, tenant_id: str, campaign_id: str) -> Campaign:
        return self._campaigns.get(EntityKey.campaign(tenant_id, campaign_id))

    def list(
        self,
        tenant_id: str,
        filters: Optional[CampaignFilters] = None,
        page_size: Optional[int] = None,
        cursor: Optional[Cursor] = None,
    ) -> Page[Campaign]:
        return self._queries.list_campaigns(tenant_id, filters, page_size, cursor)

    def create(self, tenant_id: str, payload: Any) -> Campaign:
        request = validate(CreateCampaignRequest, payload).unwrap("Invalid campaign")
        _refuse_server_fields(request)
        key = EntityKey.campaign(tenant_id, new_id("campaign"))
        fields = request.model_dump(mode="json", exclude_none=True)
        fields.setdefault("metadata", {"source": CampaignSource.API.value})
        fields["status"] = CampaignStatus.PLANNED.value
        campaign = self._campaigns.create(key, fields)
        log_info(tenant_id, "campaign:created", campaignId=campaign.campaignId)
        return campaign

    def update(self, tenant_id: str, campaign_id: str, payload: Any) -> Campaign:
        """Partial update limited to the fields the current status allows.

        Disallowed fields are dropped. When nothing is left the request is a
        ConflictError. A status in the payload goes through the same guard and
        bookkeeping as ``update_status``.
        """
        request = validate(UpdateCampaignRequest, payload).unwrap("Invalid campaign update")
        _refuse_server_fields(request)
        _refuse_pending_approval(request.status)
        fields = request.model_dump(mode="json", exclude_unset=True)
        expected_version = fields.pop("expectedVersion", None)
        if "status" in fields and request.status is None:
            raise ValidationError.for_field("status", "cannot be null")
        if not fields:
            raise ValidationError.for_field("body", "at least one field is required")

        key = EntityKey.campaign(tenant_id, campaign_id)
        current = self._campaigns.get(key)
        patch, ignored = _permitted(fields, updatable_fields(current.status), current)
        if not patch:
            raise ConflictError(
                f"Cannot update campaign in {current.status.value} status",
                details={"currentStatus": current.status.value, "fields": sorted(ignored)},
            )

        now = self._clock()
        if request.status is not None and "status" in patch:
            patch.update(_status_patch(current, request.status, None, now))
        if current.status == CampaignStatus.PLANNED and PLAN_FIELDS & set(patch):
            patch["planVersion"] = plan_version({**current.model_dump(mode="json"), **patch})

        expected = expected_version if expected_version is not None else current.version
        updated = self._campaigns.update(key, patch, expected)
        log_info(
            tenant_id,
            "campaign:updated",
            campaignId=campaign_id,
            fields=sorted(fields),
            ignored=sorted(ignored),
        )
        return updated

    def update_status(self, tenant_id: str, campaign_id: str, payload: Any) -> Campaign:
        request = validate(UpdateCampaignStatusRequest, payload).unwrap("Invalid status update")
        _refuse_pending_approval(request.status)
        key = EntityKey.campaign(tenant_id, campaign_id)
        current = self._campaigns.get(key)
        patch = _status_patch(current, request.status, request.error, self._clock())

        expected = request.expectedVersion if request.expectedVersion is not None else current.version
        updated = self._campaigns.update(key, patch, expected)
        log_info(
            tenant_id,
            "campaign:status_changed",
            campaignId=campaign_id,
            fromStatus=current.status.value,
            toStatus=updated.status.value,
        )
        return updated

    def complete_generation(self, tenant_id: str, campaign_id: str, payload: Any = None) -> GenerationOutcome:
        """Settle a generating campaign after its generation run reports back.

        A failed run marks the campaign failed with a conditional write. A
        successful run leaves the campaign untouched and reports whether every
        post has finished; the caller then starts the approval workflow, which
        moves the campaign to ``pending_approval``.
        """
        request = validate(GenerationCompleteRequest, {} if payload is None else payload).unwrap(
            "Invalid generation result"
        )
        key = EntityKey.campaign(tenant_id, campaign_id)
        current = self._campaigns.get(key)
        if current.status != CampaignStatus.GENERATING:
            log_info(tenant_id, "campaign:generation_skipped", campaignId=campaign_id, status=current.status.value)
            return GenerationOutcome(current, current.status)

        if not request.success:
            patch = _status_patch(current, CampaignStatus.FAILED, request.error or GENERATION_FAILED, self._clock())
            failed = self._campaigns.update(key, patch, current.version)
            log_info(tenant_id, "campaign:generation_failed", campaignId=campaign_id, code=failed.lastError.code)
            return GenerationOutcome(failed, CampaignStatus.FAILED)

        statuses = [post.status for post in self._all_posts(tenant_id, campaign_id)]
        target = next_status_from_posts(current.status, statuses)
        log_info(
            tenant_id,
            "campaign:generation_checked",
            campaignId=campaign_id,
            posts=len(statuses),
            target=target.value,
        )
        return GenerationOutcome(current, target)

    def _all_posts(self, tenant_id: str, campaign_id: str) -> Iterator[SocialPost]:
        cursor = None
        while True:
            page = self._queries.list_posts(tenant_id, campaign_id, None, MAX_PAGE_SIZE, cursor)
            yield from page.items
            if page.next_cursor is None:
                return
            cursor = page.next_cursor

    def delete(self, tenant_id: str, campaign_id: str, expected_version: Optional[int] = None) -> Campaign:
        """Soft delete: the campaign is cancelled and stamped with ``deletedAt``."""
        key = EntityKey.campaign(tenant_id, campaign_id)
        current = self._campaigns.get(key)
        if current.is_deleted:
            return current
        ensure_transition(current.status, CampaignStatus.CANCELLED, EntityKind.CAMPAIGN)
        patch = {
            "status": CampaignStatus.CANCELLED,
            "deletedAt": self._clock(),
            "callbackId": None,
        }
        expected = expected_version if expected_version is not None else current.version
        deleted = self._campaigns.update(key, patch, expected)
        log_info(tenant_id, "campaign:deleted", campaignId=campaign_id, fromStatus=current.status.value)
        return deleted

    def request_approval(self, tenant_id: str, campaign_id: str, callback_id: str) -> Campaign:
        """Park the campaign in ``pending_approval`` under ``callback_id``.

        Repeating the call with the same callback id is a no-op, so a replayed
        workflow activity does not fail.
        """
        if not callback_id:
            raise ValidationError.for_field("callbackId", "is required")
        key = EntityKey.campaign(tenant_id, campaign_id)
        current = self._campaigns.get(key)
        if current.status == CampaignStatus.PENDING_APPROVAL:
            if current.callbackId == callback_id:
                return current
            raise ConflictError(
                "Campaign is already awaiting approval",
                details={"currentStatus": current.status.value},
            )
        ensure_transition(current.status, CampaignStatus.PENDING_APPROVAL, EntityKind.CAMPAIGN)
        patch = {
            "status": CampaignStatus.PENDING_APPROVAL,
            "callbackId": callback_id,
            "lastError": None,
        }
        updated = self._campaigns.update(key, patch, current.version)
        log_info(tenant_id, "campaign:approval_requested", campaignId=campaign_id, callbackId=callback_id)
        return updated

    def apply_decision(
        self,
        tenant_id: str,
        campaign_id: str,
        callback_id: str,
        decision: Union[ApprovalDecision, str],
    ) -> Campaign:
        """Apply a forwarded approval decision and consume the callback id."""
        decision = ApprovalDecision(decision)
        target = DECISION_OUTCOMES[decision]
        key = EntityKey.campaign(tenant_id, campaign_id)
        current = self._campaigns.get(key)
        if current.status != CampaignStatus.PENDING_APPROVAL or current.callbackId != callback_id:
            if current.callbackId is None and current.status == target:
                return current
            raise ConflictError(
                "Campaign is no longer awaiting this approval",
                details={"currentStatus": current.status.value},
            )
        ensure_transition(current.status, target, EntityKind.CAMPAIGN)
        patch: Dict[str, Any] = {"status": target, "callbackId": None}
        if target == CampaignStatus.COMPLETED:
            patch["completedAt"] = self._clock()
        updated = self._campaigns.update(key, patch, current.version)
        log_info(
            tenant_id,
            "campaign:decision_applied",
            campaignId=campaign_id,
            decision=decision.value,
            status=updated.status.value,
        )
        return updated


class PostOperations:
    def __init__(
        self,
        posts: EntityStore[SocialPost],
        campaigns: EntityStore[Campaign],
        queries: IndexQueryEngine,
        clock: Callable[[], str] = utc_now,
    ):
        self._posts = posts
        self._campaigns = campaigns
        self._queries = queries
        self._clock = clock

    def get(self, tenant_id: str, campaign_id: str, post_id: str) -> SocialPost:
        return self._posts.get(EntityKey.post(tenant_id, campaign_id, post_id))

    def list(
        self,
        tenant_id: str,
        campaign_id: str,
        filters: Optional[PostFilters] = None,
        page_size: Optional[int] = None,
        cursor: Optional[Cursor] = None,
    ) -> Page[SocialPost]:
        return self._queries.list_posts(tenant_id, campaign_id, filters, page_size, cursor)

    def create(self, tenant_id: str, campaign_id: str, payload: Any) -> SocialPost:
        request = validate(CreatePostRequest, payload).unwrap("Invalid post")
        _refuse_server_fields(request)
        key = EntityKey.post(tenant_id, campaign_id, request.postId or new_id("post"))
        # The parent campaign must exist in this tenant
        self._campaigns.get(EntityKey.campaign(tenant_id, campaign_id))
        fields = request.model_dump(mode="json", exclude_none=True)
        fields["status"] = PostStatus.PLANNED.value
        return self._posts.create(key, fields)

    def update(self, tenant_id: str, campaign_id: str, post_id: str, payload: Any) -> SocialPost:
        """Set status, error and content independently.

        Content written here is stamped with ``generatedAt``. Setting a status
        alone never touches content.
        """
        request = validate(UpdatePostRequest, payload).unwrap("Invalid post update")
        key = EntityKey.post(tenant_id, campaign_id, post_id)
        current = self._posts.get(key)
        if request.status is not None:
            ensure_transition(current.status, request.status, EntityKind.SOCIAL_POST)

        now = self._clock()
        patch: Dict[str, Any] = {}
        if request.status is not None:
            patch["status"] = request.status
        patch.update(_error_patch(request.status, request.error, now))
        if request.content is not None:
            content = request.content.model_dump(exclude_none=True)
            content["generatedAt"] = now
            patch["content"] = content

        expected = request.expectedVersion if request.expectedVersion is not None else current.version
        updated = self._posts.update(key, patch, expected)
        log_info(
            tenant_id,
            "post:updated",
            campaignId=campaign_id,
            postId=post_id,
            status=updated.status.value,
            hasError=updated.lastError is not None,
        )
        return updated

    def review(self, tenant_id: str, campaign_id: str, post_id: str, payload: Any) -> SocialPost:
        request = validate(ReviewPostRequest, payload).unwrap("Invalid review")
        key = EntityKey.post(tenant_id, campaign_id, post_id)
        current = self._posts.get(key)
        if current.status != PostStatus.NEEDS_REVIEW:
            raise ConflictError(
                "Post is not awaiting review",
                details={"currentStatus": current.status.value},
            )
        target = PostStatus.COMPLETED if request.approved else PostStatus.FAILED
        ensure_transition(current.status, target, EntityKind.SOCIAL_POST)

        now = self._clock()
        approval = {"approved": request.approved, "reviewedAt": now}
        if request.feedback is not None:
            approval["feedback"] = request.feedback
        if request.requestChanges is not None:
            approval["requestChanges"] = request.requestChanges
        patch: Dict[str, Any] = {"status": target, "approval": approval}
        if not request.approved and request.requestChanges:
            patch["lastError"] = {
                "code": "APPROVAL_REJECTED",
                "message": f"Post rejected: {', '.join(request.requestChanges)}",
                "at": now,
                "retryable": True,
            }

        expected = request.expectedVersion if request.expectedVersion is not None else current.version
        updated = self._posts.update(key, patch, expected)
        log_info(tenant_id, "post:reviewed", campaignId=campaign_id, postId=post_id, approved=request.approved)
        return updated
