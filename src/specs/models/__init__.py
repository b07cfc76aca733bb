from __future__ import annotations

from typing import Dict, Type

from pydantic import BaseModel

from .domain import Campaign, SocialPost, ErrorInfo, PostContent
from .http import (
    CreateCampaignRequest,
    CreatePostRequest,
    UpdateCampaignStatusRequest,
    UpdateCampaignRequest,
    GenerationCompleteRequest,
    UpdatePostRequest,
    ReviewPostRequest,
    ApprovalDecisionPayload,
    ApprovalAcceptedResponse,
    ApprovalStartResponse,
    CampaignListResponse,
    PostListResponse,
    PostUpdateResponse,
    ErrorResponse,
)


# Registry mapping output schema filenames to models for generation
SCHEMA_MODELS: Dict[str, Type[BaseModel]] = {
    "campaign.document.schema.json": Campaign,
    "socialpost.document.schema.json": SocialPost,
    "error.info.schema.json": ErrorInfo,
    "post.content.schema.json": PostContent,
    "campaign.create.request.schema.json": CreateCampaignRequest,
    "post.create.request.schema.json": CreatePostRequest,
    "campaign.status.request.schema.json": UpdateCampaignStatusRequest,
    "campaign.update.request.schema.json": UpdateCampaignRequest,
    "campaign.generation.request.schema.json": GenerationCompleteRequest,
    "post.update.request.schema.json": UpdatePostRequest,
    "post.review.request.schema.json": ReviewPostRequest,
    "approval.decision.schema.json": ApprovalDecisionPayload,
    "approval.accepted.response.schema.json": ApprovalAcceptedResponse,
    "approval.start.response.schema.json": ApprovalStartResponse,
    "campaign.list.response.schema.json": CampaignListResponse,
    "post.list.response.schema.json": PostListResponse,
    "post.update.response.schema.json": PostUpdateResponse,
    "error.response.schema.json": ErrorResponse,
}

__all__ = [
    "Campaign",
    "SocialPost",
    "ErrorInfo",
    "PostContent",
    "CreateCampaignRequest",
    "CreatePostRequest",
    "UpdateCampaignStatusRequest",
    "UpdateCampaignRequest",
    "GenerationCompleteRequest",
    "UpdatePostRequest",
    "ReviewPostRequest",
    "ApprovalDecisionPayload",
    "ApprovalAcceptedResponse",
    "ApprovalStartResponse",
    "CampaignListResponse",
    "PostListResponse",
    "PostUpdateResponse",
    "ErrorResponse",
    "SCHEMA_MODELS",
]
