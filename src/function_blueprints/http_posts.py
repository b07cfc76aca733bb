import azure.functions as func

from src.campaigns.index_query import PostFilters
from src.campaigns.services import CampaignServices
from src.function_blueprints.http_common import (
    handles_errors,
    json_response,
    read_json,
    route_param,
    tenant_id,
    with_services,
)
from src.specs.common.cursor import Cursor
from src.specs.common.validation import validate
from src.specs.models.http import ListPostsQuery, PostListResponse, PostUpdateResponse


bp = func.Blueprint()


@handles_errors
def handle_list_posts(req: func.HttpRequest, services: CampaignServices) -> func.HttpResponse:
    tenant = tenant_id(req, services.settings)
    campaign_id = route_param(req, "campaignId")
    query = validate(ListPostsQuery, dict(req.params)).unwrap("Invalid query parameters")
    cursor = Cursor.parse(query.nextToken)
    filters = PostFilters(status=query.status, personaId=query.personaId, platform=query.platform)
    page = services.posts.list(tenant, campaign_id, filters, query.limit, cursor)
    return json_response(PostListResponse(posts=page.items, nextToken=page.next_token))


@handles_errors
def handle_get_post(req: func.HttpRequest, services: CampaignServices) -> func.HttpResponse:
    tenant = tenant_id(req, services.settings)
    post = services.posts.get(tenant, route_param(req, "campaignId"), route_param(req, "postId"))
    return json_response(post)


@handles_errors
def handle_update_post(req: func.HttpRequest, services: CampaignServices) -> func.HttpResponse:
    tenant = tenant_id(req, services.settings)
    campaign_id = route_param(req, "campaignId")
    post_id = route_param(req, "postId")
    post = services.posts.update(tenant, campaign_id, post_id, read_json(req))
    return json_response(PostUpdateResponse(message="Post updated successfully", post=post))


@handles_errors
def handle_review_post(req: func.HttpRequest, services: CampaignServices) -> func.HttpResponse:
    tenant = tenant_id(req, services.settings)
    campaign_id = route_param(req, "campaignId")
    post_id = route_param(req, "postId")
    post = services.posts.review(tenant, campaign_id, post_id, read_json(req))
    message = "Post approved successfully" if post.approval and post.approval.approved else "Post rejected"
    return json_response(PostUpdateResponse(message=message, post=post))


@bp.function_name(name="list_posts")
@bp.route(route="campaigns/{campaignId}/posts", methods=["GET"], auth_level=func.AuthLevel.FUNCTION)
def list_posts(req: func.HttpRequest) -> func.HttpResponse:
    return with_services(req, handle_list_posts)


@bp.function_name(name="get_post")
@bp.route(route="campaigns/{campaignId}/posts/{postId}", methods=["GET"], auth_level=func.AuthLevel.FUNCTION)
def get_post(req: func.HttpRequest) -> func.HttpResponse:
    return with_services(req, handle_get_post)


@bp.function_name(name="update_post")
@bp.route(
    route="campaigns/{campaignId}/posts/{postId}/status",
    methods=["PATCH"],
    auth_level=func.AuthLevel.FUNCTION,
)
def update_post(req: func.HttpRequest) -> func.HttpResponse:
    return with_services(req, handle_update_post)


@bp.function_name(name="review_post")
@bp.route(
    route="campaigns/{campaignId}/posts/{postId}/review",
    methods=["POST"],
    auth_level=func.AuthLevel.FUNCTION,
)
def review_post(req: func.HttpRequest) -> func.HttpResponse:
    return with_services(req, handle_review_post)
