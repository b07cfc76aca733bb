import azure.functions as func

from src.campaigns.index_query import CampaignFilters
from src.campaigns.services import CampaignServices
from src.function_blueprints.http_common import (
    handles_errors,
    json_response,
    read_json,
    route_param,
    tenant_id,
    with_services,
)
from src.shared.logging_utils import info as log_info
from src.specs.common.cursor import Cursor
from src.specs.common.validation import validate
from src.specs.models.http import CampaignListResponse, ListCampaignsQuery


bp = func.Blueprint()


@handles_errors
def handle_create_campaign(req: func.HttpRequest, services: CampaignServices) -> func.HttpResponse:
    tenant = tenant_id(req, services.settings)
    campaign = services.campaigns.create(tenant, read_json(req))
    return json_response(campaign, status_code=201)


@handles_errors
def handle_list_campaigns(req: func.HttpRequest, services: CampaignServices) -> func.HttpResponse:
    tenant = tenant_id(req, services.settings)
    query = validate(ListCampaignsQuery, dict(req.params)).unwrap("Invalid query parameters")
    cursor = Cursor.parse(query.nextToken)
    filters = CampaignFilters(status=query.status, brandId=query.brandId, personaId=query.personaId)
    page = services.campaigns.list(tenant, filters, query.limit, cursor)
    log_info(tenant, "campaigns:listed", count=len(page.items), hasMore=page.next_cursor is not None)
    return json_response(CampaignListResponse(campaigns=page.items, nextToken=page.next_token))


@handles_errors
def handle_get_campaign(req: func.HttpRequest, services: CampaignServices) -> func.HttpResponse:
    tenant = tenant_id(req, services.settings)
    campaign = services.campaigns.get(tenant, route_param(req, "campaignId"))
    return json_response(campaign)


@handles_errors
def handle_delete_campaign(req: func.HttpRequest, services: CampaignServices) -> func.HttpResponse:
    tenant = tenant_id(req, services.settings)
    services.campaigns.delete(tenant, route_param(req, "campaignId"))
    return func.HttpResponse(status_code=204)


@handles_errors
def handle_update_campaign(req: func.HttpRequest, services: CampaignServices) -> func.HttpResponse:
    tenant = tenant_id(req, services.settings)
    campaign = services.campaigns.update(tenant, route_param(req, "campaignId"), read_json(req))
    return json_response(campaign)


@handles_errors
def handle_update_campaign_status(req: func.HttpRequest, services: CampaignServices) -> func.HttpResponse:
    tenant = tenant_id(req, services.settings)
    campaign_id = route_param(req, "campaignId")
    campaign = services.campaigns.update_status(tenant, campaign_id, read_json(req))
    return json_response(campaign)


@bp.function_name(name="create_campaign")
@bp.route(route="campaigns", methods=["POST"], auth_level=func.AuthLevel.FUNCTION)
def create_campaign(req: func.HttpRequest) -> func.HttpResponse:
    return with_services(req, handle_create_campaign)


@bp.function_name(name="list_campaigns")
@bp.route(route="campaigns", methods=["GET"], auth_level=func.AuthLevel.FUNCTION)
def list_campaigns(req: func.HttpRequest) -> func.HttpResponse:
    return with_services(req, handle_list_campaigns)


@bp.function_name(name="get_campaign")
@bp.route(route="campaigns/{campaignId}", methods=["GET"], auth_level=func.AuthLevel.FUNCTION)
def get_campaign(req: func.HttpRequest) -> func.HttpResponse:
    return with_services(req, handle_get_campaign)


@bp.function_name(name="delete_campaign")
@bp.route(route="campaigns/{campaignId}", methods=["DELETE"], auth_level=func.AuthLevel.FUNCTION)
def delete_campaign(req: func.HttpRequest) -> func.HttpResponse:
    return with_services(req, handle_delete_campaign)


@bp.function_name(name="update_campaign")
@bp.route(route="campaigns/{campaignId}", methods=["PATCH"], auth_level=func.AuthLevel.FUNCTION)
def update_campaign(req: func.HttpRequest) -> func.HttpResponse:
    return with_services(req, handle_update_campaign)


@bp.function_name(name="update_campaign_status")
@bp.route(route="campaigns/{campaignId}/status", methods=["PATCH"], auth_level=func.AuthLevel.FUNCTION)
def update_campaign_status(req: func.HttpRequest) -> func.HttpResponse:
    return with_services(req, handle_update_campaign_status)
