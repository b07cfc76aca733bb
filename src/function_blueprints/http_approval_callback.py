import azure.functions as func
import azure.durable_functions as df

from src.campaigns.approval_bridge import ApprovalCallbackBridge
from src.campaigns.services import CampaignServices
from src.function_blueprints.http_common import (
    handles_errors_async,
    json_response,
    read_json,
    route_param,
    tenant_id,
    with_services_async,
)
from src.shared.signalling import DecisionSignaller, DurableDecisionSignaller


bp = df.Blueprint()


@handles_errors_async
async def handle_approval_callback(
    req: func.HttpRequest,
    services: CampaignServices,
    signaller: DecisionSignaller,
) -> func.HttpResponse:
    tenant = tenant_id(req, services.settings)
    campaign_id = route_param(req, "campaignId")
    payload = read_json(req)
    bridge = ApprovalCallbackBridge(services.campaign_store, signaller)
    accepted = await bridge.submit(tenant, campaign_id, req.params.get("callbackId"), payload)
    return json_response(accepted)


@bp.function_name(name="campaign_approval_callback")
@bp.route(route="campaigns/{campaignId}/approval", methods=["POST"], auth_level=func.AuthLevel.FUNCTION)
@bp.durable_client_input(client_name="client")
async def campaign_approval_callback(
    req: func.HttpRequest, client: df.DurableOrchestrationClient
) -> func.HttpResponse:
    return await with_services_async(req, _callback_with_client, client)


async def _callback_with_client(
    req: func.HttpRequest,
    services: CampaignServices,
    client: df.DurableOrchestrationClient,
) -> func.HttpResponse:
    signaller = DurableDecisionSignaller(client, services.settings.approval_event_name)
    return await handle_approval_callback(req, services, signaller)
