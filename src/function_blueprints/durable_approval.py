"""
Durable continuation of the approval step.

The orchestration instance id is the campaign's callback id, so the approval
callback can raise the decision event on it directly. The orchestrator parks the
campaign in ``pending_approval``, waits for the decision event, then applies it
with one conditional write that also consumes the callback id. A generation
run reports back through the same blueprint, which starts the approval once
every post of the campaign has finished.
"""
import json

import azure.functions as func
import azure.durable_functions as df

from src.campaigns.operations import new_id
from src.campaigns.services import CampaignServices
from src.campaigns.transitions import ensure_transition
from src.function_blueprints.http_common import (
    handles_errors_async,
    json_response,
    read_json,
    route_param,
    services_from_env,
    tenant_id,
    with_services_async,
)
from src.shared.config import Settings
from src.shared.logging_utils import info as log_info
from src.specs.common.enums import CampaignStatus, EntityKind
from src.specs.common.errors import ConflictError
from src.specs.common.validation import validate
from src.specs.models.http import ApprovalDecisionPayload, ApprovalStartResponse

ORCHESTRATOR_NAME = "campaign_approval_orchestrator"
REQUEST_ACTIVITY = "approval_request"
APPLY_ACTIVITY = "approval_apply"

# Use Durable Functions Blueprint, compatible with FunctionApp.register_functions
bp = df.Blueprint()


async def _start_orchestration(
    req: func.HttpRequest,
    client: df.DurableOrchestrationClient,
    tenant: str,
    campaign_id: str,
) -> func.HttpResponse:
    callback_id = new_id("cb")
    await client.start_new(
        ORCHESTRATOR_NAME,
        callback_id,
        {"tenantId": tenant, "campaignId": campaign_id, "callbackId": callback_id},
    )
    log_info(tenant, "approval:started", campaignId=campaign_id, callbackId=callback_id)
    check_status = client.create_check_status_response(req, callback_id)
    return json_response(
        ApprovalStartResponse(campaignId=campaign_id, callbackId=callback_id),
        status_code=202,
        headers=dict(check_status.headers),
    )


@handles_errors_async
async def handle_start_approval(
    req: func.HttpRequest,
    services: CampaignServices,
    client: df.DurableOrchestrationClient,
) -> func.HttpResponse:
    tenant = tenant_id(req, services.settings)
    campaign_id = route_param(req, "campaignId")
    campaign = services.campaigns.get(tenant, campaign_id)
    if campaign.status == CampaignStatus.PENDING_APPROVAL:
        raise ConflictError("Campaign is already awaiting approval", details={"currentStatus": campaign.status.value})
    ensure_transition(campaign.status, CampaignStatus.PENDING_APPROVAL, EntityKind.CAMPAIGN)
    return await _start_orchestration(req, client, tenant, campaign_id)


@handles_errors_async
async def handle_complete_generation(
    req: func.HttpRequest,
    services: CampaignServices,
    client: df.DurableOrchestrationClient,
) -> func.HttpResponse:
    """Generation run finished: fail the campaign, or start approval once all posts are done."""
    tenant = tenant_id(req, services.settings)
    campaign_id = route_param(req, "campaignId")
    payload = read_json(req) if req.get_body() else None
    outcome = services.campaigns.complete_generation(tenant, campaign_id, payload)
    if outcome.ready_for_approval:
        return await _start_orchestration(req, client, tenant, campaign_id)
    return json_response(outcome.campaign)


def decision_from_event(raw) -> str:
    """The event carries the serialized decision payload."""
    if isinstance(raw, (bytes, str)):
        raw = json.loads(raw)
    payload = validate(ApprovalDecisionPayload, raw).unwrap("Invalid approval decision")
    return payload.decision.value


@bp.function_name(name="start_campaign_approval")
@bp.route(route="campaigns/{campaignId}/approval/start", methods=["POST"], auth_level=func.AuthLevel.FUNCTION)
@bp.durable_client_input(client_name="client")
async def start_campaign_approval(
    req: func.HttpRequest, client: df.DurableOrchestrationClient
) -> func.HttpResponse:
    return await with_services_async(req, handle_start_approval, client)


@bp.function_name(name="complete_campaign_generation")
@bp.route(route="campaigns/{campaignId}/generation/complete", methods=["POST"], auth_level=func.AuthLevel.FUNCTION)
@bp.durable_client_input(client_name="client")
async def complete_campaign_generation(
    req: func.HttpRequest, client: df.DurableOrchestrationClient
) -> func.HttpResponse:
    return await with_services_async(req, handle_complete_generation, client)


def approval_workflow(context: df.DurableOrchestrationContext, event_name: str):
    data = context.get_input() or {}
    yield context.call_activity(REQUEST_ACTIVITY, data)
    event = yield context.wait_for_external_event(event_name)
    decision = decision_from_event(event)
    result = yield context.call_activity(APPLY_ACTIVITY, {**data, "decision": decision})
    return result


@bp.function_name(name=ORCHESTRATOR_NAME)
@bp.orchestration_trigger(context_name="context")
def campaign_approval_orchestrator(context: df.DurableOrchestrationContext):
    result = yield from approval_workflow(context, Settings.from_env().approval_event_name)
    return result


@bp.function_name(name=REQUEST_ACTIVITY)
@bp.activity_trigger(input_name="data")
def approval_request(data: dict) -> dict:
    campaign = services_from_env().campaigns.request_approval(
        data["tenantId"], data["campaignId"], data["callbackId"]
    )
    return campaign.model_dump(mode="json", exclude_none=True)


@bp.function_name(name=APPLY_ACTIVITY)
@bp.activity_trigger(input_name="data")
def approval_apply(data: dict) -> dict:
    campaign = services_from_env().campaigns.apply_decision(
        data["tenantId"], data["campaignId"], data["callbackId"], data["decision"]
    )
    return campaign.model_dump(mode="json", exclude_none=True)
