"""
Approval callback bridge.

Correlates an inbound human decision with a campaign waiting in
``pending_approval`` and forwards it to the durable workflow keyed by the
campaign's callback id. The bridge never writes the campaign itself; the
workflow continuation does that once it receives the decision.

Every correlation failure is reported to the caller as the same NotFoundError so
an untrusted caller cannot tell an unknown campaign from a wrong token or an
already decided approval. The actual reason is logged.

Two decisions that both pass the status gate before the continuation moves the
campaign off ``pending_approval`` will both be forwarded.
"""
import hmac
from typing import Any, Optional

from src.campaigns.entity_store import EntityStore
from src.shared.logging_utils import info as log_info, warning as log_warning
from src.shared.signalling import DecisionSignaller
from src.specs.common.enums import CampaignStatus
from src.specs.common.errors import NotFoundError, ValidationError
from src.specs.common.keys import EntityKey
from src.specs.common.validation import validate
from src.specs.models.domain import Campaign
from src.specs.models.http import ApprovalAcceptedResponse, ApprovalDecisionPayload

NOT_FOUND_MESSAGE = "Campaign not found or approval expired"


class ApprovalCallbackBridge:
    def __init__(self, campaigns: EntityStore[Campaign], signaller: DecisionSignaller):
        self._campaigns = campaigns
        self._signaller = signaller

    async def submit(
        self,
        tenant_id: str,
        campaign_id: str,
        callback_id: Optional[str],
        payload: Any,
    ) -> ApprovalAcceptedResponse:
        decision = validate(ApprovalDecisionPayload, payload).unwrap("Invalid approval decision")
        if not callback_id:
            raise ValidationError.for_field("callbackId", "is required")
        key = EntityKey.campaign(tenant_id, campaign_id)

        try:
            campaign = self._campaigns.get(key)
        except NotFoundError:
            self._reject(tenant_id, campaign_id, "campaign_missing")

        if not campaign.callbackId or not hmac.compare_digest(
            campaign.callbackId.encode("utf-8"), callback_id.encode("utf-8")
        ):
            self._reject(tenant_id, campaign_id, "token_mismatch")
        if campaign.status != CampaignStatus.PENDING_APPROVAL:
            self._reject(tenant_id, campaign_id, "not_pending", status=campaign.status.value)

        await self._signaller.send_decision(callback_id, decision.model_dump_json(exclude_none=True))
        log_info(
            tenant_id,
            "approval:forwarded",
            campaignId=campaign_id,
            callbackId=callback_id,
            decision=decision.decision.value,
        )
        return ApprovalAcceptedResponse(decision=decision.decision)

    @staticmethod
    def _reject(tenant_id: str, campaign_id: str, reason: str, **dims: Any) -> None:
        log_warning(tenant_id, "approval:rejected", campaignId=campaign_id, reason=reason, **dims)
        raise NotFoundError(NOT_FOUND_MESSAGE)
