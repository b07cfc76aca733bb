"""
Signalling capability: delivers a human decision to the durable workflow that is
waiting on it.
"""
from typing import Protocol

import azure.durable_functions as df

from src.shared.logging_utils import error as log_error, info as log_info
from src.specs.common.errors import ExternalServiceError


class DecisionSignaller(Protocol):
    async def send_decision(self, callback_id: str, result: str) -> None:
        """Deliver ``result`` (a serialized decision) to the workflow ``callback_id``.

        Fire-once is the caller's responsibility; implementations do not dedupe.
        """
        ...


class DurableDecisionSignaller:
    """Raises the approval event on the durable orchestration whose instance id
    is the callback id."""

    def __init__(self, client: df.DurableOrchestrationClient, event_name: str = "ApprovalDecision"):
        self._client = client
        self._event_name = event_name

    async def send_decision(self, callback_id: str, result: str) -> None:
        try:
            await self._client.raise_event(callback_id, self._event_name, result)
        except Exception as exc:  # pylint: disable=broad-except
            # The durable client reports every failure (unknown instance,
            # completed instance, host errors) as a plain Exception.
            log_error(None, "signal:raise_event_failed", callbackId=callback_id, error=str(exc))
            raise ExternalServiceError("Failed to deliver approval decision", retryable=True) from exc
        log_info(None, "signal:raise_event_sent", callbackId=callback_id, eventName=self._event_name)
