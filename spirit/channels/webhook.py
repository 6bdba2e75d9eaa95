"""
Webhook approval channel.

POSTs each confirmation request as JSON to an operator-controlled endpoint
(a chat bot bridge, an incident tool, …). Any 2xx response means the request
was accepted for delivery; the endpoint later answers through
``ApprovalGate.on_approval_response``.
"""

from __future__ import annotations

from typing import Any, Optional

import httpx
import structlog

from spirit.channels.base import ApprovalChannel, render_request_text
from spirit.security.approval import ApprovalAction, ConfirmationRequest

logger = structlog.get_logger(__name__)


def request_payload(request: ConfirmationRequest) -> dict[str, Any]:
    return {
        "operation_id": request.operation_id,
        "category": request.category.value,
        "risk_level": request.risk_level.value,
        "category_description": request.category_description,
        "description": request.description,
        "command_preview": request.command_preview,
        "timeout_seconds": request.timeout_seconds,
        "channel": request.channel,
        "text": render_request_text(request),
        "actions": [action.value for action in ApprovalAction],
    }


class WebhookApprovalChannel(ApprovalChannel):

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._url = url
        self._timeout = timeout
        self._client = client

    @property
    def channel_name(self) -> str:
        return "webhook"

    async def send_confirmation_request(self, request: ConfirmationRequest) -> bool:
        payload = request_payload(request)
        try:
            if self._client is not None:
                response = await self._client.post(self._url, json=payload, timeout=self._timeout)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    response = await client.post(self._url, json=payload)
        except httpx.HTTPError as exc:
            logger.error(
                "webhook_channel.delivery_failed",
                operation_id=request.operation_id,
                error=str(exc),
            )
            return False

        if not response.is_success:
            logger.error(
                "webhook_channel.rejected",
                operation_id=request.operation_id,
                status_code=response.status_code,
            )
            return False
        logger.info("webhook_channel.delivered", operation_id=request.operation_id)
        return True
