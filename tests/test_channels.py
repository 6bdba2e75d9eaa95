"""
Unit tests for the approval channels.

No network and no terminal: the webhook channel runs against
``httpx.MockTransport`` and the console channel against a recording
``rich`` console.
"""

from __future__ import annotations

import json

import httpx
import pytest
from rich.console import Console

from spirit.channels.base import ApprovalChannel, render_request_text
from spirit.channels.console import ConsoleApprovalChannel
from spirit.channels.webhook import WebhookApprovalChannel, request_payload
from spirit.security.approval import ConfirmationRequest
from spirit.security.sensitivity import OperationCategory, RiskLevel


def _request(**overrides) -> ConfirmationRequest:
    fields = dict(
        operation_id="op_1700000000000_abc123",
        category=OperationCategory.FILE_DELETE,
        risk_level=RiskLevel.CRITICAL,
        category_description="Delete file",
        command_preview="delete /tmp/report.csv",
        description="clean up old reports",
        timeout_seconds=120,
        channel="ops",
    )
    fields.update(overrides)
    return ConfirmationRequest(**fields)


# ============================================================================
# Rendering
# ============================================================================


class TestRenderRequestText:
    def test_contains_every_field(self):
        text = render_request_text(_request())
        assert text.splitlines()[0] == "🔴 Critical risk · Delete file"
        assert "Operation ID: op_1700000000000_abc123" in text
        assert "Description: clean up old reports" in text
        assert "delete /tmp/report.csv" in text
        assert "Confirm within 120 seconds" in text

    def test_fractional_timeout(self):
        assert "within 0.5 seconds" in render_request_text(_request(timeout_seconds=0.5))

    def test_payload_is_json_ready(self):
        payload = request_payload(_request())
        assert json.loads(json.dumps(payload, ensure_ascii=False)) == payload
        assert payload["category"] == "file_delete"
        assert payload["risk_level"] == "critical"
        assert payload["actions"] == ["approve", "reject", "kill_all"]


# ============================================================================
# Webhook channel
# ============================================================================


class TestWebhookChannel:
    @pytest.mark.asyncio
    async def test_posts_payload_and_accepts_2xx(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(202)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            channel = WebhookApprovalChannel("https://hooks.example.com/approve", client=client)
            assert await channel.send_confirmation_request(_request()) is True

        assert seen[0].method == "POST"
        assert str(seen[0].url) == "https://hooks.example.com/approve"
        body = json.loads(seen[0].content)
        assert body["operation_id"] == "op_1700000000000_abc123"
        assert body["channel"] == "ops"

    @pytest.mark.asyncio
    async def test_non_2xx_is_a_failed_delivery(self):
        transport = httpx.MockTransport(lambda request: httpx.Response(503))
        async with httpx.AsyncClient(transport=transport) as client:
            channel = WebhookApprovalChannel("https://hooks.example.com", client=client)
            assert await channel.send_confirmation_request(_request()) is False

    @pytest.mark.asyncio
    async def test_transport_error_is_a_failed_delivery(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            channel = WebhookApprovalChannel("https://hooks.example.com", client=client)
            assert await channel.send_confirmation_request(_request()) is False

    def test_channel_name(self):
        channel = WebhookApprovalChannel("https://hooks.example.com")
        assert isinstance(channel, ApprovalChannel)
        assert channel.channel_name == "webhook"


# ============================================================================
# Console channel
# ============================================================================


class TestConsoleChannel:
    @pytest.mark.asyncio
    async def test_prints_panel_and_accepts(self):
        console = Console(record=True, width=100, force_terminal=False)
        channel = ConsoleApprovalChannel(console)

        assert await channel.send_confirmation_request(_request()) is True

        output = console.export_text()
        assert "Sensitive operation: confirmation required" in output
        assert "op_1700000000000_abc123" in output
        assert "delete /tmp/report.csv" in output
        assert channel.channel_name == "console"
