"""Console approval channel — renders confirmation requests with rich."""

from __future__ import annotations

from typing import Optional

import structlog
from rich.console import Console
from rich.panel import Panel
from rich.text import Text

from spirit.channels.base import ApprovalChannel, render_request_text
from spirit.security.approval import ConfirmationRequest
from spirit.security.sensitivity import RiskLevel

logger = structlog.get_logger(__name__)

_BORDER_STYLES = {
    RiskLevel.LOW: "green",
    RiskLevel.MEDIUM: "yellow",
    RiskLevel.HIGH: "dark_orange",
    RiskLevel.CRITICAL: "red",
}


class ConsoleApprovalChannel(ApprovalChannel):
    """
    Shows each request to the operator's terminal.

    The operator answers through whatever inbound path the deployment wires
    to ``ApprovalGate.on_approval_response``.
    """

    def __init__(self, console: Optional[Console] = None):
        self._console = console or Console(stderr=True)

    @property
    def channel_name(self) -> str:
        return "console"

    async def send_confirmation_request(self, request: ConfirmationRequest) -> bool:
        panel = Panel(
            Text(render_request_text(request)),
            title="Sensitive operation: confirmation required",
            subtitle="approve · reject · kill_all",
            border_style=_BORDER_STYLES.get(request.risk_level, "white"),
        )
        self._console.print(panel)
        logger.info("console_channel.delivered", operation_id=request.operation_id)
        return True
